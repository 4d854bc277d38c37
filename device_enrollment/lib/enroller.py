"""Enrollment orchestrator: key preparation, strategy dispatch, trust bootstrap retry."""

import logging
from enum import Enum
from pathlib import Path

from .bootstrap import fetch_ca_bundle
from .cert_utils import generate_private_key, get_certificate_serial_hex, serialize_private_key
from .config import EnrollmentConfig
from .enrollment_token import EnrollmentToken
from .errors import (
    KeyPreparationFailed,
    NetworkFailure,
    TransportError,
    TransportTrustFailure,
    UnsupportedMethod,
)
from .keys import EngineLoader, InlinePemKey, KeySource, resolve_key_reference
from .methods import STRATEGIES, EnrollmentStrategy
from .models import EnrollmentRequest, EnrollmentResult, IdentityConfig, IdentityMaterial
from .trust_pool import TrustPool


class EnrollmentState(Enum):
    """States of a single enrollment run."""

    PREPARING_KEY = "preparing-key"
    ATTEMPTING = "attempting"
    BOOTSTRAPPING_TRUST = "bootstrapping-trust"
    SUCCESS = "success"
    FAILED = "failed"


class Enroller:
    """Runs enrollment for a validated token.

    Holds no state between runs; independent instances may run concurrently.

    Args:
        config: Enrollment configuration
        engine_loader: Loads engine-held keys by reference
        logger: Sink for progress events (defaults to this module's logger)
    """

    def __init__(
        self,
        config: EnrollmentConfig | None = None,
        engine_loader: EngineLoader | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.config = config or EnrollmentConfig()
        self.engine_loader = engine_loader
        self.logger = logger or logging.getLogger(__name__)

    def enroll(self, token: EnrollmentToken, request: EnrollmentRequest) -> EnrollmentResult:
        """Enroll with the controller that issued ``token``.

        Flow:
        1. Resolve or generate the private key
        2. Seed the trust pool from the CA override bundle, if any
        3. Run the token's enrollment strategy
        4. On an unknown-authority TLS failure, fetch the controller's CA
           bundle once (anchored on the token's signing certificate) and retry
        5. Return the identity config with the accumulated CA bundle

        Raises:
            KeyPreparationFailed: If the key cannot be generated or resolved
            UnsupportedMethod: If the token names an unknown method
            TransportTrustFailure: If the controller is still untrusted after
                the CA bundle fetch
            NetworkFailure: If the controller cannot be reached
            EnrollmentRejected: If the controller refuses the enrollment
            AlreadyEnrolled: If a CA method's identity is already enrolled
            OSError, ValueError: If the CA override bundle cannot be read
        """
        state = EnrollmentState.PREPARING_KEY
        self.logger.debug("enrollment state: %s", state.value)
        identity = IdentityMaterial(
            key=self._prepare_key(request.key),
            cert_path=Path(request.cert).expanduser().resolve() if request.cert else None,
            name=request.name,
        )

        trust_pool = TrustPool()
        if request.ca_override:
            self.logger.debug("adding certificates from the provided ca override file")
            trust_pool.extend(TrustPool.from_file(Path(request.ca_override)))

        strategy = self._select_strategy(token)
        bootstrapped = False
        state = EnrollmentState.ATTEMPTING

        while state is not EnrollmentState.SUCCESS:
            self.logger.debug("enrollment state: %s", state.value)
            if state is EnrollmentState.BOOTSTRAPPING_TRUST:
                self._bootstrap_trust(token, trust_pool)
                bootstrapped = True
                state = EnrollmentState.ATTEMPTING
                continue

            try:
                identity.issued_cert = strategy.attempt(token, identity, trust_pool)
            except TransportError as e:
                if e.is_unknown_authority and not bootstrapped:
                    self.logger.info("server certificate not trusted, fetching ca certificates")
                    state = EnrollmentState.BOOTSTRAPPING_TRUST
                    continue
                self.logger.debug("enrollment state: %s", EnrollmentState.FAILED.value)
                raise self._classify(e, strategy) from e
            state = EnrollmentState.SUCCESS

        if trust_pool:
            identity.ca_bundle = trust_pool.to_pem().decode("ascii")

        self.logger.info("enrollment complete for %s", token.issuer)
        return EnrollmentResult(
            config=IdentityConfig.from_identity(token.issuer, identity),
            issued_certificate=identity.issued_cert,
        )

    def _prepare_key(self, key_reference: str | None) -> KeySource:
        if key_reference and key_reference.strip():
            source = resolve_key_reference(key_reference.strip())
            self.logger.info("using key %s", source.to_config_value())
            return source

        self.logger.info("generating P-384 key")
        try:
            key = generate_private_key()
            return InlinePemKey(serialize_private_key(key).decode("ascii"))
        except ValueError as e:
            raise KeyPreparationFailed(f"could not generate key: {e}", step="prepare-key") from e

    def _select_strategy(self, token: EnrollmentToken) -> EnrollmentStrategy:
        method = token.enrollment_method
        if method is None:
            raise UnsupportedMethod(
                f"enrollment method '{token.method}' is not supported",
                step="select-method",
                url=token.issuer,
            )
        return STRATEGIES[method](self.config, self.engine_loader)

    def _bootstrap_trust(self, token: EnrollmentToken, trust_pool: TrustPool) -> None:
        self.logger.debug("fetching certificates from server")
        certs = fetch_ca_bundle(
            token.issuer, token.signature_cert, timeout=self.config.timeout_seconds
        )
        added = trust_pool.extend(certs)
        for cert in certs:
            self.logger.debug(
                "trusting ca %s (serial %s)",
                cert.subject.rfc4514_string(),
                get_certificate_serial_hex(cert),
            )
        self.logger.info("added %d ca certificates from %s", added, token.issuer)

    @staticmethod
    def _classify(
        error: TransportError, strategy: EnrollmentStrategy
    ) -> TransportTrustFailure | NetworkFailure:
        step = f"enroll-{strategy.method.value}"
        if error.is_unknown_authority:
            return TransportTrustFailure(
                f"server certificate is not trusted: {error.error}", step=step, url=error.url
            )
        return NetworkFailure(f"could not contact server: {error.error}", step=step, url=error.url)
