"""Enrollment method strategies.

Each strategy performs one HTTPS exchange with the controller. Connection
failures surface as TransportError and are left for the enroller to
classify; application failures raise classified EnrollmentError subclasses.
"""

import json
import logging
import socket
import ssl
from abc import ABC, abstractmethod
from http import HTTPStatus

from .api_errors import ApiError
from .cert_utils import build_csr, serialize_csr
from .config import DistinguishedName, EnrollmentConfig
from .enrollment_token import EnrollmentToken
from .errors import AlreadyEnrolled, EnrollmentRejected
from .keys import EngineLoader, load_client_identity, load_private_key
from .models import EnrollmentMethod, IdentityMaterial
from .transport import HttpResponse, post
from .trust_pool import TrustPool

logger = logging.getLogger(__name__)


class EnrollmentStrategy(ABC):
    """One enrollment method's wire exchange.

    Args:
        config: Enrollment configuration (subject fields, timeout)
        engine_loader: Loads engine-held keys by reference
    """

    method: EnrollmentMethod

    def __init__(self, config: EnrollmentConfig, engine_loader: EngineLoader | None = None) -> None:
        self.config = config
        self.engine_loader = engine_loader

    @abstractmethod
    def attempt(
        self, token: EnrollmentToken, identity: IdentityMaterial, trust_pool: TrustPool
    ) -> str | None:
        """Run the exchange once.

        Returns:
            Issued certificate PEM, or None when the controller only confirms

        Raises:
            TransportError: If the controller could not be reached
            EnrollmentError: If the controller refused the request
        """

    def _mutual_tls_context(self, identity: IdentityMaterial, trust_pool: TrustPool) -> ssl.SSLContext:
        key = load_private_key(identity.key, self.engine_loader)
        return load_client_identity(trust_pool.ssl_context(), key, identity.cert_path)

    def _rejected(self, message: str, response: HttpResponse, url: str, **fields: str) -> EnrollmentRejected:
        return EnrollmentRejected(
            message,
            status=response.status,
            reason=response.reason,
            body=response.text,
            step=f"enroll-{self.method.value}",
            url=url,
            **fields,
        )


class TokenEnrollment(EnrollmentStrategy):
    """One-time-token enrollment: submit a CSR, receive a signed certificate."""

    method = EnrollmentMethod.TOKEN

    def attempt(
        self, token: EnrollmentToken, identity: IdentityMaterial, trust_pool: TrustPool
    ) -> str | None:
        key = load_private_key(identity.key, self.engine_loader)
        subject = DistinguishedName(
            country=self.config.country,
            organization=self.config.organization,
            common_name=socket.gethostname(),
        )
        csr_pem = serialize_csr(build_csr(subject, key))

        url = token.enrollment_url
        logger.debug("submitting csr for %s to %s", subject.common_name, url)
        response = post(
            url,
            trust_pool.ssl_context(),
            body=csr_pem,
            content_type="text/plain",
            timeout=self.config.timeout_seconds,
        )

        if response.status == HTTPStatus.OK:
            return response.text

        api_error = ApiError.from_body(response.body)
        if api_error is not None and api_error.message:
            raise self._rejected(
                f"enroll error: {response.status_text} - code: {api_error.code} - "
                f"message: {api_error.message} - cause: {api_error.cause}",
                response,
                url,
                code=api_error.code,
                server_message=api_error.message,
                cause=api_error.cause,
            )
        raise self._rejected(
            f"enroll error: {response.status_text}: unrecognized response: {response.text}",
            response,
            url,
        )


class CAEnrollment(EnrollmentStrategy):
    """Enrollment with a certificate from a CA the controller already trusts."""

    method = EnrollmentMethod.CA_MUTUAL
    content_type = "text/plain"

    def request_body(self, identity: IdentityMaterial) -> bytes:
        return b""

    def attempt(
        self, token: EnrollmentToken, identity: IdentityMaterial, trust_pool: TrustPool
    ) -> str | None:
        context = self._mutual_tls_context(identity, trust_pool)
        url = token.enrollment_url
        response = post(
            url,
            context,
            body=self.request_body(identity),
            content_type=self.content_type,
            timeout=self.config.timeout_seconds,
        )

        if response.status == HTTPStatus.OK:
            return None
        if response.status == HTTPStatus.CONFLICT:
            raise AlreadyEnrolled(
                "the provided identity has already been enrolled",
                step=f"enroll-{self.method.value}",
                url=url,
            )
        raise self.rejection(response, url)

    def rejection(self, response: HttpResponse, url: str) -> EnrollmentRejected:
        return self._rejected(f"enroll error: {response.status_text}", response, url)


class NamedCAEnrollment(CAEnrollment):
    """CA enrollment that also asks the controller to create a named identity."""

    method = EnrollmentMethod.CA_MUTUAL_NAMED
    content_type = "application/json"

    def request_body(self, identity: IdentityMaterial) -> bytes:
        name = (identity.name or "").strip()
        if not name:
            return b""
        return json.dumps({"name": name}, separators=(",", ":")).encode("utf-8")

    def rejection(self, response: HttpResponse, url: str) -> EnrollmentRejected:
        api_error = ApiError.from_body(response.body)
        if api_error is None:
            return self._rejected(
                f"enroll error: {response.status_text}: {response.text}", response, url
            )
        return self._rejected(
            f"enroll error: {response.status_text}: {api_error.code}: {api_error.message}",
            response,
            url,
            code=api_error.code,
            server_message=api_error.message,
        )


STRATEGIES: dict[EnrollmentMethod, type[EnrollmentStrategy]] = {
    EnrollmentMethod.TOKEN: TokenEnrollment,
    EnrollmentMethod.CA_MUTUAL: CAEnrollment,
    EnrollmentMethod.CA_MUTUAL_NAMED: NamedCAEnrollment,
}
