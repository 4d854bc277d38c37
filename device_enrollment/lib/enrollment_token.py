"""Enrollment token (JWT) parsing and validation."""

import logging
from dataclasses import dataclass, field
from urllib.parse import urlencode, urlsplit, urlunsplit

import jwt
from cryptography import x509

from .bootstrap import fetch_leaf_certificate
from .errors import (
    PeerCertificateMissing,
    TokenIssuerInvalid,
    TokenMalformed,
    TransportError,
    TrustBootstrapFailed,
)
from .models import EnrollmentMethod

logger = logging.getLogger(__name__)

ENROLL_PATH = "/enroll"

# Asymmetric algorithms only: the verification key comes from a certificate.
SIGNING_ALGORITHMS = [
    "RS256",
    "RS384",
    "RS512",
    "PS256",
    "PS384",
    "PS512",
    "ES256",
    "ES384",
    "ES512",
    "EdDSA",
]


@dataclass(frozen=True)
class EnrollmentToken:
    """Validated enrollment claims.

    Attributes:
        issuer: Controller base URL ('iss')
        method: Enrollment method exactly as the controller named it ('em')
        token_id: One-time token identifier ('jti')
        subject: Identity id the token was issued for ('sub')
        signature_cert: Issuer certificate whose key verified the token
        raw: Trimmed JWT string
    """

    issuer: str
    method: str
    token_id: str
    subject: str
    signature_cert: x509.Certificate = field(repr=False)
    raw: str = field(repr=False, default="")

    @property
    def enrollment_method(self) -> EnrollmentMethod | None:
        return EnrollmentMethod.from_claim(self.method)

    @property
    def enrollment_url(self) -> str:
        """Controller URL the enrollment request is POSTed to."""
        parts = urlsplit(self.issuer)
        query = {"method": self.method}
        if self.enrollment_method in (EnrollmentMethod.TOKEN, EnrollmentMethod.CA_MUTUAL):
            query["token"] = self.token_id
        return urlunsplit((parts.scheme, parts.netloc, ENROLL_PATH, urlencode(query), ""))


def _decode_unverified(token: str) -> dict:
    """Decode JWT claims without checking the signature.

    Raises:
        TokenMalformed: If the token or its claims cannot be decoded
    """
    try:
        claims = jwt.decode(token, options={"verify_signature": False})
    except jwt.PyJWTError as e:
        raise TokenMalformed(f"could not parse token: {e}", step="parse-token") from e

    for claim in ("iss", "em"):
        if not isinstance(claims.get(claim, ""), str):
            raise TokenMalformed(f"token claim '{claim}' must be a string", step="parse-token")
    return claims


def _validate_issuer(issuer: str) -> None:
    """Raise TokenIssuerInvalid unless ``issuer`` is an https URL with a host."""
    if not issuer.strip():
        raise TokenIssuerInvalid("could not validate token, issuer is empty", step="parse-token")
    try:
        parts = urlsplit(issuer)
        _ = parts.port  # raises ValueError on a malformed port
    except ValueError as e:
        raise TokenIssuerInvalid(
            f"could not validate token, issuer [{issuer}] is not a valid url", step="parse-token"
        ) from e
    if not parts.scheme or not parts.hostname:
        raise TokenIssuerInvalid(
            f"could not validate token, issuer [{issuer}] is not a valid url", step="parse-token"
        )
    if parts.scheme.lower() != "https":
        raise TokenIssuerInvalid(
            f"could not validate token, issuer [{issuer}] must use https", step="parse-token"
        )


def parse_token(token_str: str, timeout: float = 30.0) -> EnrollmentToken:
    """Parse an enrollment JWT and verify it against its issuer's certificate.

    Flow:
    1. Decode claims without verification to learn the issuer
    2. Validate the issuer URL (no network call on failure)
    3. Fetch the issuer's TLS certificate over an unverified connection
    4. Verify the JWT signature with that certificate's public key

    Args:
        token_str: Raw JWT, surrounding whitespace allowed
        timeout: Deadline in seconds for the certificate fetch

    Returns:
        Validated EnrollmentToken with signature_cert attached

    Raises:
        TokenMalformed: If the token cannot be decoded or fails verification
        TokenIssuerInvalid: If the issuer is empty or not an https URL
        TrustBootstrapFailed: If the issuer's certificate cannot be fetched
    """
    token = token_str.strip()
    claims = _decode_unverified(token)

    issuer = claims.get("iss", "")
    _validate_issuer(issuer)

    try:
        cert = fetch_leaf_certificate(issuer, timeout=timeout)
    except (TransportError, PeerCertificateMissing) as e:
        raise TrustBootstrapFailed(
            f"could not retrieve token URL certificate: {e}", step="fetch-issuer-cert", url=issuer
        ) from e

    try:
        verified = jwt.decode(
            token,
            key=cert.public_key(),
            algorithms=SIGNING_ALGORITHMS,
            options={"verify_aud": False},
        )
    except (jwt.PyJWTError, TypeError, ValueError) as e:
        raise TokenMalformed(
            f"token signature does not match issuer certificate: {e}",
            step="verify-token",
            url=issuer,
        ) from e

    logger.debug("validated enrollment token for %s (method=%s)", issuer, verified.get("em"))
    return EnrollmentToken(
        issuer=issuer,
        method=str(verified.get("em", "")),
        token_id=str(verified.get("jti", "")),
        subject=str(verified.get("sub", "")),
        signature_cert=cert,
        raw=token,
    )
