"""Classified errors raised by the enrollment engine.

Every failure a caller can see is one subclass of :class:`EnrollmentError`,
so callers branch on the exception type instead of parsing messages.
:class:`TransportError` is the unclassified connection failure raised by the
HTTPS layer; the enroller turns it into :class:`TransportTrustFailure` or
:class:`NetworkFailure`.
"""

import ssl

# OpenSSL verify codes that mean "the chain does not end in a trusted root".
# Hostname mismatches and expiry are not in this set.
_UNKNOWN_AUTHORITY_CODES = frozenset(
    {
        2,  # X509_V_ERR_UNABLE_TO_GET_ISSUER_CERT
        18,  # X509_V_ERR_DEPTH_ZERO_SELF_SIGNED_CERT
        19,  # X509_V_ERR_SELF_SIGNED_CERT_IN_CHAIN
        20,  # X509_V_ERR_UNABLE_TO_GET_ISSUER_CERT_LOCALLY
        21,  # X509_V_ERR_UNABLE_TO_VERIFY_LEAF_SIGNATURE
    }
)


class EnrollmentError(Exception):
    """Base class for every classified enrollment failure.

    Args:
        message: Human readable description
        step: Enrollment step that failed (e.g. 'validate-token')
        url: URL being contacted when the failure happened
    """

    def __init__(self, message: str, *, step: str | None = None, url: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.step = step
        self.url = url

    def __str__(self) -> str:
        context = [f"{k}={v}" for k, v in (("step", self.step), ("url", self.url)) if v]
        if not context:
            return self.message
        return f"{self.message} ({', '.join(context)})"


class TokenMalformed(EnrollmentError):
    """Token could not be decoded or its signature does not verify."""


class TokenIssuerInvalid(EnrollmentError):
    """Token issuer is empty or not a usable URL."""


class TrustBootstrapFailed(EnrollmentError):
    """The issuer's certificate could not be fetched during token validation."""


class PeerCertificateMissing(EnrollmentError):
    """TLS handshake succeeded but the peer presented no certificate."""


class KeyPreparationFailed(EnrollmentError):
    """Private key (or existing identity) could not be generated or loaded."""


class UnsupportedMethod(EnrollmentError):
    """Token names an enrollment method this client does not implement."""


class NetworkFailure(EnrollmentError):
    """Transport failure unrelated to certificate trust (DNS, refused, timeout)."""


class TransportTrustFailure(EnrollmentError):
    """Server certificate chains to an authority the client does not trust."""


class EnrollmentRejected(EnrollmentError):
    """Controller answered, but refused the enrollment.

    Args:
        message: Human readable description
        status: HTTP status code
        reason: HTTP reason phrase
        code: Server error code, if the body carried one
        server_message: Server error message, if the body carried one
        cause: Server error cause, if the body carried one
        body: Raw response body
    """

    def __init__(
        self,
        message: str,
        *,
        status: int,
        reason: str = "",
        code: str = "",
        server_message: str = "",
        cause: str = "",
        body: str = "",
        step: str | None = None,
        url: str | None = None,
    ) -> None:
        super().__init__(message, step=step, url=url)
        self.status = status
        self.reason = reason
        self.code = code
        self.server_message = server_message
        self.cause = cause
        self.body = body


class AlreadyEnrolled(EnrollmentError):
    """Controller reports the presented identity is already enrolled (HTTP 409)."""


class TransportError(Exception):
    """Connection-level failure talking to ``url``, not yet classified.

    Args:
        url: URL being contacted
        error: Underlying exception from ssl/http.client/urllib
    """

    def __init__(self, url: str, error: BaseException) -> None:
        super().__init__(f"could not contact {url}: {error}")
        self.url = url
        self.error = error

    @property
    def is_unknown_authority(self) -> bool:
        """True when the TLS handshake failed because the issuer is not trusted."""
        return is_unknown_authority(self.error)


def is_unknown_authority(error: BaseException | None) -> bool:
    """Walk an exception chain looking for an unknown-CA verification error.

    urllib wraps TLS errors in ``URLError.reason``; http.client raises them
    directly. Both shapes are followed, along with ``__cause__``.
    """
    seen: set[int] = set()
    while error is not None and id(error) not in seen:
        seen.add(id(error))
        if isinstance(error, ssl.SSLCertVerificationError):
            return error.verify_code in _UNKNOWN_AUTHORITY_CODES
        reason = getattr(error, "reason", None)
        if isinstance(reason, BaseException):
            error = reason
        else:
            error = error.__cause__ or error.__context__
    return False
