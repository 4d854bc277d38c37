"""HTTPS requests used by the enrollment protocol.

Every request closes its connection before returning, whatever the
outcome. Connection failures raise :class:`TransportError`; HTTP error
statuses are returned as ordinary responses so callers can read the body.
"""

import http.client
import ssl
import urllib.error
import urllib.request
from dataclasses import dataclass
from urllib.parse import urlsplit

from .errors import TransportError


@dataclass(frozen=True)
class HttpResponse:
    """Status line and body of a completed HTTP exchange."""

    status: int
    reason: str
    body: bytes

    @property
    def status_text(self) -> str:
        """Status in 'NNN Reason' form."""
        return f"{self.status} {self.reason}".strip()

    @property
    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")


def unverified_context() -> ssl.SSLContext:
    """Client TLS context that accepts any server certificate."""
    context = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
    context.check_hostname = False
    context.verify_mode = ssl.CERT_NONE
    return context


def request(
    method: str,
    url: str,
    context: ssl.SSLContext,
    body: bytes | None = None,
    content_type: str | None = None,
    timeout: float = 30.0,
) -> HttpResponse:
    """Send an HTTPS request and return the response, including error statuses.

    Raises:
        TransportError: If no HTTP response was received
    """
    headers = {"Content-Type": content_type} if content_type else {}
    req = urllib.request.Request(url, data=body, headers=headers, method=method)
    try:
        with urllib.request.urlopen(req, context=context, timeout=timeout) as response:
            return HttpResponse(response.status, response.reason or "", response.read())
    except urllib.error.HTTPError as e:
        with e:
            return HttpResponse(e.code, str(e.reason or ""), e.read())
    except (urllib.error.URLError, http.client.HTTPException, OSError) as e:
        raise TransportError(url, e) from e


def post(
    url: str,
    context: ssl.SSLContext,
    body: bytes,
    content_type: str,
    timeout: float = 30.0,
) -> HttpResponse:
    """POST ``body`` to ``url``."""
    return request("POST", url, context, body=body, content_type=content_type, timeout=timeout)


def get(url: str, context: ssl.SSLContext, timeout: float = 30.0) -> HttpResponse:
    """GET ``url``."""
    return request("GET", url, context, timeout=timeout)


def get_peer_certificate(url: str, timeout: float = 30.0) -> bytes | None:
    """GET ``url`` without verifying the server and return its certificate.

    Returns:
        DER bytes of the first certificate the server presented, or None

    Raises:
        TransportError: If the connection or request fails
    """
    parts = urlsplit(url)
    try:
        port = parts.port
    except ValueError as e:
        raise TransportError(url, e) from e
    if not parts.hostname:
        raise TransportError(url, ValueError("url has no host"))

    conn = http.client.HTTPSConnection(
        parts.hostname, port, timeout=timeout, context=unverified_context()
    )
    try:
        conn.connect()
        der = conn.sock.getpeercert(binary_form=True) if conn.sock is not None else None
        target = parts.path or "/"
        if parts.query:
            target = f"{target}?{parts.query}"
        conn.request("GET", target)
        conn.getresponse().read()
        return der
    except (http.client.HTTPException, OSError) as e:
        raise TransportError(url, e) from e
    finally:
        conn.close()
