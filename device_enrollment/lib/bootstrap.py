"""Trust bootstrapping: first-contact certificate fetch and EST CA discovery."""

import base64
import binascii
import logging
import posixpath
import ssl
from urllib.parse import urlsplit, urlunsplit

from cryptography import x509
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives.serialization import pkcs7

from .cert_utils import serialize_certificate
from .errors import PeerCertificateMissing, TransportError
from .transport import get, get_peer_certificate

logger = logging.getLogger(__name__)

EST_CACERTS_PATH = ".well-known/est/cacerts"  # RFC 7030


def fetch_leaf_certificate(url: str, timeout: float = 30.0) -> x509.Certificate:
    """Fetch the first certificate ``url`` presents, without verifying it.

    This is the only unverified connection the client makes.

    Raises:
        TransportError: If the server cannot be reached
        PeerCertificateMissing: If the server presented no certificate
    """
    der = get_peer_certificate(url, timeout=timeout)
    if not der:
        raise PeerCertificateMissing("peer certificate information is missing", url=url)
    try:
        return x509.load_der_x509_certificate(der)
    except ValueError as e:
        raise PeerCertificateMissing(f"peer certificate could not be parsed: {e}", url=url) from e


def est_cacerts_url(url_root: str) -> str:
    """Join the EST ``cacerts`` path onto the issuer's path."""
    parts = urlsplit(url_root)
    path = posixpath.join("/", parts.path.lstrip("/"), EST_CACERTS_PATH)
    return urlunsplit((parts.scheme, parts.netloc, path, "", ""))


def anchored_context(anchor: x509.Certificate) -> ssl.SSLContext:
    """Verifying TLS context that trusts only ``anchor``.

    Partial chains are allowed so a server's own leaf certificate can act as
    the trust anchor.
    """
    context = ssl.create_default_context(
        ssl.Purpose.SERVER_AUTH, cadata=serialize_certificate(anchor).decode("ascii")
    )
    context.verify_flags |= ssl.VERIFY_X509_PARTIAL_CHAIN
    return context


def fetch_ca_bundle(
    url_root: str, anchor: x509.Certificate, timeout: float = 30.0
) -> list[x509.Certificate]:
    """Fetch the server's CA bundle from its EST well-known endpoint.

    Discovery is best effort: network errors, non-2xx responses and
    undecodable bodies are logged and yield an empty list.

    Args:
        url_root: Controller base URL
        anchor: Certificate the connection must chain to
        timeout: Request deadline in seconds

    Returns:
        Certificates from the PKCS#7 bundle, possibly empty
    """
    url = est_cacerts_url(url_root)
    try:
        response = get(url, anchored_context(anchor), timeout=timeout)
    except TransportError as e:
        logger.error("unable to retrieve certificates from server at %s: %s", url_root, e.error)
        return []

    if not 200 <= response.status < 300:
        logger.debug(
            "no certificates added from url. http response: %d, url: %s", response.status, url
        )
        return []

    try:
        der = base64.b64decode(response.body)
        certs = pkcs7.load_der_pkcs7_certificates(der)
    except (binascii.Error, ValueError, UnsupportedAlgorithm) as e:
        logger.warning("could not parse certificates, no certificates added from %s: %s", url, e)
        return []

    logger.debug("fetched %d certificates from %s", len(certs), url)
    return certs
