"""Test fixtures for device_enrollment tests."""

import socket
import ssl
import threading
import uuid
from collections.abc import Callable, Generator
from datetime import UTC, datetime, timedelta
from pathlib import Path

import jwt
import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID

from device_enrollment.lib.cert_utils import serialize_certificate, serialize_private_key
from device_enrollment.lib.config import EnrollmentConfig
from device_enrollment.lib.enrollment_token import EnrollmentToken
from device_enrollment.lib.errors import TransportError
from device_enrollment.lib.transport import HttpResponse

CONTROLLER_URL = "https://controller.example.com:1280"


def issue_certificate(
    common_name: str,
    key: ec.EllipticCurvePrivateKey,
    issuer_cert: x509.Certificate | None = None,
    issuer_key: ec.EllipticCurvePrivateKey | None = None,
    is_ca: bool = False,
) -> x509.Certificate:
    """Build a certificate for ``key``; self-signed when no issuer is given."""
    subject = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])
    not_before = datetime.now(UTC) - timedelta(minutes=1)
    builder = (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(issuer_cert.subject if issuer_cert else subject)
        .public_key(key.public_key())
        .serial_number(uuid.uuid4().int)
        .not_valid_before(not_before)
        .not_valid_after(not_before + timedelta(days=30))
        .add_extension(x509.BasicConstraints(ca=is_ca, path_length=None), critical=True)
    )
    return builder.sign(issuer_key or key, hashes.SHA256())


def unknown_authority_error(url: str = CONTROLLER_URL) -> TransportError:
    """TransportError as raised for a server whose CA is not trusted."""
    err = ssl.SSLCertVerificationError(
        1, "[SSL: CERTIFICATE_VERIFY_FAILED] unable to get local issuer certificate"
    )
    err.verify_code = 20
    return TransportError(url, err)


def connection_refused_error(url: str = CONTROLLER_URL) -> TransportError:
    """TransportError as raised when nothing listens on the port."""
    return TransportError(url, ConnectionRefusedError(111, "Connection refused"))


@pytest.fixture
def enrollment_config() -> EnrollmentConfig:
    """Return test enrollment configuration."""
    return EnrollmentConfig(country="US", organization="Test Org", timeout_seconds=5.0)


@pytest.fixture
def ca_key() -> ec.EllipticCurvePrivateKey:
    """Generate EC private key for the controller's CA."""
    return ec.generate_private_key(ec.SECP256R1())


@pytest.fixture
def ca_cert(ca_key: ec.EllipticCurvePrivateKey) -> x509.Certificate:
    """Generate self-signed CA certificate."""
    return issue_certificate("Test Root CA", ca_key, is_ca=True)


@pytest.fixture
def intermediate_key() -> ec.EllipticCurvePrivateKey:
    """Generate EC private key for an intermediate CA."""
    return ec.generate_private_key(ec.SECP256R1())


@pytest.fixture
def intermediate_cert(
    intermediate_key: ec.EllipticCurvePrivateKey,
    ca_cert: x509.Certificate,
    ca_key: ec.EllipticCurvePrivateKey,
) -> x509.Certificate:
    """Generate intermediate CA certificate signed by the root."""
    return issue_certificate("Test Intermediate CA", intermediate_key, ca_cert, ca_key, is_ca=True)


@pytest.fixture
def server_key() -> ec.EllipticCurvePrivateKey:
    """Generate the controller's TLS (and token signing) key."""
    return ec.generate_private_key(ec.SECP256R1())


@pytest.fixture
def server_cert(
    server_key: ec.EllipticCurvePrivateKey,
    ca_cert: x509.Certificate,
    ca_key: ec.EllipticCurvePrivateKey,
) -> x509.Certificate:
    """Generate the controller's TLS certificate signed by the CA."""
    return issue_certificate("controller.example.com", server_key, ca_cert, ca_key)


@pytest.fixture
def client_key() -> ec.EllipticCurvePrivateKey:
    """Generate EC private key for an existing client identity."""
    return ec.generate_private_key(ec.SECP256R1())


@pytest.fixture
def client_cert(
    client_key: ec.EllipticCurvePrivateKey,
    ca_cert: x509.Certificate,
    ca_key: ec.EllipticCurvePrivateKey,
) -> x509.Certificate:
    """Generate client certificate signed by the CA."""
    return issue_certificate("edge-01", client_key, ca_cert, ca_key)


@pytest.fixture
def client_identity_files(
    tmp_path: Path,
    client_key: ec.EllipticCurvePrivateKey,
    client_cert: x509.Certificate,
) -> tuple[Path, Path]:
    """Write the client key and certificate to disk and return (key, cert) paths."""
    key_path = tmp_path / "client.key"
    cert_path = tmp_path / "client.pem"
    key_path.write_bytes(serialize_private_key(client_key))
    cert_path.write_bytes(serialize_certificate(client_cert))
    return key_path, cert_path


@pytest.fixture
def sign_token(server_key: ec.EllipticCurvePrivateKey) -> Callable[..., str]:
    """Return a function that signs enrollment claims as the controller."""

    def _sign(key: ec.EllipticCurvePrivateKey | None = None, **claims: object) -> str:
        payload = {
            "iss": CONTROLLER_URL,
            "sub": "identity-123",
            "jti": "ott-456",
            "em": "token",
        }
        payload.update(claims)
        return jwt.encode(payload, key or server_key, algorithm="ES256")

    return _sign


@pytest.fixture
def make_token(server_cert: x509.Certificate) -> Callable[[str], EnrollmentToken]:
    """Return a factory for validated tokens with the given method."""

    def _make(method: str) -> EnrollmentToken:
        return EnrollmentToken(
            issuer=CONTROLLER_URL,
            method=method,
            token_id="ott-456",
            subject="identity-123",
            signature_cert=server_cert,
        )

    return _make


def ok_response(body: bytes = b"") -> HttpResponse:
    """HTTP 200 response."""
    return HttpResponse(200, "OK", body)


@pytest.fixture
def tls_server(tmp_path: Path) -> Generator[Callable[..., tuple[int, list[bytes]]]]:
    """Return a function that starts a one-shot loopback TLS server.

    The server presents ``cert`` and answers one request with an empty 200.
    The function returns the port and a list that receives the raw request.
    """
    threads: list[threading.Thread] = []
    listeners: list[socket.socket] = []

    def _start(
        cert: x509.Certificate, key: ec.EllipticCurvePrivateKey
    ) -> tuple[int, list[bytes]]:
        cert_path = tmp_path / f"tls-{len(listeners)}.pem"
        key_path = tmp_path / f"tls-{len(listeners)}.key"
        cert_path.write_bytes(serialize_certificate(cert))
        key_path.write_bytes(serialize_private_key(key))
        context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
        context.load_cert_chain(cert_path, key_path)

        listener = socket.create_server(("127.0.0.1", 0))
        listener.settimeout(5)
        received: list[bytes] = []

        def _serve() -> None:
            try:
                conn, _ = listener.accept()
            except OSError:
                return
            with conn:
                conn.settimeout(5)
                try:
                    with context.wrap_socket(conn, server_side=True) as tls:
                        received.append(tls.recv(4096))
                        tls.sendall(
                            b"HTTP/1.1 200 OK\r\nContent-Length: 0\r\nConnection: close\r\n\r\n"
                        )
                except OSError:
                    pass

        thread = threading.Thread(target=_serve, daemon=True)
        thread.start()
        listeners.append(listener)
        threads.append(thread)
        return listener.getsockname()[1], received

    yield _start

    for listener in listeners:
        listener.close()
    for thread in threads:
        thread.join(timeout=5)
