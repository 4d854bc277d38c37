"""Certificate utility functions for key generation, CSR building, and PEM handling."""

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, rsa
from cryptography.hazmat.primitives.asymmetric.types import PrivateKeyTypes

from .config import DistinguishedName


def generate_private_key(curve: ec.EllipticCurve | None = None) -> ec.EllipticCurvePrivateKey:
    """Generate EC private key on the given curve (P-384 by default)."""
    return ec.generate_private_key(curve or ec.SECP384R1())


def serialize_private_key(key: PrivateKeyTypes) -> bytes:
    """Serialize private key to PEM.

    EC keys use the SEC1 'EC PRIVATE KEY' encoding, everything else PKCS8.
    No encryption in either case.
    """
    if isinstance(key, ec.EllipticCurvePrivateKey):
        key_format = serialization.PrivateFormat.TraditionalOpenSSL
    else:
        key_format = serialization.PrivateFormat.PKCS8
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=key_format,
        encryption_algorithm=serialization.NoEncryption(),
    )


def deserialize_private_key(pem_data: bytes) -> PrivateKeyTypes:
    """Deserialize unencrypted private key from PEM bytes."""
    return serialization.load_pem_private_key(pem_data, password=None)


def serialize_certificate(cert: x509.Certificate) -> bytes:
    """Serialize certificate to PEM format."""
    return cert.public_bytes(serialization.Encoding.PEM)


def serialize_certificates(certs: list[x509.Certificate]) -> bytes:
    """Concatenate certificates into a single PEM bundle."""
    return b"".join(serialize_certificate(cert) for cert in certs)


def deserialize_certificates(pem_data: bytes) -> list[x509.Certificate]:
    """Parse every certificate in a PEM bundle.

    Raises:
        ValueError: If the data holds no certificate or a block is malformed
    """
    return x509.load_pem_x509_certificates(pem_data)


def get_certificate_serial_hex(cert: x509.Certificate) -> str:
    """Return certificate serial number as hex with colons (e.g., 3A:F2:B1:...)."""
    serial_hex = f"{cert.serial_number:X}"
    if len(serial_hex) % 2 != 0:
        serial_hex = "0" + serial_hex
    return ":".join(serial_hex[i : i + 2] for i in range(0, len(serial_hex), 2))


def signature_hash(key: PrivateKeyTypes) -> hashes.HashAlgorithm | None:
    """Pick the CSR signature digest for a key.

    Matches the curve strength for EC keys; SHA-256 for RSA; None for
    Ed25519/Ed448 which hash internally.
    """
    if isinstance(key, ec.EllipticCurvePrivateKey):
        if key.curve.key_size > 384:
            return hashes.SHA512()
        if key.curve.key_size > 256:
            return hashes.SHA384()
        return hashes.SHA256()
    if isinstance(key, rsa.RSAPrivateKey):
        return hashes.SHA256()
    return None


def build_csr(subject_dn: DistinguishedName, key: PrivateKeyTypes) -> x509.CertificateSigningRequest:
    """Build a certificate signing request over ``subject_dn`` signed by ``key``."""
    return (
        x509.CertificateSigningRequestBuilder()
        .subject_name(subject_dn.to_x509_name())
        .sign(key, signature_hash(key))  # type: ignore[arg-type]
    )


def serialize_csr(csr: x509.CertificateSigningRequest) -> bytes:
    """Serialize CSR to PEM format."""
    return csr.public_bytes(serialization.Encoding.PEM)
