"""Growable set of trusted CA certificates."""

import ssl
from collections.abc import Iterable, Iterator
from pathlib import Path

from cryptography import x509
from cryptography.hazmat.primitives import serialization

from .cert_utils import deserialize_certificates, serialize_certificates


class TrustPool:
    """CA certificates trusted for one enrollment run.

    Certificates are kept in insertion order and de-duplicated by DER
    encoding. Nothing is ever removed.
    """

    def __init__(self, certs: Iterable[x509.Certificate] = ()) -> None:
        self._certs: list[x509.Certificate] = []
        self._seen: set[bytes] = set()
        self.extend(certs)

    @classmethod
    def from_pem(cls, pem_data: bytes) -> "TrustPool":
        """Build a pool from a PEM bundle.

        Raises:
            ValueError: If the bundle cannot be parsed
        """
        return cls(deserialize_certificates(pem_data))

    @classmethod
    def from_file(cls, path: Path) -> "TrustPool":
        """Build a pool from a PEM bundle on disk.

        Raises:
            OSError: If the file cannot be read
            ValueError: If the bundle cannot be parsed
        """
        return cls.from_pem(path.read_bytes())

    def add(self, cert: x509.Certificate) -> bool:
        """Add a certificate. Returns False if it was already present."""
        der = cert.public_bytes(serialization.Encoding.DER)
        if der in self._seen:
            return False
        self._seen.add(der)
        self._certs.append(cert)
        return True

    def extend(self, certs: Iterable[x509.Certificate]) -> int:
        """Add several certificates. Returns how many were new."""
        return sum(1 for cert in certs if self.add(cert))

    def __len__(self) -> int:
        return len(self._certs)

    def __iter__(self) -> Iterator[x509.Certificate]:
        return iter(list(self._certs))

    def __bool__(self) -> bool:
        return bool(self._certs)

    def to_pem(self) -> bytes:
        """Serialize the pool to one combined PEM bundle."""
        return serialize_certificates(self._certs)

    def ssl_context(self) -> ssl.SSLContext:
        """Return a verifying client TLS context trusting exactly this pool.

        An empty pool falls back to the platform's default trust store.
        """
        if not self._certs:
            return ssl.create_default_context(ssl.Purpose.SERVER_AUTH)
        return ssl.create_default_context(
            ssl.Purpose.SERVER_AUTH, cadata=self.to_pem().decode("ascii")
        )
