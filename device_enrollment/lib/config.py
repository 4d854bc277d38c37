"""Enrollment configuration dataclasses."""

import os
from dataclasses import dataclass

from cryptography import x509
from cryptography.x509 import oid


@dataclass
class EnrollmentConfig:
    """Enrollment client configuration with no network dependencies."""

    country: str = "US"
    organization: str = "NetFoundry"
    timeout_seconds: float = 30.0

    @classmethod
    def from_env(cls) -> "EnrollmentConfig":
        """Build configuration from ENROLL_* environment variables.

        Unset variables fall back to the dataclass defaults.

        Raises:
            ValueError: If ENROLL_TIMEOUT_SECONDS is not a number
        """
        defaults = cls()
        return cls(
            country=os.environ.get("ENROLL_COUNTRY", defaults.country),
            organization=os.environ.get("ENROLL_ORGANIZATION", defaults.organization),
            timeout_seconds=float(
                os.environ.get("ENROLL_TIMEOUT_SECONDS", defaults.timeout_seconds)
            ),
        )


@dataclass
class DistinguishedName:
    """X.509 Subject Distinguished Name for certificate signing requests."""

    country: str
    organization: str
    common_name: str

    def to_x509_name(self) -> x509.Name:
        """Convert to cryptography x509.Name for CSR generation."""
        return x509.Name(
            [
                x509.NameAttribute(oid.NameOID.COUNTRY_NAME, self.country),
                x509.NameAttribute(oid.NameOID.ORGANIZATION_NAME, self.organization),
                x509.NameAttribute(oid.NameOID.COMMON_NAME, self.common_name),
            ]
        )
