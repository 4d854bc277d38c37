"""Request and result models for enrollment."""

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import NotRequired, TypedDict

from .keys import FILE_PREFIX, PEM_PREFIX, KeySource


class EnrollmentMethod(str, Enum):
    """Enrollment methods a token can name."""

    TOKEN = "token"
    CA_MUTUAL = "ca-mutual"
    CA_MUTUAL_NAMED = "ca-mutual-named"

    @classmethod
    def from_claim(cls, value: str) -> "EnrollmentMethod | None":
        """Resolve an ``em`` claim, including the controller's legacy names."""
        try:
            return cls(value)
        except ValueError:
            return _LEGACY_METHODS.get(value)


_LEGACY_METHODS = {
    "ott": EnrollmentMethod.TOKEN,
    "ottca": EnrollmentMethod.CA_MUTUAL,
    "ca": EnrollmentMethod.CA_MUTUAL_NAMED,
}


class IdentitySection(TypedDict):
    """Persisted ``id`` section of the identity config."""

    key: str
    cert: NotRequired[str]
    ca: NotRequired[str]


class IdentityConfigDict(TypedDict):
    """Persisted identity config file."""

    ztAPI: str
    id: IdentitySection


@dataclass
class EnrollmentRequest:
    """Caller-supplied enrollment options.

    Attributes:
        key: Private key path or engine reference; None generates a new key
        cert: Existing certificate path (required for CA methods)
        name: Human readable identity name (ca-mutual-named only)
        ca_override: PEM bundle of operator-trusted CAs
    """

    key: str | None = None
    cert: Path | None = None
    name: str | None = None
    ca_override: Path | None = None


@dataclass
class IdentityMaterial:
    """Key and certificate material owned by the enroller during a run."""

    key: KeySource
    cert_path: Path | None = None
    name: str | None = None
    issued_cert: str | None = None
    ca_bundle: str | None = None


@dataclass
class IdentityConfig:
    """Identity config returned to the caller.

    ``key``, ``cert`` and ``ca`` hold the textual forms used on disk:
    ``file://<abs>``, ``pem:<PEM>`` or an engine reference.
    """

    api_url: str
    key: str
    cert: str | None = None
    ca: str | None = None

    @classmethod
    def from_identity(cls, api_url: str, identity: IdentityMaterial) -> "IdentityConfig":
        """Render identity material into config values."""
        cert = None
        if identity.issued_cert is not None:
            cert = PEM_PREFIX + identity.issued_cert
        elif identity.cert_path is not None:
            cert = FILE_PREFIX + str(identity.cert_path)
        ca = PEM_PREFIX + identity.ca_bundle if identity.ca_bundle else None
        return cls(api_url=api_url, key=identity.key.to_config_value(), cert=cert, ca=ca)

    def to_dict(self) -> IdentityConfigDict:
        """Return the persisted JSON shape, omitting absent fields."""
        section: IdentitySection = {"key": self.key}
        if self.cert:
            section["cert"] = self.cert
        if self.ca:
            section["ca"] = self.ca
        return {"ztAPI": self.api_url, "id": section}


@dataclass
class EnrollmentResult:
    """Successful enrollment outcome.

    ``issued_certificate`` is the PEM returned by the controller for token
    enrollment, and None for the CA methods which confirm an existing
    certificate instead of issuing one.
    """

    config: IdentityConfig
    issued_certificate: str | None = None
