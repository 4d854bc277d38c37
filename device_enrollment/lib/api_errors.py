"""Decoding of the controller's JSON error envelope."""

import json
from dataclasses import dataclass
from typing import TypedDict


class ErrorCause(TypedDict, total=False):
    message: str


class ErrorDetail(TypedDict, total=False):
    """``error`` object of an API error response."""

    code: str
    message: str
    cause: ErrorCause
    causeMessage: str  # older controllers


class ErrorEnvelope(TypedDict, total=False):
    error: ErrorDetail


@dataclass(frozen=True)
class ApiError:
    """Decoded ``{"error": {...}}`` body. Absent fields are empty strings."""

    code: str = ""
    message: str = ""
    cause: str = ""

    @classmethod
    def from_body(cls, body: bytes | str) -> "ApiError | None":
        """Decode an error envelope.

        Returns:
            ApiError, or None if the body is not a JSON object with an
            ``error`` object
        """
        try:
            envelope: ErrorEnvelope = json.loads(body)
        except (ValueError, UnicodeDecodeError):
            return None
        if not isinstance(envelope, dict):
            return None
        detail = envelope.get("error")
        if not isinstance(detail, dict):
            return None

        cause_obj = detail.get("cause")
        cause = _text(cause_obj.get("message")) if isinstance(cause_obj, dict) else ""
        if not cause:
            cause = _text(detail.get("causeMessage"))

        return cls(
            code=_text(detail.get("code")),
            message=_text(detail.get("message")),
            cause=cause,
        )


def _text(value: object) -> str:
    """Coerce an optional JSON scalar to a string."""
    if value is None:
        return ""
    return value if isinstance(value, str) else str(value)
