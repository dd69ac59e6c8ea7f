"""Error taxonomy shared by the API, the services and the import pipeline.

Every error carries the HTTP status it maps to and a client-safe message.
The API layer renders them as the JSON error envelope::

    {"error": "...", "fields": [{"field": ..., "message": ..., "reason": ...}]}
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Literal

ViolationReason = Literal[
    "required",
    "wrong_type",
    "out_of_range",
    "invalid_value",
    "unknown_field",
    "malformed",
]


@dataclass(frozen=True)
class FieldViolation:
    """One violated rule on one input field."""

    field: str
    message: str
    reason: ViolationReason = "invalid_value"

    def to_dict(self) -> dict[str, str]:
        return asdict(self)


class CellarError(Exception):
    """Base class for errors surfaced to API clients."""

    status_code: int = 500
    default_message: str = "Internal Server Error"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_envelope(self) -> dict[str, Any]:
        return {"error": self.message}


class ValidationFailed(CellarError):
    """Input payload violated one or more field rules."""

    status_code = 400
    default_message = "Validation failed"

    def __init__(
        self, fields: list[FieldViolation], message: str | None = None
    ) -> None:
        super().__init__(message)
        self.fields = list(fields)

    def to_envelope(self) -> dict[str, Any]:
        return {"error": self.message, "fields": [f.to_dict() for f in self.fields]}


class AuthError(CellarError):
    status_code = 401
    default_message = "Authentication required"


class NotFoundError(CellarError):
    status_code = 404
    default_message = "Resource not found"


class ConflictError(CellarError):
    status_code = 409
    default_message = "Resource conflicts with existing data"


class PayloadTooLarge(CellarError):
    status_code = 413
    default_message = "Uploaded file is too large"


class UnsupportedMediaType(CellarError):
    status_code = 415
    default_message = "Unsupported file type"


class ImportFileError(CellarError):
    """The uploaded file as a whole could not be imported."""

    status_code = 400
    default_message = "File could not be imported"


class UnexpectedError(CellarError):
    """Catch-all; the message is always generic, details go to the logs."""

    status_code = 500
    default_message = "Internal Server Error"
