"""Turn Pydantic validation errors into client-facing field violations."""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from typing import Any

from pydantic import BaseModel, ValidationError

from src.cellar.core.errors import FieldViolation, ViolationReason
from src.cellar.core.results import Invalid, Ok

_OUT_OF_RANGE = frozenset(
    {
        "greater_than",
        "greater_than_equal",
        "less_than",
        "less_than_equal",
        "string_too_short",
        "string_too_long",
        "too_short",
        "too_long",
        "multiple_of",
    }
)

# Location prefixes FastAPI adds to request parameter errors.
_LOCATION_PREFIXES = frozenset({"body", "query", "path", "header", "cookie"})


def classify(error_type: str) -> ViolationReason:
    """Map a Pydantic error type to a violation reason."""
    if error_type == "missing":
        return "required"
    if error_type == "extra_forbidden":
        return "unknown_field"
    if error_type in _OUT_OF_RANGE:
        return "out_of_range"
    if error_type.endswith(("_type", "_parsing")) or error_type in {
        "int_from_float",
        "model_attributes_type",
        "dict_type",
    }:
        return "wrong_type"
    return "invalid_value"


def field_path(loc: Sequence[Any]) -> str:
    parts = [str(part) for part in loc]
    if len(parts) > 1 and parts[0] in _LOCATION_PREFIXES:
        parts = parts[1:]
    return ".".join(parts) or "body"


def violations_from_errors(errors: Iterable[Mapping[str, Any]]) -> list[FieldViolation]:
    """Convert every error (never just the first) into a FieldViolation."""
    return [
        FieldViolation(
            field=field_path(error.get("loc", ())),
            message=error.get("msg", "Invalid value"),
            reason=classify(error.get("type", "")),
        )
        for error in errors
    ]


def validate_payload(model: type[BaseModel], data: Any) -> Ok[BaseModel] | Invalid:
    """Validate a whole payload against a model, collecting all violations."""
    try:
        return Ok(model.model_validate(data))
    except ValidationError as exc:
        return Invalid(violations_from_errors(exc.errors(include_url=False)))
