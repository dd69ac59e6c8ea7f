"""Discriminated results returned by resource services.

Routers never inspect exceptions from the persistence layer directly; the
service classifies every outcome into one of these variants and the router
turns it into a response with :func:`unwrap`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Generic, TypeVar, Union

from src.cellar.core.errors import (
    CellarError,
    ConflictError,
    FieldViolation,
    NotFoundError,
    UnexpectedError,
    ValidationFailed,
)

T = TypeVar("T")


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T


@dataclass(frozen=True)
class Invalid:
    fields: list[FieldViolation] = field(default_factory=list)


@dataclass(frozen=True)
class NotFound:
    entity: str
    item_id: str


@dataclass(frozen=True)
class Conflict:
    message: str
    field: str | None = None


@dataclass(frozen=True)
class Unexpected:
    message: str


Result = Union[Ok[T], Invalid, NotFound, Conflict, Unexpected]


def to_error(result: Invalid | NotFound | Conflict | Unexpected) -> CellarError:
    """Map a failed result to the matching API error."""
    if isinstance(result, Invalid):
        return ValidationFailed(result.fields)
    if isinstance(result, NotFound):
        return NotFoundError(f"{result.entity} {result.item_id} not found")
    if isinstance(result, Conflict):
        return ConflictError(result.message)
    return UnexpectedError()


def unwrap(result: Result[T]) -> T:
    """Return the value of an Ok result or raise the mapped API error."""
    if isinstance(result, Ok):
        return result.value
    raise to_error(result)
