"""Request-body validation that runs before resource handlers.

``validated_body`` builds a FastAPI dependency bound to one registry
validator. The dependency reads the raw body, validates the *whole* payload
and either hands the parsed model to the handler or raises
``ValidationFailed`` listing every violated field. Handlers guarded by it
never run on invalid input, so nothing is persisted.
"""

from __future__ import annotations

import json
from collections.abc import Awaitable, Callable
from typing import Any

from fastapi import Request
from loguru import logger
from pydantic import BaseModel

from src.cellar.core.errors import FieldViolation, ValidationFailed
from src.cellar.core.results import unwrap
from src.cellar.core.validation import validate_payload
from src.cellar.entities.registry import SchemaRegistry, ValidationMode


async def read_json_object(request: Request) -> dict[str, Any]:
    raw = await request.body()
    if not raw.strip():
        raise ValidationFailed(
            [FieldViolation("body", "Request body is required", "required")]
        )
    try:
        data = json.loads(raw)
    except ValueError:
        raise ValidationFailed(
            [FieldViolation("body", "Request body must be valid JSON", "malformed")]
        ) from None
    if not isinstance(data, dict):
        raise ValidationFailed(
            [FieldViolation("body", "Request body must be a JSON object", "malformed")]
        )
    return data


def validated_body(
    registry: SchemaRegistry, entity: str, mode: ValidationMode
) -> Callable[[Request], Awaitable[BaseModel]]:
    """Create a dependency that validates the request body for ``entity``."""
    model = registry.validator(entity, mode)

    async def dependency(request: Request) -> BaseModel:
        data = await read_json_object(request)
        try:
            return unwrap(validate_payload(model, data))
        except ValidationFailed as exc:
            logger.bind(entity=entity, mode=mode, fields=[f.field for f in exc.fields]).info(
                "request.rejected"
            )
            raise

    dependency.__name__ = f"validated_{entity}_{mode}"
    return dependency


def body_openapi(registry: SchemaRegistry, entity: str, mode: ValidationMode) -> dict[str, Any]:
    """OpenAPI request body for routes whose body is read by ``validated_body``."""
    model = registry.validator(entity, mode)
    return {
        "requestBody": {
            "required": True,
            "content": {"application/json": {"schema": model.model_json_schema()}},
        }
    }
