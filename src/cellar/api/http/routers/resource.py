"""CRUD routes generated for a registered entity."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from fastapi import APIRouter, Depends, Query, Request, Response, status
from pydantic import BaseModel, ValidationError
from sqlmodel import Session

from src.cellar.api.http.deps import get_current_principal, get_db_session
from src.cellar.api.http.middleware.validation import body_openapi, validated_body
from src.cellar.core.errors import FieldViolation, ValidationFailed
from src.cellar.core.results import Result, unwrap
from src.cellar.core.services.resource_service import Page, ResourceService
from src.cellar.core.validation import classify
from src.cellar.entities.core.repository import ListQuery
from src.cellar.entities.registry import EntitySchema, SchemaRegistry
from src.cellar.runtime.config.config_data import ApiConfig
from src.cellar.runtime.context import get_config


def result_to_response(result: Result[Any], status_code: int = status.HTTP_200_OK) -> Any:
    """Return the Ok value, or raise the API error the failed result maps to."""
    value = unwrap(result)
    if status_code == status.HTTP_204_NO_CONTENT:
        return Response(status_code=status.HTTP_204_NO_CONTENT)
    return value


def parse_sort(schema: EntitySchema, sort: str | None) -> str | None:
    if not sort:
        return None
    if sort.lstrip("-") not in schema.sortable_fields:
        raise ValidationFailed(
            [
                FieldViolation(
                    "sort",
                    f"Cannot sort by {sort.lstrip('-')!r}; choose one of "
                    + ", ".join(sorted(schema.sortable_fields)),
                    "invalid_value",
                )
            ]
        )
    return sort


def parse_filters(schema: EntitySchema, params: Mapping[str, str]) -> dict[str, Any]:
    """Equality filters for every filterable field present in the query string."""
    filters: dict[str, Any] = {}
    violations: list[FieldViolation] = []
    for spec in schema.filterable_fields:
        if spec.name not in params:
            continue
        try:
            filters[spec.name] = spec.coerce(params[spec.name])
        except ValidationError as exc:
            violations.extend(
                FieldViolation(spec.name, err["msg"], classify(err["type"]))
                for err in exc.errors(include_url=False)
            )
    if violations:
        raise ValidationFailed(violations)
    return filters


def build_resource_router(
    registry: SchemaRegistry, entity: str, api_config: ApiConfig | None = None
) -> APIRouter:
    """Create the list/create/read/update/replace/delete routes for ``entity``.

    Authentication is a router dependency, so it runs before body validation
    and before anything touches the database.
    """
    schema = registry.get(entity)
    read_model = registry.validator(entity, "read")
    api_config = api_config or get_config().api

    router = APIRouter(
        prefix=f"/{schema.route}",
        tags=[schema.route],
        dependencies=[Depends(get_current_principal)],
    )

    def service(session: Session) -> ResourceService:
        return ResourceService(session, registry, entity)

    @router.get("", response_model=Page[read_model], name=f"list_{entity}")
    def list_items(
        request: Request,
        limit: int = Query(api_config.default_page_size, ge=1, le=api_config.max_page_size),
        offset: int = Query(0, ge=0),
        sort: str | None = Query(None, description="Field name, prefix with '-' for descending"),
        q: str | None = Query(None, max_length=200, description="Case-insensitive search"),
        session: Session = Depends(get_db_session),
    ) -> Any:
        query = ListQuery(
            limit=limit,
            offset=offset,
            sort=parse_sort(schema, sort),
            search=q or None,
            filters=parse_filters(schema, request.query_params),
        )
        return result_to_response(service(session).list(query))

    @router.post(
        "",
        response_model=read_model,
        status_code=status.HTTP_201_CREATED,
        name=f"create_{entity}",
        openapi_extra=body_openapi(registry, entity, "create"),
    )
    def create_item(
        payload: BaseModel = Depends(validated_body(registry, entity, "create")),
        session: Session = Depends(get_db_session),
    ) -> Any:
        return result_to_response(service(session).create(payload))

    @router.get("/{item_id}", response_model=read_model, name=f"get_{entity}")
    def get_item(item_id: str, session: Session = Depends(get_db_session)) -> Any:
        return result_to_response(service(session).get(item_id))

    @router.patch(
        "/{item_id}",
        response_model=read_model,
        name=f"update_{entity}",
        openapi_extra=body_openapi(registry, entity, "update"),
    )
    def update_item(
        item_id: str,
        payload: BaseModel = Depends(validated_body(registry, entity, "update")),
        session: Session = Depends(get_db_session),
    ) -> Any:
        return result_to_response(service(session).update(item_id, payload))

    @router.put(
        "/{item_id}",
        response_model=read_model,
        name=f"replace_{entity}",
        openapi_extra=body_openapi(registry, entity, "replace"),
    )
    def replace_item(
        item_id: str,
        payload: BaseModel = Depends(validated_body(registry, entity, "replace")),
        session: Session = Depends(get_db_session),
    ) -> Any:
        return result_to_response(service(session).replace(item_id, payload))

    @router.delete(
        "/{item_id}",
        status_code=status.HTTP_204_NO_CONTENT,
        response_class=Response,
        name=f"delete_{entity}",
    )
    def delete_item(item_id: str, session: Session = Depends(get_db_session)) -> Response:
        return result_to_response(service(session).delete(item_id), status.HTTP_204_NO_CONTENT)

    return router
