"""Resource service: CRUD for registry entities with classified outcomes."""

from __future__ import annotations

from collections.abc import Callable, Mapping
from typing import Any, Generic, TypeVar

from loguru import logger
from pydantic import BaseModel
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session, SQLModel

from src.cellar.core.results import Conflict, NotFound, Ok, Result, Unexpected
from src.cellar.entities.core.repository import EntityRepository, ListQuery
from src.cellar.entities.registry import EntitySchema, SchemaRegistry

T = TypeVar("T")


class Page(BaseModel, Generic[T]):
    """One page of a list read."""

    items: list[T]
    total: int
    limit: int
    offset: int


class ResourceService:
    """Create/read/update/delete one entity and classify every outcome.

    Each mutation commits exactly once; a failed mutation is rolled back and
    reported as Conflict (constraint violations) or Unexpected.
    """

    def __init__(self, session: Session, registry: SchemaRegistry, entity: str) -> None:
        self._session = session
        self._schema: EntitySchema = registry.get(entity)
        self._read_model = registry.validator(entity, "read")
        self._replace_model = registry.validator(entity, "replace")
        self._repository = EntityRepository(session, self._schema, registry.table(entity))

    @property
    def schema(self) -> EntitySchema:
        return self._schema

    @property
    def repository(self) -> EntityRepository:
        return self._repository

    def _to_read(self, row: SQLModel) -> BaseModel:
        return self._read_model.model_validate(row, from_attributes=True)

    def _not_found(self, item_id: str) -> NotFound:
        return NotFound(self._schema.display_name, item_id)

    def _conflict(self, exc: IntegrityError) -> Conflict:
        detail = str(exc.orig).lower()
        for spec in self._schema.fields:
            if spec.unique and spec.name in detail:
                return Conflict(
                    f"{self._schema.display_name} with this {spec.name} already exists", spec.name
                )
        return Conflict(f"{self._schema.display_name} conflicts with existing data")

    def _mutate(self, operation: str, action: Callable[[], T]) -> Result[T]:
        try:
            value = action()
            self._session.commit()
            return Ok(value)
        except IntegrityError as exc:
            self._session.rollback()
            logger.bind(entity=self._schema.name, operation=operation).warning(
                "Constraint violation: {}", exc.orig
            )
            return self._conflict(exc)
        except SQLAlchemyError:
            self._session.rollback()
            logger.bind(entity=self._schema.name, operation=operation, alert=True).exception(
                "Persistence failure"
            )
            return Unexpected(f"{operation} failed")

    def create(self, payload: BaseModel | Mapping[str, Any]) -> Result[BaseModel]:
        data = payload.model_dump() if isinstance(payload, BaseModel) else dict(payload)

        def action() -> BaseModel:
            return self._to_read(self._repository.create(data))

        result = self._mutate("create", action)
        if isinstance(result, Ok):
            logger.bind(entity=self._schema.name, id=result.value.id).info("entity.created")
        return result

    def get(self, item_id: str) -> Result[BaseModel]:
        try:
            row = self._repository.get(item_id)
        except SQLAlchemyError:
            logger.bind(entity=self._schema.name, alert=True).exception("Read failure")
            return Unexpected("read failed")
        if row is None:
            return self._not_found(item_id)
        return Ok(self._to_read(row))

    def list(self, query: ListQuery) -> Result[Page]:
        try:
            rows, total = self._repository.list(query)
        except SQLAlchemyError:
            logger.bind(entity=self._schema.name, alert=True).exception("List failure")
            return Unexpected("list failed")
        return Ok(
            Page(
                items=[self._to_read(row) for row in rows],
                total=total,
                limit=query.limit,
                offset=query.offset,
            )
        )

    def _apply(self, operation: str, item_id: str, data: Mapping[str, Any]) -> Result[BaseModel]:
        missing = object()

        def action() -> Any:
            row = self._repository.update(item_id, data)
            return missing if row is None else self._to_read(row)

        result = self._mutate(operation, action)
        if isinstance(result, Ok) and result.value is missing:
            return self._not_found(item_id)
        if isinstance(result, Ok):
            logger.bind(entity=self._schema.name, id=item_id, fields=sorted(data)).info(
                "entity.updated"
            )
        return result

    def update(self, item_id: str, payload: BaseModel) -> Result[BaseModel]:
        """Partial update: only the fields present in the payload change."""
        return self._apply("update", item_id, payload.model_dump(exclude_unset=True))

    def replace(self, item_id: str, payload: BaseModel) -> Result[BaseModel]:
        """Full replacement of every writable field; omitted fields reset to defaults."""
        full = self._replace_model.model_validate(payload.model_dump(exclude_unset=True))
        return self._apply("replace", item_id, full.model_dump())

    def set_fields(self, item_id: str, data: Mapping[str, Any]) -> Result[BaseModel]:
        """Write system-managed fields (e.g. stored file references)."""
        unknown = set(data) - set(self._schema.field_names)
        if unknown:
            raise ValueError(f"unknown fields for {self._schema.name}: {sorted(unknown)}")
        return self._apply("set_fields", item_id, data)

    def delete(self, item_id: str) -> Result[None]:
        result = self._mutate("delete", lambda: self._repository.delete(item_id))
        if isinstance(result, Ok):
            if not result.value:
                return self._not_found(item_id)
            logger.bind(entity=self._schema.name, id=item_id).info("entity.deleted")
            return Ok(None)
        return result
