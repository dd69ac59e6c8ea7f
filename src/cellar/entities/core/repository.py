"""Generic data-access layer for registry entities."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import func
from sqlmodel import Session, SQLModel, select

from src.cellar.entities.core._base import utcnow
from src.cellar.entities.registry import EntitySchema


@dataclass(frozen=True)
class ListQuery:
    """Filtering, search, sorting and paging for list reads."""

    limit: int = 50
    offset: int = 0
    sort: str | None = None
    search: str | None = None
    filters: Mapping[str, Any] = field(default_factory=dict)


class EntityRepository:
    """Data-access layer for one entity table.

    Repositories never commit; the caller owns the transaction.
    """

    def __init__(self, session: Session, schema: EntitySchema, table: type[SQLModel]) -> None:
        self._session = session
        self._schema = schema
        self._table = table

    @property
    def schema(self) -> EntitySchema:
        return self._schema

    def get(self, item_id: str) -> SQLModel | None:
        return self._session.get(self._table, item_id)

    def find_by(self, field_name: str, value: Any) -> SQLModel | None:
        """First row whose ``field_name`` equals ``value``."""
        statement = select(self._table).where(getattr(self._table, field_name) == value)
        return self._session.exec(statement).first()

    def create(self, data: Mapping[str, Any]) -> SQLModel:
        row = self._table(**data)
        self._session.add(row)
        self._session.flush()
        return row

    def update(self, item_id: str, data: Mapping[str, Any]) -> SQLModel | None:
        """Apply ``data`` to the stored row; returns None when the row is missing."""
        row = self.get(item_id)
        if row is None:
            return None
        for name, value in data.items():
            setattr(row, name, value)
        row.updated_at = utcnow()
        self._session.add(row)
        self._session.flush()
        return row

    def delete(self, item_id: str) -> bool:
        row = self.get(item_id)
        if row is None:
            return False
        self._session.delete(row)
        self._session.flush()
        return True

    def list(self, query: ListQuery) -> tuple[list[SQLModel], int]:
        statement = select(self._table)
        count_statement = select(func.count()).select_from(self._table)

        conditions = [
            getattr(self._table, name) == value for name, value in query.filters.items()
        ]
        if query.search and self._schema.search_field:
            column = getattr(self._table, self._schema.search_field)
            conditions.append(func.lower(column).contains(query.search.lower(), autoescape=True))
        for condition in conditions:
            statement = statement.where(condition)
            count_statement = count_statement.where(condition)

        sort = query.sort or self._schema.default_sort
        column = getattr(self._table, sort.lstrip("-"))
        order = column.desc() if sort.startswith("-") else column.asc()
        # id as tie-breaker keeps pages stable
        statement = statement.order_by(order, self._table.id).offset(query.offset).limit(query.limit)

        total = self._session.exec(count_statement).one()
        return list(self._session.exec(statement).all()), total

    def list_all(self) -> list[SQLModel]:
        return list(self._session.exec(select(self._table)).all())
