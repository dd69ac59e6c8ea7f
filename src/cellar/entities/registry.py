"""Schema registry: one declaration per entity, two derived artifacts.

An :class:`EntitySchema` lists the fields of an entity once. From it the
registry derives

* the persistence model (a SQLModel table class) with :func:`to_storage_schema`
* the input/output validators (Pydantic models) with :func:`to_validation_schema`

so table columns and validation rules can never drift apart. Declarations are
checked when the schema is built; a bad declaration fails at import/startup
with :class:`SchemaDefinitionError`.
"""

from __future__ import annotations

import types
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Literal, Optional

import sqlalchemy as sa
from pydantic import AfterValidator, BaseModel, ConfigDict, TypeAdapter, create_model
from pydantic import Field as PydanticField
from sqlmodel import Field, SQLModel

from src.cellar.entities.core._base import SYSTEM_FIELDS, Entity, EntityTable, as_utc

ValidationMode = Literal["create", "replace", "update", "read"]
VALIDATION_MODES: tuple[ValidationMode, ...] = ("create", "replace", "update", "read")


class SchemaDefinitionError(ValueError):
    """An entity declaration is inconsistent or references an unknown field."""


class FieldType(str, Enum):
    TEXT = "text"
    INTEGER = "integer"
    NUMBER = "number"
    BOOLEAN = "boolean"
    TIMESTAMP = "timestamp"
    ENUM = "enum"


_PYTHON_TYPES: dict[FieldType, type] = {
    FieldType.TEXT: str,
    FieldType.INTEGER: int,
    FieldType.NUMBER: float,
    FieldType.BOOLEAN: bool,
    FieldType.TIMESTAMP: datetime,
    FieldType.ENUM: str,
}


@dataclass(frozen=True)
class FieldSpec:
    """Declaration of a single entity field."""

    name: str
    type: FieldType
    required: bool = False
    default: Any = None
    description: str = ""
    min_length: int | None = None
    max_length: int | None = None
    minimum: float | None = None
    maximum: float | None = None
    choices: tuple[str, ...] = ()
    unique: bool = False
    indexed: bool = False
    filterable: bool = False
    writable: bool = True
    aliases: tuple[str, ...] = ()

    @property
    def python_type(self) -> type:
        return _PYTHON_TYPES[self.type]

    @property
    def nullable(self) -> bool:
        return not self.required and self.default is None

    def input_annotation(self) -> Any:
        """Type annotation with every validation rule attached."""
        if self.type is FieldType.ENUM:
            base: Any = Literal[self.choices]
        else:
            base = self.python_type

        constraints: dict[str, Any] = {}
        if self.min_length is not None:
            constraints["min_length"] = self.min_length
        if self.max_length is not None:
            constraints["max_length"] = self.max_length
        if self.minimum is not None:
            constraints["ge"] = self.minimum
        if self.maximum is not None:
            constraints["le"] = self.maximum

        metadata: list[Any] = [PydanticField(description=self.description or None, **constraints)]
        if self.type is FieldType.TIMESTAMP:
            metadata.append(AfterValidator(as_utc))
        return Annotated[base, *metadata]

    def coerce(self, raw: Any) -> Any:
        """Coerce a raw (query string) value to the field's Python type."""
        return TypeAdapter(self.input_annotation()).validate_python(raw)


@dataclass(frozen=True)
class EntitySchema:
    """Canonical declaration of an entity."""

    name: str
    table_name: str
    route: str
    fields: tuple[FieldSpec, ...]
    title: str = ""
    default_sort: str = "created_at"
    search_field: str | None = None

    def __post_init__(self) -> None:
        seen: set[str] = set()
        for spec in self.fields:
            if not spec.name.isidentifier():
                raise SchemaDefinitionError(f"{self.name}: invalid field name {spec.name!r}")
            if spec.name in SYSTEM_FIELDS:
                raise SchemaDefinitionError(
                    f"{self.name}: field {spec.name!r} is managed by the system"
                )
            if spec.name in seen:
                raise SchemaDefinitionError(f"{self.name}: duplicate field {spec.name!r}")
            seen.add(spec.name)
            if spec.type is FieldType.ENUM and not spec.choices:
                raise SchemaDefinitionError(f"{self.name}.{spec.name}: enum field needs choices")
            if spec.type is not FieldType.ENUM and spec.choices:
                raise SchemaDefinitionError(
                    f"{self.name}.{spec.name}: choices are only valid on enum fields"
                )
            if spec.required and spec.default is not None:
                raise SchemaDefinitionError(
                    f"{self.name}.{spec.name}: a required field cannot have a default"
                )
            if spec.required and not spec.writable:
                raise SchemaDefinitionError(
                    f"{self.name}.{spec.name}: a required field must be writable"
                )

        sort_field = self.default_sort.lstrip("-")
        if sort_field not in seen | SYSTEM_FIELDS:
            raise SchemaDefinitionError(f"{self.name}: unknown default sort field {sort_field!r}")
        if self.search_field is not None and self.search_field not in seen:
            raise SchemaDefinitionError(
                f"{self.name}: unknown search field {self.search_field!r}"
            )

    @property
    def display_name(self) -> str:
        return self.title or self.name.replace("_", " ").title()

    @property
    def field_names(self) -> tuple[str, ...]:
        return tuple(f.name for f in self.fields)

    @property
    def writable_fields(self) -> tuple[FieldSpec, ...]:
        return tuple(f for f in self.fields if f.writable)

    @property
    def filterable_fields(self) -> tuple[FieldSpec, ...]:
        return tuple(f for f in self.fields if f.filterable)

    @property
    def sortable_fields(self) -> frozenset[str]:
        return frozenset(self.field_names) | SYSTEM_FIELDS

    def field(self, name: str) -> FieldSpec:
        for spec in self.fields:
            if spec.name == name:
                return spec
        raise SchemaDefinitionError(f"{self.name}: unknown field {name!r}")


def _class_name(schema: EntitySchema, suffix: str) -> str:
    return "".join(part.capitalize() for part in schema.name.split("_")) + suffix


def _storage_column(spec: FieldSpec) -> tuple[Any, Any]:
    annotation: Any = spec.python_type
    if spec.nullable:
        annotation = Optional[annotation]

    kwargs: dict[str, Any] = {
        "nullable": spec.nullable,
        "index": spec.indexed,
        "description": spec.description or None,
    }
    if spec.unique:
        kwargs["unique"] = True
    if not spec.required:
        kwargs["default"] = spec.default

    if spec.type is FieldType.TIMESTAMP:
        kwargs["sa_type"] = sa.DateTime(timezone=True)
    elif spec.type is FieldType.ENUM:
        kwargs["sa_type"] = sa.String(max(len(choice) for choice in spec.choices))
    elif spec.type is FieldType.TEXT and spec.max_length is not None:
        kwargs["max_length"] = spec.max_length

    return annotation, Field(**kwargs)


def to_storage_schema(schema: EntitySchema) -> type[SQLModel]:
    """Derive the SQLModel table class for an entity.

    The table is registered on the shared ``SQLModel.metadata``; call this once
    per schema (the registry caches the result).
    """
    base = types.new_class(
        _class_name(schema, "TableBase"),
        (EntityTable,),
        exec_body=lambda ns: ns.update(
            {"__tablename__": schema.table_name, "__module__": __name__}
        ),
    )
    columns = {spec.name: _storage_column(spec) for spec in schema.fields}
    return create_model(
        _class_name(schema, "Table"),
        __base__=base,
        __module__=__name__,
        __cls_kwargs__={"table": True},
        **columns,
    )


class InputModel(BaseModel):
    """Base for derived input validators."""

    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)


def to_validation_schema(schema: EntitySchema, mode: ValidationMode) -> type[BaseModel]:
    """Derive the validator for an entity in the given mode.

    ``create``/``replace`` enforce required fields and apply declared defaults,
    ``update`` accepts any subset of the writable fields (use
    ``model_dump(exclude_unset=True)``), ``read`` describes the stored entity
    including system fields.
    """
    if mode not in VALIDATION_MODES:
        raise SchemaDefinitionError(f"unknown validation mode {mode!r}")

    definitions: dict[str, Any] = {}
    if mode == "read":
        for spec in schema.fields:
            annotation = spec.python_type
            if spec.type is FieldType.TIMESTAMP:
                annotation = Annotated[datetime, AfterValidator(as_utc)]
            if spec.nullable:
                annotation = Optional[annotation]
            definitions[spec.name] = (annotation, spec.default)
        return create_model(
            _class_name(schema, ""),
            __base__=Entity,
            __module__=__name__,
            **definitions,
        )

    for spec in schema.writable_fields:
        annotation = spec.input_annotation()
        if mode == "update":
            # Omitted fields stay unset; explicit nulls are only accepted on
            # nullable columns.
            if spec.nullable:
                annotation = Optional[annotation]
            definitions[spec.name] = (annotation, None)
        elif spec.required:
            definitions[spec.name] = (annotation, ...)
        else:
            if spec.nullable:
                annotation = Optional[annotation]
            definitions[spec.name] = (annotation, spec.default)

    suffix = {"create": "Create", "replace": "Replace", "update": "Update"}[mode]
    return create_model(
        _class_name(schema, suffix),
        __base__=InputModel,
        __module__=__name__,
        **definitions,
    )


@dataclass
class SchemaRegistry:
    """Holds entity declarations and caches their derived artifacts."""

    _schemas: dict[str, EntitySchema] = field(default_factory=dict)
    _tables: dict[str, type[SQLModel]] = field(default_factory=dict)
    _validators: dict[tuple[str, str], type[BaseModel]] = field(default_factory=dict)

    def register(self, schema: EntitySchema) -> EntitySchema:
        existing = self._schemas.get(schema.name)
        if existing is not None:
            if existing is schema:
                return schema
            raise SchemaDefinitionError(f"entity {schema.name!r} is already registered")
        if any(s.route == schema.route for s in self._schemas.values()):
            raise SchemaDefinitionError(f"route {schema.route!r} is already taken")
        self._schemas[schema.name] = schema
        return schema

    def get(self, name: str) -> EntitySchema:
        try:
            return self._schemas[name]
        except KeyError:
            raise SchemaDefinitionError(f"unknown entity {name!r}") from None

    def names(self) -> list[str]:
        return list(self._schemas)

    def schemas(self) -> list[EntitySchema]:
        return list(self._schemas.values())

    def table(self, name: str) -> type[SQLModel]:
        if name not in self._tables:
            self._tables[name] = to_storage_schema(self.get(name))
        return self._tables[name]

    def tables(self) -> list[type[SQLModel]]:
        """Materialize the table of every registered entity."""
        return [self.table(name) for name in self._schemas]

    def validator(self, name: str, mode: ValidationMode) -> type[BaseModel]:
        key = (name, mode)
        if key not in self._validators:
            self._validators[key] = to_validation_schema(self.get(name), mode)
        return self._validators[key]


registry = SchemaRegistry()
