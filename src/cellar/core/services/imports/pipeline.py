"""Spreadsheet import: map columns, validate every row, persist the good ones."""

from __future__ import annotations

from typing import Any

from loguru import logger
from pydantic import BaseModel, Field
from sqlmodel import Session

from src.cellar.core.errors import FieldViolation, ImportFileError
from src.cellar.core.results import Conflict, Invalid, Ok
from src.cellar.core.services.imports.spreadsheet import (
    Spreadsheet,
    normalize_header,
    parse_spreadsheet,
)
from src.cellar.core.services.resource_service import ResourceService
from src.cellar.core.validation import validate_payload
from src.cellar.entities.registry import EntitySchema, FieldSpec, FieldType, SchemaRegistry
from src.cellar.runtime.config.config_data import ImportConfig


class RejectedRow(BaseModel):
    row: int = Field(description="1-based data row number, header excluded")
    errors: list[FieldViolation]


class ImportReport(BaseModel):
    filename: str
    total_rows: int = 0
    imported: int = 0
    rejected: list[RejectedRow] = Field(default_factory=list)
    created_ids: list[str] = Field(default_factory=list)
    ignored_columns: list[str] = Field(default_factory=list)
    dry_run: bool = False


def cell_value(spec: FieldSpec, value: Any) -> Any:
    """Fit a typed workbook cell to the field it lands in.

    Numbers in text or enum columns become their text; whole-number floats in
    integer columns become ints. Anything else is left for validation.
    """
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return value
    if spec.type not in (FieldType.TEXT, FieldType.ENUM, FieldType.INTEGER):
        return value
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return value if spec.type is FieldType.INTEGER else str(value)


def column_map(schema: EntitySchema) -> dict[str, str]:
    """Normalised header -> field name, covering names and aliases of writable fields."""
    mapping: dict[str, str] = {}
    for spec in schema.writable_fields:
        for label in (spec.name, *spec.aliases):
            mapping.setdefault(normalize_header(label), spec.name)
    return mapping


def resolve_columns(schema: EntitySchema, headers: list[str]) -> tuple[dict[str, str], list[str]]:
    """Match sheet headers to fields.

    Returns the header -> field mapping used for rows and the headers that
    were ignored. Raises ImportFileError when a required field has no column
    or two columns target the same field.
    """
    known = column_map(schema)
    used: dict[str, str] = {}
    ignored: list[str] = []
    for header in headers:
        if not header:
            continue
        target = known.get(header)
        if target is None:
            ignored.append(header)
            continue
        clash = next((h for h, f in used.items() if f == target), None)
        if clash is not None:
            raise ImportFileError(f"Columns '{clash}' and '{header}' both map to '{target}'")
        used[header] = target

    missing = [s.name for s in schema.fields if s.required and s.name not in used.values()]
    if missing:
        raise ImportFileError(f"Missing required column(s): {', '.join(missing)}")
    return used, ignored


class ImportPipeline:
    """Import one spreadsheet into one registry entity.

    Every row is validated with the entity's create validator. Valid rows are
    stored one transaction each, so a row that conflicts with stored data is
    reported without undoing the rows before it.
    """

    def __init__(
        self,
        session: Session,
        registry: SchemaRegistry,
        entity: str,
        config: ImportConfig | None = None,
    ) -> None:
        self._service = ResourceService(session, registry, entity)
        self._schema = registry.get(entity)
        self._create_model = registry.validator(entity, "create")
        self._config = config or ImportConfig()

    def run(self, filename: str, content: bytes, *, dry_run: bool = False) -> ImportReport:
        sheet = parse_spreadsheet(filename, content, self._config.max_rows)
        return self.import_sheet(filename, sheet, dry_run=dry_run)

    def import_sheet(self, filename: str, sheet: Spreadsheet, *, dry_run: bool = False) -> ImportReport:
        columns, ignored = resolve_columns(self._schema, sheet.headers)
        report = ImportReport(
            filename=filename,
            total_rows=len(sheet.rows),
            ignored_columns=ignored,
            dry_run=dry_run,
        )
        targets = {header: self._schema.field(name) for header, name in columns.items()}
        unique_fields = [s.name for s in self._schema.fields if s.unique]
        seen: dict[str, set[Any]] = {name: set() for name in unique_fields}

        with logger.contextualize(import_file=filename, entity=self._schema.name):
            for row in sheet.rows:
                data = {
                    columns[h]: cell_value(targets[h], v) for h, v in row.values.items() if h in columns
                }
                result = validate_payload(self._create_model, data)
                if isinstance(result, Invalid):
                    report.rejected.append(RejectedRow(row=row.index, errors=result.fields))
                    continue

                payload = result.value
                duplicates = self._duplicates(payload, seen, check_storage=dry_run)
                if duplicates:
                    report.rejected.append(RejectedRow(row=row.index, errors=duplicates))
                    continue
                for name in unique_fields:
                    value = getattr(payload, name)
                    if value is not None:
                        seen[name].add(value)

                if dry_run:
                    report.imported += 1
                    continue

                stored = self._service.create(payload)
                if isinstance(stored, Ok):
                    report.imported += 1
                    report.created_ids.append(stored.value.id)
                elif isinstance(stored, Conflict):
                    report.rejected.append(
                        RejectedRow(
                            row=row.index,
                            errors=[
                                FieldViolation(stored.field or "row", stored.message, "invalid_value")
                            ],
                        )
                    )
                else:
                    report.rejected.append(
                        RejectedRow(
                            row=row.index,
                            errors=[FieldViolation("row", "Row could not be stored", "invalid_value")],
                        )
                    )

            logger.bind(
                total_rows=report.total_rows,
                imported=report.imported,
                rejected=len(report.rejected),
                dry_run=dry_run,
            ).info("import.finished")
        return report

    def _duplicates(
        self, payload: BaseModel, seen: dict[str, set[Any]], *, check_storage: bool
    ) -> list[FieldViolation]:
        found = []
        for name, values in seen.items():
            value = getattr(payload, name)
            if value is None:
                continue
            if value in values:
                found.append(
                    FieldViolation(name, f"Duplicate {name} {value!r} earlier in the file", "invalid_value")
                )
            elif check_storage and self._service.repository.find_by(name, value) is not None:
                found.append(
                    FieldViolation(
                        name,
                        f"{self._schema.display_name} with this {name} already exists",
                        "invalid_value",
                    )
                )
        return found
