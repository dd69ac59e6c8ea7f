"""Read .xlsx and .csv uploads into header-normalised rows."""

from __future__ import annotations

import csv
import io
import re
import zipfile
from collections.abc import Iterator, Sequence
from dataclasses import dataclass, field
from datetime import date, datetime, time
from pathlib import PurePath
from typing import Any

from openpyxl import load_workbook
from openpyxl.utils.exceptions import InvalidFileException

from src.cellar.core.errors import ImportFileError, UnsupportedMediaType

_SEPARATORS = re.compile(r"[\s\-]+")


def normalize_header(value: Any) -> str:
    """``" Unit-Price "`` -> ``"unit_price"``."""
    if value is None:
        return ""
    return _SEPARATORS.sub("_", str(value).strip().lower()).strip("_")


@dataclass(frozen=True)
class SpreadsheetRow:
    """One data row; ``index`` is 1-based and excludes the header row."""

    index: int
    values: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Spreadsheet:
    headers: list[str]
    rows: list[SpreadsheetRow]


def _cell(value: Any) -> Any:
    """Empty cells are absent, text is trimmed, dates are ISO strings."""
    if value is None:
        return None
    if isinstance(value, str):
        value = value.strip()
        return value or None
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, (date, time)):
        return value.isoformat()
    return value


def _rows(headers: Sequence[str], raw_rows: Iterator[Sequence[Any]], max_rows: int) -> list[SpreadsheetRow]:
    rows: list[SpreadsheetRow] = []
    for index, raw in enumerate(raw_rows, start=1):
        values = {}
        for header, value in zip(headers, raw):
            cleaned = _cell(value)
            if header and cleaned is not None:
                values[header] = cleaned
        if not values:
            # Completely blank rows keep their number but are skipped
            continue
        if len(rows) >= max_rows:
            raise ImportFileError(f"File has more than {max_rows} data rows")
        rows.append(SpreadsheetRow(index=index, values=values))
    return rows


def _read_headers(first: Sequence[Any] | None) -> list[str]:
    headers = [normalize_header(v) for v in first or ()]
    if not any(headers):
        raise ImportFileError("File has no header row")
    duplicates = sorted({h for h in headers if h and headers.count(h) > 1})
    if duplicates:
        raise ImportFileError(f"Duplicate columns: {', '.join(duplicates)}")
    return headers


def _parse_xlsx(content: bytes, max_rows: int) -> Spreadsheet:
    try:
        workbook = load_workbook(io.BytesIO(content), read_only=True, data_only=True)
    except (InvalidFileException, zipfile.BadZipFile, KeyError, OSError) as exc:
        raise ImportFileError("File is not a readable .xlsx workbook") from exc
    try:
        sheet = workbook.active
        if sheet is None:
            raise ImportFileError("Workbook has no sheets")
        raw_rows = sheet.iter_rows(values_only=True)
        headers = _read_headers(next(raw_rows, None))
        return Spreadsheet(headers=headers, rows=_rows(headers, raw_rows, max_rows))
    finally:
        workbook.close()


def _parse_csv(content: bytes, max_rows: int) -> Spreadsheet:
    try:
        text = content.decode("utf-8-sig")
    except UnicodeDecodeError as exc:
        raise ImportFileError("CSV file must be UTF-8 encoded") from exc
    # Delimiter is whichever of , ; tab the header line uses most
    header_line = text.split("\n", 1)[0]
    delimiter = max((",", ";", "\t"), key=header_line.count)
    reader = csv.reader(io.StringIO(text), delimiter=delimiter)
    try:
        headers = _read_headers(next(reader, None))
        return Spreadsheet(headers=headers, rows=_rows(headers, reader, max_rows))
    except csv.Error as exc:
        raise ImportFileError(f"Malformed CSV: {exc}") from exc


def parse_spreadsheet(filename: str, content: bytes, max_rows: int = 10000) -> Spreadsheet:
    """Parse an uploaded spreadsheet by extension."""
    suffix = PurePath(filename or "").suffix.lower()
    if suffix == ".xlsx":
        return _parse_xlsx(content, max_rows)
    if suffix == ".csv":
        return _parse_csv(content, max_rows)
    raise UnsupportedMediaType(f"Unsupported spreadsheet type: {suffix or 'none'}")
