import csv
import io
import time
from typing import Any

from authlib.jose import jwt
from openpyxl import Workbook
from PIL import Image


def mint_token(key: Any, kid: str, claims: dict[str, Any], alg: str = "RS256") -> str:
    """Sign ``claims`` with sensible defaults for the time claims."""
    now = int(time.time())
    payload = {"iat": now, "exp": now + 300, **claims}
    return jwt.encode({"alg": alg, "kid": kid}, payload, key).decode("ascii")


def xlsx_bytes(rows: list[list[Any]]) -> bytes:
    workbook = Workbook()
    sheet = workbook.active
    for row in rows:
        sheet.append(row)
    buffer = io.BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


def csv_bytes(rows: list[list[Any]], delimiter: str = ",") -> bytes:
    buffer = io.StringIO()
    writer = csv.writer(buffer, delimiter=delimiter)
    for row in rows:
        writer.writerow(row)
    return buffer.getvalue().encode("utf-8")


def image_bytes(fmt: str = "PNG", size: tuple[int, int] = (4, 4), color: str = "red") -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", size, color).save(buffer, format=fmt)
    return buffer.getvalue()


def product_rows(count: int, bad_rows: dict[int, dict[str, Any]] | None = None) -> list[list[Any]]:
    """Header plus ``count`` valid product rows; ``bad_rows`` overrides cells by 1-based row."""
    headers = ["Name", "Producer", "Year", "Colour", "SKU", "Qty", "Price"]
    rows: list[list[Any]] = [headers]
    for number in range(1, count + 1):
        values = {
            "Name": f"Wine {number}",
            "Producer": "Domaine Test",
            "Year": 2000 + number,
            "Colour": "red",
            "SKU": f"SKU-{number:03d}",
            "Qty": number,
            "Price": 10.5,
        }
        values.update((bad_rows or {}).get(number, {}))
        rows.append([values[h] for h in headers])
    return rows
