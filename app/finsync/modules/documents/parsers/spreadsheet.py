from __future__ import annotations

import csv
import io
from dataclasses import dataclass, field
from datetime import date, datetime, time
from typing import Any, Iterable

from app.finsync.constants import BLANK_HEADER_PREFIX, NULL_CELL_PLACEHOLDER
from app.finsync.errors import DecodeFailureError

_ZIP_MAGIC = b"PK\x03\x04"
_OLE2_MAGIC = b"\xd0\xcf\x11\xe0\xa1\xb1\x1a\xe1"


@dataclass(frozen=True)
class SheetPreview:
    headers: list[str] = field(default_factory=list)
    rows: list[list[str]] = field(default_factory=list)
    sheet_name: str | None = None
    total_rows: int = 0
    truncated: bool = False

    @property
    def is_empty(self) -> bool:
        return not self.headers


def format_cell(value: Any) -> str | None:
    """String form of a cell value; None stays None (rendered as a placeholder)."""
    if value is None:
        return None
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float):
        if value.is_integer():
            return str(int(value))
        return repr(value)
    if isinstance(value, datetime):
        if value.time() == time(0, 0):
            return value.date().isoformat()
        return value.isoformat(sep=" ")
    if isinstance(value, (date, time)):
        return value.isoformat()
    return str(value)


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _build_preview(raw_rows: Iterable[Iterable[Any]], *, sheet_name: str | None, max_rows: int | None) -> SheetPreview:
    rows = [list(r) for r in raw_rows]
    rows = [r for r in rows if not all(_is_blank(v) for v in r)]
    if not rows:
        return SheetPreview(sheet_name=sheet_name)

    # Width = last column holding any value, so trailing empty columns don't show up.
    width = 0
    for r in rows:
        for idx in range(len(r) - 1, -1, -1):
            if not _is_blank(r[idx]):
                width = max(width, idx + 1)
                break

    header_row = rows[0]
    headers: list[str] = []
    for idx in range(width):
        v = header_row[idx] if idx < len(header_row) else None
        label = None if _is_blank(v) else format_cell(v)
        headers.append(label.strip() if label else f"{BLANK_HEADER_PREFIX} {idx + 1}")

    body = rows[1:]
    total = len(body)
    truncated = max_rows is not None and total > max_rows
    if truncated:
        body = body[:max_rows]

    out: list[list[str]] = []
    for r in body:
        cells: list[str] = []
        for idx in range(width):
            v = format_cell(r[idx]) if idx < len(r) else None
            cells.append(NULL_CELL_PLACEHOLDER if v is None else v)
        out.append(cells)

    return SheetPreview(headers=headers, rows=out, sheet_name=sheet_name, total_rows=total, truncated=truncated)


def _read_xlsx(file_bytes: bytes) -> tuple[str | None, list[tuple]]:
    from openpyxl import load_workbook

    try:
        wb = load_workbook(io.BytesIO(file_bytes), read_only=True, data_only=True)
    except Exception as e:
        raise DecodeFailureError(f"Could not read the workbook: {e}") from e
    try:
        if not wb.worksheets:
            raise DecodeFailureError("The workbook has no sheets.")
        ws = wb.worksheets[0]
        return ws.title, list(ws.iter_rows(values_only=True))
    except DecodeFailureError:
        raise
    except Exception as e:
        raise DecodeFailureError(f"Could not read the first sheet: {e}") from e
    finally:
        wb.close()


def _decode_text(file_bytes: bytes) -> str:
    try:
        return file_bytes.decode("utf-8-sig")
    except UnicodeDecodeError:
        # Excel on Windows exports CSV as cp1252.
        return file_bytes.decode("cp1252", errors="replace")


def _read_csv(file_bytes: bytes) -> list[list[str | None]]:
    if b"\x00" in file_bytes[:4096]:
        raise DecodeFailureError("The file is not a readable spreadsheet.")
    text = _decode_text(file_bytes)
    sample = text[:4096]
    try:
        dialect = csv.Sniffer().sniff(sample, delimiters=",;\t|")
    except csv.Error:
        dialect = csv.excel
    try:
        reader = csv.reader(io.StringIO(text), dialect)
        # Empty CSV fields are absent cells, not empty strings.
        return [[v if v != "" else None for v in row] for row in reader]
    except csv.Error as e:
        raise DecodeFailureError(f"Could not parse CSV: {e}") from e


def parse_spreadsheet_preview(
    file_bytes: bytes,
    file_name: str | None = None,
    max_rows: int | None = None,
) -> SheetPreview:
    """
    Decode an uploaded spreadsheet into a header row plus string cells.

    Only the first sheet is read. Row 0 supplies the headers (blank headers
    become "Columna N"); body cells are stringified, with "-" for empty cells,
    padded to a rectangle. Raises DecodeFailureError for anything unreadable.
    """
    if not file_bytes:
        raise DecodeFailureError("The file is empty.")

    name = (file_name or "").lower()
    if file_bytes.startswith(_ZIP_MAGIC):
        sheet_name, raw = _read_xlsx(file_bytes)
        return _build_preview(raw, sheet_name=sheet_name, max_rows=max_rows)
    if file_bytes.startswith(_OLE2_MAGIC):
        raise DecodeFailureError(
            "Legacy Excel 97-2003 (.xls) workbooks cannot be previewed. Download the file to view it."
        )
    if name.endswith(".xlsx"):
        raise DecodeFailureError("The file is not a valid .xlsx workbook.")
    return _build_preview(_read_csv(file_bytes), sheet_name=None, max_rows=max_rows)
