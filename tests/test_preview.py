from datetime import datetime

import pytest

from app.finsync.errors import DecodeFailureError
from app.finsync.modules.documents.parsers.spreadsheet import format_cell, parse_spreadsheet_preview
from helpers import xlsx_bytes


def test_xlsx_first_sheet_with_headers():
    p = parse_spreadsheet_preview(xlsx_bytes(("Name", "Amount"), ("Acme", 100)), "datos.xlsx")
    assert p.sheet_name == "Hoja1"
    assert p.headers == ["Name", "Amount"]
    assert p.rows == [["Acme", "100"]]
    assert p.total_rows == 1
    assert p.truncated is False


def test_blank_header_and_missing_cells():
    p = parse_spreadsheet_preview(xlsx_bytes(("Name", None, "Total"), ("Acme",), ("Beta", 2, 3.5)))
    assert p.headers == ["Name", "Columna 2", "Total"]
    assert p.rows == [["Acme", "-", "-"], ["Beta", "2", "3.5"]]


def test_csv_with_semicolons_and_bom():
    data = "\ufeffCliente;Monto\nAcme;100\n;\nBeta;\n".encode("utf-8")
    p = parse_spreadsheet_preview(data, "datos.csv")
    assert p.sheet_name is None
    assert p.headers == ["Cliente", "Monto"]
    assert p.rows == [["Acme", "100"], ["Beta", "-"]]


def test_cp1252_csv_is_decoded():
    data = "Descripción,Monto\nPréstamo,5\n".encode("cp1252")
    p = parse_spreadsheet_preview(data, "datos.csv")
    assert p.headers == ["Descripción", "Monto"]
    assert p.rows == [["Préstamo", "5"]]


def test_max_rows_truncates():
    rows = [("n",)] + [(i,) for i in range(10)]
    p = parse_spreadsheet_preview(xlsx_bytes(*rows), max_rows=3)
    assert len(p.rows) == 3
    assert p.total_rows == 10
    assert p.truncated is True


def test_empty_workbook_gives_empty_preview():
    p = parse_spreadsheet_preview(xlsx_bytes())
    assert p.is_empty
    assert p.rows == []


@pytest.mark.parametrize(
    "data,name",
    [
        (b"", "a.csv"),
        (b"PK\x03\x04not really a zip", "a.xlsx"),
        (b"\xd0\xcf\x11\xe0\xa1\xb1\x1a\xe1" + b"\x00" * 64, "old.xls"),
        (b"plain text", "a.xlsx"),
        (b"\x00\x01\x02binary", "a.csv"),
    ],
)
def test_unreadable_input_is_a_decode_failure(data, name):
    with pytest.raises(DecodeFailureError):
        parse_spreadsheet_preview(data, name)


def test_format_cell():
    assert format_cell(None) is None
    assert format_cell(True) == "true"
    assert format_cell(3.0) == "3"
    assert format_cell(2.25) == "2.25"
    assert format_cell(datetime(2026, 1, 15)) == "2026-01-15"
    assert format_cell(datetime(2026, 1, 15, 9, 30)) == "2026-01-15 09:30:00"
    assert format_cell("x") == "x"
