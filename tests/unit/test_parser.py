"""Unit tests for tabular file parsing."""
from datetime import datetime

import pandas as pd
import pytest

from usage_ingest.errors import FileParseError
from usage_ingest.parser import file_extension, parse_file


def test_parse_csv_keeps_text_and_maps_empty_cells_to_none():
    content = b"usageDate,productName,tokensConsumed\n2024-01-01,Revit,12.5\n2024-01-02,,3\n"

    parsed = parse_file(content, "usage.csv")

    assert parsed.headers == ["usageDate", "productName", "tokensConsumed"]
    assert parsed.rows == [
        {"usageDate": "2024-01-01", "productName": "Revit", "tokensConsumed": "12.5"},
        {"usageDate": "2024-01-02", "productName": None, "tokensConsumed": "3"},
    ]


def test_parse_csv_strips_bom_and_header_whitespace():
    content = b"\xef\xbb\xbf Event Date , User Email\n2024-01-01,a@b.com\n"

    parsed = parse_file(content, "events.CSV")

    assert parsed.headers == ["Event Date", "User Email"]
    assert parsed.rows[0]["Event Date"] == "2024-01-01"


def test_parse_csv_skips_blank_lines():
    content = b"a,b\n1,2\n\n3,4\n\n"

    parsed = parse_file(content, "data.csv")

    assert [r["a"] for r in parsed.rows] == ["1", "3"]


def test_parse_csv_does_not_infer_types():
    parsed = parse_file(b"id,code\n001,NA\n", "data.csv")
    assert parsed.rows == [{"id": "001", "code": "NA"}]


def test_parse_tsv_and_sniffed_txt():
    tsv = parse_file(b"a\tb\n1\t2\n", "data.tsv")
    txt = parse_file(b"a;b;c\n1;2;3\n4;5;6\n", "data.txt")

    assert tsv.headers == ["a", "b"]
    assert tsv.rows == [{"a": "1", "b": "2"}]
    assert txt.headers == ["a", "b", "c"]
    assert txt.rows[1] == {"a": "4", "b": "5", "c": "6"}


def test_parse_csv_reports_structural_errors_with_row_numbers():
    content = b"a,b,c\n1,2,3\n4,5\n6,7,8,9\n"

    with pytest.raises(FileParseError) as excinfo:
        parse_file(content, "bad.csv")

    message = str(excinfo.value)
    assert message.startswith("CSV parsing errors:")
    assert "Row 2: Too few fields (expected 3, found 2)" in message
    assert "Row 3: Too many fields (expected 3, found 4)" in message
    assert "; " in message


def test_parse_csv_caps_reported_errors():
    lines = ["a,b,c"] + ["1,2"] * 12
    content = ("\n".join(lines) + "\n").encode("utf-8")

    with pytest.raises(FileParseError) as excinfo:
        parse_file(content, "bad.csv")

    message = str(excinfo.value)
    assert "Row 10:" in message
    assert "Row 11:" not in message
    assert "(+2 more)" in message


@pytest.mark.parametrize("content", [b"", b"a,b,c\n"])
def test_parse_csv_without_data_rows(content):
    with pytest.raises(FileParseError, match="CSV file is empty or has no data rows"):
        parse_file(content, "empty.csv")


def test_parse_unsupported_extension():
    with pytest.raises(FileParseError, match="Unsupported file type: pdf"):
        parse_file(b"%PDF-1.4", "report.pdf")


def test_parse_undecodable_bytes_raise_file_parse_error():
    with pytest.raises(FileParseError, match="Failed to parse file"):
        parse_file(b"\xff\xfe\xfa\x00a,b\n", "broken.csv")


def test_parse_xlsx_keeps_native_values(tmp_path):
    path = tmp_path / "usage.xlsx"
    pd.DataFrame(
        [
            {"usageDate": datetime(2024, 1, 1), "productName": "Revit", "tokensConsumed": 4, "note": None},
            {"usageDate": 45293, "productName": "AutoCAD", "tokensConsumed": 2.5, "note": "late"},
        ]
    ).to_excel(path, index=False)

    parsed = parse_file(path.read_bytes(), "usage.xlsx")

    assert parsed.headers == ["usageDate", "productName", "tokensConsumed", "note"]
    assert len(parsed.rows) == 2
    first, second = parsed.rows
    assert isinstance(first["usageDate"], datetime)
    assert first["usageDate"].date().isoformat() == "2024-01-01"
    assert first["note"] is None
    assert second["usageDate"] == 45293
    assert second["tokensConsumed"] == 2.5


def test_parse_xlsx_without_data_rows(tmp_path):
    path = tmp_path / "empty.xlsx"
    pd.DataFrame(columns=["usageDate", "productName"]).to_excel(path, index=False)

    with pytest.raises(FileParseError, match="Excel file has no data rows"):
        parse_file(path.read_bytes(), "empty.xlsx")


def test_parse_corrupt_xlsx():
    with pytest.raises(FileParseError, match="Failed to parse file"):
        parse_file(b"not a zip archive", "broken.xlsx")


def test_file_extension():
    assert file_extension("Report.XLSX") == ".xlsx"
    assert file_extension("archive.tar.csv") == ".csv"
    assert file_extension("noext") == ""
