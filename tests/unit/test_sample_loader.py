"""
Unit tests for webrefine/sample_loader.py

Every supported file type is written to tmp_path with the real library
(pandas/openpyxl, python-docx) and loaded back as a SampleTemplate.
"""

import pandas as pd
import pytest
from docx import Document

from webrefine.error_handler import InputFormatError
from webrefine.sample_loader import SampleFormat, load_sample_template


def test_text_sample(tmp_path):
    path = tmp_path / "example.txt"
    path.write_text("PRODUCT\n- Price: 10\n", encoding="utf-8")

    sample = load_sample_template(path)

    assert sample.name == "example.txt"
    assert sample.format == SampleFormat.TEXT
    assert sample.content == "PRODUCT\n- Price: 10\n"


def test_markdown_sample(tmp_path):
    path = tmp_path / "layout.md"
    path.write_text("# Title\n**Key**: value", encoding="utf-8")
    assert load_sample_template(path).format == SampleFormat.MARKDOWN


def test_csv_sample_drops_bom(tmp_path):
    path = tmp_path / "sheet.csv"
    path.write_bytes("\ufeffa,b,c\n1,2,3\n".encode("utf-8"))

    sample = load_sample_template(path)

    assert sample.format == SampleFormat.CSV
    assert sample.content == "a,b,c\n1,2,3\n"


def test_json_sample_must_parse(tmp_path):
    good = tmp_path / "good.json"
    good.write_text('{"name": "", "price": 0}', encoding="utf-8")
    bad = tmp_path / "bad.json"
    bad.write_text('{"name": ', encoding="utf-8")

    assert load_sample_template(good).format == SampleFormat.JSON
    with pytest.raises(InputFormatError, match="not valid JSON"):
        load_sample_template(bad)


def test_xlsx_sample_becomes_csv(tmp_path):
    path = tmp_path / "template.xlsx"
    pd.DataFrame({"Name": ["Widget"], "Price": ["9.99"]}).to_excel(path, index=False)

    sample = load_sample_template(path)

    assert sample.format == SampleFormat.CSV
    assert sample.content.splitlines() == ["Name,Price", "Widget,9.99"]


def test_docx_sample_paragraph_text(tmp_path):
    path = tmp_path / "report.docx"
    document = Document()
    document.add_paragraph("SUMMARY")
    document.add_paragraph("Key: value")
    document.save(str(path))

    sample = load_sample_template(path)

    assert sample.format == SampleFormat.TEXT
    assert sample.content == "SUMMARY\nKey: value"


def test_empty_sample_is_flagged(tmp_path):
    path = tmp_path / "empty.txt"
    path.write_text("  \n", encoding="utf-8")
    assert load_sample_template(path).is_empty


def test_unsupported_extension(tmp_path):
    path = tmp_path / "image.png"
    path.write_bytes(b"\x89PNG")
    with pytest.raises(InputFormatError, match="Unsupported sample file type"):
        load_sample_template(path)


def test_missing_file(tmp_path):
    with pytest.raises(InputFormatError, match="not found"):
        load_sample_template(tmp_path / "nope.txt")


def test_non_utf8_text(tmp_path):
    path = tmp_path / "latin.txt"
    path.write_bytes("caf\xe9".encode("latin-1"))
    with pytest.raises(InputFormatError, match="UTF-8"):
        load_sample_template(path)


def test_corrupt_spreadsheet(tmp_path):
    path = tmp_path / "broken.xlsx"
    path.write_bytes(b"not a zip file")
    with pytest.raises(InputFormatError):
        load_sample_template(path)
