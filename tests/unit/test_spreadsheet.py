"""
Unit tests for webrefine/spreadsheet.py

URL list reading from every supported input format and result export to
.xlsx/.csv, verified by reading the written files back with pandas/openpyxl.
"""

import json

import pandas as pd
import pytest
from openpyxl import load_workbook

from webrefine.config import EXCEL_CELL_MAX_CHARS
from webrefine.error_handler import InputFormatError
from webrefine.job_store import ExtractedContent, JobStore, StageState
from webrefine.spreadsheet import ResultExporter, job_status_label, read_url_list

CONTENT = ExtractedContent(title="Page A", content="Extracted A")

# ============================================================================
# Helpers
# ============================================================================


def finished_store() -> JobStore:
    """Three jobs: two transformed, one failed extraction."""
    store = JobStore.create(
        ["https://a.example", "https://b.example", "https://c.example"],
        metadata=[{"Label": "first"}, {"Label": "second"}, {"Notes": "third"}],
    )
    a, b, c = store.job_ids()
    for job_id in (a, c):
        store.update(job_id, extraction_state=StageState.SUCCESS, extracted=CONTENT)
        store.update(job_id, transform_state=StageState.SUCCESS, transformed="RESULT")
    store.update(b, extraction_state=StageState.FAILED, error="Blocked")
    return store


# ============================================================================
# read_url_list
# ============================================================================


def test_read_txt(tmp_path):
    path = tmp_path / "urls.txt"
    path.write_text("https://a.example\n\n  https://b.example  \n", encoding="utf-8")

    result = read_url_list(path)

    assert result.urls == ["https://a.example", "", "https://b.example"]
    assert result.metadata == [{}, {}, {}]


def test_read_csv_with_extra_columns(tmp_path):
    path = tmp_path / "urls.csv"
    path.write_text("URL,Label\nhttps://a.example,First\n,Blank\nhttps://b.example,\n", encoding="utf-8")

    result = read_url_list(path)

    assert result.urls == ["https://a.example", "", "https://b.example"]
    assert result.metadata[0] == {"Label": "First"}
    assert result.metadata[2] == {"Label": ""}


def test_read_xlsx_first_sheet(tmp_path):
    path = tmp_path / "urls.xlsx"
    with pd.ExcelWriter(path, engine="openpyxl") as writer:
        pd.DataFrame({"url": ["https://a.example", None], "Rank": [1, 2]}).to_excel(
            writer, sheet_name="Input", index=False
        )
        pd.DataFrame({"URL": ["https://ignored.example"]}).to_excel(
            writer, sheet_name="Other", index=False
        )

    result = read_url_list(path)

    assert result.urls == ["https://a.example", ""]
    assert result.metadata[0] == {"Rank": "1"}


def test_url_column_match_is_case_insensitive(tmp_path):
    path = tmp_path / "urls.csv"
    path.write_text(" Url ,Notes\nhttps://a.example,n\n", encoding="utf-8")
    assert read_url_list(path).urls == ["https://a.example"]


def test_missing_url_column(tmp_path):
    path = tmp_path / "urls.csv"
    path.write_text("Link,Notes\nhttps://a.example,n\n", encoding="utf-8")
    with pytest.raises(InputFormatError, match="URL"):
        read_url_list(path)


def test_read_json_strings_and_objects(tmp_path):
    path = tmp_path / "urls.json"
    path.write_text(
        json.dumps(["https://a.example", {"URL": "https://b.example", "Label": "B"}]),
        encoding="utf-8",
    )

    result = read_url_list(path)

    assert result.urls == ["https://a.example", "https://b.example"]
    assert result.metadata == [{}, {"Label": "B"}]


@pytest.mark.parametrize(
    "payload",
    ['{"urls": []}', "[42]", '[{"label": "no url"}]', "[not json"],
)
def test_invalid_json_inputs(tmp_path, payload):
    path = tmp_path / "urls.json"
    path.write_text(payload, encoding="utf-8")
    with pytest.raises(InputFormatError):
        read_url_list(path)


def test_unsupported_and_missing_input(tmp_path):
    path = tmp_path / "urls.pdf"
    path.write_bytes(b"%PDF")
    with pytest.raises(InputFormatError, match="Unsupported"):
        read_url_list(path)
    with pytest.raises(InputFormatError, match="not found"):
        read_url_list(tmp_path / "missing.csv")


@pytest.mark.parametrize("name", ["urls.txt", "urls.json"])
def test_non_utf8_text_input(tmp_path, name):
    path = tmp_path / name
    path.write_bytes(b"https://a.example/\xff\n")
    with pytest.raises(InputFormatError, match="not UTF-8"):
        read_url_list(path)


def test_read_then_create_drops_blank_rows(tmp_path):
    path = tmp_path / "urls.csv"
    path.write_text("URL,Label\nhttps://a.example,A\n,skip\nhttps://b.example,B\n", encoding="utf-8")

    result = read_url_list(path)
    store = JobStore.create(result.urls, result.metadata)

    assert [(job.url, dict(job.metadata)) for job in store] == [
        ("https://a.example", {"Label": "A"}),
        ("https://b.example", {"Label": "B"}),
    ]


# ============================================================================
# Status labels and rows
# ============================================================================


def test_status_labels():
    store = JobStore.create(["https://a.example"] * 4)
    idle, pending, failed, extracted = store.job_ids()
    store.update(pending, extraction_state=StageState.PENDING)
    store.update(failed, extraction_state=StageState.FAILED, error="x")
    store.update(extracted, extraction_state=StageState.SUCCESS, extracted=CONTENT)

    labels = [job_status_label(job) for job in store]

    assert labels == ["Idle", "Pending", "Failed", "Success"]


def test_rows_include_failed_job():
    rows = ResultExporter().build_rows(finished_store().snapshot())

    assert list(rows.columns[:5]) == ["URL", "Status", "OriginalTitle", "TransformedContent", "Error"]
    assert len(rows) == 3
    failed = rows.iloc[1]
    assert failed["Status"] == "Failed"
    assert failed["Error"] == "Blocked"
    assert failed["TransformedContent"] == ""
    assert failed["OriginalTitle"] == ""
    assert rows.iloc[0]["TransformedContent"] == "RESULT"
    assert rows.iloc[0]["OriginalTitle"] == "Page A"


def test_rows_metadata_columns_in_first_seen_order():
    rows = ResultExporter().build_rows(finished_store().snapshot(), include_extracted=True)

    assert list(rows.columns[5:]) == ["ExtractedContent", "Label", "Notes"]
    assert rows.iloc[2]["Label"] == ""
    assert rows.iloc[2]["Notes"] == "third"
    assert rows.iloc[1]["ExtractedContent"] == ""


def test_metadata_cannot_override_result_columns():
    store = JobStore.create(["https://a.example"], metadata=[{"Status": "from input"}])
    rows = ResultExporter().build_rows(store.snapshot())
    assert rows.iloc[0]["Status"] == "Idle"


# ============================================================================
# Export
# ============================================================================


def test_export_xlsx(tmp_path):
    path = ResultExporter().export(finished_store().snapshot(), tmp_path / "results.xlsx")

    df = pd.read_excel(path, sheet_name="Results", dtype=str, keep_default_na=False)
    assert len(df) == 3
    assert df.loc[1, "Status"] == "Failed"
    assert df.loc[1, "Error"] == "Blocked"
    assert df.loc[1, "TransformedContent"] == ""


def test_export_csv(tmp_path):
    path = ResultExporter().export(finished_store().snapshot(), tmp_path / "out" / "results.csv")

    df = pd.read_csv(path, dtype=str, keep_default_na=False)
    assert list(df["URL"]) == ["https://a.example", "https://b.example", "https://c.example"]
    assert list(df["Status"]) == ["Success", "Failed", "Success"]


def test_export_rejects_unknown_extension(tmp_path):
    with pytest.raises(InputFormatError):
        ResultExporter().export(finished_store().snapshot(), tmp_path / "results.ods")


def test_export_clips_oversized_cells(tmp_path):
    store = JobStore.create(["https://a.example"])
    job_id = store.job_ids()[0]
    store.update(job_id, extraction_state=StageState.SUCCESS, extracted=CONTENT)
    store.update(
        job_id,
        transform_state=StageState.SUCCESS,
        transformed="x" * (EXCEL_CELL_MAX_CHARS + 10),
    )

    path = ResultExporter().export(store.snapshot(), tmp_path / "big.xlsx")

    sheet = load_workbook(path)["Results"]
    assert len(sheet["D2"].value) == EXCEL_CELL_MAX_CHARS
    assert sheet.column_dimensions["D"].width == 80


def test_bulk_template(tmp_path):
    path = ResultExporter().write_bulk_template(tmp_path / "template.xlsx")

    result = read_url_list(path)

    assert len(result) == 2
    assert result.urls[0].startswith("https://")
    assert set(result.metadata[0]) == {"Label (Optional)", "Notes (Optional)"}
