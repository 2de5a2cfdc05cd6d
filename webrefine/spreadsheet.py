"""
Tabular input and output for batch mode.

- read_url_list(): URL lists from .xlsx/.xls/.csv (column "URL"), .txt (one
  URL per line) or .json (list of strings or of objects with a "url" key).
  Every other column travels with its job as metadata.
- ResultExporter: one row per job (failures included) to .xlsx or .csv.
"""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Union

import pandas as pd
from openpyxl.utils import get_column_letter
from openpyxl.worksheet.worksheet import Worksheet

from webrefine.config import (
    EXCEL_CELL_MAX_CHARS,
    EXPORT_COLUMNS,
    EXTRACTED_CONTENT_COLUMN,
    RESULTS_SHEET_NAME,
    TEMPLATE_COLUMNS,
    TEMPLATE_SHEET_NAME,
    URL_COLUMN,
)
from webrefine.error_handler import InputFormatError
from webrefine.job_store import Job, StageState

logger = logging.getLogger(__name__)

SPREADSHEET_SUFFIXES = (".xlsx", ".xls", ".csv")
SUPPORTED_INPUT_SUFFIXES = SPREADSHEET_SUFFIXES + (".txt", ".json")
SUPPORTED_EXPORT_SUFFIXES = (".xlsx", ".csv")

# Widest column in the exported workbook, in characters
_MAX_COLUMN_WIDTH = 80

_TEMPLATE_ROWS = (
    ("https://www.amazon.com/dp/example1", "Competitor Product A", "Focus on pricing"),
    ("https://www.example.com/blog/post1", "Industry News", "Summarize key points"),
)


@dataclass
class UrlList:
    """URLs read from an input file, with per-row extra columns aligned by index."""

    urls: List[str] = field(default_factory=list)
    metadata: List[Dict[str, str]] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.urls)


def job_status_label(job: Job) -> str:
    """Export status: Failed > Pending > Success > Idle."""
    if job.has_failed:
        return "Failed"
    if job.is_pending:
        return "Pending"
    if job.transform_state == StageState.SUCCESS or (
        job.extraction_state == StageState.SUCCESS
        and job.transform_state == StageState.IDLE
    ):
        return "Success"
    return "Idle"


def _find_url_column(columns: Iterable[Any]) -> Optional[Any]:
    columns = list(columns)
    for candidate in (URL_COLUMN, "url"):
        if candidate in columns:
            return candidate
    for column in columns:
        if str(column).strip().lower() == "url":
            return column
    return None


def _cell_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and pd.isna(value):
        return ""
    return str(value).strip()


def _from_dataframe(df: pd.DataFrame, source: Path) -> UrlList:
    url_column = _find_url_column(df.columns)
    if url_column is None:
        raise InputFormatError(
            f"{source.name} must contain a '{URL_COLUMN}' column "
            f"(found: {', '.join(str(c) for c in df.columns) or 'no columns'})"
        )

    extra_columns = [c for c in df.columns if c != url_column]
    result = UrlList()
    for record in df.to_dict(orient="records"):
        result.urls.append(_cell_text(record.get(url_column)))
        result.metadata.append({str(c): _cell_text(record.get(c)) for c in extra_columns})
    return result


def _read_text(path: Path) -> str:
    try:
        return path.read_text(encoding="utf-8-sig")
    except UnicodeDecodeError as e:
        raise InputFormatError(f"{path.name} is not UTF-8 text: {e}") from e


def _from_json(path: Path) -> UrlList:
    text = _read_text(path)
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise InputFormatError(f"{path.name} is not valid JSON: {e}") from e

    if not isinstance(data, list):
        raise InputFormatError(
            f"{path.name} must contain a list of URLs or of objects with a 'url' field"
        )

    result = UrlList()
    for position, item in enumerate(data):
        if isinstance(item, str):
            result.urls.append(item.strip())
            result.metadata.append({})
        elif isinstance(item, dict):
            url_key = _find_url_column(item.keys())
            if url_key is None:
                raise InputFormatError(f"{path.name}: item {position} has no 'url' field")
            result.urls.append(_cell_text(item[url_key]))
            result.metadata.append(
                {str(k): _cell_text(v) for k, v in item.items() if k != url_key}
            )
        else:
            raise InputFormatError(
                f"{path.name}: item {position} must be a string or an object"
            )
    return result


def read_url_list(path: Union[str, Path]) -> UrlList:
    """
    Read the URLs (and extra columns) of a bulk input file.

    Blank rows are kept as empty strings; JobStore.create() drops them.

    Raises:
        InputFormatError: Unsupported extension, unreadable file or no URL column
    """
    path = Path(path)
    suffix = path.suffix.lower()

    if not path.exists():
        raise InputFormatError(f"Input file not found: {path}")
    if suffix not in SUPPORTED_INPUT_SUFFIXES:
        raise InputFormatError(
            f"Unsupported input file format: {suffix}. "
            f"Use one of: {', '.join(SUPPORTED_INPUT_SUFFIXES)}"
        )

    if suffix == ".txt":
        lines = _read_text(path).splitlines()
        result = UrlList(urls=[line.strip() for line in lines], metadata=[{} for _ in lines])
    elif suffix == ".json":
        result = _from_json(path)
    else:
        try:
            if suffix == ".csv":
                df = pd.read_csv(path, dtype=str, keep_default_na=False)
            else:
                df = pd.read_excel(path, sheet_name=0, dtype=str)
        except Exception as e:
            # pandas surfaces engine-specific errors (parser, openpyxl, xlrd, zipfile)
            raise InputFormatError(f"Could not read {path.name}: {e}") from e
        result = _from_dataframe(df, path)

    logger.info(
        f"Read {sum(1 for u in result.urls if u)} URLs from {path.name}"
    )
    return result


class ResultExporter:
    """Writes job snapshots as result tables."""

    def __init__(self, sheet_name: str = RESULTS_SHEET_NAME) -> None:
        self.sheet_name = sheet_name

    def build_rows(
        self, snapshot: Sequence[Job], include_extracted: bool = False
    ) -> pd.DataFrame:
        """
        One row per job in snapshot order.

        Columns: URL, Status, OriginalTitle, TransformedContent, Error, then
        ExtractedContent (optional), then metadata columns in first-seen order.
        """
        columns: List[str] = list(EXPORT_COLUMNS)
        if include_extracted:
            columns.append(EXTRACTED_CONTENT_COLUMN)
        for job in snapshot:
            for key in job.metadata:
                if key not in columns:
                    columns.append(key)

        rows = []
        for job in snapshot:
            row: Dict[str, str] = {key: value for key, value in job.metadata.items()}
            row.update(
                {
                    "URL": job.url,
                    "Status": job_status_label(job),
                    "OriginalTitle": job.title,
                    "TransformedContent": job.transformed or "",
                    "Error": job.error or "",
                }
            )
            if include_extracted:
                row[EXTRACTED_CONTENT_COLUMN] = (
                    job.extracted.content if job.extracted else ""
                )
            rows.append(row)

        return pd.DataFrame(rows, columns=columns).fillna("")

    def export(
        self,
        snapshot: Sequence[Job],
        path: Union[str, Path],
        include_extracted: bool = False,
    ) -> Path:
        """
        Serialize a snapshot to .xlsx (sheet "Results") or .csv.

        Returns:
            The path written

        Raises:
            InputFormatError: Unsupported output extension
        """
        path = Path(path)
        suffix = path.suffix.lower()
        if suffix not in SUPPORTED_EXPORT_SUFFIXES:
            raise InputFormatError(
                f"Unsupported export format: {suffix}. Use .xlsx or .csv"
            )

        df = self.build_rows(snapshot, include_extracted)
        path.parent.mkdir(parents=True, exist_ok=True)

        if suffix == ".csv":
            df.to_csv(path, index=False, encoding="utf-8")
        else:
            self._write_xlsx(df, path, self.sheet_name)

        logger.info(f"Exported {len(df)} rows to {path}")
        return path

    def write_bulk_template(self, path: Union[str, Path]) -> Path:
        """Write an example input sheet (URL plus optional label/notes columns)."""
        path = Path(path)
        df = pd.DataFrame(list(_TEMPLATE_ROWS), columns=list(TEMPLATE_COLUMNS))
        path.parent.mkdir(parents=True, exist_ok=True)
        if path.suffix.lower() == ".csv":
            df.to_csv(path, index=False, encoding="utf-8")
        else:
            self._write_xlsx(df, path, TEMPLATE_SHEET_NAME)
        logger.info(f"Bulk upload template saved to: {path}")
        return path

    def _write_xlsx(self, df: pd.DataFrame, path: Path, sheet_name: str) -> None:
        df = df.apply(lambda column: column.map(_clip_for_excel))
        with pd.ExcelWriter(path, engine="openpyxl") as writer:
            df.to_excel(writer, sheet_name=sheet_name, index=False)
            _fit_column_widths(writer.sheets[sheet_name], df)


def _clip_for_excel(value: Any) -> Any:
    if isinstance(value, str) and len(value) > EXCEL_CELL_MAX_CHARS:
        logger.warning(
            f"Cell value of {len(value)} chars truncated to Excel's limit "
            f"of {EXCEL_CELL_MAX_CHARS}"
        )
        return value[:EXCEL_CELL_MAX_CHARS]
    return value


def _fit_column_widths(worksheet: Worksheet, df: pd.DataFrame) -> None:
    for index, column in enumerate(df.columns, start=1):
        longest = max([len(str(column))] + [len(str(v)) for v in df[column]])
        worksheet.column_dimensions[get_column_letter(index)].width = min(
            longest + 2, _MAX_COLUMN_WIDTH
        )
