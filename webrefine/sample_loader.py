"""
Sample template loading.

A sample template is an example of the desired output (a CSV with the
target headers, a JSON object with the target keys, a formatted text...).
Whatever the file type, it is normalized to one string plus a format tag
before being handed to the transformer.
"""

import json
import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Dict, Union

import pandas as pd
from docx import Document

from webrefine.error_handler import InputFormatError

logger = logging.getLogger(__name__)


class SampleFormat(str, Enum):
    """Structure of a sample template after normalization"""

    TEXT = "text"
    MARKDOWN = "markdown"
    CSV = "csv"
    JSON = "json"


@dataclass(frozen=True)
class SampleTemplate:
    """Example output whose structure the transformer must mirror"""

    name: str
    content: str
    format: SampleFormat = SampleFormat.TEXT

    @property
    def is_empty(self) -> bool:
        return not self.content.strip()


# Extension -> how the file is read and what it normalizes to
_TEXT_SUFFIXES: Dict[str, SampleFormat] = {
    ".txt": SampleFormat.TEXT,
    ".text": SampleFormat.TEXT,
    ".md": SampleFormat.MARKDOWN,
    ".markdown": SampleFormat.MARKDOWN,
    ".csv": SampleFormat.CSV,
    ".json": SampleFormat.JSON,
}
_EXCEL_SUFFIXES = (".xlsx", ".xls")
_DOCX_SUFFIXES = (".docx",)

SUPPORTED_SAMPLE_SUFFIXES = tuple(_TEXT_SUFFIXES) + _EXCEL_SUFFIXES + _DOCX_SUFFIXES


def load_sample_template(path: Union[str, Path]) -> SampleTemplate:
    """
    Read a sample file and normalize it to a SampleTemplate.

    - .txt/.text/.md/.csv: read as UTF-8 text, unchanged
    - .json: must parse; kept as written
    - .xlsx/.xls: first sheet converted to CSV text
    - .docx: paragraph text, one paragraph per line

    Raises:
        InputFormatError: Unsupported extension, unreadable or invalid file
    """
    path = Path(path)
    suffix = path.suffix.lower()

    if not path.exists():
        raise InputFormatError(f"Sample file not found: {path}")
    if suffix not in SUPPORTED_SAMPLE_SUFFIXES:
        raise InputFormatError(
            f"Unsupported sample file type '{suffix}'. "
            f"Supported: {', '.join(SUPPORTED_SAMPLE_SUFFIXES)}"
        )

    if suffix in _EXCEL_SUFFIXES:
        template = SampleTemplate(path.name, _excel_to_csv(path), SampleFormat.CSV)
    elif suffix in _DOCX_SUFFIXES:
        template = SampleTemplate(path.name, _docx_to_text(path), SampleFormat.TEXT)
    else:
        sample_format = _TEXT_SUFFIXES[suffix]
        content = _read_text(path)
        if sample_format == SampleFormat.JSON and content.strip():
            try:
                json.loads(content)
            except json.JSONDecodeError as e:
                raise InputFormatError(f"Sample file {path.name} is not valid JSON: {e}") from e
        template = SampleTemplate(path.name, content, sample_format)

    if template.is_empty:
        logger.warning(f"Sample file {path.name} is empty; it will not constrain the output")
    else:
        logger.info(
            f"Loaded sample template {path.name} "
            f"({template.format.value}, {len(template.content)} chars)"
        )
    return template


def _read_text(path: Path) -> str:
    try:
        # utf-8-sig drops the BOM that spreadsheet tools put in CSV exports
        return path.read_text(encoding="utf-8-sig")
    except UnicodeDecodeError as e:
        raise InputFormatError(f"Sample file {path.name} is not UTF-8 text: {e}") from e


def _excel_to_csv(path: Path) -> str:
    try:
        df = pd.read_excel(path, sheet_name=0, header=None, dtype=str)
    except Exception as e:
        # pandas surfaces engine-specific errors (openpyxl, xlrd, zipfile)
        raise InputFormatError(f"Could not read spreadsheet {path.name}: {e}") from e
    return df.fillna("").to_csv(index=False, header=False)


def _docx_to_text(path: Path) -> str:
    try:
        document = Document(str(path))
    except Exception as e:
        raise InputFormatError(f"Could not read document {path.name}: {e}") from e
    return "\n".join(paragraph.text for paragraph in document.paragraphs)
