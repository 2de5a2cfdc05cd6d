"""
Single-result output: plain files and Word documents.

The transformer returns clean plain text, so the .docx writer recovers a
light structure from the text itself:
- short all-caps lines without a colon become headings
- lines starting with "- " or "• " become bullet items
- "Key: Value" lines get a bold key
- everything else is a normal paragraph
"""

import logging
import re
from dataclasses import dataclass
from enum import Enum, auto
from pathlib import Path
from typing import List, Optional, Union

from docx import Document

from webrefine.config import (
    DEFAULT_DOCUMENT_NAME,
    DEFAULT_RESULT_BASENAME,
    DOC_HEADING_MAX_LENGTH,
)

logger = logging.getLogger(__name__)

_BULLET_PREFIXES = ("- ", "• ")
_UNSAFE_FILENAME_CHARS = re.compile(r'[\\/:*?"<>|\x00-\x1f]+')


class BlockKind(Enum):
    HEADING = auto()
    BULLET = auto()
    KEY_VALUE = auto()
    PARAGRAPH = auto()


@dataclass(frozen=True)
class TextBlock:
    """One non-empty line of the result, classified."""

    kind: BlockKind
    text: str
    # Only for KEY_VALUE: the part before the first colon
    key: str = ""


def classify_line(line: str) -> Optional[TextBlock]:
    """Classify one line. Returns None for blank lines."""
    stripped = line.strip()
    if not stripped:
        return None

    if stripped.startswith(_BULLET_PREFIXES):
        return TextBlock(BlockKind.BULLET, stripped[2:].strip())

    if (
        len(stripped) < DOC_HEADING_MAX_LENGTH
        and stripped == stripped.upper()
        and any(ch.isalpha() for ch in stripped)
        and ":" not in stripped
    ):
        return TextBlock(BlockKind.HEADING, stripped)

    if ":" in stripped:
        key, value = stripped.split(":", 1)
        if key.strip():
            return TextBlock(BlockKind.KEY_VALUE, value, key=key.strip())

    return TextBlock(BlockKind.PARAGRAPH, stripped)


def parse_blocks(text: str) -> List[TextBlock]:
    blocks = []
    for line in text.splitlines():
        block = classify_line(line)
        if block is not None:
            blocks.append(block)
    return blocks


def write_docx(
    text: str, path: Union[str, Path], title: Optional[str] = None
) -> Path:
    """
    Save a transformed result as a Word document.

    Args:
        text: Plain-text result
        path: Destination .docx path (parent directories are created)
        title: Optional document title, added as a level-0 heading

    Returns:
        The path written
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    document = Document()
    if title:
        document.add_heading(title, level=0)

    for block in parse_blocks(text):
        if block.kind == BlockKind.HEADING:
            document.add_heading(block.text, level=2)
        elif block.kind == BlockKind.BULLET:
            document.add_paragraph(block.text, style="List Bullet")
        elif block.kind == BlockKind.KEY_VALUE:
            paragraph = document.add_paragraph()
            paragraph.add_run(f"{block.key}:").bold = True
            paragraph.add_run(block.text)
        else:
            document.add_paragraph(block.text)

    document.save(str(path))
    logger.info(f"Document saved to: {path}")
    return path


def detect_output_extension(
    instruction: str = "", sample_name: Optional[str] = None
) -> str:
    """
    Pick the file extension for a single result.

    The sample file name wins; otherwise the instruction is searched for
    "csv" then "json". Defaults to "txt".
    """
    sample_suffix = Path(sample_name).suffix.lower() if sample_name else ""
    lowered = instruction.lower()
    if sample_suffix == ".csv" or "csv" in lowered:
        return "csv"
    if sample_suffix == ".json" or "json" in lowered:
        return "json"
    return "txt"


def default_result_path(
    directory: Union[str, Path],
    instruction: str = "",
    sample_name: Optional[str] = None,
) -> Path:
    extension = detect_output_extension(instruction, sample_name)
    return Path(directory) / f"{DEFAULT_RESULT_BASENAME}.{extension}"


def default_docx_path(directory: Union[str, Path], title: Optional[str]) -> Path:
    """Document path named after the page title, with unsafe characters removed."""
    name = _UNSAFE_FILENAME_CHARS.sub("", title or "").strip() or DEFAULT_DOCUMENT_NAME
    return Path(directory) / f"{name}.docx"


def save_text_result(text: str, path: Union[str, Path]) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    logger.info(f"Result saved to: {path}")
    return path
