"""Text processing utilities.

Common cleanup functions shared by the normalizer and the resolver.
"""

import re
from pathlib import PurePosixPath
from typing import Any

# BOM and zero-width characters that exported spreadsheets leave in cells
ZERO_WIDTH_RE = re.compile(r"[\u200b-\u200d\ufeff]")


def clean_cell(value: Any) -> str:
    """Convert a cell/field value to stripped text.

    None becomes "", numbers are stringified, zero-width characters and
    BOMs are removed.

    Args:
        value: Raw value from a table cell or JSON field

    Returns:
        Cleaned text
    """
    if value is None:
        return ""
    return ZERO_WIDTH_RE.sub("", str(value)).strip()


def strip_extension(filename: str) -> str:
    """Return a filename without directory and extension ("a/b.csv" -> "b")."""
    return PurePosixPath(clean_cell(filename)).stem


def truncate(text: str, max_len: int = 60) -> str:
    """Truncate text with ellipsis if too long."""
    if len(text) <= max_len:
        return text
    return text[: max_len - 3] + "..."
