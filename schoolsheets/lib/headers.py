"""Header flattening and key column detection.

Sheets with composite headers (category / field / year stacked over three
rows) are flattened into one label per column so every row can be turned
into a plain mapping. Labels are stable: the same header block always
yields the same labels.

Labels are not deduplicated. When two columns collapse to the same label
the later column shadows the earlier one in every record; downstream
consumers rely on the exact label text, so this is kept as a known
limitation rather than suffixing duplicates.
"""

from __future__ import annotations

from typing import Any, List, Optional, Sequence

from schoolsheets.lib.errors import ConfigurationError

__all__ = [
    "HEADER_SEPARATOR",
    "cell_text",
    "column_index",
    "flatten_headers",
    "is_key_label",
    "locate_key_column",
    "parse_column_range",
    "placeholder_label",
]

HEADER_SEPARATOR = " | "
MAX_HEADER_ROWS = 3


def cell_text(value: Any) -> str:
    """Render a cell value the way the sheet displays it.

    Strings are returned untouched (no trimming), so ``"7 "`` and ``"7"``
    stay distinct.
    """
    if value is None:
        return ""
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def placeholder_label(index: int) -> str:
    return f"col_{index}"


def flatten_headers(header_rows: Sequence[Sequence[Any]]) -> List[str]:
    """Flatten 1-3 parallel header rows into one label per column.

    Rows may be ragged; a row shorter than the widest one contributes
    empty cells beyond its length.

    Example:
        >>> flatten_headers([["A", "B"], ["x", "y"], [2021, 2022]])
        ['A | x | 2021', 'B | y | 2022']
    """
    if not header_rows or len(header_rows) > MAX_HEADER_ROWS:
        raise ValueError(
            f"Expected between 1 and {MAX_HEADER_ROWS} header rows, got {len(header_rows)}"
        )

    width = max(len(row) for row in header_rows)
    labels: List[str] = []

    for index in range(width):
        parts = [
            cell_text(row[index]) if index < len(row) else ""
            for row in header_rows
        ]
        if not any(part.strip() for part in parts):
            labels.append(placeholder_label(index))
        elif len(parts) == 1:
            labels.append(parts[0])
        else:
            labels.append(HEADER_SEPARATOR.join(parts))

    return labels


def is_key_label(label: Any) -> bool:
    """Return True if a header label names the school identifier column."""
    text = cell_text(label).strip().lower()
    if text in ("school id", "schoolid"):
        return True
    return "school" in text and "id" in text


def locate_key_column(headers: Sequence[Any]) -> Optional[int]:
    """Return the index of the leftmost key column, or None."""
    for index, label in enumerate(headers):
        if is_key_label(label):
            return index
    return None


def column_index(letters: str) -> int:
    """Convert spreadsheet column letters to a zero-based index.

    Example:
        >>> column_index("A"), column_index("Z"), column_index("AB")
        (0, 25, 27)
    """
    text = letters.strip().upper()
    if not text or not text.isalpha() or not text.isascii():
        raise ConfigurationError(
            f"Invalid column letters: {letters!r}",
            field="performance_key_columns",
            value=letters,
        )
    number = 0
    for char in text:
        number = number * 26 + (ord(char) - ord("A") + 1)
    return number - 1


def parse_column_range(spec: str) -> range:
    """Parse an inclusive ``"AB:AU"`` style range into column indices."""
    start, sep, end = spec.partition(":")
    if not sep:
        end = start
    first = column_index(start)
    last = column_index(end)
    if last < first:
        raise ConfigurationError(
            f"Column range {spec!r} ends before it starts",
            field="performance_key_columns",
            value=spec,
        )
    return range(first, last + 1)
