"""Dataset builders for the Profile and Performance sheets."""

from __future__ import annotations

import logging
from typing import List

from schoolsheets.lib.config import Settings
from schoolsheets.lib.headers import flatten_headers, locate_key_column, parse_column_range
from schoolsheets.lib.records import Dataset, RawTable, build_dataset, materialize_records
from schoolsheets.lib.sheets import DataSource

logger = logging.getLogger(__name__)

__all__ = [
    "build_performance",
    "build_profile",
    "fetch_table",
    "performance_key_subset",
    "sheet_range",
]


def sheet_range(sheet_name: str, cell_range: str) -> str:
    """Join a sheet name and A1 range, e.g. ``Sheet2!A:C``."""
    return f"{sheet_name}!{cell_range}"


def fetch_table(source: DataSource, range_spec: str, header_row_count: int) -> RawTable:
    values = source.get_range(range_spec)
    return RawTable.from_values(values, header_row_count)


def build_profile(source: DataSource, settings: Settings) -> Dataset:
    """School Profile: one header row."""
    return build_dataset(fetch_table(source, settings.profile_range, 1))


def build_performance(source: DataSource, settings: Settings) -> Dataset:
    """School Performance: composite header block (three rows by default)."""
    return build_dataset(
        fetch_table(source, settings.performance_range, settings.performance_header_rows)
    )


def performance_key_subset(performance: Dataset, column_range: str) -> Dataset:
    """Restrict Performance to its key column plus a letter range.

    The selected header cells are re-flattened, so placeholder labels are
    numbered by their position in the subset. When no key column exists
    only the range is kept.
    """
    if not performance.header_rows:
        return Dataset(headers=[], rows=[], records=[], header_rows=[])

    columns: List[int] = []
    key_col = locate_key_column(performance.headers)
    if key_col is not None:
        columns.append(key_col)
    width = len(performance.headers)
    columns.extend(c for c in parse_column_range(column_range) if c < width and c != key_col)

    if not columns:
        logger.warning("Column range %s is outside the %d performance columns", column_range, width)
        return Dataset(headers=[], rows=[], records=[], header_rows=[])

    header_rows = [[row[c] if c < len(row) else "" for c in columns] for row in performance.header_rows]
    rows = [[row[c] if c < len(row) else "" for c in columns] for row in performance.rows]
    headers = flatten_headers(header_rows)

    return Dataset(
        headers=headers,
        rows=rows,
        records=materialize_records(headers, rows),
        header_rows=header_rows,
    )
