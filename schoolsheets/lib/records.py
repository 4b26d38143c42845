"""Record materialization and keyed indices.

Turns raw sheet rows into label -> value records and builds the lookup
maps the join engine works from.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from schoolsheets.lib.headers import cell_text, flatten_headers, locate_key_column

logger = logging.getLogger(__name__)

__all__ = [
    "Dataset",
    "KeyedIndex",
    "RawTable",
    "Record",
    "build_dataset",
    "build_index",
    "materialize_records",
]

Record = Dict[str, Any]
Row = List[Any]


@dataclass(frozen=True)
class RawTable:
    """Values of one range, split into header block and data rows."""

    header_rows: List[Row]
    data_rows: List[Row]

    @classmethod
    def from_values(cls, values: Sequence[Sequence[Any]], header_row_count: int) -> "RawTable":
        rows = [list(row) for row in values]
        return cls(header_rows=rows[:header_row_count], data_rows=rows[header_row_count:])


@dataclass(frozen=True)
class Dataset:
    """A flattened table: labels, raw rows and one record per row.

    ``header_rows`` keeps the unflattened header block so column subsets
    can be re-flattened later; it is not part of the API payload.
    """

    headers: List[str]
    rows: List[Row]
    records: List[Record]
    header_rows: List[Row] = field(default_factory=list)

    @property
    def row_count(self) -> int:
        return len(self.records)

    def to_dict(self) -> Dict[str, Any]:
        """API payload shape."""
        return {"headers": self.headers, "rows": self.rows, "records": self.records}

    def to_document(self) -> Dict[str, Any]:
        """Durable shape (payload plus raw header block)."""
        doc = self.to_dict()
        doc["headerRows"] = self.header_rows
        return doc

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "Dataset":
        return cls(
            headers=list(doc["headers"]),
            rows=[list(row) for row in doc["rows"]],
            records=[dict(record) for record in doc["records"]],
            header_rows=[list(row) for row in doc.get("headerRows", [])],
        )


def materialize_records(headers: Sequence[str], rows: Sequence[Sequence[Any]]) -> List[Record]:
    """Zip each row with the header labels.

    Short rows are padded with ``""``; cells past the last header are dropped.
    """
    records: List[Record] = []
    for row in rows:
        record: Record = {}
        for index, label in enumerate(headers):
            record[label] = row[index] if index < len(row) else ""
        records.append(record)
    return records


def build_dataset(table: RawTable) -> Dataset:
    """Flatten a raw table into a Dataset.

    A table with no header rows (empty range) yields an empty Dataset.
    """
    if not table.header_rows:
        return Dataset(headers=[], rows=[], records=[], header_rows=[])
    headers = flatten_headers(table.header_rows)
    return Dataset(
        headers=headers,
        rows=table.data_rows,
        records=materialize_records(headers, table.data_rows),
        header_rows=table.header_rows,
    )


@dataclass
class KeyedIndex:
    """Key string -> record, in insertion order.

    ``key_field`` is the label of the detected key column; None means the
    dataset has no key column and the index is empty.
    """

    key_field: Optional[str] = None
    entries: Dict[str, Record] = field(default_factory=dict)

    def __len__(self) -> int:
        return len(self.entries)

    def __contains__(self, key: object) -> bool:
        return key in self.entries

    def get(self, key: str) -> Optional[Record]:
        return self.entries.get(key)

    def keys(self) -> List[str]:
        return list(self.entries)


def build_index(dataset: Dataset) -> KeyedIndex:
    """Index a dataset's records by their school id.

    Records with a missing or empty key are skipped. When two records
    share a key the later one replaces the earlier (last write wins);
    ids are expected to be unique in the sheet.
    """
    key_col = locate_key_column(dataset.headers)
    if key_col is None:
        logger.debug("No key column among %d headers; index is empty", len(dataset.headers))
        return KeyedIndex()

    key_field = dataset.headers[key_col]
    index = KeyedIndex(key_field=key_field)
    duplicates = 0

    for record in dataset.records:
        value = record.get(key_field)
        if value is None or value == "":
            continue
        key = cell_text(value)
        if key in index.entries:
            duplicates += 1
        index.entries[key] = record

    if duplicates:
        logger.warning(
            "%d duplicate keys in column '%s'; later rows replaced earlier ones",
            duplicates,
            key_field,
        )
    return index
