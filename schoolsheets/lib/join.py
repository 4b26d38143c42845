"""Keyed joins between the Profile and Performance datasets.

Every route that combines the two sheets goes through ``join_indices``;
``join_datasets`` is the adapter the API uses.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from schoolsheets.lib.headers import locate_key_column
from schoolsheets.lib.records import Dataset, KeyedIndex, Record, build_index

logger = logging.getLogger(__name__)

__all__ = ["CANONICAL_KEY", "JoinResult", "join_datasets", "join_indices"]

CANONICAL_KEY = "School ID"
JOIN_TYPES = ("inner", "outer")


@dataclass(frozen=True)
class JoinResult:
    """Joined records and their count."""

    records: List[Record] = field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.records)

    def to_dict(self) -> Dict[str, Any]:
        return {"count": self.count, "records": self.records}

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "JoinResult":
        return cls(records=[dict(record) for record in doc.get("records", [])])


def _key_field(headers: Sequence[str]) -> Optional[str]:
    index = locate_key_column(headers)
    return headers[index] if index is not None else None


def _merge(
    key: str,
    left: Record,
    right: Record,
    left_key_field: Optional[str],
    right_key_field: Optional[str],
) -> Record:
    merged = dict(left)
    merged.update(right)
    if not merged.get(CANONICAL_KEY):
        left_value = left.get(left_key_field) if left_key_field else None
        right_value = right.get(right_key_field) if right_key_field else None
        merged[CANONICAL_KEY] = left_value or right_value or key
    return merged


def join_indices(
    left: KeyedIndex,
    right: KeyedIndex,
    left_headers: Sequence[str],
    right_headers: Sequence[str],
    how: str = "inner",
) -> JoinResult:
    """Join two keyed indices.

    Args:
        left: Profile index
        right: Performance index
        left_headers: Profile labels, used to find its key field
        right_headers: Performance labels, used to find its key field
        how: "inner" (keys on both sides) or "outer" (keys on either side)

    Right-hand fields win on name collisions. Every joined record carries
    a ``"School ID"``, filled from the left key field, then the right key
    field, then the join key itself. Empty indices yield empty or one-sided
    results rather than errors.
    """
    if how not in JOIN_TYPES:
        raise ValueError(f"Unsupported join type: {how!r} (expected one of {JOIN_TYPES})")

    left_key_field = _key_field(left_headers)
    right_key_field = _key_field(right_headers)

    if how == "inner":
        keys = [key for key in left.entries if key in right.entries]
    else:
        keys = list(left.entries)
        keys.extend(key for key in right.entries if key not in left.entries)

    records = [
        _merge(
            key,
            left.entries.get(key, {}),
            right.entries.get(key, {}),
            left_key_field,
            right_key_field,
        )
        for key in keys
    ]

    logger.debug(
        "%s join: %d left keys, %d right keys -> %d records",
        how,
        len(left),
        len(right),
        len(records),
    )
    return JoinResult(records=records)


def join_datasets(profile: Dataset, performance: Dataset, *, only_matched: bool = True) -> JoinResult:
    """Join Profile with Performance on the detected school id columns.

    ``only_matched`` selects an inner join; otherwise an outer join.
    """
    return join_indices(
        build_index(profile),
        build_index(performance),
        profile.headers,
        performance.headers,
        how="inner" if only_matched else "outer",
    )
