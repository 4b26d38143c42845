"""Pytest configuration and fixtures."""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from schoolsheets.lib.config import CacheMode, Settings  # noqa: E402
from schoolsheets.lib.errors import UpstreamFetchError  # noqa: E402
from schoolsheets.lib.metrics import ServiceMetrics  # noqa: E402

PROFILE_RANGE = "School Profile!A:ZZ"
PERFORMANCE_RANGE = "School Performance!A:ZZ"

PROFILE_VALUES: List[List[Any]] = [
    ["School ID", "Name", "City"],
    ["1", "Alder Elementary", "Springfield"],
    ["2", "Birch Middle", "Shelbyville"],
    ["3", "Cedar High", "Ogdenville"],
]

PERFORMANCE_VALUES: List[List[Any]] = [
    ["School ID", "Math", "Math"],
    ["", "Proficient", "Proficient"],
    ["", "2022", "2023"],
    ["1", "0.61", "0.64"],
    ["3", "0.55", "0.58"],
    ["4", "0.70", "0.72"],
]


class FakeSource:
    """In-memory DataSource that counts calls and can fail on demand."""

    def __init__(self, ranges: Optional[Dict[str, List[List[Any]]]] = None) -> None:
        self.ranges: Dict[str, List[List[Any]]] = dict(ranges or {})
        self.calls: List[str] = []
        self.fail_on: Dict[str, Exception] = {}
        self.closed = False

    def get_range(self, range_spec: str) -> List[List[Any]]:
        self.calls.append(range_spec)
        if range_spec in self.fail_on:
            raise self.fail_on[range_spec]
        return [list(row) for row in self.ranges.get(range_spec, [])]

    def fail(self, range_spec: str, message: str = "Sheets API returned 503") -> None:
        self.fail_on[range_spec] = UpstreamFetchError(
            message, range_spec=range_spec, status_code=503
        )

    def recover(self) -> None:
        self.fail_on.clear()

    def close(self) -> None:
        self.closed = True


class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def fake_source() -> FakeSource:
    return FakeSource({PROFILE_RANGE: PROFILE_VALUES, PERFORMANCE_RANGE: PERFORMANCE_VALUES})


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def metrics() -> ServiceMetrics:
    return ServiceMetrics()


@pytest.fixture
def ttl_settings() -> Settings:
    return Settings(spreadsheet_id="sheet-123", api_key="test-key")


@pytest.fixture
def snapshot_settings(tmp_path: Path) -> Settings:
    return Settings(
        spreadsheet_id="sheet-123",
        api_key="test-key",
        cache_mode=CacheMode.SNAPSHOT,
        snapshot_path=str(tmp_path / "data" / "snapshot.json"),
    )
