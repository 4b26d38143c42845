"""Library modules.

Header flattening, keyed joins and the cache/snapshot managers behind the
HTTP API.
"""

from schoolsheets.lib.cache import TTLCache
from schoolsheets.lib.config import CacheMode, Settings
from schoolsheets.lib.errors import (
    ConfigurationError,
    PersistenceError,
    SchoolSheetsError,
    UpstreamFetchError,
)
from schoolsheets.lib.headers import (
    cell_text,
    column_index,
    flatten_headers,
    is_key_label,
    locate_key_column,
)
from schoolsheets.lib.join import JoinResult, join_datasets, join_indices
from schoolsheets.lib.manager import CacheManager, DataManager, create_manager
from schoolsheets.lib.metrics import ServiceMetrics
from schoolsheets.lib.records import (
    Dataset,
    KeyedIndex,
    RawTable,
    build_dataset,
    build_index,
    materialize_records,
)
from schoolsheets.lib.snapshot import RefreshRequest, RefreshResult, Snapshot, SnapshotManager

__all__ = [
    "CacheManager",
    "CacheMode",
    "ConfigurationError",
    "DataManager",
    "Dataset",
    "JoinResult",
    "KeyedIndex",
    "PersistenceError",
    "RawTable",
    "RefreshRequest",
    "RefreshResult",
    "SchoolSheetsError",
    "ServiceMetrics",
    "Settings",
    "Snapshot",
    "SnapshotManager",
    "TTLCache",
    "UpstreamFetchError",
    "build_dataset",
    "build_index",
    "cell_text",
    "column_index",
    "create_manager",
    "flatten_headers",
    "is_key_label",
    "join_datasets",
    "join_indices",
    "locate_key_column",
    "materialize_records",
]
