"""Service configuration.

Settings are read from the process environment (after an optional .env
file) or from a YAML file whose string values may reference ``${VAR}``.
Validation of credentials is deferred until the first upstream fetch so
``/health`` and ``/stats`` keep working on a half-configured deployment.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, fields
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Union

import yaml

from schoolsheets.lib.env import expand_options, parse_bool
from schoolsheets.lib.errors import ConfigurationError

logger = logging.getLogger(__name__)

__all__ = ["CacheMode", "Settings"]


class CacheMode(Enum):
    """How derived datasets are kept between requests."""

    TTL = "ttl"  # per-key cache with lazy expiry
    SNAPSHOT = "snapshot"  # manual refresh, persisted to disk


# Settings field -> environment variable
_ENV_NAMES: Dict[str, str] = {
    "spreadsheet_id": "SPREADSHEET_ID",
    "api_key": "GOOGLE_API_KEY",
    "service_account_key": "GOOGLE_SERVICE_ACCOUNT_KEY",
    "service_account_file": "GOOGLE_SERVICE_ACCOUNT_FILE",
    "profile_range": "PROFILE_RANGE",
    "performance_range": "PERFORMANCE_RANGE",
    "performance_header_rows": "PERFORMANCE_HEADER_ROWS",
    "performance_key_columns": "PERFORMANCE_KEY_COLUMNS",
    "cache_mode": "CACHE_MODE",
    "cache_ttl_seconds": "CACHE_TTL_SECONDS",
    "snapshot_path": "SNAPSHOT_PATH",
    "admin_token": "ADMIN_TOKEN",
    "sheets_timeout": "SHEETS_TIMEOUT",
    "sheets_max_retries": "SHEETS_MAX_RETRIES",
    "host": "HOST",
    "port": "PORT",
    "cors_origins": "CORS_ORIGINS",
    "log_level": "LOG_LEVEL",
    "log_json": "LOG_JSON",
}


@dataclass(frozen=True)
class Settings:
    """Resolved service settings."""

    spreadsheet_id: str = ""
    api_key: str = ""
    service_account_key: str = ""  # raw JSON document
    service_account_file: str = ""

    profile_range: str = "School Profile!A:ZZ"
    performance_range: str = "School Performance!A:ZZ"
    performance_header_rows: int = 3
    performance_key_columns: str = "AB:AU"

    cache_mode: CacheMode = CacheMode.TTL
    cache_ttl_seconds: float = 60.0
    snapshot_path: str = "data/snapshot.json"
    admin_token: str = ""

    sheets_timeout: float = 30.0
    sheets_max_retries: int = 1

    host: str = "0.0.0.0"
    port: int = 3000
    cors_origins: str = "*"
    log_level: str = "INFO"
    log_json: bool = False

    def __post_init__(self) -> None:
        if not 1 <= self.performance_header_rows <= 3:
            raise ConfigurationError(
                "PERFORMANCE_HEADER_ROWS must be between 1 and 3",
                field="performance_header_rows",
                value=self.performance_header_rows,
            )
        if self.cache_ttl_seconds <= 0:
            raise ConfigurationError(
                "CACHE_TTL_SECONDS must be positive",
                field="cache_ttl_seconds",
                value=self.cache_ttl_seconds,
            )
        if self.sheets_max_retries < 1:
            raise ConfigurationError(
                "SHEETS_MAX_RETRIES must be at least 1 (1 = no retry)",
                field="sheets_max_retries",
                value=self.sheets_max_retries,
            )

    @property
    def uses_service_account(self) -> bool:
        return bool(self.service_account_key or self.service_account_file)

    @property
    def cors_origin_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    def service_account_info(self) -> Optional[Dict[str, Any]]:
        """Return the parsed service account document, if configured."""
        if self.service_account_key:
            try:
                info = json.loads(self.service_account_key)
            except json.JSONDecodeError as exc:
                raise ConfigurationError(
                    "GOOGLE_SERVICE_ACCOUNT_KEY is not valid JSON",
                    field="service_account_key",
                    suggestion="Paste the full service account JSON on one line.",
                ) from exc
            if not isinstance(info, dict):
                raise ConfigurationError(
                    "GOOGLE_SERVICE_ACCOUNT_KEY must be a JSON object",
                    field="service_account_key",
                )
            return info
        if self.service_account_file:
            path = Path(self.service_account_file)
            try:
                return json.loads(path.read_text(encoding="utf-8"))
            except (OSError, json.JSONDecodeError) as exc:
                raise ConfigurationError(
                    f"Cannot read service account file: {exc}",
                    field="service_account_file",
                    value=self.service_account_file,
                ) from exc
        return None

    def require_source(self) -> None:
        """Raise ConfigurationError unless the data source is usable."""
        if not self.spreadsheet_id:
            raise ConfigurationError(
                "SPREADSHEET_ID is not set",
                field="spreadsheet_id",
                suggestion="Set SPREADSHEET_ID to the id in the sheet URL.",
            )
        if not (self.api_key or self.uses_service_account):
            raise ConfigurationError(
                "No Google credentials configured",
                suggestion=(
                    "Set GOOGLE_SERVICE_ACCOUNT_KEY (recommended) or GOOGLE_API_KEY."
                ),
            )

    @classmethod
    def from_mapping(cls, values: Mapping[str, Any]) -> "Settings":
        """Build settings from a mapping keyed by field name.

        Unknown keys are ignored with a warning; strings are coerced to
        the field type.
        """
        known = {f.name: f for f in fields(cls)}
        kwargs: Dict[str, Any] = {}
        for key, raw in values.items():
            if key not in known:
                logger.warning("Ignoring unknown setting '%s'", key)
                continue
            if raw is None:
                continue
            kwargs[key] = _coerce(key, raw, known[key].default)
        return cls(**kwargs)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        """Build settings from environment variables."""
        env = os.environ if environ is None else environ
        values = {
            name: env[var]
            for name, var in _ENV_NAMES.items()
            if var in env
        }
        return cls.from_mapping(values)

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "Settings":
        """Build settings from a YAML file, expanding ${VAR} references.

        Environment variables still win over the file for any key they set.
        """
        config_path = Path(path)
        try:
            data = yaml.safe_load(config_path.read_text(encoding="utf-8")) or {}
        except (OSError, yaml.YAMLError) as exc:
            raise ConfigurationError(
                f"Cannot load config file: {exc}",
                field="config",
                value=str(config_path),
            ) from exc
        if not isinstance(data, dict):
            raise ConfigurationError(
                "Config file must contain a mapping",
                field="config",
                value=str(config_path),
            )
        merged = expand_options(data)
        for name, var in _ENV_NAMES.items():
            if var in os.environ:
                merged[name] = os.environ[var]
        return cls.from_mapping(merged)


def _coerce(name: str, raw: Any, default: Any) -> Any:
    if isinstance(default, Enum):
        try:
            return type(default)(str(raw).strip().lower())
        except ValueError as exc:
            choices = ", ".join(m.value for m in type(default))
            raise ConfigurationError(
                f"Invalid value for {name}; expected one of: {choices}",
                field=name,
                value=raw,
            ) from exc
    if isinstance(default, bool):
        return parse_bool(raw, default)
    if isinstance(default, int):
        try:
            return int(raw)
        except (TypeError, ValueError) as exc:
            raise ConfigurationError(
                f"{name} must be an integer", field=name, value=raw
            ) from exc
    if isinstance(default, float):
        try:
            return float(raw)
        except (TypeError, ValueError) as exc:
            raise ConfigurationError(
                f"{name} must be a number", field=name, value=raw
            ) from exc
    return str(raw)
