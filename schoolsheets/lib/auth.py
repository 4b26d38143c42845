"""Google Sheets authentication.

Supports a service account (preferred, sends a bearer token) or a public
API key (sent as the ``key`` query parameter). Credentials are resolved
once per client and reused; service account tokens are refreshed when
they expire.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple

import google.auth.transport.requests
from google.auth.exceptions import GoogleAuthError
from google.oauth2 import service_account

from schoolsheets.lib.config import Settings
from schoolsheets.lib.errors import ConfigurationError, UpstreamFetchError

logger = logging.getLogger(__name__)

__all__ = [
    "AuthType",
    "AuthConfig",
    "SHEETS_READONLY_SCOPE",
    "SheetsAuth",
]

SHEETS_READONLY_SCOPE = "https://www.googleapis.com/auth/spreadsheets.readonly"


class AuthType(Enum):
    """Supported Sheets authentication methods."""

    API_KEY = "api_key"
    SERVICE_ACCOUNT = "service_account"


@dataclass
class AuthConfig:
    """Configuration for Sheets authentication.

    Examples:
        # Public read key
        auth = AuthConfig(auth_type=AuthType.API_KEY, api_key="AIza...")

        # Service account
        auth = AuthConfig(
            auth_type=AuthType.SERVICE_ACCOUNT,
            service_account_info={"type": "service_account", ...},
        )
    """

    auth_type: AuthType
    api_key: Optional[str] = None
    service_account_info: Optional[Dict[str, Any]] = field(default=None, repr=False)

    def __post_init__(self) -> None:
        """Validate configuration based on auth type."""
        if self.auth_type == AuthType.API_KEY and not self.api_key:
            raise ConfigurationError("API key authentication requires 'api_key' to be set")
        if self.auth_type == AuthType.SERVICE_ACCOUNT and not self.service_account_info:
            raise ConfigurationError(
                "Service account authentication requires the service account JSON"
            )

    @classmethod
    def from_settings(cls, settings: Settings) -> "AuthConfig":
        """Pick the service account when present, else the API key."""
        settings.require_source()
        info = settings.service_account_info()
        if info:
            return cls(auth_type=AuthType.SERVICE_ACCOUNT, service_account_info=info)
        return cls(auth_type=AuthType.API_KEY, api_key=settings.api_key)


class SheetsAuth:
    """Builds request headers and params for one AuthConfig."""

    def __init__(self, config: AuthConfig) -> None:
        self.config = config
        self._lock = threading.Lock()
        self._credentials: Optional[service_account.Credentials] = None

        if config.auth_type == AuthType.SERVICE_ACCOUNT:
            try:
                self._credentials = service_account.Credentials.from_service_account_info(
                    config.service_account_info,
                    scopes=[SHEETS_READONLY_SCOPE],
                )
            except (ValueError, KeyError) as exc:
                raise ConfigurationError(
                    f"Invalid service account credentials: {exc}",
                    field="service_account_key",
                ) from exc

    @property
    def description(self) -> str:
        if self.config.auth_type == AuthType.SERVICE_ACCOUNT:
            return "Service Account"
        return "API Key"

    def _bearer_token(self) -> str:
        if self._credentials is None:
            raise ConfigurationError(
                "Service account credentials are not loaded",
                field="service_account_key",
            )
        with self._lock:
            if not self._credentials.valid:
                logger.debug("Refreshing service account token")
                try:
                    self._credentials.refresh(google.auth.transport.requests.Request())
                except GoogleAuthError as exc:
                    raise UpstreamFetchError(
                        "Could not obtain a service account token",
                        cause=exc,
                    ) from exc
            return self._credentials.token

    def build(self) -> Tuple[Dict[str, str], Dict[str, str]]:
        """Return ``(headers, params)`` to add to a Sheets request."""
        headers: Dict[str, str] = {"Accept": "application/json"}
        params: Dict[str, str] = {}

        if self.config.auth_type == AuthType.SERVICE_ACCOUNT:
            headers["Authorization"] = f"Bearer {self._bearer_token()}"
        else:
            params["key"] = self.config.api_key or ""

        return headers, params
