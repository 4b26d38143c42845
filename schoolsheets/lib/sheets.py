"""Google Sheets data source.

Reads A1-notation ranges through the Sheets v4 values endpoint:

    GET https://sheets.googleapis.com/v4/spreadsheets/{id}/values/{range}

Example:
    from schoolsheets.lib.config import Settings
    from schoolsheets.lib.metrics import ServiceMetrics
    from schoolsheets.lib.sheets import SheetsClient

    client = SheetsClient(Settings.from_env(), ServiceMetrics())
    rows = client.get_range("School Profile!A:ZZ")
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Dict, List, Optional, Protocol
from urllib.parse import quote

import httpx
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from schoolsheets.lib.auth import AuthConfig, SheetsAuth
from schoolsheets.lib.config import Settings
from schoolsheets.lib.errors import SchoolSheetsError, UpstreamFetchError
from schoolsheets.lib.metrics import ServiceMetrics

logger = logging.getLogger(__name__)

__all__ = ["DataSource", "SheetsClient", "SHEETS_API_BASE"]

SHEETS_API_BASE = "https://sheets.googleapis.com"
RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}


class DataSource(Protocol):
    """Anything that can return the cell values of a range."""

    def get_range(self, range_spec: str) -> List[List[Any]]:
        ...


class SheetsClient:
    """Sheets v4 client bound to one spreadsheet.

    Authentication is resolved on first use and reused for the life of the
    client, so a missing credential surfaces as ConfigurationError on the
    first dataset request rather than at import time.

    Retries are opt-in: ``sheets_max_retries`` counts total attempts, and
    the default of 1 means a failed call is reported immediately.
    """

    def __init__(
        self,
        settings: Settings,
        metrics: ServiceMetrics,
        *,
        transport: Optional[httpx.BaseTransport] = None,
        auth: Optional[SheetsAuth] = None,
    ) -> None:
        self.settings = settings
        self.metrics = metrics
        self._transport = transport
        self._auth = auth
        self._auth_lock = threading.Lock()
        self._client_lock = threading.Lock()
        self._client: Optional[httpx.Client] = None

    def _get_auth(self) -> SheetsAuth:
        with self._auth_lock:
            if self._auth is None:
                self._auth = SheetsAuth(AuthConfig.from_settings(self.settings))
                logger.info("Using %s authentication", self._auth.description)
            return self._auth

    def _get_client(self) -> httpx.Client:
        with self._client_lock:
            if self._client is None:
                self._client = httpx.Client(
                    base_url=SHEETS_API_BASE,
                    timeout=self.settings.sheets_timeout,
                    transport=self._transport,
                )
            return self._client

    def close(self) -> None:
        with self._client_lock:
            if self._client is not None:
                self._client.close()
                self._client = None

    def _values_path(self, range_spec: str) -> str:
        spreadsheet_id = quote(self.settings.spreadsheet_id, safe="")
        return f"/v4/spreadsheets/{spreadsheet_id}/values/{quote(range_spec, safe='')}"

    def get_range(self, range_spec: str) -> List[List[Any]]:
        """Return the rows of a range; ``[]`` when the range is empty.

        Raises:
            ConfigurationError: spreadsheet id or credentials missing
            UpstreamFetchError: network, auth or quota failure
        """
        self.settings.require_source()
        auth = self._get_auth()
        client = self._get_client()
        path = self._values_path(range_spec)

        @retry(
            stop=stop_after_attempt(self.settings.sheets_max_retries),
            wait=wait_exponential(multiplier=0.5, min=0.5, max=30),
            retry=retry_if_exception(self._should_retry),
            reraise=True,
            before_sleep=before_sleep_log(logger, logging.WARNING),
        )
        def do_request() -> httpx.Response:
            headers, params = auth.build()
            logger.debug("Fetching range %s", range_spec)
            response = client.get(path, headers=headers, params=params)
            response.raise_for_status()
            return response

        try:
            response = do_request()
            payload: Dict[str, Any] = response.json()
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            raise UpstreamFetchError(
                f"Sheets API returned {status} for {range_spec}: {_error_message(exc.response)}",
                range_spec=range_spec,
                status_code=status,
                cause=exc,
            ) from exc
        except httpx.HTTPError as exc:
            raise UpstreamFetchError(
                f"Could not reach the Sheets API for {range_spec}: {exc}",
                range_spec=range_spec,
                cause=exc,
            ) from exc
        except ValueError as exc:
            raise UpstreamFetchError(
                f"Sheets API returned invalid JSON for {range_spec}",
                range_spec=range_spec,
                cause=exc,
            ) from exc

        self.metrics.record_api_call()
        values = payload.get("values") or []
        logger.info("Fetched %d rows from %s", len(values), range_spec)
        return [list(row) for row in values]

    @staticmethod
    def _should_retry(exc: BaseException) -> bool:
        if isinstance(exc, SchoolSheetsError):
            return False
        if isinstance(exc, httpx.HTTPStatusError):
            return exc.response.status_code in RETRYABLE_STATUS_CODES
        return isinstance(exc, httpx.TransportError)


def _error_message(response: httpx.Response) -> str:
    """Pull Google's error message out of an error body, if any."""
    try:
        body = response.json()
    except ValueError:
        return response.reason_phrase or "error"
    error = body.get("error") if isinstance(body, dict) else None
    if isinstance(error, dict) and error.get("message"):
        return str(error["message"])
    return response.reason_phrase or "error"
