"""HTTP API.

Thin FastAPI layer over a ``DataManager``: routes only translate query
parameters, call the manager and shape the JSON.

Run with ``python -m schoolsheets serve`` or any ASGI server:

    uvicorn schoolsheets.server:app --port 3000
"""

from __future__ import annotations

import hmac
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Dict, Optional

from fastapi import FastAPI, Header, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, JSONResponse
from starlette.concurrency import run_in_threadpool

from schoolsheets.lib.config import Settings
from schoolsheets.lib.env import load_env_file, parse_bool
from schoolsheets.lib.errors import SchoolSheetsError
from schoolsheets.lib.manager import DataManager, create_manager
from schoolsheets.lib.snapshot import RefreshRequest, SnapshotManager

logger = logging.getLogger(__name__)

__all__ = ["create_app"]


def _require_snapshot(manager: DataManager) -> SnapshotManager:
    if not isinstance(manager, SnapshotManager):
        raise HTTPException(status_code=404, detail="Admin actions require CACHE_MODE=snapshot")
    return manager


def _check_token(settings: Settings, token: Optional[str]) -> None:
    if not settings.admin_token:
        return
    if not token or not hmac.compare_digest(token, settings.admin_token):
        raise HTTPException(status_code=401, detail="Invalid or missing admin token")


def create_app(
    settings: Optional[Settings] = None,
    manager: Optional[DataManager] = None,
) -> FastAPI:
    """Build the application.

    Args:
        settings: Service settings (defaults to the environment)
        manager: Pre-built manager, mainly for tests
    """
    if settings is None:
        load_env_file()
        settings = Settings.from_env()
    data = manager or create_manager(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        logger.info(
            "Starting in %s mode (cache TTL %.0fs)",
            data.mode.value,
            settings.cache_ttl_seconds,
        )
        await run_in_threadpool(data.startup)
        yield
        data.close()

    app = FastAPI(title="School Sheets API", lifespan=lifespan)
    app.state.settings = settings
    app.state.manager = data

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origin_list,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
    )

    @app.exception_handler(SchoolSheetsError)
    async def handle_service_error(request: Request, exc: SchoolSheetsError) -> JSONResponse:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        return JSONResponse(status_code=500, content={"error": exc.message})

    @app.get("/", response_class=HTMLResponse)
    def index() -> str:
        return DEMO_PAGE

    @app.get("/health")
    def health() -> Dict[str, Any]:
        return {"ok": True, "time": datetime.now(timezone.utc).isoformat()}

    @app.get("/stats")
    @app.get("/api/stats")
    def stats() -> Dict[str, Any]:
        return data.stats()

    @app.get("/api/profile")
    def profile() -> Dict[str, Any]:
        return data.profile().to_dict()

    @app.get("/api/performance")
    def performance() -> Dict[str, Any]:
        return data.performance().to_dict()

    @app.get("/api/performance/key")
    def performance_key() -> Dict[str, Any]:
        return data.performance_key().to_dict()

    @app.get("/api/schools")
    def schools(only_matched: Optional[str] = Query(None, alias="onlyMatched")) -> Dict[str, Any]:
        return data.schools(only_matched=parse_bool(only_matched or None, default=True)).to_dict()

    @app.get("/api/sheets/{sheet_name}")
    def sheet(sheet_name: str, cell_range: str = Query("A:C", alias="range")) -> Dict[str, Any]:
        result = data.sheet(sheet_name, cell_range)
        return result.to_dict(data.metrics.hit_rate)

    @app.post("/api/cache/clear")
    def clear_cache() -> Dict[str, Any]:
        data.clear_cache()
        return {"message": "Cache cleared successfully"}

    @app.api_route("/admin/refresh", methods=["GET", "POST"])
    def admin_refresh(
        token: Optional[str] = Query(None),
        x_admin_token: Optional[str] = Header(None),
        reason: str = Query("manual"),
    ) -> Dict[str, Any]:
        snapshot_manager = _require_snapshot(data)
        _check_token(settings, token or x_admin_token)
        return snapshot_manager.refresh(RefreshRequest(reason=reason)).to_dict()

    @app.get("/admin/status")
    def admin_status() -> Dict[str, Any]:
        return _require_snapshot(data).status()

    @app.post("/admin/save")
    def admin_save(
        token: Optional[str] = Query(None),
        x_admin_token: Optional[str] = Header(None),
    ) -> Dict[str, Any]:
        snapshot_manager = _require_snapshot(data)
        _check_token(settings, token or x_admin_token)
        return snapshot_manager.save()

    @app.post("/admin/load")
    def admin_load(
        token: Optional[str] = Query(None),
        x_admin_token: Optional[str] = Header(None),
    ) -> Dict[str, Any]:
        snapshot_manager = _require_snapshot(data)
        _check_token(settings, token or x_admin_token)
        return snapshot_manager.load()

    return app


DEMO_PAGE = """<!DOCTYPE html>
<html>
<head>
  <title>School Sheets API</title>
  <style>
    body { font-family: Arial, sans-serif; max-width: 800px; margin: 50px auto; padding: 20px; }
    .endpoint { background: #f4f4f4; padding: 10px; margin: 10px 0; border-radius: 5px; }
    code { background: #e0e0e0; padding: 2px 5px; border-radius: 3px; }
  </style>
</head>
<body>
  <h1>School Sheets API</h1>
  <p>Cached access to the School Profile and School Performance sheets.</p>

  <h2>Available Endpoints:</h2>
  <div class="endpoint"><strong>GET /api/profile</strong><br>School Profile rows and records</div>
  <div class="endpoint"><strong>GET /api/performance</strong><br>School Performance with flattened headers</div>
  <div class="endpoint"><strong>GET /api/performance/key</strong><br>Performance key column plus the configured column range</div>
  <div class="endpoint"><strong>GET /api/schools</strong><br>Profile joined with Performance on School ID<br>
    Query params: <code>?onlyMatched=false</code> for an outer join</div>
  <div class="endpoint"><strong>GET /api/sheets/:sheetName</strong><br>Raw values of any sheet<br>
    Query params: <code>?range=A:Z</code></div>
  <div class="endpoint"><strong>GET /stats</strong><br>Server statistics and cache performance</div>
  <div class="endpoint"><strong>POST /api/cache/clear</strong><br>Manually clear the cache</div>
  <div class="endpoint"><strong>GET|POST /admin/refresh</strong>, <strong>GET /admin/status</strong>,
    <strong>POST /admin/save</strong>, <strong>POST /admin/load</strong><br>Snapshot mode only</div>

  <h2>Configuration:</h2>
  <ul>
    <li><code>SPREADSHEET_ID</code> - Your Google Sheets ID</li>
    <li><code>GOOGLE_SERVICE_ACCOUNT_KEY</code> - Service Account JSON (recommended)</li>
    <li><code>GOOGLE_API_KEY</code> - API key for public sheets</li>
    <li><code>CACHE_MODE</code> - <code>ttl</code> (default) or <code>snapshot</code></li>
    <li><code>PORT</code> - Server port (default: 3000)</li>
  </ul>
</body>
</html>
"""


def __getattr__(name: str) -> Any:
    # ``uvicorn schoolsheets.server:app`` builds the app from the environment on demand.
    if name == "app":
        application = create_app()
        globals()["app"] = application
        return application
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
