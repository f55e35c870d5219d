"""HTTP query surface for the session monitor.

Endpoints:
  GET    /api/sessions              merged sessions, newest first
  GET    /api/todos/{session_id}    merged todo list for a session
  GET    /api/stats                 cost totals and daily / monthly history
  GET    /api/ratelimit             rate-limit status (?syncedAt=<epoch ms>)
  POST   /api/ratelimit/sync        enter a manual sync snapshot
  DELETE /api/ratelimit/sync        drop the manual sync snapshot
  GET    /api/config                saved key status (masked)
  POST   /api/config                save an API key
  DELETE /api/config                delete the saved key
  GET    /api/anthropic/ratelimit   vendor rate-limit headers
  GET    /api/anthropic/usage       vendor usage totals (admin key)
  POST   /api/refresh               rebuild both caches now
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any

from fastapi import APIRouter, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from session_monitor.credentials.store import InvalidApiKey
from session_monitor.usage.monitor import UsageMonitor
from session_monitor.usage.sync import InvalidSyncInput
from session_monitor.vendor.client import VendorError

logger = logging.getLogger(__name__)

router = APIRouter()


# -- Request models ------------------------------------------------------------


class SyncRequest(BaseModel):
    percent_used: float
    reset_hours: int = 0
    reset_minutes: int = 0
    reset_duration_ms: int | None = None

    def reset_duration(self) -> timedelta:
        if self.reset_duration_ms is not None:
            return timedelta(milliseconds=self.reset_duration_ms)
        return timedelta(hours=self.reset_hours, minutes=self.reset_minutes)


class ConfigRequest(BaseModel):
    api_key: str


def _monitor(request: Request) -> UsageMonitor:
    return request.app.state.monitor


def _vendor_error(e: VendorError) -> JSONResponse:
    logger.info("Vendor request failed: %s", e)
    return JSONResponse(status_code=e.status_code, content=e.to_payload())


# -- Sessions ------------------------------------------------------------------


@router.get("/sessions")
def list_sessions(request: Request) -> dict[str, Any]:
    """All sessions (manifest + discovered), sorted by last activity."""
    return {"sessions": _monitor(request).list_sessions()}


@router.get("/todos/{session_id}")
def get_todos(session_id: str, request: Request) -> dict[str, Any]:
    return {"session_id": session_id, "todos": _monitor(request).get_todos(session_id)}


# -- Costs ---------------------------------------------------------------------


@router.get("/stats")
def get_stats(request: Request) -> dict[str, Any]:
    """Today / week / month / last-month cost with history.

    Returns zeros with ``is_ready`` false until the first cache build completes.
    """
    return _monitor(request).get_stats()


# -- Rate limit ----------------------------------------------------------------


@router.get("/ratelimit")
def get_rate_limit(
    request: Request,
    synced_at: int | None = Query(default=None, alias="syncedAt"),
) -> dict[str, Any]:
    since = None
    if synced_at is not None:
        try:
            since = datetime.fromtimestamp(synced_at / 1000, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            raise HTTPException(status_code=400, detail="Invalid syncedAt timestamp")
    return _monitor(request).get_rate_limit_status(synced_at=since)


@router.post("/ratelimit/sync")
def sync_rate_limit(req: SyncRequest, request: Request) -> dict[str, Any]:
    try:
        return _monitor(request).sync_rate_limit(req.percent_used, req.reset_duration())
    except InvalidSyncInput as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.delete("/ratelimit/sync")
def clear_rate_limit_sync(request: Request) -> dict[str, Any]:
    return _monitor(request).clear_rate_limit_sync()


# -- Config --------------------------------------------------------------------


@router.get("/config")
def get_config(request: Request) -> dict[str, Any]:
    return _monitor(request).get_config()


@router.post("/config")
def set_config(req: ConfigRequest, request: Request) -> dict[str, Any]:
    try:
        return _monitor(request).set_config(req.api_key)
    except InvalidApiKey as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.delete("/config")
def delete_config(request: Request) -> dict[str, Any]:
    return _monitor(request).delete_config()


# -- Vendor API ----------------------------------------------------------------


@router.get("/anthropic/ratelimit", response_model=None)
def get_vendor_rate_limit(request: Request) -> dict[str, Any] | JSONResponse:
    try:
        return _monitor(request).vendor_rate_limits()
    except VendorError as e:
        return _vendor_error(e)


@router.get("/anthropic/usage", response_model=None)
def get_vendor_usage(request: Request) -> dict[str, Any] | JSONResponse:
    try:
        return _monitor(request).vendor_usage()
    except VendorError as e:
        return _vendor_error(e)


@router.post("/refresh")
def refresh(request: Request) -> dict[str, Any]:
    """Force both caches to rebuild and return their readiness."""
    monitor = _monitor(request)
    monitor.refresh()
    return {
        "cost_ready": monitor.cost_store.snapshot.is_ready,
        "rate_limit_ready": monitor.rate_store.snapshot.is_ready,
        "errors": {
            "cost": monitor.cost_store.last_error,
            "rate_limit": monitor.rate_store.last_error,
        },
    }
