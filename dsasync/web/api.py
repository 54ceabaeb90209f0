from __future__ import annotations

import asyncio
import logging
import threading
import time
from datetime import datetime, timedelta, timezone
from pathlib import Path

from fastapi import APIRouter, HTTPException
from fastapi.responses import JSONResponse

from dsasync.core.config import load_config, masked_dump
from dsasync.core.log_tail import build_log_tail_payload
from dsasync.providers.dsa.client import AuthenticationError
from dsasync.sync.history import list_runs
from dsasync.sync.runner import build_synchronizer

router = APIRouter(prefix="/api")

SYNC_RUN_LOCK = threading.Lock()
SCHEDULER_STATE_LOCK = threading.Lock()
SCHEDULER_POLL_GRANULARITY_SEC = 1

_scheduler_task: asyncio.Task | None = None
_scheduler_stop_event: asyncio.Event | None = None
_scheduler_state: dict[str, object] = {
    "running": False,
    "enabled": False,
    "daily_run_time": None,
    "last_started_at": None,
    "last_finished_at": None,
    "last_result": None,
    "last_error": None,
    "next_run_at": None,
    "skipped_busy_count": 0,
    "run_count": 0,
}


class SyncBusyError(RuntimeError):
    pass


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _as_int(value: object, default: int = 0) -> int:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            return default
    return default


def _iso_from_ts(ts: object) -> str | None:
    if not isinstance(ts, (int, float)) or isinstance(ts, bool):
        return None
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


def next_daily_run(now: datetime, daily_run_time: str) -> datetime:
    """Next local occurrence of ``HH:MM`` strictly after ``now``."""
    hour, minute = (int(part) for part in daily_run_time.split(":", 1))
    candidate = now.replace(hour=hour, minute=minute, second=0, microsecond=0)
    if candidate <= now:
        candidate += timedelta(days=1)
    return candidate


def _scheduler_state_update(**kwargs) -> None:
    with SCHEDULER_STATE_LOCK:
        _scheduler_state.update(kwargs)


def _scheduler_state_snapshot() -> dict[str, object]:
    with SCHEDULER_STATE_LOCK:
        snap = dict(_scheduler_state)

    next_run_at = snap.get("next_run_at")
    next_run_in_sec = None
    if isinstance(next_run_at, (int, float)):
        next_run_in_sec = max(int(next_run_at - time.time()), 0)

    return {
        "running": bool(snap.get("running")),
        "enabled": bool(snap.get("enabled")),
        "daily_run_time": snap.get("daily_run_time"),
        "last_started_at": _iso_from_ts(snap.get("last_started_at")),
        "last_finished_at": _iso_from_ts(snap.get("last_finished_at")),
        "next_run_at": _iso_from_ts(next_run_at),
        "next_run_in_sec": next_run_in_sec,
        "last_result": snap.get("last_result"),
        "last_error": snap.get("last_error"),
        "run_count": _as_int(snap.get("run_count"), 0),
        "skipped_busy_count": _as_int(snap.get("skipped_busy_count"), 0),
    }


async def _wait_stop_or_timeout(stop_event: asyncio.Event, timeout_sec: float) -> bool:
    if timeout_sec <= 0:
        return stop_event.is_set()
    try:
        await asyncio.wait_for(stop_event.wait(), timeout=timeout_sec)
        return True
    except asyncio.TimeoutError:
        return False


def _run_sync_once(run_type: str) -> dict:
    _cfg, engine = build_synchronizer()
    return engine.run_once(run_type=run_type)


def run_sync_exclusive(run_type: str) -> dict:
    if not SYNC_RUN_LOCK.acquire(blocking=False):
        raise SyncBusyError("sync_busy")
    try:
        return _run_sync_once(run_type)
    finally:
        SYNC_RUN_LOCK.release()


def _build_readiness_payload() -> dict:
    checks: dict[str, bool] = {
        "config_load": False,
        "dsa_host_configured": False,
        "dsa_credentials_configured": False,
        "local_root_exists": False,
        "database_parent_ready": False,
        "log_parent_ready": False,
        "scheduler_running": False,
        "scheduler_enabled": False,
    }
    warnings: list[str] = []
    errors: list[str] = []
    scheduler = _scheduler_state_snapshot()
    checks["scheduler_running"] = bool(scheduler.get("running"))
    checks["scheduler_enabled"] = bool(scheduler.get("enabled"))

    cfg = None
    try:
        cfg = load_config()
        checks["config_load"] = True
    except Exception as e:
        errors.append(f"config_load_failed: {e}")

    if cfg is not None:
        checks["dsa_host_configured"] = bool(cfg.dsa.host)
        checks["dsa_credentials_configured"] = bool(cfg.dsa.auth_token or (cfg.dsa.username and cfg.dsa.password))
        if not checks["dsa_credentials_configured"]:
            warnings.append("dsa_credentials_missing")

        checks["local_root_exists"] = cfg.resolved_local_root().is_dir()
        if not checks["local_root_exists"]:
            warnings.append(f"local_root_missing: {cfg.resolved_local_root()}")

        try:
            Path(cfg.database.path).parent.mkdir(parents=True, exist_ok=True)
            checks["database_parent_ready"] = True
        except OSError as e:
            errors.append(f"database_parent_unavailable: {e}")

        try:
            Path(cfg.logging.file).parent.mkdir(parents=True, exist_ok=True)
            checks["log_parent_ready"] = True
        except OSError as e:
            errors.append(f"log_parent_unavailable: {e}")

    if checks["scheduler_enabled"] and not checks["scheduler_running"]:
        warnings.append("scheduler_enabled_but_not_running")

    ok = checks["config_load"] and checks["database_parent_ready"] and checks["log_parent_ready"]
    return {
        "ok": ok,
        "checked_at": _now_iso(),
        "checks": checks,
        "warnings": warnings,
        "errors": errors,
        "scheduler": scheduler,
    }


async def _scheduler_loop(stop_event: asyncio.Event) -> None:
    logger = logging.getLogger("scheduler")
    next_run_at: datetime | None = None
    previous_run_time: str | None = None
    _scheduler_state_update(running=True, last_error=None, last_result=None)
    logger.info("scheduler_started")

    try:
        while not stop_event.is_set():
            cfg = load_config()
            enabled = bool(cfg.sync.schedule_enabled)
            run_time = cfg.sync.daily_run_time
            _scheduler_state_update(enabled=enabled, daily_run_time=run_time)

            if not enabled:
                next_run_at = None
                previous_run_time = None
                _scheduler_state_update(next_run_at=None)
                await _wait_stop_or_timeout(stop_event, SCHEDULER_POLL_GRANULARITY_SEC)
                continue

            now = datetime.now()
            if next_run_at is None or run_time != previous_run_time:
                next_run_at = next_daily_run(now, run_time)
            previous_run_time = run_time
            _scheduler_state_update(next_run_at=next_run_at.timestamp())

            wait_sec = (next_run_at - now).total_seconds()
            if wait_sec > 0:
                await _wait_stop_or_timeout(stop_event, min(wait_sec, SCHEDULER_POLL_GRANULARITY_SEC))
                continue

            next_run_at = next_daily_run(datetime.now(), run_time)
            started_ts = time.time()
            _scheduler_state_update(last_started_at=started_ts, last_result="running", last_error=None)
            try:
                summary = await asyncio.to_thread(run_sync_exclusive, "scheduled")
                errors = _as_int(summary.get("errors", 0), 0)
                _scheduler_state_update(
                    last_finished_at=time.time(),
                    last_result="warning" if errors > 0 else "success",
                    last_error=f"errors={errors}" if errors > 0 else None,
                    run_count=_as_int(_scheduler_state_snapshot().get("run_count"), 0) + 1,
                )
                logger.info(
                    "scheduled_sync_completed errors=%s uploaded=%s derived_uploaded=%s",
                    errors,
                    summary.get("uploaded", 0),
                    summary.get("derived_uploaded", 0),
                )
            except SyncBusyError:
                _scheduler_state_update(
                    skipped_busy_count=_as_int(_scheduler_state_snapshot().get("skipped_busy_count"), 0) + 1,
                    last_finished_at=time.time(),
                    last_result="skipped_busy",
                    last_error="sync_busy",
                )
                logger.warning("scheduled_sync_skipped sync_busy")
            except Exception as e:
                _scheduler_state_update(
                    last_finished_at=time.time(),
                    last_result="failed",
                    last_error=str(e),
                    run_count=_as_int(_scheduler_state_snapshot().get("run_count"), 0) + 1,
                )
                logger.exception("scheduled_sync_failed: %s", e)
            finally:
                _scheduler_state_update(next_run_at=next_run_at.timestamp())
    finally:
        _scheduler_state_update(running=False, next_run_at=None)
        logger.info("scheduler_stopped")


def start_scheduler() -> None:
    global _scheduler_task, _scheduler_stop_event
    if _scheduler_task and not _scheduler_task.done():
        return

    _scheduler_stop_event = asyncio.Event()
    _scheduler_task = asyncio.create_task(_scheduler_loop(_scheduler_stop_event), name="dsasync_scheduler")


async def stop_scheduler() -> None:
    global _scheduler_task, _scheduler_stop_event
    if _scheduler_stop_event is not None:
        _scheduler_stop_event.set()

    if _scheduler_task is not None:
        try:
            await _scheduler_task
        except Exception:
            logging.getLogger("scheduler").exception("scheduler_stop_error")

    _scheduler_task = None
    _scheduler_stop_event = None
    _scheduler_state_update(running=False, next_run_at=None)


@router.get("/healthz")
def healthz():
    return {
        "ok": True,
        "status": "alive",
        "checked_at": _now_iso(),
    }


@router.get("/readyz")
def readyz():
    payload = _build_readiness_payload()
    return JSONResponse(status_code=200 if payload["ok"] else 503, content=payload)


@router.get("/config")
def get_config():
    cfg = load_config()
    return {
        **masked_dump(cfg),
        "_effective": {
            "local_root": str(cfg.resolved_local_root()),
            "schedule_enabled": cfg.sync.schedule_enabled,
            "daily_run_time": cfg.sync.daily_run_time,
        },
    }


@router.get("/logs")
def get_logs(n: int = 200, level: str | None = None, module: str | None = None):
    cfg = load_config()
    n = min(max(n, 1), 5000)
    return build_log_tail_payload(cfg.logging.file, n=n, level=level, module=module)


@router.get("/history")
def get_history(limit: int = 50):
    cfg = load_config()
    limit = min(max(limit, 1), 500)
    items = list_runs(cfg.database.path, limit=limit)
    return {"count": len(items), "items": items}


@router.get("/status/scheduler")
def scheduler_status():
    return _scheduler_state_snapshot()


def _trigger_sync(run_type: str) -> dict:
    try:
        summary = run_sync_exclusive(run_type)
    except SyncBusyError:
        raise HTTPException(status_code=409, detail="sync_busy")
    except AuthenticationError as e:
        raise HTTPException(status_code=502, detail=f"authentication_failed: {e}")
    return {"ok": summary.get("errors", 0) == 0, "summary": summary}


@router.post("/actions/run-once")
def run_once():
    return _trigger_sync("manual")


@router.get("/files")
def sync_files():
    return _trigger_sync("http")
