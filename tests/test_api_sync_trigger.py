from pathlib import Path

from fastapi import FastAPI
from fastapi.testclient import TestClient

from dsasync.core.config import AppConfig
from dsasync.providers.dsa.client import AuthenticationError
from dsasync.sync.history import finish_run, init_db, insert_run
from dsasync.web import api as api_module


def _build_client() -> TestClient:
    app = FastAPI()
    app.include_router(api_module.router)
    return TestClient(app)


def test_files_endpoint_runs_sync_and_returns_summary(monkeypatch):
    calls: list[str] = []

    def fake_run(run_type: str) -> dict:
        calls.append(run_type)
        return {"uploaded": 2, "derived_uploaded": 1, "errors": 0}

    monkeypatch.setattr(api_module, "_run_sync_once", fake_run)

    resp = _build_client().get("/api/files")

    assert resp.status_code == 200
    assert resp.json() == {"ok": True, "summary": {"uploaded": 2, "derived_uploaded": 1, "errors": 0}}
    assert calls == ["http"]
    assert not api_module.SYNC_RUN_LOCK.locked()


def test_run_once_action_reports_per_file_errors(monkeypatch):
    monkeypatch.setattr(api_module, "_run_sync_once", lambda run_type: {"uploaded": 0, "errors": 3})

    resp = _build_client().post("/api/actions/run-once")

    assert resp.status_code == 200
    assert resp.json()["ok"] is False
    assert resp.json()["summary"]["errors"] == 3


def test_trigger_returns_409_while_a_run_is_in_progress(monkeypatch):
    monkeypatch.setattr(api_module, "_run_sync_once", lambda run_type: {"errors": 0})

    api_module.SYNC_RUN_LOCK.acquire()
    try:
        resp = _build_client().get("/api/files")
    finally:
        api_module.SYNC_RUN_LOCK.release()

    assert resp.status_code == 409
    assert resp.json()["detail"] == "sync_busy"


def test_trigger_returns_502_on_authentication_failure(monkeypatch):
    def fake_run(run_type: str) -> dict:
        raise AuthenticationError("auth_failed: status=401", status_code=401)

    monkeypatch.setattr(api_module, "_run_sync_once", fake_run)

    resp = _build_client().get("/api/files")

    assert resp.status_code == 502
    assert resp.json()["detail"].startswith("authentication_failed")
    assert not api_module.SYNC_RUN_LOCK.locked()


def test_history_lists_recorded_runs(monkeypatch, tmp_path: Path):
    cfg = AppConfig()
    cfg.database.path = str(tmp_path / "service.db")
    init_db(cfg.database.path)
    run_id = insert_run(cfg.database.path, "http", "/data/lcdr")
    finish_run(cfg.database.path, run_id, "success", {"uploaded": 4, "errors": 0})
    monkeypatch.setattr(api_module, "load_config", lambda: cfg)

    resp = _build_client().get("/api/history")

    assert resp.status_code == 200
    payload = resp.json()
    assert payload["count"] == 1
    assert payload["items"][0]["run_type"] == "http"
    assert payload["items"][0]["status"] == "success"
    assert payload["items"][0]["summary"]["uploaded"] == 4


def test_logs_endpoint_reads_configured_file(monkeypatch, tmp_path: Path):
    log_file = tmp_path / "service.log"
    log_file.write_text("2026-02-22 01:00:00,000 [INFO] [sync] run_started\n", encoding="utf-8")
    cfg = AppConfig()
    cfg.logging.file = str(log_file)
    monkeypatch.setattr(api_module, "load_config", lambda: cfg)

    resp = _build_client().get("/api/logs", params={"module": "sync"})

    assert resp.status_code == 200
    assert resp.json()["count"] == 1
    assert resp.json()["items"][0]["message"] == "run_started"
