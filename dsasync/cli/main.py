from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import typer
from rich.console import Console
from rich.table import Table

from dsasync.core.config import DEFAULT_CONFIG_PATH, load_config, masked_dump
from dsasync.core.log_tail import build_log_tail_payload
from dsasync.providers.dsa.client import AuthenticationError
from dsasync.sync.history import list_runs
from dsasync.sync.layout import create_folder_structure
from dsasync.sync.runner import build_synchronizer

app = typer.Typer(add_completion=False)
console = Console()


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _print_json(payload: Any) -> None:
    print(json.dumps(payload, ensure_ascii=False, indent=2, default=str))


@app.command("config-show")
def config_show(path: Path = DEFAULT_CONFIG_PATH):
    """Show current config with secrets masked."""
    cfg = load_config(path)
    _print_json(masked_dump(cfg))


@app.command("config-validate")
def config_validate(
    path: Path = DEFAULT_CONFIG_PATH,
    strict: bool = typer.Option(False, "--strict", help="Return non-zero when validation fails."),
):
    """Validate config and runtime prerequisites."""
    out: dict[str, Any] = {
        "ok": True,
        "checked_at": _now_iso(),
        "config_path": str(path),
        "checks": {
            "config_exists": path.exists(),
            "dsa_host_configured": False,
            "dsa_credentials_configured": False,
            "base_collection_configured": False,
            "local_root_exists": False,
            "web_port_valid": False,
        },
        "warnings": [],
        "errors": [],
    }

    try:
        cfg = load_config(path)
    except Exception as e:
        out["ok"] = False
        out["errors"].append(f"load_config_failed: {e}")
        _print_json(out)
        if strict:
            raise typer.Exit(2)
        return

    out["checks"]["dsa_host_configured"] = bool(cfg.dsa.host)
    if not cfg.dsa.host:
        out["errors"].append("dsa_host_missing")

    out["checks"]["dsa_credentials_configured"] = bool(cfg.dsa.auth_token or (cfg.dsa.username and cfg.dsa.password))
    if not out["checks"]["dsa_credentials_configured"]:
        out["errors"].append("dsa_credentials_missing: set DSA_USERNAME/DSA_PASSWORD or DSA_AUTH_TOKEN")

    out["checks"]["base_collection_configured"] = bool(cfg.dsa.base_collection_id)
    if not cfg.dsa.base_collection_id:
        out["warnings"].append("base_collection_missing: files at the root level cannot be placed")

    local_root = cfg.resolved_local_root()
    out["checks"]["local_root_exists"] = local_root.is_dir()
    if not local_root.is_dir():
        out["warnings"].append(f"local_root_missing: {local_root}")

    out["checks"]["web_port_valid"] = 1 <= int(cfg.web_port) <= 65535
    if not out["checks"]["web_port_valid"]:
        out["errors"].append(f"web_port_out_of_range: {cfg.web_port}")

    out["ok"] = len(out["errors"]) == 0
    _print_json(out)
    if strict and not out["ok"]:
        raise typer.Exit(2)


@app.command()
def status():
    """Show runtime summary."""
    cfg = load_config()
    runs = list_runs(cfg.database.path, limit=1)
    last = runs[0] if runs else None

    table = Table(title="dsasync status")
    table.add_column("Key")
    table.add_column("Value")
    table.add_row("config", str(DEFAULT_CONFIG_PATH))
    table.add_row("dsa_host", cfg.dsa.host)
    table.add_row("base_collection_id", cfg.dsa.base_collection_id or "(unset)")
    table.add_row("local_root", str(cfg.resolved_local_root()))
    table.add_row("schedule", f"daily at {cfg.sync.daily_run_time}" if cfg.sync.schedule_enabled else "off")
    table.add_row("last_run", f"{last['started_at']} {last['status']}" if last else "(none)")
    table.add_row("db", cfg.database.path)
    table.add_row("log", cfg.logging.file)
    table.add_row("web", f"http://{cfg.web_bind_host}:{cfg.web_port}")
    console.print(table)


@app.command("run-once")
def run_once():
    """Run one full synchronization and print the summary."""
    from dsasync.core.logging_setup import setup_logging

    cfg = load_config()
    setup_logging(cfg.logging.level, cfg.logging.file, cfg.logging.max_bytes, cfg.logging.backup_count)
    _cfg, engine = build_synchronizer(cfg)
    try:
        summary = engine.run_once(run_type="cli")
    except AuthenticationError as e:
        _print_json({"ok": False, "fatal_error": str(e)})
        raise typer.Exit(1)
    _print_json({"ok": summary.get("errors", 0) == 0, "summary": summary})


@app.command("init-layout")
def init_layout(
    structure_file: Path = typer.Argument(..., help="YAML or JSON file with labs/studies/samples."),
    root: Path = typer.Option(None, "--root", help="Local root; defaults to the configured one."),
):
    """Create the lab/study/sample directory layout locally."""
    import yaml

    cfg = load_config()
    text = structure_file.read_text(encoding="utf-8")
    structure = yaml.safe_load(text) or {}
    if not isinstance(structure, dict):
        _print_json({"ok": False, "error": "structure_not_a_mapping"})
        raise typer.Exit(2)

    result = create_folder_structure(root or cfg.resolved_local_root(), structure)
    _print_json({"ok": not result["failed"], **result})
    if result["failed"]:
        raise typer.Exit(1)


@app.command()
def history(limit: int = typer.Option(20, "--limit")):
    """Show recent sync runs."""
    cfg = load_config()
    table = Table(title="sync runs")
    for col in ("id", "type", "status", "started", "finished", "uploaded", "derived", "errors"):
        table.add_column(col)
    for run in list_runs(cfg.database.path, limit=limit):
        summary = run.get("summary") or {}
        table.add_row(
            str(run["id"]),
            str(run.get("run_type") or ""),
            str(run.get("status") or ""),
            str(run.get("started_at") or ""),
            str(run.get("finished_at") or ""),
            str(summary.get("uploaded", 0)),
            str(summary.get("derived_uploaded", 0)),
            str(summary.get("errors", 0)),
        )
    console.print(table)


@app.command()
def logs(
    n: int = typer.Option(200, "--n"),
    level: str = typer.Option(None, "--level"),
    module: str = typer.Option(None, "--module"),
):
    """Print the tail of the service log."""
    cfg = load_config()
    payload = build_log_tail_payload(cfg.logging.file, n=n, level=level, module=module)
    print(payload["tail"])


@app.command()
def serve():
    """Start the web API with the daily scheduler."""
    from dsasync.web.main import main as web_main

    web_main()


def main():
    app()


if __name__ == "__main__":
    main()
