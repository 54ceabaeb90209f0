import json
from pathlib import Path

from typer.testing import CliRunner

from dsasync.cli import main as cli_module
from dsasync.core.config import AppConfig
from dsasync.providers.dsa.client import AuthenticationError

runner = CliRunner()


class _FailingEngine:
    def run_once(self, run_type: str = "manual") -> dict:
        raise AuthenticationError("auth_failed: status=401", status_code=401)


def _cfg(tmp_path: Path) -> AppConfig:
    cfg = AppConfig()
    cfg.sync.local_root = str(tmp_path / "lcdr")
    cfg.database.path = str(tmp_path / "service.db")
    cfg.logging.file = str(tmp_path / "service.log")
    return cfg


def test_init_layout_creates_directories(monkeypatch, tmp_path: Path):
    cfg = _cfg(tmp_path)
    monkeypatch.setattr(cli_module, "load_config", lambda *args: cfg)
    structure = tmp_path / "layout.yaml"
    structure.write_text("labs:\n  lab1:\n    studies:\n      study1: [s1]\n", encoding="utf-8")

    result = runner.invoke(cli_module.app, ["init-layout", str(structure)])

    assert result.exit_code == 0, result.output
    payload = json.loads(result.output)
    assert payload["ok"] is True
    assert (tmp_path / "lcdr" / "lab1" / "study1" / "s1").is_dir()


def test_init_layout_rejects_non_mapping(monkeypatch, tmp_path: Path):
    monkeypatch.setattr(cli_module, "load_config", lambda *args: _cfg(tmp_path))
    structure = tmp_path / "layout.yaml"
    structure.write_text("- lab1\n- lab2\n", encoding="utf-8")

    result = runner.invoke(cli_module.app, ["init-layout", str(structure)])

    assert result.exit_code == 2
    assert "structure_not_a_mapping" in result.output


def test_run_once_exits_non_zero_on_authentication_failure(monkeypatch, tmp_path: Path):
    cfg = _cfg(tmp_path)
    monkeypatch.setattr(cli_module, "load_config", lambda *args: cfg)
    monkeypatch.setattr(cli_module, "build_synchronizer", lambda c: (c, _FailingEngine()))
    monkeypatch.setattr("dsasync.core.logging_setup.setup_logging", lambda *args: None)

    result = runner.invoke(cli_module.app, ["run-once"])

    assert result.exit_code == 1
    assert json.loads(result.output)["fatal_error"] == "auth_failed: status=401"
