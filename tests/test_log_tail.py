from pathlib import Path

from dsasync.core.log_tail import build_log_tail_payload


def test_build_log_tail_payload_filters_by_level_and_module(tmp_path: Path):
    log_file = tmp_path / "service.log"
    log_file.write_text(
        "\n".join(
            [
                "2026-02-22 10:00:00,000 [INFO] [scheduler] scheduler_started",
                '2026-02-22 10:01:00,000 [WARNING] [sync] ambiguous_match {"kind": "folder", "name": "study1"}',
                "2026-02-22 10:02:00,000 [ERROR] [sync] spreadsheet_failed",
            ]
        ),
        encoding="utf-8",
    )

    payload = build_log_tail_payload(str(log_file), n=100, level="warning", module="SYNC")

    assert payload["count"] == 1
    assert payload["level"] == "WARNING"
    assert payload["module"] == "sync"
    assert payload["items"][0]["level"] == "WARNING"
    assert payload["items"][0]["module"] == "sync"
    assert payload["items"][0]["ts"] == "2026-02-22 10:01:00,000"
    assert "ambiguous_match" in payload["tail"]


def test_traceback_lines_fold_into_previous_entry(tmp_path: Path):
    log_file = tmp_path / "service.log"
    log_file.write_text(
        "\n".join(
            [
                "2026-02-22 01:00:00,000 [ERROR] [scheduler] scheduled_sync_failed: boom",
                "Traceback (most recent call last):",
                '  File "engine.py", line 1, in run_once',
                "RuntimeError: boom",
                "2026-02-22 01:00:01,000 [INFO] [scheduler] scheduler_stopped",
            ]
        ),
        encoding="utf-8",
    )

    payload = build_log_tail_payload(str(log_file), n=100)

    assert payload["count"] == 2
    first = payload["items"][0]
    assert first["message"] == "scheduled_sync_failed: boom"
    assert first["detail"].splitlines()[0] == "Traceback (most recent call last):"
    assert first["detail"].endswith("RuntimeError: boom")
    assert payload["items"][1]["detail"] == ""


def test_build_log_tail_payload_handles_missing_file(tmp_path: Path):
    payload = build_log_tail_payload(str(tmp_path / "missing.log"), n=20)
    assert payload["count"] == 0
    assert payload["tail"] == ""
