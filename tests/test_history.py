import sqlite3
from pathlib import Path

from dsasync.sync.history import finish_run, init_db, insert_run, list_runs


def test_runs_are_listed_newest_first(tmp_path: Path):
    db = str(tmp_path / "runtime" / "service.db")
    init_db(db)
    first = insert_run(db, "scheduled", "/data/lcdr")
    finish_run(db, first, "success", {"uploaded": 1, "errors": 0})
    second = insert_run(db, "http", "/data/lcdr")

    runs = list_runs(db)

    assert [r["id"] for r in runs] == [second, first]
    assert runs[0]["status"] == "running"
    assert runs[0]["summary"] == {}
    assert runs[1]["summary"] == {"uploaded": 1, "errors": 0}
    assert runs[1]["finished_at"]
    assert list_runs(db, limit=1)[0]["id"] == second


def test_list_runs_without_database(tmp_path: Path):
    assert list_runs(str(tmp_path / "missing.db")) == []


def test_list_runs_before_table_exists(tmp_path: Path):
    db = tmp_path / "empty.db"
    sqlite3.connect(db).close()

    assert list_runs(str(db)) == []


def test_unparseable_summary_is_flagged(tmp_path: Path):
    db = str(tmp_path / "service.db")
    init_db(db)
    run_id = insert_run(db, "manual", "/data/lcdr")
    conn = sqlite3.connect(db)
    conn.execute("UPDATE sync_runs SET summary_json=? WHERE id=?", ("{broken", run_id))
    conn.commit()
    conn.close()

    assert list_runs(db)[0]["summary"] == {"parse_error": True}
