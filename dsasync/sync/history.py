import json
import sqlite3
from datetime import datetime
from pathlib import Path


def now_iso():
    return datetime.now().isoformat(timespec="seconds")


def get_conn(db_path: str):
    Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    return conn


def init_db(db_path: str):
    conn = get_conn(db_path)
    cur = conn.cursor()

    cur.execute(
        """
        CREATE TABLE IF NOT EXISTS sync_runs (
          id INTEGER PRIMARY KEY AUTOINCREMENT,
          run_type TEXT,
          local_root TEXT,
          status TEXT,
          started_at DATETIME DEFAULT CURRENT_TIMESTAMP,
          finished_at DATETIME,
          summary_json TEXT
        )
        """
    )
    cur.execute("CREATE INDEX IF NOT EXISTS idx_sync_runs_started ON sync_runs(started_at)")

    conn.commit()
    conn.close()


def insert_run(db_path: str, run_type: str, local_root: str) -> int:
    conn = get_conn(db_path)
    cur = conn.cursor()
    cur.execute(
        "INSERT INTO sync_runs(run_type,local_root,status,started_at,summary_json) VALUES (?,?,?,?,?)",
        (run_type, local_root, "running", now_iso(), "{}"),
    )
    rid = cur.lastrowid
    conn.commit()
    conn.close()
    return rid


def finish_run(db_path: str, run_id: int, status: str, summary: dict):
    conn = get_conn(db_path)
    conn.execute(
        "UPDATE sync_runs SET status=?, finished_at=?, summary_json=? WHERE id=?",
        (status, now_iso(), json.dumps(summary, ensure_ascii=False, default=str), run_id),
    )
    conn.commit()
    conn.close()


def list_runs(db_path: str, limit: int = 50) -> list[dict]:
    if limit <= 0 or not Path(db_path).exists():
        return []
    conn = get_conn(db_path)
    try:
        rows = conn.execute(
            "SELECT * FROM sync_runs ORDER BY id DESC LIMIT ?",
            (int(limit),),
        ).fetchall()
    except sqlite3.OperationalError:
        # Table not created yet.
        return []
    finally:
        conn.close()

    out: list[dict] = []
    for r in rows:
        item = dict(r)
        try:
            item["summary"] = json.loads(item.pop("summary_json") or "{}")
        except ValueError:
            item["summary"] = {"parse_error": True}
        out.append(item)
    return out
