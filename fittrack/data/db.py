from __future__ import annotations
import json
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from fittrack.common.config import DB_PATH

_DB_PATH = Path(DB_PATH)

EXPORT_VERSION = 1

SCHEMA = r"""
PRAGMA journal_mode=WAL;

CREATE TABLE IF NOT EXISTS sessions (
  id TEXT PRIMARY KEY,
  exercise TEXT NOT NULL,
  started_at REAL NOT NULL,
  stopped_at REAL,
  target_reps INTEGER
);

CREATE TABLE IF NOT EXISTS sets (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  session_id TEXT,
  exercise TEXT NOT NULL,
  reps INTEGER NOT NULL,
  tempo TEXT,
  rom TEXT,
  quality INTEGER,
  created_at TEXT NOT NULL,
  auto INTEGER NOT NULL DEFAULT 0,
  coach_tip TEXT,
  frames_json TEXT NOT NULL DEFAULT '[]'
);

CREATE TABLE IF NOT EXISTS foods (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  label TEXT NOT NULL,
  items_json TEXT NOT NULL DEFAULT '[]',
  calories INTEGER NOT NULL DEFAULT 0,
  protein INTEGER NOT NULL DEFAULT 0,
  carbs INTEGER NOT NULL DEFAULT 0,
  fat INTEGER NOT NULL DEFAULT 0,
  confidence INTEGER,
  created_at TEXT NOT NULL
);
"""

_conn: Optional[sqlite3.Connection] = None


def set_db_path(path: Union[str, Path]):
    """Point the module at another database file (closes the open one)."""
    global _DB_PATH, _conn
    if _conn is not None:
        _conn.close()
        _conn = None
    _DB_PATH = Path(path)


def get_conn() -> sqlite3.Connection:
    global _conn
    if _conn is None:
        _DB_PATH.parent.mkdir(parents=True, exist_ok=True)
        _conn = sqlite3.connect(_DB_PATH.as_posix(), check_same_thread=False)
        _conn.row_factory = sqlite3.Row
        _conn.executescript(SCHEMA)
        _conn.commit()
    return _conn

# Session-level writes

def insert_session(session_id: str, exercise: str, started_at: float, target_reps: Optional[int] = None):
    conn = get_conn()
    conn.execute(
        "INSERT OR REPLACE INTO sessions (id, exercise, started_at, target_reps) VALUES (?,?,?,?)",
        (session_id, exercise, started_at, target_reps),
    )
    conn.commit()


def stop_session(session_id: str, stopped_at: float):
    conn = get_conn()
    conn.execute("UPDATE sessions SET stopped_at=? WHERE id=?", (stopped_at, session_id))
    conn.commit()

# Set records

def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


def _insert_set_row(conn: sqlite3.Connection, session_id: Optional[str], record: Dict[str, Any]) -> int:
    cur = conn.execute(
        """
        INSERT INTO sets (
          session_id, exercise, reps, tempo, rom, quality, created_at, auto, coach_tip, frames_json
        ) VALUES (?,?,?,?,?,?,?,?,?,?)
        """,
        (
            session_id,
            record["exercise"],
            int(record["reps"]),
            record.get("tempo"),
            record.get("rom"),
            record.get("quality"),
            record.get("timestamp") or _utcnow(),
            1 if record.get("auto") else 0,
            record.get("coach_tip") or "",
            json.dumps(record.get("frames") or []),
        ),
    )
    return int(cur.lastrowid)


def insert_set(session_id: Optional[str], record: Dict[str, Any]) -> int:
    """Persist a flushed set (dict as produced by SetRecord.to_dict())."""
    conn = get_conn()
    with conn:
        return _insert_set_row(conn, session_id, record)


def _row_to_set(row: sqlite3.Row, with_frames: bool) -> Dict[str, Any]:
    frames = json.loads(row["frames_json"] or "[]")
    out: Dict[str, Any] = {
        "id": row["id"],
        "session_id": row["session_id"],
        "exercise": row["exercise"],
        "reps": row["reps"],
        "tempo": row["tempo"],
        "rom": row["rom"],
        "quality": row["quality"],
        "timestamp": row["created_at"],
        "auto": bool(row["auto"]),
        "coach_tip": row["coach_tip"] or "",
    }
    if with_frames:
        out["frames"] = frames
    else:
        out["frame_count"] = len(frames)
    return out


def list_sets(limit: Optional[int] = None) -> List[Dict[str, Any]]:
    """History, newest first, without frames."""
    sql = "SELECT * FROM sets ORDER BY id DESC"
    params: tuple = ()
    if limit is not None:
        sql += " LIMIT ?"
        params = (int(limit),)
    return [_row_to_set(r, with_frames=False) for r in get_conn().execute(sql, params)]


def get_set(set_id: int) -> Optional[Dict[str, Any]]:
    row = get_conn().execute("SELECT * FROM sets WHERE id=?", (set_id,)).fetchone()
    return _row_to_set(row, with_frames=True) if row else None


def delete_set(set_id: int) -> bool:
    conn = get_conn()
    with conn:
        cur = conn.execute("DELETE FROM sets WHERE id=?", (set_id,))
    return cur.rowcount > 0

# Food log

def _insert_food_row(conn: sqlite3.Connection, entry: Dict[str, Any]) -> int:
    label = entry["label"]
    items = entry.get("items") or [label]
    conf = entry.get("confidence")
    cur = conn.execute(
        """
        INSERT INTO foods (label, items_json, calories, protein, carbs, fat, confidence, created_at)
        VALUES (?,?,?,?,?,?,?,?)
        """,
        (
            label,
            json.dumps([str(i) for i in items]),
            int(round(entry.get("calories") or 0)),
            int(round(entry.get("protein") or 0)),
            int(round(entry.get("carbs") or 0)),
            int(round(entry.get("fat") or 0)),
            int(round(conf)) if conf is not None else None,
            entry.get("timestamp") or _utcnow(),
        ),
    )
    return int(cur.lastrowid)


def insert_food(entry: Dict[str, Any]) -> int:
    """Log a meal (label plus nutrients as confirmed by the user)."""
    _validate_food(0, entry)
    conn = get_conn()
    with conn:
        return _insert_food_row(conn, entry)


def _row_to_food(row: sqlite3.Row) -> Dict[str, Any]:
    return {
        "id": row["id"],
        "label": row["label"],
        "items": json.loads(row["items_json"] or "[]"),
        "calories": row["calories"],
        "protein": row["protein"],
        "carbs": row["carbs"],
        "fat": row["fat"],
        "confidence": row["confidence"],
        "timestamp": row["created_at"],
    }


def list_foods(limit: Optional[int] = None) -> List[Dict[str, Any]]:
    """Food log, newest first."""
    sql = "SELECT * FROM foods ORDER BY id DESC"
    params: tuple = ()
    if limit is not None:
        sql += " LIMIT ?"
        params = (int(limit),)
    return [_row_to_food(r) for r in get_conn().execute(sql, params)]


def delete_food(food_id: int) -> bool:
    conn = get_conn()
    with conn:
        cur = conn.execute("DELETE FROM foods WHERE id=?", (food_id,))
    return cur.rowcount > 0

# Export / import

def export_history() -> Dict[str, Any]:
    conn = get_conn()
    return {
        "version": EXPORT_VERSION,
        "exported_at": _utcnow(),
        "sets": [_row_to_set(r, with_frames=True) for r in conn.execute("SELECT * FROM sets ORDER BY id ASC")],
        "foods": [_row_to_food(r) for r in conn.execute("SELECT * FROM foods ORDER BY id ASC")],
    }


def _is_number(v: Any) -> bool:
    return isinstance(v, (int, float)) and not isinstance(v, bool)


def _check_optional(where: str, s: Dict[str, Any], key: str, types: tuple):
    v = s.get(key)
    if v is None:
        return
    if isinstance(v, bool) and bool not in types:
        raise ValueError(f"{where}: '{key}' has the wrong type")
    if not isinstance(v, types):
        raise ValueError(f"{where}: '{key}' has the wrong type")


def _validate_set(i: int, s: Any):
    where = f"set #{i}"
    if not isinstance(s, dict):
        raise ValueError(f"{where} is not an object")
    if not isinstance(s.get("exercise"), str) or not s["exercise"]:
        raise ValueError(f"{where} needs an exercise name")
    reps = s.get("reps")
    if isinstance(reps, bool) or not isinstance(reps, int) or reps < 0:
        raise ValueError(f"{where} has an invalid rep count")
    for key in ("session_id", "tempo", "rom", "timestamp", "coach_tip"):
        _check_optional(where, s, key, (str,))
    _check_optional(where, s, "quality", (int, float))
    _check_optional(where, s, "auto", (bool, int))
    frames = s.get("frames")
    if frames is None:
        return
    if not isinstance(frames, list):
        raise ValueError(f"{where}: 'frames' must be a list")
    for j, fr in enumerate(frames):
        if not isinstance(fr, dict) or not _is_number(fr.get("timestamp")):
            raise ValueError(f"{where}: frame #{j} needs a numeric timestamp")


def _validate_food(i: int, e: Any):
    where = f"food #{i}"
    if not isinstance(e, dict):
        raise ValueError(f"{where} is not an object")
    if not isinstance(e.get("label"), str) or not e["label"]:
        raise ValueError(f"{where} needs a label")
    for key in ("calories", "protein", "carbs", "fat", "confidence"):
        v = e.get(key)
        if v is not None and (not _is_number(v) or v < 0):
            raise ValueError(f"{where}: '{key}' must be a non-negative number")
    items = e.get("items")
    if items is not None and (not isinstance(items, list) or not all(isinstance(x, str) for x in items)):
        raise ValueError(f"{where}: 'items' must be a list of strings")
    _check_optional(where, e, "timestamp", (str,))


def import_history(doc: Dict[str, Any]) -> int:
    """Restore an export document. Everything is validated first and written in
    one transaction; returns the number of sets imported."""
    if not isinstance(doc, dict) or not isinstance(doc.get("sets"), list):
        raise ValueError("backup must be an object with a 'sets' list")
    foods = doc.get("foods") or []
    if not isinstance(foods, list):
        raise ValueError("'foods' must be a list")
    for i, s in enumerate(doc["sets"]):
        _validate_set(i, s)
    for i, e in enumerate(foods):
        _validate_food(i, e)

    conn = get_conn()
    with conn:
        for s in doc["sets"]:
            _insert_set_row(conn, s.get("session_id"), s)
        for e in foods:
            _insert_food_row(conn, e)
    return len(doc["sets"])
