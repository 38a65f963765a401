from __future__ import annotations

import sqlite3
from pathlib import Path

from .config import DEFAULT_SETTINGS_DB

SCHEMA_VERSION = "1"

KNOWN_SETTINGS = {
    "source_alias": "Org alias compared and deployed from",
    "dest_alias": "Org alias compared against and deployed to",
    "api_version": "Metadata API version written into manifests",
    "work_dir": "Directory receiving retrieved metadata trees",
}


def default_settings_db() -> Path:
    return DEFAULT_SETTINGS_DB.expanduser()


def _connect(db_path: Path) -> sqlite3.Connection:
    db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    return conn


def _drop_all_user_objects(conn: sqlite3.Connection) -> None:
    rows = conn.execute(
        """
        SELECT type, name
        FROM sqlite_master
        WHERE name NOT LIKE 'sqlite_%' AND type IN ('table', 'index')
        ORDER BY CASE type WHEN 'index' THEN 0 ELSE 1 END
        """
    ).fetchall()
    for row in rows:
        quoted = f'"{row["name"]}"'
        if str(row["type"]) == "table":
            conn.execute(f"DROP TABLE IF EXISTS {quoted}")
        else:
            conn.execute(f"DROP INDEX IF EXISTS {quoted}")


def _ensure_versioned_db(conn: sqlite3.Connection) -> None:
    try:
        row = conn.execute(
            """
            SELECT value
            FROM orgdelta
            WHERE key = 'schema_version'
            """
        ).fetchone()
    except sqlite3.Error:
        row = None
    if row is None or str(row["value"]) != SCHEMA_VERSION:
        _drop_all_user_objects(conn)
        conn.execute(
            """
            CREATE TABLE orgdelta (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL
            )
            """
        )
        conn.execute(
            "INSERT INTO orgdelta(key, value) VALUES ('schema_version', ?)",
            (SCHEMA_VERSION,),
        )


def _init_schema(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS orgdelta (
            key TEXT PRIMARY KEY,
            value TEXT NOT NULL
        )
        """
    )
    _ensure_versioned_db(conn)
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS settings (
            key TEXT PRIMARY KEY,
            value TEXT NOT NULL,
            updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
        )
        """
    )


def get_setting(db_path: Path, key: str, default: str | None = None) -> str | None:
    conn = _connect(db_path)
    try:
        with conn:
            _init_schema(conn)
        row = conn.execute("SELECT value FROM settings WHERE key = ?", (key,)).fetchone()
        return default if row is None else str(row["value"])
    finally:
        conn.close()


def set_setting(db_path: Path, key: str, value: str) -> None:
    conn = _connect(db_path)
    try:
        with conn:
            _init_schema(conn)
            conn.execute(
                """
                INSERT INTO settings(key, value) VALUES (?, ?)
                ON CONFLICT(key) DO UPDATE SET
                    value = excluded.value,
                    updated_at = CURRENT_TIMESTAMP
                """,
                (key, value),
            )
    finally:
        conn.close()


def delete_setting(db_path: Path, key: str) -> bool:
    conn = _connect(db_path)
    try:
        with conn:
            _init_schema(conn)
            cursor = conn.execute("DELETE FROM settings WHERE key = ?", (key,))
        return cursor.rowcount > 0
    finally:
        conn.close()


def load_settings(db_path: Path) -> dict[str, str]:
    conn = _connect(db_path)
    try:
        with conn:
            _init_schema(conn)
        rows = conn.execute("SELECT key, value FROM settings ORDER BY key").fetchall()
        return {str(row["key"]): str(row["value"]) for row in rows}
    finally:
        conn.close()
