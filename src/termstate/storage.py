"""SQLite storage for termstate captures."""

import json
import logging
import sqlite3
from pathlib import Path
from typing import Any

from termstate.models import TerminalSession

logger = logging.getLogger(__name__)

# Store location
STORE_DIR = Path.home() / ".local" / "share" / "termstate"
STORE_PATH = STORE_DIR / "termstate.db"


def get_connection() -> sqlite3.Connection:
    """Get a connection to the capture database."""
    STORE_DIR.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(STORE_PATH))
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


def init_schema(conn: sqlite3.Connection) -> None:
    """Initialize the database schema."""
    conn.executescript("""
        -- One row per capture pass
        CREATE TABLE IF NOT EXISTS captures (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            name TEXT NOT NULL,
            context_description TEXT,
            created_at DATETIME DEFAULT CURRENT_TIMESTAMP
        );

        -- Captured assets; terminals use asset_type 'terminal'
        CREATE TABLE IF NOT EXISTS assets (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            capture_id INTEGER NOT NULL REFERENCES captures(id) ON DELETE CASCADE,
            asset_type TEXT NOT NULL,
            title TEXT,
            content TEXT,
            metadata TEXT,  -- JSON object
            created_at DATETIME DEFAULT CURRENT_TIMESTAMP
        );

        CREATE INDEX IF NOT EXISTS assets_capture ON assets(capture_id);

        -- Key/value state such as the last capture time
        CREATE TABLE IF NOT EXISTS metadata (
            key TEXT PRIMARY KEY,
            value TEXT NOT NULL
        );
    """)
    conn.commit()


def ensure_store_exists() -> sqlite3.Connection:
    """Ensure the capture database exists and is initialized."""
    conn = get_connection()
    init_schema(conn)
    return conn


def store_exists() -> bool:
    """Check if the capture database exists."""
    return STORE_PATH.exists()


def create_capture(conn: sqlite3.Connection, name: str, context_description: str | None = None) -> int:
    """Create a capture row and return its id."""
    cursor = conn.execute(
        "INSERT INTO captures (name, context_description) VALUES (?, ?)",
        (name, context_description),
    )
    return cursor.lastrowid


def save_asset(
    conn: sqlite3.Connection,
    capture_id: int,
    asset_type: str,
    title: str,
    content: str,
    metadata: dict[str, Any] | None = None,
) -> int:
    """Save one asset under a capture."""
    cursor = conn.execute(
        """
        INSERT INTO assets (capture_id, asset_type, title, content, metadata)
        VALUES (?, ?, ?, ?, ?)
        """,
        (capture_id, asset_type, title, content, json.dumps(metadata or {})),
    )
    return cursor.lastrowid


def get_capture(conn: sqlite3.Connection, capture_id: int) -> dict[str, Any] | None:
    """Get a capture by id."""
    row = conn.execute("SELECT * FROM captures WHERE id = ?", (capture_id,)).fetchone()
    return dict(row) if row else None


def get_latest_capture_id(conn: sqlite3.Connection) -> int | None:
    row = conn.execute("SELECT id FROM captures ORDER BY id DESC LIMIT 1").fetchone()
    return row["id"] if row else None


def list_captures(conn: sqlite3.Connection) -> list[dict[str, Any]]:
    """All captures, newest first, with their terminal counts."""
    rows = conn.execute("""
        SELECT c.id, c.name, c.created_at, COUNT(a.id) AS terminals
        FROM captures c
        LEFT JOIN assets a ON a.capture_id = c.id AND a.asset_type = 'terminal'
        GROUP BY c.id
        ORDER BY c.id DESC
    """).fetchall()
    return [dict(row) for row in rows]


def get_assets(conn: sqlite3.Connection, capture_id: int, asset_type: str | None = None) -> list[dict[str, Any]]:
    """Assets of a capture, in insertion order."""
    if asset_type is None:
        rows = conn.execute(
            "SELECT * FROM assets WHERE capture_id = ? ORDER BY id", (capture_id,)
        ).fetchall()
    else:
        rows = conn.execute(
            "SELECT * FROM assets WHERE capture_id = ? AND asset_type = ? ORDER BY id",
            (capture_id, asset_type),
        ).fetchall()
    assets = []
    for row in rows:
        asset = dict(row)
        asset["metadata"] = json.loads(row["metadata"]) if row["metadata"] else {}
        assets.append(asset)
    return assets


def load_sessions(conn: sqlite3.Connection, capture_id: int) -> list[TerminalSession]:
    """Rebuild the terminal sessions stored under a capture.

    Assets whose metadata cannot be parsed are skipped.
    """
    sessions = []
    for asset in get_assets(conn, capture_id, asset_type="terminal"):
        try:
            sessions.append(TerminalSession.from_dict(asset["metadata"]))
        except (KeyError, ValueError, TypeError) as e:
            logger.warning(f"Skipping unreadable terminal asset {asset['id']}: {e}")
    return sessions


def delete_capture(conn: sqlite3.Connection, capture_id: int) -> bool:
    """Delete a capture and its assets."""
    conn.execute("DELETE FROM assets WHERE capture_id = ?", (capture_id,))
    cursor = conn.execute("DELETE FROM captures WHERE id = ?", (capture_id,))
    conn.commit()
    return cursor.rowcount > 0


def set_metadata(conn: sqlite3.Connection, key: str, value: str) -> None:
    """Set a metadata value."""
    conn.execute(
        "INSERT OR REPLACE INTO metadata (key, value) VALUES (?, ?)",
        (key, value),
    )
    conn.commit()


def get_metadata(conn: sqlite3.Connection, key: str) -> str | None:
    """Get a metadata value."""
    row = conn.execute("SELECT value FROM metadata WHERE key = ?", (key,)).fetchone()
    return row["value"] if row else None


def get_store_stats() -> dict[str, Any]:
    """Get store statistics."""
    if not store_exists():
        return {
            "capture_count": 0,
            "terminal_count": 0,
            "store_path": str(STORE_PATH),
            "store_size": _format_size(0),
            "last_capture": None,
        }

    conn = ensure_store_exists()
    capture_count = conn.execute("SELECT COUNT(*) FROM captures").fetchone()[0]
    terminal_count = conn.execute(
        "SELECT COUNT(*) FROM assets WHERE asset_type = 'terminal'"
    ).fetchone()[0]
    last_capture = get_metadata(conn, "last_capture")
    conn.close()

    return {
        "capture_count": capture_count,
        "terminal_count": terminal_count,
        "store_path": str(STORE_PATH),
        "store_size": _format_size(STORE_PATH.stat().st_size),
        "last_capture": last_capture,
    }


def _format_size(size_bytes: int) -> str:
    """Format byte size as human-readable string."""
    size = float(size_bytes)
    for unit in ("B", "KB", "MB", "GB"):
        if size < 1024:
            return f"{size:.1f} {unit}"
        size /= 1024
    return f"{size:.1f} TB"
