"""SQLite database for generation history records."""

import json
import logging
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Literal

logger = logging.getLogger(__name__)

RecordStatus = Literal["processing", "completed", "failed"]

IMAGE_PLACEHOLDER = "[image]"


def sanitize_inputs(inputs: dict[str, Any]) -> dict[str, Any]:
    """Replace inline image data with a placeholder before storing inputs."""
    return {
        key: IMAGE_PLACEHOLDER
        if isinstance(value, str) and value.startswith("data:image")
        else value
        for key, value in inputs.items()
    }


class GenerationHistory:
    """Persist one row per generate request.

    Rows are created in the ``processing`` state when generation starts and
    moved to ``completed`` or ``failed`` once it ends.  Reference images are
    never stored; see :func:`sanitize_inputs`.
    """

    def __init__(self, db_path: Path):
        """Initialize the history database.

        Args:
            db_path: Path to SQLite database file (shared with the credit ledger)
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._initialize_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, timeout=10)
        conn.row_factory = sqlite3.Row
        return conn

    def _initialize_db(self) -> None:
        """Create database schema if it doesn't exist."""
        with self._connect() as conn:
            cursor = conn.cursor()

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS generations (
                    id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    prompt TEXT NOT NULL,
                    preset_id TEXT,
                    inputs TEXT NOT NULL,
                    image_urls TEXT NOT NULL DEFAULT '[]',
                    status TEXT NOT NULL,
                    error_message TEXT,
                    credits_used INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL
                )
                """)

            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_generations_user_created
                ON generations(user_id, created_at DESC)
                """)

            conn.commit()

    @staticmethod
    def _to_dict(row: sqlite3.Row) -> dict[str, Any]:
        record = dict(row)
        record["inputs"] = json.loads(record["inputs"])
        record["image_urls"] = json.loads(record["image_urls"])
        return record

    def save_record(
        self,
        record_id: str,
        user_id: str,
        prompt: str,
        preset_id: str | None,
        inputs: dict[str, Any],
        status: RecordStatus = "processing",
    ) -> str:
        """Insert a new generation record and return its id."""
        with self._connect() as conn:
            conn.execute(
                "INSERT INTO generations "
                "(id, user_id, prompt, preset_id, inputs, status, created_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?)",
                (
                    record_id,
                    user_id,
                    prompt,
                    preset_id,
                    json.dumps(sanitize_inputs(inputs), ensure_ascii=False),
                    status,
                    datetime.now(timezone.utc).isoformat(),
                ),
            )
            conn.commit()
        return record_id

    def update_record(
        self,
        record_id: str,
        status: RecordStatus,
        image_urls: list[str] | None = None,
        error_message: str | None = None,
        credits_used: int = 0,
    ) -> None:
        """Move a record to its final state."""
        with self._connect() as conn:
            conn.execute(
                "UPDATE generations SET status = ?, image_urls = ?, error_message = ?, "
                "credits_used = ? WHERE id = ?",
                (
                    status,
                    json.dumps(image_urls or []),
                    error_message,
                    credits_used,
                    record_id,
                ),
            )
            conn.commit()

    def get_record(self, record_id: str, user_id: str | None = None) -> dict[str, Any] | None:
        """Return one record, optionally restricted to its owner."""
        query = "SELECT * FROM generations WHERE id = ?"
        params: tuple = (record_id,)
        if user_id is not None:
            query += " AND user_id = ?"
            params += (user_id,)

        with self._connect() as conn:
            row = conn.execute(query, params).fetchone()
        return self._to_dict(row) if row else None

    def list_records(self, user_id: str, status: RecordStatus | None = None) -> list[dict[str, Any]]:
        """Return the user's records, newest first."""
        query = "SELECT * FROM generations WHERE user_id = ?"
        params: tuple = (user_id,)
        if status:
            query += " AND status = ?"
            params += (status,)
        query += " ORDER BY created_at DESC, rowid DESC"

        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._to_dict(row) for row in rows]

    def delete_record(self, record_id: str, user_id: str) -> bool:
        """Delete a record; return whether it existed."""
        with self._connect() as conn:
            cursor = conn.execute(
                "DELETE FROM generations WHERE id = ? AND user_id = ?",
                (record_id, user_id),
            )
            conn.commit()
            deleted = cursor.rowcount > 0

        if deleted:
            logger.info(f"Deleted generation record {record_id}")
        return deleted
