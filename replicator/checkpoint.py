"""
Resume checkpoint storage for the change feed.

Persists the resume token of the newest change event covered by a
successful flush, so a restarted replicator can continue from there
instead of from the moment it subscribes.
"""

import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Generator, Optional

from bson import json_util

from replicator.exceptions import CheckpointError

logger = logging.getLogger(__name__)


class CheckpointStore:
    """
    SQLite-backed resume token store, one row per change stream.
    """

    def __init__(self, database_path: str):
        """
        Initialize the checkpoint store.

        Args:
            database_path: Path of the SQLite file (created on first use)
        """
        self.database_path = database_path

    def init_database(self) -> None:
        """
        Create the checkpoints table if it does not exist.
        """
        try:
            Path(self.database_path).parent.mkdir(parents=True, exist_ok=True)
            with self._connection() as conn:
                conn.execute("""
                    CREATE TABLE IF NOT EXISTS checkpoints (
                        stream_name TEXT PRIMARY KEY,
                        resume_token TEXT NOT NULL,
                        updated_at TEXT NOT NULL
                    )
                """)
                conn.commit()
        except (OSError, sqlite3.Error) as e:
            raise CheckpointError(f"Failed to initialize checkpoint database: {e}") from e

    def load(self, stream_name: str) -> Optional[Dict[str, Any]]:
        """
        Load the last saved resume token.

        Args:
            stream_name: Name of the change stream

        Returns:
            Resume token document, or None when no checkpoint exists
        """
        try:
            with self._connection() as conn:
                row = conn.execute(
                    "SELECT resume_token FROM checkpoints WHERE stream_name = ?",
                    (stream_name,)
                ).fetchone()
        except sqlite3.Error as e:
            raise CheckpointError(f"Failed to read checkpoint for {stream_name}: {e}") from e

        if not row:
            return None

        return json_util.loads(row["resume_token"])

    def save(self, stream_name: str, resume_token: Dict[str, Any]) -> None:
        """
        Save the resume token, replacing any previous one.

        Args:
            stream_name: Name of the change stream
            resume_token: Resume token document from the change stream
        """
        updated_at = datetime.now(timezone.utc).isoformat()

        try:
            with self._connection() as conn:
                conn.execute(
                    """
                    INSERT INTO checkpoints (stream_name, resume_token, updated_at)
                    VALUES (?, ?, ?)
                    ON CONFLICT(stream_name) DO UPDATE SET
                        resume_token = excluded.resume_token,
                        updated_at = excluded.updated_at
                    """,
                    (stream_name, json_util.dumps(resume_token), updated_at)
                )
                conn.commit()
        except sqlite3.Error as e:
            raise CheckpointError(f"Failed to save checkpoint for {stream_name}: {e}") from e

        logger.debug(f"Saved checkpoint for {stream_name}")

    @contextmanager
    def _connection(self) -> Generator[sqlite3.Connection, None, None]:
        conn = sqlite3.connect(self.database_path)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        finally:
            conn.close()
