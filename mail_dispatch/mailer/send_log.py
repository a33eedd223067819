"""SQLite log of delivered messages.

Drivers append one row per successful delivery when logging is switched
on with ``log(True)``.

Environment variables used:

* ``MAIL_DISPATCH_LOG_DB``: path of the SQLite database.  Defaults to
  ``data/send_log.db`` inside the package directory.
"""

from __future__ import annotations

import os
import sqlite3
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union

DATA_DIR = Path(__file__).resolve().parents[1] / "data"
DEFAULT_DB = DATA_DIR / "send_log.db"


class SendLog:
    """Append-only table of ``msg_id`` → sender/recipients/subject."""

    def __init__(self, db_path: Optional[Union[str, Path]] = None) -> None:
        self._db_path = str(
            db_path or os.environ.get("MAIL_DISPATCH_LOG_DB") or DEFAULT_DB
        )
        self._init_db()

    @property
    def path(self) -> str:
        return self._db_path

    def _init_db(self) -> None:
        os.makedirs(os.path.dirname(os.path.abspath(self._db_path)), exist_ok=True)
        with sqlite3.connect(self._db_path) as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS send_log (
                    msg_id TEXT PRIMARY KEY,
                    driver TEXT NOT NULL,
                    sender TEXT,
                    recipients TEXT NOT NULL,
                    subject TEXT,
                    send_ts DATETIME DEFAULT CURRENT_TIMESTAMP
                )
                """
            )
            conn.commit()

    def record(
        self,
        msg_id: str,
        driver: str,
        sender: str,
        recipients: Sequence[str],
        subject: str,
    ) -> None:
        """Insert or update the row for ``msg_id`` with the current timestamp."""
        with sqlite3.connect(self._db_path) as conn:
            conn.execute(
                "INSERT OR REPLACE INTO send_log "
                "(msg_id, driver, sender, recipients, subject, send_ts) "
                "VALUES (?, ?, ?, ?, ?, CURRENT_TIMESTAMP)",
                (msg_id, driver, sender, ", ".join(recipients), subject),
            )
            conn.commit()

    def entries(self) -> List[Dict[str, Any]]:
        with sqlite3.connect(self._db_path) as conn:
            conn.row_factory = sqlite3.Row
            rows = conn.execute(
                "SELECT msg_id, driver, sender, recipients, subject, send_ts "
                "FROM send_log ORDER BY send_ts, rowid"
            ).fetchall()
        return [dict(row) for row in rows]


__all__ = ["SendLog"]
