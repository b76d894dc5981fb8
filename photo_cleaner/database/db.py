"""
Cache database connection.

One connection per app. The background scan thread persists its pass through
the same connection the caller uses for syncing and queries, so the
connection is opened without sqlite3's same-thread check and every write
goes through `write_lock`.
"""
import sqlite3
import logging
import threading
from pathlib import Path
from typing import Optional, Union

from .schema import init_schema

PRAGMAS = (
    "PRAGMA journal_mode=WAL;",     # readers keep going while a pass persists
    "PRAGMA synchronous=NORMAL;",
    "PRAGMA temp_store=MEMORY;",
    "PRAGMA foreign_keys=ON;",      # asset_issues rows cascade with their asset
)


class DBManager:
    def __init__(self, db_path: Union[str, Path]):
        self.db_path = Path(db_path)
        self._conn: Optional[sqlite3.Connection] = None
        # Held for every cache statement, from the caller and the scan thread alike
        self._write_lock = threading.RLock()

    def connect(self) -> sqlite3.Connection:
        if self._conn:
            return self._conn

        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        logging.info(f"Opening cache database: {self.db_path}")
        conn = sqlite3.connect(self.db_path, check_same_thread=False)
        for pragma in PRAGMAS:
            conn.execute(pragma)
        init_schema(conn)

        self._conn = conn
        return conn

    def close(self):
        with self._write_lock:
            if self._conn:
                self._conn.close()
                self._conn = None

    def __enter__(self):
        return self.connect()

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    @property
    def write_lock(self) -> threading.RLock:
        return self._write_lock
