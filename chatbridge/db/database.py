import logging
import os
import sqlite3
from typing import Any, Callable


logger = logging.getLogger(__name__)


class DatabaseNotInitializedError(Exception):
    """Raised when a query runs before `Database.setup()`"""
    pass


def register_schema_sql(func: Callable[[], str]) -> Callable[[], str]:
    """Collect the DDL a repository module needs; `Database.setup()` runs it.

    Statements must be idempotent (`IF NOT EXISTS`), since setup runs them on
    every start against a file that may already hold the tables.
    """
    Database._schema_registry.append(func())
    return func


class Database:
    """SQLite file shared by the session and offline-queue repositories"""

    _schema_registry: list[str] = []

    def __init__(self, db_path: str) -> None:
        self.db_path = db_path
        self._ready = False

    def setup(self) -> None:
        if self._ready:
            return

        directory = os.path.dirname(self.db_path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        with self.get_connection() as conn:
            for sql in self._schema_registry:
                conn.execute(sql)
            conn.commit()

        self._ready = True
        logger.info("Storage ready at %s (%d schema statement(s))", self.db_path, len(self._schema_registry))

    def get_connection(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def execute_query(self, query: str, params: tuple[Any, ...] = ()) -> list[sqlite3.Row]:
        self._require_ready()
        with self.get_connection() as conn:
            return conn.execute(query, params).fetchall()

    def execute_update(self, query: str, params: tuple[Any, ...] = ()) -> int:
        """Run an INSERT, UPDATE or DELETE and return the number of affected rows"""
        self._require_ready()
        with self.get_connection() as conn:
            cursor = conn.execute(query, params)
            conn.commit()
            return cursor.rowcount

    def _require_ready(self) -> None:
        if not self._ready:
            raise DatabaseNotInitializedError(f"Database {self.db_path} is not set up, call setup() first")
