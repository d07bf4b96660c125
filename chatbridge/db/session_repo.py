from abc import ABC, abstractmethod
from datetime import datetime, timezone

from chatbridge.db.database import Database, register_schema_sql


@register_schema_sql
def _create_chat_sessions_table() -> str:
    return """
        CREATE TABLE IF NOT EXISTS chat_sessions (
            instance_id TEXT PRIMARY KEY,
            session_id TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
    """


class SessionRepo(ABC):
    """Where a chat instance keeps its session id"""

    @abstractmethod
    def get_session_id(self, instance_id: str) -> str | None:
        pass

    @abstractmethod
    def save_session_id(self, instance_id: str, session_id: str) -> None:
        pass

    @abstractmethod
    def delete_session_id(self, instance_id: str) -> None:
        pass


class InMemorySessionRepo(SessionRepo):
    """Session ids that live only as long as the process (tab-scoped lifetime)"""

    def __init__(self) -> None:
        self._sessions: dict[str, str] = {}

    def get_session_id(self, instance_id: str) -> str | None:
        return self._sessions.get(instance_id)

    def save_session_id(self, instance_id: str, session_id: str) -> None:
        self._sessions[instance_id] = session_id

    def delete_session_id(self, instance_id: str) -> None:
        self._sessions.pop(instance_id, None)


class SqliteSessionRepo(SessionRepo):
    """Session ids that survive restarts. Writes are last-writer-wins."""

    def __init__(self, db: Database) -> None:
        self.db = db

    def get_session_id(self, instance_id: str) -> str | None:
        rows = self.db.execute_query(
            "SELECT session_id FROM chat_sessions WHERE instance_id = ?",
            (instance_id,),
        )
        if not rows:
            return None
        return rows[0]["session_id"]

    def save_session_id(self, instance_id: str, session_id: str) -> None:
        self.db.execute_update(
            """
            INSERT INTO chat_sessions (instance_id, session_id, updated_at)
            VALUES (?, ?, ?)
            ON CONFLICT(instance_id) DO UPDATE SET
                session_id = excluded.session_id,
                updated_at = excluded.updated_at
            """,
            (instance_id, session_id, datetime.now(timezone.utc).isoformat()),
        )

    def delete_session_id(self, instance_id: str) -> None:
        self.db.execute_update(
            "DELETE FROM chat_sessions WHERE instance_id = ?",
            (instance_id,),
        )
