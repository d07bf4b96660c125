import json
from datetime import datetime

from chatbridge.db.database import Database, register_schema_sql
from chatbridge.models.chat.models import ContentPart
from chatbridge.models.queue.models import QueuedMessage


@register_schema_sql
def _create_offline_queue_table() -> str:
    return """
        CREATE TABLE IF NOT EXISTS offline_queue (
            seq INTEGER PRIMARY KEY AUTOINCREMENT,
            id TEXT NOT NULL UNIQUE,
            instance_id TEXT NOT NULL,
            user_message_id TEXT NOT NULL,
            content TEXT NOT NULL,
            queued_at TEXT NOT NULL,
            attempts INTEGER NOT NULL DEFAULT 0,
            last_error TEXT
        )
    """


@register_schema_sql
def _create_offline_queue_instance_index() -> str:
    return """
        CREATE INDEX IF NOT EXISTS idx_offline_queue_instance
        ON offline_queue (instance_id, seq)
    """


class OfflineQueueRepo:
    """Repository for messages waiting to be sent"""

    def __init__(self, db: Database) -> None:
        self.db = db

    def add(self, item: QueuedMessage) -> None:
        self.db.execute_update(
            """
            INSERT INTO offline_queue
            (id, instance_id, user_message_id, content, queued_at, attempts, last_error)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                item.id,
                item.instance_id,
                item.user_message_id,
                json.dumps([part.to_dict() for part in item.content]),
                item.queued_at.isoformat(),
                item.attempts,
                item.last_error,
            ),
        )

    def list_by_instance(self, instance_id: str) -> list[QueuedMessage]:
        """All queued messages of an instance, oldest first"""
        rows = self.db.execute_query(
            """
            SELECT id, instance_id, user_message_id, content, queued_at, attempts, last_error
            FROM offline_queue
            WHERE instance_id = ?
            ORDER BY seq ASC
            """,
            (instance_id,),
        )
        return [self._row_to_queued_message(row) for row in rows]

    def get(self, instance_id: str, queued_id: str) -> QueuedMessage | None:
        rows = self.db.execute_query(
            """
            SELECT id, instance_id, user_message_id, content, queued_at, attempts, last_error
            FROM offline_queue
            WHERE instance_id = ? AND id = ?
            """,
            (instance_id, queued_id),
        )
        if not rows:
            return None
        return self._row_to_queued_message(rows[0])

    def count_by_instance(self, instance_id: str) -> int:
        rows = self.db.execute_query(
            "SELECT COUNT(*) AS count FROM offline_queue WHERE instance_id = ?",
            (instance_id,),
        )
        return rows[0]["count"]

    def delete(self, instance_id: str, queued_id: str) -> bool:
        affected = self.db.execute_update(
            "DELETE FROM offline_queue WHERE instance_id = ? AND id = ?",
            (instance_id, queued_id),
        )
        return affected > 0

    def delete_oldest(self, instance_id: str, count: int) -> int:
        if count <= 0:
            return 0
        return self.db.execute_update(
            """
            DELETE FROM offline_queue WHERE seq IN (
                SELECT seq FROM offline_queue
                WHERE instance_id = ?
                ORDER BY seq ASC
                LIMIT ?
            )
            """,
            (instance_id, count),
        )

    def delete_older_than(self, instance_id: str, cutoff: datetime) -> int:
        return self.db.execute_update(
            "DELETE FROM offline_queue WHERE instance_id = ? AND queued_at < ?",
            (instance_id, cutoff.isoformat()),
        )

    def delete_all(self, instance_id: str) -> int:
        return self.db.execute_update(
            "DELETE FROM offline_queue WHERE instance_id = ?",
            (instance_id,),
        )

    def update_attempts(self, instance_id: str, queued_id: str, attempts: int, last_error: str | None) -> None:
        self.db.execute_update(
            "UPDATE offline_queue SET attempts = ?, last_error = ? WHERE instance_id = ? AND id = ?",
            (attempts, last_error, instance_id, queued_id),
        )

    def _row_to_queued_message(self, row: dict) -> QueuedMessage:
        return QueuedMessage(
            id=row["id"],
            instance_id=row["instance_id"],
            user_message_id=row["user_message_id"],
            content=tuple(ContentPart.from_dict(part) for part in json.loads(row["content"])),
            queued_at=datetime.fromisoformat(row["queued_at"]),
            attempts=row["attempts"],
            last_error=row["last_error"],
        )
