import pytest

from chatbridge.db import offline_queue_repo, session_repo  # noqa: F401 registers their tables
from chatbridge.db.database import Database, DatabaseNotInitializedError


def _tables(db: Database) -> set[str]:
    rows = db.execute_query("SELECT name FROM sqlite_master WHERE type = 'table'")
    return {row["name"] for row in rows}


def test_queries_before_setup_are_rejected(tmp_path) -> None:
    db = Database(str(tmp_path / "chatbridge.db"))

    with pytest.raises(DatabaseNotInitializedError):
        db.execute_query("SELECT 1")
    with pytest.raises(DatabaseNotInitializedError):
        db.execute_update("DELETE FROM chat_sessions")


def test_setup_creates_the_parent_directory_and_tables(tmp_path) -> None:
    db_path = tmp_path / "nested" / "state" / "chatbridge.db"
    db = Database(str(db_path))

    db.setup()

    assert db_path.exists()
    assert {"chat_sessions", "offline_queue"} <= _tables(db)


def test_setup_on_an_existing_file_keeps_its_rows(tmp_path) -> None:
    db_path = str(tmp_path / "chatbridge.db")
    first = Database(db_path)
    first.setup()
    first.execute_update(
        "INSERT INTO chat_sessions (instance_id, session_id, updated_at) VALUES (?, ?, ?)",
        ("chat-1", "s-1", "2024-05-01T09:00:00+00:00"),
    )

    second = Database(db_path)
    second.setup()
    second.setup()

    rows = second.execute_query("SELECT session_id FROM chat_sessions WHERE instance_id = ?", ("chat-1",))
    assert [row["session_id"] for row in rows] == ["s-1"]


def test_execute_update_returns_the_affected_row_count(database) -> None:
    for instance_id in ("a", "b"):
        database.execute_update(
            "INSERT INTO chat_sessions (instance_id, session_id, updated_at) VALUES (?, ?, ?)",
            (instance_id, f"s-{instance_id}", "2024-05-01T09:00:00+00:00"),
        )

    assert database.execute_update("DELETE FROM chat_sessions") == 2
