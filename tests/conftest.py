from typing import Any, Callable

import httpx
import pytest

from chatbridge.db.database import Database
from chatbridge.services.chat_bridge import ChatBridge, build_chat_bridge
from chatbridge.settings import BridgeSettings
from tests.helpers import ENDPOINT_URL, RecordingSleep


@pytest.fixture
def db_path(tmp_path) -> str:
    return str(tmp_path / "chatbridge.db")


@pytest.fixture
def make_settings(db_path) -> Callable[..., BridgeSettings]:
    def _make(**overrides: Any) -> BridgeSettings:
        values: dict[str, Any] = {
            "endpoint_url": ENDPOINT_URL,
            "storage_path": db_path,
            "retry_jitter_ratio": 0.0,
        }
        values.update(overrides)
        return BridgeSettings(_env_file=None, **values)

    return _make


@pytest.fixture
def database(db_path) -> Database:
    db = Database(db_path)
    db.setup()
    return db


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
async def make_bridge(make_settings, database, recording_sleep):
    """Builds chat instances whose HTTP traffic goes to the given MockTransport handler"""
    clients: list[httpx.AsyncClient] = []
    bridges: list[ChatBridge] = []

    def _make(handler, instance_id: str = "chat-1", **overrides: Any) -> ChatBridge:
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        clients.append(client)
        bridge = build_chat_bridge(
            make_settings(**overrides),
            instance_id,
            database,
            client=client,
            sleep=recording_sleep,
        )
        bridges.append(bridge)
        return bridge

    yield _make

    for bridge in bridges:
        await bridge.aclose()
    for client in clients:
        await client.aclose()
