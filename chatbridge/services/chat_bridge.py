import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable

import httpx

from chatbridge.db.database import Database
from chatbridge.db.offline_queue_repo import OfflineQueueRepo
from chatbridge.db.session_repo import InMemorySessionRepo, SessionRepo, SqliteSessionRepo
from chatbridge.models.chat.enums import SessionLifetime
from chatbridge.models.chat.models import ReplayResult
from chatbridge.services.connectivity_service import ConnectivityMonitor
from chatbridge.services.error_classifier import ErrorClassifier
from chatbridge.services.offline_queue import OfflineQueue
from chatbridge.services.retry_manager import RetryManager
from chatbridge.services.session_store import SessionStore
from chatbridge.services.sse_service import SseService
from chatbridge.services.thread_engine import MetadataProvider, ThreadBusyError, ThreadEngine
from chatbridge.services.transport import HttpTransport
from chatbridge.settings import BridgeSettings


logger = logging.getLogger(__name__)


@dataclass
class ChatBridge:
    """Everything one chat instance owns"""
    instance_id: str
    settings: BridgeSettings
    engine: ThreadEngine
    transport: HttpTransport
    session_store: SessionStore
    offline_queue: OfflineQueue
    connectivity: ConnectivityMonitor
    retry_manager: RetryManager

    async def replay(self) -> ReplayResult | None:
        """Replay the offline queue unless a reply is already running"""
        try:
            return await self.engine.replay_offline()
        except ThreadBusyError:
            logger.info("Skipping offline replay for %s, a reply is running", self.instance_id)
            return None

    async def aclose(self) -> None:
        await self.engine.aclose()
        await self.transport.aclose()


def build_chat_bridge(
    settings: BridgeSettings,
    instance_id: str,
    database: Database,
    client: httpx.AsyncClient | None = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    metadata_provider: MetadataProvider | None = None,
    connectivity: ConnectivityMonitor | None = None,
) -> ChatBridge:
    session_repo: SessionRepo
    if settings.session_lifetime == SessionLifetime.TAB:
        session_repo = InMemorySessionRepo()
    else:
        session_repo = SqliteSessionRepo(database)

    transport = HttpTransport(settings, client)
    retry_manager = RetryManager(ErrorClassifier(), sleep=sleep)
    session_store = SessionStore(instance_id, session_repo)
    offline_queue = OfflineQueue(
        instance_id,
        OfflineQueueRepo(database),
        max_size=settings.offline_queue_max_size,
        max_age_seconds=settings.offline_queue_max_age_seconds,
    )
    connectivity = connectivity or ConnectivityMonitor()

    engine = ThreadEngine(
        instance_id=instance_id,
        transport=transport,
        retry_manager=retry_manager,
        session_store=session_store,
        offline_queue=offline_queue,
        connectivity=connectivity,
        retry_policy=settings.retry_policy(),
        metadata_provider=metadata_provider,
        max_queue_attempts=settings.offline_queue_max_attempts,
    )

    return ChatBridge(
        instance_id=instance_id,
        settings=settings,
        engine=engine,
        transport=transport,
        session_store=session_store,
        offline_queue=offline_queue,
        connectivity=connectivity,
        retry_manager=retry_manager,
    )


class ChatBridgeRegistry:
    """Chat instances of one host application, keyed by instance id.

    Instances are built lazily from the base settings. Each one publishes its
    thread events through the shared `SseService` and replays its offline
    queue when its connectivity monitor comes back online.
    """

    def __init__(
        self,
        settings: BridgeSettings,
        database: Database,
        sse_service: SseService,
        client: httpx.AsyncClient | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.settings = settings
        self._database = database
        self._sse_service = sse_service
        self._client = client
        self._sleep = sleep
        self._bridges: dict[str, ChatBridge] = {}
        self._background_tasks: set[asyncio.Task] = set()

    def get(self, instance_id: str) -> ChatBridge | None:
        return self._bridges.get(instance_id)

    def instance_count(self) -> int:
        return len(self._bridges)

    def get_or_create(self, instance_id: str) -> ChatBridge:
        bridge = self._bridges.get(instance_id)
        if bridge is None:
            bridge = self.create(instance_id)
        return bridge

    def create(self, instance_id: str) -> ChatBridge:
        if instance_id in self._bridges:
            raise ValueError(f"Chat instance '{instance_id}' already exists")

        bridge = build_chat_bridge(
            self.settings,
            instance_id,
            self._database,
            client=self._client,
            sleep=self._sleep,
        )
        bridge.engine.subscribe(lambda event: self._sse_service.publish(instance_id, event))
        bridge.connectivity.add_listener(
            lambda online: self._schedule_replay(bridge) if online else None
        )

        self._bridges[instance_id] = bridge
        logger.info("Created chat instance %s", instance_id)
        return bridge

    async def remove(self, instance_id: str) -> bool:
        bridge = self._bridges.pop(instance_id, None)
        if bridge is None:
            return False

        await bridge.aclose()
        logger.info("Removed chat instance %s", instance_id)
        return True

    async def aclose_all(self) -> None:
        for task in list(self._background_tasks):
            task.cancel()
        if self._background_tasks:
            await asyncio.gather(*self._background_tasks, return_exceptions=True)

        for instance_id in list(self._bridges):
            await self.remove(instance_id)

    async def wait_background(self) -> None:
        """Wait for scheduled offline replays to finish"""
        while self._background_tasks:
            await asyncio.wait(set(self._background_tasks))

    def _schedule_replay(self, bridge: ChatBridge) -> None:
        task = asyncio.get_running_loop().create_task(
            bridge.replay(),
            name=f"chatbridge-replay-{bridge.instance_id}",
        )
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)
