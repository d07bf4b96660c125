import asyncio
import logging
from dataclasses import replace
from typing import Any, Callable, Sequence

import httpx

from chatbridge.events import message_events, thread_events
from chatbridge.events.thread_event import ThreadEvent
from chatbridge.models.chat.enums import MessageRole, MessageStatus
from chatbridge.models.chat.models import ContentPart, Message, ReplayResult
from chatbridge.models.errors.enums import ErrorKind
from chatbridge.models.errors.models import BridgeRequestError, ClassifiedError, OfflineError
from chatbridge.services.connectivity_service import ConnectivityMonitor
from chatbridge.services.error_classifier import ClassificationContext
from chatbridge.services.offline_queue import OfflineQueue
from chatbridge.services.retry_manager import RetryManager, RetryPolicy
from chatbridge.services.session_store import SessionStore
from chatbridge.services.transport import HttpTransport


logger = logging.getLogger(__name__)

Subscriber = Callable[[ThreadEvent], None]
MetadataProvider = Callable[[], dict[str, Any]]


class ThreadEngineError(Exception):
    pass


class EmptyMessageError(ThreadEngineError):
    pass


class ThreadBusyError(ThreadEngineError):
    """An assistant reply is still running; cancel it before sending again"""
    pass


class NoUserMessageError(ThreadEngineError):
    pass


class MessageNotFoundError(ThreadEngineError):
    pass


def normalize_content(content: str | Sequence[ContentPart]) -> tuple[ContentPart, ...]:
    if isinstance(content, str):
        return (ContentPart.of_text(content),)
    return tuple(content)


class ThreadEngine:
    """Owns one conversation thread and the lifecycle of its messages.

    Assistant messages move `running -> complete | cancelled | error` exactly
    once, or leave the thread when the device is offline and the user message
    is parked in the offline queue. At most one assistant message runs at a
    time; `append` while one is running raises `ThreadBusyError`. Every
    mutation notifies subscribers synchronously, once.
    """

    def __init__(
        self,
        instance_id: str,
        transport: HttpTransport,
        retry_manager: RetryManager,
        session_store: SessionStore,
        offline_queue: OfflineQueue,
        connectivity: ConnectivityMonitor,
        retry_policy: RetryPolicy,
        metadata_provider: MetadataProvider | None = None,
        max_queue_attempts: int = 5,
    ) -> None:
        self.instance_id = instance_id
        self._transport = transport
        self._retry_manager = retry_manager
        self._session_store = session_store
        self._offline_queue = offline_queue
        self._connectivity = connectivity
        self._retry_policy = retry_policy
        self._metadata_provider = metadata_provider
        self._max_queue_attempts = max_queue_attempts

        self._messages: list[Message] = []
        self._subscribers: list[Subscriber] = []
        self._running_id: str | None = None
        self._run_task: asyncio.Task | None = None

        self._session_store.add_reset_listener(self._on_session_reset)

    # ------------------------------------------------------------------
    # Subscription and reads
    # ------------------------------------------------------------------

    def subscribe(self, subscriber: Subscriber) -> Callable[[], None]:
        self._subscribers.append(subscriber)
        return lambda: self.unsubscribe(subscriber)

    def unsubscribe(self, subscriber: Subscriber) -> None:
        if subscriber in self._subscribers:
            self._subscribers.remove(subscriber)

    def snapshot(self) -> tuple[Message, ...]:
        return tuple(self._messages)

    def get_message(self, message_id: str) -> Message | None:
        index = self._index_of(message_id)
        return self._messages[index] if index is not None else None

    def running_message(self) -> Message | None:
        if self._running_id is None:
            return None
        return self.get_message(self._running_id)

    @property
    def session_id(self) -> str:
        return self._session_store.get()

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def append(self, content: str | Sequence[ContentPart]) -> Message:
        """Add a user message and start the assistant reply in the background.

        Returns the user message right away; progress arrives through
        subscribers. Must be called from within a running event loop.
        """
        parts = normalize_content(content)
        if not parts or all(part.is_empty() for part in parts):
            raise EmptyMessageError("Message content is empty")
        if self._running_id is not None:
            raise ThreadBusyError(f"Message {self._running_id} is still running")

        asyncio.get_running_loop()

        user_message = Message.create(MessageRole.USER, parts, MessageStatus.COMPLETE)
        assistant_message = Message.create(MessageRole.ASSISTANT, (), MessageStatus.RUNNING)
        self._messages.append(user_message)
        self._messages.append(assistant_message)
        self._running_id = assistant_message.id

        self._notify(message_events.message_sent(self.instance_id, user_message, assistant_message))
        self._start_run(user_message, assistant_message.id)
        return user_message

    def update_partial(self, message_id: str, cumulative_text: str) -> None:
        """Replace the text of a running assistant message; ignored once it is terminal"""
        message = self.get_message(message_id)
        if message is None or message.status.is_terminal:
            return

        updated = self._replace(replace(message, content=(ContentPart.of_text(cumulative_text),)))
        self._notify(message_events.message_updated(self.instance_id, updated))

    def complete(self, message_id: str, final_text: str) -> None:
        message = self._require(message_id)
        if message.status.is_terminal:
            logger.debug("Ignoring completion of %s message %s", message.status.value, message_id)
            return

        updated = self._replace(replace(
            message,
            content=(ContentPart.of_text(final_text),),
            status=MessageStatus.COMPLETE,
        ))
        self._clear_running(message_id)
        self._notify(message_events.message_completed(self.instance_id, updated))

    def cancel(self, message_id: str) -> None:
        """Stop a running message and abort its request; a no-op when already terminal"""
        message = self._require(message_id)
        if message.status.is_terminal:
            return

        self._mark_cancelled(message)
        task = self._run_task
        if task is not None and not task.done() and task is not _current_task():
            task.cancel()

    def fail(self, message_id: str, error: ClassifiedError) -> None:
        message = self._require(message_id)
        if message.status.is_terminal:
            logger.debug("Ignoring failure of %s message %s", message.status.value, message_id)
            return

        updated = self._replace(replace(message, status=MessageStatus.ERROR, error=error))
        self._clear_running(message_id)
        self._notify(message_events.message_failed(self.instance_id, updated))

    def reload(self) -> Message:
        """Regenerate the reply to the last user message without duplicating it"""
        last_user_index = next(
            (index for index in range(len(self._messages) - 1, -1, -1)
             if self._messages[index].role == MessageRole.USER),
            None,
        )
        if last_user_index is None:
            raise NoUserMessageError("Nothing to reload")

        trailing = self._messages[last_user_index + 1:]
        for message in trailing:
            if not message.status.is_terminal:
                self.cancel(message.id)
        del self._messages[last_user_index + 1:]

        user_message = self._messages[last_user_index]
        assistant_message = Message.create(MessageRole.ASSISTANT, (), MessageStatus.RUNNING)
        self._messages.append(assistant_message)
        self._running_id = assistant_message.id

        self._notify(message_events.message_regenerating(
            self.instance_id,
            assistant_message,
            [message.id for message in trailing],
        ))
        self._start_run(user_message, assistant_message.id)
        return assistant_message

    def new_conversation(self) -> None:
        self._session_store.reset()

    async def wait_idle(self) -> None:
        """Wait until no reply is in flight"""
        while self._run_task is not None and not self._run_task.done():
            await asyncio.wait({self._run_task})

    async def load_previous_session(self) -> list[Message]:
        """Seed an empty thread with the backend's stored history for the current session"""
        if self._messages:
            return []

        session_id = self._session_store.peek()
        if session_id is None:
            return []

        history = await self._transport.load_history(session_id, self._metadata())
        if self._messages or not history:
            return []

        loaded = [
            Message.create(role, (ContentPart.of_text(text),), MessageStatus.COMPLETE)
            for role, text in history
        ]
        self._messages.extend(loaded)
        self._notify(thread_events.thread_loaded(self.instance_id, loaded))
        return loaded

    async def replay_offline(self) -> ReplayResult:
        """Send queued messages in enqueue order, dequeuing each only after success"""
        if self._running_id is not None:
            raise ThreadBusyError(f"Message {self._running_id} is still running")

        result = ReplayResult()
        for item in self._offline_queue.pending():
            if not self._connectivity.is_online:
                break

            user_message = self.get_message(item.user_message_id)
            if user_message is None:
                user_message = Message(
                    id=item.user_message_id,
                    role=MessageRole.USER,
                    content=item.content,
                    status=MessageStatus.COMPLETE,
                    created_at=item.queued_at,
                )
                self._messages.append(user_message)

            assistant_message = Message.create(MessageRole.ASSISTANT, (), MessageStatus.RUNNING)
            self._messages.insert(self._reply_slot(user_message.id), assistant_message)
            self._running_id = assistant_message.id
            self._notify(message_events.message_sent(self.instance_id, user_message, assistant_message))

            task = self._start_run(user_message, assistant_message.id)
            await asyncio.wait({task})

            if task.cancelled():
                result.failed += 1
                result.failed_ids.append(item.id)
                break

            error = task.result()
            if error is None:
                result.sent += 1
                continue

            if error.kind == ErrorKind.OFFLINE:
                result.failed += 1
                result.failed_ids.append(item.id)
                break

            updated = self._offline_queue.record_failure(item.id, error.kind.value)
            if updated is not None and updated.attempts >= self._max_queue_attempts:
                self._offline_queue.dequeue(item.id)
                result.dropped += 1
                logger.warning(
                    "Dropped queued message %s after %d failed attempts",
                    item.id, updated.attempts,
                )
            else:
                result.failed += 1
                result.failed_ids.append(item.id)

        result.remaining = self._offline_queue.size()
        logger.info(
            "Offline replay for %s: %d sent, %d failed, %d dropped, %d remaining",
            self.instance_id, result.sent, result.failed, result.dropped, result.remaining,
        )
        return result

    async def aclose(self) -> None:
        running = self.running_message()
        if running is not None:
            self.cancel(running.id)
        await self.wait_idle()
        self._session_store.remove_reset_listener(self._on_session_reset)

    # ------------------------------------------------------------------
    # Run loop
    # ------------------------------------------------------------------

    def _start_run(self, user_message: Message, assistant_id: str) -> asyncio.Task:
        self._run_task = asyncio.get_running_loop().create_task(
            self._run(user_message, assistant_id),
            name=f"chatbridge-run-{assistant_id}",
        )
        return self._run_task

    async def _run(self, user_message: Message, assistant_id: str) -> ClassifiedError | None:
        """Drive one reply to its end; returns the failure, or None once it completed"""
        session_id = self._session_store.get()
        metadata = self._metadata()
        history = self._history_before(user_message.id)

        async def attempt():
            if not self._connectivity.is_online:
                raise OfflineError("Device is offline")
            try:
                return await self._transport.run(
                    user_message.content,
                    session_id,
                    metadata,
                    lambda text: self.update_partial(assistant_id, text),
                    history,
                )
            except httpx.TransportError as e:
                if not self._connectivity.is_online:
                    raise OfflineError("Connection lost after the device went offline") from e
                raise

        try:
            reply = await self._retry_manager.with_retry(
                attempt,
                self._retry_policy,
                ClassificationContext(online=self._connectivity.is_online),
            )
        except asyncio.CancelledError:
            message = self.get_message(assistant_id)
            if message is not None and not message.status.is_terminal:
                self._mark_cancelled(message)
            raise
        except BridgeRequestError as e:
            if e.error.kind == ErrorKind.OFFLINE:
                self._park(user_message, assistant_id)
            else:
                logger.error(
                    "Reply %s failed after %d attempt(s): %s (status=%s)",
                    assistant_id, e.attempts, e.error.kind.value, e.error.status_code,
                    exc_info=e,
                )
                self.fail(assistant_id, e.error)
            return e.error
        finally:
            if self._run_task is _current_task():
                self._run_task = None

        if reply.session_id:
            self._session_store.adopt(reply.session_id)
        self.complete(assistant_id, reply.text)

        queued = self._offline_queue.find_by_user_message(user_message.id)
        if queued is not None:
            self._offline_queue.dequeue(queued.id)
        return None

    def _park(self, user_message: Message, assistant_id: str) -> None:
        """Drop the placeholder and keep the user message queued until connectivity returns"""
        index = self._index_of(assistant_id)
        if index is None or self._messages[index].status.is_terminal:
            return

        del self._messages[index]
        self._clear_running(assistant_id)

        queued = self._offline_queue.find_by_user_message(user_message.id)
        queued_id = queued.id if queued is not None else self._offline_queue.enqueue(user_message)
        self._notify(message_events.message_queued(self.instance_id, user_message, queued_id, assistant_id))

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _metadata(self) -> dict[str, Any]:
        return dict(self._metadata_provider()) if self._metadata_provider else {}

    def _reply_slot(self, user_message_id: str) -> int:
        """Position right after a user message and the replies already following it"""
        index = self._index_of(user_message_id)
        if index is None:
            return len(self._messages)

        index += 1
        while index < len(self._messages) and self._messages[index].role == MessageRole.ASSISTANT:
            index += 1
        return index

    def _history_before(self, message_id: str) -> tuple[tuple[str, str], ...]:
        history: list[tuple[str, str]] = []
        for message in self._messages:
            if message.id == message_id:
                break
            if message.role == MessageRole.SYSTEM or message.status != MessageStatus.COMPLETE:
                continue
            history.append((message.role.value, message.text))
        return tuple(history)

    def _index_of(self, message_id: str) -> int | None:
        for index, message in enumerate(self._messages):
            if message.id == message_id:
                return index
        return None

    def _require(self, message_id: str) -> Message:
        message = self.get_message(message_id)
        if message is None:
            raise MessageNotFoundError(f"Message {message_id} is not in thread {self.instance_id}")
        return message

    def _replace(self, message: Message) -> Message:
        index = self._index_of(message.id)
        if index is None:
            raise MessageNotFoundError(f"Message {message.id} is not in thread {self.instance_id}")
        self._messages[index] = message
        return message

    def _mark_cancelled(self, message: Message) -> None:
        updated = self._replace(replace(message, status=MessageStatus.CANCELLED))
        self._clear_running(message.id)
        self._notify(message_events.message_cancelled(self.instance_id, updated))

    def _clear_running(self, message_id: str) -> None:
        if self._running_id == message_id:
            self._running_id = None

    def _on_session_reset(self, previous_session_id: str | None) -> None:
        running = self.running_message()
        if running is not None:
            self.cancel(running.id)

        message_count = len(self._messages)
        self._messages.clear()
        self._notify(thread_events.session_ended(self.instance_id, previous_session_id, message_count))

    def _notify(self, event: ThreadEvent) -> None:
        for subscriber in list(self._subscribers):
            try:
                subscriber(event)
            except Exception:
                logger.exception("Subscriber failed handling %s", event.event_type)


def _current_task() -> asyncio.Task | None:
    try:
        return asyncio.current_task()
    except RuntimeError:
        return None
