import logging
from typing import AsyncGenerator

from fastapi import APIRouter, Query, Request
from fastapi.responses import StreamingResponse

from chatbridge.api.dependencies import ChatBridgeDep, SseServiceDep
from chatbridge.events.thread_events import connection_established
from chatbridge.services.sse_service import EventFilter


logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/sse",
    tags=["sse"],
)


@router.get("/{instance_id}/events")
async def stream_events(
    instance_id: str,
    request: Request,
    bridge: ChatBridgeDep,
    sse_service: SseServiceDep,
    event_types: list[str] | None = Query(
        None,
        description="Filter by event types. If not specified, all event types are included.",
    ),
) -> StreamingResponse:
    """
    Stream the thread events of one chat instance as Server-Sent Events.

    Query parameters:
    - event_types: List of event types to filter (e.g., ?event_types=message.updated)
    - Any other query parameter: Treated as metadata filter (e.g., ?message_id=abc)
    """
    metadata_filters: dict[str, list[str]] = {}
    for key, value in request.query_params.multi_items():
        if key != "event_types":
            metadata_filters.setdefault(key, []).append(value)

    event_filter = EventFilter(
        event_types=event_types,
        metadata_filters=metadata_filters or None,
    )
    connection = sse_service.register_connection(bridge.instance_id, event_filter)

    async def event_generator() -> AsyncGenerator[str, None]:
        try:
            yield connection_established(instance_id, connection.connection_id).format_sse()

            while True:
                event = await connection.receive()
                yield event.format_sse()
        finally:
            sse_service.unregister_connection(connection)
            logger.debug("SSE connection %s closed", connection.connection_id)

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )
