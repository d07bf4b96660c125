from fastapi import APIRouter, HTTPException, status

from chatbridge.api.dependencies import ChatBridgeDep
from chatbridge.models.chat.models import ContentPart
from chatbridge.models.chat.requests import ConnectivityRequest, SendMessageRequest
from chatbridge.models.chat.responses import ChatMessageResponse, ReplayResponse, ThreadResponse
from chatbridge.services.chat_bridge import ChatBridge
from chatbridge.services.thread_engine import (
    EmptyMessageError,
    MessageNotFoundError,
    NoUserMessageError,
    ThreadBusyError,
)

router = APIRouter(
    prefix="/chat",
    tags=["chat"],
)


def _thread_response(bridge: ChatBridge) -> ThreadResponse:
    return ThreadResponse(
        instance_id=bridge.instance_id,
        session_id=bridge.engine.session_id,
        messages=[message.to_response() for message in bridge.engine.snapshot()],
    )


@router.post(
    "/{instance_id}/messages",
    response_model=ChatMessageResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def send_message(
    request_body: SendMessageRequest,
    bridge: ChatBridgeDep,
) -> ChatMessageResponse:
    parts: list[ContentPart] = []
    if request_body.content.strip():
        parts.append(ContentPart.of_text(request_body.content))
    parts.extend(
        ContentPart.of_file(file.url, file.filename, file.mime_type)
        for file in request_body.files
    )

    try:
        message = bridge.engine.append(parts)
    except EmptyMessageError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=str(e),
        )
    except ThreadBusyError as e:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=str(e),
        )

    return message.to_response()


@router.post("/{instance_id}/messages/{message_id}/cancel", response_model=ChatMessageResponse)
async def cancel_message(
    message_id: str,
    bridge: ChatBridgeDep,
) -> ChatMessageResponse:
    try:
        bridge.engine.cancel(message_id)
    except MessageNotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Message not found",
        )

    return bridge.engine.get_message(message_id).to_response()


@router.post(
    "/{instance_id}/reload",
    response_model=ChatMessageResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def reload_reply(bridge: ChatBridgeDep) -> ChatMessageResponse:
    try:
        return bridge.engine.reload().to_response()
    except NoUserMessageError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Nothing to reload",
        )


@router.post("/{instance_id}/reset", response_model=ThreadResponse)
async def reset_conversation(bridge: ChatBridgeDep) -> ThreadResponse:
    bridge.engine.new_conversation()
    return _thread_response(bridge)


@router.get("/{instance_id}/thread", response_model=ThreadResponse)
async def get_thread(bridge: ChatBridgeDep) -> ThreadResponse:
    return _thread_response(bridge)


@router.post("/{instance_id}/connectivity", response_model=ReplayResponse)
async def set_connectivity(
    request_body: ConnectivityRequest,
    bridge: ChatBridgeDep,
) -> ReplayResponse:
    """
    Report the host's network state.
    Going online replays queued messages in the background; progress arrives
    as thread events.
    """
    if request_body.online:
        bridge.connectivity.mark_online()
    else:
        bridge.connectivity.mark_offline()

    return ReplayResponse(
        online=bridge.connectivity.is_online,
        queued=bridge.offline_queue.size(),
    )
