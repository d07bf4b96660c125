from typing import Annotated

from fastapi import Depends, Request

from chatbridge.services.chat_bridge import ChatBridge, ChatBridgeRegistry
from chatbridge.services.sse_service import SseService
from chatbridge.settings import BridgeSettings


def get_settings(request: Request) -> BridgeSettings:
    """Get the app's base BridgeSettings"""
    return request.app.state.settings


def get_registry(request: Request) -> ChatBridgeRegistry:
    """Get the app's ChatBridgeRegistry"""
    return request.app.state.registry


def get_sse_service(request: Request) -> SseService:
    """Get the app's SseService"""
    return request.app.state.sse_service


def get_chat_bridge(
    instance_id: str,
    registry: Annotated[ChatBridgeRegistry, Depends(get_registry)],
) -> ChatBridge:
    """Get the chat instance named in the path, creating it on first use"""
    return registry.get_or_create(instance_id)


# Type annotations for dependencies
SettingsDep = Annotated[BridgeSettings, Depends(get_settings)]
RegistryDep = Annotated[ChatBridgeRegistry, Depends(get_registry)]
SseServiceDep = Annotated[SseService, Depends(get_sse_service)]
ChatBridgeDep = Annotated[ChatBridge, Depends(get_chat_bridge)]
