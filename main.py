import logging
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from chatbridge.api.routes.chat import router as chat_router
from chatbridge.api.routes.health import router as health_router
from chatbridge.api.routes.sse import router as sse_router
from chatbridge.db.database import Database
from chatbridge.services.chat_bridge import ChatBridgeRegistry
from chatbridge.services.sse_service import SseService
from chatbridge.settings import BridgeSettings


def configure_logging(settings: BridgeSettings) -> None:
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def create_app(
    settings: BridgeSettings | None = None,
    client: httpx.AsyncClient | None = None,
) -> FastAPI:
    settings = settings or BridgeSettings()
    configure_logging(settings)

    database = Database(settings.storage_path)
    database.setup()
    sse_service = SseService()
    registry = ChatBridgeRegistry(settings, database, sse_service, client=client)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await registry.aclose_all()

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Bridge between a chat UI and a webhook-style chat backend",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.registry = registry
    app.state.sse_service = sse_service

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(health_router)
    app.include_router(chat_router)
    app.include_router(sse_router)

    return app


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:create_app",
        factory=True,
        host="0.0.0.0",
        port=8000,
        reload=True,
    )
