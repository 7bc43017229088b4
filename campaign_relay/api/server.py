"""
HTTP transport for the campaign chat relay.

Endpoints:
- POST /api/campaign-chat/start   (Create a session)
- POST /api/campaign-chat         (Run one turn as a server-sent event stream)
- GET  /health
"""

import asyncio
from typing import Optional

import structlog
from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse

from ..infrastructure.message_schemas import SessionStarted, TurnInput
from ..relay.emitter import QueueChannel
from ..relay.service import CampaignChatService

logger = structlog.get_logger()

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}

app = FastAPI(
    title="Campaign Relay",
    description="Conversational campaign intake with streaming field extraction",
    version="0.1.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

# Global service instance (initialized by create_app)
_service: Optional[CampaignChatService] = None


def _require_service() -> CampaignChatService:
    if _service is None:
        raise HTTPException(status_code=503, detail="Relay service not initialized")
    return _service


@app.get("/health")
async def health():
    return {"status": "ok", "ready": _service is not None}


@app.post("/api/campaign-chat/start", response_model=SessionStarted)
async def start_chat():
    """Create a fresh session with an empty campaign state."""
    service = _require_service()
    return await service.start_chat()


@app.post("/api/campaign-chat")
async def campaign_chat(turn: TurnInput):
    """
    Stream one turn.

    The turn runs as its own task writing into a queue-backed channel; the
    response drains the queue. If the client goes away the channel is closed,
    which stops the turn at its next event.
    """
    service = _require_service()
    channel = QueueChannel()

    async def produce() -> None:
        try:
            await service.run_turn(turn.sessionId, turn.message, channel.send)
        finally:
            channel.close()

    async def event_stream():
        task = asyncio.create_task(produce())
        try:
            async for event in channel.events():
                yield event.to_sse()
        finally:
            if not channel.closed:
                logger.info("api.client_disconnected", session_id=turn.sessionId)
            channel.close()
            if not task.done():
                task.cancel()

    return StreamingResponse(
        event_stream(),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )


def create_app(service: CampaignChatService) -> FastAPI:
    """Create the relay server around an initialized service."""
    global _service
    _service = service
    return app


async def serve(settings=None) -> None:
    """Build collaborators from settings and run the server until stopped."""
    import uvicorn

    from ..config import get_settings
    from ..llm.completion import completion_source_from_settings
    from ..state.session_store import session_store_from_settings

    settings = settings or get_settings()
    store = session_store_from_settings(settings)
    if hasattr(store, "connect"):
        await store.connect()

    service = CampaignChatService(
        store=store,
        source=completion_source_from_settings(settings),
        temperature=settings.llm_temperature,
    )
    create_app(service)

    config = uvicorn.Config(app, host=settings.host, port=settings.port, log_level="info")
    server = uvicorn.Server(config)
    logger.info(
        "api.starting",
        host=settings.host,
        port=settings.port,
        store_backend=settings.store_backend,
        mock_llm=settings.mock_llm,
    )
    try:
        await server.serve()
    finally:
        if hasattr(store, "disconnect"):
            await store.disconnect()


def run_server(settings=None) -> None:
    """Run the relay server."""
    asyncio.run(serve(settings))
