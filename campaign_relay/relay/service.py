"""
Campaign chat service.

Owns the long-lived collaborators (session store, completion source, sink)
and builds a fresh orchestrator for every turn.
"""

import uuid
from typing import Optional

import structlog

from ..llm.completion import CompletionSource
from ..state.session_store import SessionStore
from .emitter import EventEmitter, PushChannel
from .orchestrator import (
    DEFAULT_TEMPERATURE,
    CampaignSink,
    TurnOrchestrator,
    TurnOutcome,
    TurnRequest,
)

logger = structlog.get_logger()


class CampaignChatService:
    """Entry point for transports: start sessions and run turns."""

    def __init__(
        self,
        store: SessionStore,
        source: CompletionSource,
        sink: Optional[CampaignSink] = None,
        temperature: float = DEFAULT_TEMPERATURE,
    ):
        self.store = store
        self.source = source
        self.sink = sink
        self.temperature = temperature

    async def start_chat(self) -> dict[str, str]:
        """Create a fresh session with an empty campaign state."""
        session_id = await self.store.create_session()
        chat_id = str(uuid.uuid4())
        logger.info("chat.started", session_id=session_id, chat_id=chat_id)
        return {"sessionId": session_id, "chatId": chat_id}

    async def run_turn(self, session_id: str, message: str, send: PushChannel) -> TurnOutcome:
        """Run one turn, pushing its events through ``send``."""
        orchestrator = TurnOrchestrator(
            store=self.store,
            source=self.source,
            emitter=EventEmitter(send, session_id=session_id),
            sink=self.sink,
            temperature=self.temperature,
        )
        return await orchestrator.run(TurnRequest(session_id=session_id, message=message))
