"""
Turn orchestrator.

Drives one conversational turn from user message to terminated event stream:

    IDLE -> STREAMING -> COMPLETING | EXHAUSTED | ERROR_TERMINATED

Each fragment is fully applied (text forwarded, markers merged) before the
next one is pulled from the completion source. The orchestrator does not
serialize concurrent turns on the same session; the store's merge is the
only shared point between them.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import AsyncIterator, Awaitable, Callable, Mapping, Optional

import structlog
from pydantic import BaseModel, Field

from ..errors import ChannelClosed, RelayError, StoreUnavailable, UpstreamFailure
from ..extraction.scanner import Marker, MarkerScanner, PlainText, ScanItem, parse_markers
from ..infrastructure.message_schemas import DEFAULT_ERROR_MESSAGE
from ..llm.completion import ChatMessage, CompletionSource
from ..state.campaign_state import FieldValue
from ..state.session_store import SessionStore
from .emitter import EventEmitter
from .prompts import build_conversation

logger = structlog.get_logger()

DEFAULT_TEMPERATURE = 0.3

CampaignSink = Callable[[str, dict], Awaitable[None]]


class TurnPhase(str, Enum):
    """Lifecycle of one turn."""
    IDLE = "idle"
    STREAMING = "streaming"
    COMPLETING = "completing"
    EXHAUSTED = "exhausted"
    ERROR_TERMINATED = "error_terminated"


class TurnRequest(BaseModel):
    """One user message for one session."""
    session_id: str = Field(min_length=1)
    message: str


@dataclass
class TurnOutcome:
    """What a finished turn did."""
    session_id: str
    phase: TurnPhase
    text: str = ""
    merged_fields: dict[str, FieldValue] = field(default_factory=dict)
    completed_data: Optional[dict] = None
    error: Optional[str] = None

    @property
    def completed(self) -> bool:
        return self.phase == TurnPhase.COMPLETING


class TurnOrchestrator:
    """
    Relays one turn of model output while extracting campaign fields.

    An instance serves exactly one turn.
    """

    def __init__(
        self,
        store: SessionStore,
        source: CompletionSource,
        emitter: EventEmitter,
        sink: Optional[CampaignSink] = None,
        temperature: float = DEFAULT_TEMPERATURE,
    ):
        self.store = store
        self.source = source
        self.emitter = emitter
        self.sink = sink
        self.temperature = temperature

        self.phase = TurnPhase.IDLE
        self.scanner = MarkerScanner()
        self._started = False
        self._session_id = ""
        self._raw: list[str] = []
        self._text: list[str] = []
        self._seen_fields: set[str] = set()
        self._merged: dict[str, FieldValue] = {}
        self._completed_data: Optional[dict] = None
        self._error: Optional[str] = None

    async def run(self, turn: TurnRequest) -> TurnOutcome:
        """
        Run the turn to termination.

        Failures never escape: they end the turn in ERROR_TERMINATED after
        one error event (unless the push channel itself is gone).
        """
        if self._started:
            raise RuntimeError("TurnOrchestrator instances serve a single turn")
        self._started = True
        self._session_id = turn.session_id
        log = logger.bind(session_id=turn.session_id)
        log.info("turn.started", message_chars=len(turn.message))

        try:
            state = await self.store.get(turn.session_id)
            messages = build_conversation(state, state.missing_fields(), turn.message)

            self.phase = TurnPhase.STREAMING
            await self._stream(messages)
            await self._finish()
        except ChannelClosed as e:
            self.phase = TurnPhase.ERROR_TERMINATED
            self._error = e.message
            log.info("turn.client_disconnected", merged_fields=list(self._merged))
        except Exception as e:
            self.phase = TurnPhase.ERROR_TERMINATED
            message = e.message if isinstance(e, RelayError) else (str(e) or DEFAULT_ERROR_MESSAGE)
            self._error = message
            log.error(
                "turn.failed",
                error=message,
                error_type=type(e).__name__,
                merged_fields=list(self._merged),
            )
            try:
                await self.emitter.error(message)
            except ChannelClosed:
                log.info("turn.error_undeliverable")

        return TurnOutcome(
            session_id=turn.session_id,
            phase=self.phase,
            text="".join(self._text),
            merged_fields=dict(self._merged),
            completed_data=self._completed_data,
            error=self._error,
        )

    # -------------------------------------------------------------------------
    # Streaming
    # -------------------------------------------------------------------------

    async def _stream(self, messages: list[ChatMessage]) -> None:
        stream = self.source.stream_chat(messages, self.temperature)
        iterator: AsyncIterator[str] = stream.__aiter__()
        try:
            while True:
                try:
                    delta = await iterator.__anext__()
                except StopAsyncIteration:
                    break
                except RelayError:
                    raise
                except Exception as e:
                    raise UpstreamFailure(f"Completion stream failed: {e}", session_id=self._session_id) from e

                self._raw.append(delta)
                for item in self.scanner.feed(delta):
                    await self._handle(item)
        finally:
            aclose = getattr(iterator, "aclose", None)
            if aclose is not None:
                await aclose()

    async def _handle(self, item: ScanItem) -> None:
        if isinstance(item, PlainText):
            self._text.append(item.text)
            await self.emitter.text(item.text)
        elif isinstance(item, Marker):
            await self._record({item.name: item.value})

    async def _record(self, fields: Mapping[str, FieldValue]) -> None:
        """Merge fields not yet reported this turn and report them."""
        fresh: dict[str, FieldValue] = {}
        for name, value in fields.items():
            if name in self._seen_fields:
                continue
            self._seen_fields.add(name)
            if name not in self.store.schema:
                logger.info("turn.unknown_field", session_id=self._session_id, field=name)
                continue
            fresh[name] = value

        if not fresh:
            return

        state = await self.store.merge(self._session_id, fresh)
        self._merged.update(fresh)
        logger.info(
            "turn.fields_merged",
            session_id=self._session_id,
            fields=list(fresh),
            missing=len(state.missing_fields()),
        )
        await self.emitter.state(fresh, state.missing_fields())

    # -------------------------------------------------------------------------
    # Termination
    # -------------------------------------------------------------------------

    async def _finish(self) -> None:
        for item in self.scanner.flush():
            await self._handle(item)

        # Catch-up pass over the whole reply
        await self._record(parse_markers("".join(self._raw)))

        if not await self.store.is_complete(self._session_id):
            self.phase = TurnPhase.EXHAUSTED
            logger.info(
                "turn.exhausted",
                session_id=self._session_id,
                merged_fields=list(self._merged),
            )
            return

        self.phase = TurnPhase.COMPLETING
        final_state = await self.store.get(self._session_id)
        data = final_state.to_dict()
        if self.sink is not None:
            await self.sink(self._session_id, data)
        self._completed_data = data
        try:
            await self.emitter.complete(data)
        finally:
            await self._discard_session()
        logger.info("turn.completed", session_id=self._session_id)

    async def _discard_session(self) -> None:
        # At most one terminal event per turn
        try:
            await self.store.delete(self._session_id)
        except StoreUnavailable as e:
            logger.warning(
                "turn.session_delete_failed",
                session_id=self._session_id,
                error=e.message,
            )
