"""
Push-protocol event schemas.

One event stream per turn. Every event is a tagged record serialized as a
single server-sent event line: ``data: {"type": ..., ...}``.
"""

from enum import Enum
from typing import Literal, Optional, Union

from pydantic import BaseModel, Field

from ..state.campaign_state import FieldValue

COMPLETE_MESSAGE = "Campaign details captured successfully."
DEFAULT_ERROR_MESSAGE = "An error occurred during processing"


class EventType(str, Enum):
    """Types of events on the push channel."""
    TEXT = "text"
    STATE = "state"
    COMPLETE = "complete"
    ERROR = "error"


class RelayEvent(BaseModel):
    """Base push event."""
    type: EventType

    def to_sse(self) -> str:
        """Render as one server-sent event frame."""
        return f"data: {self.model_dump_json()}\n\n"


class TextEvent(RelayEvent):
    """An increment of assistant-visible text, markers already stripped."""
    type: Literal[EventType.TEXT] = EventType.TEXT
    delta: str


class StateEvent(RelayEvent):
    """Fields newly confirmed this turn plus the full missing-field list."""
    type: Literal[EventType.STATE] = EventType.STATE
    partial_data: dict[str, FieldValue] = Field(default_factory=dict)
    missing_fields: list[str] = Field(default_factory=list)


class CompleteEvent(RelayEvent):
    """The campaign record is fully populated."""
    type: Literal[EventType.COMPLETE] = EventType.COMPLETE
    message: str = COMPLETE_MESSAGE
    data: dict[str, Optional[FieldValue]]


class ErrorEvent(RelayEvent):
    """Fatal failure; terminates the stream."""
    type: Literal[EventType.ERROR] = EventType.ERROR
    message: str = DEFAULT_ERROR_MESSAGE


AnyRelayEvent = Union[TextEvent, StateEvent, CompleteEvent, ErrorEvent]


class TurnInput(BaseModel):
    """Inbound turn request."""
    sessionId: str = Field(min_length=1)
    message: str = Field(min_length=1)


class SessionStarted(BaseModel):
    """Response of the start-chat operation."""
    sessionId: str
    chatId: str
