# Infrastructure components
from .message_schemas import (
    CompleteEvent,
    ErrorEvent,
    EventType,
    RelayEvent,
    StateEvent,
    TextEvent,
)
from .redis_store import RedisSessionStore, create_redis_session_store

__all__ = [
    "CompleteEvent",
    "ErrorEvent",
    "EventType",
    "RelayEvent",
    "StateEvent",
    "TextEvent",
    "RedisSessionStore",
    "create_redis_session_store",
]
