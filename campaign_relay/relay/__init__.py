"""
Streaming field-extraction relay.

Components:
- emitter: push events onto the client channel
- prompts: system prompt and per-turn context
- orchestrator: one turn from message to terminated stream
- service: long-lived wiring for transports
"""

from .emitter import EventEmitter, QueueChannel
from .orchestrator import (
    CampaignSink,
    TurnOrchestrator,
    TurnOutcome,
    TurnPhase,
    TurnRequest,
)
from .service import CampaignChatService

__all__ = [
    "EventEmitter",
    "QueueChannel",
    "CampaignSink",
    "TurnOrchestrator",
    "TurnOutcome",
    "TurnPhase",
    "TurnRequest",
    "CampaignChatService",
]
