"""Completion sources for the relay."""
from .completion import (
    AnthropicCompletionSource,
    ChatMessage,
    CompletionSource,
    MockCampaignSource,
    ScriptedCompletionSource,
    completion_source_from_settings,
)

__all__ = [
    "AnthropicCompletionSource",
    "ChatMessage",
    "CompletionSource",
    "MockCampaignSource",
    "ScriptedCompletionSource",
    "completion_source_from_settings",
]
