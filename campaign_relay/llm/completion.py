"""
Completion sources.

A completion source begins one chat completion and yields its text deltas in
order. The sequence is lazy and not restartable; closing the iterator early
cancels the upstream request.
"""

import asyncio
import re
from typing import AsyncIterator, Literal, Optional, Protocol, Sequence

import anthropic
import structlog
from anthropic import AsyncAnthropic
from pydantic import BaseModel

from ..errors import UpstreamFailure
from ..state.campaign_state import CAMPAIGN_FIELDS

logger = structlog.get_logger()

DEFAULT_MODEL = "claude-3-5-haiku-latest"


class ChatMessage(BaseModel):
    """One role-tagged message of the conversation."""
    role: Literal["system", "user", "assistant"]
    content: str


class CompletionSource(Protocol):
    """Anything that can stream a chat completion."""

    def stream_chat(
        self,
        messages: Sequence[ChatMessage],
        temperature: float = 0.7,
    ) -> AsyncIterator[str]:
        ...


class AnthropicCompletionSource:
    """Streams completions from the Anthropic Messages API."""

    def __init__(
        self,
        anthropic_client: Optional[AsyncAnthropic] = None,
        api_key: Optional[str] = None,
        model: str = DEFAULT_MODEL,
        max_tokens: int = 2048,
    ):
        """
        Initialize the source.

        Args:
            anthropic_client: Preconfigured client (default: built from api_key)
            api_key: Anthropic API key (defaults to ANTHROPIC_API_KEY env var)
            model: Claude model to use
            max_tokens: Upper bound on generated tokens per turn
        """
        self.client = anthropic_client or AsyncAnthropic(api_key=api_key or None)
        self.model = model
        self.max_tokens = max_tokens

    async def stream_chat(
        self,
        messages: Sequence[ChatMessage],
        temperature: float = 0.7,
    ) -> AsyncIterator[str]:
        # System messages travel separately in the Messages API
        system = "\n\n".join(m.content for m in messages if m.role == "system")
        conversation = [
            {"role": m.role, "content": m.content}
            for m in messages
            if m.role != "system"
        ]
        request = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "messages": conversation,
            "temperature": temperature,
        }
        if system:
            request["system"] = system

        try:
            async with self.client.messages.stream(**request) as stream:
                async for delta in stream.text_stream:
                    if delta:
                        yield delta
        except anthropic.APIError as e:
            logger.error("completion.stream_failed", model=self.model, error=str(e))
            raise UpstreamFailure(f"Completion stream failed: {e}") from e


class ScriptedCompletionSource:
    """
    Replays a fixed list of fragments.

    Optionally raises ``error`` after ``fail_after`` fragments to simulate a
    provider dropping mid-stream.
    """

    def __init__(
        self,
        fragments: Sequence[str],
        fail_after: Optional[int] = None,
        error: Optional[Exception] = None,
        delay: float = 0.0,
    ):
        self.fragments = list(fragments)
        self.fail_after = fail_after
        self.error = error or UpstreamFailure("Scripted upstream failure")
        self.delay = delay
        self.requests: list[list[ChatMessage]] = []
        self.fragments_served = 0
        self.closed = False

    @classmethod
    def from_text(cls, text: str, chunk_size: int = 7, **kwargs) -> "ScriptedCompletionSource":
        """Split a complete reply into fixed-size fragments."""
        return cls([text[i:i + chunk_size] for i in range(0, len(text), chunk_size)], **kwargs)

    async def stream_chat(
        self,
        messages: Sequence[ChatMessage],
        temperature: float = 0.7,
    ) -> AsyncIterator[str]:
        self.requests.append(list(messages))
        try:
            for index, fragment in enumerate(self.fragments):
                if self.fail_after is not None and index >= self.fail_after:
                    raise self.error
                if self.delay:
                    await asyncio.sleep(self.delay)
                self.fragments_served += 1
                yield fragment
            if self.fail_after is not None and self.fail_after >= len(self.fragments):
                raise self.error
        finally:
            self.closed = True


_STILL_NEEDED = re.compile(r"^Still needed: (.+)$", re.MULTILINE)


class MockCampaignSource:
    """
    Offline stand-in for the model.

    Treats each user message as the answer to the first missing field named
    in the system prompt, marks it, and asks for the next one.
    """

    def __init__(self, schema: tuple[str, ...] = CAMPAIGN_FIELDS, chunk_size: int = 6):
        self.schema = schema
        self.chunk_size = chunk_size

    def compose_reply(self, messages: Sequence[ChatMessage]) -> str:
        system = "\n".join(m.content for m in messages if m.role == "system")
        user = next((m.content for m in reversed(messages) if m.role == "user"), "")

        match = _STILL_NEEDED.search(system)
        missing = [f.strip() for f in match.group(1).split(",")] if match else list(self.schema)
        if not missing or not user.strip():
            return "Could you tell me a bit more about the campaign?"

        field_name, remaining = missing[0], missing[1:]
        value = user.strip().replace("]", ")")
        reply = f"Got it. [FIELD:{field_name}:{value}]"
        if remaining:
            reply += f" Next, what about {remaining[0]}?"
        else:
            reply += " That covers everything."
        return reply

    async def stream_chat(
        self,
        messages: Sequence[ChatMessage],
        temperature: float = 0.7,
    ) -> AsyncIterator[str]:
        reply = self.compose_reply(messages)
        for i in range(0, len(reply), self.chunk_size):
            await asyncio.sleep(0)
            yield reply[i:i + self.chunk_size]


def completion_source_from_settings(settings=None) -> CompletionSource:
    """Build the configured completion source."""
    from ..config import get_settings

    settings = settings or get_settings()
    if settings.mock_llm:
        return MockCampaignSource()
    return AnthropicCompletionSource(
        api_key=settings.anthropic_api_key,
        model=settings.llm_model,
        max_tokens=settings.llm_max_tokens,
    )
