"""Shared pytest fixtures and configuration."""

import pytest

from campaign_relay.llm.completion import ScriptedCompletionSource
from campaign_relay.state.session_store import InMemorySessionStore


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class EventRecorder:
    """Push channel that keeps every event it receives."""

    def __init__(self):
        self.events = []

    async def __call__(self, event) -> None:
        self.events.append(event)

    def of_type(self, event_type: str) -> list:
        return [e for e in self.events if e.type.value == event_type]

    @property
    def text(self) -> str:
        return "".join(e.delta for e in self.of_type("text"))


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    """In-memory store over the full campaign schema."""
    return InMemorySessionStore(clock=clock)


@pytest.fixture
def small_store(clock):
    """In-memory store over a two-field schema."""
    return InMemorySessionStore(schema=("valueProp", "cta"), clock=clock)


@pytest.fixture
def recorder():
    return EventRecorder()


@pytest.fixture
def scenario_source():
    """Reply that confirms valueProp and cta, with the second marker split."""
    return ScriptedCompletionSource([
        "Sure, here: [FIELD:valueProp:Fast shipping]",
        " and call to action [FIELD",
        ":cta:Buy now]!",
    ])


def pytest_configure(config):
    """Configure custom markers."""
    config.addinivalue_line(
        "markers", "integration: mark test as requiring external services (Redis, etc.)"
    )


def _redis_available():
    """Check if Redis is available."""
    import socket
    try:
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.settimeout(1)
        result = sock.connect_ex(('localhost', 6379))
        sock.close()
        return result == 0
    except OSError:
        return False


def pytest_collection_modifyitems(config, items):
    """Skip integration tests if Redis is not available."""
    if _redis_available():
        return
    skip_integration = pytest.mark.skip(reason="Redis not available")
    for item in items:
        if "integration" in item.keywords:
            item.add_marker(skip_integration)
