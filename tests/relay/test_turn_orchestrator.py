"""
Tests for the turn orchestrator.

Tests cover:
1. The happy path: text relayed, fields merged, completion handed off
2. Per-turn deduplication and unknown fields
3. Upstream, store and sink failures ending in one error event
4. Client disconnects stopping the turn quietly
"""

import pytest
from pydantic import ValidationError

from campaign_relay.errors import ChannelClosed, StoreUnavailable
from campaign_relay.llm.completion import ScriptedCompletionSource
from campaign_relay.relay.emitter import EventEmitter
from campaign_relay.relay.orchestrator import (
    TurnOrchestrator,
    TurnPhase,
    TurnRequest,
)
from campaign_relay.relay.service import CampaignChatService
from campaign_relay.state.session_store import InMemorySessionStore


def make_orchestrator(store, source, send, **kwargs):
    return TurnOrchestrator(
        store=store,
        source=source,
        emitter=EventEmitter(send, session_id="s-1"),
        **kwargs,
    )


async def run_turn(store, source, send, message="hello", **kwargs):
    orchestrator = make_orchestrator(store, source, send, **kwargs)
    return await orchestrator.run(TurnRequest(session_id="s-1", message=message))


class UnavailableStore(InMemorySessionStore):
    """Store whose medium is down."""

    async def get(self, session_id):
        raise StoreUnavailable("Session store unavailable", session_id=session_id)


class UndeletableStore(InMemorySessionStore):
    """Store whose medium drops out just before the final delete."""

    async def delete(self, session_id):
        raise StoreUnavailable("Session store unavailable", session_id=session_id)


class TestCompletingTurn:
    """A reply that fills the last missing fields."""

    @pytest.mark.asyncio
    async def test_text_reconstructs_without_markers(self, small_store, scenario_source, recorder):
        outcome = await run_turn(small_store, scenario_source, recorder)

        assert recorder.text == "Sure, here:  and call to action !"
        assert outcome.text == recorder.text
        assert "[FIELD:" not in recorder.text

    @pytest.mark.asyncio
    async def test_state_events_in_marker_order(self, small_store, scenario_source, recorder):
        await run_turn(small_store, scenario_source, recorder)

        states = recorder.of_type("state")
        assert [s.partial_data for s in states] == [
            {"valueProp": "Fast shipping"},
            {"cta": "Buy now"},
        ]
        assert states[0].missing_fields == ["cta"]
        assert states[1].missing_fields == []

    @pytest.mark.asyncio
    async def test_event_order(self, small_store, scenario_source, recorder):
        await run_turn(small_store, scenario_source, recorder)

        assert [e.type.value for e in recorder.events] == [
            "text", "state", "text", "state", "text", "complete",
        ]

    @pytest.mark.asyncio
    async def test_complete_event_and_session_removed(self, small_store, scenario_source, recorder):
        outcome = await run_turn(small_store, scenario_source, recorder)

        (complete,) = recorder.of_type("complete")
        assert complete.data == {"valueProp": "Fast shipping", "cta": "Buy now"}
        assert complete.message == "Campaign details captured successfully."
        assert outcome.phase == TurnPhase.COMPLETING
        assert outcome.completed
        assert outcome.completed_data == complete.data
        assert not await small_store.exists("s-1")
        assert recorder.of_type("error") == []

    @pytest.mark.asyncio
    async def test_sink_receives_data_before_complete_event(self, small_store, scenario_source, recorder):
        handed_off = []

        async def sink(session_id, data):
            handed_off.append((session_id, data, len(recorder.of_type("complete"))))

        await run_turn(small_store, scenario_source, recorder, sink=sink)

        assert handed_off == [("s-1", {"valueProp": "Fast shipping", "cta": "Buy now"}, 0)]

    @pytest.mark.asyncio
    async def test_completes_across_turns(self, small_store, recorder):
        await run_turn(small_store, ScriptedCompletionSource(["[FIELD:valueProp:Fast]"]), recorder)
        assert recorder.of_type("complete") == []

        second = ScriptedCompletionSource(["Thanks! [FIELD:cta:Go]"])
        outcome = await run_turn(small_store, second, recorder)

        assert outcome.completed
        assert recorder.of_type("complete")[0].data == {"valueProp": "Fast", "cta": "Go"}
        assert "Still needed: cta" in second.requests[0][0].content


class TestFieldHandling:
    """Marker values, duplicates and unknown names."""

    @pytest.mark.asyncio
    async def test_list_field_decoded(self, store, recorder):
        source = ScriptedCompletionSource(['Noted [FIELD:painPoints:["slow", ', '"costly"]] ok'])

        await run_turn(store, source, recorder)

        (state,) = recorder.of_type("state")
        assert state.partial_data == {"painPoints": ["slow", "costly"]}
        assert (await store.get("s-1")).values["painPoints"] == ["slow", "costly"]

    @pytest.mark.asyncio
    async def test_repeated_marker_reported_once(self, small_store, recorder):
        source = ScriptedCompletionSource(["[FIELD:cta:First] and again [FIELD:cta:Second]"])

        outcome = await run_turn(small_store, source, recorder)

        assert len(recorder.of_type("state")) == 1
        assert (await small_store.get("s-1")).values["cta"] == "First"
        assert outcome.merged_fields == {"cta": "First"}

    @pytest.mark.asyncio
    async def test_unknown_field_not_merged(self, small_store, recorder):
        source = ScriptedCompletionSource(["[FIELD:budget:5k] [FIELD:cta:Go]"])

        await run_turn(small_store, source, recorder)

        assert [s.partial_data for s in recorder.of_type("state")] == [{"cta": "Go"}]
        assert "budget" not in (await small_store.get("s-1")).values

    @pytest.mark.asyncio
    async def test_exhausted_turn_keeps_session(self, small_store, recorder):
        source = ScriptedCompletionSource(["Great. [FIELD:valueProp:Fast] What's the CTA?"])

        outcome = await run_turn(small_store, source, recorder)

        assert outcome.phase == TurnPhase.EXHAUSTED
        assert recorder.of_type("complete") == []
        assert recorder.of_type("error") == []
        assert await small_store.missing_fields("s-1") == ["cta"]

    @pytest.mark.asyncio
    async def test_reply_without_markers(self, small_store, recorder):
        outcome = await run_turn(small_store, ScriptedCompletionSource(["Tell me more."]), recorder)

        assert outcome.phase == TurnPhase.EXHAUSTED
        assert [e.type.value for e in recorder.events] == ["text"]


class TestFailures:
    """Failures end the turn with exactly one error event."""

    @pytest.mark.asyncio
    async def test_upstream_failure_mid_stream(self, small_store, recorder):
        source = ScriptedCompletionSource(["Hi [FIELD:valueProp:Fast]", " more"], fail_after=1)

        outcome = await run_turn(small_store, source, recorder)

        assert outcome.phase == TurnPhase.ERROR_TERMINATED
        assert len(recorder.of_type("error")) == 1
        assert recorder.of_type("complete") == []
        assert recorder.events[-1].type.value == "error"
        # Fields merged before the failure stay in the session
        assert (await small_store.get("s-1")).values["valueProp"] == "Fast"

    @pytest.mark.asyncio
    async def test_arbitrary_source_exception_wrapped(self, small_store, recorder):
        source = ScriptedCompletionSource(["a", "b"], fail_after=0, error=RuntimeError("socket reset"))

        outcome = await run_turn(small_store, source, recorder)

        (error,) = recorder.of_type("error")
        assert "socket reset" in error.message
        assert outcome.error == error.message

    @pytest.mark.asyncio
    async def test_store_unavailable(self, recorder):
        source = ScriptedCompletionSource(["never sent"])

        outcome = await run_turn(UnavailableStore(), source, recorder)

        assert outcome.phase == TurnPhase.ERROR_TERMINATED
        assert [e.type.value for e in recorder.events] == ["error"]
        assert recorder.events[0].message == "Session store unavailable"
        assert source.requests == []

    @pytest.mark.asyncio
    async def test_sink_failure_keeps_session(self, small_store, scenario_source, recorder):
        async def sink(session_id, data):
            raise RuntimeError("crm down")

        outcome = await run_turn(small_store, scenario_source, recorder, sink=sink)

        assert outcome.phase == TurnPhase.ERROR_TERMINATED
        assert recorder.of_type("complete") == []
        assert recorder.of_type("error")[0].message == "crm down"
        assert await small_store.is_complete("s-1")

    @pytest.mark.asyncio
    async def test_failed_delete_after_complete_sends_no_error(self, scenario_source, recorder):
        store = UndeletableStore(schema=("valueProp", "cta"))

        outcome = await run_turn(store, scenario_source, recorder)

        assert outcome.phase == TurnPhase.COMPLETING
        assert recorder.events[-1].type.value == "complete"
        assert recorder.of_type("error") == []

    @pytest.mark.asyncio
    async def test_orchestrator_serves_one_turn(self, small_store, scenario_source, recorder):
        orchestrator = make_orchestrator(small_store, scenario_source, recorder)
        await orchestrator.run(TurnRequest(session_id="s-1", message="hi"))

        with pytest.raises(RuntimeError):
            await orchestrator.run(TurnRequest(session_id="s-1", message="again"))

    def test_turn_request_requires_session_id(self):
        with pytest.raises(ValidationError):
            TurnRequest(session_id="", message="hi")


class TestClientDisconnect:
    """A closed push channel stops the turn without an error event."""

    @pytest.mark.asyncio
    async def test_channel_closed_stops_source(self, small_store, scenario_source):
        attempted = []

        async def send(event):
            attempted.append(event.type.value)
            raise ChannelClosed("client went away")

        outcome = await run_turn(small_store, scenario_source, send)

        assert attempted == ["text"]
        assert outcome.phase == TurnPhase.ERROR_TERMINATED
        assert scenario_source.closed
        assert scenario_source.fragments_served == 1

    @pytest.mark.asyncio
    async def test_transport_error_treated_as_disconnect(self, small_store, scenario_source):
        attempted = []

        async def send(event):
            attempted.append(event.type.value)
            if len(attempted) > 1:
                raise ConnectionResetError("peer reset")

        outcome = await run_turn(small_store, scenario_source, send)

        assert attempted == ["text", "state"]
        assert outcome.phase == TurnPhase.ERROR_TERMINATED
        assert "error" not in attempted
        # The merge landed before the state event failed
        assert (await small_store.get("s-1")).values["valueProp"] == "Fast shipping"


class TestCampaignChatService:
    """The service wires a fresh orchestrator per turn."""

    @pytest.mark.asyncio
    async def test_start_chat_creates_session(self, small_store, scenario_source):
        service = CampaignChatService(store=small_store, source=scenario_source)

        started = await service.start_chat()

        assert set(started) == {"sessionId", "chatId"}
        assert await small_store.exists(started["sessionId"])

    @pytest.mark.asyncio
    async def test_run_turn(self, small_store, scenario_source, recorder):
        service = CampaignChatService(store=small_store, source=scenario_source, temperature=0.1)
        started = await service.start_chat()

        outcome = await service.run_turn(started["sessionId"], "hello", recorder)

        assert outcome.completed
        assert outcome.session_id == started["sessionId"]
        assert scenario_source.requests[0][-1].content == "hello"
