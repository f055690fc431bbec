"""Unit tests for the call session manager."""
import asyncio

import pytest

from conftest import FakeChannel
from supportline.core.errors import ChannelConflict, InvalidRequest, SessionNotFound
from supportline.services.call_session.consent import (
    CONSENT_DECLINED_MESSAGE,
    CONSENT_GRANTED_MESSAGE,
    CONSENT_PROMPT,
)
from supportline.services.call_session.manager import (
    INACTIVITY_GOODBYE,
    REPROMPT_MESSAGE,
    CallSessionManager,
)
from supportline.services.call_session.models import CallState
from supportline.services.routing.models import Answer

CALLER = "+15125550123"


class BrokenChannel(FakeChannel):
    """Channel whose sends always fail."""

    async def send(self, message):
        raise ConnectionResetError("socket closed by peer")


async def start_call(manager, channel=None, call_sid="CA1"):
    await manager.handle_incoming_call(call_sid, CALLER)
    if channel is not None:
        manager.attach_channel(call_sid, channel)
    return manager.get_session(call_sid)


class TestSessionRegistry:
    """Test session creation and teardown."""

    @pytest.mark.asyncio
    async def test_incoming_call_creates_ringing_session(self, session_manager):
        session = await session_manager.handle_incoming_call("CA1", CALLER)

        assert session.state == CallState.RINGING
        assert session.caller == CALLER
        assert session_manager.get_session("CA1") is session

    @pytest.mark.asyncio
    async def test_repeated_start_is_ignored(self, session_manager):
        first = await session_manager.handle_incoming_call("CA1", CALLER)
        second = await session_manager.handle_incoming_call("CA1", CALLER)
        assert first is second

    @pytest.mark.asyncio
    async def test_missing_call_id_is_rejected(self, session_manager):
        with pytest.raises(InvalidRequest):
            await session_manager.handle_incoming_call("", CALLER)
        with pytest.raises(InvalidRequest):
            await session_manager.handle_utterance("", "R1", "hello")

    @pytest.mark.asyncio
    async def test_attach_channel_requires_session(self, session_manager, channel):
        with pytest.raises(SessionNotFound):
            session_manager.attach_channel("CA404", channel)

    @pytest.mark.asyncio
    async def test_open_channel_is_not_replaced(self, session_manager, channel):
        session = await start_call(session_manager, channel)
        other = FakeChannel()

        with pytest.raises(ChannelConflict):
            session_manager.attach_channel("CA1", other)

        assert session.channel is channel
        await session_manager.handle_utterance("CA1", "R1", "hello")
        assert len(channel.of_type("response")) == 1
        assert other.messages == []

    @pytest.mark.asyncio
    async def test_closed_channel_can_be_replaced(self, session_manager, channel):
        session = await start_call(session_manager, channel)
        await channel.close()
        reconnected = FakeChannel()

        session_manager.attach_channel("CA1", reconnected)

        assert session.channel is reconnected

    @pytest.mark.asyncio
    async def test_cleanup_is_idempotent(self, session_manager, channel):
        session = await start_call(session_manager, channel)

        await session_manager.cleanup("CA1")
        await session_manager.cleanup("CA1")

        assert session_manager.get_session("CA1") is None
        assert channel.close_count == 1
        assert session.timers.names() == []
        assert session.state == CallState.ENDED

    @pytest.mark.asyncio
    async def test_shutdown_cleans_every_session(self, session_manager):
        await start_call(session_manager, FakeChannel(), call_sid="CA1")
        await start_call(session_manager, FakeChannel(), call_sid="CA2")

        await session_manager.shutdown()

        assert session_manager.get_session("CA1") is None
        assert session_manager.get_session("CA2") is None


class TestUtterances:
    """Test answering caller utterances."""

    @pytest.mark.asyncio
    async def test_first_utterance_activates_call(self, session_manager, channel, context_store):
        session = await start_call(session_manager, channel)

        turn = await session_manager.handle_utterance("CA1", "R1", "shelter near Austin")

        assert session.state == CallState.ACTIVE
        assert turn.text.startswith("I found 2 resources in Austin.")
        assert turn.end_call is False
        assert channel.of_type("response") == [
            {"type": "response", "request_id": "R1", "text": turn.text, "end_call": False}
        ]
        assert context_store.get("CA1").focus_entity.name == "Safe Haven Shelter"
        assert session.transcript[0] == "Caller: shelter near Austin"

    @pytest.mark.asyncio
    async def test_utterance_without_start_event_creates_session(self, session_manager):
        turn = await session_manager.handle_utterance("CA9", "R1", "hello")

        assert turn is not None
        assert session_manager.get_session("CA9").state == CallState.ACTIVE

    @pytest.mark.asyncio
    async def test_duplicate_request_is_answered_once(self, session_manager, channel, search_backend):
        await start_call(session_manager, channel)
        search_backend.delay = 0.02

        first, second = await asyncio.gather(
            session_manager.handle_utterance("CA1", "R1", "shelter near Austin"),
            session_manager.handle_utterance("CA1", "R1", "shelter near Austin"),
        )

        assert first is not None
        assert second is None
        assert len(search_backend.calls) == 1
        assert len(channel.of_type("response")) == 1

    @pytest.mark.asyncio
    async def test_distinct_requests_are_serialized(self, session_manager, channel, search_backend):
        await start_call(session_manager, channel)
        search_backend.delay = 0.01

        first, second = await asyncio.gather(
            session_manager.handle_utterance("CA1", "R1", "shelter near Austin"),
            session_manager.handle_utterance("CA1", "R2", "do they take pets"),
        )

        assert first is not None and second is not None
        assert [m["request_id"] for m in channel.of_type("response")] == ["R1", "R2"]
        # The second turn saw the first turn's focus entity
        assert second.text.startswith("Safe Haven Shelter:")

    @pytest.mark.asyncio
    async def test_farewell_asks_edge_to_end_call(self, session_manager, channel):
        await start_call(session_manager, channel)

        turn = await session_manager.handle_utterance("CA1", "R1", "goodbye")
        assert turn.end_call is True

    @pytest.mark.asyncio
    async def test_late_answer_is_discarded(self, session_manager, channel):
        await start_call(session_manager, channel)
        await session_manager.cleanup("CA1")

        result = await session_manager.handle_backend_answer("CA1", Answer(text="too late"))

        assert result is None
        assert channel.of_type("response") == []

    @pytest.mark.asyncio
    async def test_channel_failure_ends_call(self, session_manager):
        broken = BrokenChannel()
        session = await start_call(session_manager, broken)

        await session_manager.handle_utterance("CA1", "R1", "hello")

        assert session.state == CallState.ERROR
        assert session_manager.get_session("CA1") is None


class TestResponseDeadline:
    """Test slow backend handling."""

    @pytest.mark.asyncio
    async def test_slow_answer_sends_progress_updates(self, session_manager, channel, language_model):
        await start_call(session_manager, channel)
        language_model.delay = 0.075

        turn = await session_manager.handle_utterance("CA1", "R1", "I feel really scared tonight")

        assert turn.text == language_model.text
        assert len(channel.of_type("progress")) == 1
        assert session_manager.get_session("CA1").state == CallState.ACTIVE

    @pytest.mark.asyncio
    async def test_exhausted_retries_end_call_with_apology(self, session_manager, channel, language_model):
        session = await start_call(session_manager, channel)
        language_model.delay = 5.0

        turn = await session_manager.handle_utterance("CA1", "R1", "I feel really scared tonight")

        assert turn.end_call is True
        assert "1-800-799-7233" in turn.text
        assert len(channel.of_type("progress")) == 2
        assert len(channel.of_type("end")) == 1
        assert session.state == CallState.ERROR
        assert session_manager.get_session("CA1") is None
        assert channel.close_count == 1


class TestInactivity:
    """Test the activity monitor."""

    @pytest.mark.asyncio
    async def test_idle_call_is_reprompted_then_ended(self, session_manager, channel):
        session = await start_call(session_manager, channel)

        await asyncio.sleep(0.3)

        assert [m["text"] for m in channel.of_type("prompt")] == [REPROMPT_MESSAGE]
        assert [m["text"] for m in channel.of_type("end")] == [INACTIVITY_GOODBYE]
        assert session.state == CallState.ENDED
        assert session_manager.get_session("CA1") is None
        assert channel.close_count == 1

    @pytest.mark.asyncio
    async def test_activity_resets_the_idle_window(self, session_manager, channel):
        await start_call(session_manager, channel)

        for i in range(4):
            await asyncio.sleep(0.03)
            await session_manager.handle_utterance("CA1", f"R{i}", "hello")

        assert channel.of_type("prompt") == []
        assert session_manager.get_session("CA1") is not None
        await session_manager.cleanup("CA1")


class TestConsentFlow:
    """Test the end-of-call consent and summary flow."""

    @pytest.mark.asyncio
    async def test_ringing_call_ends_without_consent_prompt(self, session_manager, channel, messaging_service):
        session = await start_call(session_manager, channel)

        await session_manager.handle_call_status("CA1", "no-answer")

        assert session.state == CallState.ENDED
        assert channel.of_type("consent_prompt") == []
        assert messaging_service.sent == []

    @pytest.mark.asyncio
    async def test_completed_call_asks_for_consent(self, session_manager, channel):
        session = await start_call(session_manager, channel)
        await session_manager.handle_utterance("CA1", "R1", "shelter near Austin")

        await session_manager.handle_call_status("CA1", "completed")

        assert session.state == CallState.AWAITING_CONSENT
        assert channel.of_type("consent_prompt") == [{"type": "consent_prompt", "text": CONSENT_PROMPT}]
        await session_manager.cleanup("CA1")

    @pytest.mark.asyncio
    async def test_consent_granted_sends_summary_with_retries(
        self, session_manager, channel, messaging_service, context_store
    ):
        messaging_service.failures = 2
        session = await start_call(session_manager, channel)
        await session_manager.handle_utterance("CA1", "R1", "shelter near Austin")
        await session_manager.handle_call_status("CA1", "completed")

        turn = await session_manager.handle_utterance("CA1", "R2", "yes please")

        assert turn.text == CONSENT_GRANTED_MESSAGE
        assert turn.end_call is True
        assert session.consent is True
        assert messaging_service.attempts == 3
        assert len(messaging_service.sent) == 1
        to, body = messaging_service.sent[0]
        assert to == CALLER
        assert body.startswith("Call Summary:")
        assert "24/7 Hotline: 1-800-799-7233" in body
        assert session.state == CallState.ENDED
        assert session_manager.get_session("CA1") is None
        assert context_store.get("CA1") is None

    @pytest.mark.asyncio
    async def test_consent_declined_sends_nothing(self, session_manager, channel, messaging_service):
        session = await start_call(session_manager, channel)
        await session_manager.handle_utterance("CA1", "R1", "hello")
        await session_manager.handle_call_status("CA1", "completed")

        turn = await session_manager.handle_utterance("CA1", "R2", "no thanks")

        assert turn.text == CONSENT_DECLINED_MESSAGE
        assert session.consent is False
        assert messaging_service.sent == []
        assert session_manager.get_session("CA1") is None

    @pytest.mark.asyncio
    async def test_consent_timeout_ends_call(self, session_manager, channel, messaging_service):
        session = await start_call(session_manager, channel)
        await session_manager.handle_utterance("CA1", "R1", "hello")
        await session_manager.handle_call_status("CA1", "completed")

        await asyncio.sleep(0.2)

        assert session.state == CallState.ENDED
        assert session.consent is None
        assert messaging_service.sent == []
        assert session_manager.get_session("CA1") is None

    @pytest.mark.asyncio
    async def test_consent_by_text_when_channel_is_gone(self, session_manager, messaging_service):
        session = await start_call(session_manager)
        await session_manager.handle_utterance("CA1", "R1", "shelter near Austin")
        await session_manager.handle_call_status("CA1", "completed")

        assert messaging_service.sent == [(CALLER, CONSENT_PROMPT)]

        turn = await session_manager.handle_consent_reply(CALLER, "Yes")

        assert turn.text == CONSENT_GRANTED_MESSAGE
        assert session.state == CallState.ENDED
        assert len(messaging_service.sent) == 2
        assert messaging_service.sent[1][1].startswith("Call Summary:")

    @pytest.mark.asyncio
    async def test_consent_reply_without_waiting_call(self, session_manager):
        assert await session_manager.handle_consent_reply(CALLER, "yes") is None

    @pytest.mark.asyncio
    async def test_channel_close_is_treated_as_completed(self, session_manager, channel):
        session = await start_call(session_manager, channel)
        await session_manager.handle_utterance("CA1", "R1", "hello")

        await session_manager.handle_channel_closed("CA1")

        assert session.state == CallState.AWAITING_CONSENT
        assert session.final_status == "completed"
        await session_manager.cleanup("CA1")


class TestCallLog:
    """Test the call audit log written at the end of a call."""

    @pytest.mark.asyncio
    async def test_call_is_logged(self, router, context_store, summary_service, messaging_service, test_settings, call_log):
        manager = CallSessionManager(
            router=router,
            context_store=context_store,
            summary_service=summary_service,
            messaging_service=messaging_service,
            call_log=call_log,
            config=test_settings,
        )
        await manager.handle_incoming_call("CA1", CALLER)
        await manager.handle_utterance("CA1", "R1", "shelter near Austin")
        await manager.handle_call_status("CA1", "completed")
        await manager.handle_utterance("CA1", "R2", "no")

        call = await call_log.get_call("CA1")
        assert call.caller == CALLER
        assert call.status == "completed"
        assert call.consent is False
        assert call.ended_at is not None
        assert "Caller: shelter near Austin" in call.transcript


class TestStats:
    @pytest.mark.asyncio
    async def test_routing_stats(self, session_manager, channel):
        await start_call(session_manager, channel)
        await session_manager.handle_utterance("CA1", "R1", "shelter near Austin")

        stats = session_manager.get_routing_stats()

        assert stats["routing"]["total_requests"] == 1
        assert stats["cache"]["size"] == 1
        assert [g["name"] for g in stats["gateways"]] == ["search", "language_model", "messaging"]
        assert stats["active_sessions"] == 1
        await session_manager.cleanup("CA1")
