"""Unit tests for the call log persistence service."""
import pytest

from supportline.services.persistence.calls import CallLogService


class TestCallLog:
    """Test call log service."""

    @pytest.mark.asyncio
    async def test_record_call_started(self, call_log):
        await call_log.record_call_started("CA123", "+15125550123")

        call = await call_log.get_call("CA123")
        assert call is not None
        assert call.id is not None
        assert call.caller == "+15125550123"
        assert call.status == "in_progress"
        assert call.started_at is not None
        assert call.ended_at is None

    @pytest.mark.asyncio
    async def test_record_call_started_idempotent(self, call_log):
        await call_log.record_call_started("CA123", "+15125550123")
        first = await call_log.get_call("CA123")

        await call_log.record_call_started("CA123", "+15125550199")
        second = await call_log.get_call("CA123")

        assert first.id == second.id
        assert second.caller == "+15125550123"

    @pytest.mark.asyncio
    async def test_record_call_ended(self, call_log):
        await call_log.record_call_started("CA123", "+15125550123")

        await call_log.record_call_ended(
            "CA123",
            "completed",
            transcript="Caller: shelter near Austin\nAgent: I found 2 resources in Austin.",
            consent=True,
            summary_message_sid="SM0001",
        )

        call = await call_log.get_call("CA123")
        assert call.status == "completed"
        assert call.ended_at is not None
        assert call.consent is True
        assert call.summary_message_sid == "SM0001"
        assert call.transcript.startswith("Caller: shelter near Austin")

    @pytest.mark.asyncio
    async def test_record_call_ended_without_start(self, call_log):
        await call_log.record_call_ended("CA999", "error")

        call = await call_log.get_call("CA999")
        assert call.status == "error"
        assert call.consent is None

    @pytest.mark.asyncio
    async def test_get_missing_call(self, call_log):
        assert await call_log.get_call("nonexistent") is None

    @pytest.mark.asyncio
    async def test_database_errors_are_swallowed(self):
        def broken_factory():
            raise RuntimeError("database is locked")

        service = CallLogService(broken_factory)

        # Neither call raises
        await service.record_call_started("CA123", None)
        await service.record_call_ended("CA123", "completed")
