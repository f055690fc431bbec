"""Call log persistence service."""
import logging
from datetime import datetime
from typing import Optional
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from supportline.db.models import Call

logger = logging.getLogger(__name__)


class CallLogService:
    """
    Writes the audit log of calls.

    Each operation opens its own database session so it can be used from the
    long-lived session manager. Failures are logged and swallowed: the call
    log never affects a live call.
    """

    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    async def record_call_started(self, call_sid: str, caller: Optional[str]) -> None:
        """Create a call record, or leave the existing one alone."""
        try:
            async with self.session_factory() as db:
                if await self._get(db, call_sid) is not None:
                    return
                db.add(Call(call_sid=call_sid, caller=caller, status="in_progress"))
                await db.commit()
        except Exception as e:
            logger.error(f"[CALL LOG] Failed to record start of call {call_sid}: {e}", exc_info=True)

    async def record_call_ended(
        self,
        call_sid: str,
        status: str,
        transcript: Optional[str] = None,
        consent: Optional[bool] = None,
        summary_message_sid: Optional[str] = None,
    ) -> None:
        """Store the final status, consent and transcript of a call."""
        try:
            async with self.session_factory() as db:
                call = await self._get(db, call_sid)
                if call is None:
                    call = Call(call_sid=call_sid)
                    db.add(call)
                call.status = status
                call.ended_at = datetime.utcnow()
                call.consent = consent
                if transcript:
                    call.transcript = transcript
                if summary_message_sid:
                    call.summary_message_sid = summary_message_sid
                await db.commit()
        except Exception as e:
            logger.error(f"[CALL LOG] Failed to record end of call {call_sid}: {e}", exc_info=True)

    async def get_call(self, call_sid: str) -> Optional[Call]:
        """Get call by Twilio call SID."""
        async with self.session_factory() as db:
            return await self._get(db, call_sid)

    async def _get(self, db: AsyncSession, call_sid: str) -> Optional[Call]:
        result = await db.execute(select(Call).where(Call.call_sid == call_sid))
        return result.scalar_one_or_none()
