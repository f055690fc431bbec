"""Call session manager."""
import asyncio
import logging
import time
import uuid
from typing import Any, Callable, Dict, Optional

from pydantic import BaseModel

from supportline.core.config import Settings, settings
from supportline.core.errors import (
    ChannelConflict,
    DuplicateEvent,
    DuplicateSession,
    InvalidRequest,
    SessionNotFound,
    SessionTimeout,
)
from supportline.services.backends.base import MessagingService
from supportline.services.call_session.channel import DuplexChannel
from supportline.services.call_session.consent import (
    CONSENT_DECLINED_MESSAGE,
    CONSENT_GRANTED_MESSAGE,
    CONSENT_PROMPT,
    CONSENT_UNCLEAR_MESSAGE,
    ConsentDecision,
    classify_consent,
)
from supportline.services.call_session.models import TERMINAL_STATUSES, CallSession, CallState
from supportline.services.context.store import ConversationContextStore
from supportline.services.gateway.resilient import ResilientGateway
from supportline.services.persistence.calls import CallLogService
from supportline.services.routing.models import Answer
from supportline.services.routing.router import ResponseRouter
from supportline.services.summary import CallSummaryService

logger = logging.getLogger(__name__)

STILL_WORKING_MESSAGE = "I'm still looking into that for you. Thank you for your patience."
TERMINAL_APOLOGY = (
    "I'm sorry, I'm having trouble right now. Please call the National Domestic "
    "Violence Hotline at {hotline}, or 911 if you are in danger. Goodbye."
)
REPROMPT_MESSAGE = "Are you still there? I'm here whenever you're ready."
INACTIVITY_GOODBYE = (
    "I haven't heard from you in a while, so I'm going to end this call. "
    "Please call back any time. Goodbye."
)

CONSENT_REPLIES = {
    ConsentDecision.GRANTED: CONSENT_GRANTED_MESSAGE,
    ConsentDecision.DECLINED: CONSENT_DECLINED_MESSAGE,
    ConsentDecision.UNCLEAR: CONSENT_UNCLEAR_MESSAGE,
}


class TurnResponse(BaseModel):
    """What the caller hears for one utterance."""

    text: str
    end_call: bool = False


class CallSessionManager:
    """
    Owns every live call session.

    Drives the call state machine (ringing, active, awaiting consent, ended,
    error), the per-call timers, duplicate suppression, and the consent and
    summary flow once a call ends. Answers come from the ``ResponseRouter``;
    per-call memory lives in the ``ConversationContextStore``.
    """

    def __init__(
        self,
        router: ResponseRouter,
        context_store: ConversationContextStore,
        summary_service: CallSummaryService,
        messaging_service: MessagingService,
        messaging_gateway: Optional[ResilientGateway] = None,
        call_log: Optional[CallLogService] = None,
        config: Optional[Settings] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.router = router
        self.context_store = context_store
        self.summary_service = summary_service
        self.messaging_service = messaging_service
        self.config = config or settings
        self.messaging_gateway = messaging_gateway or ResilientGateway(
            "messaging",
            max_attempts=self.config.sms_max_attempts,
            retry_delay=self.config.sms_retry_delay_seconds,
            backoff_factor=1.0,
            max_delay=self.config.sms_retry_delay_seconds,
            retry_predicate=lambda e: True,
        )
        self.call_log = call_log
        self._clock = clock
        self._sessions: Dict[str, CallSession] = {}

    # ------------------------------------------------------------------
    # Registry
    # ------------------------------------------------------------------

    def get_session(self, call_sid: str) -> Optional[CallSession]:
        """Get an existing call session."""
        return self._sessions.get(call_sid)

    def create_session(self, call_sid: str, caller: Optional[str] = None) -> CallSession:
        """Register a new call session. Raises DuplicateSession if one exists."""
        if call_sid in self._sessions:
            raise DuplicateSession(call_sid)
        session = CallSession(call_sid=call_sid, caller=caller, last_activity=self._clock())
        self._sessions[call_sid] = session
        logger.info(f"[SESSION MANAGER] Created session {call_sid} - Caller: {caller or 'unknown'}")
        return session

    async def handle_incoming_call(self, call_sid: str, caller: Optional[str] = None) -> CallSession:
        """Start tracking a call. Retransmitted start events are ignored."""
        if not call_sid:
            raise InvalidRequest("Missing call id")
        try:
            session = self.create_session(call_sid, caller)
        except DuplicateSession:
            logger.info(f"[SESSION MANAGER] Ignoring repeated start for call {call_sid}")
            session = self._sessions[call_sid]
            if caller and not session.caller:
                session.caller = caller
            return session

        if self.call_log is not None:
            await self.call_log.record_call_started(call_sid, caller)
        return session

    def attach_channel(self, call_sid: str, channel: DuplexChannel) -> None:
        """Bind the duplex channel and start the activity monitor.

        A call keeps the channel it was first bound to while that channel is
        open; a second one raises ChannelConflict.
        """
        session = self._sessions.get(call_sid)
        if session is None:
            raise SessionNotFound(f"No session for call {call_sid}")
        current = session.channel
        if current is not None and current is not channel and not current.closed:
            raise ChannelConflict(f"Call {call_sid} already has an open channel")
        session.channel = channel
        session.last_activity = self._clock()
        session.timers.start_interval(
            "activity_monitor",
            self.config.activity_check_interval_seconds,
            lambda: self._check_activity(call_sid),
        )
        logger.info(f"[SESSION MANAGER] Channel attached to call {call_sid}")

    # ------------------------------------------------------------------
    # Utterances
    # ------------------------------------------------------------------

    async def handle_utterance(
        self,
        call_sid: str,
        request_id: Optional[str],
        text: str,
    ) -> Optional[TurnResponse]:
        """Answer one recognized utterance. Returns None when the event was dropped."""
        return await self.handle_utterance_event(call_sid, request_id, text)

    async def handle_utterance_event(
        self,
        call_sid: str,
        request_id: Optional[str],
        text: str,
    ) -> Optional[TurnResponse]:
        if not call_sid:
            raise InvalidRequest("Missing call id")
        request_id = request_id or uuid.uuid4().hex

        session = self._sessions.get(call_sid)
        if session is None:
            # Speech can arrive for a call whose start event was missed
            session = await self.handle_incoming_call(call_sid)
        if session.is_terminal:
            logger.info(f"[SESSION MANAGER] Ignoring utterance for finished call {call_sid}")
            return None

        if request_id in session.in_flight:
            duplicate = DuplicateEvent(call_sid, request_id)
            logger.info(f"[SESSION MANAGER] Dropped {duplicate}")
            return None

        session.last_activity = self._clock()
        session.inactivity_prompts = 0

        if session.state == CallState.AWAITING_CONSENT:
            return await self._record_consent(session, text)

        session.in_flight.add(request_id)
        session.last_request_id = request_id
        try:
            async with session.turn_lock:
                if session.is_terminal or session.state == CallState.AWAITING_CONSENT:
                    return None
                if session.state == CallState.RINGING:
                    session.state = CallState.ACTIVE
                    logger.info(f"[SESSION MANAGER] Call {call_sid} is now active")
                return await self._run_turn(session, request_id, text)
        finally:
            session.in_flight.discard(request_id)

    async def _run_turn(self, session: CallSession, request_id: str, text: str) -> Optional[TurnResponse]:
        call_sid = session.call_sid
        session.add_transcript_line("Caller", text)
        context = self.context_store.get(call_sid)

        task = asyncio.create_task(self.router.route(call_sid, text, context))
        session.inflight_task = task
        session.retry_count = 0
        self._arm_response_deadline(session, request_id)
        try:
            await asyncio.wait({task})
        finally:
            session.inflight_task = None

        if task.cancelled():
            # The response deadline ran out and already ended the call
            return TurnResponse(text=self._terminal_apology(), end_call=True)
        return await self.handle_backend_answer(call_sid, task.result(), request_id=request_id, query=text)

    async def handle_backend_answer(
        self,
        call_sid: str,
        answer: Answer,
        request_id: Optional[str] = None,
        query: Optional[str] = None,
    ) -> Optional[TurnResponse]:
        """Deliver a routed answer. Answers for calls that already ended are discarded."""
        session = self._sessions.get(call_sid)
        if session is None or session.state != CallState.ACTIVE:
            logger.info(f"[SESSION MANAGER] Discarding late answer for call {call_sid}")
            return None

        session.timers.cancel("response_deadline")
        if request_id is not None:
            session.in_flight.discard(request_id)
        session.retry_count = 0
        session.last_activity = self._clock()
        session.add_transcript_line("Agent", answer.text)

        if query is not None:
            self.context_store.record_turn(
                call_sid,
                query,
                answer.text,
                intent=answer.intent,
                query_context=answer.query_context,
                location=answer.location,
            )

        logger.info(
            f"[SESSION MANAGER] Answer for {call_sid} - Origin: {answer.origin.value}, "
            f"Fallback: {answer.fallback_used}, End call: {answer.end_call}"
        )
        await self._emit(
            session,
            {
                "type": "response",
                "request_id": request_id,
                "text": answer.text,
                "end_call": answer.end_call,
            },
        )
        return TurnResponse(text=answer.text, end_call=answer.end_call)

    def _arm_response_deadline(self, session: CallSession, request_id: str) -> None:
        call_sid = session.call_sid
        session.timers.start(
            "response_deadline",
            self.config.response_timeout_seconds,
            lambda: self._on_response_deadline(call_sid, request_id),
        )

    async def _on_response_deadline(self, call_sid: str, request_id: str) -> None:
        session = self._sessions.get(call_sid)
        if session is None or session.is_terminal or request_id not in session.in_flight:
            return

        session.retry_count += 1
        if session.retry_count <= self.config.max_response_retries:
            logger.warning(
                f"[SESSION MANAGER] Response deadline passed for {call_sid} "
                f"(retry {session.retry_count}/{self.config.max_response_retries})"
            )
            await self._emit(session, {"type": "progress", "request_id": request_id, "text": STILL_WORKING_MESSAGE})
            self._arm_response_deadline(session, request_id)
            return

        logger.error(f"[SESSION MANAGER] No answer for call {call_sid} after {session.retry_count - 1} retries")
        session.state = CallState.ERROR
        if session.inflight_task is not None and not session.inflight_task.done():
            session.inflight_task.cancel()
        await self._emit(session, {"type": "end", "text": self._terminal_apology()})
        await self._finalize(session, "error")

    # ------------------------------------------------------------------
    # Activity monitor
    # ------------------------------------------------------------------

    async def _check_activity(self, call_sid: str) -> None:
        session = self._sessions.get(call_sid)
        if session is None or session.state not in (CallState.RINGING, CallState.ACTIVE):
            return
        # The response deadline covers calls waiting on an answer
        if session.responding:
            return

        idle = self._clock() - session.last_activity
        if idle < self.config.inactivity_timeout_seconds:
            return

        if session.inactivity_prompts < self.config.inactivity_reprompts:
            session.inactivity_prompts += 1
            session.last_activity = self._clock()
            logger.info(f"[SESSION MANAGER] Re-prompting idle call {call_sid}")
            await self._emit(session, {"type": "prompt", "text": REPROMPT_MESSAGE})
            return

        timeout = SessionTimeout(f"No activity on call {call_sid} for {idle:.0f}s")
        logger.warning(f"[SESSION MANAGER] {timeout}")
        session.state = CallState.ENDED
        await self._emit(session, {"type": "end", "text": INACTIVITY_GOODBYE})
        await self._finalize(session, "timeout")

    # ------------------------------------------------------------------
    # Call status and consent
    # ------------------------------------------------------------------

    async def handle_call_status(self, call_sid: str, status: str) -> None:
        """Apply a call status change reported by the telephony edge."""
        session = self._sessions.get(call_sid)
        if session is None:
            logger.info(f"[SESSION MANAGER] Status '{status}' for unknown call {call_sid}")
            return

        status = (status or "").lower()
        logger.info(f"[SESSION MANAGER] Call {call_sid} status: {status} (state: {session.state.value})")

        if status in ("in-progress", "answered"):
            if session.state == CallState.RINGING:
                session.state = CallState.ACTIVE
            session.last_activity = self._clock()
            return
        if status not in TERMINAL_STATUSES:
            return
        if session.is_terminal or session.state == CallState.AWAITING_CONSENT:
            return

        if session.state == CallState.RINGING:
            session.state = CallState.ENDED
            await self._finalize(session, status)
            return

        session.timers.cancel("activity_monitor")
        session.timers.cancel("response_deadline")

        if session.consent is not None or session.consent_asked:
            await self._finish(session, status)
            return

        session.state = CallState.AWAITING_CONSENT
        session.consent_asked = True
        session.final_status = status
        await self._send_consent_prompt(session)
        session.timers.start(
            "consent_wait",
            self.config.consent_wait_seconds,
            lambda: self._on_consent_timeout(call_sid),
        )

    async def handle_consent_reply(self, caller: str, text: str) -> Optional[TurnResponse]:
        """Apply a consent reply that arrived by text message."""
        for session in list(self._sessions.values()):
            if session.caller == caller and session.state == CallState.AWAITING_CONSENT:
                return await self._record_consent(session, text)
        logger.info(f"[SESSION MANAGER] No call awaiting consent from {caller}")
        return None

    async def _send_consent_prompt(self, session: CallSession) -> None:
        if session.channel is not None and not session.channel.closed:
            await self._emit(session, {"type": "consent_prompt", "text": CONSENT_PROMPT})
            return
        logger.info(f"[SESSION MANAGER] Channel closed, asking consent for {session.call_sid} by text")
        await self._send_sms(session, CONSENT_PROMPT)

    async def _record_consent(self, session: CallSession, text: str) -> TurnResponse:
        decision = classify_consent(text)
        session.consent = decision == ConsentDecision.GRANTED
        session.timers.cancel("consent_wait")
        logger.info(f"[SESSION MANAGER] Consent for {session.call_sid}: {decision.value}")

        reply = CONSENT_REPLIES[decision]
        await self._emit(session, {"type": "consent_ack", "text": reply})
        await self._finish(session, session.final_status or "completed")
        return TurnResponse(text=reply, end_call=True)

    async def _on_consent_timeout(self, call_sid: str) -> None:
        session = self._sessions.get(call_sid)
        if session is None or session.state != CallState.AWAITING_CONSENT:
            return
        logger.info(f"[SESSION MANAGER] No consent reply for {call_sid}, ending without follow-up")
        await self._finish(session, session.final_status or "completed")

    async def _finish(self, session: CallSession, status: str) -> None:
        """Send the summary if the caller consented, then end the session."""
        session.state = CallState.ENDED
        session.timers.cancel_all()

        message_sid = None
        if session.consent:
            context = self.context_store.get(session.call_sid)
            summary = await self.summary_service.summarize(context, session.get_transcript_text())
            message_sid = await self._send_sms(session, summary)

        await self._finalize(session, status, summary_message_sid=message_sid)

    async def _send_sms(self, session: CallSession, body: str) -> Optional[str]:
        if not session.caller:
            logger.warning(f"[SESSION MANAGER] No caller number for {session.call_sid}, skipping text")
            return None
        try:
            sid = await self.messaging_gateway.call(
                lambda: self.messaging_service.send_message(session.caller, body),
                operation_name="sms",
            )
        except Exception as e:
            logger.error(f"[SESSION MANAGER] Failed to text {session.call_sid}: {e}", exc_info=True)
            return None
        logger.info(f"[SESSION MANAGER] Text sent for {session.call_sid} - Message SID: {sid}")
        return sid

    # ------------------------------------------------------------------
    # Channel events and teardown
    # ------------------------------------------------------------------

    async def handle_channel_closed(self, call_sid: str) -> None:
        """The edge closed the channel: treat it as a completed call."""
        await self.handle_call_status(call_sid, "completed")

    async def handle_channel_error(self, call_sid: str, exc: BaseException) -> None:
        """Unrecoverable channel failure: mark the call as errored and clean up."""
        session = self._sessions.get(call_sid)
        if session is None or session.is_terminal:
            return
        logger.error(f"[SESSION MANAGER] Channel failure on call {call_sid}: {exc}")
        session.state = CallState.ERROR
        await self._finalize(session, "error")

    async def _emit(self, session: CallSession, message: Dict[str, Any]) -> None:
        channel = session.channel
        if channel is None or channel.closed:
            return
        try:
            await channel.send(message)
        except Exception as e:
            await self.handle_channel_error(session.call_sid, e)

    async def _finalize(
        self,
        session: CallSession,
        status: str,
        summary_message_sid: Optional[str] = None,
    ) -> None:
        call_sid = session.call_sid
        self.context_store.clear(call_sid)
        if self.call_log is not None:
            await self.call_log.record_call_ended(
                call_sid,
                status,
                transcript=session.get_transcript_text(),
                consent=session.consent,
                summary_message_sid=summary_message_sid,
            )
        await self.cleanup(call_sid)

    async def cleanup(self, call_sid: str) -> None:
        """Cancel timers, close the channel and forget the session. Safe to repeat."""
        session = self._sessions.pop(call_sid, None)
        if session is None:
            return

        session.timers.cancel_all()
        if not session.is_terminal:
            session.state = CallState.ENDED

        if session.channel is not None and not session.channel.closed:
            try:
                await session.channel.close()
            except Exception as e:
                logger.warning(f"[SESSION MANAGER] Error closing channel for {call_sid}: {e}")
        logger.info(f"[SESSION MANAGER] Cleaned up call {call_sid} (state: {session.state.value})")

    async def shutdown(self) -> None:
        """Clean up every session."""
        for call_sid in list(self._sessions):
            await self.cleanup(call_sid)

    def get_routing_stats(self) -> dict:
        """Routing, cache and gateway counters."""
        return {
            "routing": self.router.get_stats(),
            "cache": self.router.cache.get_stats(),
            "gateways": [
                self.router.search_gateway.get_stats(),
                self.router.llm_gateway.get_stats(),
                self.messaging_gateway.get_stats(),
            ],
            "active_sessions": len(self._sessions),
        }

    def _terminal_apology(self) -> str:
        return TERMINAL_APOLOGY.format(hotline=self.config.hotline_number)
