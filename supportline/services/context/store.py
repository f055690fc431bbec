"""Per-call conversation context store."""
import logging
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from supportline.services.context.location import extract_location, implies_previous_location
from supportline.services.context.models import ConversationContext, QueryContext, Turn

logger = logging.getLogger(__name__)


@dataclass
class LocationResolution:
    """How the location for a query was decided."""

    location: Optional[str] = None
    source: Optional[str] = None  # "utterance" or "context"
    needs_confirmation: bool = False
    needs_location: bool = False


class ConversationContextStore:
    """
    Rolling memory of each call's conversation.

    Contexts expire after ``ttl_seconds`` without a new turn and are treated
    as absent on lookup once expired. ``clear`` removes a call's context when
    the call reaches a terminal status.
    """

    def __init__(
        self,
        ttl_seconds: float = 300.0,
        history_limit: int = 5,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = ttl_seconds
        self.history_limit = history_limit
        self._clock = clock
        self._contexts: Dict[str, ConversationContext] = {}

    def __len__(self) -> int:
        return len(self._contexts)

    def get(self, call_sid: str) -> Optional[ConversationContext]:
        """Get a call's context, or None if absent or expired."""
        context = self._contexts.get(call_sid)
        if context is None:
            return None
        if self._clock() >= context.expires_at:
            logger.info(f"[CONTEXT] Context expired for call {call_sid}")
            del self._contexts[call_sid]
            return None
        return context

    def record_turn(
        self,
        call_sid: str,
        query: str,
        answer: str,
        intent: Optional[str] = None,
        query_context: Optional[QueryContext] = None,
        location: Optional[str] = None,
    ) -> ConversationContext:
        """
        Record a turn and refresh the context's expiry.

        When ``query_context`` is None the previous query context is kept so
        follow-ups can still refer to it, but any pending location prompt is
        dropped. The last known location survives turns that name no place.
        """
        now = self._clock()
        context = self.get(call_sid)
        if context is None:
            context = ConversationContext(call_sid=call_sid, expires_at=now + self.ttl_seconds)
            self._contexts[call_sid] = context

        context.history.append(Turn(intent=intent, query=query, answer=answer, timestamp=now))
        if len(context.history) > self.history_limit:
            context.history = context.history[-self.history_limit:]

        context.last_intent = intent
        context.last_query = query
        context.last_answer = answer

        if query_context is not None:
            context.last_query_context = query_context
        elif context.last_query_context is not None:
            context.last_query_context = context.last_query_context.model_copy(
                update={
                    "needs_location": False,
                    "pending_query": None,
                    "awaiting_location_confirmation": False,
                }
            )

        location = location or (query_context.location if query_context else None)
        if location:
            context.last_location = location

        context.expires_at = now + self.ttl_seconds
        logger.info(
            f"[CONTEXT] Recorded turn for call {call_sid} - Intent: {intent}, "
            f"History: {len(context.history)}, "
            f"Focus: {context.focus_entity.name if context.focus_entity else 'NONE'}"
        )
        return context

    def clear(self, call_sid: str) -> None:
        """Remove a call's context."""
        if self._contexts.pop(call_sid, None) is not None:
            logger.info(f"[CONTEXT] Cleared context for call {call_sid}")

    def sweep(self) -> int:
        """Remove every expired context. Returns the number removed."""
        now = self._clock()
        expired = [sid for sid, ctx in self._contexts.items() if now >= ctx.expires_at]
        for sid in expired:
            del self._contexts[sid]
        return len(expired)

    def resolve_location(
        self,
        call_sid: str,
        text: str,
        requires_location: bool = False,
    ) -> LocationResolution:
        """
        Decide which location a query refers to.

        An explicitly named place always wins. Otherwise a stored location is
        reused when the utterance points back to it ("there", "same area").
        When the query needs a location and the utterance is ambiguous, the
        caller is asked to confirm the stored location, or asked for one if
        none is known.
        """
        explicit = extract_location(text)
        if explicit:
            return LocationResolution(location=explicit, source="utterance")

        context = self.get(call_sid)
        stored = context.location if context else None

        if stored and implies_previous_location(text):
            return LocationResolution(location=stored, source="context")
        if not requires_location:
            return LocationResolution()
        if stored:
            return LocationResolution(location=stored, source="context", needs_confirmation=True)
        return LocationResolution(needs_location=True)
