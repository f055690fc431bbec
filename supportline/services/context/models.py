"""Conversation context models."""
from typing import List, Optional

from pydantic import BaseModel

from supportline.services.backends.base import SearchResult


class FocusEntity(BaseModel):
    """The resource currently under discussion in a call."""

    name: str
    url: Optional[str] = None
    content: str = ""
    phone: Optional[str] = None


class QueryContext(BaseModel):
    """Structured memory of the last answered query, used for follow-ups."""

    location: Optional[str] = None
    intent: Optional[str] = None
    needs_location: bool = False
    focus_entity: Optional[FocusEntity] = None
    results: List[SearchResult] = []
    pending_query: Optional[str] = None  # Query waiting on a location
    awaiting_location_confirmation: bool = False


class Turn(BaseModel):
    """One caller utterance and the answer given."""

    intent: Optional[str] = None
    query: str
    answer: str
    timestamp: float


class ConversationContext(BaseModel):
    """Rolling per-call memory."""

    call_sid: str
    last_intent: Optional[str] = None
    last_query: Optional[str] = None
    last_answer: Optional[str] = None
    last_query_context: Optional[QueryContext] = None
    last_location: Optional[str] = None  # Most recent place the caller asked about
    history: List[Turn] = []
    expires_at: float

    @property
    def focus_entity(self) -> Optional[FocusEntity]:
        if self.last_query_context is None:
            return None
        return self.last_query_context.focus_entity

    @property
    def location(self) -> Optional[str]:
        if self.last_location:
            return self.last_location
        if self.last_query_context is None:
            return None
        return self.last_query_context.location

    def get_transcript_text(self) -> str:
        """Get the conversation history as text."""
        lines = []
        for turn in self.history:
            lines.append(f"Caller: {turn.query}")
            lines.append(f"Agent: {turn.answer}")
        return "\n".join(lines)
