"""Routing models."""
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel

from supportline.services.backends.base import SearchResult
from supportline.services.context.models import FocusEntity, QueryContext


class ConfidenceBucket(str, Enum):
    """Routing buckets derived from the confidence score."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    NON_FACTUAL = "non_factual"

    def __str__(self) -> str:
        return self.value


class RouteSource(str, Enum):
    """Backend combination chosen for a query."""

    SEARCH = "search"
    LANGUAGE_MODEL = "language_model"
    HYBRID = "hybrid"

    def __str__(self) -> str:
        return self.value


class AnswerOrigin(str, Enum):
    """Where an answer came from."""

    QUICK_REPLY = "quick_reply"
    FAREWELL = "farewell"
    FOLLOW_UP = "follow_up"
    LOCATION_PROMPT = "location_prompt"
    CACHE = "cache"
    ROUTED = "routed"
    FALLBACK = "fallback"


class RoutingDecision(BaseModel):
    """How a query was classified and dispatched."""

    confidence: float
    bucket: ConfidenceBucket
    matched_patterns: List[str] = []
    source: RouteSource
    fallback_used: bool = False
    elapsed_ms: float = 0.0


class Answer(BaseModel):
    """Answer payload returned by the router."""

    text: str
    end_call: bool = False
    intent: Optional[str] = None
    origin: AnswerOrigin = AnswerOrigin.ROUTED
    success: bool = True
    decision: Optional[RoutingDecision] = None
    results: List[SearchResult] = []
    focus_entity: Optional[FocusEntity] = None
    location: Optional[str] = None
    # What the context store should remember; None keeps the previous one
    query_context: Optional[QueryContext] = None

    @property
    def fallback_used(self) -> bool:
        return bool(self.decision and self.decision.fallback_used)
