"""Backend interfaces consumed by the response router."""
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

from pydantic import BaseModel


class SearchResult(BaseModel):
    """A single search hit."""

    title: str
    url: Optional[str] = None
    content: str = ""
    score: float = 0.0


class SearchResponse(BaseModel):
    """Search backend response."""

    results: List[SearchResult] = []
    answer: Optional[str] = None

    def is_sufficient(self) -> bool:
        """True when the search produced something worth answering from."""
        return bool(self.results) or bool((self.answer or "").strip())


class Completion(BaseModel):
    """Language model completion."""

    text: str
    tokens_used: int = 0


class SearchBackend(ABC):
    """Abstract base class for search backends."""

    @abstractmethod
    async def search(self, query: str, location_hint: Optional[str] = None) -> SearchResponse:
        """Search for resources matching the query."""
        pass


class LanguageModelBackend(ABC):
    """Abstract base class for language model backends."""

    @abstractmethod
    async def complete(self, messages: List[Dict[str, str]], max_tokens: int) -> Completion:
        """Complete a chat conversation."""
        pass


class MessagingService(ABC):
    """Abstract base class for outbound text messaging."""

    @abstractmethod
    async def send_message(self, to: str, body: str) -> str:
        """Send a text message and return its message id."""
        pass
