"""Shared test fixtures and configuration."""
import asyncio
import os
from typing import Any, Dict, List, Optional

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

# Set test environment variables before importing the app
os.environ.setdefault("OPENAI_API_KEY", "test-key")
os.environ.setdefault("TAVILY_API_KEY", "test-key")
os.environ.setdefault("TWILIO_ACCOUNT_SID", "test-sid")
os.environ.setdefault("TWILIO_AUTH_TOKEN", "test-token")
os.environ.setdefault("TWILIO_PHONE_NUMBER", "+15550000000")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("VALIDATE_TWILIO_SIGNATURE", "false")

from supportline.core.config import Settings
from supportline.core.errors import TransientBackendError
from supportline.db.models import Base
from supportline.services.backends.base import (
    Completion,
    LanguageModelBackend,
    MessagingService,
    SearchBackend,
    SearchResponse,
    SearchResult,
)
from supportline.services.call_session.channel import DuplexChannel
from supportline.services.call_session.manager import CallSessionManager
from supportline.services.context.store import ConversationContextStore
from supportline.services.gateway.resilient import ResilientGateway
from supportline.services.persistence.calls import CallLogService
from supportline.services.routing.cache import ResponseCache
from supportline.services.routing.router import ResponseRouter
from supportline.services.routing.scoring import ConfidenceScorer, PatternConfig
from supportline.services.summary import CallSummaryService


# Test database URL (in-memory SQLite)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

SAFE_HAVEN = SearchResult(
    title="Safe Haven Shelter - Austin",
    url="https://example.org/safe-haven",
    content=(
        "Safe Haven Shelter provides emergency housing for survivors of domestic violence. "
        "Call (512) 555-0100 any time. Pets are welcome in our pet-friendly rooms."
    ),
    score=0.92,
)
HOPE_HOUSE = SearchResult(
    title="Hope House | Family Shelter",
    url="https://example.org/hope-house",
    content="Hope House offers temporary housing for women and children. Hotline 512-555-0199.",
    score=0.81,
)


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeSearchBackend(SearchBackend):
    """In-process search backend recording its calls."""

    def __init__(self, response: Optional[SearchResponse] = None):
        self.response = response if response is not None else SearchResponse(results=[SAFE_HAVEN, HOPE_HOUSE])
        self.error: Optional[BaseException] = None
        self.delay = 0.0
        self.calls: List[tuple] = []

    async def search(self, query: str, location_hint: Optional[str] = None) -> SearchResponse:
        self.calls.append((query, location_hint))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.response


class FakeLanguageModel(LanguageModelBackend):
    """In-process language model recording the messages it was given."""

    def __init__(self, text: str = "I'm here to listen. You are not alone."):
        self.text = text
        self.error: Optional[BaseException] = None
        self.delay = 0.0
        self.calls: List[List[Dict[str, str]]] = []

    async def complete(self, messages: List[Dict[str, str]], max_tokens: int) -> Completion:
        self.calls.append(messages)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return Completion(text=self.text, tokens_used=42)


class FakeMessagingService(MessagingService):
    """Records sent texts; fails the first ``failures`` sends."""

    def __init__(self, failures: int = 0):
        self.failures = failures
        self.attempts = 0
        self.sent: List[tuple] = []

    async def send_message(self, to: str, body: str) -> str:
        self.attempts += 1
        if self.attempts <= self.failures:
            raise TransientBackendError("carrier unavailable")
        self.sent.append((to, body))
        return f"SM{len(self.sent):04d}"


class FakeChannel(DuplexChannel):
    """Duplex channel collecting outbound events."""

    def __init__(self):
        self.messages: List[Dict[str, Any]] = []
        self.close_count = 0
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def send(self, message: Dict[str, Any]) -> None:
        self.messages.append(message)

    async def close(self) -> None:
        self.close_count += 1
        self._closed = True

    def of_type(self, kind: str) -> List[Dict[str, Any]]:
        return [m for m in self.messages if m["type"] == kind]


async def no_sleep(seconds: float) -> None:
    await asyncio.sleep(0)


@pytest.fixture
def test_settings():
    """Settings with short timers for testing."""
    return Settings(
        openai_api_key="test-key",
        tavily_api_key="test-key",
        twilio_account_sid="test-sid",
        twilio_auth_token="test-token",
        twilio_phone_number="+15550000000",
        database_url=TEST_DATABASE_URL,
        validate_twilio_signature=False,
        activity_check_interval_seconds=0.02,
        inactivity_timeout_seconds=0.06,
        inactivity_reprompts=1,
        response_timeout_seconds=0.05,
        max_response_retries=2,
        consent_wait_seconds=0.1,
        sms_max_attempts=3,
        sms_retry_delay_seconds=0.0,
    )


@pytest.fixture
def pattern_config():
    """The bundled routing pattern table."""
    return PatternConfig.load()


@pytest.fixture
def scorer(pattern_config):
    return ConfidenceScorer(pattern_config)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache():
    return ResponseCache(ttl_seconds=3600, max_entries=50)


@pytest.fixture
def context_store():
    return ConversationContextStore(ttl_seconds=300, history_limit=5)


@pytest.fixture
def search_backend():
    return FakeSearchBackend()


@pytest.fixture
def language_model():
    return FakeLanguageModel()


@pytest.fixture
def messaging_service():
    return FakeMessagingService()


@pytest.fixture
def router(search_backend, language_model, scorer, cache, context_store):
    """Response router over fake backends with fast retries."""
    return ResponseRouter(
        search_backend=search_backend,
        language_model=language_model,
        scorer=scorer,
        cache=cache,
        context_store=context_store,
        search_gateway=ResilientGateway("search", max_attempts=2, retry_delay=0, sleep=no_sleep),
        llm_gateway=ResilientGateway("language_model", max_attempts=2, retry_delay=0, sleep=no_sleep),
    )


@pytest.fixture
def summary_service(language_model):
    return CallSummaryService(
        language_model,
        gateway=ResilientGateway("summary", max_attempts=1, sleep=no_sleep),
    )


@pytest.fixture
async def session_manager(router, context_store, summary_service, messaging_service, test_settings):
    """Call session manager over fake backends."""
    manager = CallSessionManager(
        router=router,
        context_store=context_store,
        summary_service=summary_service,
        messaging_service=messaging_service,
        messaging_gateway=ResilientGateway(
            "messaging",
            max_attempts=test_settings.sms_max_attempts,
            retry_delay=0,
            retry_predicate=lambda e: True,
            sleep=no_sleep,
        ),
        config=test_settings,
    )
    yield manager
    await manager.shutdown()


@pytest.fixture
def channel():
    return FakeChannel()


@pytest.fixture
async def test_db_engine():
    """Create test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # Create all tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    # Drop all tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
def test_session_factory(test_db_engine):
    """Session factory bound to the test database."""
    return async_sessionmaker(
        test_db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


@pytest.fixture
def call_log(test_session_factory):
    return CallLogService(test_session_factory)
