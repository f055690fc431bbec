"""Service wiring and FastAPI dependencies."""
from typing import Optional

import httpx
from fastapi import Request
from openai import AsyncOpenAI
from sqlalchemy.ext.asyncio import async_sessionmaker
from twilio.rest import Client

from supportline.core.config import Settings
from supportline.services.backends.openai_llm import OpenAILanguageModel
from supportline.services.backends.tavily import TavilySearchBackend
from supportline.services.backends.twilio_sms import TwilioMessagingService
from supportline.services.call_session.manager import CallSessionManager
from supportline.services.context.store import ConversationContextStore
from supportline.services.gateway.resilient import ResilientGateway
from supportline.services.persistence.calls import CallLogService
from supportline.services.routing.cache import ResponseCache
from supportline.services.routing.router import ResponseRouter
from supportline.services.routing.scoring import ConfidenceScorer, PatternConfig
from supportline.services.summary import CallSummaryService


def build_gateway(name: str, config: Settings) -> ResilientGateway:
    """One resilient gateway per backend."""
    return ResilientGateway(
        name,
        max_attempts=config.gateway_max_attempts,
        retry_delay=config.gateway_retry_delay_seconds,
        backoff_factor=config.gateway_backoff_factor,
        max_delay=config.gateway_max_delay_seconds,
        timeout=config.gateway_timeout_seconds,
        max_calls_per_second=config.gateway_max_calls_per_second,
        max_concurrency=config.gateway_max_concurrency,
    )


def build_session_manager(
    config: Settings,
    http_client: httpx.AsyncClient,
    session_factory: Optional[async_sessionmaker] = None,
) -> CallSessionManager:
    """Build the call session manager and everything it depends on."""
    search_backend = TavilySearchBackend(
        api_key=config.tavily_api_key,
        client=http_client,
        url=config.tavily_api_url,
        max_results=config.search_max_results,
    )
    language_model = OpenAILanguageModel(
        AsyncOpenAI(api_key=config.openai_api_key),
        model=config.openai_model,
        temperature=config.llm_temperature,
    )
    messaging_service = TwilioMessagingService(
        Client(config.twilio_account_sid, config.twilio_auth_token),
        from_number=config.twilio_phone_number,
    )

    context_store = ConversationContextStore(
        ttl_seconds=config.context_ttl_seconds,
        history_limit=config.context_history_limit,
    )
    cache = ResponseCache(
        ttl_seconds=config.cache_ttl_seconds,
        max_entries=config.cache_max_entries,
    )
    scorer = ConfidenceScorer(PatternConfig.load(config.routing_patterns_file))
    llm_gateway = build_gateway("language_model", config)

    router = ResponseRouter(
        search_backend=search_backend,
        language_model=language_model,
        scorer=scorer,
        cache=cache,
        context_store=context_store,
        search_gateway=build_gateway("search", config),
        llm_gateway=llm_gateway,
        hotline_number=config.hotline_number,
        max_tokens=config.llm_max_tokens,
    )
    summary_service = CallSummaryService(
        language_model,
        gateway=llm_gateway,
        hotline_number=config.hotline_number,
        max_tokens=config.llm_max_tokens,
    )
    call_log = CallLogService(session_factory) if session_factory is not None else None

    return CallSessionManager(
        router=router,
        context_store=context_store,
        summary_service=summary_service,
        messaging_service=messaging_service,
        call_log=call_log,
        config=config,
    )


def get_session_manager(request: Request) -> CallSessionManager:
    """Get the application's call session manager."""
    return request.app.state.session_manager
