"""Response router.

Decides how each caller utterance is answered:

1. Farewells end the call, greetings get a static reply.
2. Pending location prompts from the previous turn are completed.
3. Follow-ups about the remembered focus entity are answered from memory.
4. Cached answers are returned without any backend call.
5. Everything else is scored and dispatched by confidence bucket.

No backend exception escapes ``route``.
"""
import asyncio
import logging
import re
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from supportline.services.backends.base import (
    Completion,
    LanguageModelBackend,
    SearchBackend,
    SearchResponse,
)
from supportline.services.context.location import extract_location, parse_location_reply
from supportline.services.context.models import ConversationContext, QueryContext
from supportline.services.context.store import ConversationContextStore, LocationResolution
from supportline.services.gateway.resilient import ResilientGateway
from supportline.services.routing.cache import ResponseCache, normalize_query
from supportline.services.routing.constants import (
    AFFIRMATIVE_INDICATORS,
    ASK_LOCATION_MESSAGE,
    CONFIRM_LOCATION_MESSAGE,
    FALLBACK_MESSAGE,
    FAREWELL_FILLER,
    FAREWELL_MESSAGE,
    FAREWELL_PHRASES,
    NEGATIVE_INDICATORS,
    QUICK_REPLIES,
    SEARCH_CONTEXT_PROMPT,
    SYSTEM_PROMPT,
)
from supportline.services.routing.followup import FollowUpResolver
from supportline.services.routing.formatting import (
    format_search_answer,
    format_snippets,
    to_focus_entity,
)
from supportline.services.routing.models import (
    Answer,
    AnswerOrigin,
    ConfidenceBucket,
    RouteSource,
    RoutingDecision,
)
from supportline.services.routing.scoring import ConfidenceScorer, ScoreResult
from supportline.services.routing.stats import RoutingStats

logger = logging.getLogger(__name__)

MAX_REMEMBERED_RESULTS = 3
PUNCTUATION = re.compile(r"[^\w\s']")


@dataclass
class RouteOutcome:
    """What one bucket route produced. ``text`` is None when no backend answered."""

    text: Optional[str]
    source: RouteSource
    search: Optional[SearchResponse] = None
    fallback: bool = False


def _alternation(phrases: List[str]) -> str:
    # Longest first so "thank you so much" wins over "thank you"
    return "|".join(re.escape(p) for p in sorted(phrases, key=len, reverse=True))


FAREWELL_PATTERN = re.compile(
    rf"^(?:(?:{_alternation(FAREWELL_FILLER)})\s+)*"
    rf"(?:{_alternation(FAREWELL_PHRASES)})"
    rf"(?:\s+(?:{_alternation(FAREWELL_FILLER)}))*$"
)


def _strip_punctuation(text: str) -> str:
    return re.sub(r"\s+", " ", PUNCTUATION.sub(" ", text)).strip()


def _contains_any(text: str, phrases: List[str]) -> bool:
    return any(re.search(rf"\b{re.escape(phrase)}\b", text) for phrase in phrases)


class ResponseRouter:
    """Routes utterances to the search and language model backends."""

    def __init__(
        self,
        search_backend: SearchBackend,
        language_model: LanguageModelBackend,
        scorer: ConfidenceScorer,
        cache: ResponseCache,
        context_store: ConversationContextStore,
        search_gateway: Optional[ResilientGateway] = None,
        llm_gateway: Optional[ResilientGateway] = None,
        stats: Optional[RoutingStats] = None,
        follow_ups: Optional[FollowUpResolver] = None,
        hotline_number: str = "1-800-799-7233",
        max_tokens: int = 300,
        timer: Callable[[], float] = time.perf_counter,
    ):
        self.search_backend = search_backend
        self.language_model = language_model
        self.scorer = scorer
        self.cache = cache
        self.context_store = context_store
        self.search_gateway = search_gateway or ResilientGateway("search")
        self.llm_gateway = llm_gateway or ResilientGateway("language_model")
        self.stats = stats or RoutingStats()
        self.hotline_number = hotline_number
        self.follow_ups = follow_ups or FollowUpResolver(scorer.config, hotline_number)
        self.max_tokens = max_tokens
        self._timer = timer

    async def route(
        self,
        call_sid: str,
        text: str,
        context: Optional[ConversationContext] = None,
    ) -> Answer:
        """Answer one utterance. Never raises for backend failures."""
        if context is None:
            context = self.context_store.get(call_sid)
        try:
            return await self._route(call_sid, text, context)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"[ROUTER] Unexpected routing error for call {call_sid}: {e}", exc_info=True)
            return self._apology()

    async def _route(
        self,
        call_sid: str,
        text: str,
        context: Optional[ConversationContext],
    ) -> Answer:
        normalized = normalize_query(text)
        simple = _strip_punctuation(normalized)

        logger.info("=" * 80)
        logger.info(f"[ROUTER] CallSid: {call_sid}")
        logger.info(f"[ROUTER] Utterance: '{text}'")
        logger.info(
            f"[ROUTER] Focus: {context.focus_entity.name if context and context.focus_entity else 'NONE'}, "
            f"Location: {context.location if context else None}"
        )
        logger.info("=" * 80)

        if not simple:
            return Answer(text="Sorry, I didn't catch that. Could you say it again?", origin=AnswerOrigin.QUICK_REPLY)

        if self._is_farewell(simple):
            logger.info(f"[ROUTER] Farewell detected for call {call_sid}")
            return Answer(
                text=FAREWELL_MESSAGE,
                end_call=True,
                intent="farewell",
                origin=AnswerOrigin.FAREWELL,
            )

        quick = QUICK_REPLIES.get(simple)
        if quick:
            return Answer(text=quick, intent="greeting", origin=AnswerOrigin.QUICK_REPLY)

        query_context = context.last_query_context if context else None
        if query_context is not None and query_context.pending_query:
            pending = self._complete_pending(simple, text, query_context)
            if isinstance(pending, Answer):
                return pending
            if pending is not None:
                query, resolution = pending
                return await self._classify_and_dispatch(call_sid, query, resolution, context)

        follow_up = self._try_follow_up(text, context)
        if follow_up is not None:
            return follow_up

        cached = self.cache.get(normalized)
        if cached is not None:
            logger.info(f"[ROUTER] Cache hit for '{normalized}'")
            return cached.model_copy(update={"origin": AnswerOrigin.CACHE})

        return await self._classify_and_dispatch(call_sid, text, None, context)

    def _is_farewell(self, simple: str) -> bool:
        """A farewell is the whole utterance, not a phrase inside a longer request."""
        return FAREWELL_PATTERN.match(simple) is not None

    def _complete_pending(
        self,
        simple: str,
        text: str,
        query_context: QueryContext,
    ):
        """
        Continue a query that was waiting on a location.

        Returns an ``Answer`` when the caller must be prompted again, a
        ``(query, resolution)`` pair when the pending query can now be
        dispatched, or None when the utterance is a new question.
        """
        pending_query = query_context.pending_query

        if query_context.needs_location:
            location = parse_location_reply(text)
            if location is None:
                return None
            logger.info(f"[ROUTER] Location '{location}' supplied for pending query '{pending_query}'")
            return pending_query, LocationResolution(location=location, source="utterance")

        if query_context.awaiting_location_confirmation:
            explicit = extract_location(text)
            if explicit:
                return pending_query, LocationResolution(location=explicit, source="utterance")
            if _contains_any(simple, NEGATIVE_INDICATORS):
                return Answer(
                    text=ASK_LOCATION_MESSAGE,
                    intent=query_context.intent,
                    origin=AnswerOrigin.LOCATION_PROMPT,
                    query_context=QueryContext(
                        intent=query_context.intent,
                        needs_location=True,
                        pending_query=pending_query,
                        focus_entity=query_context.focus_entity,
                        results=query_context.results,
                    ),
                )
            if _contains_any(simple, AFFIRMATIVE_INDICATORS):
                return pending_query, LocationResolution(location=query_context.location, source="context")
        return None

    def _try_follow_up(self, text: str, context: Optional[ConversationContext]) -> Optional[Answer]:
        if context is None or context.focus_entity is None:
            return None
        explicit = extract_location(text)
        if explicit and (context.location or "").lower() != explicit.lower():
            # A new place means a new search, not a question about the old result
            return None
        resolved = self.follow_ups.resolve(text, context)
        if resolved is None:
            return None
        return Answer(
            text=resolved.text,
            intent=context.last_intent or "follow_up",
            origin=AnswerOrigin.FOLLOW_UP,
            focus_entity=resolved.focus_entity,
            location=resolved.query_context.location,
            query_context=resolved.query_context,
        )

    async def _classify_and_dispatch(
        self,
        call_sid: str,
        query: str,
        resolution: Optional[LocationResolution],
        context: Optional[ConversationContext],
    ) -> Answer:
        score = self.scorer.score(query)
        bucket = score.bucket
        intent = score.top_category

        logger.info(
            f"[ROUTER] Confidence: {score.confidence:.2f} ({bucket.value}), Intent: {intent}, "
            f"Matches: {score.matched_patterns}"
        )

        if resolution is None:
            resolution = LocationResolution()
            if bucket != ConfidenceBucket.NON_FACTUAL:
                resolution = self.context_store.resolve_location(
                    call_sid, query, requires_location=self.scorer.requires_location(score)
                )
            prompt = self._location_prompt(query, intent, resolution, context)
            if prompt is not None:
                return prompt

        answer = await self._dispatch(query, score, resolution.location, context)
        answer.intent = intent

        # Answers tied to a remembered location depend on the call, so they stay out of the cache
        if answer.success and answer.origin == AnswerOrigin.ROUTED and resolution.source != "context":
            self.cache.set(self._cache_key(query, resolution), answer)
        return answer

    def _location_prompt(
        self,
        query: str,
        intent: Optional[str],
        resolution: LocationResolution,
        context: Optional[ConversationContext] = None,
    ) -> Optional[Answer]:
        # Prompts keep the remembered resource so follow-ups still resolve while one is open
        previous = context.last_query_context if context else None
        carried = {"focus_entity": previous.focus_entity, "results": previous.results} if previous else {}
        if resolution.needs_location:
            logger.info(f"[ROUTER] Asking for location for '{query}'")
            return Answer(
                text=ASK_LOCATION_MESSAGE,
                intent=intent,
                origin=AnswerOrigin.LOCATION_PROMPT,
                query_context=QueryContext(intent=intent, needs_location=True, pending_query=query, **carried),
            )
        if resolution.needs_confirmation:
            logger.info(f"[ROUTER] Confirming reuse of location '{resolution.location}'")
            return Answer(
                text=CONFIRM_LOCATION_MESSAGE.format(location=resolution.location),
                intent=intent,
                origin=AnswerOrigin.LOCATION_PROMPT,
                location=resolution.location,
                query_context=QueryContext(
                    intent=intent,
                    location=resolution.location,
                    pending_query=query,
                    awaiting_location_confirmation=True,
                    **carried,
                ),
            )
        return None

    def _cache_key(self, query: str, resolution: LocationResolution) -> str:
        key = normalize_query(query)
        location = resolution.location
        if location and location.lower() not in key:
            key = f"{key} in {location.lower()}"
        return key

    async def _dispatch(
        self,
        query: str,
        score: ScoreResult,
        location: Optional[str],
        context: Optional[ConversationContext],
    ) -> Answer:
        bucket = score.bucket
        started = self._timer()

        if bucket == ConfidenceBucket.HIGH:
            outcome = await self._route_search_only(query, location, context)
        elif bucket == ConfidenceBucket.MEDIUM:
            outcome = await self._route_hybrid(query, location, context)
        elif bucket == ConfidenceBucket.LOW:
            outcome = await self._route_search_context(query, location, context)
        else:
            outcome = await self._route_language_model(query, context)

        # Low-confidence turns count as answered even when the apology is all the caller hears
        success = outcome.text is not None or bucket == ConfidenceBucket.LOW
        elapsed_ms = (self._timer() - started) * 1000
        self.stats.record(bucket, outcome.source, success, outcome.fallback, elapsed_ms)

        decision = RoutingDecision(
            confidence=score.confidence,
            bucket=bucket,
            matched_patterns=score.matched_patterns,
            source=outcome.source,
            fallback_used=outcome.fallback,
            elapsed_ms=elapsed_ms,
        )
        logger.info(
            f"[ROUTER] Answered via {outcome.source.value} in {elapsed_ms:.0f}ms - "
            f"Success: {success}, Fallback: {outcome.fallback}"
        )

        if outcome.text is None:
            answer = self._apology()
            answer.success = success
            answer.decision = decision
            return answer

        results = outcome.search.results[:MAX_REMEMBERED_RESULTS] if outcome.search else []
        if not results:
            # Nothing new to remember, so the previous focus entity stays current
            return Answer(text=outcome.text, origin=AnswerOrigin.ROUTED, decision=decision, location=location)

        focus = to_focus_entity(results[0])
        return Answer(
            text=outcome.text,
            origin=AnswerOrigin.ROUTED,
            decision=decision,
            results=results,
            focus_entity=focus,
            location=location,
            query_context=QueryContext(
                location=location,
                intent=score.top_category,
                focus_entity=focus,
                results=results,
            ),
        )

    async def _route_search_only(self, query, location, context) -> RouteOutcome:
        """High confidence: search only, language model when search is empty or down."""
        try:
            search = await self._search(query, location)
            if search.is_sufficient():
                return RouteOutcome(format_search_answer(search, location), RouteSource.SEARCH, search=search)
            logger.info("[ROUTER] Search returned nothing, falling back to language model")
        except Exception as e:
            logger.warning(f"[ROUTER] Search failed, falling back to language model: {e}")
        text = await self._complete_or_none(query, context)
        return RouteOutcome(text, RouteSource.LANGUAGE_MODEL, fallback=True)

    async def _route_hybrid(self, query, location, context) -> RouteOutcome:
        """Medium confidence: search and language model concurrently, prefer sufficient search."""
        search, completion = await asyncio.gather(
            self._search(query, location),
            self._complete(self._messages(query, context)),
            return_exceptions=True,
        )
        if isinstance(search, SearchResponse) and search.is_sufficient():
            return RouteOutcome(format_search_answer(search, location), RouteSource.SEARCH, search=search)

        if isinstance(search, BaseException):
            logger.warning(f"[ROUTER] Hybrid search failed: {search}")
        if isinstance(completion, Completion) and completion.text:
            return RouteOutcome(completion.text, RouteSource.LANGUAGE_MODEL, fallback=True)

        if isinstance(completion, BaseException):
            logger.warning(f"[ROUTER] Hybrid language model call failed: {completion}")
        return RouteOutcome(None, RouteSource.HYBRID, fallback=True)

    async def _route_search_context(self, query, location, context) -> RouteOutcome:
        """Low confidence: search snippets feed the language model prompt."""
        search: Optional[SearchResponse] = None
        fallback = False
        try:
            search = await self._search(query, location)
        except Exception as e:
            logger.warning(f"[ROUTER] Context search failed, answering without snippets: {e}")
            fallback = True

        snippets = format_snippets(search)
        text = await self._complete_or_none(query, context, snippets=snippets)
        # Snippets only inform the answer, so the turn has no focus entity
        return RouteOutcome(text, RouteSource.LANGUAGE_MODEL, fallback=fallback or text is None)

    async def _route_language_model(self, query, context) -> RouteOutcome:
        text = await self._complete_or_none(query, context)
        return RouteOutcome(text, RouteSource.LANGUAGE_MODEL)

    async def _search(self, query: str, location: Optional[str]) -> SearchResponse:
        return await self.search_gateway.call(
            lambda: self.search_backend.search(query, location_hint=location),
            operation_name="search",
        )

    async def _complete(self, messages: List[Dict[str, str]]) -> Completion:
        return await self.llm_gateway.call(
            lambda: self.language_model.complete(messages, self.max_tokens),
            operation_name="completion",
        )

    async def _complete_or_none(
        self,
        query: str,
        context: Optional[ConversationContext],
        snippets: str = "",
    ) -> Optional[str]:
        try:
            completion = await self._complete(self._messages(query, context, snippets))
        except Exception as e:
            logger.error(f"[ROUTER] Language model failed: {e}")
            return None
        return completion.text or None

    def _messages(
        self,
        query: str,
        context: Optional[ConversationContext],
        snippets: str = "",
    ) -> List[Dict[str, str]]:
        """Build the chat messages: system prompt, optional snippets, recent turns, then the query."""
        messages = [{"role": "system", "content": SYSTEM_PROMPT}]
        if snippets:
            messages.append({"role": "system", "content": SEARCH_CONTEXT_PROMPT.format(snippets=snippets)})
        if context is not None:
            for turn in context.history:
                messages.append({"role": "user", "content": turn.query})
                messages.append({"role": "assistant", "content": turn.answer})
        messages.append({"role": "user", "content": query})
        return messages

    def _apology(self) -> Answer:
        return Answer(
            text=FALLBACK_MESSAGE.format(hotline=self.hotline_number),
            origin=AnswerOrigin.FALLBACK,
            success=False,
        )

    def get_stats(self) -> dict:
        """Read-only routing stats snapshot."""
        return self.stats.snapshot()
