"""Post-call summary generation."""
import logging
from typing import List, Optional

from supportline.services.backends.base import LanguageModelBackend
from supportline.services.context.models import ConversationContext
from supportline.services.gateway.resilient import ResilientGateway

logger = logging.getLogger(__name__)

SUMMARY_PROMPT = (
    "Summarize this support line call for a follow-up text message to the caller. "
    "List the resources discussed with their phone numbers. Use plain language, "
    "no more than 600 characters, and never include details that would reveal "
    "the nature of the call to someone else reading the phone."
)

FALLBACK_SUMMARY = "Unable to generate call summary. Please contact support for assistance."


class CallSummaryService:
    """Builds the follow-up text sent to callers who consented."""

    def __init__(
        self,
        language_model: LanguageModelBackend,
        gateway: Optional[ResilientGateway] = None,
        hotline_number: str = "1-800-799-7233",
        max_tokens: int = 300,
    ):
        self.language_model = language_model
        self.gateway = gateway or ResilientGateway("summary")
        self.hotline_number = hotline_number
        self.max_tokens = max_tokens

    async def summarize(self, context: Optional[ConversationContext], transcript: str = "") -> str:
        """
        Summarize a finished call.

        Uses the conversation context when it is still available, else the
        session transcript. Falls back to a canned message when there is
        nothing to summarize or the language model fails.
        """
        conversation = context.get_transcript_text() if context else ""
        conversation = conversation or transcript
        if not conversation.strip():
            return self._with_hotline(FALLBACK_SUMMARY)

        messages = [
            {"role": "system", "content": SUMMARY_PROMPT},
            {"role": "user", "content": conversation},
        ]
        try:
            completion = await self.gateway.call(
                lambda: self.language_model.complete(messages, self.max_tokens),
                operation_name="summary",
            )
        except Exception as e:
            logger.error(f"[SUMMARY] Error generating call summary: {e}", exc_info=True)
            return self._with_hotline(FALLBACK_SUMMARY)

        if not completion.text:
            return self._with_hotline(FALLBACK_SUMMARY)
        return self._with_hotline(f"Call Summary:\n\n{completion.text}")

    def _with_hotline(self, body: str) -> str:
        lines: List[str] = [body, f"24/7 Hotline: {self.hotline_number}"]
        return "\n\n".join(lines)
