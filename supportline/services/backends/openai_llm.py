"""OpenAI language model backend."""
import logging
from typing import Dict, List

from openai import AsyncOpenAI

from supportline.services.backends.base import Completion, LanguageModelBackend

logger = logging.getLogger(__name__)


class OpenAILanguageModel(LanguageModelBackend):
    """Chat completion backend using OpenAI."""

    def __init__(self, client: AsyncOpenAI, model: str = "gpt-4o-mini", temperature: float = 0.7):
        self.client = client
        self.model = model
        self.temperature = temperature

    async def complete(self, messages: List[Dict[str, str]], max_tokens: int) -> Completion:
        response = await self.client.chat.completions.create(
            model=self.model,
            messages=messages,
            max_tokens=max_tokens,
            temperature=self.temperature,
        )
        text = (response.choices[0].message.content or "").strip()
        tokens_used = response.usage.total_tokens if response.usage else 0
        logger.info(f"[LLM] Completion from {self.model}: {len(text)} chars, {tokens_used} tokens")
        return Completion(text=text, tokens_used=tokens_used)
