"""Follow-up resolution against the remembered focus entity."""
import logging
import re
from dataclasses import dataclass
from typing import List, Optional

from supportline.services.context.models import ConversationContext, FocusEntity, QueryContext
from supportline.services.routing.formatting import to_focus_entity
from supportline.services.routing.scoring import PatternConfig

logger = logging.getLogger(__name__)

ORDINALS = {
    "first": 0, "1st": 0, "one": 0, "1": 0,
    "second": 1, "2nd": 1, "two": 1, "2": 1,
    "third": 2, "3rd": 2, "three": 2, "3": 2,
}
ORDINAL_WORD = re.compile(r"\b(first|second|third|1st|2nd|3rd|number (?:one|two|three|1|2|3))\b")

PHONE_TERMS = ("phone", "number", "call them")
ADDRESS_TERMS = ("address", "located", "location")

# Words searched for in the entity's content for each attribute question
ATTRIBUTE_SYNONYMS = {
    "pet": ["pet", "pets", "animal", "dog", "cat"],
    "dog": ["pet", "pets", "animal", "dog"],
    "cat": ["pet", "pets", "animal", "cat"],
    "children": ["children", "child", "kids", "families", "family"],
    "kids": ["children", "child", "kids", "families", "family"],
    "hours": ["hours", "24/7", "24 hours", "open", "available"],
    "open": ["hours", "24/7", "24 hours", "open", "available"],
    "close": ["hours", "close", "closed"],
    "cost": ["cost", "free", "fee", "charge", "pay"],
    "free": ["cost", "free", "fee", "charge"],
    "pay": ["cost", "free", "fee", "charge", "pay"],
}

SENTENCE_SPLIT = re.compile(r"(?<=[.!?])\s+")


@dataclass
class FollowUpAnswer:
    """Answer resolved from the focus entity."""

    text: str
    kind: str
    focus_entity: FocusEntity
    query_context: QueryContext


def _sentences(content: str) -> List[str]:
    return [s.strip() for s in SENTENCE_SPLIT.split(content or "") if s.strip()]


def _ordinal_index(text: str) -> Optional[int]:
    match = ORDINAL_WORD.search(text)
    if not match:
        return None
    word = match.group(1).replace("number ", "")
    return ORDINALS.get(word)


class FollowUpResolver:
    """Answers follow-up questions from the last discussed resource."""

    def __init__(self, config: PatternConfig, hotline_number: str):
        self.config = config
        self.hotline_number = hotline_number

    def match(self, text: str, context: Optional[ConversationContext]) -> Optional[str]:
        """Return the follow-up kind the utterance matches, or None."""
        if context is None or context.focus_entity is None:
            return None
        normalized = text.lower().strip()
        # Most specific kind first
        for kind in ("ordinal", "attribute", "details", "reference"):
            for pattern in self.config.follow_ups.get(kind, []):
                if pattern.search(normalized):
                    return kind
        return None

    def resolve(self, text: str, context: Optional[ConversationContext]) -> Optional[FollowUpAnswer]:
        """Answer the utterance from the focus entity without any backend call."""
        kind = self.match(text, context)
        if kind is None:
            return None

        normalized = text.lower().strip()
        query_context = context.last_query_context
        focus = query_context.focus_entity

        index = _ordinal_index(normalized)
        if index is not None and index < len(query_context.results):
            focus = to_focus_entity(query_context.results[index])
            logger.info(f"[FOLLOW-UP] Switched focus to result {index + 1}: {focus.name}")

        answer_text = self._answer_for(normalized, focus)
        updated = query_context.model_copy(
            update={
                "focus_entity": focus,
                "needs_location": False,
                "pending_query": None,
                "awaiting_location_confirmation": False,
            }
        )
        logger.info(f"[FOLLOW-UP] Resolved '{kind}' follow-up about {focus.name}")
        return FollowUpAnswer(text=answer_text, kind=kind, focus_entity=focus, query_context=updated)

    def _answer_for(self, normalized: str, focus: FocusEntity) -> str:
        if any(term in normalized for term in PHONE_TERMS):
            return self._phone_answer(focus)
        if any(term in normalized for term in ADDRESS_TERMS):
            return self._address_answer(focus)

        for term, synonyms in ATTRIBUTE_SYNONYMS.items():
            if re.search(rf"\b{term}s?\b", normalized):
                return self._attribute_answer(focus, synonyms)

        if re.search(r"\b(?:accept|allow|take)\b", normalized):
            return self._attribute_answer(focus, [])
        return self._details_answer(focus)

    def _call_them(self, focus: FocusEntity) -> str:
        if focus.phone:
            return f"I'd recommend calling them at {focus.phone} to ask."
        return f"You can call the National Domestic Violence Hotline at {self.hotline_number} for help."

    def _phone_answer(self, focus: FocusEntity) -> str:
        if focus.phone:
            return f"You can reach {focus.name} at {focus.phone}."
        return (
            f"I don't have a phone number for {focus.name}. "
            f"The National Domestic Violence Hotline at {self.hotline_number} can connect you."
        )

    def _address_answer(self, focus: FocusEntity) -> str:
        for sentence in _sentences(focus.content):
            if re.search(r"\b(?:address|located|street|st\.|avenue|ave\.|road|rd\.)\b", sentence, re.IGNORECASE):
                return f"{focus.name}: {sentence}"
        return (
            f"Many shelters keep their address confidential for safety. "
            f"{self._call_them(focus)}"
        )

    def _attribute_answer(self, focus: FocusEntity, synonyms: List[str]) -> str:
        for sentence in _sentences(focus.content):
            lowered = sentence.lower()
            if any(re.search(rf"\b{re.escape(word)}\b", lowered) for word in synonyms):
                return f"{focus.name}: {sentence}"
        return f"I don't have that detail for {focus.name}. {self._call_them(focus)}"

    def _details_answer(self, focus: FocusEntity) -> str:
        summary = " ".join(_sentences(focus.content)[:2])
        parts = [f"{focus.name}."]
        if summary:
            parts.append(summary)
        if focus.phone:
            parts.append(f"Their phone number is {focus.phone}.")
        return " ".join(parts)
