"""Location extraction from caller utterances."""
import re
from typing import Optional

LOCATION_PATTERN = re.compile(
    r"\b(?:in|near|around|close to|at)\s+([^,.?!]+(?:,\s*[^,.?!]+)?)",
    re.IGNORECASE,
)

# Trailing clauses that are not part of the place name
CLAUSE_BREAK = re.compile(
    r"\s+(?:that|which|who|where|with|for|and|because|so|please|right now|today|tonight)\b.*$",
    re.IGNORECASE,
)

NON_LOCATIONS = {
    "me", "here", "my area", "the area", "my city", "my town", "the moment",
    "all", "least", "night", "home", "there", "that area", "the same area",
    "danger", "trouble", "crisis", "pain", "risk", "a safe place",
    "yes", "no", "ok", "okay", "not sure", "i don't know", "i dont know",
}

# Phrases that point back to the previously discussed location
LOCATION_REUSE_INDICATORS = [
    "there",
    "same area",
    "same place",
    "same city",
    "that area",
    "that city",
    "around there",
    "nearby",
    "close by",
    "in the area",
]


def extract_location(text: str) -> Optional[str]:
    """Return the place named in an utterance, if any."""
    if not text:
        return None
    for match in LOCATION_PATTERN.finditer(text):
        candidate = CLAUSE_BREAK.sub("", match.group(1)).strip(" ,")
        if candidate and candidate.lower() not in NON_LOCATIONS:
            return candidate
    return None


def implies_previous_location(text: str) -> bool:
    """True when the utterance refers back to a location without naming one."""
    lowered = (text or "").lower()
    return any(re.search(rf"\b{re.escape(phrase)}\b", lowered) for phrase in LOCATION_REUSE_INDICATORS)


LOCATION_REPLY_PREFIX = re.compile(
    r"^(?:i'?m|i am|we'?re|we are|it'?s|it is|i live|we live)?\s*(?:in|near|around|at)?\s+",
    re.IGNORECASE,
)
QUESTION_START = re.compile(
    r"^(?:what|where|how|when|who|why|which|can|could|do|does|is|are|tell|i need|i want|help)\b",
    re.IGNORECASE,
)


def parse_location_reply(text: str) -> Optional[str]:
    """
    Read a bare place name given in answer to "what city are you in?".

    Accepts "Austin", "I'm in Austin, Texas" or "near Round Rock".
    """
    explicit = extract_location(text)
    if explicit:
        return explicit
    candidate = LOCATION_REPLY_PREFIX.sub("", " " + (text or "").strip()).strip(" .,?!")
    if not candidate or candidate.lower() in NON_LOCATIONS:
        return None
    # Long replies and questions are new queries, not place names
    if len(candidate.split()) > 4 or QUESTION_START.match(candidate):
        return None
    return candidate
