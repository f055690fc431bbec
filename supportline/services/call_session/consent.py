"""Consent reply classification."""
import re
from enum import Enum
from typing import Dict

CONSENT_KEYWORDS: Dict[str, float] = {
    "yes": 1.0,
    "yeah": 0.9,
    "yep": 0.9,
    "agree": 0.9,
    "consent": 0.9,
    "sure": 0.8,
    "okay": 0.8,
    "go ahead": 0.8,
    "ok": 0.7,
    "please": 0.6,
}

OPT_OUT_KEYWORDS: Dict[str, float] = {
    "no": 1.0,
    "opt out": 1.0,
    "nope": 0.9,
    "stop": 0.9,
    "unsubscribe": 0.9,
    "don't": 0.8,
    "do not": 0.8,
    "cancel": 0.8,
}

CONSENT_THRESHOLD = 0.7

CONSENT_PROMPT = (
    "Before you go, would you like us to text you a summary of this call and "
    "the resources we discussed? Please say or text yes or no."
)
CONSENT_GRANTED_MESSAGE = "Thank you. You will receive a summary and resources by text shortly."
CONSENT_DECLINED_MESSAGE = "Understood. You will not receive any follow-up messages."
CONSENT_UNCLEAR_MESSAGE = (
    "I didn't quite understand. For your privacy, I'll assume you don't want "
    "follow-up messages. You can always call back if you change your mind."
)


class ConsentDecision(str, Enum):
    """Outcome of a consent reply."""

    GRANTED = "granted"
    DECLINED = "declined"
    UNCLEAR = "unclear"


def _best_score(text: str, keywords: Dict[str, float]) -> float:
    best = 0.0
    for word, score in keywords.items():
        if re.search(rf"\b{re.escape(word)}\b", text):
            best = max(best, score)
    return best


def classify_consent(text: str) -> ConsentDecision:
    """Classify a spoken or texted consent reply. Unclear replies count as no consent."""
    lowered = (text or "").lower().strip()
    consent_score = _best_score(lowered, CONSENT_KEYWORDS)
    opt_out_score = _best_score(lowered, OPT_OUT_KEYWORDS)

    if consent_score > opt_out_score and consent_score >= CONSENT_THRESHOLD:
        return ConsentDecision.GRANTED
    if opt_out_score > consent_score and opt_out_score >= CONSENT_THRESHOLD:
        return ConsentDecision.DECLINED
    return ConsentDecision.UNCLEAR
