"""Unit tests for consent reply classification."""
import pytest

from supportline.services.call_session.consent import ConsentDecision, classify_consent


@pytest.mark.parametrize(
    "reply",
    ["yes", "Yes please", "yeah sure", "OK", "go ahead", "I agree"],
)
def test_affirmative_replies_grant_consent(reply):
    assert classify_consent(reply) == ConsentDecision.GRANTED


@pytest.mark.parametrize(
    "reply",
    ["no", "No thank you", "nope", "STOP", "please don't", "do not text me", "opt out"],
)
def test_negative_replies_decline(reply):
    assert classify_consent(reply) == ConsentDecision.DECLINED


@pytest.mark.parametrize(
    "reply",
    ["", "maybe", "what did you say", "please", "yes no"],
)
def test_unclear_replies(reply):
    assert classify_consent(reply) == ConsentDecision.UNCLEAR


def test_keywords_match_whole_words():
    # "know" must not count as "no"
    assert classify_consent("I know, yes") == ConsentDecision.GRANTED
