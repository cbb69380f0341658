from __future__ import annotations

import re

import pytest

from mailpilot.services.safety import HeuristicSafetyClassifier, assess


@pytest.mark.parametrize(
    "text",
    [
        "",
        " ",
        "a",
        "Hello team, here is the agenda for Thursday.",
        "URGENT! Click here now to claim your FREE money! Act fast!",
        "THIS IS AN EXTREMELY URGENT MESSAGE WITH TOO MUCH CAPS",
        "!!!!!!!!",
    ],
)
def test_safe_flag_matches_threshold(text: str) -> None:
    result = assess(text)
    assert 0.0 <= result.score <= 1.0
    assert result.safe == (result.score >= 0.8)


def test_plain_copy_is_safe_with_no_issues() -> None:
    result = assess("Hi Dana, the onboarding guide you asked about is attached.")
    assert result.safe is True
    assert result.score == 1.0
    assert result.issues == []


def test_spam_vocabulary_is_flagged() -> None:
    result = assess("URGENT! Click here now to claim your FREE money! Act fast!")
    assert result.safe is False
    assert result.score < 0.8
    assert any("Prohibited pattern" in issue for issue in result.issues)


def test_shouting_is_flagged() -> None:
    result = assess("THIS IS AN EXTREMELY URGENT MESSAGE WITH TOO MUCH CAPS")
    assert result.safe is False
    assert any("capitalization" in issue for issue in result.issues)


def test_exclamation_marks_are_flagged() -> None:
    result = assess("Amazing offer!!!! Don't miss out!!!! Buy now!!!!")
    assert result.safe is False
    assert any("exclamation" in issue for issue in result.issues)


def test_single_penalty_lands_exactly_on_threshold() -> None:
    # Caps alone costs 0.2, which must still count as safe at 0.8.
    result = assess("HELLO THERE FRIENDS")
    assert result.score == 0.8
    assert result.safe is True


def test_score_never_goes_negative() -> None:
    text = "SPAM BUY NOW CLICK HERE FREE MONEY BITCOIN!!!!"
    result = assess(text)
    assert result.score == 0.0
    assert result.safe is False


def test_empty_text_has_no_caps_issue() -> None:
    result = assess("")
    assert result.issues == []
    assert result.score == 1.0


def test_custom_threshold_and_patterns() -> None:
    classifier = HeuristicSafetyClassifier(
        threshold=0.95,
        extra_patterns=[re.compile(r"\bunsubscribe trap\b", re.IGNORECASE)],
    )
    assert classifier.threshold == 0.95
    result = classifier.assess("This hides an Unsubscribe Trap in the footer.")
    assert result.safe is False
    assert result.issues == ['Prohibited pattern detected: "Unsubscribe Trap"']
