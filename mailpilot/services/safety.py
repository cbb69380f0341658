"""
Heuristic content-safety classifier for generated email copy.

Scores text against spam vocabulary, uppercase ratio and exclamation count,
independently of anything the model reports about its own output.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Iterable, Protocol


SAFETY_THRESHOLD = 0.8

PROHIBITED_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"\b(spam|scam|fraud|malware|virus|phishing)\b", re.IGNORECASE),
    re.compile(r"\b(buy now|act fast|limited time|urgent|immediate action required)\b", re.IGNORECASE),
    re.compile(r"\b(click here|download now|verify account|confirm identity)\b", re.IGNORECASE),
    re.compile(r"\b(congratulations|you've won|free money|inheritance|lottery)\b", re.IGNORECASE),
    re.compile(r"\b(nigerian prince|advance fee|wire transfer|bitcoin|cryptocurrency)\b", re.IGNORECASE),
)

PATTERN_RISK = 0.3
CAPS_RISK = 0.2
EXCLAMATION_RISK = 0.1
MAX_CAPS_RATIO = 0.5
MAX_EXCLAMATIONS = 3

_UPPERCASE = re.compile(r"[A-Z]")


@dataclass(frozen=True)
class SafetyAssessment:
    safe: bool
    score: float
    issues: list[str] = field(default_factory=list)


class SafetyClassifier(Protocol):
    def assess(self, text: str) -> SafetyAssessment:
        ...


class HeuristicSafetyClassifier:
    """
    Pattern + shouting + punctuation scorer.

    Args:
        threshold: minimum score considered safe
        extra_patterns: additional compiled patterns appended to the defaults
    """

    def __init__(
        self,
        threshold: float = SAFETY_THRESHOLD,
        extra_patterns: Iterable[re.Pattern[str]] | None = None,
    ) -> None:
        self._threshold = threshold
        self._patterns = PROHIBITED_PATTERNS + tuple(extra_patterns or ())

    @property
    def threshold(self) -> float:
        return self._threshold

    def assess(self, text: str) -> SafetyAssessment:
        text = text or ""
        issues: list[str] = []
        risk = 0.0

        for pattern in self._patterns:
            match = pattern.search(text)
            if match:
                issues.append(f'Prohibited pattern detected: "{match.group(0)}"')
                risk += PATTERN_RISK

        caps_ratio = len(_UPPERCASE.findall(text)) / len(text) if text else 0.0
        if caps_ratio > MAX_CAPS_RATIO:
            issues.append("Excessive capitalization detected")
            risk += CAPS_RISK

        if text.count("!") > MAX_EXCLAMATIONS:
            issues.append("Excessive exclamation marks")
            risk += EXCLAMATION_RISK

        # Round away float drift so 1 - 0.2 compares equal to the 0.8 threshold.
        score = round(max(0.0, 1.0 - risk), 6)
        return SafetyAssessment(safe=score >= self._threshold, score=score, issues=issues)


_default_classifier = HeuristicSafetyClassifier()


def assess(text: str) -> SafetyAssessment:
    """Score text with the default heuristic classifier."""
    return _default_classifier.assess(text)
