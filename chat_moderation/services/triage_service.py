"""
Signal scorers - fast-path content scoring.
Profanity, keyword and spam detectors over the active filter set plus
fixed spam heuristics. Scores add up across detectors with no cap.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Callable, List, Tuple

from chat_moderation.models.content import Violation
from chat_moderation.models.enums import FilterType
from chat_moderation.services.filter_registry import CompiledFilter, FilterRegistry

logger = logging.getLogger(__name__)


@dataclass
class ScoreResult:
    """Violations and summed weight from one or more detectors."""
    violations: List[Violation] = field(default_factory=list)
    score: int = 0

    def merge(self, other: "ScoreResult") -> "ScoreResult":
        return ScoreResult(
            violations=self.violations + other.violations,
            score=self.score + other.score,
        )


# Points per severity level for custom filter matches
FILTER_WEIGHTS = {
    FilterType.PROFANITY: 20,
    FilterType.SPAM: 15,
    FilterType.KEYWORD: 10,
}

FILTER_LABELS = {
    FilterType.PROFANITY: "Profanity",
    FilterType.SPAM: "Spam pattern",
    FilterType.KEYWORD: "Keyword",
}

REPEATED_CHARS = re.compile(r'(.)\1{4,}', re.IGNORECASE)  # 5+ identical characters
URL_TOKEN = re.compile(r'https?://\S+', re.IGNORECASE)

CAPS_MIN_LENGTH = 10
CAPS_RATIO = 0.6
MAX_URLS = 2
REPEATED_WORD_MIN_LENGTH = 4
MAX_REPEATED_WORDS = 2

# (label, points) for each fixed spam heuristic
REPEATED_CHARS_SIGNAL = ("Spam: Excessive repeated characters", 25)
EXCESSIVE_CAPS_SIGNAL = ("Spam: Excessive capital letters", 20)
MULTIPLE_URLS_SIGNAL = ("Spam: Multiple URLs", 30)
REPEATED_WORDS_SIGNAL = ("Spam: Repeated words", 15)


def score_filters(text: str, filters: List[CompiledFilter], filter_type: FilterType) -> ScoreResult:
    """Score text against custom filters of one type; invalid filters are skipped."""
    result = ScoreResult()
    weight = FILTER_WEIGHTS[filter_type]
    label = FILTER_LABELS[filter_type]

    for compiled in filters:
        if not compiled.is_valid:
            continue
        if compiled.matcher.matches(text):
            content_filter = compiled.content_filter
            result.violations.append(Violation(
                label=f"{label}: {content_filter.pattern}",
                weight=content_filter.severity * weight,
                category=filter_type,
                pattern=content_filter.pattern,
            ))
            result.score += content_filter.severity * weight

    return result


def _has_repeated_chars(text: str) -> bool:
    return REPEATED_CHARS.search(text) is not None


def _has_excessive_caps(text: str) -> bool:
    if len(text) <= CAPS_MIN_LENGTH:
        return False
    caps = sum(1 for c in text if c.isupper())
    return caps / len(text) > CAPS_RATIO


def _has_multiple_urls(text: str) -> bool:
    return len(URL_TOKEN.findall(text)) > MAX_URLS


def _has_repeated_words(text: str) -> bool:
    """More than two words (longer than 3 chars) that already appeared earlier."""
    seen = set()
    repeats = 0
    for word in text.split():
        if word in seen and len(word) >= REPEATED_WORD_MIN_LENGTH:
            repeats += 1
        seen.add(word)
    return repeats > MAX_REPEATED_WORDS


SPAM_HEURISTICS: List[Tuple[Tuple[str, int], Callable[[str], bool]]] = [
    (REPEATED_CHARS_SIGNAL, _has_repeated_chars),
    (EXCESSIVE_CAPS_SIGNAL, _has_excessive_caps),
    (MULTIPLE_URLS_SIGNAL, _has_multiple_urls),
    (REPEATED_WORDS_SIGNAL, _has_repeated_words),
]


def score_spam_heuristics(text: str) -> ScoreResult:
    """Fixed spam heuristics; each contributes independently."""
    result = ScoreResult()
    for (label, points), check in SPAM_HEURISTICS:
        if check(text):
            result.violations.append(Violation(label=label, weight=points, category=FilterType.SPAM))
            result.score += points
    return result


class SignalScorer:
    """
    Runs every detector over a message.
    Pure with respect to the registry's current filter set.
    """

    def __init__(self, registry: FilterRegistry):
        self.registry = registry

    def check_profanity(self, text: str) -> ScoreResult:
        return score_filters(text, self.registry.compiled_filters(FilterType.PROFANITY), FilterType.PROFANITY)

    def check_spam(self, text: str) -> ScoreResult:
        heuristics = score_spam_heuristics(text)
        custom = score_filters(text, self.registry.compiled_filters(FilterType.SPAM), FilterType.SPAM)
        return heuristics.merge(custom)

    def check_keywords(self, text: str) -> ScoreResult:
        return score_filters(text, self.registry.compiled_filters(FilterType.KEYWORD), FilterType.KEYWORD)

    def evaluate(self, text: str) -> ScoreResult:
        """Profanity, spam and keyword detectors, summed."""
        return (
            self.check_profanity(text)
            .merge(self.check_spam(text))
            .merge(self.check_keywords(text))
        )
