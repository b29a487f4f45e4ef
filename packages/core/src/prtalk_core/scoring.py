"""Text scoring helpers used by the classifier, tracker and validator.

Kept as plain functions so each heuristic can be unit-tested on its own and
swapped out (the validator and tracker accept replacements) without touching
the pipeline that calls them.
"""

from __future__ import annotations

import math
import re
from collections.abc import Iterable

STOPWORDS = frozenset(
    {
        "the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for",
        "of", "with", "by", "is", "are", "was", "were", "be", "been", "being",
        "have", "has", "had", "do", "does", "did", "will", "would", "could",
        "should", "may", "might", "can", "this", "that", "these", "those",
        # Question words carry no topic; without them paraphrases look unrelated.
        "what", "which", "who", "how", "why", "when", "where", "here", "there",
        "any", "some", "you", "your", "me", "my", "our", "its", "it", "about",
        "please", "tell", "give", "show",
    }
)  # fmt: skip

# File-name-like tokens: a word, optionally with path segments, and a known extension.
FILENAME_RE = re.compile(
    r"\b[\w./-]*\w\.(?:py|js|jsx|ts|tsx|java|go|rb|rs|cpp|cc|c|h|hpp|cs|php|kt|swift|scala"
    r"|css|scss|html|json|xml|yml|yaml|toml|md|sql|sh)\b",
    re.IGNORECASE,
)
MENTION_RE = re.compile(r"@([\w-]+)")

_NON_WORD_RE = re.compile(r"[^\w\s]")


def extract_keywords(text: str) -> list[str]:
    """Lower-cased content words longer than two characters, stopwords removed, order kept."""
    words = _NON_WORD_RE.sub(" ", text.lower()).split()
    return [w for w in words if len(w) > 2 and w not in STOPWORDS]


def levenshtein_distance(a: str, b: str) -> int:
    if a == b:
        return 0
    if not a:
        return len(b)
    if not b:
        return len(a)
    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        current = [i]
        for j, cb in enumerate(b, start=1):
            cost = 0 if ca == cb else 1
            current.append(min(previous[j] + 1, current[j - 1] + 1, previous[j - 1] + cost))
        previous = current
    return previous[-1]


def string_similarity(a: str, b: str) -> float:
    """Normalized edit similarity: (max_len - distance) / max_len."""
    longest = max(len(a), len(b))
    if longest == 0:
        return 1.0
    return (longest - levenshtein_distance(a, b)) / longest


def keyword_coverage(question: str, earlier: str) -> float:
    """Share of the question's keywords that the earlier question also has; 0 when either has none.

    Not symmetric: a short follow-up covered by a longer earlier question scores 1.0,
    while a longer question that only shares one keyword with a short one does not.
    """
    kq, ke = set(extract_keywords(question)), set(extract_keywords(earlier))
    if not kq or not ke:
        return 0.0
    return len(kq & ke) / len(kq)


def question_similarity(question: str, earlier: str) -> float:
    """How close a new question is to an earlier one: edit similarity or keyword coverage."""
    question, earlier = question.lower().strip(), earlier.lower().strip()
    return max(string_similarity(question, earlier), keyword_coverage(question, earlier))


def score_patterns(question: str, patterns: Iterable[re.Pattern]) -> float:
    """Best `min(1, len(match)/len(question) + 0.3)` over the patterns; 0 if none match."""
    if not question:
        return 0.0
    best = 0.0
    for pattern in patterns:
        match = pattern.search(question)
        if match:
            best = max(best, min(1.0, len(match.group(0)) / len(question) + 0.3))
    return best


def supported_by(text: str, context_keywords: set[str], ratio: float = 0.6) -> bool:
    """True when at least ``ratio`` (rounded up) of the text's keywords appear in the context."""
    words = extract_keywords(text)
    if not words:
        return True
    needed = math.ceil(round(len(words) * ratio, 6))
    return sum(1 for w in words if w in context_keywords) >= needed
