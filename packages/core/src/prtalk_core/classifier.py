"""Question classification: which kind of question is this, and what context does it need.

Two tiers, both local:
  1. A handful of literal phrase rules for unambiguous intents.
  2. Per-category regex lists scored by how much of the question they cover.

The required context is a fixed table keyed by category, so the same category
always fetches the same data.
"""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING, Callable, Iterable, Sequence

from prtalk_core.scoring import FILENAME_RE, MENTION_RE, score_patterns
from prtalk_core.types import Classification, ContextCategory, QueryCategory, QueryFilters
from prtalk_store.models import SenderKind

if TYPE_CHECKING:
    from prtalk_store.models import Turn

logger = logging.getLogger(__name__)

C = ContextCategory

REQUIRED_CONTEXT: dict[QueryCategory, tuple[ContextCategory, ...]] = {
    QueryCategory.SUMMARY: (C.METADATA, C.AUTOMATED_SUMMARY),
    QueryCategory.CODE_ANALYSIS: (C.FILES, C.METADATA),
    QueryCategory.REVIEW_FEEDBACK: (C.REVIEWS, C.COMMENTS),
    QueryCategory.SECURITY: (C.AUTOMATED_SUMMARY, C.FILES),
    QueryCategory.PERFORMANCE: (C.AUTOMATED_SUMMARY, C.FILES),
    QueryCategory.TIMELINE: (C.METADATA, C.COMMITS),
    QueryCategory.FILE_LISTING: (C.FILES,),
    QueryCategory.TEST_GUIDANCE: (C.AUTOMATED_SUMMARY, C.FILES),
    QueryCategory.GENERAL: (C.METADATA, C.AUTOMATED_SUMMARY),
}


def _compile(*patterns: str) -> tuple[re.Pattern, ...]:
    return tuple(re.compile(p, re.IGNORECASE) for p in patterns)


CATEGORY_PATTERNS: dict[QueryCategory, tuple[re.Pattern, ...]] = {
    QueryCategory.SUMMARY: _compile(
        r"what.*(is|about|does).*pr",
        r"summari[sz]e.*pr",
        r"overview.*pr",
        r"tell me about.*pr",
        r"what.*pr.*do",
        r"explain",
        r"describe",
        r"tell.*about",
        r"what.*this",
    ),
    QueryCategory.CODE_ANALYSIS: _compile(
        r"show.*code",
        r"what.*changed",
        r"diff.*file",
        r"code.*review",
        r"implementation",
        r"show.*function",
        r"class.*method",
        r"improve",
        r"better",
        r"enhance",
        r"fix",
        r"optimi[sz]e",
        r"refactor",
        r"areas.*improve",
        r"where.*improve",
        r"make.*plan",
        r"plan.*improve",
    ),
    QueryCategory.REVIEW_FEEDBACK: _compile(
        r"review.*comment",
        r"what.*reviewer",
        r"feedback",
        r"comment.*pr",
        r"review.*say",
        r"approv",
    ),
    QueryCategory.SECURITY: _compile(
        r"security.*issue",
        r"vulnerabilit",
        r"security.*concern",
        r"auth.*problem",
        r"secure",
        r"injection",
    ),
    QueryCategory.PERFORMANCE: _compile(
        r"performance.*issue",
        r"slow",
        r"optimization",
        r"memory.*leak",
        r"performance.*concern",
        r"bottleneck",
    ),
    QueryCategory.TIMELINE: _compile(
        r"when.*created",
        r"when.*merged",
        r"timeline",
        r"date",
        r"history",
        r"commits?\b",
    ),
    QueryCategory.FILE_LISTING: _compile(
        r"files.*changed",
        r"what.*files",
        r"file.*modified",
        r"added.*files",
        r"deleted.*files",
    ),
    QueryCategory.TEST_GUIDANCE: _compile(
        r"test.*recommendation",
        r"test.*coverage",
        r"unit.*test",
        r"test.*case",
        r"testing",
    ),
    QueryCategory.GENERAL: (),
}

# (phrases, category, confidence), checked in order on the lower-cased question.
_LITERAL_RULES: tuple[tuple[tuple[str, ...], QueryCategory, float], ...] = (
    (
        ("what files changed", "which files changed", "files modified", "list the files"),
        QueryCategory.FILE_LISTING,
        0.95,
    ),
    (("security issues", "security concerns"), QueryCategory.SECURITY, 0.95),
    (("what did reviewers say", "review comments"), QueryCategory.REVIEW_FEEDBACK, 0.95),
)
_IMPROVEMENT_PHRASES = ("improve", "areas for", "make a plan", "plan to")

_GREETING_RES = _compile(r"^h(i|ey|ello)\b", r"^good (morning|afternoon|evening)", r"^how.*you")
_DATE_RE = re.compile(
    r"\b(today|yesterday|last week|last month|this week|this month|\d+ days? ago|\d{4}-\d{2}-\d{2})\b",
    re.IGNORECASE,
)

_MIN_PATTERN_SCORE = 0.3
_FALLBACK = (QueryCategory.GENERAL, 0.5)


def extract_filters(question: str) -> QueryFilters | None:
    """File-name hints, @mentions and date phrases found in the question, or None."""
    filters = QueryFilters(
        file_names=tuple(dict.fromkeys(m.group(0) for m in FILENAME_RE.finditer(question))),
        mentions=tuple(dict.fromkeys(MENTION_RE.findall(question))),
        dates=tuple(dict.fromkeys(d.lower() for d in _DATE_RE.findall(question))),
    )
    return None if filters.is_empty else filters


class QueryClassifier:
    """Maps a question to a category, confidence and required context.

    ``scorer`` is the per-category pattern scoring function; it receives the
    question and one category's compiled patterns and returns a score in [0, 1].
    """

    def __init__(
        self,
        patterns: dict[QueryCategory, Sequence[re.Pattern]] | None = None,
        scorer: Callable[[str, Iterable[re.Pattern]], float] = score_patterns,
    ):
        self.patterns = patterns or CATEGORY_PATTERNS
        self.scorer = scorer

    def classify(self, question: str, recent_history: Sequence[Turn] | None = None) -> Classification:
        try:
            category, confidence = self._categorize(question, recent_history or ())
            return Classification(
                category=category,
                confidence=confidence,
                required_context=REQUIRED_CONTEXT[category],
                filters=extract_filters(question),
            )
        except Exception:
            logger.exception("Classification failed; falling back to general")
            return Classification(
                category=QueryCategory.GENERAL,
                confidence=0.5,
                required_context=REQUIRED_CONTEXT[QueryCategory.GENERAL],
            )

    # ------------------------------------------------------------------ #
    # Internals                                                            #
    # ------------------------------------------------------------------ #

    def _categorize(self, question: str, history: Sequence[Turn]) -> tuple[QueryCategory, float]:
        lowered = question.lower().strip()

        for phrases, category, confidence in _LITERAL_RULES:
            if any(p in lowered for p in phrases):
                return category, confidence

        if history and any(r.search(lowered) for r in _GREETING_RES):
            return _last_assistant_category(history), 0.8

        if any(p in lowered for p in _IMPROVEMENT_PHRASES):
            return QueryCategory.CODE_ANALYSIS, 0.9

        return self._score(lowered)

    def _score(self, question: str) -> tuple[QueryCategory, float]:
        best_category, best_score = None, 0.0
        # Iterating in enum order with a strict '>' keeps the earlier category on ties.
        for category in QueryCategory:
            score = self.scorer(question, self.patterns.get(category, ()))
            if score > best_score:
                best_category, best_score = category, score
        if best_category is None or best_score < _MIN_PATTERN_SCORE:
            return _FALLBACK
        logger.debug("Pattern score %.2f -> %s", best_score, best_category.value)
        return best_category, best_score


def _last_assistant_category(history: Sequence[Turn]) -> QueryCategory:
    for turn in reversed(history):
        if turn.sender is SenderKind.ASSISTANT and turn.classification:
            try:
                return QueryCategory(turn.classification)
            except ValueError:
                continue
    return QueryCategory.SUMMARY
