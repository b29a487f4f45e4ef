"""Canned answers for every way the pipeline can fail to produce a valid one.

Pure synthesis: nothing here does I/O or raises. Every payload carries
origin="fallback", the single source "fallback_handler" and exactly three
follow-up questions.
"""

from __future__ import annotations

import logging
import re

from prtalk_core.types import ModelAnswer, QueryCategory

logger = logging.getLogger(__name__)

SOURCE = "fallback_handler"

_FETCH_HINT = "Load the pull request with `prtalk fetch` (or `prtalk import`) and ask again."

_MISSING_CONTEXT: dict[QueryCategory, tuple[str, tuple[str, str, str]]] = {
    QueryCategory.SUMMARY: (
        "I don't have the summary information for this pull request yet.",
        (
            "Would you like help loading the pull request details?",
            "Is there specific information about the pull request you're looking for?",
            "Would you like to ask about something else?",
        ),
    ),
    QueryCategory.CODE_ANALYSIS: (
        "I don't have the code changes for this pull request; its files haven't been loaded.",
        (
            "Would you like to load the pull request data first?",
            "Is there a specific file you're interested in?",
            "Would you like to know about other aspects of this pull request?",
        ),
    ),
    QueryCategory.REVIEW_FEEDBACK: (
        "I don't have the reviews or comments for this pull request.",
        (
            "Would you like to load the review data?",
            "Are you looking for feedback from a specific reviewer?",
            "Would you like to know about other pull request information?",
        ),
    ),
    QueryCategory.SECURITY: (
        "I don't have a security analysis for this pull request yet.",
        (
            "Would you like to import an automated analysis first?",
            "Are you concerned about specific security aspects?",
            "Would you like to ask about other pull request details?",
        ),
    ),
    QueryCategory.PERFORMANCE: (
        "I don't have performance analysis data for this pull request.",
        (
            "Would you like to import an automated analysis first?",
            "Are you looking for specific performance metrics?",
            "Would you like to explore other aspects of this pull request?",
        ),
    ),
    QueryCategory.TIMELINE: (
        "I don't have the timeline information for this pull request; its metadata hasn't been loaded.",
        (
            "Would you like to load the pull request metadata?",
            "Are you looking for specific dates or events?",
            "Would you like to know about other pull request details?",
        ),
    ),
    QueryCategory.FILE_LISTING: (
        "I don't have the list of changed files for this pull request.",
        (
            "Would you like to load the pull request file data?",
            "Are you looking for changes in a specific directory?",
            "Would you like to know about other pull request information?",
        ),
    ),
    QueryCategory.TEST_GUIDANCE: (
        "I don't have test recommendations for this pull request; it needs an automated analysis first.",
        (
            "Would you like to import an automated analysis?",
            "Are you looking for specific testing guidance?",
            "Would you like to ask about other aspects of this pull request?",
        ),
    ),
    QueryCategory.GENERAL: (
        "I don't have enough information about this pull request to answer your question.",
        (
            "Would you like to load the pull request information first?",
            "Can you be more specific about what you're looking for?",
            "Would you like to explore the data that is available?",
        ),
    ),
}

_TOPIC_FOLLOWUPS: tuple[tuple[tuple[str, ...], tuple[str, str, str]], ...] = (
    (
        ("file", "code"),
        (
            "Would you like to ask about specific files that were changed?",
            "Are you looking for code review feedback?",
            "Would you like to know about the overall code changes?",
        ),
    ),
    (
        ("review", "comment"),
        (
            "Would you like to know about reviewer feedback?",
            "Are you looking for specific types of comments?",
            "Would you like to see the review summary?",
        ),
    ),
    (
        ("security", "vulnerability"),
        (
            "Would you like to know about security analysis results?",
            "Are you concerned about specific security issues?",
            "Would you like general security recommendations?",
        ),
    ),
)
_GENERIC_FOLLOWUPS = (
    "Would you like to try rephrasing your question?",
    "Can you be more specific about what you're looking for?",
    "Would you like to ask about a different aspect of this pull request?",
)

_SENTENCE_END_RE = re.compile(r"[.!?]")
_MIN_SALVAGE_CHARS = 10


def _payload(answer: str, followups, confidence: float, context_used=None) -> ModelAnswer:
    return ModelAnswer(
        answer=answer,
        context_used=list(context_used or []),
        followups=list(followups)[:3],
        confidence=confidence,
        sources=[SOURCE],
        origin="fallback",
    )


def salvage(text: str | None) -> str | None:
    """Text up to and including its last sentence terminator, or None if too little survives."""
    if not text or not isinstance(text, str):
        return None
    ends = [m.end() for m in _SENTENCE_END_RE.finditer(text)]
    if not ends:
        return None
    kept = text[: ends[-1]].strip()
    return kept if len(kept) > _MIN_SALVAGE_CHARS else None


class FallbackHandler:
    def for_missing_context(self, category: QueryCategory) -> ModelAnswer:
        logger.warning("No context available for %s question", category.value)
        answer, followups = _MISSING_CONTEXT.get(category, _MISSING_CONTEXT[QueryCategory.GENERAL])
        return _payload(f"{answer} {_FETCH_HINT}", followups, 0.8)

    def for_model_failure(self) -> ModelAnswer:
        return _payload(
            "I'm sorry, I'm having technical difficulties answering right now. "
            "The language model could not be reached; please try again in a moment.",
            (
                "Would you like to try rephrasing your question?",
                "Can you ask a simpler or more specific question?",
                "Would you like to try again in a few minutes?",
            ),
            0.9,
        )

    def for_invalid_response(self, partial: ModelAnswer | str | None = None, question: str = "") -> ModelAnswer:
        text = partial.answer if isinstance(partial, ModelAnswer) else partial
        kept = salvage(text if isinstance(text, str) else None)
        if kept:
            answer = (
                f"I was able to partially answer your question: {kept} "
                "However, this answer could not be fully verified and may be incomplete."
            )
        else:
            answer = "I'm sorry, I ran into a problem producing a reliable answer to your question."
        context_used = partial.context_used if isinstance(partial, ModelAnswer) else None
        return _payload(answer, self._followups_for(question), 0.3, context_used=context_used)

    def for_timeout(self) -> ModelAnswer:
        return _payload(
            "I'm sorry, your request took longer than expected. "
            "Try a more specific question, or ask again later.",
            (
                "Would you like to ask a more specific question?",
                "Can you break your question down into smaller parts?",
                "Would you like to try again with a simpler query?",
            ),
            0.9,
        )

    def for_rate_limit(self) -> ModelAnswer:
        return _payload(
            "The language model is receiving too many requests right now. "
            "Please wait a moment before asking your next question.",
            (
                "Would you like to try again in a minute?",
                "Can you save your question and ask it later?",
                "Would you like tips on asking more focused questions?",
            ),
            1.0,
        )

    def for_unknown(self, err: BaseException | None = None) -> ModelAnswer:
        logger.error("Unexpected failure answering question: %r", err)
        return _payload(
            "I ran into an unexpected error while answering your question. "
            "Please try asking differently; if it keeps happening, check the logs with --verbose.",
            (
                "Would you like to rephrase your question?",
                "Can you try asking about something else?",
                "Would you like to ask a shorter question?",
            ),
            0.7,
        )

    @staticmethod
    def _followups_for(question: str) -> tuple[str, str, str]:
        lowered = question.lower()
        for words, followups in _TOPIC_FOLLOWUPS:
            if any(w in lowered for w in words):
                return followups
        return _GENERIC_FOLLOWUPS
