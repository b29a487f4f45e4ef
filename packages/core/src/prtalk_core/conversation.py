"""Short-term conversational memory, one entry per session.

The tracker remembers what a session has already covered (topics, files,
reviewers, the questions asked) and turns that into prompt guidance: avoid
repeating earlier advice, go deeper when the user keeps asking about the same
thing, and pitch the answer at the user's apparent level.

State is advisory and lives for the process only. It is kept in a
ConversationStore so tests get isolated stores and a shared backend can be
plugged in without touching the tracker.
"""

from __future__ import annotations

import copy
import logging
import re
from abc import ABC, abstractmethod
from collections import deque
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, AsyncIterator, Callable

from prtalk_core.scoring import FILENAME_RE, MENTION_RE, question_similarity
from prtalk_core.types import ContextCategory, QueryCategory
from prtalk_core.utils.locks import KeyedLock
from prtalk_store.models import utcnow

if TYPE_CHECKING:
    from prtalk_core.types import Classification, ContextBundle

logger = logging.getLogger(__name__)

MEMORY_TURNS = 20

TOPIC_KEYWORDS: dict[str, tuple[str, ...]] = {
    "files": ("file", "files", "changed", "modified", "added", "deleted"),
    "security": ("security", "vulnerable", "exploit", "auth", "permission"),
    "performance": ("performance", "slow", "optimization", "memory", "cpu"),
    "reviews": ("review", "reviewer", "feedback", "comment", "approve"),
    "tests": ("test", "testing", "coverage", "unit test", "integration"),
    "documentation": ("docs", "documentation", "readme", "comment"),
    "architecture": ("architecture", "design", "pattern", "structure"),
}

_QUESTION_TOPICS: dict[str, re.Pattern] = {
    "code-analysis": re.compile(r"code|implementation|function|class|method"),
    "security": re.compile(r"security|vulnerable|exploit|auth"),
    "performance": re.compile(r"performance|slow|optimization|memory"),
    "testing": re.compile(r"test|testing|coverage"),
    "documentation": re.compile(r"docs|documentation|readme"),
}

EXPERT_INDICATORS = (
    "implementation",
    "architecture",
    "design pattern",
    "algorithm",
    "complexity",
    "performance optimization",
    "memory leak",
    "thread safety",
)
BEGINNER_INDICATORS = ("what is", "how to", "help me understand", "explain", "basic")

DEFAULT_FOLLOWUPS: dict[QueryCategory, tuple[str, str, str]] = {
    QueryCategory.SUMMARY: (
        "What files were changed in this PR?",
        "What did reviewers say about this PR?",
        "Are there any security concerns?",
    ),
    QueryCategory.CODE_ANALYSIS: (
        "Show me the largest code changes",
        "What are the main implementation details?",
        "Are there any potential bugs in the changes?",
    ),
    QueryCategory.REVIEW_FEEDBACK: (
        "What specific feedback did reviewers provide?",
        "Has this PR been approved?",
        "Are there any unresolved review comments?",
    ),
    QueryCategory.SECURITY: (
        "What specific security issues were found?",
        "How can these security concerns be addressed?",
        "Are there any authentication-related changes?",
    ),
    QueryCategory.PERFORMANCE: (
        "What performance optimizations are recommended?",
        "Are there any bottlenecks in the code?",
        "How does this impact system performance?",
    ),
    QueryCategory.TIMELINE: (
        "When was this PR created?",
        "When was it last updated?",
        "What is the review timeline?",
    ),
    QueryCategory.FILE_LISTING: (
        "Show me the files with the most changes",
        "What programming languages are used?",
        "Are there any configuration files changed?",
    ),
    QueryCategory.TEST_GUIDANCE: (
        "What types of tests should be added?",
        "Is there adequate test coverage?",
        "Are there any edge cases to consider?",
    ),
    QueryCategory.GENERAL: (
        "What is this PR about?",
        "Who authored this PR?",
        "What is the current status?",
    ),
}


@dataclass
class TurnSummary:
    question: str
    category: QueryCategory
    topics: list[str]
    at: datetime = field(default_factory=utcnow)


@dataclass
class ConversationState:
    session_id: str
    topics: set[str] = field(default_factory=set)
    asked_questions: list[str] = field(default_factory=list)
    knowledge_level: str = "intermediate"  # "beginner" | "intermediate" | "expert"
    files: set[str] = field(default_factory=set)
    reviewers: set[str] = field(default_factory=set)
    turns: deque[TurnSummary] = field(default_factory=lambda: deque(maxlen=MEMORY_TURNS))
    focus: QueryCategory | None = None
    last_sources: list[str] = field(default_factory=list)


# --------------------------------------------------------------------------- #
# Storage                                                                       #
# --------------------------------------------------------------------------- #


class ConversationStore(ABC):
    """Holds one ConversationState per session, each independently lockable."""

    @abstractmethod
    def locked(self, session_id: str) -> AsyncIterator[ConversationState]:
        """Async context manager yielding the (created on demand) state under the session's lock."""

    @abstractmethod
    async def get(self, session_id: str) -> ConversationState | None:
        """Return the current state without creating one."""

    @abstractmethod
    async def delete(self, session_id: str) -> None:
        """Drop the session's state."""


class InMemoryConversationStore(ConversationStore):
    def __init__(self, memory_turns: int = MEMORY_TURNS):
        self.memory_turns = memory_turns
        self._states: dict[str, ConversationState] = {}
        self._locks = KeyedLock()

    @asynccontextmanager
    async def locked(self, session_id: str) -> AsyncIterator[ConversationState]:
        async with self._locks.hold(session_id):
            state = self._states.get(session_id)
            if state is None:
                state = ConversationState(session_id=session_id, turns=deque(maxlen=self.memory_turns))
                self._states[session_id] = state
            yield state

    async def get(self, session_id: str) -> ConversationState | None:
        return self._states.get(session_id)

    async def delete(self, session_id: str) -> None:
        async with self._locks.hold(session_id):
            self._states.pop(session_id, None)

    def __len__(self) -> int:
        return len(self._states)


# --------------------------------------------------------------------------- #
# Tracker                                                                       #
# --------------------------------------------------------------------------- #


class ConversationStateTracker:
    def __init__(
        self,
        store: ConversationStore | None = None,
        repetition_threshold: float = 0.7,
        similarity: Callable[[str, str], float] = question_similarity,
    ):
        self.store = store if store is not None else InMemoryConversationStore()
        self.repetition_threshold = repetition_threshold
        self.similarity = similarity

    # ------------------------------------------------------------------ #
    # Writes                                                               #
    # ------------------------------------------------------------------ #

    async def update(
        self,
        session_id: str,
        question: str,
        classification: Classification,
        answer_text: str,
        sources_used: list[str],
    ) -> ConversationState:
        """Fold one delivered answer into the session's memory."""
        answer_text = answer_text if isinstance(answer_text, str) else str(answer_text or "")
        async with self.store.locked(session_id) as state:
            state.topics.update(extract_topics(question, answer_text))
            state.knowledge_level = estimate_knowledge_level(question, state.knowledge_level)
            combined = f"{question} {answer_text}"
            state.files.update(m.group(0) for m in FILENAME_RE.finditer(combined))
            state.reviewers.update(MENTION_RE.findall(combined))
            state.turns.append(
                TurnSummary(
                    question=question,
                    category=classification.category,
                    topics=[t for t, p in _QUESTION_TOPICS.items() if p.search(question.lower())],
                )
            )
            state.focus = classification.category
            state.last_sources = list(sources_used)
            state.asked_questions.append(question.lower())
            logger.debug(
                "Session %s: %d turns, topics=%s, level=%s",
                session_id,
                len(state.turns),
                sorted(state.topics),
                state.knowledge_level,
            )
            return state

    async def forget(self, session_id: str) -> None:
        await self.store.delete(session_id)

    # ------------------------------------------------------------------ #
    # Reads                                                                #
    # ------------------------------------------------------------------ #

    async def snapshot(self, session_id: str) -> ConversationState | None:
        """A copy of the session's state, safe to inspect outside the lock."""
        if await self.store.get(session_id) is None:
            return None
        async with self.store.locked(session_id) as state:
            return copy.deepcopy(state)

    async def is_repeating_question(self, session_id: str, question: str) -> bool:
        if await self.store.get(session_id) is None:
            return False
        async with self.store.locked(session_id) as state:
            return self._is_repeating(state, question)

    async def prompt_enhancement(self, session_id: str, question: str) -> str:
        """Conversation context and guidelines appended to the model prompt; empty for a new session."""
        state = await self.store.get(session_id)
        if state is None:
            return ""
        async with self.store.locked(session_id) as state:
            lines = ["**Conversation Context:**"]
            if state.topics:
                lines.append(f"- Previously discussed: {', '.join(sorted(state.topics))}")
            lines.append(f"- User knowledge level: {state.knowledge_level}")
            if len(state.turns) > 1:
                recent = list(state.turns)[-3:]
                lines.append(f"- Recent question pattern: {' -> '.join(t.category.value for t in recent)}")
            if state.files:
                lines.append(f"- Files already discussed: {', '.join(sorted(state.files)[:5])}")
            if state.reviewers:
                lines.append(f"- Reviewers mentioned: {', '.join(sorted(state.reviewers))}")

            lines.append("")
            lines.append("**Response Guidelines:**")
            if self._is_repeating(state, question):
                lines.append(
                    "- This question is similar to an earlier one: avoid repeating prior advice; "
                    "give new specific information or a different perspective."
                )
            if self._on_streak(state):
                lines.append("- The user keeps asking about this topic: go deeper technically, with more detail.")
            lines.append(f"- Adapt complexity to {state.knowledge_level} level.")
            lines.append("- Reference specific files, line numbers and exact reviewer quotes when possible.")
            return "\n".join(lines)

    async def adaptive_followups(
        self, session_id: str, category: QueryCategory, bundle: ContextBundle | None
    ) -> list[str]:
        """Up to three follow-ups steering toward context the session has not covered yet."""
        state = await self.store.get(session_id)
        if state is None:
            return list(DEFAULT_FOLLOWUPS[category])

        async with self.store.locked(session_id) as state:
            topics = set(state.topics)
            level = state.knowledge_level

        files = bundle.get(ContextCategory.FILES) if bundle else None
        summary = bundle.get(ContextCategory.AUTOMATED_SUMMARY) if bundle else None
        reviews = bundle.get(ContextCategory.REVIEWS) if bundle else None

        followups: list[str] = []
        if "files" not in topics and files:
            followups.append(f"What specific files should I focus on reviewing? ({files['total_files']} files changed)")
        if "security" not in topics and summary and summary.get("security_concerns"):
            followups.append("Are there any security vulnerabilities in this PR?")
        if "reviews" not in topics and reviews and reviews["summary"].get("changes_requested_count"):
            followups.append("What specific changes did reviewers request?")
        if "performance" not in topics and summary and summary.get("performance_issues"):
            followups.append("What performance implications does this PR have?")
        if level == "expert" and files and files.get("files"):
            followups.append(f"Can you analyze the changes in {files['files'][0]['filename']}?")

        for candidate in _context_specific_followups(bundle, topics):
            if len(followups) >= 3:
                break
            if candidate not in followups:
                followups.append(candidate)
        return followups[:3]

    # ------------------------------------------------------------------ #
    # Internals                                                            #
    # ------------------------------------------------------------------ #

    def _is_repeating(self, state: ConversationState, question: str) -> bool:
        lowered = question.lower()
        return any(self.similarity(lowered, asked) > self.repetition_threshold for asked in state.asked_questions)

    @staticmethod
    def _on_streak(state: ConversationState, length: int = 3) -> bool:
        if len(state.turns) < length:
            return False
        recent = list(state.turns)[-length:]
        return all(t.category is recent[0].category for t in recent)


def extract_topics(question: str, answer: str = "") -> set[str]:
    q, a = question.lower(), answer.lower()
    return {topic for topic, words in TOPIC_KEYWORDS.items() if any(w in q or w in a for w in words)}


def estimate_knowledge_level(question: str, current: str = "intermediate") -> str:
    lowered = question.lower()
    if any(i in lowered for i in EXPERT_INDICATORS):
        return "expert"
    if any(i in lowered for i in BEGINNER_INDICATORS):
        return "beginner"
    return current


def _context_specific_followups(bundle: ContextBundle | None, topics: set[str]) -> list[str]:
    if not bundle:
        return []
    followups = []
    files = bundle.get(ContextCategory.FILES)
    if files and "files" not in topics:
        total = files["summary"]["total_additions"] + files["summary"]["total_deletions"]
        followups.append(f"This PR has {total} total changes. Should I focus on any specific areas?")
    reviews = bundle.get(ContextCategory.REVIEWS)
    if reviews and "reviews" not in topics:
        requested = reviews["summary"].get("changes_requested_count", 0)
        approved = reviews["summary"].get("approved_count", 0)
        if requested:
            followups.append(f"{requested} reviewers requested changes. What are the main concerns?")
        elif approved:
            followups.append(f"{approved} reviewers approved this. What did they like about it?")
    summary = bundle.get(ContextCategory.AUTOMATED_SUMMARY)
    if summary and summary.get("overall_score") is not None and summary["overall_score"] < 7:
        followups.append(
            f"The overall code quality score is {summary['overall_score']}/10. What are the main issues?"
        )
    return followups
