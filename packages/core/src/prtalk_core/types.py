"""Value types shared by every stage of the question pipeline."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from prtalk_store.models import ContentKind


class QueryCategory(str, Enum):
    # Declaration order is the tie-break order for pattern scoring.
    SUMMARY = "summary"
    CODE_ANALYSIS = "code-analysis"
    REVIEW_FEEDBACK = "review-feedback"
    SECURITY = "security"
    PERFORMANCE = "performance"
    TIMELINE = "timeline"
    FILE_LISTING = "file-listing"
    TEST_GUIDANCE = "test-guidance"
    GENERAL = "general"


class ContextCategory(str, Enum):
    METADATA = "metadata"
    AUTOMATED_SUMMARY = "automated-summary"
    FILES = "files"
    REVIEWS = "reviews"
    COMMENTS = "comments"
    COMMITS = "commits"
    # Derived from the automated summary, never fetched on their own.
    SECURITY_ANALYSIS = "security-analysis"
    PERFORMANCE_ANALYSIS = "performance-analysis"


RETRIEVED_CATEGORIES = (
    ContextCategory.METADATA,
    ContextCategory.AUTOMATED_SUMMARY,
    ContextCategory.FILES,
    ContextCategory.REVIEWS,
    ContextCategory.COMMENTS,
    ContextCategory.COMMITS,
)


@dataclass(frozen=True)
class QueryFilters:
    file_names: tuple[str, ...] = ()
    mentions: tuple[str, ...] = ()
    dates: tuple[str, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not (self.file_names or self.mentions or self.dates)


@dataclass(frozen=True)
class Classification:
    category: QueryCategory
    confidence: float
    required_context: tuple[ContextCategory, ...]
    filters: QueryFilters | None = None


@dataclass
class ContextBundle:
    """Per-question context handed to the model.

    A category is either present with data or absent. Setting a falsy value
    removes the category instead of storing it.
    """

    sections: dict[ContextCategory, Any] = field(default_factory=dict)

    def set(self, category: ContextCategory, data: Any) -> None:
        if data:
            self.sections[category] = data
        else:
            self.sections.pop(category, None)

    def get(self, category: ContextCategory, default: Any = None) -> Any:
        return self.sections.get(category, default)

    def categories(self) -> list[ContextCategory]:
        return list(self.sections)

    def __contains__(self, category: object) -> bool:
        return category in self.sections

    def __len__(self) -> int:
        return len(self.sections)

    @property
    def is_empty(self) -> bool:
        return not self.sections


@dataclass
class ModelAnswer:
    answer: str | dict
    content_kind: ContentKind = ContentKind.TEXT
    context_used: list[str] = field(default_factory=list)
    followups: list[str] = field(default_factory=list)
    confidence: float = 0.5
    sources: list[str] = field(default_factory=list)
    origin: str = "model"  # "model" | "fallback"

    @property
    def text(self) -> str:
        """The answer as display text; structured answers are rendered as their 'answer'/'summary' key or JSON."""
        if isinstance(self.answer, str):
            return self.answer
        if isinstance(self.answer, dict):
            for key in ("answer", "summary", "text"):
                value = self.answer.get(key)
                if isinstance(value, str):
                    return value
        return json.dumps(self.answer, default=str)


@dataclass
class Evaluation:
    valid: bool
    hallucination_score: float
    relevance_score: float
    issues: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class CompletionOptions:
    temperature: float = 0.7
    max_tokens: int = 2000
    json_mode: bool = True
