"""Conversation and pull request data models.

Decoupled from prtalk_core so the store layer can be used independently and
prtalk_core has no knowledge of persistence concerns. Everything here is a
plain dataclass; stores convert to and from their own row formats.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ScopeKind(str, Enum):
    ARTIFACT = "artifact"  # one pull request
    COLLECTION = "collection"  # one repository


class SenderKind(str, Enum):
    ASKER = "asker"
    ASSISTANT = "assistant"


class ContentKind(str, Enum):
    TEXT = "text"
    CODE = "code"
    STRUCTURED = "structured"
    FORMATTED = "formatted"


# --------------------------------------------------------------------------- #
# Conversation records                                                          #
# --------------------------------------------------------------------------- #


@dataclass
class SessionScope:
    """What a session is about: one PR (artifact) or a whole repository (collection)."""

    kind: ScopeKind
    repo: str  # "owner/name"
    pr_number: int | None = None

    @property
    def artifact_ref(self) -> str | None:
        if self.kind is ScopeKind.ARTIFACT and self.pr_number is not None:
            return f"{self.repo}#{self.pr_number}"
        return None


@dataclass
class Session:
    session_id: str
    user_id: str
    scope: SessionScope
    title: str = ""
    created_at: datetime = field(default_factory=utcnow)
    last_activity: datetime = field(default_factory=utcnow)
    closed_at: datetime | None = None
    granted_user_ids: set[str] = field(default_factory=set)

    @property
    def is_closed(self) -> bool:
        return self.closed_at is not None

    def can_be_read_by(self, user_id: str) -> bool:
        return user_id == self.user_id or user_id in self.granted_user_ids


@dataclass
class Turn:
    """One message in a session. Turns are append-only and never edited."""

    turn_id: str
    session_id: str
    sender: SenderKind
    content: str
    content_kind: ContentKind = ContentKind.TEXT
    classification: str | None = None
    metadata: dict | None = None
    created_at: datetime = field(default_factory=utcnow)


# --------------------------------------------------------------------------- #
# Pull request data                                                             #
# --------------------------------------------------------------------------- #


@dataclass
class UserRef:
    login: str
    name: str | None = None
    avatar_url: str | None = None


@dataclass
class RepositoryRecord:
    owner: str
    name: str
    description: str | None = None
    topics: list[str] = field(default_factory=list)
    stars: int = 0
    forks: int = 0
    default_branch: str = "main"
    is_private: bool = False

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"


@dataclass
class PullRequestRecord:
    repo: str
    number: int
    title: str
    author: UserRef
    body: str | None = None
    state: str = "open"  # "open" | "closed" | "merged"
    draft: bool = False
    mergeable: bool | None = None
    base_ref: str = ""
    base_sha: str = ""
    head_ref: str = ""
    head_sha: str = ""
    created_at: datetime | None = None
    updated_at: datetime | None = None
    merged_at: datetime | None = None
    closed_at: datetime | None = None


@dataclass
class AutomatedSummary:
    """A previously generated AI analysis of the PR."""

    summary: str
    overall_score: int = 0
    issues_found: list[str] = field(default_factory=list)
    suggestions: list[str] = field(default_factory=list)
    test_recommendations: list[str] = field(default_factory=list)
    security_concerns: list[str] = field(default_factory=list)
    performance_issues: list[str] = field(default_factory=list)
    well_handled_cases: list[dict] = field(default_factory=list)  # [{"area": ..., "reason": ...}]
    future_enhancements: list[str] = field(default_factory=list)
    code_quality_rating: dict[str, int] = field(default_factory=dict)
    analysis_model: str | None = None
    analysis_timestamp: datetime | None = None


@dataclass
class FileChange:
    filename: str
    change_type: str = "modified"  # "added" | "modified" | "removed" | "renamed"
    additions: int = 0
    deletions: int = 0
    previous_filename: str | None = None
    language: str | None = None
    is_binary: bool = False
    patch: str | None = None
    size_bytes: int | None = None

    @property
    def total_changes(self) -> int:
        return self.additions + self.deletions


@dataclass
class ReviewEntry:
    review_id: str
    reviewer: UserRef
    state: str  # "APPROVED" | "CHANGES_REQUESTED" | "COMMENTED" | ...
    body: str = ""
    submitted_at: datetime | None = None
    commit_sha: str | None = None


@dataclass
class CommentEntry:
    comment_id: str
    author: UserRef
    body: str
    created_at: datetime | None = None
    updated_at: datetime | None = None
    path: str | None = None
    line: int | None = None
    side: str | None = None


@dataclass
class CommitEntry:
    sha: str
    message: str
    author: str
    author_email: str | None = None
    committed_at: datetime | None = None
    additions: int = 0
    deletions: int = 0
    verified: bool = False
    author_login: str | None = None


@dataclass
class RepositoryOverview:
    """Repository-wide metadata served to collection-scoped sessions."""

    repository: RepositoryRecord
    recent_pulls: list[PullRequestRecord] = field(default_factory=list)
    total_pulls: int = 0
    open_pulls: int = 0
    merged_pulls: int = 0


@dataclass
class PullRequestSnapshot:
    """Everything known about one PR, loaded into a store in a single call.

    Built by ``prtalk fetch`` (GitHub) or ``prtalk import`` (JSON file).
    """

    pull: PullRequestRecord
    repository: RepositoryRecord | None = None
    summary: AutomatedSummary | None = None
    files: list[FileChange] = field(default_factory=list)
    reviews: list[ReviewEntry] = field(default_factory=list)
    comments: list[CommentEntry] = field(default_factory=list)
    commits: list[CommitEntry] = field(default_factory=list)
