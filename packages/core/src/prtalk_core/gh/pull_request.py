"""Build a PullRequestSnapshot from GitHub with PyGithub.

Only fields present in the list payloads are read, so a snapshot costs one
request per paginated collection rather than one per user or commit.
"""

from __future__ import annotations

import logging
import os

from github import Github

from prtalk_store.models import (
    CommentEntry,
    CommitEntry,
    FileChange,
    PullRequestRecord,
    PullRequestSnapshot,
    RepositoryRecord,
    ReviewEntry,
    UserRef,
)

logger = logging.getLogger(__name__)

_LANGUAGES = {
    ".py": "Python",
    ".js": "JavaScript",
    ".jsx": "JavaScript",
    ".ts": "TypeScript",
    ".tsx": "TypeScript",
    ".go": "Go",
    ".rs": "Rust",
    ".java": "Java",
    ".kt": "Kotlin",
    ".rb": "Ruby",
    ".php": "PHP",
    ".c": "C",
    ".h": "C",
    ".cpp": "C++",
    ".cs": "C#",
    ".swift": "Swift",
    ".scala": "Scala",
    ".sh": "Shell",
    ".sql": "SQL",
    ".html": "HTML",
    ".css": "CSS",
    ".scss": "SCSS",
    ".md": "Markdown",
    ".json": "JSON",
    ".yml": "YAML",
    ".yaml": "YAML",
    ".toml": "TOML",
}

_CHANGE_TYPES = {"added": "added", "removed": "removed", "renamed": "renamed"}


def get_repo(repo_name: str, token: str):
    return Github(token).get_repo(repo_name)


def get_pull(repo, pr_number: int):
    return repo.get_pull(pr_number)


def get_pull_requests(repo, state: str = "open"):
    return repo.get_pulls(state=state)


def detect_language(filename: str) -> str | None:
    _, ext = os.path.splitext(filename.lower())
    return _LANGUAGES.get(ext)


def _user(user) -> UserRef:
    if user is None:
        return UserRef(login="ghost")
    return UserRef(login=user.login, avatar_url=getattr(user, "avatar_url", None))


def _pull_state(pr) -> str:
    if pr.merged_at is not None:
        return "merged"
    return pr.state


def repository_record(repo) -> RepositoryRecord:
    return RepositoryRecord(
        owner=repo.owner.login,
        name=repo.name,
        description=repo.description,
        topics=list(repo.get_topics()),
        stars=repo.stargazers_count,
        forks=repo.forks_count,
        default_branch=repo.default_branch,
        is_private=repo.private,
    )


def pull_record(repo_name: str, pr) -> PullRequestRecord:
    return PullRequestRecord(
        repo=repo_name,
        number=pr.number,
        title=pr.title,
        author=_user(pr.user),
        body=pr.body,
        state=_pull_state(pr),
        draft=bool(pr.draft),
        mergeable=pr.mergeable,
        base_ref=pr.base.ref,
        base_sha=pr.base.sha,
        head_ref=pr.head.ref,
        head_sha=pr.head.sha,
        created_at=pr.created_at,
        updated_at=pr.updated_at,
        merged_at=pr.merged_at,
        closed_at=pr.closed_at,
    )


def file_change(f) -> FileChange:
    # GitHub omits the patch for binary files and for very large diffs.
    is_binary = f.patch is None and f.additions == 0 and f.deletions == 0
    return FileChange(
        filename=f.filename,
        change_type=_CHANGE_TYPES.get(f.status, "modified"),
        additions=f.additions,
        deletions=f.deletions,
        previous_filename=f.previous_filename,
        language=detect_language(f.filename),
        is_binary=is_binary,
        patch=f.patch,
    )


def review_entry(review) -> ReviewEntry:
    return ReviewEntry(
        review_id=str(review.id),
        reviewer=_user(review.user),
        state=review.state,
        body=review.body or "",
        submitted_at=review.submitted_at,
        commit_sha=review.commit_id,
    )


def review_comment_entry(comment) -> CommentEntry:
    return CommentEntry(
        comment_id=str(comment.id),
        author=_user(comment.user),
        body=comment.body or "",
        created_at=comment.created_at,
        updated_at=comment.updated_at,
        path=comment.path,
        line=comment.line,
        side=comment.side,
    )


def issue_comment_entry(comment) -> CommentEntry:
    return CommentEntry(
        comment_id=str(comment.id),
        author=_user(comment.user),
        body=comment.body or "",
        created_at=comment.created_at,
        updated_at=comment.updated_at,
    )


def commit_entry(commit) -> CommitEntry:
    git_author = commit.commit.author
    return CommitEntry(
        sha=commit.sha,
        message=commit.commit.message,
        author=git_author.name if git_author else "unknown",
        author_email=git_author.email if git_author else None,
        committed_at=git_author.date if git_author else None,
        author_login=commit.author.login if commit.author is not None else None,
    )


def build_snapshot(repo, pr) -> PullRequestSnapshot:
    """Everything prtalk serves about one PR, read from the PyGithub objects."""
    repo_name = repo.full_name
    logger.info("Fetching %s#%d from GitHub", repo_name, pr.number)
    comments = [review_comment_entry(c) for c in pr.get_review_comments()]
    comments += [issue_comment_entry(c) for c in pr.get_issue_comments()]
    snapshot = PullRequestSnapshot(
        pull=pull_record(repo_name, pr),
        repository=repository_record(repo),
        files=[file_change(f) for f in pr.get_files()],
        reviews=[review_entry(r) for r in pr.get_reviews()],
        comments=comments,
        commits=[commit_entry(c) for c in pr.get_commits()],
    )
    logger.debug(
        "%s#%d: %d files, %d reviews, %d comments, %d commits",
        repo_name,
        pr.number,
        len(snapshot.files),
        len(snapshot.reviews),
        len(snapshot.comments),
        len(snapshot.commits),
    )
    return snapshot
