"""Context aggregation for one question.

Only the categories a classification asks for are fetched. Each category has
its own fetcher, all fetchers run concurrently against the (synchronous) store
in worker threads, and a category that has no data, raises, or runs past
``fetcher_timeout`` is simply left out of the bundle. Nothing here writes.

Normalized sections are plain dicts with ISO-8601 dates so that the prompt
builder, the validator and the CLI can all read them without knowing the
store's dataclasses.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import asdict
from datetime import datetime
from typing import TYPE_CHECKING, Any, Callable

from prtalk_core.types import ContextBundle, ContextCategory, QueryCategory
from prtalk_store.models import ScopeKind

if TYPE_CHECKING:
    from prtalk_core.types import Classification
    from prtalk_store.base import BaseStore
    from prtalk_store.models import AutomatedSummary, Session

logger = logging.getLogger(__name__)

_SECURITY_KEYWORDS = ("security", "auth", "encrypt", "injection", "xss", "csrf", "secret", "vulnerab", "permission")
_PERFORMANCE_KEYWORDS = ("performance", "optimization", "optimisation", "efficiency", "slow", "memory", "latency")

_DERIVED_FOR: dict[QueryCategory, ContextCategory] = {
    QueryCategory.SECURITY: ContextCategory.SECURITY_ANALYSIS,
    QueryCategory.PERFORMANCE: ContextCategory.PERFORMANCE_ANALYSIS,
}


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _user(user) -> dict:
    return {"login": user.login, "name": user.name, "avatar_url": user.avatar_url}


def _matches_any(text: str, keywords: tuple[str, ...]) -> bool:
    lowered = text.lower()
    return any(k in lowered for k in keywords)


def concern_score(concerns: list[str]) -> int:
    """10 minus 3 per critical/high concern, 2 per medium, 1 otherwise; floored at 0."""
    score = 10
    for concern in concerns:
        lowered = concern.lower()
        if "critical" in lowered or "high" in lowered:
            score -= 3
        elif "medium" in lowered:
            score -= 2
        else:
            score -= 1
    return max(0, score)


def summary_to_dict(summary: AutomatedSummary) -> dict:
    data = asdict(summary)
    data["analysis_timestamp"] = _iso(summary.analysis_timestamp)
    return data


def truncate_patch(patch: str | None, limit: int) -> str | None:
    if patch is None:
        return None
    return patch if len(patch) <= limit else patch[:limit] + "..."


class ContextAggregator:
    def __init__(
        self,
        store: BaseStore,
        fetcher_timeout: float = 10.0,
        max_files: int = 50,
        patch_preview_chars: int = 1000,
        max_comments: int = 50,
    ):
        self.store = store
        self.fetcher_timeout = fetcher_timeout
        self.max_files = max_files
        self.patch_preview_chars = patch_preview_chars
        self.max_comments = max_comments
        # Exhaustive over RETRIEVED_CATEGORIES.
        self._fetchers: dict[ContextCategory, Callable[[Session, Classification], Any]] = {
            ContextCategory.METADATA: self._fetch_metadata,
            ContextCategory.AUTOMATED_SUMMARY: self._fetch_summary,
            ContextCategory.FILES: self._fetch_files,
            ContextCategory.REVIEWS: self._fetch_reviews,
            ContextCategory.COMMENTS: self._fetch_comments,
            ContextCategory.COMMITS: self._fetch_commits,
        }

    @classmethod
    def from_config(cls, store: BaseStore, config: dict) -> ContextAggregator:
        return cls(
            store,
            fetcher_timeout=config.get("fetcher_timeout", 10.0),
            max_files=config.get("max_files", 50),
            patch_preview_chars=config.get("patch_preview_chars", 1000),
            max_comments=config.get("max_comments", 50),
        )

    # ------------------------------------------------------------------ #
    # Public interface                                                     #
    # ------------------------------------------------------------------ #

    async def gather(self, classification: Classification, session: Session) -> tuple[ContextBundle, list[str]]:
        """Fetch the required categories concurrently and return (bundle, sources_used)."""
        categories = list(dict.fromkeys(classification.required_context))
        results = await asyncio.gather(
            *(self._run(category, session, classification) for category in categories),
            return_exceptions=True,
        )

        bundle = ContextBundle()
        for category, result in zip(categories, results):
            if isinstance(result, asyncio.CancelledError):
                raise result
            if isinstance(result, BaseException):
                logger.warning("Context fetcher %s failed: %r", category.value, result)
                continue
            bundle.set(category, result)

        derived = _DERIVED_FOR.get(classification.category)
        if derived is not None:
            summary = bundle.get(ContextCategory.AUTOMATED_SUMMARY)
            if summary is None and ContextCategory.AUTOMATED_SUMMARY not in categories:
                try:
                    summary = await self._run(ContextCategory.AUTOMATED_SUMMARY, session, classification)
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    logger.warning("Context fetcher %s failed: %r", ContextCategory.AUTOMATED_SUMMARY.value, e)
            if summary:
                bundle.set(derived, self._derive(derived, summary))

        sources = [c.value for c in bundle.categories()]
        logger.debug("Gathered %s for session %s", sources or "nothing", session.session_id)
        return bundle, sources

    # ------------------------------------------------------------------ #
    # Dispatch                                                             #
    # ------------------------------------------------------------------ #

    async def _run(self, category: ContextCategory, session: Session, classification: Classification) -> Any:
        fetcher = self._fetchers.get(category)
        if fetcher is None:
            raise KeyError(f"No fetcher for context category {category.value!r}")
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(fetcher, session, classification),
                timeout=self.fetcher_timeout,
            )
        except asyncio.TimeoutError:
            raise TimeoutError(f"{category.value} fetch exceeded {self.fetcher_timeout}s") from None

    # ------------------------------------------------------------------ #
    # Fetchers: run in worker threads                                     #
    # ------------------------------------------------------------------ #

    def _fetch_metadata(self, session: Session, classification: Classification) -> dict | None:
        if session.scope.kind is ScopeKind.COLLECTION:
            return self._repository_overview(session.scope.repo)

        pull = self.store.get_artifact_metadata(session.scope)
        if pull is None:
            return None
        return {
            "repo": pull.repo,
            "pr_number": pull.number,
            "title": pull.title,
            "description": pull.body,
            "state": pull.state,
            "draft": pull.draft,
            "mergeable": pull.mergeable,
            "author": _user(pull.author),
            "branches": {
                "base": {"ref": pull.base_ref, "sha": pull.base_sha},
                "head": {"ref": pull.head_ref, "sha": pull.head_sha},
            },
            "dates": {
                "created_at": _iso(pull.created_at),
                "updated_at": _iso(pull.updated_at),
                "merged_at": _iso(pull.merged_at),
                "closed_at": _iso(pull.closed_at),
            },
        }

    def _repository_overview(self, repo: str) -> dict | None:
        overview = self.store.get_repository_overview(repo)
        if overview is None:
            return None
        record = overview.repository
        return {
            "repository": {
                "name": record.name,
                "owner": record.owner,
                "full_name": record.full_name,
                "description": record.description,
                "topics": list(record.topics),
                "stars": record.stars,
                "forks": record.forks,
                "default_branch": record.default_branch,
                "is_private": record.is_private,
            },
            "recent_prs": [
                {
                    "pr_number": p.number,
                    "title": p.title,
                    "state": p.state,
                    "author": p.author.login,
                    "updated_at": _iso(p.updated_at),
                }
                for p in overview.recent_pulls
            ],
            "stats": {
                "total_prs": overview.total_pulls,
                "open_prs": overview.open_pulls,
                "merged_prs": overview.merged_pulls,
            },
        }

    def _fetch_summary(self, session: Session, classification: Classification) -> dict | None:
        summary = self.store.get_automated_summary(session.scope)
        if summary is None:
            return None
        return summary_to_dict(summary)

    def _fetch_files(self, session: Session, classification: Classification) -> dict | None:
        hints = list(classification.filters.file_names) if classification.filters else None
        files = self.store.get_files(session.scope, hints or None)
        if not files:
            return None
        # sorted() is stable, so equal-sized changes keep the store's order.
        ranked = sorted(files, key=lambda f: f.total_changes, reverse=True)[: self.max_files]
        return {
            "total_files": len(files),
            "files": [
                {
                    "filename": f.filename,
                    "previous_filename": f.previous_filename,
                    "change_type": f.change_type,
                    "additions": f.additions,
                    "deletions": f.deletions,
                    "total_changes": f.total_changes,
                    "language": f.language,
                    "is_binary": f.is_binary,
                    "patch_preview": truncate_patch(f.patch, self.patch_preview_chars),
                    "file_size": f.size_bytes,
                }
                for f in ranked
            ],
            "summary": {
                "total_additions": sum(f.additions for f in ranked),
                "total_deletions": sum(f.deletions for f in ranked),
                "languages": list(dict.fromkeys(f.language for f in ranked if f.language)),
                "change_types": list(dict.fromkeys(f.change_type for f in ranked)),
            },
        }

    def _fetch_reviews(self, session: Session, classification: Classification) -> dict | None:
        reviews = self.store.get_reviews(session.scope)
        if not reviews:
            return None
        return {
            "total_reviews": len(reviews),
            "reviews": [
                {
                    "id": r.review_id,
                    "reviewer": _user(r.reviewer),
                    "state": r.state,
                    "body": r.body,
                    "submitted_at": _iso(r.submitted_at),
                    "commit_sha": r.commit_sha,
                }
                for r in reviews
            ],
            "summary": {
                "approved_count": sum(1 for r in reviews if r.state == "APPROVED"),
                "changes_requested_count": sum(1 for r in reviews if r.state == "CHANGES_REQUESTED"),
                "commented_count": sum(1 for r in reviews if r.state == "COMMENTED"),
                "reviewers": list(dict.fromkeys(r.reviewer.login for r in reviews)),
            },
        }

    def _fetch_comments(self, session: Session, classification: Classification) -> dict | None:
        comments = self.store.get_comments(session.scope, limit=self.max_comments)
        if not comments:
            return None
        comments = comments[: self.max_comments]
        return {
            "total_comments": len(comments),
            "comments": [
                {
                    "id": c.comment_id,
                    "author": _user(c.author),
                    "body": c.body,
                    "created_at": _iso(c.created_at),
                    "updated_at": _iso(c.updated_at),
                    "path": c.path,
                    "line": c.line,
                    "side": c.side,
                }
                for c in comments
            ],
            "summary": {
                "commenters": list(dict.fromkeys(c.author.login for c in comments)),
                "file_specific_comments": sum(1 for c in comments if c.path),
                "general_comments": sum(1 for c in comments if not c.path),
            },
        }

    def _fetch_commits(self, session: Session, classification: Classification) -> dict | None:
        commits = self.store.get_commits(session.scope)
        if not commits:
            return None
        return {
            "total_commits": len(commits),
            "commits": [
                {
                    "sha": c.sha,
                    "message": c.message,
                    "author": c.author,
                    "author_email": c.author_email,
                    "committed_at": _iso(c.committed_at),
                    "additions": c.additions,
                    "deletions": c.deletions,
                    "verified": c.verified,
                    "author_login": c.author_login,
                }
                for c in commits
            ],
            "summary": {
                "total_additions": sum(c.additions for c in commits),
                "total_deletions": sum(c.deletions for c in commits),
                "authors": list(dict.fromkeys(c.author for c in commits)),
                "verified_commits": sum(1 for c in commits if c.verified),
            },
        }

    # ------------------------------------------------------------------ #
    # Derived categories                                                   #
    # ------------------------------------------------------------------ #

    @staticmethod
    def _derive(category: ContextCategory, summary: dict) -> dict:
        issues = summary.get("issues_found") or []
        suggestions = summary.get("suggestions") or []
        if category is ContextCategory.SECURITY_ANALYSIS:
            concerns = list(summary.get("security_concerns") or [])
            concerns += [i for i in issues if _matches_any(i, _SECURITY_KEYWORDS) and i not in concerns]
            return {
                "security_concerns": concerns,
                "overall_security_score": concern_score(concerns),
                "recommendations": [s for s in suggestions if _matches_any(s, _SECURITY_KEYWORDS)],
            }
        concerns = list(summary.get("performance_issues") or [])
        concerns += [i for i in issues if _matches_any(i, _PERFORMANCE_KEYWORDS) and i not in concerns]
        return {
            "performance_issues": concerns,
            "performance_score": concern_score(concerns),
            "recommendations": [s for s in suggestions if _matches_any(s, _PERFORMANCE_KEYWORDS)],
        }

