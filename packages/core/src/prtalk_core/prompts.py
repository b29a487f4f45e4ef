"""Prompt composition for the answer model.

build_prompt() is deterministic: the same question, classification, bundle,
history and enhancement always produce the same text. Context sections are
rendered only for categories present in the bundle, and category instruction
blocks only for the question's own category.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Callable, Sequence

from prtalk_core.types import ContextCategory, QueryCategory
from prtalk_store.models import SenderKind

if TYPE_CHECKING:
    from prtalk_core.types import Classification, ContextBundle
    from prtalk_store.models import Turn

SYSTEM_PROMPT = (
    "You are an expert assistant for GitHub pull requests. You answer questions using only the "
    "context you are given and reply with a single JSON object."
)

_BASE_INSTRUCTIONS = """**Instructions:**
1. Answer the question directly and accurately based on the provided context.
2. Reference concrete sources: file names, line numbers, people and exact quotes.
3. Be comprehensive yet concise; give actionable insights specific to this pull request.
4. If the context is incomplete, say what additional information would help."""

REPLY_CONTRACT = """**Response Format:**
Respond with ONLY a valid JSON object in this exact format:
{
  "answer": "Your detailed answer with specific references (file:line) and exact quotes",
  "message_type": "text|code|structured|formatted",
  "context_used": ["metadata", "files"],
  "followup_questions": ["Question 1?", "Question 2?", "Question 3?"],
  "confidence_score": 0.85,
  "sources": ["PR metadata", "File: path/to/file.py:45-67"]
}
Include at most 3 follow-up questions, each ending with a question mark."""


def _clip(text: str | None, limit: int) -> str:
    text = text or ""
    return text if len(text) <= limit else text[:limit] + "..."


def _join(items) -> str:
    return ", ".join(str(i) for i in items) if items else "none"


# --------------------------------------------------------------------------- #
# Context sections                                                              #
# --------------------------------------------------------------------------- #


def _metadata_section(data: dict) -> str:
    if "repository" in data and "recent_prs" in data:
        repo, stats = data["repository"], data["stats"]
        lines = [
            "**Repository Overview:**",
            f"- Repository: {repo['full_name']}",
            f"- Description: {_clip(repo.get('description'), 300)}",
            f"- Default Branch: {repo.get('default_branch')}",
            f"- Pull Requests: {stats['total_prs']} total, {stats['open_prs']} open, {stats['merged_prs']} merged",
            "- Recent Pull Requests:",
        ]
        lines += [f"  * #{p['pr_number']} {p['title']} [{p['state']}] by {p['author']}" for p in data["recent_prs"]]
        return "\n".join(lines)
    return "\n".join(
        [
            "**PR Metadata:**",
            f"- Title: {data.get('title')}",
            f"- Author: {data.get('author', {}).get('login')}",
            f"- State: {data.get('state')}{' (draft)' if data.get('draft') else ''}",
            f"- Description: {_clip(data.get('description'), 300)}",
            f"- Base Branch: {data.get('branches', {}).get('base', {}).get('ref')}",
            f"- Head Branch: {data.get('branches', {}).get('head', {}).get('ref')}",
            f"- Created: {data.get('dates', {}).get('created_at')}",
            f"- Merged: {data.get('dates', {}).get('merged_at') or 'not merged'}",
        ]
    )


def _summary_section(data: dict) -> str:
    return "\n".join(
        [
            "**AI Analysis Summary:**",
            f"- Overall Score: {data.get('overall_score')}/10",
            f"- Summary: {data.get('summary')}",
            f"- Issues Found: {_join(data.get('issues_found'))}",
            f"- Suggestions: {_join(data.get('suggestions'))}",
            f"- Test Recommendations: {_join(data.get('test_recommendations'))}",
            f"- Security Concerns: {_join(data.get('security_concerns'))}",
            f"- Performance Issues: {_join(data.get('performance_issues'))}",
        ]
    )


def _files_section(data: dict) -> str:
    lines = [f"**Files Changed ({data['total_files']} files):**"]
    for f in data["files"][:10]:
        lines.append(f"- {f['filename']} (+{f['additions']}/-{f['deletions']}) [{f['change_type']}]")
    for f in data["files"][:3]:
        if f.get("patch_preview"):
            lines.append(f"Patch preview for {f['filename']}:\n```diff\n{f['patch_preview']}\n```")
    return "\n".join(lines)


def _reviews_section(data: dict) -> str:
    lines = [f"**Reviews ({data['total_reviews']} reviews):**"]
    for r in data["reviews"][:5]:
        lines.append(f"- {r['reviewer']['login']}: {r['state']} - {_clip(r.get('body'), 100)}")
    return "\n".join(lines)


def _comments_section(data: dict) -> str:
    lines = [f"**Comments ({data['total_comments']} comments):**"]
    for c in data["comments"][:5]:
        where = f" on {c['path']}:{c['line']}" if c.get("path") else ""
        lines.append(f"- {c['author']['login']}{where}: {_clip(c.get('body'), 100)}")
    return "\n".join(lines)


def _commits_section(data: dict) -> str:
    lines = [f"**Commits ({data['total_commits']} commits):**"]
    for c in data["commits"][:10]:
        first_line = (c.get("message") or "").splitlines()[0] if c.get("message") else ""
        lines.append(f"- {c['sha'][:7]} {first_line} ({c['author']}, {c.get('committed_at')})")
    return "\n".join(lines)


def _security_section(data: dict) -> str:
    return "\n".join(
        [
            "**Security Analysis:**",
            f"- Security Score: {data['overall_security_score']}/10",
            f"- Concerns: {_join(data['security_concerns'])}",
            f"- Recommendations: {_join(data['recommendations'])}",
        ]
    )


def _performance_section(data: dict) -> str:
    return "\n".join(
        [
            "**Performance Analysis:**",
            f"- Performance Score: {data['performance_score']}/10",
            f"- Issues: {_join(data['performance_issues'])}",
            f"- Recommendations: {_join(data['recommendations'])}",
        ]
    )


SECTION_TEMPLATES: dict[ContextCategory, Callable[[dict], str]] = {
    ContextCategory.METADATA: _metadata_section,
    ContextCategory.AUTOMATED_SUMMARY: _summary_section,
    ContextCategory.FILES: _files_section,
    ContextCategory.REVIEWS: _reviews_section,
    ContextCategory.COMMENTS: _comments_section,
    ContextCategory.COMMITS: _commits_section,
    ContextCategory.SECURITY_ANALYSIS: _security_section,
    ContextCategory.PERFORMANCE_ANALYSIS: _performance_section,
}


def format_context(bundle: ContextBundle) -> str:
    if bundle.is_empty:
        return ""
    # Fixed section order regardless of fetch completion order.
    parts = [SECTION_TEMPLATES[c](bundle.get(c)) for c in ContextCategory if c in bundle]
    return "**Available Context:**\n\n" + "\n\n".join(parts)


def format_history(history: Sequence[Turn], turns: int = 5, chars: int = 200) -> str:
    recent = list(history)[-turns:] if turns else []
    if not recent:
        return ""
    lines = ["**Conversation History:**"]
    for turn in recent:
        role = "User" if turn.sender is SenderKind.ASKER else "Assistant"
        lines.append(f"{role}: {_clip(turn.content, chars)}")
    return "\n".join(lines)


# --------------------------------------------------------------------------- #
# Category instruction blocks                                                   #
# --------------------------------------------------------------------------- #


def _security_instructions(bundle: ContextBundle) -> str:
    lines = ["**Security Analysis Guidelines:**"]
    summary = bundle.get(ContextCategory.AUTOMATED_SUMMARY) or {}
    if summary.get("security_concerns"):
        lines.append(f"- Specific security concerns found: {', '.join(summary['security_concerns'])}")
        lines.append("- For each concern explain what it is, why it is risky and how to fix it.")
    lines.append("- Name the concrete files and lines involved and assign a severity (Critical/High/Medium/Low).")
    if ContextCategory.FILES in bundle:
        lines.append("- Examine authentication, authorization, input validation and data handling in changed files.")
        lines.append("- Look for injection, XSS, CSRF, hardcoded secrets, weak encryption or insecure configuration.")
    lines.append("- Give remediation steps with code examples where applicable.")
    return "\n".join(lines)


def _performance_instructions(bundle: ContextBundle) -> str:
    return "\n".join(
        [
            "**Performance Analysis Guidelines:**",
            "- Identify concrete bottlenecks and name the files and functions involved.",
            "- Estimate the impact (latency, memory, I/O) of each issue.",
            "- Suggest specific optimizations and any trade-offs they bring.",
        ]
    )


def _code_analysis_instructions(bundle: ContextBundle) -> str:
    lines = ["**Code Analysis Guidelines:**"]
    files = (bundle.get(ContextCategory.FILES) or {}).get("files", [])[:3]
    if files:
        lines.append("- Focus on these files with the most changes:")
        lines += [f"  * {f['filename']} (+{f['additions']}/-{f['deletions']} lines)" for f in files]
    lines += [
        "- For each significant change explain what the code does and why it changed.",
        "- Identify potential bugs, edge cases or logic issues.",
        "- Suggest improvements and reference specific functions, classes or code blocks.",
        "- Highlight breaking changes or API modifications.",
    ]
    return "\n".join(lines)


def _review_instructions(bundle: ContextBundle) -> str:
    return "\n".join(
        [
            "**Review Feedback Guidelines:**",
            "- Quote reviewer comments exactly and attribute them to their authors.",
            "- Separate requested changes from approvals and general remarks.",
            "- Point out review comments that still look unresolved.",
        ]
    )


def _test_instructions(bundle: ContextBundle) -> str:
    return "\n".join(
        [
            "**Test Guidance Guidelines:**",
            "- Recommend concrete test cases tied to the changed files.",
            "- Cover edge cases, failure paths and regressions the change could introduce.",
            "- Say which kind of test (unit, integration, end-to-end) fits each case.",
        ]
    )


def _timeline_instructions(bundle: ContextBundle) -> str:
    return "\n".join(
        [
            "**Timeline Guidelines:**",
            "- Give exact dates and order events chronologically.",
            "- Relate commits to the pull request's creation, update and merge dates.",
        ]
    )


CATEGORY_INSTRUCTIONS: dict[QueryCategory, Callable[[ContextBundle], str] | None] = {
    QueryCategory.SUMMARY: None,
    QueryCategory.CODE_ANALYSIS: _code_analysis_instructions,
    QueryCategory.REVIEW_FEEDBACK: _review_instructions,
    QueryCategory.SECURITY: _security_instructions,
    QueryCategory.PERFORMANCE: _performance_instructions,
    QueryCategory.TIMELINE: _timeline_instructions,
    QueryCategory.FILE_LISTING: None,
    QueryCategory.TEST_GUIDANCE: _test_instructions,
    QueryCategory.GENERAL: None,
}


def build_prompt(
    question: str,
    classification: Classification,
    bundle: ContextBundle,
    history: Sequence[Turn] = (),
    enhancement: str = "",
    history_turns: int = 5,
    history_chars: int = 200,
) -> str:
    instructions = CATEGORY_INSTRUCTIONS[classification.category]
    parts = [
        "Answer the user's question about the pull request based on the provided context.",
        f"**User Question:** {question}\n"
        f"**Query Type:** {classification.category.value}\n"
        f"**Confidence:** {classification.confidence:.2f}",
        format_context(bundle),
        format_history(history, history_turns, history_chars),
        enhancement.strip(),
        instructions(bundle) if instructions else "",
        _BASE_INSTRUCTIONS,
        REPLY_CONTRACT,
    ]
    return "\n\n".join(p for p in parts if p)
