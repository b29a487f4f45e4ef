"""Heuristic checks on a model answer before it is delivered.

Structural problems, empty or apology-only answers and a hallucination score
above the threshold make an answer invalid. Low relevance, follow-ups that are
not questions and context categories the answer claims but never received are
reported as issues only.

The hallucination and relevance scorers are plain callables so they can be
tested alone and replaced.
"""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING, Any, Callable, Iterator

from prtalk_core.scoring import extract_keywords, supported_by
from prtalk_core.types import Evaluation
from prtalk_store.models import ContentKind

if TYPE_CHECKING:
    from prtalk_core.types import ContextBundle, ModelAnswer

logger = logging.getLogger(__name__)

_CLAIM_RES = (
    re.compile(r"the file ([\w./-]+\.\w+) (contains|has|shows)", re.IGNORECASE),
    re.compile(r"there are (\d+) (files|issues|problems)", re.IGNORECASE),
    re.compile(r"the (author|reviewer) is @?([\w-]+)", re.IGNORECASE),
    re.compile(r"this pr (adds|removes|modifies|fixes)", re.IGNORECASE),
)
# Words every match of a claim pattern contains; only the rest has to be backed by context.
_CLAIM_FIXED_WORDS = frozenset(
    {
        "file", "contains", "shows", "files", "issues", "problems",
        "author", "reviewer", "adds", "removes", "modifies", "fixes",
    }
)  # fmt: skip
_FILE_TERM_RE = re.compile(r"\b[\w./-]*\w\.(js|ts|py|java|cpp|c|h|css|html|json|xml|yml|yaml|md)\b", re.IGNORECASE)
_CODE_TERM_RE = re.compile(r"\b(?:function|class|method|variable|constant|import|export)\s+(\w+)", re.IGNORECASE)
_DOMAIN_TERM_RE = re.compile(r"\b(API|endpoint|route|service|controller|middleware)\b", re.IGNORECASE)

_MEANINGLESS_RES = (
    re.compile(r"^(sorry|apologi[sz]e|unable|can't|cannot)\b", re.IGNORECASE),
    re.compile(r"^(i don't|i do not|i'm not sure|i cannot determine)", re.IGNORECASE),
    re.compile(r"^(no information|no data|not available)", re.IGNORECASE),
)
# Words that pad an apology without saying anything about the pull request.
_APOLOGY_FILLER = frozenset(
    {
        "sorry", "unable", "cannot", "not", "don", "know", "sure", "see", "help",
        "answer", "question", "determine", "find", "enough", "information",
        "data", "available", "provided", "context", "from",
    }
)  # fmt: skip
MIN_GROUNDED_KEYWORDS = 2
MIN_SUBSTANTIVE_KEYWORDS = 3


def flatten_context(bundle: ContextBundle | None) -> str:
    """Every string and number in the bundle, space-joined and lower-cased."""
    if bundle is None:
        return ""

    def walk(value: Any) -> Iterator[str]:
        if isinstance(value, dict):
            for v in value.values():
                yield from walk(v)
        elif isinstance(value, (list, tuple, set)):
            for v in value:
                yield from walk(v)
        elif isinstance(value, bool) or value is None:
            return
        elif isinstance(value, (str, int, float)):
            yield str(value)

    return " ".join(walk(bundle.sections)).lower()


def extract_claims(text: str) -> list[str]:
    return [m.group(0) for pattern in _CLAIM_RES for m in pattern.finditer(text)]


def _claim_subject(claim: str) -> str:
    return " ".join(w for w in extract_keywords(claim) if w not in _CLAIM_FIXED_WORDS)


def extract_terms(text: str) -> list[str]:
    terms = [m.group(0) for m in _FILE_TERM_RE.finditer(text)]
    # For code constructs only the identifier has to be found in the context.
    terms += [m.group(1) for m in _CODE_TERM_RE.finditer(text)]
    terms += [m.group(0) for m in _DOMAIN_TERM_RE.finditer(text)]
    return terms


def hallucination_score(answer_text: str, context_text: str) -> float:
    """Share of factual claims or technical terms not backed by the context.

    0.5 when there is nothing to compare.
    """
    if not answer_text.strip() or not context_text.strip():
        return 0.5
    context_keywords = set(extract_keywords(context_text))

    score = 0.0
    claims = extract_claims(answer_text)
    if claims:
        unsupported = sum(1 for c in claims if not supported_by(_claim_subject(c), context_keywords))
        score = unsupported / len(claims)

    terms = extract_terms(answer_text)
    if terms:
        unsupported = sum(1 for t in terms if not supported_by(t, context_keywords))
        score = max(score, unsupported / len(terms))
    return min(1.0, score)


def _query_intent(question: str) -> str:
    q = question.lower()
    if "what" in q or "which" in q:
        return "information"
    if "how" in q or "why" in q:
        return "explanation"
    if "show" in q or "display" in q:
        return "display"
    if "list" in q or "find" in q:
        return "listing"
    return "general"


def _answer_intent(answer: str) -> str:
    a = answer.lower()
    if "here is" in a or "the following" in a:
        return "listing"
    if "because" in a or "due to" in a:
        return "explanation"
    if "shows" in a or "displays" in a:
        return "display"
    return "information"


def relevance_score(question: str, answer_text: str) -> float:
    """0.4 keyword overlap + 0.4 intent match + 0.2 first-sentence echo."""
    question_words = extract_keywords(question)
    answer_words = set(extract_keywords(answer_text))
    if not question_words or not answer_words:
        return 0.0
    overlap = sum(1 for w in question_words if w in answer_words) / len(question_words)
    intent = 1.0 if _query_intent(question) == _answer_intent(answer_text) else 0.5
    first_sentence = answer_text.split(".")[0].lower()
    echo = sum(1 for w in question_words if w in first_sentence) / len(question_words)
    return min(1.0, 0.4 * overlap + 0.4 * intent + 0.2 * echo)


def is_meaningless(text: str, context_text: str = "") -> bool:
    """True for an empty answer, or an apology opener with nothing substantive after it.

    What follows the opener counts as substantive when at least
    MIN_GROUNDED_KEYWORDS of its keywords occur in the context, or, without
    context, when it has MIN_SUBSTANTIVE_KEYWORDS keywords at all.
    """
    stripped = text.strip()
    if not stripped:
        return True
    for pattern in _MEANINGLESS_RES:
        match = pattern.search(stripped)
        if match:
            break
    else:
        return False

    words = [w for w in extract_keywords(stripped[match.end() :]) if w not in _APOLOGY_FILLER]
    if context_text:
        known = set(extract_keywords(context_text))
        return sum(1 for w in words if w in known) < MIN_GROUNDED_KEYWORDS
    return len(words) < MIN_SUBSTANTIVE_KEYWORDS


class ResponseValidator:
    def __init__(
        self,
        hallucination_threshold: float = 0.7,
        relevance_threshold: float = 0.3,
        hallucination_scorer: Callable[[str, str], float] = hallucination_score,
        relevance_scorer: Callable[[str, str], float] = relevance_score,
    ):
        self.hallucination_threshold = hallucination_threshold
        self.relevance_threshold = relevance_threshold
        self.hallucination_scorer = hallucination_scorer
        self.relevance_scorer = relevance_scorer

    def evaluate(self, question: str, answer: ModelAnswer, bundle: ContextBundle) -> Evaluation:
        try:
            return self._evaluate(question, answer, bundle)
        except Exception:
            logger.exception("Response evaluation failed")
            return Evaluation(
                valid=False,
                hallucination_score=1.0,
                relevance_score=0.0,
                issues=["Evaluation process failed"],
            )

    def _evaluate(self, question: str, answer: ModelAnswer, bundle: ContextBundle) -> Evaluation:
        issues = _structural_issues(answer)
        valid = not issues

        text = answer.text if isinstance(answer.answer, (str, dict)) else ""

        context_text = flatten_context(bundle)
        hallucination = self.hallucination_scorer(text, context_text)
        if hallucination > self.hallucination_threshold:
            valid = False
            issues.append("High hallucination detected - response contains information not in context")

        relevance = self.relevance_scorer(question, text)
        if relevance < self.relevance_threshold:
            issues.append("Low relevance - response does not address the query adequately")

        if is_meaningless(text, context_text):
            valid = False
            issues.append("Empty or meaningless response")

        if isinstance(answer.followups, list) and not all(
            isinstance(f, str) and f.strip() and "?" in f for f in answer.followups
        ):
            issues.append("Invalid or inappropriate followup questions")

        if isinstance(answer.context_used, list):
            available = {c.value for c in bundle.categories()} if bundle else set()
            missing = [c for c in answer.context_used if c not in available]
            if missing:
                issues.append(f"Context usage mismatch - claimed context not available: {', '.join(map(str, missing))}")

        logger.debug(
            "Evaluation: valid=%s hallucination=%.2f relevance=%.2f issues=%d",
            valid,
            hallucination,
            relevance,
            len(issues),
        )
        return Evaluation(valid=valid, hallucination_score=hallucination, relevance_score=relevance, issues=issues)


def _structural_issues(answer: ModelAnswer) -> list[str]:
    issues = []
    if isinstance(answer.answer, dict):
        if answer.content_kind is not ContentKind.STRUCTURED:
            issues.append("Structured answer requires the structured content kind")
    elif not isinstance(answer.answer, str) or not answer.answer.strip():
        issues.append("Missing or invalid answer field")
    if not isinstance(answer.content_kind, ContentKind):
        issues.append("Missing or invalid content kind")
    for name in ("context_used", "followups", "sources"):
        if not isinstance(getattr(answer, name), list):
            issues.append(f"{name} must be a list")
    confidence = answer.confidence
    if not isinstance(confidence, (int, float)) or isinstance(confidence, bool):
        issues.append("confidence must be a number")
    elif not 0 <= confidence <= 1:
        issues.append("Invalid confidence score - must be between 0 and 1")
    return issues
