"""Model orchestration: prompt → model call with retry and fallback → parsed answer.

Call policy:
    primary model, attempts 1..N   (wait backoff*1, backoff*2, ... after each failure)
    secondary model, attempts 1..N (same waits, none after the very last failure)
    → ModelUnavailable carrying the last error

The loop is explicit and the waits go through an injectable coroutine
(asyncio.sleep by default), so a cancelled request stops mid-backoff.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
from typing import TYPE_CHECKING, Awaitable, Callable, Sequence

from prtalk_core.conversation import DEFAULT_FOLLOWUPS
from prtalk_core.errors import ModelUnavailable
from prtalk_core.prompts import build_prompt
from prtalk_core.types import CompletionOptions, ModelAnswer
from prtalk_store.models import ContentKind

if TYPE_CHECKING:
    from prtalk_core.conversation import ConversationStateTracker
    from prtalk_core.providers.base import BaseModelClient
    from prtalk_core.types import Classification, ContextBundle
    from prtalk_store.models import Turn

logger = logging.getLogger(__name__)

_CONTENT_KIND_ALIASES = {
    "text": ContentKind.TEXT,
    "code": ContentKind.CODE,
    "structured": ContentKind.STRUCTURED,
    "json": ContentKind.STRUCTURED,
    "formatted": ContentKind.FORMATTED,
    "markdown": ContentKind.FORMATTED,
}

_GENERIC_FOLLOWUP_RES = tuple(
    re.compile(p, re.IGNORECASE)
    for p in (r"what.*specific", r"are there any", r"could you", r"would you like", r"what else", r"anything else")
)

_UNPARSED_CONFIDENCE = 0.3
_MAX_FOLLOWUPS = 3


def get_model_client(config: dict) -> BaseModelClient:
    provider = config.get("provider", "openai")
    timeout = config.get("request_timeout")
    if provider == "anthropic":
        from prtalk_core.providers.anthropic import AnthropicClient

        return AnthropicClient(api_key=config["anthropic_api_key"], request_timeout=timeout)
    if provider == "openai":
        from prtalk_core.providers.openai import OpenAIClient

        return OpenAIClient(api_key=config["openai_api_key"], request_timeout=timeout)
    raise ValueError(f"Unknown model provider: {provider!r}. Choose 'anthropic' or 'openai'.")


class ModelOrchestrator:
    def __init__(
        self,
        client: BaseModelClient,
        primary_model: str,
        secondary_model: str | None = None,
        tracker: ConversationStateTracker | None = None,
        options: CompletionOptions | None = None,
        max_attempts: int = 3,
        backoff_seconds: float = 1.0,
        history_turns: int = 5,
        history_chars: int = 200,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.client = client
        self.primary_model = primary_model
        self.secondary_model = secondary_model
        self.tracker = tracker
        self.options = options or CompletionOptions()
        self.max_attempts = max_attempts
        self.backoff_seconds = backoff_seconds
        self.history_turns = history_turns
        self.history_chars = history_chars
        self._sleep = sleep

    # ------------------------------------------------------------------ #
    # Public interface                                                     #
    # ------------------------------------------------------------------ #

    async def answer(
        self,
        question: str,
        classification: Classification,
        bundle: ContextBundle,
        session_id: str | None = None,
        history: Sequence[Turn] = (),
    ) -> ModelAnswer:
        """Compose the prompt, call the models and return the parsed answer.

        Raises ModelUnavailable when every attempt on both models failed.
        """
        enhancement = ""
        if self.tracker is not None and session_id is not None:
            enhancement = await self.tracker.prompt_enhancement(session_id, question)
        prompt = build_prompt(
            question,
            classification,
            bundle,
            history=history,
            enhancement=enhancement,
            history_turns=self.history_turns,
            history_chars=self.history_chars,
        )
        raw = await self.complete_with_fallback(prompt)
        answer = parse_answer(raw)
        answer.followups = await self._followups(answer.followups, classification, bundle, session_id)
        return answer

    async def complete_with_fallback(self, prompt: str) -> str:
        models = [self.primary_model]
        if self.secondary_model and self.secondary_model != self.primary_model:
            models.append(self.secondary_model)
        plan = [(model, attempt) for model in models for attempt in range(1, self.max_attempts + 1)]

        last_error: Exception | None = None
        for index, (model, attempt) in enumerate(plan):
            try:
                return await self.client.complete(prompt, model, self.options)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                last_error = e
                if index == len(plan) - 1:
                    break
                delay = self.backoff_seconds * attempt
                logger.warning(
                    "%s error (attempt %d/%d): %s. Retrying in %.1fs...",
                    model,
                    attempt,
                    self.max_attempts,
                    e,
                    delay,
                )
                await self._sleep(delay)

        logger.error("All models failed after %d calls: %s", len(plan), last_error)
        raise ModelUnavailable(f"{', '.join(models)} unavailable", last_error=last_error)

    # ------------------------------------------------------------------ #
    # Follow-ups                                                           #
    # ------------------------------------------------------------------ #

    async def _followups(
        self,
        followups: list[str],
        classification: Classification,
        bundle: ContextBundle,
        session_id: str | None,
    ) -> list[str]:
        if followups and not are_generic(followups):
            return followups[:_MAX_FOLLOWUPS]
        if self.tracker is not None and session_id is not None:
            adaptive = await self.tracker.adaptive_followups(session_id, classification.category, bundle)
            if adaptive:
                return adaptive[:_MAX_FOLLOWUPS]
        return list(DEFAULT_FOLLOWUPS[classification.category])


def are_generic(followups: Sequence[str]) -> bool:
    return all(any(p.search(f) for p in _GENERIC_FOLLOWUP_RES) for f in followups)


def _strip_fence(raw: str) -> str:
    # Only the outer ```json ... ``` fence, not backticks inside string values.
    cleaned = re.sub(r"^```(?:json)?\s*", "", raw.strip())
    return re.sub(r"\s*```$", "", cleaned.strip())


def _str_list(value, limit: int | None = None) -> list[str]:
    if not isinstance(value, list):
        return []
    items = [v for v in value if isinstance(v, str) and v.strip()]
    return items[:limit] if limit is not None else items


def parse_answer(raw: str) -> ModelAnswer:
    """Parse a model reply into a ModelAnswer, defaulting anything missing or malformed.

    A reply that is not a JSON object is kept as a plain-text answer with low
    confidence.
    """
    try:
        parsed = json.loads(_strip_fence(raw))
    except json.JSONDecodeError:
        parsed = None
    if not isinstance(parsed, dict):
        logger.warning("Model reply is not a JSON object: %s", raw[:200])
        return ModelAnswer(answer=raw.strip(), confidence=_UNPARSED_CONFIDENCE)

    kind = _CONTENT_KIND_ALIASES.get(str(parsed.get("message_type", "")).lower(), ContentKind.TEXT)

    answer = parsed.get("answer")
    if isinstance(answer, dict) and kind is ContentKind.STRUCTURED:
        pass
    elif isinstance(answer, (dict, list)):
        answer = json.dumps(answer, indent=2)
    elif answer is None:
        answer = ""
    else:
        answer = str(answer)

    confidence = parsed.get("confidence_score")
    if isinstance(confidence, (int, float)) and not isinstance(confidence, bool):
        confidence = max(0.0, min(1.0, float(confidence)))
    else:
        confidence = 0.5

    return ModelAnswer(
        answer=answer,
        content_kind=kind,
        context_used=_str_list(parsed.get("context_used")),
        followups=_str_list(parsed.get("followup_questions"), _MAX_FOLLOWUPS),
        confidence=confidence,
        sources=_str_list(parsed.get("sources")),
    )
