"""Base model client implementing the Template Method pattern.

Every provider answers the same call:
    complete() → _call_api()   ← only this differs per provider
               → empty-reply check, request timeout

Subclasses implement two things only:
  - __init__: validate and store the SDK client
  - _call_api: make one raw API call and return the text response, translating
    the SDK's rate-limit and timeout errors into ModelRateLimited / ModelTimeout

Retries and the primary → secondary model fallback are not done here; they
belong to the orchestrator, which sees every attempt.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod

from prtalk_core.errors import ModelCallError, ModelTimeout
from prtalk_core.prompts import SYSTEM_PROMPT
from prtalk_core.types import CompletionOptions

logger = logging.getLogger(__name__)

_REQUEST_TIMEOUT = 60.0


class BaseModelClient(ABC):
    REQUEST_TIMEOUT: float = _REQUEST_TIMEOUT

    def __init__(self, request_timeout: float | None = None):
        self.request_timeout = request_timeout or self.REQUEST_TIMEOUT

    # ------------------------------------------------------------------ #
    # Public interface                                                     #
    # ------------------------------------------------------------------ #

    async def complete(self, prompt: str, model: str, options: CompletionOptions | None = None) -> str:
        """Run one completion and return the raw reply text.

        Raises ModelCallError (or a subclass) on any failure, including an
        empty reply. Never retries.
        """
        options = options or CompletionOptions()
        try:
            raw = await asyncio.wait_for(
                self._call_api(SYSTEM_PROMPT, prompt, model, options),
                timeout=self.request_timeout,
            )
        except asyncio.TimeoutError as e:
            raise ModelTimeout(f"{model} did not answer within {self.request_timeout}s") from e
        if not raw or not raw.strip():
            raise ModelCallError(f"{model} returned an empty reply")
        logger.debug("%s/%s replied with %d chars", self.__class__.__name__, model, len(raw))
        return raw

    # ------------------------------------------------------------------ #
    # Abstract: implement in each provider                               #
    # ------------------------------------------------------------------ #

    @abstractmethod
    async def _call_api(self, system_prompt: str, user_prompt: str, model: str, options: CompletionOptions) -> str:
        """Make a single API call and return the raw text response."""
