from __future__ import annotations

try:
    import openai as _openai
    from openai import AsyncOpenAI as _AsyncOpenAI
except ImportError:
    _openai = None  # type: ignore[assignment]
    _AsyncOpenAI = None  # type: ignore[assignment,misc]

from prtalk_core.errors import ModelCallError, ModelRateLimited, ModelTimeout
from prtalk_core.providers.base import BaseModelClient
from prtalk_core.types import CompletionOptions


class OpenAIClient(BaseModelClient):
    def __init__(self, api_key: str, request_timeout: float | None = None):
        if _AsyncOpenAI is None:
            raise ImportError(
                "The 'openai' package is required for this provider. " "Install it with: pip install openai"
            )
        super().__init__(request_timeout)
        # The SDK retries on its own by default; the orchestrator owns retries.
        self.client = _AsyncOpenAI(api_key=api_key, max_retries=0)

    async def _call_api(self, system_prompt: str, user_prompt: str, model: str, options: CompletionOptions) -> str:
        kwargs = {}
        if options.json_mode:
            kwargs["response_format"] = {"type": "json_object"}
        try:
            response = await self.client.chat.completions.create(
                model=model,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_prompt},
                ],
                temperature=options.temperature,
                max_tokens=options.max_tokens,
                **kwargs,
            )
        except _openai.RateLimitError as e:
            raise ModelRateLimited(str(e)) from e
        except _openai.APITimeoutError as e:
            raise ModelTimeout(str(e)) from e
        except _openai.APIError as e:
            raise ModelCallError(str(e)) from e
        return response.choices[0].message.content or ""
