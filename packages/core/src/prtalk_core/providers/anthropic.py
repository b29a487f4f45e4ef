from __future__ import annotations

from prtalk_core.errors import ModelCallError, ModelRateLimited, ModelTimeout
from prtalk_core.providers.base import BaseModelClient
from prtalk_core.types import CompletionOptions


class AnthropicClient(BaseModelClient):
    def __init__(self, api_key: str, request_timeout: float | None = None):
        try:
            from anthropic import AsyncAnthropic
        except ImportError:
            raise ImportError(
                "The 'anthropic' package is required for this provider. "
                "Install it with: pip install anthropic"
            )
        super().__init__(request_timeout)
        self.client = AsyncAnthropic(api_key=api_key, max_retries=0)

    async def _call_api(self, system_prompt: str, user_prompt: str, model: str, options: CompletionOptions) -> str:
        # Imported inside the method because the anthropic package is optional;
        # __init__ already validated it is installed before we reach here.
        import anthropic
        from anthropic.types import TextBlock

        # No native JSON mode: the prompt's reply contract asks for JSON.
        try:
            response = await self.client.messages.create(
                model=model,
                system=system_prompt,
                messages=[{"role": "user", "content": user_prompt}],
                temperature=options.temperature,
                max_tokens=options.max_tokens,
            )
        except anthropic.RateLimitError as e:
            raise ModelRateLimited(str(e)) from e
        except anthropic.APITimeoutError as e:
            raise ModelTimeout(str(e)) from e
        except anthropic.APIError as e:
            raise ModelCallError(str(e)) from e
        text_blocks = [block.text for block in response.content if isinstance(block, TextBlock)]
        return "".join(text_blocks).strip()
