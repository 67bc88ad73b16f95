"""LiteLLM adapter - one client for every provider litellm can reach."""

import litellm
from litellm import acompletion

from hippo.core.config import Settings
from hippo.core.logging import get_logger
from hippo.core.typing import MessageDict
from hippo.llm.base import LLMConfig, LLMResponse

logger = get_logger("llm.litellm_adapter")

# Disable LiteLLM's verbose logging
litellm.suppress_debug_info = True


class LiteLLMProvider:
    """ModelClient backed by litellm.acompletion."""

    def __init__(
        self,
        model: str,
        api_key: str | None = None,
        api_base: str | None = None,
    ):
        self.model = model
        self.api_key = api_key or None
        self.api_base = api_base or None

    @classmethod
    def from_settings(cls, settings: Settings) -> "LiteLLMProvider":
        return cls(
            model=settings.llm_model,
            api_key=settings.llm_api_key,
            api_base=settings.llm_api_base,
        )

    async def complete(
        self,
        messages: list[MessageDict],
        config: LLMConfig,
    ) -> LLMResponse:
        """Call litellm completion.

        Errors propagate; memory components catch them at their own
        boundary and treat the call as "no update".
        """
        model = config.model or self.model
        params = {
            "model": model,
            "messages": messages,
            "max_tokens": config.max_tokens,
            "temperature": config.temperature,
        }
        if self.api_key:
            params["api_key"] = self.api_key
        if self.api_base:
            params["api_base"] = self.api_base
        if config.json_mode:
            params["response_format"] = {"type": "json_object"}

        logger.debug(f"LiteLLM request: model={model}, messages={len(messages)}")

        try:
            response = await acompletion(**params)
        except Exception as e:
            logger.error(f"LiteLLM error for {model}: {e}")
            raise

        message = response.choices[0].message
        usage = getattr(response, "usage", None)
        input_tokens = usage.prompt_tokens if usage else 0
        output_tokens = usage.completion_tokens if usage else 0

        logger.debug(
            f"LiteLLM response: model={response.model}, "
            f"tokens={input_tokens}+{output_tokens}"
        )

        return LLMResponse(
            content=message.content or "",
            model=response.model or model,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
        )
