"""
LLM module - model client abstraction.

- base: request/response types and the ModelClient protocol
- litellm_adapter: litellm-backed client (any provider litellm supports)
"""

from hippo.llm.base import LLMConfig, LLMResponse, ModelClient

__all__ = ["LLMConfig", "LLMResponse", "ModelClient"]
