"""
LLM client interface.
"""

from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from hippo.core.typing import MessageDict


@dataclass
class LLMResponse:
    """Response from a model call."""

    content: str
    model: str
    input_tokens: int = 0
    output_tokens: int = 0
    metadata: dict | None = None


@dataclass
class LLMConfig:
    """Configuration for one model call."""

    model: str | None = None  # None = client default
    max_tokens: int = 1024
    temperature: float = 0.3
    json_mode: bool = False  # ask the provider for a JSON object


@runtime_checkable
class ModelClient(Protocol):
    """Anything that turns chat messages into a completion."""

    async def complete(
        self,
        messages: list[MessageDict],
        config: LLMConfig,
    ) -> LLMResponse:
        """Generate completion from messages."""
        ...
