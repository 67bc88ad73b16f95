"""
Core module - configuration, shared types, scheduling.

Components:
- config: Settings management via pydantic-settings
- types: Shared data structures (ChatMessage)
- scheduler: Background interval/daily task runner
- logging: Structured logging setup
"""

from hippo.core.config import Settings
from hippo.core.types import ChatMessage

__all__ = ["Settings", "ChatMessage"]
