"""
Shared type definitions.

Messages arrive already normalized by the host's ingestion pipeline; this is
the shape the memory subsystem reads.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any


@dataclass
class ChatMessage:
    """One normalized group-chat message."""

    id: str
    sender_id: str
    sender_name: str
    text: str
    timestamp: datetime
    is_persona: bool = False  # sent by the persona itself
    mentions: list[str] = field(default_factory=list)  # mentioned participant ids
    reply_to_persona: bool = False
    metadata: dict[str, Any] = field(default_factory=dict)

    def render(self, persona_id: str, persona_name: str) -> str:
        """Render as a transcript line: id[name](HH:MM): text."""
        time = self.timestamp.strftime("%H:%M")
        if self.is_persona:
            return f"{persona_id}[{persona_name}]({time}): {self.text}"
        return f"{self.sender_id}[{self.sender_name}]({time}): {self.text}"
