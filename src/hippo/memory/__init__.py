"""
Memory module - tiered memory for a group-chat persona.

Layers:
- working: pending writes and session vibes (volatile)
- episodic: remembered events, recalled by similarity/recency/importance
- relational: one impression and closeness tier per person
- semantic: confidence-weighted facts, evolved by nightly distillation

Storage: SQLite
"""

from hippo.memory.service import MemoryService
from hippo.memory.types import MemoryContext, RecordSummary

__all__ = ["MemoryContext", "MemoryService", "RecordSummary"]
