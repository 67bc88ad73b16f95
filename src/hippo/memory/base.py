"""
Record store interface.

Three collections: episodes, relations, facts. Each supports filtered reads,
single-row creation and partial updates. No multi-row transaction is
assumed; callers write one row at a time.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any

from hippo.memory.types import EpisodicMemory, RelationalMemory, SemanticFact


class RecordStore(ABC):
    """Abstract durable storage for memory records."""

    # Episodes

    @abstractmethod
    async def create_episode(self, episode: EpisodicMemory) -> int:
        """Store episode, return ID."""
        ...

    @abstractmethod
    async def get_episode(self, episode_id: int) -> EpisodicMemory | None:
        """Get episode by ID, archived or not."""
        ...

    @abstractmethod
    async def get_episodes(
        self,
        community_id: str | None = None,
        archived: bool | None = False,
        since: datetime | None = None,
        distilled: bool | None = None,
    ) -> list[EpisodicMemory]:
        """Filtered episode query. None means "don't filter on this"."""
        ...

    @abstractmethod
    async def update_episode(self, episode_id: int, **fields: Any) -> bool:
        """Partial update of one episode."""
        ...

    @abstractmethod
    async def count_episodes(self, community_id: str, archived: bool = False) -> int:
        """Count episodes of a community."""
        ...

    @abstractmethod
    async def increment_access(self, episode_ids: list[int], when: datetime) -> None:
        """Bump access_count and last_accessed for the given episodes."""
        ...

    # Relations

    @abstractmethod
    async def create_relation(self, relation: RelationalMemory) -> int:
        ...

    @abstractmethod
    async def get_relation(self, community_id: str, person_id: str) -> RelationalMemory | None:
        ...

    @abstractmethod
    async def get_relations(self, community_id: str | None = None) -> list[RelationalMemory]:
        ...

    @abstractmethod
    async def update_relation(self, relation_id: int, **fields: Any) -> bool:
        ...

    async def community_ids(self) -> list[str]:
        """Communities that have relational history."""
        relations = await self.get_relations()
        return sorted({r.community_id for r in relations})

    # Facts

    @abstractmethod
    async def create_fact(self, fact: SemanticFact) -> int:
        ...

    @abstractmethod
    async def get_fact(self, fact_id: int) -> SemanticFact | None:
        ...

    @abstractmethod
    async def get_facts(
        self,
        community_id: str,
        subject: str | None = None,
        include_superseded: bool = False,
    ) -> list[SemanticFact]:
        """Facts of a community; superseded facts only when asked for."""
        ...

    @abstractmethod
    async def update_fact(self, fact_id: int, **fields: Any) -> bool:
        ...
