"""Episodic retrieval - similarity blended with recency and importance."""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime

from hippo.core.config import Settings
from hippo.core.logging import get_logger
from hippo.memory.base import RecordStore
from hippo.memory.embedding import Embedder, cosine_similarity
from hippo.memory.types import EpisodicMemory, Involvement, PendingEpisode
from hippo.memory.working import WorkingMemory

logger = get_logger("memory.retrieval")


@dataclass
class RetrievedMemory:
    summary: str
    event_time: datetime
    score: float
    similarity: float
    importance: float
    involvement: Involvement
    participants: list[str] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)
    episode_id: int | None = None  # None while still pending in working memory


def recency_weight(age_days: float, half_life_days: float) -> float:
    return 0.5 ** (max(0.0, age_days) / half_life_days)


def score_memory(
    similarity: float,
    age_days: float,
    importance: float,
    tag_hit: bool,
    shared_participants: int,
    settings: Settings,
) -> float:
    score = (
        settings.weight_similarity * similarity
        + settings.weight_recency * recency_weight(age_days, settings.recency_half_life_days)
        + settings.weight_importance * importance
    )
    if tag_hit:
        score += settings.tag_boost
    return score + settings.participant_boost * shared_participants


class EpisodicRetriever:
    """Ranks durable and pending episodes against a query."""

    def __init__(
        self,
        store: RecordStore,
        embedder: Embedder,
        settings: Settings,
        working: WorkingMemory | None = None,
    ):
        self.store = store
        self.embedder = embedder
        self.settings = settings
        self.working = working
        self._background: set[asyncio.Task] = set()

    async def retrieve(
        self,
        community_id: str,
        query_text: str,
        participant_ids: list[str],
        top_k: int = 5,
        exclude_after: datetime | None = None,
        now: datetime | None = None,
    ) -> list[RetrievedMemory]:
        if not query_text.strip():
            return []
        now = now or datetime.now()

        try:
            query = await self.embedder.embed(query_text)
        except Exception as e:
            logger.warning(f"Query embedding failed: {e}")
            return []

        candidates: list[EpisodicMemory | PendingEpisode] = []
        try:
            candidates.extend(await self.store.get_episodes(community_id, archived=False))
        except Exception as e:
            logger.warning(f"Loading episodes for {community_id} failed: {e}")
        if self.working:
            candidates.extend(self.working.get_pending_episodes(community_id))

        query_lower = query_text.lower()
        participants = set(participant_ids)
        ranked: list[RetrievedMemory] = []
        for episode in candidates:
            if not episode.embedding:
                continue
            if exclude_after is not None and episode.event_time >= exclude_after:
                continue

            similarity = cosine_similarity(query, episode.embedding)
            age_days = (now - episode.event_time).total_seconds() / 86400
            tag_hit = any(tag and tag.lower() in query_lower for tag in episode.tags)
            shared = len(participants.intersection(episode.participants))
            ranked.append(
                RetrievedMemory(
                    summary=episode.summary,
                    event_time=episode.event_time,
                    score=score_memory(
                        similarity, age_days, episode.importance, tag_hit, shared, self.settings
                    ),
                    similarity=similarity,
                    importance=episode.importance,
                    involvement=episode.involvement,
                    participants=list(episode.participants),
                    tags=list(episode.tags),
                    episode_id=getattr(episode, "id", None),
                )
            )

        ranked.sort(key=lambda m: m.score, reverse=True)
        top = ranked[:top_k]

        if self.settings.track_access:
            ids = [m.episode_id for m in top if m.episode_id is not None]
            if ids:
                task = asyncio.create_task(self._bump_access(ids, now))
                self._background.add(task)
                task.add_done_callback(self._background.discard)

        return top

    async def _bump_access(self, episode_ids: list[int], when: datetime) -> None:
        try:
            await self.store.increment_access(episode_ids, when)
        except Exception as e:
            logger.warning(f"Access tracking failed: {e}")
