"""
Working memory - the write buffer in front of durable storage.

Accepted episodes and relational updates queue per community and are written
one row at a time on flush. Flushes are debounced: every ingest re-arms the
timer, and a full queue flushes right away. Session vibes live only here.
"""

import asyncio
import contextlib
from datetime import datetime, timedelta

from hippo.core.config import Settings
from hippo.core.logging import get_logger
from hippo.memory.base import RecordStore
from hippo.memory.embedding import Embedder, cosine_similarity
from hippo.memory.relational import RelationalWriter
from hippo.memory.types import (
    ExtractionResult,
    PendingEpisode,
    PendingRelationalUpdate,
    SessionVibe,
    SignificantEvent,
)

logger = get_logger("memory.working")


class WorkingMemory:
    """In-process buffer of not-yet-durable memories."""

    def __init__(
        self,
        store: RecordStore,
        embedder: Embedder,
        relational: RelationalWriter,
        settings: Settings,
    ):
        self.store = store
        self.embedder = embedder
        self.relational = relational
        self.settings = settings

        self._episodes: dict[str, list[PendingEpisode]] = {}
        self._updates: dict[str, list[PendingRelationalUpdate]] = {}
        self._vibes: dict[str, dict[str, SessionVibe]] = {}
        self._timer: asyncio.Task | None = None
        self._flushing = False
        self._closed = False

    @property
    def pending_count(self) -> int:
        episodes = sum(len(q) for q in self._episodes.values())
        updates = sum(len(q) for q in self._updates.values())
        return episodes + updates

    async def ingest(
        self,
        community_id: str,
        result: ExtractionResult,
        now: datetime | None = None,
    ) -> int:
        """Queue what an extraction produced. Returns accepted episode count."""
        now = now or datetime.now()
        accepted = await self._accept_episodes(community_id, result, now)

        for observation in result.observations:
            self._updates.setdefault(community_id, []).append(
                PendingRelationalUpdate(
                    community_id=community_id,
                    person_id=observation.person_id,
                    display_name=observation.display_name,
                    event=SignificantEvent(
                        timestamp=now,
                        description=observation.observation,
                        emotional_tone=observation.emotional_tone,
                        importance=observation.importance,
                    ),
                )
            )

        for signal in result.vibes:
            hours = signal.ttl_hours
            if hours is None or hours <= 0:
                hours = self.settings.vibe_default_hours
            hours = min(hours, self.settings.vibe_max_hours)
            self._vibes.setdefault(community_id, {})[signal.person_id] = SessionVibe(
                person_id=signal.person_id,
                vibe=signal.vibe,
                expires_at=now + timedelta(hours=hours),
            )

        if self.pending_count >= self.settings.max_pending_writes:
            logger.debug(f"{self.pending_count} pending writes, flushing now")
            await self.flush()
        elif self.pending_count:
            self._arm_timer()

        return accepted

    async def _accept_episodes(
        self, community_id: str, result: ExtractionResult, now: datetime
    ) -> int:
        candidates = result.episodes
        if not candidates:
            return 0

        to_embed = [c for c in candidates if not c.embedding]
        if to_embed:
            try:
                vectors = await self.embedder.embed_batch([c.summary for c in to_embed])
                for candidate, vector in zip(to_embed, vectors):
                    candidate.embedding = vector
            except Exception as e:
                # Backfill during distillation fills the gap later
                logger.warning(f"Embedding candidates failed, queuing without vectors: {e}")

        durable = await self.store.get_episodes(community_id, archived=False)
        known = [e.embedding for e in durable if e.embedding]
        queue = self._episodes.setdefault(community_id, [])
        threshold = self.settings.episode_dedup_threshold

        accepted = 0
        for candidate in candidates:
            vector = candidate.embedding or []
            if vector:
                pending = [p.embedding for p in queue if p.embedding]
                if any(cosine_similarity(vector, other) >= threshold for other in known + pending):
                    logger.debug(f"Duplicate episode skipped: {candidate.summary[:60]}")
                    continue

            queue.append(
                PendingEpisode(
                    community_id=community_id,
                    summary=candidate.summary,
                    embedding=vector,
                    event_time=candidate.event_time or now,
                    participants=list(dict.fromkeys(candidate.participants)),
                    tags=candidate.tags,
                    importance=candidate.importance,
                    emotional_valence=candidate.emotional_valence,
                    emotional_intensity=candidate.emotional_intensity,
                    involvement=candidate.involvement,
                )
            )
            accepted += 1

        return accepted

    def _arm_timer(self) -> None:
        if self._closed:
            return
        if self._timer and not self._timer.done():
            self._timer.cancel()
        self._timer = asyncio.create_task(self._flush_later(self.settings.flush_interval_seconds))

    async def _flush_later(self, delay: float) -> None:
        await asyncio.sleep(delay)
        self._timer = None
        await self.flush()

    async def flush(self) -> int:
        """Write pending items one by one. Returns rows written."""
        if self._flushing:
            logger.debug("Flush already running, skipping")
            return 0

        self._flushing = True
        written = 0
        try:
            # Each queue stops at its first failure; the others still drain
            for community_id, queue in list(self._episodes.items()):
                written += await self._drain(
                    community_id, "episode", queue,
                    lambda item: self.store.create_episode(item.to_record()),
                )
            for community_id, queue in list(self._updates.items()):
                written += await self._drain(
                    community_id, "relational", queue, self.relational.apply_update
                )
        finally:
            self._flushing = False

        if written:
            logger.info(f"Flushed {written} working-memory items")
        if self.pending_count and not (self._timer and not self._timer.done()):
            self._arm_timer()
        return written

    async def _drain(self, community_id: str, kind: str, queue: list, write) -> int:
        written = 0
        try:
            while queue:
                await write(queue[0])
                queue.pop(0)
                written += 1
        except Exception as e:
            logger.error(
                f"[{community_id}] {kind} flush stopped after {written} writes, "
                f"{len(queue)} kept: {e}"
            )
        return written

    def get_pending_episodes(self, community_id: str) -> list[PendingEpisode]:
        return list(self._episodes.get(community_id, []))

    def get_session_vibe(
        self, community_id: str, person_id: str, now: datetime | None = None
    ) -> SessionVibe | None:
        """Live vibe of a person; expired vibes are dropped on read."""
        now = now or datetime.now()
        vibes = self._vibes.get(community_id, {})
        vibe = vibes.get(person_id)
        if vibe and vibe.expires_at <= now:
            del vibes[person_id]
            return None
        return vibe

    async def close(self) -> None:
        """Cancel the timer and write whatever is pending."""
        self._closed = True
        if self._timer and not self._timer.done():
            self._timer.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._timer
        self._timer = None
        await self.flush()
