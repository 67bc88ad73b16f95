"""
Semantic fact writer.

Facts are beliefs with a confidence. A new observation either reinforces the
most similar live fact or becomes a new one; a changed belief supersedes the
old row rather than overwriting it.
"""

from datetime import datetime

from hippo.core.config import Settings
from hippo.core.logging import get_logger
from hippo.memory.base import RecordStore
from hippo.memory.embedding import Embedder, cosine_similarity
from hippo.memory.types import (
    GROUP_SUBJECT,
    CultureSignal,
    FactType,
    PersonObservation,
    SemanticFact,
)

logger = get_logger("memory.semantic")

CULTURE_FACT_TYPES = {
    "expression": FactType.GROUP_EXPRESSION,
    "reaction_pattern": FactType.REACTION_PATTERN,
    "tool_knowledge": FactType.TOOL_KNOWLEDGE,
    "meme": FactType.INSIDE_JOKE,
}


def confidence_from_importance(importance: float) -> float:
    """Starting confidence of a directly observed trait."""
    if importance >= 0.7:
        return 0.6
    if importance >= 0.4:
        return 0.5
    return 0.4


async def resolve_current(store: RecordStore, fact_id: int) -> SemanticFact | None:
    """Follow superseded_by links to the live fact."""
    seen: set[int] = set()
    fact = await store.get_fact(fact_id)
    while fact is not None and fact.superseded_by is not None:
        if fact.id in seen:
            logger.error(f"Supersession cycle at fact {fact.id}")
            return None
        seen.add(fact.id)
        fact = await store.get_fact(fact.superseded_by)
    return fact


async def supersede(store: RecordStore, old_id: int, new_id: int) -> bool:
    """Retire old_id in favour of new_id, refusing links that would cycle."""
    if old_id == new_id:
        return False

    # Walk the chain from the replacement; reaching old_id would close a loop
    seen: set[int] = set()
    current: int | None = new_id
    while current is not None:
        if current == old_id or current in seen:
            logger.warning(f"Refusing to supersede fact {old_id} with {new_id}: cycle")
            return False
        seen.add(current)
        fact = await store.get_fact(current)
        if fact is None:
            return False
        current = fact.superseded_by

    return await store.update_fact(old_id, superseded_by=new_id)


class FactWriter:
    """Creates and reinforces semantic facts."""

    def __init__(self, store: RecordStore, embedder: Embedder, settings: Settings):
        self.store = store
        self.embedder = embedder
        self.settings = settings

    async def upsert(
        self,
        community_id: str,
        subject: str,
        fact_type: FactType,
        content: str,
        confidence: float,
        embedding: list[float],
        threshold: float,
        cap: float,
        match_type: bool = True,
        source_episodes: list[int] | None = None,
        now: datetime | None = None,
    ) -> tuple[int, bool]:
        """Reinforce the closest live fact above threshold, or insert a new one.

        Returns (fact_id, merged).
        """
        now = now or datetime.now()
        candidates = await self.store.get_facts(community_id, subject=subject)
        if match_type:
            candidates = [f for f in candidates if f.fact_type == fact_type]

        best: SemanticFact | None = None
        best_similarity = threshold
        for fact in candidates:
            similarity = cosine_similarity(embedding, fact.embedding)
            if similarity >= best_similarity:
                best, best_similarity = fact, similarity

        if best is not None:
            bumped = min(cap, best.confidence + self.settings.fact_confidence_bump)
            sources = list(dict.fromkeys(best.source_episodes + (source_episodes or [])))
            await self.store.update_fact(
                best.id,
                confidence=max(best.confidence, bumped),
                last_confirmed=now,
                source_episodes=sources,
            )
            return best.id, True

        fact = SemanticFact(
            community_id=community_id,
            subject=subject,
            fact_type=fact_type,
            content=content,
            confidence=confidence,
            embedding=embedding,
            source_episodes=source_episodes or [],
            first_observed=now,
            last_confirmed=now,
            created_at=now,
        )
        return await self.store.create_fact(fact), False

    async def observe_people(
        self, community_id: str, observations: list[PersonObservation]
    ) -> int:
        """Turn direct observations of people into trait facts."""
        if not observations:
            return 0

        vectors = await self.embedder.embed_batch([o.observation for o in observations])
        written = 0
        for observation, vector in zip(observations, vectors):
            try:
                await self.upsert(
                    community_id,
                    subject=observation.person_id,
                    fact_type=FactType.TRAIT,
                    content=observation.observation,
                    confidence=confidence_from_importance(observation.importance),
                    embedding=vector,
                    threshold=self.settings.observation_dedup_threshold,
                    cap=self.settings.observation_confidence_cap,
                    match_type=False,
                )
                written += 1
            except Exception as e:
                logger.warning(f"Failed to store observation of {observation.person_id}: {e}")
        return written

    async def observe_culture(self, community_id: str, signals: list[CultureSignal]) -> int:
        """Record how the community talks: expressions, habits, tools, memes."""
        if not signals:
            return 0

        vectors = await self.embedder.embed_batch([s.content for s in signals])
        written = 0
        for signal, vector in zip(signals, vectors):
            fact_type = CULTURE_FACT_TYPES.get(signal.kind, FactType.GROUP_EXPRESSION)
            try:
                await self.upsert(
                    community_id,
                    subject=GROUP_SUBJECT,
                    fact_type=fact_type,
                    content=signal.content,
                    confidence=signal.confidence,
                    embedding=vector,
                    threshold=self.settings.observation_dedup_threshold,
                    cap=self.settings.observation_confidence_cap,
                )
                written += 1
            except Exception as e:
                logger.warning(f"Failed to store group observation: {e}")
        return written
