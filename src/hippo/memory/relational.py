"""
Relational memory writer.

Keeps one RelationalMemory per (community, person): interaction counters,
the closeness tier, recent significant events and the names a person goes by.
Tiers only ever move one step at a time.
"""

from collections import Counter
from datetime import datetime, timedelta

from hippo.core.config import Settings
from hippo.core.logging import get_logger
from hippo.memory.base import RecordStore
from hippo.memory.types import (
    ClosenessTier,
    NameObservation,
    NameSource,
    PendingRelationalUpdate,
    RelationalMemory,
)

logger = get_logger("memory.relational")


def target_tier(interaction_count: int, recent_count: int, settings: Settings) -> ClosenessTier:
    """Highest tier the counters qualify for."""
    if (
        interaction_count >= settings.close_min_interactions
        and recent_count >= settings.close_min_recent
    ):
        return ClosenessTier.CLOSE
    if (
        interaction_count >= settings.familiar_min_interactions
        and recent_count >= settings.familiar_min_recent
    ):
        return ClosenessTier.FAMILIAR
    if interaction_count >= settings.acquaintance_min_interactions:
        return ClosenessTier.ACQUAINTANCE
    return ClosenessTier.STRANGER


def upgrade_tier(
    current: ClosenessTier, interaction_count: int, recent_count: int, settings: Settings
) -> ClosenessTier:
    """Step up by at most one tier; never downgrades."""
    target = target_tier(interaction_count, recent_count, settings)
    if target.rank > current.rank:
        return current.step_up()
    return current


def decay_tier(
    current: ClosenessTier, last_interaction: datetime, now: datetime, silence_days: float
) -> ClosenessTier:
    """Step down one tier when the person has been silent too long."""
    if now - last_interaction > timedelta(days=silence_days):
        return current.step_down()
    return current


def resolve_preferred_name(known_names: list[NameObservation]) -> str | None:
    """Self-introduction wins; otherwise the name others use most, once seen twice."""
    self_intros = [n for n in known_names if n.source == NameSource.SELF_INTRO]
    if self_intros:
        return max(self_intros, key=lambda n: n.last_seen).name

    counts: Counter[str] = Counter()
    for observation in known_names:
        if observation.source == NameSource.OTHERS_CALL:
            counts[observation.name] += observation.count
    if not counts:
        return None
    name, count = counts.most_common(1)[0]
    return name if count >= 2 else None


class RelationalWriter:
    """Applies interaction and name observations to relational memory."""

    def __init__(self, store: RecordStore, settings: Settings):
        self.store = store
        self.settings = settings

    async def apply_update(
        self, update: PendingRelationalUpdate, now: datetime | None = None
    ) -> RelationalMemory:
        """Count one observed interaction and remember its event."""
        now = now or datetime.now()
        limit = self.settings.event_history_limit
        relation = await self.store.get_relation(update.community_id, update.person_id)

        if relation is None:
            relation = RelationalMemory(
                community_id=update.community_id,
                person_id=update.person_id,
                display_name=update.display_name,
                interaction_count=1,
                recent_interaction_count=1,
                last_interaction=now,
                significant_events=[update.event],
                created_at=now,
                updated_at=now,
            )
            relation.closeness_tier = upgrade_tier(ClosenessTier.STRANGER, 1, 1, self.settings)
            await self.store.create_relation(relation)
            logger.debug(f"New relation {update.community_id}/{update.person_id}")
            return relation

        relation.interaction_count += 1
        relation.recent_interaction_count += 1
        relation.last_interaction = now
        relation.significant_events = (relation.significant_events + [update.event])[-limit:]
        relation.display_name = update.display_name or relation.display_name
        new_tier = upgrade_tier(
            relation.closeness_tier,
            relation.interaction_count,
            relation.recent_interaction_count,
            self.settings,
        )
        if new_tier != relation.closeness_tier:
            logger.info(
                f"{update.person_id} in {update.community_id}: "
                f"{relation.closeness_tier.value} -> {new_tier.value}"
            )
        relation.closeness_tier = new_tier
        relation.updated_at = now

        await self.store.update_relation(
            relation.id,
            display_name=relation.display_name,
            interaction_count=relation.interaction_count,
            recent_interaction_count=relation.recent_interaction_count,
            last_interaction=now,
            significant_events=relation.significant_events,
            closeness_tier=new_tier,
            updated_at=now,
        )
        return relation

    async def record_name(
        self,
        community_id: str,
        person_id: str,
        name: str,
        source: NameSource,
        display_name: str | None = None,
        now: datetime | None = None,
    ) -> str | None:
        """Count a name observation and return the resulting preferred name."""
        name = name.strip()
        if not name:
            return None
        now = now or datetime.now()

        relation = await self.store.get_relation(community_id, person_id)
        if relation is None:
            relation = RelationalMemory(
                community_id=community_id,
                person_id=person_id,
                display_name=display_name or person_id,
                last_interaction=now,
                created_at=now,
                updated_at=now,
            )
            await self.store.create_relation(relation)

        for observation in relation.known_names:
            if observation.name == name:
                observation.count += 1
                observation.last_seen = now
                if source == NameSource.SELF_INTRO:
                    observation.source = source
                break
        else:
            relation.known_names.append(
                NameObservation(name=name, source=source, first_seen=now, last_seen=now)
            )

        preferred = resolve_preferred_name(relation.known_names)
        await self.store.update_relation(
            relation.id,
            known_names=relation.known_names,
            preferred_name=preferred,
            updated_at=now,
        )
        return preferred
