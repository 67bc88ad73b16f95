"""
Distillation pipeline - the nightly pass that turns memories into knowledge.

For each community with relational history, in order:
1. Backfill missing embeddings
2. Distill recent episodes into semantic facts (new / confirm / evolve / decay)
3. Maintain relations: tier decay, impression rewrites, counter reset
4. Expire consumed events and low-retention episodes
5. Evict by retention until the active pool fits its bound

Every stage is isolated; one failing stage never stops the next.
"""

from collections import Counter
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta

from hippo.core.config import Settings
from hippo.core.logging import get_logger
from hippo.llm.base import LLMConfig, ModelClient
from hippo.memory.base import RecordStore
from hippo.memory.embedding import Embedder
from hippo.memory.parsing import (
    CoreImpressionOutput,
    DistillationOutput,
    RecentImpressionOutput,
    Unparseable,
    parse_model_output,
)
from hippo.memory.prompts import (
    CORE_IMPRESSION_PROMPT,
    RECENT_IMPRESSION_PROMPT,
    SEMANTIC_DISTILL_PROMPT,
)
from hippo.memory.relational import RelationalWriter, decay_tier
from hippo.memory.semantic import FactWriter, supersede
from hippo.memory.types import (
    GROUP_SUBJECT,
    EpisodicMemory,
    FactType,
    NameSource,
    RelationalMemory,
    SemanticFact,
    SignificantEvent,
)

logger = get_logger("memory.distillation")

Stage = Callable[[str, datetime], Awaitable[int]]


def retention_score(episode: EpisodicMemory, now: datetime, settings: Settings) -> float:
    """How much an episode is still worth keeping in the active pool."""
    age_days = max(0.0, (now - episode.event_time).total_seconds() / 86400)
    recency = 0.5 ** (age_days / settings.retention_half_life_days)
    access = min(episode.access_count * settings.access_bonus_step, settings.access_bonus_cap)
    retention = episode.importance * recency + access
    if episode.distilled:
        retention *= settings.distilled_retention_factor
    return retention


def has_strong_signal(events: list[SignificantEvent], settings: Settings) -> bool:
    """One big event, or at least five with a mostly consistent tone."""
    if any(e.importance >= settings.strong_signal_importance for e in events):
        return True
    if len(events) < 5:
        return False
    tones = Counter(e.emotional_tone for e in events)
    return tones.most_common(1)[0][1] / len(events) >= 0.6


def _format_episodes(episodes: list[EpisodicMemory]) -> str:
    return "\n".join(
        f"{e.id}: {e.event_time:%Y-%m-%d} {e.summary} [{', '.join(e.participants)}]"
        for e in episodes
    )


def _format_facts(facts: list[SemanticFact]) -> str:
    if not facts:
        return "(none)"
    return "\n".join(
        f"{f.id} | {f.subject} | {f.fact_type.value} | {f.confidence:.2f} | {f.content}"
        for f in facts
    )


def _format_events(events: list[SignificantEvent]) -> str:
    if not events:
        return "(nothing notable)"
    return "\n".join(
        f"- {e.timestamp:%m-%d} {e.description} ({e.emotional_tone})" for e in events
    )


class DistillationPipeline:
    """Daily consolidation over every community with relational history."""

    def __init__(
        self,
        store: RecordStore,
        llm: ModelClient,
        embedder: Embedder,
        facts: FactWriter,
        relational: RelationalWriter,
        settings: Settings,
    ):
        self.store = store
        self.llm = llm
        self.embedder = embedder
        self.facts = facts
        self.relational = relational
        self.settings = settings

    def _stages(self) -> list[tuple[str, Stage]]:
        return [
            ("backfilled", self.backfill_embeddings),
            ("distilled", self.distill_semantic),
            ("impressions", self.maintain_relations),
            ("expired", self.expire),
            ("evicted", self.enforce_capacity),
        ]

    async def run(self, now: datetime | None = None) -> dict[str, int]:
        """Run every stage for every community. Returns totals per stage."""
        now = now or datetime.now()
        report = {name: 0 for name, _ in self._stages()}
        report["communities"] = 0

        try:
            communities = await self.store.community_ids()
        except Exception as e:
            logger.error(f"Distillation could not list communities: {e}")
            return report

        logger.info(f"Distillation starting for {len(communities)} communities")
        for community_id in communities:
            result = await self.run_for_community(community_id, now)
            for name, count in result.items():
                report[name] += count
            report["communities"] += 1

        logger.info(f"Distillation complete: {report}")
        return report

    async def run_for_community(self, community_id: str, now: datetime) -> dict[str, int]:
        result = {}
        for name, stage in self._stages():
            try:
                result[name] = await stage(community_id, now)
            except Exception as e:
                logger.error(f"[{community_id}] {name} stage failed: {e}")
                result[name] = 0
        return result

    # Stage 1

    async def backfill_embeddings(self, community_id: str, now: datetime) -> int:
        """Fill missing vectors on active episodes and live facts."""
        size = self.settings.backfill_batch_size
        filled = 0

        episodes = [
            e for e in await self.store.get_episodes(community_id, archived=False)
            if not e.embedding
        ]
        for start in range(0, len(episodes), size):
            batch = episodes[start:start + size]
            try:
                vectors = await self.embedder.embed_batch([e.summary for e in batch])
                for episode, vector in zip(batch, vectors):
                    await self.store.update_episode(episode.id, embedding=vector)
                    filled += 1
            except Exception as e:
                logger.warning(f"[{community_id}] Episode backfill batch failed: {e}")

        facts = [f for f in await self.store.get_facts(community_id) if not f.embedding]
        for start in range(0, len(facts), size):
            batch = facts[start:start + size]
            try:
                vectors = await self.embedder.embed_batch([f.content for f in batch])
                for fact, vector in zip(batch, vectors):
                    await self.store.update_fact(fact.id, embedding=vector)
                    filled += 1
            except Exception as e:
                logger.warning(f"[{community_id}] Fact backfill batch failed: {e}")

        if filled:
            logger.info(f"[{community_id}] Backfilled {filled} embeddings")
        return filled

    # Stage 2

    async def distill_semantic(self, community_id: str, now: datetime) -> int:
        """Fold the recent window's episodes into semantic facts."""
        since = now - timedelta(days=self.settings.distillation_window_days)
        episodes = await self.store.get_episodes(
            community_id, archived=False, since=since, distilled=False
        )
        if not episodes:
            logger.debug(f"[{community_id}] No undistilled episodes")
            return 0

        facts = await self.store.get_facts(community_id)
        prompt = SEMANTIC_DISTILL_PROMPT.format(
            persona_name=self.settings.persona_name,
            episodes=_format_episodes(episodes),
            facts=_format_facts(facts),
            fact_types=" | ".join(t.value for t in FactType),
        )
        try:
            response = await self.llm.complete(
                [{"role": "user", "content": prompt}],
                LLMConfig(max_tokens=self.settings.distillation_max_tokens, json_mode=True),
            )
        except Exception as e:
            logger.warning(f"[{community_id}] Semantic distillation call failed: {e}")
            return 0

        outcome = parse_model_output(response.content, DistillationOutput)
        if isinstance(outcome, Unparseable):
            logger.warning(f"[{community_id}] Unparseable distillation output: {outcome.reason}")
            return 0
        output = outcome.value

        live = {f.id: f for f in facts}
        episode_ids = [e.id for e in episodes]

        for new in output.new_facts:
            try:
                vector = await self.embedder.embed(new.content)
            except Exception as e:
                logger.warning(f"Embedding new fact failed: {e}")
                vector = []
            await self.facts.upsert(
                community_id,
                subject=new.subject,
                fact_type=new.fact_type,
                content=new.content,
                confidence=new.confidence,
                embedding=vector,
                threshold=self.settings.fact_dedup_threshold,
                cap=1.0,
                source_episodes=episode_ids,
                now=now,
            )

        for confirmed in output.confirmed_facts:
            if confirmed.id in live:
                await self.store.update_fact(
                    confirmed.id, confidence=confirmed.new_confidence, last_confirmed=now
                )

        for evolved in output.evolved_facts:
            old = live.pop(evolved.old_fact_id, None)
            if old is None:
                continue
            try:
                vector = await self.embedder.embed(evolved.new_content)
            except Exception as e:
                logger.warning(f"Embedding evolved fact failed: {e}")
                vector = []
            new_id = await self.store.create_fact(
                SemanticFact(
                    community_id=community_id,
                    subject=old.subject,
                    fact_type=old.fact_type,
                    content=evolved.new_content,
                    confidence=evolved.new_confidence,
                    embedding=vector,
                    source_episodes=list(dict.fromkeys(old.source_episodes + episode_ids)),
                    first_observed=old.first_observed,
                    last_confirmed=now,
                    created_at=now,
                )
            )
            await supersede(self.store, old.id, new_id)

        for decayed in output.decayed_facts:
            if decayed.id in live:
                await self.store.update_fact(decayed.id, confidence=decayed.new_confidence)

        for episode_id in episode_ids:
            await self.store.update_episode(episode_id, distilled=True, distilled_at=now)

        for new in output.new_facts:
            if new.fact_type != FactType.PREFERRED_NAME or new.subject == GROUP_SUBJECT:
                continue
            if await self.store.get_relation(community_id, new.subject):
                await self.relational.record_name(
                    community_id, new.subject, new.content, NameSource.OTHERS_CALL, now=now
                )

        logger.info(
            f"[{community_id}] Semantic distillation: +{len(output.new_facts)} new, "
            f"{len(output.confirmed_facts)} confirmed, {len(output.evolved_facts)} evolved, "
            f"{len(output.decayed_facts)} decayed"
        )
        return len(episode_ids)

    # Stage 3

    async def maintain_relations(self, community_id: str, now: datetime) -> int:
        """Tier decay, impression rewrites for active people, counter reset."""
        active_since = now - timedelta(days=self.settings.distillation_window_days)
        rewritten = 0

        for relation in await self.store.get_relations(community_id):
            try:
                tier = decay_tier(
                    relation.closeness_tier,
                    relation.last_interaction,
                    now,
                    self.settings.tier_silence_days,
                )
                if tier != relation.closeness_tier:
                    logger.info(
                        f"[{community_id}] {relation.person_id} drifted "
                        f"{relation.closeness_tier.value} -> {tier.value}"
                    )
                    await self.store.update_relation(relation.id, closeness_tier=tier)
                    relation.closeness_tier = tier

                if relation.last_interaction >= active_since:
                    rewritten += await self._refresh_impressions(relation, now)

                await self.store.update_relation(relation.id, recent_interaction_count=0)
            except Exception as e:
                logger.warning(f"[{community_id}] Relation {relation.person_id} skipped: {e}")

        return rewritten

    async def _refresh_impressions(self, relation: RelationalMemory, now: datetime) -> int:
        settings = self.settings
        name = relation.preferred_name or relation.display_name
        unconsumed = [e for e in relation.significant_events if not e.consumed]

        stale = relation.core_impression_updated_at is None or (
            now - relation.core_impression_updated_at
            > timedelta(days=settings.core_impression_stale_days)
        )
        core_due = (
            not relation.core_impression
            or has_strong_signal(unconsumed, settings)
            or stale
        )

        rewritten = 0
        if unconsumed:
            facts = await self.store.get_facts(relation.community_id, subject=relation.person_id)
            facts.sort(key=lambda f: f.confidence, reverse=True)
            prompt = RECENT_IMPRESSION_PROMPT.format(
                persona_name=settings.persona_name,
                person_name=name,
                events=_format_events(unconsumed),
                facts="\n".join(f"- {f.content}" for f in facts[:5]) or "(nothing yet)",
                max_chars=settings.recent_impression_max_chars,
            )
            outcome = await self._ask(prompt, RecentImpressionOutput)
            if outcome is not None:
                relation.recent_impression = outcome.recent_impression[
                    :settings.recent_impression_max_chars
                ]
                for event in relation.significant_events:
                    event.consumed = True
                await self.store.update_relation(
                    relation.id,
                    recent_impression=relation.recent_impression,
                    recent_impression_updated_at=now,
                    significant_events=relation.significant_events,
                )
                rewritten += 1

        if core_due:
            prompt = CORE_IMPRESSION_PROMPT.format(
                persona_name=settings.persona_name,
                person_name=name,
                core_impression=relation.core_impression or "(we only just met)",
                recent_impression=relation.recent_impression or "(none)",
                events=_format_events(unconsumed[-10:]),
                max_chars=settings.core_impression_max_chars,
            )
            outcome = await self._ask(prompt, CoreImpressionOutput)
            if outcome is not None and not outcome.unchanged and outcome.new_impression:
                impression = outcome.new_impression[:settings.core_impression_max_chars]
                await self.store.update_relation(
                    relation.id,
                    core_impression=impression,
                    core_impression_updated_at=now,
                )
                logger.info(f"[{relation.community_id}] Core impression of {name}: {impression}")
                rewritten += 1

        return rewritten

    async def _ask(self, prompt: str, schema):
        try:
            response = await self.llm.complete(
                [{"role": "user", "content": prompt}],
                LLMConfig(max_tokens=self.settings.impression_max_tokens, json_mode=True),
            )
        except Exception as e:
            logger.warning(f"Impression call failed: {e}")
            return None
        outcome = parse_model_output(response.content, schema)
        if isinstance(outcome, Unparseable):
            logger.warning(f"Unparseable impression output: {outcome.reason}")
            return None
        return outcome.value

    # Stage 4

    async def expire(self, community_id: str, now: datetime) -> int:
        """Drop old consumed events; archive old or faded episodes."""
        event_cutoff = now - timedelta(days=self.settings.consumed_event_ttl_days)
        for relation in await self.store.get_relations(community_id):
            kept = [
                e for e in relation.significant_events
                if not (e.consumed and e.timestamp < event_cutoff)
            ]
            if len(kept) < len(relation.significant_events):
                await self.store.update_relation(relation.id, significant_events=kept)

        age_cutoff = now - timedelta(days=self.settings.retention_days)
        archived = 0
        for episode in await self.store.get_episodes(community_id, archived=False):
            if (
                episode.event_time < age_cutoff
                or retention_score(episode, now, self.settings) < self.settings.retention_threshold
            ):
                await self.store.update_episode(episode.id, archived=True)
                archived += 1

        if archived:
            logger.info(f"[{community_id}] Archived {archived} faded episodes")
        return archived

    # Stage 5

    async def enforce_capacity(self, community_id: str, now: datetime) -> int:
        """Archive the lowest-retention episodes beyond the active pool bound."""
        active = await self.store.get_episodes(community_id, archived=False)
        excess = len(active) - self.settings.active_pool_limit
        if excess <= 0:
            return 0

        active.sort(key=lambda e: retention_score(e, now, self.settings))
        for episode in active[:excess]:
            await self.store.update_episode(episode.id, archived=True)

        logger.info(f"[{community_id}] Evicted {excess} episodes over capacity")
        return excess
