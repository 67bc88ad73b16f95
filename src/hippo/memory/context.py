"""Context assembly - the read path from memory to prompt text."""

import re
from datetime import datetime

from hippo.core.logging import get_logger
from hippo.memory.base import RecordStore
from hippo.memory.retrieval import RetrievedMemory
from hippo.memory.types import (
    GROUP_SUBJECT,
    ClosenessTier,
    FactType,
    Involvement,
    MemoryContext,
    RelationalMemory,
)
from hippo.memory.working import WorkingMemory

logger = get_logger("memory.context")

CLOSENESS_LABELS = {
    ClosenessTier.STRANGER: "don't really know them",
    ClosenessTier.ACQUAINTANCE: "chat now and then",
    ClosenessTier.FAMILIAR: "know them pretty well",
    ClosenessTier.CLOSE: "old friend",
}

OBSERVER_HEADER = (
    "(You saw these in the group without taking part. "
    "You know they happened; others don't know you saw.)"
)

_KEYWORD = re.compile(r"[\u4e00-\u9fff\w]{2,}")
_NAME_CHAR = re.compile(r"[\u4e00-\u9fff\w]")


def time_ago(event_time: datetime, now: datetime) -> str:
    hours = (now - event_time).total_seconds() / 3600
    if hours < 1:
        return "just now"
    if hours < 24:
        return f"{int(hours)}h ago"
    days = int(hours // 24)
    if days == 1:
        return "yesterday"
    if days <= 7:
        return f"{days} days ago"
    return f"{days // 7} weeks ago"


def looks_like_name(display_name: str) -> bool:
    """Mostly letters/CJK and 2-10 characters long; not an emoji soup."""
    if not 2 <= len(display_name) <= 10:
        return False
    return len(_NAME_CHAR.findall(display_name)) / len(display_name) > 0.7


def is_covered(content: str, impression_text: str) -> bool:
    """True when most of a fact's keywords already appear in the impressions."""
    if not impression_text:
        return False
    keywords = _KEYWORD.findall(content)
    if not keywords:
        return False
    covered = sum(1 for k in keywords if k in impression_text)
    return covered / len(keywords) > 0.5


class ContextAssembler:
    """Builds the user profile and memory digest for one reply."""

    def __init__(self, store: RecordStore, working: WorkingMemory | None = None):
        self.store = store
        self.working = working

    async def assemble(
        self,
        community_id: str,
        participant_ids: list[str],
        memories: list[RetrievedMemory],
        now: datetime | None = None,
    ) -> MemoryContext:
        now = now or datetime.now()
        profile = await self.build_profile(community_id, participant_ids, now)
        digest = self.build_digest(memories, now)
        group = await self.build_group_facts(community_id)
        logger.debug(
            f"Context for {community_id}: {len(participant_ids)} people, {len(memories)} memories"
        )
        return MemoryContext(
            user_profile=profile,
            memories="\n".join(part for part in (digest, group) if part),
        )

    async def build_profile(
        self, community_id: str, participant_ids: list[str], now: datetime
    ) -> str:
        lines: list[str] = []
        for person_id in dict.fromkeys(participant_ids):
            relation = await self.store.get_relation(community_id, person_id)
            if relation is None:
                continue
            lines.append(self._profile_line(relation, now))
            facts_line = await self._facts_line(relation)
            if facts_line:
                lines.append(facts_line)
        return "\n".join(lines)

    def _profile_line(self, relation: RelationalMemory, now: datetime) -> str:
        parts = [CLOSENESS_LABELS[relation.closeness_tier]]
        if relation.core_impression:
            parts.append(relation.core_impression)
        if relation.recent_impression:
            parts.append(relation.recent_impression)

        line = f"- {relation.person_id}"
        if relation.preferred_name:
            line += f" (goes by {relation.preferred_name})"
        elif looks_like_name(relation.display_name):
            line += f" (nickname {relation.display_name})"
        line += ": " + ". ".join(parts)

        if self.working:
            vibe = self.working.get_session_vibe(relation.community_id, relation.person_id, now)
            if vibe:
                line += f" ({vibe.vibe})"
        return line

    async def _facts_line(self, relation: RelationalMemory) -> str | None:
        facts = await self.store.get_facts(relation.community_id, subject=relation.person_id)
        impressions = f"{relation.core_impression} {relation.recent_impression}".strip()
        candidates = [
            f for f in facts
            if f.confidence >= 0.3
            and f.fact_type != FactType.PREFERRED_NAME
            and not is_covered(f.content, impressions)
        ]
        if not candidates:
            return None
        candidates.sort(key=lambda f: f.confidence, reverse=True)
        return "  You remember: " + ". ".join(f.content for f in candidates[:3])

    def build_digest(self, memories: list[RetrievedMemory], now: datetime) -> str:
        active: list[str] = []
        observed: list[str] = []
        for memory in memories:
            line = f"- {time_ago(memory.event_time, now)} {memory.summary}"
            if memory.involvement == Involvement.OBSERVER:
                observed.append(line)
            else:
                active.append(line)

        parts = []
        if active:
            parts.append("\n".join(active))
        if observed:
            parts.append(OBSERVER_HEADER + "\n" + "\n".join(observed))
        return "\n\n".join(parts)

    async def build_group_facts(self, community_id: str) -> str:
        facts = [
            f for f in await self.store.get_facts(community_id, subject=GROUP_SUBJECT)
            if f.confidence >= 0.5
        ]
        facts.sort(key=lambda f: f.confidence, reverse=True)
        return "\n".join(f"- {f.content}" for f in facts[:3])
