"""
Memory service - the one object a host builds at startup.

Wires the store, model client and embedder into working memory, retrieval,
extraction, the writers and the nightly distillation, and exposes the
read path (get_memory_context) and write path (record). Both paths swallow
collaborator failures and degrade to "nothing remembered".
"""

import random
from datetime import datetime

from hippo.core.config import Settings
from hippo.core.logging import get_logger
from hippo.core.scheduler import Scheduler, TaskPriority
from hippo.core.types import ChatMessage
from hippo.llm.base import ModelClient
from hippo.llm.litellm_adapter import LiteLLMProvider
from hippo.memory.base import RecordStore
from hippo.memory.context import ContextAssembler
from hippo.memory.distillation import DistillationPipeline
from hippo.memory.embedding import Embedder, EmbeddingGateway
from hippo.memory.extraction import MemoryExtractor
from hippo.memory.relational import RelationalWriter
from hippo.memory.retrieval import EpisodicRetriever
from hippo.memory.semantic import FactWriter
from hippo.memory.store import SQLiteRecordStore
from hippo.memory.triggers import ExtractionTrigger
from hippo.memory.types import MemoryContext, RecordSummary
from hippo.memory.working import WorkingMemory

logger = get_logger("memory.service")

DISTILLATION_TASK = "memory.distillation"


class MemoryService:
    def __init__(
        self,
        store: RecordStore,
        llm: ModelClient,
        embedder: Embedder,
        settings: Settings,
        rng: random.Random | None = None,
    ):
        self.store = store
        self.settings = settings

        self.relational = RelationalWriter(store, settings)
        self.facts = FactWriter(store, embedder, settings)
        self.working = WorkingMemory(store, embedder, self.relational, settings)
        self.retriever = EpisodicRetriever(store, embedder, settings, self.working)
        self.extractor = MemoryExtractor(llm, settings, rng)
        self.assembler = ContextAssembler(store, self.working)
        self.distillation = DistillationPipeline(
            store, llm, embedder, self.facts, self.relational, settings
        )
        self.trigger = ExtractionTrigger(
            batch_size=settings.trigger_batch_size,
            active_threshold=settings.trigger_active_threshold,
            max_wait_minutes=settings.trigger_max_wait_minutes,
        )
        self.scheduler = Scheduler()

    @classmethod
    async def create(cls, settings: Settings) -> "MemoryService":
        """Build a service over SQLite and litellm from settings."""
        store = SQLiteRecordStore(settings.db_path)
        await store.connect()
        return cls(
            store,
            LiteLLMProvider.from_settings(settings),
            EmbeddingGateway.from_settings(settings),
            settings,
        )

    async def get_memory_context(
        self,
        community_id: str,
        participant_ids: list[str],
        recent_messages: list[ChatMessage],
        transcript_window_start: datetime | None = None,
    ) -> MemoryContext:
        """Profile and recalled memories for the people in the conversation."""
        try:
            window = recent_messages[-self.settings.retrieval_query_messages:]
            query = "\n".join(m.text for m in window if m.text.strip())
            memories = await self.retriever.retrieve(
                community_id,
                query,
                participant_ids,
                top_k=self.settings.retrieval_top_k,
                exclude_after=transcript_window_start,
            )
            return await self.assembler.assemble(community_id, participant_ids, memories)
        except Exception as e:
            logger.error(f"Memory context for {community_id} failed: {e}")
            return MemoryContext()

    async def record(
        self,
        community_id: str,
        recent_messages: list[ChatMessage],
        persona_name: str | None = None,
    ) -> RecordSummary:
        """Extract from recent chat and route everything to its writer."""
        try:
            result = await self.extractor.extract(recent_messages, persona_name)
            await self.working.ingest(community_id, result)

            for signal in result.names:
                await self.relational.record_name(
                    community_id,
                    signal.person_id,
                    signal.name,
                    signal.source,
                    display_name=signal.display_name,
                )
            await self.facts.observe_people(community_id, result.observations)
            await self.facts.observe_culture(community_id, result.culture)
        except Exception as e:
            logger.error(f"Recording memories for {community_id} failed: {e}")
            return RecordSummary()

        return RecordSummary(
            worth_remembering=result.worth_remembering,
            episodes=len(result.episodes),
            relational=len(result.observations),
            vibes=len(result.vibes),
            names=len(result.names),
            cultural=len(result.culture),
            episode_summaries=[e.summary for e in result.episodes],
            relational_summaries=[
                f"{o.display_name}: {o.observation}" for o in result.observations
            ],
            session_vibes=[f"{v.person_id}: {v.vibe}" for v in result.vibes],
        )

    async def run_distillation(self) -> dict[str, int]:
        """Flush pending writes, then run the nightly pipeline now."""
        await self.flush_working_memory()
        return await self.distillation.run()

    async def flush_working_memory(self) -> int:
        return await self.working.flush()

    async def start(self) -> None:
        """Arm the daily distillation."""
        self.scheduler.schedule_daily(
            DISTILLATION_TASK,
            "Memory distillation",
            self.run_distillation,
            hour=self.settings.distillation_hour,
            priority=TaskPriority.LOW,
        )
        await self.scheduler.start()

    async def close(self) -> None:
        """Stop background work and flush what is pending."""
        await self.scheduler.stop()
        await self.working.close()
        if isinstance(self.store, SQLiteRecordStore):
            await self.store.close()
        logger.info("Memory service closed")
