"""
CLI entry point.

Commands:
- init: Initialize data directory and database
- distill: Run the distillation pipeline once
- stats: Show per-community memory counts
- recall <community> <query>: Rank stored episodes against a query

Flags:
- --debug: Enable debug logging
"""

import asyncio
import logging
import sys

from hippo.core.config import Settings, get_settings
from hippo.core.logging import get_logger, setup_logging
from hippo.memory.service import MemoryService
from hippo.memory.store import SQLiteRecordStore

USAGE = """Usage: hippo [--debug] <command>
Commands: init, distill, stats, recall <community> <query>
Flags: --debug (enable debug logging to data/hippo.log)"""


def main() -> int:
    """Main entry point."""
    settings = get_settings()

    debug_mode = "--debug" in sys.argv
    if debug_mode:
        sys.argv.remove("--debug")

    log_level = logging.DEBUG if debug_mode else logging.INFO
    log_file = settings.data_dir / "hippo.log"
    setup_logging(level=log_level, log_file=log_file)
    logger = get_logger("cli")

    if len(sys.argv) < 2:
        print(USAGE)
        return 1

    command = sys.argv[1]

    if command == "init":
        return asyncio.run(_init(settings))

    if command == "distill":
        logger.info("Running distillation from the command line")
        return asyncio.run(_distill(settings))

    if command == "stats":
        return asyncio.run(_stats(settings))

    if command == "recall":
        if len(sys.argv) < 4:
            print("Usage: hippo recall <community> <query>")
            return 1
        return asyncio.run(_recall(settings, sys.argv[2], " ".join(sys.argv[3:])))

    print(f"Unknown command: {command}")
    return 1


async def _init(settings: Settings) -> int:
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    store = SQLiteRecordStore(settings.db_path)
    await store.connect()
    await store.close()
    print(f"Created: {settings.db_path}")
    return 0


async def _distill(settings: Settings) -> int:
    service = await MemoryService.create(settings)
    try:
        report = await service.run_distillation()
    finally:
        await service.close()

    for key, value in report.items():
        print(f"  {key}: {value}")
    return 0


async def _stats(settings: Settings) -> int:
    store = SQLiteRecordStore(settings.db_path)
    await store.connect()
    try:
        communities = await store.community_ids()
        if not communities:
            print("No memories yet.")
        for community_id in communities:
            active = await store.count_episodes(community_id)
            archived = await store.count_episodes(community_id, archived=True)
            relations = await store.get_relations(community_id)
            facts = await store.get_facts(community_id)
            print(f"{community_id}:")
            print(f"  episodes: {active} active, {archived} archived")
            print(f"  people: {len(relations)}")
            print(f"  facts: {len(facts)} live")
    finally:
        await store.close()
    return 0


async def _recall(settings: Settings, community_id: str, query: str) -> int:
    # Inspection only; leave access counts alone
    settings.track_access = False
    service = await MemoryService.create(settings)
    try:
        memories = await service.retriever.retrieve(
            community_id, query, [], top_k=settings.retrieval_top_k
        )
    finally:
        await service.close()

    if not memories:
        print("Nothing comes to mind.")
    for memory in memories:
        print(f"{memory.score:.3f}  {memory.event_time:%Y-%m-%d %H:%M}  {memory.summary}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
