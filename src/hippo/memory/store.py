"""SQLite record store (aiosqlite) for episodes, relations and facts."""

import json
import sqlite3
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any

import aiosqlite

from hippo.core.logging import get_logger
from hippo.memory.base import RecordStore
from hippo.memory.types import (
    ClosenessTier,
    EpisodicMemory,
    FactType,
    Involvement,
    NameObservation,
    RelationalMemory,
    SemanticFact,
    SignificantEvent,
)

logger = get_logger("memory.store")


# Python 3.12+ fix: Register datetime adapters explicitly
def _adapt_datetime(dt: datetime) -> str:
    """Convert datetime to ISO format string for SQLite storage."""
    return dt.isoformat()


def _convert_datetime(val: bytes) -> datetime:
    """Convert ISO format string from SQLite to datetime."""
    return datetime.fromisoformat(val.decode())


sqlite3.register_adapter(datetime, _adapt_datetime)
sqlite3.register_converter("DATETIME", _convert_datetime)

SCHEMA = """
-- Episodic memory: first-person summaries of past events
CREATE TABLE IF NOT EXISTS episodes (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    community_id TEXT NOT NULL,
    summary TEXT NOT NULL,
    participants TEXT NOT NULL DEFAULT '[]',  -- JSON array
    tags TEXT NOT NULL DEFAULT '[]',  -- JSON array
    embedding TEXT NOT NULL DEFAULT '[]',  -- JSON array of floats
    importance REAL DEFAULT 0.5,
    emotional_valence REAL DEFAULT 0,
    emotional_intensity REAL DEFAULT 0,
    involvement TEXT DEFAULT 'observer',
    access_count INTEGER DEFAULT 0,
    last_accessed DATETIME,
    distilled INTEGER DEFAULT 0,
    distilled_at DATETIME,
    archived INTEGER DEFAULT 0,
    event_time DATETIME NOT NULL,
    created_at DATETIME NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_episodes_active
    ON episodes(community_id, archived);

-- Relational memory: one row per (community, person)
CREATE TABLE IF NOT EXISTS relations (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    community_id TEXT NOT NULL,
    person_id TEXT NOT NULL,
    display_name TEXT NOT NULL,
    core_impression TEXT NOT NULL DEFAULT '',
    core_impression_updated_at DATETIME,
    recent_impression TEXT NOT NULL DEFAULT '',
    recent_impression_updated_at DATETIME,
    closeness_tier TEXT DEFAULT 'stranger',
    interaction_count INTEGER DEFAULT 0,
    recent_interaction_count INTEGER DEFAULT 0,
    last_interaction DATETIME NOT NULL,
    significant_events TEXT NOT NULL DEFAULT '[]',  -- JSON array
    known_names TEXT NOT NULL DEFAULT '[]',  -- JSON array
    preferred_name TEXT,
    created_at DATETIME NOT NULL,
    updated_at DATETIME NOT NULL,
    UNIQUE (community_id, person_id)
);

-- Semantic memory: confidence-weighted facts
CREATE TABLE IF NOT EXISTS facts (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    community_id TEXT NOT NULL,
    subject TEXT NOT NULL,
    fact_type TEXT NOT NULL DEFAULT 'trait',
    content TEXT NOT NULL,
    embedding TEXT NOT NULL DEFAULT '[]',
    confidence REAL DEFAULT 0.5,
    source_episodes TEXT NOT NULL DEFAULT '[]',
    first_observed DATETIME NOT NULL,
    last_confirmed DATETIME NOT NULL,
    superseded_by INTEGER,
    created_at DATETIME NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_facts_subject
    ON facts(community_id, subject);
"""

EPISODE_FIELDS = {
    "summary", "participants", "tags", "embedding", "importance",
    "emotional_valence", "emotional_intensity", "involvement", "access_count",
    "last_accessed", "distilled", "distilled_at", "archived", "event_time",
}
RELATION_FIELDS = {
    "display_name", "core_impression", "core_impression_updated_at",
    "recent_impression", "recent_impression_updated_at", "closeness_tier",
    "interaction_count", "recent_interaction_count", "last_interaction",
    "significant_events", "known_names", "preferred_name", "updated_at",
}
FACT_FIELDS = {
    "subject", "fact_type", "content", "embedding", "confidence",
    "source_episodes", "first_observed", "last_confirmed", "superseded_by",
}


def _encode(value: Any) -> Any:
    """Python value -> SQLite column value."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, list):
        return json.dumps(
            [v.to_dict() if hasattr(v, "to_dict") else v for v in value],
            ensure_ascii=False,
        )
    return value


def _json_list(raw: str | None) -> list:
    return json.loads(raw) if raw else []


class SQLiteRecordStore(RecordStore):
    """SQLite-backed record store."""

    def __init__(self, db_path: Path):
        self.db_path = db_path
        self._conn: aiosqlite.Connection | None = None

    async def connect(self) -> None:
        """Initialize database connection and schema."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        # Use detect_types to enable our custom datetime converters
        self._conn = await aiosqlite.connect(
            self.db_path,
            detect_types=sqlite3.PARSE_DECLTYPES | sqlite3.PARSE_COLNAMES,
        )
        self._conn.row_factory = aiosqlite.Row
        await self._conn.executescript(SCHEMA)
        await self._conn.commit()
        logger.info(f"Connected to record store: {self.db_path}")

    async def close(self) -> None:
        """Close database connection."""
        if self._conn:
            await self._conn.close()
            self._conn = None

    @property
    def conn(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise RuntimeError("Record store not connected. Call connect() first.")
        return self._conn

    async def _insert(self, table: str, values: dict[str, Any]) -> int:
        columns = ", ".join(values)
        marks = ", ".join("?" for _ in values)
        cursor = await self.conn.execute(
            f"INSERT INTO {table} ({columns}) VALUES ({marks})",
            [_encode(v) for v in values.values()],
        )
        await self.conn.commit()
        return cursor.lastrowid

    async def _update(
        self, table: str, allowed: set[str], row_id: int, fields: dict[str, Any]
    ) -> bool:
        unknown = set(fields) - allowed
        if unknown:
            raise ValueError(f"Cannot update {table} fields: {sorted(unknown)}")
        if not fields:
            return False

        assignments = ", ".join(f"{key} = ?" for key in fields)
        values = [_encode(v) for v in fields.values()]
        values.append(row_id)
        cursor = await self.conn.execute(
            f"UPDATE {table} SET {assignments} WHERE id = ?", values
        )
        await self.conn.commit()
        return cursor.rowcount > 0

    # Episodes

    async def create_episode(self, episode: EpisodicMemory) -> int:
        """Store episode, return ID."""
        episode_id = await self._insert(
            "episodes",
            {
                "community_id": episode.community_id,
                "summary": episode.summary,
                "participants": episode.participants,
                "tags": episode.tags,
                "embedding": episode.embedding,
                "importance": episode.importance,
                "emotional_valence": episode.emotional_valence,
                "emotional_intensity": episode.emotional_intensity,
                "involvement": episode.involvement,
                "access_count": episode.access_count,
                "last_accessed": episode.last_accessed,
                "distilled": episode.distilled,
                "distilled_at": episode.distilled_at,
                "archived": episode.archived,
                "event_time": episode.event_time,
                "created_at": episode.created_at,
            },
        )
        episode.id = episode_id
        return episode_id

    async def get_episode(self, episode_id: int) -> EpisodicMemory | None:
        async with self.conn.execute(
            "SELECT * FROM episodes WHERE id = ?", (episode_id,)
        ) as cursor:
            row = await cursor.fetchone()
            return self._row_to_episode(row) if row else None

    async def get_episodes(
        self,
        community_id: str | None = None,
        archived: bool | None = False,
        since: datetime | None = None,
        distilled: bool | None = None,
    ) -> list[EpisodicMemory]:
        clauses = []
        values: list[Any] = []
        if community_id is not None:
            clauses.append("community_id = ?")
            values.append(community_id)
        if archived is not None:
            clauses.append("archived = ?")
            values.append(int(archived))
        if since is not None:
            clauses.append("event_time >= ?")
            values.append(since)
        if distilled is not None:
            clauses.append("distilled = ?")
            values.append(int(distilled))

        sql = "SELECT * FROM episodes"
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += " ORDER BY event_time, id"

        async with self.conn.execute(sql, values) as cursor:
            return [self._row_to_episode(row) async for row in cursor]

    async def update_episode(self, episode_id: int, **fields: Any) -> bool:
        return await self._update("episodes", EPISODE_FIELDS, episode_id, fields)

    async def count_episodes(self, community_id: str, archived: bool = False) -> int:
        async with self.conn.execute(
            "SELECT COUNT(*) FROM episodes WHERE community_id = ? AND archived = ?",
            (community_id, int(archived)),
        ) as cursor:
            row = await cursor.fetchone()
            return row[0] if row else 0

    async def increment_access(self, episode_ids: list[int], when: datetime) -> None:
        if not episode_ids:
            return
        marks = ", ".join("?" for _ in episode_ids)
        await self.conn.execute(
            f"UPDATE episodes SET access_count = access_count + 1, last_accessed = ? "
            f"WHERE id IN ({marks})",
            [when, *episode_ids],
        )
        await self.conn.commit()

    @staticmethod
    def _row_to_episode(row: aiosqlite.Row) -> EpisodicMemory:
        return EpisodicMemory(
            id=row["id"],
            community_id=row["community_id"],
            summary=row["summary"],
            participants=_json_list(row["participants"]),
            tags=_json_list(row["tags"]),
            embedding=_json_list(row["embedding"]),
            importance=row["importance"],
            emotional_valence=row["emotional_valence"],
            emotional_intensity=row["emotional_intensity"],
            involvement=Involvement(row["involvement"]),
            access_count=row["access_count"],
            last_accessed=row["last_accessed"],
            distilled=bool(row["distilled"]),
            distilled_at=row["distilled_at"],
            archived=bool(row["archived"]),
            event_time=row["event_time"],
            created_at=row["created_at"],
        )

    # Relations

    async def create_relation(self, relation: RelationalMemory) -> int:
        relation_id = await self._insert(
            "relations",
            {
                "community_id": relation.community_id,
                "person_id": relation.person_id,
                "display_name": relation.display_name,
                "core_impression": relation.core_impression,
                "core_impression_updated_at": relation.core_impression_updated_at,
                "recent_impression": relation.recent_impression,
                "recent_impression_updated_at": relation.recent_impression_updated_at,
                "closeness_tier": relation.closeness_tier,
                "interaction_count": relation.interaction_count,
                "recent_interaction_count": relation.recent_interaction_count,
                "last_interaction": relation.last_interaction,
                "significant_events": relation.significant_events,
                "known_names": relation.known_names,
                "preferred_name": relation.preferred_name,
                "created_at": relation.created_at,
                "updated_at": relation.updated_at,
            },
        )
        relation.id = relation_id
        return relation_id

    async def get_relation(self, community_id: str, person_id: str) -> RelationalMemory | None:
        async with self.conn.execute(
            "SELECT * FROM relations WHERE community_id = ? AND person_id = ?",
            (community_id, person_id),
        ) as cursor:
            row = await cursor.fetchone()
            return self._row_to_relation(row) if row else None

    async def get_relations(self, community_id: str | None = None) -> list[RelationalMemory]:
        sql = "SELECT * FROM relations"
        values: tuple = ()
        if community_id is not None:
            sql += " WHERE community_id = ?"
            values = (community_id,)
        sql += " ORDER BY id"
        async with self.conn.execute(sql, values) as cursor:
            return [self._row_to_relation(row) async for row in cursor]

    async def update_relation(self, relation_id: int, **fields: Any) -> bool:
        return await self._update("relations", RELATION_FIELDS, relation_id, fields)

    async def community_ids(self) -> list[str]:
        async with self.conn.execute(
            "SELECT DISTINCT community_id FROM relations ORDER BY community_id"
        ) as cursor:
            return [row[0] async for row in cursor]

    @staticmethod
    def _row_to_relation(row: aiosqlite.Row) -> RelationalMemory:
        return RelationalMemory(
            id=row["id"],
            community_id=row["community_id"],
            person_id=row["person_id"],
            display_name=row["display_name"],
            core_impression=row["core_impression"],
            core_impression_updated_at=row["core_impression_updated_at"],
            recent_impression=row["recent_impression"],
            recent_impression_updated_at=row["recent_impression_updated_at"],
            closeness_tier=ClosenessTier.parse(row["closeness_tier"]),
            interaction_count=row["interaction_count"],
            recent_interaction_count=row["recent_interaction_count"],
            last_interaction=row["last_interaction"],
            significant_events=[
                SignificantEvent.from_dict(e) for e in _json_list(row["significant_events"])
            ],
            known_names=[NameObservation.from_dict(n) for n in _json_list(row["known_names"])],
            preferred_name=row["preferred_name"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    # Facts

    async def create_fact(self, fact: SemanticFact) -> int:
        fact_id = await self._insert(
            "facts",
            {
                "community_id": fact.community_id,
                "subject": fact.subject,
                "fact_type": fact.fact_type,
                "content": fact.content,
                "embedding": fact.embedding,
                "confidence": min(1.0, max(0.0, fact.confidence)),
                "source_episodes": fact.source_episodes,
                "first_observed": fact.first_observed,
                "last_confirmed": fact.last_confirmed,
                "superseded_by": fact.superseded_by,
                "created_at": fact.created_at,
            },
        )
        fact.id = fact_id
        return fact_id

    async def get_fact(self, fact_id: int) -> SemanticFact | None:
        async with self.conn.execute(
            "SELECT * FROM facts WHERE id = ?", (fact_id,)
        ) as cursor:
            row = await cursor.fetchone()
            return self._row_to_fact(row) if row else None

    async def get_facts(
        self,
        community_id: str,
        subject: str | None = None,
        include_superseded: bool = False,
    ) -> list[SemanticFact]:
        sql = "SELECT * FROM facts WHERE community_id = ?"
        values: list[Any] = [community_id]
        if subject is not None:
            sql += " AND subject = ?"
            values.append(subject)
        if not include_superseded:
            sql += " AND superseded_by IS NULL"
        sql += " ORDER BY id"
        async with self.conn.execute(sql, values) as cursor:
            return [self._row_to_fact(row) async for row in cursor]

    async def update_fact(self, fact_id: int, **fields: Any) -> bool:
        if "confidence" in fields:
            fields["confidence"] = min(1.0, max(0.0, fields["confidence"]))
        return await self._update("facts", FACT_FIELDS, fact_id, fields)

    @staticmethod
    def _row_to_fact(row: aiosqlite.Row) -> SemanticFact:
        try:
            fact_type = FactType(row["fact_type"])
        except ValueError:
            fact_type = FactType.TRAIT
        return SemanticFact(
            id=row["id"],
            community_id=row["community_id"],
            subject=row["subject"],
            fact_type=fact_type,
            content=row["content"],
            embedding=_json_list(row["embedding"]),
            confidence=row["confidence"],
            source_episodes=_json_list(row["source_episodes"]),
            first_observed=row["first_observed"],
            last_confirmed=row["last_confirmed"],
            superseded_by=row["superseded_by"],
            created_at=row["created_at"],
        )
