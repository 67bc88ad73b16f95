"""Memory records: episodic, relational, semantic, and in-flight state."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class Involvement(Enum):
    """How the persona took part in a remembered event."""

    ACTIVE = "active"
    OBSERVER = "observer"
    MENTIONED = "mentioned"


class ClosenessTier(Enum):
    STRANGER = "stranger"
    ACQUAINTANCE = "acquaintance"
    FAMILIAR = "familiar"
    CLOSE = "close"

    @property
    def rank(self) -> int:
        return _TIER_ORDER.index(self)

    def step_up(self) -> "ClosenessTier":
        return _TIER_ORDER[min(self.rank + 1, len(_TIER_ORDER) - 1)]

    def step_down(self) -> "ClosenessTier":
        return _TIER_ORDER[max(self.rank - 1, 0)]

    @classmethod
    def parse(cls, value: str | None) -> "ClosenessTier":
        try:
            return cls(value)
        except ValueError:
            return cls.STRANGER


_TIER_ORDER = [
    ClosenessTier.STRANGER,
    ClosenessTier.ACQUAINTANCE,
    ClosenessTier.FAMILIAR,
    ClosenessTier.CLOSE,
]


class FactType(Enum):
    PREFERENCE = "preference"
    TRAIT = "trait"
    EXPERIENCE = "experience"
    OPINION = "opinion"
    STATUS = "status"
    INSIDE_JOKE = "inside_joke"
    PREFERRED_NAME = "preferred_name"
    GROUP_EXPRESSION = "group_expression"
    REACTION_PATTERN = "reaction_pattern"
    TOOL_KNOWLEDGE = "tool_knowledge"


class NameSource(Enum):
    OTHERS_CALL = "others_call"
    SELF_INTRO = "self_intro"


GROUP_SUBJECT = "group"


@dataclass
class EpisodicMemory:
    """One remembered event, summarized in the persona's voice."""

    community_id: str
    summary: str
    event_time: datetime
    participants: list[str] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)
    embedding: list[float] = field(default_factory=list)
    importance: float = 0.5
    emotional_valence: float = 0.0
    emotional_intensity: float = 0.0
    involvement: Involvement = Involvement.OBSERVER
    access_count: int = 0
    last_accessed: datetime | None = None
    distilled: bool = False
    distilled_at: datetime | None = None
    archived: bool = False
    created_at: datetime = field(default_factory=datetime.now)
    id: int | None = None


@dataclass
class SignificantEvent:
    """Something notable a person did, waiting to shape the impression of them."""

    timestamp: datetime
    description: str
    emotional_tone: str = "neutral"
    importance: float = 0.3
    consumed: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "description": self.description,
            "emotional_tone": self.emotional_tone,
            "importance": self.importance,
            "consumed": self.consumed,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SignificantEvent":
        return cls(
            timestamp=datetime.fromisoformat(data["timestamp"]),
            description=data.get("description", ""),
            emotional_tone=data.get("emotional_tone", "neutral"),
            importance=float(data.get("importance", 0.3)),
            consumed=bool(data.get("consumed", False)),
        )


@dataclass
class NameObservation:
    """A name someone was called (or introduced themselves with)."""

    name: str
    source: NameSource
    count: int = 1
    first_seen: datetime = field(default_factory=datetime.now)
    last_seen: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "source": self.source.value,
            "count": self.count,
            "first_seen": self.first_seen.isoformat(),
            "last_seen": self.last_seen.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "NameObservation":
        return cls(
            name=data["name"],
            source=NameSource(data.get("source", NameSource.OTHERS_CALL.value)),
            count=int(data.get("count", 1)),
            first_seen=datetime.fromisoformat(data["first_seen"]),
            last_seen=datetime.fromisoformat(data["last_seen"]),
        )


@dataclass
class RelationalMemory:
    """What the persona thinks of one person in one community."""

    community_id: str
    person_id: str
    display_name: str
    core_impression: str = ""
    core_impression_updated_at: datetime | None = None
    recent_impression: str = ""
    recent_impression_updated_at: datetime | None = None
    closeness_tier: ClosenessTier = ClosenessTier.STRANGER
    interaction_count: int = 0
    recent_interaction_count: int = 0
    last_interaction: datetime = field(default_factory=datetime.now)
    significant_events: list[SignificantEvent] = field(default_factory=list)
    known_names: list[NameObservation] = field(default_factory=list)
    preferred_name: str | None = None
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)
    id: int | None = None


@dataclass
class SemanticFact:
    """A confidence-weighted belief about a person or the community."""

    community_id: str
    subject: str  # person id or GROUP_SUBJECT
    fact_type: FactType
    content: str
    confidence: float = 0.5
    embedding: list[float] = field(default_factory=list)
    source_episodes: list[int] = field(default_factory=list)
    first_observed: datetime = field(default_factory=datetime.now)
    last_confirmed: datetime = field(default_factory=datetime.now)
    superseded_by: int | None = None
    created_at: datetime = field(default_factory=datetime.now)
    id: int | None = None

    @property
    def is_live(self) -> bool:
        return self.superseded_by is None


@dataclass
class SessionVibe:
    """Short-lived mood tag; never persisted."""

    person_id: str
    vibe: str
    expires_at: datetime


@dataclass
class PendingEpisode:
    """An accepted episode waiting for the next flush."""

    community_id: str
    summary: str
    embedding: list[float]
    event_time: datetime
    participants: list[str] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)
    importance: float = 0.5
    emotional_valence: float = 0.0
    emotional_intensity: float = 0.0
    involvement: Involvement = Involvement.OBSERVER

    def to_record(self) -> EpisodicMemory:
        now = datetime.now()
        return EpisodicMemory(
            community_id=self.community_id,
            summary=self.summary,
            event_time=self.event_time,
            participants=list(self.participants),
            tags=list(self.tags),
            embedding=list(self.embedding),
            importance=self.importance,
            emotional_valence=self.emotional_valence,
            emotional_intensity=self.emotional_intensity,
            involvement=self.involvement,
            last_accessed=now,
            created_at=now,
        )


@dataclass
class PendingRelationalUpdate:
    """An observed interaction with a person, applied on flush."""

    community_id: str
    person_id: str
    display_name: str
    event: SignificantEvent


@dataclass
class MemoryContext:
    """Read-path output handed to the prompt layer."""

    user_profile: str = ""
    memories: str = ""


@dataclass
class RecordSummary:
    """What one record() call extracted, for observability."""

    worth_remembering: bool = False
    episodes: int = 0
    relational: int = 0
    vibes: int = 0
    names: int = 0
    cultural: int = 0
    episode_summaries: list[str] = field(default_factory=list)
    relational_summaries: list[str] = field(default_factory=list)
    session_vibes: list[str] = field(default_factory=list)


# Extraction output, after identifiers were validated against the chunk


@dataclass
class CandidateEpisode:
    summary: str
    participants: list[str] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)
    importance: float = 0.5
    emotional_valence: float = 0.0
    emotional_intensity: float = 0.0
    involvement: Involvement = Involvement.OBSERVER
    embedding: list[float] | None = None  # set when it arrives pre-embedded
    event_time: datetime | None = None


@dataclass
class PersonObservation:
    person_id: str
    display_name: str
    observation: str
    emotional_tone: str = "neutral"
    importance: float = 0.3


@dataclass
class VibeSignal:
    person_id: str
    vibe: str
    ttl_hours: float | None = None


@dataclass
class NameSignal:
    person_id: str
    name: str
    source: NameSource = NameSource.OTHERS_CALL
    display_name: str | None = None


@dataclass
class CultureSignal:
    kind: str  # expression | reaction_pattern | tool_knowledge | meme
    content: str
    confidence: float = 0.5


@dataclass
class ExtractionResult:
    episodes: list[CandidateEpisode] = field(default_factory=list)
    observations: list[PersonObservation] = field(default_factory=list)
    vibes: list[VibeSignal] = field(default_factory=list)
    names: list[NameSignal] = field(default_factory=list)
    culture: list[CultureSignal] = field(default_factory=list)

    @property
    def worth_remembering(self) -> bool:
        return bool(self.episodes or self.observations)

    def merge(self, other: "ExtractionResult") -> None:
        self.episodes.extend(other.episodes)
        self.observations.extend(other.observations)
        self.vibes.extend(other.vibes)
        self.names.extend(other.names)
        self.culture.extend(other.culture)
