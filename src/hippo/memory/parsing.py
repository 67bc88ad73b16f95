"""
Model output parsing.

Every model-facing stage goes through parse_model_output(), which returns
either Parsed(value) or Unparseable(reason). Out-of-range numbers are clamped
and unknown enum values fall back to a default; anything structurally wrong
makes the whole response Unparseable so nothing is half-applied.
"""

import json
import re
from dataclasses import dataclass
from typing import Any, Generic, Literal, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from hippo.memory.types import FactType, Involvement, NameSource

_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")

T = TypeVar("T", bound=BaseModel)


@dataclass(frozen=True)
class Parsed(Generic[T]):
    value: T


@dataclass(frozen=True)
class Unparseable:
    reason: str
    raw: str = ""


def parse_model_output(text: str | None, schema: type[T]) -> Parsed[T] | Unparseable:
    """Locate the JSON object in a model response and validate it."""
    text = text or ""
    match = _JSON_OBJECT.search(text)
    if not match:
        return Unparseable("no JSON object in output", text[:300])

    try:
        data = json.loads(match.group(0))
    except json.JSONDecodeError as e:
        return Unparseable(f"invalid JSON: {e.msg}", text[:300])

    try:
        return Parsed(schema.model_validate(data))
    except ValidationError as e:
        return Unparseable(f"schema mismatch ({e.error_count()} errors)", text[:300])
    except Exception as e:
        # A validator choking on an odd value still means "nothing to apply"
        return Unparseable(f"validation failed: {e}", text[:300])


def _clamp(value: Any, low: float, high: float, default: float) -> float:
    if value is None:
        return default
    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        raise ValueError(f"expected a number, got {type(value).__name__}")
    return min(high, max(low, float(value)))


def _string_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, (str, int, float)):
        value = [value]
    if not isinstance(value, (list, tuple)):
        raise ValueError(f"expected a list, got {type(value).__name__}")
    return [str(v).strip() for v in value if str(v).strip()]


class _Output(BaseModel):
    model_config = ConfigDict(extra="ignore")

    @field_validator("*", mode="before")
    @classmethod
    def normalize_loose_values(cls, value: Any, info) -> Any:
        field = cls.model_fields.get(info.field_name)
        if field is None:
            return value
        # Models like to send null for empty arrays
        if value is None and field.default_factory is list:
            return []
        # ...and bare numbers for ids and names
        if field.annotation is str and isinstance(value, (int, float)):
            if isinstance(value, bool):
                return value
            return str(value)
        return value


# Extraction


class EpisodeOut(_Output):
    summary: str = Field(min_length=1)
    topic_tags: list[str] = Field(default_factory=list)
    participants: list[str] = Field(default_factory=list)
    emotional_valence: float = 0.0
    emotional_intensity: float = 0.0
    involvement: Involvement = Involvement.OBSERVER
    importance: float = 0.5

    @field_validator("topic_tags", "participants", mode="before")
    @classmethod
    def normalize_strings(cls, value: Any) -> list[str]:
        return _string_list(value)

    @field_validator("emotional_valence", mode="before")
    @classmethod
    def normalize_valence(cls, value: Any) -> float:
        return _clamp(value, -1.0, 1.0, 0.0)

    @field_validator("emotional_intensity", mode="before")
    @classmethod
    def normalize_intensity(cls, value: Any) -> float:
        return _clamp(value, 0.0, 1.0, 0.0)

    @field_validator("importance", mode="before")
    @classmethod
    def normalize_importance(cls, value: Any) -> float:
        return _clamp(value, 0.0, 1.0, 0.5)

    @field_validator("involvement", mode="before")
    @classmethod
    def normalize_involvement(cls, value: Any) -> str:
        valid = {i.value for i in Involvement}
        value = str(value or "").strip().lower()
        return value if value in valid else Involvement.OBSERVER.value


class RelationshipOut(_Output):
    user: str = Field(min_length=1)
    observation: str = Field(min_length=1)
    emotion: str = "neutral"
    importance: float = 0.3

    @field_validator("importance", mode="before")
    @classmethod
    def normalize_importance(cls, value: Any) -> float:
        return _clamp(value, 0.0, 1.0, 0.3)

    @field_validator("emotion", mode="before")
    @classmethod
    def normalize_emotion(cls, value: Any) -> str:
        return str(value).strip() if value else "neutral"


class VibeOut(_Output):
    user: str = Field(min_length=1)
    feeling: str = Field(min_length=1)
    hours: float | None = None


class NameOut(_Output):
    user: str = Field(min_length=1)
    name: str
    source: NameSource = NameSource.OTHERS_CALL

    @field_validator("name", mode="before")
    @classmethod
    def normalize_name(cls, value: Any) -> str:
        return str(value or "").strip()

    @field_validator("source", mode="before")
    @classmethod
    def normalize_source(cls, value: Any) -> str:
        if value == NameSource.SELF_INTRO.value:
            return NameSource.SELF_INTRO.value
        return NameSource.OTHERS_CALL.value


CultureKind = Literal["expression", "reaction_pattern", "tool_knowledge", "meme"]


class CultureOut(_Output):
    type: CultureKind = "expression"
    content: str = Field(min_length=1)
    confidence: float = 0.5

    @field_validator("type", mode="before")
    @classmethod
    def normalize_kind(cls, value: Any) -> str:
        value = str(value or "").strip().lower()
        return value if value in CultureKind.__args__ else "expression"

    @field_validator("confidence", mode="before")
    @classmethod
    def normalize_confidence(cls, value: Any) -> float:
        return _clamp(value, 0.0, 1.0, 0.5)


class ExtractionOutput(_Output):
    memories: list[EpisodeOut] = Field(default_factory=list)
    relationship_observations: list[RelationshipOut] = Field(default_factory=list)
    vibes: list[VibeOut] = Field(default_factory=list)
    name_observations: list[NameOut] = Field(default_factory=list)
    cultural_observations: list[CultureOut] = Field(default_factory=list)


# Distillation


def _fact_type(value: Any) -> str:
    valid = {t.value for t in FactType}
    value = str(value or "").strip().lower()
    return value if value in valid else FactType.TRAIT.value


class NewFactOut(_Output):
    subject: str = Field(min_length=1)
    fact_type: FactType = FactType.TRAIT
    content: str = Field(min_length=1)
    confidence: float = 0.5

    @field_validator("fact_type", mode="before")
    @classmethod
    def normalize_type(cls, value: Any) -> str:
        return _fact_type(value)

    @field_validator("confidence", mode="before")
    @classmethod
    def normalize_confidence(cls, value: Any) -> float:
        return _clamp(value, 0.0, 1.0, 0.5)


class ConfirmedFactOut(_Output):
    id: int
    new_confidence: float = 0.5

    @field_validator("new_confidence", mode="before")
    @classmethod
    def normalize_confidence(cls, value: Any) -> float:
        return _clamp(value, 0.0, 1.0, 0.5)


class EvolvedFactOut(_Output):
    old_fact_id: int
    new_content: str = Field(min_length=1)
    new_confidence: float = 0.5

    @field_validator("new_confidence", mode="before")
    @classmethod
    def normalize_confidence(cls, value: Any) -> float:
        return _clamp(value, 0.0, 1.0, 0.5)


class DecayedFactOut(_Output):
    id: int
    new_confidence: float = 0.2

    @field_validator("new_confidence", mode="before")
    @classmethod
    def normalize_confidence(cls, value: Any) -> float:
        return _clamp(value, 0.0, 1.0, 0.2)


class DistillationOutput(_Output):
    new_facts: list[NewFactOut] = Field(default_factory=list)
    confirmed_facts: list[ConfirmedFactOut] = Field(default_factory=list)
    evolved_facts: list[EvolvedFactOut] = Field(default_factory=list)
    decayed_facts: list[DecayedFactOut] = Field(default_factory=list)


class RecentImpressionOutput(_Output):
    recent_impression: str = ""

    @field_validator("recent_impression", mode="before")
    @classmethod
    def normalize_text(cls, value: Any) -> str:
        return str(value).strip() if value else ""


class CoreImpressionOutput(_Output):
    unchanged: bool = False
    new_impression: str | None = None

    @field_validator("new_impression", mode="before")
    @classmethod
    def normalize_text(cls, value: Any) -> str | None:
        return str(value).strip() if value else None
