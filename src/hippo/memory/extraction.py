"""
Extraction pipeline - turns raw chat into memory candidates.

Messages are cut into chunks, spam chunks are dropped, ordinary chunks are
sampled, and each selected chunk costs one model call. Whatever the model
says about people is checked against who actually appeared in the chunk.
"""

import random
import re
from collections import Counter
from datetime import timedelta
from functools import lru_cache

from hippo.core.config import Settings
from hippo.core.logging import get_logger
from hippo.core.types import ChatMessage
from hippo.llm.base import LLMConfig, ModelClient
from hippo.memory.parsing import ExtractionOutput, Unparseable, parse_model_output
from hippo.memory.prompts import EXTRACTION_PROMPT, EXTRACTION_SYSTEM
from hippo.memory.types import (
    CandidateEpisode,
    CultureSignal,
    ExtractionResult,
    NameSignal,
    PersonObservation,
    VibeSignal,
)

logger = get_logger("memory.extraction")

_NON_WORD = re.compile(r"[\W_]+")
_ID_PREFIX = re.compile(r"^(?:uid|id|user)\s*[:：=]\s*", re.IGNORECASE)
_U_NUMERIC = re.compile(r"^u(\d+)$")


def chunk_messages(
    messages: list[ChatMessage],
    max_messages: int = 30,
    idle_gap: timedelta = timedelta(minutes=5),
) -> list[list[ChatMessage]]:
    """Split an ordered stream on size cap or idle gap, whichever comes first."""
    chunks: list[list[ChatMessage]] = []
    current: list[ChatMessage] = []
    for message in messages:
        if current and (
            len(current) >= max_messages
            or message.timestamp - current[-1].timestamp > idle_gap
        ):
            chunks.append(current)
            current = []
        current.append(message)
    if current:
        chunks.append(current)
    return chunks


def _normalize(text: str) -> str:
    return _NON_WORD.sub("", text.casefold())


def is_near_empty(text: str) -> bool:
    """Three characters or less, or nothing but symbols/emoji."""
    stripped = text.strip()
    return len(stripped) <= 3 or not _normalize(stripped)


def is_spam_chunk(
    chunk: list[ChatMessage],
    empty_ratio: float = 0.6,
    duplicate_ratio: float = 0.7,
) -> bool:
    if not chunk:
        return True

    total = len(chunk)
    empty = sum(1 for m in chunk if is_near_empty(m.text))
    if empty / total > empty_ratio:
        return True

    normalized = [_normalize(m.text) for m in chunk]
    counts = Counter(normalized)
    duplicates = sum(1 for n in normalized if counts[n] > 1)
    return duplicates / total > duplicate_ratio


@lru_cache(maxsize=64)
def _alias_pattern(name: str) -> re.Pattern:
    """Latin names match whole words only; CJK text has no word breaks."""
    escaped = re.escape(name)
    if name.isascii():
        return re.compile(rf"(?<![a-z0-9_]){escaped}(?![a-z0-9_])")
    return re.compile(escaped)


def addresses_persona(message: ChatMessage, persona_id: str, persona_names: set[str]) -> bool:
    if message.reply_to_persona or persona_id in message.mentions:
        return True
    text = message.text.lower()
    return any(_alias_pattern(name).search(text) for name in persona_names if name)


def topic_density(chunk: list[ChatMessage], keywords: list[str]) -> float:
    if not chunk:
        return 0.0
    lowered = [k.lower() for k in keywords if k]
    hits = sum(1 for m in chunk if any(k in m.text.lower() for k in lowered))
    return hits / len(chunk)


def should_extract_chunk(
    chunk: list[ChatMessage],
    persona_id: str,
    persona_names: set[str],
    topic_keywords: list[str],
    density_threshold: float = 0.3,
    sample_rate: float = 0.33,
    rng: random.Random | None = None,
) -> bool:
    """Decide whether a non-spam chunk is worth a model call."""
    for message in chunk:
        if message.is_persona or addresses_persona(message, persona_id, persona_names):
            return True
    if topic_density(chunk, topic_keywords) >= density_threshold:
        return True
    return (rng or random).random() < sample_rate


class IdentifierResolver:
    """Maps whatever the model wrote for a person back to a real participant id."""

    def __init__(self, messages: list[ChatMessage], persona_id: str, persona_names: set[str]):
        self.persona_id = persona_id
        self.persona_names = persona_names
        self.known: set[str] = {persona_id}
        self.by_name: dict[str, str] = {}
        self.display_names: dict[str, str] = {}
        for message in messages:
            if message.is_persona:
                continue
            self.known.add(message.sender_id)
            self.display_names[message.sender_id] = message.sender_name
            if message.sender_name.strip():
                self.by_name[message.sender_name.strip().lower()] = message.sender_id

    def _lookup(self, ref: str) -> str | None:
        if ref in self.known:
            return ref
        lowered = ref.lower()
        if lowered in self.persona_names:
            return self.persona_id
        return self.by_name.get(lowered)

    def resolve(self, ref: object) -> str | None:
        ref = str(ref).strip()
        if not ref:
            return None

        resolved = self._lookup(ref)
        if resolved:
            return resolved

        stripped = _ID_PREFIX.sub("", ref.lstrip("@")).strip()
        match = _U_NUMERIC.match(stripped)
        for candidate in (stripped, match.group(1) if match else None):
            if candidate:
                resolved = self._lookup(candidate)
                if resolved:
                    return resolved
        return None

    def display_name(self, person_id: str) -> str:
        return self.display_names.get(person_id, person_id)


class MemoryExtractor:
    """Runs extraction over chat messages."""

    def __init__(
        self,
        llm: ModelClient,
        settings: Settings,
        rng: random.Random | None = None,
    ):
        self.llm = llm
        self.settings = settings
        self.rng = rng or random.Random()

    async def extract(
        self, messages: list[ChatMessage], persona_name: str | None = None
    ) -> ExtractionResult:
        """Chunk, filter, sample, then extract each selected chunk."""
        persona_name = persona_name or self.settings.persona_name
        persona_names = self.settings.persona_names | {persona_name.lower()}
        result = ExtractionResult()
        chunks = chunk_messages(
            messages,
            max_messages=self.settings.chunk_max_messages,
            idle_gap=timedelta(minutes=self.settings.chunk_idle_gap_minutes),
        )

        selected = 0
        for chunk in chunks:
            if is_spam_chunk(
                chunk, self.settings.spam_empty_ratio, self.settings.spam_duplicate_ratio
            ):
                logger.debug(f"Skipping spam chunk of {len(chunk)} messages")
                continue
            if not should_extract_chunk(
                chunk,
                self.settings.persona_id,
                persona_names,
                self.settings.topic_keywords,
                self.settings.topic_density_threshold,
                self.settings.sample_rate,
                self.rng,
            ):
                continue
            selected += 1
            try:
                result.merge(await self._extract_chunk(chunk, persona_name))
            except Exception as e:
                logger.warning(f"Extraction of a {len(chunk)}-message chunk failed: {e}")

        logger.info(
            f"Extracted {len(result.episodes)} episodes, {len(result.observations)} "
            f"observations from {selected}/{len(chunks)} chunks"
        )
        return result

    async def extract_batch(
        self, messages: list[ChatMessage], persona_name: str | None = None
    ) -> ExtractionResult:
        """One model call over the whole batch, no filtering."""
        if not messages:
            return ExtractionResult()
        return await self._extract_chunk(messages, persona_name or self.settings.persona_name)

    async def _extract_chunk(
        self, chunk: list[ChatMessage], persona_name: str
    ) -> ExtractionResult:
        persona_id = self.settings.persona_id
        transcript = "\n".join(m.render(persona_id, persona_name) for m in chunk)
        messages = [
            {
                "role": "system",
                "content": EXTRACTION_SYSTEM.format(
                    persona_name=persona_name, persona_id=persona_id
                ),
            },
            {"role": "user", "content": EXTRACTION_PROMPT.format(transcript=transcript)},
        ]

        try:
            response = await self.llm.complete(
                messages,
                LLMConfig(max_tokens=self.settings.extraction_max_tokens, json_mode=True),
            )
        except Exception as e:
            logger.warning(f"Extraction call failed: {e}")
            return ExtractionResult()

        outcome = parse_model_output(response.content, ExtractionOutput)
        if isinstance(outcome, Unparseable):
            logger.warning(f"Unparseable extraction output: {outcome.reason}")
            return ExtractionResult()

        persona_names = self.settings.persona_names | {persona_name.lower()}
        resolver = IdentifierResolver(chunk, persona_id, persona_names)
        return self._to_result(outcome.value, resolver, chunk)

    def _to_result(
        self,
        output: ExtractionOutput,
        resolver: IdentifierResolver,
        chunk: list[ChatMessage],
    ) -> ExtractionResult:
        persona_id = self.settings.persona_id
        event_time = chunk[-1].timestamp
        result = ExtractionResult()

        for memory in output.memories:
            participants = []
            for ref in memory.participants:
                person_id = resolver.resolve(ref)
                if person_id is None:
                    logger.debug(f"Dropping unknown participant {ref!r}")
                elif person_id not in participants:
                    participants.append(person_id)
            result.episodes.append(
                CandidateEpisode(
                    summary=memory.summary.strip(),
                    participants=participants,
                    tags=memory.topic_tags,
                    importance=memory.importance,
                    emotional_valence=memory.emotional_valence,
                    emotional_intensity=memory.emotional_intensity,
                    involvement=memory.involvement,
                    event_time=event_time,
                )
            )

        for obs in output.relationship_observations:
            person_id = resolver.resolve(obs.user)
            if person_id is None or person_id == persona_id:
                continue
            result.observations.append(
                PersonObservation(
                    person_id=person_id,
                    display_name=resolver.display_name(person_id),
                    observation=obs.observation.strip(),
                    emotional_tone=obs.emotion,
                    importance=obs.importance,
                )
            )

        for vibe in output.vibes:
            person_id = resolver.resolve(vibe.user)
            if person_id is None or person_id == persona_id:
                continue
            result.vibes.append(VibeSignal(person_id, vibe.feeling.strip(), vibe.hours))

        for name in output.name_observations:
            person_id = resolver.resolve(name.user)
            if person_id is None or person_id == persona_id or not name.name:
                continue
            result.names.append(
                NameSignal(person_id, name.name, name.source, resolver.display_name(person_id))
            )

        for culture in output.cultural_observations:
            result.culture.append(
                CultureSignal(culture.type, culture.content.strip(), culture.confidence)
            )

        return result
