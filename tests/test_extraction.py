"""Tests for the extraction pipeline."""

import random
from datetime import datetime, timedelta

import pytest

from conftest import FakeLLM, make_message
from hippo.memory.extraction import (
    IdentifierResolver,
    MemoryExtractor,
    chunk_messages,
    is_spam_chunk,
    should_extract_chunk,
)
from hippo.memory.types import Involvement, NameSource

T0 = datetime(2024, 5, 1, 21, 0)


def conversation(texts: list[str], gap: timedelta = timedelta(seconds=20), sender: str = "u1"):
    return [make_message(sender, text, T0 + gap * i) for i, text in enumerate(texts)]


class FixedRandom(random.Random):
    def __init__(self, value: float):
        super().__init__()
        self.value = value

    def random(self) -> float:
        return self.value


EXTRACTION_RESPONSE = {
    "memories": [
        {
            "summary": "Aki told me about passing the exam",
            "topic_tags": ["exam"],
            "participants": ["u1", "@Ren", "Mio", "ghost"],
            "emotional_valence": 0.8,
            "emotional_intensity": 0.6,
            "involvement": "active",
            "importance": 0.7,
        }
    ],
    "relationship_observations": [
        {"user": "uid:u1", "observation": "Aki worked hard for months", "emotion": "proud", "importance": 0.6},
        {"user": "nobody", "observation": "should be dropped"},
    ],
    "vibes": [{"user": "Aki", "feeling": "elated", "hours": 3}],
    "name_observations": [{"user": "u2", "name": "Rennie", "source": "others_call"}],
    "cultural_observations": [{"type": "expression", "content": "people say 草 when laughing"}],
}


def test_chunk_by_size():
    messages = conversation([f"m{i}" for i in range(65)])
    chunks = chunk_messages(messages, max_messages=30)
    assert [len(c) for c in chunks] == [30, 30, 5]


def test_chunk_by_idle_gap():
    messages = conversation(["a", "b"]) + [
        make_message("u1", "c", T0 + timedelta(minutes=10)),
        make_message("u1", "d", T0 + timedelta(minutes=11)),
    ]
    chunks = chunk_messages(messages, idle_gap=timedelta(minutes=5))
    assert [[m.text for m in c] for c in chunks] == [["a", "b"], ["c", "d"]]


def test_chunk_empty():
    assert chunk_messages([]) == []


def test_grass_spam_chunk():
    """Eight "草" out of ten messages is spam."""
    texts = ["草"] * 8 + ["what happened in the match yesterday", "the referee was blind lol"]
    assert is_spam_chunk(conversation(texts))


def test_emoji_only_counts_as_empty():
    texts = ["😂😂😂😂😂", "!!!!!!", "🤣🤣🤣🤣", "real sentence here", "another real one"]
    assert not is_spam_chunk(conversation(texts))
    assert is_spam_chunk(conversation(texts[:3] + ["ok fine whatever"]))


def test_duplicate_spam_chunk():
    texts = ["Happy birthday!!"] * 4 + ["happy  birthday"] * 4 + ["thanks everyone", "cake pics?"]
    assert is_spam_chunk(conversation(texts))


def test_normal_chat_not_spam():
    texts = ["anyone tried the new ramen place", "yes the broth is great", "too salty for me"]
    assert not is_spam_chunk(conversation(texts))


def test_persona_in_chunk_always_extracted(settings):
    chunk = conversation(["random chatter here"]) + [
        make_message("bot", "I agree!", T0, is_persona=True)
    ]
    assert should_extract_chunk(chunk, "bot", settings.persona_names, [], rng=FixedRandom(0.99))


def test_persona_addressed_by_alias(settings):
    chunk = conversation(["hey mio what do you think"])
    assert should_extract_chunk(chunk, "bot", settings.persona_names, [], rng=FixedRandom(0.99))


def test_persona_mentioned_by_id(settings):
    chunk = [make_message("u1", "look at this", T0, mentions=["bot"])]
    assert should_extract_chunk(chunk, "bot", {"mio"}, [], rng=FixedRandom(0.99))


def test_topic_density_selects(settings):
    chunk = conversation(["my birthday is next week", "nice one", "cool stuff"])
    assert should_extract_chunk(
        chunk, "bot", set(), ["birthday"], density_threshold=0.3, rng=FixedRandom(0.99)
    )


def test_sampling_decides_ordinary_chunks():
    chunk = conversation(["nice weather", "indeed it is", "going for a walk"])
    assert should_extract_chunk(chunk, "bot", set(), [], sample_rate=0.33, rng=FixedRandom(0.1))
    assert not should_extract_chunk(chunk, "bot", set(), [], sample_rate=0.33, rng=FixedRandom(0.5))


def test_identifier_resolution():
    messages = [
        make_message("u1", "hi", T0, sender_name="Aki"),
        make_message("123", "yo", T0, sender_name="Ren"),
        make_message("bot", "hello", T0, is_persona=True),
    ]
    resolver = IdentifierResolver(messages, "bot", {"mio", "bot"})

    assert resolver.resolve("u1") == "u1"
    assert resolver.resolve("Aki") == "u1"
    assert resolver.resolve("@ren") == "123"
    assert resolver.resolve("u123") == "123"
    assert resolver.resolve("uid:123") == "123"
    assert resolver.resolve("ID: u1") == "u1"
    assert resolver.resolve("Mio") == "bot"
    assert resolver.resolve("BOT") == "bot"
    assert resolver.resolve("stranger") is None
    assert resolver.resolve("") is None


@pytest.mark.asyncio
async def test_extract_normalizes_identifiers(settings):
    llm = FakeLLM([EXTRACTION_RESPONSE])
    extractor = MemoryExtractor(llm, settings, rng=FixedRandom(0.0))
    messages = [
        make_message("u1", "I passed my exam!!", T0, sender_name="Aki"),
        make_message("u2", "congrats Aki", T0 + timedelta(seconds=30), sender_name="Ren"),
    ]

    result = await extractor.extract(messages)

    assert len(llm.calls) == 1
    episode = result.episodes[0]
    assert episode.participants == ["u1", "u2", "bot"]
    assert episode.involvement == Involvement.ACTIVE
    assert episode.event_time == messages[-1].timestamp
    assert [o.person_id for o in result.observations] == ["u1"]
    assert result.observations[0].display_name == "Aki"
    assert result.vibes[0].person_id == "u1"
    assert result.vibes[0].ttl_hours == 3
    assert result.names[0].person_id == "u2"
    assert result.names[0].source == NameSource.OTHERS_CALL
    assert result.culture[0].kind == "expression"
    assert result.worth_remembering


@pytest.mark.asyncio
async def test_spam_chunk_never_sent_to_model(settings):
    llm = FakeLLM()
    extractor = MemoryExtractor(llm, settings, rng=FixedRandom(0.0))
    texts = ["草"] * 8 + ["lmao what", "that clip was something"]

    result = await extractor.extract(conversation(texts))

    assert llm.calls == []
    assert not result.worth_remembering


@pytest.mark.asyncio
async def test_chunk_failures_are_isolated(settings):
    """A failing call or garbage output empties only that chunk."""
    llm = FakeLLM([ConnectionError("timeout"), "not json at all", EXTRACTION_RESPONSE])
    extractor = MemoryExtractor(llm, settings, rng=FixedRandom(0.0))
    messages = []
    for block in range(3):
        start = T0 + timedelta(hours=block)
        messages += [
            make_message("u1", f"block {block} first line", start, sender_name="Aki"),
            make_message("u2", f"block {block} second line", start + timedelta(seconds=5), sender_name="Ren"),
        ]

    result = await extractor.extract(messages)

    assert len(llm.calls) == 3
    assert len(result.episodes) == 1


@pytest.mark.asyncio
async def test_extract_batch_skips_filters(settings):
    """The batch variant sends even spammy input in one call."""
    llm = FakeLLM([{"memories": [{"summary": "everyone spammed grass", "participants": ["u1"]}]}])
    extractor = MemoryExtractor(llm, settings, rng=FixedRandom(0.99))

    result = await extractor.extract_batch(conversation(["草"] * 10))

    assert len(llm.calls) == 1
    assert result.episodes[0].participants == ["u1"]


@pytest.mark.asyncio
async def test_transcript_rendering(settings):
    llm = FakeLLM()
    extractor = MemoryExtractor(llm, settings, rng=FixedRandom(0.0))
    await extractor.extract_batch([make_message("u1", "good night all", T0, sender_name="Aki")])

    user_prompt = llm.calls[0][1]["content"]
    assert "u1[Aki](21:00): good night all" in user_prompt


def test_alias_matches_whole_words_only():
    robot = [make_message("u1", "my robot vacuum ate a bottle cap", T0)]
    assert not should_extract_chunk(robot, "bot", {"bot", "mio"}, [], rng=FixedRandom(0.99))

    direct = [make_message("u1", "ok bot, settle this", T0)]
    assert should_extract_chunk(direct, "bot", {"bot"}, [], rng=FixedRandom(0.99))


def test_numeric_persona_id_needs_its_own_token():
    chunk = [make_message("u1", "my order number is 4200917", T0)]
    assert not should_extract_chunk(chunk, "42", {"42"}, [], rng=FixedRandom(0.99))
    assert should_extract_chunk(
        [make_message("u1", "42 what do you think", T0)], "42", {"42"}, [], rng=FixedRandom(0.99)
    )


def test_cjk_alias_matches_inside_sentence():
    chunk = [make_message("u1", "小美你觉得呢", T0)]
    assert should_extract_chunk(chunk, "bot", {"小美"}, [], rng=FixedRandom(0.99))


@pytest.mark.asyncio
async def test_odd_typed_output_does_not_abort_other_chunks(settings):
    llm = FakeLLM([
        {"memories": [{"summary": "broken", "importance": [0.9]}]},
        {"memories": [{"summary": "Ren shared a recipe", "participants": ["u2"]}]},
    ])
    extractor = MemoryExtractor(llm, settings, rng=FixedRandom(0.0))
    messages = [
        make_message("u1", "first block talk", T0, sender_name="Aki"),
        make_message("u2", "second block talk", T0 + timedelta(hours=1), sender_name="Ren"),
    ]

    result = await extractor.extract(messages)

    assert len(llm.calls) == 2
    assert [e.summary for e in result.episodes] == ["Ren shared a recipe"]


@pytest.mark.asyncio
async def test_numeric_user_ids_resolve(settings):
    llm = FakeLLM([{
        "memories": [{"summary": "Aki got promoted", "participants": [10001]}],
        "relationship_observations": [{"user": 10001, "observation": "worked hard"}],
        "vibes": [{"user": 10001, "feeling": "proud"}],
    }])
    extractor = MemoryExtractor(llm, settings, rng=FixedRandom(0.0))

    result = await extractor.extract_batch(
        [make_message("10001", "I got promoted!", T0, sender_name="Aki")]
    )

    assert result.episodes[0].participants == ["10001"]
    assert result.observations[0].person_id == "10001"
    assert result.vibes[0].person_id == "10001"
