"""Tests for model output parsing."""

from pydantic import BaseModel, field_validator

from hippo.memory.parsing import (
    CoreImpressionOutput,
    DistillationOutput,
    ExtractionOutput,
    Parsed,
    Unparseable,
    parse_model_output,
)
from hippo.memory.types import FactType, Involvement, NameSource


def test_parses_plain_json():
    outcome = parse_model_output('{"memories": []}', ExtractionOutput)
    assert isinstance(outcome, Parsed)
    assert outcome.value.memories == []


def test_tolerates_code_fences_and_prose():
    text = 'Sure!\n```json\n{"recent_impression": "kind of tired lately"}\n```'
    outcome = parse_model_output(text, ExtractionOutput)
    assert isinstance(outcome, Parsed)


def test_no_json_is_unparseable():
    outcome = parse_model_output("I don't remember anything.", ExtractionOutput)
    assert isinstance(outcome, Unparseable)
    assert "no JSON" in outcome.reason


def test_broken_json_is_unparseable():
    outcome = parse_model_output('{"memories": [', ExtractionOutput)
    assert isinstance(outcome, Unparseable)


def test_none_is_unparseable():
    assert isinstance(parse_model_output(None, ExtractionOutput), Unparseable)


def test_numbers_are_clamped():
    """Out-of-range numbers are clamped, not rejected."""
    text = """{"memories": [{
        "summary": "We argued about ramen",
        "emotional_valence": -3,
        "emotional_intensity": 1.7,
        "importance": 2
    }]}"""
    outcome = parse_model_output(text, ExtractionOutput)
    assert isinstance(outcome, Parsed)
    memory = outcome.value.memories[0]
    assert memory.emotional_valence == -1.0
    assert memory.emotional_intensity == 1.0
    assert memory.importance == 1.0


def test_unknown_enums_fall_back():
    text = """{
        "memories": [{"summary": "x", "involvement": "narrator"}],
        "name_observations": [{"user": "u1", "name": "Aki", "source": "rumor"}],
        "cultural_observations": [{"type": "vibe", "content": "everyone says 草"}]
    }"""
    outcome = parse_model_output(text, ExtractionOutput)
    assert isinstance(outcome, Parsed)
    assert outcome.value.memories[0].involvement == Involvement.OBSERVER
    assert outcome.value.name_observations[0].source == NameSource.OTHERS_CALL
    assert outcome.value.cultural_observations[0].type == "expression"


def test_null_lists_become_empty():
    outcome = parse_model_output('{"memories": null, "vibes": null}', ExtractionOutput)
    assert isinstance(outcome, Parsed)
    assert outcome.value.memories == []
    assert outcome.value.vibes == []


def test_structural_error_rejects_whole_response():
    """One malformed item makes the whole response unparseable."""
    text = """{"memories": [
        {"summary": "fine"},
        {"summary": ""}
    ]}"""
    assert isinstance(parse_model_output(text, ExtractionOutput), Unparseable)


def test_wrong_container_type_rejected():
    assert isinstance(parse_model_output('{"memories": "lots"}', ExtractionOutput), Unparseable)


def test_distillation_schema():
    text = """{
        "new_facts": [{"subject": "u1", "fact_type": "hobby", "content": "u1 plays go", "confidence": 0.7}],
        "confirmed_facts": [{"id": 3, "new_confidence": 1.4}],
        "evolved_facts": [{"old_fact_id": 4, "new_content": "u1 moved to Osaka"}],
        "decayed_facts": [{"id": 5}]
    }"""
    outcome = parse_model_output(text, DistillationOutput)
    assert isinstance(outcome, Parsed)
    value = outcome.value
    assert value.new_facts[0].fact_type == FactType.TRAIT
    assert value.confirmed_facts[0].new_confidence == 1.0
    assert value.evolved_facts[0].new_confidence == 0.5
    assert value.decayed_facts[0].new_confidence == 0.2


def test_distillation_bad_id_rejected():
    text = '{"confirmed_facts": [{"id": "the second one"}]}'
    assert isinstance(parse_model_output(text, DistillationOutput), Unparseable)


def test_core_impression_unchanged():
    outcome = parse_model_output('{"unchanged": true}', CoreImpressionOutput)
    assert isinstance(outcome, Parsed)
    assert outcome.value.unchanged
    assert outcome.value.new_impression is None


def test_odd_value_types_are_unparseable():
    """Lists or objects where a number belongs reject the response instead of raising."""
    for text in (
        '{"memories": [{"summary": "x", "importance": [0.9]}]}',
        '{"memories": [{"summary": "x", "participants": {"u1": true}}]}',
        '{"decayed_facts": [{"id": 3, "new_confidence": {"value": 0.1}}]}',
    ):
        schema = DistillationOutput if "decayed" in text else ExtractionOutput
        assert isinstance(parse_model_output(text, schema), Unparseable)


def test_validator_errors_become_unparseable():
    class Strict(BaseModel):
        value: int

        @field_validator("value", mode="before")
        @classmethod
        def explode(cls, value):
            raise TypeError("unexpected")

    outcome = parse_model_output('{"value": 1}', Strict)
    assert isinstance(outcome, Unparseable)
    assert "unexpected" in outcome.reason


def test_numeric_ids_become_strings():
    text = """{
        "memories": [{"summary": "x", "participants": 12345}],
        "relationship_observations": [{"user": 12345, "observation": "kind"}],
        "vibes": [{"user": 12345, "feeling": "tired"}],
        "name_observations": [{"user": 12345, "name": 42}]
    }"""
    outcome = parse_model_output(text, ExtractionOutput)
    assert isinstance(outcome, Parsed)
    value = outcome.value
    assert value.memories[0].participants == ["12345"]
    assert value.relationship_observations[0].user == "12345"
    assert value.vibes[0].user == "12345"
    assert value.name_observations[0].user == "12345"
    assert value.name_observations[0].name == "42"


def test_nickname_source_counts_as_others_call():
    text = '{"name_observations": [{"user": "u1", "name": "Aki", "source": "nickname"}]}'
    outcome = parse_model_output(text, ExtractionOutput)
    assert outcome.value.name_observations[0].source == NameSource.OTHERS_CALL
    assert {s.value for s in NameSource} == {"others_call", "self_intro"}
