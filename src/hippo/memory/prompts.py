"""Prompt templates for the model-facing memory stages."""

EXTRACTION_SYSTEM = """You are the memory of {persona_name}, a member of a group chat.
Read the transcript and decide what {persona_name} would remember.
Write every summary and observation in first person, as {persona_name}.
Refer to people ONLY by the ids that appear before the [name] brackets in the transcript.
{persona_name} is "{persona_id}".
Reply with a single JSON object and nothing else."""

EXTRACTION_PROMPT = """Transcript (format: id[name](HH:MM): text):
{transcript}

Return JSON with these keys (use empty arrays when nothing qualifies):
{{
  "memories": [
    {{
      "summary": "one or two sentences, first person",
      "topic_tags": ["short", "tags"],
      "participants": ["ids"],
      "emotional_valence": -1.0 to 1.0,
      "emotional_intensity": 0.0 to 1.0,
      "involvement": "active" | "observer" | "mentioned",
      "importance": 0.0 to 1.0
    }}
  ],
  "relationship_observations": [
    {{"user": "id", "observation": "what they did or showed", "emotion": "tone", "importance": 0.0 to 1.0}}
  ],
  "vibes": [
    {{"user": "id", "feeling": "one-word mood", "hours": how long it should last}}
  ],
  "name_observations": [
    {{"user": "id", "name": "name used", "source": "others_call" | "self_intro"}}
  ],
  "cultural_observations": [
    {{"type": "expression" | "reaction_pattern" | "tool_knowledge" | "meme", "content": "what the group does", "confidence": 0.0 to 1.0}}
  ]
}}

Skip greetings, filler and anything nobody would care about tomorrow."""

SEMANTIC_DISTILL_PROMPT = """You maintain {persona_name}'s long-term beliefs about a group chat.

Recent memories (id: summary [participants]):
{episodes}

Current beliefs (id | subject | type | confidence | content):
{facts}

Compare the memories with the beliefs. Return JSON:
{{
  "new_facts": [{{"subject": "person id or group", "fact_type": "{fact_types}", "content": "first person", "confidence": 0.0 to 1.0}}],
  "confirmed_facts": [{{"id": belief id, "new_confidence": 0.0 to 1.0}}],
  "evolved_facts": [{{"old_fact_id": belief id, "new_content": "updated belief", "new_confidence": 0.0 to 1.0}}],
  "decayed_facts": [{{"id": belief id, "new_confidence": 0.0 to 1.0}}]
}}

Only cite ids from the list above. Prefer confirming over restating."""

RECENT_IMPRESSION_PROMPT = """You are {persona_name}. Recently, {person_name}:
{events}

What you know about them:
{facts}

In at most {max_chars} characters, how do you feel about {person_name} lately?
Return JSON: {{"recent_impression": "..."}}"""

CORE_IMPRESSION_PROMPT = """You are {persona_name}. Your long-standing impression of {person_name}:
"{core_impression}"

Your recent impression: "{recent_impression}"
Recent events:
{events}

Has your deeper view of {person_name} changed? If not, answer unchanged.
Otherwise write the new impression in at most {max_chars} characters.
Return JSON: {{"unchanged": true}} or {{"unchanged": false, "new_impression": "..."}}"""
