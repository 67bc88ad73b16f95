"""
Configuration management.

Loads settings from environment variables and .env file.
Prefix: HIPPO_

Scoring weights, thresholds and bumps are hand-tuned defaults, not derived
values. Override any of them through the environment, e.g.
HIPPO_WEIGHT_SIMILARITY=0.6.
"""

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_TOPIC_KEYWORDS = [
    # Chinese
    "喜欢", "讨厌", "生日", "工作", "上班", "考试", "毕业", "搬家", "分手",
    "恋爱", "旅游", "生病", "游戏", "老家", "宠物", "推荐", "打算", "决定",
    # English
    "favorite", "hate", "birthday", "job", "exam", "moving", "travel",
    "sick", "recommend", "decided", "planning",
]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="HIPPO_",
        env_file=".env",
        env_file_encoding="utf-8",
    )

    # Storage
    data_dir: Path = Field(default=Path("data"), description="Data storage directory")
    db_name: str = Field(default="hippo.db", description="SQLite database name")

    # Model services (litellm model names)
    llm_model: str = Field(default="gpt-4o-mini", description="Extraction/distillation model")
    llm_api_key: str = Field(default="", description="API key for the model provider")
    llm_api_base: str = Field(default="", description="Custom endpoint (OpenAI-compatible)")
    embedding_model: str = Field(
        default="text-embedding-3-small", description="Embedding model"
    )
    embedding_api_key: str = Field(default="", description="API key for embeddings")
    embedding_api_base: str = Field(default="", description="Custom embedding endpoint")

    # Persona
    persona_id: str = Field(default="bot", description="Canonical participant id of the persona")
    persona_name: str = Field(default="Mio", description="Display name of the persona")
    persona_aliases: list[str] = Field(
        default_factory=list, description="Other names the persona answers to"
    )

    # Working memory
    flush_interval_seconds: float = Field(default=300.0, description="Idle flush delay")
    max_pending_writes: int = Field(default=20, description="Queue size forcing a flush")
    episode_dedup_threshold: float = Field(default=0.9, description="Cosine for duplicate episodes")
    vibe_default_hours: float = Field(default=2.0, description="Session vibe TTL when unspecified")
    vibe_max_hours: float = Field(default=24.0, description="Upper bound for session vibe TTL")
    event_history_limit: int = Field(default=20, description="Significant events kept per person")

    # Extraction
    chunk_max_messages: int = Field(default=30, description="Hard cap per chunk")
    chunk_idle_gap_minutes: float = Field(default=5.0, description="Silence that closes a chunk")
    spam_empty_ratio: float = Field(default=0.6, description="Near-empty share marking spam")
    spam_duplicate_ratio: float = Field(default=0.7, description="Duplicate share marking spam")
    topic_keywords: list[str] = Field(default_factory=lambda: list(DEFAULT_TOPIC_KEYWORDS))
    topic_density_threshold: float = Field(default=0.3, description="Keyword density to extract")
    sample_rate: float = Field(default=0.33, description="Chance to extract an ordinary chunk")
    extraction_max_tokens: int = Field(default=800)
    trigger_batch_size: int = Field(default=30, description="Pending messages forcing extraction")
    trigger_active_threshold: int = Field(default=8, description="Messages after the persona spoke")
    trigger_max_wait_minutes: float = Field(default=15.0, description="Longest a message waits")

    # Retrieval
    retrieval_top_k: int = Field(default=5)
    retrieval_query_messages: int = Field(default=5, description="Messages forming the query")
    weight_similarity: float = Field(default=0.5)
    weight_recency: float = Field(default=0.2)
    weight_importance: float = Field(default=0.1)
    tag_boost: float = Field(default=0.03, description="Added when the query names a tag")
    participant_boost: float = Field(default=0.0, description="Added per shared participant")
    recency_half_life_days: float = Field(default=7.0)
    track_access: bool = Field(default=True, description="Bump access counts after recall")

    # Relationship tiers
    acquaintance_min_interactions: int = Field(default=3)
    familiar_min_interactions: int = Field(default=15)
    familiar_min_recent: int = Field(default=2)
    close_min_interactions: int = Field(default=50)
    close_min_recent: int = Field(default=5)
    tier_silence_days: float = Field(default=30.0, description="Silence before a tier decays")

    # Semantic facts
    fact_dedup_threshold: float = Field(default=0.9)
    fact_confidence_bump: float = Field(default=0.1)
    observation_dedup_threshold: float = Field(default=0.85)
    observation_confidence_cap: float = Field(default=0.8)

    # Distillation
    distillation_hour: int = Field(default=3, ge=0, le=23, description="Local hour of the daily run")
    distillation_window_days: float = Field(default=7.0)
    distillation_max_tokens: int = Field(default=1000)
    impression_max_tokens: int = Field(default=200, description="Budget for impression rewrites")
    backfill_batch_size: int = Field(default=100)
    recent_impression_max_chars: int = Field(default=60)
    core_impression_max_chars: int = Field(default=80)
    core_impression_stale_days: float = Field(default=30.0)
    strong_signal_importance: float = Field(default=0.8)
    consumed_event_ttl_days: float = Field(default=14.0)

    # Retention / eviction
    retention_half_life_days: float = Field(default=14.0)
    retention_threshold: float = Field(default=0.1)
    retention_days: float = Field(default=90.0, description="Age after which episodes archive")
    distilled_retention_factor: float = Field(default=0.6)
    access_bonus_step: float = Field(default=0.05)
    access_bonus_cap: float = Field(default=0.3)
    active_pool_limit: int = Field(default=200, description="Active episodes per community")

    @property
    def db_path(self) -> Path:
        return self.data_dir / self.db_name

    @property
    def persona_names(self) -> set[str]:
        """Lower-cased names that refer to the persona."""
        names = {self.persona_id, self.persona_name, "bot", *self.persona_aliases}
        return {n.strip().lower() for n in names if n and n.strip()}


def get_settings() -> Settings:
    """Get settings instance."""
    return Settings()
