from __future__ import annotations

from pydantic import AliasChoices, Field

try:
    from pydantic_settings import BaseSettings, SettingsConfigDict
except Exception as e:  # pragma: no cover
    raise RuntimeError(
        "pydantic-settings is required. Install with: pip install pydantic-settings"
    ) from e


class MemoryZonesSettings(BaseSettings):
    """Unified configuration for memory-zones.

    Environment variables are prefixed with MEMORY_ZONES_.
    """

    model_config = SettingsConfigDict(env_prefix="MEMORY_ZONES_", extra="ignore", populate_by_name=True)

    # --- Core ---
    log_level: str = Field(default="INFO", description="Python logging level")
    default_zone: str = Field(default="default")

    # --- Document store ---
    document_store: str = Field(default="elasticsearch", description="elasticsearch|memory")
    index_prefix: str = Field(default="knowledge-graph")
    es_node: str = Field(default="http://localhost:9200")
    es_username: str | None = Field(default=None)
    es_password: str | None = Field(default=None)
    es_api_key: str | None = Field(default=None)
    es_request_timeout: float = Field(default=30.0)

    # --- Relevance filter (OpenAI-compatible chat completions, Groq by default) ---
    ai_api_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices("MEMORY_ZONES_AI_API_KEY", "GROQ_API_KEY"),
    )
    ai_base_url: str = Field(default="https://api.groq.com/openai/v1")
    ai_models: str = Field(
        default="llama-3.3-70b-versatile,llama-3.3-70b-specdec,llama-3.1-70b-versatile,llama-3.1-8b-instant",
        description="Comma-separated, highest priority first",
    )
    ai_cooldown_seconds: float = Field(default=300.0)
    ai_timeout_seconds: float = Field(default=60.0)
    relevance_threshold: int = Field(default=10, description="Usefulness below this is dropped")

    # --- HTTP service ---
    bind_host: str = "0.0.0.0"
    bind_port: int = 8089
    api_key: str | None = Field(default=None, description="If set, require X-API-Key")

    @property
    def model_list(self) -> list[str]:
        return [m.strip() for m in self.ai_models.split(",") if m.strip()]


settings = MemoryZonesSettings()
