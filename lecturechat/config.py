from __future__ import annotations

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings validated via Pydantic.

    Values are loaded from environment variables and/or a .env file.
    """

    # API Keys
    openai_api_key: str = ""
    anthropic_api_key: str = ""
    assemblyai_api_key: str = ""  # Only needed when transcription_provider is "assemblyai"

    # Supabase
    supabase_url: str = ""
    supabase_key: str = ""

    # Qdrant
    qdrant_url: str = "http://localhost:6333"
    qdrant_api_key: str = ""
    qdrant_collection: str = "lecturechat-vectors"
    qdrant_timeout: int = 30
    index_capacity: int = 0  # 0 = unbounded, fullness reported as 0.0
    index_ready_timeout: float = 60.0
    index_poll_interval: float = 2.0
    upsert_batch_size: int = 100
    upsert_batch_delay: float = 0.5
    upsert_item_delay: float = 0.2

    # Embeddings
    embedding_model: str = "text-embedding-3-small"
    embedding_dimensions: int = 1536
    embedding_batch_size: int = 100
    embedding_batch_delay: float = 0.5
    embedding_item_delay: float = 0.2
    embedding_max_chars: int = 8000

    # Chunking
    chunk_size: int = 1000
    chunk_overlap: int = 200
    chunk_adaptive: bool = True

    # Transcription
    transcription_provider: str = "whisper"
    whisper_model: str = "whisper-1"
    transcription_language: str = "en"
    max_transcription_bytes: int = 25 * 1024 * 1024
    transcription_cost_per_minute: float = 0.006
    transcription_cost_alert: float = 1.0  # USD; warn above this estimate

    # Generation
    llm_model: str = "claude-sonnet-4-20250514"
    answer_max_tokens: int = 500
    answer_temperature: float = 0.7

    # Retry policy shared by every external call
    retry_max_attempts: int = 4
    retry_base_delay: float = 1.0
    retry_multiplier: float = 2.0
    retry_jitter: float = 0.0

    # App config
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    temp_dir: str = "temp"
    upload_dir: str = "uploads"
    pipeline_workers: int = 2
    resume_on_startup: bool = True
    log_level: str = "INFO"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached Settings instance.

    Gracefully handles missing .env files (e.g. in CI/testing) by falling
    back to environment variables and defaults.
    """
    try:
        return Settings()
    except Exception:
        # If .env is missing or unreadable, build settings from env vars only.
        return Settings(_env_file=None)  # type: ignore[call-arg]


settings = get_settings()
