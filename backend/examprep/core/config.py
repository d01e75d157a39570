import json

from pathlib import Path

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


# Resolve backend root (…/backend/) regardless of current working directory
BASE_DIR = Path(__file__).resolve().parents[2]
ENV_FILE = BASE_DIR / ".env"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=str(ENV_FILE),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    APP_NAME: str = "Practice Exam Engine"
    ENV: str = "dev"
    LOG_LEVEL: str = "INFO"
    # One origin or several, comma separated (or a JSON list).
    BACKEND_CORS_ORIGINS: list[str] = ["http://localhost:5173"]

    DATABASE_URL: str = f"sqlite:///{BASE_DIR / 'examprep.db'}"

    # ===== Async Queue (RQ/Redis) =====
    ASYNC_QUEUE_ENABLED: bool = False
    REDIS_URL: str = "redis://localhost:6379/0"
    RQ_DEFAULT_TIMEOUT_SEC: int = 1800

    # ===== LLM / embeddings provider =====
    # OpenAI cloud: set OPENAI_API_KEY.
    # OpenAI-compatible gateways (Ollama/LM Studio/...): set OPENAI_BASE_URL, key may stay empty.
    OPENAI_API_KEY: str | None = None
    OPENAI_BASE_URL: str | None = None

    # Backward/alias support: some env files use OPENAI_EMBED_MODEL
    OPENAI_EMBED_MODEL: str | None = None
    OPENAI_EMBEDDING_MODEL: str = "text-embedding-3-small"
    OPENAI_CHAT_MODEL: str = "gpt-4o-mini"

    # Per-request timeout. Retries are done by the adapters (see ADAPTER_*), so the
    # SDK's own retry loop is switched off.
    OPENAI_HTTP_TIMEOUT_SEC: int = 60

    AZURE_OPENAI_ENDPOINT: str | None = None
    AZURE_OPENAI_API_KEY: str | None = None
    AZURE_OPENAI_API_VERSION: str = "2024-02-15-preview"

    # Optional provider-specific headers as a JSON object string, e.g. {"X-Tenant":"exams"}
    OPENAI_EXTRA_HEADERS_JSON: str | None = None

    @model_validator(mode="after")
    def _apply_env_aliases(self):
        if (not (self.OPENAI_EMBEDDING_MODEL or "").strip()) or self.OPENAI_EMBEDDING_MODEL.strip() == "text-embedding-3-small":
            if (self.OPENAI_EMBED_MODEL or "").strip():
                self.OPENAI_EMBEDDING_MODEL = self.OPENAI_EMBED_MODEL.strip()
        return self

    # ===== Embeddings =====
    # auto | openai | hashing
    # - auto: openai when a provider is configured, otherwise the deterministic hashing backend.
    EMBEDDING_BACKEND: str = "auto"
    # Every vector in one index has this many components.
    EMBEDDING_DIM: int = 384

    # ===== External adapter resilience (embeddings + generation) =====
    ADAPTER_MAX_ATTEMPTS: int = 3
    ADAPTER_BACKOFF_BASE_SEC: float = 0.5
    ADAPTER_BACKOFF_MAX_SEC: float = 8.0

    # ===== Fallback question generation =====
    QUESTION_GEN_MODE: str = "auto"  # auto | llm | offline
    # Generated questions scoring below this are discarded (0..1).
    ALIGNMENT_MIN_SCORE: float = 0.7
    # Generation passes per topic when candidates get rejected.
    FALLBACK_MAX_PASSES: int = 2
    # How many existing question texts go into the "do not repeat" prompt section.
    GEN_MAX_EXCLUDE_IN_PROMPT: int = 15
    # Normalized-stem similarity at or above which a generated question is a duplicate.
    DUPLICATE_SIMILARITY_THRESHOLD: float = 0.9

    # ===== Retrieval =====
    # Rank candidates by similarity to the topics' syllabus text when no explicit
    # relevance query is given. False -> stable syllabus-reference order.
    RETRIEVAL_SEMANTIC_RANKING: bool = True

    @field_validator("BACKEND_CORS_ORIGINS", mode="before")
    @classmethod
    def _parse_cors_origins(cls, v):
        if v is None or v == "":
            return []

        if isinstance(v, list):
            return v

        # JSON list first, then comma separated
        if isinstance(v, str):
            s = v.strip()
            if s.startswith("["):
                try:
                    return json.loads(s)
                except ValueError:
                    pass
            return [item.strip() for item in s.split(",") if item.strip()]

        return v


settings = Settings()
