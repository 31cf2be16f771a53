from __future__ import annotations

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Database (cache store backing)
    DATABASE_URL: str = "sqlite+aiosqlite:///./ballot_guide.db"

    # Provider API keys
    ANTHROPIC_API_KEY: str = ""
    OPENAI_API_KEY: str = ""
    GROK_API_KEY: str = ""
    GEMINI_API_KEY: str = ""

    # Provider endpoints
    ANTHROPIC_BASE_URL: str = "https://api.anthropic.com/v1"
    ANTHROPIC_VERSION: str = "2023-06-01"
    OPENAI_BASE_URL: str = "https://api.openai.com/v1"
    GROK_BASE_URL: str = "https://api.x.ai/v1"
    GEMINI_BASE_URL: str = "https://generativelanguage.googleapis.com/v1beta"

    # Models
    CLAUDE_MODELS: str = "claude-sonnet-4-6,claude-sonnet-4-20250514,claude-haiku-4-5-20251001"
    CLAUDE_HAIKU_MODEL: str = "claude-haiku-4-5-20251001"
    CLAUDE_OPUS_MODEL: str = "claude-opus-4-6"
    CHATGPT_MODEL: str = "gpt-4o"
    CHATGPT_MINI_MODEL: str = "gpt-4o-mini"
    GROK_MODEL: str = "grok-3"
    GEMINI_MODEL: str = "gemini-2.5-flash"
    GEMINI_PRO_MODEL: str = "gemini-2.5-pro"
    PROVIDER_TIMEOUT: float = 120.0

    # Retry policy
    RATE_LIMIT_BACKOFF: str = "5,15"
    OVERLOAD_BACKOFF: float = 2.0
    TOKEN_BUDGET_DEFAULT: int = 2048
    TOKEN_BUDGET_TRANSLATED_CACHED: int = 4096
    TOKEN_BUDGET_TRANSLATED: int = 8192
    TOKEN_BUDGET_CEILING: int = 8192

    # Guide generation
    ELECTION_ID: str = "primary_2026"
    TRANSLATED_LOCALES: str = "es"
    GUIDE_CACHE_TTL: int = 3600
    BALLOT_DESC_CACHE_TTL: int = 3600
    USAGE_LOG_TTL: int = 2592000
    # Empty means the sample ballots bundled in ballotguide/data/ballots
    BALLOT_DATA_DIR: str = ""

    # CORS
    CORS_ORIGINS: str = "http://localhost:3000,http://localhost:3001"

    LOG_LEVEL: str = "INFO"

    @property
    def claude_models_list(self) -> list[str]:
        return [m.strip() for m in self.CLAUDE_MODELS.split(",") if m.strip()]

    @property
    def rate_limit_backoff_list(self) -> list[float]:
        return [float(s.strip()) for s in self.RATE_LIMIT_BACKOFF.split(",") if s.strip()]

    @property
    def translated_locales_list(self) -> list[str]:
        return [loc.strip() for loc in self.TRANSLATED_LOCALES.split(",") if loc.strip()]

    @property
    def cors_origins_list(self) -> list[str]:
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]

    model_config = {
        "env_file": [".env", "../.env"],
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }


settings = Settings()
