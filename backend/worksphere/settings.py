from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict

REPO_ROOT = Path(__file__).resolve().parents[2]
ENV_FILE = REPO_ROOT / ".env"

DEFAULT_OVERPASS_ENDPOINTS = (
    "https://overpass-api.de/api/interpreter,"
    "https://lz4.overpass-api.de/api/interpreter"
)

# Hard ceiling on venues handed to the scorer per request
MAX_VENUE_RESULTS = 20


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=str(ENV_FILE), env_file_encoding="utf-8", extra="ignore"
    )

    DEBUG: bool = False
    ENVIRONMENT: str = "development"

    # CORS allow origins (comma-separated). Default empty (no cross-origin).
    CORS_ALLOW_ORIGINS: str = ""

    # Rate limiting (chat pipeline is the expensive path, keep it tight)
    RATE_LIMIT_ENABLED: bool = True
    RATE_LIMIT_REQUESTS: int = 20  # per window per client
    RATE_LIMIT_WINDOW_SECONDS: int = 60

    # Only trust X-Forwarded-For from these proxies (comma-separated IPs/CIDRs).
    # "*" trusts everyone and is only meant for local development.
    TRUSTED_PROXIES: str = ""

    # Venue source
    OVERPASS_ENDPOINTS: str = DEFAULT_OVERPASS_ENDPOINTS
    OVERPASS_TIMEOUT_SECONDS: float = 25.0
    VENUE_RESULT_LIMIT: int = MAX_VENUE_RESULTS

    # Agent backends
    CLASSIFIER_BACKEND: Literal["rules", "llm"] = "rules"
    EXTRACTOR_BACKEND: Literal["rules", "llm"] = "rules"
    DIRECT_REPLY_BACKEND: Literal["canned", "llm"] = "canned"

    # OpenAI-compatible chat completions endpoint (Groq by default)
    LLM_API_KEY: str | None = None
    LLM_API_BASE: str = "https://api.groq.com/openai/v1"
    LLM_MODEL: str = "llama-3.3-70b-versatile"
    LLM_TIMEOUT_SECONDS: float = 10.0
    LLM_CONNECT_TIMEOUT_SECONDS: float = 5.0

    # Shared state for rate-limit buckets and crowdsourced ratings.
    # Unset keeps everything in process memory.
    REDIS_URL: str | None = None

    # Observability
    SENTRY_DSN: str | None = None
    SENTRY_ENVIRONMENT: str = "development"
    SENTRY_RELEASE: str | None = None
    SENTRY_TRACES_SAMPLE_RATE: float = 0.2

    @property
    def allow_origins(self) -> list[str]:
        s = (self.CORS_ALLOW_ORIGINS or "").strip()
        if s == "*":
            return ["*"]
        if s == "":
            return []
        return [part.strip() for part in s.split(",") if part.strip()]

    @property
    def overpass_endpoints(self) -> list[str]:
        return [part.strip() for part in self.OVERPASS_ENDPOINTS.split(",") if part.strip()]

    @property
    def venue_result_limit(self) -> int:
        return max(1, min(self.VENUE_RESULT_LIMIT, MAX_VENUE_RESULTS))

    @property
    def llm_configured(self) -> bool:
        return bool((self.LLM_API_KEY or "").strip())


settings = Settings()
