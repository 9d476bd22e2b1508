from __future__ import annotations

import json
from pathlib import Path
from typing import Annotated, Any, Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

# services/api/app/core/config.py -> BASE_DIR == services/api
BASE_DIR = Path(__file__).resolve().parents[2]
APP_DIR = BASE_DIR / "app"
DEFAULT_STREAMING_FIXTURE_PATH = APP_DIR / "fixtures" / "streaming_fixture.json"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=str(BASE_DIR / ".env"),
        extra="ignore",
        env_prefix="",
        case_sensitive=False,
    )

    # Environment
    env: str = Field(default="dev", validation_alias="ENV")

    # Application
    api_name: str = Field(default="reelscout-api", validation_alias="API_NAME")
    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")
    user_agent: str = Field(default="ReelScout/0.1", validation_alias="USER_AGENT")

    # Cache backend; empty string keeps everything in process memory
    redis_url: str = Field(
        default="redis://localhost:6379/0", validation_alias="REDIS_URL"
    )

    # CORS
    cors_origins: Annotated[list[str], NoDecode] = Field(
        default_factory=lambda: ["http://localhost:5173"],
        validation_alias="CORS_ORIGINS",
    )

    @field_validator("cors_origins", mode="before")
    @classmethod
    def parse_cors_origins(cls, v: Any) -> list[str]:
        """
        Supported env formats:
          - JSON list: '["http://localhost:5173"]'
          - Comma-separated: 'http://localhost:5173, http://localhost:8080'
          - '*' wildcard
        """
        if v is None:
            return []
        if isinstance(v, list):
            return [str(x).strip() for x in v if str(x).strip()]
        if not isinstance(v, str):
            raise TypeError("cors_origins must be a string or list of strings")

        s = v.strip()
        if not s:
            return []
        if s == "*":
            return ["*"]

        if s.startswith("[") and s.endswith("]"):
            try:
                parsed = json.loads(s)
                if isinstance(parsed, list):
                    return [str(x).strip() for x in parsed if str(x).strip()]
            except json.JSONDecodeError:
                inner = s[1:-1].strip()
                parts = [p.strip().strip('"').strip("'") for p in inner.split(",")]
                return [p for p in parts if p]

        parts = [p.strip() for p in s.split(",")]
        return [p for p in parts if p]

    # Streaming lookup provider
    streaming_provider: Literal["fixture", "http"] = Field(
        default="fixture", validation_alias="STREAMING_PROVIDER"
    )
    streaming_fixture_path: str = Field(
        default=str(DEFAULT_STREAMING_FIXTURE_PATH),
        validation_alias="STREAMING_FIXTURE_PATH",
    )
    streaming_proxy_url: str | None = Field(
        default=None, validation_alias="STREAMING_PROXY_URL"
    )
    streaming_proxy_api_key: str | None = Field(
        default=None, validation_alias="STREAMING_PROXY_API_KEY"
    )
    streaming_inject_failure_once: bool = Field(
        default=False, validation_alias="STREAMING_INJECT_FAILURE_ONCE"
    )
    streaming_default_region: str = Field(
        default="us", validation_alias="STREAMING_DEFAULT_REGION"
    )

    @field_validator("streaming_default_region", mode="before")
    @classmethod
    def normalize_region(cls, v: Any) -> str:
        if v is None:
            return "us"
        if not isinstance(v, str):
            raise TypeError("STREAMING_DEFAULT_REGION must be a string")
        s = v.strip().lower()
        if not s:
            return "us"
        return s

    # Streaming cache
    streaming_cache_prefix: str = Field(
        default="streaming_opt", validation_alias="STREAMING_CACHE_PREFIX"
    )
    streaming_cache_version: str = Field(
        default="3.0", validation_alias="STREAMING_CACHE_VERSION"
    )
    streaming_cache_ttl_secs: int = Field(
        default=3 * 60 * 60, validation_alias="STREAMING_CACHE_TTL_SECS"
    )
    streaming_empty_cache_ttl_secs: int = Field(
        default=60 * 60, validation_alias="STREAMING_EMPTY_CACHE_TTL_SECS"
    )
    streaming_stale_retention_secs: int = Field(
        default=7 * 24 * 60 * 60, validation_alias="STREAMING_STALE_RETENTION_SECS"
    )

    # Streaming batching / retries
    streaming_batch_window_ms: int = Field(
        default=50, validation_alias="STREAMING_BATCH_WINDOW_MS"
    )
    streaming_max_batch_size: int = Field(
        default=50, validation_alias="STREAMING_MAX_BATCH_SIZE"
    )
    streaming_max_concurrency: int = Field(
        default=4, validation_alias="STREAMING_MAX_CONCURRENCY"
    )
    streaming_chunk_timeout_secs: float = Field(
        default=15.0, validation_alias="STREAMING_CHUNK_TIMEOUT_SECS"
    )
    streaming_retry_attempts: int = Field(
        default=3, validation_alias="STREAMING_RETRY_ATTEMPTS"
    )
    streaming_retry_backoff_secs: float = Field(
        default=0.5, validation_alias="STREAMING_RETRY_BACKOFF_SECS"
    )
    streaming_retry_backoff_max_secs: float = Field(
        default=8.0, validation_alias="STREAMING_RETRY_BACKOFF_MAX_SECS"
    )
    streaming_daily_call_budget: int = Field(
        default=500, validation_alias="STREAMING_DAILY_CALL_BUDGET"
    )
    streaming_max_request_ids: int = Field(
        default=100, validation_alias="STREAMING_MAX_REQUEST_IDS"
    )

    @field_validator("streaming_retry_attempts")
    @classmethod
    def check_retry_attempts(cls, v: int) -> int:
        if v < 1:
            raise ValueError("STREAMING_RETRY_ATTEMPTS must be at least 1")
        return v

    # Rate limiting
    rate_limit_window_seconds: int = Field(
        default=60, validation_alias="RATE_LIMIT_WINDOW_SECONDS"
    )
    rate_limit_lookups_per_window: int = Field(
        default=120, validation_alias="RATE_LIMIT_LOOKUPS_PER_WINDOW"
    )

    # OpenTelemetry
    otel_enabled: bool = Field(default=False, validation_alias="OTEL_ENABLED")
    otel_otlp_endpoint: str = Field(
        default="http://localhost:4317",
        validation_alias="OTEL_OTLP_ENDPOINT",
    )


settings = Settings()
