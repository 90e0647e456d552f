from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ProviderType(str, Enum):
    """Supported provider wire formats."""

    CUSTOM = "custom"
    OPENAI_COMPATIBLE = "openai-compatible"


DEFAULT_RETRY_ON = [429, 500, 502, 503, 504]


class LimitsConfig(BaseModel):
    max_concurrent: int = Field(2, ge=1)
    rps: float = Field(1.0, gt=0)
    burst: int = Field(2, ge=1)
    jitter_ms: tuple[int, int] = (50, 200)
    throttle_window_ms: int = Field(60_000, ge=0)  # Scheduler-wide pause after 429/5xx

    @field_validator("jitter_ms", mode="before")
    @classmethod
    def _coerce_jitter(cls, value: Any) -> Any:
        # A bare number means "0..value"
        if isinstance(value, int | float):
            return (0, max(0, int(value)))
        return value

    @model_validator(mode="after")
    def _order_jitter(self) -> LimitsConfig:
        lo = max(0, int(self.jitter_ms[0]))
        hi = max(lo, int(self.jitter_ms[1]))
        self.jitter_ms = (lo, hi)
        return self


class RetryConfig(BaseModel):
    max_retries: int = Field(5, ge=0)
    base_delay_ms: int = Field(800, ge=0)
    max_delay_ms: int = Field(20_000, ge=0)
    jitter: bool = True
    retry_on: list[int] = Field(default_factory=lambda: list(DEFAULT_RETRY_ON))

    @model_validator(mode="after")
    def _cap_not_below_base(self) -> RetryConfig:
        if self.max_delay_ms < self.base_delay_ms:
            self.max_delay_ms = self.base_delay_ms
        return self


class BatchingConfig(BaseModel):
    enabled: bool = True
    max_items: int = Field(20, ge=1)
    max_chars: int = Field(8000, ge=1)
    token_budget: int = Field(2000, ge=1)


class ProviderConfig(BaseModel):
    type: ProviderType = ProviderType.CUSTOM
    name: str = "custom"
    endpoint: str = ""  # Empty endpoint on the custom provider = demo mode
    api_key: str = ""
    headers: dict[str, str] = Field(default_factory=dict)
    model: str = ""
    timeout_seconds: float = Field(60.0, gt=0)
    limits: LimitsConfig = Field(default_factory=LimitsConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    batching: BatchingConfig = Field(default_factory=BatchingConfig)


class GlossaryEntry(BaseModel):
    src: str = ""
    dst: str = ""


class WorkflowConfig(BaseModel):
    steps: list[str] = Field(default_factory=lambda: ["translate"])
    source_lang: str = "auto"
    target_lang: str = "zh-CN"
    prompt_template: str = ""
    style: str = "concise and accurate, keep formatting and placeholders"
    tone: str = "neutral"
    glossary: list[GlossaryEntry] = Field(default_factory=list)
    protect_placeholders: bool = True
    response_format: str = "auto"  # "auto" | "json"
    skip_if_source_equals_target: bool = True
    min_text_length: int = Field(2, ge=0)


class CacheConfig(BaseModel):
    enabled: bool = True
    size: int = Field(500, ge=1)
    ttl_ms: int = Field(12 * 60 * 60 * 1000, ge=0)  # 0 = entries never expire


def deep_merge(target: dict, source: dict) -> dict:
    """Recursively merge ``source`` over ``target``; non-dict values replace."""
    out = dict(target)
    for key, value in source.items():
        if isinstance(out.get(key), dict) and isinstance(value, dict):
            out[key] = deep_merge(out[key], value)
        else:
            out[key] = value
    return out


class TranslatorConfig(BaseModel):
    """Complete runtime configuration of the translation gateway."""

    provider: ProviderConfig = Field(default_factory=ProviderConfig)
    workflow: WorkflowConfig = Field(default_factory=WorkflowConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)

    def merged(self, partial: dict[str, Any]) -> TranslatorConfig:
        """Return a new config with ``partial`` deep-merged over this one."""
        return TranslatorConfig.model_validate(deep_merge(self.model_dump(mode="json"), partial))

    def masked(self) -> dict[str, Any]:
        """Dump for display — the API key is never returned in clear."""
        data = self.model_dump(mode="json")
        if data["provider"]["api_key"]:
            data["provider"]["api_key"] = "***"
        return data


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
    )

    # App
    app_env: str = "development"
    app_debug: bool = True
    app_host: str = "0.0.0.0"
    app_port: int = 8000

    # Logging
    log_level: str = "INFO"
    log_json: bool = False  # set True in production for structured JSON logs

    # Initial translator configuration, e.g. TRANSLATOR__PROVIDER__ENDPOINT=https://...
    translator: TranslatorConfig = Field(default_factory=TranslatorConfig)


settings = Settings()


def validate_settings_for_production() -> None:
    """Validate critical settings. Called on startup in non-test environments."""
    errors: list[str] = []
    provider = settings.translator.provider

    if provider.type == ProviderType.OPENAI_COMPATIBLE and not provider.api_key:
        errors.append("TRANSLATOR__PROVIDER__API_KEY must be set for the openai-compatible provider")

    if settings.app_env == "production":
        if settings.app_debug:
            errors.append("APP_DEBUG must be false in production")
        if provider.type == ProviderType.CUSTOM and not provider.endpoint:
            errors.append("TRANSLATOR__PROVIDER__ENDPOINT must be set in production (demo mode is dev-only)")

    if errors:
        raise SystemExit("Configuration errors:\n  - " + "\n  - ".join(errors))
