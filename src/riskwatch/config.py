from __future__ import annotations

from pathlib import Path
from typing import Annotated, Dict, List, Literal

from pydantic import Field, SecretStr, conint, confloat, field_validator, model_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from .models import LLMProviderType, LogLevel


class RiskWatchConfig(BaseSettings):
    """Configuration loaded from RISKWATCH_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="RISKWATCH_",
        frozen=True,
        extra="ignore",
        protected_namespaces=(),  # Allow fields starting with 'model_'
    )

    # Provider keys (BYO)
    openai_api_key: SecretStr = Field(default="", description="OpenAI API key")
    anthropic_api_key: SecretStr = Field(default="", description="Anthropic API key")
    gemini_api_key: SecretStr = Field(default="", description="Google Gemini API key")

    # Provider chain, tried in order while budget allows paid calls
    provider_chain: Annotated[List[LLMProviderType], NoDecode] = Field(
        default_factory=lambda: ["openai", "gemini"],
        description="Ordered paid providers: openai, anthropic, gemini",
    )
    openai_model: str = Field(default="gpt-4o-mini")
    anthropic_model: str = Field(default="claude-haiku-4-5-20251001")
    gemini_model: str = Field(default="gemini-2.5-flash")
    gemini_base_url: str = Field(default="https://generativelanguage.googleapis.com/v1beta")
    offline_provider: bool = Field(
        default=True,
        description="Enable the free offline keyword analyzer at the end of the chain",
    )

    # Budget (USD)
    monthly_budget: confloat(ge=0) = Field(default=15.0)
    emergency_budget: confloat(ge=0) = Field(default=18.0)
    force_free_mode: bool = Field(default=False)
    ledger_path: Path = Field(default=Path("data/monthly-cost.json"))
    retain_months: conint(ge=1) = Field(default=12)
    extra_pricing: Dict[str, Dict[str, float]] = Field(
        default_factory=dict,
        description='Extra per-1K rates: {"provider/model": {"input": x, "output": y}}',
    )

    # Retry / deadlines
    max_retries: conint(ge=1) = Field(default=3)
    retry_base_delay: confloat(ge=0) = Field(default=1.0)
    backoff_multiplier: confloat(ge=1) = Field(default=2.0)
    provider_timeout_seconds: confloat(gt=0) = Field(default=60.0)
    request_timeout_seconds: confloat(gt=0) = Field(default=300.0)
    max_escalations: conint(ge=0, le=3) = Field(default=3)
    max_output_tokens: conint(ge=64) = Field(default=1024)
    temperature: confloat(ge=0, le=2) = Field(default=0.3)
    quota_cooldown_seconds: confloat(ge=0) = Field(
        default=0.0,
        description="Suspend a provider after QuotaExceeded; 0 retries it on every request",
    )

    # Token estimation when a backend omits usage metadata
    chars_per_token: conint(ge=1) = Field(default=4)
    # "thai" counts Thai script one token per character
    token_estimator: Literal["chars", "thai"] = Field(default="chars")

    log_level: LogLevel = Field(default="info")

    @field_validator("provider_chain", mode="before")
    @classmethod
    def _split_chain(cls, value):
        if isinstance(value, str):
            return [item.strip().lower() for item in value.split(",") if item.strip()]
        if isinstance(value, (list, tuple)):
            return [str(item).strip().lower() for item in value]
        return value

    @field_validator("log_level", mode="before")
    @classmethod
    def _normalize_lowercase(cls, value: str) -> str:
        if isinstance(value, str):
            return value.strip().lower()
        return value

    @model_validator(mode="after")
    def _validate_chain(self) -> "RiskWatchConfig":
        if len(set(self.provider_chain)) != len(self.provider_chain):
            raise ValueError("provider_chain must not repeat a provider")
        for key in self.extra_pricing:
            if "/" not in key:
                raise ValueError(f"extra_pricing key must be 'provider/model': {key}")
        return self

    def api_key_for(self, provider: str) -> str:
        secret = {
            "openai": self.openai_api_key,
            "anthropic": self.anthropic_api_key,
            "gemini": self.gemini_api_key,
        }.get(provider)
        return secret.get_secret_value() if secret is not None else ""

    def model_for(self, provider: str) -> str:
        return {
            "openai": self.openai_model,
            "anthropic": self.anthropic_model,
            "gemini": self.gemini_model,
        }.get(provider, "")
