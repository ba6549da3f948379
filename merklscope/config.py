from __future__ import annotations

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_PROTOCOLS = [
    "clober",
    "curvance",
    "gearbox",
    "kuru",
    "morpho",
    "euler",
    "pancake-swap",
    "monday-trade",
    "renzo",
    "upshift",
    "townsquare",
    "uniswap",
    "beefy",
    "accountable",
    "curve",
]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── LLM ──────────────────────────────────────────────────────────────────
    # "grok" | "claude" | "auto" (Grok when an xAI key is configured)
    llm_provider: str = "auto"
    xai_api_key: str = Field(
        default="", validation_alias=AliasChoices("xai_api_key", "grok_api_key")
    )
    xai_api_base: str = "https://api.x.ai/v1"
    grok_model: str = "grok-4-1-fast-reasoning"
    anthropic_api_key: str = ""
    llm_model: str = "claude-sonnet-4-6"
    llm_max_tokens: int = 8192
    llm_max_retries: int = 3
    llm_backoff_seconds: float = 2.0

    # ── Upstream APIs ─────────────────────────────────────────────────────────
    merkl_api_base: str = "https://api.merkl.xyz"
    defillama_api_base: str = "https://api.llama.fi"
    coingecko_api_base: str = "https://api.coingecko.com/api/v3"
    chain_id: int = 143
    chain_name: str = "Monad"
    page_size: int = 100
    rate_limit_seconds: float = 0.1
    defillama_rate_limit_seconds: float = 0.2
    http_timeout_seconds: float = 30
    default_mon_price: float = 0.025
    price_timeout_seconds: float = 3

    # ── Cache ─────────────────────────────────────────────────────────────────
    redis_url: str = ""

    # ── Refresh / dashboard ───────────────────────────────────────────────────
    cron_secret: str = ""
    refresh_hour_utc: int = 0
    refresh_window_days: int = 7
    protocols: list[str] = Field(default_factory=lambda: list(DEFAULT_PROTOCOLS))

    # ── Server ────────────────────────────────────────────────────────────────
    server_host: str = "0.0.0.0"
    server_port: int = 8000
    log_level: str = "INFO"

    @field_validator("llm_provider", mode="before")
    @classmethod
    def normalize_provider(cls, v: str) -> str:
        return str(v).strip().lower()

    @field_validator("refresh_window_days")
    @classmethod
    def positive_window(cls, v: int) -> int:
        if v < 1:
            raise ValueError("refresh_window_days must be at least 1")
        return v

    @property
    def resolved_provider(self) -> str:
        if self.llm_provider in ("grok", "claude"):
            return self.llm_provider
        return "grok" if self.xai_api_key else "claude"


# Singleton: import and use `settings` everywhere
settings = Settings()
