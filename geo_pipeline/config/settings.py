"""Unified configuration and settings module.

Single source of truth for provider, retry, cache, and quality configuration.
Every field is read from the environment (or a ``.env`` file) by pydantic-settings.
"""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from typing import Dict, List, Literal, Optional, Tuple

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Tier 1: official brand sources
DEFAULT_TIER1_DOMAINS: Tuple[str, ...] = (
    "samsung.com", "news.samsung.com", "samsung.co.kr",
)

# Tier 2: established tech media
DEFAULT_TIER2_DOMAINS: Tuple[str, ...] = (
    "gsmarena.com", "theverge.com", "techcrunch.com", "cnet.com",
    "techradar.com", "tomsguide.com", "androidauthority.com",
)

# Tier 3: community and video platforms
DEFAULT_TIER3_DOMAINS: Tuple[str, ...] = (
    "reddit.com", "youtube.com", "twitter.com", "medium.com",
)


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded retry with exponential backoff for transient provider errors."""
    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 10.0
    jitter: float = 0.5

    def to_dict(self) -> Dict[str, float]:
        """Convert policy to dictionary for logging."""
        return {
            "max_attempts": self.max_attempts,
            "base_delay": self.base_delay,
            "max_delay": self.max_delay,
            "jitter": self.jitter,
        }


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # ==== Generation provider ====
    LLM_PROVIDER: Literal["disabled", "http"] = "disabled"  # CI-safe default, no secrets required
    PROVIDER_BASE_URL: Optional[str] = None
    PROVIDER_API_KEY: Optional[str] = None
    PROVIDER_MODEL: str = "gemini-2.5-flash"
    PROVIDER_TIMEOUT_SEC: float = Field(60.0, gt=0, description="Upper bound for a single provider call")

    # ==== Retries ====
    RETRY_MAX_ATTEMPTS: int = Field(3, ge=1)
    RETRY_BASE_DELAY_SECONDS: float = Field(1.0, ge=0)
    RETRY_MAX_DELAY_SECONDS: float = Field(10.0, ge=0)
    RETRY_JITTER_SECONDS: float = Field(0.5, ge=0)

    # ==== Stages ====
    STAGE_FALLBACK_ENABLED: bool = Field(True, description="Substitute a placeholder when a stage fails")

    # ==== Cache ====
    CACHE_TTL_SECONDS: int = Field(1800, gt=0)
    FAST_CACHE_MAX_ENTRIES: int = Field(50, gt=0)
    CACHE_PRUNE_INTERVAL_SECONDS: int = Field(300, gt=0)
    DURABLE_CACHE_BACKEND: Literal["none", "redis", "sql"] = "none"
    REDIS_URL: Optional[str] = None
    DATABASE_URL: str = "sqlite:///./generation_cache.db"

    # ==== Quality ====
    CONFIDENCE_POLICY: Literal["graded", "primary_content"] = "graded"
    GUARDRAILS_FILE: Optional[str] = Field(None, description="YAML file with extra fabrication rules")
    CITED_CHARS_PER_CITATION: int = Field(200, ge=0)
    TIER1_DOMAINS: List[str] = Field(default_factory=lambda: list(DEFAULT_TIER1_DOMAINS))
    TIER2_DOMAINS: List[str] = Field(default_factory=lambda: list(DEFAULT_TIER2_DOMAINS))
    TIER3_DOMAINS: List[str] = Field(default_factory=lambda: list(DEFAULT_TIER3_DOMAINS))

    # ==== API ====
    API_HOST: str = "127.0.0.1"
    API_PORT: int = Field(8000, gt=0, lt=65536)

    # ==== Observability ====
    LOG_LEVEL: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    LOG_JSON: bool = True

    @field_validator("TIER1_DOMAINS", "TIER2_DOMAINS", "TIER3_DOMAINS")
    @classmethod
    def _normalize_domains(cls, value: List[str]) -> List[str]:
        return [d.strip().lower() for d in value if d and d.strip()]

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self.RETRY_MAX_ATTEMPTS,
            base_delay=self.RETRY_BASE_DELAY_SECONDS,
            max_delay=self.RETRY_MAX_DELAY_SECONDS,
            jitter=self.RETRY_JITTER_SECONDS,
        )

    def authority_tiers(self) -> Tuple[Tuple[str, ...], Tuple[str, ...], Tuple[str, ...]]:
        """Ordered allow-lists: tier 1 is checked first, tier 3 last."""
        return tuple(self.TIER1_DOMAINS), tuple(self.TIER2_DOMAINS), tuple(self.TIER3_DOMAINS)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Process-wide settings, built once from the environment."""
    return Settings()
