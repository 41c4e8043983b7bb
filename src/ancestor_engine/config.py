"""Engine settings: weight tables, thresholds, rate limits and credentials."""
from __future__ import annotations

import os
from dataclasses import replace
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field

from .net import RateLimitConfig
from .resolution.confidence import ResolverConfig
from .resolution.scorer import ScoringWeights
from .review.consensus import ConsensusConfig
from .sources.familysearch import FamilySearchSource
from .sources.freebmd import FreeBMDSource
from .sources.geni import GeniSource
from .traversal.controller import TraversalConfig

ADAPTER_DEFAULTS: dict[str, RateLimitConfig] = {
    cls.name.lower(): cls.default_rate_limit for cls in (FamilySearchSource, GeniSource, FreeBMDSource)
}


class EngineSettings(BaseModel):
    """Everything a job needs besides its intake."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    scoring: ScoringWeights = Field(default_factory=ScoringWeights)
    resolver: ResolverConfig = Field(default_factory=ResolverConfig)
    consensus: ConsensusConfig = Field(default_factory=ConsensusConfig)
    traversal: TraversalConfig = Field(default_factory=TraversalConfig)
    rate_limits: dict[str, RateLimitConfig] = Field(
        default_factory=lambda: dict(ADAPTER_DEFAULTS), description="Keyed by lower-case adapter name"
    )

    familysearch_token: str | None = None
    geni_token: str | None = None
    anthropic_api_key: str | None = None
    openai_api_key: str | None = None
    db_path: Path = Field(default=Path("./data/ancestors.db"))


def _env_int(name: str) -> int | None:
    value = os.getenv(name)
    if value is None or not value.strip():
        return None
    try:
        return int(value)
    except ValueError as e:
        raise ValueError(f"{name} must be an integer, got {value!r}") from e


def _env_float(name: str) -> float | None:
    value = os.getenv(name)
    if value is None or not value.strip():
        return None
    try:
        return float(value)
    except ValueError as e:
        raise ValueError(f"{name} must be a number, got {value!r}") from e


def _rate_limit_overrides(adapter: str, base: RateLimitConfig) -> RateLimitConfig:
    prefix = f"RATE_{adapter.upper()}_"
    overrides = {
        "min_interval": _env_float(prefix + "MIN_INTERVAL"),
        "max_calls": _env_int(prefix + "MAX"),
        "window_seconds": _env_float(prefix + "WINDOW"),
        "max_retries": _env_int(prefix + "RETRIES"),
    }
    overrides = {k: v for k, v in overrides.items() if v is not None}
    return replace(base, **overrides) if overrides else base


def load_settings(env_file: str | Path | None = None) -> EngineSettings:
    """Load configuration from a .env file and the environment."""
    from dotenv import load_dotenv

    load_dotenv(env_file)

    resolver_overrides = {
        "acceptance_threshold": _env_int("ACCEPTANCE_THRESHOLD"),
        "enrichment_threshold": _env_int("ENRICHMENT_THRESHOLD"),
    }
    resolver = ResolverConfig(**{k: v for k, v in resolver_overrides.items() if v is not None})

    return EngineSettings(
        resolver=resolver,
        rate_limits={name: _rate_limit_overrides(name, cfg) for name, cfg in ADAPTER_DEFAULTS.items()},
        familysearch_token=os.getenv("FAMILYSEARCH_ACCESS_TOKEN") or None,
        geni_token=os.getenv("GENI_ACCESS_TOKEN") or None,
        anthropic_api_key=os.getenv("ANTHROPIC_API_KEY") or None,
        openai_api_key=os.getenv("OPENAI_API_KEY") or None,
        db_path=Path(os.getenv("ENGINE_DB_PATH", "./data/ancestors.db")),
    )
