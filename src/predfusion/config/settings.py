"""TOML config loading and profiles."""

from __future__ import annotations

import logging
import os
import tomllib
from pathlib import Path
from typing import Any

# Default config search path (project root or cwd)
_CONFIG_DIR = Path(__file__).resolve().parent.parent.parent.parent / "config"
_CWD_CONFIG = Path.cwd() / "config"

# Per-platform defaults; TOML values override key by key.
_PLATFORM_DEFAULTS: dict[str, dict[str, Any]] = {
    "polymarket": {
        "base_url": "https://gamma-api.polymarket.com",
        "poll_interval_sec": 5.0,
        "rate_per_min": 100,
        "page_size": 500,
        "max_pages": 4,
    },
    "kalshi": {
        "base_url": "https://api.elections.kalshi.com/trade-api/v2",
        "poll_interval_sec": 10.0,
        "rate_per_min": 50,
        "page_size": 500,
        "max_pages": 4,
        "api_key_env": "KALSHI_API_KEY",
    },
    "limitless": {
        "base_url": "https://api.limitless.exchange/api-v1",
        "poll_interval_sec": 15.0,
        "rate_per_min": 30,
        "page_size": 100,
        "max_pages": 1,
    },
}


def _load_toml(path: Path) -> dict[str, Any]:
    with open(path, "rb") as f:
        return tomllib.load(f)


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge override into base. Override values take precedence."""
    result = dict(base)
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _find_config_dir(config_dir: Path | None = None) -> Path:
    if config_dir is not None:
        return config_dir
    if _CWD_CONFIG.exists():
        return _CWD_CONFIG
    return _CONFIG_DIR


def load_config(profile: str | None = None, config_dir: Path | None = None) -> dict[str, Any]:
    """Load merged config from default.toml and optional profile overlay."""
    config_dir = _find_config_dir(config_dir)
    default_path = config_dir / "default.toml"
    if not default_path.exists():
        return {}
    base = _load_toml(default_path)
    if profile:
        profile_path = config_dir / f"{profile}.toml"
        if profile_path.exists():
            overlay = _load_toml(profile_path)
            base = _deep_merge(base, overlay)
    return base


def get_settings(profile: str | None = None, config_dir: Path | None = None) -> Settings:
    """Return Settings instance from merged config."""
    raw = load_config(profile, config_dir)
    return Settings.from_dict(raw)


class PlatformSettings:
    """Connection and polling settings for one upstream platform."""

    def __init__(self, platform_id: str, raw: dict[str, Any] | None = None) -> None:
        self.platform_id = platform_id
        self.raw = _deep_merge(_PLATFORM_DEFAULTS.get(platform_id, {}), raw or {})

    @property
    def enabled(self) -> bool:
        return bool(self.raw.get("enabled", True))

    @property
    def base_url(self) -> str:
        return str(self.raw.get("base_url", ""))

    @property
    def poll_interval_sec(self) -> float:
        return float(self.raw.get("poll_interval_sec", 10.0))

    @property
    def timeout_sec(self) -> float:
        return float(self.raw.get("timeout_sec", 8.0))

    @property
    def rate_per_min(self) -> int:
        return int(self.raw.get("rate_per_min", 60))

    @property
    def page_size(self) -> int:
        return int(self.raw.get("page_size", 500))

    @property
    def max_pages(self) -> int:
        return int(self.raw.get("max_pages", 1))

    @property
    def api_key(self) -> str | None:
        env_name = self.raw.get("api_key_env")
        if not env_name:
            return None
        return os.environ.get(env_name) or None


class Settings:
    """Application settings from TOML config."""

    def __init__(
        self,
        *,
        platforms: dict[str, Any] | None = None,
        matching: dict[str, Any] | None = None,
        arbitrage: dict[str, Any] | None = None,
        cache: dict[str, Any] | None = None,
        health: dict[str, Any] | None = None,
        history: dict[str, Any] | None = None,
        routing: dict[str, Any] | None = None,
        api: dict[str, Any] | None = None,
        logging: dict[str, Any] | None = None,
    ):
        self.platforms = platforms or {}
        self.matching = matching or {}
        self.arbitrage = arbitrage or {}
        self.cache = cache or {}
        self.health = health or {}
        self.history = history or {}
        self.routing = routing or {}
        self.api = api or {}
        self.logging = logging or {}

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> Settings:
        return cls(
            platforms=raw.get("platforms"),
            matching=raw.get("matching"),
            arbitrage=raw.get("arbitrage"),
            cache=raw.get("cache"),
            health=raw.get("health"),
            history=raw.get("history"),
            routing=raw.get("routing"),
            api=raw.get("api"),
            logging=raw.get("logging"),
        )

    def platform(self, platform_id: str) -> PlatformSettings:
        return PlatformSettings(platform_id, self.platforms.get(platform_id))

    @property
    def enabled_platforms(self) -> list[PlatformSettings]:
        """Platforms declared in [platforms.*] with enabled = true, in file order."""
        out = []
        for pid, raw in self.platforms.items():
            ps = PlatformSettings(pid, raw if isinstance(raw, dict) else None)
            if ps.enabled:
                out.append(ps)
        return out

    # Matching
    @property
    def similar_threshold(self) -> float:
        return float(self.matching.get("similar_threshold", 0.85))

    @property
    def identical_threshold(self) -> float:
        return float(self.matching.get("identical_threshold", 0.95))

    @property
    def ambiguity_margin(self) -> float:
        return float(self.matching.get("ambiguity_margin", 0.02))

    @property
    def date_tolerance_days(self) -> float:
        return float(self.matching.get("date_tolerance_days", 30))

    @property
    def match_weights(self) -> tuple[float, float, float]:
        return (
            float(self.matching.get("text_weight", 0.5)),
            float(self.matching.get("entity_weight", 0.3)),
            float(self.matching.get("temporal_weight", 0.2)),
        )

    @property
    def cluster_policy(self) -> str:
        return str(self.matching.get("cluster_policy", "transitive")).lower()

    @property
    def revalidation_threshold(self) -> float:
        return float(self.matching.get("revalidation_threshold", 0.75))

    @property
    def max_cluster_platforms(self) -> int:
        return int(self.matching.get("max_cluster_platforms", 3))

    # Arbitrage / routing
    @property
    def min_profit_pct(self) -> float:
        return float(self.arbitrage.get("min_profit_pct", 2.0))

    @property
    def routing_min_liquidity(self) -> float:
        return float(self.routing.get("min_liquidity", 1000))

    # Cache
    @property
    def ttl_trending_sec(self) -> float:
        return float(self.cache.get("ttl_trending_sec", 15))

    @property
    def ttl_category_sec(self) -> float:
        return float(self.cache.get("ttl_category_sec", 60))

    @property
    def ttl_market_sec(self) -> float:
        return float(self.cache.get("ttl_market_sec", 30))

    @property
    def hot_key_reads(self) -> int:
        return int(self.cache.get("hot_key_reads", 5))

    @property
    def ttl_extension_multiplier(self) -> float:
        return float(self.cache.get("ttl_extension_multiplier", 2.0))

    # Health
    @property
    def staleness_sec(self) -> float:
        return float(self.health.get("staleness_sec", 60))

    @property
    def offline_after_failures(self) -> int:
        return int(self.health.get("offline_after_failures", 5))

    @property
    def outage_bound_sec(self) -> float:
        return float(self.health.get("outage_bound_sec", 300))

    @property
    def history_retention_sec(self) -> float:
        return float(self.history.get("retention_sec", 86400))

    # API
    @property
    def api_host(self) -> str:
        return self.api.get("host", "127.0.0.1")

    @property
    def api_port(self) -> int:
        return int(self.api.get("port", 8000))

    # Logging
    @property
    def logging_level(self) -> str:
        return self.logging.get("level", "INFO").upper()

    @property
    def logging_format(self) -> str:
        return self.logging.get("format", "console")

    @property
    def logging_level_num(self) -> int:
        return getattr(logging, self.logging_level, logging.INFO)


def configure_logging(settings: Settings) -> None:
    """Configure structlog with settings. Call once at application entry."""
    import structlog

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]
    if settings.logging_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(settings.logging_level_num),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )
