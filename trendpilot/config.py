"""
Scheduler configuration: dataclass defaults, then config/settings.yaml,
then environment variables, in increasing precedence.

Provides:
    - SchedulerConfig: Cycle interval, batching, pacing and call timeouts
    - RateLimitConfig: Per-platform hourly ceilings and window length
    - PenaltyConfig: Usage-penalty curve for repeated topics
    - SelectionConfig: Duplicate lookback, similarity, filters, fallback rotation
    - CategoryConfig / DEFAULT_CATEGORIES: Topic categories with weights and bonuses
    - Settings: Everything above plus model, log level and log directory
    - get_settings(): Singleton accessor for Settings
    - validate_env(): Fails fast at startup when deployment secrets are absent
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

import yaml
from dotenv import load_dotenv

from trendpilot.exceptions import ConfigurationError

# ---------------------------------------------------------------------------
# Load .env file (no-op if file does not exist)
# ---------------------------------------------------------------------------
load_dotenv()

# ---------------------------------------------------------------------------
# Project root directory (parent of trendpilot/)
# ---------------------------------------------------------------------------
PROJECT_ROOT = Path(__file__).resolve().parent.parent

logger = logging.getLogger(__name__)


def _apply_env_overrides(
    target: Any, overrides: Dict[str, Tuple[str, Callable[[str], Any]]]
) -> None:
    """Set attributes on *target* from environment variables.

    Raises:
        ConfigurationError: If a variable is set but cannot be cast.
    """
    for env_key, (attr_name, cast_fn) in overrides.items():
        env_val = os.environ.get(env_key)
        if env_val is not None:
            try:
                setattr(target, attr_name, cast_fn(env_val))
            except (ValueError, TypeError) as exc:
                raise ConfigurationError(
                    f"Invalid value for env var {env_key}='{env_val}': {exc}"
                ) from exc


def _pick(cls: Any, data: Dict[str, Any]) -> Dict[str, Any]:
    """Keep only keys of *data* that are dataclass fields of *cls*."""
    return {k: v for k, v in data.items() if k in cls.__dataclass_fields__}


# ===========================================================================
# SCHEDULER CONFIGURATION
# ===========================================================================


@dataclass
class SchedulerConfig:
    """
    Timing and batching of the periodic agent cycle.

    Usage::

        config = SchedulerConfig()
        config.batch_size          # 10 agents per batch
        config.agent_delay_seconds # pause between agents in a batch
    """

    check_interval_seconds: int = 300
    batch_size: int = 10
    agent_delay_seconds: float = 3.0
    batch_delay_seconds: float = 10.0

    # Applied to each content-generation and publish call
    call_timeout_seconds: float = 60.0

    # Maintenance
    trend_usage_retention_hours: int = 48
    trend_usage_prune_interval_hours: int = 6

    def __post_init__(self) -> None:
        """Override values from environment variables if set."""
        _apply_env_overrides(self, {
            "SCHEDULER_CHECK_INTERVAL": ("check_interval_seconds", int),
            "SCHEDULER_BATCH_SIZE": ("batch_size", int),
            "SCHEDULER_AGENT_DELAY": ("agent_delay_seconds", float),
            "SCHEDULER_BATCH_DELAY": ("batch_delay_seconds", float),
            "SCHEDULER_CALL_TIMEOUT": ("call_timeout_seconds", float),
        })
        if self.batch_size < 1:
            raise ConfigurationError(
                f"batch_size must be at least 1, got {self.batch_size}"
            )
        if self.check_interval_seconds < 1:
            raise ConfigurationError(
                "check_interval_seconds must be at least 1, "
                f"got {self.check_interval_seconds}"
            )


# ===========================================================================
# RATE LIMIT CONFIGURATION
# ===========================================================================

DEFAULT_PLATFORM_LIMITS: Dict[str, int] = {
    "twitter": 50,
    "linkedin": 10,
    "reddit": 30,
    "facebook": 20,
    "instagram": 20,
    "telegram": 30,
    "threads": 20,
    "whatsapp": 20,
}


@dataclass
class RateLimitConfig:
    """
    Posts-per-window ceilings per platform.

    Each ceiling can be overridden with ``RATE_LIMIT_<PLATFORM>``
    (e.g. ``RATE_LIMIT_LINKEDIN=5``).
    """

    window_seconds: int = 3600
    platform_limits: Dict[str, int] = field(
        default_factory=lambda: dict(DEFAULT_PLATFORM_LIMITS)
    )

    def __post_init__(self) -> None:
        _apply_env_overrides(self, {
            "RATE_LIMIT_WINDOW_SECONDS": ("window_seconds", int),
        })
        for platform in list(self.platform_limits):
            env_key = f"RATE_LIMIT_{platform.upper()}"
            env_val = os.environ.get(env_key)
            if env_val is None:
                continue
            try:
                self.platform_limits[platform] = int(env_val)
            except ValueError as exc:
                raise ConfigurationError(
                    f"Invalid value for env var {env_key}='{env_val}': {exc}"
                ) from exc
        if self.window_seconds <= 0:
            raise ConfigurationError(
                f"window_seconds must be positive, got {self.window_seconds}"
            )

    def get_limit(self, platform: str) -> Optional[int]:
        """Ceiling for *platform*, or ``None`` when the platform is unknown."""
        return self.platform_limits.get(platform.lower())


# ===========================================================================
# USAGE PENALTY CONFIGURATION
# ===========================================================================


@dataclass
class PenaltyConfig:
    """
    Multipliers applied to a candidate's score by prior usage count.

    Each tuple holds the multiplier for one and for two prior uses in the
    usage window. Three or more uses always get ``saturated``.
    """

    normal: Tuple[float, float] = (0.3, 0.1)
    high_volume: Tuple[float, float] = (0.5, 0.2)
    viral: Tuple[float, float] = (0.7, 0.4)
    saturated: float = 0.01

    high_volume_threshold: int = 10000
    viral_volume_threshold: int = 50000

    def __post_init__(self) -> None:
        _apply_env_overrides(self, {
            "TREND_PENALTY_SATURATED": ("saturated", float),
            "TREND_VOLUME_THRESHOLD": ("high_volume_threshold", int),
            "TREND_VIRAL_THRESHOLD": ("viral_volume_threshold", int),
        })
        # YAML lists arrive as lists
        self.normal = tuple(self.normal)  # type: ignore[assignment]
        self.high_volume = tuple(self.high_volume)  # type: ignore[assignment]
        self.viral = tuple(self.viral)  # type: ignore[assignment]
        for name in ("normal", "high_volume", "viral"):
            curve = getattr(self, name)
            if len(curve) != 2:
                raise ConfigurationError(
                    f"penalty curve '{name}' needs exactly 2 values, got {curve}"
                )


# ===========================================================================
# TREND SELECTION CONFIGURATION
# ===========================================================================

DEFAULT_BLOCKLIST: List[str] = ["nsfw", "adult", "explicit", "nude", "porn", "sex"]
DEFAULT_RELAXED_BLOCKLIST: List[str] = ["nsfw", "adult", "porn", "sex", "nude"]


@dataclass
class SelectionConfig:
    """Thresholds and windows used by the trend selector and its guards."""

    # Duplicate guard
    duplicate_lookback_hours: float = 8
    duplicate_corpus_limit: int = 100
    similarity_threshold: float = 0.8
    similarity_min_topic_length: int = 10

    # Usage windows
    usage_window_hours: float = 24
    fresh_window_hours: float = 12
    top_candidates: int = 10

    # Strict filter
    min_confidence: float = 0.5
    min_source_count: int = 1
    min_engagement: int = 100
    blocklist: List[str] = field(default_factory=lambda: list(DEFAULT_BLOCKLIST))
    relaxed_blocklist: List[str] = field(
        default_factory=lambda: list(DEFAULT_RELAXED_BLOCKLIST)
    )

    # Fetch retries: delays grow 5s, 10s, ...
    fetch_attempts: int = 3
    fetch_backoff_seconds: float = 5.0

    # Fallback rotation
    fallback_rotation_hours: float = 4
    category_fallback_rotation_hours: float = 6

    # Raw source result cache (0 disables)
    cache_ttl_seconds: int = 1800

    def __post_init__(self) -> None:
        _apply_env_overrides(self, {
            "DUPLICATE_LOOKBACK_HOURS": ("duplicate_lookback_hours", float),
            "SIMILARITY_THRESHOLD": ("similarity_threshold", float),
            "TREND_MIN_CONFIDENCE": ("min_confidence", float),
            "TREND_CACHE_TTL": ("cache_ttl_seconds", int),
        })
        if not 0.0 < self.similarity_threshold <= 1.0:
            raise ConfigurationError(
                "similarity_threshold must be in (0, 1], "
                f"got {self.similarity_threshold}"
            )
        if self.fetch_attempts < 1:
            raise ConfigurationError(
                f"fetch_attempts must be at least 1, got {self.fetch_attempts}"
            )


# ===========================================================================
# TOPIC CATEGORIES
# ===========================================================================


@dataclass
class CategoryConfig:
    """A topic category: matching keywords, score weight and flat bonus."""

    name: str
    keywords: List[str]
    weight: float = 1.0
    bonus: float = 0.0
    enabled: bool = True


def _default_categories() -> Dict[str, CategoryConfig]:
    return {
        "tech": CategoryConfig(
            name="tech",
            keywords=[
                "ai", "technology", "startup", "innovation",
                "artificial intelligence", "machine learning", "futurology",
                "llm", "generative ai", "robotics", "quantum computing",
            ],
            weight=1.3,
            bonus=20,
        ),
        "business": CategoryConfig(
            name="business",
            keywords=[
                "venture capital", "entrepreneur", "corporate", "revenue",
                "investment", "funding", "industry", "ipo", "merger",
                "acquisition", "valuation", "unicorn", "market trends",
                "economic growth", "stock market", "earnings report",
                "supply chain", "business",
            ],
            weight=1.1,
            bonus=15,
        ),
        "science": CategoryConfig(
            name="science",
            keywords=[
                "biotechnology", "science", "space", "breakthrough", "physics",
                "research", "medical research", "climate science", "astronomy",
                "biology", "chemistry", "neuroscience", "genetics",
                "space exploration",
            ],
            weight=0.9,
            bonus=15,
        ),
        "entertainment": CategoryConfig(
            name="entertainment",
            keywords=[
                "gaming", "sports", "celebrity", "netflix", "film", "series",
                "entertainment",
            ],
            weight=0.6,
            bonus=5,
            enabled=False,
        ),
        "politics": CategoryConfig(
            name="politics",
            keywords=[
                "politics", "election", "government", "congress", "senate",
                "campaign", "legislation", "diplomacy", "foreign policy",
                "geopolitics",
            ],
            weight=0.7,
            bonus=0,
        ),
        "news": CategoryConfig(
            name="news",
            keywords=[
                "breaking news", "latest news", "news update", "headline",
                "current events", "developing story", "world news",
                "global affairs", "news analysis",
            ],
            weight=1.0,
            bonus=10,
        ),
    }


DEFAULT_CATEGORIES: Dict[str, CategoryConfig] = _default_categories()


def _apply_category_env(categories: Dict[str, CategoryConfig]) -> None:
    """Apply ``ENABLED_CATEGORIES``, ``DISABLED_CATEGORIES`` and ``CATEGORY_WEIGHTS``."""
    enabled = [c.strip() for c in os.environ.get("ENABLED_CATEGORIES", "").split(",") if c.strip()]
    disabled = [c.strip() for c in os.environ.get("DISABLED_CATEGORIES", "").split(",") if c.strip()]

    for name, category in categories.items():
        if enabled:
            category.enabled = name in enabled
        elif disabled:
            category.enabled = name not in disabled

    weights = os.environ.get("CATEGORY_WEIGHTS", "")
    for pair in filter(None, (p.strip() for p in weights.split(","))):
        name, sep, value = pair.partition(":")
        if not sep or name.strip() not in categories:
            raise ConfigurationError(
                f"Invalid CATEGORY_WEIGHTS entry '{pair}' "
                f"(expected <category>:<weight>, categories: {list(categories)})"
            )
        try:
            categories[name.strip()].weight = float(value)
        except ValueError as exc:
            raise ConfigurationError(
                f"Invalid weight in CATEGORY_WEIGHTS entry '{pair}': {exc}"
            ) from exc


# ===========================================================================
# GLOBAL SETTINGS
# ===========================================================================


@dataclass
class Settings:
    """
    Global application settings.

    Loaded from ``config/settings.yaml`` when available, falling back to
    sensible defaults. Environment variables override YAML values for
    secrets and deployment-specific configuration.
    """

    # LLM settings
    llm_model: str = "claude-sonnet-4-5"

    # Logging
    log_level: str = "INFO"
    log_dir: str = "logs"

    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    rate_limits: RateLimitConfig = field(default_factory=RateLimitConfig)
    penalties: PenaltyConfig = field(default_factory=PenaltyConfig)
    selection: SelectionConfig = field(default_factory=SelectionConfig)
    categories: Dict[str, CategoryConfig] = field(default_factory=_default_categories)

    @classmethod
    def from_yaml(cls, path: Optional[Path] = None) -> "Settings":
        """
        Build settings from *path* (``config/settings.yaml`` by default).

        A missing file is not an error; every section then keeps its
        defaults. Env overrides are applied section by section afterwards.

        Raises:
            ConfigurationError: If the YAML file exists but cannot be parsed,
                or a section has the wrong shape.
        """
        path = path or PROJECT_ROOT / "config" / "settings.yaml"

        data: Dict[str, Any] = {}
        if path.exists():
            try:
                with open(path, "r", encoding="utf-8") as fh:
                    data = yaml.safe_load(fh) or {}
            except yaml.YAMLError as exc:
                raise ConfigurationError(
                    f"Failed to parse settings YAML at {path}: {exc}"
                ) from exc

        if not isinstance(data, dict):
            raise ConfigurationError(
                f"Settings YAML at {path} must be a mapping, got {type(data).__name__}"
            )

        # -----------------------------------------------------------------
        # Nested sections
        # -----------------------------------------------------------------
        try:
            scheduler = SchedulerConfig(**_pick(SchedulerConfig, data.get("scheduler", {})))

            rate_data = dict(data.get("rate_limits", {}))
            platform_limits = dict(DEFAULT_PLATFORM_LIMITS)
            platform_limits.update(
                {k.lower(): int(v) for k, v in rate_data.pop("platform_limits", {}).items()}
            )
            rate_limits = RateLimitConfig(
                platform_limits=platform_limits,
                **_pick(RateLimitConfig, rate_data),
            )

            penalties = PenaltyConfig(**_pick(PenaltyConfig, data.get("penalties", {})))
            selection = SelectionConfig(**_pick(SelectionConfig, data.get("selection", {})))
        except (TypeError, ValueError) as exc:
            raise ConfigurationError(f"Invalid settings in {path}: {exc}") from exc

        # -----------------------------------------------------------------
        # Categories: YAML entries merge into the defaults
        # -----------------------------------------------------------------
        categories = _default_categories()
        for name, overrides in (data.get("categories") or {}).items():
            if name in categories:
                for key, value in (overrides or {}).items():
                    if hasattr(categories[name], key) and key != "name":
                        setattr(categories[name], key, value)
            else:
                if not overrides or "keywords" not in overrides:
                    raise ConfigurationError(
                        f"New category '{name}' must define keywords"
                    )
                categories[name] = CategoryConfig(
                    name=name, **_pick(CategoryConfig, {k: v for k, v in overrides.items() if k != "name"})
                )
        _apply_category_env(categories)

        # -----------------------------------------------------------------
        # Assemble the Settings object
        # -----------------------------------------------------------------
        return cls(
            llm_model=os.environ.get("LLM_MODEL", data.get("llm_model", "claude-sonnet-4-5")),
            log_level=os.environ.get("LOG_LEVEL", data.get("log_level", "INFO")),
            log_dir=data.get("log_dir", "logs"),
            scheduler=scheduler,
            rate_limits=rate_limits,
            penalties=penalties,
            selection=selection,
            categories=categories,
        )


# ===========================================================================
# SINGLETON SETTINGS ACCESSOR
# ===========================================================================

_settings_instance: Optional[Settings] = None


def get_settings() -> Settings:
    """Settings for this process, read from disk on first use."""
    global _settings_instance
    if _settings_instance is None:
        _settings_instance = Settings.from_yaml()
    return _settings_instance


def reset_settings() -> None:
    """Reset the cached Settings singleton (tests, config reloads)."""
    global _settings_instance
    _settings_instance = None


# ===========================================================================
# ENVIRONMENT VARIABLE VALIDATION
# ===========================================================================

# Required environment variables for a production deployment
REQUIRED_ENV_VARS: List[str] = [
    "SUPABASE_URL",
    "SUPABASE_SERVICE_KEY",
]

# Optional: the post-writing model (template posts without it), trend
# providers and the Telegram publisher
OPTIONAL_ENV_VARS: List[str] = [
    "ANTHROPIC_API_KEY",
    "NEWSAPI_KEY",
    "GNEWS_API_KEY",
    "TELEGRAM_BOT_TOKEN",
    "TELEGRAM_CHAT_ID",
]


def validate_env(strict: bool = True) -> Dict[str, bool]:
    """Report which deployment variables are set.

    Returns a ``{name: is_set}`` map over the required and optional
    variables. With *strict*, a missing required variable raises
    ``ConfigurationError`` naming every absent one.
    """
    status = {var: bool(os.environ.get(var)) for var in REQUIRED_ENV_VARS + OPTIONAL_ENV_VARS}
    missing = [var for var in REQUIRED_ENV_VARS if not status[var]]
    if strict and missing:
        raise ConfigurationError(
            f"Required environment variables not set: {', '.join(missing)} "
            f"(see .env.example)"
        )
    return status


# ===========================================================================
# PUBLIC API
# ===========================================================================

__all__ = [
    # Configuration classes
    "SchedulerConfig",
    "RateLimitConfig",
    "PenaltyConfig",
    "SelectionConfig",
    "CategoryConfig",
    "Settings",
    # Defaults
    "DEFAULT_PLATFORM_LIMITS",
    "DEFAULT_BLOCKLIST",
    "DEFAULT_RELAXED_BLOCKLIST",
    "DEFAULT_CATEGORIES",
    # Settings accessor
    "get_settings",
    "reset_settings",
    # Environment validation
    "validate_env",
    "REQUIRED_ENV_VARS",
    "OPTIONAL_ENV_VARS",
    # Constants
    "PROJECT_ROOT",
]
