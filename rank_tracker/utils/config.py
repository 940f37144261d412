"""Configuration management for the rank tracker."""

import math
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings

DEFAULT_CONCURRENCY = 5
MAX_CONCURRENCY = 10
DEFAULT_DELAY_MS = 50
DEFAULT_TIMEOUT_MS = 5000
MIN_TIMEOUT_MS = 1000
DEFAULT_BATCH_SIZE = 500
MIN_BATCH_SIZE = 200
MAX_BATCH_SIZE = 500


def _parse_int(value: Any) -> Optional[int]:
    """Parse an integer from a raw config value, None if it isn't one."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if math.isfinite(value) else None
    try:
        return int(float(str(value).strip()))
    except (TypeError, ValueError, OverflowError):
        return None


def resolve_concurrency(value: Any, default: int = DEFAULT_CONCURRENCY) -> int:
    """Normalize a refresh concurrency value.

    Zero, negative and non-numeric values fall back to the default; values
    above the ceiling clamp to MAX_CONCURRENCY.
    """
    parsed = _parse_int(value)
    if parsed is None or parsed < 1:
        return default
    return min(parsed, MAX_CONCURRENCY)


def resolve_delay_ms(value: Any, default: int = DEFAULT_DELAY_MS) -> int:
    """Normalize the inter-page delay in milliseconds."""
    parsed = _parse_int(value)
    if parsed is None or parsed < 0:
        return default
    return parsed


def resolve_timeout_ms(value: Any, default: int = DEFAULT_TIMEOUT_MS) -> int:
    """Normalize the upstream request timeout (never below MIN_TIMEOUT_MS)."""
    parsed = _parse_int(value)
    if parsed is None:
        return default
    return max(MIN_TIMEOUT_MS, parsed)


def resolve_batch_size(value: Any, default: int = DEFAULT_BATCH_SIZE) -> int:
    """Normalize the history batch size into [MIN_BATCH_SIZE, MAX_BATCH_SIZE]."""
    parsed = _parse_int(value)
    if parsed is None or parsed < 1:
        return default
    return max(MIN_BATCH_SIZE, min(parsed, MAX_BATCH_SIZE))


class DatabaseConfig(BaseModel):
    """Database configuration."""

    url: str = "sqlite:///data/db/ranks.db"
    echo: bool = False


class SearchConfig(BaseModel):
    """Naver shopping search configuration."""

    base_url: str = "https://openapi.naver.com/v1/search/shop.json"
    timeout_ms: int = DEFAULT_TIMEOUT_MS
    delay_ms: int = DEFAULT_DELAY_MS
    max_retries: int = 2
    backoff_ms: int = 200


class RefreshConfig(BaseModel):
    """Rank refresh configuration."""

    concurrency: int = DEFAULT_CONCURRENCY


class HistoryConfig(BaseModel):
    """Rank history configuration."""

    batch_size: int = DEFAULT_BATCH_SIZE
    lookback_days: int = 120
    max_rows_per_product: int = 2000
    max_days: int = 120
    timezone: str = "Asia/Seoul"


class APIConfig(BaseModel):
    """API configuration."""

    host: str = "0.0.0.0"
    port: int = 8000
    cors_origins: list[str] = Field(default_factory=lambda: ["*"])


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"
    file: str = "data/logs/rank_tracker.log"


class Config(BaseModel):
    """Main configuration model."""

    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    search: SearchConfig = Field(default_factory=SearchConfig)
    refresh: RefreshConfig = Field(default_factory=RefreshConfig)
    history: HistoryConfig = Field(default_factory=HistoryConfig)
    api: APIConfig = Field(default_factory=APIConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


class Settings(BaseSettings):
    """Environment-based settings.

    Numeric tuning values are kept as raw strings and normalized during the
    merge so that a malformed value falls back to its default instead of
    failing validation.
    """

    # Database
    database_url: str = ""

    # Rank refresh tuning
    rank_refresh_concurrency: str = ""
    rank_refresh_delay_ms: str = ""
    naver_api_timeout_ms: str = ""
    rank_history_batch_size: str = ""
    history_timezone: str = ""

    # Logging
    log_level: str = ""

    # API
    api_host: str = ""
    api_port: str = ""

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}


class ConfigManager:
    """Configuration manager for loading and merging config sources."""

    def __init__(self, config_path: Optional[Path] = None, settings: Optional[Settings] = None):
        """Initialize configuration manager.

        Args:
            config_path: Path to YAML configuration file
            settings: Pre-built environment settings (read from env when omitted)
        """
        load_dotenv()

        if config_path is None:
            config_path = Path(__file__).parent.parent.parent / "config" / "config.yaml"

        self.config_path = config_path
        self.yaml_config = self._load_yaml()
        self.env_settings = settings if settings is not None else Settings()
        self.config = self._merge_config()

    def _load_yaml(self) -> Dict[str, Any]:
        """Load YAML configuration file."""
        if not self.config_path.exists():
            return {}

        with open(self.config_path, "r", encoding="utf-8") as f:
            return yaml.safe_load(f) or {}

    def _merge_config(self) -> Config:
        """Merge YAML config with environment variables."""
        merged = {key: dict(value or {}) for key, value in self.yaml_config.items()}
        env = self.env_settings

        if env.database_url:
            merged.setdefault("database", {})["url"] = env.database_url

        if env.log_level:
            merged.setdefault("logging", {})["level"] = env.log_level

        if env.api_host:
            merged.setdefault("api", {})["host"] = env.api_host

        if env.api_port:
            port = _parse_int(env.api_port)
            if port:
                merged.setdefault("api", {})["port"] = port

        if env.history_timezone:
            merged.setdefault("history", {})["timezone"] = env.history_timezone

        refresh = merged.setdefault("refresh", {})
        refresh["concurrency"] = resolve_concurrency(
            env.rank_refresh_concurrency or refresh.get("concurrency")
        )

        search = merged.setdefault("search", {})
        search["delay_ms"] = resolve_delay_ms(env.rank_refresh_delay_ms or search.get("delay_ms"))
        search["timeout_ms"] = resolve_timeout_ms(
            env.naver_api_timeout_ms or search.get("timeout_ms")
        )

        history = merged.setdefault("history", {})
        history["batch_size"] = resolve_batch_size(
            env.rank_history_batch_size or history.get("batch_size")
        )

        return Config(**merged)


_config_manager: Optional[ConfigManager] = None


def get_config_manager() -> ConfigManager:
    """Get the configuration manager used by entry points."""
    global _config_manager
    if _config_manager is None:
        _config_manager = ConfigManager()
    return _config_manager


def get_config() -> Config:
    """Get merged configuration for entry points."""
    return get_config_manager().config
