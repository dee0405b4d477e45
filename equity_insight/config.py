"""Application settings loaded from YAML and the process environment."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional
import yaml


BASE_DIR = Path(__file__).parent.parent
DEFAULT_CONFIG_PATH = BASE_DIR / "data" / "config.yaml"

# Environment variable names
API_KEY_ENV = "API_KEY"
GEMINI_API_KEY_ENV = "GEMINI_API_KEY"
CONFIG_PATH_ENV = "EQUITY_INSIGHT_CONFIG"
PERSIST_PATH_ENV = "EQUITY_INSIGHT_CACHE_FILE"


def _get_api_key() -> Optional[str]:
    """
    Read the model credential from the environment.

    API_KEY takes precedence over GEMINI_API_KEY. Blank values count as missing.
    """
    for name in (API_KEY_ENV, GEMINI_API_KEY_ENV):
        value = os.environ.get(name, "").strip()
        if value:
            return value
    return None


@dataclass
class RetrySettings:
    max_attempts: int = 3
    base_delay: float = 2.0  # seconds, server-side failures
    rate_limit_delay: float = 5.0  # seconds, quota bucket refill


@dataclass
class CacheSettings:
    market_ttl: float = 5 * 60
    screener_ttl: float = 15 * 60
    ipo_ttl: float = 60 * 60
    persist_path: Optional[Path] = None  # None = process-lifetime only


@dataclass
class Settings:
    """
    Runtime configuration for the research service.

    Representation Invariants:
    - retry.max_attempts >= 1
    - all TTLs and delays are non-negative
    - market_refresh_interval > 0
    - api_key is None or a non-empty string
    """

    api_key: Optional[str] = None
    model_name: str = "gemini-2.5-flash"
    retry: RetrySettings = field(default_factory=RetrySettings)
    cache: CacheSettings = field(default_factory=CacheSettings)
    market_refresh_interval: float = 60.0
    market_auto_refresh: bool = False
    chat_context_limit: int = 10000

    def __post_init__(self) -> None:
        """Validate representation invariants after initialization."""
        if self.retry.max_attempts < 1:
            raise ValueError("retry.max_attempts must be at least 1")
        numbers = [
            self.retry.base_delay,
            self.retry.rate_limit_delay,
            self.cache.market_ttl,
            self.cache.screener_ttl,
            self.cache.ipo_ttl,
        ]
        if any(n < 0 for n in numbers):
            raise ValueError("TTLs and delays must be non-negative")
        if self.market_refresh_interval <= 0:
            raise ValueError("market_refresh_interval must be positive")
        if self.chat_context_limit <= 0:
            raise ValueError("chat.context_limit must be positive")
        if self.api_key is not None and not self.api_key.strip():
            self.api_key = None

    @property
    def has_credentials(self) -> bool:
        return bool(self.api_key)


def load_settings(config_path: Optional[Path] = None) -> Settings:
    """
    Load settings from YAML, then apply environment overrides.

    Preconditions:
    - config_path, if given, points at a YAML mapping (a missing file is allowed)

    Postconditions:
    - Returns a validated Settings instance
    - Raises ValueError if the YAML is malformed or not a mapping

    Args:
        config_path: Optional path to the YAML file. Defaults to
            $EQUITY_INSIGHT_CONFIG or data/config.yaml.

    Returns:
        Settings populated from file and environment
    """
    if config_path is None:
        env_path = os.environ.get(CONFIG_PATH_ENV)
        config_path = Path(env_path) if env_path else DEFAULT_CONFIG_PATH

    data: dict = {}
    if config_path.exists():
        try:
            with open(config_path, "r") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid config file {config_path}: {e}") from e
        if not isinstance(data, dict):
            raise ValueError(f"Invalid config format in {config_path}: expected a mapping")

    model = data.get("model") or {}
    retry = data.get("retry") or {}
    cache = data.get("cache") or {}
    market = data.get("market") or {}
    chat = data.get("chat") or {}

    persist_path = os.environ.get(PERSIST_PATH_ENV) or cache.get("persist_path")
    if persist_path:
        persist_path = Path(persist_path)
        # Relative paths are anchored at the project root, not the CWD
        if not persist_path.is_absolute():
            persist_path = BASE_DIR / persist_path

    return Settings(
        api_key=_get_api_key(),
        model_name=model.get("name", "gemini-2.5-flash"),
        retry=RetrySettings(
            max_attempts=int(retry.get("max_attempts", 3)),
            base_delay=float(retry.get("base_delay", 2.0)),
            rate_limit_delay=float(retry.get("rate_limit_delay", 5.0)),
        ),
        cache=CacheSettings(
            market_ttl=float(cache.get("market_ttl", 5 * 60)),
            screener_ttl=float(cache.get("screener_ttl", 15 * 60)),
            ipo_ttl=float(cache.get("ipo_ttl", 60 * 60)),
            persist_path=persist_path or None,
        ),
        market_refresh_interval=float(market.get("refresh_interval", 60.0)),
        market_auto_refresh=bool(market.get("auto_refresh", False)),
        chat_context_limit=int(chat.get("context_limit", 10000)),
    )
