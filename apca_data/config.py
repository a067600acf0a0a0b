"""Configuration loading and validation."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional, TypedDict

import yaml
from dotenv import load_dotenv

from apca_data.alpaca_api.base import DEFAULT_DATA_URL, AuthenticationError, Credentials
from apca_data.alpaca_api.market_data import MAX_PAGE_LIMIT
from apca_data.stream import DEFAULT_STREAM_URL

VALID_FEEDS = ("iex", "sip")


class ConfigError(Exception):
    """Raised when config is invalid."""

    pass


class EnvConfig(TypedDict, total=False):
    """Environment configuration with type safety."""

    ALPACA_API_KEY: str
    ALPACA_SECRET_KEY: str
    ALPACA_DATA_URL: str
    ALPACA_STREAM_URL: str
    ALPACA_FEED: str
    ALPACA_PAGE_LIMIT: str
    ALPACA_TIMEOUT: str
    LOG_LEVEL: str


@dataclass
class DataConfig:
    """Settings shared by the historical client and the realtime session."""

    api_key: str = field(default="", repr=False)
    secret_key: str = field(default="", repr=False)
    data_url: str = DEFAULT_DATA_URL
    stream_url: str = DEFAULT_STREAM_URL
    feed: str = "iex"
    page_limit: Optional[int] = None
    timeout: float = 10.0
    log_level: str = "INFO"

    @classmethod
    def from_dict(cls, config: dict[str, Any]) -> "DataConfig":
        """Create DataConfig from config dict.

        Raises:
            ConfigError: If a numeric field is not a number
        """
        try:
            page_limit = config.get("page_limit")
            return cls(
                api_key=str(config.get("api_key", "")),
                secret_key=str(config.get("secret_key", "")),
                data_url=str(config.get("data_url") or DEFAULT_DATA_URL),
                stream_url=str(config.get("stream_url") or DEFAULT_STREAM_URL),
                feed=str(config.get("feed") or "iex").lower(),
                page_limit=int(page_limit) if page_limit not in (None, "") else None,
                timeout=float(config.get("timeout", 10.0)),
                log_level=str(config.get("log_level") or "INFO").upper(),
            )
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid numeric configuration value: {e}") from e

    def credentials(self) -> Credentials:
        """Credentials built from the configured key and secret.

        Raises:
            ConfigError: If either is missing
        """
        try:
            return Credentials(self.api_key, self.secret_key)
        except AuthenticationError as e:
            raise ConfigError(str(e)) from e


def load_env() -> EnvConfig:
    """Load environment variables from .env file and environment.

    Returns:
        EnvConfig with all environment settings
    """
    load_dotenv()
    return EnvConfig(
        ALPACA_API_KEY=os.getenv("ALPACA_API_KEY", ""),
        ALPACA_SECRET_KEY=os.getenv("ALPACA_SECRET_KEY", ""),
        ALPACA_DATA_URL=os.getenv("ALPACA_DATA_URL", DEFAULT_DATA_URL),
        ALPACA_STREAM_URL=os.getenv("ALPACA_STREAM_URL", DEFAULT_STREAM_URL),
        ALPACA_FEED=os.getenv("ALPACA_FEED", "iex"),
        ALPACA_PAGE_LIMIT=os.getenv("ALPACA_PAGE_LIMIT", ""),
        ALPACA_TIMEOUT=os.getenv("ALPACA_TIMEOUT", "10"),
        LOG_LEVEL=os.getenv("LOG_LEVEL", "INFO"),
    )


def load_yaml_config(path: str) -> dict[str, Any]:
    """Load the `data:` section of a YAML config file."""
    config_path = Path(path)

    if not config_path.exists():
        raise ConfigError(f"Config file not found: {path}")

    with open(config_path) as f:
        raw = yaml.safe_load(f) or {}

    if not isinstance(raw, dict):
        raise ConfigError(f"Config file must contain a mapping: {path}")

    section = raw.get("data", {})
    if not isinstance(section, dict):
        raise ConfigError(f"data section must be a mapping, got {type(section).__name__}")
    return section


def validate_config(config: DataConfig) -> None:
    """Validate configuration before any client is built.

    Raises:
        ConfigError: If any value is invalid
    """
    if not config.api_key:
        raise ConfigError("ALPACA_API_KEY not set")
    if not config.secret_key:
        raise ConfigError("ALPACA_SECRET_KEY not set")

    if config.feed not in VALID_FEEDS:
        raise ConfigError(f"Invalid feed: {config.feed} (expected one of {', '.join(VALID_FEEDS)})")

    if config.page_limit is not None and not 1 <= config.page_limit <= MAX_PAGE_LIMIT:
        raise ConfigError(f"page_limit must be between 1 and {MAX_PAGE_LIMIT}, got {config.page_limit}")
    if config.timeout <= 0:
        raise ConfigError(f"timeout must be positive, got {config.timeout}")

    if not config.data_url.startswith(("https://", "http://")):
        raise ConfigError(f"data_url must be an http(s) URL: {config.data_url}")
    if not config.stream_url.startswith(("wss://", "ws://")):
        raise ConfigError(f"stream_url must be a ws(s) URL: {config.stream_url}")


def load_config(path: Optional[str] = None) -> DataConfig:
    """Load, merge and validate configuration.

    Environment (and .env) provides credentials and defaults; the optional
    YAML file overrides the non-secret settings.

    Args:
        path: Optional YAML file with a `data:` section

    Returns:
        Validated DataConfig
    """
    env = load_env()
    merged: dict[str, Any] = {
        "api_key": env["ALPACA_API_KEY"],
        "secret_key": env["ALPACA_SECRET_KEY"],
        "data_url": env["ALPACA_DATA_URL"],
        "stream_url": env["ALPACA_STREAM_URL"],
        "feed": env["ALPACA_FEED"],
        "page_limit": env["ALPACA_PAGE_LIMIT"],
        "timeout": env["ALPACA_TIMEOUT"],
        "log_level": env["LOG_LEVEL"],
    }

    if path:
        overrides = load_yaml_config(path)
        # Secrets belong in the environment, not in a checked-in file
        for secret in ("api_key", "secret_key"):
            if secret in overrides:
                raise ConfigError(f"{secret} must be set via environment, not the config file")
        merged.update(overrides)

    config = DataConfig.from_dict(merged)
    validate_config(config)
    return config
