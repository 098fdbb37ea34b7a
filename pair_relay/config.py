"""Configuration management for pair-relay.

This module handles loading configuration from multiple sources with the following priority:
1. CLI arguments (handled by caller)
2. Environment variables (PORT, PAIR_RELAY_*)
3. TOML configuration file
4. Default values

Configuration files are loaded from the first of:
- the path in PAIR_RELAY_CONFIG
- pair-relay.toml in current working directory
- ~/.pair-relay/config.toml

Example file::

    [relay]
    port = 3000
    addressing = "auto"        # auto | static | explicit
    replace_policy = "keep"    # keep | close

    [pairings]
    device = "console"
"""

import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional

from loguru import logger

from pair_relay.pairing import ADDRESSING_AUTO, VALID_ADDRESSING, PairingTable
from pair_relay.router import REPLACE_KEEP, VALID_REPLACE_POLICIES

DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 3000
DEFAULT_PAIRINGS = {"device": "console"}
DEFAULT_MAX_MESSAGE_SIZE = 2**20
DEFAULT_PING_INTERVAL = 20.0

VALID_LOG_LEVELS = {"TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL"}


class ConfigError(ValueError):
    """Configuration that cannot be used to start the relay."""


@dataclass
class RelayConfig:
    """Effective relay settings.

    Attributes:
        host: Interface to bind to.
        port: Listening port.
        addressing: Destination strategy: ``auto``, ``static`` or ``explicit``.
        replace_policy: ``keep`` or ``close`` for superseded connections.
        pairings: One-directional pairing entries; completed symmetrically by
            ``pairing_table()``.
        max_message_size: Largest accepted frame in bytes (None for no limit).
        ping_interval: Keepalive ping interval in seconds (None to disable).
        log_level: loguru level name.
    """

    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    addressing: str = ADDRESSING_AUTO
    replace_policy: str = REPLACE_KEEP
    pairings: Dict[str, str] = field(default_factory=lambda: dict(DEFAULT_PAIRINGS))
    max_message_size: Optional[int] = DEFAULT_MAX_MESSAGE_SIZE
    ping_interval: Optional[float] = DEFAULT_PING_INTERVAL
    log_level: str = "INFO"

    def __post_init__(self):
        """Validate configuration after initialization."""
        if self.addressing not in VALID_ADDRESSING:
            raise ConfigError(
                f"Invalid addressing '{self.addressing}'. "
                f"Valid values are: {', '.join(sorted(VALID_ADDRESSING))}"
            )
        if self.replace_policy not in VALID_REPLACE_POLICIES:
            raise ConfigError(
                f"Invalid replace_policy '{self.replace_policy}'. "
                f"Valid values are: {', '.join(sorted(VALID_REPLACE_POLICIES))}"
            )
        if not isinstance(self.host, str) or not self.host:
            raise ConfigError(f"Invalid host: {self.host!r}")
        if (
            isinstance(self.port, bool)
            or not isinstance(self.port, int)
            or not 0 <= self.port <= 65535
        ):
            raise ConfigError(f"Port out of range: {self.port!r}")
        if self.max_message_size is not None and (
            isinstance(self.max_message_size, bool)
            or not isinstance(self.max_message_size, int)
            or self.max_message_size <= 0
        ):
            raise ConfigError(
                f"max_message_size must be a positive integer: {self.max_message_size!r}"
            )
        if self.ping_interval is not None and (
            isinstance(self.ping_interval, bool)
            or not isinstance(self.ping_interval, (int, float))
            or self.ping_interval <= 0
        ):
            raise ConfigError(
                f"ping_interval must be a positive number: {self.ping_interval!r}"
            )
        self.log_level = str(self.log_level).upper()
        if self.log_level not in VALID_LOG_LEVELS:
            raise ConfigError(f"Invalid log_level '{self.log_level}'")

    def pairing_table(self) -> PairingTable:
        """Build the immutable pairing table.

        Raises:
            ConfigError: If the pairings are not a consistent symmetric table.
        """
        try:
            return PairingTable(self.pairings)
        except ValueError as e:
            raise ConfigError(f"Invalid pairings: {e}") from e

    def to_dict(self) -> dict:
        return {
            "relay": {
                "host": self.host,
                "port": self.port,
                "addressing": self.addressing,
                "replace_policy": self.replace_policy,
                "max_message_size": self.max_message_size,
                "ping_interval": self.ping_interval,
                "log_level": self.log_level,
            },
            "pairings": dict(self.pairings),
        }


class Config:
    """Configuration manager for pair-relay."""

    def __init__(self):
        """Initialize configuration with defaults."""
        self.settings: dict = RelayConfig().to_dict()["relay"]
        self.pairings: Dict[str, str] = dict(DEFAULT_PAIRINGS)
        self.config_file: Optional[Path] = None
        self._config_data: dict = {}

    def load(self, config_file: Optional[Path] = None) -> None:
        """Load configuration from all sources.

        Priority order:
        1. Environment variables
        2. TOML configuration file
        3. Default values

        Args:
            config_file: Explicit file to load instead of searching.
        """
        config_file = config_file or self._find_config_file()
        if config_file:
            self._load_config_file(Path(config_file))

        self._apply_env_overrides()

    def _find_config_file(self) -> Optional[Path]:
        """Find the configuration file.

        Searches in order:
        1. $PAIR_RELAY_CONFIG
        2. pair-relay.toml in current working directory
        3. ~/.pair-relay/config.toml

        Returns:
            Path to config file if found, None otherwise.
        """
        env_config = os.getenv("PAIR_RELAY_CONFIG")
        if env_config:
            path = Path(env_config).expanduser()
            if path.exists():
                logger.info(f"Loading config from {path}")
                return path
            logger.warning(f"PAIR_RELAY_CONFIG points to missing file: {path}")

        cwd_config = Path.cwd() / "pair-relay.toml"
        if cwd_config.exists():
            logger.info(f"Loading config from {cwd_config}")
            return cwd_config

        home_config = self._home_config_path()
        if home_config.exists():
            logger.info(f"Loading config from {home_config}")
            return home_config

        logger.debug("No config file found, using defaults")
        return None

    def _home_config_path(self) -> Path:
        return Path.home() / ".pair-relay" / "config.toml"

    def _load_config_file(self, config_file: Path) -> None:
        """Load configuration from TOML file.

        A file that cannot be read or parsed is logged and ignored. Pairing
        consistency is checked later, by ``relay_config()``.

        Args:
            config_file: Path to the TOML configuration file.
        """
        try:
            with open(config_file, "rb") as f:
                self._config_data = tomllib.load(f)
        except (OSError, tomllib.TOMLDecodeError) as e:
            logger.warning(
                f"Failed to load config file {config_file}: {e}. Using defaults."
            )
            return

        self.config_file = config_file

        relay_section = self._config_data.get("relay", {})
        for key, value in relay_section.items():
            if key not in self.settings:
                logger.warning(f"Unknown [relay] setting '{key}' in {config_file}")
                continue
            self.settings[key] = value
            logger.debug(f"Loaded {key} from config: {value}")

        if "pairings" in self._config_data:
            pairings = self._config_data["pairings"]
            if isinstance(pairings, dict):
                self.pairings = dict(pairings)
            else:
                logger.warning(f"Ignoring non-table [pairings] in {config_file}")

    def _apply_env_overrides(self) -> None:
        """Apply environment variable overrides.

        Environment variables take precedence over config file settings
        but are overridden by CLI arguments (handled by caller).
        """
        port = os.getenv("PAIR_RELAY_PORT") or os.getenv("PORT")
        if port:
            try:
                self.settings["port"] = int(port)
                logger.info(f"Overriding port from env: {port}")
            except ValueError:
                logger.warning(f"Ignoring non-numeric port from env: {port!r}")

        host = os.getenv("PAIR_RELAY_HOST")
        if host:
            self.settings["host"] = host
            logger.info(f"Overriding host from env: {host}")

        addressing = os.getenv("PAIR_RELAY_ADDRESSING")
        if addressing:
            if addressing.lower() in VALID_ADDRESSING:
                self.settings["addressing"] = addressing.lower()
                logger.info(f"Overriding addressing from env: {addressing}")
            else:
                logger.warning(f"Ignoring invalid PAIR_RELAY_ADDRESSING: {addressing!r}")

        policy = os.getenv("PAIR_RELAY_REPLACE_POLICY")
        if policy:
            if policy.lower() in VALID_REPLACE_POLICIES:
                self.settings["replace_policy"] = policy.lower()
                logger.info(f"Overriding replace_policy from env: {policy}")
            else:
                logger.warning(f"Ignoring invalid PAIR_RELAY_REPLACE_POLICY: {policy!r}")

        log_level = os.getenv("PAIR_RELAY_LOG_LEVEL")
        if log_level:
            if log_level.upper() in VALID_LOG_LEVELS:
                self.settings["log_level"] = log_level.upper()
            else:
                logger.warning(f"Ignoring invalid PAIR_RELAY_LOG_LEVEL: {log_level!r}")

    def relay_config(self, **overrides) -> RelayConfig:
        """Build a validated ``RelayConfig``.

        Args:
            **overrides: Values from the caller (CLI options); ``None`` values
                are ignored. ``pairings`` entries are merged over the loaded
                table.

        Raises:
            ConfigError: If any setting is invalid.
        """
        settings = dict(self.settings)
        pairings = dict(self.pairings)

        extra_pairings = overrides.pop("pairings", None)
        if extra_pairings:
            pairings.update(extra_pairings)

        for key, value in overrides.items():
            if value is not None:
                settings[key] = value

        try:
            config = RelayConfig(pairings=pairings, **settings)
        except TypeError as e:
            raise ConfigError(f"Invalid relay settings: {e}") from e
        config.pairing_table()
        return config


# Global configuration instance, used by the CLI
_config: Optional[Config] = None


def get_config() -> Config:
    """Get the global configuration instance.

    Loads configuration on first call.

    Returns:
        Global Config instance.
    """
    global _config
    if _config is None:
        _config = Config()
        _config.load()
    return _config


def reload_config(config_file: Optional[Path] = None) -> Config:
    """Reload configuration from sources.

    Args:
        config_file: Explicit file to load instead of searching.

    Returns:
        Reloaded Config instance.
    """
    global _config
    _config = Config()
    _config.load(config_file)
    return _config
