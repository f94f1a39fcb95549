"""
Log fetcher configuration from YAML with environment variable overrides.

Configuration priority (highest to lowest):
1. LOG_FETCHER_* environment variables (a .env file is loaded first)
2. config.yaml file (under the 'log_fetcher:' key, ${VAR} references expanded)
3. Dataclass defaults

Example config.yaml:
    log_fetcher:
      workspace_id: ${LOG_ANALYTICS_WORKSPACE_ID}
      query_timeout_ms: 60000
      lookback_minutes: 15
      batch_size: 1000
      severity_levels: [Error, Warning]
      retry:
        max_retries: 3
        initial_delay_ms: 1000
      circuit_breaker:
        failure_threshold: 5
        reset_timeout_ms: 300000
"""

import logging
import os
import re
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv

from core.errors.exceptions import ConfigurationError
from core.resilience.circuit_breaker import CircuitBreakerConfig
from core.resilience.retry import RetryConfig
from log_fetcher.models import Severity
from log_fetcher.query_builder import (
    DEFAULT_BATCH_SIZE,
    DEFAULT_SEVERITY_LEVELS,
    DEFAULT_SOURCE_TABLES,
    MAX_BATCH_SIZE,
)

logger = logging.getLogger(__name__)

# Default config path: config.yaml in src/ directory
DEFAULT_CONFIG_PATH = Path(__file__).parent.parent / "config.yaml"
CONFIG_SECTION = "log_fetcher"
ENV_PREFIX = "LOG_FETCHER_"

MIN_QUERY_TIMEOUT_MS = 1000
MAX_QUERY_TIMEOUT_MS = 300_000


def load_yaml(path: Path) -> Dict[str, Any]:
    """Load YAML file and return dict, empty if the file does not exist."""
    if not path.exists():
        return {}
    with open(path, "r") as f:
        return yaml.safe_load(f) or {}


def _expand_env_vars(data: Any) -> Any:
    """Recursively expand ${VAR_NAME} and ${VAR_NAME:-default} in config data."""
    if isinstance(data, dict):
        return {key: _expand_env_vars(value) for key, value in data.items()}
    elif isinstance(data, list):
        return [_expand_env_vars(item) for item in data]
    elif isinstance(data, str):
        pattern = r"\$\{([^}:]+)(?::-(([^}]*))?)?\}"

        def replacer(match):
            var_name = match.group(1)
            default_value = match.group(2) if match.group(2) is not None else match.group(0)
            return os.getenv(var_name, default_value)

        return re.sub(pattern, replacer, data)
    else:
        return data


def _split_list(value: Any) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        return tuple(part.strip() for part in value.split(",") if part.strip())
    return tuple(str(part).strip() for part in value if str(part).strip())


# Flat env var name -> (section, key); section None means top level
ENV_OVERRIDES = {
    "WORKSPACE_ID": (None, "workspace_id"),
    "QUERY_TIMEOUT_MS": (None, "query_timeout_ms"),
    "LOOKBACK_MINUTES": (None, "lookback_minutes"),
    "BATCH_SIZE": (None, "batch_size"),
    "SEVERITY_LEVELS": (None, "severity_levels"),
    "SOURCE_TABLES": (None, "source_tables"),
    "MAX_TIMEOUT_NARROWINGS": (None, "max_timeout_narrowings"),
    "MIN_WINDOW_SECONDS": (None, "min_window_seconds"),
    "AUTH_MAX_ATTEMPTS": (None, "auth_max_attempts"),
    "MAX_RETRIES": ("retry", "max_retries"),
    "INITIAL_DELAY_MS": ("retry", "initial_delay_ms"),
    "MAX_DELAY_MS": ("retry", "max_delay_ms"),
    "BACKOFF_MULTIPLIER": ("retry", "backoff_multiplier"),
    "FAILURE_THRESHOLD": ("circuit_breaker", "failure_threshold"),
    "RESET_TIMEOUT_MS": ("circuit_breaker", "reset_timeout_ms"),
}


@dataclass
class LogFetcherConfig:
    """
    Settings consumed by LogFetcher.

    Load configuration using LogFetcherConfig.load_config() which reads from
    config.yaml with environment variable overrides.
    """

    workspace_id: str
    query_timeout_ms: int = 60_000
    lookback_minutes: int = 15
    batch_size: int = DEFAULT_BATCH_SIZE
    severity_levels: tuple[str, ...] = DEFAULT_SEVERITY_LEVELS
    source_tables: tuple[str, ...] = DEFAULT_SOURCE_TABLES
    retry: RetryConfig = field(default_factory=RetryConfig)
    circuit_breaker: CircuitBreakerConfig = field(default_factory=CircuitBreakerConfig)

    # Timeout recovery bounds
    max_timeout_narrowings: int = 4
    min_window_seconds: float = 60.0

    auth_max_attempts: int = 3

    def __post_init__(self):
        """Ensure proper types from YAML/env vars."""
        self.workspace_id = "" if self.workspace_id is None else str(self.workspace_id)
        self.severity_levels = _split_list(self.severity_levels)
        self.source_tables = _split_list(self.source_tables)
        try:
            if isinstance(self.retry, dict):
                self.retry = RetryConfig(**self.retry)
            if isinstance(self.circuit_breaker, dict):
                self.circuit_breaker = CircuitBreakerConfig(**self.circuit_breaker)
            self.query_timeout_ms = int(self.query_timeout_ms)
            self.lookback_minutes = int(self.lookback_minutes)
            self.batch_size = int(self.batch_size)
            self.max_timeout_narrowings = int(self.max_timeout_narrowings)
            self.min_window_seconds = float(self.min_window_seconds)
            self.auth_max_attempts = int(self.auth_max_attempts)
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid configuration value: {e}", cause=e) from e

    @property
    def query_timeout_seconds(self) -> int:
        return max(1, self.query_timeout_ms // 1000)

    def validate(self) -> "LogFetcherConfig":
        """
        Check every setting; raises ConfigurationError on the first violation.

        Runs before any component is built, so a bad config never reaches the
        network.
        """
        if not self.workspace_id.strip():
            raise ConfigurationError(
                "log_fetcher.workspace_id is required. "
                "Set in config.yaml or via LOG_FETCHER_WORKSPACE_ID env var."
            )
        if not MIN_QUERY_TIMEOUT_MS <= self.query_timeout_ms <= MAX_QUERY_TIMEOUT_MS:
            raise ConfigurationError(
                f"query_timeout_ms must be between {MIN_QUERY_TIMEOUT_MS} and "
                f"{MAX_QUERY_TIMEOUT_MS}, got {self.query_timeout_ms}"
            )
        if self.lookback_minutes < 1:
            raise ConfigurationError(
                f"lookback_minutes must be >= 1, got {self.lookback_minutes}"
            )
        if not 1 <= self.batch_size <= MAX_BATCH_SIZE:
            raise ConfigurationError(
                f"batch_size must be between 1 and {MAX_BATCH_SIZE}, got {self.batch_size}"
            )
        for name in self.severity_levels:
            Severity.from_name(name)
        if not self.source_tables:
            raise ConfigurationError("source_tables must name at least one table")
        if self.max_timeout_narrowings < 0:
            raise ConfigurationError(
                f"max_timeout_narrowings must be >= 0, got {self.max_timeout_narrowings}"
            )
        if self.min_window_seconds <= 0:
            raise ConfigurationError(
                f"min_window_seconds must be > 0, got {self.min_window_seconds}"
            )
        if self.auth_max_attempts < 1:
            raise ConfigurationError(
                f"auth_max_attempts must be >= 1, got {self.auth_max_attempts}"
            )
        self.retry.validate()
        self.circuit_breaker.validate()
        return self

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LogFetcherConfig":
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            logger.warning(
                "Ignoring unknown log_fetcher settings: %s", ", ".join(sorted(unknown))
            )
        kwargs = {k: v for k, v in data.items() if k in known}
        kwargs.setdefault("workspace_id", "")
        try:
            return cls(**kwargs)
        except TypeError as e:
            raise ConfigurationError(f"Invalid log_fetcher configuration: {e}", cause=e) from e

    @classmethod
    def load_config(
        cls,
        config_path: Optional[Path] = None,
    ) -> "LogFetcherConfig":
        """Load configuration from YAML file with environment variable overrides."""
        load_dotenv()
        config_path = Path(config_path) if config_path else DEFAULT_CONFIG_PATH

        yaml_data = _expand_env_vars(load_yaml(config_path))
        data: Dict[str, Any] = dict(yaml_data.get(CONFIG_SECTION) or {})
        for section in ("retry", "circuit_breaker"):
            data[section] = dict(data.get(section) or {})

        for env_name, (section, key) in ENV_OVERRIDES.items():
            value = os.getenv(ENV_PREFIX + env_name)
            if value is None:
                continue
            if section is None:
                data[key] = value
            else:
                data[section][key] = value

        logger.debug(
            "Loaded log fetcher configuration",
            extra={"operation": "load_config", "workspace_id": data.get("workspace_id")},
        )
        return cls.from_dict(data).validate()


__all__ = [
    "LogFetcherConfig",
    "DEFAULT_CONFIG_PATH",
    "MIN_QUERY_TIMEOUT_MS",
    "MAX_QUERY_TIMEOUT_MS",
    "load_yaml",
]
