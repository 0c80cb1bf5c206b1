"""
Client Configuration
--------------------
Immutable settings for one client instance.
Loads from keyword arguments, environment variables, or YAML with
environment variable overrides.

Rules:
- Secrets never in code; the API key comes from the caller or MUDREX_API_KEY
- Invalid values fail at construction with ConfigurationError
- A built config is never mutated; with_overrides() returns a new one
"""

from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Callable, Dict, Mapping, Optional, Tuple, Union
import os

import yaml

from .. import __version__
from ..core.errors import INSUFFICIENT_BALANCE_PATTERNS, ConfigurationError

DEFAULT_BASE_URL = "https://trade.mudrex.com/fapi/v1"
DEFAULT_AUTH_HEADER = "X-Authentication"
ENV_PREFIX = "MUDREX_"


def _parse_bool(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in ("true", "1", "yes", "on"):
        return True
    if lowered in ("false", "0", "no", "off"):
        return False
    raise ValueError(f"not a boolean: {value!r}")


# Environment-overridable fields and how to parse their string values
_ENV_FIELDS: Dict[str, Callable[[str], Any]] = {
    "api_key": str,
    "base_url": str,
    "rate_limit": float,
    "timeout": float,
    "max_retries": int,
    "backoff_base": float,
    "backoff_max": float,
    "auth_header": str,
    "retry_non_idempotent": _parse_bool,
}


@dataclass(frozen=True)
class ClientConfig:
    """Configuration for a Mudrex client."""
    api_key: str = field(repr=False)
    base_url: str = DEFAULT_BASE_URL
    rate_limit: float = 2.0  # Requests per second; the server bans above 2
    timeout: float = 30.0  # Seconds, per attempt
    max_retries: int = 3
    backoff_base: float = 0.5
    backoff_max: float = 8.0
    auth_header: str = DEFAULT_AUTH_HEADER
    user_agent: str = f"mudrex-futures-python/{__version__}"
    retry_non_idempotent: bool = True
    insufficient_balance_patterns: Tuple[str, ...] = INSUFFICIENT_BALANCE_PATTERNS

    def __post_init__(self):
        if isinstance(self.rate_limit, bool) or not isinstance(self.rate_limit, (int, float)) \
                or self.rate_limit <= 0:
            raise ConfigurationError(f"rate_limit must be a positive number, got {self.rate_limit!r}")
        if isinstance(self.timeout, bool) or not isinstance(self.timeout, (int, float)) \
                or self.timeout <= 0:
            raise ConfigurationError(f"timeout must be a positive number, got {self.timeout!r}")
        if isinstance(self.max_retries, bool) or not isinstance(self.max_retries, int) \
                or self.max_retries < 0:
            raise ConfigurationError(
                f"max_retries must be a non-negative integer, got {self.max_retries!r}"
            )
        if not isinstance(self.backoff_base, (int, float)) or self.backoff_base <= 0:
            raise ConfigurationError(f"backoff_base must be positive, got {self.backoff_base!r}")
        if not isinstance(self.backoff_max, (int, float)) or self.backoff_max < self.backoff_base:
            raise ConfigurationError(
                f"backoff_max must be >= backoff_base, got {self.backoff_max!r}"
            )
        object.__setattr__(
            self, "insufficient_balance_patterns", tuple(self.insufficient_balance_patterns)
        )

    def with_overrides(self, **changes: Any) -> "ClientConfig":
        """Return a new, validated config with some fields replaced."""
        unknown = set(changes) - {f.name for f in fields(self)}
        if unknown:
            raise ConfigurationError(f"Unknown config fields: {sorted(unknown)}")
        return replace(self, **changes)

    @classmethod
    def from_mapping(
        cls,
        values: Mapping[str, Any],
        environ: Optional[Mapping[str, str]] = None,
        prefix: str = ENV_PREFIX,
    ) -> "ClientConfig":
        """
        Build a config from a mapping; environment variables win.

        Args:
            values: Field values (unknown keys are rejected)
            environ: Environment to read overrides from (default os.environ)
            prefix: Environment variable prefix
        """
        known = {f.name for f in fields(cls)}
        unknown = set(values) - known
        if unknown:
            raise ConfigurationError(f"Unknown config fields: {sorted(unknown)}")

        merged: Dict[str, Any] = dict(values)
        merged.update(_read_env(os.environ if environ is None else environ, prefix))

        if not merged.get("api_key"):
            raise ConfigurationError(f"API key not configured (set {prefix}API_KEY)")
        if "insufficient_balance_patterns" in merged:
            merged["insufficient_balance_patterns"] = tuple(merged["insufficient_balance_patterns"])
        return cls(**merged)

    @classmethod
    def from_env(
        cls,
        environ: Optional[Mapping[str, str]] = None,
        prefix: str = ENV_PREFIX,
    ) -> "ClientConfig":
        """Load configuration from environment variables only."""
        return cls.from_mapping({}, environ=environ, prefix=prefix)

    @classmethod
    def from_yaml(
        cls,
        path: Union[str, Path],
        environ: Optional[Mapping[str, str]] = None,
        prefix: str = ENV_PREFIX,
    ) -> "ClientConfig":
        """
        Load configuration from a YAML file.

        The settings may sit at the top level or under a `mudrex:` section.
        Environment variables override file values.
        """
        config_path = Path(path)
        if not config_path.exists():
            raise ConfigurationError(f"Config file not found: {config_path}")

        try:
            with open(config_path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in {config_path}: {e}") from e

        if not isinstance(data, dict):
            raise ConfigurationError(f"Config file must contain a mapping: {config_path}")
        section = data.get("mudrex", data)
        if not isinstance(section, dict):
            raise ConfigurationError(f"'mudrex' section must be a mapping: {config_path}")

        return cls.from_mapping(section, environ=environ, prefix=prefix)


def _read_env(environ: Mapping[str, str], prefix: str) -> Dict[str, Any]:
    values: Dict[str, Any] = {}
    for name, parse in _ENV_FIELDS.items():
        env_key = f"{prefix}{name.upper()}"
        raw = environ.get(env_key)
        if raw is None or raw == "":
            continue
        try:
            values[name] = parse(raw)
        except ValueError as e:
            raise ConfigurationError(f"Invalid value for {env_key}: {e}") from e
    return values
