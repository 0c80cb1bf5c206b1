"""
Credential Holder
-----------------
API key and base URL for one client, fixed at construction.

Rules:
- The key is validated once and never mutated; rotate by building a new client
- The key never appears in repr() or in log lines (see masked_key)
"""

from dataclasses import dataclass, field
from typing import Dict
from urllib.parse import urlsplit

from ..core.errors import ConfigurationError
from ..infra.config import DEFAULT_AUTH_HEADER, DEFAULT_BASE_URL
from ..infra.logging import mask_secret


def _has_whitespace(value: str) -> bool:
    return any(ch.isspace() for ch in value)


@dataclass(frozen=True)
class Credentials:
    """Read-only API key and endpoint used to authenticate every request."""
    api_key: str = field(repr=False)
    base_url: str = DEFAULT_BASE_URL
    header_name: str = DEFAULT_AUTH_HEADER

    def __post_init__(self):
        if not isinstance(self.api_key, str) or not self.api_key:
            raise ConfigurationError("API key is required")
        if _has_whitespace(self.api_key):
            raise ConfigurationError("API key must not contain whitespace")

        if not isinstance(self.header_name, str) or not self.header_name:
            raise ConfigurationError("Authentication header name is required")
        if _has_whitespace(self.header_name):
            raise ConfigurationError(f"Invalid authentication header name: {self.header_name!r}")

        if not isinstance(self.base_url, str):
            raise ConfigurationError("Base URL must be a string")
        parts = urlsplit(self.base_url.strip())
        if parts.scheme not in ("http", "https") or not parts.netloc:
            raise ConfigurationError(f"Base URL must be an absolute http(s) URL: {self.base_url!r}")

        # Frozen dataclass: normalise through object.__setattr__
        object.__setattr__(self, "base_url", self.base_url.strip().rstrip("/"))

    @property
    def masked_key(self) -> str:
        return mask_secret(self.api_key)

    def auth_headers(self) -> Dict[str, str]:
        """Headers that authenticate a request."""
        return {self.header_name: self.api_key}

    def resolve(self, path: str) -> str:
        """Join a request path onto the base URL."""
        return f"{self.base_url}/{path.lstrip('/')}"
