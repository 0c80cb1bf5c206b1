"""
Error Handling Module
---------------------
Typed errors with classification and retry logic.

Design:
- One exception type, tagged with a closed set of eight ErrorKinds
- Classification is a pure function of (status, body); no I/O
- Only RATE_LIMIT and SERVER kinds are ever retried, and only by the dispatcher
- Transport exceptions never escape unwrapped
"""

from dataclasses import dataclass
from enum import Enum, auto
from typing import Any, Iterable, Optional, Tuple
import asyncio
import json

import httpx


class ErrorKind(Enum):
    """Closed set of failure kinds surfaced to callers."""
    AUTHENTICATION = auto()        # 401
    RATE_LIMIT = auto()            # 429
    INSUFFICIENT_BALANCE = auto()  # 400 with an insufficient-funds body
    VALIDATION = auto()            # 400 otherwise, or rejected client-side
    NOT_FOUND = auto()             # 404
    CONFLICT = auto()              # 409
    SERVER = auto()                # 5xx, or transport failure
    GENERIC = auto()               # any other non-2xx


RETRYABLE_KINDS = frozenset({ErrorKind.RATE_LIMIT, ErrorKind.SERVER})

# Best-effort discriminator for 400 responses; matched case-insensitively
INSUFFICIENT_BALANCE_PATTERNS: Tuple[str, ...] = (
    "insufficient balance",
    "insufficient funds",
    "insufficient margin",
    "insufficient_balance",
    "insufficient_funds",
    "insufficient_margin",
    "not enough balance",
    "not enough margin",
    "balance is not enough",
)

_MESSAGE_KEYS = ("message", "msg", "error", "detail", "reason")


class ConfigurationError(ValueError):
    """Raised when a client is constructed with invalid settings."""


class MudrexAPIError(Exception):
    """
    A failed API call.

    Attributes:
        kind: One of the eight ErrorKinds
        http_status: Status of the last response, None if none was received
        message: Human-readable message, extracted from the body when possible
        raw_body: Undecoded response body, for diagnostics
        attempts: Number of transport sends made for the call
        method, path: The request that failed
    """

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        http_status: Optional[int] = None,
        raw_body: str = "",
        method: str = "",
        path: str = "",
        attempts: int = 0,
        retry_after: Optional[float] = None,
    ):
        self.kind = kind
        self.message = message
        self.http_status = http_status
        self.raw_body = raw_body
        self.method = method
        self.path = path
        self.attempts = attempts
        self.retry_after = retry_after
        super().__init__(str(self))

    @property
    def retryable(self) -> bool:
        return self.kind in RETRYABLE_KINDS

    def __str__(self) -> str:
        status = self.http_status if self.http_status is not None else "no response"
        target = f" {self.method} {self.path}" if self.method else ""
        return f"{self.kind.name} ({status}){target}: {self.message}"

    def __repr__(self) -> str:
        return (
            f"MudrexAPIError(kind={self.kind.name}, http_status={self.http_status}, "
            f"message={self.message!r})"
        )


def classify(
    status: int,
    body: Any = None,
    patterns: Iterable[str] = INSUFFICIENT_BALANCE_PATTERNS,
) -> ErrorKind:
    """
    Map a non-2xx status and its parsed body to an ErrorKind.

    Only a 400 looks at the body. Anything unmatched falls back to
    VALIDATION (for 400) or GENERIC (for other statuses); this never raises.
    """
    if status == 401:
        return ErrorKind.AUTHENTICATION
    if status == 429:
        return ErrorKind.RATE_LIMIT
    if status == 400:
        if _mentions_insufficient_balance(body, patterns):
            return ErrorKind.INSUFFICIENT_BALANCE
        return ErrorKind.VALIDATION
    if status == 404:
        return ErrorKind.NOT_FOUND
    if status == 409:
        return ErrorKind.CONFLICT
    if status >= 500:
        return ErrorKind.SERVER
    return ErrorKind.GENERIC


def _mentions_insufficient_balance(body: Any, patterns: Iterable[str]) -> bool:
    haystack = " ".join(_collect_text(body)).lower()
    if not haystack:
        return False
    return any(pattern.lower() in haystack for pattern in patterns)


def _collect_text(body: Any, depth: int = 0) -> list:
    """Flatten the string-ish leaves of a decoded body."""
    if depth > 4 or body is None:
        return []
    if isinstance(body, (str, int, float)) and not isinstance(body, bool):
        return [str(body)]
    if isinstance(body, dict):
        texts = []
        for value in body.values():
            texts.extend(_collect_text(value, depth + 1))
        return texts
    if isinstance(body, (list, tuple)):
        texts = []
        for item in body:
            texts.extend(_collect_text(item, depth + 1))
        return texts
    return []


def decode_body(content: bytes) -> Tuple[Any, str]:
    """Return (parsed JSON or None, raw text) for a response body."""
    raw = content.decode("utf-8", errors="replace") if content else ""
    if not raw.strip():
        return None, raw
    try:
        return json.loads(raw), raw
    except ValueError:
        return None, raw


def extract_message(body: Any, raw: str, status: int) -> str:
    """Pick the most useful human message out of an error body."""
    if isinstance(body, dict):
        for key in _MESSAGE_KEYS:
            value = body.get(key)
            if isinstance(value, str) and value:
                return value
            if isinstance(value, dict):
                nested = extract_message(value, "", status)
                if nested:
                    return nested
        errors = body.get("errors")
        if isinstance(errors, list) and errors:
            first = errors[0]
            if isinstance(first, str):
                return first
            if isinstance(first, dict):
                nested = extract_message(first, "", status)
                if nested:
                    return nested
    if isinstance(body, str) and body:
        return body
    if raw.strip():
        return raw.strip()[:200]
    return f"HTTP {status}" if status else ""


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    """Parse a Retry-After header given in seconds."""
    if not value:
        return None
    try:
        seconds = float(value)
    except ValueError:
        return None
    return seconds if seconds >= 0 else None


def error_from_response(
    status: int,
    content: bytes,
    method: str = "",
    path: str = "",
    retry_after: Optional[str] = None,
    patterns: Iterable[str] = INSUFFICIENT_BALANCE_PATTERNS,
) -> MudrexAPIError:
    """Build the MudrexAPIError for a non-2xx response."""
    body, raw = decode_body(content)
    kind = classify(status, body if body is not None else raw, patterns)
    return MudrexAPIError(
        kind=kind,
        message=extract_message(body, raw, status) or f"HTTP {status}",
        http_status=status,
        raw_body=raw,
        method=method,
        path=path,
        retry_after=parse_retry_after(retry_after),
    )


def error_from_transport(
    exc: Exception,
    method: str = "",
    path: str = "",
) -> MudrexAPIError:
    """
    Wrap a failure that left no usable response as SERVER.

    Covers httpx request errors (timeouts, refused connections, DNS, a body
    that cannot be decoded) and socket-level OSError/TimeoutError raised by
    a transport.
    """
    if isinstance(exc, (httpx.TimeoutException, asyncio.TimeoutError, TimeoutError)):
        message = f"Request timed out: {exc}"
    elif isinstance(exc, httpx.DecodingError):
        message = f"Undecodable response body: {exc}"
    else:
        message = f"Network error: {exc}"
    error = MudrexAPIError(
        kind=ErrorKind.SERVER,
        message=message,
        method=method,
        path=path,
    )
    error.__cause__ = exc
    return error


@dataclass(frozen=True)
class RetryPolicy:
    """
    Bounded exponential backoff for retryable kinds.

    Delay for the n-th retry (n counted from 0) is base_delay * 2**n, capped at
    max_delay. A server Retry-After can only lengthen the delay.
    """
    max_retries: int = 3
    base_delay: float = 0.5
    max_delay: float = 8.0

    def should_retry(self, error: MudrexAPIError, retries_done: int) -> bool:
        """Check if the call should be retried after `retries_done` retries."""
        return error.retryable and retries_done < self.max_retries

    def get_delay(self, retries_done: int, retry_after: Optional[float] = None) -> float:
        """Get delay before the next retry in seconds."""
        delay = min(self.base_delay * (2 ** retries_done), self.max_delay)
        if retry_after is not None:
            delay = max(delay, min(retry_after, self.max_delay))
        return delay
