"""
Request Dispatcher
------------------
The only path by which a module call reaches the network.

Design:
- Every attempt takes one permit from the client's RateLimiter
- Auth header injected from the Credentials on every request
- Non-2xx responses become exactly one MudrexAPIError
- Transport failures, 429 and 5xx are retried with bounded exponential
  backoff; every other failure is terminal
- Mutating requests retried after a transport failure may be applied twice
  server-side; this is logged, not prevented

State per call: PENDING → RATE_GATED → SENT →
{SUCCESS | RETRYABLE_FAILURE → RATE_GATED | TERMINAL_FAILURE}
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional
import asyncio
import json

import httpx

from ..core.errors import (
    ErrorKind,
    MudrexAPIError,
    RetryPolicy,
    decode_body,
    error_from_response,
    error_from_transport,
)
from ..core.state_machine import RequestLifecycle, RequestState
from ..infra.config import ClientConfig
from ..infra.logging import RequestContext, get_logger, register_secret, unregister_secret
from .credentials import Credentials
from .rate_limiter import RateLimiter

IDEMPOTENT_METHODS = frozenset({"GET", "HEAD", "OPTIONS"})

# Raised by the send when no usable response came back; wrapped as SERVER
TRANSPORT_FAILURES = (httpx.RequestError, OSError, asyncio.TimeoutError)


def _query_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, Enum):
        return str(value.value)
    return str(value)


@dataclass(frozen=True)
class RequestDescriptor:
    """One API call: method, path relative to the base URL, query and JSON body."""
    method: str
    path: str
    query: Mapping[str, str] = field(default_factory=dict, hash=False)
    body: Any = field(default=None, hash=False)

    def __post_init__(self):
        object.__setattr__(self, "method", self.method.upper())
        object.__setattr__(self, "query", MappingProxyType({
            str(key): _query_value(value)
            for key, value in (self.query or {}).items()
            if value is not None
        }))

    @property
    def is_idempotent(self) -> bool:
        return self.method in IDEMPOTENT_METHODS


def _json_default(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def encode_body(body: Any) -> bytes:
    """Serialise a request body to compact JSON."""
    return json.dumps(body, default=_json_default, separators=(",", ":")).encode("utf-8")


class RequestDispatcher:
    """
    Rate-limited, authenticated, retrying executor for one API key.

    Rules:
    - One RateLimiter per dispatcher, shared by every module client
    - Callers see JSON or a MudrexAPIError; never a raw transport exception
    """

    def __init__(
        self,
        config: ClientConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        limiter: Optional[RateLimiter] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.config = config
        self._credentials = Credentials(
            api_key=config.api_key,
            base_url=config.base_url,
            header_name=config.auth_header,
        )
        register_secret(config.api_key)
        self._closed = False

        self._limiter = limiter or RateLimiter(config.rate_limit)
        self._retry_policy = RetryPolicy(
            max_retries=config.max_retries,
            base_delay=config.backoff_base,
            max_delay=config.backoff_max,
        )

        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(transport=transport, timeout=config.timeout)
        self._logger = get_logger("api.dispatcher")

        self._logger.info(
            f"Dispatcher ready: {self._credentials.base_url} "
            f"(key {self._credentials.masked_key}, {self._limiter.rate:g} req/s, "
            f"max_retries={config.max_retries})"
        )

    @property
    def credentials(self) -> Credentials:
        return self._credentials

    @property
    def limiter(self) -> RateLimiter:
        return self._limiter

    @property
    def retry_policy(self) -> RetryPolicy:
        return self._retry_policy

    async def get(self, path: str, query: Optional[Mapping[str, Any]] = None) -> Any:
        return await self.execute(RequestDescriptor("GET", path, query or {}))

    async def post(self, path: str, body: Any = None, query: Optional[Mapping[str, Any]] = None) -> Any:
        return await self.execute(RequestDescriptor("POST", path, query or {}, body))

    async def patch(self, path: str, body: Any = None, query: Optional[Mapping[str, Any]] = None) -> Any:
        return await self.execute(RequestDescriptor("PATCH", path, query or {}, body))

    async def delete(self, path: str, query: Optional[Mapping[str, Any]] = None) -> Any:
        return await self.execute(RequestDescriptor("DELETE", path, query or {}))

    async def execute(self, request: RequestDescriptor, timeout: Optional[float] = None) -> Any:
        """
        Send a request, retrying transient failures.

        Args:
            request: What to send
            timeout: Optional total deadline in seconds covering every
                permit wait, attempt and backoff

        Returns:
            Decoded JSON of the 2xx response, or None for an empty/non-JSON body

        Raises:
            MudrexAPIError: Exactly one classified failure
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout if timeout is not None else None

        with RequestContext() as request_id:
            lifecycle = RequestLifecycle(request_id, f"{request.method} {request.path}")
            last_error: Optional[MudrexAPIError] = None
            retries = 0

            while True:
                lifecycle.transition(RequestState.RATE_GATED)
                try:
                    response = await self._send_once(request, lifecycle, deadline)
                except TRANSPORT_FAILURES as exc:
                    error = error_from_transport(exc, request.method, request.path)
                except MudrexAPIError as error_before_send:
                    # Rejected before reaching the transport (deadline or body)
                    error = last_error or error_before_send
                    error.attempts = lifecycle.attempts
                    lifecycle.transition(RequestState.TERMINAL_FAILURE, error.kind.name)
                    raise error
                else:
                    if response.is_success:
                        lifecycle.transition(RequestState.SUCCESS, str(response.status_code))
                        return self._decode_success(response)
                    error = error_from_response(
                        response.status_code,
                        response.content,
                        method=request.method,
                        path=request.path,
                        retry_after=response.headers.get("Retry-After"),
                        patterns=self.config.insufficient_balance_patterns,
                    )

                error.attempts = lifecycle.attempts
                last_error = error
                delay = self._next_delay(request, error, retries, deadline)

                if delay is None:
                    lifecycle.transition(RequestState.TERMINAL_FAILURE, error.kind.name)
                    if retries and error.retryable:
                        self._logger.error(
                            f"{request.method} {request.path} failed after "
                            f"{error.attempts} attempts: {error.kind.name} ({error.message})",
                            extra=self._log_extra(request, error),
                        )
                    else:
                        self._logger.debug(f"{request.method} {request.path} failed: {error}")
                    raise error

                lifecycle.transition(RequestState.RETRYABLE_FAILURE, error.kind.name)
                self._logger.warning(
                    f"{request.method} {request.path} attempt {error.attempts} failed "
                    f"({error.kind.name}, status={error.http_status}); retrying in {delay:.2f}s",
                    extra=self._log_extra(request, error, delay),
                )
                await asyncio.sleep(delay)
                retries += 1

    async def _send_once(
        self,
        request: RequestDescriptor,
        lifecycle: RequestLifecycle,
        deadline: Optional[float],
    ) -> httpx.Response:
        """Wait for a permit, build the request and hand it to the transport."""
        remaining = self._remaining(deadline)
        if remaining is not None and remaining <= 0:
            raise self._deadline_error(request, lifecycle)

        try:
            async with self._limiter.permit(timeout=remaining) as permit:
                http_request = self._build_request(request, self._attempt_timeout(deadline))
                permit.mark_sent()
                lifecycle.transition(RequestState.SENT, f"attempt {lifecycle.attempts + 1}")
                self._logger.debug(f"→ {request.method} {http_request.url}")
                response = await self._client.send(http_request)
        except asyncio.TimeoutError:
            if lifecycle.state is not RequestState.RATE_GATED:
                raise
            raise self._deadline_error(request, lifecycle) from None

        self._logger.debug(f"← {response.status_code} {request.method} {request.path}")
        return response

    def _build_request(self, request: RequestDescriptor, timeout: float) -> httpx.Request:
        headers: Dict[str, str] = {
            "Accept": "application/json",
            "User-Agent": self.config.user_agent,
        }
        headers.update(self._credentials.auth_headers())

        content = None
        if request.body is not None:
            try:
                content = encode_body(request.body)
            except (TypeError, ValueError) as e:
                raise MudrexAPIError(
                    kind=ErrorKind.VALIDATION,
                    message=f"Request body is not JSON serializable: {e}",
                    method=request.method,
                    path=request.path,
                ) from e
            headers["Content-Type"] = "application/json"

        return self._client.build_request(
            request.method,
            self._credentials.resolve(request.path),
            params=dict(request.query) or None,
            content=content,
            headers=headers,
            timeout=timeout,
        )

    def _next_delay(
        self,
        request: RequestDescriptor,
        error: MudrexAPIError,
        retries: int,
        deadline: Optional[float],
    ) -> Optional[float]:
        """Backoff before the next attempt, or None when the error is final."""
        if not self._retry_policy.should_retry(error, retries):
            return None

        transport_failure = error.http_status is None
        if transport_failure and not request.is_idempotent and not self.config.retry_non_idempotent:
            return None

        delay = self._retry_policy.get_delay(retries, error.retry_after)
        remaining = self._remaining(deadline)
        if remaining is not None and delay >= remaining:
            return None

        if transport_failure and not request.is_idempotent:
            self._logger.warning(
                f"Retrying {request.method} {request.path} after a transport failure; "
                f"the first attempt may already have been applied (duplicate risk)"
            )
        return delay

    @staticmethod
    def _log_extra(
        request: RequestDescriptor,
        error: MudrexAPIError,
        delay: Optional[float] = None,
    ) -> Dict[str, Any]:
        extra: Dict[str, Any] = {
            "method": request.method,
            "path": request.path,
            "attempt": error.attempts,
            "status_code": error.http_status,
            "kind": error.kind.name,
        }
        if delay is not None:
            extra["delay"] = delay
        return extra

    def _decode_success(self, response: httpx.Response) -> Any:
        body, raw = decode_body(response.content)
        if body is None and raw.strip():
            self._logger.debug(f"Non-JSON {response.status_code} body treated as empty result")
        return body

    def _attempt_timeout(self, deadline: Optional[float]) -> float:
        remaining = self._remaining(deadline)
        if remaining is None:
            return self.config.timeout
        return max(0.001, min(self.config.timeout, remaining))

    @staticmethod
    def _remaining(deadline: Optional[float]) -> Optional[float]:
        if deadline is None:
            return None
        return deadline - asyncio.get_running_loop().time()

    @staticmethod
    def _deadline_error(request: RequestDescriptor, lifecycle: RequestLifecycle) -> MudrexAPIError:
        return MudrexAPIError(
            kind=ErrorKind.SERVER,
            message="Deadline exceeded before the request could be sent",
            method=request.method,
            path=request.path,
            attempts=lifecycle.attempts,
        )

    async def aclose(self) -> None:
        """Close the HTTP client if this dispatcher created it and release the key."""
        if self._closed:
            return
        self._closed = True
        unregister_secret(self.config.api_key)
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "RequestDispatcher":
        return self

    async def __aexit__(self, *args) -> None:
        await self.aclose()
