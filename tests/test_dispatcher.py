"""
Request Dispatcher Tests
------------------------
End-to-end behaviour of execute() against a scripted transport.

Tests cover:
- Request building (auth header, URL, query, JSON body)
- Success decoding, including empty and non-JSON bodies
- Terminal errors (no retry) and retryable errors (bounded retry)
- Transport failures, deadlines and cancellation
- Rate limiting across concurrent calls
"""

import asyncio
import json
import time
from decimal import Decimal

import httpx
import pytest

from mudrex.api.dispatcher import RequestDescriptor
from mudrex.core.errors import ErrorKind, MudrexAPIError


def run(coro):
    return asyncio.run(coro)


class TestRequestBuilding:
    """Tests for what goes over the wire."""

    def test_auth_header_and_url(self, make_dispatcher):
        """Every request carries the API key header and resolves the path."""
        dispatcher, transport = make_dispatcher([(200, {"success": True, "data": []})])

        run(dispatcher.get("/assets", {"offset": 0, "limit": 20, "sort": None}))

        request = transport.requests[0]
        assert request.method == "GET"
        assert request.headers["X-Authentication"] == dispatcher.config.api_key
        assert request.url.path == "/fapi/v1/assets"
        assert dict(request.url.params) == {"offset": "0", "limit": "20"}
        assert request.headers["User-Agent"].startswith("mudrex-futures-python/")

    def test_custom_auth_header(self, make_dispatcher):
        """The header name is configuration, not a constant."""
        dispatcher, transport = make_dispatcher([200], auth_header="X-Api-Key")

        run(dispatcher.get("/wallet/funds"))

        assert transport.requests[0].headers["X-Api-Key"] == dispatcher.config.api_key
        assert "X-Authentication" not in transport.requests[0].headers

    def test_json_body(self, make_dispatcher):
        """Bodies are JSON-encoded; Decimals become strings."""
        dispatcher, transport = make_dispatcher([(200, {"success": True})])

        run(dispatcher.post("/orders", {"quantity": Decimal("0.010"), "reduce_only": False}))

        request = transport.requests[0]
        assert request.headers["Content-Type"] == "application/json"
        assert json.loads(request.content) == {"quantity": "0.010", "reduce_only": False}

    def test_no_body_no_content_type(self, make_dispatcher):
        dispatcher, transport = make_dispatcher([200])

        run(dispatcher.delete("/orders/42"))

        assert transport.requests[0].content == b""
        assert "Content-Type" not in transport.requests[0].headers

    def test_descriptor_normalises(self):
        """Method is upper-cased and None query values dropped."""
        descriptor = RequestDescriptor("get", "/fees/history", {"limit": 5, "offset": None, "flag": True})

        assert descriptor.method == "GET"
        assert descriptor.query == {"limit": "5", "flag": "true"}
        assert descriptor.is_idempotent
        assert not RequestDescriptor("POST", "/orders").is_idempotent

    def test_descriptor_is_immutable(self):
        """Neither fields nor the query mapping can change after construction."""
        descriptor = RequestDescriptor("GET", "/assets", {"limit": 5})

        with pytest.raises(TypeError):
            descriptor.query["limit"] = "50"
        with pytest.raises(AttributeError):
            descriptor.path = "/orders"

        assert descriptor.query == {"limit": "5"}

    def test_descriptor_hashable(self):
        first = RequestDescriptor("get", "/assets", {"limit": 5})
        second = RequestDescriptor("GET", "/assets", {"limit": "5"})

        assert first == second
        assert hash(first) == hash(second)
        assert len({first, second}) == 1

    def test_unserialisable_body_is_validation(self, make_dispatcher):
        """A body that cannot be encoded fails before sending and refunds the permit."""
        dispatcher, transport = make_dispatcher([200], rate_limit=0.5)

        with pytest.raises(MudrexAPIError) as exc_info:
            run(dispatcher.post("/orders", {"when": object()}))

        assert exc_info.value.kind == ErrorKind.VALIDATION
        assert exc_info.value.http_status is None
        assert exc_info.value.attempts == 0
        assert transport.calls == 0
        assert dispatcher.limiter.try_acquire() is not None


class TestSuccess:
    """Tests for 2xx handling."""

    def test_json_returned(self, make_dispatcher):
        dispatcher, _ = make_dispatcher([(200, {"success": True, "data": {"balance": "12.5"}})])

        result = run(dispatcher.get("/wallet/funds"))

        assert result == {"success": True, "data": {"balance": "12.5"}}

    @pytest.mark.parametrize("script", [
        [204],
        [(200, "")],
        [(200, "OK")],
        [(201, "<html></html>")],
    ])
    def test_empty_or_non_json_is_empty_success(self, make_dispatcher, script):
        """An empty or non-JSON 2xx body is a valid empty result."""
        dispatcher, transport = make_dispatcher(script)

        assert run(dispatcher.delete("/orders/1")) is None
        assert transport.calls == 1


class TestTerminalErrors:
    """Tests for errors that are never retried."""

    def test_401_immediate(self, make_dispatcher):
        """401 surfaces AUTHENTICATION with zero retries."""
        dispatcher, transport = make_dispatcher([(401, {"message": "Invalid API key"})])

        with pytest.raises(MudrexAPIError) as exc_info:
            run(dispatcher.get("/wallet/funds"))

        error = exc_info.value
        assert error.kind == ErrorKind.AUTHENTICATION
        assert error.http_status == 401
        assert error.message == "Invalid API key"
        assert error.attempts == 1
        assert transport.calls == 1

    @pytest.mark.parametrize("status,body,kind", [
        (400, {"message": "Insufficient balance"}, ErrorKind.INSUFFICIENT_BALANCE),
        (400, {"message": "quantity too small"}, ErrorKind.VALIDATION),
        (404, {"message": "no such order"}, ErrorKind.NOT_FOUND),
        (409, {"message": "order already cancelled"}, ErrorKind.CONFLICT),
        (403, "forbidden", ErrorKind.GENERIC),
    ])
    def test_not_retried(self, make_dispatcher, status, body, kind):
        dispatcher, transport = make_dispatcher([(status, body), (200, {})])

        with pytest.raises(MudrexAPIError) as exc_info:
            run(dispatcher.post("/orders", {"quantity": "1"}))

        assert exc_info.value.kind == kind
        assert exc_info.value.raw_body
        assert transport.calls == 1


class TestRetries:
    """Tests for bounded retry of transient failures."""

    def test_500_twice_then_success(self, make_dispatcher):
        """Two 500s then 200 with max_retries=3 succeeds after exactly 3 sends."""
        dispatcher, transport = make_dispatcher(
            [500, 500, (200, {"success": True, "data": "ok"})], max_retries=3
        )

        result = run(dispatcher.get("/positions"))

        assert result == {"success": True, "data": "ok"}
        assert transport.calls == 3

    def test_5xx_exhausted(self, make_dispatcher):
        """Persistent 5xx surfaces SERVER after 1 + max_retries sends."""
        dispatcher, transport = make_dispatcher([(503, {"message": "maintenance"})], max_retries=2)

        with pytest.raises(MudrexAPIError) as exc_info:
            run(dispatcher.get("/positions"))

        assert exc_info.value.kind == ErrorKind.SERVER
        assert exc_info.value.http_status == 503
        assert exc_info.value.attempts == 3
        assert transport.calls == 3

    def test_429_backs_off_then_surfaces(self, make_dispatcher):
        """429 is retried at least once, then surfaces RATE_LIMIT."""
        dispatcher, transport = make_dispatcher([(429, {"message": "slow down"})], max_retries=2)

        with pytest.raises(MudrexAPIError) as exc_info:
            run(dispatcher.get("/assets"))

        assert exc_info.value.kind == ErrorKind.RATE_LIMIT
        assert transport.calls == 3

    def test_429_recovers(self, make_dispatcher):
        dispatcher, transport = make_dispatcher([429, (200, {"ok": True})])

        assert run(dispatcher.get("/assets")) == {"ok": True}
        assert transport.calls == 2

    def test_zero_retries(self, make_dispatcher):
        dispatcher, transport = make_dispatcher([500, 200], max_retries=0)

        with pytest.raises(MudrexAPIError):
            run(dispatcher.get("/assets"))

        assert transport.calls == 1

    def test_retry_after_honoured(self, make_dispatcher):
        """A Retry-After header lengthens the backoff."""
        dispatcher, transport = make_dispatcher(
            [httpx.Response(429, headers={"Retry-After": "0.3"}), (200, {})],
            backoff_max=1.0,
        )

        start = time.monotonic()
        run(dispatcher.get("/assets"))
        elapsed = time.monotonic() - start

        assert transport.calls == 2
        assert elapsed >= 0.3


class TestTransportFailures:
    """Tests for timeouts and connection errors."""

    def test_timeout_then_recovery(self, make_dispatcher):
        """A GET that times out succeeds once the transport recovers."""
        dispatcher, transport = make_dispatcher([
            httpx.ReadTimeout("read timed out"),
            httpx.ConnectError("connection refused"),
            (200, {"success": True, "data": 1}),
        ], max_retries=3)

        result = run(dispatcher.get("/wallet/funds"))

        assert result["data"] == 1
        assert transport.calls == 3

    def test_exhausted_transport_wrapped_as_server(self, make_dispatcher):
        """Exhausted transport failures surface as SERVER, never raw."""
        dispatcher, transport = make_dispatcher([httpx.ConnectError("dns failure")], max_retries=2)

        with pytest.raises(MudrexAPIError) as exc_info:
            run(dispatcher.get("/wallet/funds"))

        error = exc_info.value
        assert error.kind == ErrorKind.SERVER
        assert error.http_status is None
        assert isinstance(error.__cause__, httpx.ConnectError)
        assert transport.calls == 3

    def test_undecodable_body_wrapped_as_server(self, make_dispatcher):
        """A body whose Content-Encoding cannot be decoded never escapes raw."""
        def corrupt_gzip(request):
            return httpx.Response(200, headers={"Content-Encoding": "gzip"}, content=b"not-gzip")

        dispatcher, transport = make_dispatcher([corrupt_gzip], max_retries=1)

        with pytest.raises(MudrexAPIError) as exc_info:
            run(dispatcher.get("/wallet/funds"))

        error = exc_info.value
        assert error.kind == ErrorKind.SERVER
        assert error.http_status is None
        assert isinstance(error.__cause__, httpx.DecodingError)
        assert transport.calls == 2

    def test_undecodable_body_then_recovery(self, make_dispatcher):
        def corrupt_gzip(request):
            return httpx.Response(200, headers={"Content-Encoding": "gzip"}, content=b"not-gzip")

        dispatcher, transport = make_dispatcher([corrupt_gzip, (200, {"ok": True})])

        assert run(dispatcher.get("/wallet/funds")) == {"ok": True}
        assert transport.calls == 2

    @pytest.mark.parametrize("failure", [
        TimeoutError("socket timed out"),
        ConnectionResetError("connection reset by peer"),
    ])
    def test_socket_errors_wrapped_as_server(self, make_dispatcher, failure):
        """Builtin socket errors from a transport surface as SERVER after retries."""
        dispatcher, transport = make_dispatcher([failure], max_retries=2)

        with pytest.raises(MudrexAPIError) as exc_info:
            run(dispatcher.get("/positions"))

        error = exc_info.value
        assert error.kind == ErrorKind.SERVER
        assert error.__cause__ is failure
        assert error.attempts == 3
        assert transport.calls == 3

    def test_socket_timeout_then_recovery(self, make_dispatcher):
        dispatcher, transport = make_dispatcher([TimeoutError("socket timed out"), (200, {"ok": 1})])

        assert run(dispatcher.get("/positions")) == {"ok": 1}
        assert transport.calls == 2

    def test_mutating_retried_by_default(self, make_dispatcher):
        """POST is retried after a timeout unless disabled."""
        dispatcher, transport = make_dispatcher([httpx.ReadTimeout("lost"), (200, {"id": "o1"})])

        assert run(dispatcher.post("/orders", {"quantity": "1"})) == {"id": "o1"}
        assert transport.calls == 2

    def test_mutating_not_retried_when_disabled(self, make_dispatcher):
        """retry_non_idempotent=False stops POST retries after a timeout."""
        dispatcher, transport = make_dispatcher(
            [httpx.ReadTimeout("lost"), (200, {})], retry_non_idempotent=False
        )

        with pytest.raises(MudrexAPIError) as exc_info:
            run(dispatcher.post("/orders", {"quantity": "1"}))

        assert exc_info.value.kind == ErrorKind.SERVER
        assert transport.calls == 1

    def test_get_still_retried_when_disabled(self, make_dispatcher):
        dispatcher, transport = make_dispatcher(
            [httpx.ReadTimeout("lost"), (200, {})], retry_non_idempotent=False
        )

        run(dispatcher.get("/orders"))

        assert transport.calls == 2


class TestDeadlines:
    """Tests for the caller-supplied total deadline."""

    def test_deadline_stops_retries(self, make_dispatcher):
        """Retries stop once the next backoff would pass the deadline."""
        dispatcher, transport = make_dispatcher(
            [503], max_retries=10, backoff_base=0.2, backoff_max=0.2
        )

        start = time.monotonic()
        with pytest.raises(MudrexAPIError) as exc_info:
            run(dispatcher.execute(RequestDescriptor("GET", "/assets"), timeout=0.5))
        elapsed = time.monotonic() - start

        assert exc_info.value.http_status == 503
        assert transport.calls < 11
        assert elapsed < 1.0

    def test_deadline_while_rate_gated(self, make_dispatcher):
        """A deadline that expires waiting for a permit sends nothing."""
        dispatcher, transport = make_dispatcher([200], rate_limit=0.2)

        async def scenario():
            await dispatcher.get("/assets")
            await dispatcher.execute(RequestDescriptor("GET", "/assets"), timeout=0.1)

        with pytest.raises(MudrexAPIError) as exc_info:
            run(scenario())

        assert exc_info.value.kind == ErrorKind.SERVER
        assert exc_info.value.attempts == 0
        assert transport.calls == 1
        assert dispatcher.limiter.get_stats()["granted"] == 1


class TestCancellation:
    """Tests for cancelling an in-flight execute()."""

    def test_cancel_while_rate_gated(self, make_dispatcher):
        """Cancelling before a permit is granted sends nothing and spends nothing."""
        dispatcher, transport = make_dispatcher([200], rate_limit=0.2)

        async def scenario():
            await dispatcher.get("/assets")
            tokens_before = dispatcher.limiter.get_stats()["granted"]

            task = asyncio.create_task(dispatcher.get("/assets"))
            await asyncio.sleep(0.05)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task
            return tokens_before

        tokens_before = run(scenario())

        assert transport.calls == 1
        assert dispatcher.limiter.get_stats()["granted"] == tokens_before


class TestRateLimiting:
    """Tests for rate limiting across concurrent execute() calls."""

    def test_ten_concurrent_calls_at_two_per_second(self, make_dispatcher):
        """10 concurrent GETs at 2 req/s take at least 4.5 seconds."""
        dispatcher, transport = make_dispatcher([(200, {})], rate_limit=2)

        async def scenario():
            await asyncio.gather(*(dispatcher.get("/assets") for _ in range(10)))

        start = time.monotonic()
        run(scenario())
        elapsed = time.monotonic() - start

        assert transport.calls == 10
        assert elapsed >= 4.5

    def test_sends_respect_sliding_window(self, make_dispatcher):
        """No one-second window sees more sends than the rate (+1 rounding)."""
        rate = 4
        dispatcher, transport = make_dispatcher([(200, {})], rate_limit=rate)

        async def scenario():
            await asyncio.gather(*(dispatcher.get("/positions") for _ in range(9)))

        run(scenario())

        sent = sorted(transport.sent_at)
        for i, start in enumerate(sent):
            assert len([t for t in sent[i:] if t < start + 1.0]) <= rate + 1

    def test_retries_take_permits(self, make_dispatcher):
        """Each retry attempt consumes its own permit."""
        dispatcher, transport = make_dispatcher([500, 500, (200, {})])

        run(dispatcher.get("/assets"))

        assert dispatcher.limiter.get_stats()["granted"] == transport.calls == 3


class TestLifecycle:
    def test_context_manager_closes_client(self, make_dispatcher):
        dispatcher, _ = make_dispatcher([200])

        async def scenario():
            async with dispatcher:
                await dispatcher.get("/assets")

        run(scenario())

        assert dispatcher._client.is_closed
