import asyncio

import httpx
import pytest

from cardboom_pricing.core.exceptions import ExternalFetchError
from cardboom_pricing.core.http_client import (
    CircuitBreakerConfig,
    CircuitState,
    ResilientHTTPClient,
    RetryConfig,
    SourceGate,
    SourceGateRegistry,
)

NO_WAIT = RetryConfig(max_retries=1, base_delay=0, max_delay=0, jitter_factor=0)


@pytest.mark.asyncio
async def test_request_retries_after_retry_after_header():
    """
    Ensure 429 with Retry-After sets blocked_until, then recovers on retry.
    """
    call_count = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal call_count
        call_count += 1
        if call_count == 1:
            return httpx.Response(429, headers={"Retry-After": "0"})
        return httpx.Response(200, json={"ok": True})

    client = ResilientHTTPClient(retry_config=NO_WAIT, transport=httpx.MockTransport(handler))

    resp = await client.get("https://example.com/test")
    await client.close()

    assert resp.status_code == 200
    assert call_count == 2
    state = client._get_host_state("example.com")
    assert state.blocked_until is None
    assert state.failure_count == 0


@pytest.mark.asyncio
async def test_long_retry_after_fails_fast():
    """
    Very long Retry-After should raise without blocking for minutes.
    """

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(429, headers={"Retry-After": "120"})

    client = ResilientHTTPClient(retry_config=NO_WAIT, transport=httpx.MockTransport(handler))

    with pytest.raises(ExternalFetchError) as exc_info:
        await client.get("https://example.com/test", source="ebay")

    await client.close()
    assert exc_info.value.status_code == 429
    assert exc_info.value.source == "ebay"
    assert client._get_host_state("example.com").blocked_until is not None


@pytest.mark.asyncio
async def test_server_errors_exhaust_retries():
    call_count = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal call_count
        call_count += 1
        return httpx.Response(503)

    client = ResilientHTTPClient(retry_config=NO_WAIT, transport=httpx.MockTransport(handler))

    with pytest.raises(ExternalFetchError) as exc_info:
        await client.get("https://example.com/test")

    await client.close()
    assert call_count == 2
    assert exc_info.value.status_code == 503


@pytest.mark.asyncio
async def test_non_retryable_status_is_returned():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404, json={"error": "not found"})

    client = ResilientHTTPClient(retry_config=NO_WAIT, transport=httpx.MockTransport(handler))
    resp = await client.get("https://example.com/missing")
    await client.close()

    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_transport_error_becomes_fetch_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    client = ResilientHTTPClient(retry_config=NO_WAIT, transport=httpx.MockTransport(handler))

    with pytest.raises(ExternalFetchError):
        await client.get("https://example.com/test")
    await client.close()


@pytest.mark.asyncio
async def test_circuit_opens_after_repeated_failures():
    call_count = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal call_count
        call_count += 1
        return httpx.Response(500)

    client = ResilientHTTPClient(
        retry_config=RetryConfig(max_retries=0, base_delay=0, max_delay=0, jitter_factor=0),
        circuit_config=CircuitBreakerConfig(failure_threshold=2, timeout_seconds=60),
        transport=httpx.MockTransport(handler),
    )

    for _ in range(2):
        with pytest.raises(ExternalFetchError):
            await client.get("https://example.com/test")

    with pytest.raises(ExternalFetchError) as exc_info:
        await client.get("https://example.com/test")
    await client.close()

    assert "Circuit breaker OPEN" in exc_info.value.message
    assert call_count == 2
    assert client._get_host_state("example.com").circuit_state == CircuitState.OPEN


@pytest.mark.asyncio
async def test_source_gate_limits_concurrency():
    gate = SourceGate("cardmarket", max_concurrency=2)
    in_flight = 0
    peak = 0

    async def call():
        nonlocal in_flight, peak
        async with gate:
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0.01)
            in_flight -= 1

    await asyncio.gather(*(call() for _ in range(6)))

    assert peak == 2
    assert gate.calls == 6


def test_gate_registry_reuses_gates():
    gates = SourceGateRegistry(delay_seconds=0.1, limits={"ebay": 3})

    assert gates.get("ebay") is gates.get("ebay")
    assert gates.get("ebay").max_concurrency == 3
    assert gates.get("pricecharting").max_concurrency == 1
    assert gates.get("pricecharting").delay_seconds == 0.1
