"""
Resilient HTTP Client for External Price Sources

- Exponential backoff with jitter
- 429 detection with Retry-After header respect (fail fast on long waits)
- Per-host circuit breaker for repeated failures
- SourceGate: bounded concurrency + politeness delay per external source

Every failure that leaves this module is an ExternalFetchError, so jobs only
have to handle the pricing exception hierarchy.
"""
import asyncio
import logging
import random
import time
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional
from urllib.parse import urlparse

import httpx

from cardboom_pricing.core.exceptions import ExternalFetchError

logger = logging.getLogger(__name__)

# Longest server-requested pause we are willing to sit through
MAX_RATE_LIMIT_WAIT = 60.0


class CircuitState(Enum):
    CLOSED = "closed"      # Normal operation
    OPEN = "open"          # Failing, reject requests
    HALF_OPEN = "half_open"  # Testing if service recovered


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""
    max_retries: int = 2
    base_delay: float = 1.0           # Base delay in seconds
    max_delay: float = 30.0           # Maximum delay cap
    exponential_base: float = 2.0
    jitter_factor: float = 0.5        # Random jitter (0-1)

    retryable_status_codes: tuple = (429, 500, 502, 503, 504)


@dataclass
class CircuitBreakerConfig:
    """Configuration for circuit breaker."""
    failure_threshold: int = 5        # Failures before opening circuit
    success_threshold: int = 1        # Successes to close circuit
    timeout_seconds: float = 60.0     # Time before half-open test


@dataclass
class HostState:
    """Tracks circuit state for a specific host."""
    circuit_state: CircuitState = CircuitState.CLOSED
    failure_count: int = 0
    success_count: int = 0
    last_failure_time: float = 0.0
    blocked_until: Optional[float] = None


class ResilientHTTPClient:
    """
    Async HTTP client with built-in resilience patterns.

    Usage:
        async with ResilientHTTPClient() as client:
            response = await client.get("https://api.example.com/data")

    Non-2xx responses that are not retryable are returned to the caller, who
    decides whether they are errors (adapters raise ExternalFetchError).
    """

    def __init__(
        self,
        retry_config: Optional[RetryConfig] = None,
        circuit_config: Optional[CircuitBreakerConfig] = None,
        timeout: float = 20.0,
        default_headers: Optional[Dict[str, str]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.retry_config = retry_config or RetryConfig()
        self.circuit_config = circuit_config or CircuitBreakerConfig()
        self.timeout = timeout
        self.default_headers = default_headers or {}
        self._transport = transport

        self._client: Optional[httpx.AsyncClient] = None
        self._host_states: Dict[str, HostState] = {}

    async def __aenter__(self):
        await self.init()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def init(self):
        """Initialize client without context manager. Must call close() when done."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                headers=self.default_headers,
                follow_redirects=True,
                transport=self._transport,
            )
        return self

    async def close(self):
        if self._client:
            await self._client.aclose()
            self._client = None

    def _get_host_state(self, host: str) -> HostState:
        if host not in self._host_states:
            self._host_states[host] = HostState()
        return self._host_states[host]

    def _calculate_backoff(self, attempt: int) -> float:
        """min(base * exp_base^attempt +/- jitter, max_delay)"""
        cfg = self.retry_config
        delay = cfg.base_delay * (cfg.exponential_base ** attempt)
        delay += delay * cfg.jitter_factor * (2 * random.random() - 1)
        return max(0.0, min(delay, cfg.max_delay))

    def _parse_retry_after(self, response: httpx.Response) -> Optional[float]:
        """Parse Retry-After header into seconds to wait."""
        retry_after = response.headers.get("Retry-After")
        if not retry_after:
            return None
        try:
            return max(0.0, float(retry_after))
        except ValueError:
            pass
        try:
            from email.utils import parsedate_to_datetime
            return max(0.0, parsedate_to_datetime(retry_after).timestamp() - time.time())
        except (ValueError, TypeError):
            return None

    def _circuit_allows(self, host: str) -> bool:
        state = self._get_host_state(host)
        if state.circuit_state == CircuitState.OPEN:
            if time.time() - state.last_failure_time > self.circuit_config.timeout_seconds:
                logger.info(f"[CIRCUIT] {host}: Moving to HALF_OPEN for test request")
                state.circuit_state = CircuitState.HALF_OPEN
                state.success_count = 0
                return True
            return False
        return True

    def _record_success(self, host: str) -> None:
        state = self._get_host_state(host)
        state.failure_count = 0
        if state.circuit_state == CircuitState.HALF_OPEN:
            state.success_count += 1
            if state.success_count >= self.circuit_config.success_threshold:
                logger.info(f"[CIRCUIT] {host}: Closing circuit")
                state.circuit_state = CircuitState.CLOSED

    def _record_failure(self, host: str) -> None:
        state = self._get_host_state(host)
        state.failure_count += 1
        state.last_failure_time = time.time()
        state.success_count = 0
        if state.circuit_state == CircuitState.HALF_OPEN:
            logger.warning(f"[CIRCUIT] {host}: Test request failed, reopening circuit")
            state.circuit_state = CircuitState.OPEN
        elif state.failure_count >= self.circuit_config.failure_threshold:
            logger.error(f"[CIRCUIT] {host}: Opening circuit after {state.failure_count} failures")
            state.circuit_state = CircuitState.OPEN

    async def request(self, method: str, url: str, source: Optional[str] = None, **kwargs) -> httpx.Response:
        """
        Make an HTTP request with retries.

        Raises:
            ExternalFetchError: circuit open, rate limited beyond MAX_RATE_LIMIT_WAIT,
                network failure or retryable status after all attempts.
        """
        if not self._client:
            await self.init()

        host = urlparse(url).netloc
        cfg = self.retry_config
        state = self._get_host_state(host)

        if state.blocked_until and time.time() < state.blocked_until:
            wait = state.blocked_until - time.time()
            raise ExternalFetchError(
                f"{host} rate limited for another {wait:.0f}s", source=source, status_code=429
            )

        if not self._circuit_allows(host):
            raise ExternalFetchError(f"Circuit breaker OPEN for {host}", source=source)

        last_error: Optional[str] = None
        last_status: Optional[int] = None

        for attempt in range(cfg.max_retries + 1):
            try:
                logger.debug(f"[HTTP] {method} {url} (attempt {attempt + 1}/{cfg.max_retries + 1})")
                response = await self._client.request(method, url, **kwargs)
            except (httpx.TimeoutException, httpx.TransportError) as e:
                self._record_failure(host)
                last_error = f"{type(e).__name__}: {e}"
                if attempt < cfg.max_retries:
                    delay = self._calculate_backoff(attempt)
                    logger.warning(f"[HTTP] {host}: {type(e).__name__}, retrying in {delay:.1f}s")
                    await asyncio.sleep(delay)
                    continue
                break

            if response.status_code == 429:
                wait_time = self._parse_retry_after(response)
                if wait_time is None:
                    wait_time = self._calculate_backoff(attempt)
                state.blocked_until = time.time() + wait_time
                last_status, last_error = 429, "rate limited"

                if wait_time > MAX_RATE_LIMIT_WAIT:
                    logger.error(f"[429] {host}: Wait {wait_time:.0f}s exceeds max - failing fast")
                    raise ExternalFetchError(
                        f"Rate limited by {host} for {wait_time:.0f}s", source=source, status_code=429
                    )
                if attempt < cfg.max_retries:
                    logger.warning(f"[429] {host}: Rate limited, backing off {wait_time:.1f}s")
                    await asyncio.sleep(wait_time)
                    state.blocked_until = None
                    continue
                break

            if response.status_code in cfg.retryable_status_codes:
                self._record_failure(host)
                last_status, last_error = response.status_code, f"status {response.status_code}"
                if attempt < cfg.max_retries:
                    delay = self._calculate_backoff(attempt)
                    logger.warning(
                        f"[HTTP] {host}: Status {response.status_code}, retrying in {delay:.1f}s"
                    )
                    await asyncio.sleep(delay)
                    continue
                break

            self._record_success(host)
            return response

        logger.error(f"[HTTP] {host}: All {cfg.max_retries + 1} attempts failed ({last_error})")
        raise ExternalFetchError(
            f"Request to {host} failed after {cfg.max_retries + 1} attempts: {last_error}",
            source=source,
            status_code=last_status,
        )

    async def get(self, url: str, **kwargs) -> httpx.Response:
        return await self.request("GET", url, **kwargs)


# =============================================================================
# SOURCE GATES
# =============================================================================

class SourceGate:
    """
    Bounded-concurrency gate for one external source.

    At most `max_concurrency` calls are in flight; each holder keeps its slot
    for `delay_seconds` after the call so consecutive calls are spaced out.

        async with gate:
            response = await client.get(...)
    """

    def __init__(self, name: str, max_concurrency: int = 1, delay_seconds: float = 0.0):
        self.name = name
        self.max_concurrency = max(1, max_concurrency)
        self.delay_seconds = max(0.0, delay_seconds)
        self._semaphore = asyncio.Semaphore(self.max_concurrency)
        self.calls = 0

    async def __aenter__(self):
        await self._semaphore.acquire()
        self.calls += 1
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        try:
            if self.delay_seconds:
                await asyncio.sleep(self.delay_seconds)
        finally:
            self._semaphore.release()


class SourceGateRegistry:
    """One gate per source name, created on first use."""

    def __init__(self, delay_seconds: float = 0.0, limits: Optional[Dict[str, int]] = None):
        self.delay_seconds = delay_seconds
        self.limits = limits or {}
        self._gates: Dict[str, SourceGate] = {}

    def get(self, source: str) -> SourceGate:
        if source not in self._gates:
            self._gates[source] = SourceGate(
                source,
                max_concurrency=self.limits.get(source, 1),
                delay_seconds=self.delay_seconds,
            )
        return self._gates[source]
