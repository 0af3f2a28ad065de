"""
backend/app/providers/http_client.py

Purpose:
    Outbound HTTP for provider adapters: an httpx.AsyncClient wrapper with an
    attempt budget, exponential backoff honouring Retry-After, and a circuit
    breaker that makes calls fail fast while a provider is down.

Dependencies:
    - httpx
"""

import asyncio
import logging
import time
from typing import Callable, Optional
from urllib.parse import urlparse

import httpx

logger = logging.getLogger("betai.http_client")

RETRYABLE_STATUSES = frozenset({429, 500, 502, 503, 504})
MAX_BACKOFF_SECONDS = 30.0


class CircuitOpenError(RuntimeError):
    """Raised instead of calling a provider whose circuit is open."""


class CircuitBreaker:
    """Opens after ``failure_threshold`` consecutive failed calls.

    While open, a single trial call is let through once ``recovery_timeout``
    seconds have passed since the last failure (half-open); other callers keep
    failing fast until that call reports back. A success closes the circuit,
    a failure restarts the window. A trial that never reports back is
    released after another ``recovery_timeout``.
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        recovery_timeout: float = 120.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self._clock = clock
        self.failure_count = 0
        self.opened_at: Optional[float] = None
        self.trial_started_at: Optional[float] = None

    @property
    def is_open(self) -> bool:
        return self.opened_at is not None

    def record_success(self) -> None:
        if self.is_open:
            logger.info("[%s] Circuit closed", self.name)
        self.failure_count = 0
        self.opened_at = None
        self.trial_started_at = None

    def record_failure(self) -> None:
        self.failure_count += 1
        self.trial_started_at = None
        if self.failure_count >= self.failure_threshold:
            if not self.is_open:
                logger.warning(
                    "[%s] Circuit OPEN after %d consecutive failures", self.name, self.failure_count,
                )
            self.opened_at = self._clock()

    def release(self) -> None:
        """End a half-open trial whose outcome says nothing about provider health."""
        self.trial_started_at = None

    def can_attempt(self) -> bool:
        if not self.is_open:
            return True
        now = self._clock()
        if now - self.opened_at < self.recovery_timeout:
            return False
        if self.trial_started_at is not None and now - self.trial_started_at < self.recovery_timeout:
            return False
        self.trial_started_at = now
        logger.info("[%s] Circuit half-open, letting one call through", self.name)
        return True


def retry_after_seconds(response: httpx.Response) -> Optional[float]:
    value = response.headers.get("retry-after")
    try:
        return float(value) if value is not None else None
    except ValueError:
        return None


def safe_url(url: str) -> str:
    """Strip query params (may contain API keys) for safe logging."""
    parsed = urlparse(str(url))
    return f"{parsed.scheme}://{parsed.netloc}{parsed.path}"


class ResilientClient:
    """httpx.AsyncClient with an attempt budget and a circuit breaker.

    ``max_retries=0`` means exactly one attempt. Non-retryable responses
    (including 4xx) are returned as-is. After the budget is spent the last
    retryable response is returned, or the last network error re-raised.
    """

    def __init__(
        self,
        name: str,
        timeout: float = 15.0,
        max_retries: int = 0,
        base_delay: float = 2.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.name = name
        self.circuit = CircuitBreaker(name)
        self._client = httpx.AsyncClient(timeout=timeout, transport=transport)
        self._attempts = max(0, max_retries) + 1
        self._base_delay = base_delay

    def _backoff(self, attempt: int, response: Optional[httpx.Response]) -> float:
        delay = retry_after_seconds(response) if response is not None else None
        if delay is None:
            delay = self._base_delay * (2 ** attempt)
        return min(delay, MAX_BACKOFF_SECONDS)

    async def request(self, method: str, url: str, **kwargs) -> httpx.Response:
        if not self.circuit.can_attempt():
            raise CircuitOpenError(f"{self.name} circuit open")

        target = f"{method} {safe_url(url)}"
        error: Optional[httpx.HTTPError] = None
        response: Optional[httpx.Response] = None

        for attempt in range(self._attempts):
            if attempt:
                await asyncio.sleep(self._backoff(attempt - 1, response))
            try:
                response = await self._client.request(method, url, **kwargs)
            except httpx.TransportError as exc:
                error, response = exc, None
                logger.warning(
                    "[%s] %s on %s (attempt %d/%d)",
                    self.name, type(exc).__name__, target, attempt + 1, self._attempts,
                )
                continue

            if response.status_code not in RETRYABLE_STATUSES:
                if response.is_success:
                    self.circuit.record_success()
                else:
                    self.circuit.release()
                return response
            logger.warning(
                "[%s] HTTP %d on %s (attempt %d/%d)",
                self.name, response.status_code, target, attempt + 1, self._attempts,
            )

        self.circuit.record_failure()
        if response is not None:
            return response
        logger.error("[%s] Giving up on %s after %d attempt(s)", self.name, target, self._attempts)
        raise error

    async def post(self, url: str, **kwargs) -> httpx.Response:
        return await self.request("POST", url, **kwargs)

    async def aclose(self) -> None:
        await self._client.aclose()
