# aibodes_sync/adapters/clients/http_resilience.py
from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Any

import httpx

RETRYABLE_STATUS = (429, 500, 502, 503, 504)


@dataclass
class _CircuitState:
    fails: int = 0
    opened_at: float | None = None


class ResilientHttp:
    """
    Retry + circuit breaker + per-instance rate limit around httpx.

    One instance per provider, so one misbehaving provider cannot open the
    circuit for the others. Pass `client` to reuse a connection pool (or a
    MockTransport in tests); otherwise a short-lived AsyncClient is opened per call.
    """

    def __init__(
        self,
        *,
        timeout_s: float = 8.0,
        max_retries: int = 1,
        backoff_base_s: float = 0.5,
        circuit_fail_threshold: int = 5,
        circuit_reset_s: float = 60.0,
        rate_limit_rps: float = 0.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.timeout_s = timeout_s
        self.max_retries = max_retries
        self.backoff_base_s = backoff_base_s
        self.circuit_fail_threshold = circuit_fail_threshold
        self.circuit_reset_s = circuit_reset_s
        self.rate_limit_rps = rate_limit_rps
        self._client = client

        self._circuit = _CircuitState()
        self._rate_lock = asyncio.Lock()
        self._last_ts = 0.0

    @classmethod
    def from_settings(cls, settings: Any, client: httpx.AsyncClient | None = None) -> "ResilientHttp":
        return cls(
            timeout_s=float(settings.HTTP_TIMEOUT_S),
            max_retries=int(settings.HTTP_MAX_RETRIES),
            backoff_base_s=float(settings.HTTP_BACKOFF_BASE_S),
            circuit_fail_threshold=int(settings.HTTP_CIRCUIT_FAIL_THRESHOLD),
            circuit_reset_s=float(settings.HTTP_CIRCUIT_RESET_S),
            rate_limit_rps=float(settings.HTTP_RATE_LIMIT_RPS),
            client=client,
        )

    def circuit_is_open(self, now: float | None = None) -> bool:
        if self._circuit.opened_at is None:
            return False
        now = time.monotonic() if now is None else now
        return (now - self._circuit.opened_at) < self.circuit_reset_s

    def _on_success(self) -> None:
        self._circuit.fails = 0
        self._circuit.opened_at = None

    def _on_failure(self) -> None:
        self._circuit.fails += 1
        if self._circuit.fails >= self.circuit_fail_threshold:
            self._circuit.opened_at = time.monotonic()

    async def _rate_limit(self) -> None:
        """Very simple per-instance limiter."""
        if self.rate_limit_rps <= 0:
            return
        min_gap = 1.0 / self.rate_limit_rps
        async with self._rate_lock:
            wait = (self._last_ts + min_gap) - time.monotonic()
            if wait > 0:
                await asyncio.sleep(wait)
            self._last_ts = time.monotonic()

    async def _send(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        if self._client is not None:
            return await self._client.request(method, url, timeout=self.timeout_s, **kwargs)
        async with httpx.AsyncClient(timeout=httpx.Timeout(self.timeout_s)) as client:
            return await client.request(method, url, **kwargs)

    async def request(
        self,
        method: str,
        url: str,
        *,
        headers: dict[str, str] | None = None,
        params: dict[str, Any] | None = None,
    ) -> httpx.Response:
        if self.circuit_is_open():
            raise httpx.HTTPError(f"circuit_open: refusing external call to {url}")

        await self._rate_limit()

        last_exc: Exception | None = None
        for attempt in range(self.max_retries + 1):
            try:
                resp = await self._send(method, url, headers=headers, params=params)

                if resp.status_code in RETRYABLE_STATUS:
                    raise httpx.HTTPStatusError("retryable_status", request=resp.request, response=resp)

                resp.raise_for_status()
                self._on_success()
                return resp
            except (httpx.TimeoutException, httpx.NetworkError, httpx.HTTPStatusError) as e:
                last_exc = e
                self._on_failure()
                if isinstance(e, httpx.HTTPStatusError) and e.response.status_code not in RETRYABLE_STATUS:
                    break
                if attempt >= self.max_retries:
                    break
                await asyncio.sleep(min(5.0, self.backoff_base_s * (2**attempt)))

        assert last_exc is not None
        raise last_exc
