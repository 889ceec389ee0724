"""Rate-limited async HTTP client shared by the upstream adapters."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any

import httpx
from aiolimiter import AsyncLimiter

from macro_ingestor.core.config import HttpConfig, SourceConfig
from macro_ingestor.core.exceptions import ProviderError, RateLimitError
from macro_ingestor.core.models import ProviderHealth

logger = logging.getLogger(__name__)

_RETRYABLE_STATUS = frozenset({500, 502, 503, 504})
_USER_AGENT = "macro-ingestor/0.1"


class SourceClient:
    """Async JSON client for one upstream API.

    Each request acquires a token from an aiolimiter bucket sized by
    ``SourceConfig.rate_limit`` (requests per second), then goes through
    the retry policy described on :meth:`_request`.

    Use via ``async with SourceClient(...) as client:`` or call ``close()``.
    """

    def __init__(
        self,
        name: str,
        source: SourceConfig,
        http: HttpConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.name = name
        self._http = http
        self._limiter = AsyncLimiter(max_rate=source.rate_limit, time_period=1.0)
        self._client = httpx.AsyncClient(
            base_url=source.base_url,
            headers={"User-Agent": _USER_AGENT, "Accept": "application/json"},
            timeout=httpx.Timeout(http.timeout),
            verify=source.verify_ssl,
            follow_redirects=True,
            transport=transport,
        )

    @property
    def base_url(self) -> str:
        return str(self._client.base_url)

    async def __aenter__(self) -> SourceClient:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    async def close(self) -> None:
        """Close the underlying HTTP client. Called automatically by __aexit__."""
        await self._client.aclose()

    async def get_json(self, path: str, params: dict[str, Any] | None = None) -> Any:
        """GET ``path`` and decode the JSON body.

        Raises:
            ProviderError: Non-2xx after retries, transport failure, or a body
                that is not JSON.
            RateLimitError: 429 responses outlasted the retry budget.
        """
        response = await self._request("GET", path, params=_drop_none(params))
        try:
            return response.json()
        except ValueError as e:
            raise ProviderError(
                f"{self.name}: response from {response.url} is not JSON",
                context={"provider": self.name, "url": str(response.url)},
            ) from e

    async def probe(self, path: str, params: dict[str, Any] | None = None) -> ProviderHealth:
        """Single-shot health probe. Never raises."""
        started = time.perf_counter()
        try:
            await self._limiter.acquire()
            response = await self._client.get(path, params=_drop_none(params))
            elapsed = (time.perf_counter() - started) * 1000
            if response.is_success:
                return ProviderHealth(is_healthy=True, response_time_ms=elapsed)
            return ProviderHealth(
                is_healthy=False,
                response_time_ms=elapsed,
                error=f"HTTP {response.status_code}",
            )
        except httpx.HTTPError as e:
            elapsed = (time.perf_counter() - started) * 1000
            logger.warning("%s health probe failed: %s", self.name, e)
            return ProviderHealth(
                is_healthy=False,
                response_time_ms=elapsed,
                error=str(e) or type(e).__name__,
            )

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        """Execute an HTTP request with rate limiting and retry logic.

        Retry policy (``HttpConfig.retries`` extra attempts):
            - HTTP 429: wait Retry-After seconds if sent, else backoff.
            - HTTP 500/502/503/504: exponential backoff.
            - Connect/timeout errors: exponential backoff.
            - Other non-2xx: raise immediately.

        Backoff is ``backoff_base_seconds * backoff_factor**attempt``, capped
        at ``backoff_max_seconds``.
        """
        retries = self._http.retries

        for attempt in range(retries + 1):
            try:
                await self._limiter.acquire()
                response = await self._client.request(method, path, **kwargs)
            except (httpx.ConnectError, httpx.TimeoutException) as e:
                if attempt < retries:
                    delay = self._backoff(attempt)
                    logger.warning(
                        "%s: transport error on %s, retrying in %.2fs (attempt %d/%d): %s",
                        self.name, path, delay, attempt + 1, retries, e,
                    )
                    await asyncio.sleep(delay)
                    continue
                raise ProviderError(
                    f"{self.name}: request to {path} failed after {retries} retries: {e}",
                    context={"provider": self.name, "url": path, "error": str(e)},
                ) from e
            except httpx.HTTPError as e:
                raise ProviderError(
                    f"{self.name}: request to {path} failed: {e}",
                    context={"provider": self.name, "url": path, "error": str(e)},
                ) from e

            if response.is_success:
                return response

            status = response.status_code
            if status == 429:
                retry_after = _retry_after_seconds(response)
                if attempt < retries:
                    delay = retry_after if retry_after is not None else self._backoff(attempt)
                    logger.warning(
                        "%s: rate limited (429) on %s, waiting %.2fs (attempt %d/%d)",
                        self.name, path, delay, attempt + 1, retries,
                    )
                    await asyncio.sleep(delay)
                    continue
                raise RateLimitError(
                    f"{self.name}: rate limit exceeded after {retries} retries: {path}",
                    context={"provider": self.name, "url": path, "retry_after": retry_after},
                )

            if status in _RETRYABLE_STATUS:
                if attempt < retries:
                    delay = self._backoff(attempt)
                    logger.warning(
                        "%s: server error %d on %s, retrying in %.2fs (attempt %d/%d)",
                        self.name, status, path, delay, attempt + 1, retries,
                    )
                    await asyncio.sleep(delay)
                    continue
                raise ProviderError(
                    f"{self.name}: server error {status} after {retries} retries: {path}",
                    context={"provider": self.name, "url": path, "status_code": status},
                )

            raise ProviderError(
                f"{self.name}: HTTP {status} from {path}",
                context={"provider": self.name, "url": path, "status_code": status},
            )

        # range() always returns or raises above; kept for type checkers
        raise ProviderError(
            f"{self.name}: request failed after all retries: {path}",
            context={"provider": self.name, "url": path},
        )

    def _backoff(self, attempt: int) -> float:
        delay = self._http.backoff_base_seconds * (self._http.backoff_factor**attempt)
        return min(delay, self._http.backoff_max_seconds)


def _retry_after_seconds(response: httpx.Response) -> float | None:
    raw = response.headers.get("Retry-After")
    if raw is None:
        return None
    try:
        return max(float(raw), 0.0)
    except ValueError:
        return None


def _drop_none(params: dict[str, Any] | None) -> dict[str, Any] | None:
    if params is None:
        return None
    return {k: v for k, v in params.items() if v is not None}
