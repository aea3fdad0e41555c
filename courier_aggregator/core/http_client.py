"""
Resilient request executor for courier APIs

Every outbound courier call goes through CourierRequestExecutor.request():
- Holds the provider's rate limiter slot for the whole retry sequence
- Attaches credentials from the owning adapter (authenticating first if needed)
- 401: drop credentials, re-authenticate on the next attempt
- 429: back off 2^attempt * retry_delay
- 5xx / timeout / network error: back off retry_delay * attempt
- Other 4xx: fail immediately, no retry
- 2xx with an embedded "error"/"errors" field: fail, no retry
- Undecodable body or redirect loop: fail, no retry

Statuses below 500 never raise inside httpx; the executor inspects them itself.
"""
import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx

from courier_aggregator.core.exceptions import (
    AuthenticationError,
    ProviderResponseError,
    RateLimitError,
    UpstreamClientError,
    UpstreamTransientError,
)
from courier_aggregator.core.rate_limiter import ProviderRateLimiter

logger = logging.getLogger(__name__)

USER_AGENT = "CourierService/1.0"


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""
    retry_attempts: int = 3
    retry_delay: float = 1.0      # Base delay in seconds


class CourierRequestExecutor:
    """
    Executes requests against one provider's API.

    The authenticator is the owning adapter. It must provide:
        ensure_authenticated()   coroutine, obtains credentials if missing
        auth_headers()           headers carrying the current credential
        invalidate_credentials() coroutine, forgets the current credential

    Usage:
        executor = CourierRequestExecutor("redx", base_url, limiter, adapter)
        data = await executor.request("GET", "/areas", params={"post_code": 1207})
    """

    def __init__(
        self,
        provider: str,
        base_url: str,
        rate_limiter: ProviderRateLimiter,
        authenticator,
        retry_config: Optional[RetryConfig] = None,
        timeout: float = 30.0,
        http_client: Optional[httpx.AsyncClient] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.provider = provider
        self.base_url = base_url.rstrip("/")
        self.rate_limiter = rate_limiter
        self.authenticator = authenticator
        self.retry_config = retry_config or RetryConfig()
        self.timeout = timeout
        self._sleep = sleep

        self._client: Optional[httpx.AsyncClient] = http_client
        self._owns_client = http_client is None

    @property
    def client(self) -> httpx.AsyncClient:
        """Underlying httpx client, created on first use."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout, follow_redirects=True)
            self._owns_client = True
        return self._client

    async def close(self):
        """Close the client if this executor created it."""
        if self._client and self._owns_client:
            await self._client.aclose()
        self._client = None

    def url_for(self, endpoint: str) -> str:
        return f"{self.base_url}{endpoint}"

    async def request(
        self,
        method: str,
        endpoint: str,
        params: Optional[Dict[str, Any]] = None,
        json_body: Optional[Any] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Any:
        """
        Make a provider API request with full resilience.

        Args:
            method: HTTP method (GET, POST, PATCH, ...)
            endpoint: Path relative to the provider base URL
            params: Query parameters
            json_body: JSON request body
            headers: Extra headers, applied after auth headers

        Returns:
            Decoded JSON body ({} for an empty body)

        Raises:
            UpstreamClientError: Terminal 4xx
            ProviderResponseError: Error embedded in a 2xx body, or an undecodable response
            AuthenticationError: Credential exchange failed, or 401 outlived the budget
            RateLimitError: 429 outlived the budget
            UpstreamTransientError: 5xx / timeout / network error outlived the budget
        """
        async with self.rate_limiter.slot():
            return await self._do_request_with_retry(method, endpoint, params, json_body, headers)

    async def _do_request_with_retry(
        self,
        method: str,
        endpoint: str,
        params: Optional[Dict[str, Any]],
        json_body: Optional[Any],
        headers: Optional[Dict[str, str]],
    ) -> Any:
        """Execute request with retry logic. Called while holding the limiter slot."""
        cfg = self.retry_config
        url = self.url_for(endpoint)
        last_exception: Optional[Exception] = None
        last_status: Optional[int] = None

        for attempt in range(1, cfg.retry_attempts + 1):
            is_last = attempt == cfg.retry_attempts

            await self.rate_limiter.wait_for_turn()
            await self.authenticator.ensure_authenticated()

            request_headers = {
                "Content-Type": "application/json",
                "User-Agent": USER_AGENT,
                **self.authenticator.auth_headers(),
                **(headers or {}),
            }

            logger.debug(f"[HTTP] {self.provider}: {method} {url} (attempt {attempt}/{cfg.retry_attempts})")
            try:
                response = await self.client.request(
                    method,
                    url,
                    params=params,
                    json=json_body,
                    headers=request_headers,
                    timeout=self.timeout,
                )
            except httpx.TransportError as e:
                last_exception = e
                last_status = None
                kind = "Timeout" if isinstance(e, httpx.TimeoutException) else "Network error"
                if not is_last:
                    delay = cfg.retry_delay * attempt
                    logger.warning(
                        f"[HTTP] {self.provider}: {kind} on {endpoint} ({e!r}), retrying in {delay:.1f}s"
                    )
                    await self._sleep(delay)
                continue
            except httpx.RequestError as e:
                # DecodingError, TooManyRedirects: not retried
                logger.error(f"[HTTP] {self.provider}: Unusable response from {endpoint}: {e!r}")
                raise ProviderResponseError(
                    f"Unusable response from {endpoint}: {e}",
                    provider=self.provider,
                    endpoint=endpoint,
                ) from e
            finally:
                self.rate_limiter.record_request()

            status = response.status_code
            last_status = status

            if status == 401:
                logger.info(f"[AUTH] {self.provider}: 401 on {endpoint}, re-authenticating")
                await self.authenticator.invalidate_credentials()
                continue

            if status == 429:
                if not is_last:
                    delay = (2 ** attempt) * cfg.retry_delay
                    logger.warning(f"[RATE_LIMIT] {self.provider}: 429 on {endpoint}, backing off {delay:.1f}s")
                    await self._sleep(delay)
                continue

            if status >= 500:
                last_exception = None
                if not is_last:
                    delay = cfg.retry_delay * attempt
                    logger.warning(
                        f"[HTTP] {self.provider}: Status {status} on {endpoint}, "
                        f"retrying in {delay:.1f}s (attempt {attempt})"
                    )
                    await self._sleep(delay)
                continue

            if status >= 400:
                message = _error_message(response)
                logger.error(f"[HTTP] {self.provider}: Client error {status} on {endpoint}: {message}")
                raise UpstreamClientError(
                    f"Client error {status}: {message}",
                    status_code=status,
                    provider=self.provider,
                    endpoint=endpoint,
                )

            data = self._decode(response, endpoint)

            embedded = _embedded_error(data)
            if embedded:
                logger.error(f"[HTTP] {self.provider}: {endpoint} returned error in body: {embedded}")
                raise ProviderResponseError(
                    embedded,
                    status_code=status,
                    provider=self.provider,
                    endpoint=endpoint,
                )

            return data

        logger.error(f"[HTTP] {self.provider}: All {cfg.retry_attempts} attempts failed for {endpoint}")

        if last_status == 401:
            raise AuthenticationError(
                f"{self.provider} rejected credentials after re-authentication",
                provider=self.provider,
                endpoint=endpoint,
            )
        if last_status == 429:
            raise RateLimitError(
                f"{self.provider} rate limited {endpoint} after {cfg.retry_attempts} attempts",
                provider=self.provider,
                endpoint=endpoint,
                attempts=cfg.retry_attempts,
            )

        cause = repr(last_exception) if last_exception else f"status {last_status}"
        raise UpstreamTransientError(
            f"All {cfg.retry_attempts} attempts to {endpoint} failed: {cause}",
            provider=self.provider,
            endpoint=endpoint,
            attempts=cfg.retry_attempts,
        ) from last_exception

    def _decode(self, response: httpx.Response, endpoint: str) -> Any:
        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            raise ProviderResponseError(
                f"Invalid JSON from {endpoint}",
                status_code=response.status_code,
                provider=self.provider,
                endpoint=endpoint,
            ) from e


def _error_message(response: httpx.Response) -> str:
    """Best human-readable message from a 4xx response."""
    try:
        body = response.json()
    except ValueError:
        body = None

    if isinstance(body, dict):
        for field in ("message", "error"):
            value = body.get(field)
            if value:
                return value if isinstance(value, str) else json.dumps(value)

    return response.reason_phrase or "Unknown error"


def _embedded_error(data: Any) -> Optional[str]:
    """Error text carried inside a successful envelope, if any."""
    if not isinstance(data, dict):
        return None
    error = data.get("errors") or data.get("error")
    if not error:
        return None
    return error if isinstance(error, str) else json.dumps(error, default=str)
