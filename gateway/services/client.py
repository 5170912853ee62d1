"""
ApiClient - Async HTTP client for interchangeable explorer API origins.

Combines:
- Per-origin retries with a fixed backoff table
- OriginFailover for sticky switching between origins
- Per-attempt deadlines and caller cancellation
- CacheManager access through with_cache()
"""

import asyncio
import dataclasses
import errno
import socket
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, TypeVar

import httpx
from loguru import logger

from gateway.services.cache import (
    CacheManager,
    CachePolicy,
    Duration,
    get_cache_manager,
)
from gateway.services.circuit_breaker import FailoverConfig, OriginFailover
from gateway.services.error_handler import error_handler
from gateway.services.errors import (
    AllOriginsFailedError,
    AppError,
    ErrorContext,
    InvalidResponseError,
    NetworkError,
    RequestCancelledError,
    RequestTimeoutError,
    UpstreamHTTPError,
)
from gateway.settings import Settings, global_settings

T = TypeVar("T")

# Seconds to wait before retry N on the same origin
RETRY_DELAYS = (0.5, 1.0, 2.0)

DEFAULT_HEADERS = {
    "Accept": "application/json",
    "Content-Type": "application/json",
}


@dataclass
class ClientConfig:
    """Configuration for an ApiClient."""

    base_urls: list[str]
    timeout: float = 15.0  # Seconds per attempt
    retries: int = 2  # Retries per origin after the first attempt
    load_balancing: bool = True
    retry_delays: tuple[float, ...] = RETRY_DELAYS

    def __post_init__(self) -> None:
        if not self.base_urls:
            raise ValueError("ClientConfig.base_urls must not be empty")
        if self.timeout <= 0:
            raise ValueError("ClientConfig.timeout must be positive")
        if self.retries < 0:
            raise ValueError("ClientConfig.retries must be >= 0")
        if not self.retry_delays:
            raise ValueError("ClientConfig.retry_delays must not be empty")

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "ClientConfig":
        settings = settings or global_settings
        return cls(
            base_urls=settings.base_urls,
            timeout=settings.api_timeout,
            retries=settings.api_retries,
            load_balancing=settings.api_load_balancing,
        )


@dataclass
class CallOptions:
    """Per-call request options."""

    params: dict[str, Any] | None = None
    headers: dict[str, str] | None = None
    timeout: float | None = None
    retries: int | None = None
    cancel_event: asyncio.Event | None = None


class ApiClient:
    """
    HTTP client with retries, backoff and sticky origin failover.

    Usage:
        client = ApiClient(ClientConfig(base_urls=["https://a", "https://b"]))

        validators = await client.get(
            "/api/validators", CallOptions(params={"chain": "lumera"})
        )

        # Cached, failover-protected read
        block = await client.with_cache(
            "block:lumera:100",
            lambda: client.get("/api/blocks/100", CallOptions(params={"chain": "lumera"})),
            ttl=60,
        )
    """

    def __init__(
        self,
        config: ClientConfig | None = None,
        failover: OriginFailover | None = None,
        cache: CacheManager | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._config = config or ClientConfig.from_settings()
        self._failover = failover or OriginFailover(
            self._config.base_urls,
            FailoverConfig(enabled=self._config.load_balancing),
        )
        self._cache = cache
        self._transport = transport

        # HTTP client (lazy initialization)
        self._http_client: httpx.AsyncClient | None = None

    @property
    def failover(self) -> OriginFailover:
        return self._failover

    @property
    def cache(self) -> CacheManager:
        if self._cache is None:
            self._cache = get_cache_manager()
        return self._cache

    async def _get_http_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                timeout=httpx.Timeout(self._config.timeout),
                follow_redirects=True,
                transport=self._transport,
            )
        return self._http_client

    async def get(self, path: str, options: CallOptions | None = None) -> Any:
        """Make a GET request and return the decoded JSON body."""
        return await self._request("GET", path, None, options)

    async def post(
        self, path: str, body: Any = None, options: CallOptions | None = None
    ) -> Any:
        """Make a POST request with a JSON body and return the decoded JSON body."""
        return await self._request("POST", path, body, options)

    async def with_cache(
        self,
        key: str,
        fetcher: Callable[[], Awaitable[T]],
        ttl: Duration | None = None,
        policy: CachePolicy | None = None,
    ) -> T:
        """Serve fetcher's result through the cache."""
        return await self.cache.wrap(key, fetcher, ttl, policy)

    async def _request(
        self,
        method: str,
        path: str,
        body: Any,
        options: CallOptions | None,
    ) -> Any:
        """
        Run one logical call.

        Origins are visited starting from the failover pointer. Each origin
        gets retries + 1 attempts unless the pointer moves off it first.

        Raises:
            AppError: non-retryable failures, as soon as they happen
            AllOriginsFailedError: every origin exhausted its retries
        """
        options = options or CallOptions()
        retries = options.retries if options.retries is not None else self._config.retries
        timeout = options.timeout if options.timeout is not None else self._config.timeout

        origins = self._failover.rotation()
        last_error: AppError | None = None

        for origin in origins:
            pointer = self._failover.current
            for attempt in range(retries + 1):
                context = ErrorContext(
                    endpoint=path,
                    method=method,
                    params=options.params,
                    attempt=attempt + 1,
                    url=origin,
                )

                try:
                    data = await self._execute_attempt(
                        method, origin, path, body, options, timeout, context
                    )
                except Exception as exc:
                    retryable = error_handler.is_retryable(exc)
                    error = error_handler.handle(exc, context)
                    logger.warning(
                        f"[ApiClient] Request failed (attempt {attempt + 1}/{retries + 1} "
                        f"on {origin}): {error.message}"
                    )

                    if not retryable:
                        raise error

                    last_error = error
                    switched = self._failover.record_failure(origin)
                    # Stop once the pointer moves, whichever caller moved it
                    if switched or self._failover.current != pointer:
                        break
                    if attempt < retries:
                        await self._sleep(self._backoff_delay(attempt))
                    continue

                self._failover.record_success()
                return data

        raise AllOriginsFailedError(
            origins,
            last_error,
            context=ErrorContext(endpoint=path, method=method, params=options.params),
        ) from last_error

    async def _execute_attempt(
        self,
        method: str,
        base_url: str,
        path: str,
        body: Any,
        options: CallOptions,
        timeout: float,
        context: ErrorContext,
    ) -> Any:
        """Execute one HTTP request against one origin."""
        if options.cancel_event is not None and options.cancel_event.is_set():
            raise RequestCancelledError("Request cancelled by caller", context=context)

        client = await self._get_http_client()
        url = self.build_url(base_url, path)
        headers = {**DEFAULT_HEADERS, **(options.headers or {})}

        try:
            response = await self._send(
                client.request(
                    method,
                    url,
                    params=options.params,
                    headers=headers,
                    json=body if method == "POST" and body is not None else None,
                    timeout=timeout,
                ),
                url,
                timeout,
                options.cancel_event,
                context,
            )
        except httpx.TimeoutException as e:
            raise RequestTimeoutError(url, timeout, context=context) from e
        except httpx.TransportError as e:
            raise NetworkError(
                f"Request to {url} failed: {e}",
                error_code=_network_error_code(e),
                context=context,
            ) from e

        if not response.is_success:
            raise UpstreamHTTPError(
                response.status_code,
                response.reason_phrase,
                body=response.text[:200],
                context=context,
            )

        try:
            return response.json()
        except ValueError as e:
            raise InvalidResponseError(
                f"Invalid JSON response from {url}", context=context
            ) from e

    async def _send(
        self,
        request: Awaitable[httpx.Response],
        url: str,
        timeout: float,
        cancel_event: asyncio.Event | None,
        context: ErrorContext,
    ) -> httpx.Response:
        """Await request under a deadline, abandoning it if the caller cancels."""
        request_task = asyncio.ensure_future(request)
        waiters: set[asyncio.Future[Any]] = {request_task}
        cancel_task = None
        if cancel_event is not None:
            cancel_task = asyncio.ensure_future(cancel_event.wait())
            waiters.add(cancel_task)

        try:
            done, _ = await asyncio.wait(
                waiters, timeout=timeout, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            for waiter in waiters:
                if not waiter.done():
                    waiter.cancel()

        if request_task in done:
            return request_task.result()
        if cancel_task is not None and cancel_task in done:
            raise RequestCancelledError("Request cancelled by caller", context=context)
        raise RequestTimeoutError(url, timeout, context=context)

    def _backoff_delay(self, attempt: int) -> float:
        delays = self._config.retry_delays
        return delays[min(attempt, len(delays) - 1)]

    async def _sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)

    @staticmethod
    def build_url(base_url: str, path: str) -> str:
        """Join an origin and an endpoint path."""
        return f"{base_url.rstrip('/')}/{path.lstrip('/')}"

    def get_config(self) -> ClientConfig:
        """Get a copy of the current configuration."""
        return dataclasses.replace(self._config, base_urls=list(self._config.base_urls))

    def update_config(self, **changes: Any) -> None:
        """Update configuration fields; origin changes reset the failover."""
        self._config = dataclasses.replace(self._config, **changes)
        self._failover.config.enabled = self._config.load_balancing
        if "base_urls" in changes:
            self._failover.reset(self._config.base_urls)
        logger.info(f"[ApiClient] Configuration updated: {sorted(changes)}")

    def get_health_status(self) -> dict[str, Any]:
        """Get origin and cache status."""
        return {
            "config": {
                "base_urls": list(self._config.base_urls),
                "timeout": self._config.timeout,
                "retries": self._config.retries,
                "load_balancing": self._config.load_balancing,
            },
            "failover": self._failover.get_status(),
            "cache": self.cache.stats().to_dict(),
        }

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None
        logger.debug("ApiClient closed")

    async def __aenter__(self) -> "ApiClient":
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit."""
        await self.close()


def _network_error_code(error: httpx.TransportError) -> str | None:
    """Map a transport failure to a symbolic errno name."""
    seen: set[int] = set()
    cause: BaseException | None = error
    while cause is not None and id(cause) not in seen:
        seen.add(id(cause))
        if isinstance(cause, socket.gaierror):
            return "ENOTFOUND"
        if isinstance(cause, OSError) and cause.errno in errno.errorcode:
            return errno.errorcode[cause.errno]
        cause = cause.__cause__ or cause.__context__

    if isinstance(error, httpx.ConnectError):
        return "ECONNREFUSED"
    if isinstance(error, (httpx.ReadError, httpx.WriteError, httpx.RemoteProtocolError)):
        return "ECONNRESET"
    return None


# Global client instance
_global_client: ApiClient | None = None


def get_api_client() -> ApiClient:
    """Get the global API client instance."""
    global _global_client
    if _global_client is None:
        _global_client = ApiClient(cache=get_cache_manager())
    return _global_client


def create_api_client(**overrides: Any) -> ApiClient:
    """Create a custom client from settings plus ClientConfig overrides."""
    config = dataclasses.replace(ClientConfig.from_settings(), **overrides)
    return ApiClient(config)


async def close_api_client() -> None:
    """Close the global API client."""
    global _global_client
    if _global_client:
        await _global_client.close()
        _global_client = None
