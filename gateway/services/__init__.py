"""
Service layer infrastructure - resilience patterns for upstream API calls.

Provides:
- ApiClient: Retries, backoff and sticky failover across origins
- OriginFailover: Shared current-origin pointer
- CacheManager: TTL cache with stale-while-revalidate
- RequestDeduplicator: Single-flight execution per key
- ErrorHandler: Error normalization, redaction and logging
"""

from gateway.services.errors import (
    AllOriginsFailedError,
    AppError,
    CacheError,
    ErrorCategory,
    ErrorCode,
    ErrorContext,
    InvalidResponseError,
    NetworkError,
    RequestCancelledError,
    RequestTimeoutError,
    UpstreamHTTPError,
    ValidationError,
)
from gateway.services.error_handler import ErrorHandler, error_handler
from gateway.services.cache import (
    CacheEntry,
    CacheManager,
    CachePolicy,
    CacheResult,
    CacheStats,
    get_cache_manager,
)
from gateway.services.strategies import (
    LONG_CACHE,
    MEDIUM_CACHE,
    SHORT_CACHE,
    STATIC_CACHE,
    policy_for_route,
)
from gateway.services.circuit_breaker import FailoverConfig, OriginFailover
from gateway.services.deduplicator import RequestDeduplicator
from gateway.services.client import (
    ApiClient,
    CallOptions,
    ClientConfig,
    close_api_client,
    create_api_client,
    get_api_client,
)

__all__ = [
    # Errors
    "AppError",
    "AllOriginsFailedError",
    "CacheError",
    "ErrorCategory",
    "ErrorCode",
    "ErrorContext",
    "InvalidResponseError",
    "NetworkError",
    "RequestCancelledError",
    "RequestTimeoutError",
    "UpstreamHTTPError",
    "ValidationError",
    "ErrorHandler",
    "error_handler",
    # Cache
    "CacheEntry",
    "CacheManager",
    "CachePolicy",
    "CacheResult",
    "CacheStats",
    "get_cache_manager",
    "SHORT_CACHE",
    "MEDIUM_CACHE",
    "LONG_CACHE",
    "STATIC_CACHE",
    "policy_for_route",
    # Failover
    "FailoverConfig",
    "OriginFailover",
    # Deduplicator
    "RequestDeduplicator",
    # Client
    "ApiClient",
    "CallOptions",
    "ClientConfig",
    "get_api_client",
    "create_api_client",
    "close_api_client",
]
