"""
Service layer exceptions.

Every failure raised inside the gateway is an AppError subclass carrying a
stable code, an HTTP-style status and the category used for logging.
"""

from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Coarse error classes used for status mapping and logging."""

    NETWORK = "NETWORK"
    VALIDATION = "VALIDATION"
    API = "API"
    CACHE = "CACHE"
    INTERNAL = "INTERNAL"


class ErrorCode(str, Enum):
    """Wire-level error codes."""

    VALIDATION_ERROR = "VALIDATION_ERROR"
    NETWORK_TIMEOUT = "NETWORK_TIMEOUT"
    NETWORK_ERROR = "NETWORK_ERROR"
    API_NOT_FOUND = "API_NOT_FOUND"
    API_UNAUTHORIZED = "API_UNAUTHORIZED"
    API_FORBIDDEN = "API_FORBIDDEN"
    CLIENT_ERROR = "CLIENT_ERROR"
    SERVER_ERROR = "SERVER_ERROR"
    API_ERROR = "API_ERROR"
    CACHE_ERROR = "CACHE_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"
    REQUEST_CANCELLED = "REQUEST_CANCELLED"
    ALL_ORIGINS_FAILED = "ALL_ORIGINS_FAILED"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


RETRYABLE_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})

RETRYABLE_ERROR_CODES = frozenset(
    {"ECONNRESET", "ECONNREFUSED", "ETIMEDOUT", "ENOTFOUND", "ENETUNREACH"}
)


@dataclass
class ErrorContext:
    """Where an error happened."""

    endpoint: str | None = None
    method: str | None = None
    params: dict[str, Any] | None = None
    chain: str | None = None
    attempt: int | None = None
    url: str | None = None

    def merge(self, other: "ErrorContext | None") -> "ErrorContext":
        """Return a copy with every non-empty field of ``other`` applied."""
        if other is None:
            return ErrorContext(**asdict(self))
        merged = asdict(self)
        merged.update({k: v for k, v in asdict(other).items() if v is not None})
        return ErrorContext(**merged)

    def to_dict(self) -> dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None}


def _utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class AppError(Exception):
    """Base exception for gateway errors."""

    default_code = ErrorCode.INTERNAL_ERROR
    default_status = 500
    category = ErrorCategory.INTERNAL
    retryable = False

    def __init__(
        self,
        message: str,
        code: ErrorCode | str | None = None,
        status: int | None = None,
        details: Any = None,
        context: ErrorContext | None = None,
    ):
        status = status if status is not None else self.default_status
        if not 100 <= status <= 599:
            raise ValueError(f"Invalid error status: {status}")

        self.message = message
        if code is None:
            code = self.default_code
        self.code = code.value if isinstance(code, ErrorCode) else str(code)
        self.status = status
        self.details = details
        self.context = context
        self.timestamp = _utc_timestamp()
        # Server-side only, never serialized into a response
        self.traceback: str | None = None
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "status": self.status,
            "details": self.details,
            "context": self.context.to_dict() if self.context else None,
            "timestamp": self.timestamp,
        }


class ValidationError(AppError):
    """Bad or missing input. Never retried."""

    default_code = ErrorCode.VALIDATION_ERROR
    default_status = 400
    category = ErrorCategory.VALIDATION


class NetworkError(AppError):
    """Connection-level failure talking to an origin."""

    default_code = ErrorCode.NETWORK_ERROR
    default_status = 503
    category = ErrorCategory.NETWORK

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        context: ErrorContext | None = None,
    ):
        self.error_code = error_code
        super().__init__(message, context=context)

    @property
    def retryable(self) -> bool:  # type: ignore[override]
        return self.error_code in RETRYABLE_ERROR_CODES


class RequestTimeoutError(NetworkError):
    """An attempt exceeded its deadline."""

    default_code = ErrorCode.NETWORK_TIMEOUT
    default_status = 408

    def __init__(self, url: str, timeout: float, context: ErrorContext | None = None):
        self.timeout = timeout
        super().__init__(
            f"Request to {url} timed out after {timeout}s",
            error_code="ETIMEDOUT",
            context=context,
        )

    @property
    def retryable(self) -> bool:  # type: ignore[override]
        return True


class UpstreamHTTPError(AppError):
    """An origin answered with a non-success status."""

    category = ErrorCategory.API

    _CODES = {
        401: ErrorCode.API_UNAUTHORIZED,
        403: ErrorCode.API_FORBIDDEN,
        404: ErrorCode.API_NOT_FOUND,
    }

    def __init__(
        self,
        status: int,
        reason: str = "",
        body: str | None = None,
        context: ErrorContext | None = None,
    ):
        if status in self._CODES:
            code = self._CODES[status]
        elif 400 <= status < 500:
            code = ErrorCode.CLIENT_ERROR
        else:
            code = ErrorCode.SERVER_ERROR
        self.upstream_status = status
        self.body = body
        super().__init__(
            f"HTTP {status}: {reason}" if reason else f"HTTP {status}",
            code=code,
            status=status if status >= 400 else 502,
            context=context,
        )

    @property
    def retryable(self) -> bool:  # type: ignore[override]
        return self.upstream_status in RETRYABLE_STATUS_CODES


class InvalidResponseError(AppError):
    """An origin answered 2xx with a body that is not JSON."""

    default_code = ErrorCode.API_ERROR
    default_status = 502
    category = ErrorCategory.API


class CacheError(AppError):
    """Cache operation failed."""

    default_code = ErrorCode.CACHE_ERROR
    default_status = 500
    category = ErrorCategory.CACHE


class RequestCancelledError(AppError):
    """The caller cancelled the request."""

    default_code = ErrorCode.REQUEST_CANCELLED
    default_status = 499
    category = ErrorCategory.NETWORK


class AllOriginsFailedError(AppError):
    """Every configured origin exhausted its retry budget."""

    default_code = ErrorCode.ALL_ORIGINS_FAILED
    default_status = 502
    category = ErrorCategory.API

    def __init__(
        self,
        origins: list[str],
        last_error: AppError | None = None,
        context: ErrorContext | None = None,
    ):
        self.origins = origins
        self.last_error = last_error
        message = f"All API endpoints failed ({len(origins)} origins tried)"
        if last_error is not None:
            message += f": {last_error.message}"
        super().__init__(
            message,
            status=self._status_for(last_error),
            details={"last_error": last_error.code} if last_error else None,
            context=context,
        )

    @staticmethod
    def _status_for(last_error: AppError | None) -> int:
        """Always a gateway-side 5xx, never the client-facing 408 or 429."""
        if isinstance(last_error, RequestTimeoutError):
            return 504
        if last_error is not None and 500 <= last_error.status <= 599:
            return last_error.status
        return 502
