"""
ErrorHandler - Normalizes, redacts and logs failures.

Typed AppError instances are trusted as-is. Anything else (third-party
exceptions, errors built from upstream text) is classified with string
heuristics on its message and error code.
"""

import errno
import re
import traceback
from typing import Any

from fastapi.responses import JSONResponse
from loguru import logger

from gateway.services.errors import (
    AppError,
    ErrorCategory,
    ErrorCode,
    ErrorContext,
    RETRYABLE_ERROR_CODES,
    RETRYABLE_STATUS_CODES,
)
from gateway.settings import global_settings

HTTP_STATUS_PATTERN = re.compile(r"\bHTTP (\d{3})\b")

NETWORK_ERROR_CODES = ("ECONNRESET", "ECONNREFUSED", "ETIMEDOUT", "ENOTFOUND")

CATEGORY_STATUS = {
    ErrorCategory.VALIDATION: 400,
    ErrorCategory.NETWORK: 503,
    ErrorCategory.API: 502,
    ErrorCategory.CACHE: 500,
    ErrorCategory.INTERNAL: 500,
}

CATEGORY_CODE = {
    ErrorCategory.VALIDATION: ErrorCode.VALIDATION_ERROR,
    ErrorCategory.NETWORK: ErrorCode.NETWORK_ERROR,
    ErrorCategory.API: ErrorCode.API_ERROR,
    ErrorCategory.CACHE: ErrorCode.CACHE_ERROR,
    ErrorCategory.INTERNAL: ErrorCode.INTERNAL_ERROR,
}

REDACTED = "[REDACTED]"
PATH_PLACEHOLDER = "[PATH]"
TOKEN_PLACEHOLDER = "[TOKEN]"

# Keyword plus its value first, then any bare keyword left over
SENSITIVE_PATTERNS = [
    re.compile(r"(?i)\b(?:authorization\s*[:=]\s*)?bearer\s+[^\s,;]+"),
    re.compile(r"(?i)\bauthorization\s*[:=]\s*[^\s,;]+"),
    re.compile(
        r"(?i)\b(?:api[_-]?key|secret|password|passwd|access[_-]?token|token)"
        r"\s*[:=]\s*[^\s,;&]+"
    ),
    re.compile(r"(?i)(?:api[_-]?key|secret|password|token|authorization|bearer)"),
]

PATH_PATTERNS = [
    re.compile(r"\b[A-Za-z]:\\[\w\\.\- ]*[\w.\-]"),
    re.compile(r"(?<![\w:/.])/(?:[\w.\-]+/)+[\w.\-]*"),
    re.compile(r"(?i)(?<![\w:/.])/(?:home|users|root|tmp|var|etc)\b"),
]

TOKEN_PATTERN = re.compile(r"[A-Za-z0-9]{32,}")


class ErrorHandler:
    """
    Centralized error handling, categorization and formatting.

    Usage:
        try:
            ...
        except Exception as exc:
            app_error = error_handler.handle(exc, ErrorContext(endpoint="/api/x"))
            error_handler.log(app_error)
            return error_handler.to_response(app_error)
    """

    def __init__(self, include_details: bool | None = None):
        if include_details is None:
            include_details = not global_settings.is_production
        self.include_details = include_details

    def handle(self, error: Any, context: ErrorContext | None = None) -> AppError:
        """Normalize any failure into an AppError."""
        if isinstance(error, AppError):
            error.context = (error.context or ErrorContext()).merge(context)
            if error.traceback is None and error.__traceback__ is not None:
                error.traceback = _format_traceback(error)
            return error

        if isinstance(error, BaseException):
            return self._handle_exception(error, context)

        return AppError(
            "An unknown error occurred",
            code=ErrorCode.UNKNOWN_ERROR,
            status=500,
            context=context,
        )

    def _handle_exception(
        self, error: BaseException, context: ErrorContext | None
    ) -> AppError:
        category = self.categorize(error)
        status = self.status_for(error, category)
        message = str(error) or type(error).__name__
        lowered = message.lower()

        if "timeout" in lowered or "timed out" in lowered:
            code = ErrorCode.NETWORK_TIMEOUT
        elif "not found" in lowered:
            code = ErrorCode.API_NOT_FOUND
        elif "unauthorized" in lowered:
            code = ErrorCode.API_UNAUTHORIZED
        elif "forbidden" in lowered:
            code = ErrorCode.API_FORBIDDEN
        else:
            code = CATEGORY_CODE[category]

        app_error = AppError(
            message,
            code=code,
            status=status,
            details={"name": type(error).__name__},
            context=context,
        )
        app_error.traceback = _format_traceback(error)
        app_error.__cause__ = error
        return app_error

    def categorize(self, error: BaseException) -> ErrorCategory:
        """Classify an error into a coarse category."""
        if isinstance(error, AppError):
            return error.category

        message = str(error).lower()
        code = _error_code(error)

        if (
            isinstance(error, (TimeoutError, ConnectionError))
            or any(c in code for c in NETWORK_ERROR_CODES)
            or "network" in message
            or "timeout" in message
            or "timed out" in message
            or "connection" in message
        ):
            return ErrorCategory.NETWORK

        if (
            "required" in message
            or "invalid" in message
            or "validation" in message
            or "missing parameter" in message
        ):
            return ErrorCategory.VALIDATION

        if "http" in message or "api" in message or "endpoint" in message:
            return ErrorCategory.API

        if "cache" in message or "redis" in message or "storage" in message:
            return ErrorCategory.CACHE

        return ErrorCategory.INTERNAL

    def status_for(self, error: BaseException, category: ErrorCategory) -> int:
        """Pick the HTTP status for an error."""
        if isinstance(error, AppError):
            return error.status

        match = HTTP_STATUS_PATTERN.search(str(error))
        if match:
            status = int(match.group(1))
            if 400 <= status <= 599:
                return status

        return CATEGORY_STATUS[category]

    def is_retryable(self, error: BaseException) -> bool:
        """Whether a failed attempt is worth repeating."""
        if isinstance(error, AppError):
            return bool(error.retryable)

        message = str(error)
        match = HTTP_STATUS_PATTERN.search(message)
        if match and int(match.group(1)) in RETRYABLE_STATUS_CODES:
            return True
        if _error_code(error) in RETRYABLE_ERROR_CODES:
            return True
        return isinstance(error, TimeoutError) or "timeout" in message.lower()

    def sanitize(self, message: str) -> str:
        """Remove credentials, filesystem paths and token-like strings."""
        sanitized = message
        for pattern in PATH_PATTERNS:
            sanitized = pattern.sub(PATH_PLACEHOLDER, sanitized)
        for pattern in SENSITIVE_PATTERNS:
            sanitized = pattern.sub(REDACTED, sanitized)
        return TOKEN_PATTERN.sub(TOKEN_PLACEHOLDER, sanitized)

    def log(self, error: AppError) -> None:
        """Emit one structured record for an error."""
        level = "ERROR" if error.status >= 500 else "WARNING"
        record = {
            "timestamp": error.timestamp,
            "level": level.lower(),
            "code": error.code,
            "status": error.status,
            "message": error.message,
            "context": error.context.to_dict() if error.context else {},
            "stack": error.traceback,
        }
        logger.bind(error=record).log(
            level, f"[ErrorHandler] {error.code} ({error.status}): {error.message}"
        )

    def build_envelope(self, error: AppError) -> dict[str, Any]:
        """Build the client-visible error body."""
        body: dict[str, Any] = {
            "code": error.code,
            "message": self.sanitize(error.message),
        }
        if self.include_details and error.details is not None:
            body["details"] = self._sanitize_value(error.details)

        envelope: dict[str, Any] = {
            "error": body,
            "status": _response_status(error),
            "timestamp": error.timestamp,
        }
        if error.context and error.context.endpoint:
            envelope["path"] = self.sanitize(error.context.endpoint)
        return envelope

    def to_response(self, error: AppError) -> JSONResponse:
        """Convert an AppError into a JSON response."""
        return JSONResponse(
            self.build_envelope(error), status_code=_response_status(error)
        )

    def _sanitize_value(self, value: Any) -> Any:
        if isinstance(value, str):
            return self.sanitize(value)
        if isinstance(value, dict):
            return {k: self._sanitize_value(v) for k, v in value.items()}
        if isinstance(value, (list, tuple)):
            return [self._sanitize_value(v) for v in value]
        return value


def _error_code(error: BaseException) -> str:
    """Best-effort symbolic error code (ECONNRESET etc.)."""
    code = getattr(error, "error_code", None) or getattr(error, "code", None)
    if isinstance(code, str):
        return code.upper()
    err_no = getattr(error, "errno", None)
    if isinstance(err_no, int):
        return errno.errorcode.get(err_no, "")
    return ""


def _format_traceback(error: BaseException) -> str:
    return "".join(
        traceback.format_exception(type(error), error, error.__traceback__)
    )


def _response_status(error: AppError) -> int:
    return error.status if 400 <= error.status <= 599 else 500


# Global handler instance
error_handler = ErrorHandler()
