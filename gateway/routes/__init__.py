"""
Route dispatch: declarative endpoints with validation, cache headers and
uniform error responses.
"""

from gateway.routes.factory import create_get_route, create_post_route, create_route
from gateway.routes.middleware import cache_headers, log_request
from gateway.routes.types import RouteSpec, ValidationResult
from gateway.routes.validators import (
    validate_address,
    validate_chain,
    validate_numeric,
    validate_params,
    validate_required,
)

__all__ = [
    "RouteSpec",
    "ValidationResult",
    "create_route",
    "create_get_route",
    "create_post_route",
    "cache_headers",
    "log_request",
    "validate_params",
    "validate_required",
    "validate_chain",
    "validate_numeric",
    "validate_address",
]
