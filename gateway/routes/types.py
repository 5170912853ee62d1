"""
Route handler types.
"""

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Generic, TypeVar, Union

from fastapi import Request

from gateway.services.cache import CachePolicy

T = TypeVar("T")

RouteHandler = Callable[[dict[str, str], Request], Union[Awaitable[T], T]]


@dataclass
class RouteSpec(Generic[T]):
    """Declarative description of one endpoint."""

    handler: RouteHandler[T]
    required_params: list[str] = field(default_factory=list)
    optional_params: list[str] = field(default_factory=list)
    cache_policy: CachePolicy | None = None
    transform: Callable[[T], Any] | None = None


@dataclass
class ValidationResult:
    """Outcome of query parameter validation."""

    valid: bool
    params: dict[str, str]
    errors: list[str] = field(default_factory=list)
