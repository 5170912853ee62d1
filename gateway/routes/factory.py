"""
Route handler factory.

Every public endpoint is built with create_route() so that parameter
validation, cache headers, logging and error envelopes behave the same way
everywhere.
"""

import inspect
import time
from typing import Any, Awaitable, Callable

from fastapi import Request
from fastapi.responses import JSONResponse

from gateway.routes.middleware import cache_headers, log_request
from gateway.routes.types import RouteHandler, RouteSpec
from gateway.routes.validators import validate_params
from gateway.services.cache import CachePolicy
from gateway.services.error_handler import ErrorHandler, error_handler
from gateway.services.errors import ErrorContext, ValidationError

Endpoint = Callable[[Request], Awaitable[JSONResponse]]


def create_route(
    spec: RouteSpec[Any], errors: ErrorHandler | None = None
) -> Endpoint:
    """
    Create a FastAPI endpoint from a route spec.

    Example:
        app.add_api_route(
            "/api/validators",
            create_route(RouteSpec(
                required_params=["chain"],
                optional_params=["limit"],
                cache_policy=SHORT_CACHE,
                handler=fetch_validators,
            )),
            methods=["GET"],
        )

    The returned endpoint never raises: handler failures become error
    envelopes with a 4xx/5xx status.
    """
    errors = errors or error_handler

    async def endpoint(request: Request) -> JSONResponse:
        start_time = time.perf_counter()
        query = dict(request.query_params)
        context = ErrorContext(
            endpoint=request.url.path,
            method=request.method,
            params=query,
            chain=query.get("chain"),
        )

        validation = validate_params(query, spec.required_params, spec.optional_params)
        if not validation.valid:
            error = errors.handle(
                ValidationError(", ".join(validation.errors)), context
            )
            errors.log(error)
            log_request(request, validation.params, start_time, error.status)
            return errors.to_response(error)

        try:
            data = spec.handler(validation.params, request)
            if inspect.isawaitable(data):
                data = await data

            if spec.transform is not None:
                data = spec.transform(data)

            response = JSONResponse(data, headers=cache_headers(spec.cache_policy))
        except Exception as exc:
            error = errors.handle(exc, context)
            errors.log(error)
            log_request(request, query, start_time, error.status)
            return errors.to_response(error)

        log_request(request, validation.params, start_time, response.status_code)
        return response

    return endpoint


def create_get_route(
    handler: RouteHandler[Any],
    cache_policy: CachePolicy | None = None,
) -> Endpoint:
    """Create an endpoint with no required parameters."""
    return create_route(RouteSpec(handler=handler, cache_policy=cache_policy))


def create_post_route(handler: RouteHandler[Any]) -> Endpoint:
    """Create an uncached endpoint with no required parameters."""
    return create_route(RouteSpec(handler=handler))
