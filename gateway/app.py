"""FastAPI application exposing the gateway's public endpoints."""

from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Any

from fastapi import FastAPI, Request
from loguru import logger

from gateway.routes import RouteSpec, create_get_route, create_route
from gateway.services.cache import CachePolicy
from gateway.services.client import ApiClient, CallOptions, get_api_client
from gateway.services.errors import ValidationError
from gateway.services.strategies import policy_for_route

PROXY_CACHE = CachePolicy(
    ttl=timedelta(seconds=10),
    stale_while_revalidate=timedelta(seconds=30),
)


class GatewayServer:
    """HTTP server forwarding explorer API calls to the configured origins."""

    def __init__(self, client: ApiClient | None = None):
        self.client = client or get_api_client()
        self.app = FastAPI(title="Explorer Gateway", lifespan=self._lifespan)

        # Register routes
        self.app.add_api_route(
            "/api/health",
            create_get_route(self.health_check),
            methods=["GET"],
        )
        self.app.add_api_route(
            "/api/proxy",
            create_route(
                RouteSpec(
                    required_params=["endpoint"],
                    cache_policy=PROXY_CACHE,
                    handler=self.proxy,
                )
            ),
            methods=["GET"],
        )

    @asynccontextmanager
    async def _lifespan(self, app: FastAPI):
        logger.info(f"Explorer gateway using origins: {self.client.get_config().base_urls}")
        yield
        logger.info("Closing API client...")
        await self.client.close()
        await self.client.cache.close()

    async def proxy(self, params: dict[str, str], request: Request) -> Any:
        """Forward a GET to the origins, serving repeat calls from cache.

        Args:
            params: Validated query parameters, ``endpoint`` is the upstream path
            request: Incoming request; every other query parameter is forwarded

        Returns:
            Upstream JSON body
        """
        endpoint = params["endpoint"]
        if not endpoint.startswith("/") or "://" in endpoint:
            raise ValidationError(f"Invalid endpoint parameter: {endpoint}")

        forwarded = {
            key: value
            for key, value in request.query_params.items()
            if key != "endpoint"
        }
        cache_key = self.client.cache.generate_key(endpoint, forwarded)

        return await self.client.with_cache(
            cache_key,
            lambda: self.client.get(endpoint, CallOptions(params=forwarded or None)),
            policy=policy_for_route(endpoint),
        )

    async def health_check(self, params: dict[str, str], request: Request) -> dict[str, Any]:
        """Health check endpoint."""
        return {"status": "ok", "service": "explorer-gateway", **self.client.get_health_status()}


def create_app(client: ApiClient | None = None) -> FastAPI:
    """Create the FastAPI app.

    Args:
        client: API client to use, the global client by default

    Returns:
        FastAPI app
    """
    server = GatewayServer(client)
    return server.app
