from datetime import timedelta
from typing import Any, Callable

import pytest
from fastapi import FastAPI, Request
from fastapi.testclient import TestClient

from gateway.routes import RouteSpec, create_get_route, create_route
from gateway.services.cache import CachePolicy
from gateway.services.error_handler import ErrorHandler
from gateway.services.errors import UpstreamHTTPError

SECRET = "Zx9Yw8Vu7Ts6Rq5Po4Nm3Lk2Ji1Hg0FeDcBa98"


@pytest.fixture
def serve() -> Callable[[Any], TestClient]:
    """Mount an endpoint at /test and return a test client for it."""

    def _serve(endpoint: Any) -> TestClient:
        app = FastAPI()
        app.add_api_route("/test", endpoint, methods=["GET"])
        return TestClient(app)

    return _serve


def test_echo_with_required_param(serve) -> None:
    def handler(params: dict[str, str], request: Request) -> dict:
        return {"echo": params["id"]}

    client = serve(create_route(RouteSpec(handler=handler, required_params=["id"])))
    response = client.get("/test", params={"id": "42"})

    assert response.status_code == 200
    assert response.json() == {"echo": "42"}
    assert response.headers["cache-control"] == "no-store"


def test_missing_param_short_circuits_handler(serve) -> None:
    calls = 0

    async def handler(params: dict[str, str], request: Request) -> dict:
        nonlocal calls
        calls += 1
        return {}

    client = serve(
        create_route(RouteSpec(handler=handler, required_params=["chain", "id"]))
    )
    response = client.get("/test", params={"id": ""})

    body = response.json()
    assert response.status_code == 400
    assert body["error"]["code"] == "VALIDATION_ERROR"
    assert "Missing required parameter: chain" in body["error"]["message"]
    assert "Missing required parameter: id" in body["error"]["message"]
    assert body["path"] == "/test"
    assert calls == 0


def test_optional_params_are_passed_through(serve) -> None:
    seen: dict[str, str] = {}

    async def handler(params: dict[str, str], request: Request) -> dict:
        seen.update(params)
        return {"ok": True}

    client = serve(
        create_route(
            RouteSpec(
                handler=handler,
                required_params=["chain"],
                optional_params=["limit", "offset"],
            )
        )
    )
    client.get("/test", params={"chain": "lumera", "limit": "5", "other": "x"})

    assert seen == {"chain": "lumera", "limit": "5"}


def test_cache_policy_sets_header(serve) -> None:
    policy = CachePolicy(ttl=timedelta(seconds=30), stale_while_revalidate=timedelta(seconds=60))
    client = serve(create_get_route(lambda params, request: {"ok": True}, cache_policy=policy))

    response = client.get("/test")

    assert response.headers["cache-control"] == (
        "public, s-maxage=30, stale-while-revalidate=60"
    )


def test_revalidate_window_defaults_to_twice_ttl(serve) -> None:
    policy = CachePolicy(ttl=timedelta(seconds=45))
    client = serve(create_get_route(lambda params, request: [], cache_policy=policy))

    response = client.get("/test")

    assert response.headers["cache-control"] == (
        "public, s-maxage=45, stale-while-revalidate=90"
    )


def test_transform_is_applied(serve) -> None:
    async def handler(params: dict[str, str], request: Request) -> list[int]:
        return [3, 1, 2]

    client = serve(create_route(RouteSpec(handler=handler, transform=sorted)))

    assert client.get("/test").json() == [1, 2, 3]


def test_handler_exception_becomes_sanitized_envelope(serve) -> None:
    async def handler(params: dict[str, str], request: Request) -> dict:
        raise RuntimeError(f"upstream call failed with key {SECRET}")

    client = serve(
        create_route(RouteSpec(handler=handler), errors=ErrorHandler(include_details=True))
    )
    response = client.get("/test")

    assert response.status_code >= 500
    assert SECRET not in response.text
    body = response.json()
    assert "[TOKEN]" in body["error"]["message"]
    assert body["error"]["details"] == {"name": "RuntimeError"}
    assert "cache-control" not in response.headers


def test_typed_error_keeps_its_status(serve) -> None:
    async def handler(params: dict[str, str], request: Request) -> dict:
        raise UpstreamHTTPError(404, "Not Found")

    client = serve(
        create_route(RouteSpec(handler=handler), errors=ErrorHandler(include_details=False))
    )
    response = client.get("/test")

    assert response.status_code == 404
    assert response.json()["error"] == {
        "code": "API_NOT_FOUND",
        "message": "HTTP 404: Not Found",
    }


def test_requests_are_logged(serve, log_records: list) -> None:
    client = serve(create_get_route(lambda params, request: {"ok": True}))
    client.get("/test")

    record = next(r for r in log_records if r["message"].startswith("[Route]"))
    assert record["extra"]["status"] == 200
    assert record["extra"]["endpoint"] == "/test"
