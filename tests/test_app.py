import httpx
import pytest
from fastapi.testclient import TestClient

from gateway.app import create_app


@pytest.fixture
def upstream_calls() -> list[httpx.Request]:
    return []


@pytest.fixture
def app_client(make_client, upstream_calls) -> TestClient:
    def handler(request: httpx.Request) -> httpx.Response:
        upstream_calls.append(request)
        if request.url.path == "/api/missing":
            return httpx.Response(404)
        return httpx.Response(200, json={"path": request.url.path, "query": dict(request.url.params)})

    with TestClient(create_app(make_client(handler))) as client:
        yield client


def test_health(app_client: TestClient) -> None:
    response = app_client.get("/api/health")

    body = response.json()
    assert response.status_code == 200
    assert body["status"] == "ok"
    assert body["failover"]["current_origin"] == "https://a.example"
    assert response.headers["cache-control"] == "no-store"


def test_proxy_forwards_query_and_caches(app_client: TestClient, upstream_calls) -> None:
    params = {"endpoint": "/api/validators", "chain": "lumera"}

    first = app_client.get("/api/proxy", params=params)
    second = app_client.get("/api/proxy", params=params)

    assert first.status_code == 200
    assert first.json() == {"path": "/api/validators", "query": {"chain": "lumera"}}
    assert second.json() == first.json()
    assert len(upstream_calls) == 1
    assert first.headers["cache-control"] == "public, s-maxage=10, stale-while-revalidate=30"


def test_proxy_requires_endpoint(app_client: TestClient, upstream_calls) -> None:
    response = app_client.get("/api/proxy")

    assert response.status_code == 400
    assert response.json()["error"]["code"] == "VALIDATION_ERROR"
    assert upstream_calls == []


def test_proxy_rejects_absolute_urls(app_client: TestClient, upstream_calls) -> None:
    response = app_client.get("/api/proxy", params={"endpoint": "https://evil.example/x"})

    assert response.status_code == 400
    assert upstream_calls == []


def test_proxy_passes_upstream_status(app_client: TestClient) -> None:
    response = app_client.get("/api/proxy", params={"endpoint": "/api/missing"})

    assert response.status_code == 404
    assert response.json()["error"]["code"] == "API_NOT_FOUND"
