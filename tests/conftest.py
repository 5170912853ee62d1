from typing import Any, Callable

import httpx
import pytest
from loguru import logger

from gateway.services.cache import CacheManager
from gateway.services.client import ApiClient, ClientConfig

ORIGIN_A = "https://a.example"
ORIGIN_B = "https://b.example"


@pytest.fixture
def log_records() -> list[dict[str, Any]]:
    records: list[dict[str, Any]] = []
    sink_id = logger.add(lambda message: records.append(message.record), level="DEBUG")
    yield records
    logger.remove(sink_id)


@pytest.fixture
def cache() -> CacheManager:
    return CacheManager(max_size=100)


@pytest.fixture
def make_client(cache: CacheManager) -> Callable[..., ApiClient]:
    """Build a client whose origins are served by an in-process handler."""

    def _make(
        handler: Callable[[httpx.Request], httpx.Response],
        origins: list[str] | None = None,
        **config: Any,
    ) -> ApiClient:
        return ApiClient(
            ClientConfig(base_urls=origins or [ORIGIN_A, ORIGIN_B], **config),
            cache=cache,
            transport=httpx.MockTransport(handler),
        )

    return _make
