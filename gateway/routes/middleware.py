"""
Route middleware: cache headers and request logging.
"""

import time
from datetime import timedelta

from fastapi import Request
from loguru import logger

from gateway.services.cache import CachePolicy


def cache_headers(policy: CachePolicy | None) -> dict[str, str]:
    """Build the Cache-Control header for a successful response."""
    ttl = policy.ttl if policy else timedelta(0)
    if ttl <= timedelta(0):
        return {"Cache-Control": "no-store"}

    swr = policy.stale_while_revalidate or ttl * 2
    return {
        "Cache-Control": (
            f"public, s-maxage={int(ttl.total_seconds())}, "
            f"stale-while-revalidate={int(swr.total_seconds())}"
        )
    }


def log_request(
    request: Request,
    params: dict[str, str],
    start_time: float,
    status: int,
) -> None:
    """Log one handled request."""
    duration_ms = (time.perf_counter() - start_time) * 1000
    logger.bind(
        method=request.method,
        endpoint=request.url.path,
        params=params,
        duration_ms=round(duration_ms, 1),
        status=status,
    ).info(
        f"[Route] {request.method} {request.url.path} params={params} "
        f"status={status} duration={duration_ms:.1f}ms"
    )
