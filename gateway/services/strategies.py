"""
Cache policy presets for explorer data of different volatility.
"""

from datetime import timedelta

from gateway.services.cache import CachePolicy

# Frequently changing data: validators, blocks, transactions
SHORT_CACHE = CachePolicy(
    ttl=timedelta(seconds=30),
    stale_while_revalidate=timedelta(minutes=1),
)

# Moderately changing data: proposals
MEDIUM_CACHE = CachePolicy(
    ttl=timedelta(minutes=5),
    stale_while_revalidate=timedelta(minutes=10),
)

# Rarely changing data: chain info, parameters
LONG_CACHE = CachePolicy(
    ttl=timedelta(hours=1),
    stale_while_revalidate=timedelta(hours=2),
)

# Data that never changes
STATIC_CACHE = CachePolicy(
    ttl=timedelta(hours=24),
    stale_while_revalidate=timedelta(days=7),
)


def policy_for_route(route: str) -> CachePolicy:
    """Pick a cache policy from an API path."""
    if "/validators" in route:
        return SHORT_CACHE

    if "/blocks" in route or "/transactions" in route:
        return SHORT_CACHE

    if "/proposals" in route:
        return MEDIUM_CACHE

    if "/chains" in route or "/parameters" in route:
        return LONG_CACHE

    return MEDIUM_CACHE
