"""
OriginFailover - Sticky failover between interchangeable API origins.

The breaker points at one "current" origin and counts consecutive failures
against it. It does not rotate per request:

- USING(i): requests start at origin i
- USING(i) -> USING((i + 1) mod N): after failure_threshold consecutive
  failures on origin i; the counter resets
- Any success resets the counter to 0

One instance is shared by every caller of a client, so the pointer acts as a
process-wide health signal. All state changes happen under a threading.Lock.
"""

import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from loguru import logger


@dataclass
class FailoverConfig:
    """Configuration for origin failover."""

    failure_threshold: int = 3  # Consecutive failures before switching
    enabled: bool = True  # False keeps the pointer where it is


class OriginFailover:
    """
    Failover pointer for an ordered list of origins.

    Usage:
        failover = OriginFailover(["https://a.example", "https://b.example"])

        for origin in failover.rotation():
            try:
                result = await call(origin)
                failover.record_success()
                return result
            except Exception:
                failover.record_failure(origin)
    """

    def __init__(self, origins: list[str], config: FailoverConfig | None = None):
        if not origins:
            raise ValueError("At least one origin is required")

        self.config = config or FailoverConfig()
        self._origins = list(origins)
        self._index = 0
        self._failure_count = 0
        self._switch_count = 0
        self._last_failure_time: datetime | None = None
        self._last_switch_time: datetime | None = None
        self._lock = threading.Lock()

    @property
    def origins(self) -> list[str]:
        return list(self._origins)

    @property
    def current(self) -> str:
        """Origin new requests should start with."""
        with self._lock:
            return self._origins[self._index]

    @property
    def failure_count(self) -> int:
        return self._failure_count

    def rotation(self) -> list[str]:
        """All origins, starting with the current one."""
        with self._lock:
            return self._origins[self._index :] + self._origins[: self._index]

    def record_success(self) -> None:
        """Record a successful request against any origin."""
        with self._lock:
            self._failure_count = 0

    def record_failure(self, origin: str) -> bool:
        """
        Record a failed request against origin.

        Failures on an origin other than the current one do not count.
        Returns True if this failure moved the pointer.
        """
        with self._lock:
            self._last_failure_time = datetime.now()
            if origin != self._origins[self._index]:
                return False

            self._failure_count += 1
            if (
                not self.config.enabled
                or len(self._origins) < 2
                or self._failure_count < self.config.failure_threshold
            ):
                return False

            failures = self._failure_count
            self._index = (self._index + 1) % len(self._origins)
            self._failure_count = 0
            self._switch_count += 1
            self._last_switch_time = datetime.now()
            new_origin = self._origins[self._index]

        logger.warning(
            f"[OriginFailover] Switching to origin: {new_origin} "
            f"after {failures} consecutive failures on {origin}"
        )
        return True

    def reset(self, origins: list[str] | None = None) -> None:
        """Point back at the first origin, optionally replacing the list."""
        with self._lock:
            if origins is not None:
                if not origins:
                    raise ValueError("At least one origin is required")
                self._origins = list(origins)
            self._index = 0
            self._failure_count = 0
            self._last_failure_time = None
        logger.info(f"[OriginFailover] Reset to origin: {self._origins[0]}")

    def get_status(self) -> dict[str, Any]:
        """Get current status as dictionary."""
        with self._lock:
            return {
                "current_origin": self._origins[self._index],
                "origins": list(self._origins),
                "failure_count": self._failure_count,
                "switch_count": self._switch_count,
                "load_balancing": self.config.enabled,
                "last_failure": (
                    self._last_failure_time.isoformat()
                    if self._last_failure_time
                    else None
                ),
                "last_switch": (
                    self._last_switch_time.isoformat()
                    if self._last_switch_time
                    else None
                ),
            }
