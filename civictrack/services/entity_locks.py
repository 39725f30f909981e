"""
Per-entity mutual exclusion for workflow transitions.

Every ``request_transition`` call holds the locks of the entity it touches
and of every entity its cascades may touch. Keys are acquired in a fixed
rank order (bid / progress record, then tender, then issue) so that two
calls can never wait on each other in a cycle.

Acquisition polls with exponential backoff and gives up after the
configured timeout with ``ContentionError`` (kind ``contention``).
"""

import logging
import threading
import time
from contextlib import contextmanager

from flask import current_app

from civictrack.core.exceptions import ContentionError

logger = logging.getLogger(__name__)

LOCK_REGISTRY_EXTENSION = "civictrack.locks"

_LOCK_RANK = {
    "bid": 0,
    "work_progress": 0,
    "tender": 1,
    "issue": 2,
}

_MAX_BACKOFF_SECONDS = 0.25


def order_keys(keys) -> list[tuple[str, str]]:
    """Deduplicate ``(entity_type, entity_id)`` keys and sort them by lock rank."""
    unique = {(entity_type, str(entity_id)) for entity_type, entity_id in keys if entity_id}
    return sorted(unique, key=lambda k: (_LOCK_RANK.get(k[0], len(_LOCK_RANK)), k[0], k[1]))


class EntityLockRegistry:
    """In-process lock table keyed by ``(entity_type, entity_id)``."""

    def __init__(
        self,
        timeout: float = 5.0,
        backoff: float = 0.01,
        *,
        sleep=time.sleep,
        monotonic=time.monotonic,
    ):
        self.timeout = timeout
        self.backoff = backoff
        self._sleep = sleep
        self._monotonic = monotonic
        self._guard = threading.Lock()
        self._locks: dict[tuple[str, str], threading.Lock] = {}

    def _lock_for(self, key) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            return lock

    def _acquire(self, key) -> None:
        lock = self._lock_for(key)
        deadline = self._monotonic() + self.timeout
        delay = self.backoff
        while not lock.acquire(blocking=False):
            remaining = deadline - self._monotonic()
            if remaining <= 0:
                logger.warning(
                    "Lock wait timed out for %s/%s after %.2fs",
                    key[0], key[1], self.timeout,
                    extra={"entity_type": key[0], "entity_id": key[1]},
                )
                raise ContentionError(
                    f"Timed out waiting for {key[0]} {key[1]}; retry the request",
                    keys=[list(key)],
                )
            self._sleep(min(delay, remaining))
            delay = min(delay * 2, _MAX_BACKOFF_SECONDS)

    @contextmanager
    def hold(self, keys):
        """Acquire every key in rank order; release in reverse on exit."""
        ordered = order_keys(keys)
        acquired = []
        try:
            for key in ordered:
                self._acquire(key)
                acquired.append(key)
            yield ordered
        finally:
            for key in reversed(acquired):
                self._lock_for(key).release()

    def is_locked(self, entity_type: str, entity_id: str) -> bool:
        return self._lock_for((entity_type, str(entity_id))).locked()


def init_lock_registry(app) -> EntityLockRegistry:
    registry = EntityLockRegistry(
        timeout=float(app.config.get("LOCK_TIMEOUT_SECONDS", 5.0)),
        backoff=float(app.config.get("LOCK_RETRY_BACKOFF_SECONDS", 0.01)),
    )
    app.extensions[LOCK_REGISTRY_EXTENSION] = registry
    return registry


def get_lock_registry() -> EntityLockRegistry:
    return current_app.extensions[LOCK_REGISTRY_EXTENSION]
