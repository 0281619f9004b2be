"""Bounded set of already-dispatched event keys."""

from __future__ import annotations

import logging
import threading
from collections import OrderedDict

from altwatch.core.config import constants

logger = logging.getLogger(__name__)


class ProcessedSet:
    """LRU set used to drop redelivered events.

    ``add_if_absent`` is the only mutation, so check-and-insert is atomic
    and two deliveries of one event can never both be dispatched.
    """

    def __init__(self, capacity: int = constants.MAX_PROCESSED_EVENTS) -> None:
        if capacity < 1:
            message = "ProcessedSet capacity must be at least 1"
            raise ValueError(message)
        self._capacity = capacity
        self._keys: OrderedDict[str, None] = OrderedDict()
        self._lock = threading.Lock()

    @property
    def capacity(self) -> int:
        return self._capacity

    def __len__(self) -> int:
        with self._lock:
            return len(self._keys)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._keys

    def add_if_absent(self, key: str) -> bool:
        """Insert ``key`` and return True, or return False if already present."""
        with self._lock:
            if key in self._keys:
                self._keys.move_to_end(key)
                return False
            self._keys[key] = None
            if len(self._keys) > self._capacity:
                evicted, _ = self._keys.popitem(last=False)
                logger.debug("Evicted %s from processed set", evicted)
            return True
