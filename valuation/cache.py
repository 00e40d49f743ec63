"""
Bounded key-value cache for extraction results.

Capacity is explicit and eviction is oldest-first (insertion order).  Values
are deep-copied on the way in and out, so a cached result cannot be mutated
by a caller.
"""

import copy
import hashlib
from collections import OrderedDict
from typing import Any, Optional

from valuation.config import METRICS_CACHE_SIZE


def content_hash(text: str) -> str:
    """Stable cache key for a document's full text."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


class BoundedCache:
    def __init__(self, capacity: int | None = None):
        self.capacity = max(1, capacity if capacity is not None else METRICS_CACHE_SIZE)
        self._entries: OrderedDict[str, Any] = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def get(self, key: str) -> Optional[Any]:
        if key not in self._entries:
            return None
        return copy.deepcopy(self._entries[key])

    def put(self, key: str, value: Any) -> None:
        if key in self._entries:
            self._entries[key] = copy.deepcopy(value)
            return
        while len(self._entries) >= self.capacity:
            self._entries.popitem(last=False)
        self._entries[key] = copy.deepcopy(value)

    def clear(self) -> None:
        self._entries.clear()
