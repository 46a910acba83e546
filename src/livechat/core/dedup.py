"""Bounded window of recently seen message ids."""

from __future__ import annotations


class DedupCache:
    """Insertion-ordered id set with batch eviction.

    When the set grows past *capacity*, the *evict_batch* oldest ids (by
    insertion, not by lookup) are dropped. This is a deduplication window,
    not a permanent record: an evicted id is accepted again.
    """

    def __init__(self, capacity: int = 1000, evict_batch: int = 100):
        if capacity < 1 or evict_batch < 1:
            raise ValueError("capacity and evict_batch must be positive")
        self._capacity = capacity
        self._evict_batch = evict_batch
        # dict keeps insertion order; values are unused
        self._ids: dict[str, None] = {}

    def __len__(self) -> int:
        return len(self._ids)

    def __contains__(self, message_id: object) -> bool:
        return message_id in self._ids

    def seen(self, message_id: str) -> bool:
        return message_id in self._ids

    def remember(self, message_id: str) -> None:
        if message_id in self._ids:
            return
        self._ids[message_id] = None
        if len(self._ids) > self._capacity:
            self._evict()

    def check_and_remember(self, message_id: str) -> bool:
        """Return True if *message_id* was already seen; remember it otherwise."""
        if message_id in self._ids:
            return True
        self.remember(message_id)
        return False

    def forget(self, message_id: str) -> None:
        self._ids.pop(message_id, None)

    def clear(self) -> None:
        self._ids.clear()

    def _evict(self) -> None:
        for message_id in list(self._ids)[: self._evict_batch]:
            del self._ids[message_id]
