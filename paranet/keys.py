"""Tracking of a peer's most recent validator session keys."""

from __future__ import annotations

from collections.abc import Hashable, Iterator
from dataclasses import dataclass
from typing import Optional

# Sessions change infrequently and usually only the current and the last
# are relevant; the extra one is an error margin.
RECENT_SESSIONS = 3


@dataclass(frozen=True)
class InsertResult:
    """Outcome of inserting a key: whether it was new and which key it pushed out."""

    is_new: bool
    evicted: Optional[Hashable] = None


class RecentValidatorIds:
    """The most recent session keys, oldest first, bounded in size."""

    def __init__(self, capacity: int = RECENT_SESSIONS) -> None:
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self._capacity = capacity
        self._keys: list[Hashable] = []

    def insert(self, key: Hashable) -> InsertResult:
        """Insert a key; when full, the oldest key is pushed out and reported."""
        if key in self._keys:
            return InsertResult(is_new=False)
        evicted = self._keys.pop(0) if len(self._keys) == self._capacity else None
        self._keys.append(key)
        return InsertResult(is_new=True, evicted=evicted)

    def remove(self, key: Hashable) -> None:
        self._keys = [k for k in self._keys if k != key]

    def __iter__(self) -> Iterator[Hashable]:
        return iter(list(self._keys))

    def __len__(self) -> int:
        return len(self._keys)

    def __contains__(self, key: object) -> bool:
        return key in self._keys