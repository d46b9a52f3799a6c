"""Local collations to be circulated to validators.

Collations are offered again when a validator connects, changes its
session key, or when they are generated.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Callable, Hashable, Iterable, Optional

from .collator_pool import Role

LIVE_FOR = 60 * 5  # seconds

Clock = Callable[[], float]


@dataclass
class _LocalCollation:
    targets: frozenset
    collation: Any
    live_since: float


class LocalCollations:
    """Tracks locally produced collations and which validators should receive them."""

    def __init__(self, clock: Clock = time.monotonic) -> None:
        self._clock = clock
        self._primary_for: set = set()
        self._local_collations: dict[Hashable, _LocalCollation] = {}

    def note_validator_role(self, key, role: Role) -> list[tuple[Any, Any]]:
        """Record a validator's role; a new primary gets the collations targeting it."""
        if role == Role.BACKUP:
            self._primary_for.discard(key)
            return []
        if key in self._primary_for:
            return []
        self._primary_for.add(key)
        return self._collations_targeting(key)

    def fresh_key(self, old_key, new_key) -> list[tuple[Any, Any]]:
        """A validator changed session key; return collations to send under the new one."""
        if old_key not in self._primary_for:
            return []
        self._primary_for.remove(old_key)
        self._primary_for.add(new_key)
        return self._collations_targeting(new_key)

    def on_disconnect(self, key) -> None:
        self._primary_for.discard(key)

    def collect_garbage(self, relay_parent: Optional[Hashable] = None) -> None:
        """Drop collations on ``relay_parent`` and those that outlived their lifetime."""
        if relay_parent is not None:
            self._local_collations.pop(relay_parent, None)
        now = self._clock()
        self._local_collations = {
            parent: local
            for parent, local in self._local_collations.items()
            if local.live_since + LIVE_FOR > now
        }

    def add_collation(
        self, relay_parent, targets: Iterable, collation
    ) -> list[tuple[Any, Any]]:
        """Store a collation; return ``(key, collation)`` for targets already primary."""
        local = _LocalCollation(frozenset(targets), collation, self._clock())
        self._local_collations[relay_parent] = local
        return [(key, collation) for key in local.targets if key in self._primary_for]

    def __len__(self) -> int:
        return len(self._local_collations)

    def _collations_targeting(self, key) -> list[tuple[Any, Any]]:
        return [
            (parent, local.collation)
            for parent, local in self._local_collations.items()
            if key in local.targets
        ]