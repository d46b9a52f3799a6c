"""Bookkeeping of connected collators and the collations they deliver."""

from __future__ import annotations

import time
from concurrent.futures import Future, InvalidStateError
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Callable, Hashable, Optional, Union

COLLATION_LIFETIME = 60 * 5  # seconds

Clock = Callable[[], float]


class Role(IntEnum):
    """Whether a collator is the primary or a backup for its parachain."""

    PRIMARY = 0
    BACKUP = 1


@dataclass(frozen=True)
class Disconnect:
    """Maintenance action: disconnect the given collator."""

    collator_id: Hashable


@dataclass(frozen=True)
class NewRole:
    """Maintenance action: give the collator a new role."""

    collator_id: Hashable
    role: Role


Action = Union[Disconnect, NewRole]


def _deliver(future: Future, collation: Any) -> None:
    try:
        future.set_result(collation)
    except InvalidStateError:
        pass  # the waiter went away


@dataclass
class CollationSlot:
    """Collations received, or waiters registered, for one relay parent and parachain.

    At most one of ``pending`` and ``awaiting`` is non-empty at any time.
    """

    live_at: float
    pending: list = field(default_factory=list)
    awaiting: list = field(default_factory=list)

    @classmethod
    def blank_now(cls, clock: Clock = time.monotonic) -> "CollationSlot":
        return cls(live_at=clock())

    def stay_alive(self, now: float) -> bool:
        return self.live_at + COLLATION_LIFETIME > now

    def _received_collation(self, collation: Any) -> None:
        if self.awaiting:
            waiters, self.awaiting = self.awaiting, []
            for future in waiters:
                _deliver(future, collation)
        else:
            self.pending.append(collation)

    def _await_with(self, future: Future) -> None:
        if self.pending:
            _deliver(future, self.pending.pop())
        else:
            self.awaiting.append(future)


@dataclass
class _ParachainCollators:
    primary: Hashable
    backup: list = field(default_factory=list)


class CollatorPool:
    """Connected collators and role assignments, from a validator's perspective."""

    def __init__(self, clock: Clock = time.monotonic) -> None:
        self._clock = clock
        self._collators: dict[Hashable, tuple[Hashable, Hashable]] = {}
        self._parachain_collators: dict[Hashable, _ParachainCollators] = {}
        self._collations: dict[tuple[Hashable, Hashable], CollationSlot] = {}

    def on_new_collator(self, collator_id, para_id, peer_id) -> Role:
        """Register an authenticated collator and return its role."""
        self._collators[collator_id] = (para_id, peer_id)
        collators = self._parachain_collators.get(para_id)
        if collators is None:
            self._parachain_collators[para_id] = _ParachainCollators(primary=collator_id)
            return Role.PRIMARY
        collators.backup.append(collator_id)
        return Role.BACKUP

    def on_disconnect(self, collator_id) -> Optional[Hashable]:
        """Forget a collator. If it was the primary, return the new primary."""
        registered = self._collators.pop(collator_id, None)
        if registered is None:
            return None
        para_id, _ = registered
        collators = self._parachain_collators.get(para_id)
        if collators is None:
            return None
        if collators.primary == collator_id:
            if not collators.backup:
                del self._parachain_collators[para_id]
                return None
            collators.primary = collators.backup.pop()
            return collators.primary
        collators.backup.remove(collator_id)
        return None

    def _slot(self, relay_parent, para_id) -> CollationSlot:
        key = (relay_parent, para_id)
        slot = self._collations.get(key)
        if slot is None:
            slot = self._collations[key] = CollationSlot.blank_now(self._clock)
        return slot

    def on_collation(self, collator_id, relay_parent, collation) -> None:
        """Record a collation from a registered collator; others are ignored."""
        registered = self._collators.get(collator_id)
        if registered is None:
            return
        para_id, _ = registered
        self._slot(relay_parent, para_id)._received_collation(collation)

    def await_collation(self, relay_parent, para_id) -> Future:
        """Return a future resolved with the next collation for the parachain."""
        future: Future = Future()
        self._slot(relay_parent, para_id)._await_with(future)
        return future

    def maintain_peers(self) -> list[Action]:
        """Periodic collator-set maintenance; returns network-level actions."""
        return []

    def collect_garbage(self, chain_head=None) -> None:
        """Drop slots for the imported ``chain_head`` and slots that expired."""
        now = self._clock()
        self._collations = {
            key: slot
            for key, slot in self._collations.items()
            if key[0] != chain_head and slot.stay_alive(now)
        }

    def collator_id_to_peer_id(self, collator_id) -> Optional[Hashable]:
        registered = self._collators.get(collator_id)
        return None if registered is None else registered[1]

    def primary_for(self, para_id) -> Optional[Hashable]:
        collators = self._parachain_collators.get(para_id)
        return None if collators is None else collators.primary

    def backups_for(self, para_id) -> list:
        collators = self._parachain_collators.get(para_id)
        return [] if collators is None else list(collators.backup)