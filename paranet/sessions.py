"""Live validation sessions and the session keys they use."""

from __future__ import annotations

from collections.abc import Hashable
from dataclasses import dataclass, field
from typing import Optional

from .keys import RecentValidatorIds
from .knowledge import Knowledge
from .primitives import PoVBlock


@dataclass
class SessionParams:
    """Parameters of a validation session."""

    parent_hash: bytes
    local_session_key: Optional[Hashable] = None
    authorities: list = field(default_factory=list)


@dataclass(frozen=True)
class PovLookup:
    """Result of looking up a proof-of-validation block.

    ``pov`` is set when the block is stored locally. Otherwise ``holders``
    lists the validators believed to have it. ``session_known`` is False
    when there is no live session at the requested parent hash.
    """

    pov: Optional[PoVBlock] = None
    holders: tuple = ()
    session_known: bool = True


class ValidationSession:
    """One validation session on a parent hash, with its shared knowledge."""

    def __init__(self, params: SessionParams) -> None:
        self.parent_hash = bytes(params.parent_hash)
        self.knowledge = Knowledge()
        self.local_session_key = params.local_session_key

    def pov_block(self, candidate_hash: bytes) -> PovLookup:
        """The stored block for a candidate, or the validators that should have it."""
        entry = self.knowledge.entry(candidate_hash)
        if entry is None:
            return PovLookup()
        if entry.pov is not None:
            return PovLookup(pov=entry.pov)
        return PovLookup(holders=tuple(entry.knows_block_data))


class LiveValidationSessions:
    """Reference-counted live sessions and the recent local session keys."""

    def __init__(self) -> None:
        self._recent = RecentValidatorIds()
        self._live: dict[bytes, list] = {}  # parent hash -> [refcount, session]

    def _check_new_key(self, key: Optional[Hashable]) -> Optional[Hashable]:
        if key is None:
            return None
        return key if self._recent.insert(key).is_new else None

    def new_validation_session(
        self, params: SessionParams
    ) -> tuple[ValidationSession, Optional[Hashable]]:
        """Note a session; return it and the local key if that key is new.

        A session already live at the parent hash is shared. Its session key
        is set only if it had none; a different key is otherwise ignored.
        """
        parent_hash = bytes(params.parent_hash)
        key = params.local_session_key
        live = self._live.get(parent_hash)
        if live is not None:
            session = live[1]
            new_key = None
            if session.local_session_key is None:
                session.local_session_key = key
                new_key = self._check_new_key(key)
            live[0] += 1
            return session, new_key

        session = ValidationSession(params)
        self._live[parent_hash] = [1, session]
        return session, self._check_new_key(key)

    def remove(self, parent_hash: bytes) -> bool:
        """Release one reference to a session; True if it was actually removed."""
        parent_hash = bytes(parent_hash)
        live = self._live.get(parent_hash)
        if live is None:
            return False
        live[0] -= 1
        if live[0] > 0:
            return False
        del self._live[parent_hash]

        key = live[1].local_session_key
        if key is not None:
            still_used = any(
                other.local_session_key == key for _, other in self._live.values()
            )
            if not still_used:
                self._recent.remove(key)
        return True

    def recent_keys(self) -> list:
        """Recent local session keys, oldest first."""
        return list(self._recent)

    def pov_block(self, parent_hash: bytes, candidate_hash: bytes) -> PovLookup:
        """Look up a candidate's proof-of-validation block in a live session."""
        live = self._live.get(bytes(parent_hash))
        if live is None:
            return PovLookup(session_known=False)
        return live[1].pov_block(candidate_hash)

    def __len__(self) -> int:
        return len(self._live)