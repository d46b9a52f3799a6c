"""What is known about candidates at one relay parent, and who holds their data."""

from __future__ import annotations

from collections.abc import Hashable
from dataclasses import dataclass, field
from typing import Optional

from .primitives import Candidate, Extrinsic, Invalid, PoVBlock, Statement, Valid


@dataclass
class KnowledgeEntry:
    """Holders of a candidate's data, plus the data itself if stored locally."""

    knows_block_data: list = field(default_factory=list)
    knows_extrinsic: list = field(default_factory=list)
    pov: Optional[PoVBlock] = None
    extrinsic: Optional[Extrinsic] = None


class Knowledge:
    """Tracks which validators know which candidates' data."""

    def __init__(self) -> None:
        self._candidates: dict[bytes, KnowledgeEntry] = {}

    def _entry_mut(self, candidate_hash: bytes) -> KnowledgeEntry:
        return self._candidates.setdefault(bytes(candidate_hash), KnowledgeEntry())

    def note_statement(self, sender: Hashable, statement: Statement) -> None:
        """Note a statement seen from another validator.

        Proposers and those declaring a candidate valid know everything;
        those claiming it invalid lack the extrinsic, which only valid
        execution produces.
        """
        if isinstance(statement, Candidate):
            entry = self._entry_mut(statement.receipt.hash())
            entry.knows_block_data.append(sender)
            entry.knows_extrinsic.append(sender)
        elif isinstance(statement, Valid):
            entry = self._entry_mut(statement.candidate_hash)
            entry.knows_block_data.append(sender)
            entry.knows_extrinsic.append(sender)
        elif isinstance(statement, Invalid):
            self._entry_mut(statement.candidate_hash).knows_block_data.append(sender)
        else:
            raise TypeError(f"not a statement: {statement!r}")

    def note_candidate(
        self,
        candidate_hash: bytes,
        pov: Optional[PoVBlock] = None,
        extrinsic: Optional[Extrinsic] = None,
    ) -> None:
        """Note a candidate collated or seen locally; data already stored is kept."""
        entry = self._entry_mut(candidate_hash)
        if entry.pov is None:
            entry.pov = pov
        if entry.extrinsic is None:
            entry.extrinsic = extrinsic

    def entry(self, candidate_hash: bytes) -> Optional[KnowledgeEntry]:
        """The entry for a candidate, or None if nothing is known about it."""
        return self._candidates.get(bytes(candidate_hash))

    def __contains__(self, candidate_hash: object) -> bool:
        return candidate_hash in self._candidates

    def __len__(self) -> int:
        return len(self._candidates)