"""Attestation topics and deferral of statements about unknown candidates."""

from __future__ import annotations

from dataclasses import dataclass

from .codec import blake2_256
from .primitives import HASH_LEN, Candidate, Invalid, SignedStatement, Valid

_TOPIC_SUFFIX = b"attestations"


def attestation_topic(parent_hash: bytes) -> bytes:
    """Compute the gossip topic for attestations on the given parent hash."""
    raw = bytes(parent_hash)
    if len(raw) != HASH_LEN:
        raise ValueError(f"parent hash must be {HASH_LEN} bytes, got {len(raw)}")
    return blake2_256(raw + _TOPIC_SUFFIX)


@dataclass(frozen=True)
class StatementTrace:
    """A unique trace of a validity statement issued by one validator."""

    valid: bool
    sender: int
    candidate_hash: bytes

    @classmethod
    def of(cls, statement: SignedStatement) -> "StatementTrace | None":
        """The trace of a signed statement, or None for candidate statements."""
        inner = statement.statement
        if isinstance(inner, Valid):
            return cls(True, statement.sender, inner.candidate_hash)
        if isinstance(inner, Invalid):
            return cls(False, statement.sender, inner.candidate_hash)
        return None


class DeferredStatements:
    """Holds statements whose candidate is not yet known, without duplicates."""

    def __init__(self) -> None:
        self._deferred: dict[bytes, list[SignedStatement]] = {}
        self._known_traces: set[StatementTrace] = set()

    def push(self, statement: SignedStatement) -> None:
        """Defer a validity statement; candidate statements and repeats are ignored."""
        if isinstance(statement.statement, Candidate):
            return
        trace = StatementTrace.of(statement)
        if trace is None or trace in self._known_traces:
            return
        self._known_traces.add(trace)
        self._deferred.setdefault(trace.candidate_hash, []).append(statement)

    def get_deferred(
        self, candidate_hash: bytes
    ) -> tuple[list[SignedStatement], list[StatementTrace]]:
        """Remove and return statements deferred on a candidate, with their traces."""
        deferred = self._deferred.pop(bytes(candidate_hash), None)
        if deferred is None:
            return [], []
        traces = []
        for statement in deferred:
            trace = StatementTrace.of(statement)
            if trace is None:
                continue
            self._known_traces.discard(trace)
            traces.append(trace)
        return deferred, traces

    def __len__(self) -> int:
        return sum(len(statements) for statements in self._deferred.values())