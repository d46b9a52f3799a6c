"""Relay-chain types describing parachain candidates, collations and statements."""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from functools import total_ordering
from typing import Callable, TypeVar, Union

from nacl.exceptions import CryptoError
from nacl.signing import VerifyKey

from .codec import (
    DecodeError,
    Reader,
    blake2_256,
    encode_bytes,
    encode_u8,
    encode_u32,
    encode_u128,
    encode_vec,
)
from .parachain import ParaId, ParachainDispatchOrigin

HASH_LEN = 32
KEY_LEN = 32
SIGNATURE_LEN = 64
MAX_BALANCE = (1 << 128) - 1
EMPTY_SIGNATURE = bytes(SIGNATURE_LEN)

T = TypeVar("T")


def _exact(value: bytes, length: int, what: str) -> bytes:
    raw = bytes(value)
    if len(raw) != length:
        raise ValueError(f"{what} must be {length} bytes, got {len(raw)}")
    return raw


def _decode_vec(reader: Reader, decoder: Callable[[Reader], T]) -> list[T]:
    return [decoder(reader) for _ in range(reader.read_compact())]


def _encode_root(entry: tuple[ParaId, bytes]) -> bytes:
    para_id, root = entry
    return para_id.encode() + root


def _decode_root(reader: Reader) -> tuple[ParaId, bytes]:
    return ParaId.decode(reader), reader.read(HASH_LEN)


@total_ordering
@dataclass(frozen=True)
class OutgoingMessage:
    """A message to another parachain; ordered by target only."""

    target: ParaId
    data: bytes

    def __lt__(self, other: "OutgoingMessage") -> bool:
        if not isinstance(other, OutgoingMessage):
            return NotImplemented
        return self.target < other.target

    def encode(self) -> bytes:
        return self.target.encode() + encode_bytes(self.data)


@dataclass(frozen=True)
class Extrinsic:
    """Data produced by evaluating a candidate: its outgoing messages, sorted by target."""

    outgoing_messages: tuple[OutgoingMessage, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "outgoing_messages", tuple(self.outgoing_messages))

    def encode(self) -> bytes:
        return encode_vec(self.outgoing_messages, OutgoingMessage.encode)


@dataclass(frozen=True)
class UpwardMessage:
    """A message from a parachain to its relay chain."""

    origin: ParachainDispatchOrigin
    data: bytes

    def encode(self) -> bytes:
        return encode_u8(int(self.origin)) + encode_bytes(self.data)

    @classmethod
    def decode(cls, reader: Reader) -> "UpwardMessage":
        raw_origin = reader.read_u8()
        try:
            origin = ParachainDispatchOrigin(raw_origin)
        except ValueError:
            raise DecodeError(f"unknown dispatch origin {raw_origin}") from None
        return cls(origin, reader.read_bytes())


@dataclass(frozen=True)
class BlockData:
    """Parachain block data: everything needed to validate a parachain block."""

    data: bytes

    def encode(self) -> bytes:
        return encode_bytes(self.data)

    @classmethod
    def decode(cls, reader: Reader) -> "BlockData":
        return cls(reader.read_bytes())

    def hash(self) -> bytes:
        """BLAKE2-256 hash of the raw block data."""
        return blake2_256(self.data)


def _encode_ingress_entry(entry: tuple[ParaId, tuple[bytes, ...]]) -> bytes:
    para_id, messages = entry
    return para_id.encode() + encode_vec(messages, encode_bytes)


def _decode_ingress_entry(reader: Reader) -> tuple[ParaId, tuple[bytes, ...]]:
    para_id = ParaId.decode(reader)
    return para_id, tuple(_decode_vec(reader, Reader.read_bytes))


@dataclass(frozen=True)
class PoVBlock:
    """A proof-of-validation block: block data plus consolidated ingress."""

    block_data: BlockData
    ingress: tuple[tuple[ParaId, tuple[bytes, ...]], ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(
            self,
            "ingress",
            tuple((para_id, tuple(messages)) for para_id, messages in self.ingress),
        )

    def encode(self) -> bytes:
        return self.block_data.encode() + encode_vec(self.ingress, _encode_ingress_entry)

    @classmethod
    def decode(cls, reader: Reader) -> "PoVBlock":
        block_data = BlockData.decode(reader)
        return cls(block_data, tuple(_decode_vec(reader, _decode_ingress_entry)))


@total_ordering
@dataclass(frozen=True)
class CandidateReceipt:
    """A parachain candidate as seen by the relay chain.

    Ordered by parachain index, then head data.
    """

    parachain_index: ParaId
    collator: bytes
    signature: bytes
    head_data: bytes
    egress_queue_roots: tuple[tuple[ParaId, bytes], ...]
    fees: int
    block_data_hash: bytes
    upward_messages: tuple[UpwardMessage, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "collator", _exact(self.collator, KEY_LEN, "collator"))
        object.__setattr__(
            self, "signature", _exact(self.signature, SIGNATURE_LEN, "signature")
        )
        object.__setattr__(self, "head_data", bytes(self.head_data))
        object.__setattr__(
            self,
            "egress_queue_roots",
            tuple(
                (para_id, _exact(root, HASH_LEN, "egress root"))
                for para_id, root in self.egress_queue_roots
            ),
        )
        object.__setattr__(
            self, "block_data_hash", _exact(self.block_data_hash, HASH_LEN, "block data hash")
        )
        object.__setattr__(self, "upward_messages", tuple(self.upward_messages))
        if not 0 <= self.fees <= MAX_BALANCE:
            raise ValueError(f"fees {self.fees} out of range")

    def __lt__(self, other: "CandidateReceipt") -> bool:
        if not isinstance(other, CandidateReceipt):
            return NotImplemented
        return (self.parachain_index, self.head_data) < (
            other.parachain_index,
            other.head_data,
        )

    def encode(self) -> bytes:
        return b"".join(
            (
                self.parachain_index.encode(),
                self.collator,
                self.signature,
                encode_bytes(self.head_data),
                encode_vec(self.egress_queue_roots, _encode_root),
                encode_u128(self.fees),
                self.block_data_hash,
                encode_vec(self.upward_messages, UpwardMessage.encode),
            )
        )

    @classmethod
    def decode(cls, reader: Reader) -> "CandidateReceipt":
        parachain_index = ParaId.decode(reader)
        collator = reader.read(KEY_LEN)
        signature = reader.read(SIGNATURE_LEN)
        head_data = reader.read_bytes()
        egress_queue_roots = tuple(_decode_vec(reader, _decode_root))
        fees = reader.read_u128()
        block_data_hash = reader.read(HASH_LEN)
        upward_messages = tuple(_decode_vec(reader, UpwardMessage.decode))
        return cls(
            parachain_index,
            collator,
            signature,
            head_data,
            egress_queue_roots,
            fees,
            block_data_hash,
            upward_messages,
        )

    def hash(self) -> bytes:
        """BLAKE2-256 hash of the encoded receipt."""
        return blake2_256(self.encode())

    def check_signature(self) -> bool:
        """Whether the collator signed the block data hash."""
        try:
            VerifyKey(self.collator).verify(self.block_data_hash, self.signature)
        except (CryptoError, ValueError, TypeError):
            return False
        return True


@dataclass(frozen=True)
class Collation:
    """A full collation: candidate receipt and its proof-of-validation."""

    receipt: CandidateReceipt
    pov: PoVBlock

    def encode(self) -> bytes:
        return self.receipt.encode() + self.pov.encode()

    @classmethod
    def decode(cls, reader: Reader) -> "Collation":
        receipt = CandidateReceipt.decode(reader)
        return cls(receipt, PoVBlock.decode(reader))


@dataclass(frozen=True)
class StructuredUnroutedIngress:
    """Ingress roots grouped by block number (ascending)."""

    blocks: tuple[tuple[int, tuple[tuple[ParaId, bytes], ...]], ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(
            self,
            "blocks",
            tuple((number, tuple(roots)) for number, roots in self.blocks),
        )

    def __len__(self) -> int:
        """Number of ingress roots across all blocks."""
        return sum(len(roots) for _, roots in self.blocks)

    def __iter__(self) -> Iterator[tuple[int, ParaId, bytes]]:
        """Yield ``(block_number, sender, root)`` for every ingress root."""
        for number, roots in self.blocks:
            for sender, root in roots:
                yield number, sender, root


@dataclass(frozen=True)
class Candidate:
    """Statement proposing a parachain candidate."""

    receipt: CandidateReceipt

    @property
    def candidate_hash(self) -> bytes:
        return self.receipt.hash()

    def encode(self) -> bytes:
        return b"\x01" + self.receipt.encode()


@dataclass(frozen=True)
class Valid:
    """Statement that a candidate is valid."""

    candidate_hash: bytes

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "candidate_hash", _exact(self.candidate_hash, HASH_LEN, "candidate hash")
        )

    def encode(self) -> bytes:
        return b"\x02" + self.candidate_hash


@dataclass(frozen=True)
class Invalid:
    """Statement that a candidate is invalid."""

    candidate_hash: bytes

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "candidate_hash", _exact(self.candidate_hash, HASH_LEN, "candidate hash")
        )

    def encode(self) -> bytes:
        return b"\x03" + self.candidate_hash


Statement = Union[Candidate, Valid, Invalid]


def decode_statement(reader: Reader) -> Statement:
    """Decode a statement from its tagged encoding."""
    index = reader.read_u8()
    if index == 1:
        return Candidate(CandidateReceipt.decode(reader))
    if index == 2:
        return Valid(reader.read(HASH_LEN))
    if index == 3:
        return Invalid(reader.read(HASH_LEN))
    raise DecodeError(f"unknown statement index {index}")


@dataclass(frozen=True)
class SignedStatement:
    """A statement with the signature and validator index of its sender."""

    statement: Statement
    signature: bytes
    sender: int

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "signature", _exact(self.signature, SIGNATURE_LEN, "signature")
        )
        if not 0 <= self.sender < 1 << 32:
            raise ValueError(f"validator index {self.sender} out of range")

    def encode(self) -> bytes:
        return self.statement.encode() + self.signature + encode_u32(self.sender)

    @classmethod
    def decode(cls, reader: Reader) -> "SignedStatement":
        statement = decode_statement(reader)
        signature = reader.read(SIGNATURE_LEN)
        return cls(statement, signature, reader.read_u32())


@dataclass(frozen=True)
class FeeSchedule:
    """A linear fee schedule for messages."""

    base: int = 0
    per_byte: int = 0

    def compute_fee(self, n_bytes: int) -> int:
        """Fee for a message of ``n_bytes``, saturating at the balance maximum."""
        return min(self.base + n_bytes * self.per_byte, MAX_BALANCE)

    def _encode(self) -> bytes:
        return encode_u128(self.base) + encode_u128(self.per_byte)

    @classmethod
    def _decode(cls, reader: Reader) -> "FeeSchedule":
        base = reader.read_u128()
        return cls(base, reader.read_u128())


@dataclass(frozen=True)
class Status:
    """Current status of a parachain."""

    head_data: bytes
    balance: int
    fee_schedule: FeeSchedule = field(default_factory=FeeSchedule)

    def encode(self) -> bytes:
        return (
            encode_bytes(self.head_data)
            + encode_u128(self.balance)
            + self.fee_schedule._encode()
        )

    @classmethod
    def decode(cls, reader: Reader) -> "Status":
        head_data = reader.read_bytes()
        balance = reader.read_u128()
        return cls(head_data, balance, FeeSchedule._decode(reader))


def sorted_outgoing(messages: Iterable[OutgoingMessage]) -> Extrinsic:
    """Build an extrinsic with messages sorted by target parachain."""
    return Extrinsic(tuple(sorted(messages)))