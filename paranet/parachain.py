"""Primitive types for creating or validating a parachain."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Optional

from .codec import DecodeError, Reader, encode_bytes, encode_u32, encode_vec

_ACCOUNT_PREFIX = b"para"


@dataclass(frozen=True, order=True)
class ParaId:
    """Unique identifier of a parachain (an unsigned 32-bit integer)."""

    value: int

    def __post_init__(self) -> None:
        if not 0 <= self.value < 1 << 32:
            raise ValueError(f"parachain id {self.value} out of range")

    def __int__(self) -> int:
        return self.value

    def encode(self) -> bytes:
        return encode_u32(self.value)

    @classmethod
    def decode(cls, reader: Reader) -> "ParaId":
        return cls(reader.read_u32())

    def into_account(self, length: int = 32) -> bytes:
        """Derive an account id: ``b"para"`` + encoded id, zero-padded to ``length``."""
        if length < 0:
            raise ValueError("account length cannot be negative")
        raw = _ACCOUNT_PREFIX + self.encode()
        return raw[:length].ljust(length, b"\x00")

    @classmethod
    def try_from_account(cls, account: bytes) -> Optional["ParaId"]:
        """Recover a parachain id from an account id, or None if it is not one."""
        if account[:4] != _ACCOUNT_PREFIX:
            return None
        reader = Reader(account[4:])
        try:
            result = cls.decode(reader)
        except DecodeError:
            return None
        if any(reader.remaining()):
            return None
        return result


class ParachainDispatchOrigin(IntEnum):
    """Which origin a parachain's upward message is dispatched from."""

    SIGNED = 0
    PARACHAIN = 1


@dataclass(frozen=True)
class IncomingMessage:
    """A message arriving from another parachain."""

    source: ParaId
    data: bytes

    def encode(self) -> bytes:
        return self.source.encode() + encode_bytes(self.data)

    @classmethod
    def decode(cls, reader: Reader) -> "IncomingMessage":
        source = ParaId.decode(reader)
        return cls(source, reader.read_bytes())


@dataclass(frozen=True)
class ValidationParams:
    """Parameters for evaluating the parachain validity function."""

    block_data: bytes
    parent_head: bytes
    ingress: list[IncomingMessage] = field(default_factory=list)

    def encode(self) -> bytes:
        return (
            encode_bytes(self.block_data)
            + encode_bytes(self.parent_head)
            + encode_vec(self.ingress, IncomingMessage.encode)
        )

    @classmethod
    def decode(cls, data: bytes) -> "ValidationParams":
        reader = Reader(data)
        block_data = reader.read_bytes()
        parent_head = reader.read_bytes()
        ingress = [IncomingMessage.decode(reader) for _ in range(reader.read_compact())]
        return cls(block_data, parent_head, ingress)


@dataclass(frozen=True)
class ValidationResult:
    """The result of parachain validation."""

    head_data: bytes

    def encode(self) -> bytes:
        return encode_bytes(self.head_data)

    @classmethod
    def decode(cls, data: bytes) -> "ValidationResult":
        return cls(Reader(data).read_bytes())


@dataclass(frozen=True)
class MessageRef:
    """A message addressed to another parachain."""

    target: ParaId
    data: bytes


@dataclass(frozen=True)
class UpwardMessageRef:
    """A message addressed to the relay chain."""

    origin: ParachainDispatchOrigin
    data: bytes