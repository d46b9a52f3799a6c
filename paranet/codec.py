"""Little-endian binary encoding used by every wire format in the package.

Fixed-width integers are little-endian, variable-length sequences carry a
compact length prefix, options carry a one-byte tag.
"""

from __future__ import annotations

import hashlib
from collections.abc import Callable, Iterable
from typing import Optional, TypeVar

T = TypeVar("T")

_MAX_BIG_COMPACT_BYTES = 0b111111 + 4


class DecodeError(ValueError):
    """Raised when input bytes do not hold a valid encoding."""


def _fixed(value: int, bits: int) -> bytes:
    if not 0 <= value < 1 << bits:
        raise ValueError(f"{value} does not fit in an unsigned {bits}-bit integer")
    return value.to_bytes(bits // 8, "little")


def encode_u8(value: int) -> bytes:
    """Encode an unsigned 8-bit integer."""
    return _fixed(value, 8)


def encode_u32(value: int) -> bytes:
    """Encode an unsigned 32-bit integer."""
    return _fixed(value, 32)


def encode_u64(value: int) -> bytes:
    """Encode an unsigned 64-bit integer."""
    return _fixed(value, 64)


def encode_u128(value: int) -> bytes:
    """Encode an unsigned 128-bit integer."""
    return _fixed(value, 128)


def encode_compact(value: int) -> bytes:
    """Encode a non-negative integer in compact (variable-width) form."""
    if value < 0:
        raise ValueError("compact integers cannot be negative")
    if value < 1 << 6:
        return bytes([value << 2])
    if value < 1 << 14:
        return ((value << 2) | 0b01).to_bytes(2, "little")
    if value < 1 << 30:
        return ((value << 2) | 0b10).to_bytes(4, "little")
    length = max(4, (value.bit_length() + 7) // 8)
    if length > _MAX_BIG_COMPACT_BYTES:
        raise ValueError(f"{value} is too large for compact encoding")
    return bytes([((length - 4) << 2) | 0b11]) + value.to_bytes(length, "little")


def encode_bytes(data: bytes) -> bytes:
    """Encode a byte string with a compact length prefix."""
    return encode_compact(len(data)) + bytes(data)


def encode_vec(items: Iterable[T], encoder: Callable[[T], bytes]) -> bytes:
    """Encode a sequence as a compact count followed by each encoded item."""
    parts = [encoder(item) for item in items]
    return encode_compact(len(parts)) + b"".join(parts)


def encode_option(value: Optional[T], encoder: Callable[[T], bytes]) -> bytes:
    """Encode an optional value with a one-byte presence tag."""
    if value is None:
        return b"\x00"
    return b"\x01" + encoder(value)


def blake2_256(data: bytes) -> bytes:
    """Return the 32-byte BLAKE2b digest of ``data``."""
    return hashlib.blake2b(bytes(data), digest_size=32).digest()


class Reader:
    """A cursor over encoded bytes."""

    def __init__(self, data: bytes) -> None:
        self._data = bytes(data)
        self._pos = 0

    def read(self, n: int) -> bytes:
        """Consume and return exactly ``n`` bytes."""
        if n < 0:
            raise ValueError("cannot read a negative number of bytes")
        end = self._pos + n
        if end > len(self._data):
            raise DecodeError(
                f"needed {n} bytes but only {len(self._data) - self._pos} remain"
            )
        chunk = self._data[self._pos:end]
        self._pos = end
        return chunk

    def read_u8(self) -> int:
        return self.read(1)[0]

    def read_u32(self) -> int:
        return int.from_bytes(self.read(4), "little")

    def read_u64(self) -> int:
        return int.from_bytes(self.read(8), "little")

    def read_u128(self) -> int:
        return int.from_bytes(self.read(16), "little")

    def read_compact(self) -> int:
        first = self.read_u8()
        mode = first & 0b11
        if mode == 0b00:
            return first >> 2
        if mode == 0b01:
            return int.from_bytes(bytes([first]) + self.read(1), "little") >> 2
        if mode == 0b10:
            return int.from_bytes(bytes([first]) + self.read(3), "little") >> 2
        return int.from_bytes(self.read((first >> 2) + 4), "little")

    def read_bytes(self) -> bytes:
        """Consume a compact-length-prefixed byte string."""
        return self.read(self.read_compact())

    def remaining(self) -> bytes:
        """Return the unread bytes without consuming them."""
        return self._data[self._pos:]