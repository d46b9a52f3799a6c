import pytest

from paranet.codec import (
    DecodeError,
    Reader,
    blake2_256,
    encode_bytes,
    encode_compact,
    encode_option,
    encode_u8,
    encode_u32,
    encode_u64,
    encode_u128,
    encode_vec,
)


def test_compact_small_value_wire_bytes():
    assert encode_compact(1) == b"\x04"


def test_compact_two_byte_wire_bytes():
    assert encode_compact(69) == b"\x15\x01"


def test_u32_wire_bytes():
    assert encode_u32(1) == b"\x01\x00\x00\x00"


@pytest.mark.parametrize(
    "value", [0, 1, 63, 64, 16383, 16384, (1 << 30) - 1, 1 << 30, (1 << 64) - 1, 1 << 100]
)
def test_compact_round_trip(value):
    assert Reader(encode_compact(value)).read_compact() == value


def test_compact_width_grows_with_value():
    assert len(encode_compact(63)) == 1
    assert len(encode_compact(64)) == 2
    assert len(encode_compact(1 << 14)) == 4
    assert len(encode_compact(1 << 30)) == 5


def test_compact_negative_rejected():
    with pytest.raises(ValueError):
        encode_compact(-1)


@pytest.mark.parametrize(
    "encoder, reader_method, value",
    [
        (encode_u8, "read_u8", 200),
        (encode_u32, "read_u32", 0xDEADBEEF),
        (encode_u64, "read_u64", (1 << 64) - 1),
        (encode_u128, "read_u128", (1 << 127) + 5),
    ],
)
def test_fixed_round_trip(encoder, reader_method, value):
    reader = Reader(encoder(value))
    assert getattr(reader, reader_method)() == value
    assert reader.remaining() == b""


@pytest.mark.parametrize("encoder, value", [(encode_u8, 256), (encode_u32, 1 << 32), (encode_u64, -1)])
def test_fixed_out_of_range(encoder, value):
    with pytest.raises(ValueError):
        encoder(value)


def test_bytes_round_trip_and_prefix():
    data = bytes(range(100))
    encoded = encode_bytes(data)
    assert encoded[len(encode_compact(100)):] == data
    assert Reader(encoded).read_bytes() == data


def test_vec_round_trip():
    items = [1, 2, 3, 70000]
    reader = Reader(encode_vec(items, encode_u32))
    count = reader.read_compact()
    assert [reader.read_u32() for _ in range(count)] == items


def test_option_tags():
    assert encode_option(None, encode_u8) == encode_u8(0)
    assert encode_option(7, encode_u8) == encode_u8(1) + encode_u8(7)


def test_short_input_raises():
    with pytest.raises(DecodeError):
        Reader(b"\x01\x02").read_u32()


def test_truncated_bytes_raise():
    with pytest.raises(DecodeError):
        Reader(encode_compact(10) + b"abc").read_bytes()


def test_remaining_does_not_consume():
    reader = Reader(b"abcdef")
    assert reader.read(2) == b"ab"
    assert reader.remaining() == b"cdef"
    assert reader.remaining() == b"cdef"
    assert reader.read(4) == b"cdef"


def test_blake2_256_shape():
    digest = blake2_256(b"attestations")
    assert len(digest) == 32
    assert digest == blake2_256(b"attestations")
    assert digest != blake2_256(b"attestation")