import pytest
from nacl.signing import SigningKey

from paranet.codec import DecodeError, Reader, blake2_256
from paranet.parachain import ParaId, ParachainDispatchOrigin
from paranet.primitives import (
    MAX_BALANCE,
    BlockData,
    Candidate,
    CandidateReceipt,
    Collation,
    Extrinsic,
    FeeSchedule,
    Invalid,
    OutgoingMessage,
    PoVBlock,
    SignedStatement,
    Status,
    StructuredUnroutedIngress,
    UpwardMessage,
    Valid,
    decode_statement,
    sorted_outgoing,
)


def make_receipt(**overrides):
    fields = dict(
        parachain_index=ParaId(5),
        collator=b"\xff" * 32,
        signature=bytes(64),
        head_data=bytes([9, 9, 9]),
        egress_queue_roots=(),
        fees=1_000_000,
        block_data_hash=BlockData(bytes([1, 2, 3, 4])).hash(),
        upward_messages=(),
    )
    fields.update(overrides)
    return CandidateReceipt(**fields)


def test_block_data_encoding_is_length_prefixed():
    assert BlockData(bytes([1, 2, 3, 4])).encode() == bytes([16, 1, 2, 3, 4])


def test_block_data_hash():
    data = bytes([1, 2, 3, 4])
    assert BlockData(data).hash() == blake2_256(data)
    assert len(BlockData(data).hash()) == 32
    assert BlockData(data).hash() != BlockData(b"other").hash()


def test_block_data_round_trip():
    original = BlockData(b"payload")
    assert BlockData.decode(Reader(original.encode())) == original


def test_pov_block_encoding():
    assert PoVBlock(BlockData(b"\x04\x05")).encode() == b"\x08\x04\x05\x00"
    pov = PoVBlock(BlockData(b"\x04\x05"), ((ParaId(1), (b"\xaa",)),))
    assert pov.encode() == b"\x08\x04\x05\x04\x01\x00\x00\x00\x04\x04\xaa"


def test_pov_block_round_trip():
    pov = PoVBlock(BlockData(b"abc"), [(ParaId(1), [b"x", b"yz"]), (ParaId(2), [])])
    assert PoVBlock.decode(Reader(pov.encode())) == pov


def test_receipt_encoding_starts_with_para_id_and_collator():
    encoded = make_receipt().encode()
    assert encoded[:4] == b"\x05\x00\x00\x00"
    assert encoded[4:36] == b"\xff" * 32


def test_receipt_round_trip_and_hash():
    receipt = make_receipt(
        egress_queue_roots=((ParaId(2), b"\x07" * 32),),
        upward_messages=(UpwardMessage(ParachainDispatchOrigin.PARACHAIN, b"up"),),
    )
    decoded = CandidateReceipt.decode(Reader(receipt.encode()))
    assert decoded == receipt
    assert decoded.hash() == receipt.hash()
    assert receipt.hash() == blake2_256(receipt.encode())


def test_receipt_hash_changes_with_content():
    assert make_receipt().hash() != make_receipt(fees=1).hash()


def test_receipt_rejects_bad_lengths():
    with pytest.raises(ValueError):
        make_receipt(collator=b"\x01" * 31)
    with pytest.raises(ValueError):
        make_receipt(block_data_hash=b"\x00" * 5)


def test_check_signature():
    signer = SigningKey(bytes(range(32)))
    block_hash = BlockData(bytes([1, 2, 3, 4])).hash()
    signature = signer.sign(block_hash).signature
    receipt = make_receipt(
        collator=bytes(signer.verify_key), signature=signature, block_data_hash=block_hash
    )
    assert receipt.check_signature() is True
    tampered = make_receipt(
        collator=bytes(signer.verify_key),
        signature=signature,
        block_data_hash=b"\x01" * 32,
    )
    assert tampered.check_signature() is False


def test_default_signature_does_not_verify():
    assert make_receipt().check_signature() is False


def test_receipts_ordered_by_para_then_head():
    a = make_receipt(parachain_index=ParaId(1), head_data=b"\x09")
    b = make_receipt(parachain_index=ParaId(2), head_data=b"\x01")
    c = make_receipt(parachain_index=ParaId(2), head_data=b"\x02")
    assert sorted([c, b, a]) == [a, b, c]


def test_outgoing_messages_ordered_by_target():
    first = OutgoingMessage(ParaId(1), b"z")
    second = OutgoingMessage(ParaId(2), b"a")
    assert sorted([second, first]) == [first, second]
    assert sorted_outgoing([second, first]).outgoing_messages == (first, second)
    assert OutgoingMessage(ParaId(1), b"a") != OutgoingMessage(ParaId(1), b"b")


def test_extrinsic_encoding():
    extrinsic = Extrinsic((OutgoingMessage(ParaId(3), b"\x09"),))
    assert extrinsic.encode() == b"\x04\x03\x00\x00\x00\x04\x09"


def test_upward_message_round_trip_and_bad_origin():
    message = UpwardMessage(ParachainDispatchOrigin.SIGNED, b"hi")
    assert message.encode() == b"\x00\x08hi"
    assert UpwardMessage.decode(Reader(message.encode())) == message
    with pytest.raises(DecodeError):
        UpwardMessage.decode(Reader(b"\x05\x00"))


def test_collation_round_trip():
    collation = Collation(make_receipt(), PoVBlock(BlockData(bytes([4, 5, 6]))))
    assert Collation.decode(Reader(collation.encode())) == collation


def test_structured_ingress_len_and_iter():
    ingress = StructuredUnroutedIngress(
        [
            (1, [(ParaId(2), b"\x01" * 32)]),
            (3, [(ParaId(4), b"\x02" * 32), (ParaId(5), b"\x03" * 32)]),
        ]
    )
    assert len(ingress) == 3
    assert list(ingress) == [
        (1, ParaId(2), b"\x01" * 32),
        (3, ParaId(4), b"\x02" * 32),
        (3, ParaId(5), b"\x03" * 32),
    ]
    assert len(StructuredUnroutedIngress()) == 0


def test_statement_encodings():
    assert Valid(b"\x01" * 32).encode() == b"\x02" + b"\x01" * 32
    assert Invalid(b"\x01" * 32).encode() == b"\x03" + b"\x01" * 32
    receipt = make_receipt()
    assert Candidate(receipt).encode() == b"\x01" + receipt.encode()
    assert Candidate(receipt).candidate_hash == receipt.hash()


@pytest.mark.parametrize(
    "statement",
    [Valid(b"\x01" * 32), Invalid(b"\x02" * 32), Candidate(make_receipt())],
)
def test_statement_round_trip(statement):
    assert decode_statement(Reader(statement.encode())) == statement


def test_unknown_statement_index():
    with pytest.raises(DecodeError):
        decode_statement(Reader(b"\x09" + b"\x00" * 32))


def test_signed_statement_round_trip():
    signed = SignedStatement(Valid(b"\x01" * 32), b"\xff" * 64, 1)
    encoded = signed.encode()
    assert encoded[-4:] == b"\x01\x00\x00\x00"
    assert SignedStatement.decode(Reader(encoded)) == signed


def test_fee_schedule():
    assert FeeSchedule(base=1, per_byte=2).compute_fee(10) == 21
    assert FeeSchedule(base=MAX_BALANCE, per_byte=1).compute_fee(5) == MAX_BALANCE
    assert FeeSchedule().compute_fee(1000) == 0


def test_status_round_trip():
    status = Status(b"\x01\x02", 500, FeeSchedule(3, 4))
    assert Status.decode(Reader(status.encode())) == status