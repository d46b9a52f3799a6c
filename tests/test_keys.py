import pytest

from paranet.keys import RECENT_SESSIONS, InsertResult, RecentValidatorIds


def test_last_keys_works():
    a, b, c, d = (bytes([i] * 32) for i in (1, 2, 3, 4))
    recent = RecentValidatorIds()

    assert recent.insert(a) == InsertResult(True, None)
    assert recent.insert(a) == InsertResult(False)
    assert recent.insert(b) == InsertResult(True, None)
    assert recent.insert(b) == InsertResult(False)
    assert recent.insert(c) == InsertResult(True, None)
    assert recent.insert(c) == InsertResult(False)
    assert recent.insert(d) == InsertResult(True, a)
    assert recent.insert(d) == InsertResult(False)


def test_order_is_oldest_first_and_bounded():
    recent = RecentValidatorIds()
    for i in range(5):
        recent.insert(bytes([i] * 32))
    assert len(recent) == RECENT_SESSIONS
    assert list(recent) == [bytes([i] * 32) for i in (2, 3, 4)]


def test_remove_drops_key():
    recent = RecentValidatorIds()
    recent.insert(b"a" * 32)
    recent.insert(b"b" * 32)
    recent.remove(b"a" * 32)
    assert list(recent) == [b"b" * 32]
    assert b"a" * 32 not in recent
    assert recent.insert(b"a" * 32) == InsertResult(True, None)


def test_remove_unknown_key_is_harmless():
    recent = RecentValidatorIds()
    recent.insert(b"a" * 32)
    recent.remove(b"z" * 32)
    assert list(recent) == [b"a" * 32]


def test_invalid_capacity():
    with pytest.raises(ValueError):
        RecentValidatorIds(0)