from paranet.collator_pool import (
    COLLATION_LIFETIME,
    CollationSlot,
    CollatorPool,
    Disconnect,
    NewRole,
    Role,
)

PARA = 5
RELAY_PARENT = bytes([1]) * 32


def key(byte):
    return bytes([byte]) * 32


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


def test_disconnect_primary_gives_new_primary():
    pool = CollatorPool()
    bad_primary, good_backup = key(0), key(1)
    assert pool.on_new_collator(bad_primary, PARA, "peer-a") == Role.PRIMARY
    assert pool.on_new_collator(good_backup, PARA, "peer-b") == Role.BACKUP
    assert pool.on_disconnect(bad_primary) == good_backup
    assert pool.on_disconnect(good_backup) is None
    assert pool.primary_for(PARA) is None


def test_disconnect_backup_removes_from_pool():
    pool = CollatorPool()
    primary, backup = key(0), key(1)
    assert pool.on_new_collator(primary, PARA, "peer-a") == Role.PRIMARY
    assert pool.on_new_collator(backup, PARA, "peer-b") == Role.BACKUP
    assert pool.on_disconnect(backup) is None
    assert pool.backups_for(PARA) == []
    assert pool.primary_for(PARA) == primary


def test_disconnect_unknown_collator():
    assert CollatorPool().on_disconnect(key(9)) is None


def test_await_before_collation():
    pool = CollatorPool()
    primary = key(0)
    assert pool.on_new_collator(primary, PARA, "peer-a") == Role.PRIMARY
    first = pool.await_collation(RELAY_PARENT, PARA)
    second = pool.await_collation(RELAY_PARENT, PARA)
    assert not first.done()
    pool.on_collation(primary, RELAY_PARENT, "collation")
    assert first.result(timeout=0) == "collation"
    assert second.result(timeout=0) == "collation"
    assert pool.collator_id_to_peer_id(primary) == "peer-a"


def test_collate_before_await():
    pool = CollatorPool()
    primary = key(0)
    assert pool.on_new_collator(primary, PARA, "peer-a") == Role.PRIMARY
    pool.on_collation(primary, RELAY_PARENT, "collation")
    future = pool.await_collation(RELAY_PARENT, PARA)
    assert future.result(timeout=0) == "collation"


def test_pending_collations_served_last_first():
    pool = CollatorPool()
    pool.on_new_collator(key(0), PARA, "peer-a")
    pool.on_collation(key(0), RELAY_PARENT, "one")
    pool.on_collation(key(0), RELAY_PARENT, "two")
    assert pool.await_collation(RELAY_PARENT, PARA).result(timeout=0) == "two"
    assert pool.await_collation(RELAY_PARENT, PARA).result(timeout=0) == "one"
    assert not pool.await_collation(RELAY_PARENT, PARA).done()


def test_collation_from_unknown_collator_ignored():
    pool = CollatorPool()
    future = pool.await_collation(RELAY_PARENT, PARA)
    pool.on_collation(key(7), RELAY_PARENT, "collation")
    assert not future.done()
    assert pool.collator_id_to_peer_id(key(7)) is None


def test_slot_stay_alive():
    slot = CollationSlot.blank_now(FakeClock())
    now = slot.live_at
    assert slot.stay_alive(now)
    assert slot.stay_alive(now + 10)
    assert not slot.stay_alive(now + COLLATION_LIFETIME)
    assert not slot.stay_alive(now + COLLATION_LIFETIME + 10)


def test_collect_garbage_by_chain_head_and_age():
    clock = FakeClock()
    pool = CollatorPool(clock)
    pool.on_new_collator(key(0), PARA, "peer-a")
    pool.on_collation(key(0), RELAY_PARENT, "collation")
    pool.collect_garbage(RELAY_PARENT)
    assert not pool.await_collation(RELAY_PARENT, PARA).done()

    other_parent = key(3)
    pool.on_collation(key(0), other_parent, "old")
    clock.now += COLLATION_LIFETIME
    pool.collect_garbage(None)
    assert not pool.await_collation(other_parent, PARA).done()


def test_maintain_peers_has_no_actions():
    assert CollatorPool().maintain_peers() == []


def test_actions_compare_by_value():
    assert Disconnect(key(1)) == Disconnect(key(1))
    assert NewRole(key(1), Role.BACKUP) != NewRole(key(1), Role.PRIMARY)