# paranet

Building blocks for the networking side of a relay-chain validator or
collator node, in plain Python.

## Modules

- `paranet.codec` – a little-endian binary codec: fixed-width integers
  (`encode_u8`, `encode_u32`, `encode_u64`, `encode_u128`), compact integers
  (`encode_compact`), length-prefixed bytes (`encode_bytes`), vectors
  (`encode_vec`) and options (`encode_option`), a `Reader` cursor for
  decoding, `DecodeError`, and `blake2_256`.
- `paranet.parachain` – `ParaId` (with `into_account` / `try_from_account`),
  `ParachainDispatchOrigin`, `IncomingMessage`, `ValidationParams`,
  `ValidationResult`, `MessageRef` and `UpwardMessageRef`.
- `paranet.primitives` – `CandidateReceipt` (with `hash` and an ed25519
  `check_signature`), `Collation`, `PoVBlock`, `BlockData`, `Extrinsic`,
  `OutgoingMessage`, `UpwardMessage`, `StructuredUnroutedIngress`, the
  statements `Candidate`, `Valid` and `Invalid`, `SignedStatement`,
  `FeeSchedule` and `Status`.
- `paranet.collator_pool` – `CollatorPool` tracks connected collators,
  assigns `Role.PRIMARY` / `Role.BACKUP`, promotes a backup when the primary
  leaves, and hands collations to waiters through `concurrent.futures.Future`.
- `paranet.local_collations` – `LocalCollations` keeps locally produced
  collations and decides which primary validators should receive them.
- `paranet.router` – `attestation_topic` and `DeferredStatements`, which
  holds validity statements about candidates not yet known, without
  duplicates.
- `paranet.keys` – `RecentValidatorIds`, a bounded list of the three most
  recent session keys.
- `paranet.knowledge` – `Knowledge`, which records which validators hold a
  candidate's block data and extrinsic, and any data stored locally.
- `paranet.sessions` – `LiveValidationSessions`, reference-counted
  validation sessions per parent hash, and `PovLookup` results.
- `paranet.protocol` – `PolkadotProtocol`, the chain-specific protocol
  handler: it exchanges session keys, tells collators their roles, accepts and
  forwards collations, and fetches proof-of-validation blocks from peers
  that are known to hold them.

## Installation

```
pip install .
```

To run the test suite:

```
pip install ".[test]"
pytest
```

## Examples

Collator roles:

```python
from paranet.collator_pool import CollatorPool, Role
from paranet.parachain import ParaId

pool = CollatorPool()
para = ParaId(5)

assert pool.on_new_collator(b"\x00" * 32, para, "peer-a") is Role.PRIMARY
assert pool.on_new_collator(b"\x01" * 32, para, "peer-b") is Role.BACKUP

# The primary leaves: the backup is promoted.
assert pool.on_disconnect(b"\x00" * 32) == b"\x01" * 32
```

Driving the protocol handler. It talks to the network only through a
context object: it calls `ctx.report_peer(peer, reputation_change)` and
`ctx.send_chain_specific(peer, data)`.

```python
from paranet.protocol import (
    PeerStatus, PolkadotProtocol, Roles, SessionKeyMessage, Status, encode_message,
)
from paranet.sessions import SessionParams


class Context:
    def __init__(self):
        self.reports = []
        self.sent = []

    def report_peer(self, who, change):
        self.reports.append((who, change))

    def send_chain_specific(self, who, data):
        self.sent.append((who, data))


ctx = Context()
protocol = PolkadotProtocol()
local_key = b"\x01" * 32
protocol.new_validation_session(
    ctx, SessionParams(parent_hash=bytes(32), local_session_key=local_key)
)

# A validator connects and is told our session key.
protocol.on_connect(ctx, "peer-a", PeerStatus(Roles.AUTHORITY, Status().encode()))
assert ctx.sent == [("peer-a", encode_message(SessionKeyMessage(local_key)))]
```

Incoming bytes go to `protocol.on_message(ctx, who, data)`, which returns
`False` (and reports the peer) if they cannot be decoded.

Time-dependent components (`CollatorPool`, `LocalCollations`) accept a
`clock` callable returning seconds, so expiry can be driven explicitly in
tests.

## What the package does not do

- There is no gossip layer: the package has no validator for gossiped
  statements or neighbour packets and no encoding of gossip messages.
  `attestation_topic` computes the topic, but routing statements over gossip
  is left to the caller.
- There is no transport. Connections, peer identities and message delivery
  come from whatever supplies the context object.
- There is no storage. An availability store can be registered with
  `PolkadotProtocol.register_availability_store`; it must offer
  `block_data(relay_parent, candidate_hash)`.
- Parachain validation code is not executed. Whether the ingress of a fetched
  PoV block matches the expected roots is decided by the `validate_ingress`
  callable given to `PolkadotProtocol`; by default any ingress is accepted.