"""The relay-chain network protocol: session keys, collations and PoV block fetching.

The protocol is driven by the network. Each handler takes a context that
offers ``report_peer(who, cost_benefit)`` and ``send_chain_specific(who, data)``.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Hashable, Iterable
from concurrent.futures import Future, InvalidStateError
from dataclasses import dataclass, field
from enum import IntFlag
from typing import Any, Optional, Union

from .codec import (
    DecodeError,
    Reader,
    encode_option,
    encode_u8,
    encode_u64,
)
from .collator_pool import CollatorPool, Disconnect, NewRole, Role
from .keys import RecentValidatorIds
from .local_collations import LocalCollations
from .parachain import ParaId
from .primitives import (
    HASH_LEN,
    KEY_LEN,
    BlockData,
    CandidateReceipt,
    Collation,
    PoVBlock,
    StructuredUnroutedIngress,
)
from .sessions import LiveValidationSessions, SessionParams, ValidationSession

log = logging.getLogger(__name__)

COST_UNEXPECTED_MESSAGE = -200
COST_INVALID_FORMAT = -200
COST_UNKNOWN_PEER = -50
COST_COLLATOR_ALREADY_KNOWN = -100
COST_BAD_COLLATION = -1000
COST_BAD_POV_BLOCK = -1000

BENEFIT_EXPECTED_MESSAGE = 20
BENEFIT_VALID_FORMAT = 20
BENEFIT_KNOWN_PEER = 5
BENEFIT_NEW_COLLATOR = 10
BENEFIT_GOOD_COLLATION = 100
BENEFIT_GOOD_POV_BLOCK = 100

IngressValidator = Callable[[StructuredUnroutedIngress, tuple], bool]


def _exact(value: bytes, length: int, what: str) -> bytes:
    raw = bytes(value)
    if len(raw) != length:
        raise ValueError(f"{what} must be {length} bytes, got {len(raw)}")
    return raw


def _request_id(value: int) -> int:
    if not 0 <= value < 1 << 64:
        raise ValueError(f"request id {value} out of range")
    return value


def _decode_option(reader: Reader, decoder: Callable[[Reader], Any]) -> Any:
    tag = reader.read_u8()
    if tag == 0:
        return None
    if tag == 1:
        return decoder(reader)
    raise DecodeError(f"invalid option tag {tag}")


class Roles(IntFlag):
    """Roles a node advertises when it connects."""

    NONE = 0
    FULL = 0b001
    LIGHT = 0b010
    AUTHORITY = 0b100


@dataclass(frozen=True)
class PeerStatus:
    """The status a peer sends on connecting: its roles and chain-specific status."""

    roles: Roles
    chain_status: bytes = b""


@dataclass(frozen=True)
class Status:
    """Chain-specific status of a node: the collator id and parachain it collates for."""

    collating_for: Optional[tuple[bytes, ParaId]] = None

    def __post_init__(self) -> None:
        if self.collating_for is not None:
            collator, para_id = self.collating_for
            object.__setattr__(
                self, "collating_for", (_exact(collator, KEY_LEN, "collator id"), para_id)
            )

    def encode(self) -> bytes:
        return encode_option(
            self.collating_for, lambda pair: pair[0] + pair[1].encode()
        )

    @classmethod
    def decode(cls, data: bytes) -> "Status":
        reader = Reader(data)
        pair = _decode_option(
            reader, lambda r: (r.read(KEY_LEN), ParaId.decode(r))
        )
        return cls(pair)


@dataclass(frozen=True)
class SessionKeyMessage:
    """A validator telling the peer its current session key."""

    key: bytes

    def __post_init__(self) -> None:
        object.__setattr__(self, "key", _exact(self.key, KEY_LEN, "session key"))


@dataclass(frozen=True)
class RequestPovBlock:
    """A request for a proof-of-validation block."""

    request_id: int
    relay_parent: bytes
    candidate_hash: bytes

    def __post_init__(self) -> None:
        _request_id(self.request_id)
        object.__setattr__(self, "relay_parent", _exact(self.relay_parent, HASH_LEN, "relay parent"))
        object.__setattr__(
            self, "candidate_hash", _exact(self.candidate_hash, HASH_LEN, "candidate hash")
        )


@dataclass(frozen=True)
class PovBlockMessage:
    """A response to a PoV block request; ``pov`` is None if unknown."""

    request_id: int
    pov: Optional[PoVBlock]

    def __post_init__(self) -> None:
        _request_id(self.request_id)


@dataclass(frozen=True)
class RequestBlockData:
    """A request for block data."""

    request_id: int
    relay_parent: bytes
    candidate_hash: bytes

    def __post_init__(self) -> None:
        _request_id(self.request_id)
        object.__setattr__(self, "relay_parent", _exact(self.relay_parent, HASH_LEN, "relay parent"))
        object.__setattr__(
            self, "candidate_hash", _exact(self.candidate_hash, HASH_LEN, "candidate hash")
        )


@dataclass(frozen=True)
class BlockDataMessage:
    """A response to a block data request; ``block_data`` is None if unknown."""

    request_id: int
    block_data: Optional[BlockData]

    def __post_init__(self) -> None:
        _request_id(self.request_id)


@dataclass(frozen=True)
class CollatorRoleMessage:
    """Tells a collator its role."""

    role: Role


@dataclass(frozen=True)
class CollationMessage:
    """A collation on a relay parent."""

    relay_parent: bytes
    collation: Collation

    def __post_init__(self) -> None:
        object.__setattr__(self, "relay_parent", _exact(self.relay_parent, HASH_LEN, "relay parent"))


Message = Union[
    SessionKeyMessage,
    RequestPovBlock,
    PovBlockMessage,
    RequestBlockData,
    BlockDataMessage,
    CollatorRoleMessage,
    CollationMessage,
]


def encode_message(message: Message) -> bytes:
    """Encode a protocol message with its variant index."""
    match message:
        case SessionKeyMessage(key):
            return b"\x00" + key
        case RequestPovBlock(request_id, relay_parent, candidate_hash):
            return b"\x01" + encode_u64(request_id) + relay_parent + candidate_hash
        case PovBlockMessage(request_id, pov):
            return b"\x02" + encode_u64(request_id) + encode_option(pov, PoVBlock.encode)
        case RequestBlockData(request_id, relay_parent, candidate_hash):
            return b"\x03" + encode_u64(request_id) + relay_parent + candidate_hash
        case BlockDataMessage(request_id, block_data):
            return b"\x04" + encode_u64(request_id) + encode_option(block_data, BlockData.encode)
        case CollatorRoleMessage(role):
            return b"\x05" + encode_u8(int(role))
        case CollationMessage(relay_parent, collation):
            return b"\x06" + relay_parent + collation.encode()
    raise TypeError(f"not a protocol message: {message!r}")


def decode_message(data: bytes) -> Message:
    """Decode a protocol message; raises DecodeError if malformed."""
    reader = Reader(data)
    index = reader.read_u8()
    try:
        if index == 0:
            return SessionKeyMessage(reader.read(KEY_LEN))
        if index in (1, 3):
            request_id = reader.read_u64()
            relay_parent = reader.read(HASH_LEN)
            candidate_hash = reader.read(HASH_LEN)
            kind = RequestPovBlock if index == 1 else RequestBlockData
            return kind(request_id, relay_parent, candidate_hash)
        if index == 2:
            request_id = reader.read_u64()
            return PovBlockMessage(request_id, _decode_option(reader, PoVBlock.decode))
        if index == 4:
            request_id = reader.read_u64()
            return BlockDataMessage(request_id, _decode_option(reader, BlockData.decode))
        if index == 5:
            return CollatorRoleMessage(Role(reader.read_u8()))
        if index == 6:
            relay_parent = reader.read(HASH_LEN)
            return CollationMessage(relay_parent, Collation.decode(reader))
    except DecodeError:
        raise
    except ValueError as exc:
        raise DecodeError(str(exc)) from exc
    raise DecodeError(f"unknown message index {index}")


Send = Callable[[Message], Any]


class CollatorState:
    """Keeps collator-protocol messages in order: the session key goes before the role."""

    def __init__(self) -> None:
        self._primed = False
        self._role: Optional[Role] = None

    def send_key(self, key: bytes, send: Send) -> None:
        send(SessionKeyMessage(key))
        if not self._primed and self._role is not None:
            send(CollatorRoleMessage(self._role))
            self._primed = True

    def set_role(self, role: Role, send: Send) -> None:
        if self._primed:
            send(CollatorRoleMessage(role))
        self._role = role

    def role(self) -> Optional[Role]:
        return self._role


@dataclass
class _PeerInfo:
    collating_for: Optional[tuple[bytes, ParaId]]
    claimed_validator: bool
    validator_keys: RecentValidatorIds = field(default_factory=RecentValidatorIds)
    collator_state: CollatorState = field(default_factory=CollatorState)

    def should_send_key(self) -> bool:
        return self.claimed_validator or self.collating_for is not None


@dataclass
class _PovBlockRequest:
    validation_session_parent: bytes
    candidate_hash: bytes
    block_data_hash: bytes
    future: Future
    canon_roots: StructuredUnroutedIngress
    attempted_peers: set = field(default_factory=set)


def _deliver(future: Future, value: Any) -> None:
    if future.done():
        return
    try:
        future.set_result(value)
    except InvalidStateError:
        pass


def _accept_any_ingress(canon_roots: StructuredUnroutedIngress, ingress: tuple) -> bool:
    return True


class PolkadotProtocol:
    """Network protocol handler for parachain validation and collation.

    ``validate_ingress(canon_roots, ingress)`` decides whether the ingress of a
    fetched PoV block matches the expected roots; by default any is accepted.
    """

    def __init__(
        self,
        collating_for: Optional[tuple[bytes, ParaId]] = None,
        validate_ingress: Optional[IngressValidator] = None,
    ) -> None:
        self._collating_for = Status(collating_for).collating_for
        self._validate_ingress = validate_ingress or _accept_any_ingress
        self._peers: dict[Hashable, _PeerInfo] = {}
        self._collators = CollatorPool()
        self._validators: dict[bytes, Hashable] = {}
        self._local_collations = LocalCollations()
        self._live_sessions = LiveValidationSessions()
        self._in_flight: dict[tuple[int, Hashable], _PovBlockRequest] = {}
        self._pending: list[_PovBlockRequest] = []
        self._store: Any = None
        self._next_request_id = 1

    @staticmethod
    def _send(ctx, who, message: Message) -> None:
        log.debug("Sending message to %s: %r", who, message)
        ctx.send_chain_specific(who, encode_message(message))

    def _sender(self, ctx, who) -> Send:
        return lambda message: self._send(ctx, who, message)

    def status(self) -> bytes:
        """The encoded chain-specific status of this node."""
        return Status(self._collating_for).encode()

    def on_connect(self, ctx, who, status: PeerStatus) -> None:
        try:
            local_status = Status.decode(status.chain_status)
        except DecodeError:
            local_status = Status()

        peer_info = _PeerInfo(
            collating_for=local_status.collating_for,
            claimed_validator=Roles.AUTHORITY in status.roles,
        )

        if local_status.collating_for is not None:
            collator_id, para_id = local_status.collating_for
            if self._collator_peer(collator_id) is not None:
                ctx.report_peer(who, COST_COLLATOR_ALREADY_KNOWN)
                return
            ctx.report_peer(who, BENEFIT_NEW_COLLATOR)
            role = self._collators.on_new_collator(collator_id, para_id, who)
            peer_info.collator_state.set_role(role, self._sender(ctx, who))

        if peer_info.should_send_key():
            for key in self._live_sessions.recent_keys():
                peer_info.collator_state.send_key(key, self._sender(ctx, who))

        self._peers[who] = peer_info
        self._dispatch_pending_requests(ctx)

    def on_disconnect(self, ctx, who) -> None:
        info = self._peers.pop(who, None)
        if info is None:
            return

        if info.collating_for is not None:
            new_primary = self._collators.on_disconnect(info.collating_for[0])
            if new_primary is not None:
                found = self._collator_peer(new_primary)
                if found is not None:
                    primary_peer, primary_info = found
                    primary_info.collator_state.set_role(
                        Role.PRIMARY, self._sender(ctx, primary_peer)
                    )

        for key in info.validator_keys:
            self._validators.pop(key, None)
            self._local_collations.on_disconnect(key)

        for request_key in [k for k in self._in_flight if k[1] == who]:
            self._pending.append(self._in_flight.pop(request_key))
        self._dispatch_pending_requests(ctx)

    def on_message(self, ctx, who, data: bytes) -> bool:
        """Handle chain-specific message bytes; False if they could not be decoded."""
        try:
            message = decode_message(data)
        except DecodeError:
            log.debug("Bad message from %s", who)
            ctx.report_peer(who, COST_INVALID_FORMAT)
            return False
        ctx.report_peer(who, BENEFIT_VALID_FORMAT)
        self._on_protocol_message(ctx, who, message)
        return True

    def _on_protocol_message(self, ctx, who, message: Message) -> None:
        log.debug("Message from %s: %r", who, message)
        match message:
            case SessionKeyMessage(key):
                self._on_session_key(ctx, who, key)
            case RequestPovBlock(request_id, relay_parent, candidate_hash):
                pov = self._live_sessions.pov_block(relay_parent, candidate_hash).pov
                self._send(ctx, who, PovBlockMessage(request_id, pov))
            case RequestBlockData(request_id, relay_parent, candidate_hash):
                pov = self._live_sessions.pov_block(relay_parent, candidate_hash).pov
                block_data = pov.block_data if pov is not None else None
                if block_data is None and self._store is not None:
                    block_data = self._store.block_data(relay_parent, candidate_hash)
                self._send(ctx, who, BlockDataMessage(request_id, block_data))
            case PovBlockMessage(request_id, pov):
                self._on_pov_block(ctx, who, request_id, pov)
            case BlockDataMessage():
                # Bare block data is never requested by this node.
                ctx.report_peer(who, COST_UNEXPECTED_MESSAGE)
            case CollationMessage(relay_parent, collation):
                self._on_collation(ctx, who, relay_parent, collation)
            case CollatorRoleMessage(role):
                self._on_new_role(ctx, who, role)

    def _on_session_key(self, ctx, who, key: bytes) -> None:
        info = self._peers.get(who)
        if info is None:
            log.debug("Message received from unconnected peer %s", who)
            return
        if not info.claimed_validator:
            ctx.report_peer(who, COST_UNEXPECTED_MESSAGE)
            return
        ctx.report_peer(who, BENEFIT_EXPECTED_MESSAGE)

        inserted = info.validator_keys.insert(key)
        if not inserted.is_new:
            new_collations = []
        elif inserted.evicted is not None:
            self._validators.pop(inserted.evicted, None)
            new_collations = self._local_collations.fresh_key(inserted.evicted, key)
        else:
            role = info.collator_state.role()
            new_collations = (
                [] if role is None else self._local_collations.note_validator_role(key, role)
            )

        for relay_parent, collation in new_collations:
            self._send(ctx, who, CollationMessage(relay_parent, collation))

        self._validators[key] = who
        self._dispatch_pending_requests(ctx)

    def _process_response(self, request: _PovBlockRequest, pov: PoVBlock) -> bool:
        if pov.block_data.hash() != request.block_data_hash:
            return False
        if not self._validate_ingress(request.canon_roots, pov.ingress):
            return False
        _deliver(request.future, pov)
        return True

    def _on_pov_block(self, ctx, who, request_id: int, pov: Optional[PoVBlock]) -> None:
        request = self._in_flight.pop((request_id, who), None)
        if request is None:
            ctx.report_peer(who, COST_UNEXPECTED_MESSAGE)
            return
        if pov is not None:
            if self._process_response(request, pov):
                ctx.report_peer(who, BENEFIT_GOOD_POV_BLOCK)
                return
            ctx.report_peer(who, COST_BAD_POV_BLOCK)
        else:
            ctx.report_peer(who, BENEFIT_EXPECTED_MESSAGE)
        self._pending.append(request)
        self._dispatch_pending_requests(ctx)

    def _on_new_role(self, ctx, who, role: Role) -> None:
        info = self._peers.get(who)
        if info is None:
            log.debug("Message received from unconnected peer %s", who)
            return
        log.debug("New collator role %s from %s", role.name, who)
        if not len(info.validator_keys):
            ctx.report_peer(who, COST_UNEXPECTED_MESSAGE)
            return
        for key in info.validator_keys:
            for relay_parent, collation in self._local_collations.note_validator_role(key, role):
                self._send(ctx, who, CollationMessage(relay_parent, collation))

    def _on_collation(self, ctx, who, relay_parent: bytes, collation: Collation) -> None:
        info = self._peers.get(who)
        if info is None:
            ctx.report_peer(who, COST_UNKNOWN_PEER)
            return
        ctx.report_peer(who, BENEFIT_KNOWN_PEER)
        if info.collating_for is None:
            ctx.report_peer(who, COST_UNEXPECTED_MESSAGE)
            return
        ctx.report_peer(who, BENEFIT_EXPECTED_MESSAGE)
        collator_id, para_id = info.collating_for
        receipt = collation.receipt
        structurally_valid = (
            receipt.parachain_index == para_id and receipt.collator == collator_id
        )
        if structurally_valid and receipt.check_signature():
            log.debug("Received collation for parachain %d from %s", para_id.value, who)
            ctx.report_peer(who, BENEFIT_GOOD_COLLATION)
            self._collators.on_collation(collator_id, relay_parent, collation)
        else:
            ctx.report_peer(who, COST_INVALID_FORMAT)

    def _dispatch_pending_requests(self, ctx) -> None:
        still_pending = []
        pending, self._pending = self._pending, []
        for request in pending:
            lookup = self._live_sessions.pov_block(
                request.validation_session_parent, request.candidate_hash
            )
            if lookup.pov is not None:
                _deliver(request.future, lookup.pov)
                continue
            if not lookup.session_known:
                request.future.cancel()
                continue

            target = None
            for key in lookup.holders:
                if key in self._validators and key not in request.attempted_peers:
                    request.attempted_peers.add(key)
                    target = self._validators[key]
                    break

            if target is None:
                still_pending.append(request)
                continue

            request_id = self._next_request_id
            self._next_request_id += 1
            self._send(
                ctx,
                target,
                RequestPovBlock(
                    request_id, request.validation_session_parent, request.candidate_hash
                ),
            )
            self._in_flight[(request_id, target)] = request
        self._pending = still_pending + self._pending

    def maintain_peers(self, ctx) -> None:
        """Periodic maintenance: collect garbage, retry requests, apply collator actions."""
        self._collators.collect_garbage(None)
        self._local_collations.collect_garbage(None)
        self._dispatch_pending_requests(ctx)
        for action in self._collators.maintain_peers():
            if isinstance(action, Disconnect):
                self.disconnect_bad_collator(ctx, action.collator_id)
            elif isinstance(action, NewRole):
                found = self._collator_peer(action.collator_id)
                if found is not None:
                    peer, info = found
                    info.collator_state.set_role(action.role, self._sender(ctx, peer))

    def on_block_imported(self, ctx, block_hash: bytes, parent_hash: bytes) -> None:
        self._collators.collect_garbage(bytes(block_hash))
        self._local_collations.collect_garbage(bytes(parent_hash))

    def new_validation_session(self, ctx, params: SessionParams) -> ValidationSession:
        """Note a validation session; a new local key is sent to interested peers."""
        session, new_local = self._live_sessions.new_validation_session(params)
        if new_local is not None:
            for who, info in self._peers.items():
                if info.should_send_key():
                    info.collator_state.send_key(new_local, self._sender(ctx, who))
        return session

    def remove_validation_session(self, parent_hash: bytes) -> bool:
        """Release a validation session; True if it was actually removed."""
        return self._live_sessions.remove(parent_hash)

    def fetch_pov_block(
        self,
        ctx,
        candidate: CandidateReceipt,
        relay_parent: bytes,
        canon_roots: StructuredUnroutedIngress,
    ) -> Future:
        """Fetch the PoV block of a candidate; the future is cancelled if the session is unknown."""
        future: Future = Future()
        self._pending.append(
            _PovBlockRequest(
                validation_session_parent=bytes(relay_parent),
                candidate_hash=candidate.hash(),
                block_data_hash=candidate.block_data_hash,
                future=future,
                canon_roots=canon_roots,
            )
        )
        self._dispatch_pending_requests(ctx)
        return future

    def await_collation(self, relay_parent: bytes, para_id: ParaId) -> Future:
        log.debug("Awaiting collation for parachain %d", para_id.value)
        return self._collators.await_collation(bytes(relay_parent), para_id)

    def _collator_peer(self, collator_id: bytes) -> Optional[tuple[Hashable, _PeerInfo]]:
        for who, info in self._peers.items():
            if info.collating_for is not None and info.collating_for[0] == collator_id:
                return who, info
        return None

    def disconnect_bad_collator(self, ctx, collator_id: bytes) -> None:
        found = self._collator_peer(collator_id)
        if found is not None:
            ctx.report_peer(found[0], COST_BAD_COLLATION)

    def add_local_collation(
        self, ctx, relay_parent: bytes, targets: Iterable[bytes], collation: Collation
    ) -> None:
        """Store a local collation and send it to the primary validators it targets."""
        relay_parent = bytes(relay_parent)
        for key, local in self._local_collations.add_collation(relay_parent, targets, collation):
            who = self._validators.get(key)
            if who is None:
                log.warning("Encountered tracked but disconnected validator %s", key.hex())
                continue
            self._send(ctx, who, CollationMessage(relay_parent, local))

    def register_availability_store(self, store) -> None:
        """Register a store offering ``block_data(relay_parent, candidate_hash)``."""
        self._store = store

    def collator_id_to_peer_id(self, collator_id: bytes) -> Optional[Hashable]:
        return self._collators.collator_id_to_peer_id(collator_id)

    def known_validator(self, key: bytes) -> Optional[Hashable]:
        """The peer currently using a validator session key, if any."""
        return self._validators.get(key)

    def recent_keys(self) -> list:
        """Recent local session keys, oldest first."""
        return self._live_sessions.recent_keys()