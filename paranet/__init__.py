"""Parachain primitives, collator bookkeeping, validation sessions and the protocol handler."""

__version__ = "0.1.0"

__all__ = [
    "codec",
    "parachain",
    "primitives",
    "collator_pool",
    "local_collations",
    "router",
    "keys",
    "knowledge",
    "sessions",
    "protocol",
]