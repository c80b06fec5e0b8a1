"""Distributed-systems building blocks: SWIM membership, consistent hashing, quorum replication, storage, sagas and in-process RPC."""

__version__ = "0.1.0"

__all__ = [
    "errors",
    "replication",
    "storage",
    "swim",
    "topology",
    "transactions",
    "transport",
]