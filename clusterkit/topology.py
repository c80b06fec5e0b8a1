"""Shard enumeration and a consistent hash ring."""

from __future__ import annotations

import bisect
import hashlib
from collections.abc import Hashable, Iterator
from dataclasses import dataclass


@dataclass(frozen=True, order=True)
class ShardId:
    """Identifier of a single shard."""

    value: int


@dataclass
class ClusterTopology:
    """A cluster split into a fixed number of shards."""

    shard_count: int

    def shards(self) -> Iterator[ShardId]:
        """Yield every shard id from 0 up to ``shard_count``."""
        return (ShardId(i) for i in range(self.shard_count))


def _digest(data: bytes) -> int:
    return int.from_bytes(hashlib.blake2b(data, digest_size=8).digest(), "big")


def _key_bytes(key: Hashable) -> bytes:
    if isinstance(key, bytes):
        return b"b" + key
    if isinstance(key, str):
        return b"s" + key.encode("utf-8")
    return b"r" + repr(key).encode("utf-8")


def _vnode_hash(node: str, replica: int) -> int:
    return _digest(_key_bytes(node) + b"\x00" + str(replica).encode("ascii"))


class ConsistentHashRing:
    """Hash ring placing each node at ``replicas`` virtual positions."""

    def __init__(self, replicas: int) -> None:
        self.replicas = replicas
        self._positions: list[int] = []
        self._owners: dict[int, str] = {}

    def __len__(self) -> int:
        return len(self._positions)

    def add_node(self, node: str) -> None:
        for r in range(self.replicas):
            pos = _vnode_hash(node, r)
            if pos not in self._owners:
                bisect.insort(self._positions, pos)
            self._owners[pos] = node

    def remove_node(self, node: str) -> None:
        for r in range(self.replicas):
            pos = _vnode_hash(node, r)
            if self._owners.pop(pos, None) is not None:
                idx = bisect.bisect_left(self._positions, pos)
                del self._positions[idx]

    def _walk(self, key: Hashable) -> Iterator[str]:
        start = bisect.bisect_left(self._positions, _digest(_key_bytes(key)))
        for pos in self._positions[start:] + self._positions[:start]:
            yield self._owners[pos]

    def route(self, key: Hashable) -> str | None:
        """Return the node owning ``key``, or None if the ring is empty."""
        return next(self._walk(key), None)

    def nodes_for(self, key: Hashable, replicas: int) -> list[str]:
        """Return up to ``replicas`` distinct nodes for ``key``, owner first."""
        result: list[str] = []
        if replicas <= 0:
            return result
        for node in self._walk(key):
            if node not in result:
                result.append(node)
                if len(result) == replicas:
                    break
        return result