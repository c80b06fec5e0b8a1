"""Consistency levels, quorum policies and a local replicator."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Hashable, Sequence
from enum import Enum
from typing import Any

from clusterkit.errors import NetworkError
from clusterkit.storage import IdempotencyStore
from clusterkit.topology import ConsistentHashRing


class ConsistencyLevel(Enum):
    STRONG = "strong"
    LINEARIZABLE = "linearizable"
    QUORUM = "quorum"
    SEQUENTIAL = "sequential"
    CAUSAL = "causal"
    SESSION = "session"
    MONOTONIC_READ = "monotonic_read"
    MONOTONIC_WRITE = "monotonic_write"
    READ_YOUR_WRITES = "read_your_writes"
    MONOTONIC_READS = "monotonic_reads"
    MONOTONIC_WRITES = "monotonic_writes"
    WRITES_FOLLOW_READS = "writes_follow_reads"
    CAUSAL_CONSISTENCY = "causal_consistency"
    STRONG_EVENTUAL = "strong_eventual"
    EVENTUAL = "eventual"


_SINGLE_ACK_LEVELS = frozenset({ConsistencyLevel.STRONG_EVENTUAL, ConsistencyLevel.EVENTUAL})


class QuorumPolicy(ABC):
    """Number of acknowledgements a replication round needs."""

    @staticmethod
    @abstractmethod
    def required_acks(total: int, level: ConsistencyLevel) -> int:
        """Return the acks needed out of ``total`` replicas at ``level``."""


class MajorityQuorum(QuorumPolicy):
    """Strict majority for every level except the eventual ones, which need one."""

    @staticmethod
    def required_acks(total: int, level: ConsistencyLevel) -> int:
        if level in _SINGLE_ACK_LEVELS:
            return 1
        return total // 2 + 1


class ReadQuorumPolicy(ABC):
    @staticmethod
    @abstractmethod
    def required_read_acks(total: int, level: ConsistencyLevel) -> int:
        """Return the read acks needed out of ``total`` replicas."""


class WriteQuorumPolicy(ABC):
    @staticmethod
    @abstractmethod
    def required_write_acks(total: int, level: ConsistencyLevel) -> int:
        """Return the write acks needed out of ``total`` replicas."""


class MajorityRead(ReadQuorumPolicy):
    @staticmethod
    def required_read_acks(total: int, level: ConsistencyLevel) -> int:
        return MajorityQuorum.required_acks(total, level)


class MajorityWrite(WriteQuorumPolicy):
    @staticmethod
    def required_write_acks(total: int, level: ConsistencyLevel) -> int:
        return MajorityQuorum.required_acks(total, level)


class CompositeQuorum:
    """Combines separately chosen read and write quorum policies."""

    def __init__(
        self,
        read_policy: type[ReadQuorumPolicy] | ReadQuorumPolicy = MajorityRead,
        write_policy: type[WriteQuorumPolicy] | WriteQuorumPolicy = MajorityWrite,
    ) -> None:
        self.read_policy = read_policy
        self.write_policy = write_policy

    def required_read(self, total: int, level: ConsistencyLevel) -> int:
        return self.read_policy.required_read_acks(total, level)

    def required_write(self, total: int, level: ConsistencyLevel) -> int:
        return self.write_policy.required_write_acks(total, level)


class Replicator(ABC):
    """Replicates commands across the cluster."""

    @abstractmethod
    def replicate(self, command: Any, level: ConsistencyLevel) -> None:
        """Replicate ``command``; raise NetworkError if the quorum is not met."""


class LocalReplicator(Replicator):
    """Replicator simulating per-node success from the ``successes`` map.

    Nodes missing from ``successes`` count as acknowledging.
    """

    def __init__(
        self,
        ring: ConsistentHashRing,
        nodes: Sequence[str],
        idempotency: IdempotencyStore[Any] | None = None,
    ) -> None:
        self.ring = ring
        self.nodes = list(nodes)
        self.successes: dict[str, bool] = {}
        self.idempotency = idempotency

    def replicate_to_nodes(
        self, targets: Sequence[str], command: Any, level: ConsistencyLevel
    ) -> None:
        """Replicate to ``targets``; raise NetworkError when acks fall short."""
        need = MajorityQuorum.required_acks(len(targets), level)
        acks = sum(1 for node in targets if self.successes.get(node, True))
        if acks < need:
            raise NetworkError(f"acks {acks}/{need}")

    def replicate_idempotent(
        self,
        key: Hashable,
        targets: Sequence[str],
        command: Any,
        level: ConsistencyLevel,
    ) -> None:
        """Replicate once per ``key``; repeats of a recorded key are no-ops."""
        if self.idempotency is not None and self.idempotency.seen(key):
            return
        self.replicate_to_nodes(targets, command, level)
        if self.idempotency is not None:
            self.idempotency.record(key)

    def replicate(self, command: Any, level: ConsistencyLevel) -> None:
        self.replicate_to_nodes(list(self.nodes), command, level)