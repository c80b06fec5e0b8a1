"""SWIM failure detection and gossip-based membership views."""

from __future__ import annotations

import random
import threading
import time
from abc import ABC, abstractmethod
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field, replace
from enum import Enum


class SwimMemberState(Enum):
    ALIVE = "alive"
    SUSPECT = "suspect"
    FAULTY = "faulty"


@dataclass
class SwimEvent:
    """A state observation about one member."""

    node_id: str
    state: SwimMemberState
    incarnation: int
    timestamp: float = field(default_factory=time.time)


class SwimTransport(ABC):
    """Network operations needed by a SWIM node."""

    @abstractmethod
    def ping(self, to: str) -> bool:
        """Probe ``to`` directly."""

    def ping_req(self, relay: str, target: str) -> bool:
        """Ask ``relay`` to probe ``target``; defaults to a direct ping."""
        return self.ping(target)

    def ack(self, sender: str) -> bool:
        return self.ping(sender)

    @abstractmethod
    def gossip(self, to: str, events: Sequence[SwimEvent]) -> bool:
        """Send ``events`` to ``to``."""


class EnhancedSwimTransport(SwimTransport):
    """Simulated transport with network delay and probabilistic success."""

    def __init__(self, timeout: float, max_retries: int, network_delay: float) -> None:
        self.timeout = timeout
        self.max_retries = max_retries
        self.network_delay = network_delay

    def with_timeout(self, timeout: float) -> EnhancedSwimTransport:
        self.timeout = timeout
        return self

    def with_max_retries(self, max_retries: int) -> EnhancedSwimTransport:
        self.max_retries = max_retries
        return self

    def with_network_delay(self, delay: float) -> EnhancedSwimTransport:
        self.network_delay = delay
        return self

    @staticmethod
    def _simulate(success_rate: float) -> bool:
        return random.random() < success_rate

    def ping(self, to: str) -> bool:
        time.sleep(self.network_delay)
        return self._simulate(0.9)

    def ping_req(self, relay: str, target: str) -> bool:
        time.sleep(self.network_delay * 2)
        return self._simulate(0.8)

    def ack(self, sender: str) -> bool:
        time.sleep(self.network_delay)
        return self._simulate(0.95)

    def gossip(self, to: str, events: Sequence[SwimEvent]) -> bool:
        time.sleep(self.network_delay)
        return self._simulate(0.85)


@dataclass
class MemberInfo:
    state: SwimMemberState
    version: int = 0
    incarnation: int = 0
    last_seen: float = field(default_factory=time.time)


class SwimNode:
    """A cluster member running the SWIM probe protocol."""

    def __init__(self, node_id: str, transport: SwimTransport) -> None:
        self.node_id = node_id
        self.transport = transport
        self._incarnation = 0
        self._lock = threading.Lock()
        self.probe_interval = 1.0
        self.suspect_timeout = 5.0
        self.fanout = 3
        self.indirect_probes = 3
        self.last_probe_time: dict[str, float] = {}
        self.suspect_timers: dict[str, float] = {}

    def with_params(self, probe_interval: float, suspect_timeout: float, fanout: int) -> SwimNode:
        self.probe_interval = probe_interval
        self.suspect_timeout = suspect_timeout
        self.fanout = fanout
        return self

    @property
    def incarnation(self) -> int:
        with self._lock:
            return self._incarnation

    def increment_incarnation(self) -> int:
        with self._lock:
            self._incarnation += 1
            return self._incarnation

    def _event(self, node_id: str, state: SwimMemberState) -> SwimEvent:
        return SwimEvent(node_id, state, self.incarnation)

    def probe(self, peer: str) -> SwimEvent:
        """Probe ``peer`` directly."""
        ok = self.transport.ping(peer)
        return self._event(peer, SwimMemberState.ALIVE if ok else SwimMemberState.SUSPECT)

    def probe_indirect(self, target: str, relays: Iterable[str]) -> SwimEvent:
        """Probe ``target`` directly, then through each relay in turn."""
        if self.transport.ping(target) or any(
            self.transport.ping_req(relay, target) for relay in relays
        ):
            return self._event(target, SwimMemberState.ALIVE)
        return self._event(target, SwimMemberState.SUSPECT)

    def swim_probe(self, target: str, peers: Sequence[str]) -> SwimEvent:
        """Run one full probe round against ``target``."""
        self.last_probe_time[target] = time.monotonic()
        direct = self.probe(target)
        if direct.state is SwimMemberState.ALIVE:
            return direct
        relays = [p for p in peers if p != target and p != self.node_id]
        return self.probe_indirect(target, relays[: self.indirect_probes])

    def check_suspect_timeouts(self) -> list[SwimEvent]:
        """Turn suspects older than ``suspect_timeout`` into faulty events."""
        now = time.monotonic()
        expired = [
            node for node, since in self.suspect_timers.items()
            if now - since > self.suspect_timeout
        ]
        for node in expired:
            del self.suspect_timers[node]
        return [self._event(node, SwimMemberState.FAULTY) for node in expired]

    def handle_swim_event(self, event: SwimEvent) -> bool:
        """Update suspicion timers according to ``event``."""
        if event.state is SwimMemberState.ALIVE:
            self.suspect_timers.pop(event.node_id, None)
        elif event.state is SwimMemberState.SUSPECT:
            self.suspect_timers[event.node_id] = time.monotonic()
        else:
            self.suspect_timers.pop(event.node_id, None)
            self.last_probe_time.pop(event.node_id, None)
        return True

    def generate_gossip(self, view: MembershipView) -> list[SwimEvent]:
        """Build events describing every member of ``view`` except this node."""
        incarnation = self.incarnation
        return [
            SwimEvent(node_id, info.state, incarnation)
            for node_id, info in view.members.items()
            if node_id != self.node_id
        ]

    def broadcast_gossip(self, events: Sequence[SwimEvent], peers: Iterable[str]) -> int:
        """Send ``events`` to every peer but this node; return the success count."""
        return sum(
            1 for peer in peers
            if peer != self.node_id and self.transport.gossip(peer, events)
        )


class MembershipView:
    """Versioned local view of cluster membership."""

    def __init__(self, me: str) -> None:
        self.me = me
        self.members: dict[str, MemberInfo] = {}
        self.version = 0

    def local_update(self, node: str, state: SwimMemberState, incarnation: int) -> None:
        info = self.members.setdefault(node, MemberInfo(state))
        info.version += 1
        info.state = state
        info.incarnation = incarnation
        info.last_seen = time.time()
        self.version += 1

    def update_from_event(self, event: SwimEvent) -> bool:
        """Apply ``event`` unless its incarnation is older than the known one."""
        info = self.members.setdefault(event.node_id, MemberInfo(event.state))
        if event.incarnation < info.incarnation:
            return False
        info.state = event.state
        info.incarnation = event.incarnation
        info.last_seen = event.timestamp
        info.version += 1
        self.version += 1
        return True

    def gossip_payload(self) -> list[tuple[str, MemberInfo]]:
        return [(node, replace(info)) for node, info in self.members.items()]

    def merge_from(self, incoming: Iterable[tuple[str, MemberInfo]]) -> None:
        """Adopt entries with a newer incarnation, or same incarnation and newer version."""
        for node, info in incoming:
            current = self.members.get(node)
            if current is None:
                self.members[node] = replace(info)
                continue
            if info.incarnation > current.incarnation or (
                info.incarnation == current.incarnation and info.version > current.version
            ):
                self.members[node] = replace(info)
                self.version += 1

    def _with_state(self, state: SwimMemberState) -> list[str]:
        return [node for node, info in self.members.items() if info.state is state]

    def alive_members(self) -> list[str]:
        return self._with_state(SwimMemberState.ALIVE)

    def suspect_members(self) -> list[str]:
        return self._with_state(SwimMemberState.SUSPECT)

    def faulty_members(self) -> list[str]:
        return self._with_state(SwimMemberState.FAULTY)

    def cleanup_faulty_members(self, max_age: float) -> None:
        """Drop faulty members last seen at least ``max_age`` seconds ago."""
        now = time.time()
        self.members = {
            node: info for node, info in self.members.items()
            if info.state is not SwimMemberState.FAULTY
            or max(0.0, now - info.last_seen) < max_age
        }

    def __contains__(self, node_id: object) -> bool:
        return node_id in self.members

    def get_member(self, node_id: str) -> MemberInfo | None:
        return self.members.get(node_id)

    def __len__(self) -> int:
        return len(self.members)

    def alive_count(self) -> int:
        return len(self.alive_members())