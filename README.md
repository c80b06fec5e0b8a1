# clusterkit

Small building blocks for distributed systems, written in plain Python with
no third-party dependencies.

| Module | What it holds |
| --- | --- |
| `clusterkit.swim` | SWIM-style failure detection (`SwimNode`, `SwimTransport`, `EnhancedSwimTransport`) and a versioned `MembershipView` |
| `clusterkit.topology` | `ConsistentHashRing` with virtual replicas, `ClusterTopology` and `ShardId` |
| `clusterkit.replication` | `ConsistencyLevel`, quorum policies and `LocalReplicator` |
| `clusterkit.storage` | log, snapshot and idempotency stores, in memory or on disk |
| `clusterkit.transactions` | `Saga` and `SagaStep` with compensation on failure |
| `clusterkit.transport` | in-process RPC server and client, connection pool, request batcher, `RetryClient` |
| `clusterkit.errors` | `DistributedError` and its subclasses `NetworkError`, `StorageError`, `ConfigurationError` |

## Installation

```
pip install clusterkit
```

## Consistent hashing

```python
from clusterkit.topology import ClusterTopology, ConsistentHashRing

ring = ConsistentHashRing(16)          # 16 virtual positions per node
for name in ("n1", "n2", "n3"):
    ring.add_node(name)

ring.route("user-42")                  # the owning node, or None on an empty ring
ring.nodes_for("user-42", 2)           # up to 2 distinct nodes, owner first
ring.remove_node("n3")

list(ClusterTopology(shard_count=3).shards())  # [ShardId(0), ShardId(1), ShardId(2)]
```

Keys may be strings, bytes or any other value with a stable `repr`.

## Quorum replication

```python
from clusterkit.replication import (
    CompositeQuorum, ConsistencyLevel, LocalReplicator, MajorityQuorum,
)
from clusterkit.storage import InMemoryIdempotency

MajorityQuorum.required_acks(5, ConsistencyLevel.QUORUM)    # 3
MajorityQuorum.required_acks(5, ConsistencyLevel.EVENTUAL)  # 1
CompositeQuorum().required_read(5, ConsistencyLevel.QUORUM) # 3

nodes = ["n1", "n2", "n3"]
repl = LocalReplicator(ring, nodes, InMemoryIdempotency())
repl.replicate_idempotent("op-1", nodes, b"cmd", ConsistencyLevel.QUORUM)
repl.replicate_idempotent("op-1", nodes, b"cmd", ConsistencyLevel.QUORUM)  # no-op
```

Every level needs a strict majority except `EVENTUAL` and `STRONG_EVENTUAL`,
which need one acknowledgement. `LocalReplicator` does not send anything: it
counts a target as acknowledging unless its `successes` map says `False`, and
raises `NetworkError("acks <got>/<need>")` when too few do.

## SWIM membership

```python
from clusterkit.swim import MembershipView, SwimMemberState, SwimNode, SwimTransport

class AlwaysUp(SwimTransport):
    def ping(self, to):
        return True

    def gossip(self, to, events):
        return True

node = SwimNode("n0", AlwaysUp()).with_params(1.0, 5.0, 3)  # seconds, seconds, fanout
event = node.probe("n1")                 # event.state is SwimMemberState.ALIVE

view = MembershipView("n0")
view.update_from_event(event)            # False if the event's incarnation is older
view.alive_members()                     # ["n1"]
"n1" in view, len(view)                  # (True, 1)
```

`swim_probe` pings the target and, if that fails, asks up to
`indirect_probes` other peers to ping it. `handle_swim_event` starts a timer
for suspects, and `check_suspect_timeouts` turns those older than
`suspect_timeout` into `FAULTY` events. Views exchange state with
`gossip_payload()` and `merge_from()`, which adopts an entry with a higher
incarnation, or the same incarnation and a higher version.

`EnhancedSwimTransport` is a simulation: it sleeps for its network delay and
succeeds at random (ping 90%, ping-req 80%, ack 95%, gossip 85%).

## Storage

`InMemoryLogStorage`, `InMemorySnapshot` and `InMemoryIdempotency` keep
everything in memory. `FileLogStorage` appends records prefixed with an
8-byte little-endian length and returns the file size after each append;
`FileSnapshot` overwrites a single file. Both take a `BinaryCodec`:

```python
import json
from clusterkit.storage import BinaryCodec, FileSnapshot

class JsonCodec(BinaryCodec):
    def encode(self, value):
        return json.dumps(value).encode()

    def decode(self, data):
        try:
            return json.loads(data)
        except ValueError:
            return None

snap = FileSnapshot("state.json", JsonCodec())
snap.save_snapshot({"term": 3})
snap.load_snapshot()                     # {"term": 3}; None if the file is missing
```

I/O failures are raised as `StorageError`.

## Sagas

```python
from clusterkit.errors import ConfigurationError
from clusterkit.transactions import Saga, SagaStep

class Reserve(SagaStep):
    def execute(self):
        print("reserved")

    def compensate(self):
        print("released")

class Charge(SagaStep):
    def execute(self):
        raise ConfigurationError("card declined")

    def compensate(self):
        pass

Saga().then(Reserve()).then(Charge()).run()
```

When a step raises a `DistributedError`, the steps already done are
compensated in reverse order and the error is raised again from `run()`.
Errors raised by `compensate` are ignored; exceptions that are not
`DistributedError` propagate without compensation.

## In-process RPC

```python
from clusterkit.transport import (
    InMemoryRpcClient, InMemoryRpcServer, RetryClient, RetryPolicy, RpcRequest,
)

server = InMemoryRpcServer()
server.register("echo", lambda payload: payload)

client = RetryClient(InMemoryRpcClient(server), RetryPolicy(max_retries=2))
client.call("echo", b"hello")            # b"hello"

# from a coroutine:
#   await client.call_async("echo", b"hi")
#   await client.call_batch([RpcRequest(1, "echo", b"a"), RpcRequest(2, "nope", b"")])
```

Unknown methods raise `NetworkError` from `call`; in a batch they come back as
an `RpcResponse` whose `error` is set. `RetryPolicy` can also retry empty
replies (`retry_on_empty=True`) and back off exponentially
(`backoff_base_ms`, doubling per attempt). `call_async` borrows a connection id
from a `ConnectionPool`, which raises `NetworkError` once `max_connections` are
in use. `RequestBatcher` collects requests into batches of `batch_size` on its
`batches` queue; the consumer answers a batch by setting the future paired with
it, and callers get `NetworkError` if no answer arrives within `batch_timeout`.

## What it does not do

- No network transport: RPC runs inside one process, and SWIM traffic goes
  only through a `SwimTransport` you implement (or the random simulation).
- No consensus or leader election, and no real replica I/O: replication only
  counts acknowledgements.
- No command-line tool or server process.

## Running the tests

```
pip install -e ".[test]"
pytest
```