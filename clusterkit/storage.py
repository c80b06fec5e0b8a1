"""Log, snapshot and idempotency storage, in memory and on disk."""

from __future__ import annotations

import copy
import struct
from abc import ABC, abstractmethod
from collections.abc import Hashable
from os import PathLike
from pathlib import Path
from typing import Generic, TypeVar

from clusterkit.errors import StorageError

T = TypeVar("T")
S = TypeVar("S")
E = TypeVar("E")
C = TypeVar("C")
K = TypeVar("K", bound=Hashable)

_LENGTH = struct.Struct("<Q")


class BinaryCodec(ABC, Generic[T]):
    """Converts values to bytes and back."""

    @abstractmethod
    def encode(self, value: T) -> bytes:
        """Serialize ``value``."""

    @abstractmethod
    def decode(self, data: bytes) -> T | None:
        """Deserialize ``data``; return None if it is not a valid encoding."""


class LogStorage(ABC, Generic[E]):
    """Append-only log of entries."""

    @abstractmethod
    def append(self, entry: E) -> int:
        """Append ``entry`` and return the log position after it."""


class StateMachineStorage(ABC, Generic[S, C]):
    """Applies commands to a state."""

    @abstractmethod
    def apply(self, state: S, command: C) -> None:
        """Apply ``command`` to ``state`` in place."""


class IdempotencyStore(ABC, Generic[K]):
    """Remembers which operation keys have already been handled."""

    @abstractmethod
    def seen(self, key: K) -> bool:
        """Return whether ``key`` was recorded."""

    @abstractmethod
    def record(self, key: K) -> None:
        """Remember ``key``."""


class InMemoryIdempotency(IdempotencyStore[K]):
    """Idempotency store backed by a set."""

    def __init__(self) -> None:
        self._keys: set[K] = set()

    def seen(self, key: K) -> bool:
        return key in self._keys

    def record(self, key: K) -> None:
        self._keys.add(key)


class SnapshotStorage(ABC, Generic[S]):
    """Holds the most recent snapshot of a state."""

    @abstractmethod
    def save_snapshot(self, state: S) -> None:
        """Store ``state`` as the current snapshot."""

    @abstractmethod
    def load_snapshot(self) -> S | None:
        """Return the stored snapshot, or None if there is none."""


class FileLogStorage(LogStorage[E]):
    """Log file of length-prefixed records (8-byte little-endian length)."""

    def __init__(self, path: str | PathLike[str], codec: BinaryCodec[E]) -> None:
        self.path = Path(path)
        self.codec = codec

    def append(self, entry: E) -> int:
        """Append one record and return the file size after it."""
        data = self.codec.encode(entry)
        try:
            with self.path.open("ab") as f:
                f.write(_LENGTH.pack(len(data)))
                f.write(data)
                f.seek(0, 2)
                return f.tell()
        except OSError as exc:
            raise StorageError(str(exc)) from exc


class FileSnapshot(SnapshotStorage[S]):
    """Snapshot kept in a single file, overwritten on each save."""

    def __init__(self, path: str | PathLike[str], codec: BinaryCodec[S]) -> None:
        self.path = Path(path)
        self.codec = codec

    def save_snapshot(self, state: S) -> None:
        try:
            self.path.write_bytes(self.codec.encode(state))
        except OSError as exc:
            raise StorageError(str(exc)) from exc

    def load_snapshot(self) -> S | None:
        """Return the decoded snapshot; None if the file is missing or undecodable."""
        try:
            data = self.path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise StorageError(str(exc)) from exc
        return self.codec.decode(data)


class InMemorySnapshot(SnapshotStorage[S]):
    """Snapshot held as a private copy in memory."""

    def __init__(self) -> None:
        self.snapshot: S | None = None

    def save_snapshot(self, state: S) -> None:
        self.snapshot = copy.deepcopy(state)

    def load_snapshot(self) -> S | None:
        return copy.deepcopy(self.snapshot)


class InMemoryLogStorage(LogStorage[E]):
    """Log kept in a list."""

    def __init__(self) -> None:
        self.entries: list[E] = []

    def append(self, entry: E) -> int:
        """Append ``entry`` and return the new number of entries."""
        self.entries.append(entry)
        return len(self.entries)

    def __len__(self) -> int:
        return len(self.entries)