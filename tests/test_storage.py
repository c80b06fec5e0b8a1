import struct

import pytest

from clusterkit.errors import StorageError
from clusterkit.storage import (
    BinaryCodec,
    FileLogStorage,
    FileSnapshot,
    InMemoryIdempotency,
    InMemoryLogStorage,
    InMemorySnapshot,
)


class TextCodec(BinaryCodec[str]):
    def encode(self, value):
        return value.encode("utf-8")

    def decode(self, data):
        try:
            return data.decode("utf-8")
        except UnicodeDecodeError:
            return None


def test_idempotency_prevents_duplicate():
    idem = InMemoryIdempotency()
    key = "req-1"
    assert not idem.seen(key)
    idem.record(key)
    assert idem.seen(key)


def test_idempotency_keys_are_independent():
    idem = InMemoryIdempotency()
    idem.record("a")
    assert idem.seen("a")
    assert not idem.seen("b")


def test_in_memory_log_append_returns_length():
    log = InMemoryLogStorage()
    assert len(log) == 0
    assert log.append("x") == 1
    assert log.append("y") == 2
    assert len(log) == 2
    assert log.entries == ["x", "y"]


def test_in_memory_snapshot_round_trip():
    snap = InMemorySnapshot()
    assert snap.load_snapshot() is None
    state = {"k": [1, 2]}
    snap.save_snapshot(state)
    assert snap.load_snapshot() == {"k": [1, 2]}


def test_in_memory_snapshot_is_a_copy():
    snap = InMemorySnapshot()
    state = {"k": [1]}
    snap.save_snapshot(state)
    state["k"].append(2)
    assert snap.load_snapshot() == {"k": [1]}


def test_file_log_append_positions(tmp_path):
    path = tmp_path / "log.bin"
    log = FileLogStorage(path, TextCodec())
    assert log.append("abc") == 11
    assert log.append("hello") == 24
    raw = path.read_bytes()
    (first_len,) = struct.unpack_from("<Q", raw, 0)
    assert first_len == 3
    assert raw[8:11] == b"abc"
    (second_len,) = struct.unpack_from("<Q", raw, 11)
    assert second_len == 5
    assert raw[19:24] == b"hello"


def test_file_log_append_to_directory_fails(tmp_path):
    log = FileLogStorage(tmp_path, TextCodec())
    with pytest.raises(StorageError):
        log.append("abc")


def test_file_snapshot_missing_file_is_none(tmp_path):
    snap = FileSnapshot(tmp_path / "missing.bin", TextCodec())
    assert snap.load_snapshot() is None


def test_file_snapshot_round_trip_overwrites(tmp_path):
    snap = FileSnapshot(tmp_path / "snap.bin", TextCodec())
    snap.save_snapshot("first")
    snap.save_snapshot("second")
    assert snap.load_snapshot() == "second"


def test_file_snapshot_undecodable_is_none(tmp_path):
    path = tmp_path / "snap.bin"
    path.write_bytes(b"\xff\xfe\xfd")
    snap = FileSnapshot(path, TextCodec())
    assert snap.load_snapshot() is None


def test_file_snapshot_read_error_raises(tmp_path):
    snap = FileSnapshot(tmp_path, TextCodec())
    with pytest.raises(StorageError):
        snap.load_snapshot()


def test_file_snapshot_write_error_raises(tmp_path):
    snap = FileSnapshot(tmp_path / "no" / "such" / "dir.bin", TextCodec())
    with pytest.raises(StorageError):
        snap.save_snapshot("x")