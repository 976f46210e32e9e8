"""Persistent tracker state kept in FRAM with triple redundancy."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

__all__ = [
    "StorageError",
    "TrackerState",
    "encode_record",
    "decode_record",
    "MemoryFram",
    "FileFram",
    "Storage",
    "STORAGE_MAGIC",
    "STATE_SIZE",
    "RECORD_SIZE",
]

STORAGE_MAGIC = 0x45504943  # "EPIC"
STORAGE_OFFSET = 0
STATE_SIZE = 6
COPIES = 3
RECORD_SIZE = COPIES * 4 + COPIES * STATE_SIZE
DEFAULT_FRAM_SIZE = 8192


class StorageError(Exception):
    """Raised when state cannot be written to or recovered from storage."""


@dataclass
class TrackerState:
    """The tracker state that survives deep sleep."""

    in_emergency_mode: bool = False
    counter: int = 0
    missed_truck_reply_count: int = 0

    def to_bytes(self) -> bytes:
        """Serialize into the 6-byte storage form."""
        return (
            bytes([1 if self.in_emergency_mode else 0])
            + (self.counter & 0xFFFFFFFF).to_bytes(4, "little")
            + bytes([self.missed_truck_reply_count & 0xFF])
        )

    @classmethod
    def from_bytes(cls, data: bytes) -> "TrackerState":
        """Deserialize from the 6-byte storage form."""
        data = bytes(data)
        if len(data) != STATE_SIZE:
            raise ValueError(f"state must be {STATE_SIZE} bytes, got {len(data)}")
        return cls(
            in_emergency_mode=data[0] != 0,
            counter=int.from_bytes(data[1:5], "little"),
            missed_truck_reply_count=data[5],
        )


def _majority(a: bytes, b: bytes, c: bytes) -> bytes:
    return bytes((x & y) | (y & z) | (x & z) for x, y, z in zip(a, b, c))


def encode_record(state: TrackerState) -> bytes:
    """Build the 30-byte record: three magics followed by three state copies."""
    magic = STORAGE_MAGIC.to_bytes(4, "little")
    return magic * COPIES + state.to_bytes() * COPIES


def decode_record(data: bytes) -> TrackerState:
    """Recover state from a record by bitwise majority vote over its copies."""
    data = bytes(data)
    if len(data) != RECORD_SIZE:
        raise ValueError(f"record must be {RECORD_SIZE} bytes, got {len(data)}")
    magics = [data[i * 4:(i + 1) * 4] for i in range(COPIES)]
    magic = int.from_bytes(_majority(*magics), "little")
    if magic != STORAGE_MAGIC:
        raise StorageError("invalid storage signature")
    base = COPIES * 4
    copies = [
        data[base + i * STATE_SIZE:base + (i + 1) * STATE_SIZE] for i in range(COPIES)
    ]
    return TrackerState.from_bytes(_majority(*copies))


def _check_range(offset: int, size: int, capacity: int) -> None:
    if offset < 0 or size < 0 or offset + size > capacity:
        raise StorageError(
            f"access of {size} bytes at offset {offset} exceeds {capacity}-byte memory"
        )


class MemoryFram:
    """FRAM held in memory, zero-filled at start."""

    def __init__(self, size: int = DEFAULT_FRAM_SIZE) -> None:
        self._data = bytearray(size)

    def read(self, offset: int, size: int) -> bytes:
        _check_range(offset, size, len(self._data))
        return bytes(self._data[offset:offset + size])

    def write(self, offset: int, data: bytes) -> None:
        _check_range(offset, len(data), len(self._data))
        self._data[offset:offset + len(data)] = data


class FileFram:
    """FRAM backed by a file; unwritten regions read as zero."""

    def __init__(self, path: str | os.PathLike, size: int = DEFAULT_FRAM_SIZE) -> None:
        self.path = Path(path)
        self.size = size

    def read(self, offset: int, size: int) -> bytes:
        _check_range(offset, size, self.size)
        try:
            with self.path.open("rb") as fh:
                fh.seek(offset)
                chunk = fh.read(size)
        except FileNotFoundError:
            chunk = b""
        except OSError as exc:
            raise StorageError(f"cannot read {self.path}: {exc}") from exc
        return chunk.ljust(size, b"\x00")

    def write(self, offset: int, data: bytes) -> None:
        _check_range(offset, len(data), self.size)
        try:
            mode = "r+b" if self.path.exists() else "w+b"
            with self.path.open(mode) as fh:
                fh.seek(0, os.SEEK_END)
                end = fh.tell()
                if end < offset:
                    fh.write(bytes(offset - end))
                fh.seek(offset)
                fh.write(bytes(data))
        except OSError as exc:
            raise StorageError(f"cannot write {self.path}: {exc}") from exc


class Storage:
    """Stores tracker state on a FRAM device."""

    def __init__(self, fram, offset: int = STORAGE_OFFSET) -> None:
        self.fram = fram
        self.offset = offset

    def backup(self, state: TrackerState) -> None:
        """Write the state in redundant form."""
        try:
            self.fram.write(self.offset, encode_record(state))
        except OSError as exc:
            raise StorageError(f"failed to write state: {exc}") from exc

    def load(self) -> TrackerState:
        """Read and recover the stored state."""
        try:
            record = self.fram.read(self.offset, RECORD_SIZE)
        except OSError as exc:
            raise StorageError(f"failed to read state: {exc}") from exc
        return decode_record(record)