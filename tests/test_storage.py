import pytest

from loratracker.storage import (
    RECORD_SIZE,
    STORAGE_MAGIC,
    FileFram,
    MemoryFram,
    Storage,
    StorageError,
    TrackerState,
    decode_record,
    encode_record,
)


def test_state_bytes_layout():
    state = TrackerState(True, 0x01020304, 7)
    assert state.to_bytes() == bytes([1, 4, 3, 2, 1, 7])


def test_state_round_trip():
    state = TrackerState(False, 987654, 3)
    assert TrackerState.from_bytes(state.to_bytes()) == state


def test_state_counter_wraps_to_32_bits():
    state = TrackerState(counter=2**32 + 5)
    assert TrackerState.from_bytes(state.to_bytes()).counter == 5


def test_state_from_bytes_wrong_length():
    with pytest.raises(ValueError):
        TrackerState.from_bytes(bytes(5))


def test_record_starts_with_three_magics():
    record = encode_record(TrackerState())
    assert len(record) == RECORD_SIZE
    magic = STORAGE_MAGIC.to_bytes(4, "little")
    assert record[:12] == magic + magic + magic
    assert record[:4] == b"CIPE"


def test_record_round_trip():
    state = TrackerState(True, 42, 6)
    assert decode_record(encode_record(state)) == state


def test_single_corrupted_copy_is_outvoted():
    state = TrackerState(False, 0x00ABCDEF, 2)
    record = bytearray(encode_record(state))
    record[0] ^= 0xFF
    record[12] ^= 0x01
    record[13] ^= 0xFF
    assert decode_record(bytes(record)) == state


def test_two_corrupted_copies_win_the_vote():
    state = TrackerState(False, 100, 0)
    record = bytearray(encode_record(state))
    record[13] ^= 0x01
    record[19] ^= 0x01
    recovered = decode_record(bytes(record))
    assert recovered.counter == state.counter ^ 0x01
    assert recovered.in_emergency_mode is False


def test_blank_record_has_invalid_signature():
    with pytest.raises(StorageError):
        decode_record(bytes(RECORD_SIZE))


def test_decode_record_wrong_length():
    with pytest.raises(ValueError):
        decode_record(bytes(10))


def test_memory_fram_round_trip():
    fram = MemoryFram(64)
    fram.write(10, b"abc")
    assert fram.read(10, 3) == b"abc"
    assert fram.read(0, 2) == bytes(2)


def test_memory_fram_out_of_range():
    fram = MemoryFram(16)
    with pytest.raises(StorageError):
        fram.write(15, b"ab")
    with pytest.raises(StorageError):
        fram.read(-1, 1)


def test_file_fram_persists(tmp_path):
    path = tmp_path / "fram.bin"
    FileFram(path, 64).write(4, b"xyz")
    fresh = FileFram(path, 64)
    assert fresh.read(4, 3) == b"xyz"
    assert fresh.read(0, 4) == bytes(4)


def test_file_fram_missing_file_reads_zero(tmp_path):
    fram = FileFram(tmp_path / "none.bin", 32)
    assert fram.read(0, 8) == bytes(8)


def test_file_fram_out_of_range(tmp_path):
    fram = FileFram(tmp_path / "f.bin", 8)
    with pytest.raises(StorageError):
        fram.write(6, b"abc")


def test_storage_backup_and_load():
    storage = Storage(MemoryFram(128))
    state = TrackerState(True, 77, 4)
    storage.backup(state)
    assert storage.load() == state


def test_storage_uses_offset():
    fram = MemoryFram(128)
    Storage(fram, offset=40).backup(TrackerState(counter=9))
    assert Storage(fram, offset=40).load().counter == 9
    with pytest.raises(StorageError):
        Storage(fram).load()


def test_storage_load_blank_raises():
    with pytest.raises(StorageError):
        Storage(MemoryFram(64)).load()


def test_storage_with_file_fram(tmp_path):
    path = tmp_path / "state.bin"
    Storage(FileFram(path)).backup(TrackerState(False, 12, 1))
    assert Storage(FileFram(path)).load() == TrackerState(False, 12, 1)