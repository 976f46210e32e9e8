# loratracker

This package is for a battery-powered LoRa tracker. On each wake-up the
tracker checks in with a truck unit. When the truck stops answering, the
tracker falls back to an emergency beacon mode.

The package has three modules. All of them report progress through the
standard `logging` module.

## Message encoding (`loratracker.message_encoding`)

Packets are authenticated with AES-128-CMAC, and the MAC is cut down to its
first four bytes.

- `calculate_cmac(data, key)` returns that truncated MAC as a 32-bit integer,
  read big-endian. The key must be 16 bytes; any other length raises
  `ValueError`.
- `create_ping_packet(key, battery_level, in_emergency_mode, tracker_id, counter)`
  builds the 13-byte version 1 ping (`PING_PACKET_SIZE`), laid out as:
  - byte 0 is the header: version in bits 0–2, battery level (0–7) in bits
    3–5, emergency flag in bit 6;
  - bytes 1–4 hold the tracker id, little endian;
  - bytes 5–8 hold the counter, little endian;
  - bytes 9–12 hold the MAC over the first 9 bytes, little endian.
- `parse_pong_packet(buffer, key)` checks a 9-byte pong (`PONG_PACKET_SIZE`)
  and returns a `PongPacket` with `command` and `counter`. The pong is laid
  out as:
  - byte 0 is the command;
  - bytes 1–4 hold the counter, little endian;
  - bytes 5–8 hold the MAC over the first 5 bytes, little endian.

  A buffer of the wrong length raises `ValueError`. A MAC that does not
  match raises `AuthenticationError`, which is a subclass of `ValueError`.

```python
from loratracker.message_encoding import create_ping_packet

key = bytes(16)  # made-up all-zero 128-bit key
ping = create_ping_packet(key, 3, False, 1234, 34)
assert len(ping) == 13
```

## Storage (`loratracker.storage`)

`TrackerState` holds the state that survives deep sleep. It has three
fields:

- `in_emergency_mode`
- `counter`
- `missed_truck_reply_count`

`to_bytes()` and `TrackerState.from_bytes(data)` convert it to and from its
6-byte form.

The state is stored as a 30-byte record (`RECORD_SIZE`). The record holds
three little-endian copies of the magic `STORAGE_MAGIC` ("EPIC"), followed
by three copies of the state. On load, both the magics and the state copies
are combined by a bitwise majority vote. A single damaged copy is therefore
repaired without notice.

- `encode_record(state)` turns a state into a record, and
  `decode_record(data)` turns a record back into a state. If the magic
  cannot be recovered, `decode_record` raises `StorageError`.
- `MemoryFram(size=8192)` is a byte-addressed store kept in memory.
- `FileFram(path, size=8192)` is a byte-addressed store kept in a file.
  Regions that were never written read as zeros.
- Both stores offer `read(offset, size)` and `write(offset, data)`. An
  access outside the store raises `StorageError`.
- `Storage(fram, offset=0)` writes a record with `backup(state)` and reads
  it back with `load()`.

```python
from loratracker.storage import MemoryFram, Storage, TrackerState

storage = Storage(MemoryFram())
storage.backup(TrackerState(counter=7))
assert storage.load().counter == 7
```

## Tracker cycle (`loratracker.tracker`)

`Tracker(storage, radio, read_adc, deep_sleep, config=None, sleep_ms=None, rng=None)`
runs one wake-up of the device. Its parameters are:

- `radio` is any object with `init(settings)`, `write(payload)`,
  `listen(timeout_ms)` and `off()`, as described by the `Radio` protocol.
  `init` and `write` report failure by raising `OSError`. `listen` returns
  the received bytes, or `None` on timeout.
- `read_adc()` returns a 12-bit battery reading. The tracker scales it to
  millivolts against a 4000 mV reference.
- `deep_sleep(seconds)` is called at the end of every cycle.
- `sleep_ms(ms)` is used for short pauses between radio steps. It defaults
  to `time.sleep`.
- `rng` is a `random.Random` used for retry back-offs.
- `config` is a `TrackerConfig`. It holds the tracker id, the 16-byte key,
  the attempt counts, back-off ranges, reply timings and sleep times, and
  the `LoraSettings` for truck pings (`TRUCK_LORA`: SF7, 13 dBm) and for
  emergency pings (`EMERGENCY_LORA`: SF12, 8 dBm, boost).

The cycle methods are:

- `init()` stores a fresh `TrackerState` and then calls `wakeup()`.
- `wakeup()` loads the state and runs either truck mode or emergency mode.
  It returns whether the handshake succeeded. If the state cannot be
  stored or loaded, it raises `TrackerError`.
- `handle_truck_mode(state)` performs one ping/pong handshake with the truck
  unit.
  - A failed handshake increments the missed-reply count. Once the count
    exceeds `max_handshake_attempts_before_emergency` (5 by default), the
    tracker switches to emergency mode.
  - After a failure, the tracker sleeps for the handshake back-off.
  - A success resets the count and sleeps for
    `successful_handshake_sleep_seconds`.
- `handle_emergency_mode(state)` sends a long-range emergency ping and then
  tries a recovery handshake. If that handshake succeeds, emergency mode is
  cleared.
- `truck_unit_handshake(state)` sends a ping with retries and waits for a
  reply. It accepts the reply only if it is a pong that passes the MAC
  check and echoes the current counter.
- `new_packet(state)` increments the counter, persists it, and only then
  builds the ping.

The module also provides:

- `boot(tracker, cause)` picks what to do from the `WakeupCause`:
  - `EXTWAKE` and `RTC` call `wakeup()`;
  - `POWER_ON` calls `init()`.

  If a `TrackerError` is raised, `boot` deep-sleeps for
  `INIT_FAILURE_BACKOFF_SECONDS` and returns `False`. Otherwise it returns
  `True`.
- `pack_battery_level(battery_mv)` maps millivolts onto a level from 0 to 7.
  Each step is 200 mV: 2100 mV gives level 1 and 3300 mV gives level 7.
- `random_between(lower, upper, rng)` returns an integer in `[lower, upper)`,
  or `lower` when the two bounds are equal.

```python
from loratracker.storage import MemoryFram, Storage
from loratracker.tracker import Tracker, WakeupCause, boot


class SilentRadio:
    def init(self, settings): pass
    def write(self, payload): pass
    def listen(self, timeout_ms): return None
    def off(self): pass


storage = Storage(MemoryFram())
tracker = Tracker(
    storage,
    SilentRadio(),
    read_adc=lambda: 4095,
    deep_sleep=lambda seconds: None,
    sleep_ms=lambda ms: None,
)
assert boot(tracker, WakeupCause.POWER_ON)
state = storage.load()
assert (state.counter, state.missed_truck_reply_count) == (1, 1)
```

## What it does not do

The package contains no radio driver, ADC access or deep-sleep control. The
caller supplies these as the `radio`, `read_adc` and `deep_sleep` arguments
of `Tracker`. The package has no command-line program.

## Installing

The package needs Python 3.10 or later and depends on `cryptography`. The
`test` extra installs `pytest` for the test suite.