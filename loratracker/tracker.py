"""Tracker wake-up logic: handshake with the truck unit, emergency pings and sleep."""

from __future__ import annotations

import enum
import logging
import random
import time
from dataclasses import dataclass, field
from typing import Callable, Optional, Protocol

from .message_encoding import (
    PONG_PACKET_SIZE,
    AuthenticationError,
    create_ping_packet,
    parse_pong_packet,
)
from .storage import Storage, StorageError, TrackerState

__all__ = [
    "TrackerError",
    "LoraSettings",
    "TrackerConfig",
    "WakeupCause",
    "Radio",
    "Tracker",
    "pack_battery_level",
    "random_between",
    "boot",
    "TRUCK_LORA",
    "EMERGENCY_LORA",
    "FW_VERSION",
    "INIT_FAILURE_BACKOFF_SECONDS",
]

log = logging.getLogger(__name__)

FW_VERSION = "1.0.0"
INIT_FAILURE_BACKOFF_SECONDS = 5

_ADC_MAX = 4095
_ADC_REFERENCE_MV = 4000

# (threshold in mV, level), highest first
_BATTERY_LEVELS = (
    (3300, 7),
    (3100, 6),
    (2900, 5),
    (2700, 4),
    (2500, 3),
    (2300, 2),
    (2100, 1),
)


class TrackerError(Exception):
    """Raised when the tracker cannot initialise, load or persist its state."""


@dataclass(frozen=True)
class LoraSettings:
    """Radio parameters for one kind of transmission."""

    bandwidth_khz: int
    spreading_factor: int
    coderate: str
    channel_hz: int
    power_dbm: int
    boost: bool


TRUCK_LORA = LoraSettings(
    bandwidth_khz=125,
    spreading_factor=7,
    coderate="4/5",
    channel_hz=915_000_000,
    power_dbm=13,
    boost=False,
)

EMERGENCY_LORA = LoraSettings(
    bandwidth_khz=125,
    spreading_factor=12,
    coderate="4/8",
    channel_hz=915_000_000,
    power_dbm=8,
    boost=True,
)


@dataclass(frozen=True)
class TrackerConfig:
    """Identity and timing of a tracker."""

    tracker_id: int = 0
    key: bytes = field(default=bytes(16), repr=False)

    truck_send_attempts: int = 5
    truck_backoff_min_ms: int = 200
    truck_backoff_max_ms: int = 1000

    max_handshake_attempts_before_emergency: int = 5
    handshake_backoff_min_seconds: int = 5
    handshake_backoff_max_seconds: int = 5

    emergency_send_attempts: int = 5
    emergency_backoff_min_ms: int = 200
    emergency_backoff_max_ms: int = 1000

    reply_sleep_ms: int = 400
    reply_timeout_ms: int = 600

    successful_handshake_sleep_seconds: int = 10
    emergency_sleep_seconds: int = 10

    truck_lora: LoraSettings = TRUCK_LORA
    emergency_lora: LoraSettings = EMERGENCY_LORA


class WakeupCause(enum.Enum):
    """Why the device started running."""

    EXTWAKE = "extwake"
    RTC = "rtc"
    POWER_ON = "power_on"


class Radio(Protocol):
    """A LoRa transceiver. Failures are reported by raising OSError."""

    def init(self, settings: LoraSettings) -> None: ...

    def write(self, payload: bytes) -> None: ...

    def listen(self, timeout_ms: int) -> Optional[bytes]: ...

    def off(self) -> None: ...


def pack_battery_level(battery_mv: int) -> int:
    """Map a battery voltage in millivolts onto a 3-bit level, 0 to 7."""
    for threshold, level in _BATTERY_LEVELS:
        if battery_mv >= threshold:
            return level
    return 0


def random_between(lower: int, upper: int, rng: random.Random) -> int:
    """Return a random integer in [lower, upper), or ``lower`` when they are equal."""
    if lower == upper:
        return lower
    if upper < lower:
        raise ValueError(f"upper bound {upper} is below lower bound {lower}")
    return rng.getrandbits(32) % (upper - lower) + lower


def _default_sleep_ms(ms: int) -> None:
    time.sleep(ms / 1000)


class Tracker:
    """A tracker that pings its truck unit on every wake-up and then sleeps."""

    def __init__(
        self,
        storage: Storage,
        radio: Radio,
        read_adc: Callable[[], int],
        deep_sleep: Callable[[int], None],
        config: Optional[TrackerConfig] = None,
        sleep_ms: Optional[Callable[[int], None]] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.storage = storage
        self.radio = radio
        self.read_adc = read_adc
        self.deep_sleep = deep_sleep
        self.config = config or TrackerConfig()
        self.sleep_ms = sleep_ms or _default_sleep_ms
        self.rng = rng or random.Random()

    def init(self) -> bool:
        """Reset the stored state and run a first wake-up."""
        try:
            self.storage.backup(TrackerState())
        except StorageError as exc:
            raise TrackerError(f"failed to store initialized state: {exc}") from exc
        log.info("initialized tracker")
        return self.wakeup()

    def wakeup(self) -> bool:
        """Load the stored state and handle the current mode.

        Returns whether the handshake with the truck unit succeeded.
        """
        log.info("waking up tracker")
        try:
            state = self.storage.load()
        except StorageError as exc:
            raise TrackerError(f"failed to load state: {exc}") from exc
        log.info(
            "loaded state: emerg_mode: %d, counter: %d, missed_reply: %d",
            state.in_emergency_mode,
            state.counter,
            state.missed_truck_reply_count,
        )
        if state.in_emergency_mode:
            return self.handle_emergency_mode(state)
        return self.handle_truck_mode(state)

    def handle_emergency_mode(self, state: TrackerState) -> bool:
        """Send an emergency ping, try to recover, then sleep. Returns whether it recovered."""
        log.info("handling emergency mode")
        if not self.send_emergency_ping(state):
            log.warning("failed to send emergency ping")

        log.info("trying to do handshake to recover from emergency mode")
        if self.truck_unit_handshake(state):
            state.missed_truck_reply_count = 0
            state.in_emergency_mode = False
            self._backup_quietly(state, "when recovering from emergency mode")
            seconds = self.config.successful_handshake_sleep_seconds
            log.info("successful handshake, sleeping for %d", seconds)
            self.deep_sleep(seconds)
            return True

        seconds = self.config.emergency_sleep_seconds
        log.info("failed recovery handshake, sleeping for %d", seconds)
        self.deep_sleep(seconds)
        return False

    def handle_truck_mode(self, state: TrackerState) -> bool:
        """Handshake with the truck unit, count misses, then sleep."""
        log.info("handling truck mode")
        cfg = self.config
        if not self.truck_unit_handshake(state):
            state.missed_truck_reply_count = (state.missed_truck_reply_count + 1) & 0xFF
            if state.missed_truck_reply_count > cfg.max_handshake_attempts_before_emergency:
                state.in_emergency_mode = True
            self._backup_quietly(state, "after failed truck mode handshake")
            seconds = random_between(
                cfg.handshake_backoff_min_seconds,
                cfg.handshake_backoff_max_seconds,
                self.rng,
            )
            log.info("failed handshake, sleeping for %d seconds", seconds)
            self.deep_sleep(seconds)
            return False

        state.missed_truck_reply_count = 0
        self._backup_quietly(state, "after successful truck mode handshake")
        seconds = cfg.successful_handshake_sleep_seconds
        log.info("successful handshake, sleeping for %d seconds", seconds)
        self.deep_sleep(seconds)
        return True

    def truck_unit_handshake(self, state: TrackerState) -> bool:
        """Send a ping to the truck unit and wait for an authentic, matching pong."""
        cfg = self.config
        try:
            payload = self.new_packet(state)
        except TrackerError as exc:
            log.error("failed to create a new packet for truck unit: %s", exc)
            return False

        sent = self._send_with_retries(
            payload,
            cfg.truck_lora,
            cfg.truck_send_attempts,
            cfg.truck_backoff_min_ms,
            cfg.truck_backoff_max_ms,
        )
        if not sent:
            log.warning("ran out of attempts to send truck ping")
            return False
        log.info("sent truck ping")

        self.sleep_ms(cfg.reply_sleep_ms)

        try:
            self.radio.init(cfg.truck_lora)
        except OSError as exc:
            log.error("failed to wake radio for listening: %s", exc)
            return False
        try:
            reply = self.radio.listen(cfg.reply_timeout_ms)
        finally:
            self.radio.off()

        if reply is None:
            log.warning("timed out when waiting for truck unit reply")
            return False
        if len(reply) != PONG_PACKET_SIZE:
            log.warning("invalid received packet length")
            return False

        try:
            pong = parse_pong_packet(reply, cfg.key)
        except AuthenticationError:
            log.warning("packet failed mac check")
            return False

        if pong.counter != state.counter:
            log.warning("incorrect packet counter (replay attack)")
            return False

        log.info("received pong with command byte: %x", pong.command)
        return True

    def send_emergency_ping(self, state: TrackerState) -> bool:
        """Broadcast a long-range emergency ping."""
        cfg = self.config
        try:
            payload = self.new_packet(state)
        except TrackerError as exc:
            log.error("failed to create a new packet to send emergency ping: %s", exc)
            return False

        sent = self._send_with_retries(
            payload,
            cfg.emergency_lora,
            cfg.emergency_send_attempts,
            cfg.emergency_backoff_min_ms,
            cfg.emergency_backoff_max_ms,
        )
        if not sent:
            log.warning("ran out of attempts to send emergency ping")
            return False
        log.info("sent emergency mode ping")
        return True

    def new_packet(self, state: TrackerState) -> bytes:
        """Advance and persist the counter, then build a ping packet."""
        battery_mv = self.read_adc() * _ADC_REFERENCE_MV // _ADC_MAX
        battery_level = pack_battery_level(battery_mv)

        state.counter = (state.counter + 1) & 0xFFFFFFFF
        try:
            self.storage.backup(state)
        except StorageError as exc:
            raise TrackerError(
                f"failed to back up state after incrementing packet counter: {exc}"
            ) from exc

        return create_ping_packet(
            self.config.key,
            battery_level,
            state.in_emergency_mode,
            self.config.tracker_id,
            state.counter,
        )

    def _send_with_retries(
        self,
        payload: bytes,
        settings: LoraSettings,
        attempts: int,
        backoff_min_ms: int,
        backoff_max_ms: int,
    ) -> bool:
        sent = False
        for attempt in range(attempts):
            log.debug("attempt %d sending ping", attempt)
            try:
                self.radio.init(settings)
            except OSError as exc:
                log.error("lora init failed: %s", exc)
                return False
            try:
                self.radio.write(payload)
            except OSError as exc:
                log.warning("TX failed: %s", exc)
            else:
                sent = True
                break
            self.radio.off()
            log.info("failed to send ping, retrying")
            self.sleep_ms(random_between(backoff_min_ms, backoff_max_ms, self.rng))
        self.radio.off()
        return sent

    def _backup_quietly(self, state: TrackerState, when: str) -> None:
        try:
            self.storage.backup(state)
        except StorageError as exc:
            log.error("failed to back up state %s: %s", when, exc)


def boot(tracker: Tracker, cause: WakeupCause) -> bool:
    """Start the tracker for a given wake-up cause.

    On failure the tracker sleeps for a short back-off and False is returned.
    """
    try:
        if cause is WakeupCause.EXTWAKE:
            log.info("tracker woken up by button")
            tracker.wakeup()
        elif cause is WakeupCause.RTC:
            tracker.wakeup()
        else:
            log.info("elec398 capstone group 1, version %s", FW_VERSION)
            tracker.init()
    except TrackerError as exc:
        log.error("tracker initialization failed: %s", exc)
        tracker.deep_sleep(INIT_FAILURE_BACKOFF_SECONDS)
        return False
    return True