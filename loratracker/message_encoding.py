"""Wire encoding of tracker ping and pong packets, authenticated with AES-CMAC."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from cryptography.hazmat.primitives.ciphers import algorithms
from cryptography.hazmat.primitives.cmac import CMAC

__all__ = [
    "AuthenticationError",
    "PongPacket",
    "calculate_cmac",
    "create_ping_packet",
    "parse_pong_packet",
    "PING_PACKET_VERSION",
    "PING_PACKET_SIZE",
    "PONG_PACKET_SIZE",
]

log = logging.getLogger(__name__)

PING_PACKET_VERSION = 1
PING_PACKET_SIZE = 13
PONG_PACKET_SIZE = 9
AES128_KEY_SIZE = 16

_PING_BODY_SIZE = 9
_PONG_BODY_SIZE = 5
_U32 = 0xFFFFFFFF


class AuthenticationError(ValueError):
    """Raised when a packet's message integrity code does not match."""


@dataclass(frozen=True)
class PongPacket:
    """A verified reply from the truck unit."""

    command: int
    counter: int


def calculate_cmac(data: bytes, key: bytes) -> int:
    """Return the AES-128-CMAC of ``data`` truncated to its first four bytes, big-endian."""
    key = bytes(key)
    if len(key) != AES128_KEY_SIZE:
        raise ValueError(f"key must be {AES128_KEY_SIZE} bytes, got {len(key)}")
    mac = CMAC(algorithms.AES(key))
    mac.update(bytes(data))
    full = mac.finalize()
    return int.from_bytes(full[:4], "big")


def create_ping_packet(
    key: bytes,
    battery_level: int,
    in_emergency_mode: bool,
    tracker_id: int,
    counter: int,
) -> bytes:
    """Build a 13-byte version 1 ping packet.

    Byte 0 packs the version (3 bits), battery level (3 bits) and the
    emergency flag (1 bit); then follow the tracker id, the counter and the
    truncated CMAC, each as a little-endian 32-bit integer.
    """
    header = (
        (PING_PACKET_VERSION & 0x07)
        | ((battery_level & 0x07) << 3)
        | ((int(bool(in_emergency_mode)) & 0x01) << 6)
    )
    body = (
        bytes([header])
        + (tracker_id & _U32).to_bytes(4, "little")
        + (counter & _U32).to_bytes(4, "little")
    )
    mic = calculate_cmac(body, key)
    packet = body + mic.to_bytes(4, "little")
    log.debug("created packet: %s", packet.hex(" ").upper())
    return packet


def parse_pong_packet(buffer: bytes, key: bytes) -> PongPacket:
    """Verify and decode a 9-byte pong packet.

    Raises AuthenticationError if the CMAC does not match.
    """
    buffer = bytes(buffer)
    if len(buffer) != PONG_PACKET_SIZE:
        raise ValueError(
            f"pong packet must be {PONG_PACKET_SIZE} bytes, got {len(buffer)}"
        )
    packet_mic = int.from_bytes(buffer[5:9], "little")
    expected_mic = calculate_cmac(buffer[:_PONG_BODY_SIZE], key)
    if packet_mic != expected_mic:
        raise AuthenticationError("pong packet failed MAC check")
    return PongPacket(
        command=buffer[0],
        counter=int.from_bytes(buffer[1:5], "little"),
    )