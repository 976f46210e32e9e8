"""LoRa tracker packets, redundant state storage and wake-up cycle."""

__version__ = "1.0.0"
__all__ = ["message_encoding", "storage", "tracker"]