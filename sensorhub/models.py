"""Wire formats shared by the server, its sensor clients and its local tools."""

from __future__ import annotations

import struct
from dataclasses import dataclass

MAIN = 1
"""Message type the server reads commands with."""

QUEUE_MSG_LEN = 32
"""Size of the text field of a queued command, terminating NUL included."""

_READING = struct.Struct("<ff")
_MESSAGE_HEADER = struct.Struct("<q")


@dataclass(frozen=True)
class SensorData:
    """One temperature and humidity reading."""

    temperature: float
    humidity: float

    SIZE = _READING.size

    @classmethod
    def from_bytes(cls, data: bytes) -> SensorData:
        """Decode a reading from the first eight bytes of a packet.

        Missing bytes count as zero and anything past eight bytes is ignored,
        just as a short or long packet from a sensor node is treated.
        """
        raw = bytes(data[: cls.SIZE]).ljust(cls.SIZE, b"\0")
        temperature, humidity = _READING.unpack(raw)
        return cls(temperature, humidity)

    def to_bytes(self) -> bytes:
        """Encode as two little-endian 32-bit floats."""
        return _READING.pack(self.temperature, self.humidity)


@dataclass(frozen=True)
class CommandMessage:
    """A command addressed to the sensor node, as carried on the command queue."""

    text: str
    msg_type: int = MAIN

    SIZE = _MESSAGE_HEADER.size + QUEUE_MSG_LEN

    def __post_init__(self) -> None:
        if self.msg_type < 1:
            raise ValueError(f"message type must be positive, got {self.msg_type}")
        encoded = self.text.encode("utf-8")
        if b"\0" in encoded:
            raise ValueError("command text must not contain NUL characters")
        if len(encoded) > QUEUE_MSG_LEN - 1:
            raise ValueError(
                f"command text is {len(encoded)} bytes, at most {QUEUE_MSG_LEN - 1} fit"
            )

    @classmethod
    def from_bytes(cls, data: bytes) -> CommandMessage:
        """Decode a message: a 64-bit type followed by a NUL-padded text field."""
        header = _MESSAGE_HEADER.size
        if len(data) < header:
            raise ValueError(f"message needs at least {header} bytes, got {len(data)}")
        (msg_type,) = _MESSAGE_HEADER.unpack_from(data)
        field = bytes(data[header : header + QUEUE_MSG_LEN])
        text = field.split(b"\0", 1)[0].decode("utf-8", errors="replace")
        return cls(text, msg_type)

    def to_bytes(self) -> bytes:
        """Encode as the fixed-size record the queue carries."""
        field = self.text.encode("utf-8").ljust(QUEUE_MSG_LEN, b"\0")
        return _MESSAGE_HEADER.pack(self.msg_type) + field