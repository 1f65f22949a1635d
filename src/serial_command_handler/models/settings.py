"""Serial port settings and their mapping onto pyserial."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

import serial

DEFAULT_BAUD_RATE = 115200
READ_TIMEOUT_MS = 1000
WRITE_TIMEOUT_MS = 1000


class Parity(Enum):
    NONE = "none"
    ODD = "odd"
    EVEN = "even"
    MARK = "mark"
    SPACE = "space"


class StopBits(Enum):
    NONE = "none"
    ONE = "one"
    TWO = "two"
    ONE_POINT_FIVE = "one_point_five"


class Handshake(Enum):
    NONE = "none"
    XON_XOFF = "xon_xoff"
    REQUEST_TO_SEND = "request_to_send"
    REQUEST_TO_SEND_XON_XOFF = "request_to_send_xon_xoff"


_PARITY_MAP = {
    Parity.NONE: serial.PARITY_NONE,
    Parity.ODD: serial.PARITY_ODD,
    Parity.EVEN: serial.PARITY_EVEN,
    Parity.MARK: serial.PARITY_MARK,
    Parity.SPACE: serial.PARITY_SPACE,
}

_STOPBITS_MAP = {
    StopBits.ONE: serial.STOPBITS_ONE,
    StopBits.TWO: serial.STOPBITS_TWO,
    StopBits.ONE_POINT_FIVE: serial.STOPBITS_ONE_POINT_FIVE,
}

_BYTESIZE_MAP = {
    5: serial.FIVEBITS,
    6: serial.SIXBITS,
    7: serial.SEVENBITS,
    8: serial.EIGHTBITS,
}


@dataclass
class SerialSettings:
    """Line settings for a serial port. Defaults are 115200 8N1."""

    port: str = ""
    baud_rate: int = DEFAULT_BAUD_RATE
    data_bits: int = 8
    parity: Parity = Parity.NONE
    stop_bits: StopBits = StopBits.ONE
    handshake: Handshake = Handshake.NONE
    read_timeout_ms: int = READ_TIMEOUT_MS
    write_timeout_ms: int = WRITE_TIMEOUT_MS

    def to_serial_kwargs(self) -> dict[str, Any]:
        """Build keyword arguments for ``serial.Serial``.

        Raises:
            ValueError: If a setting has no pyserial equivalent.
        """
        if self.data_bits not in _BYTESIZE_MAP:
            raise ValueError(f"data_bits must be 5-8, got {self.data_bits}")
        if self.stop_bits not in _STOPBITS_MAP:
            raise ValueError(f"Unsupported stop bits: {self.stop_bits.name}")

        return {
            "port": self.port,
            "baudrate": self.baud_rate,
            "bytesize": _BYTESIZE_MAP[self.data_bits],
            "parity": _PARITY_MAP[self.parity],
            "stopbits": _STOPBITS_MAP[self.stop_bits],
            "xonxoff": self.handshake in (
                Handshake.XON_XOFF, Handshake.REQUEST_TO_SEND_XON_XOFF
            ),
            "rtscts": self.handshake in (
                Handshake.REQUEST_TO_SEND, Handshake.REQUEST_TO_SEND_XON_XOFF
            ),
            "timeout": self.read_timeout_ms / 1000,
            "write_timeout": self.write_timeout_ms / 1000,
        }

    def to_dict(self) -> dict:
        return {
            "port": self.port,
            "baud_rate": self.baud_rate,
            "data_bits": self.data_bits,
            "parity": self.parity.value,
            "stop_bits": self.stop_bits.value,
            "handshake": self.handshake.value,
            "read_timeout_ms": self.read_timeout_ms,
            "write_timeout_ms": self.write_timeout_ms,
        }
