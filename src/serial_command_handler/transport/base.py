"""Duplex byte-stream contract shared by the framer and the handler."""

from __future__ import annotations

from typing import Protocol


class Transport(Protocol):
    """A byte stream to the device.

    Both methods raise ``TransportError`` on timeout or fault.
    """

    def write(self, data: bytes) -> int:
        """Write all of *data*, blocking up to the write timeout."""
        ...

    def read_available(self) -> bytes:
        """Return the bytes received so far without blocking (may be empty)."""
        ...
