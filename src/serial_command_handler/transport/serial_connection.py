"""Serial port connection to the firmware device.

Thin adapter over ``pyserial`` that satisfies the :class:`Transport`
contract: a blocking ``write`` and a non-blocking ``read_available``.
Every pyserial failure surfaces as :class:`TransportError`.
"""

from __future__ import annotations

import logging

import serial
import serial.tools.list_ports

from ..errors import TransportError
from ..models.settings import SerialSettings

logger = logging.getLogger(__name__)


def list_ports() -> list[str]:
    """Return the device paths of the serial ports currently present."""
    return sorted(port.device for port in serial.tools.list_ports.comports())


class SerialConnection:
    """Manages the serial link to the device.

    Usage::

        conn = SerialConnection()
        conn.open(SerialSettings(port="/dev/ttyUSB0"))
        conn.write(b"GG0\\r")
        data = conn.read_available()
        conn.close()
    """

    def __init__(self, settings: SerialSettings | None = None) -> None:
        self._settings = settings or SerialSettings()
        self._port: serial.Serial | None = None

    @property
    def connected(self) -> bool:
        return self._port is not None and self._port.is_open

    @property
    def settings(self) -> SerialSettings:
        return self._settings

    def open(self, settings: SerialSettings | None = None) -> SerialSettings:
        """Open the port described by *settings* (or the constructor's).

        Returns:
            The settings the port was opened with.

        Raises:
            ValueError: If the settings have no pyserial equivalent.
            TransportError: If the port cannot be opened.
        """
        if settings is not None:
            self._settings = settings
        if not self._settings.port:
            raise ValueError("No serial port given")
        if self.connected:
            self.close()

        kwargs = self._settings.to_serial_kwargs()
        try:
            self._port = serial.Serial(**kwargs)
        except (serial.SerialException, OSError) as e:
            raise TransportError(
                f"Could not open {self._settings.port}: {e}"
            ) from e

        logger.info(
            "Opened %s at %d baud", self._settings.port, self._settings.baud_rate
        )
        return self._settings

    def close(self) -> None:
        """Close the serial port."""
        if self._port is None:
            return

        try:
            self._port.close()
        except (serial.SerialException, OSError) as e:
            logger.warning("Error closing %s: %s", self._settings.port, e)
        finally:
            self._port = None
            logger.info("Closed %s", self._settings.port)

    def write(self, data: bytes) -> int:
        """Write *data* to the port, blocking up to the write timeout.

        Returns:
            Number of bytes written.

        Raises:
            TransportError: If not connected, or the write fails or times out.
        """
        port = self._require_port()
        try:
            written = port.write(data)
            port.flush()
        except serial.SerialTimeoutException as e:
            raise TransportError(
                f"Write to {self._settings.port} timed out after "
                f"{self._settings.write_timeout_ms}ms"
            ) from e
        except (serial.SerialException, OSError) as e:
            raise TransportError(f"Write to {self._settings.port} failed: {e}") from e

        logger.debug("TX %r", data)
        return written

    def read_available(self) -> bytes:
        """Return whatever bytes are waiting, without blocking.

        Raises:
            TransportError: If not connected or the read fails.
        """
        port = self._require_port()
        try:
            waiting = port.in_waiting
            if not waiting:
                return b""
            return port.read(waiting)
        except (serial.SerialException, OSError) as e:
            raise TransportError(f"Read from {self._settings.port} failed: {e}") from e

    def reset_input_buffer(self) -> None:
        """Discard unread input, e.g. a stale reply from an aborted command."""
        port = self._require_port()
        try:
            port.reset_input_buffer()
        except (serial.SerialException, OSError) as e:
            raise TransportError(
                f"Could not reset input of {self._settings.port}: {e}"
            ) from e

    def _require_port(self) -> serial.Serial:
        if self._port is None or not self._port.is_open:
            raise TransportError("Not connected to device")
        return self._port
