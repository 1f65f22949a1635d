"""Tests for the pyserial transport adapter and settings mapping."""

from unittest.mock import MagicMock, PropertyMock, patch

import pytest
import serial

from serial_command_handler.errors import TransportError
from serial_command_handler.models.settings import (
    Handshake,
    Parity,
    SerialSettings,
    StopBits,
)
from serial_command_handler.transport.serial_connection import (
    SerialConnection,
    list_ports,
)


def _open_connection(port_mock=None, **settings):
    """Open a SerialConnection against a mocked serial.Serial."""
    port_mock = port_mock or MagicMock(is_open=True)
    with patch("serial.Serial", return_value=port_mock) as serial_cls:
        conn = SerialConnection()
        conn.open(SerialSettings(port="/dev/ttyUSB0", **settings))
    return conn, port_mock, serial_cls


def test_default_settings_are_8n1():
    kwargs = SerialSettings(port="/dev/ttyUSB0").to_serial_kwargs()
    assert kwargs["baudrate"] == 115200
    assert kwargs["bytesize"] == serial.EIGHTBITS
    assert kwargs["parity"] == serial.PARITY_NONE
    assert kwargs["stopbits"] == serial.STOPBITS_ONE
    assert kwargs["xonxoff"] is False
    assert kwargs["rtscts"] is False
    assert kwargs["timeout"] == 1.0
    assert kwargs["write_timeout"] == 1.0


@pytest.mark.parametrize(
    "handshake, xonxoff, rtscts",
    [
        (Handshake.NONE, False, False),
        (Handshake.XON_XOFF, True, False),
        (Handshake.REQUEST_TO_SEND, False, True),
        (Handshake.REQUEST_TO_SEND_XON_XOFF, True, True),
    ],
)
def test_handshake_mapping(handshake, xonxoff, rtscts):
    kwargs = SerialSettings(port="COM3", handshake=handshake).to_serial_kwargs()
    assert kwargs["xonxoff"] is xonxoff
    assert kwargs["rtscts"] is rtscts


def test_parity_and_stop_bits_mapping():
    kwargs = SerialSettings(
        port="COM3",
        data_bits=7,
        parity=Parity.EVEN,
        stop_bits=StopBits.ONE_POINT_FIVE,
    ).to_serial_kwargs()
    assert kwargs["bytesize"] == serial.SEVENBITS
    assert kwargs["parity"] == serial.PARITY_EVEN
    assert kwargs["stopbits"] == serial.STOPBITS_ONE_POINT_FIVE


def test_stop_bits_none_rejected():
    with pytest.raises(ValueError):
        SerialSettings(port="COM3", stop_bits=StopBits.NONE).to_serial_kwargs()


def test_bad_data_bits_rejected():
    with pytest.raises(ValueError):
        SerialSettings(port="COM3", data_bits=9).to_serial_kwargs()


def test_open_passes_settings():
    conn, _, serial_cls = _open_connection(baud_rate=9600, parity=Parity.ODD)
    assert conn.connected
    kwargs = serial_cls.call_args.kwargs
    assert kwargs["port"] == "/dev/ttyUSB0"
    assert kwargs["baudrate"] == 9600
    assert kwargs["parity"] == serial.PARITY_ODD


def test_open_requires_port():
    with pytest.raises(ValueError):
        SerialConnection().open()


def test_open_failure_wrapped():
    with patch("serial.Serial", side_effect=serial.SerialException("busy")):
        with pytest.raises(TransportError, match="busy"):
            SerialConnection().open(SerialSettings(port="/dev/ttyUSB0"))


def test_write():
    port = MagicMock(is_open=True)
    port.write.return_value = 4
    conn, _, _ = _open_connection(port)
    assert conn.write(b"GG0\r") == 4
    port.write.assert_called_once_with(b"GG0\r")


def test_write_timeout_wrapped():
    port = MagicMock(is_open=True)
    port.write.side_effect = serial.SerialTimeoutException("Write timeout")
    conn, _, _ = _open_connection(port)
    with pytest.raises(TransportError, match="timed out"):
        conn.write(b"GG0\r")


def test_read_available_nothing_waiting():
    port = MagicMock(is_open=True, in_waiting=0)
    conn, _, _ = _open_connection(port)
    assert conn.read_available() == b""
    port.read.assert_not_called()


def test_read_available_reads_waiting_bytes():
    port = MagicMock(is_open=True, in_waiting=3)
    port.read.return_value = b"OK\r"
    conn, _, _ = _open_connection(port)
    assert conn.read_available() == b"OK\r"
    port.read.assert_called_once_with(3)


def test_read_error_wrapped():
    port = MagicMock(is_open=True)
    type(port).in_waiting = PropertyMock(side_effect=serial.SerialException("gone"))
    conn, _, _ = _open_connection(port)
    with pytest.raises(TransportError, match="gone"):
        conn.read_available()


def test_operations_require_connection():
    conn = SerialConnection()
    with pytest.raises(TransportError):
        conn.write(b"GG0\r")
    with pytest.raises(TransportError):
        conn.read_available()


def test_close():
    conn, port, _ = _open_connection()
    conn.close()
    port.close.assert_called_once()
    assert not conn.connected
    conn.close()  # second close is a no-op


def test_list_ports_sorted():
    ports = [MagicMock(device="/dev/ttyUSB1"), MagicMock(device="/dev/ttyACM0")]
    with patch("serial.tools.list_ports.comports", return_value=ports):
        assert list_ports() == ["/dev/ttyACM0", "/dev/ttyUSB1"]
