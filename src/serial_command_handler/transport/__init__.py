"""Transport layer: the serial link to the device."""

from .base import Transport
from .serial_connection import SerialConnection, list_ports
