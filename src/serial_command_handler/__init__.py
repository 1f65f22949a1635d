"""Line-oriented command queue for firmware devices on a serial link."""

from .errors import (
    CommandHandlerError,
    EmptyQueueError,
    ProcessingAbortedError,
    QueueBusyError,
    ResponseTimeoutError,
    TransportError,
)
from .handler import CommandHandler, QueueState
from .models import Command, SerialSettings
from .protocol import ResponseFramer
from .transport import SerialConnection, list_ports
