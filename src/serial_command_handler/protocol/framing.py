"""Response framing for the line-oriented firmware protocol.

A response is complete under one of two rules, selected by
``Command.multi_line``::

    single-line   poll until the terminator shows up in the buffer
    multi-line    poll until no byte has arrived for idle_threshold_ms

In both cases every terminator in the buffer is replaced with ``"\\n"``
before the text is returned. The buffer is local to one ``read_response``
call and never outlives it.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Optional

from ..errors import ProcessingAbortedError, ResponseTimeoutError
from ..models.command import Command, DEFAULT_TERMINATOR
from ..transport.base import Transport

logger = logging.getLogger(__name__)

POLL_INTERVAL_S = 0.001
LINE_BREAK = "\n"


def normalize(text: str, terminator: str = DEFAULT_TERMINATOR) -> str:
    """Replace every terminator in *text* with a line break."""
    if terminator == LINE_BREAK:
        return text
    return text.replace(terminator, LINE_BREAK)


class ResponseFramer:
    """Drains a transport until one complete response has arrived.

    Usage::

        framer = ResponseFramer(conn, terminator="\\r")
        text = framer.read_response(Command("GG0"))
    """

    def __init__(
        self,
        transport: Transport,
        terminator: str = DEFAULT_TERMINATOR,
        encoding: str = "ascii",
        poll_interval_s: float = POLL_INTERVAL_S,
        response_timeout_ms: Optional[int] = None,
    ) -> None:
        if not terminator:
            raise ValueError("Terminator must not be empty")
        if poll_interval_s <= 0:
            raise ValueError(f"poll_interval_s must be > 0, got {poll_interval_s}")
        self._transport = transport
        self._terminator = terminator
        self._terminator_bytes = terminator.encode(encoding)
        self._encoding = encoding
        self._poll_interval_s = poll_interval_s
        self._response_timeout_ms = response_timeout_ms

    @property
    def terminator(self) -> str:
        return self._terminator

    @property
    def encoding(self) -> str:
        return self._encoding

    def read_response(
        self,
        command: Command,
        cancel_event: Optional[threading.Event] = None,
        write_done: Optional[threading.Event] = None,
    ) -> str:
        """Block until the response to *command* is complete and return it.

        When *write_done* is given, the idle timer and the response timeout
        only start running once it is set, so a slow write does not count
        as device silence.

        Raises:
            ProcessingAbortedError: If *cancel_event* is set while polling
                or during the settle delay.
            ResponseTimeoutError: If a single-line response does not
                terminate within the response timeout.
            TransportError: If the transport read fails.
        """
        if command.multi_line:
            raw = self._read_multi_line(command, cancel_event, write_done)
        else:
            raw = self._read_single_line(cancel_event, write_done)

        response = normalize(
            raw.decode(self._encoding, errors="replace"), self._terminator
        )
        logger.debug("RX %r -> %r", command.payload, response)

        if command.settle_delay_ms > 0:
            self._settle(command.settle_delay_ms / 1000, cancel_event)
        return response

    def _read_single_line(
        self,
        cancel_event: Optional[threading.Event],
        write_done: Optional[threading.Event],
    ) -> bytes:
        buffer = bytearray()
        timeout_s = None
        if self._response_timeout_ms is not None:
            timeout_s = self._response_timeout_ms / 1000
        started = time.monotonic()

        while True:
            _check_cancelled(cancel_event)
            chunk = self._transport.read_available()
            if chunk:
                buffer.extend(chunk)
                logger.debug("+%d bytes (total %d)", len(chunk), len(buffer))
                # Completes on the first terminator, even mid-burst.
                if self._terminator_bytes in buffer:
                    return bytes(buffer)
                continue
            if _writing(write_done):
                started = time.monotonic()
            elif timeout_s is not None and time.monotonic() - started >= timeout_s:
                raise ResponseTimeoutError(
                    f"No {self._terminator!r} within "
                    f"{self._response_timeout_ms}ms "
                    f"(received {bytes(buffer)!r})"
                )
            time.sleep(self._poll_interval_s)

    def _read_multi_line(
        self,
        command: Command,
        cancel_event: Optional[threading.Event],
        write_done: Optional[threading.Event],
    ) -> bytes:
        threshold_s = command.idle_threshold_ms / 1000
        # Keep the quantum well under the threshold so the idle check stays precise.
        quantum = min(self._poll_interval_s, threshold_s / 10)
        buffer = bytearray()
        last_rx = time.monotonic()

        while True:
            _check_cancelled(cancel_event)
            chunk = self._transport.read_available()
            if chunk:
                buffer.extend(chunk)
                last_rx = time.monotonic()
                logger.debug("+%d bytes (total %d)", len(chunk), len(buffer))
                continue
            if _writing(write_done):
                last_rx = time.monotonic()
            elif time.monotonic() - last_rx > threshold_s:
                return bytes(buffer)
            time.sleep(quantum)

    @staticmethod
    def _settle(
        delay_s: float, cancel_event: Optional[threading.Event]
    ) -> None:
        if cancel_event is None:
            time.sleep(delay_s)
        elif cancel_event.wait(delay_s):
            raise ProcessingAbortedError("Aborted during settle delay")


def _check_cancelled(cancel_event: Optional[threading.Event]) -> None:
    if cancel_event is not None and cancel_event.is_set():
        raise ProcessingAbortedError("Aborted while waiting for response")


def _writing(write_done: Optional[threading.Event]) -> bool:
    return write_done is not None and not write_done.is_set()
