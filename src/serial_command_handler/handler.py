"""Command queue engine.

Commands are queued by the caller and sent one at a time, in FIFO order,
on a background worker. Each command is written, its response framed, and
its callback invoked before the next command is dequeued, so the device
never sees more than one outstanding request.

State machine::

    IDLE --start_processing--> PROCESSING --(queue empty)--> IDLE
                               PROCESSING --abort / error--> IDLE
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from concurrent.futures import ThreadPoolExecutor
from enum import Enum
from typing import Callable, Optional

from .errors import (
    EmptyQueueError,
    ProcessingAbortedError,
    QueueBusyError,
)
from .models.command import Command, DEFAULT_IDLE_THRESHOLD_MS, DEFAULT_TERMINATOR
from .protocol.framing import POLL_INTERVAL_S, ResponseFramer
from .transport.base import Transport

logger = logging.getLogger(__name__)


class QueueState(Enum):
    IDLE = "idle"
    PROCESSING = "processing"


class CommandHandler:
    """Owns the command queue and the only writer to the transport.

    Usage::

        handler = CommandHandler(conn, terminator="\\r")
        handler.enqueue("GG0", on_complete=print)
        handler.enqueue("DUMP", multi_line=True, idle_threshold_ms=40)
        worker = handler.start_processing()
        worker.join()
    """

    def __init__(
        self,
        transport: Transport,
        terminator: str = DEFAULT_TERMINATOR,
        encoding: str = "ascii",
        response_timeout_ms: Optional[int] = None,
        poll_interval_s: float = POLL_INTERVAL_S,
    ) -> None:
        self._transport = transport
        self._framer = ResponseFramer(
            transport,
            terminator=terminator,
            encoding=encoding,
            poll_interval_s=poll_interval_s,
            response_timeout_ms=response_timeout_ms,
        )
        self._queue: deque[Command] = deque()
        # Guards _queue, _state, _current and _owner.
        self._lock = threading.Lock()
        self._idle = threading.Condition(self._lock)
        self._state = QueueState.IDLE
        self._current: Command | None = None
        self._cancel = threading.Event()
        self._worker: threading.Thread | None = None
        # Thread holding the transport while PROCESSING.
        self._owner: threading.Thread | None = None
        self._stale_input = False
        self._last_error: Exception | None = None

    @property
    def transport(self) -> Transport:
        return self._transport

    @property
    def terminator(self) -> str:
        return self._framer.terminator

    @property
    def state(self) -> QueueState:
        with self._lock:
            return self._state

    @property
    def pending(self) -> int:
        """Number of commands waiting to be sent."""
        with self._lock:
            return len(self._queue)

    @property
    def current_command(self) -> Command | None:
        """The command in flight, if any."""
        with self._lock:
            return self._current

    @property
    def last_error(self) -> Exception | None:
        """The error that ended the most recent processing run, if any."""
        return self._last_error

    # ─── QUEUE MANAGEMENT ────────────────────────────────────────────

    def enqueue(
        self,
        command: Command | str,
        multi_line: bool = False,
        on_complete: Optional[Callable[[Command, str], None]] = None,
        settle_delay_ms: int = 0,
        idle_threshold_ms: int = DEFAULT_IDLE_THRESHOLD_MS,
    ) -> Command:
        """Append a command to the queue.

        *command* is either a :class:`Command` or a payload string, in which
        case the remaining arguments describe the command to build.

        Raises:
            QueueBusyError: If the queue is being processed.
        """
        if isinstance(command, str):
            command = Command(
                payload=command,
                multi_line=multi_line,
                on_complete=on_complete,
                settle_delay_ms=settle_delay_ms,
                idle_threshold_ms=idle_threshold_ms,
            )

        with self._lock:
            if self._state is QueueState.PROCESSING:
                raise QueueBusyError(
                    f"Cannot enqueue {command.payload!r} while processing"
                )
            self._queue.append(command)
        return command

    def clear(self) -> int:
        """Drop every queued command. The command in flight is unaffected.

        Returns:
            The number of commands removed.
        """
        with self._lock:
            removed = len(self._queue)
            self._queue.clear()
        if removed:
            logger.debug("Cleared %d queued command(s)", removed)
        return removed

    # ─── PROCESSING ──────────────────────────────────────────────────

    def start_processing(self) -> threading.Thread:
        """Send the queued commands on a background thread and return it.

        Raises:
            QueueBusyError: If processing is already running.
            EmptyQueueError: If there is nothing to send.
        """
        with self._lock:
            if self._state is QueueState.PROCESSING:
                raise QueueBusyError("Queue is already being processed")
            if not self._queue:
                raise EmptyQueueError("Cannot process an empty queue")
            self._state = QueueState.PROCESSING
            self._cancel.clear()
            self._last_error = None
            worker = threading.Thread(
                target=self._process_queue,
                name="sch-queue",
                daemon=True,
            )
            self._worker = worker
            self._owner = worker

        logger.info("Processing %d queued command(s)", self.pending)
        worker.start()
        return worker

    def abort(self, timeout: Optional[float] = None) -> bool:
        """Cancel the running queue or ``send_and_wait`` call.

        Drops the commands still waiting. The in-flight command stops at its
        next poll; its callback is not invoked, and whatever it receives
        before the next command is sent is discarded. Blocks until the state
        is back to ``IDLE`` unless called from the thread that holds the
        transport (for example inside a completion callback).

        Returns:
            ``True`` if the state is ``IDLE`` and no worker is left running.
        """
        self._cancel.set()
        self.clear()

        with self._idle:
            if self._owner is threading.current_thread():
                return False
            if not self._idle.wait_for(
                lambda: self._state is QueueState.IDLE, timeout
            ):
                return False

        # The worker releases the state just before it exits.
        worker = self._worker
        if worker is not None and worker is not threading.current_thread():
            worker.join(timeout)
            return not worker.is_alive()
        return True

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Wait for the current processing run, if any, to finish."""
        worker = self._worker
        if worker is None or worker is threading.current_thread():
            return True
        worker.join(timeout)
        return not worker.is_alive()

    def send_and_wait(self, command: Command) -> str:
        """Send a single command outside the queue and return its response.

        The callback, if any, is invoked before returning. Errors propagate
        to the caller.

        Raises:
            QueueBusyError: If the queue is being processed.
            TransportError: If the write or read fails.
        """
        with self._lock:
            if self._state is QueueState.PROCESSING:
                raise QueueBusyError(
                    f"Cannot send {command.payload!r} while processing"
                )
            self._state = QueueState.PROCESSING
            self._owner = threading.current_thread()
            self._current = command
            self._cancel.clear()

        try:
            return self._execute(command)
        finally:
            self._release()

    def _release(self) -> None:
        with self._idle:
            self._current = None
            self._owner = None
            self._state = QueueState.IDLE
            self._idle.notify_all()

    def _process_queue(self) -> None:
        command: Command | None = None
        try:
            while True:
                with self._lock:
                    if self._cancel.is_set() or not self._queue:
                        break
                    command = self._queue.popleft()
                    self._current = command
                self._execute(command)
        except ProcessingAbortedError:
            logger.info("Aborted while executing %s", command)
            self.clear()
        except Exception as e:
            logger.error("Failed while executing %s: %s", command, e)
            self._last_error = e
            self.clear()
        finally:
            self._release()
            logger.debug("Queue processing finished")

    def _execute(self, command: Command) -> str:
        """Write *command*, frame its response and run its callback."""
        if self._stale_input:
            self._discard_stale_input()
        data = command.encode(self.terminator).encode(self._framer.encoding)
        written = threading.Event()

        try:
            # The reader starts before the write so no reply byte is missed.
            with ThreadPoolExecutor(max_workers=1, thread_name_prefix="sch-read") as reader:
                pending = reader.submit(
                    self._framer.read_response, command, self._cancel, written
                )
                try:
                    logger.debug("TX %r", data)
                    self._transport.write(data)
                except Exception:
                    # Stop the reader before the error propagates.
                    self._cancel.set()
                    raise
                written.set()
                response = pending.result()
        except Exception:
            # A reply to this command may still arrive.
            self._stale_input = True
            raise

        if command.on_complete is not None:
            command.on_complete(command, response)
        return response

    def _discard_stale_input(self) -> None:
        stale = bytearray()
        while True:
            chunk = self._transport.read_available()
            if not chunk:
                break
            stale.extend(chunk)
        self._stale_input = False
        if stale:
            logger.info("Discarded %d stale byte(s): %r", len(stale), bytes(stale))
