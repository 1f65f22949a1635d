"""Shared fixtures: an in-memory device that answers on a timeline."""

from __future__ import annotations

import threading
import time

import pytest

from serial_command_handler.errors import TransportError


class ScriptedTransport:
    """Fake transport that replays scripted replies.

    ``replies`` maps a written line (terminator included) to a list of
    ``(delay_s, data)`` chunks. Each chunk becomes readable *delay_s* after
    the previous one, counted from the write.
    ``write_delay`` makes every write block that long, like a slow line.
    """

    def __init__(self, replies=None, fail_on=(), write_delay=0.0) -> None:
        self.replies = dict(replies or {})
        self.fail_on = set(fail_on)
        self.write_delay = write_delay
        self.writes: list[bytes] = []
        self.write_times: list[float] = []
        self._scheduled: list[tuple[float, bytes]] = []
        self._lock = threading.Lock()

    def write(self, data: bytes) -> int:
        if self.write_delay:
            time.sleep(self.write_delay)
        now = time.monotonic()
        with self._lock:
            self.writes.append(data)
            self.write_times.append(now)
            if data in self.fail_on:
                raise TransportError(f"write of {data!r} failed")
            at = now
            for delay, chunk in self.replies.get(data, []):
                at += delay
                self._scheduled.append((at, chunk))
        return len(data)

    def read_available(self) -> bytes:
        now = time.monotonic()
        with self._lock:
            ready = [chunk for at, chunk in self._scheduled if at <= now]
            self._scheduled = [(at, c) for at, c in self._scheduled if at > now]
        return b"".join(ready)

    def feed(self, data: bytes) -> None:
        """Make *data* readable immediately."""
        with self._lock:
            self._scheduled.append((time.monotonic(), data))


def wait_for(predicate, timeout=2.0):
    """Poll *predicate* until it is true or *timeout* elapses."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.002)
    return predicate()


@pytest.fixture
def transport():
    return ScriptedTransport()


@pytest.fixture
def waiter():
    return wait_for


@pytest.fixture
def make_transport():
    return ScriptedTransport
