"""Command model: one line-oriented request to the firmware."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Optional

DEFAULT_TERMINATOR = "\r"
DEFAULT_IDLE_THRESHOLD_MS = 10


@dataclass(frozen=True)
class Command:
    """An immutable request sent to the device.

    Attributes:
        payload: Raw text to send. The handler appends the terminator
            unless the payload already contains it.
        multi_line: ``True`` when the firmware answers with a burst of
            lines that ends with silence instead of a single terminated line.
        on_complete: Called as ``on_complete(command, response)`` on the
            processing thread once the response has been framed.
        settle_delay_ms: Extra wait after the response, for hardware that
            keeps changing state after acknowledging.
        idle_threshold_ms: Silence that ends a multi-line response.
    """

    payload: str
    multi_line: bool = False
    on_complete: Optional[Callable[[Command, str], None]] = field(
        default=None, compare=False, repr=False
    )
    settle_delay_ms: int = 0
    idle_threshold_ms: int = DEFAULT_IDLE_THRESHOLD_MS

    def __post_init__(self) -> None:
        if self.settle_delay_ms < 0:
            raise ValueError(
                f"settle_delay_ms must be >= 0, got {self.settle_delay_ms}"
            )
        if self.idle_threshold_ms < 0:
            raise ValueError(
                f"idle_threshold_ms must be >= 0, got {self.idle_threshold_ms}"
            )
        if self.multi_line and self.idle_threshold_ms == 0:
            raise ValueError("Multi-line commands need idle_threshold_ms > 0")

    def encode(self, terminator: str = DEFAULT_TERMINATOR) -> str:
        """Return the text to write, terminated exactly once."""
        if terminator in self.payload:
            return self.payload
        return self.payload + terminator

    def __str__(self) -> str:
        text = f"Command: {self.payload!r}, multi-line: {self.multi_line}"
        if self.multi_line:
            text += f", idle threshold: {self.idle_threshold_ms}ms"
        if self.settle_delay_ms:
            text += f", settle delay: {self.settle_delay_ms}ms"
        return text
