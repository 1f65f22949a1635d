"""Data models for commands and serial settings."""

from .command import Command, DEFAULT_IDLE_THRESHOLD_MS, DEFAULT_TERMINATOR
from .settings import Handshake, Parity, SerialSettings, StopBits
