"""Exceptions raised by the command handler and its transport."""

from __future__ import annotations


class CommandHandlerError(Exception):
    """Base class for every error raised by this package."""


class QueueBusyError(CommandHandlerError):
    """A mutating operation was attempted while the queue is processing."""


class EmptyQueueError(CommandHandlerError):
    """Queue processing was requested with no commands queued."""


class ProcessingAbortedError(CommandHandlerError):
    """The in-flight read was cancelled by ``CommandHandler.abort``."""


class TransportError(CommandHandlerError, ConnectionError):
    """A write or read failed at the transport boundary."""


class ResponseTimeoutError(TransportError):
    """No terminator arrived within the configured response timeout."""
