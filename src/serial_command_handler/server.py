"""MCP server entry point for the serial command handler.

Exposes the command queue as tools and resources via the Model Context
Protocol using the official Python MCP SDK with stdio transport.
"""

from __future__ import annotations

import json
import logging
import threading
from collections import deque
from typing import Any, Optional

from mcp.server.fastmcp import FastMCP

from .errors import CommandHandlerError
from .handler import CommandHandler
from .models.command import Command, DEFAULT_IDLE_THRESHOLD_MS, DEFAULT_TERMINATOR
from .models.settings import (
    DEFAULT_BAUD_RATE,
    READ_TIMEOUT_MS,
    WRITE_TIMEOUT_MS,
    Handshake,
    Parity,
    SerialSettings,
    StopBits,
)
from .transport.serial_connection import SerialConnection, list_ports

logger = logging.getLogger(__name__)

RESPONSE_HISTORY_SIZE = 200

mcp = FastMCP(
    "serial-command-handler",
    instructions="Send line-oriented commands to a firmware device on a serial port",
)

# Global connection state
_connection: SerialConnection | None = None
_handler: CommandHandler | None = None
_responses: deque[dict[str, Any]] = deque(maxlen=RESPONSE_HISTORY_SIZE)
_responses_lock = threading.Lock()


def _get_handler() -> CommandHandler:
    """Get the command handler for the open port, raising if not connected."""
    if _handler is None or _connection is None or not _connection.connected:
        raise RuntimeError(
            "Not connected to device. Use the 'connect' tool first."
        )
    return _handler


def _record_response(command: Command, response: str) -> None:
    """Completion callback for queued commands."""
    with _responses_lock:
        _responses.append({
            "command": command.payload,
            "multi_line": command.multi_line,
            "response": response,
        })


def _queue_status(handler: CommandHandler) -> dict[str, Any]:
    current = handler.current_command
    error = handler.last_error
    return {
        "state": handler.state.value,
        "pending": handler.pending,
        "current_command": current.payload if current else None,
        "last_error": str(error) if error else None,
    }


# ─── CONNECTION TOOLS ─────────────────────────────────────────────────

@mcp.tool()
def list_serial_ports() -> dict[str, Any]:
    """List the serial ports currently available on this host."""
    ports = list_ports()
    return {"ports": ports, "count": len(ports)}


@mcp.tool()
def connect(
    port: str,
    baud_rate: int = DEFAULT_BAUD_RATE,
    data_bits: int = 8,
    parity: str = "none",
    stop_bits: str = "one",
    handshake: str = "none",
    read_timeout_ms: int = READ_TIMEOUT_MS,
    write_timeout_ms: int = WRITE_TIMEOUT_MS,
    terminator: str = DEFAULT_TERMINATOR,
) -> dict[str, Any]:
    """Open a serial port to the device.

    Args:
        port: Device path, e.g. /dev/ttyUSB0 or COM3.
        baud_rate: Line speed (default 115200).
        data_bits: 5-8 (default 8).
        parity: none, odd, even, mark or space.
        stop_bits: one, two or one_point_five.
        handshake: none, xon_xoff, request_to_send or request_to_send_xon_xoff.
        read_timeout_ms: How long a single-line reply may take.
        write_timeout_ms: Write timeout.
        terminator: Line terminator used by the firmware (default CR).
    """
    global _connection, _handler
    if _connection is not None and _connection.connected:
        return {
            "connected": True,
            "message": "Already connected",
            "port": _connection.settings.port,
        }

    try:
        settings = SerialSettings(
            port=port,
            baud_rate=baud_rate,
            data_bits=data_bits,
            parity=Parity(parity),
            stop_bits=StopBits(stop_bits),
            handshake=Handshake(handshake),
            read_timeout_ms=read_timeout_ms,
            write_timeout_ms=write_timeout_ms,
        )
    except ValueError as e:
        return {"error": str(e)}

    connection = SerialConnection()
    try:
        handler = CommandHandler(
            connection,
            terminator=terminator,
            response_timeout_ms=read_timeout_ms,
        )
        connection.open(settings)
    except (ValueError, CommandHandlerError) as e:
        return {"error": str(e)}

    _connection = connection
    _handler = handler
    return {"connected": True, "settings": settings.to_dict()}


@mcp.tool()
def disconnect() -> dict[str, bool]:
    """Abort any running queue and close the serial port."""
    global _connection, _handler
    if _handler is not None:
        _handler.abort(timeout=2.0)
    if _connection is not None:
        _connection.close()
    _connection = None
    _handler = None
    return {"disconnected": True}


# ─── COMMAND TOOLS ────────────────────────────────────────────────────

@mcp.tool()
def send_command(
    payload: str,
    multi_line: bool = False,
    idle_threshold_ms: int = DEFAULT_IDLE_THRESHOLD_MS,
    settle_delay_ms: int = 0,
) -> dict[str, Any]:
    """Send one command and wait for its response.

    Args:
        payload: Command text; the terminator is appended automatically.
        multi_line: Whether the firmware answers with several lines.
        idle_threshold_ms: Silence that ends a multi-line reply.
        settle_delay_ms: Extra wait after the reply.
    """
    handler = _get_handler()
    try:
        command = Command(
            payload=payload,
            multi_line=multi_line,
            settle_delay_ms=settle_delay_ms,
            idle_threshold_ms=idle_threshold_ms,
        )
        response = handler.send_and_wait(command)
    except (ValueError, CommandHandlerError) as e:
        return {"error": str(e)}
    return {"command": payload, "response": response}


@mcp.tool()
def enqueue_command(
    payload: str,
    multi_line: bool = False,
    idle_threshold_ms: int = DEFAULT_IDLE_THRESHOLD_MS,
    settle_delay_ms: int = 0,
) -> dict[str, Any]:
    """Add a command to the queue. Use start_processing to send the queue.

    Args:
        payload: Command text; the terminator is appended automatically.
        multi_line: Whether the firmware answers with several lines.
        idle_threshold_ms: Silence that ends a multi-line reply.
        settle_delay_ms: Extra wait after the reply.
    """
    handler = _get_handler()
    try:
        handler.enqueue(
            payload,
            multi_line=multi_line,
            on_complete=_record_response,
            settle_delay_ms=settle_delay_ms,
            idle_threshold_ms=idle_threshold_ms,
        )
    except (ValueError, CommandHandlerError) as e:
        return {"error": str(e)}
    return {"queued": payload, "pending": handler.pending}


@mcp.tool()
def start_processing() -> dict[str, Any]:
    """Send every queued command in order on a background worker.

    Responses are collected and can be read with get_responses.
    """
    handler = _get_handler()
    pending = handler.pending
    try:
        handler.start_processing()
    except CommandHandlerError as e:
        return {"error": str(e)}
    return {"started": True, "commands": pending}


@mcp.tool()
def abort_processing() -> dict[str, Any]:
    """Stop the running queue and drop the commands still waiting."""
    handler = _get_handler()
    stopped = handler.abort(timeout=2.0)
    if stopped and _connection is not None:
        # Drop whatever the aborted command already received.
        try:
            _connection.reset_input_buffer()
        except CommandHandlerError as e:
            logger.warning("Could not flush input after abort: %s", e)
    return {"aborted": stopped, **_queue_status(handler)}


@mcp.tool()
def clear_queue() -> dict[str, int]:
    """Remove every command that has not been sent yet."""
    handler = _get_handler()
    return {"removed": handler.clear()}


@mcp.tool()
def get_queue_status() -> dict[str, Any]:
    """Report the queue state, pending count and last error."""
    return _queue_status(_get_handler())


@mcp.tool()
def get_responses(clear: bool = False, limit: Optional[int] = None) -> dict[str, Any]:
    """Return the responses collected from queued commands, oldest first.

    Args:
        clear: Empty the history after reading it.
        limit: Only return the most recent N responses.
    """
    with _responses_lock:
        responses = list(_responses)
        if clear:
            _responses.clear()
    if limit is not None:
        responses = responses[-limit:] if limit > 0 else []
    return {"responses": responses, "count": len(responses)}


# ─── MCP RESOURCES ───────────────────────────────────────────────────

@mcp.resource("sch://device/status")
def resource_device_status() -> str:
    """Connection state and serial settings."""
    if _connection is None or not _connection.connected:
        return json.dumps({"connected": False})
    return json.dumps({
        "connected": True,
        "settings": _connection.settings.to_dict(),
    })


@mcp.resource("sch://queue/status")
def resource_queue_status() -> str:
    """Queue state of the open connection."""
    if _handler is None:
        return json.dumps({"connected": False})
    return json.dumps(_queue_status(_handler))


# ─── ENTRY POINT ─────────────────────────────────────────────────────

def main():
    """Run the MCP server with stdio transport."""
    logging.basicConfig(level=logging.INFO)
    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
