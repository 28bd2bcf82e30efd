"""Shared utilities for the Wake-on-Connect gateway."""

import asyncio
import logging
from typing import Any


logger = logging.getLogger(__name__)


async def check_port_open(host: str, port: int, timeout: float = 5.0) -> bool:
    """
    Check if a TCP port is open on a remote host.

    Args:
        host: Target hostname or IP address
        port: Target port number
        timeout: Connection timeout in seconds

    Returns:
        True if a connection could be opened, False otherwise
    """
    try:
        reader, writer = await asyncio.wait_for(
            asyncio.open_connection(host, port),
            timeout=timeout
        )
    except (asyncio.TimeoutError, OSError) as e:
        logger.debug(f"{host}:{port} not reachable: {e}")
        return False

    writer.close()
    try:
        await writer.wait_closed()
    except OSError:
        pass
    return True


def validate_port(port: Any) -> bool:
    """
    Validate port number.

    Args:
        port: Port number to validate

    Returns:
        True if valid port number, False otherwise
    """
    return isinstance(port, int) and not isinstance(port, bool) and 1 <= port <= 65535


def format_duration(seconds: float) -> str:
    """
    Format duration in human readable format.

    Args:
        seconds: Duration in seconds

    Returns:
        Formatted duration string (e.g., "1h 30m 45s")
    """
    if seconds < 0:
        return "0s"

    hours = int(seconds // 3600)
    minutes = int((seconds % 3600) // 60)
    secs = int(seconds % 60)

    parts = []
    if hours > 0:
        parts.append(f"{hours}h")
    if minutes > 0:
        parts.append(f"{minutes}m")
    if secs > 0 or not parts:
        parts.append(f"{secs}s")

    return " ".join(parts)
