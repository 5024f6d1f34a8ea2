"""TCP reachability check."""

from __future__ import annotations

import asyncio
import logging

logger = logging.getLogger(__name__)

DEFAULT_REACHABILITY_TIMEOUT = 1.0


async def is_port_reachable(
    host: str,
    port: int,
    timeout: float = DEFAULT_REACHABILITY_TIMEOUT,
) -> bool:
    """Check whether ``host:port`` accepts a TCP connection within ``timeout``.

    Returns:
        True if the connection completed; False on timeout or connection error

    """
    try:
        _reader, writer = await asyncio.wait_for(
            asyncio.open_connection(host, port),
            timeout=timeout,
        )
    except asyncio.TimeoutError:
        logger.debug("Connection check of %s:%d timed out after %.1fs", host, port, timeout)
        return False
    except OSError as e:
        logger.debug("Connection check of %s:%d failed: %s", host, port, e)
        return False

    writer.close()
    try:
        await writer.wait_closed()
    except OSError as e:
        logger.debug("Error closing check connection to %s:%d: %s", host, port, e)
    return True
