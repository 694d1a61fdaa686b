"""Network reachability check run before any device is opened."""

import asyncio
import socket

import structlog

from voicelink.core.errors import NetworkUnavailableError

logger = structlog.get_logger(__name__)


async def probe_network(host: str, port: int = 443) -> None:
    """Resolve the Live API host; an offline machine fails name resolution.

    Raises:
        NetworkUnavailableError: If the host cannot be resolved
    """
    loop = asyncio.get_running_loop()
    try:
        addresses = await loop.getaddrinfo(host, port, type=socket.SOCK_STREAM)
    except (socket.gaierror, OSError) as exc:
        raise NetworkUnavailableError(f"Network unreachable: cannot resolve {host}") from exc
    if not addresses:
        raise NetworkUnavailableError(f"Network unreachable: no address for {host}")
    logger.debug("Network probe succeeded", host=host, addresses=len(addresses))
