# src/livepreview/ports.py
"""
Host port allocation for previews.

Ports come from a fixed closed interval. A candidate is handed out only
when it is not tracked as used, can be bound on the host, and is not
published by any container the runtime knows about. The whole scan runs
under one lock, so concurrent ``allocate`` calls never share a port.
"""

import asyncio
import errno
import logging
import socket

from .exceptions import AllocationError, LivePreviewError
from .runtime.base import ContainerRuntime

logger = logging.getLogger(__name__)


def is_port_bindable(port: int, host: str = "0.0.0.0") -> bool:
    """Return True if a TCP socket can bind ``host:port`` right now."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        try:
            sock.bind((host, port))
        except OSError as e:
            if e.errno not in (errno.EADDRINUSE, errno.EACCES, errno.EADDRNOTAVAIL):
                logger.debug(f"Unexpected error probing port {port}: {e}")
            return False
    return True


class PortAllocator:
    """
    Hands out unique host ports from ``[start, end]``.

    Args:
        start: First port of the range
        end: Last port of the range (inclusive)
        runtime: Used to exclude ports already published by containers
        bind_host: Address used by the bind probe
        probe: Replacement for the bind probe, ``probe(port) -> bool``
    """

    def __init__(
        self,
        start: int = 4000,
        end: int = 5000,
        runtime: ContainerRuntime | None = None,
        bind_host: str = "0.0.0.0",
        probe=None,
    ):
        if start > end:
            raise ValueError(f"Invalid port range {start}-{end}")
        self.start = start
        self.end = end
        self._runtime = runtime
        self._bind_host = bind_host
        self._probe = probe or (lambda port: is_port_bindable(port, self._bind_host))
        self._used: set[int] = set()
        self._lock = asyncio.Lock()

    @property
    def used_ports(self) -> frozenset[int]:
        return frozenset(self._used)

    def in_range(self, port: int) -> bool:
        return self.start <= port <= self.end

    def is_allocated(self, port: int) -> bool:
        return port in self._used

    async def _runtime_ports(self) -> set[int]:
        if self._runtime is None:
            return set()
        try:
            return await self._runtime.published_ports()
        except LivePreviewError as e:
            logger.warning(f"Could not list published ports, relying on bind probe: {e}")
            return set()

    async def allocate(self) -> int:
        """
        Reserve and return the lowest free port.

        Raises:
            AllocationError: If every port in the range is taken
        """
        async with self._lock:
            published = await self._runtime_ports()
            for port in range(self.start, self.end + 1):
                if port in self._used or port in published:
                    continue
                if not self._probe(port):
                    continue
                self._used.add(port)
                logger.debug(f"Allocated port {port}")
                return port

        raise AllocationError(
            f"No available ports in range {self.start}-{self.end}",
            port_range=(self.start, self.end),
            details={"in_use": len(self._used)},
        )

    async def reserve(self, port: int) -> bool:
        """Mark a known port as used. Returns False if it was already tracked."""
        async with self._lock:
            if port in self._used:
                return False
            self._used.add(port)
            return True

    def release(self, port: int | None) -> None:
        """Return a port to the pool. Untracked ports are ignored."""
        if port is None or port not in self._used:
            return
        self._used.discard(port)
        logger.debug(f"Released port {port}")
