"""Registry-aware host port allocation."""

import socket
from typing import Iterable, List, Optional, Protocol, Set
from ..core.errors import PortRangeExhaustedError
from ..core.log import get_logger

logger = get_logger(__name__)

MAX_PORT = 65535


class PortProbe(Protocol):
    """Protocol for host port probes to enable dependency injection."""

    def __call__(self, port: int) -> bool:
        """Return True if the port can be bound on the host."""


def host_port_is_free(port: int) -> bool:
    """Check whether nothing on the host is listening on the port."""
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind(("0.0.0.0", port))
            return True
    except OSError:
        return False


class PortAllocator:
    """Forward-scanning port allocator seeded with ports already in use.

    Ports recorded by any registry entry are never handed out. Every port
    handed out is added to the reserved set, so successive allocations from
    the same allocator never collide.
    """

    def __init__(
        self,
        reserved: Iterable[int] = (),
        max_probes: int = 1000,
        probe: Optional[PortProbe] = None,
    ) -> None:
        """Initialize port allocator.

        Args:
            reserved: Ports that must not be allocated
            max_probes: Bound on candidate ports examined per allocation
            probe: Optional host-side check; ports it rejects are skipped
        """
        self._reserved: Set[int] = set(reserved)
        self.max_probes = max_probes
        self._probe = probe

    @property
    def reserved(self) -> Set[int]:
        return set(self._reserved)

    def allocate(self, start: int) -> int:
        """Allocate the first free port at or above ``start``.

        Raises:
            PortRangeExhaustedError: If max_probes candidates were all taken
        """
        probes = 0
        port = start
        while probes < self.max_probes and port <= MAX_PORT:
            probes += 1
            if self._is_available(port):
                self._reserved.add(port)
                logger.debug("Allocated port %s (start %s, probes %s)", port, start, probes)
                return port
            port += 1

        raise PortRangeExhaustedError(
            start,
            probes,
            details={"start_port": start, "last_probed": port - 1},
        )

    def allocate_many(self, start: int, count: int) -> List[int]:
        """Allocate ``count`` logically consecutive ports starting at ``start``.

        Occupied values are skipped, so the result is increasing but not
        necessarily contiguous.
        """
        ports: List[int] = []
        cursor = start
        for _ in range(count):
            port = self.allocate(cursor)
            ports.append(port)
            cursor = port + 1
        return ports

    def _is_available(self, port: int) -> bool:
        if port in self._reserved:
            return False
        if self._probe is not None and not self._probe(port):
            logger.debug("Port %s is bound on the host, skipping", port)
            return False
        return True
