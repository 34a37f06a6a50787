"""
Ephemeral loopback port allocation.

A candidate port is probed by binding a TCP socket to it and closing the
socket again right away. Nothing holds the port between the probe and the
caller binding it, so another process can still grab it in that window.
Within this process, leased ports are never handed out twice.
"""
import random
import socket
import threading
from dataclasses import dataclass
from typing import Dict, List, Optional

from . import config
from .errors import PortExhaustedError

MAX_PORT = 65535


@dataclass(frozen=True)
class PortLease:
    port: int
    owner: str  # a service kind, or "direct"


def probe_port(port: int, host: str = config.LOOPBACK) -> bool:
    """True if a TCP socket can bind host:port right now."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        try:
            s.bind((host, port))
        except OSError:
            return False
    return True


class PortAllocator:
    def __init__(
        self,
        base: int = config.PORT_BASE,
        spread: int = config.PORT_RANGE,
        max_probes: Optional[int] = None,
        rng: Optional[random.Random] = None,
    ):
        self.base = base
        self.spread = spread
        self.max_probes = config.MAX_PORT_PROBES if max_probes is None else max_probes
        self.rng = rng or random.Random()
        self._leases: Dict[int, PortLease] = {}
        self._lock = threading.Lock()

    def allocate(self, owner: str = "direct") -> int:
        with self._lock:
            port = self.base + self.rng.randrange(self.spread)
            for _ in range(self.max_probes):
                port += 1
                if port > MAX_PORT:
                    port = self.base + 1
                if port in self._leases:
                    continue
                if probe_port(port):
                    self._leases[port] = PortLease(port, owner)
                    return port
        raise PortExhaustedError(
            f"no free port found after {self.max_probes} probes starting near {self.base}"
        )

    def release(self, port: int) -> None:
        with self._lock:
            self._leases.pop(port, None)

    def leases(self) -> List[PortLease]:
        with self._lock:
            return list(self._leases.values())

    def owner(self, port: int) -> Optional[str]:
        with self._lock:
            lease = self._leases.get(port)
        return lease.owner if lease else None
