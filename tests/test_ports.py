import random
import socket

import pytest

from ltfixture import ports
from ltfixture.errors import PortExhaustedError
from ltfixture.ports import PortAllocator, probe_port


class FixedRng:
    """randrange() always returns the same offset."""

    def __init__(self, offset):
        self.offset = offset

    def randrange(self, n):
        return self.offset


def test_allocated_port_is_bindable():
    allocator = PortAllocator()
    port = allocator.allocate()
    assert ports.MAX_PORT >= port > allocator.base

    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", port))


def test_ports_are_distinct():
    allocator = PortAllocator()
    allocated = [allocator.allocate() for _ in range(50)]
    assert len(set(allocated)) == len(allocated)
    assert len(allocator.leases()) == 50


def test_leased_port_is_skipped(monkeypatch):
    monkeypatch.setattr(ports, "probe_port", lambda port, host="127.0.0.1": True)
    allocator = PortAllocator(base=3000, rng=FixedRng(10))
    assert allocator.allocate() == 3011
    # same starting point, 3011 is leased now
    assert allocator.allocate() == 3012


def test_released_port_can_be_handed_out_again(monkeypatch):
    monkeypatch.setattr(ports, "probe_port", lambda port, host="127.0.0.1": True)
    allocator = PortAllocator(base=3000, rng=FixedRng(10))
    port = allocator.allocate()
    allocator.release(port)
    assert allocator.owner(port) is None
    assert allocator.allocate() == port


def test_busy_port_is_skipped():
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        busy = s.getsockname()[1]
        assert not probe_port(busy)

        allocator = PortAllocator(base=busy - 1, spread=1)
        assert allocator.allocate() != busy


def test_wraps_around_past_max_port(monkeypatch):
    monkeypatch.setattr(ports, "probe_port", lambda port, host="127.0.0.1": True)
    allocator = PortAllocator(base=2000, spread=70000, rng=FixedRng(ports.MAX_PORT - 2000))
    assert allocator.allocate() == 2001


def test_exhaustion_raises(monkeypatch):
    probed = []

    def nothing_free(port, host="127.0.0.1"):
        probed.append(port)
        return False

    monkeypatch.setattr(ports, "probe_port", nothing_free)
    allocator = PortAllocator(max_probes=25)
    with pytest.raises(PortExhaustedError):
        allocator.allocate()
    assert len(probed) == 25
    assert allocator.leases() == []


def test_owner_is_recorded():
    allocator = PortAllocator(rng=random.Random(1))
    port = allocator.allocate(owner="socks5")
    assert allocator.owner(port) == "socks5"
    assert allocator.owner(allocator.allocate()) == "direct"
