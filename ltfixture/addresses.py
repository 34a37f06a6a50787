"""Fake peer addresses, endpoints and hashes for feeding the engine."""
import ipaddress
import os
from typing import Callable, Optional, Tuple, Union

Address = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]
Endpoint = Tuple[str, int]


def rand_hash() -> bytes:
    return os.urandom(20)


def to_hash(s: str) -> bytes:
    if len(s) != 40:
        raise ValueError(f"expected 40 hex digits, got {len(s)}")
    return bytes.fromhex(s)


def rand_v6() -> ipaddress.IPv6Address:
    return ipaddress.IPv6Address(os.urandom(16))


def addr(ip: str) -> Address:
    return ipaddress.ip_address(ip)


def ep(ip: str, port: int) -> Endpoint:
    if not 0 <= port <= 65535:
        raise ValueError(f"invalid port {port}")
    return str(addr(ip)), port


class AddressGenerator:
    """Reproducible sequence of public-looking IPv4 addresses and endpoints.

    Ports run through 1024..15061 and never repeat back to back.
    """

    def __init__(self):
        self.reset()

    def reset(self) -> None:
        self._addr = 0x92343023
        self._port = 0

    def rand_v4(self) -> ipaddress.IPv4Address:
        while True:
            self._addr = (self._addr + 0x3080ca) & 0xffffffff
            ret = ipaddress.IPv4Address(self._addr)
            if not (ret.is_unspecified or ret.is_private or ret.is_loopback
                    or ret.is_link_local):
                return ret

    def rand_tcp_ep(self, rand_addr: Optional[Callable[[], Address]] = None) -> Endpoint:
        self._port = (self._port + 1) % 14038
        return str((rand_addr or self.rand_v4)()), self._port + 1024

    def rand_udp_ep(self, rand_addr: Optional[Callable[[], Address]] = None) -> Endpoint:
        self._port = (self._port + 1) % 14037
        return str((rand_addr or self.rand_v4)()), self._port + 1024
