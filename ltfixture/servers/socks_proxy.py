#!/usr/bin/env python3
"""
SOCKS proxy for the proxy tests. CONNECT only.

Usage:
    python -m ltfixture.servers.socks_proxy --port 1080                 # SOCKS5, no auth
    python -m ltfixture.servers.socks_proxy --port 1080 --allow-v4      # also SOCKS4/4a
    python -m ltfixture.servers.socks_proxy --port 1080 --username testuser --password testpass
"""
import argparse
import ipaddress
import socket
import socketserver
import struct
import sys

from . import recv_exact, relay

# SOCKS5 auth methods
NO_AUTH = 0x00
USER_PASS = 0x02
NO_ACCEPTABLE = 0xFF

# SOCKS5 reply codes
SUCCEEDED = 0x00
GENERAL_FAILURE = 0x01
CONNECTION_REFUSED = 0x05
COMMAND_NOT_SUPPORTED = 0x07
ADDRESS_NOT_SUPPORTED = 0x08

CMD_CONNECT = 0x01


class SocksServer(socketserver.ThreadingTCPServer):
    allow_reuse_address = True
    daemon_threads = True

    def __init__(self, address, allow_v4=False, username=None, password=None):
        super().__init__(address, SocksHandler)
        self.allow_v4 = allow_v4
        self.username = username
        self.password = password


class SocksHandler(socketserver.BaseRequestHandler):
    def handle(self):
        try:
            version = recv_exact(self.request, 1)[0]
            if version == 5:
                self.handle_v5()
            elif version == 4 and self.server.allow_v4:
                self.handle_v4()
            else:
                print(f"rejecting SOCKS version {version} from {self.client_address}")
        except (ConnectionError, OSError) as e:
            print(f"connection from {self.client_address} failed: {e}")

    # -----------------------------
    # SOCKS4 / SOCKS4a
    # -----------------------------
    def _read_cstring(self) -> bytes:
        out = b""
        while True:
            c = recv_exact(self.request, 1)
            if c == b"\0":
                return out
            out += c

    def handle_v4(self):
        cmd, port, raw_ip = struct.unpack("!BH4s", recv_exact(self.request, 7))
        self._read_cstring()  # user id, ignored
        host = socket.inet_ntoa(raw_ip)
        if raw_ip[:3] == b"\0\0\0" and raw_ip[3] != 0:
            host = self._read_cstring().decode()

        if cmd != CMD_CONNECT:
            self.request.sendall(struct.pack("!BBH4s", 0, 0x5B, 0, b"\0" * 4))
            return
        try:
            upstream = socket.create_connection((host, port), timeout=10)
        except OSError as e:
            print(f"socks4: connect to {host}:{port} failed: {e}")
            self.request.sendall(struct.pack("!BBH4s", 0, 0x5B, 0, b"\0" * 4))
            return

        print(f"socks4: {self.client_address} -> {host}:{port}")
        self.request.sendall(struct.pack("!BBH4s", 0, 0x5A, port, raw_ip))
        with upstream:
            upstream.settimeout(None)
            relay(self.request, upstream)

    # -----------------------------
    # SOCKS5
    # -----------------------------
    def handle_v5(self):
        nmethods = recv_exact(self.request, 1)[0]
        methods = recv_exact(self.request, nmethods)
        wanted = USER_PASS if self.server.username else NO_AUTH
        if wanted not in methods:
            self.request.sendall(bytes([5, NO_ACCEPTABLE]))
            return
        self.request.sendall(bytes([5, wanted]))
        if wanted == USER_PASS and not self.authenticate():
            return

        _, cmd, _, atyp = recv_exact(self.request, 4)
        if atyp == 1:
            host = socket.inet_ntoa(recv_exact(self.request, 4))
        elif atyp == 3:
            host = recv_exact(self.request, recv_exact(self.request, 1)[0]).decode()
        elif atyp == 4:
            host = str(ipaddress.IPv6Address(recv_exact(self.request, 16)))
        else:
            self.reply(ADDRESS_NOT_SUPPORTED)
            return
        port = struct.unpack("!H", recv_exact(self.request, 2))[0]

        if cmd != CMD_CONNECT:
            self.reply(COMMAND_NOT_SUPPORTED)
            return
        try:
            upstream = socket.create_connection((host, port), timeout=10)
        except ConnectionRefusedError:
            self.reply(CONNECTION_REFUSED)
            return
        except OSError as e:
            print(f"socks5: connect to {host}:{port} failed: {e}")
            self.reply(GENERAL_FAILURE)
            return

        print(f"socks5: {self.client_address} -> {host}:{port}")
        bound_ip, bound_port = upstream.getsockname()[:2]
        self.reply(SUCCEEDED, bound_ip, bound_port)
        with upstream:
            upstream.settimeout(None)
            relay(self.request, upstream)

    def authenticate(self) -> bool:
        recv_exact(self.request, 1)  # sub-negotiation version
        username = recv_exact(self.request, recv_exact(self.request, 1)[0]).decode()
        password = recv_exact(self.request, recv_exact(self.request, 1)[0]).decode()
        ok = username == self.server.username and password == self.server.password
        self.request.sendall(bytes([1, 0 if ok else 1]))
        if not ok:
            print(f"socks5: bad credentials from {self.client_address}")
        return ok

    def reply(self, code: int, ip: str = "0.0.0.0", port: int = 0):
        addr = ipaddress.ip_address(ip)
        atyp = 1 if addr.version == 4 else 4
        self.request.sendall(bytes([5, code, 0, atyp]) + addr.packed + struct.pack("!H", port))


def main() -> int:
    parser = argparse.ArgumentParser(description="SOCKS4/5 test proxy")
    parser.add_argument("--port", type=int, required=True)
    parser.add_argument("--bind", default="127.0.0.1")
    parser.add_argument("--allow-v4", action="store_true", help="accept SOCKS4/4a clients")
    parser.add_argument("--username")
    parser.add_argument("--password")
    args = parser.parse_args()

    server = SocksServer(
        (args.bind, args.port),
        allow_v4=args.allow_v4,
        username=args.username,
        password=args.password,
    )
    print(f"SOCKS proxy on {args.bind}:{args.port}", flush=True)
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        pass
    return 0


if __name__ == "__main__":
    sys.exit(main())
