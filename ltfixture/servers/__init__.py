"""
Helper programs started by ltfixture.services, one process per service.

Each module is runnable with `python -m ltfixture.servers.<name> --port N`.
"""
import select
import socket

RELAY_IDLE_TIMEOUT = 60


def recv_exact(sock: socket.socket, n: int) -> bytes:
    buf = b""
    while len(buf) < n:
        chunk = sock.recv(n - len(buf))
        if not chunk:
            raise ConnectionError("peer closed the connection")
        buf += chunk
    return buf


def relay(a: socket.socket, b: socket.socket) -> None:
    """Pump bytes both ways until either side closes or goes idle."""
    sockets = [a, b]
    while True:
        readable, _, errored = select.select(sockets, [], sockets, RELAY_IDLE_TIMEOUT)
        if errored or not readable:
            return
        for s in readable:
            try:
                data = s.recv(65536)
            except OSError:
                return
            if not data:
                return
            (b if s is a else a).sendall(data)
