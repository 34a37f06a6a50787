"""
Tunables for the fixture layer.

Every value can be overridden from the environment, e.g.

    LTFIXTURE_EVENT_TIMEOUT=30 pytest tests/

LTFIXTURE_<KIND>_CMD replaces the helper command line for one service kind
(e.g. LTFIXTURE_SOCKS5_CMD="python3 /opt/socks.py"). The string is split on
whitespace, then "--port N" and the per-kind flags are appended.
"""
import os
import sys
from typing import List, Sequence, Union


def _env_float(name: str, default: float) -> float:
    value = os.environ.get(name, "")
    return float(value) if value else default


def _env_int(name: str, default: int) -> int:
    value = os.environ.get(name, "")
    return int(value) if value.isdigit() else default


# Absolute deadline for a single wait_for_alert() call.
EVENT_TIMEOUT = _env_float("LTFIXTURE_EVENT_TIMEOUT", 10.0)

# How long a freshly spawned helper gets to bind its listen socket.
SPAWN_GRACE = _env_float("LTFIXTURE_SPAWN_GRACE", 0.5)

# Poll interval used by wait_for_listen().
LISTEN_POLL = 0.5

# Ports are probed starting at PORT_BASE + random(PORT_RANGE).
PORT_BASE = 2000
PORT_RANGE = 6000
MAX_PORT_PROBES = _env_int("LTFIXTURE_MAX_PORT_PROBES", 4000)

LOOPBACK = "127.0.0.1"

PROXY_USERNAME = "testuser"
PROXY_PASSWORD = "testpass"

# Helper programs shipped in ltfixture.servers
HELPER_MODULES = {
    "socks4": "ltfixture.servers.socks_proxy",
    "socks5": "ltfixture.servers.socks_proxy",
    "socks5_pw": "ltfixture.servers.socks_proxy",
    "http": "ltfixture.servers.http_proxy",
    "http_pw": "ltfixture.servers.http_proxy",
    "web_server": "ltfixture.servers.web_server",
}


def helper_command(kind: str, override: Union[str, Sequence[str], None] = None) -> List[str]:
    """Base argv (without --port and flags) for the helper serving `kind`.

    `override` is either a command string or a ready-made argv list.
    """
    if isinstance(override, (list, tuple)):
        return list(override)
    cmdline = override or os.environ.get(f"LTFIXTURE_{kind.upper()}_CMD", "")
    if cmdline:
        return cmdline.split()
    return [sys.executable, "-m", HELPER_MODULES[kind]]
