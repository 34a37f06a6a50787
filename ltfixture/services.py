"""
Auxiliary helper processes (proxies and the test web server).

Helpers are started on demand, at most one per kind, and then reused by
every test that asks for the same kind. Tests do not stop them; the run
context kills them all once, at the end of the run, with SIGKILL and without
waiting for them to exit. A helper that ignores the kill or gets orphaned by
a crashed test run keeps its port until it dies; nothing here detects that.
"""
import subprocess
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Tuple, Union

from . import config
from .errors import ServiceSpawnError
from .ports import PortAllocator
from .utils import time_now_string


class ServiceKind(str, Enum):
    socks4 = "socks4"
    socks5 = "socks5"
    socks5_pw = "socks5_pw"
    http = "http"
    http_pw = "http_pw"
    web_server = "web_server"


PROXY_KINDS = frozenset({
    ServiceKind.socks4,
    ServiceKind.socks5,
    ServiceKind.socks5_pw,
    ServiceKind.http,
    ServiceKind.http_pw,
})

WEB_SERVER_DEFAULTS = {
    "ssl": False,
    "chunked_encoding": False,
    "keepalive": True,
    "min_interval": 30,
    "root": None,
    "certfile": None,
}

_AUTH_FLAGS = ["--username", config.PROXY_USERNAME, "--password", config.PROXY_PASSWORD]

PROXY_FLAGS = {
    ServiceKind.socks4: ["--allow-v4"],
    ServiceKind.socks5: [],
    ServiceKind.socks5_pw: _AUTH_FLAGS,
    ServiceKind.http: [],
    ServiceKind.http_pw: _AUTH_FLAGS,
}


@dataclass
class AuxiliaryService:
    port: int
    kind: ServiceKind
    process: subprocess.Popen
    options: Tuple = ()

    @property
    def pid(self) -> int:
        return self.process.pid


def async_run(argv: List[str]) -> subprocess.Popen:
    """Start argv detached from our session. Raises ServiceSpawnError."""
    print(" ".join(argv))
    try:
        return subprocess.Popen(argv, stdin=subprocess.DEVNULL, start_new_session=True)
    except OSError as e:
        raise ServiceSpawnError(f"failed to launch {argv[0]}: {e}") from e


def stop_process(proc: subprocess.Popen) -> None:
    print(f"killing pid: {proc.pid}")
    proc.kill()


def web_server_flags(
    ssl: bool = False,
    chunked_encoding: bool = False,
    keepalive: bool = True,
    min_interval: int = 30,
    root: Optional[str] = None,
    certfile: Optional[str] = None,
) -> List[str]:
    if ssl and not certfile:
        raise ValueError("the web server needs a certfile for ssl")
    flags = ["--min-interval", str(min_interval)]
    if ssl:
        flags.append("--ssl")
    if chunked_encoding:
        flags.append("--chunked")
    if keepalive:
        flags.append("--keepalive")
    if root:
        flags += ["--root", root]
    if certfile:
        flags += ["--certfile", certfile]
    return flags


def service_options(kind: ServiceKind, options: dict) -> Tuple:
    """Options of a `kind` helper with the defaults filled in, as a sorted tuple.

    Raises ValueError for options the helper does not take.
    """
    if kind != ServiceKind.web_server:
        if options:
            raise ValueError(f"{kind.value} takes no options, got {sorted(options)}")
        return ()
    unknown = set(options) - set(WEB_SERVER_DEFAULTS)
    if unknown:
        raise ValueError(f"unknown web server options {sorted(unknown)}")
    options = dict(WEB_SERVER_DEFAULTS, **options)
    web_server_flags(**options)
    return tuple(sorted(options.items()))


class ServiceManager:
    """Registry of running helpers, keyed by port."""

    def __init__(
        self,
        ports: PortAllocator,
        commands: Optional[Dict[str, Union[str, List[str]]]] = None,
        grace: Optional[float] = None,
    ):
        self.ports = ports
        self.commands = commands or {}
        self.grace = config.SPAWN_GRACE if grace is None else grace
        self._running: Dict[int, AuxiliaryService] = {}
        self._lock = threading.Lock()

    def services(self) -> List[AuxiliaryService]:
        with self._lock:
            return list(self._running.values())

    def find(self, kind: ServiceKind) -> Optional[int]:
        with self._lock:
            service = self._find(ServiceKind(kind))
        return service.port if service else None

    def _find(self, kind: ServiceKind) -> Optional[AuxiliaryService]:
        for service in self._running.values():
            if service.kind == kind:
                return service
        return None

    def command_line(self, kind: ServiceKind, port: int, **options) -> List[str]:
        argv = config.helper_command(kind.value, self.commands.get(kind.value))
        argv += ["--port", str(port)]
        options = dict(service_options(kind, options))
        if kind == ServiceKind.web_server:
            argv += web_server_flags(**options)
        else:
            argv += PROXY_FLAGS[kind]
        return argv

    def ensure_service(self, kind: ServiceKind, **options) -> int:
        """Port of the running helper for `kind`, starting it if needed.

        There is at most one helper per kind. Asking for a running kind with
        different options raises ValueError; stop it first.
        """
        kind = ServiceKind(kind)
        key = service_options(kind, options)
        with self._lock:
            running = self._find(kind)
            if running is not None:
                if running.options != key:
                    raise ValueError(
                        f"{kind.value} already running on port {running.port} "
                        f"with {dict(running.options)}, asked for {dict(key)}"
                    )
                return running.port

            port = self.ports.allocate(owner=kind.value)
            try:
                argv = self.command_line(kind, port, **dict(key))
                print(f"{time_now_string()} starting {kind.value} on port {port}...")
                proc = async_run(argv)
            except (ServiceSpawnError, ValueError):
                self.ports.release(port)
                raise

            time.sleep(self.grace)
            if proc.poll() is not None:
                self.ports.release(port)
                raise ServiceSpawnError(
                    f"{kind.value} helper exited early with code {proc.returncode}"
                )

            self._running[port] = AuxiliaryService(port, kind, proc, key)
            print(f"{time_now_string()} launched (pid {proc.pid})")
            return port

    def _stop(self, predicate) -> None:
        with self._lock:
            for port, service in list(self._running.items()):
                if predicate(service):
                    stop_process(service.process)
                    del self._running[port]
                    self.ports.release(port)

    # -----------------------------
    # Proxies
    # -----------------------------
    def start_proxy(self, kind: ServiceKind) -> int:
        kind = ServiceKind(kind)
        if kind not in PROXY_KINDS:
            raise ValueError(f"{kind.value} is not a proxy type")
        return self.ensure_service(kind)

    def stop_proxy(self, port: int) -> None:
        # proxies stay up until teardown_all(), so later tests can reuse them
        print(f"stopping proxy on port {port}")

    def stop_all_proxies(self) -> None:
        self._stop(lambda s: s.kind in PROXY_KINDS)

    # -----------------------------
    # Web server
    # -----------------------------
    def start_web_server(self, **options) -> int:
        """Options and their defaults are in WEB_SERVER_DEFAULTS."""
        return self.ensure_service(ServiceKind.web_server, **options)

    def stop_web_server(self) -> None:
        print("stopping web server")
        self._stop(lambda s: s.kind == ServiceKind.web_server)

    def teardown_all(self) -> None:
        """Kill every helper. Does not wait for them to exit."""
        self._stop(lambda s: True)
