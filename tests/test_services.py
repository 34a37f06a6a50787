"""
Helper process registry. Most tests run SLEEPER in place of the real helper
programs; the helpers themselves are covered in test_servers.py.
"""
import signal
import sys

import pytest

from conftest import SLEEPER
from ltfixture import services
from ltfixture.errors import ServiceSpawnError
from ltfixture.services import ServiceKind, ServiceManager
from ltfixture.ports import PortAllocator


@pytest.fixture
def spawned(monkeypatch):
    """Records the argv of every process the manager launches."""
    calls = []
    real_async_run = services.async_run

    def spy(argv):
        calls.append(argv)
        return real_async_run(argv)

    monkeypatch.setattr(services, "async_run", spy)
    return calls


def test_same_kind_is_reused(sleeper_run, spawned):
    port1 = sleeper_run.ensure_service("socks5")
    port2 = sleeper_run.services.start_proxy(ServiceKind.socks5)
    assert port1 == port2
    assert len(spawned) == 1
    assert sleeper_run.ports.owner(port1) == "socks5"


def test_each_kind_gets_its_own_port(sleeper_run):
    kinds = [k for k in ServiceKind if k != ServiceKind.web_server]
    found = {sleeper_run.services.start_proxy(k) for k in kinds}
    assert len(found) == len(kinds)
    assert len(sleeper_run.services.services()) == len(kinds)


def test_teardown_kills_everything(sleeper_run):
    sleeper_run.services.start_proxy("http")
    sleeper_run.services.start_web_server()
    running = sleeper_run.services.services()

    sleeper_run.teardown_all()

    for service in running:
        assert service.process.wait(timeout=5) == -signal.SIGKILL
    assert sleeper_run.services.services() == []
    assert sleeper_run.ports.leases() == []


def test_stop_proxy_leaves_proxy_running(sleeper_run):
    port = sleeper_run.services.start_proxy("socks4")
    sleeper_run.services.stop_proxy(port)
    assert sleeper_run.services.find("socks4") == port
    assert sleeper_run.services.start_proxy("socks4") == port


def test_stop_all_proxies_keeps_web_server(sleeper_run):
    sleeper_run.services.start_proxy("socks5_pw")
    web_port = sleeper_run.services.start_web_server()
    sleeper_run.services.stop_all_proxies()
    assert [s.port for s in sleeper_run.services.services()] == [web_port]


def test_stop_web_server(sleeper_run):
    sleeper_run.services.start_web_server()
    sleeper_run.services.stop_web_server()
    assert sleeper_run.services.services() == []


def test_one_web_server_per_run(sleeper_run, spawned):
    port = sleeper_run.ensure_service("web_server")
    # both entry points fill in the same defaults
    assert sleeper_run.services.start_web_server() == port
    assert sleeper_run.services.start_web_server(keepalive=True, min_interval=30) == port

    with pytest.raises(ValueError, match="already running"):
        sleeper_run.services.start_web_server(chunked_encoding=True)
    assert len(spawned) == 1
    assert [s.kind for s in sleeper_run.services.services()] == [ServiceKind.web_server]
    assert "--keepalive" in spawned[0]
    assert "--chunked" not in spawned[0]


def test_web_server_restarts_with_new_options(sleeper_run, spawned):
    sleeper_run.services.start_web_server()
    sleeper_run.services.stop_web_server()
    sleeper_run.services.start_web_server(chunked_encoding=True)
    assert len(spawned) == 2
    assert "--chunked" in spawned[1]
    assert len(sleeper_run.services.services()) == 1


def test_ssl_without_certfile_is_rejected_before_spawning(sleeper_run, spawned):
    with pytest.raises(ValueError, match="certfile"):
        sleeper_run.services.start_web_server(ssl=True)
    assert spawned == []
    assert sleeper_run.ports.leases() == []


def test_unknown_web_server_option(sleeper_run, spawned):
    with pytest.raises(ValueError, match="unknown"):
        sleeper_run.services.start_web_server(gzip=True)
    assert spawned == []


def test_start_proxy_rejects_web_server(sleeper_run):
    with pytest.raises(ValueError):
        sleeper_run.services.start_proxy("web_server")


def test_proxy_options_are_rejected(sleeper_run):
    with pytest.raises(ValueError):
        sleeper_run.ensure_service("socks5", ssl=True)
    assert sleeper_run.ports.leases() == []


def test_unknown_kind(sleeper_run):
    with pytest.raises(ValueError):
        sleeper_run.ensure_service("ftp")


def test_missing_binary_raises():
    manager = ServiceManager(PortAllocator(), commands={"socks5": ["/nonexistent/ltfixture-helper"]})
    with pytest.raises(ServiceSpawnError):
        manager.start_proxy("socks5")
    assert manager.ports.leases() == []


def test_helper_exiting_early_raises():
    commands = {"http": [sys.executable, "-c", "import sys; sys.exit(3)"]}
    manager = ServiceManager(PortAllocator(), commands=commands, grace=1.0)
    with pytest.raises(ServiceSpawnError, match="code 3"):
        manager.start_proxy("http")
    assert manager.services() == []
    assert manager.ports.leases() == []


# =============================================================================
# Command lines
# =============================================================================

def test_proxy_command_lines():
    manager = ServiceManager(PortAllocator(), commands={"socks4": ["socks"], "http_pw": "my-proxy -v"})
    assert manager.command_line(ServiceKind.socks4, 5000) == ["socks", "--port", "5000", "--allow-v4"]
    assert manager.command_line(ServiceKind.http_pw, 5001) == [
        "my-proxy", "-v", "--port", "5001", "--username", "testuser", "--password", "testpass"
    ]


def test_default_command_runs_bundled_helper():
    manager = ServiceManager(PortAllocator())
    argv = manager.command_line(ServiceKind.socks5, 5000)
    assert argv[:3] == [sys.executable, "-m", "ltfixture.servers.socks_proxy"]


def test_env_override(monkeypatch):
    monkeypatch.setenv("LTFIXTURE_HTTP_CMD", "/usr/bin/tinyproxy-wrapper")
    manager = ServiceManager(PortAllocator())
    assert manager.command_line(ServiceKind.http, 5000)[0] == "/usr/bin/tinyproxy-wrapper"


def test_web_server_command_line():
    manager = ServiceManager(PortAllocator(), commands={"web_server": SLEEPER})
    argv = manager.command_line(
        ServiceKind.web_server, 5000, ssl=True, certfile="server.pem", keepalive=False, min_interval=5
    )
    flags = argv[len(SLEEPER):]
    assert flags == ["--port", "5000", "--min-interval", "5", "--ssl", "--certfile", "server.pem"]


def test_web_server_defaults_on_the_command_line():
    manager = ServiceManager(PortAllocator(), commands={"web_server": SLEEPER})
    flags = manager.command_line(ServiceKind.web_server, 5000)[len(SLEEPER):]
    assert flags == ["--port", "5000", "--min-interval", "30", "--keepalive"]
