import sys
import time

import pytest

from ltfixture import ServiceSpawnError, TestRun

# A helper "service" that just sits there until it is killed.
SLEEPER = [sys.executable, "-c", "import time; time.sleep(120)"]


@pytest.hookimpl(hookwrapper=True)
def pytest_runtest_call(item):
    """A helper that cannot be started means the environment is broken:
    stop the whole run instead of failing every proxy test one by one."""
    outcome = yield
    excinfo = outcome.excinfo
    if excinfo is not None and issubclass(excinfo[0], ServiceSpawnError):
        pytest.exit(f"aborting test run, helper failed to start: {excinfo[1]}", returncode=3)


class FakeAlert:
    def __init__(self, what: str, message: str = "", **attrs):
        self._what = what
        self._message = message or what
        for key, value in attrs.items():
            setattr(self, key, value)

    def what(self):
        return self._what

    def message(self):
        return self._message

    def __repr__(self):
        return f"FakeAlert({self._what!r}, {self._message!r})"


class FakeNode:
    """Stand-in for an lt.session with a scripted alert queue.

    Each wait_for_alert() call moves the next scheduled batch into the queue;
    pop_alerts() hands out whatever is queued. deliver() queues alerts
    immediately.
    """

    def __init__(self, *batches, torrents=("torrent",)):
        self.scheduled = [list(b) for b in batches]
        self.queue = []
        self.waits = []
        self.torrents = list(torrents)
        self.stats = {}

    def schedule(self, *alerts):
        self.scheduled.append(list(alerts))

    def deliver(self, *alerts):
        self.queue.extend(alerts)

    def wait_for_alert(self, max_wait_ms):
        self.waits.append(max_wait_ms)
        if not self.queue and self.scheduled:
            self.queue.extend(self.scheduled.pop(0))
        if self.queue:
            return self.queue[0]
        time.sleep(max_wait_ms / 1000)
        return None

    def pop_alerts(self):
        alerts, self.queue = self.queue, []
        return alerts

    def get_torrents(self):
        return self.torrents

    def post_session_stats(self):
        self.schedule(FakeAlert("session_stats", values=dict(self.stats)))


@pytest.fixture
def run():
    """TestRun with a short event timeout; helpers are killed after the test."""
    with TestRun(event_timeout=1.0) as r:
        yield r


@pytest.fixture
def sleeper_run():
    """TestRun whose helper commands are all SLEEPER."""
    commands = {kind: SLEEPER for kind in (
        "socks4", "socks5", "socks5_pw", "http", "http_pw", "web_server"
    )}
    with TestRun(event_timeout=1.0, spawn_grace=0.2, helper_commands=commands) as r:
        yield r

