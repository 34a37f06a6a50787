"""
Alert replay buffer.

libtorrent hands out alerts in batches (pop_alerts), but tests wait for one
alert at a time. Each node gets a buffer holding the alerts that were popped
off the session queue but not claimed yet, so a later wait_for_alert() can
still pick up alerts that arrived *after* the one an earlier call was
waiting for.

Anything with wait_for_alert(ms) / pop_alerts() works as a node: a raw
lt.session, an ltfixture.session.Node, or a fake in the tests. Alerts are
matched either by class (isinstance) or by their what() name, so this module
never needs the libtorrent bindings itself.
"""
import threading
import time
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from . import config
from .errors import EngineError
from .utils import time_now_string

# high volume alerts, never printed
NOISY_ALERTS = frozenset({
    "session_stats",
    "piece_finished",
    "block_finished",
    "block_downloading",
})

# peer_log_alert::direction_t values that carry protocol messages
INCOMING_MESSAGE = 0
OUTGOING_MESSAGE = 1


class PopAlerts(Enum):
    # on a match, drop the whole buffer (later alerts count as handled)
    pop_all = "pop_all"
    # on a match, drop the match and everything before it
    pop_through_match = "pop_through_match"


def is_noisy(alert) -> bool:
    what = alert.what()
    if what == "peer_log":
        # only message traffic is printed, not the internal peer chatter
        direction = getattr(alert, "direction", None)
        return direction is None or int(direction) not in (INCOMING_MESSAGE, OUTGOING_MESSAGE)
    return what in NOISY_ALERTS


def alert_matches(alert, kind) -> bool:
    if isinstance(kind, str):
        return alert.what() == kind
    return isinstance(alert, kind)


def log_alert(name: str, alert) -> None:
    print(f"{time_now_string()}: {name}: [{alert.what()}] {alert.message()}")


class ReplayBuffer:
    """Popped but unclaimed alerts of one node.

    alerts[:printed] have already been logged and are not logged again.
    """

    def __init__(self):
        self.alerts: List[Any] = []
        self.printed = 0
        self.lock = threading.Lock()

    def __len__(self):
        return len(self.alerts)

    def clear(self):
        self.alerts.clear()
        self.printed = 0

    def drop_through(self, index: int):
        del self.alerts[:index + 1]
        self.printed = max(0, self.printed - (index + 1))


class AlertCache:
    """Per-node ReplayBuffers, created lazily and kept for the whole run."""

    def __init__(self, timeout: Optional[float] = None):
        self.timeout = config.EVENT_TIMEOUT if timeout is None else timeout
        self._buffers: Dict[Any, ReplayBuffer] = {}
        self._lock = threading.Lock()

    def buffer(self, node) -> ReplayBuffer:
        with self._lock:
            buf = self._buffers.get(node)
            if buf is None:
                buf = self._buffers[node] = ReplayBuffer()
            return buf

    def take(self, node) -> List[Any]:
        """Claim every buffered alert of `node`, oldest first."""
        buf = self.buffer(node)
        with buf.lock:
            alerts = list(buf.alerts)
            buf.clear()
        return alerts

    def wait_for_alert(
        self,
        node,
        kind,
        name: str,
        pop: PopAlerts = PopAlerts.pop_all,
        timeout: Optional[float] = None,
    ):
        """Block until an alert of `kind` shows up. Returns it, or None on timeout.

        A full scan of the buffer without a match forfeits the scanned
        alerts; they are not seen by later calls.
        """
        timeout = self.timeout if timeout is None else timeout
        end_time = time.monotonic() + timeout
        buf = self.buffer(node)

        with buf.lock:
            while True:
                now = time.monotonic()
                if now >= end_time:
                    return None

                if not buf.alerts:
                    node.wait_for_alert(int((end_time - now) * 1000))
                    buf.alerts.extend(node.pop_alerts())

                for i, alert in enumerate(buf.alerts):
                    if i >= buf.printed:
                        if not is_noisy(alert):
                            log_alert(name, alert)
                        buf.printed = i + 1
                    if alert_matches(alert, kind):
                        if pop is PopAlerts.pop_all:
                            buf.clear()
                        else:
                            buf.drop_through(i)
                        return alert

                buf.clear()


def print_alerts(
    cache: AlertCache,
    node,
    name: str,
    allow_no_torrents: bool = False,
    allow_failed_fastresume: bool = False,
    predicate: Optional[Callable[[Any], bool]] = None,
    no_output: bool = False,
) -> bool:
    """Drain and print every pending alert of `node`.

    Returns True if `predicate` matched any of them. Engine-reported errors
    (rejected fast-resume data, invalid requests, a node without torrents)
    raise EngineError once the whole batch has been printed.
    """
    errors = []
    if not allow_no_torrents and not node.get_torrents():
        errors.append(f"{name}: session has no torrents")

    ret = False
    for a in cache.take(node) + list(node.pop_alerts()):
        if predicate is not None and predicate(a):
            ret = True
        what = a.what()
        if what == "peer_disconnected":
            ip, port = a.endpoint
            print(f"{time_now_string()}: {name}: [{what}] ({ip}:{port}): {a.message()}")
        elif not no_output and not is_noisy(a):
            log_alert(name, a)

        if what == "fastresume_rejected" and not allow_failed_fastresume:
            errors.append(f"{name}: fastresume rejected: {a.message()}")
        if what == "invalid_request":
            print(f"peer error: {a.message()}")
            errors.append(f"{name}: peer error: {a.message()}")

    if errors:
        raise EngineError("\n".join(errors))
    return ret


def wait_for_listen(cache: AlertCache, node, name: str) -> None:
    """Wait until the node reports listen_succeeded or listen_failed."""
    listen_done = False

    def check(a) -> bool:
        nonlocal listen_done
        if a.what() in ("listen_succeeded", "listen_failed"):
            listen_done = True
        return listen_done

    while True:
        print_alerts(cache, node, name, True, True, check)
        if listen_done:
            break
        if node.wait_for_alert(int(config.LISTEN_POLL * 1000)) is None:
            break

    if not listen_done:
        raise EngineError(f"{name}: did not receive a listen alert")


def get_counters(cache: AlertCache, node) -> Dict[str, int]:
    """Snapshot of the session stats counters, {} if the stats never arrive."""
    node.post_session_stats()
    a = cache.wait_for_alert(node, "session_stats", "get_counters()")
    if a is None:
        return {}
    return dict(a.values)
