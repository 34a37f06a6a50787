"""
Multi-node transfer fixtures.

setup_transfer() takes two or three fresh nodes and turns them into a
swarm: node 1 seeds, node 2 (and node 3, if given) download, and with
connect_peers=True the seeds are connected to the downloaders once those
report they are downloading.

    with TestRun() as run:
        seeder, leecher = Node("ses1"), Node("ses2")
        t = setup_transfer(run, seeder, leecher, base_dir=str(tmp_path))
        assert wait_for(lambda: t.leech.status().is_seeding, timeout=30)
"""
import os
import secrets
import shutil
import string
import time
from typing import NamedTuple, Optional, Sequence, Union

import libtorrent as lt

from . import config
from .alerts import AlertCache, PopAlerts
from .content import ContentDescriptor, generate
from .context import TestRun
from .errors import DuplicateIdentityError, EngineError, FixtureError
from .session import Node
from .torrents import clone_torrent, get_v1_info_hash, make_torrent
from .utils import time_now_string

Content = Union[ContentDescriptor, lt.torrent_info]

# number of pieces in the generated default content
DEFAULT_NUM_PIECES = 9

# lt::session::global_peer_class_id
GLOBAL_PEER_CLASS_ID = 0

IDENTITY_ALPHABET = string.ascii_letters + string.digits


class Transfer(NamedTuple):
    seed: Optional[lt.torrent_handle]
    leech: Optional[lt.torrent_handle]
    leech2: Optional[lt.torrent_handle]


EMPTY_TRANSFER = Transfer(None, None, None)


def generate_identity(taken: Sequence[bytes] = ()) -> bytes:
    """Random 20 byte peer identity, different from every one in `taken`."""
    while True:
        identity = "".join(secrets.choice(IDENTITY_ALPHABET) for _ in range(20)).encode()
        if identity not in taken:
            return identity


def working_dir(base_dir: str, n: int, suffix: str) -> str:
    return os.path.join(base_dir, f"tmp{n}{suffix}")


def _remove_all(path: str) -> None:
    if os.path.isdir(path):
        shutil.rmtree(path)
    elif os.path.exists(path):
        os.remove(path)


def _make_params(overrides: Optional[dict] = None, base: Optional[lt.add_torrent_params] = None):
    p = base if base is not None else lt.add_torrent_params()
    p.flags &= ~lt.torrent_flags.paused
    p.flags &= ~lt.torrent_flags.auto_managed
    for key, value in (overrides or {}).items():
        setattr(p, key, value)
    return p


def _to_torrent(content: Content) -> lt.torrent_info:
    if isinstance(content, ContentDescriptor):
        return make_torrent(content)
    return content


def wait_for_downloading(
    cache: AlertCache, node, name: str, timeout: Optional[float] = None
) -> bool:
    """Wait for a state_changed alert to `downloading`.

    Never fails: on timeout it prints how long it waited and returns False.
    """
    timeout = cache.timeout if timeout is None else timeout
    start = time.monotonic()
    end_time = start + timeout
    while True:
        remaining = end_time - time.monotonic()
        if remaining <= 0:
            break
        a = cache.wait_for_alert(
            node, "state_changed", name, PopAlerts.pop_through_match, timeout=remaining
        )
        if a is None:
            break
        if a.state == lt.torrent_status.downloading:
            return True

    waited = int((time.monotonic() - start) * 1000)
    print(f"{name}: did not receive a state_changed_alert indicating "
          f"the torrent is downloading. waited: {waited} ms")
    return False


def assign_identities(nodes: Sequence[Node], settings: dict) -> None:
    """Apply `settings` plus a fresh, verified, unique identity to each node."""
    taken = []
    for node in nodes:
        identity = generate_identity(taken)
        node.apply_settings(dict(settings, peer_fingerprint=identity.decode()))
        if node.identity != identity:
            raise FixtureError(f"{node!r} did not take identity {identity!r}")
        taken.append(identity)

    if len({node.identity for node in nodes}) != len(nodes):
        raise DuplicateIdentityError(
            "nodes share an identity: " + ", ".join(repr(n.identity) for n in nodes)
        )


def setup_transfer(
    run: TestRun,
    node1: Node,
    node2: Node,
    node3: Optional[Node] = None,
    clear_files: bool = True,
    use_metadata_transfer: bool = False,
    connect_peers: bool = True,
    suffix: str = "",
    piece_size: int = 16 * 1024,
    content: Optional[Content] = None,
    super_seeding: bool = False,
    params: Optional[dict] = None,
    stop_lsd: bool = True,
    use_ssl_ports: bool = False,
    content2: Optional[Content] = None,
    file_sizes: Optional[Sequence[int]] = None,
    seed: int = 0,
    base_dir: str = ".",
) -> Transfer:
    """Add one torrent to every node: node 1 seeds, nodes 2 and 3 download.

    Without `content`, deterministic content (one file of 9 pieces, or
    `file_sizes`) is generated and written to tmp1<suffix>. A supplied
    descriptor or torrent is used as is; its files must already be in
    tmp1<suffix>. `params` holds add_torrent_params attributes applied to
    every add. Returns Transfer(None, None, None) if node 1 rejects the
    torrent.
    """
    if node1 is None or node2 is None:
        raise ValueError("setup_transfer needs at least two nodes")
    nodes = [n for n in (node1, node2, node3) if n is not None]

    if stop_lsd:
        for node in nodes:
            node.apply_settings({'enable_lsd': False})

    # This has the effect of applying the global
    # rule to all peers, regardless of if they're local or not
    ip_filter = lt.ip_filter()
    ip_filter.add_rule("0.0.0.0", "255.255.255.255", 1 << GLOBAL_PEER_CLASS_ID)
    for node in nodes:
        node.set_peer_class_filter(ip_filter)

    all_categories = int(lt.alert.category_t.all_categories)
    quiet = int(lt.alert.category_t.progress_notification) | int(lt.alert.category_t.stats_notification)
    settings = {
        'alert_mask': all_categories & ~quiet,
        'mixed_mode_algorithm': 0,  # prefer_tcp
        'max_failcount': 1,
    }
    if node3 is not None:
        settings['allow_multiple_connections_per_ip'] = True
    assign_identities(nodes, settings)

    tmp1 = working_dir(base_dir, 1, suffix)
    tmp2 = working_dir(base_dir, 2, suffix)
    tmp3 = working_dir(base_dir, 3, suffix)

    if content is None:
        sizes = list(file_sizes) if file_sizes else [piece_size * DEFAULT_NUM_PIECES]
        descriptor = generate(sizes, piece_size, seed)
        os.makedirs(tmp1, exist_ok=True)
        descriptor.write_files(tmp1)
        if clear_files:
            _remove_all(os.path.join(tmp2, descriptor.name))
            _remove_all(os.path.join(tmp3, descriptor.name))
        t = make_torrent(descriptor)
        print(f"generated torrent: {get_v1_info_hash(t)} {tmp1}/{descriptor.name}")
    else:
        t = _to_torrent(content)

    # they should not use the same save dir, because the
    # disk cache will complain if two torrents are trying to
    # use the same files
    p = _make_params(params)
    p.ti = clone_torrent(t)
    p.save_path = tmp1
    p.flags |= lt.torrent_flags.seed_mode
    try:
        tor1 = node1.add_torrent(p)
    except RuntimeError as e:
        print(f"{node1.name}.add_torrent: {e}")
        return EMPTY_TRANSFER
    if super_seeding:
        tor1.set_flags(lt.torrent_flags.super_seeding)

    if not node1.get_torrents():
        raise EngineError(f"{node1.name}: torrent missing after add_torrent")

    tor3 = None
    if node3 is not None:
        p = _make_params(params)
        p.ti = clone_torrent(t)
        p.save_path = tmp3
        try:
            tor3 = node3.add_torrent(p)
        except RuntimeError as e:
            raise EngineError(f"{node3.name}.add_torrent: {e}") from e

    if use_metadata_transfer:
        magnet = f"magnet:?xt=urn:btih:{get_v1_info_hash(t)}"
        p = _make_params(params, base=lt.parse_magnet_uri(magnet))
    elif content2 is not None:
        p = _make_params(params)
        p.ti = clone_torrent(_to_torrent(content2))
    else:
        p = _make_params(params)
        p.ti = clone_torrent(t)
    p.save_path = tmp2
    try:
        tor2 = node2.add_torrent(p)
    except RuntimeError as e:
        raise EngineError(f"{node2.name}.add_torrent: {e}") from e

    if connect_peers:
        wait_for_downloading(run.alerts, node2, node2.name)

        port = 0
        if use_ssl_ports:
            port = node2.ssl_listen_port()
            print(f"{time_now_string()}: {node2.name}.ssl_listen_port(): {port}")
        if port == 0:
            port = node2.listen_port()
            print(f"{time_now_string()}: {node2.name}.listen_port(): {port}")

        print(f"{time_now_string()}: {node1.name}: connecting peer port: {port}")
        tor1.connect_peer((config.LOOPBACK, port))

        if node3 is not None:
            # give the other peers some time to get an initial
            # set of pieces before they start sharing with each-other
            wait_for_downloading(run.alerts, node3, node3.name)

            port = port2 = 0
            if use_ssl_ports:
                port = node2.ssl_listen_port()
                port2 = node1.ssl_listen_port()
            if port == 0:
                port = node2.listen_port()
            if port2 == 0:
                port2 = node1.listen_port()

            print(f"{node3.name}: connecting peer port: {port}")
            tor3.connect_peer((config.LOOPBACK, port))
            print(f"{node3.name}: connecting peer port: {port2}")
            tor3.connect_peer((config.LOOPBACK, port2))

    return Transfer(tor1, tor2, tor3)


def _rate_line(t: float, st) -> str:
    err = f" [{st.errc.message()}]" if st.errc.value() else ""
    return "%3.1fs | %dkB/s %dkB/s %d%% %d cc:%d%s" % (
        t,
        st.download_payload_rate // 1000,
        st.upload_payload_rate // 1000,
        int(st.progress * 100),
        st.num_peers,
        st.connect_candidates,
        err,
    )


def print_ses_rate(t: float, st1=None, st2=None, st3=None) -> None:
    """One progress line for up to three torrent_status objects."""
    print(" : ".join(_rate_line(t, st) for st in (st1, st2, st3) if st is not None))
