import libtorrent as lt

from . import config

# Loopback only; every discovery mechanism off so sessions only ever see the
# peers a test connects them to.
BASE_SETTINGS = {
    'enable_dht': False,
    'enable_lsd': False,
    'enable_upnp': False,
    'enable_natpmp': False,
    'enable_incoming_utp': False,
    'enable_outgoing_utp': False,
    'user_agent': 'ltfixture',
    'alert_mask': lt.alert.category_t.all_categories,
}


class Node:
    """One libtorrent session under test.

    The identity is the session's peer_fingerprint setting; setup_transfer()
    assigns a fresh 20 byte one to every node it wires up.
    """

    def __init__(self, name: str, root_dir: str = ".", port: int = 0, **settings):
        self.name = name
        self.root_dir = root_dir

        final_settings = dict(BASE_SETTINGS)
        final_settings['listen_interfaces'] = '%s:%d' % (config.LOOPBACK, port)
        final_settings.update(settings)

        params = lt.session_params()
        params.settings = final_settings
        self.session = lt.session(params)

    def __repr__(self):
        return f"Node({self.name!r})"

    @property
    def identity(self) -> bytes:
        return self.session.get_settings()['peer_fingerprint'].encode()

    def apply_settings(self, settings: dict) -> None:
        self.session.apply_settings(settings)

    def get_settings(self) -> dict:
        return self.session.get_settings()

    def set_peer_class_filter(self, ip_filter: lt.ip_filter) -> None:
        self.session.set_peer_class_filter(ip_filter)

    def add_torrent(self, params: lt.add_torrent_params) -> lt.torrent_handle:
        # raises RuntimeError with the engine's message on failure
        return self.session.add_torrent(params)

    def get_torrents(self) -> list:
        return self.session.get_torrents()

    def listen_port(self) -> int:
        return self.session.listen_port()

    def ssl_listen_port(self) -> int:
        return self.session.ssl_listen_port()

    # alert queue, consumed through ltfixture.alerts
    def wait_for_alert(self, max_wait_ms: int):
        return self.session.wait_for_alert(max_wait_ms)

    def pop_alerts(self) -> list:
        return self.session.pop_alerts()

    def post_session_stats(self) -> None:
        self.session.post_session_stats()
