"""
Fixtures for integration tests that drive several libtorrent sessions.

The libtorrent-backed parts (Node, setup_transfer, make_torrent) live in
ltfixture.session, ltfixture.transfer and ltfixture.torrents and are not
imported here, so the rest of the package works without the bindings.
"""
from .alerts import AlertCache, PopAlerts, get_counters, print_alerts, wait_for_listen
from .content import ContentDescriptor, generate, generate_piece
from .context import TestRun
from .errors import (
    FixtureError, PortExhaustedError, ServiceSpawnError,
    DuplicateIdentityError, FileTooLargeError, EngineError
)
from .ports import PortAllocator, PortLease
from .services import AuxiliaryService, ServiceKind, ServiceManager

__version__ = "0.1.0"
