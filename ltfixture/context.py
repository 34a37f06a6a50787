from typing import Dict, List, Optional, Union

from .addresses import AddressGenerator
from .alerts import AlertCache
from .ports import PortAllocator
from .services import ServiceManager


class TestRun:
    """Process-wide state of one test run.

    Owns the alert replay buffers, the port leases and the helper process
    registry. Every fixture operation takes the run explicitly; nothing in
    ltfixture keeps module-level state.
    """

    __test__ = False  # not a pytest test class

    def __init__(
        self,
        event_timeout: Optional[float] = None,
        spawn_grace: Optional[float] = None,
        helper_commands: Optional[Dict[str, Union[str, List[str]]]] = None,
        ports: Optional[PortAllocator] = None,
    ):
        self.alerts = AlertCache(timeout=event_timeout)
        self.ports = ports or PortAllocator()
        self.services = ServiceManager(self.ports, commands=helper_commands, grace=spawn_grace)
        self.addresses = AddressGenerator()

    def allocate_port(self) -> int:
        """A free loopback port for direct use by a test."""
        return self.ports.allocate()

    def ensure_service(self, kind, **options) -> int:
        return self.services.ensure_service(kind, **options)

    def teardown_all(self) -> None:
        self.services.teardown_all()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.teardown_all()
        return False
