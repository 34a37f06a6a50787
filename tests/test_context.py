from ltfixture import TestRun, config
from ltfixture.alerts import AlertCache


def test_defaults_come_from_config():
    r = TestRun()
    assert r.alerts.timeout == config.EVENT_TIMEOUT
    assert r.services.grace == config.SPAWN_GRACE
    assert r.services.ports is r.ports


def test_allocate_port_records_direct_lease(run):
    port = run.allocate_port()
    assert run.ports.owner(port) == "direct"


def test_runs_do_not_share_state():
    a, b = TestRun(event_timeout=1), TestRun(event_timeout=2)
    assert isinstance(a.alerts, AlertCache)
    assert a.alerts is not b.alerts
    assert a.ports is not b.ports
    assert a.alerts.timeout == 1
