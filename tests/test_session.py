import pytest

from conftest import FakeTransport
from rttping import (
    Average,
    HostSpec,
    ProbeAccumulator,
    ProbeSession,
    TransportError,
    Unreliable,
)

LOCALHOST = HostSpec(address="127.0.0.1", label="localhost")
GOOGLE = HostSpec(address="8.8.8.8", label="google", group="dns")
V6 = HostSpec(address="2001:db8::1", label="v6")


def _session(transport, hosts=(LOCALHOST,), **kwargs):
    return ProbeSession(hosts, transport_factory=lambda: transport, **kwargs)


def test_average_over_all_rounds():
    transport = FakeTransport({"127.0.0.1": [1.0, 2.0, 3.0]})
    values = _session(transport, count=3).run()
    assert transport.rounds == 3
    assert values["127_0_0_1"] == Average(pytest.approx(2.0))
    assert float(values["127_0_0_1"]) == pytest.approx(2.0)


def test_partial_loss_within_tolerance():
    transport = FakeTransport({"127.0.0.1": [1.5, None, 3.5]})
    values = _session(transport, count=3, accept_miss=1).run()
    assert float(values["127_0_0_1"]) == pytest.approx(2.5)


def test_loss_beyond_tolerance_is_unreliable():
    transport = FakeTransport({"127.0.0.1": [1.0, None, 3.0]})
    values = _session(transport, count=3).run()
    assert values["127_0_0_1"] == Unreliable(replies=2, expected=3)
    assert float(values["127_0_0_1"]) == -1.0


def test_no_replies_never_divides_by_zero():
    transport = FakeTransport({})
    values = _session(transport, hosts=[LOCALHOST, GOOGLE, V6]).run()
    assert set(values) == {"127_0_0_1", "8_8_8_8", "2001_db8__1"}
    assert all(isinstance(v, Unreliable) for v in values.values())


def test_registers_targets_and_wait():
    transport = FakeTransport({"2001:db8::1": [0.25]})
    values = _session(transport, hosts=[LOCALHOST, V6], wait_time=0.5).run()
    assert transport.targets == ["127.0.0.1", "2001:db8::1"]
    assert transport.max_wait == 0.5
    assert float(values["2001_db8__1"]) == pytest.approx(0.25)


def test_transport_error_aborts_probe():
    transport = FakeTransport({"127.0.0.1": [1.0, 1.0, 1.0]}, fail_on_round=2)
    with pytest.raises(TransportError):
        _session(transport, count=3).run()
    assert transport.rounds == 2


def test_invalid_source_is_ignored():
    transport = FakeTransport({"127.0.0.1": [1.0]})
    values = _session(transport, source="not-an-ip").run()
    assert transport.source is None
    assert float(values["127_0_0_1"]) == pytest.approx(1.0)


def test_valid_source_is_bound():
    transport = FakeTransport({"127.0.0.1": [1.0]})
    _session(transport, source="127.0.0.1").run()
    assert transport.source == "127.0.0.1"


def test_unexpected_reply_address_is_ignored():
    transport = FakeTransport(
        {"127.0.0.1": [1.0]}, extra_replies=[("192.0.2.77", 5_000_000)]
    )
    values = _session(transport).run()
    assert set(values) == {"127_0_0_1"}


def test_replies_from_threads_are_all_counted():
    hosts = [HostSpec(address=f"10.0.0.{i}", label=f"h{i}") for i in range(1, 41)]
    script = {host.address: [float(i), float(i) + 2.0] for i, host in enumerate(hosts, 1)}
    transport = FakeTransport(script, threaded=True)
    values = _session(transport, hosts=hosts, count=2).run()
    for i, host in enumerate(hosts, 1):
        assert float(values[host.key]) == pytest.approx(i + 1.0)


@pytest.mark.parametrize(
    "kwargs",
    [{"count": 0}, {"count": 2, "accept_miss": 2}, {"count": 2, "accept_miss": -1}],
)
def test_rejects_invalid_counts(kwargs):
    with pytest.raises(ValueError):
        ProbeSession([LOCALHOST], **kwargs)


def test_accumulator_ignores_unregistered_keys():
    acc = ProbeAccumulator()
    acc.register("a")
    acc.add("a", 1.0)
    acc.add("a", 2.0)
    acc.add("b", 3.0)
    assert acc.totals() == {"a": (3.0, 2)}
