import ipaddress
import socket
import threading

import pytest

from rttping._config import get_settings
from rttping._exceptions import TransportError
from rttping._icmp import EchoTransport

FAKE_DNS = {
    "m.root-servers.net": {
        socket.AF_INET: "202.12.27.33",
        socket.AF_INET6: "2001:dc3::35",
    },
    "localhost": {
        socket.AF_INET: "127.0.0.1",
        socket.AF_INET6: "::1",
    },
    "v4only.example": {
        socket.AF_INET: "192.0.2.10",
    },
}


def fake_getaddrinfo(host, port, family=0, type=0, proto=0, flags=0):
    try:
        ip = ipaddress.ip_address(host)
    except ValueError:
        ip = None
    if ip is not None:
        wanted = 6 if family == socket.AF_INET6 else 4
        if ip.version != wanted:
            raise socket.gaierror(socket.EAI_NONAME, "Name or service not known")
        address = str(ip)
    else:
        address = FAKE_DNS.get(host, {}).get(family)
        if address is None:
            raise socket.gaierror(socket.EAI_NONAME, "Name or service not known")
    if family == socket.AF_INET6:
        return [(family, socket.SOCK_RAW, 0, "", (address, 0, 0, 0))]
    return [(family, socket.SOCK_RAW, 0, "", (address, 0))]


class FakeTransport(EchoTransport):
    """Replays scripted RTTs (milliseconds, ``None`` for a lost reply) per round."""

    def __init__(self, script=None, *, fail_on_round=None, threaded=False, extra_replies=None):
        self.script = script or {}
        self.fail_on_round = fail_on_round
        self.threaded = threaded
        self.extra_replies = extra_replies or []
        self.on_recv = None
        self.targets = []
        self.max_wait = None
        self.source = None
        self.rounds = 0

    def register_target(self, address):
        self.targets.append(address)

    def set_max_wait(self, seconds):
        self.max_wait = seconds

    def set_source(self, address):
        try:
            ipaddress.ip_address(address)
        except ValueError:
            return False
        self.source = address
        return True

    def _replies(self):
        idx = self.rounds - 1
        for address in self.targets:
            rtts = self.script.get(address, [])
            if idx < len(rtts) and rtts[idx] is not None:
                yield address, int(rtts[idx] * 1_000_000)
        yield from self.extra_replies

    def run_round(self):
        self.rounds += 1
        if self.fail_on_round == self.rounds:
            raise TransportError("socket closed")
        replies = list(self._replies())
        if not self.threaded:
            for address, rtt_ns in replies:
                self.on_recv(address, rtt_ns)
            return
        workers = [
            threading.Thread(target=self.on_recv, args=reply) for reply in replies
        ]
        for worker in workers:
            worker.start()
        for worker in workers:
            worker.join()


@pytest.fixture(autouse=True)
def clear_settings(monkeypatch):
    monkeypatch.delenv("MACKEREL_AGENT_PLUGIN_META", raising=False)
    monkeypatch.delenv("MACKEREL_PLUGIN_WORKDIR", raising=False)
    monkeypatch.delenv("PING_LOG_LEVEL", raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def fake_dns(monkeypatch):
    monkeypatch.setattr(socket, "getaddrinfo", fake_getaddrinfo)
