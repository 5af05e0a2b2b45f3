"""Probe session: repeated echo rounds aggregated into per-host averages."""

from __future__ import annotations

import threading
from typing import Callable, Optional, Sequence

from ._exceptions import TransportError
from ._icmp import EchoTransport, Pinger, logger
from ._models import Average, HostSpec, MetricValue, Unreliable, metric_key


class ProbeAccumulator:
    """Running RTT totals per metric key, safe to feed from reply threads."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._totals: dict[str, tuple[float, int]] = {}

    def register(self, key: str) -> None:
        with self._lock:
            self._totals.setdefault(key, (0.0, 0))

    def add(self, key: str, rtt_ms: float) -> None:
        with self._lock:
            if key not in self._totals:
                return
            total, count = self._totals[key]
            self._totals[key] = (total + rtt_ms, count + 1)

    def totals(self) -> dict[str, tuple[float, int]]:
        with self._lock:
            return dict(self._totals)


class ProbeSession:
    def __init__(
        self,
        hosts: Sequence[HostSpec],
        *,
        count: int = 1,
        wait_time: float = 1.0,
        accept_miss: int = 0,
        source: Optional[str] = None,
        transport_factory: Callable[[], EchoTransport] = Pinger,
    ) -> None:
        if count < 1:
            raise ValueError("count must be at least 1")
        if not 0 <= accept_miss < count:
            raise ValueError("accept_miss must be between 0 and count - 1")
        self.hosts = list(hosts)
        self.count = count
        self.wait_time = wait_time
        self.accept_miss = accept_miss
        self.source = source
        self.transport_factory = transport_factory

    def _summarize(self, total: float, replies: int) -> MetricValue:
        if replies > 0 and replies >= self.count - self.accept_miss:
            return Average(total / replies)
        return Unreliable(replies=replies, expected=self.count)

    def run(self) -> dict[str, MetricValue]:
        """Probe every host ``count`` times and return a value per metric key.

        Raises :class:`TransportError` if any round fails; nothing from
        earlier rounds is returned in that case.
        """
        accumulator = ProbeAccumulator()
        transport = self.transport_factory()

        def on_recv(address: str, rtt_ns: int) -> None:
            accumulator.add(metric_key(address), rtt_ns / 1000.0 / 1000.0)

        transport.on_recv = on_recv
        for host in self.hosts:
            accumulator.register(host.key)
            transport.register_target(host.address)

        transport.set_max_wait(self.wait_time)
        if self.source:
            if not transport.set_source(self.source):
                logger.info("Source address %s ignored", self.source)

        logger.info(
            "Probing %d hosts (%d rounds, wait %.3fs, accept miss %d)",
            len(self.hosts),
            self.count,
            self.wait_time,
            self.accept_miss,
        )
        for idx in range(self.count):
            logger.debug("Round %d/%d", idx + 1, self.count)
            try:
                transport.run_round()
            except TransportError as exc:
                logger.error("Round %d/%d failed: %s", idx + 1, self.count, exc)
                raise

        values: dict[str, MetricValue] = {}
        for key, (total, replies) in accumulator.totals().items():
            value = self._summarize(total, replies)
            if isinstance(value, Unreliable):
                logger.warning(
                    "%s: %d/%d replies, reporting as unreliable",
                    key,
                    replies,
                    self.count,
                )
            values[key] = value
        return values
