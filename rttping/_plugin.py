"""Plugin harness: runs the probe and prints values or graph definitions."""

from __future__ import annotations

import json
import os
import time
from typing import Callable, Optional, Sequence, TextIO

from ._graphs import fetch, graph_definitions
from ._icmp import EchoTransport, Pinger, logger
from ._models import GraphDef, HostSpec, metric_key
from ._session import ProbeSession

DEFINITIONS_HEADER = "# mackerel-agent-plugin"
DEFAULT_PREFIX = "ping"


def default_tempfile(addresses: Sequence[str], workdir: str) -> str:
    name = metric_key("-".join(addresses))
    return os.path.join(workdir, f"mackerel-plugin-ping-{name}")


class PingPlugin:
    def __init__(
        self,
        hosts: Sequence[HostSpec],
        *,
        count: int = 1,
        wait_time: float = 1.0,
        accept_miss: int = 0,
        source: Optional[str] = None,
        stacked: bool = False,
        prefix: str = "",
        legacy_meta: bool = False,
        transport_factory: Callable[[], EchoTransport] = Pinger,
    ) -> None:
        self.hosts = list(hosts)
        self.count = count
        self.wait_time = wait_time
        self.accept_miss = accept_miss
        self.source = source
        self.stacked = stacked
        self.prefix = prefix
        self.legacy_meta = legacy_meta
        self.transport_factory = transport_factory

    def metric_key_prefix(self) -> str:
        return self.prefix or DEFAULT_PREFIX

    def fetch_metrics(self) -> dict[str, float]:
        session = ProbeSession(
            self.hosts,
            count=self.count,
            wait_time=self.wait_time,
            accept_miss=self.accept_miss,
            source=self.source,
            transport_factory=self.transport_factory,
        )
        return fetch(self.hosts, session.run())

    def graph_definition(self) -> dict[str, GraphDef]:
        prefix = self.metric_key_prefix()
        graphs = graph_definitions(
            self.hosts, stacked=self.stacked, legacy_meta=self.legacy_meta
        )
        return {f"{prefix}.{key}": graph for key, graph in graphs.items()}


class MetricsSink:
    def __init__(self, plugin: PingPlugin, tempfile: Optional[str] = None) -> None:
        self.plugin = plugin
        self.tempfile = tempfile

    def output_definitions(self, stream: TextIO) -> None:
        graphs = {
            key: graph.as_dict() for key, graph in self.plugin.graph_definition().items()
        }
        stream.write(DEFINITIONS_HEADER + "\n")
        stream.write(json.dumps({"graphs": graphs}) + "\n")

    def output_values(self, stream: TextIO, now: Optional[float] = None) -> None:
        stat = self.plugin.fetch_metrics()
        epoch = int(now if now is not None else time.time())

        for key, graph in self.plugin.graph_definition().items():
            if "#" in key or "*" in key:
                continue
            for metric in graph.metrics:
                value = stat.get(metric.name)
                if value is None:
                    continue
                stream.write(f"{key}.{metric.name}\t{value:f}\t{epoch}\n")

        if self.tempfile:
            self.save_last_values(stat, epoch)

    def save_last_values(self, stat: dict[str, float], epoch: int) -> None:
        payload = dict(stat)
        payload["_lastTime"] = epoch
        try:
            with open(self.tempfile, "w", encoding="utf-8") as f:
                json.dump(payload, f)
        except OSError as exc:
            logger.warning("Cannot write tempfile %s: %s", self.tempfile, exc)
