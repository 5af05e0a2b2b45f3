from ._config import Settings, get_settings
from ._exceptions import RawSocketPermissionError, ResolutionError, TransportError
from ._graphs import fetch, graph_definitions
from ._hosts import normalize_address, parse_hosts
from ._icmp import EchoReply, EchoTransport, Pinger
from ._models import (
    Average,
    GraphDef,
    HostSpec,
    MetricDef,
    MetricValue,
    Unreliable,
    metric_key,
)
from ._plugin import MetricsSink, PingPlugin
from ._session import ProbeAccumulator, ProbeSession

__all__ = [
    "Average",
    "EchoReply",
    "EchoTransport",
    "GraphDef",
    "HostSpec",
    "MetricDef",
    "MetricValue",
    "MetricsSink",
    "PingPlugin",
    "Pinger",
    "ProbeAccumulator",
    "ProbeSession",
    "RawSocketPermissionError",
    "ResolutionError",
    "Settings",
    "TransportError",
    "Unreliable",
    "fetch",
    "get_settings",
    "graph_definitions",
    "metric_key",
    "normalize_address",
    "parse_hosts",
]
