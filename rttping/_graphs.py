"""Graph definitions and flattened values for the metrics sink."""

from __future__ import annotations

from typing import Mapping, Sequence

from ._models import GraphDef, HostSpec, MetricDef, MetricValue

GRAPH_LABEL = "Ping Round Trip Times"
DEFAULT_GRAPH = "rtt"
WILDCARD_GRAPH = "rtt.#"


def graph_key(host: HostSpec) -> str:
    if host.is_default_group:
        return DEFAULT_GRAPH
    return f"{DEFAULT_GRAPH}.{host.group}"


def graph_label(key: str) -> str:
    if key == DEFAULT_GRAPH:
        return f"{GRAPH_LABEL} (Group: default)"
    if key == WILDCARD_GRAPH:
        return GRAPH_LABEL
    return f"{GRAPH_LABEL} (Group: {key.split('.', 1)[1]})"


def graph_definitions(
    hosts: Sequence[HostSpec],
    *,
    stacked: bool = False,
    legacy_meta: bool = False,
) -> dict[str, GraphDef]:
    """Group hosts into one graph per group, keeping host order within each.

    With ``legacy_meta`` every host of an explicit group is also listed under
    the ``rtt.#`` wildcard graph.
    """
    graphs: dict[str, GraphDef] = {}
    for host in hosts:
        key = graph_key(host)
        targets = [key]
        if legacy_meta and key != DEFAULT_GRAPH:
            targets.append(WILDCARD_GRAPH)
        for target in targets:
            graph = graphs.get(target)
            if graph is None:
                graph = graphs[target] = GraphDef(label=graph_label(target))
            graph.metrics.append(
                MetricDef(name=host.key, label=host.label, stacked=stacked)
            )
    return graphs


def fetch(
    hosts: Sequence[HostSpec], values: Mapping[str, MetricValue]
) -> dict[str, float]:
    return {host.key: float(values[host.key]) for host in hosts if host.key in values}
