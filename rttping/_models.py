from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional, Union

UNRELIABLE = -1.0


def metric_key(address: str) -> str:
    """Return the identifier-safe form of ``address`` used in metric names."""
    return address.replace(".", "_").replace(":", "_")


@dataclass(frozen=True)
class HostSpec:
    address: str
    label: str
    group: Optional[str] = None

    @property
    def key(self) -> str:
        return metric_key(self.address)

    @property
    def is_default_group(self) -> bool:
        return self.group is None

    def __str__(self) -> str:
        group = self.group if self.group is not None else "default"
        return f"{self.label} ({self.address}, group={group})"


@dataclass(frozen=True)
class Average:
    rtt_ms: float

    def __float__(self) -> float:
        return self.rtt_ms


@dataclass(frozen=True)
class Unreliable:
    """Too many replies went missing for the average to be trusted."""

    replies: int
    expected: int

    def __float__(self) -> float:
        return UNRELIABLE


MetricValue = Union[Average, Unreliable]


@dataclass
class MetricDef:
    name: str
    label: str
    stacked: bool = False

    def as_dict(self) -> dict[str, Any]:
        return {"name": self.name, "label": self.label, "stacked": self.stacked}


@dataclass
class GraphDef:
    label: str
    unit: str = "float"
    metrics: list[MetricDef] = field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        return {
            "label": self.label,
            "unit": self.unit,
            "metrics": [metric.as_dict() for metric in self.metrics],
        }
