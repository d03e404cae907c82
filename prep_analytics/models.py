"""
Data shapes shared by the analytics modules.
Inputs are frozen snapshots; outputs are fresh objects per run.
"""

import math
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, List, Optional, Tuple, Any


def clamp(value: float, low: float, high: float) -> float:
    """Clamp to [low, high]; non-finite values collapse to ``low``."""
    try:
        value = float(value)
    except (TypeError, ValueError):
        return low
    if not math.isfinite(value):
        return low
    return max(low, min(high, value))


@dataclass(frozen=True)
class WeakTopic:
    topic: str
    intensity: float = 0.0

    def __post_init__(self):
        object.__setattr__(self, "intensity", clamp(self.intensity, 0.0, 1.0))


@dataclass(frozen=True)
class Entity:
    """A learner and their weak-gap records."""
    id: str
    name: str = ""
    weak_topics: Tuple[WeakTopic, ...] = ()
    completed_units: int = 0
    elapsed_minutes: float = 0.0

    def __post_init__(self):
        object.__setattr__(self, "weak_topics", tuple(self.weak_topics))
        if not self.name:
            object.__setattr__(self, "name", str(self.id))

    @property
    def topic_labels(self) -> FrozenSet[str]:
        return frozenset(g.topic for g in self.weak_topics)


@dataclass(frozen=True)
class GapNode:
    id: str
    weight: float = 0.0
    is_primary_user_gap: bool = False
    # Last known position, used to warm-start the layout
    x: Optional[float] = None
    y: Optional[float] = None
    # Pinned position
    fx: Optional[float] = None
    fy: Optional[float] = None

    def __post_init__(self):
        object.__setattr__(self, "weight", clamp(self.weight, 0.0, math.inf))


@dataclass(frozen=True)
class GapEdge:
    source_id: str
    target_id: str
    overlap_strength: float = 0.0

    def __post_init__(self):
        object.__setattr__(self, "overlap_strength", clamp(self.overlap_strength, 0.0, 100.0))

    @property
    def key(self) -> FrozenSet[str]:
        return frozenset((self.source_id, self.target_id))


@dataclass(frozen=True)
class GapGraph:
    nodes: Tuple[GapNode, ...] = ()
    edges: Tuple[GapEdge, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, "nodes", tuple(self.nodes))
        object.__setattr__(self, "edges", tuple(self.edges))


@dataclass
class Cluster:
    member_ids: List[str]
    member_names: List[str] = field(default_factory=list)
    # (topic, number of members holding it), first-seen order
    common_gaps: List[Tuple[str, int]] = field(default_factory=list)
    avg_intensity: float = 0.0

    @property
    def common_gap_topics(self) -> List[str]:
        return [topic for topic, _ in self.common_gaps]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "member_ids": list(self.member_ids),
            "member_names": list(self.member_names),
            "common_gaps": [{"topic": t, "count": c} for t, c in self.common_gaps],
            "avg_intensity": self.avg_intensity,
        }


@dataclass(frozen=True)
class TimeSeriesPoint:
    index: int
    value: float


@dataclass
class TrendResult:
    slope: float = 0.0
    intercept: float = 0.0
    correlation: float = 0.0
    direction: str = "Stable"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "slope": self.slope,
            "intercept": self.intercept,
            "correlation": self.correlation,
            "direction": self.direction,
        }


@dataclass
class SyncResult:
    score: float
    label: str
    time_a: float = 0.0
    time_b: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {"score": self.score, "label": self.label, "time_a": self.time_a, "time_b": self.time_b}


@dataclass(frozen=True)
class NodePosition:
    id: str
    x: float
    y: float

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "x": self.x, "y": self.y}
