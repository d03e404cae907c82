"""
Force-directed layout for the gap-overlap network.

Topics are nodes, co-occurrence between two topics is an edge. Each step
applies four forces and then integrates positions:

- link:      pulls connected topics toward a rest distance that shrinks as
             overlap strength grows
- charge:    uniform pairwise repulsion
- collision: keeps rendered circles (plus a margin) from overlapping
- centering: shifts the centroid onto the canvas center, plus a weak pull
             of every node toward it

A decaying ``alpha`` scales the link/charge/pull forces so the system settles
instead of oscillating. ``step`` is a pure function of a ``LayoutState``;
``ForceLayout`` is the stateful driver an external tick source calls.

The force formulas follow d3-force (forceLink, forceManyBody, forceCollide,
forceCenter, forceX/forceY) so layouts look like the ones the dashboard drew
before.
"""

import math
import logging
from dataclasses import dataclass, replace
from typing import Dict, Iterator, List, Mapping, Optional, Sequence, Tuple

import numpy as np

from prep_analytics.models import GapGraph, GapNode, NodePosition, clamp
from prep_analytics.settings import LayoutSettings

logger = logging.getLogger(__name__)

JIGGLE = 1e-6
DISTANCE_MIN2 = 1.0


# ─────────────────────────────────────────────
# NODE / EDGE VISUAL MAPPING
# ─────────────────────────────────────────────

@dataclass(frozen=True)
class EdgeStyle:
    tier: str
    color: str
    thickness: float


EDGE_TIERS = [
    (60.0, "strong", "#ef4444"),
    (40.0, "medium", "#f59e0b"),
]
WEAK_TIER = ("weak", "#10b981")


def node_radius(weight: float, max_weight: float, settings: Optional[LayoutSettings] = None) -> float:
    """Rendered radius: min_size + (weight / max_weight) * (max_size - min_size)."""
    settings = settings or LayoutSettings()
    if not max_weight or max_weight <= 0 or not math.isfinite(max_weight):
        return settings.min_node_size
    ratio = clamp(weight / max_weight, 0.0, 1.0)
    return settings.min_node_size + ratio * (settings.max_node_size - settings.min_node_size)


def node_radii(nodes: Sequence[GapNode], settings: Optional[LayoutSettings] = None) -> Dict[str, float]:
    max_weight = max((n.weight for n in nodes), default=0.0)
    return {n.id: node_radius(n.weight, max_weight, settings) for n in nodes}


def edge_tier(overlap_strength: float) -> str:
    return edge_style(overlap_strength).tier


def edge_style(overlap_strength: float) -> EdgeStyle:
    strength = clamp(overlap_strength, 0.0, 100.0)
    thickness = 1.0 + (strength / 100.0) * 7.0
    for threshold, tier, color in EDGE_TIERS:
        if strength >= threshold:
            return EdgeStyle(tier, color, thickness)
    return EdgeStyle(WEAK_TIER[0], WEAK_TIER[1], thickness)


# ─────────────────────────────────────────────
# SIMULATION STATE
# ─────────────────────────────────────────────

@dataclass(frozen=True, eq=False)
class LayoutState:
    """
    Snapshot of the simulation. Arrays are indexed like ``ids``.
    ``step`` never mutates a state; it returns a new one.
    """
    ids: Tuple[str, ...]
    x: np.ndarray
    y: np.ndarray
    vx: np.ndarray
    vy: np.ndarray
    radius: np.ndarray
    fx: np.ndarray  # NaN where the node is free
    fy: np.ndarray
    edge_source: np.ndarray
    edge_target: np.ndarray
    edge_distance: np.ndarray
    edge_strength: np.ndarray
    edge_bias: np.ndarray
    center: Tuple[float, float]
    settings: LayoutSettings
    alpha: float = 1.0
    steps: int = 0
    last_displacement: float = math.inf

    @property
    def size(self) -> int:
        return len(self.ids)

    def converged(self, epsilon: float) -> bool:
        return self.last_displacement < epsilon

    def positions(self) -> List[NodePosition]:
        return [NodePosition(node_id, float(px), float(py)) for node_id, px, py in zip(self.ids, self.x, self.y)]

    def position_map(self) -> Dict[str, Tuple[float, float]]:
        return {node_id: (float(px), float(py)) for node_id, px, py in zip(self.ids, self.x, self.y)}


def _placement(count: int, offset: int, center: Tuple[float, float], spread: float,
               rng: Optional[np.random.Generator]) -> np.ndarray:
    """Positions for brand-new nodes: uniform random with an rng, phyllotaxis otherwise."""
    cx, cy = center
    if rng is not None:
        return np.column_stack([
            rng.uniform(cx - spread, cx + spread, count),
            rng.uniform(cy - spread, cy + spread, count),
        ])
    i = np.arange(offset, offset + count, dtype=float)
    r = 10.0 * np.sqrt(0.5 + i)
    angle = i * math.pi * (3 - math.sqrt(5))
    return np.column_stack([cx + r * np.cos(angle), cy + r * np.sin(angle)])


def initial_state(
    graph: GapGraph,
    settings: Optional[LayoutSettings] = None,
    previous: Optional[Mapping[str, Tuple[float, float]]] = None,
    rng: Optional[np.random.Generator] = None,
    alpha: float = 1.0,
) -> LayoutState:
    """
    Build a simulation state for ``graph``.

    Args:
        graph: Nodes and edges to lay out.
        settings: Layout constants; defaults when omitted.
        previous: Last known ``{id: (x, y)}``. Nodes found here restart from
            that position; others use their own ``x``/``y`` if set, else a
            fresh placement.
        rng: Random generator for fresh placements. Without one, fresh nodes
            are placed on a deterministic phyllotaxis spiral.
        alpha: Starting temperature.
    """
    settings = settings or LayoutSettings()
    previous = previous or {}
    center = (settings.width / 2.0, settings.height / 2.0)

    nodes: List[GapNode] = []
    seen = set()
    for node in graph.nodes:
        if node.id in seen:
            logger.warning(f"Duplicate gap node {node.id!r} ignored")
            continue
        seen.add(node.id)
        nodes.append(node)

    n = len(nodes)
    ids = tuple(node.id for node in nodes)
    index = {node_id: i for i, node_id in enumerate(ids)}
    radii = node_radii(nodes, settings)

    x = np.zeros(n)
    y = np.zeros(n)
    fx = np.full(n, np.nan)
    fy = np.full(n, np.nan)
    fresh = []
    for i, node in enumerate(nodes):
        if node.fx is not None and node.fy is not None:
            fx[i], fy[i] = node.fx, node.fy
            x[i], y[i] = node.fx, node.fy
        elif node.id in previous:
            x[i], y[i] = previous[node.id]
        elif node.x is not None and node.y is not None:
            x[i], y[i] = node.x, node.y
        else:
            fresh.append(i)
    if fresh:
        spread = min(settings.width, settings.height) / 4.0
        placed = _placement(len(fresh), n - len(fresh), center, spread, rng)
        x[fresh] = placed[:, 0]
        y[fresh] = placed[:, 1]

    sources, targets, overlaps = [], [], []
    seen_edges = set()
    for edge in graph.edges:
        if edge.source_id not in index or edge.target_id not in index:
            logger.warning(
                f"Skipping edge {edge.source_id!r} - {edge.target_id!r}: endpoint not in node set"
            )
            continue
        if edge.source_id == edge.target_id:
            logger.warning(f"Skipping self-loop on {edge.source_id!r}")
            continue
        if edge.key in seen_edges:
            logger.debug(f"Duplicate edge {edge.source_id!r} - {edge.target_id!r} ignored")
            continue
        seen_edges.add(edge.key)
        sources.append(index[edge.source_id])
        targets.append(index[edge.target_id])
        overlaps.append(edge.overlap_strength)

    edge_source = np.asarray(sources, dtype=int)
    edge_target = np.asarray(targets, dtype=int)
    overlap = np.asarray(overlaps, dtype=float)
    degree = np.bincount(np.concatenate([edge_source, edge_target]), minlength=n).astype(float)
    if len(overlap):
        bias = degree[edge_source] / (degree[edge_source] + degree[edge_target])
    else:
        bias = np.zeros(0)

    return LayoutState(
        ids=ids,
        x=x,
        y=y,
        vx=np.zeros(n),
        vy=np.zeros(n),
        radius=np.asarray([radii[node_id] for node_id in ids], dtype=float),
        fx=fx,
        fy=fy,
        edge_source=edge_source,
        edge_target=edge_target,
        edge_distance=settings.base_link_distance - overlap * settings.link_distance_scale,
        edge_strength=overlap / 100.0 * settings.link_strength_scale,
        edge_bias=bias,
        center=center,
        settings=settings,
        alpha=alpha,
    )


# ─────────────────────────────────────────────
# FORCES
# ─────────────────────────────────────────────

def _link_force(state: LayoutState, x, y, vx, vy, alpha: float) -> None:
    if not len(state.edge_source):
        return
    s, t = state.edge_source, state.edge_target
    dx = x[t] + vx[t] - x[s] - vx[s]
    dy = y[t] + vy[t] - y[s] - vy[s]
    dx = np.where((dx == 0) & (dy == 0), JIGGLE, dx)
    length = np.hypot(dx, dy)
    k = (length - state.edge_distance) / length * alpha * state.edge_strength
    dx *= k
    dy *= k
    b = state.edge_bias
    np.add.at(vx, t, -dx * b)
    np.add.at(vy, t, -dy * b)
    np.add.at(vx, s, dx * (1 - b))
    np.add.at(vy, s, dy * (1 - b))


def _charge_force(state: LayoutState, x, y, vx, vy, alpha: float) -> None:
    n = state.size
    if n < 2:
        return
    # dx[i, j] points from i to j
    dx = x[None, :] - x[:, None]
    dy = y[None, :] - y[:, None]
    off_diagonal = ~np.eye(n, dtype=bool)
    coincident = (dx == 0) & (dy == 0) & off_diagonal
    if coincident.any():
        order = np.subtract.outer(np.arange(n), np.arange(n))
        dx = np.where(coincident, -np.sign(order) * JIGGLE, dx)
    dist2 = dx * dx + dy * dy
    dist2 = np.where(dist2 < DISTANCE_MIN2, np.sqrt(DISTANCE_MIN2 * dist2), dist2)
    dist2[~off_diagonal] = 1.0
    weight = state.settings.charge_strength * alpha / dist2
    weight[~off_diagonal] = 0.0
    vx += (dx * weight).sum(axis=1)
    vy += (dy * weight).sum(axis=1)


def _center_force(state: LayoutState, x, y) -> None:
    if not state.size:
        return
    cx, cy = state.center
    strength = state.settings.center_strength
    x -= (x.mean() - cx) * strength
    y -= (y.mean() - cy) * strength


def _collision_force(state: LayoutState, x, y, vx, vy) -> None:
    n = state.size
    if n < 2:
        return
    r = state.radius + state.settings.collision_margin
    px = x + vx
    py = y + vy
    i, j = np.triu_indices(n, 1)
    dx = px[i] - px[j]
    dy = py[i] - py[j]
    reach = r[i] + r[j]
    dist2 = dx * dx + dy * dy
    hit = dist2 < reach * reach
    if not hit.any():
        return
    i, j, dx, dy, reach, dist2 = i[hit], j[hit], dx[hit], dy[hit], reach[hit], dist2[hit]
    dx = np.where(dist2 == 0, JIGGLE, dx)
    dist = np.hypot(dx, dy)
    k = (reach - dist) / dist * state.settings.collision_strength
    dx *= k
    dy *= k
    ri2 = r[i] ** 2
    rj2 = r[j] ** 2
    share = rj2 / (ri2 + rj2)
    np.add.at(vx, i, dx * share)
    np.add.at(vy, i, dy * share)
    np.add.at(vx, j, -dx * (1 - share))
    np.add.at(vy, j, -dy * (1 - share))


def _gravity_force(state: LayoutState, x, y, vx, vy, alpha: float) -> None:
    cx, cy = state.center
    g = state.settings.gravity_strength * alpha
    vx += (cx - x) * g
    vy += (cy - y) * g


def step(state: LayoutState) -> LayoutState:
    """Advance the simulation one tick and return the new state."""
    settings = state.settings
    alpha = state.alpha + (0.0 - state.alpha) * settings.alpha_decay

    x, y = state.x.copy(), state.y.copy()
    vx, vy = state.vx.copy(), state.vy.copy()

    _link_force(state, x, y, vx, vy, alpha)
    _charge_force(state, x, y, vx, vy, alpha)
    _center_force(state, x, y)
    _collision_force(state, x, y, vx, vy)
    _gravity_force(state, x, y, vx, vy, alpha)

    pinned = ~np.isnan(state.fx)
    vx *= 1.0 - settings.velocity_decay
    vy *= 1.0 - settings.velocity_decay
    x += vx
    y += vy
    x[pinned] = state.fx[pinned]
    y[pinned] = state.fy[pinned]
    vx[pinned] = 0.0
    vy[pinned] = 0.0

    if state.size:
        displacement = float(np.max(np.hypot(x - state.x, y - state.y)))
    else:
        displacement = 0.0

    return replace(
        state,
        x=x, y=y, vx=vx, vy=vy,
        alpha=alpha,
        steps=state.steps + 1,
        last_displacement=displacement,
    )


def run(state: LayoutState, max_steps: int, epsilon: Optional[float] = None) -> LayoutState:
    """Step ``max_steps`` times, stopping early once displacement drops below ``epsilon``."""
    for _ in range(max(max_steps, 0)):
        state = step(state)
        if epsilon is not None and state.converged(epsilon):
            break
    return state


# ─────────────────────────────────────────────
# DRIVER
# ─────────────────────────────────────────────

class ForceLayout:
    """
    Stateful wrapper around ``step`` for interactive use.

    A redraw loop calls ``tick()`` and reads ``positions()``; a batch caller
    uses ``run()``. Positions are valid to read at any point, converged or not.
    """

    def __init__(
        self,
        graph: GapGraph,
        settings: Optional[LayoutSettings] = None,
        rng: Optional[np.random.Generator] = None,
    ):
        self.settings = settings or LayoutSettings()
        self.rng = rng
        self._state = initial_state(graph, self.settings, rng=rng)

    @property
    def state(self) -> LayoutState:
        return self._state

    @property
    def alpha(self) -> float:
        return self._state.alpha

    def converged(self, epsilon: Optional[float] = None) -> bool:
        return self._state.converged(self.settings.epsilon if epsilon is None else epsilon)

    def positions(self) -> List[NodePosition]:
        return self._state.positions()

    def tick(self) -> List[NodePosition]:
        self._state = step(self._state)
        return self._state.positions()

    def iter_steps(self, max_steps: Optional[int] = None, epsilon: Optional[float] = None) -> Iterator[List[NodePosition]]:
        """Yield positions after every step until convergence or the step budget runs out."""
        max_steps = self.settings.max_steps if max_steps is None else max_steps
        epsilon = self.settings.epsilon if epsilon is None else epsilon
        for _ in range(max(max_steps, 0)):
            yield self.tick()
            if self._state.converged(epsilon):
                logger.debug(f"Layout converged after {self._state.steps} steps")
                return

    def run(self, max_steps: Optional[int] = None, epsilon: Optional[float] = None) -> List[NodePosition]:
        for _ in self.iter_steps(max_steps, epsilon):
            pass
        return self.positions()

    def update_graph(self, graph: GapGraph) -> None:
        """
        Swap in a new node/edge set. Nodes that persist keep their last
        position; new nodes are placed fresh. The simulation is reheated.
        """
        previous = self._state.position_map()
        pinned = {
            node_id: (float(px), float(py))
            for node_id, px, py in zip(self._state.ids, self._state.fx, self._state.fy)
            if not math.isnan(px)
        }
        nodes = [
            replace(n, fx=pinned[n.id][0], fy=pinned[n.id][1]) if n.id in pinned and n.fx is None else n
            for n in graph.nodes
        ]
        self._state = initial_state(
            GapGraph(nodes=nodes, edges=graph.edges),
            self.settings,
            previous=previous,
            rng=self.rng,
            alpha=self.settings.reheat_alpha,
        )
        kept = sum(1 for node_id in self._state.ids if node_id in previous)
        logger.debug(f"Layout updated: {kept} nodes kept, {self._state.size - kept} new")

    def pin(self, node_id: str, x: float, y: float) -> None:
        i = self._index(node_id)
        if i is None:
            return
        fx, fy = self._state.fx.copy(), self._state.fy.copy()
        px, py = self._state.x.copy(), self._state.y.copy()
        fx[i], fy[i] = x, y
        px[i], py[i] = x, y
        self._state = replace(self._state, fx=fx, fy=fy, x=px, y=py)

    def unpin(self, node_id: str) -> None:
        i = self._index(node_id)
        if i is None:
            return
        fx, fy = self._state.fx.copy(), self._state.fy.copy()
        fx[i] = fy[i] = np.nan
        self._state = replace(self._state, fx=fx, fy=fy)

    def _index(self, node_id: str) -> Optional[int]:
        try:
            return self._state.ids.index(node_id)
        except ValueError:
            logger.warning(f"Unknown gap node {node_id!r}")
            return None
