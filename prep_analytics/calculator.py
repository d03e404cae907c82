"""
Gap Analytics - Indicator Calculator
Wraps the analytics modules behind one object built from a cohort snapshot.
"""

import logging
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Union

import numpy as np
import pandas as pd

from prep_analytics import aggregation
from prep_analytics.cache import AnalyticsCache
from prep_analytics.clustering import cluster_by_shared_gaps, unclustered_ids
from prep_analytics.layout import ForceLayout, edge_style, node_radii
from prep_analytics.models import Entity
from prep_analytics.regression import correlation_strength, fit_trend, fitted_line, pearson, series_values
from prep_analytics.settings import AnalyticsSettings
from prep_analytics.sync import pace_leader, peer_sync

logger = logging.getLogger(__name__)

PRIMARY_NODE_COLOR = "#3b82f6"
PEER_NODE_COLOR = "#64748b"

EntityInput = Union[Entity, Dict]


def _as_entities(items: Optional[Iterable[EntityInput]]) -> List[Entity]:
    entities = []
    for item in items or []:
        if isinstance(item, Entity):
            entities.append(item)
        else:
            parsed = aggregation.parse_entity(item)
            if parsed is not None:
                entities.append(parsed)
    return entities


class GapAnalyticsCalculator:
    """
    Computes gap analytics for one cohort snapshot.
    All public methods return a dict with keys: value, trend, details, chart_data.
    """

    def __init__(
        self,
        entities: Iterable[EntityInput],
        prev_entities: Optional[Iterable[EntityInput]] = None,
        settings: Optional[AnalyticsSettings] = None,
        cache: Optional[AnalyticsCache] = None,
    ):
        """
        Args:
            entities: Current cohort (Entity objects or raw record dicts)
            prev_entities: Previous snapshot of the same cohort (for trend %)
            settings: Tunables; defaults when omitted
            cache: Optional memoization layer shared across calculators
        """
        self.entities = _as_entities(entities)
        self.prev_entities = _as_entities(prev_entities)
        self.settings = settings or AnalyticsSettings()
        self.cache = cache
        self._df: Optional[pd.DataFrame] = None
        self._prev_df: Optional[pd.DataFrame] = None
        self._snapshot: Optional[str] = None

    @property
    def df(self) -> pd.DataFrame:
        if self._df is None:
            self._df = aggregation.entities_frame(self.entities)
        return self._df

    @property
    def prev_df(self) -> pd.DataFrame:
        if self._prev_df is None:
            self._prev_df = aggregation.entities_frame(self.prev_entities)
        return self._prev_df

    @property
    def snapshot_key(self) -> str:
        if self._snapshot is None:
            self._snapshot = AnalyticsCache.make_key("snapshot", entities=self.entities)
        return self._snapshot

    def _trend(self, current: float, previous: float) -> Optional[float]:
        """Compute % change vs previous snapshot."""
        if previous == 0:
            return None
        return round((current - previous) / abs(previous) * 100, 1)

    def _cached(self, name: str, fn: Callable[[], Dict], **params) -> Dict:
        if self.cache is None:
            return fn()
        key = AnalyticsCache.make_key(name, snapshot=self.snapshot_key, settings=self.settings, **params)
        return self.cache.cached(key, fn)

    def entity(self, entity_id: str) -> Optional[Entity]:
        for e in self.entities:
            if e.id == entity_id:
                return e
        return None

    # ─────────────────────────────────────────────
    # COHORT INDICATORS
    # ─────────────────────────────────────────────

    def gap_clusters(self, min_shared: Optional[int] = None) -> Dict:
        min_shared = self.settings.clustering.min_shared_gaps if min_shared is None else min_shared

        def compute() -> Dict:
            clusters = cluster_by_shared_gaps(self.entities, min_shared)
            loners = unclustered_ids(self.entities, clusters)
            return {
                "value": len(clusters),
                "trend": None,
                "chart_data": {
                    "clusters": [c.to_dict() for c in clusters],
                    "unclustered": loners,
                },
                "details": (
                    f"{len(clusters)} potential study groups from shared gaps"
                    if clusters else "No learners share enough gaps to form a group"
                ),
            }

        return self._cached("clusters", compute, min_shared=min_shared)

    def topic_heatmap(self) -> Dict:
        def compute() -> Dict:
            heatmap = aggregation.topic_heatmap(self.entities, self.settings.topic_minutes_factor)
            for row in heatmap:
                row["band"] = aggregation.intensity_band(row["avg_intensity"])
            return {
                "value": len(heatmap),
                "trend": None,
                "chart_data": {"topics": heatmap},
                "details": f"{len(heatmap)} weak topics across {len(self.entities)} learners",
            }

        return self._cached("heatmap", compute)

    def cohort_summary(self) -> Dict:
        summary = aggregation.cohort_summary(self.entities, self.settings.critical_intensity)
        return {
            "value": round(summary["avg_intensity"] * 100, 1),
            "trend": None,
            "chart_data": summary,
            "details": (
                f"{summary['critical_gaps']} critical gaps; "
                f"most critical topic: {summary['most_critical_topic'] or 'n/a'}"
            ),
        }

    def avg_gap_intensity(self) -> Dict:
        curr = round(float(self.df["intensity"].mean()) * 100, 1) if not self.df.empty else 0
        prev = round(float(self.prev_df["intensity"].mean()) * 100, 1) if not self.prev_df.empty else 0
        by_entity = {}
        if not self.df.empty:
            by_entity = self.df.groupby("name", sort=False)["intensity"].mean().round(3).to_dict()
        return {
            "value": curr,
            "trend": self._trend(curr, prev),
            "chart_data": {"labels": list(by_entity.keys()), "values": list(by_entity.values())},
            "details": f"Average gap intensity: {curr:.1f}%",
        }

    def critical_gaps(self) -> Dict:
        if self.df.empty:
            return {"value": 0, "trend": None, "chart_data": {}, "details": "No data"}
        threshold = self.settings.critical_intensity
        critical = self.df[self.df["intensity"] >= threshold]
        by_topic = critical.groupby("topic").size().sort_values(ascending=False)
        return {
            "value": len(critical),
            "trend": None,
            "chart_data": {"labels": by_topic.index.tolist(), "values": by_topic.values.tolist()},
            "details": f"{len(critical)} gap records at ≥{threshold * 100:.0f}% intensity",
        }

    def learner_rollups(self) -> Dict:
        df = aggregation.rollup_frame(self.entities, self.settings.topic_minutes_factor)
        if df.empty:
            return {"value": 0, "trend": None, "chart_data": {"rows": []}, "details": "No data"}
        df = df.sort_values("intensity_weighted", ascending=False, kind="stable")
        worst = df.iloc[0]
        return {
            "value": len(df),
            "trend": None,
            "chart_data": {"rows": df.to_dict(orient="records")},
            "details": f"Heaviest gaps: {worst['name']} ({worst['intensity_weighted'] * 100:.0f}% weighted intensity)",
        }

    # ─────────────────────────────────────────────
    # TREND INDICATORS
    # ─────────────────────────────────────────────

    def progress_trend(self, series: Sequence[Any], order_key: str = "date", value_key: str = "value",
                       period: Optional[int] = None) -> Dict:
        """
        Least-squares trend over a short series.
        ``series`` may hold numbers, TimeSeriesPoints, or dicts keyed by
        ``order_key``/``value_key`` (re-indexed 0..n-1 by ``order_key``).
        With ``period`` set, values are first averaged in chunks of that size
        (daily -> weekly).
        """
        points = list(series or [])
        if points and isinstance(points[0], dict):
            points = aggregation.reindex_series(points, order_key, value_key)
        # ordered by index, non-finite points dropped; chart and fit share these
        values = series_values(points).tolist()
        if period:
            values = aggregation.period_averages(values, period)
        trend = fit_trend(values, self.settings.trend)
        n = len(values)
        return {
            "value": round(trend.slope, 3),
            "trend": None,
            "chart_data": {
                "x": list(range(n)),
                "y": values,
                "fit": fitted_line(trend, n),
                **trend.to_dict(),
                "strength": correlation_strength(trend.correlation, self.settings.trend),
            },
            "details": f"{trend.direction} (slope {trend.slope:.3f}, r={trend.correlation:.2f})",
        }

    def time_accuracy_tradeoff(self, records: Sequence[Dict], time_key: str = "hours_spent",
                               score_key: str = "accuracy") -> Dict:
        """Signed correlation between time spent and accuracy, one record per topic."""
        rows = [r for r in records or [] if r.get(time_key) is not None and r.get(score_key) is not None]
        xs = [float(r[time_key]) for r in rows]
        ys = [float(r[score_key]) for r in rows]
        r = pearson(xs, ys)
        strength = correlation_strength(r, self.settings.trend)
        sign = "positive" if r > 0 else "negative" if r < 0 else "no"
        return {
            "value": round(r, 3),
            "trend": None,
            "chart_data": {"x": xs, "y": ys, "correlation": r, "strength": strength},
            "details": f"{strength} {sign} correlation between time spent and accuracy",
        }

    # ─────────────────────────────────────────────
    # PEER INDICATORS
    # ─────────────────────────────────────────────

    def peer_sync(self, a_id: str, b_id: str) -> Dict:
        a, b = self.entity(a_id), self.entity(b_id)
        if a is None or b is None:
            missing = a_id if a is None else b_id
            logger.warning(f"peer_sync: unknown learner {missing!r}")
            return {"value": 0, "trend": None, "chart_data": {}, "details": f"Unknown learner {missing}"}
        result = peer_sync(a, b, self.settings.sync)
        leader = pace_leader(a, b)
        return {
            "value": round(result.score, 1),
            "trend": None,
            "chart_data": {
                **result.to_dict(),
                "hours": [result.time_a / 60, result.time_b / 60],
                "labels": [a.name, b.name],
                "leader": leader,
            },
            "details": f"{result.label} sync ({result.score:.1f}%)",
        }

    # ─────────────────────────────────────────────
    # GAP NETWORK
    # ─────────────────────────────────────────────

    def gap_network(self, primary_id: Optional[str] = None, max_steps: Optional[int] = None,
                    rng: Optional[np.random.Generator] = None) -> Dict:
        """Build the cohort gap-overlap graph and lay it out to convergence."""
        layout_settings = self.settings.layout
        max_steps = layout_settings.max_steps if max_steps is None else max_steps

        def compute() -> Dict:
            graph = aggregation.build_gap_graph(self.entities, primary_id, self.settings.topic_minutes_factor)
            if not graph.nodes:
                return {"value": 0, "trend": None, "chart_data": {"nodes": [], "edges": []}, "details": "No data"}
            layout = ForceLayout(graph, layout_settings, rng=rng)
            positions = {p.id: p for p in layout.run(max_steps)}
            radii = node_radii(graph.nodes, layout_settings)
            nodes = []
            for node in graph.nodes:
                pos = positions[node.id]
                nodes.append({
                    **pos.to_dict(),
                    "weight": node.weight,
                    "radius": radii[node.id],
                    "is_primary_user_gap": node.is_primary_user_gap,
                    "color": PRIMARY_NODE_COLOR if node.is_primary_user_gap else PEER_NODE_COLOR,
                })
            edges = []
            for edge in graph.edges:
                style = edge_style(edge.overlap_strength)
                edges.append({
                    "source_id": edge.source_id,
                    "target_id": edge.target_id,
                    "overlap_strength": edge.overlap_strength,
                    "tier": style.tier,
                    "color": style.color,
                    "thickness": style.thickness,
                })
            strong = sum(1 for e in edges if e["tier"] == "strong")
            return {
                "value": len(nodes),
                "trend": None,
                "chart_data": {
                    "nodes": nodes,
                    "edges": edges,
                    "converged": layout.converged(),
                    "steps": layout.state.steps,
                },
                "details": f"{len(nodes)} gaps, {strong} strong overlaps",
            }

        if rng is not None:
            return compute()
        return self._cached("network", compute, primary_id=primary_id, max_steps=max_steps)
