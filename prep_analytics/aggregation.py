"""
Aggregation utilities: raw cohort records -> entities -> roll-ups.
Feeds clustering, sync and regression, and builds the gap-overlap graph
for the layout.
"""

import logging
from itertools import combinations
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from prep_analytics.models import Entity, GapEdge, GapGraph, GapNode, TimeSeriesPoint, WeakTopic, clamp

logger = logging.getLogger(__name__)

TOPIC_MINUTES_FACTOR = 0.1
CRITICAL_INTENSITY = 0.8

FRAME_COLUMNS = ["entity_id", "name", "topic", "intensity", "completed_units", "elapsed_minutes"]


class RecordParser:
    """Helpers to pull entity fields out of raw record dicts.

    Two shapes are accepted: the engine's own keys (``id``, ``weakTopics``,
    ``completedUnits``, ``elapsedTimeProxy``) and the cohort export keys
    (``student_id``, ``topic_gap_sentences``, ``pyqs_attempted``,
    ``total_minutes_spent``).
    """

    @staticmethod
    def entity_id(record: Dict) -> str:
        for key in ("id", "student_id", "entity_id"):
            if record.get(key) is not None:
                return str(record[key])
        return ""

    @staticmethod
    def name(record: Dict) -> str:
        return str(record.get("name") or RecordParser.entity_id(record))

    @staticmethod
    def weak_topics(record: Dict) -> Tuple[WeakTopic, ...]:
        raw = record.get("weakTopics")
        if raw is None:
            raw = record.get("weak_topics")
        if raw is None:
            raw = record.get("topic_gap_sentences", [])
        topics = []
        for item in raw or []:
            if isinstance(item, str):
                topics.append(WeakTopic(item, 0.0))
                continue
            if not isinstance(item, dict) or not item.get("topic"):
                continue
            intensity = item.get("intensity", item.get("gap_intensity", 0.0))
            topics.append(WeakTopic(str(item["topic"]), RecordParser._number(intensity)))
        return tuple(topics)

    @staticmethod
    def completed_units(record: Dict) -> int:
        for key in ("completedUnits", "completed_units", "pyqs_attempted", "completedPYQs"):
            if key in record:
                return int(max(RecordParser._number(record[key]), 0))
        return 0

    @staticmethod
    def elapsed_minutes(record: Dict) -> float:
        for key in ("elapsedTimeProxy", "elapsed_minutes", "total_minutes_spent"):
            if key in record:
                return max(RecordParser._number(record[key]), 0.0)
        return 0.0

    @staticmethod
    def _number(value: Any) -> float:
        try:
            value = float(value)
        except (TypeError, ValueError):
            return 0.0
        return value if np.isfinite(value) else 0.0


def parse_entity(record: Dict) -> Optional[Entity]:
    entity_id = RecordParser.entity_id(record)
    if not entity_id:
        logger.warning("Skipping record without an id")
        return None
    return Entity(
        id=entity_id,
        name=RecordParser.name(record),
        weak_topics=RecordParser.weak_topics(record),
        completed_units=RecordParser.completed_units(record),
        elapsed_minutes=RecordParser.elapsed_minutes(record),
    )


def parse_entities(records: Iterable[Dict]) -> List[Entity]:
    entities = []
    for record in records or []:
        entity = parse_entity(record)
        if entity is not None:
            entities.append(entity)
    return entities


def entities_frame(entities: Sequence[Entity]) -> pd.DataFrame:
    """One row per (entity, weak topic). Entities without gaps get no rows."""
    rows = []
    for e in entities:
        for gap in e.weak_topics:
            rows.append({
                "entity_id": e.id,
                "name": e.name,
                "topic": gap.topic,
                "intensity": gap.intensity,
                "completed_units": e.completed_units,
                "elapsed_minutes": e.elapsed_minutes,
            })
    if not rows:
        return pd.DataFrame(columns=FRAME_COLUMNS)
    return pd.DataFrame(rows, columns=FRAME_COLUMNS)


# ─────────────────────────────────────────────
# PER-ENTITY ROLL-UPS
# ─────────────────────────────────────────────

def weighted_average(values: Sequence[float], weights: Sequence[float]) -> float:
    values = np.asarray(values, dtype=float)
    weights = np.clip(np.asarray(weights, dtype=float), 0.0, None)
    if len(values) == 0 or len(values) != len(weights) or weights.sum() == 0:
        return 0.0
    return float(np.average(values, weights=weights))


def entity_rollup(entity: Entity, minutes_factor: float = TOPIC_MINUTES_FACTOR) -> Dict[str, Any]:
    intensities = [g.intensity for g in entity.weak_topics]
    minutes = [estimated_topic_minutes(entity, g.intensity, minutes_factor) for g in entity.weak_topics]
    return {
        "entity_id": entity.id,
        "name": entity.name,
        "gap_count": len(intensities),
        "intensity_sum": float(sum(intensities)),
        "intensity_mean": float(np.mean(intensities)) if intensities else 0.0,
        # topics the learner spent longer on count for more
        "intensity_weighted": weighted_average(intensities, minutes),
        "completed_units": entity.completed_units,
        "elapsed_minutes": entity.elapsed_minutes,
    }


def rollup_frame(entities: Sequence[Entity], minutes_factor: float = TOPIC_MINUTES_FACTOR) -> pd.DataFrame:
    return pd.DataFrame([entity_rollup(e, minutes_factor) for e in entities])


def estimated_topic_minutes(entity: Entity, intensity: float, minutes_factor: float = TOPIC_MINUTES_FACTOR) -> float:
    return entity.elapsed_minutes * clamp(intensity, 0.0, 1.0) * minutes_factor


def intensity_band(intensity: float) -> str:
    intensity = clamp(intensity, 0.0, 1.0)
    if intensity >= 0.8:
        return "Critical"
    if intensity >= 0.6:
        return "High"
    if intensity >= 0.4:
        return "Medium"
    if intensity >= 0.2:
        return "Low"
    return "Minimal"


# ─────────────────────────────────────────────
# COHORT ROLL-UPS
# ─────────────────────────────────────────────

def topic_heatmap(entities: Sequence[Entity], minutes_factor: float = TOPIC_MINUTES_FACTOR) -> List[Dict[str, Any]]:
    """
    Topic x student matrix, hardest topics first.

    Each entry: topic, avg_intensity, students_affected, and the per-student
    cells (intensity plus estimated minutes spent on the topic).
    """
    df = entities_frame(entities)
    if df.empty:
        return []
    df["minutes_spent"] = df["elapsed_minutes"] * df["intensity"] * minutes_factor
    # first-seen topic order breaks ties in the sort below
    topic_order = list(dict.fromkeys(df["topic"]))
    rows = []
    for topic in topic_order:
        group = df[df["topic"] == topic]
        rows.append({
            "topic": topic,
            "avg_intensity": float(group["intensity"].mean()),
            "students_affected": int(group["entity_id"].nunique()),
            "students": [
                {
                    "entity_id": r.entity_id,
                    "name": r.name,
                    "intensity": float(r.intensity),
                    "minutes_spent": float(r.minutes_spent),
                }
                for r in group.itertuples(index=False)
            ],
        })
    return sorted(rows, key=lambda r: r["avg_intensity"], reverse=True)


def cohort_summary(entities: Sequence[Entity], critical: float = CRITICAL_INTENSITY) -> Dict[str, Any]:
    heatmap = topic_heatmap(entities)
    df = entities_frame(entities)
    critical_gaps = int((df["intensity"] >= critical).sum()) if not df.empty else 0
    avg_intensity = float(np.mean([t["avg_intensity"] for t in heatmap])) if heatmap else 0.0
    most_critical = heatmap[0] if heatmap else None
    return {
        "total_students": len(entities),
        "total_topics": len(heatmap),
        "critical_gaps": critical_gaps,
        "avg_intensity": avg_intensity,
        "most_critical_topic": most_critical["topic"] if most_critical else None,
        "most_critical_affected": most_critical["students_affected"] if most_critical else 0,
    }


def build_gap_graph(
    entities: Sequence[Entity],
    primary_id: Optional[str] = None,
    minutes_factor: float = TOPIC_MINUTES_FACTOR,
    min_overlap: float = 0.0,
) -> GapGraph:
    """
    Gap-overlap network for the cohort.

    Nodes are topics weighted by average estimated hours lost per affected
    learner; ``is_primary_user_gap`` marks topics the primary learner holds.
    Edge strength is the Jaccard overlap of the two topics' learner sets,
    as a percentage. Pairs below ``min_overlap`` are left out.
    """
    df = entities_frame(entities)
    if df.empty:
        return GapGraph()
    df["hours_lost"] = df["elapsed_minutes"] * df["intensity"] * minutes_factor / 60.0

    primary_topics = set()
    for e in entities:
        if e.id == primary_id:
            primary_topics = set(e.topic_labels)
            break

    hours = df.groupby("topic", sort=False)["hours_lost"].mean()
    holders = {topic: frozenset(group["entity_id"]) for topic, group in df.groupby("topic", sort=False)}

    nodes = [
        GapNode(id=topic, weight=float(hours[topic]), is_primary_user_gap=topic in primary_topics)
        for topic in hours.index
    ]
    edges = []
    for a, b in combinations(hours.index, 2):
        both = holders[a] & holders[b]
        if not both:
            continue
        overlap = len(both) / len(holders[a] | holders[b]) * 100.0
        if overlap < min_overlap:
            continue
        edges.append(GapEdge(a, b, round(overlap, 1)))
    logger.debug(f"Gap graph: {len(nodes)} topics, {len(edges)} overlaps")
    return GapGraph(nodes=nodes, edges=edges)


# ─────────────────────────────────────────────
# TIME SERIES
# ─────────────────────────────────────────────

def reindex_series(records: Iterable[Dict], order_key: str = "date", value_key: str = "value") -> List[TimeSeriesPoint]:
    """Sort records by ``order_key`` and re-index them 0..n-1. Records missing either key are dropped."""
    rows = [r for r in records or [] if r.get(order_key) is not None and r.get(value_key) is not None]
    if not rows:
        return []
    df = pd.DataFrame({"order": [r[order_key] for r in rows], "value": [r[value_key] for r in rows]})
    df["value"] = pd.to_numeric(df["value"], errors="coerce")
    df = df.dropna(subset=["value"]).sort_values("order", kind="stable")
    return [TimeSeriesPoint(i, float(v)) for i, v in enumerate(df["value"].tolist())]


def period_averages(values: Sequence[float], period: int = 7) -> List[float]:
    """Average consecutive chunks of ``period`` values (days -> weeks); the last chunk may be shorter."""
    if period <= 0:
        return list(values)
    values = list(values)
    return [float(np.mean(values[i:i + period])) for i in range(0, len(values), period)]
