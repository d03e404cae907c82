"""
Peer progress synchronization.

Two study buddies are "in sync" when their cumulative study time is close.
Study time is approximated from completed practice units
(``completed_units * minutes_per_unit``), and the score is the normalized
inverse of the gap between the two:

    sync = 100 - |tA - tB| / max(tA, tB) * 100

Two learners with no progress at all are defined as perfectly in sync.
"""

import logging
from typing import Optional

from prep_analytics.models import Entity, SyncResult, clamp
from prep_analytics.settings import SyncSettings

logger = logging.getLogger(__name__)


def progress_minutes(completed_units: float, minutes_per_unit: float = 4.5) -> float:
    return clamp(completed_units, 0.0, float("inf")) * max(minutes_per_unit, 0.0)


def sync_score(time_a: float, time_b: float) -> float:
    time_a = clamp(time_a, 0.0, float("inf"))
    time_b = clamp(time_b, 0.0, float("inf"))
    max_time = max(time_a, time_b)
    if max_time == 0:
        return 100.0
    score = 100.0 - (abs(time_a - time_b) / max_time * 100.0)
    return clamp(score, 0.0, 100.0)


def sync_label(score: float, settings: Optional[SyncSettings] = None) -> str:
    settings = settings or SyncSettings()
    for threshold, label in settings.bands:
        if score >= threshold:
            return label
    return settings.fallback_label


def peer_sync(a: Entity, b: Entity, settings: Optional[SyncSettings] = None) -> SyncResult:
    settings = settings or SyncSettings()
    time_a = progress_minutes(a.completed_units, settings.minutes_per_unit)
    time_b = progress_minutes(b.completed_units, settings.minutes_per_unit)
    score = sync_score(time_a, time_b)
    logger.debug(f"Sync {a.id}/{b.id}: {time_a:.1f} vs {time_b:.1f} min -> {score:.1f}")
    return SyncResult(score=score, label=sync_label(score, settings), time_a=time_a, time_b=time_b)


def pace_leader(a: Entity, b: Entity) -> Optional[str]:
    """Id of the learner further ahead, or None when both have done the same."""
    if a.completed_units == b.completed_units:
        return None
    return a.id if a.completed_units > b.completed_units else b.id
