"""
Exam-prep gap analytics: study-group clustering, gap-network layout,
progress trends and peer sync scores for the learning dashboard.
"""

from prep_analytics.calculator import GapAnalyticsCalculator
from prep_analytics.clustering import cluster_by_shared_gaps
from prep_analytics.layout import ForceLayout, initial_state, step
from prep_analytics.regression import fit_trend
from prep_analytics.settings import AnalyticsSettings, load_settings
from prep_analytics.sync import peer_sync, sync_score

__all__ = [
    "GapAnalyticsCalculator",
    "cluster_by_shared_gaps",
    "ForceLayout",
    "initial_state",
    "step",
    "fit_trend",
    "AnalyticsSettings",
    "load_settings",
    "peer_sync",
    "sync_score",
]
