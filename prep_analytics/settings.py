"""
Analytics settings.
Defaults live in code; an optional YAML file (config/analytics.yaml or the
path in $PREP_ANALYTICS_CONFIG) overrides any subset of them.
"""

import os
import logging
from dataclasses import dataclass, field, fields, is_dataclass, asdict
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

import yaml

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "PREP_ANALYTICS_CONFIG"


class SettingsError(ValueError):
    """Raised when a settings file cannot be read or has the wrong shape."""


@dataclass
class ClusteringSettings:
    min_shared_gaps: int = 3


@dataclass
class SyncSettings:
    minutes_per_unit: float = 4.5
    # (threshold, label), checked top-down
    bands: List[Tuple[float, str]] = field(default_factory=lambda: [
        (90.0, "Perfect"),
        (80.0, "Excellent"),
        (70.0, "Good"),
        (60.0, "Fair"),
    ])
    fallback_label: str = "Poor"


@dataclass
class TrendSettings:
    improving_slope: float = 0.5
    declining_slope: float = -0.5
    strong_correlation: float = 0.7
    moderate_correlation: float = 0.4


@dataclass
class LayoutSettings:
    width: float = 800.0
    height: float = 600.0
    min_node_size: float = 15.0
    max_node_size: float = 45.0
    base_link_distance: float = 120.0
    link_distance_scale: float = 0.8
    link_strength_scale: float = 0.8
    charge_strength: float = -300.0
    collision_margin: float = 20.0
    collision_strength: float = 0.8
    center_strength: float = 1.0
    gravity_strength: float = 0.1
    # alpha falls from 1 to 0.001 over 300 steps
    alpha_decay: float = 1 - 0.001 ** (1 / 300)
    velocity_decay: float = 0.4
    reheat_alpha: float = 1.0
    max_steps: int = 300
    epsilon: float = 0.01


@dataclass
class CacheSettings:
    ttl_seconds: int = 300
    backend: str = "memory"


@dataclass
class AnalyticsSettings:
    clustering: ClusteringSettings = field(default_factory=ClusteringSettings)
    sync: SyncSettings = field(default_factory=SyncSettings)
    trend: TrendSettings = field(default_factory=TrendSettings)
    layout: LayoutSettings = field(default_factory=LayoutSettings)
    cache: CacheSettings = field(default_factory=CacheSettings)
    # Estimated minutes spent on a topic = elapsed minutes * intensity * factor
    topic_minutes_factor: float = 0.1
    critical_intensity: float = 0.8

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _merge(target: Any, overrides: Dict[str, Any], path: str) -> None:
    known = {f.name: f for f in fields(target)}
    for key, value in overrides.items():
        if key not in known:
            logger.warning(f"Ignoring unknown setting: {path}{key}")
            continue
        current = getattr(target, key)
        if is_dataclass(current):
            if not isinstance(value, dict):
                raise SettingsError(f"Setting {path}{key} must be a mapping")
            _merge(current, value, f"{path}{key}.")
        elif key == "bands":
            try:
                bands = [(float(t), str(label)) for t, label in value]
            except (TypeError, ValueError) as e:
                raise SettingsError(f"Setting {path}{key} must be a list of [threshold, label]") from e
            setattr(target, key, sorted(bands, key=lambda b: b[0], reverse=True))
        else:
            try:
                setattr(target, key, type(current)(value))
            except (TypeError, ValueError) as e:
                raise SettingsError(f"Setting {path}{key} has invalid value {value!r}") from e


def settings_from_dict(data: Optional[Dict[str, Any]]) -> AnalyticsSettings:
    settings = AnalyticsSettings()
    if data:
        if not isinstance(data, dict):
            raise SettingsError("Settings root must be a mapping")
        _merge(settings, data, "")
    return settings


def load_settings(path: Optional[Union[str, Path]] = None) -> AnalyticsSettings:
    """
    Load settings from YAML, falling back to defaults.

    Args:
        path: Explicit settings file. When omitted, $PREP_ANALYTICS_CONFIG is
            used if set; otherwise pure defaults are returned.
    """
    path = path or os.getenv(CONFIG_ENV_VAR)
    if not path:
        return AnalyticsSettings()
    try:
        with open(path, "r") as f:
            data = yaml.safe_load(f)
    except OSError as e:
        raise SettingsError(f"Cannot read settings file {path}: {e}") from e
    except yaml.YAMLError as e:
        raise SettingsError(f"Malformed settings file {path}: {e}") from e
    logger.debug(f"Loaded settings from {path}")
    return settings_from_dict(data)
