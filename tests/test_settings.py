"""
Tests for YAML settings loading.

Run with: pytest tests/test_settings.py -v
"""

from pathlib import Path

import pytest

from prep_analytics.settings import (
    CONFIG_ENV_VAR,
    AnalyticsSettings,
    SettingsError,
    load_settings,
    settings_from_dict,
)

ROOT = Path(__file__).parent.parent


class TestLoadSettings:
    """Defaults, overrides and bad files."""

    def test_defaults_without_file(self, monkeypatch):
        monkeypatch.delenv(CONFIG_ENV_VAR, raising=False)
        settings = load_settings()
        assert settings.clustering.min_shared_gaps == 3
        assert settings.sync.minutes_per_unit == 4.5
        assert settings.layout.charge_strength == -300.0

    def test_shipped_config_matches_defaults(self):
        settings = load_settings(ROOT / "config" / "analytics.yaml")
        defaults = AnalyticsSettings()
        assert settings.clustering == defaults.clustering
        assert settings.sync.bands == defaults.sync.bands
        assert settings.layout.width == defaults.layout.width

    def test_partial_override(self, tmp_path):
        path = tmp_path / "analytics.yaml"
        path.write_text("clustering:\n  min_shared_gaps: 2\nlayout:\n  width: 1000\n")
        settings = load_settings(path)
        assert settings.clustering.min_shared_gaps == 2
        assert settings.layout.width == 1000.0
        assert settings.layout.height == 600.0

    def test_env_var(self, tmp_path, monkeypatch):
        path = tmp_path / "env.yaml"
        path.write_text("sync:\n  minutes_per_unit: 6\n")
        monkeypatch.setenv(CONFIG_ENV_VAR, str(path))
        assert load_settings().sync.minutes_per_unit == 6.0

    def test_bands_are_sorted_descending(self):
        settings = settings_from_dict({"sync": {"bands": [[50, "Half"], [75, "Most"]]}})
        assert settings.sync.bands == [(75.0, "Most"), (50.0, "Half")]

    def test_unknown_keys_are_ignored(self):
        settings = settings_from_dict({"nonsense": 1, "layout": {"bogus": 2}})
        assert settings == AnalyticsSettings()

    def test_missing_file(self, tmp_path):
        with pytest.raises(SettingsError):
            load_settings(tmp_path / "absent.yaml")

    def test_malformed_yaml(self, tmp_path):
        path = tmp_path / "broken.yaml"
        path.write_text("layout: [unclosed\n")
        with pytest.raises(SettingsError):
            load_settings(path)

    def test_wrong_value_type(self):
        with pytest.raises(SettingsError):
            settings_from_dict({"layout": {"width": "wide"}})
        with pytest.raises(SettingsError):
            settings_from_dict({"layout": 5})
