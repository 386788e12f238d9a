"""Tests for the collection config loader — bundled YAML and validation."""

from __future__ import annotations

from pathlib import Path

import pytest

from src.collector import config_loader
from src.collector.config_loader import (
    CollectionConfig,
    ConfigValidationError,
    load_collection_config,
    reload_collection_config,
)
from src.collector.normalizer import METRICS


def write_config(tmp_path: Path, body: str) -> Path:
    path = tmp_path / "collection_config.yaml"
    path.write_text(body, encoding="utf-8")
    return path


class TestBundledConfig:
    def test_loads_defaults(self, collection_config: CollectionConfig) -> None:
        assert collection_config.schedule.initial_delay_seconds == 60
        assert collection_config.schedule.interval_seconds == 60
        assert collection_config.lease.budget_seconds == 30

    def test_every_metric_assigned_once(self, collection_config: CollectionConfig) -> None:
        sources = collection_config.metric_sources()
        assert set(sources) == set(METRICS)
        assert set(collection_config.metrics_by_group()) == {"phone", "watch"}

    def test_watch_group(self, collection_config: CollectionConfig) -> None:
        assert "heart_rate" in collection_config.metrics_by_group()["watch"]
        assert collection_config.metric_sources()["step_count"] == "phone"

    def test_scopes_are_source_identifiers(self, collection_config: CollectionConfig) -> None:
        scopes = collection_config.scopes()
        assert "HKQuantityTypeIdentifierHeartRate" in scopes
        assert len(scopes) == len(METRICS)


class TestValidation:
    def test_unknown_metric_rejected(self, tmp_path: Path) -> None:
        path = write_config(tmp_path, "metric_groups:\n  watch: [heart_rate, mood]\n")
        with pytest.raises(ConfigValidationError, match="unknown metric 'mood'"):
            load_collection_config(path)

    def test_duplicate_metric_rejected(self, tmp_path: Path) -> None:
        path = write_config(
            tmp_path,
            "metric_groups:\n  phone: [weight]\n  watch: [weight]\n",
        )
        with pytest.raises(ConfigValidationError, match="already listed"):
            load_collection_config(path)

    def test_non_positive_interval_rejected(self, tmp_path: Path) -> None:
        path = write_config(
            tmp_path,
            "schedule:\n  interval_seconds: 0\nmetric_groups:\n  watch: [heart_rate]\n",
        )
        with pytest.raises(ConfigValidationError, match="interval_seconds"):
            load_collection_config(path)

    def test_missing_groups_rejected(self, tmp_path: Path) -> None:
        path = write_config(tmp_path, "version: '2.0'\n")
        with pytest.raises(ConfigValidationError, match="metric_groups"):
            load_collection_config(path)

    def test_malformed_yaml_rejected(self, tmp_path: Path) -> None:
        path = write_config(tmp_path, "metric_groups: [unclosed\n")
        with pytest.raises(ConfigValidationError, match="YAML parse error"):
            load_collection_config(path)

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            load_collection_config(tmp_path / "nope.yaml")

    def test_partial_config_uses_defaults(self, tmp_path: Path) -> None:
        path = write_config(tmp_path, "metric_groups:\n  watch: [heart_rate]\n")
        config = load_collection_config(path)
        assert config.schedule.interval_seconds == 60
        assert config.metric_sources() == {"heart_rate": "watch"}


class TestReload:
    def test_reload_replaces_singleton(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(config_loader, "_config", None)
        path = write_config(
            tmp_path,
            "version: '9.9'\nmetric_groups:\n  watch: [heart_rate]\n",
        )
        reloaded = reload_collection_config(path)

        assert reloaded.version == "9.9"
        assert config_loader.get_collection_config() is reloaded
