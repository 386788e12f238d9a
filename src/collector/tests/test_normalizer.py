"""Tests for metric resolution, unit conversion and record building."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from src.collector.base import MeasurementSet, Sample, SourceKind
from src.collector.normalizer import (
    METRICS,
    build_record,
    convert_value,
    normalize_samples,
    resolve_metric,
)
from src.collector.tests.conftest import TEST_EMAIL, TEST_TIME, make_sample


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------


class TestMetricCatalog:
    def test_catalog_matches_measurement_set_fields(self) -> None:
        assert set(METRICS) == set(MeasurementSet.metric_names())

    @pytest.mark.parametrize(
        "identifier, expected",
        [
            ("HKQuantityTypeIdentifierHeartRate", "heart_rate"),
            ("heartRate", "heart_rate"),
            ("StepsRecord", "step_count"),
            ("bodyMass", "weight"),
            ("weight", "weight"),
            ("HKQuantityTypeIdentifierSleepAnalysis", None),
        ],
    )
    def test_resolve_metric(self, identifier: str, expected: str | None) -> None:
        assert resolve_metric(identifier) == expected


# ---------------------------------------------------------------------------
# Unit conversion
# ---------------------------------------------------------------------------


class TestConvertValue:
    def test_pounds_to_kilograms(self) -> None:
        assert convert_value(154.0, "lb", "kg") == pytest.approx(69.853, abs=1e-3)

    def test_fahrenheit_to_celsius(self) -> None:
        assert convert_value(98.6, "degF", "degC") == pytest.approx(37.0)

    def test_fraction_to_percent(self) -> None:
        assert convert_value(0.97, "fraction", "%") == pytest.approx(97.0)

    def test_km_per_hour_to_metres_per_second(self) -> None:
        assert convert_value(36.0, "km/hr", "m/s") == pytest.approx(10.0)

    def test_kilojoules_to_kilocalories(self) -> None:
        assert convert_value(418.4, "kJ", "kcal") == pytest.approx(100.0)

    def test_metres_to_centimetres(self) -> None:
        assert convert_value(1.75, "m", "cm") == pytest.approx(175.0)

    def test_unit_match_is_case_insensitive(self) -> None:
        assert convert_value(120.0, "MMHG", "mmHg") == 120.0

    def test_unknown_unit_returns_none(self) -> None:
        assert convert_value(5.0, "furlong", "cm") is None

    def test_dietary_calorie_is_kilocalorie(self) -> None:
        assert convert_value(250.0, "Cal", "kcal") == 250.0

    def test_small_calorie_scaled_down(self) -> None:
        assert convert_value(250000.0, "cal", "kcal") == pytest.approx(250.0)

    def test_missing_unit_returns_none(self) -> None:
        assert convert_value(72.0, None, "count/min") is None

    def test_unknown_target_returns_none(self) -> None:
        assert convert_value(5.0, "cm", "parsec") is None


# ---------------------------------------------------------------------------
# Normalization
# ---------------------------------------------------------------------------


class TestNormalizeSamples:
    def test_maps_samples_onto_fields(self) -> None:
        result = normalize_samples([
            make_sample("step_count", 120),
            make_sample("weight", 154.0, "lb"),
        ])
        assert result.step_count == 120
        assert result.weight == pytest.approx(69.853, abs=1e-3)
        assert result.heart_rate is None

    def test_latest_sample_wins(self) -> None:
        older = make_sample("heart_rate", 60, end=TEST_TIME)
        newer = make_sample("heart_rate", 75, end=TEST_TIME + timedelta(minutes=5))
        assert normalize_samples([newer, older]).heart_rate == 75
        assert normalize_samples([older, newer]).heart_rate == 75

    def test_naive_and_aware_timestamps_compare(self) -> None:
        aware = make_sample("heart_rate", 60, end=TEST_TIME)
        naive = make_sample("heart_rate", 80, end=datetime(2026, 2, 23, 9, 0))
        assert normalize_samples([aware, naive]).heart_rate == 80

    def test_unknown_identifier_ignored(self) -> None:
        result = normalize_samples([Sample(metric="HKCategoryTypeIdentifierSleepAnalysis", value=1)])
        assert result.is_empty

    def test_missing_unit_leaves_only_that_metric_absent(self) -> None:
        result = normalize_samples([
            Sample(metric="HKQuantityTypeIdentifierHeartRate", value=72, unit=None),
            make_sample("step_count", 120),
        ])
        assert result.heart_rate is None
        assert result.step_count == 120

    def test_unconvertible_unit_leaves_metric_absent(self) -> None:
        result = normalize_samples([make_sample("height", 5, "cubits")])
        assert result.height is None

    def test_zero_is_kept_as_a_value(self) -> None:
        result = normalize_samples([make_sample("active_energy", 0.0)])
        assert result.active_energy == 0.0
        assert result.present() == {"active_energy": 0.0}


class TestBuildRecord:
    def test_record_fields(self) -> None:
        record = build_record(
            [make_sample("oxygen_saturation", 0.98, "fraction")],
            identity=TEST_EMAIL,
            source_kind=SourceKind.SAMSUNG,
        )
        assert record.identity == TEST_EMAIL
        assert record.source_kind is SourceKind.SAMSUNG
        assert record.measurements.oxygen_saturation == pytest.approx(98.0)
        assert record.captured_at.tzinfo is timezone.utc
