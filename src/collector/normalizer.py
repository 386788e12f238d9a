"""Canonical metric names and unit conversion for collected samples.

Every source reports samples under its own identifiers and units.  This
module maps them onto the 12 canonical MeasurementSet fields, each in one
fixed target unit.  It is pure: no I/O, no clock, no state.

Identifiers are matched case-sensitively against the alias table
(HealthKit identifiers, Health Connect record names, camelCase wire names and
the canonical snake_case names).  Unit strings are matched case-insensitively,
except the dietary "Cal", which is distinct from the small "cal".
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Iterable

from src.collector.base import (
    CanonicalRecord,
    MeasurementSet,
    Sample,
    SourceKind,
    UserProfile,
    utc_now,
)

logger = logging.getLogger("healthsync.collector.normalizer")


# ---------------------------------------------------------------------------
# Metric catalog
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class MetricSpec:
    """One canonical metric.

    Attributes:
        name:        MeasurementSet field name.
        target_unit: The single unit the value is stored in.
        identifier:  HealthKit identifier used when requesting the metric.
        aliases:     Other identifiers that resolve to this metric.
    """

    name: str
    target_unit: str
    identifier: str
    aliases: tuple[str, ...] = ()


METRICS: dict[str, MetricSpec] = {
    spec.name: spec
    for spec in (
        MetricSpec(
            "step_count", "count", "HKQuantityTypeIdentifierStepCount",
            ("stepCount", "StepsRecord"),
        ),
        MetricSpec(
            "heart_rate", "count/min", "HKQuantityTypeIdentifierHeartRate",
            ("heartRate", "HeartRateRecord"),
        ),
        MetricSpec(
            "blood_pressure_systolic", "mmHg",
            "HKQuantityTypeIdentifierBloodPressureSystolic",
            ("bloodPressureSystolic", "BloodPressureRecord.systolic"),
        ),
        MetricSpec(
            "blood_pressure_diastolic", "mmHg",
            "HKQuantityTypeIdentifierBloodPressureDiastolic",
            ("bloodPressureDiastolic", "BloodPressureRecord.diastolic"),
        ),
        MetricSpec(
            "oxygen_saturation", "%", "HKQuantityTypeIdentifierOxygenSaturation",
            ("oxygenSaturation", "OxygenSaturationRecord"),
        ),
        MetricSpec(
            "body_temperature", "degC", "HKQuantityTypeIdentifierBodyTemperature",
            ("bodyTemperature", "BodyTemperatureRecord"),
        ),
        MetricSpec(
            "respiratory_rate", "count/min", "HKQuantityTypeIdentifierRespiratoryRate",
            ("respiratoryRate", "RespiratoryRateRecord"),
        ),
        MetricSpec(
            "height", "cm", "HKQuantityTypeIdentifierHeight",
            ("height", "HeightRecord"),
        ),
        MetricSpec(
            "weight", "kg", "HKQuantityTypeIdentifierBodyMass",
            ("weight", "bodyMass", "WeightRecord"),
        ),
        MetricSpec(
            "running_speed", "m/s", "HKQuantityTypeIdentifierRunningSpeed",
            ("runningSpeed", "SpeedRecord"),
        ),
        MetricSpec(
            "active_energy", "kcal", "HKQuantityTypeIdentifierActiveEnergyBurned",
            ("activeEnergy", "ActiveCaloriesBurnedRecord"),
        ),
        MetricSpec(
            "basal_energy", "kcal", "HKQuantityTypeIdentifierBasalEnergyBurned",
            ("basalEnergy", "BasalMetabolicRateRecord"),
        ),
    )
}

_IDENTIFIER_INDEX: dict[str, str] = {}
for _spec in METRICS.values():
    for _key in (_spec.name, _spec.identifier, *_spec.aliases):
        _IDENTIFIER_INDEX[_key] = _spec.name


def resolve_metric(identifier: str) -> str | None:
    """Return the canonical metric name for an identifier, or None if unknown."""
    return _IDENTIFIER_INDEX.get(identifier)


# ---------------------------------------------------------------------------
# Unit conversion
# ---------------------------------------------------------------------------

Converter = Callable[[float], float]


def _scale(factor: float) -> Converter:
    return lambda v: v * factor


def _fahrenheit_to_celsius(v: float) -> float:
    return (v - 32.0) * 5.0 / 9.0


def _kelvin_to_celsius(v: float) -> float:
    return v - 273.15


_IDENTITY: Converter = _scale(1.0)

# target unit → {source unit (lowercase) → converter}
UNIT_CONVERSIONS: dict[str, dict[str, Converter]] = {
    "count": {
        "count": _IDENTITY,
        "": _IDENTITY,
        "steps": _IDENTITY,
    },
    "count/min": {
        "count/min": _IDENTITY,
        "bpm": _IDENTITY,
        "/min": _IDENTITY,
        "breaths/min": _IDENTITY,
        "count/s": _scale(60.0),
    },
    "mmHg": {
        "mmhg": _IDENTITY,
        "kpa": _scale(7.500615),
        "cmh2o": _scale(0.735559),
    },
    "%": {
        "%": _IDENTITY,
        "percent": _IDENTITY,
        "fraction": _scale(100.0),
    },
    "degC": {
        "degc": _IDENTITY,
        "°c": _IDENTITY,
        "celsius": _IDENTITY,
        "degf": _fahrenheit_to_celsius,
        "°f": _fahrenheit_to_celsius,
        "fahrenheit": _fahrenheit_to_celsius,
        "k": _kelvin_to_celsius,
    },
    "cm": {
        "cm": _IDENTITY,
        "m": _scale(100.0),
        "mm": _scale(0.1),
        "in": _scale(2.54),
        "ft": _scale(30.48),
    },
    "kg": {
        "kg": _IDENTITY,
        "g": _scale(0.001),
        "lb": _scale(0.45359237),
        "st": _scale(6.35029318),
    },
    "m/s": {
        "m/s": _IDENTITY,
        "km/hr": _scale(1 / 3.6),
        "km/h": _scale(1 / 3.6),
        "mi/hr": _scale(0.44704),
        "mph": _scale(0.44704),
    },
    "kcal": {
        "kcal": _IDENTITY,
        "cal": _scale(0.001),  # small calorie
        "kj": _scale(1 / 4.184),
        "j": _scale(1 / 4184.0),
    },
}

# Units whose meaning depends on case; checked before lowercasing.
_CASE_SENSITIVE_UNITS: dict[str, str] = {
    "Cal": "kcal",  # dietary Calorie
}


def convert_value(value: float, unit: str, target_unit: str) -> float | None:
    """Convert ``value`` from ``unit`` into ``target_unit``.

    Args:
        value:       Numeric value as reported.
        unit:        Source unit string (case-insensitive, except "Cal" vs "cal").
        target_unit: One of the keys in UNIT_CONVERSIONS.

    Returns:
        The converted value, or None if the unit pair is not supported
        or ``unit`` is not a string.
    """
    table = UNIT_CONVERSIONS.get(target_unit)
    if table is None or not isinstance(unit, str):
        return None
    raw = unit.strip()
    converter = table.get(_CASE_SENSITIVE_UNITS.get(raw, raw.lower()))
    if converter is None:
        return None
    return converter(float(value))


# ---------------------------------------------------------------------------
# Normalization
# ---------------------------------------------------------------------------


def normalize_samples(samples: Iterable[Sample]) -> MeasurementSet:
    """Map raw samples onto a MeasurementSet.

    Unknown identifiers are skipped.  Samples whose unit cannot be converted
    are dropped with a warning.  When a metric appears more than once the
    sample with the latest end time wins.  Metrics without a usable sample
    stay None.
    """
    chosen: dict[str, tuple[Sample, float]] = {}

    for sample in samples:
        name = resolve_metric(sample.metric)
        if name is None:
            logger.debug("Ignoring unknown metric identifier %r", sample.metric)
            continue

        spec = METRICS[name]
        value = convert_value(sample.value, sample.unit, spec.target_unit)
        if value is None:
            logger.warning(
                "Cannot convert %s from unit %r to %s; treating as absent",
                name, sample.unit, spec.target_unit,
            )
            continue

        previous = chosen.get(name)
        if previous is None or _is_newer(sample, previous[0]):
            chosen[name] = (sample, value)

    return MeasurementSet(**{name: value for name, (_, value) in chosen.items()})


def _is_newer(candidate: Sample, current: Sample) -> bool:
    if candidate.end is None:
        return False
    if current.end is None:
        return True
    return _aware(candidate.end) > _aware(current.end)


def _aware(dt: datetime) -> datetime:
    # Naive timestamps are taken as UTC.
    return dt if dt.tzinfo is not None else dt.replace(tzinfo=timezone.utc)


def build_record(
    samples: Iterable[Sample],
    *,
    identity: str,
    source_kind: SourceKind,
    profile: UserProfile | None = None,
) -> CanonicalRecord:
    """Normalize ``samples`` and wrap them in a CanonicalRecord stamped now."""
    return CanonicalRecord(
        identity=identity,
        source_kind=source_kind,
        profile=profile or UserProfile(),
        measurements=normalize_samples(samples),
        captured_at=utc_now(),
    )
