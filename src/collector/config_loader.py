"""Load, validate, and hot-reload the HealthSync collection configuration.

The config lives in ``collection_config.yaml`` alongside this module.  At
startup it is loaded once and cached.  Call ``reload_collection_config()`` to
re-read from disk; a running scheduler keeps the values it was built with.

Usage::

    from src.collector.config_loader import get_collection_config

    config = get_collection_config()
    config.schedule.interval_seconds      # 60.0
    config.metrics_by_group()["watch"]    # ['heart_rate', ...]
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path

from src.collector.normalizer import METRICS

logger = logging.getLogger("healthsync.collector.config")

# Path to the YAML file sitting next to this module
_CONFIG_PATH = Path(__file__).parent / "collection_config.yaml"


# ---------------------------------------------------------------------------
# Typed config sections
# ---------------------------------------------------------------------------


@dataclass
class ScheduleConfig:
    """Trigger timing.  Both delays are in seconds."""

    initial_delay_seconds: float = 60.0
    interval_seconds: float = 60.0


@dataclass
class LeaseConfig:
    """Background execution window settings."""

    budget_seconds: float = 30.0


@dataclass
class CollectionConfig:
    """Complete, validated collection configuration.

    Attributes:
        version:       Config schema version string.
        schedule:      Trigger timing.
        lease:         Execution window budget.
        metric_groups: Device group → canonical metric names it supplies.
    """

    version: str
    schedule: ScheduleConfig
    lease: LeaseConfig
    metric_groups: dict[str, list[str]]
    _raw: dict = field(default_factory=dict, repr=False)

    def metrics_by_group(self) -> dict[str, list[str]]:
        return {group: list(names) for group, names in self.metric_groups.items()}

    def metric_sources(self) -> dict[str, str]:
        """Return canonical metric → device group, in config order."""
        return {
            metric: group
            for group, names in self.metric_groups.items()
            for metric in names
        }

    def scopes(self) -> list[str]:
        """Return the source identifiers to request read access for."""
        return [METRICS[name].identifier for name in self.metric_sources()]


# ---------------------------------------------------------------------------
# Loader / validation
# ---------------------------------------------------------------------------


class ConfigValidationError(ValueError):
    """Raised when collection_config.yaml fails validation."""


def _load_yaml(path: Path) -> dict:
    """Read and parse a YAML file.

    Raises:
        FileNotFoundError: If the file does not exist.
        ConfigValidationError: If the YAML is malformed.
    """
    try:
        import yaml  # pyyaml
    except ImportError as exc:
        raise ImportError(
            "pyyaml is required for config loading. Install with: pip install pyyaml"
        ) from exc

    if not path.exists():
        raise FileNotFoundError(f"Collection config not found: {path}")

    with path.open("r", encoding="utf-8") as fh:
        try:
            return yaml.safe_load(fh) or {}
        except yaml.YAMLError as exc:
            raise ConfigValidationError(f"YAML parse error in {path}: {exc}") from exc


def _positive(section: dict, key: str, default: float, errors: list[str], where: str) -> float:
    raw = section.get(key, default)
    try:
        value = float(raw)
    except (TypeError, ValueError):
        errors.append(f"{where}.{key} must be a number, got {raw!r}")
        return default
    if value <= 0:
        errors.append(f"{where}.{key} must be positive, got {value}")
    return value


def _validate_and_build(raw: dict) -> CollectionConfig:
    """Validate the raw YAML dict and construct a CollectionConfig.

    Raises:
        ConfigValidationError: If required fields are missing or invalid.
    """
    errors: list[str] = []

    version = str(raw.get("version", "1.0"))

    # ── Schedule ──
    sched_raw = raw.get("schedule") or {}
    schedule = ScheduleConfig(
        initial_delay_seconds=_positive(sched_raw, "initial_delay_seconds", 60.0, errors, "schedule"),
        interval_seconds=_positive(sched_raw, "interval_seconds", 60.0, errors, "schedule"),
    )

    # ── Lease ──
    lease_raw = raw.get("lease") or {}
    lease = LeaseConfig(
        budget_seconds=_positive(lease_raw, "budget_seconds", 30.0, errors, "lease"),
    )

    # ── Metric groups ──
    groups_raw = raw.get("metric_groups") or {}
    if not groups_raw:
        errors.append("'metric_groups' section is missing or empty")

    metric_groups: dict[str, list[str]] = {}
    seen: dict[str, str] = {}
    for group, names in groups_raw.items():
        if not isinstance(names, list):
            errors.append(f"metric_groups.{group} must be a list of metric names")
            continue
        metric_groups[group] = []
        for name in names:
            if name not in METRICS:
                errors.append(f"metric_groups.{group}: unknown metric {name!r}")
                continue
            if name in seen:
                errors.append(
                    f"metric_groups.{group}: {name!r} already listed under {seen[name]!r}"
                )
                continue
            seen[name] = group
            metric_groups[group].append(name)

    if errors:
        raise ConfigValidationError(
            f"collection_config.yaml has {len(errors)} validation error(s):\n"
            + "\n".join(f"  • {e}" for e in errors)
        )

    missing = sorted(set(METRICS) - set(seen))
    if missing:
        logger.warning("Metrics not assigned to any group (never collected): %s", missing)

    return CollectionConfig(
        version=version,
        schedule=schedule,
        lease=lease,
        metric_groups=metric_groups,
        _raw=raw,
    )


def load_collection_config(path: Path | None = None) -> CollectionConfig:
    """Load and validate the collection config from disk.

    Args:
        path: Override path to YAML. Uses the bundled collection_config.yaml by default.
    """
    target = path or _CONFIG_PATH
    raw = _load_yaml(target)
    config = _validate_and_build(raw)
    logger.info("Loaded collection config v%s from %s", config.version, target)
    return config


# ---------------------------------------------------------------------------
# Global singleton with hot-reload support
# ---------------------------------------------------------------------------

_config: CollectionConfig | None = None
_config_lock = threading.Lock()


def get_collection_config() -> CollectionConfig:
    """Return the global CollectionConfig singleton, loading it on first call."""
    global _config
    if _config is None:
        with _config_lock:
            if _config is None:  # double-checked locking
                _config = load_collection_config()
    return _config


def reload_collection_config(path: Path | None = None) -> CollectionConfig:
    """Reload the collection config from disk and replace the global singleton.

    If validation fails, the old config is retained and the error is re-raised.
    """
    global _config
    new_config = load_collection_config(path)
    with _config_lock:
        _config = new_config
    logger.info("Collection config reloaded (v%s)", new_config.version)
    return new_config
