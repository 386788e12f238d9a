"""HealthSync background measurement collector.

This package periodically reads the latest health measurements from a
measurement source, normalizes them into one canonical record, and delivers
that record to a remote collection endpoint, while respecting host lifecycle
signals (device lock/unlock, entered background) and bounded execution
windows.

Subpackages:
    sources/ — Measurement source adapters (sensor daemon, Apple Health export)

Core modules:
    base          — Canonical data models, collaborator ABCs and errors
    normalizer    — Metric catalog and unit conversion
    lease         — Execution leases and the loop-backed lease provider
    cycle         — One fetch → normalize → transmit pass
    scheduler     — Single-flight, lock-aware recurring scheduler
    transmit      — HTTP transmitter
    session       — Session providers
    config_loader — Load/validate/hot-reload collection_config.yaml
"""

from src.collector.base import (
    CanonicalRecord,
    MeasurementSet,
    MeasurementSource,
    Sample,
    Session,
    SessionProvider,
    SourceKind,
    Transmitter,
    UserProfile,
)
from src.collector.config_loader import CollectionConfig, get_collection_config
from src.collector.cycle import CollectionCycle, CycleResult, CycleStatus
from src.collector.scheduler import CollectionScheduler, SchedulerEvent, SchedulerState

__all__ = [
    "CanonicalRecord",
    "MeasurementSet",
    "MeasurementSource",
    "Sample",
    "Session",
    "SessionProvider",
    "SourceKind",
    "Transmitter",
    "UserProfile",
    "CollectionConfig",
    "get_collection_config",
    "CollectionCycle",
    "CycleResult",
    "CycleStatus",
    "CollectionScheduler",
    "SchedulerEvent",
    "SchedulerState",
]
