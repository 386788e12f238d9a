"""Measurement sources for HealthSync.

Each source implements the MeasurementSource ABC and handles:
- Authorization of the requested read scopes
- Fetching the latest sample of one metric type
- Reading the user's static profile

Available sources:
    SensorDaemonSource     — HTTP JSON API of a local sensor daemon
    AppleHealthExportSource — Apple Health export.xml on disk
"""

from src.collector.sources.apple_export import AppleHealthExportSource
from src.collector.sources.sensor_daemon import SensorDaemonSource

__all__ = [
    "AppleHealthExportSource",
    "SensorDaemonSource",
]

# Registry: source_id → source class
SOURCE_REGISTRY: dict[str, type] = {
    "sensor_daemon": SensorDaemonSource,
    "apple_export": AppleHealthExportSource,
}


def get_source(source_id: str) -> "type":
    """Return the source class for a given slug.

    Raises:
        KeyError: If the source_id is not registered.
    """
    if source_id not in SOURCE_REGISTRY:
        raise KeyError(
            f"No measurement source registered for '{source_id}'. "
            f"Available: {list(SOURCE_REGISTRY)}"
        )
    return SOURCE_REGISTRY[source_id]
