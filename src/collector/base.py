"""Base classes, canonical data models and errors for the HealthSync collector.

Every measurement source must subclass MeasurementSource and every delivery
path must subclass Transmitter.  The canonical types defined here
(Sample, MeasurementSet, UserProfile, CanonicalRecord) are the single shape
that flows from a source, through the normalizer, to the transmitter.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field, fields
from datetime import date, datetime, timezone
from enum import Enum
from typing import Iterable


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class CollectorError(Exception):
    """Base class for all collector errors."""


class SourceNotAvailable(CollectorError):
    """The measurement platform is absent on this host."""


class SourceNotAuthorized(CollectorError):
    """The user denied (or never granted) access to the requested scopes."""


class MeasurementFetchError(CollectorError):
    """A single metric fetch failed.  Recovered by the cycle as 'absent'."""

    def __init__(self, metric: str, cause: str) -> None:
        super().__init__(f"Fetch failed for {metric}: {cause}")
        self.metric = metric
        self.cause = cause


class TransmissionError(CollectorError):
    """Sending a record to the collection endpoint failed.

    Attributes:
        cause: Human-readable reason reported by the transmitter.
    """

    def __init__(self, cause: str) -> None:
        super().__init__(cause)
        self.cause = cause


# ---------------------------------------------------------------------------
# Canonical models
# ---------------------------------------------------------------------------


class SourceKind(str, Enum):
    """Platform family the measurements were collected from."""

    SAMSUNG = "samsung"
    APPLE = "apple"
    GOOGLE = "google"


@dataclass(frozen=True)
class Sample:
    """One raw sample as reported by a measurement source.

    Attributes:
        metric: Vendor metric identifier (e.g. 'HKQuantityTypeIdentifierHeartRate')
                or a canonical metric name.
        value:  Numeric value in ``unit``.
        unit:   Unit string as reported by the source (e.g. 'count/min', 'lb').
        start:  UTC start of the sample interval.
        end:    UTC end of the sample interval.
        device: Device group or name that produced the sample, if known.
    """

    metric: str
    value: float
    unit: str = ""
    start: datetime | None = None
    end: datetime | None = None
    device: str | None = None


@dataclass(frozen=True)
class MeasurementSet:
    """The 12 canonical metrics, each in its fixed target unit.

    ``None`` means no sample was available for that metric this cycle.
    It is never a stand-in for zero.

    Attributes:
        step_count:               count
        heart_rate:               count/min
        blood_pressure_systolic:  mmHg
        blood_pressure_diastolic: mmHg
        oxygen_saturation:        %
        body_temperature:         °C
        respiratory_rate:         count/min
        height:                   cm
        weight:                   kg
        running_speed:            m/s
        active_energy:            kcal
        basal_energy:             kcal
    """

    step_count: float | None = None
    heart_rate: float | None = None
    blood_pressure_systolic: float | None = None
    blood_pressure_diastolic: float | None = None
    oxygen_saturation: float | None = None
    body_temperature: float | None = None
    respiratory_rate: float | None = None
    height: float | None = None
    weight: float | None = None
    running_speed: float | None = None
    active_energy: float | None = None
    basal_energy: float | None = None

    @classmethod
    def metric_names(cls) -> list[str]:
        return [f.name for f in fields(cls)]

    def present(self) -> dict[str, float]:
        """Return only the metrics that have a value."""
        return {
            name: value
            for name in self.metric_names()
            if (value := getattr(self, name)) is not None
        }

    @property
    def is_empty(self) -> bool:
        return not self.present()


@dataclass(frozen=True)
class UserProfile:
    """Static characteristics of the user.  All fields are optional."""

    blood_type: str | None = None
    biological_sex: str | None = None
    birth_date: date | None = None
    latitude: float | None = None
    longitude: float | None = None


@dataclass(frozen=True)
class CanonicalRecord:
    """One normalized collection, created once per cycle and never mutated.

    Attributes:
        identity:     Account identity token of the active session (email).
        source_kind:  Platform family the data came from.
        profile:      Static user profile.
        measurements: Normalized metric values.
        captured_at:  UTC timestamp of the collection.
    """

    identity: str
    source_kind: SourceKind
    profile: UserProfile = field(default_factory=UserProfile)
    measurements: MeasurementSet = field(default_factory=MeasurementSet)
    captured_at: datetime = field(default_factory=utc_now)

    def to_payload(self) -> dict:
        """Serialize to the JSON object sent to the collection endpoint."""
        from src.models.health_data import HealthDataPayload

        return HealthDataPayload.from_record(self).to_wire()


@dataclass(frozen=True)
class Session:
    """The active collection context.

    Attributes:
        identity:   Account identity token (the user's email).
        context_id: Remote project / study id the record is filed under.
    """

    identity: str
    context_id: int


# ---------------------------------------------------------------------------
# Collaborator interfaces
# ---------------------------------------------------------------------------


class MeasurementSource(ABC):
    """Abstract base class for measurement sources.

    Subclasses must implement:
        - authorize()
        - fetch_latest()

    Optional override:
        - fetch_profile() (returns an empty UserProfile by default)
    """

    #: Unique slug used in settings (e.g. 'sensor_daemon').
    SOURCE_ID: str = "unknown"

    #: Human-readable name for logging.
    DISPLAY_NAME: str = "Unknown Source"

    @abstractmethod
    async def authorize(self, scopes: Iterable[str]) -> None:
        """Request read access to the given metric scopes.

        Raises:
            SourceNotAvailable:  The platform is not present on this host.
            SourceNotAuthorized: Access was denied.
        """

    @abstractmethod
    async def fetch_latest(self, metric: str) -> Sample | None:
        """Return the most recent sample of ``metric``, or None if there is none.

        Raises:
            MeasurementFetchError: The fetch itself failed.
        """

    async def fetch_profile(self) -> UserProfile:
        """Return the user's static profile.  Default: nothing known."""
        return UserProfile()


class Transmitter(ABC):
    """Delivers a CanonicalRecord to the remote collection endpoint."""

    @abstractmethod
    async def send(self, record: CanonicalRecord, context_id: int) -> None:
        """Send ``record`` filed under ``context_id``.

        Raises:
            TransmissionError: Delivery failed.  No retry is expected.
        """


class SessionProvider(ABC):
    """Resolves the active session at the start of each cycle."""

    @abstractmethod
    async def current_session(self) -> Session | None:
        """Return the active session, or None when nobody is signed in."""
