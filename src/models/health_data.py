"""Pydantic models for the transmitted health-data payload."""

from __future__ import annotations

from datetime import date, datetime
from typing import TYPE_CHECKING, Any

from pydantic import Field

from src.models.base import WireModel

if TYPE_CHECKING:
    from src.collector.base import CanonicalRecord


class UserInfoPayload(WireModel):
    blood_type: str | None = None
    biological_sex: str | None = None
    birth_date: date | None = None
    latitude: float | None = None
    longitude: float | None = None


class MeasurementsPayload(WireModel):
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


class HealthDataPayload(WireModel):
    """One collection as the remote endpoint receives it.

    ``email`` carries the identity token of the record; absent measurements
    and profile fields are omitted from the JSON, never sent as zero.
    """

    email: str
    provider: str
    user_info: UserInfoPayload = Field(default_factory=UserInfoPayload)
    measurements: MeasurementsPayload = Field(default_factory=MeasurementsPayload)
    timestamp: datetime

    @classmethod
    def from_record(cls, record: CanonicalRecord) -> HealthDataPayload:
        return cls(
            email=record.identity,
            provider=record.source_kind.value,
            user_info=UserInfoPayload.model_validate(record.profile),
            measurements=MeasurementsPayload.model_validate(record.measurements),
            timestamp=record.captured_at,
        )

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)
