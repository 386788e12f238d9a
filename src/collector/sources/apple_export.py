"""Apple Health export adapter.

Reads the most recent sample of each requested type from an Apple Health
``export.xml`` file (Health app → Export All Health Data).  The file is
re-parsed whenever its modification time changes, so a host job that drops a
fresh export in place is picked up by the next collection cycle.

There is no consent flow for an export file: ``authorize()`` only checks that
the file exists and parses.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Iterable
from xml.etree import ElementTree as ET

from src.collector.base import (
    MeasurementSource,
    Sample,
    SourceNotAvailable,
    UserProfile,
)

logger = logging.getLogger("healthsync.collector.apple_export")

_HK_SPO2 = "HKQuantityTypeIdentifierOxygenSaturation"

_ME_DATE_OF_BIRTH = "HKCharacteristicTypeIdentifierDateOfBirth"
_ME_BIOLOGICAL_SEX = "HKCharacteristicTypeIdentifierBiologicalSex"
_ME_BLOOD_TYPE = "HKCharacteristicTypeIdentifierBloodType"

# HKBiologicalSex → wire value
_SEX_MAP: dict[str, str] = {
    "HKBiologicalSexFemale": "female",
    "HKBiologicalSexMale": "male",
    "HKBiologicalSexOther": "other",
}

# HKBloodType → wire value
_BLOOD_TYPE_MAP: dict[str, str] = {
    "HKBloodTypeAPositive": "A+",
    "HKBloodTypeANegative": "A-",
    "HKBloodTypeBPositive": "B+",
    "HKBloodTypeBNegative": "B-",
    "HKBloodTypeABPositive": "AB+",
    "HKBloodTypeABNegative": "AB-",
    "HKBloodTypeOPositive": "O+",
    "HKBloodTypeONegative": "O-",
}


def _parse_export_dt(value: str) -> datetime | None:
    """Parse Apple's ``2026-02-23 08:00:00 -0800`` timestamps."""
    if not value:
        return None
    try:
        return datetime.strptime(value, "%Y-%m-%d %H:%M:%S %z")
    except ValueError:
        pass
    try:
        return datetime.fromisoformat(value.replace(" ", "T")[:19]).replace(tzinfo=timezone.utc)
    except ValueError:
        return None


@dataclass
class _ParsedExport:
    mtime: float
    latest: dict[str, Sample]
    profile: UserProfile


def parse_export(xml_bytes: bytes) -> tuple[dict[str, Sample], UserProfile]:
    """Parse an export.xml into (latest sample per type, profile).

    Raises:
        ValueError: If the XML is malformed.
    """
    try:
        root = ET.fromstring(xml_bytes)
    except ET.ParseError as exc:
        logger.error("Apple Health XML parse error: %s", exc)
        raise ValueError(f"Invalid Apple Health XML: {exc}") from exc

    latest: dict[str, Sample] = {}
    skipped = 0

    for record in root.iter("Record"):
        rec_type = record.get("type", "")
        raw_value = record.get("value", "")
        if not rec_type or not raw_value:
            continue
        try:
            value = float(raw_value)
        except ValueError:
            # Category records (sleep analysis etc.) carry enum values.
            skipped += 1
            continue

        unit = record.get("unit", "")
        if rec_type == _HK_SPO2 and unit == "%" and value <= 1.0:
            unit = "fraction"

        end = _parse_export_dt(record.get("endDate", ""))
        sample = Sample(
            metric=rec_type,
            value=value,
            unit=unit,
            start=_parse_export_dt(record.get("startDate", "")),
            end=end,
            device=record.get("sourceName"),
        )
        current = latest.get(rec_type)
        if current is None or (end is not None and (current.end is None or end >= current.end)):
            latest[rec_type] = sample

    profile = UserProfile()
    me = root.find("Me")
    if me is not None:
        birth_date = None
        if raw_birth := me.get(_ME_DATE_OF_BIRTH):
            try:
                birth_date = date.fromisoformat(raw_birth[:10])
            except ValueError:
                logger.warning("Apple Health: unparseable date of birth %r", raw_birth)
        profile = UserProfile(
            blood_type=_BLOOD_TYPE_MAP.get(me.get(_ME_BLOOD_TYPE, "")),
            biological_sex=_SEX_MAP.get(me.get(_ME_BIOLOGICAL_SEX, "")),
            birth_date=birth_date,
        )

    logger.info(
        "Apple Health XML: %d record types, %d non-numeric records skipped",
        len(latest), skipped,
    )
    return latest, profile


class AppleHealthExportSource(MeasurementSource):
    """Latest-sample reader over an Apple Health export.xml."""

    SOURCE_ID = "apple_export"
    DISPLAY_NAME = "Apple Health Export"

    def __init__(self, export_path: str | Path) -> None:
        self._path = Path(export_path)
        self._parsed: _ParsedExport | None = None
        self._lock = asyncio.Lock()

    async def authorize(self, scopes: Iterable[str]) -> None:
        try:
            parsed = await self._load()
        except (OSError, ValueError) as exc:
            raise SourceNotAvailable(f"Apple Health export unusable: {exc}") from exc

        missing = [s for s in scopes if s not in parsed.latest]
        if missing:
            logger.info("Apple Health export has no records for: %s", missing)

    async def fetch_latest(self, metric: str) -> Sample | None:
        parsed = await self._load()
        return parsed.latest.get(metric)

    async def fetch_profile(self) -> UserProfile:
        parsed = await self._load()
        return parsed.profile

    async def _load(self) -> _ParsedExport:
        """Return the parsed export, re-reading it if the file changed."""
        async with self._lock:
            mtime = self._path.stat().st_mtime
            if self._parsed is not None and self._parsed.mtime == mtime:
                return self._parsed

            xml_bytes = await asyncio.to_thread(self._path.read_bytes)
            latest, profile = await asyncio.to_thread(parse_export, xml_bytes)
            self._parsed = _ParsedExport(mtime=mtime, latest=latest, profile=profile)
            return self._parsed
