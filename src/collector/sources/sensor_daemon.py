"""Measurement source backed by a local sensor daemon's HTTP API.

The daemon fronts whatever platform store the host has (a paired watch,
a phone health store, a BLE gateway) and exposes a small JSON API.

Environment variables:
    SENSOR_DAEMON_URL   — Base URL of the daemon (default http://127.0.0.1:8765)
    SENSOR_DAEMON_TOKEN — Optional bearer token

Endpoints used:
    POST /authorization                 — Request read scopes
    GET  /samples/{identifier}/latest   — Most recent sample of one type
    GET  /profile                       — Static user characteristics
"""

from __future__ import annotations

import logging
import os
from datetime import date, datetime, timezone
from typing import Iterable

import httpx

from src.collector.base import (
    MeasurementFetchError,
    MeasurementSource,
    Sample,
    SourceNotAuthorized,
    SourceNotAvailable,
    UserProfile,
)

logger = logging.getLogger("healthsync.collector.sensor_daemon")

_DEFAULT_BASE_URL = "http://127.0.0.1:8765"


def _parse_dt(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo is not None else parsed.replace(tzinfo=timezone.utc)


def _parse_float(value) -> float | None:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _json(response: httpx.Response) -> dict:
    if not response.content:
        return {}
    data = response.json()
    return data if isinstance(data, dict) else {}


class SensorDaemonSource(MeasurementSource):
    """Reads the latest samples from a local sensor daemon.

    Response shape of ``/samples/{identifier}/latest``::

        {"value": 72, "unit": "count/min",
         "startDate": "2026-02-23T08:00:00Z", "endDate": "2026-02-23T08:00:05Z",
         "device": "watch"}

    ``204`` / ``404`` mean "no sample"; any other failure raises
    MeasurementFetchError.
    """

    SOURCE_ID = "sensor_daemon"
    DISPLAY_NAME = "Sensor Daemon"

    def __init__(
        self,
        base_url: str | None = None,
        token: str | None = None,
        timeout: float = 10.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the source.

        Args:
            base_url:    Daemon base URL (SENSOR_DAEMON_URL env var).
            token:       Bearer token (SENSOR_DAEMON_TOKEN env var).
            timeout:     Per-request timeout in seconds.
            http_client: Optional pre-configured httpx client (for testing).
        """
        self._base_url = (
            base_url or os.environ.get("SENSOR_DAEMON_URL", _DEFAULT_BASE_URL)
        ).rstrip("/")
        self._token = token or os.environ.get("SENSOR_DAEMON_TOKEN", "")
        self._timeout = timeout
        self._http_client = http_client

    # ------------------------------------------------------------------
    # MeasurementSource interface
    # ------------------------------------------------------------------

    async def authorize(self, scopes: Iterable[str]) -> None:
        requested = list(scopes)
        logger.info("Sensor daemon: requesting %d read scopes", len(requested))
        try:
            response = await self._request(
                "POST", "/authorization", json={"read": requested}
            )
        except httpx.TransportError as exc:
            raise SourceNotAvailable(f"Sensor daemon unreachable: {exc}") from exc

        if response.status_code in (401, 403):
            raise SourceNotAuthorized(
                f"Sensor daemon denied access ({response.status_code})"
            )
        if response.status_code in (404, 501, 503):
            raise SourceNotAvailable(
                f"Health data not available on this host ({response.status_code})"
            )
        try:
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise SourceNotAvailable(f"Authorization request failed: {exc}") from exc

        granted = set(_json(response).get("granted", requested))
        denied = [s for s in requested if s not in granted]
        if denied:
            logger.warning("Sensor daemon: %d scopes not granted: %s", len(denied), denied)

    async def fetch_latest(self, metric: str) -> Sample | None:
        try:
            response = await self._request("GET", f"/samples/{metric}/latest")
        except httpx.TransportError as exc:
            raise MeasurementFetchError(metric, str(exc)) from exc

        if response.status_code in (204, 404):
            return None
        try:
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise MeasurementFetchError(metric, f"HTTP {response.status_code}") from exc

        data = _json(response)
        if not data:
            return None
        value = _parse_float(data.get("value"))
        if value is None:
            raise MeasurementFetchError(metric, f"non-numeric value {data.get('value')!r}")

        return Sample(
            metric=data.get("type") or metric,
            value=value,
            unit=data.get("unit") or "",
            start=_parse_dt(data.get("startDate")),
            end=_parse_dt(data.get("endDate")),
            device=data.get("device"),
        )

    async def fetch_profile(self) -> UserProfile:
        response = await self._request("GET", "/profile")
        if response.status_code == 404:
            return UserProfile()
        response.raise_for_status()
        data = _json(response)

        birth_date = None
        if raw_birth := data.get("birthDate"):
            try:
                birth_date = date.fromisoformat(raw_birth[:10])
            except ValueError:
                logger.warning("Sensor daemon: unparseable birthDate %r", raw_birth)

        return UserProfile(
            blood_type=data.get("bloodType"),
            biological_sex=data.get("biologicalSex"),
            birth_date=birth_date,
            latitude=_parse_float(data.get("latitude")),
            longitude=_parse_float(data.get("longitude")),
        )

    # ------------------------------------------------------------------
    # HTTP helpers
    # ------------------------------------------------------------------

    def _build_headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        return headers

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        """Send a request to the daemon.  Status codes are left to the caller."""
        url = f"{self._base_url}{path}"
        headers = self._build_headers()

        if self._http_client:
            return await self._http_client.request(method, url, headers=headers, **kwargs)
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            return await client.request(method, url, headers=headers, **kwargs)
