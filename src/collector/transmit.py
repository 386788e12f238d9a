"""HTTP transmitter: posts each CanonicalRecord to the collection endpoint.

Delivery is best-effort.  Any transport error or non-2xx status becomes a
TransmissionError; the caller drops the record and the next scheduled cycle
is the retry.
"""

from __future__ import annotations

import json
import logging

import httpx

from src.collector.base import CanonicalRecord, TransmissionError, Transmitter

logger = logging.getLogger("healthsync.collector.transmit")


class HttpTransmitter(Transmitter):
    """POST ``record.to_payload()`` as JSON to ``{base_url}{path}``.

    ``path`` may contain ``{context_id}``, which is filled with the session's
    context id (default: ``/projects/{context_id}/health-data``).
    """

    def __init__(
        self,
        base_url: str,
        path: str = "/projects/{context_id}/health-data",
        api_key: str = "",
        timeout: float = 10.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._path = path
        self._api_key = api_key
        self._timeout = timeout
        self._http_client = http_client

    def url_for(self, context_id: int) -> str:
        return f"{self._base_url}{self._path.format(context_id=context_id)}"

    async def send(self, record: CanonicalRecord, context_id: int) -> None:
        payload = record.to_payload()
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug("Outgoing payload:\n%s", json.dumps(payload, indent=2))

        url = self.url_for(context_id)
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"

        try:
            if self._http_client:
                response = await self._http_client.post(url, json=payload, headers=headers)
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    response = await client.post(url, json=payload, headers=headers)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise TransmissionError(
                f"Endpoint returned {exc.response.status_code}: {exc.response.text[:200]}"
            ) from exc
        except httpx.HTTPError as exc:
            raise TransmissionError(f"{type(exc).__name__}: {exc}") from exc
