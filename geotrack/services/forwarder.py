# geotrack/services/forwarder.py
import asyncio
import logging
from typing import Any, Dict, Optional

import httpx

from ..core.config import Settings
from ..core.errors import NetworkFailure
from ..schemas.location import LocationSample
from ..utils.http import post_json
from ..utils.time import iso_z

log = logging.getLogger(__name__)


class LocationForwarder:
    """
    Sends samples to a remote endpoint as JSON {"latitude": .., "longitude": ..}.

    Failed sends are retried `retries` more times, `retry_delay_s` apart, then raised
    as NetworkFailure. Nothing is queued or persisted between samples.
    """

    def __init__(
        self,
        endpoint: str,
        timeout_s: float = 15.0,
        retries: int = 0,
        retry_delay_s: float = 1.0,
        device_id: Optional[str] = None,
        include_meta: bool = False,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.endpoint = endpoint
        self.timeout_s = timeout_s
        self.retries = retries
        self.retry_delay_s = retry_delay_s
        self.device_id = device_id
        self.include_meta = include_meta
        self._client = client
        self._owns_client = client is None

    def payload(self, sample: LocationSample) -> Dict[str, Any]:
        body = sample.to_payload()
        if self.device_id:
            body["device_id"] = self.device_id
        if self.include_meta:
            body["timestamp"] = iso_z(sample.received_at)
            if sample.accuracy_m is not None:
                body["accuracy_m"] = sample.accuracy_m
        return body

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout_s)
        return self._client

    async def send(self, sample: LocationSample):
        body = self.payload(sample)
        attempts = self.retries + 1
        for attempt in range(1, attempts + 1):
            try:
                return await post_json(self.endpoint, body, timeout=self.timeout_s, client=self._get_client())
            except NetworkFailure as e:
                if attempt == attempts:
                    raise NetworkFailure(self.endpoint, e.reason, attempts=attempt) from e
                log.debug("Send attempt %d/%d failed: %s", attempt, attempts, e.reason)
                await asyncio.sleep(self.retry_delay_s)

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None


def build_forwarder(settings: Settings) -> Optional[LocationForwarder]:
    if not settings.forward_endpoint:
        return None
    return LocationForwarder(
        settings.forward_endpoint,
        timeout_s=settings.forward_timeout_s,
        retries=settings.forward_retries,
        retry_delay_s=settings.forward_retry_delay_s,
        device_id=settings.device_id,
        include_meta=settings.forward_include_meta,
    )
