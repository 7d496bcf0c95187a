"""SeaTrack - Distress Record Store (Supabase REST)."""

import logging
from typing import Callable, Optional

import httpx

from seatrack.backend.models import DistressRecord

logger = logging.getLogger("seatrack.distress")


class DistressStore:
    """Inserts one row into the ``emergencies`` table per SOS activation.

    Instances are awaitable callables, matching the engine's distress sink.
    Errors propagate; the emergency controller logs them.
    """

    TABLE = "emergencies"

    def __init__(
        self,
        supabase_url: str,
        api_key: str,
        access_token: Optional[str] = None,
        is_offline: Callable[[], bool] = lambda: False,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.endpoint = f"{supabase_url.rstrip('/')}/rest/v1/{self.TABLE}"
        self._api_key = api_key
        self._access_token = access_token
        self._is_offline = is_offline
        self._client = client
        self.inserted = 0

    @property
    def headers(self) -> dict:
        return {
            "apikey": self._api_key,
            "Authorization": f"Bearer {self._access_token or self._api_key}",
            "Content-Type": "application/json",
            "Prefer": "return=minimal",
        }

    async def __call__(self, record: DistressRecord) -> None:
        if self._is_offline():
            logger.info("[distress] Offline; distress record for %s not sent", record.user_id)
            return
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=15.0)
        resp = await self._client.post(self.endpoint, json=record.model_dump(), headers=self.headers)
        resp.raise_for_status()
        self.inserted += 1
        logger.info("[distress] Recorded SOS for %s at (%s, %s)", record.user_id, record.lat, record.lng)

    async def close(self):
        if self._client is not None:
            await self._client.aclose()
            self._client = None
