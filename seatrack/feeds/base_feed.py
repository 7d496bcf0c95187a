"""SeaTrack - Abstract Base Feed."""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Optional

import httpx

logger = logging.getLogger("seatrack.feed")


class BaseFeed(ABC):
    """Base class for polled input feeds (simulator, weather, ...)."""

    def __init__(self, name: str, interval: float = 60):
        self.name = name
        self.interval = interval
        self._running = False
        self._http_client: Optional[httpx.AsyncClient] = None

    @property
    def running(self) -> bool:
        return self._running

    async def start(self):
        """Start the feed loop, yielding each batch of readings."""
        self._running = True
        logger.info("[%s] Feed started (interval=%ss)", self.name, self.interval)

        while self._running:
            try:
                items = await self.read()
                if items:
                    logger.debug("[%s] Read %d items", self.name, len(items))
                yield items or []
            except Exception as e:
                logger.error("[%s] Read error: %s", self.name, e)
                yield []

            await asyncio.sleep(self.interval)

    async def stop(self):
        self._running = False
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None
        logger.info("[%s] Feed stopped", self.name)

    @abstractmethod
    async def read(self) -> list:
        """Produce the next batch of readings."""
        ...

    async def fetch_json(self, url: str, params: dict = None) -> dict:
        """Helper to fetch JSON from a URL."""
        if not self._http_client:
            self._http_client = httpx.AsyncClient(timeout=30.0)
        resp = await self._http_client.get(url, params=params)
        resp.raise_for_status()
        return resp.json()
