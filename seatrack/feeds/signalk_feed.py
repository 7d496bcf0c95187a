"""SeaTrack - Signal K Gateway Feed.

Streams position, speed and course from an onboard Signal K server (or any
NMEA 0183/2000 gateway exposing the Signal K delta stream) over a
websocket. Speeds arrive in m/s and angles in radians.
"""

import asyncio
import json
import logging
import math
from datetime import datetime
from typing import Callable, Optional

import websockets

from seatrack.backend.models import RawPositionSample

logger = logging.getLogger("seatrack.feed")

RECONNECT_SECONDS = 10
MAX_FAILURES = 3


def _iso_to_ms(value) -> Optional[float]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00")).timestamp() * 1000
    except ValueError:
        return None


class SignalKDeltaParser:
    """Folds Signal K delta messages into position samples.

    Speed and course values are remembered between deltas; a sample is
    produced whenever a ``navigation.position`` update arrives.
    """

    def __init__(self):
        self.speed_mps: Optional[float] = None
        self.course_deg: Optional[float] = None
        self.heading_deg: Optional[float] = None

    def feed(self, message: dict) -> list[RawPositionSample]:
        samples = []
        for update in message.get("updates") or []:
            timestamp_ms = _iso_to_ms(update.get("timestamp"))
            position = None
            for item in update.get("values") or []:
                path = item.get("path")
                value = item.get("value")
                if value is None:
                    continue
                if path == "navigation.position":
                    position = value
                    continue
                try:
                    if path == "navigation.speedOverGround":
                        self.speed_mps = float(value)
                    elif path == "navigation.courseOverGroundTrue":
                        self.course_deg = math.degrees(float(value)) % 360
                    elif path == "navigation.headingTrue":
                        self.heading_deg = math.degrees(float(value)) % 360
                except (TypeError, ValueError):
                    logger.debug("[signalk] Bad value for %s: %r", path, value)

            if not isinstance(position, dict):
                continue
            lat = position.get("latitude")
            lng = position.get("longitude")
            if lat is None or lng is None:
                continue
            try:
                samples.append(RawPositionSample(
                    lat=lat,
                    lng=lng,
                    speed=self.speed_mps,
                    # Course over ground describes motion; fall back to the compass heading
                    heading=self.course_deg if self.course_deg is not None else self.heading_deg,
                    timestamp_ms=timestamp_ms,
                ))
            except ValueError as e:
                logger.debug("[signalk] Bad position %s: %s", position, e)
        return samples


class SignalKFeed:
    """Websocket client for the Signal K delta stream with reconnect."""

    def __init__(self, url: str, on_sample: Callable[[RawPositionSample], None],
                 on_error: Optional[Callable[[str], None]] = None,
                 on_recovered: Optional[Callable[[], None]] = None):
        self.name = "signalk"
        self.url = url
        self._on_sample = on_sample
        self._on_error = on_error
        self._on_recovered = on_recovered
        self._error_reported = False
        self._parser = SignalKDeltaParser()
        self._running = False
        self.connected = False

    async def run(self):
        self._running = True
        failures = 0
        while self._running:
            try:
                async with websockets.connect(self.url) as ws:
                    self.connected = True
                    failures = 0
                    logger.info("[signalk] Connected to %s", self.url)
                    if self._error_reported:
                        self._error_reported = False
                        if self._on_recovered:
                            self._on_recovered()
                    async for raw in ws:
                        self.handle_message(raw)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.connected = False
                failures += 1
                logger.warning("[signalk] Disconnected: %s; reconnecting in %ds", e, RECONNECT_SECONDS)
                if failures == MAX_FAILURES and not self._error_reported:
                    self._error_reported = True
                    if self._on_error:
                        self._on_error(f"Signal K gateway unreachable: {e}")
                await asyncio.sleep(RECONNECT_SECONDS)

    def handle_message(self, raw) -> int:
        try:
            message = json.loads(raw)
        except (TypeError, ValueError):
            # Hello frames and raw NMEA sentences are not deltas
            return 0
        if not isinstance(message, dict):
            return 0
        samples = self._parser.feed(message)
        for sample in samples:
            self._on_sample(sample)
        return len(samples)

    async def stop(self):
        self._running = False
        self.connected = False
