"""SeaTrack - Simulated Position Feed.

Random-walk vessel used when no GPS or gateway is reachable. Only ever
selected by the caller as a fallback; the engine has no notion of it.
"""

import math
import random
import time
from typing import Optional

from seatrack.backend.models import RawPositionSample
from seatrack.feeds.base_feed import BaseFeed

METERS_PER_DEG_LAT = 111_320.0


class SimulatedFeed(BaseFeed):
    """Emits one fix per interval for a boat wandering at a few knots."""

    def __init__(self, start_lat: float, start_lng: float, interval: float = 1.0,
                 speed_mps: float = 2.5, heading_deg: float = 90.0, seed: Optional[int] = None):
        super().__init__(name="simulator", interval=interval)
        self.lat = start_lat
        self.lng = start_lng
        self.speed_mps = speed_mps
        self.heading_deg = heading_deg
        self._rng = random.Random(seed)

    def step(self, dt_s: float) -> RawPositionSample:
        # Small noise on course and speed, kept in realistic bounds
        self.heading_deg = (self.heading_deg + self._rng.uniform(-5, 5)) % 360
        self.speed_mps = min(8.0, max(0.0, self.speed_mps + self._rng.uniform(-0.1, 0.1)))

        dist = self.speed_mps * dt_s
        rad = math.radians(self.heading_deg)
        self.lat += dist * math.cos(rad) / METERS_PER_DEG_LAT
        self.lng += dist * math.sin(rad) / (METERS_PER_DEG_LAT * max(0.01, math.cos(math.radians(self.lat))))

        return RawPositionSample(
            lat=round(self.lat, 7),
            lng=round(self.lng, 7),
            accuracy=5.0,
            speed=round(self.speed_mps, 2),
            heading=round(self.heading_deg, 1),
            timestamp_ms=time.time() * 1000,
        )

    async def read(self) -> list[RawPositionSample]:
        return [self.step(self.interval)]
