"""SeaTrack - Barometric Pressure Feed (Open-Meteo).

Hourly surface pressure for the vessel's position, checked once an hour.
"""

import logging
from typing import Callable, Optional

from seatrack.backend.models import Position, WeatherAlert
from seatrack.feeds.base_feed import BaseFeed
from seatrack.safety_engine.weather_watch import classify_pressure_trend, pressures_up_to_now

logger = logging.getLogger("seatrack.feed")


class WeatherFeed(BaseFeed):
    """Polls Open-Meteo and yields at most one WeatherAlert per check."""

    API_URL = "https://api.open-meteo.com/v1/forecast"

    def __init__(
        self,
        get_position: Callable[[], Optional[Position]],
        is_offline: Callable[[], bool] = lambda: False,
        interval: int = 3600,
    ):
        super().__init__(name="weather", interval=interval)
        self._get_position = get_position
        self._is_offline = is_offline

    async def read(self) -> list[WeatherAlert]:
        position = self._get_position()
        if position is None or self._is_offline():
            return []

        data = await self.fetch_json(self.API_URL, params={
            "latitude": round(position.lat, 3),
            "longitude": round(position.lng, 3),
            "hourly": "surface_pressure",
            "past_days": 1,
            "forecast_days": 1,
            "timezone": "GMT",
        })
        pressures = pressures_up_to_now(data.get("hourly", {}))
        alert = classify_pressure_trend(pressures, now_ms=position.captured_at_ms)
        if alert:
            logger.info("[weather] %s", alert.message)
            return [alert]
        return []
