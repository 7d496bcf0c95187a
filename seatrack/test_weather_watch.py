from datetime import datetime, timezone

import httpx
import pytest

from seatrack.backend.models import Position
from seatrack.feeds.weather_feed import WeatherFeed
from seatrack.safety_engine.weather_watch import classify_pressure_trend, pressures_up_to_now


def test_sharp_drop_is_an_alert():
    alert = classify_pressure_trend([1016.0, 1015.0, 1014.5, 1013.5, 1012.8], now_ms=99.0)
    assert alert.level == "alert"
    assert alert.pressure_drop_hpa == 2.2
    assert alert.raised_at_ms == 99.0


def test_moderate_drop_is_a_caution():
    alert = classify_pressure_trend([1015.0, 1014.6, 1014.2, 1013.9])
    assert alert.level == "caution"
    assert alert.pressure_drop_hpa == 1.1


@pytest.mark.parametrize("readings", [
    [1013.0, 1013.2, 1013.1, 1013.0],  # steady
    [1010.0, 1011.0, 1012.5, 1014.0],  # rising
    [1013.0],
    [],
    [None, None, 1010.0],
])
def test_benign_or_insufficient_trends(readings):
    assert classify_pressure_trend(readings) is None


def test_missing_hours_are_skipped():
    alert = classify_pressure_trend([1015.0, None, 1014.0, None, 1012.5])
    assert alert.level == "alert"


def test_future_hours_are_cut_off():
    hourly = {
        "time": [f"2026-10-18T{h:02d}:00" for h in range(6)],
        "surface_pressure": [1015.0, 1014.0, 1013.0, 1012.0, 1020.0, 1020.0],
    }
    now = datetime(2026, 10, 18, 3, 30, tzinfo=timezone.utc)
    assert pressures_up_to_now(hourly, now) == [1015.0, 1014.0, 1013.0, 1012.0]


async def test_weather_feed_fetches_and_classifies():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen.update(request.url.params)
        times = [f"2020-01-01T{h:02d}:00" for h in range(6)]
        pressures = [1020.0, 1019.5, 1019.0, 1018.0, 1017.0, 1016.0]
        return httpx.Response(200, json={"hourly": {"time": times, "surface_pressure": pressures}})

    here = Position(lat=-23.01234, lng=-43.2, accuracy_m=5, captured_at_ms=5.0)
    feed = WeatherFeed(get_position=lambda: here)
    feed._http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))

    alerts = await feed.read()
    await feed.stop()

    assert seen["hourly"] == "surface_pressure"
    assert seen["latitude"] == "-23.012"
    assert [(a.level, a.pressure_drop_hpa, a.raised_at_ms) for a in alerts] == [("alert", 3.0, 5.0)]


async def test_weather_feed_stays_quiet_offline_or_without_fix():
    feed = WeatherFeed(get_position=lambda: None)
    assert await feed.read() == []
    here = Position(lat=0, lng=0, accuracy_m=5, captured_at_ms=0)
    feed = WeatherFeed(get_position=lambda: here, is_offline=lambda: True)
    assert await feed.read() == []
