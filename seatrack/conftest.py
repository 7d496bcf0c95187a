import pytest

from seatrack.backend.config import EngineConfig
from seatrack.safety_engine.alarms import AlarmBackend, AlarmSignaler


class RecordingBackend(AlarmBackend):
    """Alarm sink that records every tone and vibration instead of playing it."""

    def __init__(self, fail_audio: bool = False, fail_haptics: bool = False):
        self.fail_audio = fail_audio
        self.fail_haptics = fail_haptics
        self.tones = []
        self.vibrations = []
        self.open_attempts = 0
        self.opened = 0
        self.closed = 0
        self.open_now = 0
        self.max_open = 0

    async def open(self):
        self.open_attempts += 1
        if self.fail_audio:
            raise RuntimeError("audio device busy")
        self.opened += 1
        self.open_now += 1
        self.max_open = max(self.max_open, self.open_now)

    async def close(self):
        self.closed += 1
        self.open_now -= 1

    async def play_tone(self, tone):
        self.tones.append(tone)

    async def vibrate(self, pattern_ms):
        if self.fail_haptics:
            raise RuntimeError("no vibrator")
        self.vibrations.append(list(pattern_ms))


class FakeTransport:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent = []

    async def track(self, payload: dict) -> None:
        if self.fail:
            raise ConnectionError("channel closed")
        self.sent.append(payload)


class FakeDistressStore:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.records = []

    async def __call__(self, record):
        if self.fail:
            raise ConnectionError("insert failed")
        self.records.append(record)


class FakeClock:
    """Millisecond clock advanced by hand."""

    def __init__(self, start: float = 1_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, ms: float):
        self.now += ms


@pytest.fixture
def backend():
    return RecordingBackend()


@pytest.fixture
def signaler(backend):
    return AlarmSignaler(backend, min_gap_ms=0)


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def distress_store():
    return FakeDistressStore()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fast_config():
    return EngineConfig(
        min_update_interval_ms=0,
        presence_throttle_ms=0,
        anchor_alarm_interval_ms=20,
        collision_scan_interval_ms=10_000,
        countdown_tick_ms=10_000,
        sos_rebroadcast_interval_ms=10_000,
        alarm_min_gap_ms=0,
    )
