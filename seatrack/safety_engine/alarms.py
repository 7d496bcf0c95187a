"""SeaTrack - Alarm Signaler.

Shared audible / haptic sink for the anchor, collision, emergency and
weather alarms. Feedback is best effort: backend failures are logged and
swallowed so they never interrupt a state machine.
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from typing import Callable, NamedTuple, Optional

from seatrack.backend.models import AlarmKind
from seatrack.safety_engine.timers import TaskGroup

logger = logging.getLogger("seatrack.alarm")


class Tone(NamedTuple):
    frequency_hz: float
    duration_s: float


# Tone and vibration pattern (ms on/off) per alarm kind
ALARM_TONES: dict[AlarmKind, Tone] = {
    AlarmKind.ANCHOR: Tone(880.0, 0.3),
    AlarmKind.COLLISION: Tone(1200.0, 0.5),
    AlarmKind.EMERGENCY: Tone(600.0, 0.6),
    AlarmKind.WEATHER: Tone(900.0, 1.0),
}

HAPTIC_PATTERNS: dict[AlarmKind, list[int]] = {
    AlarmKind.ANCHOR: [40],                       # heavy impact
    AlarmKind.COLLISION: [100, 30, 100, 30, 200],  # error notification
    AlarmKind.EMERGENCY: [20],                    # medium impact, one per Morse step
    AlarmKind.WEATHER: [30, 30, 30],              # warning notification
}


class AlarmBackend(ABC):
    """Hardware / platform adapter that actually makes noise and vibrates."""

    async def open(self):
        """Acquire the audio resource."""

    async def close(self):
        """Release the audio resource."""

    @abstractmethod
    async def play_tone(self, tone: Tone):
        ...

    @abstractmethod
    async def vibrate(self, pattern_ms: list[int]):
        ...


class LoggingAlarmBackend(AlarmBackend):
    """Default backend for headless deployments: every tone and pulse is logged."""

    def __init__(self, log: Optional[logging.Logger] = None):
        self._log = log or logger

    async def play_tone(self, tone: Tone):
        self._log.info("♪ tone %.0fHz for %.2fs", tone.frequency_hz, tone.duration_s)

    async def vibrate(self, pattern_ms: list[int]):
        self._log.info("≋ haptic %s", pattern_ms)


class NullAlarmBackend(AlarmBackend):
    async def play_tone(self, tone: Tone):
        return None

    async def vibrate(self, pattern_ms: list[int]):
        return None


ALARM_BACKENDS: dict[str, type[AlarmBackend]] = {
    "log": LoggingAlarmBackend,
    "null": NullAlarmBackend,
}


class AlarmSignaler:
    """Plays alarm feedback on behalf of every watcher.

    The audio resource is shared: it is opened on first use, reused by every
    alarm and released in ``close()``. One lock serializes the backend, so
    concurrent alarms queue instead of overlapping. When opening fails, the
    signaler stays silent for ``audio_retry_ms`` so alarms queued behind the
    lock do not retry the acquisition. Repeated triggers of the same kind
    inside ``min_gap_ms`` are coalesced.
    """

    def __init__(self, backend: Optional[AlarmBackend] = None, *, min_gap_ms: float = 250,
                 audio_retry_ms: float = 5000, clock: Optional[Callable[[], float]] = None):
        self.backend = backend or LoggingAlarmBackend()
        self.min_gap_ms = min_gap_ms
        self.audio_retry_ms = audio_retry_ms
        self._clock = clock or (lambda: time.monotonic() * 1000)
        self._lock = asyncio.Lock()
        self._last_trigger: dict[AlarmKind, float] = {}
        self._tasks = TaskGroup("alarm")
        self._audio_open = False
        self._audio_failed_at: Optional[float] = None
        self.audio_failures = 0
        self.haptic_failures = 0

    @property
    def failures(self) -> int:
        return self.audio_failures + self.haptic_failures

    @property
    def audio_open(self) -> bool:
        return self._audio_open

    def trigger(self, kind: AlarmKind) -> bool:
        """Schedule the tone + haptic pattern for ``kind``. Returns False when coalesced."""
        kind = AlarmKind(kind)
        now = self._clock()
        last = self._last_trigger.get(kind)
        if last is not None and now - last < self.min_gap_ms:
            logger.debug("Alarm %s coalesced (%.0fms since last)", kind.value, now - last)
            return False
        self._last_trigger[kind] = now
        try:
            self._tasks.spawn(self._play(kind, ALARM_TONES[kind], HAPTIC_PATTERNS[kind]), kind.value)
        except RuntimeError as e:
            # No running loop: feedback is dropped, state machines are unaffected
            logger.warning("Alarm %s dropped: %s", kind.value, e)
            return False
        return True

    async def sound(self, kind: AlarmKind, tone: Tone, pattern_ms: Optional[list[int]] = None):
        """Play one tone + haptic pulse and wait for the backend to finish."""
        kind = AlarmKind(kind)
        await self._play(kind, tone, pattern_ms if pattern_ms is not None else HAPTIC_PATTERNS[kind])

    async def _acquire_audio(self, kind: AlarmKind) -> bool:
        # Caller holds the lock
        if self._audio_open:
            return True
        now = self._clock()
        if self._audio_failed_at is not None and now - self._audio_failed_at < self.audio_retry_ms:
            logger.debug("Audio still unavailable; %s alarm is haptic only", kind.value)
            return False
        try:
            await self.backend.open()
        except Exception as e:
            self._audio_failed_at = now
            self.audio_failures += 1
            logger.warning("Audio unavailable for %s alarm: %s", kind.value, e)
            return False
        self._audio_open = True
        self._audio_failed_at = None
        return True

    async def _release_audio(self):
        if not self._audio_open:
            return
        self._audio_open = False
        try:
            await self.backend.close()
        except Exception as e:
            logger.debug("Audio close failed: %s", e)

    async def _play(self, kind: AlarmKind, tone: Tone, pattern_ms: list[int]):
        async with self._lock:
            if await self._acquire_audio(kind):
                try:
                    await self.backend.play_tone(tone)
                except Exception as e:
                    self.audio_failures += 1
                    self._audio_failed_at = self._clock()
                    logger.warning("Audio failed during %s alarm: %s", kind.value, e)
                    await self._release_audio()

            try:
                await self.backend.vibrate(pattern_ms)
            except Exception as e:
                self.haptic_failures += 1
                logger.warning("Haptics unavailable for %s alarm: %s", kind.value, e)

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self):
        """Wait for scheduled alarms to finish playing."""
        while len(self._tasks):
            await asyncio.sleep(0)
            async with self._lock:
                pass

    async def close(self):
        await self._tasks.cancel_all()
        async with self._lock:
            await self._release_audio()
