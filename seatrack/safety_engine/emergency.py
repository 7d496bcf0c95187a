"""SeaTrack - Emergency (SOS) Controller.

While the emergency is active the controller re-asserts distress in the
vessel's outgoing presence and plays the Morse SOS cadence on a fixed
interval. Every step of the cadence re-checks the emergency state, so a
dismissal silences the sequence mid-playback.
"""

import asyncio
import logging
import time
from typing import Awaitable, Callable, NamedTuple, Optional, Sequence

from seatrack.backend.models import AlarmKind, DistressRecord, EmergencyState, EventKind, Position
from seatrack.safety_engine.alarms import AlarmSignaler, Tone
from seatrack.safety_engine.errors import InvalidCommand
from seatrack.safety_engine.timers import RepeatingTimer, TaskGroup

logger = logging.getLogger("seatrack.emergency")


class SosStep(NamedTuple):
    tone: Tone
    delay_ms: float


DOT_MS = 200
DASH_MS = 600
GAP_MS = 200
SHORT_HZ = 880.0
LONG_HZ = 600.0


def _step(duration_ms: int) -> SosStep:
    freq = LONG_HZ if duration_ms > 400 else SHORT_HZ
    return SosStep(Tone(freq, duration_ms / 1000), duration_ms + 100)


# ... --- ...  (17 steps including the inter-symbol gaps)
SOS_SEQUENCE: list[SosStep] = [
    _step(d) for d in (
        DOT_MS, GAP_MS, DOT_MS, GAP_MS, DOT_MS, GAP_MS,
        DASH_MS, GAP_MS, DASH_MS, GAP_MS, DASH_MS, GAP_MS,
        DOT_MS, GAP_MS, DOT_MS, GAP_MS, DOT_MS,
    )
]


DistressSink = Callable[[DistressRecord], Awaitable[None]]


class EmergencyController:

    def __init__(
        self,
        signaler: AlarmSignaler,
        *,
        vessel_id: str,
        get_position: Callable[[], Optional[Position]] = lambda: None,
        broadcast_distress: Callable[[], None] = lambda: None,
        reset_collision: Callable[[], bool] = lambda: False,
        persist_distress: Optional[DistressSink] = None,
        rebroadcast_interval_ms: float = 5000,
        sequence: Sequence[SosStep] = SOS_SEQUENCE,
        emit: Optional[Callable[..., None]] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        self.signaler = signaler
        self.vessel_id = vessel_id
        self.sequence = list(sequence)
        self._get_position = get_position
        self._broadcast_distress = broadcast_distress
        self._reset_collision = reset_collision
        self._persist_distress = persist_distress
        self._emit = emit or (lambda kind, **data: None)
        self._clock = clock or (lambda: time.time() * 1000)
        self._state = EmergencyState()
        self._loop_timer = RepeatingTimer("sos-rebroadcast", rebroadcast_interval_ms, self._cycle, immediate=True)
        self._playback: Optional[asyncio.Task] = None
        self._tasks = TaskGroup("emergency")
        self.pulses_played = 0

    @property
    def state(self) -> EmergencyState:
        return self._state.model_copy()

    @property
    def active(self) -> bool:
        return self._state.active

    def activate(self, source: str = "manual") -> bool:
        """Raise the emergency. Returns False when it was already active."""
        if self._state.active:
            return False
        self._state = EmergencyState(active=True, source=source, activated_at_ms=self._clock())
        logger.warning("EMERGENCY ACTIVE (source=%s)", source)
        # A manual SOS supersedes a pending collision countdown
        self._reset_collision()
        self._emit(EventKind.EMERGENCY_ACTIVATED, source=source)

        # First loop cycle runs right away and flips the distress flag in presence
        self._loop_timer.start()
        self._record_distress()
        return True

    def dismiss(self) -> EmergencyState:
        """Clear the emergency and any pending collision countdown."""
        was_active = self._state.active
        had_countdown = self._reset_collision()
        if not was_active and not had_countdown:
            raise InvalidCommand("No emergency or collision countdown to dismiss")

        self._state = EmergencyState()
        self._loop_timer.cancel()
        if self._playback is not None and not self._playback.done():
            self._playback.cancel()
        self._playback = None

        if was_active:
            logger.info("Emergency dismissed")
            self._emit(EventKind.EMERGENCY_DISMISSED)
            self._broadcast_distress()
        return self.state

    def toggle(self) -> EmergencyState:
        if self._state.active:
            return self.dismiss()
        self.activate("manual")
        return self.state

    async def close(self):
        self._loop_timer.cancel()
        if self._playback is not None and not self._playback.done():
            self._playback.cancel()
        await self._tasks.cancel_all()

    # ── Rebroadcast loop ─────────────────────────

    def _cycle(self):
        if not self._state.active:
            self._loop_timer.cancel()
            return
        self._broadcast_distress()
        if self._playback is not None and not self._playback.done():
            logger.debug("SOS cadence still playing; skipping this cycle")
            return
        self._playback = self._tasks.spawn(self.play_sos(), "sos-cadence")

    async def play_sos(self) -> int:
        """Play the Morse cadence once; returns the number of pulses played."""
        played = 0
        for step in self.sequence:
            if not self._state.active:
                break
            await self.signaler.sound(AlarmKind.EMERGENCY, step.tone)
            played += 1
            self.pulses_played += 1
            if not self._state.active:
                break
            await asyncio.sleep(step.delay_ms / 1000)
        return played

    # ── Persistence ──────────────────────────────

    def _record_distress(self):
        if self._persist_distress is None:
            return
        position = self._get_position()
        record = DistressRecord(
            user_id=self.vessel_id,
            lat=position.lat if position else None,
            lng=position.lng if position else None,
        )
        self._tasks.spawn(self._persist(record), "persist-distress")

    async def _persist(self, record: DistressRecord):
        try:
            await self._persist_distress(record)
            logger.info("Distress record stored for %s", record.user_id)
        except Exception as e:
            logger.error("Failed to store distress record: %s", e)
