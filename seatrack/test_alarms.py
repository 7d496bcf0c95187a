import asyncio

from conftest import FakeClock, RecordingBackend

from seatrack.backend.models import AlarmKind
from seatrack.safety_engine.alarms import ALARM_TONES, HAPTIC_PATTERNS, AlarmSignaler, Tone


class SlowBackend(RecordingBackend):
    async def play_tone(self, tone):
        await asyncio.sleep(0.01)
        await super().play_tone(tone)


async def test_trigger_plays_tone_and_haptics(signaler, backend):
    assert signaler.trigger(AlarmKind.ANCHOR)
    await signaler.drain()
    assert backend.tones == [ALARM_TONES[AlarmKind.ANCHOR]]
    assert backend.vibrations == [HAPTIC_PATTERNS[AlarmKind.ANCHOR]]
    assert (backend.opened, backend.closed) == (1, 0)
    assert signaler.audio_open

    await signaler.close()
    assert backend.closed == 1
    assert not signaler.audio_open


async def test_concurrent_alarms_never_share_the_audio_device():
    backend = SlowBackend()
    signaler = AlarmSignaler(backend, min_gap_ms=0)
    for kind in (AlarmKind.ANCHOR, AlarmKind.COLLISION, AlarmKind.EMERGENCY, AlarmKind.WEATHER):
        signaler.trigger(kind)
    await asyncio.gather(
        signaler.sound(AlarmKind.EMERGENCY, Tone(600.0, 0.6)),
        signaler.sound(AlarmKind.EMERGENCY, Tone(880.0, 0.2)),
    )
    await signaler.drain()

    assert len(backend.tones) == 6
    assert backend.opened == 1
    assert backend.max_open == 1


async def test_same_kind_triggers_are_coalesced():
    clock = FakeClock()
    backend = RecordingBackend()
    signaler = AlarmSignaler(backend, min_gap_ms=250, clock=clock)

    assert signaler.trigger(AlarmKind.COLLISION)
    clock.advance(100)
    assert not signaler.trigger(AlarmKind.COLLISION)
    assert signaler.trigger(AlarmKind.ANCHOR)  # other kinds are independent
    clock.advance(200)
    assert signaler.trigger(AlarmKind.COLLISION)

    await signaler.drain()
    assert len(backend.tones) == 3


async def test_backend_failures_are_swallowed():
    backend = RecordingBackend(fail_audio=True, fail_haptics=True)
    signaler = AlarmSignaler(backend, min_gap_ms=0)

    signaler.trigger(AlarmKind.WEATHER)
    await signaler.drain()
    await signaler.sound(AlarmKind.EMERGENCY, Tone(600.0, 0.6))

    assert signaler.audio_failures == 1
    assert signaler.haptic_failures == 2
    assert backend.tones == []


async def test_two_watchers_in_one_tick_fail_to_acquire_audio_once():
    backend = RecordingBackend(fail_audio=True)
    signaler = AlarmSignaler(backend, min_gap_ms=0)

    assert signaler.trigger(AlarmKind.ANCHOR)
    assert signaler.trigger(AlarmKind.COLLISION)
    await signaler.drain()

    assert backend.open_attempts == 1
    assert signaler.failures == 1
    assert len(backend.vibrations) == 2


async def test_audio_is_retried_after_the_back_off():
    clock = FakeClock()
    backend = RecordingBackend(fail_audio=True)
    signaler = AlarmSignaler(backend, min_gap_ms=0, audio_retry_ms=1000, clock=clock)

    signaler.trigger(AlarmKind.ANCHOR)
    await signaler.drain()
    backend.fail_audio = False
    signaler.trigger(AlarmKind.ANCHOR)
    await signaler.drain()
    assert backend.tones == []

    clock.advance(1000)
    signaler.trigger(AlarmKind.ANCHOR)
    await signaler.drain()
    assert backend.tones == [ALARM_TONES[AlarmKind.ANCHOR]]
    assert signaler.audio_failures == 1
    await signaler.close()


def test_trigger_without_event_loop_is_dropped():
    signaler = AlarmSignaler(RecordingBackend(), min_gap_ms=0)
    assert not signaler.trigger(AlarmKind.ANCHOR)


async def test_close_cancels_pending_alarms():
    backend = SlowBackend()
    signaler = AlarmSignaler(backend, min_gap_ms=0)
    signaler.trigger(AlarmKind.ANCHOR)
    signaler.trigger(AlarmKind.COLLISION)
    assert signaler.pending == 2

    await signaler.close()
    assert signaler.pending == 0
    assert len(backend.tones) == 0
