import asyncio

from conftest import FakeTransport

from seatrack.backend.models import PeerVessel, Position
from seatrack.safety_engine.presence import PeerPresenceRegistry, PresenceBroadcaster, peer_from_presence


def test_peer_from_presence_reads_client_fields():
    peer = peer_from_presence({
        "id": "boat-2", "lat": 10.0, "lng": 20.0, "heading": 370, "speed": 2.0,
        "sos": True, "isAnchored": True, "updatedAt": 1234, "email": "skipper@example.org",
    })
    assert peer.id == "boat-2"
    assert peer.heading_deg == 10.0
    assert peer.distress and peer.anchored
    assert peer.last_updated_ms == 1234
    assert peer.label == "skipper@example.org"


def test_malformed_coordinates_mean_no_fix():
    peer = peer_from_presence({"id": "x", "lat": "north", "lng": 500, "speed": "fast"}, now_ms=5.0)
    assert peer is not None
    assert not peer.has_fix
    assert peer.speed_mps == 0.0
    assert peer.last_updated_ms == 5.0


def test_presence_without_id_is_ignored():
    registry = PeerPresenceRegistry("me")
    assert registry.upsert({"lat": 1, "lng": 2}) is None
    assert len(registry) == 0


def test_registry_never_contains_self():
    registry = PeerPresenceRegistry("me")
    registry.upsert({"id": "me", "lat": 1, "lng": 2})
    registry.sync([{"id": "me", "lat": 1, "lng": 2}, {"id": "other", "lat": 1, "lng": 2}])
    assert [p.id for p in registry.snapshot()] == ["other"]


def test_upsert_replaces_and_remove_deletes():
    registry = PeerPresenceRegistry("me")
    registry.upsert(PeerVessel(id="a", lat=1, lng=1, speed_mps=1))
    registry.upsert(PeerVessel(id="a", lat=2, lng=2, speed_mps=3))
    assert len(registry) == 1
    assert registry.get("a").speed_mps == 3

    assert registry.remove("a")
    assert not registry.remove("a")


def test_sync_replaces_the_whole_set():
    registry = PeerPresenceRegistry("me")
    registry.upsert({"id": "stale", "lat": 1, "lng": 1})
    registry.sync([{"id": "fresh", "lat": 2, "lng": 2}])
    assert [p.id for p in registry.snapshot()] == ["fresh"]


def _position(lat=10.0):
    return Position(lat=lat, lng=20.0, accuracy_m=5, speed_mps=1.5, heading_deg=90, captured_at_ms=0)


async def test_broadcast_payload_uses_client_field_names(clock):
    transport = FakeTransport()
    b = PresenceBroadcaster("me", transport, throttle_ms=5000, label="Sea Otter", clock=clock)

    assert b.maybe_broadcast(lambda: b.build(_position(), distress=True, anchored=True))
    await asyncio.sleep(0)

    payload = transport.sent[0]
    assert payload["id"] == "me"
    assert payload["sos"] is True
    assert payload["isAnchored"] is True
    assert payload["updatedAt"] == clock.now
    assert payload["label"] == "Sea Otter"


async def test_broadcasts_are_throttled(clock):
    transport = FakeTransport()
    b = PresenceBroadcaster("me", transport, throttle_ms=5000, clock=clock)
    state = lambda: b.build(_position(), distress=False, anchored=False)  # noqa: E731

    assert b.maybe_broadcast(state)
    clock.advance(1000)
    assert not b.maybe_broadcast(state)
    clock.advance(4000)
    assert b.maybe_broadcast(state)
    await asyncio.sleep(0)
    assert len(transport.sent) == 2


async def test_urgent_change_inside_window_is_sent_when_window_ends():
    transport = FakeTransport()
    b = PresenceBroadcaster("me", transport, throttle_ms=30)
    distress = {"on": False}
    state = lambda: b.build(_position(), distress=distress["on"], anchored=False)  # noqa: E731

    assert b.maybe_broadcast(state)
    distress["on"] = True
    assert not b.maybe_broadcast(state, urgent=True)
    await asyncio.sleep(0.1)

    assert len(transport.sent) == 2
    assert transport.sent[-1]["sos"] is True
    await b.close()


def test_nothing_is_sent_without_location_or_when_disabled(clock):
    transport = FakeTransport()
    b = PresenceBroadcaster("me", transport, clock=clock, is_enabled=lambda: False)
    assert not b.maybe_broadcast(lambda: b.build(_position(), distress=False, anchored=False))

    b2 = PresenceBroadcaster("me", transport, clock=clock)
    assert not b2.maybe_broadcast(lambda: b2.build(None, distress=False, anchored=False))
    assert transport.sent == []


async def test_transport_failure_is_logged_not_raised(clock):
    b = PresenceBroadcaster("me", FakeTransport(fail=True), clock=clock)
    assert b.maybe_broadcast(lambda: b.build(_position(), distress=False, anchored=False))
    await asyncio.sleep(0)
    await b.close()
