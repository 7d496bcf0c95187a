import json

import pytest

from seatrack.feeds.radar_channel import RadarChannel, realtime_url
from seatrack.safety_engine.presence import PeerPresenceRegistry


class FakeSocket:
    def __init__(self):
        self.sent = []

    async def send(self, data):
        self.sent.append(json.loads(data))


@pytest.fixture
def registry():
    return PeerPresenceRegistry("me")


@pytest.fixture
def joined():
    return []


@pytest.fixture
def channel(registry, joined):
    return RadarChannel(
        "wss://example.supabase.co/realtime/v1/websocket?apikey=k&vsn=1.0.0",
        "me",
        access_token="jwt",
        on_upsert=registry.upsert,
        on_remove=registry.remove,
        on_sync=registry.sync,
        on_joined=lambda: joined.append(True),
    )


def frame(event, payload, ref=None, topic="realtime:radar"):
    return json.dumps({"topic": topic, "event": event, "payload": payload, "ref": ref})


def meta(ref, **fields):
    return {"phx_ref": ref, **fields}


def test_realtime_url_switches_to_websocket_scheme():
    assert realtime_url("https://abc.supabase.co/", "key") == \
        "wss://abc.supabase.co/realtime/v1/websocket?apikey=key&vsn=1.0.0"
    assert realtime_url("http://localhost:54321", "key").startswith("ws://localhost:54321/realtime/v1/")


def test_join_frame_uses_vessel_id_as_presence_key(channel):
    msg = json.loads(channel.join_frame())
    assert msg["topic"] == "realtime:radar"
    assert msg["event"] == "phx_join"
    assert msg["payload"]["config"]["presence"] == {"key": "me"}
    assert msg["payload"]["access_token"] == "jwt"
    assert msg["join_ref"] == msg["ref"]


def test_join_reply_marks_channel_joined(channel, joined):
    ref = json.loads(channel.join_frame())["ref"]
    channel.handle_message(frame("phx_reply", {"status": "error", "response": {}}, ref="999"))
    assert not channel.joined

    channel.handle_message(frame("phx_reply", {"status": "ok", "response": {}}, ref=ref))
    assert channel.joined
    assert joined == [True]


def test_presence_state_replaces_registry(channel, registry):
    registry.upsert({"id": "stale", "lat": 1, "lng": 1})
    channel.handle_message(frame("presence_state", {
        "me": {"metas": [meta("r0", lat=0, lng=0)]},
        "boat-2": {"metas": [meta("r1", lat=10.0, lng=20.0, speed=2.0, sos=True)]},
        "boat-3": {"metas": [meta("r2", id="boat-3", lat=11.0, lng=21.0)]},
    }))
    peers = {p.id: p for p in registry.snapshot()}
    assert set(peers) == {"boat-2", "boat-3"}
    assert peers["boat-2"].distress
    assert peers["boat-2"].speed_mps == 2.0


def test_diff_joins_and_leaves(channel, registry):
    channel.handle_message(frame("presence_diff", {
        "joins": {"boat-2": {"metas": [meta("r1", lat=10.0, lng=20.0)]}},
        "leaves": {},
    }))
    assert registry.get("boat-2").lat == 10.0

    # Re-track: new meta supersedes the old one
    channel.handle_message(frame("presence_diff", {
        "joins": {"boat-2": {"metas": [meta("r2", phx_ref_prev="r1", lat=10.5, lng=20.0)]}},
        "leaves": {"boat-2": {"metas": [meta("r1", lat=10.0, lng=20.0)]}},
    }))
    assert registry.get("boat-2").lat == 10.5

    channel.handle_message(frame("presence_diff", {
        "joins": {},
        "leaves": {"boat-2": {"metas": [meta("r2")]}},
    }))
    assert registry.get("boat-2") is None


def test_peer_with_two_connections_stays_until_both_leave(channel, registry):
    channel.handle_message(frame("presence_diff", {
        "joins": {"boat-2": {"metas": [meta("a", lat=1.0, lng=1.0), meta("b", lat=2.0, lng=2.0)]}},
    }))
    channel.handle_message(frame("presence_diff", {"leaves": {"boat-2": {"metas": [meta("b")]}}}))
    assert registry.get("boat-2").lat == 1.0
    channel.handle_message(frame("presence_diff", {"leaves": {"boat-2": {"metas": [meta("a")]}}}))
    assert len(registry) == 0


def test_frames_for_other_topics_are_ignored(channel, registry):
    assert channel.handle_message(frame("presence_state", {"x": {"metas": [meta("r")]}}, topic="realtime:other")) is None
    assert channel.handle_message("not json") is None
    assert len(registry) == 0


async def test_track_only_sends_once_joined(channel):
    ws = FakeSocket()
    await channel.track({"id": "me"})

    channel._ws = ws
    ref = json.loads(channel.join_frame())["ref"]
    channel.handle_message(frame("phx_reply", {"status": "ok"}, ref=ref))
    await channel.track({"id": "me", "sos": True})

    assert len(ws.sent) == 1
    msg = ws.sent[0]
    assert msg["event"] == "presence"
    assert msg["payload"] == {"type": "presence", "event": "track", "payload": {"id": "me", "sos": True}}
    assert msg["join_ref"] == ref


def test_heartbeat_goes_to_the_phoenix_topic(channel):
    msg = json.loads(channel.heartbeat_frame())
    assert (msg["topic"], msg["event"]) == ("phoenix", "heartbeat")
