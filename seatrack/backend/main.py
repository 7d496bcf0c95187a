"""
SeaTrack - Main FastAPI Application
Navigational safety service: anchor watch, collision watch and SOS
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, HTTPException, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from seatrack.backend.config import settings
from seatrack.backend.models import (
    DropAnchorRequest,
    MotionSample,
    RawPositionSample,
    SafetyEvent,
    SensorErrorRequest,
    StopRecordingRequest,
)
from seatrack.backend.redis_manager import SafetyEventStream
from seatrack.backend.websocket_manager import ConnectionManager
from seatrack.feeds.distress_store import DistressStore
from seatrack.feeds.radar_channel import RadarChannel, realtime_url
from seatrack.feeds.signalk_feed import SignalKFeed
from seatrack.feeds.simulated_feed import SimulatedFeed
from seatrack.feeds.weather_feed import WeatherFeed
from seatrack.safety_engine.alarms import ALARM_BACKENDS, AlarmSignaler
from seatrack.safety_engine.engine import SafetyEngine
from seatrack.safety_engine.errors import InvalidCommand
from seatrack.safety_engine.geomath import distance_meters, initial_bearing

# ─── Logging ───────────────────────────────────────
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s │ %(name)-20s │ %(levelname)-7s │ %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("seatrack.main")

# ─── Globals ───────────────────────────────────────
stream_manager = SafetyEventStream(
    redis_url=settings.redis_url,
    stream_key=settings.redis_stream_key,
    use_redis=settings.use_redis,
)
ws_manager = ConnectionManager()

# Built per application lifespan
engine: Optional[SafetyEngine] = None


def _radar_enabled() -> bool:
    return settings.radar_enabled


def _offline() -> bool:
    return settings.offline_mode


async def on_safety_event(event: SafetyEvent):
    """Fan a safety event out to the stream and every UI client."""
    await stream_manager.publish(event)
    await ws_manager.broadcast("safety_event", event.model_dump(mode="json"))
    if engine is not None:
        await ws_manager.broadcast("state", engine.snapshot().model_dump(mode="json"))


def build_engine() -> tuple[SafetyEngine, Optional[RadarChannel], Optional[DistressStore]]:
    """Wire the engine to the radar channel and distress store when configured."""
    channel = None
    store = None
    if settings.realtime_configured:
        store = DistressStore(
            settings.supabase_url,
            settings.supabase_key,
            access_token=settings.supabase_access_token,
            is_offline=_offline,
        )

    backend_cls = ALARM_BACKENDS.get(settings.alarm_backend)
    if backend_cls is None:
        raise ValueError(f"Unknown alarm backend {settings.alarm_backend!r}; expected one of {sorted(ALARM_BACKENDS)}")

    new_engine = SafetyEngine(
        settings.vessel_id,
        signaler=AlarmSignaler(backend_cls(), min_gap_ms=settings.engine.alarm_min_gap_ms),
        presence_transport=None,
        distress_store=store,
        is_radar_enabled=_radar_enabled,
        is_offline=_offline,
        on_event=on_safety_event,
        config=settings.engine,
        vessel_label=settings.vessel_label,
    )

    if settings.realtime_configured:
        channel = RadarChannel(
            realtime_url(settings.supabase_url, settings.supabase_key),
            settings.vessel_id,
            channel=settings.radar_channel,
            access_token=settings.supabase_access_token,
            on_upsert=new_engine.on_presence_upsert,
            on_remove=new_engine.on_presence_remove,
            on_sync=new_engine.on_presence_sync,
            on_joined=new_engine.on_channel_joined,
        )
        new_engine.broadcaster.transport = channel
    return new_engine, channel, store


async def run_position_feed(feed: SimulatedFeed):
    async for samples in feed.start():
        for sample in samples:
            engine.on_position_sample(sample)


async def run_weather_feed(feed: WeatherFeed):
    async for alerts in feed.start():
        for alert in alerts:
            engine.raise_weather_alert(alert)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: start engine and feeds on startup, stop on shutdown."""
    global engine
    logger.info("═══════════════════════════════════════════════")
    logger.info("  SEATRACK - Navigational Safety Engine        ")
    logger.info("  Version %s  vessel=%s", settings.app_version, settings.vessel_id)
    logger.info("═══════════════════════════════════════════════")

    await stream_manager.connect()
    engine, channel, store = build_engine()
    await engine.start()

    tasks = []
    feeds = []
    if channel is not None and settings.radar_enabled and not settings.offline_mode:
        tasks.append(asyncio.create_task(channel.run()))
        logger.info("Started radar channel: %s", settings.radar_channel)
    elif not settings.realtime_configured:
        logger.info("Radar channel disabled (Supabase not configured)")

    if settings.signalk_url:
        signalk = SignalKFeed(
            settings.signalk_url,
            on_sample=engine.on_position_sample,
            on_error=lambda reason: engine.on_sensor_error(reason, "gps"),
            on_recovered=lambda: engine.resume_sensor("gps"),
        )
        feeds.append(signalk)
        tasks.append(asyncio.create_task(signalk.run()))
        logger.info("Started Signal K feed: %s", settings.signalk_url)

    if settings.use_simulator:
        simulator = SimulatedFeed(settings.simulator_start_lat, settings.simulator_start_lng)
        feeds.append(simulator)
        tasks.append(asyncio.create_task(run_position_feed(simulator)))
        logger.info("Started simulated position feed")

    if settings.weather_enabled:
        weather = WeatherFeed(
            get_position=lambda: engine.position,
            is_offline=_offline,
            interval=settings.weather_check_interval_s,
        )
        feeds.append(weather)
        tasks.append(asyncio.create_task(run_weather_feed(weather)))
        logger.info("Started weather feed (every %ss)", settings.weather_check_interval_s)

    yield

    # Shutdown
    logger.info("Shutting down SeaTrack...")
    for feed in feeds:
        await feed.stop()
    if channel is not None:
        await channel.stop()
    for task in tasks:
        task.cancel()
    await asyncio.gather(*tasks, return_exceptions=True)
    await engine.close()
    if store is not None:
        await store.close()
    await stream_manager.close()
    engine = None


# ─── FastAPI App ───────────────────────────────────
app = FastAPI(
    title="SeaTrack",
    description="Real-time navigational safety engine",
    version=settings.app_version,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(InvalidCommand)
async def invalid_command_handler(request: Request, exc: InvalidCommand):
    return JSONResponse(status_code=409, content={"error": str(exc)})


def _engine() -> SafetyEngine:
    if engine is None:
        raise HTTPException(status_code=503, detail="Safety engine not running")
    return engine


def _state() -> dict:
    return _engine().snapshot().model_dump(mode="json")


# ─── REST Endpoints ───────────────────────────────
@app.get("/")
async def root():
    return {
        "name": settings.app_name,
        "version": settings.app_version,
        "status": "operational" if engine is not None else "stopped",
        "vessel_id": settings.vessel_id,
        "event_stream": stream_manager.backend,
        "ws_clients": ws_manager.connection_count,
    }


@app.get("/api/state")
async def get_state():
    """Full engine snapshot: position, anchor, collision, emergency, weather, peers."""
    return _state()


@app.get("/api/peers")
async def get_peers():
    """Peers on the radar with range and bearing from our current fix."""
    eng = _engine()
    own = eng.position
    peers = []
    for peer in eng.registry.snapshot():
        entry = peer.model_dump(mode="json")
        if own is not None and peer.has_fix:
            entry["distance_m"] = round(distance_meters(own, peer), 1)
            entry["bearing_deg"] = round(initial_bearing(own, peer), 1)
        else:
            entry["distance_m"] = None
            entry["bearing_deg"] = None
        peers.append(entry)
    peers.sort(key=lambda p: (p["distance_m"] is None, p["distance_m"] or 0))
    return {
        "count": len(peers),
        "peers": peers,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@app.get("/api/events/recent")
async def get_recent_events(count: int = 100, kind: Optional[str] = None):
    count = max(1, min(count, 1000))
    events = await stream_manager.recent(count, kind=kind)
    return {"count": len(events), "events": events}


# ── Sensor samples ──────────────────────────────
@app.post("/api/samples/position")
async def post_position(sample: RawPositionSample):
    position = _engine().on_position_sample(sample)
    return {
        "accepted": position is not None,
        "position": position.model_dump(mode="json") if position else None,
    }


@app.post("/api/samples/motion")
async def post_motion(sample: MotionSample):
    impact = _engine().on_motion_sample(sample)
    return {"impact": impact, "magnitude": round(sample.magnitude, 2)}


@app.post("/api/samples/sensor-error")
async def post_sensor_error(body: SensorErrorRequest):
    err = _engine().on_sensor_error(body.reason, body.sensor)
    return {"sensor": err.sensor, "reason": err.reason, "state": _state()}


# ── Commands ────────────────────────────────────
@app.post("/api/anchor/drop")
async def drop_anchor(body: DropAnchorRequest):
    _engine().drop_anchor(body.radius_m, body.lat, body.lng)
    return _state()


@app.post("/api/anchor/lift")
async def lift_anchor():
    _engine().lift_anchor()
    return _state()


@app.post("/api/anchor/acknowledge")
async def acknowledge_anchor():
    _engine().acknowledge_anchor()
    return _state()


@app.post("/api/emergency/toggle")
async def toggle_emergency():
    _engine().toggle_emergency()
    return _state()


@app.post("/api/emergency/dismiss")
async def dismiss_emergency():
    _engine().dismiss_emergency()
    return _state()


@app.post("/api/collision/dismiss")
async def dismiss_collision():
    _engine().dismiss_collision_countdown()
    return _state()


@app.post("/api/recording/start")
async def start_recording():
    _engine().start_recording()
    return _state()


@app.post("/api/recording/stop")
async def stop_recording(body: Optional[StopRecordingRequest] = None):
    track = _engine().stop_recording(body.name if body else "")
    return {"track": track.model_dump(mode="json") if track else None}


@app.post("/api/weather/clear")
async def clear_weather():
    _engine().clear_weather_alert()
    return _state()


# ─── WebSocket Endpoint ───────────────────────────
@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    """Initial snapshot, then every safety event followed by a fresh snapshot."""
    await ws_manager.connect(websocket)
    await ws_manager.send_to(websocket, "initial_state", _state() if engine is not None else None)

    try:
        while True:
            data = await websocket.receive_text()
            logger.debug("Client message: %s", data)
    except WebSocketDisconnect:
        ws_manager.disconnect(websocket)


# ─── Run ───────────────────────────────────────────
if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "seatrack.backend.main:app",
        host=settings.host,
        port=settings.port,
    )
