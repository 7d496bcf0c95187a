"""SeaTrack - Application Configuration."""

import json
import logging
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings

_cfg_logger = logging.getLogger("seatrack.config")


class EngineConfig(BaseModel):
    """Thresholds and timer cadences of the safety engine."""

    # Position gate
    min_update_interval_ms: int = Field(default=1000, ge=0)
    min_movement_m: float = Field(default=2.0, ge=0)

    # Presence
    presence_throttle_ms: int = Field(default=5000, ge=0)

    # Anchor watch
    anchor_alarm_interval_ms: int = Field(default=3000, gt=0)
    anchor_rearm_on_return: bool = False

    # Collision watch
    collision_scan_interval_ms: int = Field(default=3000, gt=0)
    collision_distance_m: float = Field(default=50.0, gt=0)
    collision_min_peer_speed_mps: float = Field(default=0.5, ge=0)
    impact_threshold_mps2: float = Field(default=25.0, gt=0)
    collision_countdown_s: int = Field(default=30, gt=0)
    countdown_tick_ms: int = Field(default=1000, gt=0)

    # Emergency
    sos_rebroadcast_interval_ms: int = Field(default=5000, gt=0)

    # Alarm sink
    alarm_min_gap_ms: int = Field(default=250, ge=0)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Server
    app_name: str = "SeaTrack"
    app_version: str = "1.0.0"
    host: str = "0.0.0.0"
    port: int = 8000
    cors_origins: list[str] = ["http://localhost:5173", "http://localhost:3000"]

    # Identity & radar channel
    vessel_id: str = "local-vessel"
    vessel_label: str = ""
    radar_enabled: bool = True
    offline_mode: bool = False
    radar_channel: str = "radar"
    alarm_backend: str = "log"  # "log" | "null"

    # Supabase (realtime presence + distress records)
    supabase_url: str = ""
    supabase_key: str = ""
    supabase_access_token: Optional[str] = None

    # Redis
    redis_url: str = "redis://localhost:6379"
    redis_stream_key: str = "seatrack:safety"
    use_redis: bool = False  # Set True when Redis is available

    # Feeds
    signalk_url: str = ""  # e.g. ws://10.10.10.1:3000/signalk/v1/stream?subscribe=self
    use_simulator: bool = False
    simulator_start_lat: float = -23.0
    simulator_start_lng: float = -43.2
    weather_enabled: bool = True
    weather_check_interval_s: int = 3600

    # Safety engine
    engine: EngineConfig = EngineConfig()

    model_config = {
        "env_file": ".env",
        "env_prefix": "SEATRACK_",
        "env_nested_delimiter": "__",
    }

    @property
    def realtime_configured(self) -> bool:
        return bool(self.supabase_url and self.supabase_key)


def _load_settings() -> Settings:
    """Load settings, supplementing with credentials.json for Supabase keys."""
    s = Settings()

    creds_path = Path(__file__).resolve().parent.parent / "credentials.json"
    if creds_path.exists():
        try:
            creds = json.loads(creds_path.read_text(encoding="utf-8"))

            if not s.supabase_url:
                s.supabase_url = creds.get("supabase_url", "")
                s.supabase_key = creds.get("supabase_key", "")
                if s.supabase_url:
                    _cfg_logger.info("Supabase credentials loaded from %s", creds_path.name)

            if not s.supabase_access_token:
                s.supabase_access_token = creds.get("access_token") or None
        except Exception as e:
            _cfg_logger.warning("Failed to read credentials.json: %s", e)

    return s


settings = _load_settings()
