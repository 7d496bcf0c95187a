"""SeaTrack - Safety Engine Errors."""


class SafetyEngineError(Exception):
    """Base class for errors raised by the safety engine."""


class InvalidCommand(SafetyEngineError):
    """A user command was rejected; engine state is unchanged."""


class SensorUnavailable(SafetyEngineError):
    """A sensor failed or permission was denied; no further samples will be emitted."""

    def __init__(self, sensor: str, reason: str = ""):
        self.sensor = sensor
        self.reason = reason
        super().__init__(f"{sensor} unavailable: {reason}" if reason else f"{sensor} unavailable")
