"""
garage-poly-pg3x NodeServer/Plugin for EISY/Polisy

(C) 2025

Exception hierarchy for the garage door bridge.
"""


class GarageDoorError(Exception):
    """Base exception for all bridge errors."""


class ConfigError(GarageDoorError):
    """Invalid or missing configuration."""


class DecodeError(GarageDoorError):
    """Telemetry payload could not be decoded."""

    def __init__(self, message: str, topic: str = "", payload=None):
        self.topic = topic
        self.payload = payload
        super().__init__(message)


class TransportError(GarageDoorError):
    """MQTT-level failure (connect, subscribe, publish)."""
