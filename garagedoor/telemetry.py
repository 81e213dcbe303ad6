"""
garage-poly-pg3x NodeServer/Plugin for EISY/Polisy

(C) 2025

Telemetry decoder

Turns raw MQTT payloads from the relay board into door positions.
Two payload shapes are understood:

  legacy topic   plain digit, "1" = open, anything else = closed
  sensor topic   JSON snapshot of the relay board, e.g.
                 {"relayA": "1", "relayB": "1", "input1": "1", "input2": "0"}

Relay board inputs are idle-high, so a field is "active" when it reads "0".
Only one designated input decides the door position; the rest are kept
for diagnostics.
"""

# std libraries
from typing import NamedTuple, Optional, Union

# external libraries
from paho.mqtt.client import topic_matches_sub
from pydantic import BaseModel, ConfigDict, Field, ValidationError

# personal libraries
from .errors import ConfigError, DecodeError
from .state import DoorState

# Constants
ACTIVE = "0"
LEGACY_OPEN = "1"
SENSOR_FIELDS = ("relayA", "relayB", "input1", "input2")
DEFAULT_OPEN_FIELD = "input2"


class SensorSnapshot(BaseModel):
    """Strict schema of the structured relay board payload."""

    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        populate_by_name=True,
        strict=True,
    )

    relay_a: str = Field(alias="relayA")
    relay_b: str = Field(alias="relayB")
    input1: str = Field(alias="input1")
    input2: str = Field(alias="input2")

    def field(self, name: str) -> str:
        """Return a field by its wire name (e.g. 'relayA')."""
        return getattr(self, _ATTR_BY_WIRE_NAME[name])

    def is_active(self, name: str) -> bool:
        return self.field(name) == ACTIVE

    def as_wire(self) -> dict:
        return self.model_dump(by_alias=True)


_ATTR_BY_WIRE_NAME = {
    info.alias: attr for attr, info in SensorSnapshot.model_fields.items()
}


class TelemetryReading(NamedTuple):
    """One decoded telemetry message."""
    topic: str
    position: DoorState
    sensors: Optional[SensorSnapshot] = None


def encode_sensor_payload(snapshot: SensorSnapshot) -> bytes:
    """Wire form of a sensor snapshot, as the relay board publishes it."""
    return snapshot.model_dump_json(by_alias=True).encode("utf-8")


class TelemetryDecoder:
    """Maps (topic, payload) pairs from the subscribed topics to readings.

    Args:
        legacy_topic: subscription pattern carrying a single digit.
        sensor_topic: subscription pattern carrying JSON snapshots.
        open_field: wire name of the input wired to the door sensor.
        open_when_active: polarity of open_field; True means an active
            ("0") input reports the door open.
    """

    def __init__(self, legacy_topic: Optional[str], sensor_topic: Optional[str],
                 open_field: str = DEFAULT_OPEN_FIELD, open_when_active: bool = True):
        if open_field not in SENSOR_FIELDS:
            raise ConfigError(f"open_field must be one of {SENSOR_FIELDS}, got {open_field!r}")
        self.legacy_topic = legacy_topic
        self.sensor_topic = sensor_topic
        self.open_field = open_field
        self.open_when_active = open_when_active

    @property
    def topics(self):
        return [t for t in (self.legacy_topic, self.sensor_topic) if t]

    def decode(self, topic: str, payload: Union[bytes, str]) -> Optional[TelemetryReading]:
        """Decode one message.

        Returns:
            The reading, or None when topic is not one of ours.

        Raises:
            DecodeError: payload on a known topic is malformed.
        """
        # sensor first, a legacy wildcard may also cover the sensor topic
        if self.sensor_topic and topic_matches_sub(self.sensor_topic, topic):
            return self._decode_sensor(topic, payload)
        if self.legacy_topic and topic_matches_sub(self.legacy_topic, topic):
            return self._decode_legacy(topic, payload)
        return None

    def position_of(self, snapshot: SensorSnapshot) -> DoorState:
        active = snapshot.is_active(self.open_field)
        return DoorState.OPEN if active == self.open_when_active else DoorState.CLOSED

    def _decode_legacy(self, topic: str, payload) -> TelemetryReading:
        text = _as_text(topic, payload).strip()
        position = DoorState.OPEN if text == LEGACY_OPEN else DoorState.CLOSED
        return TelemetryReading(topic, position)

    def _decode_sensor(self, topic: str, payload) -> TelemetryReading:
        text = _as_text(topic, payload)
        try:
            snapshot = SensorSnapshot.model_validate_json(text)
        except ValidationError as ex:
            raise DecodeError(f"Invalid sensor payload on {topic}: {ex.errors()[0]['msg']}",
                              topic, payload) from ex
        return TelemetryReading(topic, self.position_of(snapshot), snapshot)


def _as_text(topic: str, payload) -> str:
    if isinstance(payload, str):
        return payload
    try:
        return bytes(payload).decode("utf-8")
    except (TypeError, UnicodeDecodeError) as ex:
        raise DecodeError(f"Payload on {topic} is not UTF-8 text", topic, payload) from ex
