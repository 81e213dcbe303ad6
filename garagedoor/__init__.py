"""Garage door state reconciliation core."""

from .errors import GarageDoorError, ConfigError, DecodeError, TransportError
from .state import DoorState, BridgeState, StateStore
from .telemetry import SensorSnapshot, TelemetryReading, TelemetryDecoder, encode_sensor_payload
from .actuator import MotorActuator
from .reconciler import Reconciler, TargetSet, TelemetryUpdate
