"""
garage-poly-pg3x NodeServer/Plugin for EISY/Polisy

(C) 2025

Door state enum and the lock-guarded store holding current & target state.
"""

# std libraries
import enum
from threading import Lock
from typing import NamedTuple

# external libraries
from udi_interface import LOGGER


class DoorState(enum.Enum):
    """Discrete door position.

    The value is the ISY index (uom 25) reported on the node drivers.
    UNKNOWN is only valid for the observed (current) side.
    """
    CLOSED = 0
    OPEN = 1
    UNKNOWN = 2

    @property
    def index(self) -> int:
        return self.value

    @classmethod
    def from_index(cls, value) -> "DoorState":
        """Parse a hub index (int or numeric string) into a DoorState.

        Raises:
            ValueError: value is not a known index.
        """
        try:
            return cls(int(value))
        except (TypeError, ValueError):
            raise ValueError(f"Invalid door state index: {value!r}") from None


class BridgeState(NamedTuple):
    """Immutable (current, target) pair."""
    current: DoorState
    target: DoorState

    @property
    def settled(self) -> bool:
        return self.current == self.target


class StateStore:
    """Single point of mutation for the two door state variables.

    Both fields are guarded by one lock so snapshot() never sees a
    partially updated pair. Setters return the previous value so callers
    can tell a real transition from a repeated report.
    """

    def __init__(self, current: DoorState = DoorState.CLOSED,
                 target: DoorState = DoorState.CLOSED):
        self._check_target(target)
        self._lock = Lock()
        self._current = current
        self._target = target

    @staticmethod
    def _check_target(state: DoorState):
        if not isinstance(state, DoorState) or state is DoorState.UNKNOWN:
            raise ValueError(f"Target door state must be OPEN or CLOSED, got {state!r}")

    @property
    def current(self) -> DoorState:
        with self._lock:
            return self._current

    @property
    def target(self) -> DoorState:
        with self._lock:
            return self._target

    def set_current(self, state: DoorState) -> DoorState:
        if not isinstance(state, DoorState):
            raise ValueError(f"Current door state must be a DoorState, got {state!r}")
        with self._lock:
            previous, self._current = self._current, state
        if previous != state:
            LOGGER.debug(f"current {previous.name} -> {state.name}")
        return previous

    def set_target(self, state: DoorState) -> DoorState:
        self._check_target(state)
        with self._lock:
            previous, self._target = self._target, state
        LOGGER.debug(f"target {previous.name} -> {state.name}")
        return previous

    def snapshot(self) -> BridgeState:
        with self._lock:
            return BridgeState(self._current, self._target)
