"""
garage-poly-pg3x NodeServer/Plugin for EISY/Polisy

(C) 2025

Reconciler

Decides when the motor must be pulsed. The hub (target) and the relay
board (current) are independent producers; both only enqueue events and a
single consumer thread applies them through handle(), which holds all of
the transition logic.

    TargetSet        store target, pulse once if target != current
    TelemetryUpdate  store current, push to hub if it changed, never pulse

There is no retry after a pulse. If the door does not move, the target
stays unresolved until the next telemetry or the next target.
"""

# std libraries
import queue
from threading import Thread
from typing import Callable, NamedTuple, Optional, Union

# external libraries
from udi_interface import LOGGER

# personal libraries
from .actuator import MotorActuator
from .state import DoorState, StateStore
from .telemetry import TelemetryReading

STOP_TIMEOUT = 5.0


class TargetSet(NamedTuple):
    target: DoorState


class TelemetryUpdate(NamedTuple):
    reading: TelemetryReading


Event = Union[TargetSet, TelemetryUpdate]


class Reconciler:
    """Single consumer of bridge events.

    Args:
        store: the StateStore it owns writes to.
        actuator: MotorActuator pulsed on a mismatching target.
        on_current_changed: called with the new DoorState whenever telemetry
            changes the current state.
        on_target_changed: called with the stored target after every
            TargetSet.
    """

    def __init__(self, store: StateStore, actuator: MotorActuator,
                 on_current_changed: Optional[Callable[[DoorState], None]] = None,
                 on_target_changed: Optional[Callable[[DoorState], None]] = None):
        self.store = store
        self.actuator = actuator
        self.on_current_changed = on_current_changed
        self.on_target_changed = on_target_changed
        self.events: "queue.Queue[Optional[Event]]" = queue.Queue()
        self._thread: Optional[Thread] = None

    def handle(self, event: Event) -> bool:
        """Apply one event.

        Returns:
            bool: True if a pulse was issued.
        """
        if isinstance(event, TargetSet):
            return self._target_set(event.target)
        if isinstance(event, TelemetryUpdate):
            self._telemetry(event.reading)
            return False
        raise TypeError(f"Unknown reconciler event: {event!r}")

    def _target_set(self, target: DoorState) -> bool:
        self.store.set_target(target)
        state = self.store.snapshot()
        if self.on_target_changed is not None:
            self.on_target_changed(state.target)
        if state.settled:
            LOGGER.info(f"target {target.name} already satisfied")
            return False
        LOGGER.info(f"pulse motor: {state.current.name} -> {state.target.name}")
        self.actuator.pulse()
        return True

    def _telemetry(self, reading: TelemetryReading):
        previous = self.store.set_current(reading.position)
        if previous == reading.position:
            LOGGER.debug(f"{reading.topic}: door still {previous.name}")
            return
        LOGGER.info(f"{reading.topic}: door {previous.name} -> {reading.position.name}")
        if self.on_current_changed is not None:
            self.on_current_changed(reading.position)

    def submit(self, event: Event):
        """Queue an event for the consumer thread; never blocks."""
        LOGGER.debug(f"submit {event}")
        self.events.put_nowait(event)

    def start(self):
        if self.running:
            return
        self._thread = Thread(target=self._run, name="reconciler", daemon=True)
        self._thread.start()
        LOGGER.info("Reconciler started")

    def stop(self, timeout: float = STOP_TIMEOUT):
        if not self.running:
            return
        self.events.put_nowait(None)
        self._thread.join(timeout=timeout)
        self._thread = None
        LOGGER.info("Reconciler stopped")

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _run(self):
        while True:
            event = self.events.get()
            try:
                if event is None:
                    return
                self.handle(event)
            except Exception as ex:
                LOGGER.error(f"Failed to handle {event}: {ex}", exc_info=True)
            finally:
                self.events.task_done()
