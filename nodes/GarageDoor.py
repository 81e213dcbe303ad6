"""
garage-poly-pg3x NodeServer/Plugin for EISY/Polisy

(C) 2025

node GarageDoor

Garage door opener driven by a single motor pulse.
Current state comes only from relay board telemetry; target state comes only
from the ISY. The node never touches MQTT itself: targets are handed to the
reconciler, which decides whether to pulse the motor.
"""

# std libraries
from typing import Optional

# external libraries
from udi_interface import Node, LOGGER

# personal libraries
from garagedoor import DoorState, StateStore, Reconciler, TargetSet, SensorSnapshot


class GarageDoor(Node):
    """Node representing the bridged garage door."""
    id = 'garagedoor'

    def __init__(self, polyglot, primary, address, name,
                 store: StateStore, reconciler: Reconciler, open_field: str = "input2"):
        """Initializes the GarageDoor node.

        Args:
            polyglot: Reference to the Polyglot interface.
            primary: The address of the parent node.
            address: The address of this node.
            name: The name of this node.
            store: StateStore shared with the reconciler (read only here).
            reconciler: Reconciler receiving target changes.
            open_field: sensor input reported on GV2 for diagnostics.
        """
        super().__init__(polyglot, primary, address, name)
        self.controller = self.poly.getNode(self.primary)
        self.lpfx = f'{address}:{name}'
        self.store = store
        self.reconciler = reconciler
        self.open_field = open_field
        self.sensors: Optional[SensorSnapshot] = None


    def on_set_target(self, value) -> bool:
        """Accepts a new target from the ISY and hands it to the reconciler.

        Args:
            value: DoorState or ISY index (0 closed, 1 open).

        Returns:
            bool: False if the value was rejected.
        """
        try:
            target = value if isinstance(value, DoorState) else DoorState.from_index(value)
            if target is DoorState.UNKNOWN:
                raise ValueError("target cannot be UNKNOWN")
        except ValueError as ex:
            LOGGER.error(f"{self.lpfx} Invalid target: {value}, {ex}")
            return False
        self.setDriver("GV0", target.index)
        self.reconciler.submit(TargetSet(target))
        LOGGER.debug(f"{self.lpfx} Exit on_set_target")
        return True


    def on_get_target(self) -> DoorState:
        return self.store.target


    def on_set_current(self, value):
        """Current state is telemetry-derived; writes from the ISY are ignored."""
        LOGGER.info(f"{self.lpfx} ignoring current state write: {value}")


    def on_get_current(self) -> DoorState:
        return self.store.current


    def push_current_state(self, state: DoorState):
        """Reports a telemetry-driven change of the current state to the ISY."""
        LOGGER.info(f"{self.lpfx} current: {state.name}")
        self.setDriver("ST", state.index)
        if state is DoorState.OPEN:
            self.reportCmd("DON")
        elif state is DoorState.CLOSED:
            self.reportCmd("DOF")


    def push_target_state(self, state: DoorState):
        """Reports the target the reconciler stored to the ISY."""
        LOGGER.debug(f"{self.lpfx} target: {state.name}")
        self.setDriver("GV0", state.index)


    def update_diagnostics(self, sensors: SensorSnapshot):
        """Keeps the last relay board snapshot; reports the designated input."""
        LOGGER.debug(f"{self.lpfx} sensors: {sensors.as_wire()}")
        self.sensors = sensors
        self.setDriver("GV2", 1 if sensors.is_active(self.open_field) else 0)


    def dr_open(self, command):
        """Handles the 'OPEN' command to open the garage door."""
        LOGGER.info(f"{self.lpfx} {command}")
        self.on_set_target(DoorState.OPEN)
        LOGGER.debug(f"{self.lpfx} Exit dr_open")


    def dr_close(self, command):
        """Handles the 'CLOSE' command to close the garage door."""
        LOGGER.info(f"{self.lpfx} {command}")
        self.on_set_target(DoorState.CLOSED)
        LOGGER.debug(f"{self.lpfx} Exit dr_close")


    def set_target(self, command):
        """Handles the 'SETTGT' command, value is the target index."""
        LOGGER.info(f"{self.lpfx} {command}")
        self.on_set_target(command.get("value"))
        LOGGER.debug(f"{self.lpfx} Exit set_target")


    def set_current(self, command):
        LOGGER.info(f"{self.lpfx} {command}")
        self.on_set_current(command.get("value"))


    def query(self, command=None):
        """Handles the 'QUERY' command from ISY.

        Refreshes drivers from the store and reports them.
        """
        LOGGER.info(f"{self.lpfx} {command}")
        state = self.store.snapshot()
        self.setDriver("ST", state.current.index, report=False)
        self.setDriver("GV0", state.target.index, report=False)
        self.setDriver("GV1", 0, report=False)
        self.reportDrivers()
        LOGGER.debug(f"{self.lpfx} Exit query")


    hint = '0x01120100'
    # home, barrier, garage door
    # Hints See: https://github.com/UniversalDevicesInc/hints

    # UOMs of interest:
    # 2: boolean
    # 25: index
    #
    # ST: current door state
    # GV0: target door state
    # GV1: obstruction, not wired, always 0
    # GV2: designated sensor input active
    drivers = [
        {"driver": "ST", "value": DoorState.CLOSED.index, "uom": 25, "name": "Current Door State"},
        {"driver": "GV0", "value": DoorState.CLOSED.index, "uom": 25, "name": "Target Door State"},
        {"driver": "GV1", "value": 0, "uom": 2, "name": "Obstruction"},
        {"driver": "GV2", "value": 0, "uom": 2, "name": "Door Input"},
    ]

    commands = {
        "QUERY": query,
        "OPEN": dr_open,
        "CLOSE": dr_close,
        "DON": dr_open,
        "DOF": dr_close,
        "SETTGT": set_target,
        "SETCUR": set_current,
    }
