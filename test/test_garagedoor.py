"""
Comprehensive test suite for GarageDoor node.

Tests cover:
- Initialization
- Target set/get from the ISY (commands and direct calls)
- Current state writes ignored, reads from the store
- Push updates of the current state
- Sensor diagnostics
- Query
"""

import pytest
from unittest.mock import Mock
from nodes.GarageDoor import GarageDoor
from garagedoor import DoorState, StateStore, TargetSet, SensorSnapshot


@pytest.fixture
def mock_polyglot():
    """Create a mock polyglot interface."""
    poly = Mock()
    poly.getNode = Mock()
    poly.db_getNodeDrivers = Mock(return_value=[])
    poly.subscribe = Mock()
    return poly


@pytest.fixture
def store():
    return StateStore()


@pytest.fixture
def reconciler():
    return Mock()


@pytest.fixture
def door(mock_polyglot, store, reconciler):
    d = GarageDoor(mock_polyglot, "controller", "garage", "Garage Door", store, reconciler)
    d.setDriver = Mock()
    d.reportCmd = Mock()
    d.reportDrivers = Mock()
    return d


class TestGarageDoorInitialization:
    """Tests for GarageDoor initialization."""

    def test_initialization_basic(self, mock_polyglot, store, reconciler):
        controller = Mock()
        mock_polyglot.getNode.return_value = controller

        d = GarageDoor(mock_polyglot, "controller", "garage", "Garage Door", store, reconciler)

        assert d.id == "garagedoor"
        assert d.address == "garage"
        assert d.name == "Garage Door"
        assert d.lpfx == "garage:Garage Door"
        assert d.controller == controller
        assert d.store is store
        assert d.reconciler is reconciler
        assert d.open_field == "input2"
        assert d.sensors is None

    def test_drivers(self):
        drivers = {d["driver"]: d for d in GarageDoor.drivers}

        assert set(drivers) == {"ST", "GV0", "GV1", "GV2"}
        assert drivers["ST"]["uom"] == 25
        assert drivers["GV0"]["uom"] == 25
        assert drivers["GV1"]["value"] == 0

    def test_commands(self):
        for cmd in ["QUERY", "OPEN", "CLOSE", "DON", "DOF", "SETTGT", "SETCUR"]:
            assert cmd in GarageDoor.commands


class TestGarageDoorTarget:
    """Tests for target handling."""

    def test_on_set_target_submits(self, door, reconciler):
        assert door.on_set_target(DoorState.OPEN) is True

        reconciler.submit.assert_called_once_with(TargetSet(DoorState.OPEN))
        door.setDriver.assert_called_once_with("GV0", 1)

    def test_on_set_target_index(self, door, reconciler):
        door.on_set_target("0")

        reconciler.submit.assert_called_once_with(TargetSet(DoorState.CLOSED))

    @pytest.mark.parametrize("value", [2, DoorState.UNKNOWN, "x", None])
    def test_on_set_target_invalid(self, door, reconciler, value):
        assert door.on_set_target(value) is False

        reconciler.submit.assert_not_called()
        door.setDriver.assert_not_called()

    def test_on_set_target_does_not_write_store(self, door, store):
        """The reconciler is the only writer of the store."""
        door.on_set_target(DoorState.OPEN)

        assert store.target is DoorState.CLOSED

    def test_on_get_target(self, door, store):
        store.set_target(DoorState.OPEN)

        assert door.on_get_target() is DoorState.OPEN

    def test_push_target_state(self, door):
        door.push_target_state(DoorState.CLOSED)

        door.setDriver.assert_called_once_with("GV0", 0)
        door.reportCmd.assert_not_called()

    def test_open_command(self, door, reconciler):
        door.dr_open({"cmd": "OPEN"})

        reconciler.submit.assert_called_once_with(TargetSet(DoorState.OPEN))

    def test_close_command(self, door, reconciler):
        door.dr_close({"cmd": "CLOSE"})

        reconciler.submit.assert_called_once_with(TargetSet(DoorState.CLOSED))

    def test_settgt_command(self, door, reconciler):
        door.set_target({"cmd": "SETTGT", "value": "1"})

        reconciler.submit.assert_called_once_with(TargetSet(DoorState.OPEN))

    def test_don_alias(self):
        assert GarageDoor.commands["DON"] is GarageDoor.commands["OPEN"]
        assert GarageDoor.commands["DOF"] is GarageDoor.commands["CLOSE"]


class TestGarageDoorCurrent:
    """Tests for current state handling."""

    def test_on_set_current_is_noop(self, door, store, reconciler):
        door.on_set_current(1)

        assert store.current is DoorState.CLOSED
        reconciler.submit.assert_not_called()
        door.setDriver.assert_not_called()

    def test_setcur_command_is_noop(self, door, store):
        door.set_current({"cmd": "SETCUR", "value": "1"})

        assert store.current is DoorState.CLOSED

    def test_on_get_current(self, door, store):
        store.set_current(DoorState.OPEN)

        assert door.on_get_current() is DoorState.OPEN

    def test_push_open(self, door):
        door.push_current_state(DoorState.OPEN)

        door.setDriver.assert_called_once_with("ST", 1)
        door.reportCmd.assert_called_once_with("DON")

    def test_push_closed(self, door):
        door.push_current_state(DoorState.CLOSED)

        door.setDriver.assert_called_once_with("ST", 0)
        door.reportCmd.assert_called_once_with("DOF")

    def test_push_unknown(self, door):
        door.push_current_state(DoorState.UNKNOWN)

        door.setDriver.assert_called_once_with("ST", 2)
        door.reportCmd.assert_not_called()


class TestGarageDoorDiagnostics:
    """Tests for update_diagnostics."""

    def test_active_input(self, door):
        snap = SensorSnapshot(relayA="1", relayB="1", input1="1", input2="0")

        door.update_diagnostics(snap)

        assert door.sensors == snap
        door.setDriver.assert_called_once_with("GV2", 1)

    def test_inactive_input(self, door):
        door.update_diagnostics(SensorSnapshot(relayA="0", relayB="0", input1="0", input2="1"))

        door.setDriver.assert_called_once_with("GV2", 0)


class TestGarageDoorQuery:
    """Tests for query."""

    def test_query_reports_store(self, door, store):
        store.set_current(DoorState.OPEN)

        door.query()

        door.setDriver.assert_any_call("ST", 1, report=False)
        door.setDriver.assert_any_call("GV0", 0, report=False)
        door.setDriver.assert_any_call("GV1", 0, report=False)
        door.reportDrivers.assert_called_once()
