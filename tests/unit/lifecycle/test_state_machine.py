"""Unit tests for connection state transitions."""

import dataclasses

import pytest

from duckattach.exceptions import InvalidStateTransitionError
from duckattach.lifecycle.state_machine import (
    ALLOWED_TRANSITIONS,
    ConnectionStateMachine,
)
from duckattach.models import ConnectionState, DataSourceRecord, PostgresConfig


@pytest.fixture
def machine():
    return ConnectionStateMachine()


@pytest.fixture
def record():
    return DataSourceRecord.new(PostgresConfig(host="db", database="sales"))


def in_state(record, state, **changes):
    return dataclasses.replace(record, connection_state=state, **changes)


class TestTransitions:
    """Test the allowed transition table."""

    def test_connected_only_reachable_from_connecting(self):
        """No state other than connecting leads to connected."""
        for state, targets in ALLOWED_TRANSITIONS.items():
            if state is not ConnectionState.CONNECTING:
                assert ConnectionState.CONNECTED not in targets

    def test_mark_connected_stamps_attached_at(self, machine, record):
        """Connecting records become connected with a timestamp."""
        connected = machine.mark_connected(record)
        assert connected.connection_state is ConnectionState.CONNECTED
        assert connected.attached_at is not None
        assert connected.connection_error is None
        assert record.connection_state is ConnectionState.CONNECTING

    def test_error_carries_message(self, machine, record):
        """Only the error state carries an error message."""
        failed = machine.mark_error(record, "Connection refused")
        assert failed.connection_state is ConnectionState.ERROR
        assert failed.connection_error == "Connection refused"

        retried = machine.begin_connect(failed)
        assert retried.connection_state is ConnectionState.CONNECTING
        assert retried.connection_error is None

    def test_credentials_required_has_no_error(self, machine, record):
        """Credential prompts are not errors."""
        prompted = machine.mark_credentials_required(record)
        assert prompted.connection_state is ConnectionState.CREDENTIALS_REQUIRED
        assert prompted.connection_error is None

    def test_invalid_transition_raises(self, machine, record):
        """Skipping connecting is not allowed."""
        disconnected = in_state(record, ConnectionState.DISCONNECTED)
        with pytest.raises(InvalidStateTransitionError) as exc_info:
            machine.mark_connected(disconnected)
        assert exc_info.value.current == "disconnected"
        assert exc_info.value.target == "connected"

    def test_connected_cannot_fail_directly(self, machine, record):
        """A connected record has to disconnect before it can fail."""
        connected = machine.mark_connected(record)
        with pytest.raises(InvalidStateTransitionError):
            machine.mark_error(connected, "boom")


class TestBeginConnect:
    """Test entering the connecting state."""

    def test_from_connected_passes_through_disconnected(self, machine, record):
        """Reconnecting a connected record is allowed."""
        connected = machine.mark_connected(record)
        assert (
            machine.begin_connect(connected).connection_state
            is ConnectionState.CONNECTING
        )

    def test_connecting_is_unchanged(self, machine, record):
        """A record already connecting is returned as-is."""
        assert machine.begin_connect(record) is record


class TestRecover:
    """Test state recovery after a restart."""

    @pytest.mark.parametrize(
        "state", [ConnectionState.CONNECTED, ConnectionState.CONNECTING]
    )
    def test_attached_states_become_disconnected(self, machine, record, state):
        """Nothing is attached in a fresh engine."""
        recovered = machine.recover(in_state(record, state))
        assert recovered.connection_state is ConnectionState.DISCONNECTED

    @pytest.mark.parametrize(
        "state",
        [
            ConnectionState.ERROR,
            ConnectionState.DISCONNECTED,
            ConnectionState.CREDENTIALS_REQUIRED,
        ],
    )
    def test_other_states_are_kept(self, machine, record, state):
        """Errors and prompts survive restarts."""
        original = in_state(record, state)
        assert machine.recover(original) is original
