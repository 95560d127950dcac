"""Connection state machine for data source records."""

import dataclasses
from typing import Dict, FrozenSet, Optional

from duckattach.exceptions import InvalidStateTransitionError
from duckattach.logging import get_logger
from duckattach.models import ConnectionState, DataSourceRecord, utcnow

logger = get_logger(__name__)

ALLOWED_TRANSITIONS: Dict[ConnectionState, FrozenSet[ConnectionState]] = {
    ConnectionState.CONNECTING: frozenset(
        {
            ConnectionState.CONNECTED,
            ConnectionState.ERROR,
            ConnectionState.CREDENTIALS_REQUIRED,
        }
    ),
    ConnectionState.CONNECTED: frozenset({ConnectionState.DISCONNECTED}),
    ConnectionState.ERROR: frozenset({ConnectionState.CONNECTING}),
    ConnectionState.DISCONNECTED: frozenset({ConnectionState.CONNECTING}),
    ConnectionState.CREDENTIALS_REQUIRED: frozenset({ConnectionState.CONNECTING}),
}


class ConnectionStateMachine:
    """Applies connection state transitions to immutable records.

    Every transition returns a new :class:`DataSourceRecord`. Only ``error``
    carries a ``connection_error``; ``connected`` stamps ``attached_at``.
    No path reaches ``connected`` without passing through ``connecting``.
    """

    @staticmethod
    def can_transition(current: ConnectionState, target: ConnectionState) -> bool:
        return target in ALLOWED_TRANSITIONS[current]

    def transition(
        self,
        record: DataSourceRecord,
        target: ConnectionState,
        error: Optional[str] = None,
    ) -> DataSourceRecord:
        """Move ``record`` to ``target``.

        Raises:
            InvalidStateTransitionError: If the transition is not allowed
        """
        current = record.connection_state
        if not self.can_transition(current, target):
            raise InvalidStateTransitionError(
                current.value, target.value, source_name=record.display_name
            )

        now = utcnow()
        changes = {
            "connection_state": target,
            "connection_error": error if target is ConnectionState.ERROR else None,
            "updated_at": now,
        }
        if target is ConnectionState.CONNECTED:
            changes["attached_at"] = now

        logger.info(
            "Data source '%s' (%s): %s -> %s",
            record.display_name,
            record.id,
            current.value,
            target.value,
        )
        return dataclasses.replace(record, **changes)

    def begin_connect(self, record: DataSourceRecord) -> DataSourceRecord:
        """Enter ``connecting``, passing through ``disconnected`` if connected."""
        if record.connection_state is ConnectionState.CONNECTING:
            return record
        if record.connection_state is ConnectionState.CONNECTED:
            record = self.transition(record, ConnectionState.DISCONNECTED)
        return self.transition(record, ConnectionState.CONNECTING)

    def mark_connected(self, record: DataSourceRecord) -> DataSourceRecord:
        return self.transition(record, ConnectionState.CONNECTED)

    def mark_error(self, record: DataSourceRecord, message: str) -> DataSourceRecord:
        return self.transition(record, ConnectionState.ERROR, error=message)

    def mark_credentials_required(self, record: DataSourceRecord) -> DataSourceRecord:
        return self.transition(record, ConnectionState.CREDENTIALS_REQUIRED)

    def mark_disconnected(self, record: DataSourceRecord) -> DataSourceRecord:
        return self.transition(record, ConnectionState.DISCONNECTED)

    def recover(self, record: DataSourceRecord) -> DataSourceRecord:
        """Reset a record loaded after a restart.

        Nothing is attached in a fresh engine, so records persisted as
        ``connecting`` or ``connected`` become ``disconnected``. Other states
        are kept.
        """
        if record.connection_state not in (
            ConnectionState.CONNECTING,
            ConnectionState.CONNECTED,
        ):
            return record
        logger.info(
            "Data source '%s' (%s): %s -> disconnected (recovered)",
            record.display_name,
            record.id,
            record.connection_state.value,
        )
        return dataclasses.replace(
            record,
            connection_state=ConnectionState.DISCONNECTED,
            connection_error=None,
            updated_at=utcnow(),
        )
