from __future__ import annotations

from collections.abc import Callable
from enum import Enum
from typing import TYPE_CHECKING, Any, Hashable, Mapping, Optional

if TYPE_CHECKING:
    from .connection import Connection


OperationCallback = Callable[["Operation", "Connection"], Any]


class OperationEvent(str, Enum):
    BUFFER = "buffer"
    COMMIT = "commit"
    ROLLBACK = "rollback"
    REMOVE = "remove"


class Operation:
    """
    A deferred unit of work.

    An operation carries four independent callback chains, one per
    lifecycle event, plus free-form metadata. It does nothing on its own;
    a Connection decides when each chain runs:

    - buffer: right after the operation was placed in a transaction buffer
    - commit: when the outermost transaction commits, or immediately when
      added outside of any transaction
    - rollback: when the transaction holding the operation rolls back
    - remove: whenever the operation leaves a connection's buffer

    Callbacks are invoked as ``callback(operation, connection)``. The value
    returned by the last callback of a chain is kept in ``result``.

    Usage:
        op = (
            Operation()
            .on_commit(lambda op, conn: cache.invalidate("user:1"))
            .on_rollback(lambda op, conn: log.append("discarded"))
            .set_metadata("key", "user:1")
        )
        connection.add_operation(op)
    """

    def __init__(self, metadata: Optional[Mapping[str, Any]] = None) -> None:
        self._callbacks: dict[OperationEvent, list[OperationCallback]] = {
            event: [] for event in OperationEvent
        }
        self._positions: dict[Hashable, int] = {}
        self._metadata: dict[str, Any] = dict(metadata or {})
        self.result: Any = None

    def __repr__(self) -> str:
        return f"<Operation positions={self._positions!r} metadata={self._metadata!r}>"

    def on_buffer(self, callback: OperationCallback) -> "Operation":
        self._callbacks[OperationEvent.BUFFER].append(callback)
        return self

    def on_commit(self, callback: OperationCallback) -> "Operation":
        self._callbacks[OperationEvent.COMMIT].append(callback)
        return self

    def on_rollback(self, callback: OperationCallback) -> "Operation":
        self._callbacks[OperationEvent.ROLLBACK].append(callback)
        return self

    def on_remove(self, callback: OperationCallback) -> "Operation":
        self._callbacks[OperationEvent.REMOVE].append(callback)
        return self

    def callbacks(self, event: OperationEvent) -> tuple[OperationCallback, ...]:
        """Registered callbacks for ``event``, in registration order."""
        return tuple(self._callbacks[OperationEvent(event)])

    def fire(self, event: OperationEvent, connection: "Connection") -> Any:
        """
        Run every callback registered for ``event`` in order.

        The last callback's return value replaces ``result``. An empty
        chain leaves ``result`` untouched. Exceptions propagate and stop
        the chain.

        Returns:
            The current ``result``
        """
        chain = self._callbacks[OperationEvent(event)]
        if not chain:
            return self.result
        # Snapshot: a callback may register further callbacks on this operation
        for callback in list(chain):
            self.result = callback(self, connection)
        return self.result

    def buffer(self, connection: "Connection") -> Any:
        return self.fire(OperationEvent.BUFFER, connection)

    def commit(self, connection: "Connection") -> Any:
        return self.fire(OperationEvent.COMMIT, connection)

    def rollback(self, connection: "Connection") -> Any:
        return self.fire(OperationEvent.ROLLBACK, connection)

    def remove(self, connection: "Connection") -> Any:
        return self.fire(OperationEvent.REMOVE, connection)

    def set_idx(self, connection: "Connection", position: int) -> "Operation":
        """Record this operation's buffer position within ``connection``."""
        self._positions[connection.connection_id] = position
        return self

    def idx(self, connection: "Connection") -> Optional[int]:
        """Buffer position within ``connection``, or None if never buffered there."""
        return self._positions.get(connection.connection_id)

    def set_metadata(self, key: str, value: Any) -> "Operation":
        self._metadata[key] = value
        return self

    def get_metadata(self, key: str, default: Any = None) -> Any:
        return self._metadata.get(key, default)

    @property
    def metadata(self) -> Mapping[str, Any]:
        return dict(self._metadata)
