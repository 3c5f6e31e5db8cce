from __future__ import annotations

import logging
import time
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any, Optional

from .config import CallbackErrorPolicy, ConnectionConfig
from .errors import CallbackError, InvalidTransaction
from .metrics import (
    observe_buffered,
    observe_callback_error,
    observe_resolution,
    observe_transaction,
)
from .operation import Operation, OperationCallback, OperationEvent

logger = logging.getLogger(__name__)


class Connection:
    """
    Transaction and savepoint manager for deferred operations.

    A Connection mirrors the transaction nesting of some outer context
    (usually a real database connection) without storing anything itself.
    Operations added outside a transaction commit immediately. Operations
    added inside a transaction are buffered and resolved later:

    - rollback at any depth rolls back every operation registered since
      that depth's savepoint
    - commit only executes operations once depth returns to 0; a nested
      commit folds its operations into the enclosing transaction

    Callbacks may add operations back to the connection while a sweep is
    running. Such operations land in the enclosing transaction, because
    depth is already updated when callbacks run.

    Usage:
        connection = Connection()
        connection.start_transaction()
        connection.on_commit(lambda op, conn: print("committed"))
        connection.start_transaction()
        connection.on_commit(lambda op, conn: print("never printed"))
        connection.rollback_transaction()
        connection.commit_transaction()  # prints "committed"

    Not thread-safe. Use one Connection per logical transaction context.
    """

    def __init__(
        self,
        connection_id: Optional[str] = None,
        config: Optional[ConnectionConfig] = None,
    ) -> None:
        """
        Args:
            connection_id: Identity used to key operation positions; a fresh
                one is generated when omitted
            config: Connection configuration

        Raises:
            ValueError: If connection_id is an empty string
        """
        if connection_id is not None and not connection_id:
            raise ValueError("connection_id must be a non-empty string")
        self._connection_id = connection_id if connection_id is not None else uuid.uuid4().hex
        self.config = config or ConnectionConfig()

        # Slot table: position p lives at _slots[p - _offset]
        self._slots: list[Optional[Operation]] = []
        self._offset = 0
        self._live = 0

        self._savepoints: dict[int, int] = {}
        self._depth = 0

        # Positions mid-resolution and mid-removal, innermost last
        self._resolving: set[int] = set()
        self._removing: list[int] = []

    def __repr__(self) -> str:
        return (
            f"<Connection id={self._connection_id!r} depth={self._depth} "
            f"buffered={self._live}>"
        )

    def __len__(self) -> int:
        return self._live

    @property
    def connection_id(self) -> str:
        return self._connection_id

    @property
    def depth(self) -> int:
        return self._depth

    @property
    def next_position(self) -> int:
        """Position the next buffered operation will receive."""
        return self._offset + len(self._slots)

    @property
    def removing_position(self) -> Optional[int]:
        """Position whose remove callbacks are running, or None."""
        return self._removing[-1] if self._removing else None

    @property
    def savepoints(self) -> dict[int, int]:
        """Open savepoints as depth -> first position of that depth."""
        return dict(self._savepoints)

    def start_transaction(self, depth: Optional[int] = None) -> None:
        """
        Start a transaction.

        Args:
            depth: New depth; defaults to the current depth + 1

        Raises:
            InvalidTransaction: If the new depth is negative
        """
        new_depth = self._depth + 1 if depth is None else depth
        if new_depth < 0:
            raise InvalidTransaction(f"Cannot start a transaction at negative depth {new_depth}")

        self._depth = new_depth
        self._savepoints[new_depth] = self.next_position
        logger.debug(
            "Connection %s started transaction at depth %d (savepoint %d)",
            self._connection_id,
            new_depth,
            self._savepoints[new_depth],
        )
        self._observe_transaction("start")

    def commit_transaction(self, depth: Optional[int] = None) -> None:
        """
        Commit a transaction.

        Operations are only committed when depth returns to 0. A nested
        commit hands its operations over to the enclosing transaction.

        Args:
            depth: New depth; defaults to the current depth - 1

        Raises:
            InvalidTransaction: If there is no transaction to commit
            CallbackError: If callbacks failed under the continue policy
        """
        old_depth = self._depth
        new_depth = self._leave(depth, "commit")
        boundary = self._close_savepoints(old_depth, new_depth)
        self._observe_transaction("commit")

        if new_depth == 0 and boundary is not None:
            self._sweep(boundary, OperationEvent.COMMIT)

    def rollback_transaction(self, depth: Optional[int] = None) -> None:
        """
        Roll back a transaction.

        Every operation registered since the closed savepoint(s) is rolled
        back and removed, whatever the resulting depth.

        Args:
            depth: New depth; defaults to the current depth - 1

        Raises:
            InvalidTransaction: If there is no transaction to roll back
            CallbackError: If callbacks failed under the continue policy
        """
        old_depth = self._depth
        new_depth = self._leave(depth, "rollback")
        boundary = self._close_savepoints(old_depth, new_depth)
        self._observe_transaction("rollback")

        if boundary is not None:
            self._sweep(boundary, OperationEvent.ROLLBACK)

    @contextmanager
    def transaction(self) -> Iterator["Connection"]:
        """
        Run a block inside a transaction.

        Commits on normal exit, rolls back and re-raises on exception.
        """
        self.start_transaction()
        try:
            yield self
        except BaseException:
            self.rollback_transaction()
            raise
        self.commit_transaction()

    def add_operation(self, operation: Operation) -> Operation:
        """
        Add an operation to the connection.

        Outside a transaction the commit callbacks run right away and the
        operation is not buffered. Inside a transaction the operation gets
        the next position and its buffer callbacks run. An operation already
        buffered here is moved: its old entry is removed first.

        Returns:
            The operation added
        """
        if self._depth <= 0:
            operation.commit(self)
            self._observe_resolution("immediate", 1)
            return operation

        previous = operation.idx(self)
        if (
            previous is not None
            and previous not in self._resolving
            and previous not in self._removing
        ):
            # Moving: an operation holds at most one slot per connection
            self._discard(previous, operation)

        position = self.next_position
        self._slots.append(operation)
        self._live += 1
        operation.set_idx(self, position)
        if self.config.metrics_enabled:
            observe_buffered()

        operation.buffer(self)
        return operation

    def has_operation(self, operation: Operation) -> bool:
        position = operation.idx(self)
        return position is not None and self._slot(position) is operation

    def remove_operation(self, operation: Operation) -> bool:
        """
        Remove an operation from the buffer without resolving it.

        Remove callbacks run before the buffer entry is deleted.

        Returns:
            True if the operation was buffered and has been removed
        """
        position = operation.idx(self)
        if position is None:
            return False
        return self._discard(position, operation)

    def pending(self) -> list[Operation]:
        """Buffered operations in position order."""
        return [operation for operation in self._slots if operation is not None]

    def on_commit(self, callback: OperationCallback) -> Operation:
        return self.add_operation(Operation().on_commit(callback))

    def on_rollback(self, callback: OperationCallback) -> Operation:
        return self.add_operation(Operation().on_rollback(callback))

    def on_remove(self, callback: OperationCallback) -> Operation:
        return self.add_operation(Operation().on_remove(callback))

    def add_metadata(self, key: str, value: Any) -> Operation:
        return self.add_operation(Operation().set_metadata(key, value))

    def _leave(self, depth: Optional[int], action: str) -> int:
        new_depth = self._depth - 1 if depth is None else depth
        if new_depth < 0:
            raise InvalidTransaction(f"Trying to {action} non-existent transaction")
        self._depth = new_depth
        return new_depth

    def _close_savepoints(self, old_depth: int, new_depth: int) -> Optional[int]:
        """Drop savepoints above new_depth and return the lowest position among them."""
        closed = [
            self._savepoints.pop(depth)
            for depth in range(new_depth + 1, old_depth + 1)
            if depth in self._savepoints
        ]
        boundary = min(closed) if closed else None
        logger.debug(
            "Connection %s left depth %d for %d (boundary %s)",
            self._connection_id,
            old_depth,
            new_depth,
            boundary,
        )
        return boundary

    def _slot(self, position: int) -> Optional[Operation]:
        index = position - self._offset
        if 0 <= index < len(self._slots):
            return self._slots[index]
        return None

    def _snapshot(self, boundary: int) -> list[tuple[int, Operation]]:
        start = max(boundary - self._offset, 0)
        return [
            (self._offset + index, operation)
            for index, operation in enumerate(self._slots[start:], start)
            if operation is not None
        ]

    def _sweep(self, boundary: int, event: OperationEvent) -> None:
        """
        Resolve every operation buffered at or after ``boundary``.

        Works on a snapshot taken up front. Operations added by callbacks
        during the sweep are left for a later resolution.
        """
        operations = self._snapshot(boundary)
        if not operations:
            return

        logger.debug(
            "Connection %s resolving %d operation(s) with %s",
            self._connection_id,
            len(operations),
            event.value,
        )
        failures: list[tuple[Operation, BaseException]] = []
        resolved = 0
        start_time = time.monotonic()
        try:
            for position, operation in operations:
                if self._slot(position) is not operation:
                    continue
                resolved += 1
                self._resolving.add(position)
                try:
                    try:
                        operation.fire(event, self)
                    finally:
                        self._resolving.discard(position)
                        self._discard(position, operation)
                except Exception as exc:
                    if self.config.metrics_enabled:
                        observe_callback_error(event.value)
                    if self.config.callback_errors is CallbackErrorPolicy.ABORT:
                        raise
                    logger.warning(
                        "%s callback failed for %r on connection %s; continuing",
                        event.value,
                        operation,
                        self._connection_id,
                        exc_info=True,
                    )
                    failures.append((operation, exc))
        finally:
            self._observe_resolution(event.value, resolved, time.monotonic() - start_time)

        if failures:
            raise CallbackError(event.value, failures) from failures[0][1]

    def _discard(self, position: int, operation: Operation) -> bool:
        if self._slot(position) is not operation or position in self._removing:
            return False
        self._removing.append(position)
        try:
            operation.remove(self)
        finally:
            self._removing.pop()
            # The remove callbacks may have removed it already
            if self._slot(position) is operation:
                self._clear(position)
        return True

    def _clear(self, position: int) -> None:
        self._slots[position - self._offset] = None
        self._live -= 1
        if self._live == 0:
            self._offset += len(self._slots)
            self._slots.clear()
            return

        leading = 0
        while self._slots[leading] is None:
            leading += 1
        if leading:
            del self._slots[:leading]
            self._offset += leading

    def _observe_transaction(self, action: str) -> None:
        if self.config.metrics_enabled:
            observe_transaction(action)

    def _observe_resolution(self, outcome: str, count: int, latency_s: Optional[float] = None) -> None:
        if self.config.metrics_enabled:
            observe_resolution(outcome, count, latency_s)
