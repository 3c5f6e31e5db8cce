from __future__ import annotations

import logging
from typing import Any, Hashable, Optional

from .connection import Connection
from .operation import Operation

logger = logging.getLogger(__name__)


class Indexer:
    """
    Secondary index over the operations buffered in one Connection.

    Indexed operations are looked up by an application-defined key. Each
    ``index()`` call hooks the operation's remove event, so entries vanish
    as soon as the connection commits, rolls back or removes the operation.

    Usage:
        indexer = Indexer(connection)
        connection.start_transaction()
        indexer.index(connection.add_metadata("value", "v1"), "users")
        indexer.lookup_metadata("users", "value")  # ["v1"]
        connection.commit_transaction()
        indexer.lookup("users")  # []

    An operation re-added to the connection (for example from a rollback
    callback) gets a new position and must be indexed again to stay
    discoverable.
    """

    def __init__(self, connection: Connection) -> None:
        self._connection = connection
        self._index: dict[Hashable, dict[int, Operation]] = {}
        self._all: dict[int, Operation] = {}

    @property
    def connection(self) -> Connection:
        return self._connection

    def index(self, operation: Operation, key: Optional[Hashable] = None) -> Operation:
        """
        Index a buffered operation, optionally under ``key``.

        Operations the connection does not currently buffer are ignored;
        nothing would ever remove them from the index.

        Returns:
            The operation
        """
        if not self._connection.has_operation(operation):
            logger.debug(
                "Not indexing %r under %r: not buffered in connection %s",
                operation,
                key,
                self._connection.connection_id,
            )
            return operation

        position = operation.idx(self._connection)
        self._all[position] = operation
        if key is not None:
            self._index.setdefault(key, {})[position] = operation

        def _prune(op: Operation, connection: Connection) -> None:
            # Hooks from earlier index() calls stay registered; only the
            # one matching the leaving slot acts
            if connection is self._connection and connection.removing_position == position:
                self._drop(position, op, key)
                self._drop_global(position, op)

        operation.on_remove(_prune)
        return operation

    def de_index(self, operation: Operation, key: Optional[Hashable] = None) -> Operation:
        """
        Remove an operation from the index. Absent entries are ignored.

        With a key, the operation stays enumerable through ``lookup_all()``
        while it is still indexed under another key.
        """
        position = operation.idx(self._connection)
        if position is None:
            return operation
        self._drop(position, operation, key)
        still_indexed = any(
            entries.get(position) is operation for entries in self._index.values()
        )
        if key is None or not still_indexed:
            self._drop_global(position, operation)
        return operation

    def lookup(self, key: Hashable) -> list[Operation]:
        """Operations indexed under ``key``, in position order."""
        entries = self._index.get(key, {})
        return [entries[position] for position in sorted(entries)]

    def lookup_all(self) -> list[Operation]:
        """Every indexed operation, whatever its key, in position order."""
        return [self._all[position] for position in sorted(self._all)]

    def lookup_metadata(self, key: Hashable, metadata_key: str) -> list[Any]:
        return [operation.get_metadata(metadata_key) for operation in self.lookup(key)]

    def _drop_global(self, position: int, operation: Operation) -> None:
        if self._all.get(position) is operation:
            del self._all[position]

    def _drop(self, position: int, operation: Operation, key: Optional[Hashable]) -> None:
        if key is None:
            return
        entries = self._index.get(key)
        if entries is None or entries.get(position) is not operation:
            return
        del entries[position]
        if not entries:
            del self._index[key]
