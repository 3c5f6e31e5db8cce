from __future__ import annotations

from typing import Any

import pytest

from transactional import Connection, Indexer
from transactional.operation import OperationCallback


class Recorder:
    """Collects callback invocations as (label, connection depth) pairs."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, int]] = []

    def callback(self, label: str, result: Any = None) -> OperationCallback:
        def _record(operation, connection):
            self.calls.append((label, connection.depth))
            return result

        return _record

    @property
    def labels(self) -> list[str]:
        return [label for label, _ in self.calls]


@pytest.fixture
def connection() -> Connection:
    return Connection("testid")


@pytest.fixture
def indexer(connection: Connection) -> Indexer:
    return Indexer(connection)


@pytest.fixture
def recorder() -> Recorder:
    return Recorder()
