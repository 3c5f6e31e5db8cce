from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .operation import Operation


class TransactionalError(Exception):
    """Base exception for transactional errors."""


class InvalidTransaction(TransactionalError):
    """Commit or rollback of a transaction that was never started."""


class CallbackError(TransactionalError):
    """
    One or more callbacks failed during a commit or rollback sweep.

    Only raised when the connection is configured to keep resolving
    after a failing callback. Every operation in the sweep has been
    resolved and removed by the time this is raised.
    """

    def __init__(self, event: str, failures: list[tuple["Operation", BaseException]]) -> None:
        self.event = event
        self.failures = failures
        super().__init__(f"{len(failures)} {event} callback(s) failed during sweep")
