from .config import CallbackErrorPolicy, ConnectionConfig
from .connection import Connection
from .errors import CallbackError, InvalidTransaction, TransactionalError
from .indexer import Indexer
from .operation import Operation, OperationEvent

# The SQLAlchemy binding lives in transactional.db
__all__ = [
    "Connection",
    "ConnectionConfig",
    "CallbackErrorPolicy",
    "Operation",
    "OperationEvent",
    "Indexer",
    "TransactionalError",
    "InvalidTransaction",
    "CallbackError",
]
