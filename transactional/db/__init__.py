from .session import TransactionalSession

__all__ = ["TransactionalSession"]
