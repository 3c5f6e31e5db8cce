from .observe import (
    observe_buffered,
    observe_callback_error,
    observe_resolution,
    observe_transaction,
)

__all__ = [
    "observe_transaction",
    "observe_buffered",
    "observe_resolution",
    "observe_callback_error",
]
