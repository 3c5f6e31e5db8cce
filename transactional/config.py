from dataclasses import dataclass
from enum import Enum


class CallbackErrorPolicy(str, Enum):
    ABORT = "abort"
    CONTINUE = "continue"


@dataclass
class ConnectionConfig:
    callback_errors: CallbackErrorPolicy = CallbackErrorPolicy.ABORT
    metrics_enabled: bool = True

    def __post_init__(self) -> None:
        """Validate configuration parameters."""
        try:
            self.callback_errors = CallbackErrorPolicy(self.callback_errors)
        except ValueError:
            raise ValueError(
                f"callback_errors must be one of "
                f"{[p.value for p in CallbackErrorPolicy]}, got {self.callback_errors!r}"
            ) from None
