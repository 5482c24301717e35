"""Typed errors raised by the delivery domain.

All of them extend Protean's exceptions so the generic handlers keep working,
while the API layer can map each kind to its own status code.
"""

from protean.exceptions import InvalidOperationError, ValidationError


class InvalidTransitionError(ValidationError):
    """A status change that the state machine does not allow."""

    def __init__(self, current_status: str, attempted_status: str, subject: str = "status"):
        self.current_status = current_status
        self.attempted_status = attempted_status
        super().__init__({subject: [f"Cannot transition from {current_status} to {attempted_status}"]})


class DeliveryOperationError(InvalidOperationError):
    """An operation the delivery order refuses, carrying field-keyed messages."""

    def __init__(self, messages: dict[str, list[str]]):
        self.messages = messages
        super().__init__(messages)

    def __str__(self) -> str:
        return f"{dict(self.messages)}"


class PreconditionFailedError(DeliveryOperationError):
    """The operation is well-formed but the aggregate is not in a state to accept it."""


class ConcurrentUpdateError(DeliveryOperationError):
    """Another operation on the same delivery order is still in flight."""
