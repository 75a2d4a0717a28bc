"""ACME order state machine."""

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, Field

from wildcert.exceptions import InvalidOrderTransition


class OrderStatus(StrEnum):
    """Status of an ACME order."""

    PENDING = "pending"
    PROCESSING = "processing"
    READY = "ready"
    VALID = "valid"
    INVALID = "invalid"


# PROCESSING is entered twice on the happy path: once locally after the
# challenge answers are submitted, once when the CA is issuing after finalize.
ALLOWED_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING: frozenset(
        {OrderStatus.PROCESSING, OrderStatus.READY, OrderStatus.INVALID}
    ),
    OrderStatus.PROCESSING: frozenset(
        {OrderStatus.READY, OrderStatus.VALID, OrderStatus.INVALID}
    ),
    OrderStatus.READY: frozenset(
        {OrderStatus.PROCESSING, OrderStatus.VALID, OrderStatus.INVALID}
    ),
    OrderStatus.VALID: frozenset(),
    OrderStatus.INVALID: frozenset(),
}

TERMINAL_STATUSES = frozenset({OrderStatus.VALID, OrderStatus.INVALID})


class Order(BaseModel):
    """An ACME order tracked by the order coordinator."""

    order_url: str = Field(..., description="Order URL (the order identifier)")
    status: OrderStatus = Field(default=OrderStatus.PENDING)
    authorizations: list[str] = Field(
        default_factory=list, description="Authorization URLs"
    )
    identifiers: list[str] = Field(default_factory=list)
    expires: datetime | None = Field(
        default=None, description="Deadline for finalizing the order"
    )
    history: list[OrderStatus] = Field(default_factory=list)

    @property
    def is_terminal(self) -> bool:
        """Check if the order reached valid or invalid."""
        return self.status in TERMINAL_STATUSES

    def can_transition_to(self, status: OrderStatus | str) -> bool:
        """Check whether a status change is allowed."""
        status = OrderStatus(status)
        return status == self.status or status in ALLOWED_TRANSITIONS[self.status]

    def transition_to(self, status: OrderStatus | str) -> bool:
        """
        Move the order to a new status.

        Reporting the current status again is a no-op.

        Returns:
            True if the status changed

        Raises:
            InvalidOrderTransition: If the state machine does not allow it
            ValueError: If status is not an ACME order status
        """
        status = OrderStatus(status)
        if status == self.status:
            return False
        if status not in ALLOWED_TRANSITIONS[self.status]:
            raise InvalidOrderTransition(
                f"Order {self.order_url} cannot move from {self.status} to {status}",
                order_url=self.order_url,
            )
        self.history.append(self.status)
        self.status = status
        return True
