"""Payment state machine transitions enforced by the payment service.

`transition` is pure: it takes the current `PaymentState` and an event and
returns the next state, or raises `InvalidTransitionError`. Persisting the
result is the caller's job.
"""

from dataclasses import dataclass, replace
from enum import Enum

from ticketpay.common.errors import InvalidTransitionError


class PaymentStatus(str, Enum):
    PENDING = "PENDING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"


class PaymentEvent(str, Enum):
    GATEWAY_APPROVED = "GATEWAY_APPROVED"
    GATEWAY_DECLINED = "GATEWAY_DECLINED"
    REFUND_REQUESTED = "REFUND_REQUESTED"


@dataclass(frozen=True)
class PaymentState:
    """Status-bearing slice of a payment that transitions operate on."""

    status: PaymentStatus
    transaction_id: str | None = None
    failure_reason: str | None = None


ALLOWED_TRANSITIONS: dict[tuple[PaymentStatus, PaymentEvent], PaymentStatus] = {
    (PaymentStatus.PENDING, PaymentEvent.GATEWAY_APPROVED): PaymentStatus.SUCCESS,
    (PaymentStatus.PENDING, PaymentEvent.GATEWAY_DECLINED): PaymentStatus.FAILED,
    (PaymentStatus.SUCCESS, PaymentEvent.REFUND_REQUESTED): PaymentStatus.REFUNDED,
}

TERMINAL_STATES: frozenset[PaymentStatus] = frozenset({PaymentStatus.FAILED, PaymentStatus.REFUNDED})


def _rejection_detail(current: PaymentStatus, event: PaymentEvent) -> str:
    if current in TERMINAL_STATES:
        if event is PaymentEvent.REFUND_REQUESTED and current is PaymentStatus.FAILED:
            return "only successful payments may be refunded"
        return "payment is already in a terminal state"
    if event is PaymentEvent.REFUND_REQUESTED:
        return "payment is not settled yet"
    return "payment has already been settled"


def next_status(current: PaymentStatus, event: PaymentEvent) -> PaymentStatus:
    """Return the status `event` leads to from `current`, or raise."""

    target = ALLOWED_TRANSITIONS.get((current, event))
    if target is None:
        raise InvalidTransitionError(current, event, _rejection_detail(current, event))
    return target


def transition(
    state: PaymentState,
    event: PaymentEvent,
    *,
    transaction_id: str | None = None,
    reason: str | None = None,
) -> PaymentState:
    """Apply `event` to `state` and return the resulting state with its side effects."""

    target = next_status(state.status, event)
    if event is PaymentEvent.GATEWAY_APPROVED:
        if not transaction_id:
            raise ValueError("approved payments need a transaction id")
        return replace(state, status=target, transaction_id=transaction_id, failure_reason=None)
    # Declines and refunds both record their reason in failure_reason.
    return replace(state, status=target, failure_reason=reason)
