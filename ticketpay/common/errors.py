"""Payment error taxonomy.

PaymentError
├── NotFoundError             no payment for the id / order id (HTTP 404)
├── BadRequestError           request not valid for the payment (HTTP 400)
│   └── InvalidTransitionError
├── IdempotencyConflictError  unique key lost to a concurrent insert (internal)
├── StalePaymentError         compare-and-set write lost (internal, HTTP 409)
├── PaymentStorageError       database refused a write (HTTP 503)
│   └── PaymentRefCollisionError
└── GatewayError              gateway could not produce an outcome (HTTP 502)
"""


class PaymentError(Exception):
    """Base class for errors raised by the payment core."""


class NotFoundError(PaymentError):
    pass


class BadRequestError(PaymentError):
    pass


class InvalidTransitionError(BadRequestError):
    """Raised when an event is not allowed from the payment's current status."""

    def __init__(self, current, event, detail: str) -> None:
        self.current = current
        self.event = event
        self.detail = detail
        super().__init__(f"cannot apply {event.value} to {current.value} payment: {detail}")


class IdempotencyConflictError(PaymentError):
    """Another writer inserted a payment with the same idempotency key first."""

    def __init__(self, idempotency_key: str) -> None:
        self.idempotency_key = idempotency_key
        super().__init__(f"idempotency key already used: {idempotency_key}")


class StalePaymentError(PaymentError):
    """Payment row changed between read and write."""

    def __init__(self, payment_id: int, expected_version: int) -> None:
        self.payment_id = payment_id
        self.expected_version = expected_version
        super().__init__(
            f"concurrent modification of payment {payment_id} (expected version {expected_version})"
        )


class GatewayError(PaymentError):
    pass


class PaymentStorageError(PaymentError):
    """The database rejected a write for a reason other than a known conflict."""


class PaymentRefCollisionError(PaymentStorageError):
    """A freshly generated payment reference is already taken."""

    def __init__(self, payment_ref: str) -> None:
        self.payment_ref = payment_ref
        super().__init__(f"payment reference already used: {payment_ref}")
