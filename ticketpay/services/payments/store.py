"""Payment persistence on top of one SQLAlchemy session.

The idempotency key and the payment reference are unique at the database
level. `save` turns a violation of either constraint into a domain error so
callers can recover without knowing about driver exceptions.
"""

from datetime import datetime, timezone

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import set_committed_value

from ticketpay.common.errors import (
    IdempotencyConflictError,
    PaymentRefCollisionError,
    PaymentStorageError,
    StalePaymentError,
)
from ticketpay.common.state_machine import PaymentState, PaymentStatus
from ticketpay.services.payments.models import Payment


class PaymentStore:
    """Lookups and guarded writes for `Payment` rows within one unit of work."""

    def __init__(self, db: Session) -> None:
        self.db = db

    def find_by_id(self, payment_id: int, for_update: bool = False) -> Payment | None:
        stmt = select(Payment).where(Payment.id == payment_id)
        if for_update:
            stmt = stmt.with_for_update()
        return self.db.execute(stmt).scalar_one_or_none()

    def find_by_order_id(self, order_id: str) -> Payment | None:
        """Return the most recent payment created for an order."""

        return self.db.execute(
            select(Payment)
            .where(Payment.order_id == order_id)
            .order_by(Payment.created_at.desc(), Payment.id.desc())
            .limit(1)
        ).scalar_one_or_none()

    def find_by_idempotency_key(self, idempotency_key: str) -> Payment | None:
        return self.db.execute(
            select(Payment).where(Payment.idempotency_key == idempotency_key)
        ).scalar_one_or_none()

    def find_stale_pending(self, older_than: datetime, limit: int = 100) -> list[Payment]:
        return list(
            self.db.execute(
                select(Payment)
                .where(Payment.status == PaymentStatus.PENDING.value, Payment.created_at < older_than)
                .order_by(Payment.created_at)
                .limit(limit)
            ).scalars()
        )

    def find_by_payment_ref(self, payment_ref: str) -> Payment | None:
        return self.db.execute(select(Payment).where(Payment.payment_ref == payment_ref)).scalar_one_or_none()

    def save(self, payment: Payment) -> Payment:
        """Insert or update `payment` and flush so a new row gets its id.

        Any integrity failure rolls the unit of work back. A duplicate
        idempotency key raises `IdempotencyConflictError`, a duplicate
        payment reference raises `PaymentRefCollisionError`, and anything
        else raises `PaymentStorageError`.
        """

        self.db.add(payment)
        try:
            self.db.flush()
        except IntegrityError as exc:
            key = payment.idempotency_key
            ref = payment.payment_ref
            self.db.rollback()
            if self.find_by_idempotency_key(key) is not None:
                raise IdempotencyConflictError(key) from exc
            if self.find_by_payment_ref(ref) is not None:
                raise PaymentRefCollisionError(ref) from exc
            raise PaymentStorageError(f"payment write rejected: {exc.orig}") from exc
        return payment

    def _compare_and_set(self, payment: Payment, **values) -> bool:
        current_version = payment.state_version
        values["state_version"] = current_version + 1
        values["updated_at"] = datetime.now(timezone.utc)
        result = self.db.execute(
            update(Payment)
            .where(
                Payment.id == payment.id,
                Payment.status == payment.status,
                Payment.state_version == current_version,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return False
        # The row is already written; keep the instance in sync without a second UPDATE.
        for name, value in values.items():
            set_committed_value(payment, name, value)
        return True

    def apply_state(self, payment: Payment, state: PaymentState) -> Payment:
        """Write `state` onto `payment`, guarded by its status and version.

        Raises `StalePaymentError` when the row no longer matches what this
        unit of work read.
        """

        expected_version = payment.state_version
        written = self._compare_and_set(
            payment,
            status=state.status.value,
            transaction_id=state.transaction_id,
            failure_reason=state.failure_reason,
        )
        if not written:
            raise StalePaymentError(payment.id, expected_version)
        return payment

    def claim(self, payment: Payment) -> bool:
        """Take ownership of a PENDING payment by bumping its version."""

        if payment.status != PaymentStatus.PENDING.value:
            return False
        return self._compare_and_set(payment)
