"""Payment orchestration.

Owns the idempotent charge flow (lookup, create, authorize, transition) and
refunds. Every charge runs in a single transaction: a crash or gateway error
before commit leaves no payment behind, and a PENDING row found later is an
interrupted charge that gets resumed rather than returned as final.
"""

import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation

from ticketpay.common.errors import (
    BadRequestError,
    GatewayError,
    IdempotencyConflictError,
    NotFoundError,
    PaymentRefCollisionError,
    StalePaymentError,
)
from ticketpay.common.logging import log_context, logger
from ticketpay.common.metrics import (
    charge_outcomes_total,
    charge_requests_total,
    gateway_latency_seconds,
    idempotency_conflicts_total,
    idempotent_replays_total,
    pending_recovered_total,
    refunds_total,
)
from ticketpay.common.state_machine import PaymentEvent, PaymentStatus, transition
from ticketpay.common.tracing import tracer
from ticketpay.services.payments.gateway import Approved, Declined, GatewayAdapter
from ticketpay.services.payments.models import Payment
from ticketpay.services.payments.schemas import PaymentRecord
from ticketpay.services.payments.store import PaymentStore


CENTS = Decimal("0.01")


def new_payment_ref() -> str:
    return "PAY-" + uuid.uuid4().hex[:8].upper()


def parse_amount(amount) -> Decimal:
    """Return `amount` as a positive Decimal in whole cents, without rounding."""

    try:
        value = Decimal(str(amount))
    except InvalidOperation as exc:
        raise BadRequestError(f"amount is not a number: {amount!r}") from exc
    if not value.is_finite():
        raise BadRequestError(f"amount is not a number: {amount!r}")
    if value <= 0:
        raise BadRequestError("amount must be positive")
    try:
        cents = value.quantize(CENTS)
    except InvalidOperation as exc:
        raise BadRequestError("amount is too large") from exc
    if cents != value:
        raise BadRequestError("amount must have at most two decimal places")
    return cents


class PaymentService:
    """Single writer of payment records."""

    def __init__(
        self,
        session_factory,
        gateway: GatewayAdapter,
        service_name: str = "payments",
        max_write_attempts: int = 3,
    ) -> None:
        self.session_factory = session_factory
        self.gateway = gateway
        self.service_name = service_name
        if max_write_attempts < 1:
            raise ValueError("max_write_attempts must be at least 1")
        self.max_write_attempts = max_write_attempts

    @staticmethod
    def _to_record(payment: Payment) -> PaymentRecord:
        return PaymentRecord.model_validate(payment)

    def charge(self, order_id: str, amount, idempotency_key: str, user_id: int) -> PaymentRecord:
        """Charge `amount` once per idempotency key.

        A key that already has a settled payment returns that payment as is,
        whatever its status, without calling the gateway again. Losing the
        insert race to a concurrent request with the same key ends the same
        way. Amounts with fractions of a cent are rejected, never rounded.
        """

        amount = parse_amount(amount)
        if not idempotency_key:
            raise BadRequestError("idempotency key is required")

        charge_requests_total.labels(service=self.service_name).inc()
        with log_context(idempotency_key=idempotency_key):
            with self.session_factory() as db:
                store = PaymentStore(db)
                existing = store.find_by_idempotency_key(idempotency_key)
                if existing is not None:
                    return self._replay(db, store, existing)

                try:
                    payment = self._insert(store, order_id, amount, idempotency_key, user_id)
                except IdempotencyConflictError:
                    idempotency_conflicts_total.labels(service=self.service_name).inc()
                    logger.info("idempotency conflict on insert, returning concurrent payment")
                    winner = store.find_by_idempotency_key(idempotency_key)
                    return self._replay(db, store, winner)

                logger.info("payment created order_id=%s payment_id=%s", order_id, payment.id)
                return self._settle(db, store, payment)

    def _insert(
        self, store: PaymentStore, order_id: str, amount: Decimal, idempotency_key: str, user_id: int
    ) -> Payment:
        """Insert a PENDING payment, drawing a new reference if one is taken."""

        for attempt in range(1, self.max_write_attempts + 1):
            try:
                return store.save(
                    Payment(
                        payment_ref=new_payment_ref(),
                        order_id=order_id,
                        idempotency_key=idempotency_key,
                        user_id=user_id,
                        amount=amount,
                        status=PaymentStatus.PENDING.value,
                        state_version=0,
                    )
                )
            except PaymentRefCollisionError as exc:
                if attempt == self.max_write_attempts:
                    raise
                logger.warning("payment reference %s taken, drawing a new one attempt=%s", exc.payment_ref, attempt)

    def _replay(self, db, store: PaymentStore, payment: Payment) -> PaymentRecord:
        if payment.status == PaymentStatus.PENDING.value:
            return self._resume(db, store, payment)
        logger.info(
            "idempotent request detected payment_id=%s status=%s", payment.id, payment.status
        )
        idempotent_replays_total.labels(service=self.service_name).inc()
        return self._to_record(payment)

    def _resume(self, db, store: PaymentStore, payment: Payment) -> PaymentRecord:
        """Finish an interrupted charge, unless another writer already owns it."""

        payment_id = payment.id
        if not store.claim(payment):
            db.rollback()
            current = store.find_by_id(payment_id)
            logger.info("payment_id=%s settled by another writer status=%s", payment_id, current.status)
            return self._to_record(current)

        logger.warning("resuming incomplete payment payment_id=%s", payment_id)
        record = self._settle(db, store, payment)
        pending_recovered_total.labels(service=self.service_name).inc()
        return record

    def _settle(self, db, store: PaymentStore, payment: Payment) -> PaymentRecord:
        """Authorize a PENDING payment, persist the outcome and commit."""

        with log_context(payment_id=payment.id):
            try:
                with (
                    tracer.start_as_current_span("gateway.authorize"),
                    gateway_latency_seconds.labels(service=self.service_name).time(),
                ):
                    outcome = self.gateway.authorize(payment.amount)
            except GatewayError as exc:
                logger.warning("gateway unavailable, rolling back payment_id=%s error=%s", payment.id, exc)
                raise

            if isinstance(outcome, Approved):
                state = transition(
                    payment.state, PaymentEvent.GATEWAY_APPROVED, transaction_id=outcome.transaction_id
                )
            elif isinstance(outcome, Declined):
                state = transition(payment.state, PaymentEvent.GATEWAY_DECLINED, reason=outcome.reason)
            else:
                raise GatewayError(f"unexpected gateway outcome: {outcome!r}")

            store.apply_state(payment, state)
            db.commit()
            charge_outcomes_total.labels(service=self.service_name, status=payment.status).inc()
            logger.info("payment %s for order %s", payment.status, payment.order_id)
            return self._to_record(payment)

    def refund(self, payment_id: int, reason: str | None) -> PaymentRecord:
        """Refund a SUCCESS payment; every other status is rejected."""

        with self.session_factory() as db:
            store = PaymentStore(db)
            for attempt in range(1, self.max_write_attempts + 1):
                payment = store.find_by_id(payment_id, for_update=True)
                if payment is None:
                    raise NotFoundError(f"payment {payment_id} not found")
                state = transition(payment.state, PaymentEvent.REFUND_REQUESTED, reason=reason)
                try:
                    store.apply_state(payment, state)
                except StalePaymentError:
                    if attempt == self.max_write_attempts:
                        raise
                    logger.info("refund raced a concurrent write payment_id=%s attempt=%s", payment_id, attempt)
                    db.rollback()
                    continue
                db.commit()
                refunds_total.labels(service=self.service_name).inc()
                logger.info("payment REFUNDED for order %s payment_id=%s", payment.order_id, payment_id)
                return self._to_record(payment)

    def get_by_id(self, payment_id: int) -> PaymentRecord:
        with self.session_factory() as db:
            payment = PaymentStore(db).find_by_id(payment_id)
            if payment is None:
                raise NotFoundError(f"payment {payment_id} not found")
            return self._to_record(payment)

    def get_by_order_id(self, order_id: str) -> PaymentRecord:
        with self.session_factory() as db:
            payment = PaymentStore(db).find_by_order_id(order_id)
            if payment is None:
                raise NotFoundError(f"payment not found for order {order_id}")
            return self._to_record(payment)

    def recover_stale_pending(self, older_than_seconds: int, limit: int = 100) -> list[PaymentRecord]:
        """Resume PENDING payments left behind by interrupted charges.

        Each payment is resumed in its own transaction. A gateway error on one
        payment leaves it PENDING for the next run and does not stop the rest.
        """

        cutoff = datetime.now(timezone.utc) - timedelta(seconds=older_than_seconds)
        with self.session_factory() as db:
            payment_ids = [p.id for p in PaymentStore(db).find_stale_pending(cutoff, limit=limit)]

        recovered = []
        for payment_id in payment_ids:
            with self.session_factory() as db:
                store = PaymentStore(db)
                payment = store.find_by_id(payment_id, for_update=True)
                if payment is None or payment.status != PaymentStatus.PENDING.value:
                    continue
                try:
                    recovered.append(self._resume(db, store, payment))
                except GatewayError:
                    logger.exception("recovery failed for payment_id=%s", payment_id)
        return recovered
