"""Store-level guarantees: id assignment, lookups and the unique idempotency key."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy.exc import IntegrityError

from ticketpay.common.errors import (
    IdempotencyConflictError,
    PaymentRefCollisionError,
    PaymentStorageError,
    StalePaymentError,
)
from ticketpay.common.state_machine import PaymentState, PaymentStatus
from ticketpay.services.payments.models import Payment
from ticketpay.services.payments.store import PaymentStore


def _payment(key: str, order_id: str = "ORD-1", ref: str | None = None, **overrides) -> Payment:
    fields = dict(
        payment_ref=ref or f"PAY-{key[-8:].upper()}",
        order_id=order_id,
        idempotency_key=key,
        user_id=7,
        amount=Decimal("100.00"),
        status=PaymentStatus.PENDING.value,
        state_version=0,
    )
    fields.update(overrides)
    return Payment(**fields)


def test_save_assigns_id_and_lookups_find_it(session_factory):
    with session_factory() as db:
        store = PaymentStore(db)
        saved = store.save(_payment("key-0001"))
        assert saved.id is not None
        db.commit()

    with session_factory() as db:
        store = PaymentStore(db)
        assert store.find_by_id(saved.id).idempotency_key == "key-0001"
        assert store.find_by_idempotency_key("key-0001").id == saved.id
        assert store.find_by_order_id("ORD-1").id == saved.id
        assert store.find_by_id(saved.id + 100) is None
        assert store.find_by_idempotency_key("missing") is None
        assert store.find_by_order_id("ORD-missing") is None


def test_duplicate_idempotency_key_is_a_conflict(session_factory):
    """The unique constraint, not an application check, rejects the second insert."""

    with session_factory() as db:
        PaymentStore(db).save(_payment("dup-key-1", ref="PAY-AAAAAAAA"))
        db.commit()

    with session_factory() as db:
        with pytest.raises(IdempotencyConflictError) as excinfo:
            PaymentStore(db).save(_payment("dup-key-1", ref="PAY-BBBBBBBB"))
        assert excinfo.value.idempotency_key == "dup-key-1"

    with session_factory() as db:
        assert db.query(Payment).count() == 1


def test_duplicate_payment_ref_is_a_ref_collision(session_factory):
    with session_factory() as db:
        PaymentStore(db).save(_payment("key-a", ref="PAY-SAMEREF0"))
        db.commit()

    with session_factory() as db:
        with pytest.raises(PaymentRefCollisionError) as excinfo:
            PaymentStore(db).save(_payment("key-b", ref="PAY-SAMEREF0"))

    assert excinfo.value.payment_ref == "PAY-SAMEREF0"
    assert isinstance(excinfo.value.__cause__, IntegrityError)


def test_other_integrity_errors_become_storage_errors(session_factory):
    """A check constraint violation surfaces as a domain error, not a driver error."""

    with session_factory() as db:
        with pytest.raises(PaymentStorageError) as excinfo:
            PaymentStore(db).save(_payment("key-negative", amount=Decimal("-1.00")))

    assert not isinstance(excinfo.value, PaymentRefCollisionError)
    with session_factory() as db:
        assert PaymentStore(db).find_by_idempotency_key("key-negative") is None


def test_find_by_order_id_returns_most_recent(session_factory):
    older = datetime.now(timezone.utc) - timedelta(minutes=5)
    with session_factory() as db:
        store = PaymentStore(db)
        store.save(_payment("order-key-1", order_id="ORD-9", created_at=older))
        newest = store.save(_payment("order-key-2", order_id="ORD-9"))
        db.commit()

    with session_factory() as db:
        assert PaymentStore(db).find_by_order_id("ORD-9").id == newest.id


def test_apply_state_bumps_version(session_factory):
    with session_factory() as db:
        store = PaymentStore(db)
        payment = store.save(_payment("cas-key-1"))
        store.apply_state(payment, PaymentState(PaymentStatus.SUCCESS, transaction_id="TXN-1"))
        db.commit()

    with session_factory() as db:
        stored = PaymentStore(db).find_by_id(payment.id)
        assert stored.status == "SUCCESS"
        assert stored.transaction_id == "TXN-1"
        assert stored.state_version == 1


def test_apply_state_on_stale_read_raises(session_factory):
    """A writer holding an old version must not overwrite a newer status."""

    with session_factory() as db:
        payment = PaymentStore(db).save(_payment("cas-key-2", status=PaymentStatus.SUCCESS.value))
        db.commit()

    with session_factory() as db_a:
        store_a = PaymentStore(db_a)
        stale = store_a.find_by_id(payment.id)
        db_a.commit()

        with session_factory() as db_b:
            store_b = PaymentStore(db_b)
            fresh = store_b.find_by_id(payment.id)
            store_b.apply_state(fresh, PaymentState(PaymentStatus.REFUNDED, failure_reason="first"))
            db_b.commit()

        with pytest.raises(StalePaymentError):
            store_a.apply_state(stale, PaymentState(PaymentStatus.REFUNDED, failure_reason="second"))


def test_claim_only_succeeds_once_per_version(session_factory):
    with session_factory() as db:
        payment = PaymentStore(db).save(_payment("claim-key-1"))
        db.commit()

    with session_factory() as db_a:
        store_a = PaymentStore(db_a)
        first = store_a.find_by_id(payment.id)
        db_a.commit()

        with session_factory() as db_b:
            store_b = PaymentStore(db_b)
            assert store_b.claim(store_b.find_by_id(payment.id)) is True
            db_b.commit()

        assert store_a.claim(first) is False


def test_find_stale_pending_respects_cutoff(session_factory):
    old = datetime.now(timezone.utc) - timedelta(hours=1)
    with session_factory() as db:
        store = PaymentStore(db)
        stale = store.save(_payment("stale-key-1", created_at=old))
        store.save(_payment("fresh-key-1"))
        store.save(_payment("settled-key-1", created_at=old, status=PaymentStatus.FAILED.value))
        db.commit()

    cutoff = datetime.now(timezone.utc) - timedelta(minutes=10)
    with session_factory() as db:
        found = PaymentStore(db).find_stale_pending(cutoff)
        assert [p.id for p in found] == [stale.id]
