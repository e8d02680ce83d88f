"""Concurrent submissions: one record per idempotency key, one refund per payment."""

from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal

from ticketpay.common.errors import BadRequestError
from ticketpay.common.state_machine import PaymentStatus
from ticketpay.services.payments.gateway import FixedOutcomeGateway
from ticketpay.services.payments.models import Payment

from conftest import RecordingGateway


PARALLEL_CALLS = 50


def test_parallel_charges_with_one_key_create_one_payment(make_service, session_factory):
    gateway = RecordingGateway(FixedOutcomeGateway(approve=True), delay_seconds=0.05)
    service = make_service(gateway)

    def submit(_):
        return service.charge("ORD-1", Decimal("100.00"), "K-parallel", 7)

    with ThreadPoolExecutor(max_workers=PARALLEL_CALLS) as pool:
        records = list(pool.map(submit, range(PARALLEL_CALLS)))

    with session_factory() as db:
        assert db.query(Payment).filter(Payment.idempotency_key == "K-parallel").count() == 1

    assert gateway.calls == 1
    assert {(r.id, r.status, r.transaction_id, r.failure_reason) for r in records} == {
        (records[0].id, PaymentStatus.SUCCESS, records[0].transaction_id, None)
    }


def test_parallel_charges_with_distinct_keys_are_independent(make_service, session_factory):
    gateway = RecordingGateway(FixedOutcomeGateway(approve=True))
    service = make_service(gateway)

    def submit(i):
        return service.charge(f"ORD-{i}", Decimal("10.00"), f"K-distinct-{i}", 7)

    with ThreadPoolExecutor(max_workers=10) as pool:
        records = list(pool.map(submit, range(20)))

    assert len({r.id for r in records}) == 20
    assert gateway.calls == 20


def test_parallel_refunds_refund_once(make_service):
    service = make_service(RecordingGateway(FixedOutcomeGateway(approve=True)))
    charged = service.charge("ORD-1", Decimal("100.00"), "K-refund-race", 7)

    def refund(i):
        try:
            return service.refund(charged.id, f"reason-{i}")
        except BadRequestError as exc:
            return exc

    with ThreadPoolExecutor(max_workers=8) as pool:
        results = list(pool.map(refund, range(8)))

    succeeded = [r for r in results if not isinstance(r, BadRequestError)]
    assert len(succeeded) == 1
    assert succeeded[0].status is PaymentStatus.REFUNDED
    assert service.get_by_id(charged.id).failure_reason == succeeded[0].failure_reason
