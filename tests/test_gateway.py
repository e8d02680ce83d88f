"""Gateway adapters stay opaque to the service and deterministic when seeded."""

import random
from decimal import Decimal

import pytest

from ticketpay.common.config import CommonSettings
from ticketpay.services.payments.gateway import (
    Approved,
    Declined,
    FixedOutcomeGateway,
    GatewayAdapter,
    MockGateway,
    build_gateway,
)


def _outcomes(gateway, n=20):
    return [gateway.authorize(Decimal("10.00")) for _ in range(n)]


def test_mock_gateway_is_reproducible_with_a_seed():
    first = _outcomes(MockGateway(random.Random(42)))
    second = _outcomes(MockGateway(random.Random(42)))

    assert first == second


def test_mock_gateway_honors_approval_rate_bounds():
    assert all(isinstance(o, Approved) for o in _outcomes(MockGateway(random.Random(1), approval_rate=1.0)))
    declines = _outcomes(MockGateway(random.Random(1), approval_rate=0.0, decline_reason="nope"))
    assert declines == [Declined(reason="nope")] * 20


def test_mock_gateway_transaction_ids_are_prefixed():
    outcome = MockGateway(random.Random(3), approval_rate=1.0).authorize(Decimal("1.00"))

    assert outcome.transaction_id.startswith("TXN-")


def test_mock_gateway_rejects_invalid_rate():
    with pytest.raises(ValueError):
        MockGateway(random.Random(), approval_rate=1.5)


def test_fixed_outcome_gateway():
    assert isinstance(FixedOutcomeGateway(approve=True).authorize(Decimal("1.00")), Approved)
    assert FixedOutcomeGateway(approve=False, decline_reason="x").authorize(Decimal("1.00")) == Declined("x")


@pytest.mark.parametrize(
    ("mode", "expected_type"),
    [("mock", MockGateway), ("approve", FixedOutcomeGateway), ("DECLINE", FixedOutcomeGateway)],
)
def test_build_gateway_modes(mode, expected_type):
    gateway = build_gateway(CommonSettings(gateway_mode=mode, gateway_seed=5))

    assert isinstance(gateway, expected_type)
    assert isinstance(gateway, GatewayAdapter)


def test_build_gateway_rejects_unknown_mode():
    with pytest.raises(ValueError):
        build_gateway(CommonSettings(gateway_mode="stripe"))
