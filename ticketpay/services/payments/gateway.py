"""Gateway adapters that authorize a charge amount.

The payment service only sees `authorize(amount) -> Approved | Declined`.
How an adapter decides (randomness, a fixed answer, a real processor) stays
inside the adapter.
"""

import random
import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Protocol, runtime_checkable

from ticketpay.common.config import CommonSettings


@dataclass(frozen=True)
class Approved:
    transaction_id: str


@dataclass(frozen=True)
class Declined:
    reason: str


GatewayOutcome = Approved | Declined


@runtime_checkable
class GatewayAdapter(Protocol):
    """Capability for authorizing a charge amount.

    Implementations raise `ticketpay.common.errors.GatewayError` when they cannot produce an outcome.
    """

    def authorize(self, amount: Decimal) -> GatewayOutcome: ...


class MockGateway:
    """Approves a configurable share of charges using an injected rng."""

    def __init__(
        self,
        rng: random.Random,
        approval_rate: float = 0.9,
        decline_reason: str = "Insufficient funds (mock failure)",
    ) -> None:
        if not 0.0 <= approval_rate <= 1.0:
            raise ValueError("approval_rate must be between 0 and 1")
        self.rng = rng
        self.approval_rate = approval_rate
        self.decline_reason = decline_reason

    def authorize(self, amount: Decimal) -> GatewayOutcome:
        if self.rng.random() < self.approval_rate:
            # Drawn from the same rng so seeded runs are reproducible end to end.
            return Approved(transaction_id=f"TXN-{uuid.UUID(int=self.rng.getrandbits(128), version=4)}")
        return Declined(reason=self.decline_reason)


class FixedOutcomeGateway:
    """Always approves or always declines."""

    def __init__(self, approve: bool, decline_reason: str = "Declined by gateway") -> None:
        self.approve = approve
        self.decline_reason = decline_reason

    def authorize(self, amount: Decimal) -> GatewayOutcome:
        if self.approve:
            return Approved(transaction_id=f"TXN-{uuid.uuid4()}")
        return Declined(reason=self.decline_reason)


def build_gateway(settings: CommonSettings) -> GatewayAdapter:
    """Create the adapter selected by `GATEWAY_MODE`."""

    mode = settings.gateway_mode.lower()
    if mode == "mock":
        return MockGateway(
            rng=random.Random(settings.gateway_seed),
            approval_rate=settings.gateway_approval_rate,
            decline_reason=settings.gateway_decline_reason,
        )
    if mode == "approve":
        return FixedOutcomeGateway(approve=True)
    if mode == "decline":
        return FixedOutcomeGateway(approve=False, decline_reason=settings.gateway_decline_reason)
    raise ValueError(f"unknown gateway mode: {settings.gateway_mode}")
