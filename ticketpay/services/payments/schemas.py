"""API request/response schemas for payment endpoints."""

from datetime import datetime, timezone
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ticketpay.common.state_machine import PaymentStatus


class ChargeRequest(BaseModel):
    """Charge payload; the idempotency key travels in a header."""

    order_id: str = Field(min_length=1)
    amount: Decimal = Field(gt=0, max_digits=12, decimal_places=2)


class RefundRequest(BaseModel):
    """Refund payload for one successful payment."""

    payment_id: int
    reason: str | None = None


class PaymentRecord(BaseModel):
    """Payment as returned to callers."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    order_id: str
    amount: Decimal
    status: PaymentStatus
    transaction_id: str | None = None
    failure_reason: str | None = None
    created_at: datetime

    @field_validator("created_at")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        # SQLite drops tzinfo; stored timestamps are always UTC.
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value
