"""Payment database models.

This table is the source of truth for payment status. Only the payment
service writes to it.
"""

from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import BigInteger, CheckConstraint, DateTime, Index, Integer, Numeric, String, func
from sqlalchemy.orm import Mapped, mapped_column

from ticketpay.common.db import Base
from ticketpay.common.state_machine import PaymentState, PaymentStatus


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Payment(Base):
    """Current state of one charge and its optional refund."""

    __tablename__ = "payments"
    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_payments_amount_positive"),
        Index("ix_payments_status_created_at", "status", "created_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    payment_ref: Mapped[str] = mapped_column(String(20), unique=True)
    order_id: Mapped[str] = mapped_column(String, index=True)
    idempotency_key: Mapped[str] = mapped_column(String, unique=True, index=True)
    user_id: Mapped[int] = mapped_column(BigInteger, index=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2))
    status: Mapped[str] = mapped_column(String(16), index=True, default=PaymentStatus.PENDING.value)
    state_version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    transaction_id: Mapped[str | None] = mapped_column(String, nullable=True)
    failure_reason: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now(), onupdate=_utcnow
    )

    @property
    def state(self) -> PaymentState:
        return PaymentState(
            status=PaymentStatus(self.status),
            transaction_id=self.transaction_id,
            failure_reason=self.failure_reason,
        )
