"""Resume payments stuck in PENDING after an interrupted charge.

Runs against the database configured through `DATABASE_DSN` and uses the
gateway selected by `GATEWAY_MODE`.
"""

import argparse

from ticketpay.common.config import settings
from ticketpay.common.db import SessionLocal
from ticketpay.common.logging import configure_logging
from ticketpay.services.payments.gateway import build_gateway
from ticketpay.services.payments.service import PaymentService


def main() -> None:
    """CLI entrypoint for stale PENDING recovery."""

    parser = argparse.ArgumentParser(description="Resume PENDING payments older than a cutoff.")
    parser.add_argument("--older-than-seconds", type=int, default=settings.pending_recovery_seconds)
    parser.add_argument("--limit", type=int, default=100)
    parser.add_argument("--log-level", default=None, help="overrides LOG_LEVEL")
    args = parser.parse_args()

    configure_logging(level=args.log_level, service_name=f"{settings.service_name}-recovery")
    service = PaymentService(SessionLocal, build_gateway(settings), service_name=settings.service_name)
    recovered = service.recover_stale_pending(args.older_than_seconds, limit=args.limit)
    for record in recovered:
        print(f"payment_id={record.id} order_id={record.order_id} status={record.status.value}")
    print(f"recovered={len(recovered)}")


if __name__ == "__main__":
    main()
