"""Send many concurrent charges with one idempotency key and count payments.

Every response should carry the same payment id; anything else means the
idempotency guarantee is broken.
"""

import argparse
import asyncio
from uuid import uuid4

import httpx


async def run(base_url: str, api_key: str, count: int, order_id: str, amount: str, user_id: int) -> int:
    """Fire `count` parallel charges and print a summary; return a process exit code."""

    idempotency_key = f"burst-{uuid4()}"
    headers = {
        "x-api-key": api_key,
        "x-user-id": str(user_id),
        "idempotency-key": idempotency_key,
    }
    async with httpx.AsyncClient(timeout=30.0) as client:

        async def one():
            resp = await client.post(
                f"{base_url}/api/v1/payments/charge",
                json={"order_id": order_id, "amount": amount},
                headers={**headers, "x-correlation-id": str(uuid4())},
            )
            return resp.status_code, resp.json() if resp.status_code == 200 else resp.text

        results = await asyncio.gather(*(one() for _ in range(count)))

    statuses: dict[int, int] = {}
    payment_ids = set()
    outcomes = set()
    for status_code, body in results:
        statuses[status_code] = statuses.get(status_code, 0) + 1
        if status_code == 200:
            payment_ids.add(body["id"])
            outcomes.add((body["status"], body["transaction_id"], body["failure_reason"]))

    print(f"idempotency_key={idempotency_key}")
    print("status_counts=", statuses)
    print(f"distinct_payments={len(payment_ids)} distinct_outcomes={len(outcomes)}")
    return 0 if len(payment_ids) == 1 and len(outcomes) == 1 else 1


def main() -> None:
    """CLI entrypoint for idempotency smoke tests."""

    parser = argparse.ArgumentParser(description="Send concurrent charges sharing one idempotency key.")
    parser.add_argument("--base-url", default="http://localhost:8000")
    parser.add_argument("--api-key", default="dev-secret")
    parser.add_argument("--count", type=int, default=50)
    parser.add_argument("--order-id", default=f"ORD-{uuid4().hex[:8]}")
    parser.add_argument("--amount", default="100.00")
    parser.add_argument("--user-id", type=int, default=7)
    args = parser.parse_args()
    rc = asyncio.run(run(args.base_url, args.api_key, args.count, args.order_id, args.amount, args.user_id))
    raise SystemExit(rc)


if __name__ == "__main__":
    main()
