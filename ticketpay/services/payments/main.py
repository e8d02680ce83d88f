"""HTTP surface for charges, refunds and payment lookups."""

from contextlib import asynccontextmanager
from time import perf_counter
from uuid import uuid4

from fastapi import FastAPI, Header, HTTPException, Request
from fastapi.responses import JSONResponse

from ticketpay.common.config import settings
from ticketpay.common.db import Base, SessionLocal, engine
from ticketpay.common.errors import (
    BadRequestError,
    GatewayError,
    NotFoundError,
    PaymentStorageError,
    StalePaymentError,
)
from ticketpay.common.logging import configure_logging, log_context, logger
from ticketpay.common.metrics import http_request_duration_seconds, http_requests_total, metrics_response
from ticketpay.common.startup import log_startup_config
from ticketpay.common.tracing import instrument_app, setup_tracing
from ticketpay.services.payments.gateway import build_gateway
from ticketpay.services.payments.schemas import ChargeRequest, PaymentRecord, RefundRequest
from ticketpay.services.payments.service import PaymentService

configure_logging()
setup_tracing(settings.service_name)
log_startup_config(
    settings,
    ["database_dsn", "api_key", "gateway_mode", "gateway_approval_rate", "tracing_enabled"],
)
service = PaymentService(SessionLocal, build_gateway(settings), service_name=settings.service_name)


@asynccontextmanager
async def lifespan(_: FastAPI):
    """Create the schema on boot when running without migrations."""

    if settings.auto_create_schema:
        Base.metadata.create_all(engine)
    yield


app = FastAPI(title="TicketPay Payments", lifespan=lifespan)
instrument_app(app)


@app.middleware("http")
async def metrics_middleware(request: Request, call_next):
    """Record request count and latency for every HTTP call."""

    start = perf_counter()
    route = request.url.path
    method = request.method
    status_code = 500
    trace_id = request.headers.get("x-correlation-id") or str(uuid4())
    try:
        with log_context(trace_id=trace_id):
            response = await call_next(request)
        status_code = response.status_code
        route_obj = request.scope.get("route")
        if route_obj is not None and getattr(route_obj, "path", None):
            route = route_obj.path
        return response
    finally:
        elapsed = max(0.0, perf_counter() - start)
        http_request_duration_seconds.labels(
            service=settings.service_name,
            route=route,
            method=method,
        ).observe(elapsed)
        http_requests_total.labels(
            service=settings.service_name,
            route=route,
            method=method,
            status_code=str(status_code),
        ).inc()


@app.exception_handler(NotFoundError)
async def not_found_handler(_: Request, exc: NotFoundError):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(BadRequestError)
async def bad_request_handler(_: Request, exc: BadRequestError):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(StalePaymentError)
async def stale_payment_handler(_: Request, exc: StalePaymentError):
    logger.error("write conflict escaped retries: %s", exc)
    return JSONResponse(status_code=409, content={"detail": "payment is being modified, retry later"})


@app.exception_handler(PaymentStorageError)
async def storage_error_handler(_: Request, exc: PaymentStorageError):
    logger.error("payment write failed: %s", exc)
    return JSONResponse(status_code=503, content={"detail": "payment could not be stored, retry later"})


@app.exception_handler(GatewayError)
async def gateway_error_handler(_: Request, exc: GatewayError):
    return JSONResponse(status_code=502, content={"detail": f"payment gateway unavailable: {exc}"})


def enforce_api_key(x_api_key: str | None) -> None:
    """Reject requests that do not provide the configured API key."""

    if x_api_key != settings.api_key:
        raise HTTPException(status_code=401, detail="invalid API key")


@app.post("/api/v1/payments/charge", response_model=PaymentRecord)
def charge(
    req: ChargeRequest,
    idempotency_key: str = Header(alias="Idempotency-Key", min_length=1),
    x_user_id: int = Header(),
    x_api_key: str | None = Header(default=None),
):
    """Process a charge; repeats with the same `Idempotency-Key` return the first result."""

    enforce_api_key(x_api_key)
    return service.charge(req.order_id, req.amount, idempotency_key, x_user_id)


@app.post("/api/v1/payments/refund", response_model=PaymentRecord)
def refund(req: RefundRequest, x_api_key: str | None = Header(default=None)):
    """Refund a successful payment."""

    enforce_api_key(x_api_key)
    return service.refund(req.payment_id, req.reason)


@app.get("/api/v1/payments/order/{order_id}", response_model=PaymentRecord)
def get_payment_by_order_id(order_id: str, x_api_key: str | None = Header(default=None)):
    enforce_api_key(x_api_key)
    return service.get_by_order_id(order_id)


@app.get("/api/v1/payments/{payment_id}", response_model=PaymentRecord)
def get_payment(payment_id: int, x_api_key: str | None = Header(default=None)):
    enforce_api_key(x_api_key)
    return service.get_by_id(payment_id)


@app.get("/metrics")
def metrics():
    """Prometheus scrape endpoint."""

    return metrics_response()


@app.get("/health")
def health():
    """Container health check endpoint."""

    return {"ok": True}
