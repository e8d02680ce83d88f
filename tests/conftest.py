"""Shared fixtures: an isolated SQLite database and recording gateways."""

import os

os.environ.setdefault("TRACING_ENABLED", "false")
os.environ.setdefault("DATABASE_DSN", "sqlite://")
os.environ.setdefault("API_KEY", "test-key")

import threading
import time

import pytest

from ticketpay.common.db import Base, make_engine, make_session_factory
from ticketpay.services.payments.gateway import FixedOutcomeGateway
from ticketpay.services.payments.service import PaymentService


DECLINE_REASON = "Card declined (test double)"


class RecordingGateway:
    """Counts authorize calls and delegates the decision to another adapter."""

    def __init__(self, inner, delay_seconds: float = 0.0) -> None:
        self.inner = inner
        self.delay_seconds = delay_seconds
        self.calls = 0
        self._lock = threading.Lock()

    def authorize(self, amount):
        with self._lock:
            self.calls += 1
        if self.delay_seconds:
            time.sleep(self.delay_seconds)
        return self.inner.authorize(amount)


@pytest.fixture
def engine(tmp_path):
    db_engine = make_engine(f"sqlite:///{tmp_path / 'payments.db'}")
    Base.metadata.create_all(db_engine)
    yield db_engine
    db_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture
def approving_gateway():
    return RecordingGateway(FixedOutcomeGateway(approve=True))


@pytest.fixture
def declining_gateway():
    return RecordingGateway(FixedOutcomeGateway(approve=False, decline_reason=DECLINE_REASON))


@pytest.fixture
def make_service(session_factory):
    def _make(gateway):
        return PaymentService(session_factory, gateway)

    return _make
