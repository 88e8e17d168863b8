"""Pytest fixtures for testing"""

import pytest
from decimal import Decimal
from typing import Callable, Generator
from unittest.mock import AsyncMock
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from crediario_engine.api.dependencies import get_gateway_client, get_mailer
from crediario_engine.api.main import create_app
from crediario_engine.domain.models import ConfigSnapshot, GatewayPayment, PaymentIntent
from crediario_engine.infrastructure.clients.gateway import PaymentGatewayClient
from crediario_engine.infrastructure.clients.mailer import Mailer
from crediario_engine.infrastructure.database.models import Base, Profile
from crediario_engine.infrastructure.database.session import get_db


# Test database
TEST_DATABASE_URL = "sqlite:///./test.db"
engine = create_engine(TEST_DATABASE_URL, connect_args={"check_same_thread": False})
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db() -> Generator[Session, None, None]:
    """Create test database and session"""
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def gateway() -> AsyncMock:
    """Payment gateway double: every intent succeeds, every payment is approved"""
    mock = AsyncMock(spec=PaymentGatewayClient)
    mock.create_payment_intent.return_value = PaymentIntent(
        id="pay-1",
        qr_code="00020126-PIX",
        qr_code_base64="UElY",
    )
    mock.get_payment.return_value = GatewayPayment(
        id="pay-1",
        status="approved",
        status_detail="accredited",
        amount_cents=None,
    )
    return mock


@pytest.fixture
def mailer() -> AsyncMock:
    mock = AsyncMock(spec=Mailer)
    mock.send.return_value = True
    return mock


@pytest.fixture
def client(db: Session, gateway: AsyncMock, mailer: AsyncMock) -> TestClient:
    """Create FastAPI test client with test database and mocked outbound clients"""
    app = create_app()

    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_gateway_client] = lambda: gateway
    app.dependency_overrides[get_mailer] = lambda: mailer
    return TestClient(app)


@pytest.fixture
def config() -> ConfigSnapshot:
    """No interest, 1.5% cashback, no minimum entry"""
    return ConfigSnapshot(
        interest_rate_pct=Decimal("0"),
        cashback_pct=Decimal("1.5"),
        min_entry_pct=Decimal("0"),
        default_due_day=10,
    )


@pytest.fixture
def make_profile(db: Session) -> Callable[..., Profile]:
    """Factory for customer profiles"""

    def _make(
        user_id: str = "user_1",
        credit_limit_cents: int = 100000,
        coins_balance: int = 0,
        preferred_due_day: int | None = None,
        email: str | None = "cliente@example.com",
    ) -> Profile:
        profile = Profile(
            id=user_id,
            first_name="Maria",
            email=email,
            credit_limit_cents=credit_limit_cents,
            coins_balance=coins_balance,
            preferred_due_day=preferred_due_day,
        )
        db.add(profile)
        db.commit()
        return profile

    return _make
