"""Pytest configuration and fixtures."""

import os

# Settings are read at import time; point them at throwaway values first
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SECRET_KEY", "test-secret-key-that-is-at-least-32-characters")
os.environ.setdefault("DEBUG", "true")

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from lotstock.core.rate_limit import limiter
from lotstock.core.security import create_access_token
from lotstock.db.base import Base
from lotstock.db.session import configure_sqlite_engine, get_db
from lotstock.main import app
# Import all models to ensure they're registered with Base.metadata
from lotstock.models import Product, ProductVariant

# Use in-memory SQLite for tests
TEST_DATABASE_URL = "sqlite:///:memory:"

T0 = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)


class StepClock:
    """Deterministic clock: every call returns the next minute after ``start``."""

    def __init__(self, start: datetime = T0, step: timedelta = timedelta(minutes=1)):
        self.current = start
        self.step = step

    def __call__(self) -> datetime:
        value = self.current
        self.current = self.current + self.step
        return value


@pytest.fixture(scope="function")
def db_engine():
    """Create a test database engine."""
    engine = create_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    configure_sqlite_engine(engine)
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def db_session(db_engine) -> Generator[Session, None, None]:
    """Create a test database session."""
    SessionLocal = sessionmaker(
        autocommit=False, autoflush=False, expire_on_commit=False, bind=db_engine
    )
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def t0() -> datetime:
    return T0


@pytest.fixture
def clock() -> StepClock:
    return StepClock()


@pytest.fixture(scope="function")
def client(db_session: Session) -> Generator[TestClient, None, None]:
    """Create a test client with database override."""
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    # Disable rate limiting during tests to avoid flaky failures
    limiter.enabled = False
    # Don't raise server exceptions so we can test error status codes
    with TestClient(app, raise_server_exceptions=False) as test_client:
        yield test_client
    limiter.enabled = True
    app.dependency_overrides.clear()


def _headers_for(user_id: int, username: str, role: str) -> dict:
    token = create_access_token(data={"sub": str(user_id), "username": username, "role": role})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def staff_headers() -> dict:
    return _headers_for(7, "alice", "staff")


@pytest.fixture
def admin_headers() -> dict:
    return _headers_for(1, "root", "admin")


@pytest.fixture
def customer_headers() -> dict:
    return _headers_for(42, "bob", "customer")


@pytest.fixture
def catalog(db_session: Session) -> dict:
    """Two products with variants, plus a product that has no variant yet.

    - Rose Bush: variants ROSE-RED and ROSE-WHT
    - Tulip Bulb: variant TULIP-Y
    - Fern: no variants
    """
    rose = Product(name="Rose Bush", description="Climbing rose", selling_price=Decimal("25.00"))
    tulip = Product(name="Tulip Bulb", description="Spring flowering bulb", selling_price=Decimal("3.50"))
    fern = Product(name="Fern", description="Shade plant", selling_price=Decimal("12.00"))
    db_session.add_all([rose, tulip, fern])
    db_session.flush()

    rose_red = ProductVariant(product_id=rose.id, sku="ROSE-RED", selling_price=Decimal("27.00"))
    rose_white = ProductVariant(product_id=rose.id, sku="ROSE-WHT")
    tulip_yellow = ProductVariant(product_id=tulip.id, sku="TULIP-Y")
    db_session.add_all([rose_red, rose_white, tulip_yellow])
    db_session.commit()

    return {
        "rose": rose,
        "tulip": tulip,
        "fern": fern,
        "rose_red": rose_red,
        "rose_white": rose_white,
        "tulip_yellow": tulip_yellow,
        "db": db_session,
    }
