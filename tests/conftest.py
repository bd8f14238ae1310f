"""
Test Configuration and Fixtures
Shared testing infrastructure for the costing engine
"""

import os

# The application engine must not touch a real database or log directory under test
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("LOG_TO_FILE", "false")

import itertools
import pytest
from datetime import datetime
from decimal import Decimal
from typing import Generator
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

from costing_engine.main import app
from costing_engine.api.deps import get_db
from costing_engine.core.database import Base
from costing_engine.models import (  # noqa: F401  registers every table on Base
    InventoryBatchRec, BatchMovementRec, PurchaseOrderCostRec,
    CostAllocationRec, CostAllocationLineRec, ProductCostingRec, CostingAuditLog
)
from costing_engine.schemas.costing import BatchReceiptCreate, PurchaseOrderCostSetCreate
from costing_engine.services.costing import BatchLedgerService, LandedCostService

# Test database URL - in-memory SQLite shared across the session's connections
TEST_DATABASE_URL = "sqlite:///:memory:"

# Create test engine
engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

# Create test session
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture(scope="function")
def db_session() -> Generator[Session, None, None]:
    """Create a fresh database session for each test"""
    # Create all tables
    Base.metadata.create_all(bind=engine)

    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        # Drop all tables after test
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def client(db_session: Session) -> Generator[TestClient, None, None]:
    """Create a test client with database dependency override"""
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def ledger(db_session: Session) -> BatchLedgerService:
    return BatchLedgerService(db_session, performed_by="tester")


@pytest.fixture
def landed(db_session: Session) -> LandedCostService:
    return LandedCostService(db_session, performed_by="tester")


@pytest.fixture
def receive(ledger: BatchLedgerService):
    """Factory fixture: record a goods receipt with sensible defaults"""
    numbers = itertools.count(1)

    def _receive(
        quantity="100",
        price="100",
        received_at=datetime(2024, 1, 1),
        product_id=1,
        location_id=1,
        **extra
    ) -> InventoryBatchRec:
        data = BatchReceiptCreate(
            batch_number=extra.pop("batch_number", f"BATCH-{next(numbers):04d}"),
            product_id=product_id,
            location_id=location_id,
            received_quantity=Decimal(str(quantity)),
            purchase_price=Decimal(str(price)),
            received_at=received_at,
            **extra
        )
        return ledger.receive_batch(data)

    return _receive


@pytest.fixture
def cost_set(landed: LandedCostService):
    """Factory fixture: record an accepted purchase order cost set"""

    def _cost_set(purchase_order_id=1, **totals) -> PurchaseOrderCostRec:
        data = PurchaseOrderCostSetCreate(purchase_order_id=purchase_order_id, **totals)
        accepted, result = landed.create_cost_set(data)
        assert accepted, result
        return result

    return _cost_set


# Database test helpers
class DatabaseTestHelper:
    """Helper class for database operations in tests"""

    @staticmethod
    def count_records(db_session: Session, model_class) -> int:
        """Count records in a table"""
        return db_session.query(model_class).count()


# API test helpers
class APITestHelper:
    """Helper class for API testing"""

    @staticmethod
    def assert_error_response(response, expected_status: int, expected_error: str = None):
        """Assert costing error response format"""
        assert response.status_code == expected_status
        data = response.json()
        assert "detail" in data
        if expected_error:
            assert data["error"] == expected_error

    @staticmethod
    def assert_success_response(response, expected_keys: list = None):
        """Assert successful response format"""
        assert response.status_code in [200, 201]
        data = response.json()
        if expected_keys:
            for key in expected_keys:
                assert key in data
