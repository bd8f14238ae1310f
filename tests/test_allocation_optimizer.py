"""
Tests for the Allocation Optimizer
Candidate scoring, risk classification and ranking order
"""

import pytest
from decimal import Decimal
from datetime import datetime, timedelta
from sqlalchemy.orm import Session

from costing_engine.core.exceptions import ValidationError
from costing_engine.schemas.costing import AllocationStrategy, RiskLevel
from costing_engine.services.costing import AllocationOptimizer
from costing_engine.services.costing.allocation_optimizer import (
    classify_risk, cost_score, expiry_urgency_score, fifo_rank_score, strategy_weights
)

NOW = datetime(2024, 6, 1, 12, 0)


@pytest.fixture
def optimizer(db_session: Session) -> AllocationOptimizer:
    return AllocationOptimizer(db_session)


class TestScoringFunctions:

    def test_cost_score_range(self):
        assert cost_score(Decimal("10"), Decimal("10"), Decimal("20")) == Decimal("100")
        assert cost_score(Decimal("20"), Decimal("10"), Decimal("20")) == Decimal("0")
        assert cost_score(Decimal("15"), Decimal("15"), Decimal("15")) == Decimal("100")

    def test_expiry_urgency_clamped(self):
        assert expiry_urgency_score(None) == Decimal("0")
        assert expiry_urgency_score(0) == Decimal("100")
        assert expiry_urgency_score(-5) == Decimal("100")
        assert expiry_urgency_score(400) == Decimal("0")

    def test_fifo_rank_linear(self):
        assert [fifo_rank_score(i, 3) for i in range(3)] == [Decimal("100"), Decimal("50"), Decimal("0")]
        assert fifo_rank_score(0, 1) == Decimal("100")

    def test_strategy_weights_are_normalised(self):
        weights = strategy_weights(AllocationStrategy.COST_OPTIMIZATION)

        assert sum(weights.values()) == Decimal("1")
        assert weights["cost"] >= Decimal("0.7")

    def test_risk_priority_expiry_before_cost(self):
        baseline = Decimal("100")

        assert classify_risk(10, Decimal("500"), baseline) == RiskLevel.HIGH_EXPIRY_RISK
        assert classify_risk(60, Decimal("500"), baseline) == RiskLevel.MEDIUM_EXPIRY_RISK
        assert classify_risk(200, Decimal("111"), baseline) == RiskLevel.HIGH_COST
        assert classify_risk(None, Decimal("110"), baseline) == RiskLevel.LOW_RISK


class TestOptimalAllocation:

    def test_zero_quantity_rejected(self, optimizer: AllocationOptimizer, receive):
        receive()

        with pytest.raises(ValidationError):
            optimizer.optimal_allocation(1, Decimal("0"), NOW)

    def test_unknown_strategy_rejected(self, optimizer: AllocationOptimizer, receive):
        receive()

        with pytest.raises(ValidationError):
            optimizer.optimal_allocation(1, Decimal("1"), NOW, strategy="cheapest")

    def test_output_sorted_by_score(self, optimizer: AllocationOptimizer, receive):
        receive(quantity="100", price="100", received_at=datetime(2024, 1, 1))
        receive(quantity="10", price="90", received_at=datetime(2024, 2, 1), expiry_at=NOW + timedelta(days=20))
        receive(quantity="100", price="130", received_at=datetime(2024, 3, 1))

        for strategy in AllocationStrategy:
            result = optimizer.optimal_allocation(1, Decimal("50"), NOW, strategy=strategy)
            scores = [c["composite_score"] for c in result["candidates"]]
            assert scores == sorted(scores, reverse=True)

    def test_fifo_strict_follows_receipt_order(self, optimizer: AllocationOptimizer, receive):
        newest = receive(price="80", received_at=datetime(2024, 3, 1))
        oldest = receive(price="120", received_at=datetime(2024, 1, 1))
        middle = receive(price="100", received_at=datetime(2024, 2, 1), expiry_at=NOW + timedelta(days=5))

        result = optimizer.optimal_allocation(1, Decimal("10"), NOW, strategy="fifo_strict")

        assert [c["batch_id"] for c in result["candidates"]] == [oldest.id, middle.id, newest.id]
        assert [c["composite_score"] for c in result["candidates"]] == [
            Decimal("100.00"), Decimal("50.00"), Decimal("0.00")
        ]

    def test_balanced_prefers_cheaper_batch(self, optimizer: AllocationOptimizer, receive):
        cheap = receive(quantity="100", price="100", received_at=datetime(2024, 2, 1))
        dear = receive(quantity="100", price="130", received_at=datetime(2024, 1, 1))

        result = optimizer.optimal_allocation(1, Decimal("50"), NOW)

        candidates = result["candidates"]
        assert [c["batch_id"] for c in candidates] == [cheap.id, dear.id]
        assert candidates[0]["composite_score"] == Decimal("66.67")
        assert candidates[1]["composite_score"] == Decimal("33.33")
        assert result["baseline_unit_cost"] == Decimal("115.0000")
        assert candidates[0]["cost_savings_per_unit"] == Decimal("15.0000")
        assert candidates[0]["potential_savings"] == Decimal("750.00")
        assert candidates[1]["risk_level"] == RiskLevel.HIGH_COST
        assert candidates[0]["risk_level"] == RiskLevel.LOW_RISK

    def test_expiry_management_prefers_expiring_batch(self, optimizer: AllocationOptimizer, receive):
        receive(quantity="100", price="90", received_at=datetime(2024, 1, 1))
        expiring = receive(
            quantity="100", price="110", received_at=datetime(2024, 2, 1), expiry_at=NOW + timedelta(days=15)
        )

        result = optimizer.optimal_allocation(1, Decimal("20"), NOW, strategy="expiry_management")

        first = result["candidates"][0]
        assert first["batch_id"] == expiring.id
        assert first["days_to_expiry"] == 15
        assert first["risk_level"] == RiskLevel.HIGH_EXPIRY_RISK

    def test_expired_batches_excluded(self, optimizer: AllocationOptimizer, receive):
        receive(quantity="10", expiry_at=datetime(2024, 5, 1), received_at=datetime(2024, 1, 1))
        fresh = receive(quantity="10", received_at=datetime(2024, 1, 1))

        result = optimizer.optimal_allocation(1, Decimal("5"), NOW)

        assert [c["batch_id"] for c in result["candidates"]] == [fresh.id]

    def test_partial_candidates_and_shortfall(self, optimizer: AllocationOptimizer, receive):
        receive(quantity="30", price="10", received_at=datetime(2024, 1, 1))
        receive(quantity="20", price="12", received_at=datetime(2024, 2, 1))

        result = optimizer.optimal_allocation(1, Decimal("80"), NOW, strategy="fifo_strict")

        assert result["insufficient_stock"] is True
        assert result["shortfall_quantity"] == Decimal("30")
        assert result["total_available_quantity"] == Decimal("50")
        assert all(not c["can_fulfill"] for c in result["candidates"])
        assert [c["recommended_quantity"] for c in result["candidates"]] == [Decimal("30"), Decimal("20")]
        assert result["planned_quantity"] == Decimal("50")
        assert result["planned_cost"] == Decimal("540.00")

    def test_fulfillment_plan_follows_ranking(self, optimizer: AllocationOptimizer, receive):
        oldest = receive(quantity="30", price="10", received_at=datetime(2024, 1, 1))
        newer = receive(quantity="30", price="20", received_at=datetime(2024, 2, 1))

        result = optimizer.optimal_allocation(1, Decimal("40"), NOW, strategy="fifo_strict")

        assert result["insufficient_stock"] is False
        assert [(p["batch_id"], p["quantity"]) for p in result["fulfillment_plan"]] == [
            (oldest.id, Decimal("30")), (newer.id, Decimal("10"))
        ]
        assert result["planned_cost"] == Decimal("500.00")
        assert result["planned_average_cost"] == Decimal("12.5000")

    def test_limit_truncates_candidates_only(self, optimizer: AllocationOptimizer, receive):
        for month in (1, 2, 3):
            receive(quantity="10", received_at=datetime(2024, month, 1))

        result = optimizer.optimal_allocation(1, Decimal("25"), NOW, strategy="fifo_strict", limit=1)

        assert len(result["candidates"]) == 1
        assert len(result["fulfillment_plan"]) == 3

    def test_location_filter_keeps_product_baseline(self, optimizer: AllocationOptimizer, receive):
        receive(quantity="10", price="100", location_id=1)
        local = receive(quantity="10", price="200", location_id=2)

        result = optimizer.optimal_allocation(1, Decimal("5"), NOW, location_id=2)

        assert [c["batch_id"] for c in result["candidates"]] == [local.id]
        assert result["baseline_unit_cost"] == Decimal("150.0000")
        assert result["candidates"][0]["risk_level"] == RiskLevel.HIGH_COST

    def test_no_stock_returns_flagged_empty_list(self, optimizer: AllocationOptimizer):
        result = optimizer.optimal_allocation(1, Decimal("5"), NOW)

        assert result["candidates"] == []
        assert result["insufficient_stock"] is True
        assert result["planned_average_cost"] is None
