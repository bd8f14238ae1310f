"""
Allocation Optimizer
Ranks available batches as fulfillment candidates for a demand
"""
from typing import List, Optional, Dict, Union
from decimal import Decimal
from datetime import datetime
from sqlalchemy.orm import Session
from sqlalchemy import and_, or_

from costing_engine.models.batch import InventoryBatchRec
from costing_engine.schemas.costing import AllocationStrategy, RiskLevel
from costing_engine.core.config import settings
from costing_engine.core.exceptions import ValidationError
from costing_engine.core.logging import get_logger
from costing_engine.services.costing.valuation import ValuationEngine
from costing_engine.services.costing.rounding import (
    ZERO, HUNDRED, to_decimal, money, unit_rate, quantity as round_quantity, percent
)

logger = get_logger("optimizer")

ONE = Decimal("1")


def strategy_weights(strategy: AllocationStrategy) -> Dict[str, Decimal]:
    """Configured cost / expiry / sufficiency weights of a strategy, normalised to sum to 1"""
    configured = settings.STRATEGY_WEIGHTS.get(strategy.value)
    if not configured:
        raise ValidationError(f"No scoring weights configured for strategy {strategy.value}")
    weights = {name: to_decimal(configured.get(name, 0)) for name in ("cost", "expiry", "sufficiency")}
    total = sum(weights.values(), ZERO)
    return {name: weight / total for name, weight in weights.items()}


def cost_score(cost: Decimal, min_cost: Decimal, max_cost: Decimal) -> Decimal:
    if max_cost == min_cost:
        return HUNDRED
    return (max_cost - cost) / (max_cost - min_cost) * HUNDRED


def expiry_urgency_score(days_to_expiry: Optional[int]) -> Decimal:
    """100 for stock expiring now, falling to 0 at the scoring horizon; 0 without expiry"""
    if days_to_expiry is None:
        return ZERO
    score = HUNDRED * (ONE - Decimal(days_to_expiry) / Decimal(settings.EXPIRY_SCORE_HORIZON_DAYS))
    return max(ZERO, min(HUNDRED, score))


def sufficiency_score(available: Decimal, requested: Decimal) -> Decimal:
    return min(ONE, available / requested) * HUNDRED


def fifo_rank_score(rank: int, pool_size: int) -> Decimal:
    """100 for the oldest receipt, falling linearly to 0 for the newest"""
    if pool_size <= 1:
        return HUNDRED
    return HUNDRED * Decimal(pool_size - 1 - rank) / Decimal(pool_size - 1)


def classify_risk(days_to_expiry: Optional[int], cost: Decimal, baseline: Optional[Decimal]) -> RiskLevel:
    """Expiry bands are checked before cost"""
    if days_to_expiry is not None and days_to_expiry < settings.HIGH_EXPIRY_RISK_DAYS:
        return RiskLevel.HIGH_EXPIRY_RISK
    if days_to_expiry is not None and days_to_expiry < settings.MEDIUM_EXPIRY_RISK_DAYS:
        return RiskLevel.MEDIUM_EXPIRY_RISK
    if baseline is not None:
        threshold = baseline * (ONE + to_decimal(settings.HIGH_COST_THRESHOLD_PERCENT) / HUNDRED)
        if cost > threshold:
            return RiskLevel.HIGH_COST
    return RiskLevel.LOW_RISK


class AllocationOptimizer:
    """
    Allocation Optimizer functionality
    Produces a ranked candidate list per request; nothing is persisted
    """

    def __init__(self, db: Session):
        self.db = db
        self.valuation = ValuationEngine(db)

    def optimal_allocation(
        self,
        product_id: int,
        quantity: Decimal,
        now: datetime,
        strategy: Union[AllocationStrategy, str] = AllocationStrategy.BALANCED,
        location_id: Optional[int] = None,
        limit: Optional[int] = None
    ) -> Dict:
        """
        Rank the product's available batches for a requested quantity

        Candidates are never merged; the greedy fulfillment plan over the
        ranking is advisory and shortfalls are flagged rather than raised.
        """
        requested = round_quantity(quantity) if quantity is not None else ZERO
        if requested <= 0:
            raise ValidationError("Requested quantity must be greater than zero", quantity=str(requested))
        if now is None:
            raise ValidationError("The evaluation time is required")
        try:
            strategy = AllocationStrategy(strategy)
        except ValueError:
            raise ValidationError(f"Unknown allocation strategy {strategy}")
        if limit is None:
            limit = settings.OPTIMIZER_DEFAULT_LIMIT
        if limit is not None and limit <= 0:
            raise ValidationError("Limit must be greater than zero", limit=limit)

        baseline = self.valuation.weighted_average_cost(product_id)
        pool = self._candidate_pool(product_id, location_id, now)

        candidates = self._score(pool, requested, now, strategy, baseline)
        candidates.sort(key=lambda c: (-c['composite_score'], c['received_at'], c['batch_id']))

        total_available = sum((c['available_quantity'] for c in candidates), ZERO)
        plan = self._fulfillment_plan(candidates, requested)
        planned_quantity = sum((p['quantity'] for p in plan), ZERO)
        planned_exact = sum((p['exact_cost'] for p in plan), ZERO)

        logger.debug(
            f"Ranked {len(candidates)} batches of product {product_id} for {requested} ({strategy.value})"
        )

        return {
            'product_id': product_id,
            'location_id': location_id,
            'strategy': strategy,
            'requested_quantity': requested,
            'baseline_unit_cost': baseline,
            'total_available_quantity': total_available,
            'insufficient_stock': total_available < requested,
            'shortfall_quantity': max(ZERO, requested - total_available),
            'candidates': candidates[:limit] if limit is not None else candidates,
            'fulfillment_plan': [
                {'batch_id': p['batch_id'], 'quantity': p['quantity'], 'cost': money(p['exact_cost'])}
                for p in plan
            ],
            'planned_quantity': planned_quantity,
            'planned_cost': money(planned_exact),
            'planned_average_cost': unit_rate(planned_exact / planned_quantity) if planned_quantity > 0 else None,
        }

    def _candidate_pool(self, product_id: int, location_id: Optional[int], now: datetime) -> List[InventoryBatchRec]:
        query = self.db.query(InventoryBatchRec).filter(
            and_(
                InventoryBatchRec.product_id == product_id,
                InventoryBatchRec.available_quantity > 0
            )
        )
        if location_id is not None:
            query = query.filter(InventoryBatchRec.location_id == location_id)
        if settings.EXCLUDE_EXPIRED_BATCHES:
            query = query.filter(
                or_(InventoryBatchRec.expiry_at.is_(None), InventoryBatchRec.expiry_at >= now)
            )
        return query.order_by(InventoryBatchRec.received_at, InventoryBatchRec.id).all()

    def _score(
        self,
        pool: List[InventoryBatchRec],
        requested: Decimal,
        now: datetime,
        strategy: AllocationStrategy,
        baseline: Optional[Decimal]
    ) -> List[Dict]:
        if not pool:
            return []

        costs = [to_decimal(b.landed_cost_per_unit) for b in pool]
        min_cost, max_cost = min(costs), max(costs)
        weights = None if strategy == AllocationStrategy.FIFO_STRICT else strategy_weights(strategy)

        candidates = []
        # pool is in receipt order, so the index is the FIFO rank
        for rank, batch in enumerate(pool):
            cost = to_decimal(batch.landed_cost_per_unit)
            available = to_decimal(batch.available_quantity)
            days = (batch.expiry_at - now).days if batch.expiry_at is not None else None

            if weights is None:
                score = fifo_rank_score(rank, len(pool))
            else:
                score = (
                    weights['cost'] * cost_score(cost, min_cost, max_cost)
                    + weights['expiry'] * expiry_urgency_score(days)
                    + weights['sufficiency'] * sufficiency_score(available, requested)
                )

            recommended = min(available, requested)
            savings = unit_rate(baseline - cost) if baseline is not None else ZERO
            candidates.append({
                'batch_id': batch.id,
                'batch_number': batch.batch_number,
                'location_id': batch.location_id,
                'received_at': batch.received_at,
                'available_quantity': available,
                'landed_cost_per_unit': cost,
                'cost_savings_per_unit': savings,
                'potential_savings': money(savings * recommended),
                'risk_level': classify_risk(days, cost, baseline),
                'composite_score': percent(score),
                'days_to_expiry': days,
                'can_fulfill': available >= requested,
                'recommended_quantity': recommended,
            })
        return candidates

    @staticmethod
    def _fulfillment_plan(ranked: List[Dict], requested: Decimal) -> List[Dict]:
        plan = []
        remaining = requested
        for candidate in ranked:
            if remaining <= 0:
                break
            take = min(remaining, candidate['available_quantity'])
            plan.append({
                'batch_id': candidate['batch_id'],
                'quantity': take,
                'exact_cost': take * candidate['landed_cost_per_unit'],
            })
            remaining -= take
        return plan
