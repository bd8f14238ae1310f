"""
Cost Impact Analyzer
Pairwise valuation-method deltas and a turnover-based method recommendation
"""
from typing import Optional, Dict, Tuple
from decimal import Decimal
from datetime import datetime, timedelta
from sqlalchemy.orm import Session

from costing_engine.schemas.costing import ValuationMethod
from costing_engine.core.config import settings
from costing_engine.core.exceptions import ValidationError, InsufficientStock
from costing_engine.core.logging import get_logger
from costing_engine.services.costing.batch_ledger import BatchLedgerService
from costing_engine.services.costing.valuation import ValuationEngine, price_layers, weighted_average
from costing_engine.services.costing.rounding import (
    ZERO, to_decimal, money, unit_rate, quantity as round_quantity, percent, percentage_of
)

logger = get_logger("valuation")

DAYS_PER_YEAR = Decimal("365")


def compare_costs(cost_a: Decimal, cost_b: Decimal, on_hand: Decimal) -> Dict:
    """Difference of A against B, relative to B, and its effect on the on-hand value"""
    difference = unit_rate(cost_a - cost_b)
    return {
        'cost_difference': difference,
        'percentage_difference': percentage_of(difference, cost_b),
        'value_impact': money(difference * on_hand),
    }


def recommend_method(turnover: Optional[Decimal]) -> Tuple[ValuationMethod, str]:
    if turnover is None:
        return ValuationMethod.WEIGHTED_AVG, "Insufficient consumption history; weighted average as the neutral default"
    if turnover > to_decimal(settings.HIGH_TURNOVER_THRESHOLD):
        return ValuationMethod.FIFO, "High turnover favors current-cost accuracy"
    if turnover < to_decimal(settings.LOW_TURNOVER_THRESHOLD):
        return ValuationMethod.LIFO, "Low turnover benefits from cost deferral"
    return ValuationMethod.WEIGHTED_AVG, "Balanced approach for moderate turnover"


class CostImpactAnalyzer:
    """Compares FIFO, LIFO and weighted-average costs of a product"""

    def __init__(self, db: Session):
        self.db = db
        self.ledger = BatchLedgerService(db)
        self.valuation = ValuationEngine(db)

    def compare(
        self,
        product_id: int,
        as_of: datetime,
        period_days: Optional[int] = None,
        issue_quantity: Optional[Decimal] = None,
        location_id: Optional[int] = None
    ) -> Dict:
        """
        Cost impact report for one product

        Method costs price the next issue_quantity units (one unit by default),
        since every method values the whole on-hand quantity alike.
        """
        if as_of is None:
            raise ValidationError("as_of is required")
        if period_days is None:
            period_days = settings.TURNOVER_PERIOD_DAYS
        if period_days <= 0:
            raise ValidationError("Turnover period must be greater than zero", period_days=period_days)

        layers = self.ledger.cost_layers(product_id, as_of, location_id)
        on_hand = sum((layer.quantity for layer in layers), ZERO)
        if on_hand <= 0:
            raise InsufficientStock(f"Product {product_id} has no stock on hand", product_id=product_id)

        if issue_quantity is None:
            issued = min(Decimal("1"), on_hand)
        else:
            issued = round_quantity(issue_quantity)
            if issued <= 0:
                raise ValidationError("Issue quantity must be greater than zero", issue_quantity=str(issued))
            if issued > on_hand:
                raise InsufficientStock(
                    f"Product {product_id} has {on_hand} on hand, {issued} requested",
                    product_id=product_id, available=str(on_hand), requested=str(issued)
                )

        fifo_total, _ = price_layers(layers, ValuationMethod.FIFO, issued)
        lifo_total, _ = price_layers(layers, ValuationMethod.LIFO, issued)
        fifo_cost = unit_rate(fifo_total / issued)
        lifo_cost = unit_rate(lifo_total / issued)
        weighted_avg_cost = unit_rate(weighted_average(layers))

        standard = self.valuation.value(
            product_id, ValuationMethod.STANDARD, as_of=as_of, location_id=location_id
        )
        turnover = self.turnover_ratio(product_id, as_of, period_days, on_hand, location_id)
        method, rationale = recommend_method(turnover)

        logger.debug(f"Cost impact for product {product_id}: turnover {turnover}, recommending {method.value}")

        return {
            'product_id': product_id,
            'location_id': location_id,
            'as_of': as_of,
            'on_hand_quantity': on_hand,
            'issue_quantity': issued,
            'fifo_cost': fifo_cost,
            'lifo_cost': lifo_cost,
            'weighted_avg_cost': weighted_avg_cost,
            'standard_cost': standard['standard_cost'],
            'standard_variance_percentage': standard['standard_variance_percentage'],
            'inventory_turnover_ratio': turnover,
            'fifo_vs_weighted_avg': compare_costs(fifo_cost, weighted_avg_cost, on_hand),
            'lifo_vs_weighted_avg': compare_costs(lifo_cost, weighted_avg_cost, on_hand),
            'fifo_vs_lifo': compare_costs(fifo_cost, lifo_cost, on_hand),
            'recommended_method': method,
            'rationale': rationale,
        }

    def turnover_ratio(
        self,
        product_id: int,
        as_of: datetime,
        period_days: int,
        on_hand: Decimal,
        location_id: Optional[int] = None
    ) -> Optional[Decimal]:
        """Annualised net consumption over the window divided by average on-hand quantity"""
        start = as_of - timedelta(days=period_days)
        consumed = self.ledger.net_consumption(product_id, start, as_of, location_id)
        opening = self.ledger.on_hand_at(product_id, start, location_id)

        average_on_hand = (opening + on_hand) / 2
        if average_on_hand == 0:
            return None
        annualised = consumed * DAYS_PER_YEAR / Decimal(period_days)
        return percent(annualised / average_on_hand)
