"""
Cost Analysis Report Service
Landed-cost breakdown of stock on hand, grouped by product, location, supplier or month
"""
from typing import List, Optional, Dict, Union
from decimal import Decimal
from datetime import date, datetime, time, timedelta
from sqlalchemy.orm import Session
from sqlalchemy import and_

from costing_engine.models.batch import InventoryBatchRec
from costing_engine.models.product import ProductCostingRec
from costing_engine.schemas.costing import ReportGrouping
from costing_engine.core.exceptions import ValidationError
from costing_engine.core.logging import get_logger
from costing_engine.services.costing.rounding import (
    ZERO, to_decimal, money, unit_rate, quantity as round_quantity, percent, percentage_of
)

logger = get_logger("reports")

UNASSIGNED = "unassigned"


def _mean(values: List[Decimal]) -> Optional[Decimal]:
    values = [v for v in values if v is not None]
    if not values:
        return None
    return sum(values, ZERO) / len(values)


def _batch_percentages(batch: InventoryBatchRec) -> Dict[str, Optional[Decimal]]:
    price = to_decimal(batch.purchase_price)
    if price == 0:
        return {'freight': None, 'duty': None, 'overhead': None}
    return {
        'freight': batch.freight_per_unit / price * 100,
        'duty': batch.duty_per_unit / price * 100,
        'overhead': batch.additional_cost_per_unit / price * 100,
    }


class CostReportService:
    """Cost analysis over batches with stock on hand"""

    def __init__(self, db: Session):
        self.db = db

    def cost_analysis_report(
        self,
        group_by: Union[ReportGrouping, str] = ReportGrouping.PRODUCT,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        product_id: Optional[int] = None,
        location_id: Optional[int] = None
    ) -> Dict:
        """
        Summary and per-group breakdown, groups ordered by inventory value descending
        Receipt dates are filtered inclusively on both ends
        """
        try:
            group_by = ReportGrouping(group_by)
        except ValueError:
            raise ValidationError(f"Unknown report grouping {group_by}")
        if date_from and date_to and date_from > date_to:
            raise ValidationError("date_from must not be after date_to")

        batches = self._batches(date_from, date_to, product_id, location_id)

        groups: Dict[str, List[InventoryBatchRec]] = {}
        for batch in batches:
            groups.setdefault(self._group_key(batch, group_by), []).append(batch)

        names = self._product_names(list(groups)) if group_by == ReportGrouping.PRODUCT else {}
        breakdown = [self._group_metrics(key, members, names.get(key)) for key, members in groups.items()]
        breakdown.sort(key=lambda g: (-g['total_inventory_value'], g['group_key']))

        logger.info(f"Cost analysis report: {len(batches)} batches in {len(breakdown)} {group_by.value} groups")

        return {
            'group_by': group_by,
            'filters': {
                'product_id': product_id,
                'location_id': location_id,
                'date_from': date_from.isoformat() if date_from else None,
                'date_to': date_to.isoformat() if date_to else None,
            },
            'summary': self._summary(batches),
            'breakdown': breakdown,
        }

    def _batches(
        self,
        date_from: Optional[date],
        date_to: Optional[date],
        product_id: Optional[int],
        location_id: Optional[int]
    ) -> List[InventoryBatchRec]:
        conditions = [InventoryBatchRec.available_quantity > 0]
        if date_from:
            conditions.append(InventoryBatchRec.received_at >= datetime.combine(date_from, time.min))
        if date_to:
            conditions.append(InventoryBatchRec.received_at < datetime.combine(date_to + timedelta(days=1), time.min))
        if product_id is not None:
            conditions.append(InventoryBatchRec.product_id == product_id)
        if location_id is not None:
            conditions.append(InventoryBatchRec.location_id == location_id)

        return self.db.query(InventoryBatchRec).filter(and_(*conditions)).order_by(InventoryBatchRec.id).all()

    @staticmethod
    def _group_key(batch: InventoryBatchRec, group_by: ReportGrouping) -> str:
        if group_by == ReportGrouping.PRODUCT:
            return str(batch.product_id)
        if group_by == ReportGrouping.LOCATION:
            return str(batch.location_id)
        if group_by == ReportGrouping.SUPPLIER:
            return str(batch.supplier_id) if batch.supplier_id is not None else UNASSIGNED
        return batch.received_at.strftime("%Y-%m")

    def _product_names(self, keys: List[str]) -> Dict[str, str]:
        rows = self.db.query(ProductCostingRec).filter(
            ProductCostingRec.product_id.in_([int(k) for k in keys])
        ).all()
        return {str(row.product_id): row.product_name for row in rows if row.product_name}

    def _summary(self, batches: List[InventoryBatchRec]) -> Dict:
        avg_landed = _mean([to_decimal(b.landed_cost_per_unit) for b in batches])
        avg_overhead = _mean([_batch_percentages(b)['overhead'] for b in batches])
        return {
            'total_batches': len(batches),
            'unique_products': len({b.product_id for b in batches}),
            'unique_locations': len({b.location_id for b in batches}),
            'unique_suppliers': len({b.supplier_id for b in batches if b.supplier_id is not None}),
            'total_available_quantity': round_quantity(sum((to_decimal(b.available_quantity) for b in batches), ZERO)),
            'total_inventory_value': money(sum(
                (to_decimal(b.available_quantity) * to_decimal(b.landed_cost_per_unit) for b in batches), ZERO
            )),
            'avg_landed_cost': unit_rate(avg_landed) if avg_landed is not None else None,
            'avg_cost_overhead': percent(avg_overhead) if avg_overhead is not None else None,
        }

    @staticmethod
    def _group_metrics(key: str, batches: List[InventoryBatchRec], name: Optional[str]) -> Dict:
        prices = [to_decimal(b.purchase_price) for b in batches]
        landed = [to_decimal(b.landed_cost_per_unit) for b in batches]
        available = [to_decimal(b.available_quantity) for b in batches]
        percentages = [_batch_percentages(b) for b in batches]

        basic_value = sum((q * p for q, p in zip(available, prices)), ZERO)
        total_value = sum((q * c for q, c in zip(available, landed)), ZERO)
        overhead = total_value - basic_value

        def component_total(column: str) -> Decimal:
            return money(sum((to_decimal(getattr(b, column)) for b in batches), ZERO))

        def mean_percent(name: str) -> Optional[Decimal]:
            value = _mean([p[name] for p in percentages])
            return percent(value) if value is not None else None

        return {
            'group_key': key,
            'group_name': name or key,
            'batch_count': len(batches),
            'total_received_quantity': round_quantity(sum((to_decimal(b.received_quantity) for b in batches), ZERO)),
            'total_available_quantity': round_quantity(sum(available, ZERO)),
            'avg_purchase_price': unit_rate(_mean(prices)),
            'min_purchase_price': min(prices),
            'max_purchase_price': max(prices),
            'avg_landed_cost': unit_rate(_mean(landed)),
            'min_landed_cost': min(landed),
            'max_landed_cost': max(landed),
            'total_freight_cost': component_total('freight_cost'),
            'total_insurance_cost': component_total('insurance_cost'),
            'total_customs_duty': component_total('customs_duty'),
            'total_handling_charges': component_total('handling_charges'),
            'total_other_charges': component_total('other_charges'),
            'total_additional_costs': money(sum((b.total_additional_costs for b in batches), ZERO)),
            'avg_freight_percentage': mean_percent('freight'),
            'avg_duty_percentage': mean_percent('duty'),
            'avg_overhead_percentage': mean_percent('overhead'),
            'basic_inventory_value': money(basic_value),
            'total_inventory_value': money(total_value),
            'total_cost_overhead': money(overhead),
            'overhead_percentage': percentage_of(overhead, basic_value),
        }
