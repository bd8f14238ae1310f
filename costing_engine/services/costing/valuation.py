"""
Valuation Engine
FIFO, LIFO, weighted-average and standard-cost valuation from the batch ledger
"""
from typing import List, Optional, Dict, Tuple, Union
from decimal import Decimal
from datetime import datetime
from sqlalchemy.orm import Session

from costing_engine.models.product import ProductCostingRec
from costing_engine.schemas.costing import LayerOrder, ValuationMethod, ProductCostingUpdate
from costing_engine.core.audit import log_costing_action
from costing_engine.core.exceptions import ValidationError, InsufficientStock
from costing_engine.core.logging import get_logger
from costing_engine.services.costing.batch_ledger import BatchLedgerService, CostLayer, order_layers
from costing_engine.services.costing.rounding import (
    ZERO, HUNDRED, to_decimal, money, unit_rate, quantity as round_quantity, percent
)

logger = get_logger("valuation")


def weighted_average(layers: List[CostLayer]) -> Optional[Decimal]:
    """Unrounded sum(q * c) / sum(q), or None without stock"""
    total_quantity = sum((layer.quantity for layer in layers), ZERO)
    if total_quantity == 0:
        return None
    return sum((layer.quantity * layer.unit_cost for layer in layers), ZERO) / total_quantity


def price_layers(
    layers: List[CostLayer],
    method: Union[ValuationMethod, str],
    quantity: Decimal
) -> Tuple[Decimal, List[Tuple[CostLayer, Decimal]]]:
    """
    Price a quantity drawn from cost layers

    FIFO draws the oldest receipts first, LIFO the newest; ties by batch id.
    Weighted average prices every unit at the average of all layers.
    Returns (unrounded total cost, [(layer, quantity drawn)]).
    """
    method = ValuationMethod(method)
    if method == ValuationMethod.WEIGHTED_AVG:
        average = weighted_average(layers)
        if average is None:
            return ZERO, []
        return average * quantity, []
    if method == ValuationMethod.STANDARD:
        raise ValidationError("Standard cost is not drawn from cost layers")

    drawn = []
    total = ZERO
    remaining = quantity
    for layer in order_layers(layers, LayerOrder(method.value)):
        if remaining <= 0:
            break
        take = min(remaining, layer.quantity)
        drawn.append((layer, take))
        total += take * layer.unit_cost
        remaining -= take

    if remaining > 0:
        raise InsufficientStock(
            f"Cost layers cover {quantity - remaining} of {quantity}",
            requested=str(quantity), available=str(quantity - remaining)
        )
    return total, drawn


class ValuationEngine:
    """
    Valuation functionality
    Snapshots are derived on demand and never stored
    """

    def __init__(self, db: Session, performed_by: Optional[str] = None):
        self.db = db
        self.performed_by = performed_by or "SYSTEM"
        self.ledger = BatchLedgerService(db, performed_by)

    def value(
        self,
        product_id: int,
        method: Union[ValuationMethod, str],
        as_of: Optional[datetime] = None,
        quantity: Optional[Decimal] = None,
        selling_price: Optional[Decimal] = None,
        location_id: Optional[int] = None
    ) -> Dict:
        """
        Value a product's stock under one method

        Prices the full on-hand quantity unless a quantity is given, in which
        case the next units to be issued under that method are priced.
        """
        method = ValuationMethod(method)
        layers = self.ledger.cost_layers(product_id, as_of, location_id)
        on_hand = sum((layer.quantity for layer in layers), ZERO)

        if quantity is None:
            priced_quantity = on_hand
        else:
            priced_quantity = round_quantity(quantity)
            if priced_quantity <= 0:
                raise ValidationError("Quantity must be greater than zero", quantity=str(priced_quantity))
            if priced_quantity > on_hand:
                raise InsufficientStock(
                    f"Product {product_id} has {on_hand} on hand, {priced_quantity} requested",
                    product_id=product_id, available=str(on_hand), requested=str(priced_quantity)
                )

        snapshot = {
            'product_id': product_id,
            'location_id': location_id,
            'as_of': as_of,
            'method': method,
            'on_hand_quantity': on_hand,
            'quantity': priced_quantity,
            'unit_cost': None,
            'total_value': money(ZERO),
            'selling_price': selling_price,
            'margin_percentage': None,
            'standard_cost': None,
            'standard_variance_percentage': None,
            'layers': [],
        }

        if method == ValuationMethod.STANDARD:
            standard = self.standard_cost(product_id)
            snapshot['standard_cost'] = standard
            snapshot['standard_variance_percentage'] = self._variance(weighted_average(layers), standard)
            if standard is not None:
                snapshot['unit_cost'] = unit_rate(standard)
                snapshot['total_value'] = money(standard * priced_quantity)
        elif priced_quantity > 0:
            total, drawn = price_layers(layers, method, priced_quantity)
            snapshot['unit_cost'] = unit_rate(total / priced_quantity)
            snapshot['total_value'] = money(total)
            snapshot['layers'] = [
                {
                    'batch_id': layer.batch_id,
                    'received_at': layer.received_at,
                    'quantity': take,
                    'unit_cost': layer.unit_cost,
                    'value': money(take * layer.unit_cost),
                }
                for layer, take in drawn
            ]

        if selling_price is not None and snapshot['unit_cost'] is not None:
            price = to_decimal(selling_price)
            if price > 0:
                snapshot['margin_percentage'] = percent((price - snapshot['unit_cost']) / price * HUNDRED)

        return snapshot

    def weighted_average_cost(
        self,
        product_id: int,
        as_of: Optional[datetime] = None,
        location_id: Optional[int] = None
    ) -> Optional[Decimal]:
        average = weighted_average(self.ledger.cost_layers(product_id, as_of, location_id))
        return unit_rate(average) if average is not None else None

    def standard_cost(self, product_id: int) -> Optional[Decimal]:
        costing = self.get_product_costing(product_id)
        if costing is None or costing.standard_cost is None:
            return None
        return to_decimal(costing.standard_cost)

    def get_product_costing(self, product_id: int) -> Optional[ProductCostingRec]:
        return self.db.query(ProductCostingRec).filter(ProductCostingRec.product_id == product_id).first()

    def set_product_costing(self, product_id: int, data: ProductCostingUpdate) -> ProductCostingRec:
        """Create or update the standard cost configuration of a product"""
        try:
            costing = self.get_product_costing(product_id)
            old_values = self._costing_snapshot(costing) if costing else None
            if costing is None:
                costing = ProductCostingRec(product_id=product_id)
                self.db.add(costing)

            for field_name, value in data.model_dump(exclude_unset=True).items():
                setattr(costing, field_name, value)
            costing.updated_by = self.performed_by
            self.db.flush()

            log_costing_action(
                db=self.db,
                user=self.performed_by,
                action="SET_PRODUCT_COSTING",
                table="product_costing",
                key=str(product_id),
                old_values=old_values,
                new_values=self._costing_snapshot(costing),
                module="VALUATION"
            )
            self.db.commit()

        except Exception:
            self.db.rollback()
            raise

        logger.info(f"Product {product_id} standard cost set to {costing.standard_cost}")
        return costing

    @staticmethod
    def _variance(average: Optional[Decimal], standard: Optional[Decimal]) -> Optional[Decimal]:
        if average is None or standard is None or standard == 0:
            return None
        return percent((unit_rate(average) - standard) / standard * HUNDRED)

    @staticmethod
    def _costing_snapshot(costing: ProductCostingRec) -> Dict:
        return {
            'product_name': costing.product_name,
            'category': costing.category,
            'standard_cost': float(costing.standard_cost) if costing.standard_cost is not None else None,
            'selling_price': float(costing.selling_price) if costing.selling_price is not None else None,
        }
