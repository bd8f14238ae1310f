"""
Batch Ledger Service
Goods receipts, consumption events and return reversals for inventory batches
"""
from typing import List, Optional, Dict, Union
from dataclasses import dataclass
from decimal import Decimal
from datetime import datetime
from sqlalchemy.orm import Session
from sqlalchemy import and_, func, case, update

from costing_engine.models.batch import InventoryBatchRec, BatchMovementRec
from costing_engine.schemas.costing import (
    BatchReceiptCreate, BatchResponse, LayerOrder, MovementType
)
from costing_engine.core.audit import log_costing_action
from costing_engine.core.exceptions import (
    ValidationError, NotFoundError, InsufficientStock, InconsistentLedgerState, LedgerConflict
)
from costing_engine.core.logging import get_logger
from costing_engine.services.costing.rounding import (
    ZERO, to_decimal, unit_rate, quantity as round_quantity, percentage_of
)

logger = get_logger("ledger")

# Re-reads allowed when a batch changes between reading and writing its available quantity
WRITE_ATTEMPTS = 3


@dataclass(frozen=True)
class CostLayer:
    """On-hand quantity of one batch at its landed cost"""
    batch_id: int
    received_at: datetime
    quantity: Decimal
    unit_cost: Decimal


def order_layers(layers: List, method: Union[LayerOrder, str], batch_id=lambda layer: layer.batch_id) -> List:
    """
    Order layers for drawing: receipt timestamp ascending (FIFO) or
    descending (LIFO), ties always by batch id ascending
    """
    method = LayerOrder(method)
    by_id = sorted(layers, key=batch_id)
    return sorted(by_id, key=lambda layer: layer.received_at, reverse=(method == LayerOrder.LIFO))


class BatchLedgerService:
    """
    Batch Ledger functionality
    Holds per-lot acquisition facts and the append-only consumption history
    """

    def __init__(self, db: Session, performed_by: Optional[str] = None):
        self.db = db
        self.performed_by = performed_by or "SYSTEM"

    def receive_batch(self, data: BatchReceiptCreate) -> InventoryBatchRec:
        """
        Record a goods receipt
        The landed cost starts at the purchase price until shared costs are allocated
        """
        existing = self.db.query(InventoryBatchRec).filter(
            InventoryBatchRec.batch_number == data.batch_number
        ).first()
        if existing:
            raise ValidationError(f"Batch number {data.batch_number} already exists", batch_id=existing.id)

        try:
            batch = InventoryBatchRec(
                batch_number=data.batch_number,
                product_id=data.product_id,
                location_id=data.location_id,
                supplier_id=data.supplier_id,
                purchase_order_id=data.purchase_order_id,
                received_quantity=round_quantity(data.received_quantity),
                available_quantity=round_quantity(data.received_quantity),
                purchase_price=unit_rate(data.purchase_price),
                weight=data.weight,
                landed_cost_per_unit=unit_rate(data.purchase_price),
                received_at=data.received_at,
                expiry_at=data.expiry_at,
                quality_grade=data.quality_grade,
                cost_allocation_status="PENDING",
            )
            self.db.add(batch)
            self.db.flush()

            log_costing_action(
                db=self.db,
                user=self.performed_by,
                action="RECEIVE_BATCH",
                table="inventory_batches",
                key=str(batch.id),
                new_values={
                    'batch_number': batch.batch_number,
                    'product_id': batch.product_id,
                    'received_quantity': float(batch.received_quantity),
                    'purchase_price': float(batch.purchase_price),
                },
                module="LEDGER"
            )
            self.db.commit()

        except Exception:
            self.db.rollback()
            raise

        logger.info(
            f"Received batch {batch.batch_number} (id {batch.id}): "
            f"{batch.received_quantity} of product {batch.product_id} at {batch.purchase_price}"
        )
        return batch

    def get_batch(self, batch_id: int) -> InventoryBatchRec:
        batch = self.db.query(InventoryBatchRec).filter(InventoryBatchRec.id == batch_id).first()
        if not batch:
            raise NotFoundError(f"Batch {batch_id} not found", batch_id=batch_id)
        return batch

    def get_costing_details(self, batch_id: int) -> Dict:
        """
        Batch costing breakdown
        Per-unit shared costs and their share of the base purchase price
        """
        batch = self.get_batch(batch_id)
        price = to_decimal(batch.purchase_price)

        freight = unit_rate(batch.freight_per_unit)
        insurance = unit_rate(batch.insurance_per_unit)
        duty = unit_rate(batch.duty_per_unit)

        return {
            'batch': BatchResponse.model_validate(batch),
            'freight_per_unit': freight,
            'insurance_per_unit': insurance,
            'duty_per_unit': duty,
            'handling_per_unit': unit_rate(batch.handling_per_unit),
            'other_per_unit': unit_rate(batch.other_per_unit),
            'total_additional_costs': to_decimal(batch.total_additional_costs),
            'additional_cost_per_unit': unit_rate(batch.additional_cost_per_unit),
            'cost_overhead_percentage': percentage_of(batch.additional_cost_per_unit, price),
            'freight_percentage': percentage_of(freight, price),
            'duty_percentage': percentage_of(duty, price),
            'insurance_percentage': percentage_of(insurance, price),
        }

    def get_movements(self, batch_id: int) -> List[BatchMovementRec]:
        self.get_batch(batch_id)
        return self.db.query(BatchMovementRec).filter(
            BatchMovementRec.batch_id == batch_id
        ).order_by(BatchMovementRec.occurred_at, BatchMovementRec.id).all()

    def consume(
        self,
        batch_id: int,
        quantity: Decimal,
        movement_type: Union[MovementType, str] = MovementType.SALE,
        reference: Optional[str] = None,
        occurred_at: Optional[datetime] = None
    ) -> BatchMovementRec:
        """
        Post a consumption event (sale, transfer or scrap) against one batch
        The batch row is locked for the duration of the transaction
        """
        movement_type = self._consumption_type(movement_type)
        quantity = self._positive_quantity(quantity)
        if occurred_at is None:
            raise ValidationError("occurred_at is required")

        try:
            batch = self._lock_batch(batch_id)
            movement = self._consume_locked(batch, quantity, movement_type, reference, occurred_at)
            self.db.commit()

        except Exception:
            self.db.rollback()
            raise

        logger.info(
            f"Consumed {quantity} from batch {batch_id} ({movement_type.value}), "
            f"{batch.available_quantity} left"
        )
        return movement

    def record_return(
        self,
        movement_id: int,
        quantity: Decimal,
        reference: Optional[str] = None,
        occurred_at: Optional[datetime] = None
    ) -> BatchMovementRec:
        """
        Reverse part or all of an earlier consumption
        History is never edited: the return is a new movement pointing at the original
        """
        quantity = self._positive_quantity(quantity)
        if occurred_at is None:
            raise ValidationError("occurred_at is required")

        original = self.db.query(BatchMovementRec).filter(BatchMovementRec.id == movement_id).first()
        if not original:
            raise NotFoundError(f"Movement {movement_id} not found", movement_id=movement_id)
        if original.is_return:
            raise ValidationError(f"Movement {movement_id} is itself a return and cannot be reversed")
        if occurred_at < original.occurred_at:
            raise ValidationError(
                f"Return dated {occurred_at} precedes movement {movement_id} at {original.occurred_at}",
                movement_id=movement_id
            )

        try:
            batch = self._lock_batch(original.batch_id)

            already_returned = to_decimal(self.db.query(
                func.coalesce(func.sum(BatchMovementRec.quantity), 0)
            ).filter(
                BatchMovementRec.reverses_movement_id == movement_id
            ).scalar())
            if round_quantity(already_returned) + quantity > to_decimal(original.quantity):
                raise ValidationError(
                    f"Return of {quantity} exceeds the unreturned quantity of movement {movement_id}",
                    consumed=str(original.quantity), returned=str(already_returned)
                )

            for _ in range(WRITE_ATTEMPTS):
                available = to_decimal(batch.available_quantity)
                new_available = available + quantity
                if new_available > to_decimal(batch.received_quantity):
                    logger.error(
                        f"Return on batch {batch.id} would raise available quantity to {new_available} "
                        f"above received {batch.received_quantity}"
                    )
                    raise InconsistentLedgerState(
                        f"Batch {batch.id} available quantity would exceed received quantity",
                        batch_id=batch.id, available=str(new_available), received=str(batch.received_quantity)
                    )
                if self._swap_available(batch, available, new_available):
                    break
            else:
                raise self._conflict(batch)

            movement = BatchMovementRec(
                batch_id=batch.id,
                movement_type=MovementType.RETURN.value,
                quantity=quantity,
                unit_cost_snapshot=original.unit_cost_snapshot,
                reverses_movement_id=original.id,
                reference=reference,
                occurred_at=occurred_at,
                created_by=self.performed_by,
            )
            self.db.add(movement)
            self.db.flush()

            log_costing_action(
                db=self.db,
                user=self.performed_by,
                action="RECORD_RETURN",
                table="batch_movements",
                key=str(movement.id),
                new_values={
                    'batch_id': batch.id,
                    'reverses_movement_id': original.id,
                    'quantity': float(quantity),
                },
                module="LEDGER"
            )
            self.db.commit()

        except Exception:
            self.db.rollback()
            raise

        logger.info(f"Returned {quantity} to batch {batch.id} against movement {movement_id}")
        return movement

    def issue_stock(
        self,
        product_id: int,
        quantity: Decimal,
        method: Union[LayerOrder, str] = LayerOrder.FIFO,
        location_id: Optional[int] = None,
        movement_type: Union[MovementType, str] = MovementType.SALE,
        reference: Optional[str] = None,
        occurred_at: Optional[datetime] = None
    ) -> List[BatchMovementRec]:
        """
        Draw a quantity across the product's batches in FIFO or LIFO layer order
        All-or-nothing: either every batch is drawn or none is
        """
        movement_type = self._consumption_type(movement_type)
        quantity = self._positive_quantity(quantity)
        if occurred_at is None:
            raise ValidationError("occurred_at is required")

        try:
            query = self.db.query(InventoryBatchRec).filter(
                and_(
                    InventoryBatchRec.product_id == product_id,
                    InventoryBatchRec.available_quantity > 0,
                    InventoryBatchRec.received_at <= occurred_at
                )
            )
            if location_id is not None:
                query = query.filter(InventoryBatchRec.location_id == location_id)
            batches = query.order_by(InventoryBatchRec.id).with_for_update().all()

            on_hand = sum((to_decimal(b.available_quantity) for b in batches), ZERO)
            if on_hand < quantity:
                raise InsufficientStock(
                    f"Product {product_id} has {on_hand} available, {quantity} requested",
                    product_id=product_id, available=str(on_hand), requested=str(quantity)
                )

            movements = []
            remaining = quantity
            for batch in order_layers(batches, method, batch_id=lambda b: b.id):
                if remaining <= 0:
                    break
                draw = min(remaining, to_decimal(batch.available_quantity))
                movements.append(self._consume_locked(batch, draw, movement_type, reference, occurred_at))
                remaining -= draw

            self.db.commit()

        except Exception:
            self.db.rollback()
            raise

        logger.info(
            f"Issued {quantity} of product {product_id} ({LayerOrder(method).value}) "
            f"across {len(movements)} batches"
        )
        return movements

    def cost_layers(
        self,
        product_id: int,
        as_of: Optional[datetime] = None,
        location_id: Optional[int] = None
    ) -> List[CostLayer]:
        """
        Cost layers of a product: one per batch with stock on hand

        Without as_of the live available quantity is used; with as_of the
        on-hand quantity is rebuilt from the movement history up to that instant.
        """
        query = self.db.query(InventoryBatchRec).filter(InventoryBatchRec.product_id == product_id)
        if location_id is not None:
            query = query.filter(InventoryBatchRec.location_id == location_id)
        if as_of is not None:
            query = query.filter(InventoryBatchRec.received_at <= as_of)
        batches = query.order_by(InventoryBatchRec.id).all()

        net_out = self._net_consumed_by_batch([b.id for b in batches], as_of) if as_of is not None else {}

        layers = []
        for batch in batches:
            if as_of is None:
                on_hand = to_decimal(batch.available_quantity)
            else:
                on_hand = round_quantity(to_decimal(batch.received_quantity) - net_out.get(batch.id, ZERO))

            if on_hand < 0:
                logger.error(f"Batch {batch.id} has negative on-hand quantity {on_hand} (as of {as_of})")
                raise InconsistentLedgerState(
                    f"Batch {batch.id} has negative on-hand quantity",
                    batch_id=batch.id, quantity=str(on_hand)
                )
            if on_hand == 0:
                continue

            layers.append(CostLayer(
                batch_id=batch.id,
                received_at=batch.received_at,
                quantity=on_hand,
                unit_cost=to_decimal(batch.landed_cost_per_unit),
            ))
        return layers

    def on_hand_at(self, product_id: int, at: datetime, location_id: Optional[int] = None) -> Decimal:
        return sum((layer.quantity for layer in self.cost_layers(product_id, at, location_id)), ZERO)

    def net_consumption(
        self,
        product_id: int,
        start: datetime,
        end: datetime,
        location_id: Optional[int] = None
    ) -> Decimal:
        """Consumed quantity in (start, end] less the returns posted in the same window"""
        signed = case(
            (BatchMovementRec.movement_type == MovementType.RETURN.value, -BatchMovementRec.quantity),
            else_=BatchMovementRec.quantity
        )
        query = self.db.query(func.coalesce(func.sum(signed), 0)).join(
            InventoryBatchRec, InventoryBatchRec.id == BatchMovementRec.batch_id
        ).filter(
            and_(
                InventoryBatchRec.product_id == product_id,
                BatchMovementRec.occurred_at > start,
                BatchMovementRec.occurred_at <= end
            )
        )
        if location_id is not None:
            query = query.filter(InventoryBatchRec.location_id == location_id)
        return round_quantity(to_decimal(query.scalar()))

    def _net_consumed_by_batch(self, batch_ids: List[int], as_of: datetime) -> Dict[int, Decimal]:
        if not batch_ids:
            return {}
        signed = case(
            (BatchMovementRec.movement_type == MovementType.RETURN.value, -BatchMovementRec.quantity),
            else_=BatchMovementRec.quantity
        )
        rows = self.db.query(
            BatchMovementRec.batch_id, func.sum(signed)
        ).filter(
            and_(
                BatchMovementRec.batch_id.in_(batch_ids),
                BatchMovementRec.occurred_at <= as_of
            )
        ).group_by(BatchMovementRec.batch_id).all()
        return {batch_id: to_decimal(total) for batch_id, total in rows}

    def _consume_locked(
        self,
        batch: InventoryBatchRec,
        quantity: Decimal,
        movement_type: MovementType,
        reference: Optional[str],
        occurred_at: datetime
    ) -> BatchMovementRec:
        self._check_posting_date(batch, occurred_at)

        for _ in range(WRITE_ATTEMPTS):
            available = to_decimal(batch.available_quantity)
            if available < 0:
                logger.error(f"Batch {batch.id} has negative available quantity {available}")
                raise InconsistentLedgerState(
                    f"Batch {batch.id} has negative available quantity",
                    batch_id=batch.id, available=str(available)
                )
            if quantity > available:
                raise InsufficientStock(
                    f"Batch {batch.id} has {available} available, {quantity} requested",
                    batch_id=batch.id, available=str(available), requested=str(quantity)
                )
            if self._swap_available(batch, available, available - quantity):
                break
        else:
            raise self._conflict(batch)

        movement = BatchMovementRec(
            batch_id=batch.id,
            movement_type=movement_type.value,
            quantity=quantity,
            unit_cost_snapshot=batch.landed_cost_per_unit,
            reference=reference,
            occurred_at=occurred_at,
            created_by=self.performed_by,
        )
        self.db.add(movement)
        self.db.flush()

        log_costing_action(
            db=self.db,
            user=self.performed_by,
            action="CONSUME_BATCH",
            table="batch_movements",
            key=str(movement.id),
            old_values={'available_quantity': float(available)},
            new_values={
                'batch_id': batch.id,
                'movement_type': movement_type.value,
                'quantity': float(quantity),
                'available_quantity': float(batch.available_quantity),
            },
            module="LEDGER"
        )
        return movement

    def _lock_batch(self, batch_id: int) -> InventoryBatchRec:
        batch = self.db.query(InventoryBatchRec).filter(
            InventoryBatchRec.id == batch_id
        ).with_for_update().first()
        if not batch:
            raise NotFoundError(f"Batch {batch_id} not found", batch_id=batch_id)
        return batch

    def _check_posting_date(self, batch: InventoryBatchRec, occurred_at: datetime) -> None:
        """Consumptions are posted in time order: not before the receipt nor the batch's last movement"""
        if occurred_at < batch.received_at:
            raise ValidationError(
                f"Movement dated {occurred_at} precedes the receipt of batch {batch.id} at {batch.received_at}",
                batch_id=batch.id
            )
        latest = self.db.query(func.max(BatchMovementRec.occurred_at)).filter(
            BatchMovementRec.batch_id == batch.id
        ).scalar()
        if latest is not None and occurred_at < latest:
            raise ValidationError(
                f"Movement dated {occurred_at} precedes the last movement of batch {batch.id} at {latest}",
                batch_id=batch.id
            )

    def _swap_available(self, batch: InventoryBatchRec, expected: Decimal, new: Decimal) -> bool:
        """
        Write the available quantity only if it still holds the value it was read with
        The batch is re-read either way, so a failed swap leaves it current for the next attempt
        """
        result = self.db.execute(
            update(InventoryBatchRec).where(
                and_(
                    InventoryBatchRec.id == batch.id,
                    InventoryBatchRec.available_quantity == expected
                )
            ).values(available_quantity=new).execution_options(synchronize_session=False)
        )
        self.db.refresh(batch, ["available_quantity"])
        if result.rowcount != 1:
            logger.warning(f"Batch {batch.id} changed while posting, re-reading available quantity")
            return False
        return True

    @staticmethod
    def _conflict(batch: InventoryBatchRec) -> LedgerConflict:
        logger.error(f"Batch {batch.id} kept changing after {WRITE_ATTEMPTS} attempts")
        return LedgerConflict(f"Batch {batch.id} is being updated concurrently, retry the posting", batch_id=batch.id)

    @staticmethod
    def _positive_quantity(quantity) -> Decimal:
        quantity = round_quantity(quantity)
        if quantity <= 0:
            raise ValidationError("Quantity must be greater than zero", quantity=str(quantity))
        return quantity

    @staticmethod
    def _consumption_type(movement_type) -> MovementType:
        try:
            movement_type = MovementType(movement_type)
        except ValueError:
            raise ValidationError(f"Unknown movement type {movement_type}")
        if movement_type == MovementType.RETURN:
            raise ValidationError("Returns are recorded against the consumption they reverse")
        return movement_type
