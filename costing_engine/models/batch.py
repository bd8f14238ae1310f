"""
Batch Ledger Models
SQLAlchemy models for inventory batches and their consumption history
"""
from decimal import Decimal

from sqlalchemy import (
    Column, String, Integer, Numeric, DateTime,
    ForeignKey, CheckConstraint, Index
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from costing_engine.core.database import Base


class InventoryBatchRec(Base):
    """
    Inventory Batch Record - one goods receipt of one product at one location

    Holds the acquisition facts every costing computation reads. The five
    shared-cost columns are the batch's allocated share of its purchase order's
    freight, insurance, duty, handling and other charges (batch totals, not per unit).
    """
    __tablename__ = "inventory_batches"

    # Primary Key
    id = Column(Integer, primary_key=True, autoincrement=True, doc="Batch ID")
    batch_number = Column(String(50), unique=True, nullable=False, doc="Supplier / delivery batch reference")

    # References to external collaborators
    product_id = Column(Integer, nullable=False, index=True, doc="Product reference")
    location_id = Column(Integer, nullable=False, index=True, doc="Location reference")
    supplier_id = Column(Integer, index=True, doc="Supplier reference")
    purchase_order_id = Column(Integer, index=True, doc="Purchase order reference")

    # Quantities
    received_quantity = Column(Numeric(15, 3), nullable=False, doc="Quantity received (immutable)")
    available_quantity = Column(Numeric(15, 3), nullable=False, doc="Quantity on hand (service-managed)")

    # Costs
    purchase_price = Column(Numeric(15, 4), nullable=False, doc="Base unit purchase price")
    weight = Column(Numeric(15, 3), doc="Declared line weight, used by by_weight allocation")
    freight_cost = Column(Numeric(15, 2), nullable=False, default=Decimal("0.00"), doc="Allocated freight")
    insurance_cost = Column(Numeric(15, 2), nullable=False, default=Decimal("0.00"), doc="Allocated insurance")
    customs_duty = Column(Numeric(15, 2), nullable=False, default=Decimal("0.00"), doc="Allocated customs duty")
    handling_charges = Column(Numeric(15, 2), nullable=False, default=Decimal("0.00"), doc="Allocated handling")
    other_charges = Column(Numeric(15, 2), nullable=False, default=Decimal("0.00"), doc="Allocated other charges")
    landed_cost_per_unit = Column(Numeric(15, 4), nullable=False, doc="Purchase price plus allocated shared costs per unit")

    # Dates and quality
    received_at = Column(DateTime, nullable=False, index=True, doc="Receipt timestamp")
    expiry_at = Column(DateTime, doc="Expiry timestamp")
    quality_grade = Column(String(10), nullable=False, default="A", doc="Quality grade")

    # Landed cost allocation state
    cost_allocation_status = Column(String(12), nullable=False, default="PENDING", doc="PENDING or ALLOCATED")
    cost_allocation_id = Column(Integer, index=True, doc="Allocation that set the landed cost")
    cost_allocated_at = Column(DateTime, doc="When the landed cost was last allocated")

    # Audit Trail
    created_at = Column(DateTime, server_default=func.current_timestamp())
    updated_at = Column(DateTime, server_default=func.current_timestamp(), onupdate=func.current_timestamp())

    # Relationships
    movements = relationship(
        "BatchMovementRec", back_populates="batch", order_by="BatchMovementRec.id"
    )

    __table_args__ = (
        CheckConstraint("received_quantity > 0", name="received_gt_zero"),
        CheckConstraint("available_quantity >= 0", name="available_gte_zero"),
        CheckConstraint("available_quantity <= received_quantity", name="available_lte_received"),
        CheckConstraint("purchase_price >= 0", name="purchase_price_gte_zero"),
        CheckConstraint("landed_cost_per_unit >= purchase_price", name="landed_gte_purchase"),
        CheckConstraint("cost_allocation_status IN ('PENDING', 'ALLOCATED')", name="valid_allocation_status"),
        Index("idx_batch_product_location", "product_id", "location_id"),
        Index("idx_batch_product_received", "product_id", "received_at"),
    )

    @property
    def total_additional_costs(self) -> Decimal:
        return (
            Decimal(self.freight_cost or 0) + Decimal(self.insurance_cost or 0)
            + Decimal(self.customs_duty or 0) + Decimal(self.handling_charges or 0)
            + Decimal(self.other_charges or 0)
        )

    def _per_unit(self, amount) -> Decimal:
        return Decimal(amount or 0) / Decimal(self.received_quantity)

    @property
    def freight_per_unit(self) -> Decimal:
        return self._per_unit(self.freight_cost)

    @property
    def insurance_per_unit(self) -> Decimal:
        return self._per_unit(self.insurance_cost)

    @property
    def duty_per_unit(self) -> Decimal:
        return self._per_unit(self.customs_duty)

    @property
    def handling_per_unit(self) -> Decimal:
        return self._per_unit(self.handling_charges)

    @property
    def other_per_unit(self) -> Decimal:
        return self._per_unit(self.other_charges)

    @property
    def additional_cost_per_unit(self) -> Decimal:
        return Decimal(self.landed_cost_per_unit) - Decimal(self.purchase_price)

    def __repr__(self):
        return f"<InventoryBatchRec {self.id} {self.batch_number} product={self.product_id}>"


class BatchMovementRec(Base):
    """
    Batch Movement Record - append-only consumption history

    Consumption events (sale, transfer, scrap) decrement the batch; a return
    is a new record reversing part of an earlier consumption.
    """
    __tablename__ = "batch_movements"

    id = Column(Integer, primary_key=True, autoincrement=True, doc="Movement ID")
    batch_id = Column(Integer, ForeignKey("inventory_batches.id", ondelete="RESTRICT"), nullable=False, index=True)
    movement_type = Column(String(10), nullable=False, doc="sale, transfer, scrap or return")
    quantity = Column(Numeric(15, 3), nullable=False, doc="Movement quantity (always positive)")
    unit_cost_snapshot = Column(Numeric(15, 4), nullable=False, doc="Landed cost per unit when the movement was posted")
    reverses_movement_id = Column(Integer, ForeignKey("batch_movements.id", ondelete="RESTRICT"), doc="Consumption this return reverses")
    reference = Column(String(50), doc="Source document reference")
    occurred_at = Column(DateTime, nullable=False, index=True, doc="When the movement happened")

    # Audit Trail
    created_by = Column(String(30), nullable=False, default="SYSTEM")
    created_at = Column(DateTime, server_default=func.current_timestamp())

    # Relationships
    batch = relationship("InventoryBatchRec", back_populates="movements")
    reverses = relationship("BatchMovementRec", remote_side=[id])

    __table_args__ = (
        CheckConstraint("quantity > 0", name="quantity_gt_zero"),
        CheckConstraint(
            "movement_type IN ('sale', 'transfer', 'scrap', 'return')", name="valid_movement_type"
        ),
    )

    @property
    def is_return(self) -> bool:
        return self.movement_type == "return"
