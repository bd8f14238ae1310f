"""
Purchase Order Cost Models
Shared acquisition costs of a purchase order and the allocations applied from them
"""
from decimal import Decimal

from sqlalchemy import (
    Column, String, Integer, Numeric, DateTime, Date,
    ForeignKey, CheckConstraint, UniqueConstraint
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from costing_engine.core.database import Base


class PurchaseOrderCostRec(Base):
    """
    Purchase Order Cost Set

    One version per correction. Exactly one version of a purchase order is
    active (PENDING or ALLOCATED); older versions are SUPERSEDED and kept.
    """
    __tablename__ = "purchase_order_costs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    purchase_order_id = Column(Integer, nullable=False, index=True, doc="Purchase order reference")
    purchase_order_number = Column(String(30), doc="Purchase order number")
    version = Column(Integer, nullable=False, default=1, doc="Cost set version")

    # Shared cost totals, in the purchase order currency
    total_freight_cost = Column(Numeric(15, 2), nullable=False, default=Decimal("0.00"))
    total_insurance_cost = Column(Numeric(15, 2), nullable=False, default=Decimal("0.00"))
    total_customs_duty = Column(Numeric(15, 2), nullable=False, default=Decimal("0.00"))
    total_handling_charges = Column(Numeric(15, 2), nullable=False, default=Decimal("0.00"))
    total_other_charges = Column(Numeric(15, 2), nullable=False, default=Decimal("0.00"))

    allocation_basis = Column(String(12), nullable=False, default="by_value", doc="by_value, by_weight or by_quantity")
    total_po_value = Column(Numeric(15, 2), doc="Total order value")
    po_currency = Column(String(3), nullable=False, doc="Currency code")
    exchange_rate = Column(Numeric(15, 6), nullable=False, default=Decimal("1.000000"), doc="Fixed rate to base currency")
    exchange_rate_date = Column(Date, doc="Date the rate was fixed")

    status = Column(String(12), nullable=False, default="PENDING", doc="PENDING, ALLOCATED or SUPERSEDED")
    supersedes_id = Column(Integer, ForeignKey("purchase_order_costs.id", ondelete="RESTRICT"), doc="Cost set this version corrects")

    # Audit Trail
    created_by = Column(String(30), nullable=False, default="SYSTEM")
    created_at = Column(DateTime, server_default=func.current_timestamp())
    updated_at = Column(DateTime, server_default=func.current_timestamp(), onupdate=func.current_timestamp())

    allocations = relationship("CostAllocationRec", back_populates="cost_set", order_by="CostAllocationRec.id")

    __table_args__ = (
        UniqueConstraint("purchase_order_id", "version", name="uq_po_cost_version"),
        CheckConstraint(
            "total_freight_cost >= 0 AND total_insurance_cost >= 0 AND total_customs_duty >= 0 "
            "AND total_handling_charges >= 0 AND total_other_charges >= 0",
            name="cost_totals_gte_zero",
        ),
        CheckConstraint("exchange_rate > 0", name="exchange_rate_gt_zero"),
        CheckConstraint("allocation_basis IN ('by_value', 'by_weight', 'by_quantity')", name="valid_basis"),
        CheckConstraint("status IN ('PENDING', 'ALLOCATED', 'SUPERSEDED')", name="valid_status"),
    )

    def cost_totals(self) -> dict:
        """Shared cost totals keyed by component, in the purchase order currency"""
        return {
            "freight": Decimal(self.total_freight_cost or 0),
            "insurance": Decimal(self.total_insurance_cost or 0),
            "duty": Decimal(self.total_customs_duty or 0),
            "handling": Decimal(self.total_handling_charges or 0),
            "other": Decimal(self.total_other_charges or 0),
        }


class CostAllocationRec(Base):
    """
    Cost Allocation - the immutable result of applying one cost set

    Corrections never update a row: a new allocation points at the one it
    supersedes and both stay on file.
    """
    __tablename__ = "cost_allocations"

    id = Column(Integer, primary_key=True, autoincrement=True)
    cost_set_id = Column(Integer, ForeignKey("purchase_order_costs.id", ondelete="RESTRICT"), nullable=False, index=True)
    purchase_order_id = Column(Integer, nullable=False, index=True)
    allocation_basis = Column(String(12), nullable=False)
    exchange_rate = Column(Numeric(15, 6), nullable=False)
    total_allocated = Column(Numeric(15, 2), nullable=False, doc="Sum of every allocated share, base currency")
    supersedes_allocation_id = Column(Integer, ForeignKey("cost_allocations.id", ondelete="RESTRICT"))
    allocated_at = Column(DateTime, nullable=False)
    allocated_by = Column(String(30), nullable=False, default="SYSTEM")

    cost_set = relationship("PurchaseOrderCostRec", back_populates="allocations")
    lines = relationship(
        "CostAllocationLineRec", back_populates="allocation",
        order_by="CostAllocationLineRec.batch_id", cascade="all, delete-orphan"
    )


class CostAllocationLineRec(Base):
    """Per-batch share of one cost allocation"""
    __tablename__ = "cost_allocation_lines"

    id = Column(Integer, primary_key=True, autoincrement=True)
    allocation_id = Column(Integer, ForeignKey("cost_allocations.id", ondelete="CASCADE"), nullable=False, index=True)
    batch_id = Column(Integer, ForeignKey("inventory_batches.id", ondelete="RESTRICT"), nullable=False, index=True)

    share_weight = Column(Numeric(20, 4), nullable=False, doc="Value, weight or quantity used as the share")
    share_ratio = Column(Numeric(12, 8), nullable=False, doc="share_weight / sum of share weights")

    freight_cost = Column(Numeric(15, 2), nullable=False)
    insurance_cost = Column(Numeric(15, 2), nullable=False)
    customs_duty = Column(Numeric(15, 2), nullable=False)
    handling_charges = Column(Numeric(15, 2), nullable=False)
    other_charges = Column(Numeric(15, 2), nullable=False)
    total_additional_cost = Column(Numeric(15, 2), nullable=False)

    additional_cost_per_unit = Column(Numeric(15, 4), nullable=False)
    landed_cost_per_unit = Column(Numeric(15, 4), nullable=False)

    allocation = relationship("CostAllocationRec", back_populates="lines")

    __table_args__ = (
        UniqueConstraint("allocation_id", "batch_id", name="uq_allocation_batch"),
    )
