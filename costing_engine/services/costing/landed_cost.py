"""
Landed Cost Allocation Service
Distributes a purchase order's shared costs across its batches
"""
from typing import List, Optional, Dict, Tuple, Union
from dataclasses import dataclass, field
from decimal import Decimal
from datetime import datetime, timezone
from sqlalchemy.orm import Session
from sqlalchemy import and_, desc

from costing_engine.models.batch import InventoryBatchRec
from costing_engine.models.purchase_order import (
    PurchaseOrderCostRec, CostAllocationRec, CostAllocationLineRec
)
from costing_engine.schemas.costing import (
    AllocationBasis, PurchaseOrderCostSetCreate, PurchaseOrderCostSetRevision
)
from costing_engine.core.audit import log_costing_action
from costing_engine.core.config import settings
from costing_engine.core.exceptions import (
    CostingException, ValidationError, NotFoundError, IndeterminateAllocationBasis,
    MissingAllocationBasisAttribute, AlreadyAllocated, InconsistentLedgerState
)
from costing_engine.core.logging import get_logger
from costing_engine.services.costing.rounding import (
    ZERO, to_decimal, money, money_floor, unit_rate
)

logger = get_logger("ledger")

# Shared cost component -> (cost set total column, batch / allocation line column)
COST_COMPONENTS = (
    ("freight", "total_freight_cost", "freight_cost"),
    ("insurance", "total_insurance_cost", "insurance_cost"),
    ("duty", "total_customs_duty", "customs_duty"),
    ("handling", "total_handling_charges", "handling_charges"),
    ("other", "total_other_charges", "other_charges"),
)

SHARE_RATIO_EXPONENT = Decimal("0.00000001")


@dataclass
class BatchShare:
    """One batch's share of a purchase order's shared costs"""
    batch_id: int
    share_weight: Decimal
    share_ratio: Decimal
    components: Dict[str, Decimal] = field(default_factory=dict)
    per_unit: Dict[str, Decimal] = field(default_factory=dict)
    purchase_price: Decimal = ZERO

    @property
    def total_additional_cost(self) -> Decimal:
        return sum(self.components.values(), ZERO)

    @property
    def additional_cost_per_unit(self) -> Decimal:
        return sum(self.per_unit.values(), ZERO)

    @property
    def landed_cost_per_unit(self) -> Decimal:
        return self.purchase_price + self.additional_cost_per_unit


def share_weight(batch, basis: AllocationBasis) -> Decimal:
    """Value, weight or quantity of a batch under the given allocation basis"""
    if basis == AllocationBasis.BY_VALUE:
        return to_decimal(batch.received_quantity) * to_decimal(batch.purchase_price)
    if basis == AllocationBasis.BY_WEIGHT:
        if batch.weight is None:
            raise MissingAllocationBasisAttribute(
                f"Batch {batch.id} has no declared weight for by_weight allocation",
                batch_id=batch.id
            )
        return to_decimal(batch.weight)
    if basis == AllocationBasis.BY_QUANTITY:
        return to_decimal(batch.received_quantity)
    raise ValidationError(f"Unknown allocation basis {basis}")


def convert_totals(totals: Dict[str, Decimal], exchange_rate) -> Dict[str, Decimal]:
    """Convert cost totals once with the cost set's fixed rate, to the currency minor unit"""
    rate = to_decimal(exchange_rate)
    if rate <= 0:
        raise ValidationError("Exchange rate must be greater than zero", exchange_rate=str(rate))
    return {name: money(to_decimal(total) * rate) for name, total in totals.items()}


def compute_allocation(
    totals: Dict[str, Decimal],
    basis: Union[AllocationBasis, str],
    batches: List
) -> List[BatchShare]:
    """
    Split each shared cost total across the batches in proportion to their share weight

    Every batch but one gets its share truncated to the currency minor unit; the
    last batch by id with a positive weight absorbs the remainder, so each
    component sums exactly to its total and no share goes negative.
    """
    basis = AllocationBasis(basis)
    if not batches:
        raise ValidationError("No batches to allocate to")

    ordered = sorted(batches, key=lambda b: b.id)
    weights = [share_weight(b, basis) for b in ordered]
    total_weight = sum(weights, ZERO)
    if total_weight <= 0:
        raise IndeterminateAllocationBasis(
            f"Share weights sum to {total_weight} under {basis.value}",
            basis=basis.value
        )

    absorber = max(i for i, w in enumerate(weights) if w > 0)
    shares = [
        BatchShare(
            batch_id=b.id,
            share_weight=w,
            share_ratio=(w / total_weight).quantize(SHARE_RATIO_EXPONENT),
            purchase_price=to_decimal(b.purchase_price),
        )
        for b, w in zip(ordered, weights)
    ]

    for name, _total_column, _line_column in COST_COMPONENTS:
        total = money(totals.get(name, ZERO))
        if total < 0:
            raise ValidationError(f"Shared cost {name} must not be negative", total=str(total))

        allocated = ZERO
        for i, share in enumerate(shares):
            if i == absorber:
                continue
            amount = money_floor(total * weights[i] / total_weight)
            share.components[name] = amount
            allocated += amount
        shares[absorber].components[name] = total - allocated

    for batch, share in zip(ordered, shares):
        received = to_decimal(batch.received_quantity)
        share.per_unit = {
            name: unit_rate(amount / received) for name, amount in share.components.items()
        }

    return shares


class LandedCostService:
    """
    Landed Cost functionality
    Purchase order cost sets and their one-time application to batches
    """

    def __init__(self, db: Session, performed_by: Optional[str] = None):
        self.db = db
        self.performed_by = performed_by or "SYSTEM"

    def get_active_cost_set(self, purchase_order_id: int, lock: bool = False) -> Optional[PurchaseOrderCostRec]:
        query = self.db.query(PurchaseOrderCostRec).filter(
            and_(
                PurchaseOrderCostRec.purchase_order_id == purchase_order_id,
                PurchaseOrderCostRec.status != "SUPERSEDED"
            )
        ).order_by(desc(PurchaseOrderCostRec.version))
        if lock:
            query = query.with_for_update()
        return query.first()

    def create_cost_set(self, data: PurchaseOrderCostSetCreate) -> Tuple[bool, Union[PurchaseOrderCostRec, str]]:
        """
        Record the shared costs of a purchase order
        Returns (accepted, cost set or rejection reason)
        """
        try:
            existing = self.get_active_cost_set(data.purchase_order_id, lock=True)
            if existing and existing.status == "ALLOCATED":
                reason = (
                    f"Purchase order {data.purchase_order_id} costs are already allocated "
                    f"(version {existing.version}); submit a revision instead"
                )
                self.db.rollback()
                logger.warning(reason)
                return False, reason

            old_values = self._snapshot(existing) if existing else None
            if existing:
                cost_set = existing
            else:
                cost_set = PurchaseOrderCostRec(
                    purchase_order_id=data.purchase_order_id,
                    version=1,
                    status="PENDING",
                    created_by=self.performed_by,
                )
                self.db.add(cost_set)

            cost_set.purchase_order_number = data.purchase_order_number
            cost_set.total_freight_cost = money(data.total_freight_cost)
            cost_set.total_insurance_cost = money(data.total_insurance_cost)
            cost_set.total_customs_duty = money(data.total_customs_duty)
            cost_set.total_handling_charges = money(data.total_handling_charges)
            cost_set.total_other_charges = money(data.total_other_charges)
            cost_set.allocation_basis = AllocationBasis(data.allocation_basis).value
            cost_set.total_po_value = money(data.total_po_value) if data.total_po_value is not None else None
            cost_set.po_currency = (data.po_currency or settings.BASE_CURRENCY).upper()
            cost_set.exchange_rate = to_decimal(data.exchange_rate)
            cost_set.exchange_rate_date = data.exchange_rate_date
            self.db.flush()

            log_costing_action(
                db=self.db,
                user=self.performed_by,
                action="UPDATE_PO_COSTS" if existing else "CREATE_PO_COSTS",
                table="purchase_order_costs",
                key=str(cost_set.id),
                old_values=old_values,
                new_values=self._snapshot(cost_set),
                module="LANDED"
            )
            self.db.commit()

        except (CostingException, ValueError) as e:
            self.db.rollback()
            logger.warning(f"Cost set for purchase order {data.purchase_order_id} rejected: {e}")
            return False, str(e)

        except Exception as e:
            self.db.rollback()
            logger.error(f"Error recording cost set for purchase order {data.purchase_order_id}: {e}")
            raise

        logger.info(
            f"{'Updated' if existing else 'Created'} cost set {cost_set.id} "
            f"for purchase order {cost_set.purchase_order_id}"
        )
        return True, cost_set

    def revise_cost_set(self, purchase_order_id: int, data: PurchaseOrderCostSetRevision) -> PurchaseOrderCostRec:
        """
        Correct the shared costs of a purchase order

        A pending cost set is corrected in place. An allocated one is kept as
        SUPERSEDED and a new version takes its place, ready to be allocated.
        """
        try:
            current = self.get_active_cost_set(purchase_order_id, lock=True)
            if not current:
                raise NotFoundError(
                    f"No cost set for purchase order {purchase_order_id}",
                    purchase_order_id=purchase_order_id
                )
            old_values = self._snapshot(current)

            if current.status == "ALLOCATED":
                current.status = "SUPERSEDED"
                revised = PurchaseOrderCostRec(
                    purchase_order_id=current.purchase_order_id,
                    purchase_order_number=current.purchase_order_number,
                    version=current.version + 1,
                    total_freight_cost=current.total_freight_cost,
                    total_insurance_cost=current.total_insurance_cost,
                    total_customs_duty=current.total_customs_duty,
                    total_handling_charges=current.total_handling_charges,
                    total_other_charges=current.total_other_charges,
                    allocation_basis=current.allocation_basis,
                    total_po_value=current.total_po_value,
                    po_currency=current.po_currency,
                    exchange_rate=current.exchange_rate,
                    exchange_rate_date=current.exchange_rate_date,
                    status="PENDING",
                    supersedes_id=current.id,
                    created_by=self.performed_by,
                )
                self.db.add(revised)
            else:
                revised = current

            for _name, total_column, _line_column in COST_COMPONENTS:
                value = getattr(data, total_column)
                if value is not None:
                    setattr(revised, total_column, money(value))
            if data.allocation_basis is not None:
                revised.allocation_basis = AllocationBasis(data.allocation_basis).value
            if data.total_po_value is not None:
                revised.total_po_value = money(data.total_po_value)
            if data.exchange_rate is not None:
                revised.exchange_rate = to_decimal(data.exchange_rate)
            if data.exchange_rate_date is not None:
                revised.exchange_rate_date = data.exchange_rate_date
            self.db.flush()

            log_costing_action(
                db=self.db,
                user=self.performed_by,
                action="REVISE_PO_COSTS",
                table="purchase_order_costs",
                key=str(revised.id),
                old_values=old_values,
                new_values=self._snapshot(revised),
                module="LANDED"
            )
            self.db.commit()

        except Exception:
            self.db.rollback()
            raise

        logger.info(
            f"Revised costs of purchase order {purchase_order_id}: version {revised.version} "
            f"(supersedes {revised.supersedes_id})"
        )
        return revised

    def allocate_purchase_order(
        self,
        purchase_order_id: int,
        basis: Optional[Union[AllocationBasis, str]] = None,
        allocated_at: Optional[datetime] = None
    ) -> CostAllocationRec:
        """
        Apply the active cost set of a purchase order to all of its batches

        Runs as one transaction: every batch gets its share or none does.
        Re-applying an allocated cost set with the same basis returns the
        existing result; a different basis is rejected.
        """
        basis = AllocationBasis(basis) if basis is not None else None

        try:
            cost_set = self.get_active_cost_set(purchase_order_id, lock=True)
            if not cost_set:
                raise NotFoundError(
                    f"No cost set for purchase order {purchase_order_id}",
                    purchase_order_id=purchase_order_id
                )

            if cost_set.status == "ALLOCATED":
                current = self._latest_allocation(cost_set_id=cost_set.id)
                if current is None:
                    raise InconsistentLedgerState(
                        f"Cost set {cost_set.id} is marked allocated but has no allocation",
                        cost_set_id=cost_set.id
                    )
                if basis is None or basis.value == current.allocation_basis:
                    logger.info(
                        f"Cost set {cost_set.id} already allocated as {current.id}; returning existing result"
                    )
                    return current
                raise AlreadyAllocated(
                    f"Cost set {cost_set.id} was allocated {current.allocation_basis}; "
                    f"revise the costs to allocate {basis.value}",
                    cost_set_id=cost_set.id, allocation_id=current.id
                )

            basis = basis or AllocationBasis(cost_set.allocation_basis)
            batches = self.db.query(InventoryBatchRec).filter(
                InventoryBatchRec.purchase_order_id == purchase_order_id
            ).order_by(InventoryBatchRec.id).with_for_update().all()
            if not batches:
                raise ValidationError(
                    f"Purchase order {purchase_order_id} has no received batches",
                    purchase_order_id=purchase_order_id
                )

            totals = convert_totals(cost_set.cost_totals(), cost_set.exchange_rate)
            shares = compute_allocation(totals, basis, batches)
            previous = self._latest_allocation(purchase_order_id=purchase_order_id)
            allocated_at = allocated_at or datetime.now(timezone.utc).replace(tzinfo=None)

            allocation = CostAllocationRec(
                cost_set_id=cost_set.id,
                purchase_order_id=purchase_order_id,
                allocation_basis=basis.value,
                exchange_rate=cost_set.exchange_rate,
                total_allocated=sum((s.total_additional_cost for s in shares), ZERO),
                supersedes_allocation_id=previous.id if previous else None,
                allocated_at=allocated_at,
                allocated_by=self.performed_by,
            )
            self.db.add(allocation)
            self.db.flush()

            batches_by_id = {b.id: b for b in batches}
            for share in shares:
                allocation.lines.append(CostAllocationLineRec(
                    batch_id=share.batch_id,
                    share_weight=share.share_weight,
                    share_ratio=share.share_ratio,
                    freight_cost=share.components["freight"],
                    insurance_cost=share.components["insurance"],
                    customs_duty=share.components["duty"],
                    handling_charges=share.components["handling"],
                    other_charges=share.components["other"],
                    total_additional_cost=share.total_additional_cost,
                    additional_cost_per_unit=share.additional_cost_per_unit,
                    landed_cost_per_unit=share.landed_cost_per_unit,
                ))
                batch = batches_by_id[share.batch_id]
                for name, _total_column, line_column in COST_COMPONENTS:
                    setattr(batch, line_column, share.components[name])
                batch.landed_cost_per_unit = share.landed_cost_per_unit
                batch.cost_allocation_status = "ALLOCATED"
                batch.cost_allocation_id = allocation.id
                batch.cost_allocated_at = allocated_at

            cost_set.allocation_basis = basis.value
            cost_set.status = "ALLOCATED"
            self.db.flush()

            self._verify_conservation(allocation, totals)

            log_costing_action(
                db=self.db,
                user=self.performed_by,
                action="ALLOCATE_PO_COSTS",
                table="cost_allocations",
                key=str(allocation.id),
                new_values={
                    'purchase_order_id': purchase_order_id,
                    'cost_set_id': cost_set.id,
                    'allocation_basis': basis.value,
                    'total_allocated': float(allocation.total_allocated),
                    'batches': len(shares),
                    'supersedes_allocation_id': allocation.supersedes_allocation_id,
                },
                module="LANDED"
            )
            self.db.commit()

        except Exception:
            self.db.rollback()
            raise

        logger.info(
            f"Allocated {allocation.total_allocated} {settings.BASE_CURRENCY} of purchase order "
            f"{purchase_order_id} costs across {len(shares)} batches ({basis.value})"
        )
        return allocation

    def get_allocation(self, allocation_id: int) -> CostAllocationRec:
        allocation = self.db.query(CostAllocationRec).filter(CostAllocationRec.id == allocation_id).first()
        if not allocation:
            raise NotFoundError(f"Allocation {allocation_id} not found", allocation_id=allocation_id)
        return allocation

    def allocation_history(self, purchase_order_id: int) -> List[CostAllocationRec]:
        """Every allocation of a purchase order, oldest first; the last one is current"""
        return self.db.query(CostAllocationRec).filter(
            CostAllocationRec.purchase_order_id == purchase_order_id
        ).order_by(CostAllocationRec.id).all()

    def _latest_allocation(
        self,
        cost_set_id: Optional[int] = None,
        purchase_order_id: Optional[int] = None
    ) -> Optional[CostAllocationRec]:
        query = self.db.query(CostAllocationRec)
        if cost_set_id is not None:
            query = query.filter(CostAllocationRec.cost_set_id == cost_set_id)
        if purchase_order_id is not None:
            query = query.filter(CostAllocationRec.purchase_order_id == purchase_order_id)
        return query.order_by(desc(CostAllocationRec.id)).first()

    def _verify_conservation(self, allocation: CostAllocationRec, totals: Dict[str, Decimal]):
        for name, _total_column, line_column in COST_COMPONENTS:
            allocated = sum((to_decimal(getattr(line, line_column)) for line in allocation.lines), ZERO)
            if allocated != totals[name]:
                logger.error(
                    f"Allocation {allocation.id} leaks {name}: allocated {allocated}, total {totals[name]}"
                )
                raise InconsistentLedgerState(
                    f"Allocated {name} does not sum to the cost set total",
                    allocation_id=allocation.id, allocated=str(allocated), total=str(totals[name])
                )
        if to_decimal(allocation.total_allocated) != sum(totals.values(), ZERO):
            logger.error(f"Allocation {allocation.id} total {allocation.total_allocated} does not match cost set")
            raise InconsistentLedgerState(
                "Allocated total does not match the cost set totals",
                allocation_id=allocation.id
            )

    @staticmethod
    def _snapshot(cost_set: PurchaseOrderCostRec) -> Dict:
        values = {name: float(total) for name, total in cost_set.cost_totals().items()}
        values.update({
            'version': cost_set.version,
            'allocation_basis': cost_set.allocation_basis,
            'exchange_rate': float(cost_set.exchange_rate or 0),
            'status': cost_set.status,
        })
        return values
