"""Purchase Order landed cost API endpoints"""

from fastapi import APIRouter, Depends, Response, status, Body
from sqlalchemy.orm import Session
from typing import List, Optional
import logging

from costing_engine.api import deps
from costing_engine.schemas.costing import (
    PurchaseOrderCostSetCreate, PurchaseOrderCostSetRevision, PurchaseOrderCostSet,
    CostSetDecision, AllocationRequest, AllocationResult
)
from costing_engine.services.costing import LandedCostService

router = APIRouter()
logger = logging.getLogger("costing.api")


@router.post("/purchase-orders/costs", response_model=CostSetDecision, status_code=status.HTTP_201_CREATED)
async def create_purchase_order_costs(
    cost_set: PurchaseOrderCostSetCreate,
    response: Response,
    db: Session = Depends(deps.get_db),
    performed_by: str = Depends(deps.get_performed_by),
):
    """
    Record the shared costs of a purchase order.

    Rejected (409) once the purchase order's costs have been allocated;
    corrections go through the revision endpoint.
    """
    accepted, result = LandedCostService(db, performed_by).create_cost_set(cost_set)
    if not accepted:
        logger.info(f"Cost set for purchase order {cost_set.purchase_order_id} rejected: {result}")
        response.status_code = status.HTTP_409_CONFLICT
        return CostSetDecision(accepted=False, reason=result)
    return CostSetDecision(accepted=True, cost_set=PurchaseOrderCostSet.model_validate(result))


@router.put("/purchase-orders/{purchase_order_id}/costs", response_model=PurchaseOrderCostSet)
async def revise_purchase_order_costs(
    purchase_order_id: int,
    revision: PurchaseOrderCostSetRevision,
    db: Session = Depends(deps.get_db),
    performed_by: str = Depends(deps.get_performed_by),
):
    """Correct the shared costs; an allocated cost set is superseded by a new version."""
    return LandedCostService(db, performed_by).revise_cost_set(purchase_order_id, revision)


@router.post("/purchase-orders/{purchase_order_id}/allocate", response_model=AllocationResult)
async def allocate_purchase_order_costs(
    purchase_order_id: int,
    request: Optional[AllocationRequest] = Body(None),
    db: Session = Depends(deps.get_db),
    performed_by: str = Depends(deps.get_performed_by),
):
    """
    Apply the purchase order's shared costs to all of its batches.

    Repeating the call with the same (or no) basis returns the existing
    allocation; a different basis is rejected with 409.
    """
    basis = request.allocation_basis if request else None
    return LandedCostService(db, performed_by).allocate_purchase_order(purchase_order_id, basis)


@router.get("/purchase-orders/{purchase_order_id}/allocations", response_model=List[AllocationResult])
async def get_allocation_history(purchase_order_id: int, db: Session = Depends(deps.get_db)):
    """Every allocation of the purchase order, oldest first."""
    return LandedCostService(db).allocation_history(purchase_order_id)
