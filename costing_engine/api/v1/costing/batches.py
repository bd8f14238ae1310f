"""Batch Ledger API endpoints"""

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session
from typing import List

from costing_engine.api import deps
from costing_engine.schemas.costing import (
    BatchReceiptCreate, BatchResponse, BatchCostingDetails,
    ConsumptionCreate, ReturnCreate, StockIssueRequest, BatchMovementResponse
)
from costing_engine.services.costing import BatchLedgerService

router = APIRouter()


@router.post("/batches", response_model=BatchResponse, status_code=status.HTTP_201_CREATED)
async def receive_batch(
    receipt: BatchReceiptCreate,
    db: Session = Depends(deps.get_db),
    performed_by: str = Depends(deps.get_performed_by),
):
    """
    Record a goods receipt.

    The landed cost starts at the purchase price and is raised when the
    purchase order's shared costs are allocated.
    """
    receipt.received_at = deps.naive_utc(receipt.received_at)
    receipt.expiry_at = deps.naive_utc(receipt.expiry_at)
    return BatchLedgerService(db, performed_by).receive_batch(receipt)


@router.get("/batches/{batch_id}", response_model=BatchCostingDetails)
async def get_batch_costing_details(batch_id: int, db: Session = Depends(deps.get_db)):
    """Batch with its per-unit shared costs and overhead percentages."""
    return BatchLedgerService(db).get_costing_details(batch_id)


@router.get("/batches/{batch_id}/movements", response_model=List[BatchMovementResponse])
async def get_batch_movements(batch_id: int, db: Session = Depends(deps.get_db)):
    return BatchLedgerService(db).get_movements(batch_id)


@router.post(
    "/batches/{batch_id}/consumptions",
    response_model=BatchMovementResponse,
    status_code=status.HTTP_201_CREATED
)
async def consume_batch(
    batch_id: int,
    consumption: ConsumptionCreate,
    db: Session = Depends(deps.get_db),
    performed_by: str = Depends(deps.get_performed_by),
):
    """Post a sale, transfer or scrap against one batch."""
    return BatchLedgerService(db, performed_by).consume(
        batch_id,
        consumption.quantity,
        consumption.movement_type,
        consumption.reference,
        deps.naive_utc(consumption.occurred_at),
    )


@router.post(
    "/movements/{movement_id}/returns",
    response_model=BatchMovementResponse,
    status_code=status.HTTP_201_CREATED
)
async def record_return(
    movement_id: int,
    return_data: ReturnCreate,
    db: Session = Depends(deps.get_db),
    performed_by: str = Depends(deps.get_performed_by),
):
    """Reverse part or all of an earlier consumption."""
    return BatchLedgerService(db, performed_by).record_return(
        movement_id,
        return_data.quantity,
        return_data.reference,
        deps.naive_utc(return_data.occurred_at),
    )


@router.post("/issues", response_model=List[BatchMovementResponse], status_code=status.HTTP_201_CREATED)
async def issue_stock(
    issue: StockIssueRequest,
    db: Session = Depends(deps.get_db),
    performed_by: str = Depends(deps.get_performed_by),
):
    """Draw a quantity across a product's batches in FIFO or LIFO order, all or nothing."""
    return BatchLedgerService(db, performed_by).issue_stock(
        issue.product_id,
        issue.quantity,
        issue.method,
        issue.location_id,
        issue.movement_type,
        issue.reference,
        deps.naive_utc(issue.occurred_at),
    )
