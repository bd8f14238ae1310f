"""Optimal batch allocation API endpoints"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from typing import Optional
from datetime import datetime
from decimal import Decimal

from costing_engine.api import deps
from costing_engine.schemas.costing import AllocationStrategy, OptimalAllocationResponse
from costing_engine.services.costing import AllocationOptimizer

router = APIRouter()


@router.get("/allocation/optimal", response_model=OptimalAllocationResponse)
async def get_optimal_allocation(
    product_id: int = Query(..., description="Product to allocate"),
    quantity: Decimal = Query(..., description="Requested quantity"),
    strategy: AllocationStrategy = Query(AllocationStrategy.BALANCED, description="Ranking strategy"),
    location_id: Optional[int] = Query(None, description="Restrict to one location"),
    now: Optional[datetime] = Query(None, description="Evaluation time, defaults to the server clock"),
    limit: Optional[int] = Query(None, description="Maximum candidates returned"),
    db: Session = Depends(deps.get_db),
):
    """
    Rank available batches of a product as fulfillment candidates.

    Stock shortfalls are flagged in the response, not raised.
    """
    evaluated_at = deps.naive_utc(now) if now else deps.utc_now()
    return AllocationOptimizer(db).optimal_allocation(
        product_id, quantity, evaluated_at, strategy=strategy, location_id=location_id, limit=limit
    )
