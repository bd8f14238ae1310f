"""Valuation and cost impact API endpoints"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from typing import Optional
from datetime import datetime
from decimal import Decimal

from costing_engine.api import deps
from costing_engine.schemas.costing import (
    ValuationMethod, ValuationSnapshot, CostImpactReport, ProductCostingUpdate, ProductCosting
)
from costing_engine.services.costing import ValuationEngine, CostImpactAnalyzer

router = APIRouter()


@router.get("/valuation/{product_id}", response_model=ValuationSnapshot)
async def get_valuation(
    product_id: int,
    method: ValuationMethod = Query(ValuationMethod.WEIGHTED_AVG, description="Valuation method"),
    as_of: Optional[datetime] = Query(None, description="Rebuild stock as of this instant"),
    quantity: Optional[Decimal] = Query(None, description="Price only the next N units"),
    selling_price: Optional[Decimal] = Query(None, description="Selling price for the margin"),
    location_id: Optional[int] = Query(None, description="Restrict to one location"),
    db: Session = Depends(deps.get_db),
):
    """Value a product's stock under FIFO, LIFO, weighted average or standard cost."""
    return ValuationEngine(db).value(
        product_id, method,
        as_of=deps.naive_utc(as_of),
        quantity=quantity,
        selling_price=selling_price,
        location_id=location_id,
    )


@router.get("/valuation/{product_id}/comparison", response_model=CostImpactReport)
async def get_cost_impact(
    product_id: int,
    as_of: Optional[datetime] = Query(None, description="Comparison instant, defaults to the server clock"),
    period_days: Optional[int] = Query(None, description="Turnover window in days"),
    issue_quantity: Optional[Decimal] = Query(None, description="Units priced per method"),
    location_id: Optional[int] = Query(None, description="Restrict to one location"),
    db: Session = Depends(deps.get_db),
):
    """Method-to-method cost deltas and a recommended valuation method."""
    return CostImpactAnalyzer(db).compare(
        product_id,
        deps.naive_utc(as_of) if as_of else deps.utc_now(),
        period_days=period_days,
        issue_quantity=issue_quantity,
        location_id=location_id,
    )


@router.put("/products/{product_id}/costing", response_model=ProductCosting)
async def set_product_costing(
    product_id: int,
    costing: ProductCostingUpdate,
    db: Session = Depends(deps.get_db),
    performed_by: str = Depends(deps.get_performed_by),
):
    return ValuationEngine(db, performed_by).set_product_costing(product_id, costing)
