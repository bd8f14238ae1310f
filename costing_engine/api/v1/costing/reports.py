"""Cost analysis report API endpoints"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from typing import Optional
from datetime import date

from costing_engine.api import deps
from costing_engine.schemas.costing import ReportGrouping, CostAnalysisReport
from costing_engine.services.costing import CostReportService

router = APIRouter()


@router.get("/reports/cost-analysis", response_model=CostAnalysisReport)
async def get_cost_analysis_report(
    group_by: ReportGrouping = Query(ReportGrouping.PRODUCT, description="Grouping"),
    date_from: Optional[date] = Query(None, description="Received on or after"),
    date_to: Optional[date] = Query(None, description="Received on or before"),
    product_id: Optional[int] = Query(None),
    location_id: Optional[int] = Query(None),
    db: Session = Depends(deps.get_db),
):
    """
    Landed-cost analysis of stock on hand.

    Groups are ordered by total inventory value, highest first.
    """
    return CostReportService(db).cost_analysis_report(
        group_by, date_from=date_from, date_to=date_to, product_id=product_id, location_id=location_id
    )
