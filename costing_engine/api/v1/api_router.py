"""
Main API Router - Consolidates all module routes
"""

from fastapi import APIRouter
from costing_engine.api.v1 import costing

api_router = APIRouter()

# Batch ledger routes
api_router.include_router(costing.batches.router, prefix="/costing", tags=["costing-batches"])

# Landed cost routes
api_router.include_router(costing.purchase_orders.router, prefix="/costing", tags=["costing-purchase-orders"])

# Allocation ranking routes
api_router.include_router(costing.allocation.router, prefix="/costing", tags=["costing-allocation"])

# Valuation routes
api_router.include_router(costing.valuation.router, prefix="/costing", tags=["costing-valuation"])

# Reports routes
api_router.include_router(costing.reports.router, prefix="/costing", tags=["costing-reports"])
