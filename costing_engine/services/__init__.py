"""
Costing Engine Services
Batch ledger, landed-cost allocation, valuation and allocation ranking
"""

from .costing import (
    BatchLedgerService,
    LandedCostService,
    ValuationEngine,
    AllocationOptimizer,
    CostImpactAnalyzer,
    CostReportService,
)

__all__ = [
    "BatchLedgerService",
    "LandedCostService",
    "ValuationEngine",
    "AllocationOptimizer",
    "CostImpactAnalyzer",
    "CostReportService",
]
