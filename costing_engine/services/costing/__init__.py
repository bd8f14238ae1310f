"""Inventory costing services"""

from .batch_ledger import BatchLedgerService, CostLayer, order_layers
from .landed_cost import LandedCostService, compute_allocation, convert_totals
from .valuation import ValuationEngine, price_layers, weighted_average
from .allocation_optimizer import AllocationOptimizer
from .cost_impact import CostImpactAnalyzer
from .cost_report import CostReportService

__all__ = [
    "BatchLedgerService",
    "CostLayer",
    "order_layers",
    "LandedCostService",
    "compute_allocation",
    "convert_totals",
    "ValuationEngine",
    "price_layers",
    "weighted_average",
    "AllocationOptimizer",
    "CostImpactAnalyzer",
    "CostReportService",
]
