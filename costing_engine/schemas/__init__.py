"""
Costing Engine Pydantic Schemas
Request/Response models for the costing API
"""

from .costing import (
    # Enums
    AllocationBasis, ValuationMethod, LayerOrder, AllocationStrategy,
    RiskLevel, MovementType, ReportGrouping,
    # Batch ledger
    BatchReceiptCreate, BatchResponse, BatchCostingDetails,
    ConsumptionCreate, ReturnCreate, StockIssueRequest, BatchMovementResponse,
    # Purchase order costs
    PurchaseOrderCostSetCreate, PurchaseOrderCostSetRevision, PurchaseOrderCostSet,
    CostSetDecision, AllocationRequest, AllocationLine, AllocationResult,
    # Valuation
    ProductCostingUpdate, ProductCosting, ValuationLayer, ValuationSnapshot,
    # Allocation optimizer
    AllocationCandidate, PlannedAllocation, OptimalAllocationResponse,
    # Cost impact
    MethodComparison, CostImpactReport,
    # Reports
    CostAnalysisSummary, CostAnalysisGroup, CostAnalysisReport,
)
