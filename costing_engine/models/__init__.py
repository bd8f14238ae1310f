"""
Costing Engine SQLAlchemy Models
Database models for the batch ledger and landed-cost allocation
"""

# Import all models to ensure they are registered with SQLAlchemy
from .batch import InventoryBatchRec, BatchMovementRec
from .purchase_order import PurchaseOrderCostRec, CostAllocationRec, CostAllocationLineRec
from .product import ProductCostingRec
from .audit import CostingAuditLog

__all__ = [
    "InventoryBatchRec",
    "BatchMovementRec",
    "PurchaseOrderCostRec",
    "CostAllocationRec",
    "CostAllocationLineRec",
    "ProductCostingRec",
    "CostingAuditLog",
]
