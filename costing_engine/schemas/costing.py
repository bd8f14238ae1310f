"""Inventory Costing Schemas"""

from pydantic import BaseModel, Field, field_validator, model_validator, ConfigDict
from typing import Optional, List, Dict, Any
from datetime import datetime, date
from decimal import Decimal
from enum import Enum


# Enums
class AllocationBasis(str, Enum):
    BY_VALUE = "by_value"
    BY_WEIGHT = "by_weight"
    BY_QUANTITY = "by_quantity"


class ValuationMethod(str, Enum):
    FIFO = "fifo"
    LIFO = "lifo"
    WEIGHTED_AVG = "weighted_avg"
    STANDARD = "standard"


class LayerOrder(str, Enum):
    FIFO = "fifo"
    LIFO = "lifo"


class AllocationStrategy(str, Enum):
    BALANCED = "balanced"
    COST_OPTIMIZATION = "cost_optimization"
    EXPIRY_MANAGEMENT = "expiry_management"
    FIFO_STRICT = "fifo_strict"


class RiskLevel(str, Enum):
    HIGH_EXPIRY_RISK = "HIGH_EXPIRY_RISK"
    MEDIUM_EXPIRY_RISK = "MEDIUM_EXPIRY_RISK"
    HIGH_COST = "HIGH_COST"
    LOW_RISK = "LOW_RISK"


class MovementType(str, Enum):
    SALE = "sale"
    TRANSFER = "transfer"
    SCRAP = "scrap"
    RETURN = "return"


class ReportGrouping(str, Enum):
    PRODUCT = "product"
    LOCATION = "location"
    SUPPLIER = "supplier"
    MONTH = "month"


CONSUMPTION_TYPES = (MovementType.SALE, MovementType.TRANSFER, MovementType.SCRAP)


# Batch Ledger Schemas
class BatchReceiptCreate(BaseModel):
    batch_number: str = Field(..., min_length=1, max_length=50)
    product_id: int
    location_id: int
    supplier_id: Optional[int] = None
    purchase_order_id: Optional[int] = None
    received_quantity: Decimal = Field(..., gt=0)
    purchase_price: Decimal = Field(..., ge=0)
    weight: Optional[Decimal] = Field(None, ge=0)
    received_at: datetime
    expiry_at: Optional[datetime] = None
    quality_grade: str = Field(default="A", max_length=10)

    @model_validator(mode="after")
    def check_expiry_after_receipt(self):
        if self.expiry_at is not None and self.expiry_at < self.received_at:
            raise ValueError("expiry_at must not precede received_at")
        return self


class BatchResponse(BaseModel):
    id: int
    batch_number: str
    product_id: int
    location_id: int
    supplier_id: Optional[int] = None
    purchase_order_id: Optional[int] = None
    received_quantity: Decimal
    available_quantity: Decimal
    purchase_price: Decimal
    weight: Optional[Decimal] = None
    freight_cost: Decimal
    insurance_cost: Decimal
    customs_duty: Decimal
    handling_charges: Decimal
    other_charges: Decimal
    landed_cost_per_unit: Decimal
    received_at: datetime
    expiry_at: Optional[datetime] = None
    quality_grade: str
    cost_allocation_status: str
    cost_allocation_id: Optional[int] = None
    cost_allocated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class BatchCostingDetails(BaseModel):
    batch: BatchResponse
    freight_per_unit: Decimal
    insurance_per_unit: Decimal
    duty_per_unit: Decimal
    handling_per_unit: Decimal
    other_per_unit: Decimal
    total_additional_costs: Decimal
    additional_cost_per_unit: Decimal
    cost_overhead_percentage: Optional[Decimal] = None
    freight_percentage: Optional[Decimal] = None
    duty_percentage: Optional[Decimal] = None
    insurance_percentage: Optional[Decimal] = None


class ConsumptionCreate(BaseModel):
    quantity: Decimal = Field(..., gt=0)
    movement_type: MovementType = MovementType.SALE
    reference: Optional[str] = Field(None, max_length=50)
    occurred_at: datetime

    @field_validator("movement_type")
    @classmethod
    def consumption_only(cls, v: MovementType) -> MovementType:
        if v not in CONSUMPTION_TYPES:
            raise ValueError("returns are recorded against the consumption they reverse")
        return v


class ReturnCreate(BaseModel):
    quantity: Decimal = Field(..., gt=0)
    reference: Optional[str] = Field(None, max_length=50)
    occurred_at: datetime


class StockIssueRequest(BaseModel):
    product_id: int
    quantity: Decimal = Field(..., gt=0)
    method: LayerOrder = LayerOrder.FIFO
    location_id: Optional[int] = None
    movement_type: MovementType = MovementType.SALE
    reference: Optional[str] = Field(None, max_length=50)
    occurred_at: datetime

    @field_validator("movement_type")
    @classmethod
    def consumption_only(cls, v: MovementType) -> MovementType:
        if v not in CONSUMPTION_TYPES:
            raise ValueError("stock issues must be sale, transfer or scrap")
        return v


class BatchMovementResponse(BaseModel):
    id: int
    batch_id: int
    movement_type: MovementType
    quantity: Decimal
    unit_cost_snapshot: Decimal
    reverses_movement_id: Optional[int] = None
    reference: Optional[str] = None
    occurred_at: datetime
    created_by: str

    model_config = ConfigDict(from_attributes=True)


# Purchase Order Cost Schemas
class PurchaseOrderCostSetCreate(BaseModel):
    purchase_order_id: int
    purchase_order_number: Optional[str] = Field(None, max_length=30)
    total_freight_cost: Decimal = Field(default=Decimal("0"), ge=0)
    total_insurance_cost: Decimal = Field(default=Decimal("0"), ge=0)
    total_customs_duty: Decimal = Field(default=Decimal("0"), ge=0)
    total_handling_charges: Decimal = Field(default=Decimal("0"), ge=0)
    total_other_charges: Decimal = Field(default=Decimal("0"), ge=0)
    allocation_basis: AllocationBasis = AllocationBasis.BY_VALUE
    total_po_value: Optional[Decimal] = Field(None, ge=0)
    po_currency: Optional[str] = Field(None, min_length=3, max_length=3)
    exchange_rate: Decimal = Field(default=Decimal("1"), gt=0)
    exchange_rate_date: Optional[date] = None


class PurchaseOrderCostSetRevision(BaseModel):
    total_freight_cost: Optional[Decimal] = Field(None, ge=0)
    total_insurance_cost: Optional[Decimal] = Field(None, ge=0)
    total_customs_duty: Optional[Decimal] = Field(None, ge=0)
    total_handling_charges: Optional[Decimal] = Field(None, ge=0)
    total_other_charges: Optional[Decimal] = Field(None, ge=0)
    allocation_basis: Optional[AllocationBasis] = None
    total_po_value: Optional[Decimal] = Field(None, ge=0)
    exchange_rate: Optional[Decimal] = Field(None, gt=0)
    exchange_rate_date: Optional[date] = None


class PurchaseOrderCostSet(BaseModel):
    id: int
    purchase_order_id: int
    purchase_order_number: Optional[str] = None
    version: int
    total_freight_cost: Decimal
    total_insurance_cost: Decimal
    total_customs_duty: Decimal
    total_handling_charges: Decimal
    total_other_charges: Decimal
    allocation_basis: AllocationBasis
    total_po_value: Optional[Decimal] = None
    po_currency: str
    exchange_rate: Decimal
    exchange_rate_date: Optional[date] = None
    status: str
    supersedes_id: Optional[int] = None

    model_config = ConfigDict(from_attributes=True)


class CostSetDecision(BaseModel):
    accepted: bool
    reason: Optional[str] = None
    cost_set: Optional[PurchaseOrderCostSet] = None


class AllocationRequest(BaseModel):
    allocation_basis: Optional[AllocationBasis] = None


class AllocationLine(BaseModel):
    batch_id: int
    share_weight: Decimal
    share_ratio: Decimal
    freight_cost: Decimal
    insurance_cost: Decimal
    customs_duty: Decimal
    handling_charges: Decimal
    other_charges: Decimal
    total_additional_cost: Decimal
    additional_cost_per_unit: Decimal
    landed_cost_per_unit: Decimal

    model_config = ConfigDict(from_attributes=True)


class AllocationResult(BaseModel):
    id: int
    cost_set_id: int
    purchase_order_id: int
    allocation_basis: AllocationBasis
    exchange_rate: Decimal
    total_allocated: Decimal
    supersedes_allocation_id: Optional[int] = None
    allocated_at: datetime
    allocated_by: str
    lines: List[AllocationLine]

    model_config = ConfigDict(from_attributes=True)


# Valuation Schemas
class ProductCostingUpdate(BaseModel):
    product_name: Optional[str] = Field(None, max_length=100)
    category: Optional[str] = Field(None, max_length=50)
    standard_cost: Optional[Decimal] = Field(None, ge=0)
    selling_price: Optional[Decimal] = Field(None, ge=0)


class ProductCosting(BaseModel):
    product_id: int
    product_name: Optional[str] = None
    category: Optional[str] = None
    standard_cost: Optional[Decimal] = None
    selling_price: Optional[Decimal] = None

    model_config = ConfigDict(from_attributes=True)


class ValuationLayer(BaseModel):
    batch_id: int
    received_at: datetime
    quantity: Decimal
    unit_cost: Decimal
    value: Decimal


class ValuationSnapshot(BaseModel):
    product_id: int
    location_id: Optional[int] = None
    as_of: Optional[datetime] = None
    method: ValuationMethod
    on_hand_quantity: Decimal
    quantity: Decimal
    unit_cost: Optional[Decimal] = None
    total_value: Decimal
    selling_price: Optional[Decimal] = None
    margin_percentage: Optional[Decimal] = None
    standard_cost: Optional[Decimal] = None
    standard_variance_percentage: Optional[Decimal] = None
    layers: List[ValuationLayer] = []


# Allocation Optimizer Schemas
class AllocationCandidate(BaseModel):
    batch_id: int
    batch_number: str
    location_id: int
    received_at: datetime
    available_quantity: Decimal
    landed_cost_per_unit: Decimal
    cost_savings_per_unit: Decimal
    potential_savings: Decimal
    risk_level: RiskLevel
    composite_score: Decimal
    days_to_expiry: Optional[int] = None
    can_fulfill: bool
    recommended_quantity: Decimal


class PlannedAllocation(BaseModel):
    batch_id: int
    quantity: Decimal
    cost: Decimal


class OptimalAllocationResponse(BaseModel):
    product_id: int
    location_id: Optional[int] = None
    strategy: AllocationStrategy
    requested_quantity: Decimal
    baseline_unit_cost: Optional[Decimal] = None
    total_available_quantity: Decimal
    insufficient_stock: bool
    shortfall_quantity: Decimal
    candidates: List[AllocationCandidate]
    fulfillment_plan: List[PlannedAllocation]
    planned_quantity: Decimal
    planned_cost: Decimal
    planned_average_cost: Optional[Decimal] = None


# Cost Impact Schemas
class MethodComparison(BaseModel):
    cost_difference: Decimal
    percentage_difference: Optional[Decimal] = None
    value_impact: Decimal


class CostImpactReport(BaseModel):
    product_id: int
    location_id: Optional[int] = None
    as_of: datetime
    on_hand_quantity: Decimal
    issue_quantity: Decimal
    fifo_cost: Decimal
    lifo_cost: Decimal
    weighted_avg_cost: Decimal
    standard_cost: Optional[Decimal] = None
    standard_variance_percentage: Optional[Decimal] = None
    inventory_turnover_ratio: Optional[Decimal] = None
    fifo_vs_weighted_avg: MethodComparison
    lifo_vs_weighted_avg: MethodComparison
    fifo_vs_lifo: MethodComparison
    recommended_method: ValuationMethod
    rationale: str


# Cost Analysis Report Schemas
class CostAnalysisSummary(BaseModel):
    total_batches: int
    unique_products: int
    unique_locations: int
    unique_suppliers: int
    total_available_quantity: Decimal
    total_inventory_value: Decimal
    avg_landed_cost: Optional[Decimal] = None
    avg_cost_overhead: Optional[Decimal] = None


class CostAnalysisGroup(BaseModel):
    group_key: str
    group_name: Optional[str] = None
    batch_count: int
    total_received_quantity: Decimal
    total_available_quantity: Decimal
    avg_purchase_price: Decimal
    min_purchase_price: Decimal
    max_purchase_price: Decimal
    avg_landed_cost: Decimal
    min_landed_cost: Decimal
    max_landed_cost: Decimal
    total_freight_cost: Decimal
    total_insurance_cost: Decimal
    total_customs_duty: Decimal
    total_handling_charges: Decimal
    total_other_charges: Decimal
    total_additional_costs: Decimal
    avg_freight_percentage: Optional[Decimal] = None
    avg_duty_percentage: Optional[Decimal] = None
    avg_overhead_percentage: Optional[Decimal] = None
    basic_inventory_value: Decimal
    total_inventory_value: Decimal
    total_cost_overhead: Decimal
    overhead_percentage: Optional[Decimal] = None


class CostAnalysisReport(BaseModel):
    group_by: ReportGrouping
    filters: Dict[str, Any]
    summary: CostAnalysisSummary
    breakdown: List[CostAnalysisGroup]
