"""
Product Costing Model
Engine-local costing configuration for products owned by the external catalog
"""
from sqlalchemy import Column, String, Integer, Numeric, DateTime, CheckConstraint
from sqlalchemy.sql import func
from costing_engine.core.database import Base


class ProductCostingRec(Base):
    """Standard cost and reference figures per product"""
    __tablename__ = "product_costing"

    product_id = Column(Integer, primary_key=True, autoincrement=False, doc="Catalog product reference")
    product_name = Column(String(100), doc="Display name copied from the catalog")
    category = Column(String(50), doc="Catalog category")
    standard_cost = Column(Numeric(15, 4), doc="Target unit cost for standard costing")
    selling_price = Column(Numeric(15, 4), doc="Reference selling price")

    updated_by = Column(String(30), nullable=False, default="SYSTEM")
    created_at = Column(DateTime, server_default=func.current_timestamp())
    updated_at = Column(DateTime, server_default=func.current_timestamp(), onupdate=func.current_timestamp())

    __table_args__ = (
        CheckConstraint("standard_cost IS NULL OR standard_cost >= 0", name="standard_cost_gte_zero"),
        CheckConstraint("selling_price IS NULL OR selling_price >= 0", name="selling_price_gte_zero"),
    )
