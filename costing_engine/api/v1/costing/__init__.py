"""Inventory Costing API endpoints"""

from . import batches, purchase_orders, allocation, valuation, reports

__all__ = ["batches", "purchase_orders", "allocation", "valuation", "reports"]
