"""
Tests for the Cost Analysis Report
"""

import pytest
from decimal import Decimal
from datetime import date, datetime
from sqlalchemy.orm import Session

from costing_engine.core.exceptions import ValidationError
from costing_engine.schemas.costing import AllocationBasis, ProductCostingUpdate, ReportGrouping
from costing_engine.services.costing import CostReportService, ValuationEngine


@pytest.fixture
def reports(db_session: Session) -> CostReportService:
    return CostReportService(db_session)


@pytest.fixture
def stock(receive):
    """Two products over two locations, one batch without a supplier"""
    return [
        receive(quantity="100", price="10", received_at=datetime(2024, 1, 15), supplier_id=7),
        receive(quantity="50", price="20", received_at=datetime(2024, 2, 10), location_id=2),
        receive(quantity="10", price="500", received_at=datetime(2024, 2, 20), product_id=2, supplier_id=7),
    ]


def _keys(report):
    return [group["group_key"] for group in report["breakdown"]]


class TestGrouping:

    def test_by_product_ordered_by_value(self, reports: CostReportService, stock):
        report = reports.cost_analysis_report("product")

        assert report["group_by"] == ReportGrouping.PRODUCT
        assert _keys(report) == ["2", "1"]
        assert [g["total_inventory_value"] for g in report["breakdown"]] == [Decimal("5000.00"), Decimal("2000.00")]
        first_product = report["breakdown"][1]
        assert first_product["batch_count"] == 2
        assert first_product["min_purchase_price"] == Decimal("10")
        assert first_product["max_purchase_price"] == Decimal("20")
        assert first_product["avg_purchase_price"] == Decimal("15.0000")

    def test_product_name_from_costing_record(self, db_session: Session, reports: CostReportService, stock):
        ValuationEngine(db_session).set_product_costing(1, ProductCostingUpdate(product_name="Copper wire"))

        report = reports.cost_analysis_report(ReportGrouping.PRODUCT)

        names = {g["group_key"]: g["group_name"] for g in report["breakdown"]}
        assert names == {"1": "Copper wire", "2": "2"}

    def test_by_supplier_with_unassigned(self, reports: CostReportService, stock):
        report = reports.cost_analysis_report("supplier")

        assert _keys(report) == ["7", "unassigned"]
        assert report["breakdown"][0]["batch_count"] == 2

    def test_by_location(self, reports: CostReportService, stock):
        report = reports.cost_analysis_report("location")

        assert _keys(report) == ["1", "2"]
        assert report["breakdown"][0]["total_inventory_value"] == Decimal("6000.00")

    def test_by_month(self, reports: CostReportService, stock):
        report = reports.cost_analysis_report("month")

        assert _keys(report) == ["2024-02", "2024-01"]

    def test_unknown_grouping(self, reports: CostReportService):
        with pytest.raises(ValidationError):
            reports.cost_analysis_report("warehouse")


class TestSummary:

    def test_summary_counts(self, reports: CostReportService, stock):
        summary = reports.cost_analysis_report()["summary"]

        assert summary["total_batches"] == 3
        assert summary["unique_products"] == 2
        assert summary["unique_locations"] == 2
        assert summary["unique_suppliers"] == 1
        assert summary["total_available_quantity"] == Decimal("160")
        assert summary["total_inventory_value"] == Decimal("7000.00")
        assert summary["avg_landed_cost"] == Decimal("176.6667")
        assert summary["avg_cost_overhead"] == Decimal("0")

    def test_empty_report(self, reports: CostReportService):
        report = reports.cost_analysis_report()

        assert report["breakdown"] == []
        assert report["summary"]["total_batches"] == 0
        assert report["summary"]["avg_landed_cost"] is None

    def test_depleted_batches_excluded(self, ledger, reports: CostReportService, stock):
        ledger.consume(stock[2].id, Decimal("10"), "sale", None, datetime(2024, 3, 1))

        report = reports.cost_analysis_report()

        assert _keys(report) == ["1"]
        assert report["summary"]["unique_suppliers"] == 1


class TestFilters:

    def test_date_range_is_inclusive(self, reports: CostReportService, stock):
        report = reports.cost_analysis_report(date_from=date(2024, 2, 1), date_to=date(2024, 2, 10))

        assert report["summary"]["total_batches"] == 1
        assert report["filters"]["date_to"] == "2024-02-10"

    def test_reversed_range_rejected(self, reports: CostReportService):
        with pytest.raises(ValidationError):
            reports.cost_analysis_report(date_from=date(2024, 3, 1), date_to=date(2024, 2, 1))

    def test_product_and_location_filters(self, reports: CostReportService, stock):
        report = reports.cost_analysis_report("product", product_id=1, location_id=2)

        assert report["summary"]["total_batches"] == 1
        assert report["breakdown"][0]["total_inventory_value"] == Decimal("1000.00")


class TestOverheadMetrics:

    def test_allocated_costs_in_breakdown(self, receive, cost_set, landed, reports: CostReportService):
        receive(quantity="100", price="10", purchase_order_id=1)
        cost_set(total_freight_cost=Decimal("100"), allocation_basis=AllocationBasis.BY_QUANTITY)
        landed.allocate_purchase_order(1)

        report = reports.cost_analysis_report()

        group = report["breakdown"][0]
        assert group["total_freight_cost"] == Decimal("100.00")
        assert group["basic_inventory_value"] == Decimal("1000.00")
        assert group["total_inventory_value"] == Decimal("1100.00")
        assert group["total_cost_overhead"] == Decimal("100.00")
        assert group["overhead_percentage"] == Decimal("10.00")
        assert group["avg_freight_percentage"] == Decimal("10.00")
        assert group["avg_duty_percentage"] == Decimal("0")
        assert report["summary"]["avg_cost_overhead"] == Decimal("10.00")
