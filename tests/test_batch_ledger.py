"""
Tests for the Batch Ledger Service
Goods receipts, consumption, returns and cost layer reconstruction
"""

import threading
import pytest
from decimal import Decimal
from datetime import datetime
from sqlalchemy import text
from sqlalchemy.orm import Session, sessionmaker

from costing_engine.core.database import build_engine, init_db
from costing_engine.core.exceptions import (
    ValidationError, NotFoundError, InsufficientStock, InconsistentLedgerState, LedgerConflict
)
from costing_engine.models import BatchMovementRec, CostingAuditLog
from costing_engine.schemas.costing import BatchReceiptCreate
from costing_engine.services.costing import BatchLedgerService, ValuationEngine

from conftest import DatabaseTestHelper


class TestGoodsReceipt:
    """Test suite for receive_batch"""

    def test_receive_batch_sets_opening_state(self, receive):
        batch = receive(quantity="100", price="12.50", supplier_id=7)

        assert batch.id is not None
        assert batch.received_quantity == Decimal("100")
        assert batch.available_quantity == Decimal("100")
        assert batch.purchase_price == Decimal("12.50")
        assert batch.landed_cost_per_unit == Decimal("12.50")
        assert batch.cost_allocation_status == "PENDING"
        assert batch.supplier_id == 7

    def test_receive_batch_writes_audit_entry(self, db_session: Session, receive):
        batch = receive()

        entry = db_session.query(CostingAuditLog).filter(CostingAuditLog.audit_action == "RECEIVE_BATCH").one()
        assert entry.audit_key == str(batch.id)
        assert entry.audit_user == "tester"
        assert entry.audit_module == "LEDGER"

    def test_duplicate_batch_number_rejected(self, receive):
        receive(batch_number="LOT-1")

        with pytest.raises(ValidationError, match="already exists"):
            receive(batch_number="LOT-1")

    def test_get_batch_not_found(self, ledger: BatchLedgerService):
        with pytest.raises(NotFoundError):
            ledger.get_batch(999)


class TestCostingDetails:
    """Test suite for get_costing_details"""

    def test_percentages_of_base_price(self, db_session: Session, receive, ledger: BatchLedgerService):
        batch = receive(quantity="100", price="50")
        batch.freight_cost = Decimal("500.00")
        batch.customs_duty = Decimal("250.00")
        batch.insurance_cost = Decimal("100.00")
        batch.landed_cost_per_unit = Decimal("58.5000")
        db_session.commit()

        details = ledger.get_costing_details(batch.id)

        assert details["freight_per_unit"] == Decimal("5.0000")
        assert details["duty_per_unit"] == Decimal("2.5000")
        assert details["insurance_per_unit"] == Decimal("1.0000")
        assert details["additional_cost_per_unit"] == Decimal("8.5000")
        assert details["total_additional_costs"] == Decimal("850.00")
        assert details["cost_overhead_percentage"] == Decimal("17.00")
        assert details["freight_percentage"] == Decimal("10.00")
        assert details["duty_percentage"] == Decimal("5.00")
        assert details["insurance_percentage"] == Decimal("2.00")

    def test_zero_price_has_no_percentages(self, receive, ledger: BatchLedgerService):
        batch = receive(price="0")

        details = ledger.get_costing_details(batch.id)

        assert details["cost_overhead_percentage"] is None
        assert details["freight_percentage"] is None


class TestConsumption:
    """Test suite for consume and record_return"""

    def test_consume_decrements_available(self, receive, ledger: BatchLedgerService):
        batch = receive(quantity="100", price="10")

        movement = ledger.consume(batch.id, Decimal("30"), "sale", "INV-1", datetime(2024, 2, 1))

        assert movement.movement_type == "sale"
        assert movement.quantity == Decimal("30")
        assert movement.unit_cost_snapshot == Decimal("10")
        assert ledger.get_batch(batch.id).available_quantity == Decimal("70")

    def test_consume_more_than_available(self, db_session: Session, receive, ledger: BatchLedgerService):
        batch = receive(quantity="10")

        with pytest.raises(InsufficientStock):
            ledger.consume(batch.id, Decimal("11"), "sale", None, datetime(2024, 2, 1))

        assert ledger.get_batch(batch.id).available_quantity == Decimal("10")
        assert DatabaseTestHelper.count_records(db_session, BatchMovementRec) == 0

    def test_consume_zero_rejected(self, receive, ledger: BatchLedgerService):
        batch = receive()

        with pytest.raises(ValidationError):
            ledger.consume(batch.id, Decimal("0"), "sale", None, datetime(2024, 2, 1))

    def test_consume_return_type_rejected(self, receive, ledger: BatchLedgerService):
        batch = receive()

        with pytest.raises(ValidationError, match="Returns"):
            ledger.consume(batch.id, Decimal("1"), "return", None, datetime(2024, 2, 1))

    def test_return_creates_reversal_record(self, receive, ledger: BatchLedgerService):
        batch = receive(quantity="100")
        sale = ledger.consume(batch.id, Decimal("40"), "sale", None, datetime(2024, 2, 1))

        returned = ledger.record_return(sale.id, Decimal("15"), "RMA-1", datetime(2024, 2, 5))

        assert returned.movement_type == "return"
        assert returned.reverses_movement_id == sale.id
        assert ledger.get_batch(batch.id).available_quantity == Decimal("75")
        # the original consumption is untouched
        assert ledger.get_movements(batch.id)[0].quantity == Decimal("40")

    def test_return_cannot_exceed_consumed(self, receive, ledger: BatchLedgerService):
        batch = receive(quantity="100")
        sale = ledger.consume(batch.id, Decimal("20"), "sale", None, datetime(2024, 2, 1))
        ledger.record_return(sale.id, Decimal("15"), None, datetime(2024, 2, 2))

        with pytest.raises(ValidationError, match="exceeds"):
            ledger.record_return(sale.id, Decimal("6"), None, datetime(2024, 2, 3))

    def test_return_of_return_rejected(self, receive, ledger: BatchLedgerService):
        batch = receive(quantity="100")
        sale = ledger.consume(batch.id, Decimal("20"), "sale", None, datetime(2024, 2, 1))
        returned = ledger.record_return(sale.id, Decimal("5"), None, datetime(2024, 2, 2))

        with pytest.raises(ValidationError, match="itself a return"):
            ledger.record_return(returned.id, Decimal("1"), None, datetime(2024, 2, 3))

    def test_return_above_received_is_inconsistent(self, db_session: Session, receive, ledger: BatchLedgerService):
        batch = receive(quantity="100")
        sale = ledger.consume(batch.id, Decimal("20"), "sale", None, datetime(2024, 2, 1))
        # corrupt the ledger behind the service's back
        batch.available_quantity = Decimal("100")
        db_session.commit()

        with pytest.raises(InconsistentLedgerState):
            ledger.record_return(sale.id, Decimal("10"), None, datetime(2024, 2, 2))

        assert ledger.get_batch(batch.id).available_quantity == Decimal("100")


class TestStockIssue:
    """Test suite for multi-batch issue_stock"""

    def test_fifo_issue_draws_oldest_first(self, receive, ledger: BatchLedgerService):
        old = receive(quantity="50", price="10", received_at=datetime(2024, 1, 1))
        new = receive(quantity="50", price="12", received_at=datetime(2024, 2, 1))

        movements = ledger.issue_stock(1, Decimal("70"), "fifo", occurred_at=datetime(2024, 3, 1))

        assert [(m.batch_id, m.quantity) for m in movements] == [(old.id, Decimal("50")), (new.id, Decimal("20"))]
        assert ledger.get_batch(old.id).available_quantity == Decimal("0")
        assert ledger.get_batch(new.id).available_quantity == Decimal("30")

    def test_lifo_issue_draws_newest_first(self, receive, ledger: BatchLedgerService):
        old = receive(quantity="50", received_at=datetime(2024, 1, 1))
        new = receive(quantity="50", received_at=datetime(2024, 2, 1))

        movements = ledger.issue_stock(1, Decimal("60"), "lifo", occurred_at=datetime(2024, 3, 1))

        assert [m.batch_id for m in movements] == [new.id, old.id]

    def test_issue_is_all_or_nothing(self, db_session: Session, receive, ledger: BatchLedgerService):
        first = receive(quantity="50")
        receive(quantity="20")

        with pytest.raises(InsufficientStock):
            ledger.issue_stock(1, Decimal("80"), "fifo", occurred_at=datetime(2024, 3, 1))

        assert ledger.get_batch(first.id).available_quantity == Decimal("50")
        assert DatabaseTestHelper.count_records(db_session, BatchMovementRec) == 0

    def test_issue_respects_location(self, receive, ledger: BatchLedgerService):
        receive(quantity="50", location_id=1)
        other = receive(quantity="50", location_id=2)

        movements = ledger.issue_stock(1, Decimal("10"), "fifo", location_id=2, occurred_at=datetime(2024, 3, 1))

        assert [m.batch_id for m in movements] == [other.id]


class TestCostLayers:
    """Test suite for cost layers and consumption history"""

    def test_live_layers_skip_empty_batches(self, receive, ledger: BatchLedgerService):
        empty = receive(quantity="10")
        kept = receive(quantity="10", price="20")
        ledger.consume(empty.id, Decimal("10"), "sale", None, datetime(2024, 2, 1))

        layers = ledger.cost_layers(1)

        assert [layer.batch_id for layer in layers] == [kept.id]
        assert layers[0].unit_cost == Decimal("20")

    def test_as_of_rebuilds_quantities(self, receive, ledger: BatchLedgerService):
        batch = receive(quantity="100", received_at=datetime(2024, 1, 1))
        receive(quantity="40", received_at=datetime(2024, 6, 1))
        sale = ledger.consume(batch.id, Decimal("30"), "sale", None, datetime(2024, 2, 1))
        ledger.record_return(sale.id, Decimal("10"), None, datetime(2024, 3, 1))

        assert ledger.on_hand_at(1, datetime(2024, 1, 15)) == Decimal("100")
        assert ledger.on_hand_at(1, datetime(2024, 2, 15)) == Decimal("70")
        assert ledger.on_hand_at(1, datetime(2024, 3, 15)) == Decimal("80")
        assert ledger.on_hand_at(1, datetime(2024, 7, 1)) == Decimal("120")

    def test_negative_reconstructed_quantity_is_inconsistent(self, db_session: Session, receive, ledger: BatchLedgerService):
        batch = receive(quantity="10")
        db_session.add(BatchMovementRec(
            batch_id=batch.id,
            movement_type="scrap",
            quantity=Decimal("15"),
            unit_cost_snapshot=Decimal("100"),
            occurred_at=datetime(2024, 2, 1),
        ))
        db_session.commit()

        with pytest.raises(InconsistentLedgerState):
            ledger.cost_layers(1, as_of=datetime(2024, 3, 1))

    def test_net_consumption_subtracts_returns(self, receive, ledger: BatchLedgerService):
        batch = receive(quantity="100")
        sale = ledger.consume(batch.id, Decimal("30"), "sale", None, datetime(2024, 2, 1))
        ledger.consume(batch.id, Decimal("5"), "scrap", None, datetime(2024, 2, 10))
        ledger.record_return(sale.id, Decimal("10"), None, datetime(2024, 3, 1))

        consumed = ledger.net_consumption(1, datetime(2024, 1, 1), datetime(2024, 12, 31))
        before_return = ledger.net_consumption(1, datetime(2024, 1, 1), datetime(2024, 2, 28))

        assert consumed == Decimal("25")
        assert before_return == Decimal("35")


class TestPostingOrder:
    """Test suite for movement dating rules"""

    def test_consumption_before_receipt_rejected(self, receive, ledger: BatchLedgerService):
        batch = receive(received_at=datetime(2024, 1, 1))

        with pytest.raises(ValidationError, match="receipt"):
            ledger.consume(batch.id, Decimal("1"), "sale", None, datetime(2023, 12, 31))

        assert ledger.get_batch(batch.id).available_quantity == Decimal("100")

    def test_backdated_consumption_rejected(self, db_session: Session, receive, ledger: BatchLedgerService):
        batch = receive(quantity="100", received_at=datetime(2024, 1, 1))
        sale = ledger.consume(batch.id, Decimal("100"), "sale", None, datetime(2024, 3, 1))
        ledger.record_return(sale.id, Decimal("50"), None, datetime(2024, 4, 1))

        with pytest.raises(ValidationError, match="last movement"):
            ledger.consume(batch.id, Decimal("50"), "sale", None, datetime(2024, 2, 1))

        # history stays replayable at every instant
        snapshot = ValuationEngine(db_session).value(1, "fifo", as_of=datetime(2024, 3, 15))
        assert snapshot["on_hand_quantity"] == Decimal("0")
        assert ledger.on_hand_at(1, datetime(2024, 4, 15)) == Decimal("50")

    def test_same_instant_as_last_movement_allowed(self, receive, ledger: BatchLedgerService):
        batch = receive(quantity="100")
        ledger.consume(batch.id, Decimal("10"), "sale", None, datetime(2024, 2, 1))

        ledger.consume(batch.id, Decimal("10"), "scrap", None, datetime(2024, 2, 1))

        assert ledger.get_batch(batch.id).available_quantity == Decimal("80")

    def test_return_before_consumption_rejected(self, receive, ledger: BatchLedgerService):
        batch = receive(quantity="100")
        sale = ledger.consume(batch.id, Decimal("20"), "sale", None, datetime(2024, 2, 1))

        with pytest.raises(ValidationError, match="precedes movement"):
            ledger.record_return(sale.id, Decimal("5"), None, datetime(2024, 1, 15))

        assert ledger.get_batch(batch.id).available_quantity == Decimal("80")

    def test_issue_skips_batches_received_later(self, receive, ledger: BatchLedgerService):
        old = receive(quantity="50", received_at=datetime(2024, 1, 1))
        receive(quantity="50", received_at=datetime(2024, 6, 1))

        movements = ledger.issue_stock(1, Decimal("30"), "lifo", occurred_at=datetime(2024, 3, 1))

        assert [m.batch_id for m in movements] == [old.id]
        with pytest.raises(InsufficientStock):
            ledger.issue_stock(1, Decimal("30"), "fifo", occurred_at=datetime(2024, 3, 2))


class TestConcurrentPosting:
    """Test suite for available quantity updates under concurrent writers"""

    def test_consume_rereads_stock_changed_after_lock(self, db_session: Session, receive,
                                                      ledger: BatchLedgerService, monkeypatch):
        batch = receive(quantity="100")
        assert batch.available_quantity == Decimal("100")
        # another writer takes 10 after this batch was read
        db_session.execute(
            text("UPDATE inventory_batches SET available_quantity = 90 WHERE id = :id"), {"id": batch.id}
        )
        monkeypatch.setattr(ledger, "_lock_batch", lambda batch_id: batch)

        ledger.consume(batch.id, Decimal("30"), "sale", None, datetime(2024, 2, 1))

        assert ledger.get_batch(batch.id).available_quantity == Decimal("60")

    def test_consume_against_stale_read_cannot_overdraw(self, db_session: Session, receive,
                                                        ledger: BatchLedgerService, monkeypatch):
        batch = receive(quantity="100")
        assert batch.available_quantity == Decimal("100")
        db_session.execute(
            text("UPDATE inventory_batches SET available_quantity = 20 WHERE id = :id"), {"id": batch.id}
        )
        monkeypatch.setattr(ledger, "_lock_batch", lambda batch_id: batch)

        with pytest.raises(InsufficientStock):
            ledger.consume(batch.id, Decimal("80"), "sale", None, datetime(2024, 2, 1))

        assert DatabaseTestHelper.count_records(db_session, BatchMovementRec) == 0

    def test_persistent_contention_raises_conflict(self, db_session: Session, receive,
                                                   ledger: BatchLedgerService, monkeypatch):
        batch = receive(quantity="100")
        monkeypatch.setattr(ledger, "_swap_available", lambda batch, expected, new: False)

        with pytest.raises(LedgerConflict):
            ledger.consume(batch.id, Decimal("10"), "sale", None, datetime(2024, 2, 1))

        assert ledger.get_batch(batch.id).available_quantity == Decimal("100")
        assert DatabaseTestHelper.count_records(db_session, BatchMovementRec) == 0

    def test_parallel_consumers_on_file_database(self, tmp_path):
        engine = build_engine(f"sqlite:///{tmp_path / 'ledger.db'}")
        init_db(bind=engine)
        SessionFactory = sessionmaker(autocommit=False, autoflush=False, bind=engine)

        setup = SessionFactory()
        batch_id = BatchLedgerService(setup).receive_batch(BatchReceiptCreate(
            batch_number="PAR-1",
            product_id=1,
            location_id=1,
            received_quantity=Decimal("100"),
            purchase_price=Decimal("10"),
            received_at=datetime(2024, 1, 1),
        )).id
        setup.close()

        barrier = threading.Barrier(2)
        results = []

        def post_consumption():
            session = SessionFactory()
            try:
                barrier.wait()
                BatchLedgerService(session).consume(batch_id, Decimal("80"), "sale", None, datetime(2024, 2, 1))
                results.append("ok")
            except InsufficientStock:
                results.append("insufficient")
            except Exception as e:
                results.append(repr(e))
            finally:
                session.close()

        threads = [threading.Thread(target=post_consumption) for _ in range(2)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=30)

        check = SessionFactory()
        try:
            assert sorted(results) == ["insufficient", "ok"]
            assert BatchLedgerService(check).get_batch(batch_id).available_quantity == Decimal("20")
            assert DatabaseTestHelper.count_records(check, BatchMovementRec) == 1
        finally:
            check.close()
            engine.dispose()
