"""Tests for the stock ledger: counter updates, reversal and reconciliation."""

import pytest
from sqlalchemy import inspect

from atelier.core.exceptions import InsufficientStockError, NotFoundError, ValidationError
from atelier.db.session import atomic
from atelier.models.stock import LedgerReason, StockTransaction
from atelier.services.stock_ledger_service import StockLedgerService


@pytest.fixture
def ledger_setup(db_session, make_material):
    fabric = make_material("Lin", stock=100.0, unit_price=4.0)
    return {
        "db": db_session,
        "ledger": StockLedgerService(db_session),
        "fabric": fabric,
    }


class TestDeductAndRestore:
    """Single movements update the counter and append one row."""

    def test_deduct_writes_out_row(self, ledger_setup):
        db, ledger, fabric = ledger_setup["db"], ledger_setup["ledger"], ledger_setup["fabric"]

        with atomic(db):
            material = ledger.lock_materials([fabric.id])[fabric.id]
            tx = ledger.deduct(material, 30.0, LedgerReason.PRODUCTION, "BATCH-1")

        db.refresh(fabric)
        assert fabric.stock_quantity == 70.0
        assert tx.direction == "out"
        assert tx.quantity == 30.0
        assert tx.unit_price == 4.0
        assert tx.total_cost == 120.0
        assert tx.reason == "production"
        assert tx.signed_quantity == -30.0

    def test_deduct_more_than_stock_is_refused(self, ledger_setup):
        db, ledger, fabric = ledger_setup["db"], ledger_setup["ledger"], ledger_setup["fabric"]

        with pytest.raises(InsufficientStockError) as exc_info:
            with atomic(db):
                material = ledger.lock_materials([fabric.id])[fabric.id]
                ledger.deduct(material, 100.5, LedgerReason.PRODUCTION, "BATCH-1")

        assert exc_info.value.required == 100.5
        assert exc_info.value.available == 100.0
        db.refresh(fabric)
        assert fabric.stock_quantity == 100.0
        assert db.query(StockTransaction).count() == 0

    def test_non_positive_quantity_rejected(self, ledger_setup):
        ledger, fabric = ledger_setup["ledger"], ledger_setup["fabric"]

        with pytest.raises(ValidationError):
            ledger.deduct(fabric, 0, LedgerReason.PRODUCTION)
        with pytest.raises(ValidationError):
            ledger.restore(fabric, -1, LedgerReason.PRODUCTION_RETURN)

    def test_restore_writes_in_row(self, ledger_setup):
        db, ledger, fabric = ledger_setup["db"], ledger_setup["ledger"], ledger_setup["fabric"]

        with atomic(db):
            tx = ledger.restore(fabric, 5.0, LedgerReason.LEFTOVER_RETURN, "BATCH-1")

        db.refresh(fabric)
        assert fabric.stock_quantity == 105.0
        assert tx.direction == "in"
        assert tx.signed_quantity == 5.0

    def test_lock_unknown_material(self, ledger_setup):
        with pytest.raises(NotFoundError):
            ledger_setup["ledger"].lock_materials([9999])

    def test_check_availability_lists_every_shortage(self, db_session, make_material):
        ledger = StockLedgerService(db_session)
        a = make_material("A", stock=10.0)
        b = make_material("B", stock=1.0)
        c = make_material("C", stock=50.0)
        materials = ledger.lock_materials([a.id, b.id, c.id])

        with pytest.raises(InsufficientStockError) as exc_info:
            ledger.check_availability({a.id: 11.0, b.id: 2.0, c.id: 5.0}, materials)

        shortages = exc_info.value.shortages
        assert [s["material_id"] for s in shortages] == [a.id, b.id]
        assert shortages[0]["shortage"] == 1.0


class TestManualMovements:
    def test_record_movement_in_and_out(self, ledger_setup):
        db, ledger, fabric = ledger_setup["db"], ledger_setup["ledger"], ledger_setup["fabric"]

        with atomic(db):
            ledger.record_movement(fabric.id, "in", 20.0, LedgerReason.PURCHASE, reference="PO-7")
        with atomic(db):
            ledger.record_movement(fabric.id, "out", 15.0)

        db.refresh(fabric)
        assert fabric.stock_quantity == 105.0
        items, total = ledger.transactions(material_id=fabric.id)
        assert total == 2
        assert [t.reason for t in items] == ["adjustment", "purchase"]

    def test_unknown_direction_rejected(self, ledger_setup):
        with pytest.raises(ValidationError):
            ledger_setup["ledger"].record_movement(ledger_setup["fabric"].id, "sideways", 1.0)

    def test_transactions_filters(self, ledger_setup):
        db, ledger, fabric = ledger_setup["db"], ledger_setup["ledger"], ledger_setup["fabric"]
        with atomic(db):
            ledger.deduct(fabric, 10.0, LedgerReason.PRODUCTION, "BATCH-A")
            ledger.deduct(fabric, 5.0, LedgerReason.PRODUCTION, "BATCH-B")
            ledger.restore(fabric, 2.0, LedgerReason.PRODUCTION_RETURN, "BATCH-A")

        items, total = ledger.transactions(reference="BATCH-A")
        assert total == 2
        items, total = ledger.transactions(direction="out")
        assert total == 2
        items, total = ledger.transactions(reasons=[LedgerReason.PRODUCTION_RETURN])
        assert total == 1
        assert items[0].quantity == 2.0


class TestReconciliation:
    """Counter equals opening stock plus signed ledger movements."""

    def test_balanced_after_movements(self, ledger_setup):
        db, ledger, fabric = ledger_setup["db"], ledger_setup["ledger"], ledger_setup["fabric"]
        with atomic(db):
            ledger.deduct(fabric, 30.0, LedgerReason.PRODUCTION, "BATCH-1")
            ledger.restore(fabric, 12.5, LedgerReason.BATCH_CANCELLATION, "BATCH-1")

        report = ledger.reconcile(fabric.id)

        assert report["balanced"] is True
        assert report["opening_stock"] == 100.0
        assert report["ledger_sum"] == pytest.approx(-17.5)
        assert report["expected_stock"] == pytest.approx(82.5)
        assert report["actual_stock"] == pytest.approx(82.5)
        assert report["movement_count"] == 2

    def test_drift_detected_when_counter_edited_directly(self, ledger_setup):
        db, ledger, fabric = ledger_setup["db"], ledger_setup["ledger"], ledger_setup["fabric"]
        fabric.stock_quantity = 90.0
        db.commit()

        report = ledger.reconcile(fabric.id)

        assert report["balanced"] is False
        assert report["drift"] == pytest.approx(-10.0)

    def test_material_created_later_ignores_older_rows(self, ledger_setup, make_material):
        db, ledger, fabric = ledger_setup["db"], ledger_setup["ledger"], ledger_setup["fabric"]
        with atomic(db):
            ledger.deduct(fabric, 1.0, LedgerReason.PRODUCTION, "BATCH-1")

        newcomer = make_material("Soie", stock=8.0)

        report = ledger.reconcile(newcomer.id)
        assert report["balanced"] is True
        assert report["movement_count"] == 0

    def test_stock_count_moves_baseline(self, ledger_setup):
        db, ledger, fabric = ledger_setup["db"], ledger_setup["ledger"], ledger_setup["fabric"]
        with atomic(db):
            ledger.deduct(fabric, 10.0, LedgerReason.PRODUCTION, "BATCH-1")

        with atomic(db):
            material, tx = ledger.reset_stock(fabric.id, 85.0, notes="Inventaire")

        assert tx.reason == "stock_count"
        assert tx.direction == "out"
        assert tx.quantity == 5.0
        assert material.stock_quantity == 85.0
        assert material.opening_stock == 85.0
        assert material.baseline_transaction_id == tx.id

        report = ledger.reconcile(fabric.id)
        assert report["balanced"] is True
        assert report["movement_count"] == 0

    def test_stock_count_without_difference_writes_nothing(self, ledger_setup):
        db, ledger, fabric = ledger_setup["db"], ledger_setup["ledger"], ledger_setup["fabric"]

        with atomic(db):
            _, tx = ledger.reset_stock(fabric.id, 100.0)

        assert tx is None
        assert db.query(StockTransaction).count() == 0

    def test_negative_count_rejected(self, ledger_setup):
        with pytest.raises(ValidationError):
            ledger_setup["ledger"].reset_stock(ledger_setup["fabric"].id, -1)

    def test_reconcile_unknown_material(self, ledger_setup):
        with pytest.raises(NotFoundError):
            ledger_setup["ledger"].reconcile(12345)


class TestProductionReversal:
    """A production deduction is reversed at most once."""

    def test_reverses_latest_unreversed_row(self, ledger_setup):
        db, ledger, fabric = ledger_setup["db"], ledger_setup["ledger"], ledger_setup["fabric"]
        with atomic(db):
            first = ledger.deduct(fabric, 10.0, LedgerReason.PRODUCTION, "BATCH-1")
            second = ledger.deduct(fabric, 4.0, LedgerReason.PRODUCTION_ADJUSTMENT, "BATCH-1")

        with atomic(db):
            back = ledger.restore_production_transaction(fabric.id, "BATCH-1")
        assert back.reverses_transaction_id == second.id
        assert back.quantity == 4.0
        assert back.reason == "production_return"

        with atomic(db):
            back = ledger.restore_production_transaction(fabric.id, "BATCH-1")
        assert back.reverses_transaction_id == first.id

        with pytest.raises(NotFoundError):
            with atomic(db):
                ledger.restore_production_transaction(fabric.id, "BATCH-1")

        db.refresh(fabric)
        assert fabric.stock_quantity == 100.0
        assert ledger.returned_quantities("BATCH-1") == {fabric.id: 14.0}

    def test_schema_drops_with_reversal_rows(self, ledger_setup, db_engine, drop_tables):
        db, ledger, fabric = ledger_setup["db"], ledger_setup["ledger"], ledger_setup["fabric"]
        with atomic(db):
            ledger.deduct(fabric, 10.0, LedgerReason.PRODUCTION, "BATCH-1")
        with atomic(db):
            ledger.restore_production_transaction(fabric.id, "BATCH-1")
        db.close()

        drop_tables(db_engine)

        assert inspect(db_engine).get_table_names() == []

    def test_other_reasons_are_not_reversible(self, ledger_setup):
        db, ledger, fabric = ledger_setup["db"], ledger_setup["ledger"], ledger_setup["fabric"]
        with atomic(db):
            ledger.deduct(fabric, 10.0, LedgerReason.ADJUSTMENT, "BATCH-1")

        with pytest.raises(NotFoundError):
            ledger.restore_production_transaction(fabric.id, "BATCH-1")
