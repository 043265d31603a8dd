# Overview: Pytest coverage for stock ledger lookups, adjustments and low-stock queries.

import pytest
from sqlalchemy import false

from retailpos.models import InventoryAdjustment, StockLevel
from retailpos.services import stock_service
from retailpos.services.concurrency import atomic_unit
from retailpos.validation import NotFoundError, ValidationError


class TestLookups:
    def test_default_location(self, db_session, floor, back_room):
        assert stock_service.get_default_location().id == floor.id

    def test_no_default_location(self, db_session, back_room):
        with pytest.raises(NotFoundError):
            stock_service.get_default_location()

    def test_summary_reports_sync(self, db_session, floor, back_room, make_product):
        product = make_product(levels={floor.id: 4, back_room.id: 6})

        summary = stock_service.stock_summary(product.id)

        assert summary["stock"] == 10
        assert summary["ledger_total"] == 10
        assert summary["in_sync"] is True
        assert [level["quantity"] for level in summary["levels"]] == [4, 6]

    def test_missing_row_reads_as_zero(self, db_session, floor, back_room, make_product):
        product = make_product(levels={floor.id: 4})

        assert stock_service.location_quantity(product.id, back_room.id) == 0


class TestAdjustInventory:
    def test_applies_signed_deltas(self, db_session, floor, make_product):
        damaged = make_product("Glass Jar", levels={floor.id: 10})
        found = make_product("Paper Bag", levels={floor.id: 1})

        records = stock_service.adjust_inventory(
            location_id=floor.id,
            user_id=3,
            adjustments=[
                {"product_id": damaged.id, "quantity_delta": -2, "reason": "Damaged"},
                {"product_id": found.id, "quantity_delta": 5, "reason": "Count correction", "notes": "Shelf B"},
            ],
        )

        assert len(records) == 2
        assert stock_service.location_quantity(damaged.id, floor.id) == 8
        assert stock_service.location_quantity(found.id, floor.id) == 6
        db_session.refresh(damaged)
        assert damaged.stock == 8
        assert db_session.query(InventoryAdjustment).count() == 2

    def test_creates_ledger_row_for_new_location(self, db_session, floor, back_room, make_product):
        product = make_product(levels={floor.id: 1})

        stock_service.adjust_inventory(
            location_id=back_room.id,
            user_id=1,
            adjustments=[{"product_id": product.id, "quantity_delta": 4, "reason": "Found in storage"}],
        )

        assert stock_service.location_quantity(product.id, back_room.id) == 4
        assert stock_service.stock_summary(product.id)["in_sync"] is True

    def test_negative_result_aborts_whole_batch(self, db_session, floor, make_product):
        first = make_product("First", levels={floor.id: 10})
        second = make_product("Second", levels={floor.id: 1})

        with pytest.raises(ValidationError) as exc_info:
            stock_service.adjust_inventory(
                location_id=floor.id,
                user_id=1,
                adjustments=[
                    {"product_id": first.id, "quantity_delta": -1, "reason": "Damaged"},
                    {"product_id": second.id, "quantity_delta": -2, "reason": "Damaged"},
                ],
            )

        assert "Second" in exc_info.value.message
        assert stock_service.location_quantity(first.id, floor.id) == 10
        assert db_session.query(InventoryAdjustment).count() == 0

    @pytest.mark.parametrize(
        "adjustment",
        [
            {"product_id": 1, "quantity_delta": 0, "reason": "x"},
            {"product_id": 1, "quantity_delta": 1, "reason": "  "},
            {"product_id": "abc", "quantity_delta": 1, "reason": "x"},
        ],
    )
    def test_rejects_malformed_adjustments(self, db_session, floor, adjustment):
        with pytest.raises(ValidationError):
            stock_service.adjust_inventory(location_id=floor.id, user_id=1, adjustments=[adjustment])

    def test_requires_adjustments(self, db_session, floor):
        with pytest.raises(ValidationError):
            stock_service.adjust_inventory(location_id=floor.id, user_id=1, adjustments=[])


class TestLowStock:
    def test_uses_reorder_point_or_threshold(self, db_session, floor, make_product):
        make_product("Plenty", levels={floor.id: 50})
        make_product("Custom Low", levels={floor.id: 15}, reorder_point=20)
        make_product("Default Low", levels={floor.id: 3})
        make_product("Custom Fine", levels={floor.id: 5}, reorder_point=2)

        names = [product.name for product in stock_service.low_stock_products(10)]

        assert names == ["Default Low", "Custom Low"]

    def test_limit(self, db_session, floor, make_product):
        for index in range(3):
            make_product(f"Low {index}", levels={floor.id: index})

        assert len(stock_service.low_stock_products(10, limit=2)) == 2


class TestLockStockLevels:
    def test_creates_missing_row(self, db_session, floor, back_room, make_product):
        product = make_product(levels={floor.id: 3})

        with atomic_unit("Lock test"):
            levels = stock_service.lock_stock_levels(
                [(product.id, floor.id)], create_missing=[(product.id, back_room.id)]
            )

        assert [key for key in levels] == [(product.id, floor.id), (product.id, back_room.id)]
        assert levels[(product.id, back_room.id)].quantity == 0

    def test_row_inserted_by_another_unit_is_locked_not_duplicated(
        self, db_session, floor, back_room, make_product, monkeypatch
    ):
        product = make_product(levels={floor.id: 5, back_room.id: 2})
        real_lock = stock_service.lock_for_update
        calls = []

        def miss_first_read(query):
            # First read sees no row, as if another unit inserted it right after
            calls.append(query)
            locked = real_lock(query)
            return locked.filter(false()) if len(calls) == 1 else locked

        monkeypatch.setattr(stock_service, "lock_for_update", miss_first_read)

        with atomic_unit("Lock test"):
            levels = stock_service.lock_stock_levels([], create_missing=[(product.id, back_room.id)])
            levels[(product.id, back_room.id)].quantity += 1

        assert len(calls) == 2
        assert stock_service.location_quantity(product.id, back_room.id) == 3
        assert db_session.query(StockLevel).filter_by(product_id=product.id, location_id=back_room.id).count() == 1
