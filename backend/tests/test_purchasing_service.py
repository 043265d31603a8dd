# Overview: Pytest coverage for purchase order receiving.

from datetime import date, datetime

import pytest

from retailpos.models import PurchaseOrder, PurchaseOrderItem, Supplier
from retailpos.models.purchasing import PO_STATUS_DRAFT, PO_STATUS_ORDERED, PO_STATUS_PARTIAL, PO_STATUS_RECEIVED
from retailpos.services import purchasing_service, stock_service
from retailpos.validation import NotFoundError, ValidationError


@pytest.fixture
def supplier(db_session):
    supplier = Supplier(name="Wholesale Co", lead_time_days=3)
    db_session.add(supplier)
    db_session.commit()
    return supplier


@pytest.fixture
def make_order(db_session, supplier):
    def _make(lines, *, status=PO_STATUS_ORDERED, reference="PO-0001", expected_date=None):
        order = PurchaseOrder(
            reference=reference,
            supplier_id=supplier.id,
            status=status,
            expected_date=expected_date,
            ordered_at=datetime(2026, 1, 1, 9, 0, 0),
        )
        for product, quantity in lines:
            order.items.append(PurchaseOrderItem(product_id=product.id, quantity_ordered=quantity, unit_cost_cents=500))
        db_session.add(order)
        db_session.commit()
        return order

    return _make


class TestReceivePurchaseOrder:
    def test_partial_then_full_receipt(self, db_session, floor, make_product, make_order):
        product = make_product(levels={floor.id: 2})
        order = make_order([(product, 10)])
        item_id = order.items[0].id

        order = purchasing_service.receive_purchase_order(
            order.id, location_id=floor.id, items=[{"id": item_id, "quantity_received": 4}]
        )
        assert order.status == PO_STATUS_PARTIAL
        assert order.received_at is None
        assert stock_service.location_quantity(product.id, floor.id) == 6

        received_at = datetime(2026, 1, 3, 15, 0, 0)
        order = purchasing_service.receive_purchase_order(
            order.id, location_id=floor.id, items=[{"id": item_id, "quantity_received": 50}], now=received_at
        )
        assert order.status == PO_STATUS_RECEIVED
        assert order.received_at == received_at
        assert order.items[0].quantity_received == 10
        db_session.refresh(product)
        assert product.stock == 12
        assert stock_service.ledger_total(product.id) == 12

    def test_receives_into_new_location_row(self, db_session, floor, back_room, make_product, make_order):
        product = make_product(levels={floor.id: 0})
        order = make_order([(product, 3)])

        purchasing_service.receive_purchase_order(
            order.id, location_id=back_room.id, items=[{"id": order.items[0].id, "quantity_received": 3}]
        )

        assert stock_service.location_quantity(product.id, back_room.id) == 3

    def test_nothing_received(self, db_session, floor, make_product, make_order):
        product = make_product(levels={floor.id: 0})
        order = make_order([(product, 3)])

        with pytest.raises(ValidationError):
            purchasing_service.receive_purchase_order(
                order.id, location_id=floor.id, items=[{"id": 424242, "quantity_received": 3}]
            )

        db_session.refresh(order)
        assert order.status == PO_STATUS_ORDERED

    def test_draft_order_not_receivable(self, db_session, floor, make_product, make_order):
        product = make_product(levels={floor.id: 0})
        order = make_order([(product, 3)], status=PO_STATUS_DRAFT)

        with pytest.raises(ValidationError):
            purchasing_service.receive_purchase_order(
                order.id, location_id=floor.id, items=[{"id": order.items[0].id, "quantity_received": 1}]
            )

    def test_unknown_order(self, db_session, floor):
        with pytest.raises(NotFoundError):
            purchasing_service.receive_purchase_order(
                999, location_id=floor.id, items=[{"id": 1, "quantity_received": 1}]
            )


class TestPurchaseOrderMetrics:
    def test_schedule_variance_on_time(self, db_session, floor, make_product, make_order):
        product = make_product(levels={floor.id: 0})
        order = make_order([(product, 4)], expected_date=date(2026, 1, 5))
        order.received_at = datetime(2026, 1, 5, 18, 0, 0)

        assert order.schedule_variance_days() == 0
        assert order.actual_lead_time_days == 4.38

    def test_open_order_measured_against_now(self, db_session, floor, make_product, make_order):
        product = make_product(levels={floor.id: 0})
        order = make_order([(product, 4)], expected_date=date(2026, 1, 5))

        assert order.schedule_variance_days(datetime(2026, 1, 8, 1, 0, 0)) == 3
        assert order.outstanding_quantity == 4
        assert order.fulfillment_rate == 0
