# Overview: Pytest coverage for dashboard aggregates.

from dataclasses import replace
from datetime import date, datetime

import pytest

from retailpos.models import PurchaseOrder, PurchaseOrderItem, Supplier
from retailpos.services import checkout_service, dashboard_service

NOW = datetime(2026, 3, 10, 12, 0, 0)


@pytest.fixture
def sales(db_session, floor, make_product, settings):
    """Three sales inside the default 14-day window and one outside it."""
    coffee = make_product("Coffee", price_cents=10000, cost_price_cents=6000, levels={floor.id: 10})
    tea = make_product("Tea", price_cents=5000, cost_price_cents=2000, levels={floor.id: 20})

    def sell(product, quantity, tax_rate, when):
        checkout_service.settle(
            items=[(product.id, quantity)],
            tax_rate=tax_rate,
            payment_method="cash",
            amount_paid="1000",
            settings=settings,
            now=when,
        )

    sell(coffee, 2, "10", datetime(2026, 3, 10, 9, 0, 0))
    sell(coffee, 1, "10", datetime(2026, 3, 10, 10, 30, 0))
    sell(tea, 4, "0", datetime(2026, 3, 9, 16, 0, 0))
    sell(coffee, 1, "10", datetime(2026, 2, 1, 10, 0, 0))
    return coffee, tea


@pytest.fixture
def purchase_orders(db_session, make_product, floor):
    product = make_product("Sugar", levels={floor.id: 100})
    reliable = Supplier(name="Reliable Foods")
    slow = Supplier(name="Slow Imports")
    db_session.add_all([reliable, slow])
    db_session.flush()

    def order(reference, supplier, ordered, received, expected, received_at, status):
        po = PurchaseOrder(
            reference=reference,
            supplier_id=supplier.id,
            status=status,
            expected_date=expected,
            ordered_at=datetime(2026, 3, 1, 9, 0, 0),
            received_at=received_at,
            created_at=datetime(2026, 3, 1, 9, 0, 0),
        )
        po.items.append(PurchaseOrderItem(product_id=product.id, quantity_ordered=ordered, quantity_received=received))
        db_session.add(po)

    order("PO-1", reliable, 10, 10, date(2026, 3, 5), datetime(2026, 3, 4, 10, 0, 0), "received")
    order("PO-2", reliable, 5, 0, date(2026, 3, 6), None, "ordered")
    order("PO-3", slow, 8, 8, date(2026, 3, 6), datetime(2026, 3, 8, 10, 0, 0), "received")
    db_session.commit()


class TestDashboardMetrics:
    def test_totals(self, db_session, sales, settings):
        metrics = dashboard_service.dashboard_metrics(settings=settings, now=NOW)
        totals = metrics["totals"]

        assert totals["revenue_cents"] == 53000
        assert totals["transactions"] == 3
        assert totals["items_sold"] == 7
        assert totals["average_basket_size"] == 2.33
        assert totals["total_cost_cents"] == 26000
        assert totals["gross_profit_cents"] == 27000
        assert totals["gross_margin"] == 0.5094
        assert totals["tax_collected_cents"] == 3000
        assert totals["low_stock_count"] == 1

    def test_daily_sales_grouped_by_day(self, db_session, sales, settings):
        daily = dashboard_service.dashboard_metrics(settings=settings, now=NOW)["daily_sales"]

        assert [(row["date"], row["revenue_cents"], row["transactions"], row["items"]) for row in daily] == [
            ("2026-03-09", 20000, 1, 4),
            ("2026-03-10", 33000, 2, 3),
        ]
        assert daily[1]["profit_cents"] == 15000

    def test_top_selling_by_quantity(self, db_session, sales, settings):
        top = dashboard_service.dashboard_metrics(settings=settings, now=NOW)["top_selling"]

        assert [(row["name"], row["quantity"]) for row in top] == [("Tea", 4), ("Coffee", 3)]
        assert top[0]["profit_margin"] == 0.6

    def test_tax_summary_and_forecast(self, db_session, sales, settings):
        metrics = dashboard_service.dashboard_metrics(settings=settings, now=NOW)

        tax = metrics["tax_summary"]
        assert tax["taxable_sales_cents"] == 50000
        assert tax["effective_tax_rate"] == 0.06
        assert tax["transactions_with_tax"] == 2
        assert tax["average_tax_per_transaction_cents"] == 1000

        forecast = metrics["forecast"]
        assert forecast["days_evaluated"] == 14
        assert forecast["average_daily_revenue_cents"] == 3786
        assert forecast["projected_revenue_30_cents"] == 3786 * 30

    def test_low_stock_listing(self, db_session, sales, settings):
        low = dashboard_service.dashboard_metrics(settings=settings, now=NOW)["low_stock_products"]

        assert [(row["name"], row["stock"], row["effective_reorder_point"]) for row in low] == [("Coffee", 6, 10)]

    def test_empty_store(self, db_session, settings):
        metrics = dashboard_service.dashboard_metrics(settings=settings, now=NOW)

        assert metrics["totals"]["revenue_cents"] == 0
        assert metrics["totals"]["gross_margin"] == 0.0
        assert metrics["daily_sales"] == []
        assert metrics["suppliers"]["summary"]["on_time_rate"] is None
        assert metrics["range"] == {"start": "2026-02-25", "end": "2026-03-10", "days": 14}

    @pytest.mark.parametrize("requested, expected", [(None, 14), (0, 1), (7, 7), (1000, 90)])
    def test_range_clamped(self, db_session, settings, requested, expected):
        metrics = dashboard_service.dashboard_metrics(requested, settings=settings, now=NOW)

        assert metrics["range"]["days"] == expected

    def test_custom_threshold(self, db_session, sales, settings):
        metrics = dashboard_service.dashboard_metrics(
            settings=replace(settings, low_stock_threshold=20), now=NOW
        )

        assert metrics["totals"]["low_stock_count"] == 2
        assert metrics["low_stock_threshold"] == 20


class TestSupplierMetrics:
    def test_scores_and_rankings(self, db_session, purchase_orders, settings):
        suppliers = dashboard_service.dashboard_metrics(settings=settings, now=NOW)["suppliers"]

        summary = suppliers["summary"]
        assert summary["suppliers_evaluated"] == 2
        assert summary["on_time_rate"] == 0.5
        assert summary["late_delivery_count"] == 2
        assert summary["outstanding_count"] == 1

        top = suppliers["top_suppliers"]
        assert [row["supplier_name"] for row in top] == ["Reliable Foods", "Slow Imports"]
        assert top[0]["on_time_rate"] == 1.0
        assert top[0]["fulfillment_rate"] == 0.6667
        assert top[0]["score"] == 0.8667
        assert top[1]["score"] == 0.4

        assert [row["reference"] for row in suppliers["late_deliveries"]] == ["PO-2", "PO-3"]
        assert suppliers["late_deliveries"][0]["variance_days"] == 4
        assert [row["reference"] for row in suppliers["outstanding_orders"]] == ["PO-2"]
