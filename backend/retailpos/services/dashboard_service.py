# Overview: Read-only dashboard aggregates over settled transactions, stock and purchase orders.

from __future__ import annotations

from datetime import datetime

from sqlalchemy import case, func

from ..config import StoreSettings, resolve_settings
from ..extensions import db
from ..models import Product, PurchaseOrder, Transaction, TransactionItem
from ..money import round_half_away
from ..time_utils import day_range, to_utc_z, utcnow
from ..validation import optional_int
from .stock_service import low_stock_products, low_stock_query

TOP_LIMIT = 5
FORECAST_DAYS = 30


def _ratio(numerator, denominator, places: int = 4) -> float:
    if not denominator:
        return 0.0
    return round(numerator / denominator, places)


def _optional_ratio(numerator, denominator, places: int = 4) -> float | None:
    if not denominator:
        return None
    return round(numerator / denominator, places)


def _average(values: list[float], places: int = 2) -> float | None:
    if not values:
        return None
    return round(sum(values) / len(values), places)


def resolve_range_days(days, settings: StoreSettings) -> int:
    """Default when missing, clamped to [1, configured maximum]."""
    days = optional_int(days, "days")
    if days is None:
        days = settings.dashboard_default_range_days
    return min(max(days, 1), max(settings.dashboard_max_range_days, 1))


def _totals(start: datetime, end: datetime) -> dict:
    row = (
        db.session.query(
            func.coalesce(func.sum(Transaction.total_cents), 0).label("revenue"),
            func.coalesce(func.sum(Transaction.subtotal_cents), 0).label("subtotal"),
            func.coalesce(func.sum(Transaction.tax_total_cents), 0).label("tax_total"),
            func.coalesce(func.sum(Transaction.discount_total_cents), 0).label("discount_total"),
            func.count(Transaction.id).label("transactions"),
            func.coalesce(func.sum(Transaction.items_count), 0).label("items"),
            func.coalesce(func.sum(case((Transaction.tax_total_cents > 0, 1), else_=0)), 0).label("taxed"),
        )
        .filter(Transaction.created_at.between(start, end))
        .one()
    )
    cost = (
        db.session.query(func.coalesce(func.sum(TransactionItem.line_cost_cents), 0))
        .join(Transaction, Transaction.id == TransactionItem.transaction_id)
        .filter(Transaction.created_at.between(start, end))
        .scalar()
    )
    return {
        "revenue": int(row.revenue or 0),
        "subtotal": int(row.subtotal or 0),
        "tax_total": int(row.tax_total or 0),
        "discount_total": int(row.discount_total or 0),
        "transactions": int(row.transactions or 0),
        "items": int(row.items or 0),
        "taxed": int(row.taxed or 0),
        "cost": int(cost or 0),
    }


def _daily_sales(start: datetime, end: datetime) -> list[dict]:
    item_costs = (
        db.session.query(
            TransactionItem.transaction_id.label("transaction_id"),
            func.coalesce(func.sum(TransactionItem.line_cost_cents), 0).label("total_cost"),
        )
        .group_by(TransactionItem.transaction_id)
        .subquery()
    )
    day = func.date(Transaction.created_at)
    rows = (
        db.session.query(
            day.label("date"),
            func.sum(Transaction.total_cents).label("revenue"),
            func.count(Transaction.id).label("transactions"),
            func.sum(Transaction.items_count).label("items"),
            func.coalesce(func.sum(item_costs.c.total_cost), 0).label("cost"),
        )
        .outerjoin(item_costs, item_costs.c.transaction_id == Transaction.id)
        .filter(Transaction.created_at.between(start, end))
        .group_by(day)
        .order_by(day)
        .all()
    )

    daily = []
    for row in rows:
        revenue = int(row.revenue or 0)
        cost = int(row.cost or 0)
        transactions = int(row.transactions or 0)
        items = int(row.items or 0)
        daily.append({
            "date": str(row.date),
            "revenue_cents": revenue,
            "transactions": transactions,
            "items": items,
            "cost_cents": cost,
            "profit_cents": revenue - cost,
            "average_basket_size": _ratio(items, transactions, 2),
        })
    return daily


def _top_selling(start: datetime, end: datetime) -> list[dict]:
    quantity = func.sum(TransactionItem.quantity)
    rows = (
        db.session.query(
            TransactionItem.product_id,
            TransactionItem.name,
            quantity.label("quantity"),
            func.sum(TransactionItem.line_total_cents).label("revenue"),
            func.coalesce(func.sum(TransactionItem.line_cost_cents), 0).label("cost"),
        )
        .join(Transaction, Transaction.id == TransactionItem.transaction_id)
        .filter(Transaction.created_at.between(start, end))
        .group_by(TransactionItem.product_id, TransactionItem.name)
        .order_by(quantity.desc(), TransactionItem.name.asc())
        .limit(TOP_LIMIT)
        .all()
    )

    top = []
    for row in rows:
        revenue = int(row.revenue or 0)
        cost = int(row.cost or 0)
        top.append({
            "product_id": row.product_id,
            "name": row.name,
            "quantity": int(row.quantity or 0),
            "revenue_cents": revenue,
            "cost_cents": cost,
            "profit_cents": revenue - cost,
            "profit_margin": _ratio(revenue - cost, revenue),
        })
    return top


def _is_on_time(order: PurchaseOrder, now: datetime) -> bool:
    variance = order.schedule_variance_days(now)
    return variance is not None and variance <= 0


def _is_late(order: PurchaseOrder, now: datetime) -> bool:
    return (order.schedule_variance_days(now) or 0) > 0


def _supplier_performance(orders: list[PurchaseOrder], now: datetime) -> dict:
    supplier = orders[0].supplier
    completed = [order for order in orders if order.received_at is not None]
    on_time = [order for order in completed if _is_on_time(order, now)]
    total_ordered = sum(order.total_quantity_ordered for order in orders)
    total_received = sum(order.total_quantity_received for order in orders)

    fulfillment_rate = _optional_ratio(total_received, total_ordered)
    on_time_rate = _optional_ratio(len(on_time), len(completed))
    score = round((on_time_rate or 0) * 0.6 + (fulfillment_rate or 0) * 0.4, 4)

    return {
        "supplier_id": supplier.id,
        "supplier_name": supplier.name,
        "orders": len(orders),
        "completed_orders": len(completed),
        "on_time_rate": on_time_rate,
        "average_lead_time": _average([order.actual_lead_time_days or 0 for order in completed]),
        "average_variance": _average([order.schedule_variance_days(now) or 0 for order in orders]),
        "fulfillment_rate": fulfillment_rate,
        "late_deliveries": sum(1 for order in orders if _is_late(order, now)),
        "score": score,
    }


def supplier_metrics(start: datetime, end: datetime, now: datetime) -> dict:
    """
    Supplier scorecard over purchase orders created in [start, end].

    score = on_time_rate * 0.6 + fulfillment_rate * 0.4 (missing rates count as 0).
    An order is on time when it was received no later than the end of its
    expected date; open orders past their expected date count as late.
    """
    orders = (
        db.session.query(PurchaseOrder)
        .filter(PurchaseOrder.created_at.between(start, end))
        .order_by(PurchaseOrder.id.asc())
        .all()
    )

    completed = [order for order in orders if order.received_at is not None]
    on_time = [order for order in completed if _is_on_time(order, now)]
    late = [order for order in orders if _is_late(order, now)]
    outstanding = [order for order in orders if order.outstanding_quantity > 0]
    total_ordered = sum(order.total_quantity_ordered for order in orders)
    total_received = sum(order.total_quantity_received for order in orders)

    groups: dict[int, list[PurchaseOrder]] = {}
    for order in orders:
        if order.supplier is not None:
            groups.setdefault(order.supplier_id, []).append(order)
    performances = [_supplier_performance(group, now) for group in groups.values()]

    late_sorted = sorted(late, key=lambda order: order.schedule_variance_days(now) or 0, reverse=True)
    outstanding_sorted = sorted(outstanding, key=lambda order: order.outstanding_quantity, reverse=True)

    return {
        "summary": {
            "suppliers_evaluated": len(groups),
            "average_lead_time": _average([order.actual_lead_time_days or 0 for order in completed]),
            "average_fulfillment_rate": _optional_ratio(total_received, total_ordered),
            "on_time_rate": _optional_ratio(len(on_time), len(completed)),
            "late_delivery_count": len(late),
            "outstanding_count": len(outstanding),
        },
        "top_suppliers": sorted(performances, key=lambda item: item["score"], reverse=True)[:TOP_LIMIT],
        "late_deliveries": [
            {
                "id": order.id,
                "reference": order.reference,
                "supplier_name": order.supplier.name if order.supplier else None,
                "expected_date": order.expected_date.isoformat() if order.expected_date else None,
                "received_at": to_utc_z(order.received_at),
                "variance_days": order.schedule_variance_days(now),
                "fulfillment_rate": order.fulfillment_rate,
            }
            for order in late_sorted[:TOP_LIMIT]
        ],
        "outstanding_orders": [
            {
                "id": order.id,
                "reference": order.reference,
                "supplier_name": order.supplier.name if order.supplier else None,
                "expected_date": order.expected_date.isoformat() if order.expected_date else None,
                "outstanding_quantity": order.outstanding_quantity,
                "fulfillment_rate": order.fulfillment_rate,
                "status": order.status,
            }
            for order in outstanding_sorted[:TOP_LIMIT]
        ],
    }


def dashboard_metrics(
    days: int | None = None,
    *,
    settings: StoreSettings | None = None,
    now: datetime | None = None,
) -> dict:
    """
    Sales, stock and supplier metrics over the last `days` calendar days.

    Money values are integer cents. Ratios (margins, rates) are fractions
    rounded to 4 places; averages of counts are rounded to 2 places.
    """
    settings = resolve_settings(settings)
    days = resolve_range_days(days, settings)
    now = now or utcnow()
    start, end = day_range(days, now)
    threshold = settings.low_stock_threshold

    totals = _totals(start, end)
    revenue = totals["revenue"]
    transactions = totals["transactions"]
    gross_profit = revenue - totals["cost"]

    average_daily_revenue = round_half_away(revenue, days)
    average_daily_profit = round_half_away(gross_profit, days)
    average_daily_tax = round_half_away(totals["tax_total"], days)

    low_stock = low_stock_products(threshold, limit=TOP_LIMIT)

    return {
        "totals": {
            "revenue_cents": revenue,
            "transactions": transactions,
            "items_sold": totals["items"],
            "average_basket_size": _ratio(totals["items"], transactions, 2),
            "low_stock_count": low_stock_query(threshold).count(),
            "total_cost_cents": totals["cost"],
            "gross_profit_cents": gross_profit,
            "gross_margin": _ratio(gross_profit, revenue),
            "tax_collected_cents": totals["tax_total"],
        },
        "daily_sales": _daily_sales(start, end),
        "top_selling": _top_selling(start, end),
        "low_stock_threshold": threshold,
        "custom_reorder_count": db.session.query(Product).filter(Product.reorder_point.isnot(None)).count(),
        "low_stock_products": [
            {
                "id": product.id,
                "name": product.name,
                "stock": product.stock,
                "reorder_point": product.reorder_point,
                "effective_reorder_point": product.effective_reorder_point(threshold),
                "reorder_quantity": product.reorder_quantity,
            }
            for product in low_stock
        ],
        "tax_summary": {
            "taxable_sales_cents": totals["subtotal"],
            "tax_collected_cents": totals["tax_total"],
            "discounts_cents": totals["discount_total"],
            "effective_tax_rate": _ratio(totals["tax_total"], totals["subtotal"]),
            "transactions_with_tax": totals["taxed"],
            "average_tax_per_transaction_cents": (
                round_half_away(totals["tax_total"], transactions) if transactions else 0
            ),
        },
        "forecast": {
            "days_evaluated": days,
            "average_daily_revenue_cents": average_daily_revenue,
            "average_daily_profit_cents": average_daily_profit,
            "average_daily_tax_cents": average_daily_tax,
            "projected_revenue_30_cents": average_daily_revenue * FORECAST_DAYS,
            "projected_profit_30_cents": average_daily_profit * FORECAST_DAYS,
            "projected_tax_30_cents": average_daily_tax * FORECAST_DAYS,
        },
        "suppliers": supplier_metrics(start, end, now),
        "currency": settings.currency_code,
        "last_updated": to_utc_z(now),
        "range": {
            "start": start.date().isoformat(),
            "end": end.date().isoformat(),
            "days": days,
        },
    }
