# Overview: Pytest coverage for Flask CLI command groups.

import json

from retailpos.models import InventoryLocation, Product, StockLevel
from retailpos.services import stock_service


def test_seed_demo_is_idempotent(app, db_session):
    runner = app.test_cli_runner()

    first = runner.invoke(args=["system", "seed-demo"])
    second = runner.invoke(args=["system", "seed-demo"])

    assert first.exit_code == 0
    assert "Created 4 product(s)" in first.output
    assert "Created 0 product(s)" in second.output
    assert db_session.query(InventoryLocation).count() == 2
    for product in db_session.query(Product).all():
        assert stock_service.ledger_total(product.id) == product.stock


def test_check_low_stock_lists_products(app, db_session, floor, make_product):
    make_product("Almost Gone", levels={floor.id: 1})
    make_product("Plenty", levels={floor.id: 100})

    result = app.test_cli_runner().invoke(args=["inventory", "check-low-stock"])

    assert result.exit_code == 0
    assert "Almost Gone" in result.output
    assert "Plenty" not in result.output


def test_check_low_stock_none(app, db_session):
    result = app.test_cli_runner().invoke(args=["inventory", "check-low-stock"])

    assert "No products are below their reorder point" in result.output


def test_transfer_command(app, db_session, floor, back_room, make_product):
    product = make_product(levels={floor.id: 10})

    result = app.test_cli_runner().invoke(args=[
        "inventory", "transfer",
        "--product-id", str(product.id),
        "--from", str(floor.id),
        "--to", str(back_room.id),
        "--quantity", "7",
        "--user-id", "1",
    ])

    assert result.exit_code == 0
    assert "PASS Transfer" in result.output
    level = db_session.query(StockLevel).filter_by(product_id=product.id, location_id=back_room.id).one()
    assert level.quantity == 7


def test_transfer_command_failure(app, db_session, floor, back_room, make_product):
    product = make_product(levels={floor.id: 1})

    result = app.test_cli_runner().invoke(args=[
        "inventory", "transfer",
        "--product-id", str(product.id),
        "--from", str(floor.id),
        "--to", str(back_room.id),
        "--quantity", "7",
        "--user-id", "1",
    ])

    assert result.exit_code == 1
    assert "FAIL" in result.output


def test_dashboard_command_prints_json(app, db_session):
    result = app.test_cli_runner().invoke(args=["reports", "dashboard", "--days", "7"])

    assert result.exit_code == 0
    payload = json.loads(result.output)
    assert payload["range"]["days"] == 7
    assert payload["totals"]["transactions"] == 0
