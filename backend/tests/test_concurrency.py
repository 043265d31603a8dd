# Overview: Threaded concurrency checks for settlement and transfers on a file database.

"""
Concurrency tests for the stock ledger writers.

Each worker thread runs in its own app context (and so its own session and
connection) against a temporary SQLite file, which is where the atomic unit's
write lock actually has something to serialize.
"""
import os
import tempfile
import threading
import unittest

from retailpos import create_app
from retailpos.extensions import db
from retailpos.models import (
    InventoryLocation,
    InventoryTransfer,
    Product,
    StockLevel,
    Transaction,
    TransactionItem,
)
from retailpos.services import checkout_service, transfer_service
from retailpos.validation import ValidationError


class ConcurrencyTests(unittest.TestCase):
    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        db_path = os.path.join(self.tmpdir.name, "concurrency.db")
        self.app = create_app({
            "TESTING": True,
            "SQLALCHEMY_DATABASE_URI": f"sqlite:///{db_path}",
            "SQLALCHEMY_ENGINE_OPTIONS": {"connect_args": {"timeout": 30}},
        })

        with self.app.app_context():
            db.drop_all()
            db.create_all()

            source = InventoryLocation(name="Shop Floor", code="FLOOR", is_default=True)
            destination = InventoryLocation(name="Back Room", code="BACK")
            db.session.add_all([source, destination])
            db.session.flush()

            product = Product(name="Concurrent Product", price_cents=1000, stock=10)
            db.session.add(product)
            db.session.flush()
            db.session.add(StockLevel(product_id=product.id, location_id=source.id, quantity=10))
            db.session.commit()

            self.source_id = source.id
            self.destination_id = destination.id
            self.product_id = product.id

    def tearDown(self):
        with self.app.app_context():
            db.session.remove()
            db.drop_all()
            db.session.remove()
            db.engine.dispose()
        self.tmpdir.cleanup()

    def _run_workers(self, target, count):
        return self._run_all([target] * count)

    def _run_all(self, targets):
        results = []
        lock = threading.Lock()
        start = threading.Barrier(len(targets))

        def worker(target):
            start.wait()
            with self.app.app_context():
                try:
                    target()
                    outcome = "ok"
                except Exception as exc:
                    outcome = exc
                finally:
                    db.session.remove()
            with lock:
                results.append(outcome)

        threads = [threading.Thread(target=worker, args=(target,)) for target in targets]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        return results

    def _quantity(self, location_id):
        with self.app.app_context():
            level = db.session.query(StockLevel).filter_by(
                product_id=self.product_id, location_id=location_id
            ).first()
            return level.quantity if level else 0

    def test_concurrent_transfers_draining_source(self):
        """Two transfers of 7 from a source holding 10: exactly one succeeds."""
        def move():
            transfer_service.transfer(
                product_id=self.product_id,
                source_location_id=self.source_id,
                destination_location_id=self.destination_id,
                quantity=7,
                user_id=1,
            )

        results = self._run_workers(move, 2)

        self.assertEqual(results.count("ok"), 1)
        failures = [r for r in results if r != "ok"]
        self.assertEqual(len(failures), 1)
        self.assertIsInstance(failures[0], ValidationError)
        self.assertEqual(self._quantity(self.source_id), 3)
        self.assertEqual(self._quantity(self.destination_id), 7)

        with self.app.app_context():
            self.assertEqual(db.session.query(InventoryTransfer).count(), 1)
            self.assertEqual(db.session.get(Product, self.product_id).stock, 10)

    def test_concurrent_settlements_never_oversell(self):
        """Five settlements of 3 units against 10 on hand: at most three commit."""
        def sell():
            checkout_service.settle(
                items=[{"product_id": self.product_id, "quantity": 3}],
                tax_rate="11.00",
                payment_method="cash",
                amount_paid="100",
            )

        results = self._run_workers(sell, 5)

        successes = results.count("ok")
        self.assertEqual(successes, 3)
        self.assertEqual(self._quantity(self.source_id), 10 - 3 * successes)

        with self.app.app_context():
            self.assertEqual(db.session.query(Transaction).count(), successes)
            self.assertEqual(db.session.get(Product, self.product_id).stock, 10 - 3 * successes)

    def test_settlement_and_transfer_on_same_rows(self):
        """A sale of 6 and a transfer of 7 race for 10 units at one location."""
        def sell():
            checkout_service.settle(
                items=[{"product_id": self.product_id, "quantity": 6}],
                tax_rate="0",
                payment_method="cash",
                amount_paid="100",
                location_id=self.source_id,
            )

        def move():
            transfer_service.transfer(
                product_id=self.product_id,
                source_location_id=self.source_id,
                destination_location_id=self.destination_id,
                quantity=7,
                user_id=1,
            )

        results = self._run_all([sell, move])

        self.assertEqual(results.count("ok"), 1)
        failures = [r for r in results if r != "ok"]
        self.assertIsInstance(failures[0], ValidationError)

        with self.app.app_context():
            sold = sum(item.quantity for item in db.session.query(TransactionItem).all())
            moved = db.session.query(InventoryTransfer).count()
            self.assertIn((sold, moved), [(6, 0), (0, 1)])
            self.assertEqual(db.session.get(Product, self.product_id).stock, 10 - sold)

        source = self._quantity(self.source_id)
        destination = self._quantity(self.destination_id)
        self.assertGreaterEqual(source, 0)
        self.assertEqual(source + destination, 10 - sold)


if __name__ == "__main__":
    unittest.main()
