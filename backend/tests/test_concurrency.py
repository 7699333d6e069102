# Overview: Pytest coverage for concurrent writers against a file-backed SQLite database.

"""
Concurrency Tests

The in-memory test database has a single connection, so these tests build
their own app on a database file and run each writer in its own thread with
its own app context (and therefore its own session).
"""

import threading

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from o2c import create_app
from o2c.errors import CreditExceededError, InsufficientStockError, OverpaymentError
from o2c.extensions import db
from o2c.services.concurrency import run_with_retry
from o2c.services import (
    customer_service,
    inventory_service,
    invoice_service,
    order_service,
    payment_service,
    product_service,
)
from o2c.time_utils import utcnow


@pytest.fixture
def file_app(tmp_path):
    app = create_app(config_overrides={
        "TESTING": True,
        "SQLALCHEMY_DATABASE_URI": f"sqlite:///{tmp_path / 'o2c-concurrency.sqlite3'}",
    })
    with app.app_context():
        db.create_all()
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()
        db.engine.dispose()


@pytest.fixture
def seeded(file_app):
    """Customer, two stocked products and a DRAFT order (ids only)."""
    with file_app.app_context():
        customer = customer_service.create_customer(
            code="CONC-1", name="Concurrent Co", email="ops@concurrent.example", credit_limit_cents=100_000
        )
        widget = product_service.create_product(sku="WID-100", name="Widget", price_cents=10_000)
        gadget = product_service.create_product(sku="GAD-250", name="Gadget", price_cents=25_000)
        inventory_service.receive_stock(product_id=widget.id, quantity=20, reference="PO-SEED-1")
        inventory_service.receive_stock(product_id=gadget.id, quantity=10, reference="PO-SEED-2")
        order = order_service.create_order(
            customer_id=customer.id,
            items=[
                {"product_id": widget.id, "quantity": 2},
                {"product_id": gadget.id, "quantity": 1},
            ],
            tax_rate_bps=1000,
        )
        ids = {
            "customer_id": customer.id,
            "widget_id": widget.id,
            "gadget_id": gadget.id,
            "order_id": order.id,
        }
        db.session.remove()
    return ids


def run_concurrently(app, funcs):
    """Start every func at the same moment, each in its own thread and app context."""
    barrier = threading.Barrier(len(funcs))
    results = []
    errors = []
    lock = threading.Lock()

    def worker(func):
        with app.app_context():
            try:
                barrier.wait()
                value = func()
                with lock:
                    results.append(value)
            except Exception as exc:
                with lock:
                    errors.append(exc)
            finally:
                db.session.remove()

    threads = [threading.Thread(target=worker, args=(func,)) for func in funcs]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)
    return results, errors


def test_concurrent_item_additions_keep_totals_consistent(file_app, seeded):
    """Two clerks add a line to the same DRAFT order at the same time."""
    def add(product_id):
        def _call():
            item = order_service.add_item(order_id=seeded["order_id"], product_id=product_id, quantity=1)
            return item.id
        return _call

    results, errors = run_concurrently(file_app, [add(seeded["widget_id"]), add(seeded["gadget_id"])])

    assert errors == []
    assert len(results) == 2

    with file_app.app_context():
        order = order_service.get_order(seeded["order_id"])
        assert len(order.items) == 4
        assert order.subtotal_cents == 80_000
        assert order.tax_amount_cents == 8_000
        assert order.total_amount_cents == 88_000
        assert order_service.validate_order(order) == []
        assert inventory_service.current_stock(seeded["widget_id"]) == 17
        assert inventory_service.current_stock(seeded["gadget_id"]) == 8
        db.session.remove()


def test_concurrent_orders_get_unique_numbers(file_app, seeded):
    def create():
        order = order_service.create_order(
            customer_id=seeded["customer_id"],
            items=[{"product_id": seeded["widget_id"], "quantity": 1}],
        )
        return order.order_number

    results, errors = run_concurrently(file_app, [create for _ in range(6)])

    assert errors == []
    year = utcnow().year
    assert sorted(results) == [f"ORD-{year}-{n:03d}" for n in range(2, 8)]

    with file_app.app_context():
        assert inventory_service.current_stock(seeded["widget_id"]) == 12
        db.session.remove()


def test_concurrent_orders_can_not_oversell(file_app, seeded):
    """Nine gadgets left; two orders for five each. Exactly one wins."""
    def create():
        order = order_service.create_order(
            customer_id=seeded["customer_id"],
            items=[{"product_id": seeded["gadget_id"], "quantity": 5, "unit_price_cents": 1_000}],
        )
        return order.id

    results, errors = run_concurrently(file_app, [create, create])

    assert len(results) == 1
    assert len(errors) == 1
    assert isinstance(errors[0], InsufficientStockError)

    with file_app.app_context():
        assert inventory_service.current_stock(seeded["gadget_id"]) == 4
        db.session.remove()


def test_concurrent_payments_can_not_overpay(file_app, seeded):
    """495.00 due; two 300.00 payments race. Exactly one is applied."""
    with file_app.app_context():
        invoice = invoice_service.create_invoice_from_order(order_id=seeded["order_id"])
        invoice_service.send_invoice(invoice.id)
        invoice_id = invoice.id
        db.session.remove()

    def pay():
        payment = payment_service.add_payment(invoice_id=invoice_id, amount_cents=30_000, method="CASH")
        return payment.id

    results, errors = run_concurrently(file_app, [pay, pay])

    assert len(results) == 1
    assert len(errors) == 1
    assert isinstance(errors[0], OverpaymentError)

    with file_app.app_context():
        invoice = invoice_service.get_invoice(invoice_id)
        assert invoice.paid_amount_cents == 30_000
        assert invoice.balance_due_cents == 19_500
        assert invoice.status == "PARTIALLY_PAID"
        assert len(payment_service.list_payments(invoice_id)) == 1
        db.session.remove()


class TestRunWithRetry:
    @staticmethod
    def flaky(failures):
        """Raise each queued exception in turn, then succeed."""
        calls = []

        def _call():
            calls.append(1)
            if failures:
                raise failures.pop(0)
            return "done"
        return _call, calls

    def test_stale_data_is_retried(self, db_session):
        func, calls = self.flaky([StaleDataError("row changed"), StaleDataError("row changed")])
        assert run_with_retry(func, backoff_base=0) == "done"
        assert len(calls) == 3

    def test_locked_database_is_retried(self, db_session):
        func, calls = self.flaky([OperationalError("BEGIN IMMEDIATE", {}, Exception("database is locked"))])
        assert run_with_retry(func, backoff_base=0) == "done"
        assert len(calls) == 2

    def test_business_errors_are_not_retried(self, db_session):
        func, calls = self.flaky([CreditExceededError("Credit limit exceeded")])
        with pytest.raises(CreditExceededError):
            run_with_retry(func, backoff_base=0)
        assert len(calls) == 1

    def test_exhausted_attempts_reraise(self, db_session):
        func, calls = self.flaky([StaleDataError("row changed") for _ in range(3)])
        with pytest.raises(StaleDataError):
            run_with_retry(func, attempts=3, backoff_base=0)
        assert len(calls) == 3

    def test_session_rolled_back_after_failure(self, db_session, widget):
        def _call():
            widget.name = "Renamed"
            db.session.flush()
            raise CreditExceededError("Credit limit exceeded")

        with pytest.raises(CreditExceededError):
            run_with_retry(_call, backoff_base=0)
        assert db.session.get(type(widget), widget.id).name == "Widget"
