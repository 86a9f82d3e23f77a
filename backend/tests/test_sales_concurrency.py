# Overview: Pytest coverage for concurrent sales against the same stock.

"""
Concurrency Tests

Two registers selling the last units of a product at the same time must
never oversell. Uses a file-backed SQLite database so each thread gets its
own connection and the write lock is real.
"""

import threading

import pytest

from flowdesk import create_app
from flowdesk.extensions import db
from flowdesk.models import Owner, Product, Sale
from flowdesk.services import sales_service
from flowdesk.services.sales_service import InsufficientStockError


@pytest.fixture
def file_app(tmp_path):
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': f"sqlite:///{tmp_path / 'concurrency.sqlite3'}",
    })
    with app.app_context():
        db.create_all()
    yield app
    with app.app_context():
        db.drop_all()
        db.engine.dispose()


def _seed(app, stock):
    with app.app_context():
        owner = Owner(name="Race Owner", currency="NGN", tax_rate_bps=0, is_active=True)
        db.session.add(owner)
        db.session.flush()
        product = Product(
            owner_id=owner.id,
            sku="RACE-1",
            name="Last Units",
            category="General",
            cost_price_cents=500,
            selling_price_cents=1_000,
            stock_quantity=stock,
            min_stock=0,
            unit="piece",
            is_active=True,
        )
        db.session.add(product)
        db.session.commit()
        return owner.id, product.id


def _race(app, owner_id, product_id, quantity, workers):
    barrier = threading.Barrier(workers)
    outcomes = []
    lock = threading.Lock()

    def worker():
        with app.app_context():
            try:
                barrier.wait()
                sales_service.create_sale(
                    owner_id=owner_id,
                    lines=[{"product_id": product_id, "quantity": quantity, "unit_price_cents": None, "discount_cents": 0}],
                    payment_method="cash",
                )
                result = "ok"
            except InsufficientStockError:
                result = "insufficient"
            except Exception as exc:  # surfaced through the assertion below
                result = f"error: {exc!r}"
            finally:
                db.session.remove()
            with lock:
                outcomes.append(result)

    threads = [threading.Thread(target=worker) for _ in range(workers)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=30)
    return outcomes


def test_two_sales_cannot_oversell(file_app):
    owner_id, product_id = _seed(file_app, stock=5)

    outcomes = _race(file_app, owner_id, product_id, quantity=3, workers=2)

    assert sorted(outcomes) == ["insufficient", "ok"]
    with file_app.app_context():
        assert db.session.get(Product, product_id).stock_quantity == 2
        assert db.session.query(Sale).count() == 1


def test_concurrent_sales_get_distinct_numbers(file_app):
    owner_id, product_id = _seed(file_app, stock=100)

    outcomes = _race(file_app, owner_id, product_id, quantity=1, workers=4)

    assert outcomes == ["ok"] * 4
    with file_app.app_context():
        numbers = [s.sale_number for s in db.session.query(Sale).all()]
        assert len(set(numbers)) == 4
        assert db.session.get(Product, product_id).stock_quantity == 96
