# Overview: Pytest coverage for sale recording, stock and customer side effects.

"""
Sale Recording Tests

A sale is one transaction: number, stock decrement and customer aggregates
are all written together, or nothing is written at all.
"""

from datetime import datetime

import pytest

from flowdesk.models import Sale, Product, Customer, DocumentSequence
from flowdesk.services import sales_service
from flowdesk.services.sales_service import InsufficientStockError, SaleError
from flowdesk.validation import ValidationError, NotFoundError

from conftest import make_product


SOLD_AT = datetime(2024, 1, 15, 14, 30)


def _sell(owner, lines, **kwargs):
    params = dict(owner_id=owner.id, lines=lines, payment_method="cash", now=SOLD_AT)
    params.update(kwargs)
    return sales_service.create_sale(**params)


def _line(product, quantity, **extra):
    line = {"product_id": product.id, "quantity": quantity, "unit_price_cents": None, "discount_cents": 0}
    line.update(extra)
    return line


class TestCreateSale:
    def test_totals_numbers_and_stock(self, db_session, owner, product):
        sale = _sell(owner, [_line(product, 2, discount_cents=1_000)])

        assert sale.sale_number == "SALE-202401-0001"
        assert sale.receipt_number.startswith("RCP-")
        assert sale.subtotal_cents == 20_000
        assert sale.discount_cents == 1_000
        assert sale.tax_cents == 1_425
        assert sale.total_cents == 20_425
        assert sale.currency == "NGN"
        assert sale.payment_status == "paid"
        assert sale.created_at == SOLD_AT
        assert sale.lines[0].name == "Widget"
        assert sale.lines[0].unit_price_cents == 10_000

        db_session.expire_all()
        p = db_session.get(Product, product.id)
        assert p.stock_quantity == 8
        assert p.is_low_stock is False

    def test_low_stock_flag(self, db_session, owner, product):
        _sell(owner, [_line(product, 5)])
        db_session.expire_all()
        p = db_session.get(Product, product.id)
        assert p.stock_quantity == 5
        assert p.is_low_stock is True

    def test_sell_entire_stock(self, db_session, owner, product):
        _sell(owner, [_line(product, 10)])
        db_session.expire_all()
        assert db_session.get(Product, product.id).stock_quantity == 0

    def test_stock_conservation_across_sales(self, db_session, owner, product):
        second = make_product(db_session, owner, sku="SKU-002", name="Gadget", price_cents=2_500, stock=7)
        _sell(owner, [_line(product, 3), _line(second, 2)])
        _sell(owner, [_line(product, 1)])

        db_session.expire_all()
        sold = {
            pid: sum(l.quantity for s in db_session.query(Sale).all() for l in s.lines if l.product_id == pid)
            for pid in (product.id, second.id)
        }
        assert db_session.get(Product, product.id).stock_quantity + sold[product.id] == 10
        assert db_session.get(Product, second.id).stock_quantity + sold[second.id] == 7

    def test_numbers_sequential_within_month(self, db_session, owner, product):
        a = _sell(owner, [_line(product, 1)])
        b = _sell(owner, [_line(product, 1)])
        c = _sell(owner, [_line(product, 1)], now=datetime(2024, 2, 1, 9, 0))
        assert a.sale_number == "SALE-202401-0001"
        assert b.sale_number == "SALE-202401-0002"
        assert c.sale_number == "SALE-202402-0001"

    def test_walk_in_customer_name(self, db_session, owner, product):
        sale = _sell(owner, [_line(product, 1)], customer_name="Walk-in")
        assert sale.customer_id is None
        assert sale.customer_name == "Walk-in"


class TestInsufficientStock:
    def test_rejected_without_side_effects(self, db_session, owner, product, customer):
        with pytest.raises(InsufficientStockError) as exc_info:
            _sell(owner, [_line(product, 11)], customer_id=customer.id)

        item = exc_info.value.details["items"][0]
        assert item["product_id"] == product.id
        assert item["requested_quantity"] == 11
        assert item["available_quantity"] == 10

        db_session.expire_all()
        assert db_session.get(Product, product.id).stock_quantity == 10
        assert db_session.query(Sale).count() == 0
        assert db_session.query(DocumentSequence).count() == 0
        c = db_session.get(Customer, customer.id)
        assert c.total_purchases == 0
        assert c.total_spent_cents == 0

    def test_quantity_aggregated_across_lines(self, db_session, owner, product):
        with pytest.raises(InsufficientStockError):
            _sell(owner, [_line(product, 6), _line(product, 5)])
        db_session.expire_all()
        assert db_session.get(Product, product.id).stock_quantity == 10

    def test_one_short_product_blocks_whole_sale(self, db_session, owner, product):
        scarce = make_product(db_session, owner, sku="SKU-009", name="Scarce", stock=1)
        with pytest.raises(InsufficientStockError):
            _sell(owner, [_line(product, 2), _line(scarce, 2)])
        db_session.expire_all()
        assert db_session.get(Product, product.id).stock_quantity == 10
        assert db_session.get(Product, scarce.id).stock_quantity == 1


class TestCustomerAggregates:
    def test_sale_updates_customer(self, db_session, owner, product, customer):
        sale = _sell(owner, [_line(product, 1)], customer_id=customer.id)

        db_session.expire_all()
        c = db_session.get(Customer, customer.id)
        assert c.total_purchases == 1
        assert c.total_spent_cents == sale.total_cents
        assert c.average_order_value_cents == sale.total_cents
        assert c.first_purchase_at == SOLD_AT
        assert c.last_purchase_at == SOLD_AT
        assert c.loyalty_status == "bronze"
        assert sale.customer_name == "Chidi Okeke"

    def test_loyalty_promotion(self, db_session, owner, customer):
        pricey = make_product(db_session, owner, sku="GOLD-1", name="Generator", price_cents=100_000_00, stock=10)
        _sell(owner, [_line(pricey, 1)], customer_id=customer.id)
        later = datetime(2024, 1, 20)
        _sell(owner, [_line(pricey, 1)], customer_id=customer.id, now=later)

        db_session.expire_all()
        c = db_session.get(Customer, customer.id)
        assert c.total_purchases == 2
        # 2 x 100,000.00 + 7.5% tax
        assert c.total_spent_cents == 2 * 107_500_00
        assert c.loyalty_status == "silver"
        assert c.first_purchase_at == SOLD_AT
        assert c.last_purchase_at == later

    def test_foreign_customer_rejected(self, db_session, owner, other_owner, product):
        foreign = Customer(owner_id=other_owner.id, name="Other", phone="+254700000000")
        db_session.add(foreign)
        db_session.commit()

        with pytest.raises(ValidationError):
            _sell(owner, [_line(product, 1)], customer_id=foreign.id)
        db_session.expire_all()
        assert db_session.get(Product, product.id).stock_quantity == 10


class TestValidation:
    def test_unknown_product(self, db_session, owner):
        with pytest.raises(ValidationError):
            _sell(owner, [{"product_id": 99999, "quantity": 1, "unit_price_cents": None, "discount_cents": 0}])

    def test_inactive_product(self, db_session, owner, product):
        product.is_active = False
        db_session.commit()
        with pytest.raises(ValidationError):
            _sell(owner, [_line(product, 1)])

    def test_bad_payment_method(self, db_session, owner, product):
        with pytest.raises(ValidationError):
            _sell(owner, [_line(product, 1)], payment_method="barter")

    def test_discount_above_line_amount(self, db_session, owner, product):
        with pytest.raises(ValidationError):
            _sell(owner, [_line(product, 1, discount_cents=10_001)])
        db_session.expire_all()
        assert db_session.get(Product, product.id).stock_quantity == 10


class TestRefunds:
    def test_refund_once(self, db_session, owner, product):
        sale = _sell(owner, [_line(product, 1)])
        refunded = sales_service.refund_sale(
            owner_id=owner.id, sale_id=sale.id, amount_cents=5_000, reason="Damaged", now=datetime(2024, 1, 16),
        )
        assert refunded.refunded is True
        assert refunded.refund_cents == 5_000
        assert refunded.refund_reason == "Damaged"

        with pytest.raises(SaleError):
            sales_service.refund_sale(owner_id=owner.id, sale_id=sale.id, amount_cents=1, reason="Again")

    def test_refund_cannot_exceed_total(self, db_session, owner, product):
        sale = _sell(owner, [_line(product, 1)])
        with pytest.raises(SaleError):
            sales_service.refund_sale(
                owner_id=owner.id, sale_id=sale.id, amount_cents=sale.total_cents + 1, reason="Too much",
            )

    def test_refund_requires_reason(self, db_session, owner, product):
        sale = _sell(owner, [_line(product, 1)])
        with pytest.raises(ValidationError):
            sales_service.refund_sale(owner_id=owner.id, sale_id=sale.id, amount_cents=100, reason=" ")

    def test_other_owner_cannot_refund(self, db_session, owner, other_owner, product):
        sale = _sell(owner, [_line(product, 1)])
        with pytest.raises(NotFoundError):
            sales_service.refund_sale(owner_id=other_owner.id, sale_id=sale.id, amount_cents=100, reason="x")


class TestQueries:
    def test_list_by_range(self, db_session, owner, product):
        _sell(owner, [_line(product, 1)])
        _sell(owner, [_line(product, 1)], now=datetime(2024, 2, 10))

        result = sales_service.list_sales(
            owner_id=owner.id, start=datetime(2024, 2, 1), end=datetime(2024, 3, 1),
        )
        assert result["count"] == 1
        assert result["items"][0]["sale_number"] == "SALE-202402-0001"
        assert "lines" not in result["items"][0]
