# Overview: Pytest coverage for invoice lifecycle behavior.

"""
Invoice Lifecycle Tests

Every write path (create, update, payment, overdue sweep) must leave the
invoice with totals re-derived from its lines and statuses re-derived from
its payment facts.
"""

from datetime import datetime, timedelta

import pytest

from flowdesk.models import Invoice
from flowdesk.services import invoice_service
from flowdesk.validation import ValidationError, NotFoundError

from conftest import make_product


ISSUE = datetime(2024, 1, 1)
NOW = datetime(2024, 1, 5, 10, 0)


@pytest.fixture
def invoice_product(db_session, owner):
    return make_product(db_session, owner, sku="SVC-001", name="Consulting hour", price_cents=5_000, stock=0)


def _create(owner, customer, product, **kwargs):
    params = dict(
        owner_id=owner.id,
        customer_id=customer.id,
        lines=[{
            "product_id": product.id,
            "quantity": 2,
            "unit_price_cents": None,
            "discount_bps": 1_000,
            "tax_cents": 500,
            "description": "January retainer",
        }],
        issue_date=ISSUE,
        now=NOW,
    )
    params.update(kwargs)
    return invoice_service.create_invoice(**params)


class TestCreateInvoice:
    def test_totals_and_derived_fields(self, db_session, owner, customer, invoice_product):
        invoice = _create(owner, customer, invoice_product)

        assert invoice.invoice_number == "INV-2024-0001"
        assert invoice.subtotal_cents == 10_000
        assert invoice.discount_cents == 1_000
        assert invoice.tax_cents == 500
        assert invoice.total_cents == 9_500
        assert invoice.remaining_cents == 9_500
        assert invoice.payment_status == "unpaid"
        assert invoice.status == "draft"
        assert invoice.currency == "NGN"
        assert invoice.due_date == datetime(2024, 1, 31)

        line = invoice.lines[0]
        assert line.name == "Consulting hour"
        assert line.unit_price_cents == 5_000
        assert line.line_total_cents == 10_000
        assert line.discount_cents == 1_000

    def test_numbers_are_sequential(self, db_session, owner, customer, invoice_product):
        first = _create(owner, customer, invoice_product)
        second = _create(owner, customer, invoice_product)
        assert (first.invoice_number, second.invoice_number) == ("INV-2024-0001", "INV-2024-0002")

    def test_supplied_due_date_wins(self, db_session, owner, customer, invoice_product):
        due = datetime(2024, 2, 14)
        invoice = _create(owner, customer, invoice_product, due_date=due, payment_terms="net60")
        assert invoice.due_date == due

    def test_issue_date_defaults_to_now(self, db_session, owner, customer, invoice_product):
        invoice = _create(owner, customer, invoice_product, issue_date=None, payment_terms="net15")
        assert invoice.issue_date == NOW
        assert invoice.due_date == NOW + timedelta(days=15)

    def test_unit_price_override(self, db_session, owner, customer, invoice_product):
        invoice = _create(owner, customer, invoice_product, lines=[{
            "product_id": invoice_product.id, "quantity": 1, "unit_price_cents": 7_000,
        }])
        assert invoice.total_cents == 7_000

    def test_initial_payment_partial(self, db_session, owner, customer, invoice_product):
        invoice = _create(owner, customer, invoice_product, paid_cents=2_000)
        assert invoice.payment_status == "partial"
        assert invoice.status == "partial"
        assert invoice.remaining_cents == 7_500

    def test_created_past_due_is_overdue(self, db_session, owner, customer, invoice_product):
        invoice = _create(owner, customer, invoice_product, due_date=datetime(2024, 1, 2), status="sent")
        assert invoice.status == "overdue"

    def test_paid_above_total_rejected(self, db_session, owner, customer, invoice_product):
        with pytest.raises(ValidationError):
            _create(owner, customer, invoice_product, paid_cents=9_501)
        assert db_session.query(Invoice).count() == 0

    def test_derived_status_cannot_be_set(self, db_session, owner, customer, invoice_product):
        with pytest.raises(ValidationError):
            _create(owner, customer, invoice_product, status="paid")

    def test_unknown_customer_rejected(self, db_session, owner, customer, invoice_product):
        with pytest.raises(ValidationError):
            _create(owner, customer, invoice_product, customer_id=99999)

    def test_foreign_customer_rejected(self, db_session, owner, other_owner, customer, invoice_product):
        with pytest.raises(ValidationError):
            _create(other_owner, customer, invoice_product)

    def test_foreign_product_rejected(self, db_session, owner, other_owner, customer):
        foreign = make_product(db_session, other_owner, sku="B-1")
        with pytest.raises(ValidationError):
            _create(owner, customer, foreign)


class TestUpdateInvoice:
    def test_replacing_lines_recomputes(self, db_session, owner, customer, invoice_product):
        invoice = _create(owner, customer, invoice_product)
        updated = invoice_service.update_invoice(
            owner_id=owner.id,
            invoice_id=invoice.id,
            patch={"lines": [{"product_id": invoice_product.id, "quantity": 3, "unit_price_cents": None}]},
            now=NOW,
        )
        assert updated.subtotal_cents == 15_000
        assert updated.discount_cents == 0
        assert updated.tax_cents == 0
        assert updated.total_cents == 15_000
        assert updated.remaining_cents == 15_000
        assert len(updated.lines) == 1

    def test_changing_terms_rederives_due_date(self, db_session, owner, customer, invoice_product):
        invoice = _create(owner, customer, invoice_product)
        updated = invoice_service.update_invoice(
            owner_id=owner.id, invoice_id=invoice.id, patch={"payment_terms": "net15"}, now=NOW,
        )
        assert updated.due_date == datetime(2024, 1, 16)

    def test_changing_issue_date_rederives_due_date(self, db_session, owner, customer, invoice_product):
        invoice = _create(owner, customer, invoice_product)
        updated = invoice_service.update_invoice(
            owner_id=owner.id, invoice_id=invoice.id, patch={"issue_date": datetime(2024, 2, 1)}, now=NOW,
        )
        assert updated.due_date == datetime(2024, 3, 2)

    def test_clearing_due_date_rederives_from_terms(self, db_session, owner, customer, invoice_product):
        invoice = _create(owner, customer, invoice_product, due_date=datetime(2024, 6, 1))
        updated = invoice_service.update_invoice(
            owner_id=owner.id, invoice_id=invoice.id, patch={"due_date": None}, now=NOW,
        )
        assert updated.due_date == datetime(2024, 1, 31)

    def test_new_terms_with_lines_rederives_due_date(self, db_session, owner, customer, invoice_product):
        invoice = _create(owner, customer, invoice_product)
        updated = invoice_service.update_invoice(
            owner_id=owner.id,
            invoice_id=invoice.id,
            patch={
                "payment_terms": "immediate",
                "lines": [{"product_id": invoice_product.id, "quantity": 1, "unit_price_cents": None}],
            },
            now=datetime(2023, 12, 1),
        )
        assert updated.due_date == ISSUE
        assert updated.total_cents == 5_000

    @pytest.mark.parametrize("field", ["currency", "payment_terms", "status", "issue_date"])
    def test_null_for_required_field_rejected(self, db_session, owner, customer, invoice_product, field):
        invoice = _create(owner, customer, invoice_product)
        with pytest.raises(ValidationError):
            invoice_service.update_invoice(owner_id=owner.id, invoice_id=invoice.id, patch={field: None}, now=NOW)

        db_session.refresh(invoice)
        assert invoice.currency == "NGN"
        assert invoice.payment_terms == "net30"

    def test_cancel_partially_paid_invoice(self, db_session, owner, customer, invoice_product):
        invoice = _create(owner, customer, invoice_product, due_date=datetime(2099, 1, 1), status="sent")
        invoice = invoice_service.record_payment(owner_id=owner.id, invoice_id=invoice.id, amount_cents=1_000, now=NOW)
        assert invoice.status == "partial"

        cancelled = invoice_service.update_invoice(
            owner_id=owner.id, invoice_id=invoice.id, patch={"status": "cancelled"}, now=NOW,
        )
        assert cancelled.status == "cancelled"
        assert cancelled.payment_status == "partial"
        assert cancelled.remaining_cents == 8_500

    def test_inactive_product_rejected(self, db_session, owner, customer, invoice_product):
        invoice = _create(owner, customer, invoice_product)
        invoice_product.is_active = False
        db_session.commit()

        with pytest.raises(ValidationError):
            invoice_service.update_invoice(
                owner_id=owner.id,
                invoice_id=invoice.id,
                patch={"lines": [{"product_id": invoice_product.id, "quantity": 1, "unit_price_cents": None}]},
                now=NOW,
            )
        with pytest.raises(ValidationError):
            _create(owner, customer, invoice_product)

    def test_manual_status_change(self, db_session, owner, customer, invoice_product):
        invoice = _create(owner, customer, invoice_product)
        updated = invoice_service.update_invoice(
            owner_id=owner.id, invoice_id=invoice.id, patch={"status": "sent"}, now=NOW,
        )
        assert updated.status == "sent"

    def test_derived_fields_not_writable(self, db_session, owner, customer, invoice_product):
        invoice = _create(owner, customer, invoice_product)
        with pytest.raises(ValidationError):
            invoice_service.update_invoice(
                owner_id=owner.id, invoice_id=invoice.id, patch={"total_cents": 1}, now=NOW,
            )

    def test_other_owner_cannot_update(self, db_session, owner, other_owner, customer, invoice_product):
        invoice = _create(owner, customer, invoice_product)
        with pytest.raises(NotFoundError):
            invoice_service.update_invoice(
                owner_id=other_owner.id, invoice_id=invoice.id, patch={"notes": "x"}, now=NOW,
            )


class TestPayments:
    def test_partial_then_full(self, db_session, owner, customer, invoice_product):
        invoice = _create(owner, customer, invoice_product)

        invoice = invoice_service.record_payment(
            owner_id=owner.id, invoice_id=invoice.id, amount_cents=4_000,
            payment_method="transfer", now=datetime(2024, 1, 10),
        )
        assert invoice.paid_cents == 4_000
        assert invoice.remaining_cents == 5_500
        assert invoice.payment_status == "partial"
        assert invoice.status == "partial"
        assert invoice.paid_date is None

        paid_at = datetime(2024, 1, 20)
        invoice = invoice_service.record_payment(
            owner_id=owner.id, invoice_id=invoice.id, amount_cents=5_500, now=paid_at,
        )
        assert invoice.remaining_cents == 0
        assert invoice.payment_status == "paid"
        assert invoice.status == "paid"
        assert invoice.paid_date == paid_at
        assert invoice.payment_method == "transfer"

    def test_late_payment_clears_overdue(self, db_session, owner, customer, invoice_product):
        invoice = _create(owner, customer, invoice_product)
        invoice = invoice_service.record_payment(
            owner_id=owner.id, invoice_id=invoice.id, amount_cents=9_500, now=datetime(2024, 3, 1),
        )
        assert invoice.status == "paid"

    def test_overpayment_rejected(self, db_session, owner, customer, invoice_product):
        invoice = _create(owner, customer, invoice_product)
        with pytest.raises(ValidationError):
            invoice_service.record_payment(owner_id=owner.id, invoice_id=invoice.id, amount_cents=9_501, now=NOW)

        db_session.refresh(invoice)
        assert invoice.paid_cents == 0

    def test_non_positive_amount_rejected(self, db_session, owner, customer, invoice_product):
        invoice = _create(owner, customer, invoice_product)
        with pytest.raises(ValidationError):
            invoice_service.record_payment(owner_id=owner.id, invoice_id=invoice.id, amount_cents=0, now=NOW)

    def test_cancelled_invoice_rejects_payment(self, db_session, owner, customer, invoice_product):
        invoice = _create(owner, customer, invoice_product)
        invoice_service.update_invoice(owner_id=owner.id, invoice_id=invoice.id, patch={"status": "cancelled"}, now=NOW)
        with pytest.raises(ValidationError):
            invoice_service.record_payment(owner_id=owner.id, invoice_id=invoice.id, amount_cents=100, now=NOW)


class TestRefreshOverdue:
    def test_marks_only_past_due_unpaid(self, db_session, owner, customer, invoice_product):
        late = _create(owner, customer, invoice_product, status="sent")
        not_due = _create(owner, customer, invoice_product, due_date=datetime(2024, 6, 1), status="sent")
        paid = _create(owner, customer, invoice_product, paid_cents=9_500)

        changed = invoice_service.refresh_overdue(owner_id=owner.id, now=datetime(2024, 3, 1))
        assert changed == 1

        db_session.expire_all()
        assert db_session.get(Invoice, late.id).status == "overdue"
        assert db_session.get(Invoice, not_due.id).status == "sent"
        assert db_session.get(Invoice, paid.id).status == "paid"

        assert invoice_service.refresh_overdue(owner_id=owner.id, now=datetime(2024, 3, 1)) == 0

    def test_scoped_to_owner(self, db_session, owner, other_owner, customer, invoice_product):
        _create(owner, customer, invoice_product)
        assert invoice_service.refresh_overdue(owner_id=other_owner.id, now=datetime(2024, 3, 1)) == 0

    def test_skips_cancelled(self, db_session, owner, customer, invoice_product):
        invoice = _create(owner, customer, invoice_product)
        invoice_service.update_invoice(owner_id=owner.id, invoice_id=invoice.id, patch={"status": "cancelled"}, now=NOW)
        assert invoice_service.refresh_overdue(owner_id=owner.id, now=datetime(2024, 3, 1)) == 0


class TestQueries:
    def test_list_filters_and_isolation(self, db_session, owner, other_owner, customer, invoice_product):
        _create(owner, customer, invoice_product)
        _create(owner, customer, invoice_product, paid_cents=9_500)

        assert invoice_service.list_invoices(owner_id=owner.id)["count"] == 2
        assert invoice_service.list_invoices(owner_id=owner.id, payment_status="paid")["count"] == 1
        assert invoice_service.list_invoices(owner_id=other_owner.id)["count"] == 0

        page = invoice_service.list_invoices(owner_id=owner.id, page=1, per_page=1)
        assert page["pagination"]["total"] == 2
        assert page["pagination"]["has_next"] is True

    def test_get_other_owner_invoice_not_found(self, db_session, owner, other_owner, customer, invoice_product):
        invoice = _create(owner, customer, invoice_product)
        with pytest.raises(NotFoundError):
            invoice_service.get_invoice(owner_id=other_owner.id, invoice_id=invoice.id)
