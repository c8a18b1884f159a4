# Overview: Pytest coverage for payments and the derived sale payment status.

"""
Payment tests.

Verifies:
- split payments move a sale from pending to partial to paid
- the amount can never exceed the pending balance
- pending payments are editable; completed payments are final
- overdue detection for unpaid credit sales past their due date
"""

from datetime import timedelta

import pytest

from wms.extensions import db
from wms.models import Payment, Sale
from wms.services import payment_service, sales_service
from wms.services.payment_service import PaymentError
from wms.time_utils import utcnow


@pytest.fixture
def credit_sale(db_session, user, customer, product):
    """Completed credit sale of 2 units: total 4,760 cents, nothing paid."""
    sale = sales_service.create_sale(
        header={"customer_id": customer.id, "payment_method": "credit"},
        items=[{"product_id": product.id, "quantity": 2}],
        user_id=user.id,
    )
    sales_service.complete_sale(sale.id, user.id)
    db_session.commit()
    return sale


def _pay(sale, amount, method="cash", **kwargs):
    payment = payment_service.create_payment(
        sale_id=sale.id, payment_method=method, amount_cents=amount, **kwargs
    )
    db.session.commit()
    return payment


class TestSplitPayments:
    """payment_status follows the sum of completed payments."""

    def test_partial_then_paid(self, db_session, credit_sale):
        _pay(credit_sale, 2_000)
        assert db_session.get(Sale, credit_sale.id).payment_status == "partial"

        _pay(credit_sale, 2_760, method="transfer", reference_number="TRX-99")
        sale = db_session.get(Sale, credit_sale.id)
        assert sale.payment_status == "paid"
        assert sale.pending_balance_cents == 0

    def test_amount_above_balance_rejected(self, db_session, credit_sale):
        with pytest.raises(PaymentError, match="exceeds pending balance 4760"):
            payment_service.create_payment(sale_id=credit_sale.id, payment_method="cash", amount_cents=4_761)

    def test_zero_amount_rejected(self, db_session, credit_sale):
        with pytest.raises(PaymentError, match="greater than zero"):
            payment_service.create_payment(sale_id=credit_sale.id, payment_method="cash", amount_cents=0)

    def test_cancelled_sale_rejects_payments(self, db_session, user, credit_sale):
        sales_service.cancel_sale(credit_sale.id, user.id)
        db_session.commit()

        with pytest.raises(PaymentError, match="cancelled sale"):
            payment_service.create_payment(sale_id=credit_sale.id, payment_method="cash", amount_cents=100)

    def test_summary_groups_by_method(self, db_session, credit_sale):
        _pay(credit_sale, 1_000)
        _pay(credit_sale, 500)
        _pay(credit_sale, 2_000, method="card")
        _pay(credit_sale, 1_000, method="check", status="pending")

        summary = payment_service.get_payment_summary(credit_sale.id)
        assert summary["by_method"] == {"cash": 1_500, "card": 2_000}
        assert summary["total_paid_cents"] == 3_500
        assert summary["pending_balance_cents"] == 1_260
        assert len(summary["payments"]) == 4


class TestPaymentLifecycle:
    """Pending payments can change; completed ones cannot."""

    def test_pending_payment_does_not_count(self, db_session, credit_sale):
        payment = _pay(credit_sale, 4_760, method="check", status="pending")

        sale = db_session.get(Sale, credit_sale.id)
        assert sale.payment_status == "pending"

        payment_service.complete_payment(payment.id)
        db_session.commit()
        assert db_session.get(Sale, credit_sale.id).payment_status == "paid"

    def test_edit_pending_payment(self, db_session, credit_sale):
        payment = _pay(credit_sale, 1_000, method="check", status="pending")

        payment_service.update_payment(payment.id, {"amount_cents": 1_500, "reference_number": "CHK-7"})
        db_session.commit()

        payment = db_session.get(Payment, payment.id)
        assert payment.amount_cents == 1_500
        assert payment.reference_number == "CHK-7"

    def test_completed_payment_is_final(self, db_session, credit_sale):
        payment = _pay(credit_sale, 1_000)

        with pytest.raises(PaymentError, match="Cannot edit"):
            payment_service.update_payment(payment.id, {"amount_cents": 500})
        with pytest.raises(PaymentError, match="Cannot cancel a completed payment"):
            payment_service.cancel_payment(payment.id)
        with pytest.raises(PaymentError, match="Cannot delete a completed payment"):
            payment_service.delete_payment(payment.id)

    def test_cancel_and_delete_pending(self, db_session, credit_sale):
        first = _pay(credit_sale, 1_000, method="check", status="pending")
        second = _pay(credit_sale, 1_000, method="check", status="pending")
        second_id = second.id

        payment_service.cancel_payment(first.id)
        payment_service.delete_payment(second_id)
        db_session.commit()

        assert db_session.get(Payment, first.id).status == "cancelled"
        assert db_session.get(Payment, first.id).cancelled_at is not None
        assert db_session.get(Payment, second_id) is None
        with pytest.raises(PaymentError, match="already cancelled"):
            payment_service.cancel_payment(first.id)


class TestOverdue:
    """Unpaid credit sales past their due date."""

    def _expire(self, sale_id):
        sale = db.session.get(Sale, sale_id)
        sale.due_date = utcnow() - timedelta(days=1)
        db.session.commit()

    def test_refresh_marks_overdue(self, db_session, credit_sale):
        self._expire(credit_sale.id)

        assert payment_service.refresh_overdue_sales() == 1
        db_session.commit()

        sale = db_session.get(Sale, credit_sale.id)
        assert sale.payment_status == "overdue"
        assert sale.is_overdue is True
        assert payment_service.refresh_overdue_sales() == 0

    def test_partial_payment_stays_overdue(self, db_session, credit_sale):
        self._expire(credit_sale.id)

        _pay(credit_sale, 1_000)
        assert db_session.get(Sale, credit_sale.id).payment_status == "overdue"

        _pay(credit_sale, 3_760)
        assert db_session.get(Sale, credit_sale.id).payment_status == "paid"

    def test_cash_sale_is_never_overdue(self, db_session, user, product):
        sale = sales_service.create_sale(
            header={"payment_method": "cash"},
            items=[{"product_id": product.id, "quantity": 1}],
            user_id=user.id,
        )
        sales_service.complete_sale(sale.id, user.id)
        db_session.commit()

        assert payment_service.refresh_overdue_sales() == 0


class TestPaymentsApi:
    """HTTP surface of /api/payments."""

    def test_add_payment_returns_summary(self, client, db_session, credit_sale, headers):
        resp = client.post("/api/payments", headers=headers, json={
            "sale_id": credit_sale.id,
            "payment_method": "card",
            "amount_cents": 760,
            "reference_number": "AUTH-1",
        })
        assert resp.status_code == 201
        data = resp.get_json()["data"]
        assert data["payment"]["status"] == "completed"
        assert data["summary"]["pending_balance_cents"] == 4_000
        assert data["summary"]["payment_status"] == "partial"

    def test_overpayment_is_422(self, client, db_session, credit_sale, headers):
        resp = client.post("/api/payments", headers=headers, json={
            "sale_id": credit_sale.id,
            "payment_method": "cash",
            "amount_cents": 10_000,
        })
        assert resp.status_code == 422
        assert "exceeds pending balance" in resp.get_json()["message"]

    def test_missing_fields(self, client, db_session, headers):
        resp = client.post("/api/payments", headers=headers, json={"payment_method": "cash"})
        assert resp.status_code == 422
        assert {"sale_id", "amount_cents"} <= set(resp.get_json()["errors"])

    def test_status_cannot_be_edited(self, client, db_session, credit_sale, headers):
        payment = _pay(credit_sale, 1_000, method="check", status="pending")

        resp = client.put(f"/api/payments/{payment.id}", headers=headers, json={"status": "completed"})
        assert resp.status_code == 422

    def test_summary_endpoint(self, client, db_session, credit_sale):
        _pay(credit_sale, 1_000)

        resp = client.get(f"/api/payments/sales/{credit_sale.id}")
        assert resp.status_code == 200
        assert resp.get_json()["data"]["by_method"] == {"cash": 1_000}
