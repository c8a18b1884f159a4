# Overview: Pytest coverage for electronic invoice issuing and submission state.

"""
Electronic invoice tests.

Verifies:
- only completed sales are invoiced, once
- consecutive numbering per prefix and a SHA-1 CUFE
- draft -> sent -> accepted/rejected, cancellation from draft or rejected
- sending is blocked while issuer or customer data is incomplete
"""

import re

import pytest

from wms.extensions import db
from wms.models import ElectronicInvoice, Sale
from wms.services import invoice_service, sales_service
from wms.services.invoice_service import InvoiceError
from wms.validation import ValidationError


def _completed_sale(user, product, **header):
    sale = sales_service.create_sale(
        header=header,
        items=[{"product_id": product.id, "quantity": 2}],
        user_id=user.id,
    )
    sales_service.complete_sale(sale.id, user.id)
    db.session.commit()
    return sale


def _issue(sale_id):
    invoice = invoice_service.create_invoice_for_sale(sale_id)
    db.session.commit()
    return invoice


class TestIssueInvoice:
    """create_invoice_for_sale"""

    def test_snapshot_of_sale_and_customer(self, db_session, user, customer, product):
        sale = _completed_sale(user, product, customer_id=customer.id, payment_method="card")

        invoice = _issue(sale.id)

        assert invoice.status == "draft"
        assert invoice.invoice_number == "SETP00000001"
        assert invoice.consecutive_number == 1
        assert invoice.total_cents == 4_760
        assert invoice.tax_cents == 760
        assert invoice.customer_document_type == "NIT"
        assert invoice.customer_document_number == "800555111"
        assert invoice.issuer_nit == "900123456"

    def test_consecutive_numbers(self, db_session, user, customer, product):
        first = _issue(_completed_sale(user, product, customer_id=customer.id).id)
        second = _issue(_completed_sale(user, product, customer_id=customer.id).id)

        assert first.invoice_number == "SETP00000001"
        assert second.invoice_number == "SETP00000002"

    def test_cufe_is_sha1_of_invoice_data(self, app, db_session, user, customer, product):
        invoice = _issue(_completed_sale(user, product, customer_id=customer.id).id)

        assert re.fullmatch(r"[0-9a-f]{40}", invoice.cufe)
        assert invoice.cufe == invoice_service.compute_cufe(
            invoice, technical_key="test-technical-key", environment="2",
        )
        assert invoice.cufe != invoice_service.compute_cufe(
            invoice, technical_key="other-key", environment="2",
        )

    def test_idempotent(self, db_session, user, customer, product):
        sale = _completed_sale(user, product, customer_id=customer.id)

        first = _issue(sale.id)
        again = _issue(sale.id)

        assert again.id == first.id
        assert db_session.query(ElectronicInvoice).filter_by(sale_id=sale.id).count() == 1

    def test_draft_sale_rejected(self, db_session, user, product):
        sale = sales_service.create_sale(
            header={}, items=[{"product_id": product.id, "quantity": 1}], user_id=user.id,
        )
        db_session.commit()

        with pytest.raises(InvoiceError, match="Cannot invoice sale in draft status"):
            invoice_service.create_invoice_for_sale(sale.id)


class TestInvoiceSubmission:
    """Sending and recording the authority's response."""

    def test_send_marks_sale(self, db_session, user, customer, product):
        sale = _completed_sale(user, product, customer_id=customer.id)
        invoice = _issue(sale.id)

        invoice_service.send_invoice(invoice.id)
        db_session.commit()

        invoice = db_session.get(ElectronicInvoice, invoice.id)
        assert invoice.status == "sent"
        assert invoice.sent_at is not None
        assert db_session.get(Sale, sale.id).electronic_invoice_sent is True

    def test_send_without_customer_lists_missing_fields(self, db_session, user, product):
        invoice = _issue(_completed_sale(user, product).id)

        with pytest.raises(InvoiceError, match="missing required fields") as exc_info:
            invoice_service.send_invoice(invoice.id)

        errors = exc_info.value.details["errors"]
        assert "customer_document_type is required" in errors
        assert "customer_document_number is required" in errors
        assert "customer_name is required" in errors

    def test_accepted_response(self, db_session, user, customer, product):
        invoice = _issue(_completed_sale(user, product, customer_id=customer.id).id)
        invoice_service.send_invoice(invoice.id)

        invoice_service.record_invoice_response(
            invoice.id, outcome="accepted", response_code="00", response_message="Procesado Correctamente",
        )
        db_session.commit()

        invoice = db_session.get(ElectronicInvoice, invoice.id)
        assert invoice.status == "accepted"
        assert invoice.response_code == "00"
        assert invoice.responded_at is not None

    def test_response_requires_sent(self, db_session, user, customer, product):
        invoice = _issue(_completed_sale(user, product, customer_id=customer.id).id)

        with pytest.raises(InvoiceError, match="Cannot record a response"):
            invoice_service.record_invoice_response(invoice.id, outcome="accepted")

    def test_unknown_outcome(self, db_session, user, customer, product):
        invoice = _issue(_completed_sale(user, product, customer_id=customer.id).id)
        invoice_service.send_invoice(invoice.id)

        with pytest.raises(ValidationError):
            invoice_service.record_invoice_response(invoice.id, outcome="maybe")

    def test_cancel_after_rejection(self, db_session, user, customer, product):
        invoice = _issue(_completed_sale(user, product, customer_id=customer.id).id)
        invoice_service.send_invoice(invoice.id)
        invoice_service.record_invoice_response(invoice.id, outcome="rejected", response_code="99")

        cancelled = invoice_service.cancel_invoice(invoice.id)
        db_session.commit()

        assert cancelled.status == "cancelled"
        assert cancelled.cancelled_at is not None

    def test_sent_invoice_cannot_be_cancelled(self, db_session, user, customer, product):
        invoice = _issue(_completed_sale(user, product, customer_id=customer.id).id)
        invoice_service.send_invoice(invoice.id)

        with pytest.raises(InvoiceError, match="Cannot cancel invoice in sent status"):
            invoice_service.cancel_invoice(invoice.id)


class TestInvoiceApi:
    """HTTP surface of /api/electronic-invoices."""

    def test_issue_send_accept(self, client, db_session, user, customer, product, headers):
        sale = _completed_sale(user, product, customer_id=customer.id)

        resp = client.post("/api/electronic-invoices", headers=headers, json={"sale_id": sale.id})
        assert resp.status_code == 201
        invoice_id = resp.get_json()["data"]["id"]

        resp = client.get(f"/api/electronic-invoices/{invoice_id}")
        assert resp.get_json()["data"]["validation_errors"] == []

        assert client.post(f"/api/electronic-invoices/{invoice_id}/send", headers=headers).status_code == 200
        resp = client.post(f"/api/electronic-invoices/{invoice_id}/response", headers=headers,
                           json={"outcome": "accepted", "response_code": "00"})
        assert resp.status_code == 200
        assert resp.get_json()["data"]["status"] == "accepted"

    def test_issue_from_sale_route(self, client, db_session, user, customer, product, headers):
        sale = _completed_sale(user, product, customer_id=customer.id)

        resp = client.post(f"/api/sales/{sale.id}/electronic-invoice", headers=headers)
        assert resp.status_code == 201
        assert resp.get_json()["data"]["sale_id"] == sale.id

    def test_sale_id_required(self, client, db_session, headers):
        resp = client.post("/api/electronic-invoices", headers=headers, json={})
        assert resp.status_code == 422
        assert resp.get_json()["errors"] == {"sale_id": "is required"}

    def test_send_with_missing_fields_is_422(self, client, db_session, user, product, headers):
        invoice = _issue(_completed_sale(user, product).id)

        resp = client.post(f"/api/electronic-invoices/{invoice.id}/send", headers=headers)
        assert resp.status_code == 422
        assert "customer_name is required" in resp.get_json()["details"]["errors"]
