# Overview: Pytest coverage for sale pricing, completion and cancellation.

"""
Sales tests.

Verifies:
- line pricing in integer cents with basis-point tax (half-up rounding)
- drafts never touch stock; completion writes one "sale" movement per line
- cash/card completion records a full payment, credit sales get a due date
- a conflict while recording the completion payment re-runs the whole completion
- cancelling a completed sale restores stock and cancels its payments
- cancelling a draft cancels payments already taken against it
"""

from datetime import timedelta

import pytest
from sqlalchemy.orm.exc import StaleDataError

from wms.extensions import db
from wms.models import Customer, Payment, Product, Sale, StockMovement
from wms.services import payment_service, sales_service
from wms.services.concurrency import run_in_transaction
from wms.services.products_service import adjust_stock
from wms.services.sales_service import SaleError
from wms.validation import ValidationError


def _sale(user, items, **header):
    sale = sales_service.create_sale(header=header, items=items, user_id=user.id)
    db.session.commit()
    return sale


def _completed(user, items, **header):
    sale = _sale(user, items, **header)
    sales_service.complete_sale(sale.id, user.id)
    db.session.commit()
    return sale


def _sale_movements(sale_id):
    return (
        db.session.query(StockMovement)
        .filter_by(reference_type="sale", reference_id=sale_id)
        .order_by(StockMovement.id)
        .all()
    )


# =============================================================================
# PRICING
# =============================================================================

class TestSalePricing:
    """Totals are computed per line, then the header discount comes off."""

    def test_line_tax(self, db_session, user, product):
        sale = _sale(user, [{"product_id": product.id, "quantity": 3}])

        assert sale.status == "draft"
        assert sale.sale_number.startswith("VTA")
        assert sale.sale_number.endswith("0001")
        assert sale.subtotal_cents == 6_000
        assert sale.tax_cents == 1_140
        assert sale.total_cents == 7_140
        assert sale.items[0].tax_rate_bps == 1900

    def test_line_discount_is_taxed_after(self, db_session, user, product):
        sale = _sale(user, [{"product_id": product.id, "quantity": 2, "discount_cents": 500}])

        line = sale.items[0]
        assert line.subtotal_cents == 4_000
        assert line.tax_cents == 665
        assert line.total_cents == 4_165

    def test_tax_rounds_half_up(self, db_session, user, product):
        # 250 * 19% = 47.5 cents
        sale = _sale(user, [{"product_id": product.id, "quantity": 1, "unit_price_cents": 250}])
        assert sale.items[0].tax_cents == 48

    def test_header_discount(self, db_session, user, product):
        sale = _sale(user, [{"product_id": product.id, "quantity": 3}], discount_cents=1_000)
        assert sale.total_cents == 6_140

    def test_line_discount_above_subtotal_rejected(self, db_session, user, product):
        with pytest.raises(ValidationError):
            sales_service.create_sale(
                header={},
                items=[{"product_id": product.id, "quantity": 1, "discount_cents": 5_000}],
                user_id=user.id,
            )

    def test_large_sale_requires_electronic_invoice(self, db_session, user, make_product):
        expensive = make_product(sku="SKU-TV", name="Television", quantity=2, price=10_000_000)
        sale = _sale(user, [{"product_id": expensive.id, "quantity": 1}])
        assert sale.requires_electronic_invoice is True


# =============================================================================
# COMPLETION
# =============================================================================

class TestSaleCompletion:
    """Stock decrement and settlement at completion."""

    def test_draft_does_not_touch_stock(self, db_session, user, product):
        sale = _sale(user, [{"product_id": product.id, "quantity": 3}])

        assert db_session.get(Product, product.id).quantity == 10
        assert _sale_movements(sale.id) == []

    def test_cash_sale_is_paid_on_completion(self, db_session, user, main_warehouse, product):
        sale = _completed(user, [{"product_id": product.id, "quantity": 3}],
                          payment_method="cash", warehouse_id=main_warehouse.id)

        sale = db_session.get(Sale, sale.id)
        assert sale.status == "completed"
        assert sale.sale_date is not None
        assert sale.payment_status == "paid"
        assert sale.invoice_number is None
        assert [(p.amount_cents, p.status) for p in sale.payments] == [(7_140, "completed")]

        movements = _sale_movements(sale.id)
        assert [(m.type, m.quantity_delta, m.new_quantity) for m in movements] == [("sale", -3, 7)]
        assert movements[0].warehouse_id == main_warehouse.id
        assert db_session.get(Product, product.id).quantity == 7

    def test_card_sale_gets_invoice_number(self, db_session, user, product):
        sale = _completed(user, [{"product_id": product.id, "quantity": 1}], payment_method="card")

        sale = db_session.get(Sale, sale.id)
        assert sale.invoice_number.startswith("FAC")
        assert sale.payment_status == "paid"

    def test_credit_sale_uses_customer_terms(self, db_session, user, customer, product):
        sale = _completed(user, [{"product_id": product.id, "quantity": 2}],
                          payment_method="credit", customer_id=customer.id)

        sale = db_session.get(Sale, sale.id)
        assert sale.payment_status == "pending"
        assert sale.payments == []
        assert sale.invoice_number.startswith("FAC")
        assert sale.due_date - sale.invoice_date == timedelta(days=30)
        assert db_session.get(Customer, customer.id).available_credit_cents == 500_000 - 4_760

    def test_credit_sale_needs_customer(self, db_session, user, product):
        sale = _sale(user, [{"product_id": product.id, "quantity": 1}], payment_method="credit")

        with pytest.raises(SaleError, match="require a customer"):
            sales_service.complete_sale(sale.id, user.id)

    def test_credit_limit_exceeded(self, db_session, user, customer, make_product):
        expensive = make_product(sku="SKU-SAFE", name="Safe", quantity=3, price=1_000_000)
        sale = _sale(user, [{"product_id": expensive.id, "quantity": 1}],
                     payment_method="credit", customer_id=customer.id)

        with pytest.raises(SaleError, match="credit limit") as exc_info:
            sales_service.complete_sale(sale.id, user.id)
        assert exc_info.value.details["available_credit_cents"] == 500_000

    def test_insufficient_stock_at_creation(self, db_session, user, product):
        with pytest.raises(SaleError, match="Insufficient stock") as exc_info:
            sales_service.create_sale(
                header={}, items=[{"product_id": product.id, "quantity": 11}], user_id=user.id,
            )
        shortage = exc_info.value.details["items"][0]
        assert shortage["requested_quantity"] == 11
        assert shortage["on_hand"] == 10

    def test_stock_consumed_before_completion(self, db_session, user, product):
        sale = _sale(user, [{"product_id": product.id, "quantity": 6}])
        adjust_stock(product.id, mode="subtract", quantity=5, user_id=user.id)
        db_session.commit()

        with pytest.raises(SaleError, match="Insufficient stock"):
            run_in_transaction(lambda: sales_service.complete_sale(sale.id, user.id))

        assert db_session.get(Sale, sale.id).status == "draft"
        assert db_session.get(Product, product.id).quantity == 5
        assert _sale_movements(sale.id) == []

    def test_complete_twice_rejected(self, db_session, user, product):
        sale = _completed(user, [{"product_id": product.id, "quantity": 1}])

        with pytest.raises(SaleError, match="Cannot complete sale in completed status"):
            sales_service.complete_sale(sale.id, user.id)

    def test_conflict_while_recording_payment_reruns_completion(self, db_session, user, product, monkeypatch):
        sale = _sale(user, [{"product_id": product.id, "quantity": 3}], payment_method="cash")
        sale_id, product_id = sale.id, product.id
        original = payment_service.update_sale_payment_status
        calls = []

        def conflicting_once(target):
            calls.append(target.id)
            if len(calls) == 1:
                raise StaleDataError("sale row changed by another request")
            return original(target)

        monkeypatch.setattr(payment_service, "update_sale_payment_status", conflicting_once)
        run_in_transaction(lambda: sales_service.complete_sale(sale_id, user.id))

        db_session.expire_all()
        sale = db_session.get(Sale, sale_id)
        assert calls == [sale_id, sale_id]
        assert sale.status == "completed"
        assert sale.payment_status == "paid"
        assert [(p.amount_cents, p.status) for p in sale.payments] == [(7_140, "completed")]
        assert [m.quantity_delta for m in _sale_movements(sale_id)] == [-3]
        assert db_session.get(Product, product_id).quantity == 7


# =============================================================================
# EDITING AND CANCELLATION
# =============================================================================

class TestSaleCancellation:
    """Cancelling restores what completion took."""

    def test_cancel_completed_sale_restores_stock(self, db_session, user, product):
        sale = _completed(user, [{"product_id": product.id, "quantity": 3}])

        sales_service.cancel_sale(sale.id, user.id, reason="Customer returned")
        db_session.commit()

        sale = db_session.get(Sale, sale.id)
        assert sale.status == "cancelled"
        assert sale.cancelled_at is not None
        assert "Customer returned" in sale.notes
        assert [m.type for m in _sale_movements(sale.id)] == ["sale", "sale_cancellation"]
        assert db_session.get(Product, product.id).quantity == 10
        assert all(p.status == "cancelled" for p in sale.payments)
        assert sale.payment_status == "pending"

    def test_cancel_draft_writes_nothing(self, db_session, user, product):
        sale = _sale(user, [{"product_id": product.id, "quantity": 3}])

        sales_service.cancel_sale(sale.id, user.id)
        db_session.commit()

        assert _sale_movements(sale.id) == []
        with pytest.raises(SaleError, match="already cancelled"):
            sales_service.cancel_sale(sale.id, user.id)

    def test_cancel_draft_cancels_its_payments(self, db_session, user, product):
        sale = _sale(user, [{"product_id": product.id, "quantity": 1}], payment_method="transfer")
        payment_service.create_payment(sale_id=sale.id, payment_method="transfer",
                                       amount_cents=2_380, user_id=user.id)
        db_session.commit()
        assert db_session.get(Sale, sale.id).payment_status == "paid"

        sales_service.cancel_sale(sale.id, user.id)
        db_session.commit()

        sale = db_session.get(Sale, sale.id)
        assert sale.status == "cancelled"
        assert [p.status for p in sale.payments] == ["cancelled"]
        assert sale.payment_status == "pending"
        assert _sale_movements(sale.id) == []
        assert db_session.get(Product, product.id).quantity == 10

    def test_update_draft_replaces_lines(self, db_session, user, product, make_product):
        pen = make_product(sku="SKU-PEN", name="Pen", quantity=50, price=1_000)
        sale = _sale(user, [{"product_id": product.id, "quantity": 3}])

        sales_service.update_sale(sale.id, header={"notes": "Phone order"},
                                  items=[{"product_id": pen.id, "quantity": 5}])
        db_session.commit()

        sale = db_session.get(Sale, sale.id)
        assert [(i.product_id, i.quantity) for i in sale.items] == [(pen.id, 5)]
        assert sale.total_cents == 5_950
        assert sale.notes == "Phone order"

    def test_completed_sale_is_not_editable_or_deletable(self, db_session, user, product):
        sale = _completed(user, [{"product_id": product.id, "quantity": 1}])

        with pytest.raises(SaleError, match="Cannot edit"):
            sales_service.update_sale(sale.id, header={"notes": "late"})
        with pytest.raises(SaleError, match="Cannot delete"):
            sales_service.delete_sale(sale.id)

    def test_delete_draft(self, db_session, user, product):
        sale = _sale(user, [{"product_id": product.id, "quantity": 1}])
        sale_id = sale.id

        sales_service.delete_sale(sale_id)
        db_session.commit()

        assert db_session.get(Sale, sale_id) is None


# =============================================================================
# API
# =============================================================================

class TestSalesApi:
    """HTTP surface of /api/sales."""

    def test_create_and_complete(self, client, db_session, product, headers):
        product_id = product.id
        resp = client.post("/api/sales", headers=headers, json={
            "payment_method": "cash",
            "items": [{"product_id": product_id, "quantity": 2}],
        })
        assert resp.status_code == 201
        body = resp.get_json()
        assert body["success"] is True
        sale_id = body["data"]["id"]
        assert body["data"]["total_cents"] == 4_760

        resp = client.post(f"/api/sales/{sale_id}/complete", headers=headers)
        assert resp.status_code == 200
        data = resp.get_json()["data"]
        assert data["status"] == "completed"
        assert data["payment_status"] == "paid"
        assert data["pending_balance_cents"] == 0

        db_session.expire_all()
        assert db_session.get(Product, product_id).quantity == 8
        assert db_session.query(Payment).filter_by(sale_id=sale_id).count() == 1

    def test_insufficient_stock_is_422_with_details(self, client, db_session, product, headers):
        resp = client.post("/api/sales", headers=headers, json={
            "items": [{"product_id": product.id, "quantity": 99}],
        })
        assert resp.status_code == 422
        body = resp.get_json()
        assert body["success"] is False
        assert body["details"]["items"][0]["on_hand"] == 10

    @pytest.mark.parametrize("raw, expected", [("false", False), ("0", False), ("true", True), (True, True)])
    def test_electronic_invoice_flag_parsing(self, client, db_session, product, headers, raw, expected):
        resp = client.post("/api/sales", headers=headers, json={
            "requires_electronic_invoice": raw,
            "items": [{"product_id": product.id, "quantity": 1}],
        })
        assert resp.status_code == 201
        assert resp.get_json()["data"]["requires_electronic_invoice"] is expected

    def test_empty_items_rejected(self, client, db_session, headers):
        resp = client.post("/api/sales", headers=headers, json={"items": []})
        assert resp.status_code == 422
        assert "items" in resp.get_json()["errors"]

    def test_list_filters_by_status(self, client, db_session, user, product):
        _sale(user, [{"product_id": product.id, "quantity": 1}])
        _completed(user, [{"product_id": product.id, "quantity": 1}])

        resp = client.get("/api/sales?status=completed")
        data = resp.get_json()["data"]
        assert data["count"] == 1
        assert data["items"][0]["status"] == "completed"
        assert "items" not in data["items"][0]
