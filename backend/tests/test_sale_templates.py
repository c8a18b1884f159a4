# Overview: Pytest coverage for sale templates and sales created from them.

"""
Sale template tests.

Verifies:
- the estimated total uses the same line pricing as a real sale
- creating a sale from a template yields a draft and counts the use
- inactive templates and templates without existing products cannot be used
- a failed sale creation leaves the usage counter untouched
- duplicates start with fresh usage counters
- listing sorts by usage; most-used skips inactive templates
"""

import pytest

from wms.extensions import db
from wms.models import Product, Sale, SaleTemplate, StockMovement
from wms.services import sale_template_service
from wms.services.concurrency import run_in_transaction
from wms.services.sale_template_service import SaleTemplateError
from wms.services.sales_service import SaleError
from wms.validation import ValidationError


def _template(user, items, **patch):
    patch.setdefault("name", "Weekly restock")
    template = sale_template_service.create_template(patch, items=items, user_id=user.id)
    db.session.commit()
    return template


# =============================================================================
# Pricing and validation
# =============================================================================

class TestTemplatePricing:
    """Estimated totals and line validation."""

    def test_estimate_uses_product_tax(self, db_session, user, product):
        template = _template(user, [{"product_id": product.id, "quantity": 2}])

        data = sale_template_service.serialize_template(template)
        assert data["estimated_total_cents"] == 4_760
        assert data["lines"][0]["unit_price_cents"] == 2_000
        assert data["lines"][0]["tax_rate_bps"] == 1900

    def test_discount_applies_before_tax(self, db_session, user, product):
        template = _template(user, [{"product_id": product.id, "quantity": 3}], discount_bps=1000)

        line = sale_template_service.serialize_template(template)["lines"][0]
        assert line["subtotal_cents"] == 6_000
        assert line["discount_cents"] == 600
        assert line["tax_cents"] == 1_026
        assert line["total_cents"] == 6_426

    def test_tax_override(self, db_session, user, product):
        template = _template(user, [{"product_id": product.id, "quantity": 2}], tax_rate_bps=0)

        assert sale_template_service.serialize_template(template)["estimated_total_cents"] == 4_000

    def test_defaults(self, db_session, user, product):
        template = _template(user, [{"product_id": product.id, "quantity": 1, "unit_price_cents": 1}])

        assert template.payment_method == "cash"
        assert template.discount_bps == 0
        assert template.is_active is True
        assert template.usage_count == 0
        assert template.items == [{"product_id": product.id, "quantity": 1}]

    def test_unknown_product_rejected(self, db_session, user):
        with pytest.raises(ValidationError) as exc:
            _template(user, [{"product_id": 999_999, "quantity": 1}])
        assert "items.0.product_id" in exc.value.errors

    def test_empty_items_rejected(self, db_session, user):
        with pytest.raises(ValidationError):
            _template(user, [])

    def test_discount_out_of_range(self, db_session, user, product):
        with pytest.raises(ValidationError) as exc:
            _template(user, [{"product_id": product.id, "quantity": 1}], discount_bps=10_001)
        assert "discount_bps" in exc.value.errors

    def test_name_required(self, db_session, user, product):
        with pytest.raises(ValidationError):
            sale_template_service.create_template(
                {}, items=[{"product_id": product.id, "quantity": 1}], user_id=user.id,
            )


# =============================================================================
# Using a template
# =============================================================================

class TestCreateSaleFromTemplate:
    """A template becomes an ordinary draft sale."""

    def test_creates_draft_and_counts_use(self, db_session, user, customer, product):
        template = _template(
            user,
            [{"product_id": product.id, "quantity": 3}],
            customer_id=customer.id,
            discount_bps=1000,
            notes="Deliver before noon",
        )
        estimate = sale_template_service.serialize_template(template)["estimated_total_cents"]

        sale = sale_template_service.create_sale_from_template(template.id, user_id=user.id)
        db_session.commit()

        assert sale.status == "draft"
        assert sale.customer_id == customer.id
        assert sale.notes == "Deliver before noon"
        assert sale.total_cents == estimate
        assert [(i.product_id, i.quantity, i.discount_cents) for i in sale.items] == [(product.id, 3, 600)]

        db_session.expire_all()
        template = db_session.get(SaleTemplate, template.id)
        assert template.usage_count == 1
        assert template.last_used_at is not None
        # Drafts never touch stock
        assert db_session.get(Product, product.id).quantity == 10
        assert db_session.query(StockMovement).filter_by(type="sale").count() == 0

    def test_overrides_notes(self, db_session, user, product):
        template = _template(user, [{"product_id": product.id, "quantity": 1}], notes="Standard")

        sale = sale_template_service.create_sale_from_template(
            template.id, user_id=user.id, notes="Rush order",
        )
        assert sale.notes == "Rush order"

    def test_inactive_template_rejected(self, db_session, user, product):
        template = _template(user, [{"product_id": product.id, "quantity": 1}], is_active=False)

        with pytest.raises(SaleTemplateError):
            sale_template_service.create_sale_from_template(template.id, user_id=user.id)
        assert db_session.query(Sale).count() == 0

    def test_missing_products_are_skipped(self, db_session, user, make_product):
        kept = make_product(sku="SKU-KEEP", name="Pen")
        template = _template(user, [{"product_id": kept.id, "quantity": 1}])
        template.items = template.items + [{"product_id": 999_999, "quantity": 4}]
        db_session.commit()

        sale = sale_template_service.create_sale_from_template(template.id, user_id=user.id)
        assert [i.product_id for i in sale.items] == [kept.id]

    def test_no_existing_products_rejected(self, db_session, user, product):
        template = _template(user, [{"product_id": product.id, "quantity": 1}])
        template.items = [{"product_id": 999_999, "quantity": 1}]
        db_session.commit()

        with pytest.raises(SaleTemplateError):
            sale_template_service.create_sale_from_template(template.id, user_id=user.id)

    def test_failed_sale_leaves_usage_unchanged(self, db_session, user, product):
        template = _template(user, [{"product_id": product.id, "quantity": 11}])
        template_id = template.id

        with pytest.raises(SaleError):
            run_in_transaction(lambda: sale_template_service.create_sale_from_template(
                template_id, user_id=user.id,
            ))

        db_session.expire_all()
        assert db_session.get(SaleTemplate, template_id).usage_count == 0
        assert db_session.query(Sale).count() == 0


# =============================================================================
# Management
# =============================================================================

class TestTemplateManagement:
    """Duplicate, toggle, list."""

    def test_duplicate_resets_usage(self, db_session, user, approver, product):
        template = _template(user, [{"product_id": product.id, "quantity": 2}], discount_bps=500)
        sale_template_service.create_sale_from_template(template.id, user_id=user.id)
        db_session.commit()

        copy = sale_template_service.duplicate_template(template.id, approver.id)
        db_session.commit()

        assert copy.id != template.id
        assert copy.name == "Weekly restock (Copy)"
        assert copy.user_id == approver.id
        assert copy.usage_count == 0
        assert copy.last_used_at is None
        assert copy.items == template.items
        assert copy.discount_bps == 500

    def test_toggle(self, db_session, user, product):
        template = _template(user, [{"product_id": product.id, "quantity": 1}])

        assert sale_template_service.toggle_template_status(template.id).is_active is False
        assert sale_template_service.toggle_template_status(template.id).is_active is True

    def test_update_replaces_items(self, db_session, user, product, make_product):
        other = make_product(sku="SKU-002", name="Stapler")
        template = _template(user, [{"product_id": product.id, "quantity": 1}])

        sale_template_service.update_template(
            template.id, {"name": "Office kit"}, items=[{"product_id": other.id, "quantity": 2}],
        )
        db_session.commit()

        assert template.name == "Office kit"
        assert template.items == [{"product_id": other.id, "quantity": 2}]

    def test_list_sorted_by_usage(self, db_session, user, product):
        rarely = _template(user, [{"product_id": product.id, "quantity": 1}], name="Rarely")
        often = _template(user, [{"product_id": product.id, "quantity": 1}], name="Often")
        for _ in range(2):
            sale_template_service.create_sale_from_template(often.id, user_id=user.id)
        sale_template_service.create_sale_from_template(rarely.id, user_id=user.id)
        db_session.commit()

        result = sale_template_service.list_templates()
        assert [t["name"] for t in result["items"]] == ["Often", "Rarely"]

        result = sale_template_service.list_templates(sort_by="name", sort_order="asc")
        assert [t["name"] for t in result["items"]] == ["Often", "Rarely"]

        result = sale_template_service.list_templates(search="rare")
        assert [t["name"] for t in result["items"]] == ["Rarely"]

    def test_list_rejects_unknown_sort(self, db_session):
        with pytest.raises(ValidationError):
            sale_template_service.list_templates(sort_by="price")

    def test_most_used_skips_inactive(self, db_session, user, product):
        active = _template(user, [{"product_id": product.id, "quantity": 1}], name="Active")
        _template(user, [{"product_id": product.id, "quantity": 1}], name="Retired", is_active=False)

        assert [t.id for t in sale_template_service.most_used_templates()] == [active.id]


# =============================================================================
# API
# =============================================================================

class TestSaleTemplatesApi:
    """HTTP surface of /api/sale-templates."""

    def test_create_and_use(self, client, db_session, product, headers):
        resp = client.post("/api/sale-templates", headers=headers, json={
            "name": "Counter kit",
            "payment_method": "card",
            "items": [{"product_id": product.id, "quantity": 2}],
        })
        assert resp.status_code == 201
        body = resp.get_json()
        assert body["success"] is True
        template_id = body["data"]["id"]
        assert body["data"]["estimated_total_cents"] == 4_760

        resp = client.post(f"/api/sale-templates/{template_id}/create-sale", headers=headers, json={})
        assert resp.status_code == 201
        data = resp.get_json()["data"]
        assert data["status"] == "draft"
        assert data["payment_method"] == "card"
        assert data["total_cents"] == 4_760

        resp = client.get(f"/api/sale-templates/{template_id}")
        assert resp.get_json()["data"]["usage_count"] == 1

    def test_missing_name_is_422(self, client, db_session, product, headers):
        resp = client.post("/api/sale-templates", headers=headers, json={
            "items": [{"product_id": product.id, "quantity": 1}],
        })
        assert resp.status_code == 422
        assert "name" in resp.get_json()["errors"]

    def test_missing_items_is_422(self, client, db_session, headers):
        resp = client.post("/api/sale-templates", headers=headers, json={"name": "Empty"})
        assert resp.status_code == 422
        assert "items" in resp.get_json()["errors"]

    def test_inactive_template_cannot_create_sale(self, client, db_session, user, product, headers):
        template = _template(user, [{"product_id": product.id, "quantity": 1}])

        resp = client.post(f"/api/sale-templates/{template.id}/toggle-active", headers=headers)
        assert resp.status_code == 200
        assert resp.get_json()["data"]["is_active"] is False

        resp = client.post(f"/api/sale-templates/{template.id}/create-sale", headers=headers, json={})
        assert resp.status_code == 422
        assert resp.get_json()["success"] is False

    def test_duplicate_and_delete(self, client, db_session, user, product, headers):
        template = _template(user, [{"product_id": product.id, "quantity": 1}])

        resp = client.post(f"/api/sale-templates/{template.id}/duplicate", headers=headers)
        assert resp.status_code == 201
        copy_id = resp.get_json()["data"]["id"]
        assert resp.get_json()["data"]["name"] == "Weekly restock (Copy)"

        resp = client.delete(f"/api/sale-templates/{copy_id}", headers=headers)
        assert resp.status_code == 200
        assert client.get(f"/api/sale-templates/{copy_id}").status_code == 404

    def test_most_used(self, client, db_session, user, product):
        template = _template(user, [{"product_id": product.id, "quantity": 1}])
        sale_template_service.create_sale_from_template(template.id, user_id=user.id)
        db_session.commit()

        resp = client.get("/api/sale-templates/most-used?limit=5")
        data = resp.get_json()["data"]
        assert [t["id"] for t in data] == [template.id]
        assert data[0]["usage_count"] == 1
