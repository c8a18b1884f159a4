# Overview: Pytest coverage for the stock adjustment workflow.

"""
Stock adjustment tests.

Verifies:
- draft -> pending -> approved -> applied writes one movement per changed line
- creators cannot approve their own adjustments
- an apply that would leave negative stock writes nothing
- generate-from-count only keeps products whose count differs
"""

import pytest

from wms.extensions import db
from wms.models import Product, StockMovement, StockAdjustment
from wms.services import adjustment_service
from wms.services.adjustment_service import StockAdjustmentError
from wms.services.concurrency import run_in_transaction
from wms.validation import ValidationError


def _adjustment(user, warehouse, items, reason="physical_count", adjustment_type="recount"):
    adjustment = adjustment_service.create_adjustment(
        warehouse_id=warehouse.id,
        adjustment_type=adjustment_type,
        reason=reason,
        items=items,
        user_id=user.id,
    )
    db.session.commit()
    return adjustment


def _approved(user, approver, warehouse, items):
    adjustment = _adjustment(user, warehouse, items)
    adjustment_service.submit_adjustment(adjustment.id, user.id)
    adjustment_service.approve_adjustment(adjustment.id, approver.id)
    db.session.commit()
    return adjustment


def _adjustment_movements(adjustment_id):
    return (
        db.session.query(StockMovement)
        .filter_by(reference_type="stock_adjustment", reference_id=adjustment_id)
        .all()
    )


# =============================================================================
# WORKFLOW
# =============================================================================


class TestAdjustmentWorkflow:
    """Happy path through every status."""

    def test_create_draft_computes_line_deltas(self, db_session, user, main_warehouse, product):
        """current 10, adjusted 7 -> quantity_adjustment -3 valued at cost."""
        adjustment = _adjustment(user, main_warehouse, [{"product_id": product.id, "adjusted_quantity": 7}])

        assert adjustment.status == "draft"
        assert adjustment.adjustment_number.startswith("ADJ")
        assert adjustment.adjustment_number.endswith("0001")
        item = adjustment.items[0]
        assert item.current_quantity == 10
        assert item.quantity_adjustment == -3
        assert item.value_adjustment_cents == -3_000
        assert adjustment.total_items == 1
        assert adjustment.total_value_adjustment_cents == -3_000

    def test_numbers_increase_within_a_day(self, db_session, user, main_warehouse, product):
        first = _adjustment(user, main_warehouse, [{"product_id": product.id, "adjusted_quantity": 7}])
        second = _adjustment(user, main_warehouse, [{"product_id": product.id, "adjusted_quantity": 8}])

        assert first.adjustment_number[:-4] == second.adjustment_number[:-4]
        assert int(second.adjustment_number[-4:]) == int(first.adjustment_number[-4:]) + 1

    def test_apply_sets_quantity_and_writes_movement(self, db_session, user, approver, main_warehouse, product):
        adjustment = _approved(user, approver, main_warehouse, [{"product_id": product.id, "adjusted_quantity": 7}])

        run_in_transaction(lambda: adjustment_service.apply_adjustment(adjustment.id, approver.id))

        assert db_session.get(Product, product.id).quantity == 7
        movements = _adjustment_movements(adjustment.id)
        assert len(movements) == 1
        assert movements[0].type == "adjustment"
        assert movements[0].quantity_delta == -3
        assert movements[0].previous_quantity == 10
        assert movements[0].new_quantity == 7

        adjustment = db_session.get(StockAdjustment, adjustment.id)
        assert adjustment.status == "applied"
        assert adjustment.applied_by_user_id == approver.id
        assert adjustment.applied_at is not None

    def test_zero_delta_lines_write_no_movement(self, db_session, user, approver, main_warehouse, make_product):
        changed = make_product(sku="CHG", quantity=5)
        unchanged = make_product(sku="SAME", quantity=4)
        adjustment = _approved(user, approver, main_warehouse, [
            {"product_id": changed.id, "adjusted_quantity": 9},
            {"product_id": unchanged.id, "adjusted_quantity": 4},
        ])

        run_in_transaction(lambda: adjustment_service.apply_adjustment(adjustment.id, approver.id))

        movements = _adjustment_movements(adjustment.id)
        assert [m.product_id for m in movements] == [changed.id]
        assert db_session.get(Product, changed.id).quantity == 9

    def test_cannot_apply_twice(self, db_session, user, approver, main_warehouse, product):
        adjustment = _approved(user, approver, main_warehouse, [{"product_id": product.id, "adjusted_quantity": 7}])
        run_in_transaction(lambda: adjustment_service.apply_adjustment(adjustment.id, approver.id))

        with pytest.raises(StockAdjustmentError):
            run_in_transaction(lambda: adjustment_service.apply_adjustment(adjustment.id, approver.id))

        assert db_session.get(Product, product.id).quantity == 7
        assert len(_adjustment_movements(adjustment.id)) == 1


class TestAdjustmentRules:
    """Business rules around approval, editing and cancellation."""

    def test_creator_cannot_approve(self, db_session, user, main_warehouse, product):
        adjustment = _adjustment(user, main_warehouse, [{"product_id": product.id, "adjusted_quantity": 7}])
        adjustment_service.submit_adjustment(adjustment.id, user.id)
        db_session.commit()

        with pytest.raises(StockAdjustmentError, match="cannot be approved by the user who created it"):
            adjustment_service.approve_adjustment(adjustment.id, user.id)

    def test_apply_requires_approval(self, db_session, user, main_warehouse, product):
        adjustment = _adjustment(user, main_warehouse, [{"product_id": product.id, "adjusted_quantity": 7}])

        with pytest.raises(StockAdjustmentError, match="Cannot apply adjustment in draft status"):
            adjustment_service.apply_adjustment(adjustment.id, user.id)

    def test_negative_result_rolls_back_every_line(
        self, db_session, user, approver, main_warehouse, make_product
    ):
        """A second line driving stock below zero undoes the first line too."""
        plenty = make_product(sku="PLENTY", quantity=10)
        scarce = make_product(sku="SCARCE", quantity=2)
        adjustment = _approved(user, approver, main_warehouse, [
            {"product_id": plenty.id, "current_quantity": 10, "adjusted_quantity": 15},
            {"product_id": scarce.id, "current_quantity": 5, "adjusted_quantity": 0},
        ])

        with pytest.raises(StockAdjustmentError, match="negative stock") as exc_info:
            run_in_transaction(lambda: adjustment_service.apply_adjustment(adjustment.id, approver.id))

        assert exc_info.value.details["quantity_adjustment"] == -5
        assert db_session.get(Product, plenty.id).quantity == 10
        assert db_session.get(Product, scarce.id).quantity == 2
        assert _adjustment_movements(adjustment.id) == []
        assert db_session.get(StockAdjustment, adjustment.id).status == "approved"

    def test_duplicate_products_rejected(self, db_session, user, main_warehouse, product):
        with pytest.raises(ValidationError, match="more than once"):
            adjustment_service.create_adjustment(
                warehouse_id=main_warehouse.id,
                adjustment_type="recount",
                reason="physical_count",
                items=[
                    {"product_id": product.id, "adjusted_quantity": 7},
                    {"product_id": product.id, "adjusted_quantity": 8},
                ],
                user_id=user.id,
            )

    def test_pending_adjustment_is_editable(self, db_session, user, main_warehouse, product):
        adjustment = _adjustment(user, main_warehouse, [{"product_id": product.id, "adjusted_quantity": 7}])
        adjustment_service.submit_adjustment(adjustment.id, user.id)

        updated = adjustment_service.update_adjustment(
            adjustment.id,
            header={"notes": "Recounted"},
            items=[{"product_id": product.id, "adjusted_quantity": 12}],
        )
        db_session.commit()

        assert updated.notes == "Recounted"
        assert len(updated.items) == 1
        assert updated.items[0].quantity_adjustment == 2

    def test_cancelled_adjustment_is_final(self, db_session, user, main_warehouse, product):
        adjustment = _adjustment(user, main_warehouse, [{"product_id": product.id, "adjusted_quantity": 7}])
        adjustment_service.cancel_adjustment(adjustment.id, user.id)
        db_session.commit()

        with pytest.raises(StockAdjustmentError):
            adjustment_service.cancel_adjustment(adjustment.id, user.id)
        with pytest.raises(StockAdjustmentError):
            adjustment_service.update_adjustment(adjustment.id, header={"notes": "late"})

    def test_only_drafts_can_be_deleted(self, db_session, user, main_warehouse, product):
        adjustment = _adjustment(user, main_warehouse, [{"product_id": product.id, "adjusted_quantity": 7}])
        adjustment_service.submit_adjustment(adjustment.id, user.id)
        db_session.commit()

        with pytest.raises(StockAdjustmentError, match="Cannot delete"):
            adjustment_service.delete_adjustment(adjustment.id)


class TestGenerateFromCount:
    """Physical count results turned into a draft recount."""

    def test_only_differences_become_lines(self, db_session, user, main_warehouse, make_product):
        short = make_product(sku="SHORT", quantity=10)
        exact = make_product(sku="EXACT", quantity=6)

        adjustment = adjustment_service.generate_from_count(
            warehouse_id=main_warehouse.id,
            counts=[
                {"product_id": short.id, "counted_quantity": 8},
                {"product_id": exact.id, "counted_quantity": 6},
            ],
            user_id=user.id,
        )
        db_session.commit()

        assert adjustment.type == "recount"
        assert adjustment.reason == "physical_count"
        assert adjustment.status == "draft"
        assert [(i.product_id, i.quantity_adjustment) for i in adjustment.items] == [(short.id, -2)]

    def test_matching_counts_rejected(self, db_session, user, main_warehouse, product):
        with pytest.raises(StockAdjustmentError, match="nothing to adjust"):
            adjustment_service.generate_from_count(
                warehouse_id=main_warehouse.id,
                counts=[{"product_id": product.id, "counted_quantity": 10}],
                user_id=user.id,
            )


# =============================================================================
# API
# =============================================================================


class TestAdjustmentApi:
    """HTTP surface of /api/stock-adjustments."""

    def test_full_lifecycle_over_http(
        self, client, db_session, main_warehouse, product, headers, approver_headers
    ):
        product_id = product.id
        resp = client.post("/api/stock-adjustments", headers=headers, json={
            "warehouse_id": main_warehouse.id,
            "type": "decrease",
            "reason": "damaged_goods",
            "items": [{"product_id": product_id, "adjusted_quantity": 7}],
        })
        assert resp.status_code == 201
        body = resp.get_json()
        assert body["success"] is True
        adjustment_id = body["data"]["id"]
        assert body["data"]["items"][0]["quantity_adjustment"] == -3

        assert client.post(f"/api/stock-adjustments/{adjustment_id}/submit", headers=headers).status_code == 200

        resp = client.post(f"/api/stock-adjustments/{adjustment_id}/approve", headers=headers)
        assert resp.status_code == 422
        assert resp.get_json()["success"] is False

        assert client.post(f"/api/stock-adjustments/{adjustment_id}/approve", headers=approver_headers).status_code == 200
        resp = client.post(f"/api/stock-adjustments/{adjustment_id}/apply", headers=approver_headers)
        assert resp.status_code == 200
        assert resp.get_json()["data"]["status"] == "applied"

        db_session.expire_all()
        assert db_session.get(Product, product_id).quantity == 7

    def test_missing_header_fields(self, client, db_session, product, headers):
        resp = client.post("/api/stock-adjustments", headers=headers, json={
            "items": [{"product_id": product.id, "adjusted_quantity": 7}],
        })
        assert resp.status_code == 422
        body = resp.get_json()
        assert set(body["errors"]) == {"warehouse_id", "type", "reason"}

    def test_current_stock_lookup(self, client, db_session, make_product):
        a = make_product(sku="A", quantity=3)
        b = make_product(sku="B", quantity=0)

        resp = client.get(f"/api/stock-adjustments/current-stock?product_ids={a.id},{b.id}")
        assert resp.status_code == 200
        data = resp.get_json()["data"]
        assert [(row["sku"], row["quantity"]) for row in data] == [("A", 3), ("B", 0)]
        assert data[1]["stock_status"] == "out_of_stock"

    def test_generate_from_count_endpoint(self, client, db_session, main_warehouse, product, headers):
        resp = client.post("/api/stock-adjustments/generate-from-count", headers=headers, json={
            "warehouse_id": main_warehouse.id,
            "counts": [{"product_id": product.id, "counted_quantity": 12}],
        })
        assert resp.status_code == 201
        assert resp.get_json()["data"]["items"][0]["quantity_adjustment"] == 2
