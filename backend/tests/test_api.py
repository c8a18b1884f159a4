# Overview: Pytest coverage for cross-cutting API behavior (envelope, acting user, errors, health).

"""
API surface tests.

Verifies:
- every response uses the {success, data, message} envelope
- write endpoints need a valid X-User-Id header
- unexpected exceptions become a generic 500 without leaking details
- health reporting and CORS headers
- lookup lists for transfers, adjustments, customers and locations
"""

import pytest

from wms.services import products_service


class TestActingUser:
    """X-User-Id resolution on write endpoints."""

    def test_missing_header_is_400(self, client, db_session):
        resp = client.post("/api/categories", json={"name": "Tools"})
        assert resp.status_code == 400
        body = resp.get_json()
        assert body["success"] is False
        assert "X-User-Id" in body["message"]

    def test_non_integer_header_is_400(self, client, db_session):
        resp = client.post("/api/categories", headers={"X-User-Id": "abc"}, json={"name": "Tools"})
        assert resp.status_code == 400

    def test_unknown_user_is_404(self, client, db_session):
        resp = client.post("/api/categories", headers={"X-User-Id": "999999"}, json={"name": "Tools"})
        assert resp.status_code == 404

    def test_inactive_user_is_404(self, client, db_session, user):
        user.is_active = False
        db_session.commit()

        resp = client.post("/api/categories", headers={"X-User-Id": str(user.id)}, json={"name": "Tools"})
        assert resp.status_code == 404

    def test_reads_need_no_header(self, client, db_session, product):
        resp = client.get(f"/api/products/{product.id}")
        assert resp.status_code == 200
        assert resp.get_json()["data"]["sku"] == "SKU-001"


class TestEnvelope:
    """Success and error bodies."""

    def test_success_shape(self, client, db_session, headers):
        resp = client.post("/api/categories", headers=headers, json={"name": "Tools"})
        assert resp.status_code == 201
        body = resp.get_json()
        assert body["success"] is True
        assert body["message"] == "Category created"
        assert body["data"]["name"] == "Tools"

    def test_not_found(self, client, db_session):
        resp = client.get("/api/products/999999")
        assert resp.status_code == 404
        assert resp.get_json() == {"success": False, "data": None, "message": "Product 999999 not found"}

    def test_conflict(self, client, db_session, brand, headers):
        resp = client.post("/api/brands", headers=headers, json={"name": "Norma"})
        assert resp.status_code == 409

    def test_validation_errors_name_fields(self, client, db_session, headers):
        resp = client.post("/api/products", headers=headers, json={"name": "No SKU"})
        assert resp.status_code == 422
        assert resp.get_json()["errors"] == {"sku": "is required"}

    def test_unexpected_error_is_generic_500(self, client, db_session, monkeypatch):
        def boom():
            raise RuntimeError("connection string with secrets")

        monkeypatch.setattr(products_service, "low_stock_products", boom)

        resp = client.get("/api/products/low-stock")
        assert resp.status_code == 500
        body = resp.get_json()
        assert body["message"] == "Internal server error"
        assert "secrets" not in resp.get_data(as_text=True)


class TestMovementsApi:
    """Read-only ledger listing."""

    def test_filter_by_product_and_type(self, client, db_session, user, product, make_product):
        other = make_product(sku="SKU-002")
        products_service.adjust_stock(product.id, mode="add", quantity=2, user_id=user.id)
        db_session.commit()

        resp = client.get(f"/api/stock-movements?product_id={product.id}&type=manual")
        items = resp.get_json()["data"]["items"]
        assert [(m["product_id"], m["quantity_delta"]) for m in items] == [(product.id, 2)]
        assert other.id not in {m["product_id"] for m in items}

    def test_unknown_type_is_422(self, client, db_session):
        resp = client.get("/api/stock-movements?type=teleport")
        assert resp.status_code == 422


class TestHealth:
    """GET /api/health"""

    def test_healthy_with_main_warehouse(self, client, db_session, main_warehouse):
        resp = client.get("/api/health")
        assert resp.status_code == 200
        data = resp.get_json()["data"]
        assert data["status"] == "healthy"
        assert data["checks"]["warehouses"]["details"]["main_warehouse"] == "MAIN"

    def test_degraded_without_main_warehouse(self, client, db_session):
        resp = client.get("/api/health")
        assert resp.status_code == 200
        assert resp.get_json()["data"]["status"] == "degraded"


class TestCors:
    """Allowed origins get CORS headers; others do not."""

    def test_allowed_origin(self, client, db_session):
        resp = client.get("/api/health", headers={"Origin": "http://localhost:5173"})
        assert resp.headers["Access-Control-Allow-Origin"] == "http://localhost:5173"
        assert "X-User-Id" in resp.headers["Access-Control-Allow-Headers"]

    def test_other_origin(self, client, db_session):
        resp = client.get("/api/health", headers={"Origin": "http://evil.example"})
        assert "Access-Control-Allow-Origin" not in resp.headers


class TestLookups:
    """Choice lists for building forms; no acting user needed."""

    @pytest.mark.parametrize("path, expected", [
        ("/api/stock-transfers/statuses", ["draft", "pending", "in_transit", "completed", "cancelled"]),
        ("/api/stock-transfers/priorities", ["low", "normal", "high", "urgent"]),
        ("/api/stock-adjustments/statuses", ["draft", "pending", "approved", "applied", "cancelled"]),
        ("/api/customers/payment-terms", ["cash", "credit", "net_15", "net_30", "net_60"]),
        ("/api/locations/types", ["warehouse", "zone", "aisle", "rack", "shelf", "bin"]),
    ])
    def test_lookup_values(self, client, db_session, path, expected):
        resp = client.get(path)
        assert resp.status_code == 200
        body = resp.get_json()
        assert body["success"] is True
        assert body["data"] == expected

    @pytest.mark.parametrize("path, member", [
        ("/api/stock-transfers/types", "internal"),
        ("/api/stock-adjustments/types", "recount"),
        ("/api/stock-adjustments/reasons", "damaged_goods"),
        ("/api/customers/types", "business"),
    ])
    def test_lookup_contains(self, client, db_session, path, member):
        resp = client.get(path)
        assert resp.status_code == 200
        assert member in resp.get_json()["data"]
