# Overview: Pytest coverage for the Flask CLI maintenance commands.

"""
CLI command tests.

Verifies:
- system init is idempotent and creates the main warehouse
- inventory verify-ledger passes on a clean ledger and exits 1 on drift
- sales mark-overdue flags unpaid credit sales past their due date
"""

from datetime import timedelta

from wms.models import Product, Sale, User, Warehouse
from wms.services import sales_service
from wms.time_utils import utcnow


class TestSystemCommands:
    """flask system ..."""

    def test_init_is_idempotent(self, app, db_session):
        runner = app.test_cli_runner()

        result = runner.invoke(args=["system", "init", "--admin-email", "boss@wms.local"])
        assert result.exit_code == 0
        assert "PASS Created user" in result.output
        assert "PASS Created main warehouse" in result.output

        result = runner.invoke(args=["system", "init", "--admin-email", "boss@wms.local"])
        assert result.exit_code == 0
        assert "already exists" in result.output

        db_session.expire_all()
        assert db_session.query(User).filter_by(email="boss@wms.local").count() == 1
        assert db_session.query(Warehouse).filter(Warehouse.is_main.is_(True)).count() == 1

    def test_seed_demo_requires_init(self, app, db_session):
        result = app.test_cli_runner().invoke(args=["system", "seed-demo"])
        assert "FAIL" in result.output

    def test_seed_demo_loads_products(self, app, db_session, user, main_warehouse):
        runner = app.test_cli_runner()

        result = runner.invoke(args=["system", "seed-demo"])
        assert result.exit_code == 0
        assert "3 new products" in result.output

        result = runner.invoke(args=["system", "seed-demo"])
        assert "0 new products" in result.output


class TestInventoryCommands:
    """flask inventory ..."""

    def test_verify_ledger_passes(self, app, db_session, product, make_product):
        make_product(sku="SKU-002", quantity=4)

        result = app.test_cli_runner().invoke(args=["inventory", "verify-ledger"])
        assert result.exit_code == 0
        assert "PASS 2 products consistent" in result.output

    def test_verify_ledger_detects_drift(self, app, db_session, product):
        db_session.query(Product).filter_by(id=product.id).update({Product.quantity: 99})
        db_session.commit()

        result = app.test_cli_runner().invoke(args=["inventory", "verify-ledger", "--product-id", str(product.id)])
        assert result.exit_code == 1
        assert "FAIL SKU-001: deltas sum to 10, quantity is 99" in result.output

    def test_movements_listing(self, app, db_session, product):
        result = app.test_cli_runner().invoke(args=["inventory", "movements", "--product-id", str(product.id)])
        assert result.exit_code == 0
        assert "initial" in result.output


class TestSalesCommands:
    """flask sales ..."""

    def test_mark_overdue(self, app, db_session, user, customer, product):
        sale = sales_service.create_sale(
            header={"customer_id": customer.id, "payment_method": "credit"},
            items=[{"product_id": product.id, "quantity": 1}],
            user_id=user.id,
        )
        sales_service.complete_sale(sale.id, user.id)
        sale.due_date = utcnow() - timedelta(days=3)
        db_session.commit()
        sale_id = sale.id

        result = app.test_cli_runner().invoke(args=["sales", "mark-overdue"])
        assert result.exit_code == 0
        assert "PASS 1 sales marked overdue" in result.output

        db_session.expire_all()
        assert db_session.get(Sale, sale_id).payment_status == "overdue"
