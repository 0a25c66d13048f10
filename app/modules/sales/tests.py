"""
Tests for the sales module

- Sales Aggregator: daily cash/cylinder change per driver
- POST /sales recalculates the driver's record for the sale date
"""
from datetime import timedelta
from decimal import Decimal
from uuid import uuid4

from app.modules.drivers.models import DriverStatus
from app.modules.receivables.models import ReceivableRecord
from app.modules.sales.aggregator import SalesAggregator
from app.modules.sales.models import Sale, SaleType


# ===== AGGREGATOR =====

class TestSalesAggregator:

    def test_change_is_revenue_minus_deposits_minus_discounts(self, db_session, tenant_id, make_driver, make_sale, today):
        driver = make_driver()
        make_sale(driver, today, SaleType.REFILL, quantity=3, unit_price="1000", discount="50",
                  cash_deposited="2000", cylinders_deposited=2)
        make_sale(driver, today, SaleType.PACKAGE, quantity=1, unit_price="2500", cash_deposited="2500")

        totals = SalesAggregator(db_session).aggregate(tenant_id, driver.id, today)

        assert totals.total_revenue == Decimal("5500")
        assert totals.cash_receivables_change == Decimal("950")
        # PACKAGE sales never owe an empty back
        assert totals.refill_quantity == 3
        assert totals.cylinder_receivables_change == 1
        assert totals.sale_count == 2

    def test_day_without_sales_is_zero(self, db_session, tenant_id, make_driver, make_sale, today):
        driver = make_driver()
        make_sale(driver, today - timedelta(days=1), quantity=2, unit_price="100")

        totals = SalesAggregator(db_session).aggregate(tenant_id, driver.id, today)

        assert totals.cash_receivables_change == Decimal("0")
        assert totals.cylinder_receivables_change == 0
        assert totals.sale_count == 0

    def test_over_deposit_gives_negative_change(self, db_session, tenant_id, make_driver, make_sale, today):
        driver = make_driver()
        make_sale(driver, today, SaleType.REFILL, quantity=1, unit_price="100",
                  cash_deposited="300", cylinders_deposited=3)

        totals = SalesAggregator(db_session).aggregate(tenant_id, driver.id, today)

        assert totals.cash_receivables_change == Decimal("-200")
        assert totals.cylinder_receivables_change == -2

    def test_other_tenants_sales_are_ignored(self, db_session, tenant_id, make_driver, make_sale, today):
        driver = make_driver()
        sale = make_sale(driver, today, quantity=1, unit_price="100")
        sale.tenant_id = uuid4()
        db_session.commit()

        totals = SalesAggregator(db_session).aggregate(tenant_id, driver.id, today)

        assert totals.sale_count == 0

    def test_aggregate_range_groups_by_driver_and_day(self, db_session, tenant_id, make_driver, make_sale, today):
        first = make_driver("Rahim")
        second = make_driver("Jamal")
        yesterday = today - timedelta(days=1)
        make_sale(first, yesterday, quantity=1, unit_price="100")
        make_sale(first, today, quantity=2, unit_price="100")
        make_sale(second, today, quantity=1, unit_price="300", cash_deposited="300", cylinders_deposited=1)

        result = SalesAggregator(db_session).aggregate_range(tenant_id, [first.id, second.id], yesterday, today)

        assert set(result) == {(first.id, yesterday), (first.id, today), (second.id, today)}
        assert result[(first.id, today)].cash_receivables_change == Decimal("200")
        assert result[(second.id, today)].cash_receivables_change == Decimal("0")
        assert result[(second.id, today)].cylinder_receivables_change == 0


# ===== API =====

class TestCreateSale:

    def test_sale_updates_receivable_record(self, client, auth_headers, db_session, make_driver, make_product, today):
        driver = make_driver()
        product = make_product()

        response = client.post("/api/v1/sales", headers=auth_headers(), json={
            "driver_id": str(driver.id),
            "product_id": str(product.id),
            "sale_type": "REFILL",
            "quantity": 4,
            "unit_price": "1200.00",
            "cash_deposited": "3600.00",
            "cylinders_deposited": 3,
        })

        assert response.status_code == 201
        data = response.json()
        assert Decimal(data["total_cash_receivables"]) == Decimal("1200")
        assert data["total_cylinder_receivables"] == 1

        db_session.rollback()
        record = db_session.query(ReceivableRecord).filter_by(driver_id=driver.id, date=today).one()
        assert record.cash_receivables_change == Decimal("1200")
        assert record.cylinder_receivables_change == 1

    def test_sale_carries_previous_total(self, client, auth_headers, make_driver, make_product, make_record, today):
        driver = make_driver()
        product = make_product()
        make_record(driver, today - timedelta(days=2), cash_change="500", cylinder_change=2,
                    total_cash="500", total_cylinders=2)

        response = client.post("/api/v1/sales", headers=auth_headers(), json={
            "driver_id": str(driver.id),
            "product_id": str(product.id),
            "sale_type": "PACKAGE",
            "quantity": 1,
            "unit_price": "2500",
        })

        assert response.status_code == 201
        assert Decimal(response.json()["total_cash_receivables"]) == Decimal("3000")
        assert response.json()["total_cylinder_receivables"] == 2

    def test_inactive_driver_is_rejected(self, client, auth_headers, db_session, make_driver, make_product):
        driver = make_driver(status=DriverStatus.INACTIVE)
        product = make_product()

        response = client.post("/api/v1/sales", headers=auth_headers(), json={
            "driver_id": str(driver.id),
            "product_id": str(product.id),
            "sale_type": "REFILL",
            "quantity": 1,
            "unit_price": "1200",
        })

        assert response.status_code == 400
        assert response.json()["success"] is False
        assert response.json()["error"] == "ValidationError"
        db_session.rollback()
        assert db_session.query(Sale).count() == 0

    def test_discount_above_total_is_rejected(self, client, auth_headers, make_driver, make_product):
        driver = make_driver()
        product = make_product()

        response = client.post("/api/v1/sales", headers=auth_headers(), json={
            "driver_id": str(driver.id),
            "product_id": str(product.id),
            "sale_type": "REFILL",
            "quantity": 1,
            "unit_price": "100",
            "discount": "150",
        })

        assert response.status_code == 400

    def test_viewer_cannot_record_sales(self, client, auth_headers, make_driver, make_product):
        driver = make_driver()
        product = make_product()

        response = client.post("/api/v1/sales", headers=auth_headers(role="viewer"), json={
            "driver_id": str(driver.id),
            "product_id": str(product.id),
            "sale_type": "REFILL",
            "quantity": 1,
            "unit_price": "100",
        })

        assert response.status_code == 403
