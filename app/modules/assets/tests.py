"""
Tests for the assets module

Current assets = positive driver cash receivables + full and empty stock
valued per cylinder size. Cylinder receivables never appear as a line.
"""
from datetime import timedelta
from decimal import Decimal
from uuid import uuid4

import pytest

from app.common.exceptions import ValidationError
from app.modules.assets.router import parse_price_overrides
from app.modules.assets.schemas import AssetSubCategory, QuantitySource
from app.modules.assets.service import AssetValuationService, weighted_average_price, money
from app.modules.inventory.models import InventoryRecord, FullCylinderStock, EmptyCylinderStock


@pytest.fixture
def stock(db_session, tenant_id):
    """Stores per-size snapshot rows for a day."""
    def _full(product, day, quantity):
        db_session.add(FullCylinderStock(
            tenant_id=tenant_id, date=day, product_id=product.id, company_id=product.company_id,
            cylinder_size_id=product.cylinder_size_id, quantity=quantity,
        ))
        db_session.commit()

    def _empty(product, day, quantity):
        db_session.add(EmptyCylinderStock(
            tenant_id=tenant_id, date=day, cylinder_size_id=product.cylinder_size_id, quantity=quantity,
        ))
        db_session.commit()

    return _full, _empty


def lines_by_key(result):
    return {line.key: line for line in result.assets}


# ===== PRICING =====

class TestWeightedAveragePrice:

    def test_weighted_by_quantity(self):
        a, b = uuid4(), uuid4()

        price = weighted_average_price({a: Decimal("1000"), b: Decimal("1400")}, {a: 3, b: 1})

        assert price == Decimal("1100.00")

    def test_simple_average_without_quantities(self):
        a, b = uuid4(), uuid4()

        assert weighted_average_price({a: Decimal("1000"), b: Decimal("1401")}, {}) == Decimal("1200.50")

    def test_no_products(self):
        assert weighted_average_price({}, {}) is None

    def test_money_rounds_half_up(self):
        assert money("10.005") == Decimal("10.01")


class TestParsePriceOverrides:

    def test_pairs(self):
        assert parse_price_overrides(["12L=1450", " 35L = 3200.50"]) == {
            "12L": Decimal("1450"), "35L": Decimal("3200.50"),
        }

    @pytest.mark.parametrize("value", ["12L", "=100", "12L=abc", "12L=-5"])
    def test_invalid(self, value):
        with pytest.raises(ValidationError):
            parse_price_overrides([value])


# ===== VALUATION =====

class TestAssetValuationService:

    def test_cash_line_counts_only_positive_balances(self, db_session, tenant_id, make_driver, make_record, today):
        make_record(make_driver("Rahim"), today, cash_change="1500", total_cash="1500", total_cylinders=5,
                    cylinder_change=5)
        make_record(make_driver("Jamal"), today, cash_change="-200", total_cash="-200")

        result = AssetValuationService(db_session).calculate_current_assets(tenant_id, today)

        cash = lines_by_key(result)["cash-receivables"]
        assert cash.value == Decimal("1500.00")
        assert cash.sub_category == AssetSubCategory.RECEIVABLES
        assert "1 drivers" in cash.description
        assert result.totals.receivables == Decimal("1500.00")
        # Cylinders owed by drivers are already inside empty stock
        assert all("cylinder-receivables" not in key for key in lines_by_key(result))

    def test_no_cash_line_when_nothing_owed(self, db_session, tenant_id, make_driver, make_record, today):
        make_record(make_driver(), today, cash_change="-50", total_cash="-50")

        result = AssetValuationService(db_session).calculate_current_assets(tenant_id, today)

        assert result.assets == []
        assert result.totals.total == Decimal("0")

    def test_snapshot_quantities_and_empty_ratio(self, db_session, tenant_id, make_product, stock, today):
        full, empty = stock
        p12 = make_product(size="12L", price="1200.00")
        full(p12, today - timedelta(days=1), 10)
        empty(p12, today - timedelta(days=1), 5)

        result = AssetValuationService(db_session).calculate_current_assets(tenant_id, today)

        lines = lines_by_key(result)
        assert lines["full-cylinders-12L"].quantity == 10
        assert lines["full-cylinders-12L"].unit_price == Decimal("1200.00")
        assert lines["full-cylinders-12L"].value == Decimal("12000.00")
        assert lines["full-cylinders-12L"].quantity_source == QuantitySource.SIZE_SNAPSHOT
        assert lines["empty-cylinders-12L"].unit_price == Decimal("240.00")
        assert lines["empty-cylinders-12L"].value == Decimal("1200.00")
        assert result.totals.inventory == Decimal("13200.00")
        assert result.empty_price_ratio == Decimal("0.2")

    def test_latest_snapshot_on_or_before_as_of(self, db_session, tenant_id, make_product, stock, today):
        full, _ = stock
        p12 = make_product(size="12L")
        full(p12, today - timedelta(days=5), 3)
        full(p12, today - timedelta(days=2), 7)
        full(p12, today + timedelta(days=1), 99)

        result = AssetValuationService(db_session).calculate_current_assets(tenant_id, today)

        line = lines_by_key(result)["full-cylinders-12L"]
        assert line.quantity == 7
        assert line.snapshot_date == today - timedelta(days=2)

    def test_price_weighted_by_stocked_products(self, db_session, tenant_id, make_product, stock, today):
        full, _ = stock
        cheap = make_product(size="12L", price="1000.00", company="Bashundhara")
        dear = make_product(size="12L", price="1400.00", company="Omera")
        full(cheap, today, 3)
        full(dear, today, 1)

        result = AssetValuationService(db_session).calculate_current_assets(tenant_id, today)

        line = lines_by_key(result)["full-cylinders-12L"]
        assert line.quantity == 4
        assert line.unit_price == Decimal("1100.00")

    def test_distributes_inventory_totals_when_no_size_snapshot(self, db_session, tenant_id, make_driver,
                                                                make_product, make_sale, today):
        p12 = make_product(size="12L", price="1200.00")
        p35 = make_product(size="35L", price="3000.00")
        driver = make_driver()
        make_sale(driver, today - timedelta(days=3), quantity=3, product=p12)
        make_sale(driver, today - timedelta(days=3), quantity=1, cylinders_deposited=2, product=p35)
        db_session.add(InventoryRecord(tenant_id=tenant_id, date=today, full_cylinders=10, empty_cylinders=4))
        db_session.commit()

        result = AssetValuationService(db_session).calculate_current_assets(tenant_id, today)

        lines = lines_by_key(result)
        assert lines["full-cylinders-12L"].quantity == 8
        assert lines["full-cylinders-35L"].quantity == 2
        assert lines["full-cylinders-12L"].quantity_source == QuantitySource.DISTRIBUTED_TOTAL
        # Empties follow refill deposits, not sales volume
        assert "empty-cylinders-12L" not in lines
        assert lines["empty-cylinders-35L"].quantity == 4
        assert lines["empty-cylinders-35L"].unit_price == Decimal("600.00")

    def test_even_split_without_any_history(self, db_session, tenant_id, make_product, today):
        make_product(size="12L")
        make_product(size="35L", price="3000.00")
        db_session.add(InventoryRecord(tenant_id=tenant_id, date=today, full_cylinders=6, empty_cylinders=0))
        db_session.commit()

        result = AssetValuationService(db_session).calculate_current_assets(tenant_id, today)

        lines = lines_by_key(result)
        assert lines["full-cylinders-12L"].quantity == 3
        assert lines["full-cylinders-35L"].quantity == 3

    def test_price_override(self, db_session, tenant_id, make_product, stock, today):
        full, empty = stock
        p12 = make_product(size="12L", price="1200.00")
        full(p12, today, 2)
        empty(p12, today, 1)

        result = AssetValuationService(db_session).calculate_current_assets(
            tenant_id, today, price_overrides={"12L": Decimal("1500")}
        )

        lines = lines_by_key(result)
        assert lines["full-cylinders-12L"].value == Decimal("3000.00")
        assert lines["empty-cylinders-12L"].unit_price == Decimal("300.00")

    def test_size_without_price_is_skipped(self, db_session, tenant_id, make_product, stock, today):
        full, _ = stock
        p12 = make_product(size="12L")
        full(p12, today, 2)
        p12.is_active = False
        db_session.commit()

        result = AssetValuationService(db_session).calculate_current_assets(tenant_id, today)

        assert result.assets == []


# ===== API =====

class TestAssetsApi:

    def test_current_assets(self, client, auth_headers, make_product, stock, today):
        full, _ = stock
        full(make_product(size="12L", price="1200.00"), today, 2)

        response = client.get("/api/v1/assets/current", headers=auth_headers(role="viewer"),
                              params={"price": "12L=1300"})

        assert response.status_code == 200
        data = response.json()
        assert [line["key"] for line in data["assets"]] == ["full-cylinders-12L"]
        assert Decimal(str(data["totals"]["total"])) == Decimal("2600")

    def test_bad_override(self, client, auth_headers):
        response = client.get("/api/v1/assets/current", headers=auth_headers(), params={"price": "12L=-1"})

        assert response.status_code == 400
        assert response.json()["error"] == "ValidationError"
