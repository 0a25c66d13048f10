"""
Tests for the cylinders module

- whole-unit apportionment over sizes
- breakdown comparison
- per-driver attribution from refill deposit history
"""
from datetime import timedelta

import pytest

from app.modules.cylinders.calculator import (
    CylinderReceivablesCalculator, distribute_by_size, validate_receivables_match,
)
from app.modules.drivers.models import DriverStatus
from app.modules.sales.models import SaleType


# ===== APPORTIONMENT =====

class TestDistributeBySize:

    def test_proportional_split_keeps_total(self):
        assert distribute_by_size(5, {"12L": 3, "35L": 1}) == {"12L": 4, "35L": 1}

    @pytest.mark.parametrize("total", [1, 2, 10, 11, 97])
    def test_thirds_always_add_up(self, total):
        result = distribute_by_size(total, {"12L": 1, "35L": 1, "45L": 1})

        assert sum(result.values()) == total
        assert max(result.values()) - min(result.values(), default=0) <= 1

    def test_single_size_history_takes_everything(self):
        assert distribute_by_size(7, {"12L": 2}) == {"12L": 7}

    def test_negative_total_keeps_sign(self):
        assert distribute_by_size(-4, {"12L": 1, "35L": 1}) == {"12L": -2, "35L": -2}

    def test_nothing_to_split(self):
        assert distribute_by_size(0, {"12L": 3}) == {}
        assert distribute_by_size(5, {}) == {}
        assert distribute_by_size(5, {"12L": 0, "35L": -2}) == {}

    def test_sizes_without_weight_get_nothing(self):
        assert distribute_by_size(3, {"12L": 0, "35L": 2}) == {"35L": 3}


class TestValidateReceivablesMatch:

    def test_differences_are_second_minus_first(self):
        comparison = validate_receivables_match({"12L": 5, "35L": 2}, {"12L": 4, "35L": 2, "45L": 1})

        assert comparison.matches is False
        assert comparison.differences == {"12L": -1, "45L": 1}

    def test_tolerance(self):
        comparison = validate_receivables_match({"12L": 5}, {"12L": 4}, tolerance=1)

        assert comparison.matches is True
        assert comparison.differences == {}

    def test_identical(self):
        assert validate_receivables_match({"12L": 3}, {"12L": 3}).matches is True


# ===== HISTORY-BASED BREAKDOWN =====

@pytest.fixture
def fleet(make_driver, make_product, make_sale, make_record, today):
    """
    Rahim only ever took back 12L empties, Jamal mostly 35L, Sohel has no
    deposit history and Nila owes nothing.
    """
    p12 = make_product(size="12L")
    p35 = make_product(size="35L", price="3000.00")
    rahim = make_driver("Rahim")
    jamal = make_driver("Jamal")
    sohel = make_driver("Sohel")
    nila = make_driver("Nila")
    yesterday = today - timedelta(days=1)

    make_sale(rahim, yesterday, quantity=5, cylinders_deposited=3, product=p12)
    # PACKAGE deposits never count towards history
    make_sale(rahim, yesterday, SaleType.PACKAGE, quantity=1, cylinders_deposited=4, product=p35)
    make_sale(jamal, yesterday, quantity=2, cylinders_deposited=1, product=p12)
    make_sale(jamal, yesterday, quantity=5, cylinders_deposited=3, product=p35)
    make_sale(nila, yesterday, quantity=1, cylinders_deposited=1, product=p12)

    make_record(rahim, yesterday, cylinder_change=4, total_cylinders=4)
    make_record(jamal, yesterday, cylinder_change=8, total_cylinders=8)
    make_record(sohel, yesterday, cylinder_change=2, total_cylinders=2)
    make_record(nila, yesterday, total_cylinders=0)
    return {"rahim": rahim, "jamal": jamal, "sohel": sohel, "nila": nila, "p12": p12, "p35": p35}


class TestCylinderReceivablesCalculator:

    def test_breakdown_follows_each_drivers_history(self, db_session, tenant_id, fleet, today):
        result = CylinderReceivablesCalculator(db_session).calculate_exact_receivables_by_size(tenant_id, today)

        assert result.receivables_breakdown == {"12L": 6, "35L": 6}
        assert result.total_cylinder_receivables == 14
        assert result.attributed_receivables == 12
        assert result.unattributed_receivables == 2
        assert result.driver_count == 3
        assert result.transaction_count == 3
        assert [(s.size, s.quantity) for s in result.sizes] == [("12L", 6), ("35L", 6)]

        by_name = {d.driver_name: d for d in result.drivers}
        assert by_name["Rahim"].breakdown == {"12L": 4}
        assert by_name["Jamal"].breakdown == {"12L": 2, "35L": 6}
        assert by_name["Sohel"].attributed is False
        assert "Nila" not in by_name

    def test_deposits_after_as_of_are_ignored(self, db_session, tenant_id, fleet, make_sale, today):
        make_sale(fleet["rahim"], today + timedelta(days=1), quantity=9, cylinders_deposited=9, product=fleet["p35"])

        result = CylinderReceivablesCalculator(db_session).calculate_exact_receivables_by_size(tenant_id, today)

        assert {d.driver_name: d.breakdown for d in result.drivers}["Rahim"] == {"12L": 4}

    def test_inactive_drivers_are_excluded(self, db_session, tenant_id, fleet, today):
        fleet["jamal"].status = DriverStatus.INACTIVE
        db_session.commit()

        result = CylinderReceivablesCalculator(db_session).calculate_exact_receivables_by_size(tenant_id, today)

        assert result.receivables_breakdown == {"12L": 4}
        assert result.total_cylinder_receivables == 6

    def test_no_records(self, db_session, tenant_id, make_product):
        make_product(size="12L")

        result = CylinderReceivablesCalculator(db_session).calculate_exact_receivables_by_size(tenant_id)

        assert result.total_cylinder_receivables == 0
        assert result.receivables_breakdown == {}
        assert [(s.size, s.quantity) for s in result.sizes] == [("12L", 0)]

    def test_sales_weights(self, db_session, tenant_id, fleet, today):
        calculator = CylinderReceivablesCalculator(db_session)

        assert calculator.sales_weights_by_size(tenant_id, today) == {"12L": 8, "35L": 6}
        assert calculator.sales_weights_by_size(tenant_id, today, deposits=True) == {"12L": 5, "35L": 3}


# ===== API =====

class TestCylindersApi:

    def test_receivables_by_size(self, client, auth_headers, fleet):
        response = client.get("/api/v1/cylinders/receivables-by-size", headers=auth_headers(role="viewer"))

        assert response.status_code == 200
        data = response.json()
        assert data["receivables_breakdown"] == {"12L": 6, "35L": 6}
        assert data["unattributed_receivables"] == 2

    def test_validate_against_physical_count(self, client, auth_headers, fleet):
        response = client.post("/api/v1/cylinders/receivables-by-size/validate", headers=auth_headers(), json={
            "expected": {"12L": 7, "35L": 6},
        })

        assert response.status_code == 200
        comparison = response.json()["comparison"]
        assert comparison["matches"] is False
        assert comparison["differences"] == {"12L": -1}

    def test_negative_tolerance_is_rejected(self, client, auth_headers):
        response = client.post("/api/v1/cylinders/receivables-by-size/validate", headers=auth_headers(), json={
            "expected": {"12L": 1},
            "tolerance": -1,
        })

        assert response.status_code == 400
