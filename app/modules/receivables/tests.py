"""
Tests for the receivables module

Covers:
- carry-forward of running totals (calculator and recalculation engine)
- onboarding baselines
- customer receivable payments and cylinder returns, with reconciliation
- status derivation from due dates
- HTTP surface: auth, validation and batch endpoints
"""
from datetime import date, datetime, timedelta
from decimal import Decimal
from types import SimpleNamespace
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError

from app.main import create_app
from app.modules.audit.models import AuditLog, AuditAction
from app.modules.customers.models import Customer
from app.modules.drivers.models import DriverStatus, DriverType
from app.modules.notifications.events import EventPublisher
from app.modules.receivables import recalculation
from app.modules.receivables.calculator import ReceivablesCalculator
from app.modules.receivables.ledger import CustomerReceivableLedger, status_for_due_date
from app.modules.receivables.models import (
    CustomerReceivable, ReceivableRecord, ReceivableStatus, ReceivableType, PaymentEvent, ReturnEvent,
)
from app.modules.receivables.onboarding import OnboardingService
from app.modules.receivables.queries import driver_chain
from app.modules.receivables.recalculation import RecalculationEngine, verify_continuity, walk_chain
from app.modules.receivables.reconciliation import ReceivablesReconciler
from app.modules.receivables.schemas import OnboardingCreate
from app.modules.sales.aggregator import SalesAggregator
from app.modules.sales.models import Sale, SaleType
from app.common.exceptions import PersistenceError, ValidationError


def chain_record(day, cash_change="0", cylinder_change=0, total_cash="0", total_cylinders=0,
                 onboarding_cash="0", onboarding_cylinders=0, adjustment_cash="0", adjustment_cylinders=0):
    return SimpleNamespace(
        date=day,
        cash_receivables_change=Decimal(cash_change),
        cylinder_receivables_change=cylinder_change,
        onboarding_cash_receivables=Decimal(onboarding_cash),
        onboarding_cylinder_receivables=onboarding_cylinders,
        adjustment_cash_receivables=Decimal(adjustment_cash),
        adjustment_cylinder_receivables=adjustment_cylinders,
        total_cash_receivables=Decimal(total_cash),
        total_cylinder_receivables=total_cylinders,
    )


# ===== CHAIN WALK =====

class TestWalkChain:
    """Pure carry-forward rule, independent of storage"""

    def test_onboarding_then_payment_heavy_day_then_repeated_date(self):
        day1 = date(2026, 3, 1)
        records = [
            chain_record(day1, onboarding_cash="5000", onboarding_cylinders=3),
            chain_record(day1 + timedelta(days=1), cash_change="-200", cylinder_change=1),
            chain_record(day1 + timedelta(days=2), cash_change="100"),
            chain_record(day1 + timedelta(days=2), cash_change="50"),
            chain_record(day1 + timedelta(days=3)),
        ]

        steps = walk_chain(records)

        assert [(s.total_cash, s.total_cylinders) for s in steps] == [
            (Decimal("5000"), 3),
            (Decimal("4800"), 4),
            (Decimal("4900"), 4),
            # A repeated date starts from zero and never becomes the baseline
            (Decimal("50"), 0),
            (Decimal("4900"), 4),
        ]
        assert [s.is_same_date for s in steps] == [False, False, False, True, False]

    def test_datetime_values_compare_by_calendar_date(self):
        records = [
            chain_record(datetime(2026, 3, 1, 8, 0), cash_change="100"),
            chain_record(datetime(2026, 3, 1, 18, 30), cash_change="40"),
        ]

        steps = walk_chain(records)

        assert steps[1].is_same_date is True
        assert steps[1].carried_cash == Decimal("0")

    def test_cash_drift_within_tolerance_is_not_flagged(self):
        records = [
            chain_record(date(2026, 3, 1), cash_change="100", total_cash="100.005"),
            chain_record(date(2026, 3, 2), cash_change="10", total_cash="110.02", total_cylinders=0),
        ]

        flagged = verify_continuity(records)

        assert len(flagged) == 1
        assert flagged[0].record is records[1]

    def test_any_cylinder_mismatch_is_flagged(self):
        records = [chain_record(date(2026, 3, 1), cylinder_change=2, total_cylinders=1)]

        assert verify_continuity(records)[0].total_cylinders == 2

    def test_reconciliation_adjustment_is_carried_forward(self):
        records = [
            chain_record(date(2026, 3, 1), cash_change="-200", adjustment_cash="750", adjustment_cylinders=2,
                         total_cash="550", total_cylinders=2),
            chain_record(date(2026, 3, 2), cash_change="100", total_cash="650", total_cylinders=2),
        ]

        assert verify_continuity(records) == []
        assert walk_chain(records)[1].carried_cash == Decimal("550")


# ===== CALCULATOR =====

class TestReceivablesCalculator:

    def test_first_record_starts_from_zero(self, db_session, tenant_id, make_driver, make_sale, today):
        driver = make_driver()
        make_sale(driver, today, quantity=2, unit_price="500", cash_deposited="600", cylinders_deposited=1)

        record = ReceivablesCalculator(db_session).calculate_for_date(tenant_id, driver.id, today)
        db_session.commit()

        assert record.total_cash_receivables == Decimal("400")
        assert record.total_cylinder_receivables == 1

    def test_onboarding_then_sales_day(self, db_session, tenant_id, user_id, make_driver, make_sale, today):
        driver = make_driver()
        day1, day2 = today - timedelta(days=3), today - timedelta(days=2)

        baseline = OnboardingService(db_session).record_baseline(
            OnboardingCreate(driver_id=driver.id, date=day1, cash_receivables=Decimal("5000"), cylinder_receivables=3),
            tenant_id, user_id,
        )
        assert baseline.total_cash_receivables == Decimal("5000")
        assert baseline.total_cylinder_receivables == 3

        make_sale(driver, day2, quantity=2, unit_price="100", cash_deposited="400", cylinders_deposited=1)
        record = ReceivablesCalculator(db_session).calculate_for_date(tenant_id, driver.id, day2)
        db_session.commit()

        assert record.cash_receivables_change == Decimal("-200")
        assert record.cylinder_receivables_change == 1
        assert record.total_cash_receivables == Decimal("4800")
        assert record.total_cylinder_receivables == 4

    def test_recalculating_a_day_keeps_onboarding_and_rewalks_later_days(
            self, db_session, tenant_id, user_id, make_driver, make_sale, today):
        driver = make_driver()
        day1, day2 = today - timedelta(days=3), today - timedelta(days=2)
        OnboardingService(db_session).record_baseline(
            OnboardingCreate(driver_id=driver.id, date=day1, cash_receivables=Decimal("5000"), cylinder_receivables=3),
            tenant_id, user_id,
        )
        make_sale(driver, day2, quantity=2, unit_price="100", cash_deposited="400", cylinders_deposited=1)
        calculator = ReceivablesCalculator(db_session)
        calculator.calculate_for_date(tenant_id, driver.id, day2)
        db_session.commit()

        # Late entry for the onboarding day
        make_sale(driver, day1, SaleType.PACKAGE, quantity=1, unit_price="1000")
        first = calculator.calculate_for_date(tenant_id, driver.id, day1)
        db_session.commit()

        assert first.onboarding_cash_receivables == Decimal("5000")
        assert first.total_cash_receivables == Decimal("6000")
        assert first.total_cylinder_receivables == 3

        second = db_session.query(ReceivableRecord).filter_by(driver_id=driver.id, date=day2).one()
        db_session.refresh(second)
        assert second.total_cash_receivables == Decimal("5800")
        assert second.total_cylinder_receivables == 4
        assert verify_continuity(driver_chain(db_session, tenant_id, driver.id).all()) == []

    def test_recent_days_backfill_oldest_first(self, db_session, tenant_id, make_driver, make_sale, today):
        driver = make_driver()
        make_driver("Shipment Sohel", driver_type=DriverType.SHIPMENT)
        make_driver("Former Faruk", status=DriverStatus.INACTIVE)
        make_sale(driver, today - timedelta(days=2), SaleType.PACKAGE, quantity=1, unit_price="500")
        make_sale(driver, today, SaleType.PACKAGE, quantity=1, unit_price="300")

        result = ReceivablesCalculator(db_session).calculate_recent_days(tenant_id, days=3, today=today)

        assert result.success is True
        assert result.stats.drivers_processed == 1
        assert result.stats.total_records == 3
        assert result.errors is None
        totals = [
            r.total_cash_receivables
            for r in driver_chain(db_session, tenant_id, driver.id).all()
        ]
        assert totals == [Decimal("500"), Decimal("500"), Decimal("800")]

    def test_recent_days_aggregate_sales_in_one_grouped_query(self, db_session, tenant_id, make_driver, make_sale,
                                                              today, monkeypatch):
        rahim = make_driver("Rahim")
        jamal = make_driver("Jamal")
        make_sale(rahim, today - timedelta(days=1), SaleType.PACKAGE, quantity=1, unit_price="500")
        make_sale(jamal, today, quantity=2, unit_price="100", cylinders_deposited=1)

        def per_day_query(*args, **kwargs):
            raise AssertionError("per driver-day aggregate used in a backfill")

        monkeypatch.setattr(SalesAggregator, "aggregate", per_day_query)

        result = ReceivablesCalculator(db_session).calculate_recent_days(tenant_id, days=2, today=today)

        assert result.errors is None
        assert result.stats.updated_records == 4
        latest = {
            record.driver_id: record
            for record in db_session.query(ReceivableRecord).filter_by(date=today).all()
        }
        assert latest[rahim.id].total_cash_receivables == Decimal("500")
        assert latest[jamal.id].total_cash_receivables == Decimal("200")
        assert latest[jamal.id].total_cylinder_receivables == 1

    def test_failed_rewalk_fails_the_whole_calculation(self, db_session, tenant_id, make_driver, make_sale,
                                                       make_record, today, monkeypatch):
        driver = make_driver()
        make_record(driver, today + timedelta(days=1), cash_change="10")
        make_sale(driver, today, SaleType.PACKAGE, quantity=1, unit_price="300")

        class BrokenClock:
            @classmethod
            def now(cls, tz=None):
                raise OperationalError("UPDATE receivable_records", {}, Exception("database is locked"))

        monkeypatch.setattr(recalculation, "datetime", BrokenClock)

        with pytest.raises(OperationalError):
            ReceivablesCalculator(db_session).calculate_for_date(tenant_id, driver.id, today)

    def test_summary_covers_active_retail_drivers_only(self, db_session, tenant_id, make_driver, make_record, today):
        rahim = make_driver("Rahim")
        jamal = make_driver("Jamal")
        former = make_driver("Former", status=DriverStatus.INACTIVE)
        make_record(rahim, today - timedelta(days=5), cash_change="100", total_cash="100", total_cylinders=1,
                    cylinder_change=1)
        make_record(rahim, today - timedelta(days=1), cash_change="50", total_cash="150", total_cylinders=1)
        make_record(jamal, today - timedelta(days=2), cash_change="300", total_cash="300", total_cylinders=2,
                    cylinder_change=2)
        make_record(former, today, cash_change="999", total_cash="999")

        summary = ReceivablesCalculator(db_session).get_summary(tenant_id, today)

        assert summary.driver_count == 2
        assert summary.total_cash_receivables == Decimal("450")
        assert summary.total_cylinder_receivables == 3
        assert [d.driver_name for d in summary.drivers] == ["Jamal", "Rahim"]

    def test_driver_performance(self, db_session, tenant_id, make_driver, make_sale, today):
        driver = make_driver()
        make_sale(driver, today, quantity=4, unit_price="250", cash_deposited="800", cylinders_deposited=3)

        performance = ReceivablesCalculator(db_session).get_driver_performance(tenant_id, driver.id, today, today)

        assert performance.total_sales_revenue == Decimal("1000")
        assert performance.cash_collection_efficiency == Decimal("80.00")
        assert performance.cylinder_collection_efficiency == Decimal("75.00")
        assert performance.collection_efficiency == Decimal("77.50")


# ===== RECALCULATION ENGINE =====

class TestRecalculationEngine:

    def test_repairs_drift_and_second_pass_writes_nothing(self, db_session, tenant_id, make_driver, make_record, today):
        driver = make_driver()
        make_record(driver, today - timedelta(days=2), cash_change="100", cylinder_change=1)
        make_record(driver, today - timedelta(days=1), cash_change="50", cylinder_change=2)

        first = RecalculationEngine(db_session).recalculate_tenant(tenant_id)

        assert first.stats.total_records == 2
        assert first.stats.updated_records == 2
        records = driver_chain(db_session, tenant_id, driver.id).all()
        assert [(r.total_cash_receivables, r.total_cylinder_receivables) for r in records] == [
            (Decimal("100"), 1), (Decimal("150"), 3),
        ]

        second = RecalculationEngine(db_session).recalculate_tenant(tenant_id)

        assert second.stats.total_records == 2
        assert second.stats.updated_records == 0

    def test_scoped_to_one_driver(self, db_session, tenant_id, make_driver, make_record, today):
        rahim = make_driver("Rahim")
        jamal = make_driver("Jamal")
        make_record(rahim, today, cash_change="100")
        make_record(jamal, today, cash_change="200")

        result = RecalculationEngine(db_session).recalculate_tenant(tenant_id, driver_id=rahim.id)

        assert result.stats.drivers_processed == 1
        assert result.stats.updated_records == 1
        db_session.expire_all()
        untouched = db_session.query(ReceivableRecord).filter_by(driver_id=jamal.id).one()
        assert untouched.total_cash_receivables == Decimal("0")

    def test_failed_record_is_reported_and_pass_continues(self, db_session, tenant_id, make_driver, make_record,
                                                          today, monkeypatch):
        driver = make_driver()
        broken = make_record(driver, today - timedelta(days=2), cash_change="100")
        make_record(driver, today - timedelta(days=1), cash_change="50")

        class FlakyClock:
            calls = 0

            @classmethod
            def now(cls, tz=None):
                cls.calls += 1
                if cls.calls == 1:
                    raise OperationalError("UPDATE receivable_records", {}, Exception("database is locked"))
                return datetime.now(tz)

        monkeypatch.setattr(recalculation, "datetime", FlakyClock)

        result = RecalculationEngine(db_session).recalculate_tenant(tenant_id)

        assert result.success is True
        assert result.stats.updated_records == 1
        assert result.stats.errors == 1
        assert result.errors[0].record_id == broken.id
        assert "database is locked" in result.errors[0].error

        db_session.expire_all()
        records = driver_chain(db_session, tenant_id, driver.id).all()
        assert records[0].total_cash_receivables == Decimal("0")
        assert records[1].total_cash_receivables == Decimal("150")

    def test_all_tenants(self, db_session, tenant_id, make_driver, make_record, today):
        other_tenant = uuid4()
        make_record(make_driver("Rahim"), today, cash_change="100")
        make_record(make_driver("Karim", tenant=other_tenant), today, cash_change="70", tenant=other_tenant)

        result = RecalculationEngine(db_session).recalculate_all_tenants()

        assert result.stats.tenants_processed == 2
        assert result.stats.updated_records == 2
        assert result.errors is None


# ===== ONBOARDING =====

class TestOnboarding:

    def test_rejects_negative_or_empty_baselines(self, db_session, tenant_id, user_id, make_driver, today):
        driver = make_driver()
        service = OnboardingService(db_session)

        with pytest.raises(ValidationError):
            service.record_baseline(OnboardingCreate(driver_id=driver.id, date=today, cash_receivables=Decimal("-1")),
                                    tenant_id, user_id)
        with pytest.raises(ValidationError):
            service.record_baseline(OnboardingCreate(driver_id=driver.id, date=today), tenant_id, user_id)

    def test_rejects_baseline_after_existing_entries(self, db_session, tenant_id, user_id, make_driver, make_record, today):
        driver = make_driver()
        make_record(driver, today - timedelta(days=4), cash_change="10", total_cash="10")

        with pytest.raises(ValidationError):
            OnboardingService(db_session).record_baseline(
                OnboardingCreate(driver_id=driver.id, date=today, cash_receivables=Decimal("100")),
                tenant_id, user_id,
            )

    def test_api_records_baseline_and_audits(self, client, auth_headers, db_session, make_driver, today):
        driver = make_driver()

        response = client.post("/api/v1/receivables/onboarding", headers=auth_headers(), json={
            "driver_id": str(driver.id),
            "date": today.isoformat(),
            "cash_receivables": "5000",
            "cylinder_receivables": 3,
        })

        assert response.status_code == 201
        record = response.json()["record"]
        assert Decimal(record["total_cash_receivables"]) == Decimal("5000")
        assert record["total_cylinder_receivables"] == 3
        db_session.rollback()
        assert db_session.query(AuditLog).filter_by(action=AuditAction.ONBOARDING).count() == 1

    def test_api_requires_admin(self, client, auth_headers, make_driver, today):
        driver = make_driver()

        response = client.post("/api/v1/receivables/onboarding", headers=auth_headers(role="manager"), json={
            "driver_id": str(driver.id),
            "date": today.isoformat(),
            "cash_receivables": "5000",
        })

        assert response.status_code == 403


# ===== CUSTOMER RECEIVABLES: PAYMENTS =====

class TestPayments:

    def test_full_payment_settles_receivable(self, client, auth_headers, db_session, collector, user_id,
                                             make_driver, make_customer_receivable, today):
        driver = make_driver()
        receivable = make_customer_receivable(driver, amount="500", phone="01811223344")

        response = client.post("/api/v1/receivables/payments", headers=auth_headers(), json={
            "customer_receivable_id": str(receivable.id),
            "amount": "500",
            "payment_method": "cash",
            "notes": "Paid at shop",
        })

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert Decimal(data["receivable"]["amount"]) == Decimal("0")
        assert data["receivable"]["status"] == "PAID"
        assert len(data["receivable"]["payments"]) == 1

        db_session.rollback()
        sale = db_session.query(Sale).filter_by(driver_id=driver.id, is_deposit_only=True).one()
        assert str(sale.id) == data["sale_id"]
        assert sale.cash_deposited == Decimal("500")
        assert sale.quantity == 0
        assert sale.sale_date == today

        event_row = db_session.query(PaymentEvent).filter_by(receivable_id=receivable.id).one()
        assert event_row.amount == Decimal("500")
        assert event_row.actor_user_id == user_id
        assert event_row.sale_id == sale.id

        audit = db_session.query(AuditLog).filter_by(entity_id=receivable.id, action=AuditAction.UPDATE).one()
        assert audit.old_values["amount"] == 500
        assert audit.new_values["amount"] == 0
        assert audit.metadata_["kind"] == "payment"

        assert len(collector.events) == 1
        event = collector.events[0]
        assert event.event_type == "payment_received"
        assert event.old_amount == Decimal("500")
        assert event.new_amount == Decimal("0")
        assert event.customer_phone == "01811223344"

    def test_daily_record_follows_customer_totals(self, client, auth_headers, db_session, make_driver,
                                                  make_customer_receivable, today):
        driver = make_driver()
        receivable = make_customer_receivable(driver, amount="500", status=ReceivableStatus.DUE_SOON)
        make_customer_receivable(driver, customer_name="Lima Traders", amount="250")

        response = client.post("/api/v1/receivables/payments", headers=auth_headers(), json={
            "customer_receivable_id": str(receivable.id),
            "amount": "200",
        })

        assert response.status_code == 200
        data = response.json()
        assert Decimal(data["receivable"]["amount"]) == Decimal("300")
        assert data["receivable"]["status"] == "DUE_SOON"
        assert data["reconciled"] is True

        db_session.rollback()
        record = db_session.query(ReceivableRecord).filter_by(driver_id=driver.id, date=today).one()
        assert record.total_cash_receivables == Decimal("550")
        reconcile_audit = db_session.query(AuditLog).filter_by(action=AuditAction.RECONCILE).one()
        assert reconcile_audit.entity_id == record.id

    def test_payments_on_same_day_share_one_deposit_sale(self, client, auth_headers, db_session, make_driver,
                                                         make_customer_receivable):
        driver = make_driver()
        receivable = make_customer_receivable(driver, amount="500")

        for amount in ("100", "150"):
            response = client.post("/api/v1/receivables/payments", headers=auth_headers(), json={
                "customer_receivable_id": str(receivable.id),
                "amount": amount,
            })
            assert response.status_code == 200

        db_session.rollback()
        sales = db_session.query(Sale).filter_by(driver_id=driver.id, is_deposit_only=True).all()
        assert len(sales) == 1
        assert sales[0].cash_deposited == Decimal("250")
        assert db_session.query(PaymentEvent).count() == 2

    def test_overpayment_is_rejected_without_changes(self, client, auth_headers, db_session, collector,
                                                     make_driver, make_customer_receivable):
        driver = make_driver()
        receivable = make_customer_receivable(driver, amount="500")

        response = client.post("/api/v1/receivables/payments", headers=auth_headers(), json={
            "customer_receivable_id": str(receivable.id),
            "amount": "600",
        })

        assert response.status_code == 400
        assert response.json()["error"] == "ValidationError"
        assert "cannot exceed" in response.json()["details"]

        db_session.rollback()
        unchanged = db_session.get(CustomerReceivable, receivable.id)
        assert unchanged.amount == Decimal("500")
        assert unchanged.status == ReceivableStatus.CURRENT
        assert db_session.query(Sale).count() == 0
        assert db_session.query(PaymentEvent).count() == 0
        assert db_session.query(AuditLog).count() == 0
        assert collector.events == []

    def test_reconciled_totals_survive_recalculation(self, client, auth_headers, db_session, tenant_id,
                                                     make_driver, make_customer_receivable, make_sale, today):
        driver = make_driver()
        receivable = make_customer_receivable(driver, amount="500")
        make_customer_receivable(driver, customer_name="Lima Traders", amount="250")

        response = client.post("/api/v1/receivables/payments", headers=auth_headers(), json={
            "customer_receivable_id": str(receivable.id),
            "amount": "200",
        })
        assert response.status_code == 200

        db_session.rollback()
        record = db_session.query(ReceivableRecord).filter_by(driver_id=driver.id, date=today).one()
        assert record.cash_receivables_change == Decimal("-200")
        assert record.adjustment_cash_receivables == Decimal("750")
        assert record.total_cash_receivables == Decimal("550")
        assert verify_continuity(driver_chain(db_session, tenant_id, driver.id).all()) == []

        result = RecalculationEngine(db_session).recalculate_tenant(tenant_id)

        assert result.stats.updated_records == 0
        validation = CustomerReceivableLedger(db_session).validate_against_driver_totals(tenant_id)
        assert validation[0].sales_cash_total == Decimal("550")
        assert validation[0].cash_matches is True

        # Later sales on the same day build on the synced total
        make_sale(driver, today, SaleType.PACKAGE, quantity=1, unit_price="100")
        ReceivablesCalculator(db_session).calculate_for_date(tenant_id, driver.id, today)
        db_session.commit()
        assert record.total_cash_receivables == Decimal("650")

    def test_failed_rewalk_rolls_back_the_payment(self, db_session, tenant_id, user_id, collector, make_driver,
                                                  make_customer_receivable, make_record, today, monkeypatch):
        driver = make_driver()
        receivable = make_customer_receivable(driver, amount="500")
        make_record(driver, today + timedelta(days=1), cash_change="10")

        class BrokenClock:
            @classmethod
            def now(cls, tz=None):
                raise OperationalError("UPDATE receivable_records", {}, Exception("database is locked"))

        monkeypatch.setattr(recalculation, "datetime", BrokenClock)

        with pytest.raises(PersistenceError):
            CustomerReceivableLedger(db_session, EventPublisher(collector)).record_payment(
                tenant_id, user_id, receivable.id, Decimal("200"),
            )

        db_session.expire_all()
        assert db_session.get(CustomerReceivable, receivable.id).amount == Decimal("500")
        assert db_session.query(PaymentEvent).count() == 0
        assert db_session.query(Sale).count() == 0
        assert db_session.query(ReceivableRecord).filter_by(driver_id=driver.id, date=today).count() == 0
        assert collector.events == []

    @pytest.mark.parametrize("amount", ["0.005", "99.999"])
    def test_sub_cent_amount_is_rejected(self, client, auth_headers, db_session, make_driver,
                                         make_customer_receivable, amount):
        receivable = make_customer_receivable(make_driver(), amount="500")

        response = client.post("/api/v1/receivables/payments", headers=auth_headers(), json={
            "customer_receivable_id": str(receivable.id),
            "amount": amount,
        })

        assert response.status_code == 400
        assert "decimal places" in response.json()["details"]
        db_session.rollback()
        assert db_session.get(CustomerReceivable, receivable.id).amount == Decimal("500")
        assert db_session.query(PaymentEvent).count() == 0

    @pytest.mark.parametrize("amount", ["0", "-10"])
    def test_non_positive_amount_is_rejected(self, client, auth_headers, make_driver, make_customer_receivable, amount):
        receivable = make_customer_receivable(make_driver(), amount="500")

        response = client.post("/api/v1/receivables/payments", headers=auth_headers(), json={
            "customer_receivable_id": str(receivable.id),
            "amount": amount,
        })

        assert response.status_code == 400

    def test_payment_against_cylinder_receivable_is_not_found(self, client, auth_headers, make_driver,
                                                              make_customer_receivable):
        receivable = make_customer_receivable(make_driver(), receivable_type=ReceivableType.CYLINDER, quantity=3)

        response = client.post("/api/v1/receivables/payments", headers=auth_headers(), json={
            "customer_receivable_id": str(receivable.id),
            "amount": "100",
        })

        assert response.status_code == 404
        assert response.json()["error"] == "NotFoundError"

    def test_inactive_driver_receivable_is_not_found(self, client, auth_headers, make_driver, make_customer_receivable):
        receivable = make_customer_receivable(make_driver(status=DriverStatus.INACTIVE), amount="500")

        response = client.post("/api/v1/receivables/payments", headers=auth_headers(), json={
            "customer_receivable_id": str(receivable.id),
            "amount": "100",
        })

        assert response.status_code == 404

    def test_other_tenant_cannot_pay(self, client, auth_headers, make_driver, make_customer_receivable):
        receivable = make_customer_receivable(make_driver(), amount="500")

        response = client.post("/api/v1/receivables/payments", headers=auth_headers(tenant=uuid4()), json={
            "customer_receivable_id": str(receivable.id),
            "amount": "100",
        })

        assert response.status_code == 404

    def test_notification_failure_does_not_fail_payment(self, database, auth_headers, db_session, make_driver,
                                                        make_customer_receivable):
        def broken_dispatcher(event):
            raise RuntimeError("provider down")

        client = TestClient(create_app(database=database, event_publisher=EventPublisher(broken_dispatcher)))
        receivable = make_customer_receivable(make_driver(), amount="500")

        response = client.post("/api/v1/receivables/payments", headers=auth_headers(), json={
            "customer_receivable_id": str(receivable.id),
            "amount": "500",
        })

        assert response.status_code == 200
        db_session.rollback()
        assert db_session.get(CustomerReceivable, receivable.id).status == ReceivableStatus.PAID


# ===== CUSTOMER RECEIVABLES: CYLINDER RETURNS =====

class TestCylinderReturns:

    def test_partial_return_keeps_status(self, client, auth_headers, db_session, collector, make_driver,
                                         make_product, make_customer_receivable):
        driver = make_driver()
        product = make_product(size="12L")
        receivable = make_customer_receivable(driver, receivable_type=ReceivableType.CYLINDER, quantity=3, size="12L")

        response = client.post("/api/v1/receivables/cylinder-returns", headers=auth_headers(), json={
            "customer_receivable_id": str(receivable.id),
            "quantity": 2,
        })

        assert response.status_code == 200
        data = response.json()
        assert data["receivable"]["quantity"] == 1
        assert data["receivable"]["status"] == "CURRENT"

        db_session.rollback()
        sale = db_session.query(Sale).filter_by(driver_id=driver.id, is_deposit_only=True).one()
        assert sale.sale_type == SaleType.REFILL
        assert sale.cylinders_deposited == 2
        assert sale.product_id == product.id
        assert db_session.query(ReturnEvent).filter_by(receivable_id=receivable.id).one().size == "12L"
        assert collector.events[0].change_by_size == {"12L": -2}

    def test_returning_everything_settles(self, client, auth_headers, make_driver, make_product,
                                          make_customer_receivable):
        make_product(size="12L")
        receivable = make_customer_receivable(make_driver(), receivable_type=ReceivableType.CYLINDER,
                                              quantity=2, size="12L")

        response = client.post("/api/v1/receivables/cylinder-returns", headers=auth_headers(), json={
            "customer_receivable_id": str(receivable.id),
            "quantity": 2,
        })

        assert response.status_code == 200
        assert response.json()["receivable"]["status"] == "PAID"

    def test_over_return_is_rejected(self, client, auth_headers, db_session, make_driver, make_customer_receivable):
        receivable = make_customer_receivable(make_driver(), receivable_type=ReceivableType.CYLINDER, quantity=3)

        response = client.post("/api/v1/receivables/cylinder-returns", headers=auth_headers(), json={
            "customer_receivable_id": str(receivable.id),
            "quantity": 4,
        })

        assert response.status_code == 400
        db_session.rollback()
        assert db_session.get(CustomerReceivable, receivable.id).quantity == 3
        assert db_session.query(ReturnEvent).count() == 0


# ===== STATUS / RECONCILIATION =====

class TestStatusForDueDate:

    @pytest.mark.parametrize("offset,expected", [
        (-1, ReceivableStatus.OVERDUE),
        (0, ReceivableStatus.DUE_SOON),
        (3, ReceivableStatus.DUE_SOON),
        (4, ReceivableStatus.CURRENT),
    ])
    def test_window(self, offset, expected):
        today = date(2026, 5, 10)
        assert status_for_due_date(today + timedelta(days=offset), today) == expected

    def test_no_due_date_is_current(self):
        assert status_for_due_date(None) == ReceivableStatus.CURRENT

    def test_refresh_leaves_paid_rows_alone(self, db_session, tenant_id, make_driver, make_customer_receivable, today):
        driver = make_driver()
        late = make_customer_receivable(driver, amount="100", due_date=today - timedelta(days=1))
        stale = make_customer_receivable(driver, amount="100", due_date=today + timedelta(days=10),
                                         status=ReceivableStatus.OVERDUE)
        paid = make_customer_receivable(driver, amount="0", due_date=today - timedelta(days=30),
                                        status=ReceivableStatus.PAID)

        updated = CustomerReceivableLedger(db_session).refresh_statuses(tenant_id, today)

        assert updated == 2
        db_session.expire_all()
        assert db_session.get(CustomerReceivable, late.id).status == ReceivableStatus.OVERDUE
        assert db_session.get(CustomerReceivable, stale.id).status == ReceivableStatus.CURRENT
        assert db_session.get(CustomerReceivable, paid.id).status == ReceivableStatus.PAID


class TestReconciliation:

    def test_driver_without_customer_receivables_is_left_alone(self, db_session, tenant_id, make_driver,
                                                               make_record, today):
        driver = make_driver()
        make_record(driver, today, cash_change="100", total_cash="100")

        result = ReceivablesReconciler(db_session).sync_driver(tenant_id, driver.id)

        assert result.applied is False
        assert result.reason == "no customer receivables"

    def test_mismatch_overwrites_latest_totals(self, db_session, tenant_id, make_driver, make_record,
                                               make_customer_receivable, today):
        driver = make_driver()
        make_record(driver, today - timedelta(days=3), cash_change="100", total_cash="100")
        latest = make_record(driver, today, cash_change="200", total_cash="300", total_cylinders=1, cylinder_change=1)
        make_customer_receivable(driver, amount="275")
        make_customer_receivable(driver, receivable_type=ReceivableType.CYLINDER, quantity=2)
        make_customer_receivable(driver, amount="999", status=ReceivableStatus.PAID)

        result = ReceivablesReconciler(db_session).sync_driver(tenant_id, driver.id)

        assert result.applied is True
        assert result.old_cash == Decimal("300")
        assert result.new_cash == Decimal("275")
        assert result.new_cylinders == 2
        db_session.expire_all()
        synced = db_session.get(ReceivableRecord, latest.id)
        assert synced.total_cash_receivables == Decimal("275")
        assert synced.adjustment_cash_receivables == Decimal("-25")
        assert synced.adjustment_cylinder_receivables == 1
        assert verify_continuity(driver_chain(db_session, tenant_id, driver.id).all()) == []

    def test_matching_totals_are_in_sync(self, db_session, tenant_id, make_driver, make_record,
                                         make_customer_receivable, today):
        driver = make_driver()
        make_record(driver, today, cash_change="275", total_cash="275")
        make_customer_receivable(driver, amount="275")

        result = ReceivablesReconciler(db_session).sync_driver(tenant_id, driver.id)

        assert result.applied is False
        assert result.in_sync is True


# ===== HTTP SURFACE =====

class TestReceivablesApi:

    def test_missing_token_is_unauthorized(self, client):
        response = client.get("/api/v1/receivables")

        assert response.status_code == 401
        assert response.headers["WWW-Authenticate"] == "Bearer"
        assert response.json()["error"] == "AuthorizationError"

    def test_garbage_token_is_unauthorized(self, client):
        response = client.get("/api/v1/receivables", headers={"Authorization": "Bearer not-a-jwt"})

        assert response.status_code == 401

    def test_token_without_tenant_is_forbidden(self, client, auth_headers):
        response = client.get("/api/v1/receivables", headers=auth_headers(tenant=None))

        assert response.status_code == 403

    def test_viewer_reads_but_cannot_write(self, client, auth_headers, make_driver, make_customer_receivable):
        receivable = make_customer_receivable(make_driver(), amount="500")

        assert client.get("/api/v1/receivables", headers=auth_headers(role="viewer")).status_code == 200
        response = client.post("/api/v1/receivables/payments", headers=auth_headers(role="viewer"), json={
            "customer_receivable_id": str(receivable.id),
            "amount": "100",
        })
        assert response.status_code == 403

    def test_overview(self, client, auth_headers, make_driver, make_record, today):
        driver = make_driver()
        make_record(driver, today - timedelta(days=1), cash_change="120", total_cash="120")
        make_record(driver, today, cash_change="30", total_cash="150")

        response = client.get("/api/v1/receivables", headers=auth_headers(), params={"driver_id": str(driver.id)})

        assert response.status_code == 200
        data = response.json()
        assert [r["date"] for r in data["records"]] == [today.isoformat(), (today - timedelta(days=1)).isoformat()]
        assert Decimal(data["summary"]["total_cash_receivables"]) == Decimal("150")

    def test_calculate_single_date(self, client, auth_headers, make_driver, make_sale, today):
        driver = make_driver()
        make_sale(driver, today, SaleType.PACKAGE, quantity=1, unit_price="900")

        response = client.post("/api/v1/receivables/calculate", headers=auth_headers(),
                               json={"date": today.isoformat()})

        assert response.status_code == 200
        records = response.json()["records"]
        assert len(records) == 1
        assert Decimal(records[0]["total_cash_receivables"]) == Decimal("900")

    def test_recalculate_all(self, client, auth_headers, make_driver, make_record, today):
        driver = make_driver()
        make_record(driver, today, cash_change="100")

        response = client.post("/api/v1/receivables/recalculate-all", headers=auth_headers())

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["stats"]["updated_records"] == 1
        assert data["errors"] is None

    @pytest.mark.parametrize("days", [0, 91])
    def test_recalculate_days_out_of_range(self, client, auth_headers, days):
        response = client.post("/api/v1/receivables/recalculate", headers=auth_headers(), params={"days": days})

        assert response.status_code == 400

    def test_recalculate_recent_days(self, client, auth_headers, make_driver):
        make_driver()

        response = client.post("/api/v1/receivables/recalculate", headers=auth_headers(), params={"days": 2})

        assert response.status_code == 200
        assert response.json()["stats"]["total_records"] == 2

    def test_all_tenants_requires_super_admin(self, client, auth_headers):
        assert client.post("/api/v1/admin/receivables/recalculate-all-tenants",
                           headers=auth_headers()).status_code == 403
        response = client.post("/api/v1/admin/receivables/recalculate-all-tenants",
                               headers=auth_headers(role="super_admin"))
        assert response.status_code == 200

    def test_create_and_list_customer_receivables(self, client, auth_headers, db_session, make_driver,
                                                  make_customer_receivable, today):
        driver = make_driver()
        former = make_driver("Former", status=DriverStatus.INACTIVE)
        make_customer_receivable(former, amount="80")
        make_customer_receivable(driver, customer_name="Settled", amount="0", status=ReceivableStatus.PAID)

        response = client.post("/api/v1/receivables/customers", headers=auth_headers(), json={
            "driver_id": str(driver.id),
            "customer_name": "  Karim Store ",
            "receivable_type": "CASH",
            "amount": "750",
            "due_date": (today + timedelta(days=2)).isoformat(),
        })
        assert response.status_code == 201
        assert response.json()["status"] == "DUE_SOON"
        assert response.json()["customer_name"] == "Karim Store"

        cylinders = client.post("/api/v1/receivables/customers", headers=auth_headers(), json={
            "driver_id": str(driver.id),
            "customer_name": "Lima Traders",
            "receivable_type": "CYLINDER",
            "quantity": 2,
        })
        assert cylinders.status_code == 201
        assert cylinders.json()["size"] == "12L"

        listing = client.get("/api/v1/receivables/customers", headers=auth_headers()).json()
        assert sorted(r["customer_name"] for r in listing["receivables"]) == ["Karim Store", "Lima Traders"]
        validation = {v["driver_name"]: v for v in listing["validation"]}
        assert set(validation) == {"Rahim"}
        assert Decimal(validation["Rahim"]["customer_cash_total"]) == Decimal("750")
        assert validation["Rahim"]["cash_matches"] is False

        with_paid = client.get("/api/v1/receivables/customers", headers=auth_headers(),
                               params={"include_paid": "true"}).json()
        assert len(with_paid["receivables"]) == 3

    def test_cash_receivable_needs_amount(self, client, auth_headers, make_driver):
        response = client.post("/api/v1/receivables/customers", headers=auth_headers(), json={
            "driver_id": str(make_driver().id),
            "customer_name": "Karim Store",
            "receivable_type": "CASH",
        })

        assert response.status_code == 400

    def test_new_receivables_notify_the_customer(self, client, auth_headers, db_session, tenant_id, collector,
                                                 make_driver):
        driver = make_driver()
        customer = Customer(tenant_id=tenant_id, name="Karim Store", phone="01811223344", driver_id=driver.id)
        db_session.add(customer)
        db_session.commit()

        cash = client.post("/api/v1/receivables/customers", headers=auth_headers(), json={
            "driver_id": str(driver.id),
            "customer_id": str(customer.id),
            "customer_name": "Karim Store",
            "receivable_type": "CASH",
            "amount": "300",
        })
        cylinders = client.post("/api/v1/receivables/customers", headers=auth_headers(), json={
            "driver_id": str(driver.id),
            "customer_name": "Lima Traders",
            "receivable_type": "CYLINDER",
            "quantity": 2,
            "size": "35L",
        })
        rejected = client.post("/api/v1/receivables/customers", headers=auth_headers(), json={
            "driver_id": str(driver.id),
            "customer_name": "Karim Store",
            "receivable_type": "CASH",
            "amount": "10.005",
        })

        assert cash.status_code == 201
        assert cylinders.status_code == 201
        assert rejected.status_code == 400
        assert [e.event_type for e in collector.events] == ["receivables_changed", "receivables_changed"]

        cash_event, cylinder_event = collector.events
        assert str(cash_event.customer_receivable_id) == cash.json()["id"]
        assert cash_event.customer_phone == "01811223344"
        assert cash_event.old_amount == Decimal("0")
        assert cash_event.new_amount == Decimal("300")
        assert cash_event.change_by_size == {}
        assert cylinder_event.receivable_type == "CYLINDER"
        assert cylinder_event.new_amount == Decimal("2")
        assert cylinder_event.change_by_size == {"35L": 2}
        assert cylinder_event.customer_phone is None

    def test_get_unknown_customer_receivable(self, client, auth_headers):
        response = client.get(f"/api/v1/receivables/customers/{uuid4()}", headers=auth_headers())

        assert response.status_code == 404
