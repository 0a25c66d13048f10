"""
Tests for the audit module: the change-history report and metadata parsing
"""
from datetime import datetime, timezone
from decimal import Decimal
from uuid import uuid4

from app.modules.audit.models import AuditLog, AuditAction
from app.modules.audit.schemas import PaymentMetadata
from app.modules.audit.service import ReceivablesChangesReport, CUSTOMER_RECEIVABLE_ENTITY
from app.modules.receivables.models import ReceivableType


def audit_row(old_values, new_values, metadata=None, action=AuditAction.UPDATE):
    return AuditLog(
        id=uuid4(),
        tenant_id=uuid4(),
        action=action,
        entity_type=CUSTOMER_RECEIVABLE_ENTITY,
        entity_id=uuid4(),
        old_values=old_values,
        new_values=new_values,
        metadata_=metadata,
        created_at=datetime.now(timezone.utc),
    )


# ===== DESCRIBING ROWS =====

class TestDescribeChange:

    def test_payment_metadata_is_parsed(self):
        row = audit_row(
            {"customer_name": "Karim Store", "receivable_type": "CASH", "amount": 500, "status": "CURRENT"},
            {"customer_name": "Karim Store", "receivable_type": "CASH", "amount": 300, "status": "CURRENT"},
            {"kind": "payment", "payment_amount": "200", "payment_method": "cash",
             "customer_name": "Karim Store", "driver_name": "Rahim"},
        )

        change = ReceivablesChangesReport(None, row.tenant_id)._describe(row)

        assert change.action == "PAYMENT"
        assert change.amount == Decimal("200")
        assert change.driver_name == "Rahim"
        assert isinstance(change.metadata, PaymentMetadata)

    def test_settlement_without_metadata(self):
        row = audit_row(
            {"customer_name": "Karim Store", "receivable_type": "CASH", "amount": 100, "status": "OVERDUE"},
            {"customer_name": "Karim Store", "receivable_type": "CASH", "amount": 0, "status": "PAID"},
        )

        change = ReceivablesChangesReport(None, row.tenant_id)._describe(row)

        assert change.action == "PAID"
        assert change.driver_name == "Unknown Driver"

    def test_quantity_drop_without_metadata_is_a_return(self):
        row = audit_row(
            {"customer_name": "Lima", "receivable_type": "CYLINDER", "quantity": 3, "status": "CURRENT"},
            {"customer_name": "Lima", "receivable_type": "CYLINDER", "quantity": 1, "status": "CURRENT"},
        )

        assert ReceivablesChangesReport(None, row.tenant_id)._describe(row).action == "RETURN"

    def test_unreadable_metadata_is_skipped(self):
        assert ReceivablesChangesReport._parse_metadata({"kind": "mystery"}) is None
        assert ReceivablesChangesReport._parse_metadata(None) is None


# ===== CHANGE HISTORY API =====

class TestChangesReport:

    def test_history_of_create_payment_and_return(self, client, auth_headers, make_driver, make_product):
        driver = make_driver()
        make_product(size="12L")

        cash = client.post("/api/v1/receivables/customers", headers=auth_headers(), json={
            "driver_id": str(driver.id), "customer_name": "Karim Store",
            "receivable_type": ReceivableType.CASH.value, "amount": "500",
        }).json()
        cylinders = client.post("/api/v1/receivables/customers", headers=auth_headers(), json={
            "driver_id": str(driver.id), "customer_name": "Lima Traders",
            "receivable_type": ReceivableType.CYLINDER.value, "quantity": 3,
        }).json()
        client.post("/api/v1/receivables/payments", headers=auth_headers(), json={
            "customer_receivable_id": cash["id"], "amount": "200",
        })
        client.post("/api/v1/receivables/cylinder-returns", headers=auth_headers(), json={
            "customer_receivable_id": cylinders["id"], "quantity": 1,
        })

        response = client.get("/api/v1/receivables/changes", headers=auth_headers(role="viewer"))

        assert response.status_code == 200
        data = response.json()
        assert data["pagination"]["total"] == 4
        actions = sorted(change["action"] for change in data["changes"])
        assert actions == ["CREATE", "CREATE", "PAYMENT", "RETURN"]
        payment = next(c for c in data["changes"] if c["action"] == "PAYMENT")
        assert payment["driver_name"] == "Rahim"
        assert payment["customer_name"] == "Karim Store"
        assert Decimal(str(payment["amount"])) == Decimal("200")
        assert payment["metadata"]["kind"] == "payment"

    def test_pagination_and_driver_filter(self, client, auth_headers, make_driver):
        rahim = make_driver("Rahim")
        jamal = make_driver("Jamal")
        for driver, name in ((rahim, "A"), (rahim, "B"), (rahim, "C"), (jamal, "D")):
            client.post("/api/v1/receivables/customers", headers=auth_headers(), json={
                "driver_id": str(driver.id), "customer_name": name, "receivable_type": "CASH", "amount": "10",
            })

        page = client.get("/api/v1/receivables/changes", headers=auth_headers(),
                          params={"limit": 2, "driver_id": str(rahim.id)}).json()

        assert page["pagination"] == {"page": 1, "limit": 2, "total": 3, "pages": 2}
        assert len(page["changes"]) == 2
        second = client.get("/api/v1/receivables/changes", headers=auth_headers(),
                            params={"limit": 2, "page": 2, "driver_id": str(rahim.id)}).json()
        names = {c["customer_name"] for c in page["changes"] + second["changes"]}
        assert names == {"A", "B", "C"}

    def test_other_tenants_history_is_hidden(self, client, auth_headers, make_driver):
        driver = make_driver()
        client.post("/api/v1/receivables/customers", headers=auth_headers(), json={
            "driver_id": str(driver.id), "customer_name": "Karim", "receivable_type": "CASH", "amount": "10",
        })

        page = client.get("/api/v1/receivables/changes", headers=auth_headers(tenant=uuid4())).json()

        assert page["changes"] == []
        assert page["pagination"]["total"] == 0
