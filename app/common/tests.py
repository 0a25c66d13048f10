"""
Tests for shared helpers: phone validation, error rendering and middleware
"""
import pytest

from app.common.validators import clean_phone, validate_bangladesh_phone, format_bangladesh_phone


class TestBangladeshPhone:

    @pytest.mark.parametrize("phone", [
        "+8801711223344",
        "8801711223344",
        "01711223344",
        "1711223344",
        "017-1122 3344",
        "(017) 11223344",
    ])
    def test_valid(self, phone):
        assert validate_bangladesh_phone(phone) is True
        assert format_bangladesh_phone(phone) == "+8801711223344"

    @pytest.mark.parametrize("phone", ["", "0171122334", "01211223344", "+8809711223344", "abc"])
    def test_invalid(self, phone):
        assert validate_bangladesh_phone(phone) is False
        assert format_bangladesh_phone(phone) is None

    def test_clean_phone(self):
        assert clean_phone(" 017-11 (22) 3344 ") == "01711223344"
        assert clean_phone(None) == ""


class TestApplicationShell:

    def test_root(self, client):
        response = client.get("/")

        assert response.status_code == 200
        assert response.json()["message"] == "GasLedger API is running"

    def test_health_checks_database(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_security_and_timing_headers(self, client):
        response = client.get("/")

        assert response.headers["X-Content-Type-Options"] == "nosniff"
        assert response.headers["X-Frame-Options"] == "DENY"
        assert "X-Process-Time-Ms" in response.headers

    def test_validation_errors_use_ledger_shape(self, client, auth_headers):
        response = client.post("/api/v1/receivables/payments", headers=auth_headers(), json={"amount": "10"})

        assert response.status_code == 400
        body = response.json()
        assert body["success"] is False
        assert body["error"] == "ValidationError"
        assert isinstance(body["details"], list)
