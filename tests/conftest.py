"""Pytest configuration and fixtures."""

import tempfile
from pathlib import Path
from typing import Any, Callable
from unittest.mock import patch

import httpx
import pytest

from itr_wizard.config import reset_config


@pytest.fixture
def temp_dir():
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def mock_config(temp_dir, monkeypatch):
    """Point configuration at a temp directory and keep the keyring out of tests."""
    config_dir = temp_dir / ".itr-wizard"
    config_dir.mkdir(parents=True)

    monkeypatch.setenv("ITR_WIZARD_CONFIG_DIR", str(config_dir))
    monkeypatch.delenv("ITR_WIZARD_API_KEY", raising=False)
    monkeypatch.delenv("ITR_WIZARD_SERVICE_URL", raising=False)
    reset_config()

    with patch("itr_wizard.config.keyring") as mock_keyring:
        mock_keyring.get_password.return_value = None
        yield config_dir

    reset_config()


@pytest.fixture
def personal_details():
    """A complete personal details payload."""
    return {
        "employee_name": "Asha Verma",
        "pan": "ABCDE1234F",
        "email_address": "asha.verma@example.com",
        "mobile_number": "9876543210",
        "father_name": "Ravi Verma",
        "gender": 1,
        "marital_status": 0,
    }


@pytest.fixture
def tax_data():
    """A salaried tax data payload with a little intraday trading."""
    return {
        "assessment_year": "2025-26",
        "financial_year": "2024-25",
        "employer_name": "Acme Technologies Pvt Ltd",
        "salary_section17": 780000,
        "interest_on_savings": 12000,
        "intraday_trading_income": 5000,
        "stocks_ltcg": 8000,
        "total_tax_deducted": 50000,
    }


@pytest.fixture
def calculation_response():
    """A calculation service response body."""
    return {
        "taxCalculation": {
            "taxableIncome": 730000,
            "financialYear": "2024-25",
            "totalTax": 32500,
            "surcharge": 0,
            "healthAndEducationCess": 1300,
            "totalTaxWithCess": 33800,
            "effectiveTaxRate": 4.63,
            "taxBreakdown": [
                {"slabDescription": "0 - 3,00,000", "incomeInSlab": 300000, "taxRate": 0, "taxAmount": 0},
                {"slabDescription": "3,00,001 - 7,00,000", "incomeInSlab": 400000, "taxRate": 5, "taxAmount": 20000},
                {"slabDescription": "7,00,001 - 10,00,000", "incomeInSlab": 30000, "taxRate": 10, "taxAmount": 3000},
            ],
        },
        "refundCalculation": {
            "totalTaxLiability": 33800,
            "tdsDeducted": 50000,
            "refundAmount": 16200,
            "additionalTaxDue": 0,
            "isRefundDue": True,
        },
    }


@pytest.fixture
def service_transport() -> Callable[..., httpx.MockTransport]:
    """
    Build a mock transport for the filing service.

    Routes map a URL path to a JSON body (answered with 200), an
    httpx.Response, or a callable taking the request.
    """
    def factory(routes: dict[str, Any], calls: list | None = None) -> httpx.MockTransport:
        def handler(request: httpx.Request) -> httpx.Response:
            if calls is not None:
                calls.append(request)
            route = routes.get(request.url.path)
            if route is None:
                return httpx.Response(404, json={"error": f"No route for {request.url.path}"})
            if callable(route):
                return route(request)
            if isinstance(route, httpx.Response):
                return route
            return httpx.Response(200, json=route)
        return httpx.MockTransport(handler)

    return factory
