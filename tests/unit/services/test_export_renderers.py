"""
Unit tests for export renderers.
"""
import csv
import io
import json

import pytest

from clarifi_privacy.services.export_renderers import (
    render_csv,
    render_csv_section,
    render_html,
    render_json,
)


@pytest.fixture
def document():
    """Export document with one failed section."""
    return {
        "metadata": {
            "exportId": "CSV-1700000000000",
            "exportDate": "2024-03-15T10:00:00+00:00",
            "format": "csv",
            "dateRange": {"selector": "last-month", "description": "Last month"},
            "complianceFramework": "PIPEDA",
            "privacyNotice": "Keep this export safe.",
        },
        "data": {
            "settings": {
                "application": {
                    "language": "fr",
                    "theme": "dark",
                    "biometricAuthentication": True,
                    "onboardingCompleted": False,
                },
                "notifications": {"enabled": True, "quietHours": {"enabled": False}},
                "creditCardSettings": {"utilizationAlertThreshold": 70, "targetOverallUtilization": 30},
            },
            "personalInfo": {
                "exportDate": "2024-03-15T10:00:00+00:00",
                "userId": "user_123",
                "email": None,
                "preferences": {"language": "fr", "theme": "dark", "biometricEnabled": True},
            },
            "transactions": {
                "summary": {"totalCount": 2, "totalIncome": 2500.0, "totalExpenses": 42.1},
                "transactions": [
                    {
                        "date": "2024-03-01",
                        "amount": 2500.0,
                        "description": "Payroll, March",
                        "category": {"id": 1, "name": "Salary"},
                        "merchant": None,
                        "isRecurring": True,
                        "userVerified": True,
                        "tags": ["income", "monthly"],
                    },
                    {
                        "date": "2024-02-20",
                        "amount": -42.1,
                        "description": "<script>alert(1)</script>",
                        "category": {"id": 30, "name": "Groceries"},
                        "merchant": "Metro",
                        "isRecurring": False,
                        "userVerified": False,
                        "tags": [],
                    },
                ],
            },
            "categories": {"error": "Failed to retrieve category data", "timestamp": "2024-03-15T10:00:00+00:00"},
        },
    }


@pytest.mark.unit
class TestCsvRenderer:
    """Test CSV rendering."""

    def test_sections_in_fixed_order(self, document):
        output = render_csv(document)

        titles = [block.split("\n", 1)[0] for block in output.split("\n\n")]
        assert titles == ["PERSONAL INFORMATION", "TRANSACTIONS", "CATEGORIES", "APP SETTINGS"]

    def test_failed_section_renders_error_marker(self, document):
        section = render_csv_section("categories", document["data"]["categories"])

        assert section == "CATEGORIES\nError,Failed to retrieve category data\n"

    def test_transaction_rows(self, document):
        """Test quoting, flags and tag joining."""
        section = render_csv_section("transactions", document["data"]["transactions"])

        rows = list(csv.reader(io.StringIO(section)))
        assert rows[0] == ["TRANSACTIONS"]
        assert rows[1] == ["Date", "Amount", "Description", "Category", "Merchant", "Verified", "Recurring", "Tags"]
        assert rows[2] == ["2024-03-01", "2500.0", "Payroll, March", "Salary", "", "true", "true", "income;monthly"]
        assert rows[3][5:7] == ["false", "false"]
        assert '"Payroll, March"' in section

    def test_personal_info_missing_values(self, document):
        rows = list(csv.reader(io.StringIO(
            render_csv_section("personalInfo", document["data"]["personalInfo"])
        )))

        values = {row[0]: row[1] for row in rows[2:]}
        assert values["Email"] == "N/A"
        assert values["Biometric Enabled"] == "true"
        assert values["Onboarding Completed"] == "false"

    def test_omitted_sections_not_rendered(self, document):
        del document["data"]["categories"]

        assert "CATEGORIES" not in render_csv(document)


@pytest.mark.unit
class TestJsonRenderer:
    """Test JSON rendering."""

    def test_render_json(self, document):
        output = render_json(document)

        assert json.loads(output) == document
        assert output.startswith("{\n  ")


@pytest.mark.unit
class TestHtmlRenderer:
    """Test printable HTML rendering."""

    def test_render_html(self, document):
        output = render_html(document)

        assert output.startswith("<!DOCTYPE html>")
        assert "CSV-1700000000000" in output
        assert "Keep this export safe." in output
        assert "Error: Failed to retrieve category data" in output
        assert "Metro" in output
        assert "PIPEDA" in output

    @pytest.mark.security
    def test_html_escapes_user_content(self, document):
        output = render_html(document)

        assert "<script>alert(1)</script>" not in output
        assert "&lt;script&gt;" in output

    def test_qa_section_absent_when_not_requested(self, document):
        assert "Q&amp;A History" not in render_html(document)
