"""
Serializers turning collected export data into CSV, JSON and HTML payloads.

Every renderer receives the export document built by the export service:
``{"metadata": {...}, "data": {section: payload}}``. A section payload
containing an ``error`` key is a failed collection and renders as an inline
error marker instead of the section body.
"""
import csv
import io
import json
from typing import Any, Dict, Iterable, List

import jinja2

from ..utils.formatting import utc_now


SECTION_ORDER = ["personalInfo", "transactions", "categories", "settings", "qaHistory"]

CSV_SECTIONS = {
    "personalInfo": ("PERSONAL INFORMATION", ["Field", "Value"]),
    "transactions": (
        "TRANSACTIONS",
        ["Date", "Amount", "Description", "Category", "Merchant", "Verified", "Recurring", "Tags"],
    ),
    "categories": ("CATEGORIES", ["ID", "Name", "Color", "Total Spent", "Transaction Count"]),
    "settings": ("APP SETTINGS", ["Setting", "Value"]),
    "qaHistory": ("Q&A HISTORY", ["Date", "Summary", "Category", "Queries Count"]),
}


def is_error_marker(section: Any) -> bool:
    return isinstance(section, dict) and "error" in section


def _flag(value: Any) -> str:
    return "true" if value else "false"


def _or_na(value: Any) -> str:
    return "N/A" if value is None or value == "" else str(value)


# CSV

def _personal_info_rows(section: Dict[str, Any]) -> List[List[Any]]:
    preferences = section.get("preferences") or {}
    return [
        ["Export Date", section.get("exportDate")],
        ["User ID", _or_na(section.get("userId"))],
        ["Email", _or_na(section.get("email"))],
        ["Account Created", _or_na(section.get("accountCreated"))],
        ["Language Preference", preferences.get("language", "en")],
        ["Theme Preference", preferences.get("theme", "system")],
        ["Biometric Enabled", _flag(preferences.get("biometricEnabled"))],
        ["Last Login", _or_na(section.get("lastLogin"))],
        ["Onboarding Completed", _flag(preferences.get("onboardingCompleted"))],
    ]


def _transaction_rows(section: Dict[str, Any]) -> List[List[Any]]:
    rows = []
    for transaction in section.get("transactions", []):
        category = transaction.get("category") or {}
        rows.append([
            transaction.get("date"),
            transaction.get("amount"),
            transaction.get("description") or "",
            category.get("name") or "",
            transaction.get("merchant") or "",
            _flag(transaction.get("userVerified")),
            _flag(transaction.get("isRecurring")),
            ";".join(transaction.get("tags") or []),
        ])
    return rows


def _category_rows(section: Dict[str, Any]) -> List[List[Any]]:
    rows = []
    for category in section.get("categories", []):
        statistics = category.get("statistics") or {}
        rows.append([
            category.get("id"),
            category.get("name"),
            category.get("color"),
            f"{statistics.get('totalSpent', 0):.2f}",
            statistics.get("transactionCount", 0),
        ])
    return rows


def _settings_rows(section: Dict[str, Any]) -> List[List[Any]]:
    application = section.get("application") or {}
    notifications = section.get("notifications") or {}
    quiet_hours = notifications.get("quietHours") or {}
    credit_cards = section.get("creditCardSettings") or {}
    return [
        ["Language Preference", application.get("language", "en")],
        ["Theme", application.get("theme", "system")],
        ["Biometric Authentication", _flag(application.get("biometricAuthentication"))],
        ["Onboarding Completed", _flag(application.get("onboardingCompleted"))],
        ["Notifications Enabled", _flag(notifications.get("enabled", True))],
        ["Quiet Hours Start", _or_na(quiet_hours.get("startHour"))],
        ["Quiet Hours End", _or_na(quiet_hours.get("endHour"))],
        ["Utilization Alert Threshold", credit_cards.get("utilizationAlertThreshold", 70)],
        ["Target Overall Utilization", credit_cards.get("targetOverallUtilization", 30)],
    ]


def _qa_history_rows(section: Dict[str, Any]) -> List[List[Any]]:
    summary = section.get("summary") or {}
    queries = summary.get("currentMonthQueries", 0)
    return [[
        section.get("generatedAt") or utc_now().isoformat(),
        f"Total queries this month: {queries}",
        "usage_summary",
        queries,
    ]]


CSV_ROW_BUILDERS = {
    "personalInfo": _personal_info_rows,
    "transactions": _transaction_rows,
    "categories": _category_rows,
    "settings": _settings_rows,
    "qaHistory": _qa_history_rows,
}


def _write_rows(rows: Iterable[List[Any]]) -> str:
    output = io.StringIO()
    writer = csv.writer(output, quoting=csv.QUOTE_MINIMAL, lineterminator="\n")
    writer.writerows(rows)
    return output.getvalue()


def render_csv_section(name: str, section: Dict[str, Any]) -> str:
    title, header = CSV_SECTIONS[name]
    if is_error_marker(section):
        return f"{title}\n" + _write_rows([["Error", section["error"]]])
    return f"{title}\n" + _write_rows([header, *CSV_ROW_BUILDERS[name](section)])


def render_csv(document: Dict[str, Any]) -> str:
    """Sections in fixed order, separated by one blank line."""
    data = document.get("data", {})
    sections = [render_csv_section(name, data[name]) for name in SECTION_ORDER if name in data]
    return "\n".join(sections)


# JSON

def render_json(document: Dict[str, Any]) -> str:
    return json.dumps(document, indent=2, default=str)


# HTML

HTML_TEMPLATE = """<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="utf-8">
  <title>ClariFi Data Export - {{ metadata.exportId }}</title>
  <style>
    body { font-family: -apple-system, Helvetica, Arial, sans-serif; color: #1a1a1a; margin: 32px; line-height: 1.5; }
    header { border-bottom: 3px solid #2B5CE6; padding-bottom: 12px; margin-bottom: 24px; }
    h1 { color: #2B5CE6; margin: 0; }
    h2 { color: #2B5CE6; border-bottom: 1px solid #e0e0e0; padding-bottom: 4px; margin-top: 32px; }
    .meta { color: #666; font-size: 13px; }
    .notice { background: #f0f4ff; border-left: 4px solid #2B5CE6; padding: 12px 16px; font-size: 13px; }
    .error { background: #fff0f0; border-left: 4px solid #d32f2f; padding: 12px 16px; }
    table { width: 100%; border-collapse: collapse; font-size: 12px; }
    th, td { text-align: left; padding: 6px 8px; border-bottom: 1px solid #eee; }
    th { background: #fafafa; }
    .amount-positive { color: #2e7d32; }
    .amount-negative { color: #c62828; }
    .swatch { display: inline-block; width: 10px; height: 10px; border-radius: 50%; margin-right: 6px; }
    footer { margin-top: 40px; padding-top: 12px; border-top: 1px solid #e0e0e0; font-size: 11px; color: #888; }
  </style>
</head>
<body>
  <header>
    <h1>ClariFi Personal Data Export</h1>
    <div class="meta">
      Export ID: {{ metadata.exportId }} &middot; Generated: {{ metadata.exportDate }} &middot; Period: {{ metadata.dateRange.description }}
    </div>
  </header>

  <div class="notice">{{ metadata.privacyNotice }}</div>

  {% if data.personalInfo is defined %}
  <h2>Personal Information</h2>
  {% if data.personalInfo.error is defined %}
  <p class="error">Error: {{ data.personalInfo.error }}</p>
  {% else %}
  <table>
    <tr><th>User ID</th><td>{{ data.personalInfo.userId or "N/A" }}</td></tr>
    <tr><th>Email</th><td>{{ data.personalInfo.email or "N/A" }}</td></tr>
    <tr><th>Account Created</th><td>{{ data.personalInfo.accountCreated or "N/A" }}</td></tr>
    <tr><th>Last Login</th><td>{{ data.personalInfo.lastLogin or "N/A" }}</td></tr>
    <tr><th>Language</th><td>{{ data.personalInfo.preferences.language }}</td></tr>
    <tr><th>Theme</th><td>{{ data.personalInfo.preferences.theme }}</td></tr>
  </table>
  {% endif %}
  {% endif %}

  {% if data.transactions is defined %}
  <h2>Transactions</h2>
  {% if data.transactions.error is defined %}
  <p class="error">Error: {{ data.transactions.error }}</p>
  {% else %}
  <p class="meta">
    {{ data.transactions.summary.totalCount }} transactions &middot;
    Income {{ "%.2f"|format(data.transactions.summary.totalIncome) }} &middot;
    Expenses {{ "%.2f"|format(data.transactions.summary.totalExpenses) }}
  </p>
  <table>
    <tr><th>Date</th><th>Description</th><th>Category</th><th>Merchant</th><th>Amount</th></tr>
    {% for transaction in data.transactions.transactions %}
    <tr>
      <td>{{ transaction.date }}</td>
      <td>{{ transaction.description }}</td>
      <td>{{ transaction.category.name or "" }}</td>
      <td>{{ transaction.merchant or "" }}</td>
      <td class="{{ 'amount-positive' if transaction.amount > 0 else 'amount-negative' }}">{{ "%.2f"|format(transaction.amount) }}</td>
    </tr>
    {% endfor %}
  </table>
  {% endif %}
  {% endif %}

  {% if data.categories is defined %}
  <h2>Spending Categories</h2>
  {% if data.categories.error is defined %}
  <p class="error">Error: {{ data.categories.error }}</p>
  {% else %}
  <table>
    <tr><th>Category</th><th>Total</th><th>Transactions</th></tr>
    {% for category in data.categories.categories %}
    <tr>
      <td><span class="swatch" style="background: {{ category.color }}"></span>{{ category.name }}</td>
      <td>{{ "%.2f"|format(category.statistics.totalSpent) }}</td>
      <td>{{ category.statistics.transactionCount }}</td>
    </tr>
    {% endfor %}
  </table>
  {% endif %}
  {% endif %}

  {% if data.settings is defined %}
  <h2>App Settings</h2>
  {% if data.settings.error is defined %}
  <p class="error">Error: {{ data.settings.error }}</p>
  {% else %}
  <table>
    <tr><th>Language</th><td>{{ data.settings.application.language }}</td></tr>
    <tr><th>Theme</th><td>{{ data.settings.application.theme }}</td></tr>
    <tr><th>Biometric Authentication</th><td>{{ "Enabled" if data.settings.application.biometricAuthentication else "Disabled" }}</td></tr>
    <tr><th>Notifications</th><td>{{ "Yes" if data.settings.notifications.enabled else "No" }}</td></tr>
    <tr><th>Utilization Alert Threshold</th><td>{{ data.settings.creditCardSettings.utilizationAlertThreshold }}%</td></tr>
    <tr><th>Target Overall Utilization</th><td>{{ data.settings.creditCardSettings.targetOverallUtilization }}%</td></tr>
  </table>
  {% endif %}
  {% endif %}

  {% if data.qaHistory is defined %}
  <h2>Q&amp;A History</h2>
  {% if data.qaHistory.error is defined %}
  <p class="error">Error: {{ data.qaHistory.error }}</p>
  {% else %}
  <p>Queries this month: {{ data.qaHistory.summary.currentMonthQueries }} of {{ data.qaHistory.summary.queryLimitPerMonth }}</p>
  {% endif %}
  {% endif %}

  <footer>
    This export was generated in accordance with {{ metadata.complianceFramework }} (Personal Information Protection
    and Electronic Documents Act). Store this document securely and delete it when no longer needed.
  </footer>
</body>
</html>
"""

_jinja_env = jinja2.Environment(
    loader=jinja2.DictLoader({"export.html": HTML_TEMPLATE}),
    autoescape=jinja2.select_autoescape(["html", "xml"])
)


def render_html(document: Dict[str, Any]) -> str:
    """Printable, self-contained HTML document."""
    template = _jinja_env.get_template("export.html")
    return template.render(metadata=document.get("metadata", {}), data=document.get("data", {}))


RENDERERS = {
    "csv": render_csv,
    "json": render_json,
    "pdf": render_html,
}
