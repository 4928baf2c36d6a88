"""
Application constants.
"""

from typing import Dict, List, Optional


# Local key-value store keys
class StorageKeys:
    """Keys used in the local key-value store."""
    APP_SETTINGS = "clarifi:app_settings"
    NOTIFICATION_PREFERENCES = "clarifi:notification_preferences"
    UTILIZATION_SETTINGS = "clarifi:utilization_settings"
    AI_USAGE = "clarifi:ai_usage"
    AI_USAGE_STATS = "clarifi:ai_usage_stats"
    DATA_RETENTION_SETTINGS = "clarifi:data_retention_settings"
    DATA_PURGE_HISTORY = "data_purge_history"
    PRIVACY_AUDIT_LOG = "privacy_audit_log"


# Secure store key prefixes
ENCRYPTION_KEY_PREFIX = "clarifi_export_key_"
DOWNLOAD_TOKEN_PREFIX = "clarifi_download_token_"

# Encrypted file container
ENCRYPTED_FILE_MAGIC = b"CLFX"
ENCRYPTED_FILE_VERSION = 1
NONCE_SIZE = 12
KEY_SIZE_BYTES = 32

# Revoked, expired and redeemed tokens remembered per process
MAX_TERMINAL_TOKEN_STATES = 1000

# Retention
LEGAL_RETENTION_DAYS = 2555  # 7 years
ANALYTICS_MAX_DAYS = 730
COMMUNICATION_MAX_DAYS = 365
APP_USAGE_MAX_DAYS = 365
SESSION_DATA_DAYS = 30
TEMP_FILES_DAYS = 7
CACHE_DATA_DAYS = 30

RETENTION_PERIOD_DAYS: Dict[str, int] = {
    "legal_minimum": 365,
    "1year": 365,
    "2years": 730,
    "5years": 1825,
}
DEFAULT_RETENTION_DAYS = 365

# Export
EXPORT_FILE_PREFIX = "clarifi_export_"
EXPORT_FILE_EXTENSIONS = (".csv", ".json", ".html")
ALL_DATA_START_DATE = "2020-01-01"
COMPLIANCE_FRAMEWORK = "PIPEDA"

TRANSACTIONS_PER_MONTH_ESTIMATE = 120
CATEGORY_COUNT_ESTIMATE = 24
PERSONAL_INFO_FIELDS = 8

UNKNOWN_CATEGORY_COLOR = "#9E9E9E"


# Spending categories known to the app
CATEGORIES: List[Dict[str, object]] = [
    # Income
    {"id": 1, "name": "Salary", "color": "#4CAF50"},
    {"id": 2, "name": "Freelance Income", "color": "#4CAF50"},
    {"id": 3, "name": "Investment Income", "color": "#4CAF50"},
    {"id": 4, "name": "Other Income", "color": "#4CAF50"},
    # Housing and utilities
    {"id": 10, "name": "Rent", "color": "#FF5722"},
    {"id": 11, "name": "Mortgage", "color": "#FF5722"},
    {"id": 12, "name": "Property Taxes", "color": "#FF5722"},
    {"id": 13, "name": "Home Insurance", "color": "#FF5722"},
    {"id": 14, "name": "Electricity", "color": "#FF9800"},
    {"id": 15, "name": "Water", "color": "#2196F3"},
    {"id": 16, "name": "Gas/Heating", "color": "#FF9800"},
    {"id": 17, "name": "Internet", "color": "#03A9F4"},
    {"id": 18, "name": "Phone/Mobile", "color": "#03A9F4"},
    {"id": 19, "name": "Home Maintenance", "color": "#795548"},
    # Transportation
    {"id": 20, "name": "Public Transport", "color": "#673AB7"},
    {"id": 21, "name": "Gas/Fuel", "color": "#673AB7"},
    {"id": 22, "name": "Vehicle Insurance", "color": "#673AB7"},
    {"id": 23, "name": "Vehicle Maintenance", "color": "#673AB7"},
    {"id": 24, "name": "Parking", "color": "#607D8B"},
    {"id": 25, "name": "Ride Sharing/Taxis", "color": "#607D8B"},
    # Food
    {"id": 30, "name": "Groceries", "color": "#8BC34A"},
    {"id": 31, "name": "Restaurants & Cafes", "color": "#CDDC39"},
    {"id": 32, "name": "Coffee Shops", "color": "#CDDC39"},
    {"id": 33, "name": "Takeout & Delivery", "color": "#CDDC39"},
    # Health and personal care
    {"id": 40, "name": "Healthcare & Medical", "color": "#E91E63"},
    {"id": 41, "name": "Pharmacy", "color": "#E91E63"},
    {"id": 42, "name": "Gym & Fitness", "color": "#F44336"},
    {"id": 43, "name": "Hair & Beauty", "color": "#F44336"},
    {"id": 44, "name": "Clothing & Accessories", "color": "#9C27B0"},
    # Entertainment
    {"id": 50, "name": "Streaming Services", "color": "#3F51B5"},
    {"id": 51, "name": "Movies & Concerts", "color": "#3F51B5"},
    {"id": 52, "name": "Books & Magazines", "color": "#3F51B5"},
    {"id": 53, "name": "Hobbies & Sports", "color": "#00BCD4"},
    {"id": 54, "name": "Travel & Vacations", "color": "#009688"},
    # Education
    {"id": 60, "name": "Tuition & Fees", "color": "#FFC107"},
    {"id": 61, "name": "Courses & Training", "color": "#FFC107"},
    {"id": 62, "name": "Student Loans", "color": "#FFC107"},
    # Financial
    {"id": 70, "name": "Bank Fees", "color": "#757575"},
    {"id": 71, "name": "Loan Payments (Non-Student)", "color": "#757575"},
    {"id": 72, "name": "Insurance (Other)", "color": "#757575"},
    {"id": 73, "name": "Professional Services", "color": "#757575"},
    # Giving
    {"id": 80, "name": "Gifts", "color": "#FF7043"},
    {"id": 81, "name": "Charity & Donations", "color": "#FF7043"},
    # Transfers
    {"id": 90, "name": "Credit Card Payment", "color": "#424242"},
    {"id": 91, "name": "Transfers (Internal)", "color": "#424242"},
    {"id": 92, "name": "Savings Contribution", "color": "#4CAF50"},
    {"id": 93, "name": "Investment Contribution", "color": "#4CAF50"},
    # Other
    {"id": 100, "name": "Miscellaneous", "color": "#9E9E9E"},
    {"id": 101, "name": "Uncategorized", "color": "#BDBDBD"},
]

_CATEGORIES_BY_ID = {category["id"]: category for category in CATEGORIES}


def get_category_by_id(category_id) -> Optional[Dict[str, object]]:
    """Look up a known category, accepting numeric strings."""
    try:
        return _CATEGORIES_BY_ID.get(int(category_id))
    except (TypeError, ValueError):
        return None


# Actors recorded for events without a signed-in user
ANONYMOUS_USER = "anonymous"
SYSTEM_USER = "system"
