"""
Infrastructure layer for local storage and the financial data backend.
"""
from .backend import FinancialBackend, HttpFinancialBackend
from .storage import KeyValueStore, SecureStore

__all__ = [
    "FinancialBackend",
    "HttpFinancialBackend",
    "KeyValueStore",
    "SecureStore",
]
