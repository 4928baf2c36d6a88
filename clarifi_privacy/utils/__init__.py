"""
Shared constants, exceptions and formatting helpers.
"""
