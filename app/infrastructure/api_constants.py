"""
API endpoint constants and configuration.

This module contains all farm management API endpoint paths and related constants.
Centralizing these values makes it easy to swap out endpoints or update API versions.
"""


# Farm Management API Endpoints
class FarmAPIEndpoints:
    """Farm management API endpoint paths."""

    # Base paths
    FARMING_BASE = "/farming"

    # Read-only collections consumed by group formation
    PLOTS = f"{FARMING_BASE}/plots/"
    CULTIVATIONS = f"{FARMING_BASE}/cultivations/"
    FARMERS = f"{FARMING_BASE}/farmers/"


# API Configuration Constants
class APIConstants:
    """General API configuration constants."""

    # HTTP Headers
    CONTENT_TYPE_JSON = "application/json"

    # Pagination
    DEFAULT_PAGE_SIZE = 500
    MAX_PAGES = 1000
