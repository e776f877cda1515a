"""
member_sync.api - HubSpot API access

Thin authenticated wrapper around the HubSpot CRM REST API.
"""

from member_sync.api.hubspot_api import (
    ContactPage,
    HubSpotAPI,
    HubSpotAPIError,
    HubSpotTimeoutError,
    NotFoundError,
    RateLimitError,
)

__all__ = [
    "ContactPage",
    "HubSpotAPI",
    "HubSpotAPIError",
    "HubSpotTimeoutError",
    "NotFoundError",
    "RateLimitError",
]
