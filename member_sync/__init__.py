"""
member_sync - HubSpot membership directory synchronization

Mirrors a HubSpot contact list into a local member directory, keeping
locally held profile data when the CRM reports blank values.
"""

__version__ = "0.1.0"
