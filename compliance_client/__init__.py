"""
Cache-consistency data layer for the compliance-management client.
"""

from .app.client import ComplianceDataClient, create_client

__all__ = ["ComplianceDataClient", "create_client"]
