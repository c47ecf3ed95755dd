"""
Business Central ERP integration module.

This module provides integration with Microsoft Dynamics 365 Business Central
via its OData v2.0 REST API. It implements the BaseErp interface for the bridge.
"""

from .bc_integration import BusinessCentralErp
from .bc_client import BusinessCentralClient

__all__ = ['BusinessCentralErp', 'BusinessCentralClient']
