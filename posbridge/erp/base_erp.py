"""
Base abstract class for ERP integrations.

This module defines the interface the bridge uses for menu, stock and
invoice posting. Implementations: Business Central (remote OData API) and
Demo (fixed fixtures, used when no ERP is configured).
"""

from abc import ABC, abstractmethod
from typing import Dict, Any, List


class BaseErp(ABC):
    """
    Abstract base class for ERP integrations.

    All methods are blocking and may raise UpstreamError (ERP answered with
    an error or is unreachable) or BadRequestError (caller input rejected
    before reaching the ERP).
    """

    def __init__(self, config: Dict[str, Any]):
        """
        Initialize the ERP integration.

        Args:
            config: ERP-specific config dict from config.json
        """
        self.config = config

    @abstractmethod
    def get_items(self) -> List[Dict[str, Any]]:
        """
        Get the raw item rows.

        Returns:
            list: Item dicts with keys: id, number, displayName, unitPrice,
                  itemCategoryCode, gtin, inventory
        """
        pass

    @abstractmethod
    def get_menu(self) -> Dict[str, Any]:
        """
        Get the POS menu.

        Returns:
            dict: {"ok": True, "categories": [{id, name}],
                   "items": [{id, bcItemId, name, price, categoryId, inventory, gtin, mods}]}
        """
        pass

    @abstractmethod
    def get_stock(self) -> Dict[str, float]:
        """
        Get stock levels.

        Returns:
            dict: Item number -> quantity on hand
        """
        pass

    @abstractmethod
    def post_invoice(self, body: Dict[str, Any]) -> Dict[str, Any]:
        """
        Create, fill and post a sales invoice.

        Args:
            body: {customerNo, externalDocumentNumber, lines, postingDate}

        Returns:
            dict: {"ok": True, "invoiceId": str, "posted": True}
        """
        pass

    @abstractmethod
    def get_name(self) -> str:
        """
        Get the ERP integration name.

        Returns:
            str: ERP name (e.g., "business_central", "demo")
        """
        pass

    def is_demo_mode(self) -> bool:
        """Return True when the integration serves placeholder data."""
        return False

    def __repr__(self) -> str:
        """String representation of the integration."""
        return f"<{self.__class__.__name__} ({self.get_name()}) demo={self.is_demo_mode()}>"
