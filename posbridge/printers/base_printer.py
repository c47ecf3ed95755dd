"""
Base abstract class for receipt printer drivers.

This module defines the interface that all printer drivers
(spooler, escpos, file) must implement.
"""

from abc import ABC, abstractmethod
from typing import Dict, Any

from .receipt_renderer import kitchen_ticket_to_receipt

TEST_RECEIPT = {
    "saleNo": "TEST",
    "restaurantLines": [{"name": "Printer Test", "qty": 1, "price": 0}],
    "rTotals": {"sub": 0, "service": 0, "catering": 0, "vat": 0, "total": 0},
    "grand": 0,
}


class BasePrinter(ABC):
    """
    Abstract base class for receipt printer drivers.

    Each driver (spooler, escpos, file) must implement this interface.
    Print methods never raise for printer-side failures; they return
    {"ok": False, "error": str} so the printer server can ack the caller.
    """

    def __init__(self, config: Dict[str, Any]):
        """
        Initialize the printer driver.

        Args:
            config: Driver-specific config dict from config.json, with the
                    shared receipt texts under 'receipt'
        """
        self.config = config
        self.receipt_config = config.get('receipt', {})
        self.connected = False

    @abstractmethod
    def connect(self) -> bool:
        """
        Prepare the printer for output.

        Returns:
            bool: True if the printer is ready
        """
        pass

    @abstractmethod
    def disconnect(self) -> bool:
        """
        Release the printer.

        Returns:
            bool: True if disconnected successfully
        """
        pass

    @abstractmethod
    def print_receipt(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """
        Print a customer receipt (proforma or final).

        Args:
            payload: Receipt payload with keys: saleNo, dateISO, method,
                     tableName, customer, restaurantLines, rTotals, grand

        Returns:
            dict: {"ok": bool, "error": str (on failure)}
        """
        pass

    def print_order(self, ticket: Dict[str, Any]) -> Dict[str, Any]:
        """
        Print a kitchen chit for a ticket.

        Args:
            ticket: Kitchen ticket with keys: id, createdAt, items

        Returns:
            dict: {"ok": bool, "error": str (on failure)}
        """
        return self.print_receipt(kitchen_ticket_to_receipt(ticket))

    def print_test(self) -> Dict[str, Any]:
        """Print a zero-value test receipt."""
        return self.print_receipt(dict(TEST_RECEIPT))

    @abstractmethod
    def get_status(self) -> Dict[str, Any]:
        """
        Get printer status.

        Returns:
            dict: Status information including:
                - driver: str
                - connected: bool
                - error: str (if any)
        """
        pass

    @abstractmethod
    def get_name(self) -> str:
        """
        Get printer driver name.

        Returns:
            str: Driver name (e.g., "spooler", "escpos", "file")
        """
        pass

    def __repr__(self) -> str:
        """String representation of the printer."""
        status = "connected" if self.connected else "disconnected"
        return f"<{self.__class__.__name__} ({self.get_name()}) {status}>"
