"""
Demo ERP integration.

Serves fixed placeholder data when no ERP tenant/company/credentials are
configured, so the POS stays usable without a backend.
"""

import copy
import logging
from typing import Dict, Any, List

from ..base_erp import BaseErp

logger = logging.getLogger(__name__)

DEMO_ITEMS = [
    {
        "id": "1",
        "number": "PIZZA01",
        "displayName": "Margherita",
        "unitPrice": 800,
        "itemCategoryCode": "PIZZA",
        "gtin": "",
        "inventory": 99,
    },
]

DEMO_MENU = {
    "ok": True,
    "categories": [
        {"id": "PIZZA", "name": "Pizza"},
        {"id": "DRINKS", "name": "Drinks"},
    ],
    "items": [
        {
            "id": "PIZZA01",
            "name": "Margherita",
            "price": 800,
            "categoryId": "PIZZA",
            "inventory": 99,
            "gtin": "",
            "mods": [],
        },
        {
            "id": "DRINK01",
            "name": "Soda",
            "price": 200,
            "categoryId": "DRINKS",
            "inventory": 999,
            "gtin": "",
            "mods": [],
        },
    ],
}

DEMO_STOCK = {"PIZZA01": 99, "DRINK01": 999}

DEMO_INVOICE_ID = "DEMO-INVOICE"


class DemoErp(BaseErp):
    """Fixed-fixture ERP used in demo mode."""

    def __init__(self, config: Dict[str, Any] = None):
        super().__init__(config or {})
        logger.info("ERP demo mode: serving placeholder menu, stock and invoices")

    def get_name(self) -> str:
        return "demo"

    def is_demo_mode(self) -> bool:
        return True

    def get_items(self) -> List[Dict[str, Any]]:
        return copy.deepcopy(DEMO_ITEMS)

    def get_menu(self) -> Dict[str, Any]:
        return copy.deepcopy(DEMO_MENU)

    def get_stock(self) -> Dict[str, float]:
        return dict(DEMO_STOCK)

    def post_invoice(self, body: Dict[str, Any]) -> Dict[str, Any]:
        logger.info(f"Demo invoice for sale {body.get('externalDocumentNumber') or '?'} "
                    f"({len(body.get('lines') or [])} lines)")
        return {"ok": True, "invoiceId": DEMO_INVOICE_ID, "posted": True}
