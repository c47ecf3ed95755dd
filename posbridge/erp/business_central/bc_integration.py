"""
Business Central ERP integration.

This module implements the BaseErp interface on top of the Business Central
OData API: menu and raw items, stock map and the create/add-lines/post
invoice workflow.
"""

import logging
from datetime import date
from typing import Dict, Any, List, Optional

import requests

from ..base_erp import BaseErp
from ...core.errors import BadRequestError, UpstreamError
from ...core.sale_guard import generate_sale_no
from .bc_client import BusinessCentralClient, odata_quote

logger = logging.getLogger(__name__)

ITEM_FIELDS = "id,number,displayName,unitPrice,itemCategoryCode,gtin,inventory"
UNCATEGORIZED = "UNCATEGORIZED"

# Keys a POS line may use for the item number, in lookup order
LINE_NUMBER_KEYS = ("number", "no", "itemNo", "itemNumber", "id")


def _first_present(mapping: Dict[str, Any], keys) -> Optional[Any]:
    for key in keys:
        value = mapping.get(key)
        if value not in (None, ""):
            return value
    return None


def _response_text(response: requests.Response) -> str:
    try:
        return response.text
    except Exception:
        return f"HTTP {response.status_code}"


class BusinessCentralErp(BaseErp):
    """
    Business Central integration.

    Does not retry; an ERP error surfaces to the caller as UpstreamError
    carrying the failing step and the ERP's status/text.
    """

    def __init__(self, config: Dict[str, Any], client: Optional[BusinessCentralClient] = None):
        """
        Initialize Business Central integration.

        Args:
            config: Business Central config (config['erp']['business_central'])
            client: Optional preconfigured client (defaults to one built from config)
        """
        super().__init__(config)
        self.client = client or BusinessCentralClient(config)
        self.location_code = config.get('location_code') or ''
        self.default_customer = config.get('default_customer') or 'CASH'

        logger.info(f"Business Central integration initialized")
        logger.info(f"  Environment: {self.client.environment}")
        logger.info(f"  Company: {self.client.company_id}")
        logger.info(f"  Auth: {self.client.auth_mode}")

    def get_name(self) -> str:
        return "business_central"

    # =========================================================================
    # MENU & STOCK
    # =========================================================================

    def get_items(self) -> List[Dict[str, Any]]:
        return self.client.paged_get(f"{self.client.company_path}/items?$select={ITEM_FIELDS}")

    def get_menu(self) -> Dict[str, Any]:
        comp = self.client.company_path
        items = self.client.paged_get(f"{comp}/items?$select={ITEM_FIELDS}")
        cats = self.client.paged_get(f"{comp}/itemCategories?$select=code,displayName")

        categories: Dict[str, Dict[str, str]] = {}
        for cat in cats:
            code = cat.get("code")
            if code:
                categories[code] = {"id": code, "name": cat.get("displayName") or code}

        items_out = []
        for item in items:
            if not item.get("displayName"):
                continue

            category_id = str(item.get("itemCategoryCode") or UNCATEGORIZED)
            if category_id not in categories:
                categories[category_id] = {"id": category_id, "name": category_id}

            items_out.append({
                "id": item.get("number"),
                "bcItemId": item.get("id"),
                "name": item.get("displayName"),
                "price": float(item.get("unitPrice") or 0),
                "categoryId": category_id,
                "inventory": float(item.get("inventory") or 0),
                "gtin": item.get("gtin") or None,
                "mods": [],
            })

        return {"ok": True, "categories": list(categories.values()), "items": items_out}

    def get_stock(self) -> Dict[str, float]:
        comp = self.client.company_path
        items = self.client.paged_get(f"{comp}/items?$select=number,inventory")

        if any("inventory" in row for row in items):
            return {row.get("number"): float(row.get("inventory") or 0) for row in items}

        # Fallback via item ledger entries
        flt = "remainingQuantity ne 0"
        if self.location_code:
            flt = f"locationCode eq {odata_quote(self.location_code)} and remainingQuantity ne 0"

        ledgers = self.client.paged_get(
            f"{comp}/itemLedgerEntries?$select=itemNumber,locationCode,remainingQuantity&$filter={flt}"
        )

        stock: Dict[str, float] = {}
        for row in ledgers:
            number = row.get("itemNumber")
            if not number:
                continue
            stock[number] = stock.get(number, 0) + float(row.get("remainingQuantity") or 0)
        return stock

    # =========================================================================
    # INVOICE POSTING
    # =========================================================================

    def post_invoice(self, body: Dict[str, Any]) -> Dict[str, Any]:
        comp = self.client.company_path
        sale_no = body.get("externalDocumentNumber") or generate_sale_no()
        lines = body.get("lines") or []

        # Reject unusable lines before a draft invoice exists
        for line in lines:
            line = line if isinstance(line, dict) else {}
            if not (line.get("itemId") or line.get("bcItemId")) and _first_present(line, LINE_NUMBER_KEYS) is None:
                raise BadRequestError("line missing itemId/number", step="add-line")

        # 1) Create invoice
        header = {
            "customerNumber": body.get("customerNo") or self.default_customer,
            "externalDocumentNumber": sale_no,
            "postingDate": body.get("postingDate") or date.today().isoformat(),
        }
        r = self.client.request("POST", f"{comp}/salesInvoices", header, step="create")
        if not r.ok:
            raise UpstreamError(_response_text(r), step="create", status=r.status_code)

        invoice_id = r.json().get("id")
        logger.info(f"Invoice {invoice_id} created for sale {sale_no}")

        # 2) Add lines
        for line in lines:
            line_body = self._build_line(line)
            r = self.client.request(
                "POST", f"{comp}/salesInvoices({invoice_id})/salesInvoiceLines", line_body, step="add-line"
            )
            if not r.ok:
                raise UpstreamError(_response_text(r), step="add-line", status=r.status_code,
                                    extra={"lineBody": line_body})

        # 3) Post the invoice
        candidates = [
            f"{comp}/salesInvoices({invoice_id})/post",
            f"{comp}/salesInvoices({invoice_id})/Microsoft.NAV.post",
        ]
        last_error = "no response"
        last_status = None
        for url in candidates:
            r = self.client.request("POST", url, step="post")
            if r.ok:
                logger.info(f"Invoice {invoice_id} posted")
                return {"ok": True, "invoiceId": invoice_id, "posted": True}
            last_error = _response_text(r)
            last_status = r.status_code
            logger.warning(f"Posting via {url.rsplit('/', 1)[-1]} failed: {r.status_code}")

        raise UpstreamError(last_error, step="post", status=last_status)

    def _build_line(self, line: Any) -> Dict[str, Any]:
        line = line if isinstance(line, dict) else {}
        item_id = line.get("itemId") or line.get("bcItemId")
        number = _first_present(line, LINE_NUMBER_KEYS)

        if not item_id and number is not None:
            try:
                item_id = self.client.resolve_item_id(str(number))
            except UpstreamError as e:
                logger.warning(f"Could not resolve item {number}: {e}")

        if not item_id and number is None:
            raise BadRequestError("line missing itemId/number", step="add-line")

        line_body: Dict[str, Any] = {
            "lineType": "Item",
            "quantity": float(line.get("quantity") or 1),
        }
        if item_id:
            line_body["itemId"] = item_id
        else:
            line_body["number"] = str(number)
        if line.get("unitPrice") is not None:
            line_body["unitPrice"] = float(line["unitPrice"])
        return line_body
