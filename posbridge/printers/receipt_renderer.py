"""
Receipt rendering for the printer drivers.

A receipt payload (as sent by the POS) is first laid out into a list of
ReceiptRow entries, then drawn either onto an 80mm PDF page (reportlab) or
into fixed-width text for ESC/POS thermal printers.

Receipt payload keys:
    saleNo, dateISO, method, tableName, customer {name},
    restaurantLines [{name, id, qty, price, mods}],
    rTotals {sub, service, catering, vat, total}, grand
"""

import datetime
import io
import logging
from typing import Any, Dict, List, NamedTuple, Optional, Union

from reportlab.pdfgen import canvas as pdfcanvas

logger = logging.getLogger(__name__)

# 80mm thermal roll in points
PAGE_WIDTH = 226.8
MARGIN = 10
LINE_NAME_MAX = 26

TOTAL_ROWS = [
    ("Subtotal", "sub"),
    ("Service (5%)", "service"),
    ("Catering (2%)", "catering"),
    ("VAT (16%)", "vat"),
]

DEFAULT_RECEIPT_CONFIG = {
    "header": "RESTAURANT",
    "vat_reg": "VAT Reg: 000000",
    "footer": "Thank you!",
}


class ReceiptRow(NamedTuple):
    """One laid-out row: kind is text, amount, rule or space."""
    kind: str
    text: str = ""
    value: str = ""
    size: int = 8
    align: str = "left"
    bold: bool = False


def _to_number(value: Any, default: float = 0.0) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def format_money(value: Any) -> str:
    return f"{_to_number(value):,.2f}"


def _format_qty(qty: float) -> str:
    return str(int(qty)) if qty == int(qty) else f"{qty:g}"


def format_receipt_date(date_iso: Optional[str]) -> str:
    """Format an ISO timestamp (or now) for the receipt header."""
    if date_iso:
        try:
            parsed = datetime.datetime.fromisoformat(str(date_iso).replace("Z", "+00:00"))
            return parsed.astimezone().strftime("%Y-%m-%d %H:%M:%S")
        except ValueError:
            logger.debug(f"Unparseable receipt date: {date_iso}")
    return datetime.datetime.now().strftime("%Y-%m-%d %H:%M:%S")


def kitchen_ticket_to_receipt(ticket: Dict[str, Any]) -> Dict[str, Any]:
    """
    Map a kitchen ticket onto a receipt payload.

    The kitchen chit is printed as a zero-priced receipt with sale number
    KITCHEN-<last 6 chars of the ticket id> and method KITCHEN.
    """
    ticket = ticket or {}
    items = ticket.get("items") or []
    lines = []
    for item in items:
        item = item if isinstance(item, dict) else {}
        lines.append({
            "name": item.get("name"),
            "qty": item.get("qty", item.get("quantity")),
            "price": 0,
            "mods": item.get("mods") or [],
        })

    zero = {"sub": 0, "service": 0, "catering": 0, "vat": 0, "total": 0}
    return {
        "saleNo": f"KITCHEN-{str(ticket.get('id') or '')[-6:]}",
        "dateISO": ticket.get("createdAt"),
        "method": "KITCHEN",
        "tableName": ticket.get("tableName") or ticket.get("table"),
        "restaurantLines": lines,
        "rTotals": zero,
        "grand": 0,
    }


def layout_receipt(payload: Dict[str, Any], receipt_config: Optional[Dict[str, Any]] = None) -> List[ReceiptRow]:
    """
    Lay out a receipt payload into rows.

    Args:
        payload: Receipt payload from the POS
        receipt_config: Header/footer texts (config['printer']['receipt'])

    Returns:
        list: ReceiptRow entries in print order
    """
    cfg = dict(DEFAULT_RECEIPT_CONFIG)
    cfg.update(receipt_config or {})
    payload = payload or {}

    rows = [
        ReceiptRow("text", cfg["header"], size=12, align="center", bold=True),
        ReceiptRow("text", cfg["vat_reg"], align="center"),
        ReceiptRow("space"),
        ReceiptRow("text", format_receipt_date(payload.get("dateISO")), align="center"),
    ]

    customer = payload.get("customer") or {}
    if payload.get("tableName"):
        rows.append(ReceiptRow("text", f"Table: {payload['tableName']}", size=9, align="center"))
    if isinstance(customer, dict) and customer.get("name"):
        rows.append(ReceiptRow("text", f"Customer: {customer['name']}", align="center"))
    if payload.get("method"):
        rows.append(ReceiptRow("text", f"Method: {payload['method']}", align="center"))
    if payload.get("saleNo"):
        rows.append(ReceiptRow("text", f"Sale #: {payload['saleNo']}", align="center"))

    rows.append(ReceiptRow("space"))
    rows.append(ReceiptRow("rule"))

    for line in payload.get("restaurantLines") or []:
        line = line if isinstance(line, dict) else {}
        name = str(line.get("name") or line.get("id") or "")[:LINE_NAME_MAX]
        qty = _to_number(line.get("qty") or 1, 1.0)
        price = _to_number(line.get("price"))
        rows.append(ReceiptRow("text", name, size=9))
        rows.append(ReceiptRow(
            "text",
            f"x{_format_qty(qty)}   @ {price:.2f}   {price * qty:.2f}",
            align="right",
        ))
        mods = line.get("mods") or []
        if mods:
            rows.append(ReceiptRow("text", f"Mods: {', '.join(str(m) for m in mods)}", size=7))

    rows.append(ReceiptRow("rule"))

    totals = payload.get("rTotals") or {}
    for label, key in TOTAL_ROWS:
        rows.append(ReceiptRow("amount", label, format_money(totals.get(key)), size=9))

    grand = payload.get("grand")
    if grand is None:
        grand = totals.get("total")
    rows.append(ReceiptRow("space"))
    rows.append(ReceiptRow("amount", "TOTAL", format_money(grand), size=9, bold=True))
    rows.append(ReceiptRow("space"))
    rows.append(ReceiptRow("text", cfg["footer"], align="center"))
    return rows


# =============================================================================
# PDF
# =============================================================================

def _row_height(row: ReceiptRow) -> float:
    if row.kind == "space":
        return 6
    if row.kind == "rule":
        return 6
    return row.size + 3


def render_pdf(payload: Dict[str, Any], target: Union[str, io.BytesIO],
               receipt_config: Optional[Dict[str, Any]] = None) -> None:
    """
    Draw the receipt onto a single 80mm-wide PDF page sized to its content.

    Args:
        payload: Receipt payload
        target: File path or binary buffer to write the PDF to
        receipt_config: Header/footer texts
    """
    rows = layout_receipt(payload, receipt_config)
    height = sum(_row_height(r) for r in rows) + 2 * MARGIN

    c = pdfcanvas.Canvas(target, pagesize=(PAGE_WIDTH, height))
    right = PAGE_WIDTH - MARGIN
    y = height - MARGIN

    for row in rows:
        y -= _row_height(row)
        if row.kind == "space":
            continue
        if row.kind == "rule":
            c.line(MARGIN, y + 3, right, y + 3)
            continue

        c.setFont("Helvetica-Bold" if row.bold else "Helvetica", row.size)
        if row.kind == "amount":
            c.drawString(MARGIN, y, row.text)
            c.drawRightString(right, y, row.value)
        elif row.align == "center":
            c.drawCentredString(PAGE_WIDTH / 2, y, row.text)
        elif row.align == "right":
            c.drawRightString(right, y, row.text)
        else:
            c.drawString(MARGIN, y, row.text)

    c.showPage()
    c.save()


def render_pdf_bytes(payload: Dict[str, Any], receipt_config: Optional[Dict[str, Any]] = None) -> bytes:
    buf = io.BytesIO()
    render_pdf(payload, buf, receipt_config)
    return buf.getvalue()


# =============================================================================
# TEXT
# =============================================================================

def render_text(payload: Dict[str, Any], receipt_config: Optional[Dict[str, Any]] = None,
                width: int = 42) -> str:
    """Render the receipt as fixed-width text lines joined with newlines."""
    out = []
    for row in layout_receipt(payload, receipt_config):
        if row.kind == "space":
            out.append("")
        elif row.kind == "rule":
            out.append("-" * width)
        elif row.kind == "amount":
            gap = max(1, width - len(row.text) - len(row.value))
            out.append(f"{row.text}{' ' * gap}{row.value}")
        elif row.align == "center":
            out.append(row.text[:width].center(width).rstrip())
        elif row.align == "right":
            out.append(row.text[:width].rjust(width))
        else:
            out.append(row.text[:width])
    return "\n".join(out) + "\n"
