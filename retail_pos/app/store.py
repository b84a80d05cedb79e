"""
Client for the external record store.

The store is a spreadsheet-backed script endpoint:
- reads:  GET  {base_url}?action=<name>&<params>
- writes: POST {base_url}  body {"action": <name>, "payload": {...}}

Every response is an envelope {"status": "success" | "error", "data": ...,
"message": ...}. Anything other than "success" is a business refusal and is
raised as RemoteFailure with the store's own message; connection problems are
raised as TransportFailure with a generic message. Nothing here retries.
"""

from __future__ import annotations

import http.client
import json
import socket
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Optional
from urllib.error import HTTPError, URLError
from urllib.parse import urlencode
from urllib.request import Request, urlopen

from pydantic import ValidationError as PydanticValidationError

from .errors import RemoteFailure, TransportFailure, ValidationError
from .logs import json_log
from .models import Invoice, InvoiceDetails, InvoiceSummary, OperationItem, Product, ReturnExchangeOperation
from .money import q_money, to_decimal


DEFAULT_MIN_QUANTITY = 5
DEFAULT_CATEGORY = "uncategorized"


def _money_out(v: Decimal) -> float:
    # The sheet stores plain numbers.
    return float(q_money(v))


def normalize_product_row(row: dict, branch_id: Optional[str] = None) -> Optional[dict]:
    """Map a raw sheet row onto Product fields; rows without id or name are dropped."""
    if not isinstance(row, dict) or not row.get("id") or not row.get("name"):
        return None
    min_q = row.get("min_quantity")
    return {
        "id": str(row["id"]),
        "name": str(row.get("name") or ""),
        "category": str(row.get("category") or DEFAULT_CATEGORY),
        "cost_price": max(to_decimal(row.get("cost_price")), Decimal("0")),
        "selling_price": max(to_decimal(row.get("selling_price")), Decimal("0")),
        "quantity": max(int(to_decimal(row.get("stock", row.get("quantity")))), 0),
        "min_quantity": max(int(to_decimal(min_q)), 0) if min_q not in (None, "") else DEFAULT_MIN_QUANTITY,
        "branch_id": row.get("branch_id") or branch_id,
        "description": row.get("description") or None,
        "image": row.get("image") or None,
    }


def _data_id(res: dict):
    data = res.get("data")
    return data.get("id") if isinstance(data, dict) else None


def order_wire(invoice: Invoice) -> dict:
    customer = None
    if invoice.customer:
        c = invoice.customer
        customer = {"name": c.name, "phone": c.phone, "city": c.city, "type": c.type}
        if c.company_name:
            customer["company_name"] = c.company_name
        if c.commercial_register:
            customer["commercial_register"] = c.commercial_register
        if c.address:
            customer["address"] = c.address
    return {
        "invoiceNumber": invoice.invoice_number,
        "branch_id": invoice.branch_id,
        "created_by": invoice.created_by,
        "customer": customer,
        "items": [
            {
                "id": ln.product_id,
                "product_id": ln.product_id,
                "name": ln.name,
                "quantity": ln.quantity,
                "price": _money_out(ln.price),
            }
            for ln in invoice.items
        ],
        "subtotal": _money_out(invoice.subtotal),
        "discount": _money_out(invoice.discount),
        "tax": _money_out(invoice.tax),
        "total": _money_out(invoice.total),
        "payment_method": invoice.payment_method,
        "status": invoice.status,
        "created_at": invoice.created_at.isoformat(),
    }


def _item_wire(it: OperationItem) -> dict:
    out = {"sku": it.sku, "qty": it.qty, "type": it.type, "reason": it.reason}
    if it.line_id:
        out["line_id"] = it.line_id
    return out


def operation_wire(op: ReturnExchangeOperation) -> dict:
    return {
        "invoice_id": op.invoice_id,
        "operation_type": op.operation_type,
        "total_amount": _money_out(op.total_amount),
        "vat_adjustment": _money_out(op.vat_adjustment),
        "items": [_item_wire(it) for it in op.items],
        "created_by": op.created_by,
        "client_operation_id": op.client_operation_id,
        "payment": {
            "amount": _money_out(op.payment.amount),
            "method": op.payment.method,
            "direction": op.payment.direction,
        },
    }


@dataclass(frozen=True)
class StoreClient:
    base_url: str
    token: str = ""
    timeout_s: float = 10
    branch_id: Optional[str] = None

    def _headers(self) -> dict:
        headers = {"Accept": "application/json"}
        if self.token:
            headers["X-Store-Token"] = self.token
        return headers

    def _req_json(self, method: str, action: str, *, params: Optional[dict] = None, payload: Any = None) -> dict:
        if not (self.base_url or "").strip():
            raise TransportFailure("store is not configured", detail="missing base_url")
        url = self.base_url.strip()
        data = None
        headers = self._headers()
        if method == "GET":
            qs = {"action": action, **(params or {})}
            url += ("&" if "?" in url else "?") + urlencode(qs)
        else:
            # text/plain keeps the script endpoint from demanding a CORS preflight.
            data = json.dumps({"action": action, "payload": payload}, default=str).encode("utf-8")
            headers["Content-Type"] = "text/plain;charset=utf-8"
        req = Request(url, data=data, headers=headers, method=method)
        try:
            with urlopen(req, timeout=self.timeout_s) as resp:
                raw = resp.read()
        except HTTPError as e:
            detail = e.read().decode("utf-8", errors="replace")[:500]
            json_log("error", "store.request.error", action=action, status_code=e.code, error=detail)
            raise TransportFailure(detail=f"HTTP {e.code}: {detail}") from None
        except (URLError, socket.timeout, ConnectionError, http.client.HTTPException) as e:
            json_log("error", "store.request.error", action=action, error=str(e))
            raise TransportFailure(detail=str(e) or type(e).__name__) from None
        try:
            body = raw.decode("utf-8")
        except UnicodeDecodeError:
            json_log("error", "store.request.error", action=action, error="invalid utf-8", size=len(raw))
            raise RemoteFailure("malformed response from store") from None
        try:
            res = json.loads(body) if body else {}
        except ValueError:
            json_log("error", "store.request.error", action=action, error="invalid json", body=body[:200])
            raise RemoteFailure("malformed response from store") from None
        if not isinstance(res, dict):
            raise RemoteFailure("malformed response from store")
        if res.get("status") != "success":
            message = str(res.get("message") or "store rejected the request")
            json_log("warning", "store.remote_failure", action=action, message=message)
            raise RemoteFailure(message)
        return res

    def fetch_products(self) -> list[Product]:
        res = self._req_json("GET", "getProducts")
        rows = res.get("data")
        if not isinstance(rows, list):
            raise RemoteFailure("malformed response from store")
        out = []
        for row in rows:
            norm = normalize_product_row(row, branch_id=self.branch_id)
            if norm is None:
                continue
            try:
                out.append(Product.model_validate(norm))
            except PydanticValidationError:
                json_log("warning", "store.product.skipped", product_id=norm.get("id"))
        return out

    def search_invoices(self, query: str) -> list[InvoiceSummary]:
        query = (query or "").strip()
        if not query:
            raise ValidationError("enter an invoice number, customer name or phone")
        res = self._req_json("GET", "searchInvoice", params={"query": query})
        try:
            return [InvoiceSummary.model_validate(r) for r in (res.get("data") or [])]
        except (PydanticValidationError, TypeError):
            raise RemoteFailure("malformed response from store") from None

    def fetch_invoice_details(self, invoice_id: str) -> InvoiceDetails:
        res = self._req_json("GET", "getInvoiceDetails", params={"id": str(invoice_id)})
        try:
            return InvoiceDetails.model_validate(res.get("data") or {})
        except PydanticValidationError:
            raise RemoteFailure("malformed response from store") from None

    def create_order(self, invoice: Invoice) -> str:
        res = self._req_json("POST", "createOrder", payload=order_wire(invoice))
        return str(res.get("orderId") or _data_id(res) or invoice.invoice_number)

    def submit_return_exchange(self, operation: ReturnExchangeOperation) -> str:
        res = self._req_json("POST", "processReturnExchange", payload=operation_wire(operation))
        op_id = res.get("operationId") or _data_id(res)
        if not op_id:
            raise RemoteFailure("store accepted the operation without an id")
        return str(op_id)
