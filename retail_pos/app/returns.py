"""
Returns / exchange engine.

One engine instance walks one operation through

    search -> details -> process -> success

with `reset()` as the only way back to `search`. The operation type (RETURN or
EXCHANGE) is chosen when entering `process` and stays fixed until reset.

Settlement (all prices VAT-inclusive):

    returned_subtotal = sum(returned_qty * original unit_price)
    new_subtotal      = sum(replacement qty * selling_price)      (0 for RETURN)
    diff              = new_subtotal - returned_subtotal
    vat_adjustment    = diff * VAT_RATE
    total_amount      = abs(diff + vat_adjustment)
    direction         = COLLECT if diff + vat_adjustment > 0 else REFUND

The VAT adjustment is applied on top of the already VAT-inclusive diff; the
store's ledger is reconciled against that figure, so it is kept as is.

Public methods never raise for expected failures: they return an Outcome and
record the message in `last_error`, leaving the in-progress selections intact.
"""

from __future__ import annotations

import uuid
from decimal import Decimal
from typing import Iterable, Optional

from pydantic import ValidationError as PydanticValidationError

from .errors import Outcome, PosError, ValidationError
from .logs import json_log
from .models import (
    InvoiceDetails,
    InvoiceSummary,
    OperationItem,
    OperationReceipt,
    PaymentDescriptor,
    Product,
    ReceiptLine,
    ReplacementLine,
    ReturnExchangeOperation,
    Settlement,
)
from .money import VAT_RATE, ZERO, parse_quantity


STEP_SEARCH = "search"
STEP_DETAILS = "details"
STEP_PROCESS = "process"
STEP_SUCCESS = "success"

RETURN_REASON = "Customer Request"
EXCHANGE_REASON = "Exchange"


def clamp_return_qty(requested: int, original_qty: int) -> int:
    return max(0, min(int(original_qty), int(requested)))


def compute_settlement(
    returned: Iterable[tuple[int, Decimal]],
    replacements: Iterable[tuple[int, Decimal]] = (),
) -> Settlement:
    """Both arguments are (qty, VAT-inclusive unit price) pairs."""
    returned_subtotal = sum((Decimal(q) * p for q, p in returned), ZERO)
    new_subtotal = sum((Decimal(q) * p for q, p in replacements), ZERO)
    diff = new_subtotal - returned_subtotal
    vat_adjustment = diff * VAT_RATE
    net = diff + vat_adjustment
    return Settlement(
        returned_subtotal=returned_subtotal,
        new_subtotal=new_subtotal,
        diff=diff,
        vat_adjustment=vat_adjustment,
        net=net,
        total_amount=abs(net),
        direction="COLLECT" if net > 0 else "REFUND",
    )


class ReturnsEngine:
    def __init__(self, store, created_by: str = "", payment_method: str = "cash"):
        self.store = store
        self.created_by = created_by
        self.payment_method = payment_method
        self.available_products: list[Product] = []
        self._clear()

    def _clear(self) -> None:
        self.step = STEP_SEARCH
        self.search_results: list[InvoiceSummary] = []
        self.invoice: Optional[InvoiceDetails] = None
        self.operation_type: Optional[str] = None
        self.returned_qty: dict[str, int] = {}
        self.replacements: list[ReplacementLine] = []
        self.client_operation_id: Optional[str] = None
        self.result: Optional[OperationReceipt] = None
        self.last_error: Optional[str] = None

    def _fail(self, err: PosError) -> Outcome:
        self.last_error = err.message
        return Outcome.failure(err)

    def _ok(self, data=None) -> Outcome:
        self.last_error = None
        return Outcome.success(data)

    def _require_step(self, *steps: str) -> Optional[Outcome]:
        if self.step not in steps:
            return self._fail(ValidationError(f"not allowed while in step '{self.step}'"))
        return None

    # -- search / details ---------------------------------------------------

    def reset(self) -> None:
        self._clear()

    def search(self, query: str) -> Outcome:
        bad = self._require_step(STEP_SEARCH)
        if bad:
            return bad
        if not (query or "").strip():
            return self._fail(ValidationError("enter an invoice number, customer name or phone"))
        try:
            results = self.store.search_invoices(query.strip())
        except PosError as err:
            return self._fail(err)
        self.search_results = results
        return self._ok(results)

    def select_invoice(self, invoice_id: str) -> Outcome:
        bad = self._require_step(STEP_SEARCH)
        if bad:
            return bad
        try:
            details = self.store.fetch_invoice_details(invoice_id)
        except PosError as err:
            return self._fail(err)
        self.invoice = details
        self.returned_qty = {ln.id: 0 for ln in details.items}
        self.step = STEP_DETAILS
        return self._ok(details)

    def choose_operation(self, operation_type: str) -> Outcome:
        bad = self._require_step(STEP_DETAILS)
        if bad:
            return bad
        op = str(operation_type or "").strip().upper()
        if op not in {"RETURN", "EXCHANGE"}:
            return self._fail(ValidationError("operation type must be RETURN or EXCHANGE"))
        self.operation_type = op
        self.client_operation_id = uuid.uuid4().hex
        self.step = STEP_PROCESS
        out = self._ok(op)
        if op == "EXCHANGE" and not self.available_products:
            # The picker can still be retried; a catalog failure does not undo the transition.
            try:
                self.available_products = self.store.fetch_products()
            except PosError as err:
                json_log("warning", "returns.catalog_failed", error=err.message)
                self.last_error = err.message
        return out

    # -- selections ---------------------------------------------------------

    def set_return_qty(self, line_id: str, qty) -> Outcome:
        bad = self._require_step(STEP_PROCESS)
        if bad:
            return bad
        line = next((ln for ln in self.invoice.items if ln.id == str(line_id)), None)
        if line is None:
            return self._fail(ValidationError(f"invoice line not found: {line_id}"))
        try:
            requested = parse_quantity(qty)
        except ValidationError as err:
            return self._fail(err)
        effective = clamp_return_qty(requested, line.quantity)
        self.returned_qty[line.id] = effective
        return self._ok(effective)

    def _require_exchange(self) -> Optional[Outcome]:
        bad = self._require_step(STEP_PROCESS)
        if bad:
            return bad
        if self.operation_type != "EXCHANGE":
            return self._fail(ValidationError("replacement items are only allowed for an exchange"))
        return None

    def add_replacement(self, product: Product, qty=1) -> Outcome:
        bad = self._require_exchange()
        if bad:
            return bad
        try:
            qty = max(1, parse_quantity(qty))
        except ValidationError as err:
            return self._fail(err)
        line = ReplacementLine(product=product, qty=qty)
        self.replacements.append(line)
        return self._ok(line)

    def remove_replacement(self, index: int) -> Outcome:
        bad = self._require_exchange()
        if bad:
            return bad
        if not 0 <= index < len(self.replacements):
            return self._fail(ValidationError(f"no replacement line at position {index}"))
        removed = self.replacements.pop(index)
        return self._ok(removed)

    def set_replacement_qty(self, index: int, qty) -> Outcome:
        bad = self._require_exchange()
        if bad:
            return bad
        if not 0 <= index < len(self.replacements):
            return self._fail(ValidationError(f"no replacement line at position {index}"))
        try:
            qty = max(1, parse_quantity(qty))
        except ValidationError as err:
            return self._fail(err)
        self.replacements[index] = self.replacements[index].model_copy(update={"qty": qty})
        return self._ok(self.replacements[index])

    # -- settlement ---------------------------------------------------------

    def _returned_lines(self):
        if not self.invoice:
            return []
        return [(ln, self.returned_qty.get(ln.id, 0)) for ln in self.invoice.items if self.returned_qty.get(ln.id, 0) > 0]

    def _active_replacements(self) -> list[ReplacementLine]:
        return list(self.replacements) if self.operation_type == "EXCHANGE" else []

    @property
    def settlement(self) -> Settlement:
        return compute_settlement(
            [(qty, ln.unit_price) for ln, qty in self._returned_lines()],
            [(r.qty, r.product.selling_price) for r in self._active_replacements()],
        )

    def build_operation(self) -> ReturnExchangeOperation:
        returned = self._returned_lines()
        if not returned:
            raise ValidationError("select at least one item to return")
        items = [
            OperationItem(sku=ln.product_id, qty=qty, type="RETURNED", reason=RETURN_REASON, line_id=ln.id)
            for ln, qty in returned
        ]
        items += [
            OperationItem(sku=r.product.id, qty=r.qty, type="NEW", reason=EXCHANGE_REASON)
            for r in self._active_replacements()
        ]
        s = self.settlement
        try:
            return ReturnExchangeOperation(
                invoice_id=self.invoice.order.id,
                operation_type=self.operation_type,
                items=items,
                total_amount=s.total_amount,
                vat_adjustment=s.vat_adjustment,
                payment=PaymentDescriptor(amount=s.total_amount, method=self.payment_method, direction=s.direction),
                created_by=self.created_by,
                client_operation_id=self.client_operation_id,
            )
        except PydanticValidationError as ex:
            raise ValidationError(f"invalid operation: {ex.errors()[0].get('msg')}") from None

    def confirm(self) -> Outcome:
        bad = self._require_step(STEP_PROCESS)
        if bad:
            return bad
        try:
            operation = self.build_operation()
        except ValidationError as err:
            return self._fail(err)
        try:
            operation_id = self.store.submit_return_exchange(operation)
        except PosError as err:
            json_log(
                "warning",
                "returns.failed",
                invoice_id=operation.invoice_id,
                client_operation_id=operation.client_operation_id,
                kind=err.kind,
                error=err.message,
            )
            return self._fail(err)
        self.result = self._receipt(operation_id, operation)
        self.step = STEP_SUCCESS
        json_log(
            "info",
            "returns.confirmed",
            operation_id=operation_id,
            invoice_id=operation.invoice_id,
            operation_type=operation.operation_type,
            total_amount=operation.total_amount,
            direction=operation.payment.direction,
        )
        return self._ok(self.result)

    def _receipt(self, operation_id: str, operation: ReturnExchangeOperation) -> OperationReceipt:
        returned = [
            ReceiptLine(
                sku=ln.product_id,
                name=ln.product_name,
                qty=qty,
                unit_price=ln.unit_price,
                line_total=ln.unit_price * qty,
                type="RETURNED",
            )
            for ln, qty in self._returned_lines()
        ]
        new = [
            ReceiptLine(
                sku=r.product.id,
                name=r.product.name,
                qty=r.qty,
                unit_price=r.product.selling_price,
                line_total=r.line_total,
                type="NEW",
            )
            for r in self._active_replacements()
        ]
        return OperationReceipt(
            operation_id=operation_id,
            invoice_number=self.invoice.order.invoice_number,
            operation=operation,
            settlement=self.settlement,
            returned_lines=returned,
            replacement_lines=new,
        )
