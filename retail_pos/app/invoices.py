from __future__ import annotations

import time
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Optional

from pydantic import ValidationError as PydanticValidationError

from .errors import ValidationError
from .models import Customer, Invoice, InvoiceDetails, InvoiceLine, OriginalLine, ReturnExchangeOperation
from .money import MONEY_Q, ZERO, to_decimal
from .returns import compute_settlement


def _now_ms() -> int:
    return time.time_ns() // 1_000_000


class InvoiceNumberGenerator:
    """
    INV-<last 6 digits of a millisecond timestamp>.

    The timestamp never repeats within one generator: if the clock has not
    moved (or went backwards) the previous value + 1 is used instead.
    """

    def __init__(self, clock: Optional[Callable[[], int]] = None):
        self._clock = clock or _now_ms
        self._last = 0

    def next(self) -> str:
        ms = max(int(self._clock()), self._last + 1)
        self._last = ms
        return f"INV-{str(ms)[-6:].zfill(6)}"


def assemble_invoice(
    cart,
    *,
    invoice_number: str,
    branch_id: str,
    created_by: str,
    customer: Optional[Customer] = None,
    payment_method: str = "cash",
    created_at: Optional[datetime] = None,
) -> Invoice:
    """Turn the current cart into an order record. No I/O; the caller sends it."""
    if cart.is_empty():
        raise ValidationError("cart is empty")
    totals = cart.totals()
    lines = [
        InvoiceLine(
            product_id=it.id,
            name=it.name,
            quantity=it.cart_quantity,
            price=it.selling_price,
            line_total=it.line_total,
        )
        for it in cart.lines
    ]
    try:
        return Invoice(
            invoice_number=invoice_number,
            branch_id=branch_id,
            created_by=created_by,
            customer=customer,
            items=lines,
            subtotal_raw=totals.subtotal_raw,
            subtotal=totals.net_subtotal,
            discount=totals.discount_amount,
            tax=totals.tax,
            total=totals.total,
            payment_method=payment_method,
            status="completed",
            created_at=created_at or datetime.now(timezone.utc),
        )
    except PydanticValidationError as ex:
        raise ValidationError(f"invalid invoice: {ex.errors()[0].get('msg')}") from None


def _reachable_subtotals(lines: list[OriginalLine], qty: int) -> set[Decimal]:
    """Every subtotal obtainable by taking `qty` units out of these invoice lines."""
    reach = {(0, ZERO)}
    for ln in lines:
        nxt = set()
        for taken, sub in reach:
            for k in range(0, min(ln.quantity, qty - taken) + 1):
                nxt.add((taken + k, sub + ln.unit_price * k))
        reach = nxt
    return {sub for taken, sub in reach if taken == qty}


def reconcile_operation(
    operation: ReturnExchangeOperation,
    details: InvoiceDetails,
    price_by_sku: Optional[dict[str, Decimal]] = None,
    tolerance: Decimal = MONEY_Q,
) -> list[str]:
    """
    Re-derive the settlement of a recorded return/exchange from its items and
    report every field that does not match. An empty list means the record is
    consistent with the invoice it references.

    Returned items are priced from the original invoice lines. An item that
    names its `line_id` uses that line's price. Without one, and with the sku
    sold on several lines at different prices, any split of the returned qty
    across those lines that reproduces the recorded totals is accepted.
    NEW items need `price_by_sku` (current selling prices).
    """
    problems: list[str] = []
    price_by_sku = price_by_sku or {}

    if str(operation.invoice_id) != str(details.order.id):
        problems.append(f"invoice_id {operation.invoice_id} does not match invoice {details.order.id}")

    lines_by_id = {ln.id: ln for ln in details.items}
    lines_by_sku: dict[str, list[OriginalLine]] = {}
    for ln in details.items:
        lines_by_sku.setdefault(ln.product_id, []).append(ln)

    returned_qty: dict[str, int] = {}
    per_line_qty: dict[str, int] = {}
    unplaced_qty: dict[str, int] = {}
    fixed_returned = ZERO
    replacements: list[tuple[int, Decimal]] = []
    for it in operation.items:
        if it.type == "RETURNED":
            if it.sku not in lines_by_sku:
                problems.append(f"returned sku {it.sku} is not on the invoice")
                continue
            returned_qty[it.sku] = returned_qty.get(it.sku, 0) + it.qty
            line = lines_by_id.get(it.line_id) if it.line_id else None
            if it.line_id and (line is None or line.product_id != it.sku):
                problems.append(f"returned sku {it.sku} does not match invoice line {it.line_id}")
                continue
            if line is not None:
                per_line_qty[line.id] = per_line_qty.get(line.id, 0) + it.qty
                fixed_returned += line.unit_price * it.qty
            else:
                unplaced_qty[it.sku] = unplaced_qty.get(it.sku, 0) + it.qty
        else:
            price = price_by_sku.get(it.sku)
            if price is None:
                problems.append(f"no price for replacement sku {it.sku}")
                continue
            replacements.append((it.qty, to_decimal(price)))

    for sku, qty in returned_qty.items():
        sold = sum(ln.quantity for ln in lines_by_sku[sku])
        if qty > sold:
            problems.append(f"returned qty {qty} for sku {sku} exceeds sold qty {sold}")
    for line_id, qty in per_line_qty.items():
        if qty > lines_by_id[line_id].quantity:
            problems.append(f"returned qty {qty} for line {line_id} exceeds sold qty {lines_by_id[line_id].quantity}")

    candidates = {fixed_returned}
    for sku, qty in unplaced_qty.items():
        subs = _reachable_subtotals(lines_by_sku[sku], qty)
        if not subs:
            # Over-returned; price the excess at the first line so totals are still compared.
            subs = {lines_by_sku[sku][0].unit_price * qty}
        candidates = {c + s for c in candidates for s in subs}

    settlements = [compute_settlement([(1, c)], replacements) for c in sorted(candidates)]
    # Compare against the split closest to what was recorded.
    s = min(settlements, key=lambda x: abs(x.total_amount - operation.total_amount) + abs(x.vat_adjustment - operation.vat_adjustment))
    if abs(s.total_amount - operation.total_amount) > tolerance:
        problems.append(f"total_amount {operation.total_amount} != expected {s.total_amount.quantize(MONEY_Q)}")
    if abs(s.vat_adjustment - operation.vat_adjustment) > tolerance:
        problems.append(f"vat_adjustment {operation.vat_adjustment} != expected {s.vat_adjustment.quantize(MONEY_Q)}")
    if s.total_amount > tolerance and s.direction != operation.payment.direction:
        problems.append(f"direction {operation.payment.direction} != expected {s.direction}")
    return problems
