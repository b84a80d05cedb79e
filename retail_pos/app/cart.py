"""
Cart engine.

The cart owns its line items and the current discount descriptor; every
derived amount (subtotal, discount, tax, total) is recomputed from the
current lines on each query and never cached.

Pricing model: `selling_price` is VAT-inclusive, so the discount applies to the
gross subtotal and the tax figure is the VAT embedded in what is left.

Persistence goes through a storage port (`load()` / `save(snapshot)`); the
engine writes its snapshot after every mutation, last writer wins.
"""

from __future__ import annotations

import json
import os
import tempfile
from decimal import Decimal
from typing import Optional

from pydantic import ValidationError as PydanticValidationError

from .errors import ValidationError
from .logs import json_log
from .models import CartItem, CartTotals, Discount, Product
from .money import ZERO, parse_amount, parse_quantity, price_before_tax


class MemoryCartStorage:
    def __init__(self, snapshot: Optional[dict] = None):
        self.snapshot = snapshot
        self.saves = 0

    def load(self) -> Optional[dict]:
        return self.snapshot

    def save(self, snapshot: dict) -> None:
        self.snapshot = snapshot
        self.saves += 1


class JsonFileCartStorage:
    def __init__(self, path: str):
        self.path = path

    def load(self) -> Optional[dict]:
        if not os.path.exists(self.path):
            return None
        with open(self.path, "r", encoding="utf-8") as f:
            return json.load(f)

    def save(self, snapshot: dict) -> None:
        # Atomic write: temp file in the same directory, then replace.
        fd, tmp = tempfile.mkstemp(prefix=".cart-", dir=os.path.dirname(os.path.abspath(self.path)))
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(snapshot, f, indent=2, default=str)
            os.replace(tmp, self.path)
        finally:
            if os.path.exists(tmp):
                os.unlink(tmp)


def discount_amount_for(subtotal_raw: Decimal, discount: Discount) -> Decimal:
    if subtotal_raw <= 0:
        return ZERO
    if discount.type == "amount":
        amount = discount.value
    else:
        amount = subtotal_raw * min(discount.value, Decimal("100")) / Decimal("100")
    # Never negative, never more than the subtotal.
    return min(max(amount, ZERO), subtotal_raw)


class Cart:
    def __init__(self, storage=None):
        self.storage = storage if storage is not None else MemoryCartStorage()
        # Insertion ordered: lines render in the order they were first added.
        self._items: dict[str, CartItem] = {}
        self.discount = Discount()

    @classmethod
    def restore(cls, storage) -> "Cart":
        """Rebuild a cart from the storage snapshot; an unreadable snapshot yields an empty cart."""
        cart = cls(storage=storage)
        try:
            snap = storage.load()
        except (OSError, ValueError) as ex:
            json_log("warning", "cart.storage.load_failed", error=str(ex))
            return cart
        if not snap:
            return cart
        try:
            items = [CartItem.model_validate(raw) for raw in (snap.get("items") or [])]
        except (PydanticValidationError, AttributeError) as ex:
            json_log("warning", "cart.storage.load_failed", error=str(ex))
            return cart
        try:
            discount = Discount.model_validate(snap.get("discount") or {})
        except PydanticValidationError as ex:
            # Lines survive a bad discount; the discount falls back to none.
            json_log("warning", "cart.storage.discount_dropped", error=str(ex))
            discount = Discount()
        for it in items:
            cart._items[it.id] = it
        cart.discount = discount
        return cart

    # -- mutations --------------------------------------------------------

    def add_item(self, product: Product) -> CartItem:
        # Stock is advisory here; the catalog view is what keeps sold-out items off the screen.
        existing = self._items.get(product.id)
        if existing:
            line = existing.model_copy(update={"cart_quantity": existing.cart_quantity + 1})
        else:
            line = CartItem(**product.model_dump(exclude={"cart_quantity"}), cart_quantity=1)
        self._items[product.id] = line
        self._persist()
        return line

    def remove_item(self, product_id: str) -> None:
        if self._items.pop(str(product_id), None) is not None:
            self._persist()

    def set_quantity(self, product_id: str, qty) -> Optional[CartItem]:
        qty = parse_quantity(qty, "quantity")
        product_id = str(product_id)
        if qty <= 0:
            self.remove_item(product_id)
            return None
        existing = self._items.get(product_id)
        if not existing:
            return None
        line = existing.model_copy(update={"cart_quantity": qty})
        self._items[product_id] = line
        self._persist()
        return line

    def clear(self) -> None:
        self._items = {}
        self._persist()

    def reset(self) -> None:
        """Empty the cart and drop the discount in a single snapshot write."""
        self._items = {}
        self.discount = Discount()
        self._persist()

    def set_discount(self, discount) -> Discount:
        if isinstance(discount, Discount):
            new = discount
        else:
            raw = dict(discount or {})
            value = parse_amount(raw.get("value", 0), "discount value")
            try:
                new = Discount(type=raw.get("type") or "amount", value=value)
            except PydanticValidationError as ex:
                raise ValidationError(f"invalid discount: {ex.errors()[0].get('msg')}") from None
        self.discount = new
        self._persist()
        return new

    # -- queries ----------------------------------------------------------

    @property
    def lines(self) -> list[CartItem]:
        return list(self._items.values())

    def get(self, product_id: str) -> Optional[CartItem]:
        return self._items.get(str(product_id))

    def is_empty(self) -> bool:
        return not self._items

    @property
    def subtotal_raw(self) -> Decimal:
        return sum((it.line_total for it in self._items.values()), ZERO)

    @property
    def discount_amount(self) -> Decimal:
        return discount_amount_for(self.subtotal_raw, self.discount)

    @property
    def discounted_total(self) -> Decimal:
        return self.subtotal_raw - self.discount_amount

    @property
    def total(self) -> Decimal:
        return self.discounted_total

    @property
    def net_subtotal(self) -> Decimal:
        return price_before_tax(self.discounted_total)

    @property
    def tax(self) -> Decimal:
        total = self.discounted_total
        return total - price_before_tax(total)

    @property
    def item_count(self) -> int:
        return sum(it.cart_quantity for it in self._items.values())

    def totals(self) -> CartTotals:
        raw = self.subtotal_raw
        discount = discount_amount_for(raw, self.discount)
        total = raw - discount
        net = price_before_tax(total)
        return CartTotals(
            subtotal_raw=raw,
            discount_amount=discount,
            discounted_subtotal=total,
            net_subtotal=net,
            tax=total - net,
            total=total,
            item_count=self.item_count,
        )

    def stock_warnings(self) -> list[dict]:
        return [
            {"product_id": it.id, "name": it.name, "in_cart": it.cart_quantity, "in_stock": it.quantity}
            for it in self._items.values()
            if it.cart_quantity > it.quantity
        ]

    def snapshot(self) -> dict:
        return {
            "items": [it.model_dump(mode="json") for it in self._items.values()],
            "discount": self.discount.model_dump(mode="json"),
        }

    def _persist(self) -> None:
        try:
            self.storage.save(self.snapshot())
        except OSError as ex:
            # The snapshot is a write-through cache; the in-memory cart stays authoritative.
            json_log("warning", "cart.storage.save_failed", error=str(ex))
