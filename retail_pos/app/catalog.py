from __future__ import annotations

from typing import Iterable, Optional

from .models import Product


def stock_status(product: Product) -> str:
    if product.quantity <= 0:
        return "out"
    if product.quantity <= product.min_quantity:
        return "low"
    return "available"


def low_stock_count(products: Iterable[Product]) -> int:
    # Sold-out products count as low stock too.
    return sum(1 for p in products if p.quantity <= p.min_quantity)


def categories(products: Iterable[Product]) -> list[str]:
    seen: list[str] = []
    for p in products:
        c = (p.category or "").strip()
        if c and c not in seen:
            seen.append(c)
    return ["all", *seen]


def filter_products(
    products: Iterable[Product],
    query: Optional[str] = None,
    category: Optional[str] = None,
    stock: Optional[str] = None,
) -> list[Product]:
    needle = (query or "").strip().lower()
    category = (category or "all").strip()
    stock = (stock or "all").strip().lower()
    out = []
    for p in products:
        if needle and needle not in p.name.lower() and needle not in p.id.lower():
            continue
        if category != "all" and p.category != category:
            continue
        if stock == "low" and not (0 < p.quantity <= p.min_quantity):
            continue
        if stock == "out" and p.quantity > 0:
            continue
        out.append(p)
    return out


def find_product(products: Iterable[Product], product_id: str) -> Optional[Product]:
    product_id = str(product_id or "").strip()
    for p in products:
        if p.id == product_id:
            return p
    return None
