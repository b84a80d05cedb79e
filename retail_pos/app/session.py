from __future__ import annotations

from typing import Optional

from .cart import Cart, JsonFileCartStorage, MemoryCartStorage
from .catalog import find_product
from .config import Settings
from .errors import Outcome, PosError, ValidationError
from .invoices import InvoiceNumberGenerator, assemble_invoice
from .logs import json_log
from .models import Customer, Product
from .returns import ReturnsEngine
from .store import StoreClient


class PosSession:
    """
    One terminal: the operator's cart, the returns flow in progress, and the
    last product list pulled from the store. There is exactly one writer.
    """

    def __init__(self, store, cart: Cart, *, branch_id: str, created_by: str = "", numbers=None):
        self.store = store
        self.cart = cart
        self.branch_id = branch_id
        self.created_by = created_by
        self.numbers = numbers or InvoiceNumberGenerator()
        self.returns = ReturnsEngine(store, created_by=created_by)
        self.products: list[Product] = []
        self.last_error: Optional[str] = None
        self.last_invoice = None

    @classmethod
    def from_settings(cls, cfg: Settings) -> "PosSession":
        store = StoreClient(
            base_url=cfg.store_url,
            token=cfg.store_token,
            timeout_s=cfg.store_timeout_s,
            branch_id=cfg.branch_id,
        )
        storage = JsonFileCartStorage(cfg.cart_path) if cfg.cart_path else MemoryCartStorage()
        return cls(store, Cart.restore(storage), branch_id=cfg.branch_id, created_by=cfg.cashier)

    def refresh_products(self) -> Outcome:
        try:
            products = self.store.fetch_products()
        except PosError as err:
            self.last_error = err.message
            return Outcome.failure(err)
        self.products = products
        # The exchange picker shares the catalog.
        self.returns.available_products = products
        self.last_error = None
        return Outcome.success(products)

    def product(self, product_id: str) -> Optional[Product]:
        return find_product(self.products, product_id) or find_product(self.returns.available_products, product_id)

    def checkout(self, customer: Optional[Customer] = None, payment_method: str = "cash") -> Outcome:
        try:
            invoice = assemble_invoice(
                self.cart,
                invoice_number=self.numbers.next(),
                branch_id=self.branch_id,
                created_by=self.created_by,
                customer=customer,
                payment_method=payment_method,
            )
        except ValidationError as err:
            self.last_error = err.message
            return Outcome.failure(err)
        try:
            order_id = self.store.create_order(invoice)
        except PosError as err:
            # Keep the cart so the operator can retry without re-scanning.
            json_log("warning", "checkout.failed", invoice_number=invoice.invoice_number, kind=err.kind, error=err.message)
            self.last_error = err.message
            return Outcome.failure(err)
        self.cart.reset()
        self.last_invoice = invoice
        self.last_error = None
        json_log("info", "checkout.completed", invoice_number=invoice.invoice_number, order_id=order_id, total=invoice.total)
        return Outcome.success({"order_id": order_id, "invoice": invoice})
