from decimal import Decimal

from retail_pos.app.cart import Cart, JsonFileCartStorage, MemoryCartStorage
from retail_pos.app.config import Settings
from retail_pos.app.errors import RemoteFailure, TransportFailure, ValidationError
from retail_pos.app.invoices import InvoiceNumberGenerator
from retail_pos.app.models import Customer, Product
from retail_pos.app.session import PosSession


SHIRT = Product(id="P1", name="Shirt", selling_price=Decimal("115"), quantity=3, min_quantity=1)
HAT = Product(id="P2", name="Hat", selling_price=Decimal("40"), quantity=0)


class _FakeStore:
    def __init__(self, order_error=None, products_error=None):
        self.order_error = order_error
        self.products_error = products_error
        self.orders = []

    def fetch_products(self):
        if self.products_error:
            raise self.products_error
        return [SHIRT, HAT]

    def create_order(self, invoice):
        self.orders.append(invoice)
        if self.order_error:
            raise self.order_error
        return "ORD-1"


def _session(store, storage=None) -> PosSession:
    ticks = iter(range(1_700_000_000_001, 1_700_000_000_100))
    return PosSession(
        store,
        Cart(storage=storage or MemoryCartStorage()),
        branch_id="HAM",
        created_by="cashier-1",
        numbers=InvoiceNumberGenerator(clock=lambda: next(ticks)),
    )


def test_refresh_products_shares_catalog_with_returns():
    s = _session(_FakeStore())
    assert s.refresh_products().ok
    assert s.product("P2") == HAT
    assert s.returns.available_products == [SHIRT, HAT]


def test_refresh_products_failure_keeps_previous_list():
    store = _FakeStore()
    s = _session(store)
    s.refresh_products()
    store.products_error = TransportFailure()
    out = s.refresh_products()
    assert not out.ok
    assert s.products == [SHIRT, HAT]
    assert s.last_error == "store unreachable"


def test_checkout_success_clears_cart_and_discount():
    store = _FakeStore()
    s = _session(store)
    s.cart.add_item(SHIRT)
    s.cart.add_item(SHIRT)
    s.cart.set_discount({"type": "amount", "value": 30})

    out = s.checkout(customer=Customer(name="Sara", phone="0512345678"), payment_method="card")
    assert out.ok
    assert out.data["order_id"] == "ORD-1"
    invoice = out.data["invoice"]
    assert invoice.invoice_number == "INV-000001"
    assert invoice.branch_id == "HAM"
    assert invoice.created_by == "cashier-1"
    assert invoice.total == Decimal("200")
    assert store.orders == [invoice]

    assert s.cart.is_empty()
    assert s.cart.discount.value == 0
    assert s.last_invoice is invoice


def test_checkout_failure_keeps_cart_for_retry():
    store = _FakeStore(order_error=RemoteFailure("Insufficient stock for P1"))
    s = _session(store)
    s.cart.add_item(SHIRT)

    out = s.checkout()
    assert not out.ok
    assert isinstance(out.error, RemoteFailure)
    assert s.last_error == "Insufficient stock for P1"
    assert s.cart.get("P1").cart_quantity == 1

    store.order_error = None
    out = s.checkout()
    assert out.ok
    # A retry is a new invoice number; the store is not assumed to deduplicate.
    assert [o.invoice_number for o in store.orders] == ["INV-000001", "INV-000002"]


def test_checkout_with_empty_cart_is_rejected_locally():
    store = _FakeStore()
    s = _session(store)
    out = s.checkout()
    assert not out.ok
    assert isinstance(out.error, ValidationError)
    assert store.orders == []


def test_from_settings_builds_file_backed_cart(monkeypatch, tmp_path):
    path = str(tmp_path / "cart.json")
    monkeypatch.setenv("POS_STORE_URL", "https://script.example/exec")
    monkeypatch.setenv("POS_BRANCH_ID", "JED")
    monkeypatch.setenv("POS_CASHIER", "cashier-7")
    monkeypatch.setenv("POS_CART_PATH", path)
    monkeypatch.setenv("POS_STORE_TIMEOUT_S", "not-a-number")

    s = PosSession.from_settings(Settings())
    assert s.branch_id == "JED"
    assert s.created_by == "cashier-7"
    assert s.returns.created_by == "cashier-7"
    assert s.store.base_url == "https://script.example/exec"
    assert s.store.timeout_s == 10.0
    assert isinstance(s.cart.storage, JsonFileCartStorage)

    s.cart.add_item(SHIRT)
    again = PosSession.from_settings(Settings())
    assert again.cart.get("P1").cart_quantity == 1


def test_settings_defaults(monkeypatch):
    for name in ("POS_STORE_URL", "POS_BRANCH_ID", "POS_CART_PATH", "CORS_ORIGINS", "POS_STORE_TIMEOUT_S"):
        monkeypatch.delenv(name, raising=False)
    cfg = Settings()
    assert cfg.store_url == ""
    assert cfg.branch_id == "HAM"
    assert cfg.cart_path == ""
    assert cfg.store_timeout_s == 10.0
    assert cfg.cors_origins == ["http://localhost:3000", "http://127.0.0.1:3000"]


def test_checkout_success_writes_one_snapshot():
    storage = MemoryCartStorage()
    s = _session(_FakeStore(), storage=storage)
    s.cart.add_item(SHIRT)
    s.cart.set_discount({"type": "percent", "value": 10})
    before = storage.saves

    assert s.checkout().ok
    assert storage.saves == before + 1
    assert storage.snapshot == {"items": [], "discount": {"type": "amount", "value": "0"}}
