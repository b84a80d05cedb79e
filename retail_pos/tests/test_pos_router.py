import asyncio
from decimal import Decimal

import pytest
from fastapi import HTTPException
from starlette.requests import Request

from retail_pos.app import deps, main
from retail_pos.app.cart import Cart, MemoryCartStorage
from retail_pos.app.errors import RemoteFailure, TransportFailure
from retail_pos.app.models import InvoiceDetails, InvoiceSummary, OriginalLine, Product
from retail_pos.app.routers import pos as pos_router
from retail_pos.app.session import PosSession


SHIRT = Product(id="P1", name="Shirt", category="Tops", selling_price=Decimal("115"), quantity=3, min_quantity=1)
JACKET = Product(id="P9", name="Jacket", category="Outerwear", selling_price=Decimal("230"), quantity=1, min_quantity=2)


class _FakeStore:
    def __init__(self):
        self.products_error = None
        self.order_error = None
        self.submit_error = None
        self.orders = []
        self.operations = []

    def fetch_products(self):
        if self.products_error:
            raise self.products_error
        return [SHIRT, JACKET]

    def create_order(self, invoice):
        if self.order_error:
            raise self.order_error
        self.orders.append(invoice)
        return "ORD-500"

    def search_invoices(self, query):
        return [InvoiceSummary(id="ORD-1", invoice_number="INV-000123")]

    def fetch_invoice_details(self, invoice_id):
        if invoice_id != "ORD-1":
            raise RemoteFailure("Invoice not found")
        return InvoiceDetails(
            order=InvoiceSummary(id="ORD-1", invoice_number="INV-000123"),
            items=[OriginalLine(id="L1", product_id="P1", product_name="Shirt", quantity=2, unit_price=Decimal("115"))],
        )

    def submit_return_exchange(self, operation):
        if self.submit_error:
            raise self.submit_error
        self.operations.append(operation)
        return "OP-1"


@pytest.fixture
def session():
    return PosSession(_FakeStore(), Cart(storage=MemoryCartStorage()), branch_id="HAM", created_by="cashier-1")


def test_list_products_refreshes_and_filters(session):
    res = pos_router.list_products(q=None, category=None, stock="low", refresh=False, session=session)
    assert [p["id"] for p in res["products"]] == ["P9"]
    assert res["products"][0]["stock_status"] == "low"
    assert res["categories"] == ["all", "Tops", "Outerwear"]
    assert res["low_stock_count"] == 1


def test_list_products_maps_transport_failure_to_503(session):
    session.store.products_error = TransportFailure()
    with pytest.raises(HTTPException) as exc_info:
        pos_router.list_products(q=None, category=None, stock="all", refresh=True, session=session)
    assert exc_info.value.status_code == 503
    assert exc_info.value.detail == "store unreachable"


def test_cart_endpoints(session):
    session.refresh_products()
    pos_router.add_cart_item(pos_router.CartItemIn(product_id="P1"), session=session)
    pos_router.add_cart_item(pos_router.CartItemIn(product_id="P1"), session=session)
    res = pos_router.set_cart_discount(pos_router.DiscountIn(type="percent", value=Decimal("10")), session=session)

    assert res["items"][0]["cart_quantity"] == 2
    assert res["subtotal_raw"] == Decimal("230.00")
    assert res["total"] == Decimal("207.00")
    assert res["tax"] == Decimal("27.00")
    assert res["item_count"] == 2

    res = pos_router.update_cart_item("P1", pos_router.QuantityIn(quantity=0), session=session)
    assert res["items"] == []


def test_add_unknown_product_is_404(session):
    session.refresh_products()
    with pytest.raises(HTTPException) as exc_info:
        pos_router.add_cart_item(pos_router.CartItemIn(product_id="nope"), session=session)
    assert exc_info.value.status_code == 404


def test_discount_validation_is_400(session):
    with pytest.raises(HTTPException) as exc_info:
        pos_router.set_cart_discount(pos_router.DiscountIn(type="amount", value=Decimal("-5")), session=session)
    assert exc_info.value.status_code == 400


def test_checkout_endpoint(session):
    session.refresh_products()
    pos_router.add_cart_item(pos_router.CartItemIn(product_id="P1"), session=session)
    res = pos_router.checkout(pos_router.CheckoutIn(payment_method="cash"), session=session)
    assert res["order_id"] == "ORD-500"
    assert res["total"] == Decimal("115.00")
    assert res["tax"] == Decimal("15.00")
    assert session.cart.is_empty()


def test_checkout_remote_failure_is_409_and_keeps_cart(session):
    session.refresh_products()
    pos_router.add_cart_item(pos_router.CartItemIn(product_id="P1"), session=session)
    session.store.order_error = RemoteFailure("Insufficient stock")
    with pytest.raises(HTTPException) as exc_info:
        pos_router.checkout(pos_router.CheckoutIn(), session=session)
    assert exc_info.value.status_code == 409
    assert exc_info.value.detail == "Insufficient stock"
    assert not session.cart.is_empty()


def test_empty_checkout_is_400(session):
    with pytest.raises(HTTPException) as exc_info:
        pos_router.checkout(pos_router.CheckoutIn(), session=session)
    assert exc_info.value.status_code == 400


def test_exchange_flow_over_endpoints(session):
    pos_router.search_invoices(pos_router.SearchIn(query="INV-000123"), session=session)
    res = pos_router.select_invoice(pos_router.SelectInvoiceIn(invoice_id="ORD-1"), session=session)
    assert res["step"] == "details"

    res = pos_router.choose_operation(pos_router.OperationIn(operation_type="exchange"), session=session)
    assert res["step"] == "process"
    assert res["operation_type"] == "EXCHANGE"

    pos_router.set_return_qty("L1", pos_router.ReturnQtyIn(qty=5), session=session)
    res = pos_router.add_replacement(pos_router.ReplacementIn(product_id="P9"), session=session)
    assert res["returned_qty"] == {"L1": 2}
    assert res["settlement"]["total_amount"] == Decimal("0.00")
    assert res["settlement"]["direction"] == "REFUND"

    res = pos_router.update_replacement(0, pos_router.ReturnQtyIn(qty=2), session=session)
    assert res["settlement"]["total_amount"] == Decimal("264.50")
    assert res["settlement"]["direction"] == "COLLECT"

    res = pos_router.confirm_return(session=session)
    assert res["step"] == "success"
    assert res["result"]["operation_id"] == "OP-1"

    res = pos_router.reset_return(session=session)
    assert res["step"] == "search"


def test_returns_errors_map_to_status_codes(session):
    with pytest.raises(HTTPException) as exc_info:
        pos_router.search_invoices(pos_router.SearchIn(query="  "), session=session)
    assert exc_info.value.status_code == 400

    with pytest.raises(HTTPException) as exc_info:
        pos_router.select_invoice(pos_router.SelectInvoiceIn(invoice_id="ORD-404"), session=session)
    assert exc_info.value.status_code == 409

    pos_router.select_invoice(pos_router.SelectInvoiceIn(invoice_id="ORD-1"), session=session)
    pos_router.choose_operation(pos_router.OperationIn(operation_type="RETURN"), session=session)
    pos_router.set_return_qty("L1", pos_router.ReturnQtyIn(qty=1), session=session)
    session.store.submit_error = TransportFailure()
    with pytest.raises(HTTPException) as exc_info:
        pos_router.confirm_return(session=session)
    assert exc_info.value.status_code == 503
    assert pos_router.get_returns(session=session)["step"] == "process"


def test_public_config_hides_token(monkeypatch):
    monkeypatch.setattr(pos_router.settings, "store_token", "s3cret")
    res = pos_router.public_config()
    assert "s3cret" not in str(res)


def test_get_pos_session_is_cached(monkeypatch):
    monkeypatch.setattr(deps.settings, "cart_path", "")
    deps.reset_pos_session()
    try:
        assert deps.get_pos_session() is deps.get_pos_session()
    finally:
        deps.reset_pos_session()


def test_lifespan_restores_session_and_drops_it_on_shutdown(monkeypatch, tmp_path):
    path = str(tmp_path / "cart.json")
    monkeypatch.setattr(deps.settings, "cart_path", path)
    monkeypatch.setattr(deps.settings, "store_url", "")
    deps.reset_pos_session()

    async def _run():
        async with main._lifespan(main.app):
            assert deps._session is not None
            deps._session.cart.add_item(SHIRT)
        assert deps._session is None

    asyncio.run(_run())
    # The cart written during the first run is there on the next start.
    assert deps.get_pos_session().cart.get("P1").cart_quantity == 1
    deps.reset_pos_session()


def test_request_id_is_blank_outside_a_request():
    req = Request({"type": "http", "method": "GET", "path": "/", "headers": []})
    assert main._current_request_id(req) == ""
    req = Request({"type": "http", "method": "GET", "path": "/", "headers": [(b"x-request-id", b"abc")]})
    assert main._current_request_id(req) == "abc"
