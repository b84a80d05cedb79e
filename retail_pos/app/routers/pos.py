from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from typing import Optional
from decimal import Decimal

from ..catalog import categories, filter_products, low_stock_count, stock_status
from ..config import settings
from ..deps import get_pos_session
from ..errors import Outcome, PosError, RemoteFailure, TransportFailure, ValidationError
from ..models import Customer
from ..money import q_money
from ..session import PosSession
from ..validation import DiscountType, OperationType, PaymentMethod, StockFilter

router = APIRouter(prefix="/pos", tags=["pos"])


class CartItemIn(BaseModel):
    product_id: str


class QuantityIn(BaseModel):
    quantity: int


class DiscountIn(BaseModel):
    type: DiscountType = "amount"
    value: Decimal = Decimal("0")


class CheckoutIn(BaseModel):
    customer: Optional[Customer] = None
    payment_method: PaymentMethod = "cash"


class SearchIn(BaseModel):
    query: str


class SelectInvoiceIn(BaseModel):
    invoice_id: str


class OperationIn(BaseModel):
    operation_type: OperationType


class ReturnQtyIn(BaseModel):
    qty: int


class ReplacementIn(BaseModel):
    product_id: str
    qty: int = 1


def _status_for(err: PosError) -> int:
    if isinstance(err, ValidationError):
        return 400
    if isinstance(err, TransportFailure):
        return 503
    if isinstance(err, RemoteFailure):
        return 409
    return 500


def _unwrap(out: Outcome):
    if not out.ok:
        raise HTTPException(status_code=_status_for(out.error), detail=out.message)
    return out.data


def _local(fn, *args):
    # Cart mutations raise ValidationError directly.
    try:
        return fn(*args)
    except ValidationError as err:
        raise HTTPException(status_code=400, detail=err.message)


def _cart_view(session: PosSession) -> dict:
    t = session.cart.totals()
    return {
        "items": [
            {
                "product_id": it.id,
                "name": it.name,
                "unit_price": q_money(it.selling_price),
                "cart_quantity": it.cart_quantity,
                "line_total": q_money(it.line_total),
            }
            for it in session.cart.lines
        ],
        "discount": session.cart.discount.model_dump(),
        "subtotal_raw": q_money(t.subtotal_raw),
        "discount_amount": q_money(t.discount_amount),
        "subtotal": q_money(t.net_subtotal),
        "tax": q_money(t.tax),
        "total": q_money(t.total),
        "item_count": t.item_count,
        "stock_warnings": session.cart.stock_warnings(),
    }


def _returns_view(session: PosSession) -> dict:
    eng = session.returns
    s = eng.settlement
    return {
        "step": eng.step,
        "operation_type": eng.operation_type,
        "search_results": [r.model_dump() for r in eng.search_results],
        "invoice": eng.invoice.model_dump() if eng.invoice else None,
        "returned_qty": dict(eng.returned_qty),
        "replacements": [
            {"index": i, "product_id": r.product.id, "name": r.product.name, "qty": r.qty, "line_total": q_money(r.line_total)}
            for i, r in enumerate(eng.replacements)
        ],
        "settlement": {
            "returned_subtotal": q_money(s.returned_subtotal),
            "new_subtotal": q_money(s.new_subtotal),
            "diff": q_money(s.diff),
            "vat_adjustment": q_money(s.vat_adjustment),
            "total_amount": q_money(s.total_amount),
            "direction": s.direction,
        },
        "result": eng.result.model_dump() if eng.result else None,
        "error": eng.last_error,
    }


def _require_product(session: PosSession, product_id: str):
    product = session.product(product_id)
    if not product:
        raise HTTPException(status_code=404, detail="product not found")
    return product


@router.get("/products")
def list_products(
    q: Optional[str] = None,
    category: Optional[str] = None,
    stock: StockFilter = "all",
    refresh: bool = False,
    session: PosSession = Depends(get_pos_session),
):
    if refresh or not session.products:
        _unwrap(session.refresh_products())
    rows = filter_products(session.products, query=q, category=category, stock=stock)
    return {
        "products": [{**p.model_dump(), "stock_status": stock_status(p)} for p in rows],
        "categories": categories(session.products),
        "low_stock_count": low_stock_count(session.products),
    }


@router.get("/cart")
def get_cart(session: PosSession = Depends(get_pos_session)):
    return _cart_view(session)


@router.post("/cart/items")
def add_cart_item(data: CartItemIn, session: PosSession = Depends(get_pos_session)):
    product = _require_product(session, data.product_id)
    session.cart.add_item(product)
    return _cart_view(session)


@router.patch("/cart/items/{product_id}")
def update_cart_item(product_id: str, data: QuantityIn, session: PosSession = Depends(get_pos_session)):
    _local(session.cart.set_quantity, product_id, data.quantity)
    return _cart_view(session)


@router.delete("/cart/items/{product_id}")
def remove_cart_item(product_id: str, session: PosSession = Depends(get_pos_session)):
    session.cart.remove_item(product_id)
    return _cart_view(session)


@router.post("/cart/discount")
def set_cart_discount(data: DiscountIn, session: PosSession = Depends(get_pos_session)):
    _local(session.cart.set_discount, {"type": data.type, "value": data.value})
    return _cart_view(session)


@router.post("/cart/clear")
def clear_cart(session: PosSession = Depends(get_pos_session)):
    session.cart.clear()
    return _cart_view(session)


@router.post("/checkout")
def checkout(data: CheckoutIn, session: PosSession = Depends(get_pos_session)):
    res = _unwrap(session.checkout(customer=data.customer, payment_method=data.payment_method))
    invoice = res["invoice"]
    return {
        "order_id": res["order_id"],
        "invoice_number": invoice.invoice_number,
        "branch_id": invoice.branch_id,
        "subtotal": q_money(invoice.subtotal),
        "discount": q_money(invoice.discount),
        "tax": q_money(invoice.tax),
        "total": q_money(invoice.total),
        "payment_method": invoice.payment_method,
    }


@router.get("/returns")
def get_returns(session: PosSession = Depends(get_pos_session)):
    return _returns_view(session)


@router.post("/returns/search")
def search_invoices(data: SearchIn, session: PosSession = Depends(get_pos_session)):
    _unwrap(session.returns.search(data.query))
    return _returns_view(session)


@router.post("/returns/invoice")
def select_invoice(data: SelectInvoiceIn, session: PosSession = Depends(get_pos_session)):
    _unwrap(session.returns.select_invoice(data.invoice_id))
    return _returns_view(session)


@router.post("/returns/operation")
def choose_operation(data: OperationIn, session: PosSession = Depends(get_pos_session)):
    _unwrap(session.returns.choose_operation(data.operation_type))
    return _returns_view(session)


@router.post("/returns/lines/{line_id}")
def set_return_qty(line_id: str, data: ReturnQtyIn, session: PosSession = Depends(get_pos_session)):
    _unwrap(session.returns.set_return_qty(line_id, data.qty))
    return _returns_view(session)


@router.post("/returns/replacements")
def add_replacement(data: ReplacementIn, session: PosSession = Depends(get_pos_session)):
    product = _require_product(session, data.product_id)
    _unwrap(session.returns.add_replacement(product, data.qty))
    return _returns_view(session)


@router.patch("/returns/replacements/{index}")
def update_replacement(index: int, data: ReturnQtyIn, session: PosSession = Depends(get_pos_session)):
    _unwrap(session.returns.set_replacement_qty(index, data.qty))
    return _returns_view(session)


@router.delete("/returns/replacements/{index}")
def remove_replacement(index: int, session: PosSession = Depends(get_pos_session)):
    _unwrap(session.returns.remove_replacement(index))
    return _returns_view(session)


@router.post("/returns/confirm")
def confirm_return(session: PosSession = Depends(get_pos_session)):
    _unwrap(session.returns.confirm())
    return _returns_view(session)


@router.post("/returns/reset")
def reset_return(session: PosSession = Depends(get_pos_session)):
    session.returns.reset()
    return _returns_view(session)


@router.get("/config")
def public_config():
    # Never echo the store token.
    return {
        "store_configured": bool(settings.store_url),
        "branch_id": settings.branch_id,
        "cashier": settings.cashier,
        "cart_persisted": bool(settings.cart_path),
    }
