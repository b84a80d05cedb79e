from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .money import MAX_AMOUNT
from .validation import (
    CustomerType,
    DiscountType,
    InvoiceStatus,
    OperationItemType,
    OperationType,
    PaymentDirection,
    PaymentMethod,
    PhoneNumber,
    RecordId,
)


class Product(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: RecordId
    name: str
    category: str = ""
    cost_price: Decimal = Field(default=Decimal("0"), ge=0)
    # Always VAT-inclusive.
    selling_price: Decimal = Field(ge=0)
    quantity: int = Field(default=0, ge=0)
    min_quantity: int = Field(default=0, ge=0)
    branch_id: Optional[str] = None
    description: Optional[str] = None
    image: Optional[str] = None


class CartItem(Product):
    cart_quantity: int = Field(ge=1)

    @property
    def line_total(self) -> Decimal:
        return self.selling_price * self.cart_quantity


class Discount(BaseModel):
    type: DiscountType = "amount"
    value: Decimal = Field(default=Decimal("0"), ge=0, le=MAX_AMOUNT)

    @model_validator(mode="after")
    def _check_percent(self):
        if self.type == "percent" and self.value > 100:
            raise ValueError("discount percent must be between 0 and 100")
        return self


class CartTotals(BaseModel):
    subtotal_raw: Decimal
    discount_amount: Decimal
    discounted_subtotal: Decimal
    # Price before tax of the discounted subtotal.
    net_subtotal: Decimal
    tax: Decimal
    total: Decimal
    item_count: int


class Customer(BaseModel):
    name: str = Field(min_length=2)
    phone: PhoneNumber
    city: str = ""
    type: CustomerType = "individual"
    address: Optional[str] = None
    company_name: Optional[str] = None
    commercial_register: Optional[str] = None


class InvoiceLine(BaseModel):
    product_id: RecordId
    name: str
    quantity: int = Field(ge=1)
    price: Decimal = Field(ge=0)
    line_total: Decimal = Field(ge=0)


class Invoice(BaseModel):
    invoice_number: str
    branch_id: str
    created_by: str
    customer: Optional[Customer] = None
    items: List[InvoiceLine] = Field(min_length=1)
    subtotal_raw: Decimal
    # Net of VAT, after discount.
    subtotal: Decimal
    discount: Decimal
    tax: Decimal
    total: Decimal
    payment_method: PaymentMethod = "cash"
    status: InvoiceStatus = "completed"
    created_at: datetime


class InvoiceSummary(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: RecordId
    invoice_number: str = ""
    customer_name: str = ""
    customer_phone: str = ""
    total_amount: Decimal = Decimal("0")
    status: str = ""
    created_at: Optional[str] = None


class OriginalLine(BaseModel):
    """One line of an already persisted invoice, as returned by the store."""

    model_config = ConfigDict(extra="ignore")

    id: RecordId
    product_id: RecordId
    sku: str = ""
    product_name: str = ""
    quantity: int = Field(ge=0)
    unit_price: Decimal = Field(ge=0)
    subtotal: Decimal = Decimal("0")
    vat: Decimal = Decimal("0")


class InvoiceDetails(BaseModel):
    order: InvoiceSummary
    items: List[OriginalLine]


class ReplacementLine(BaseModel):
    product: Product
    qty: int = Field(default=1, ge=1)

    @property
    def line_total(self) -> Decimal:
        return self.product.selling_price * self.qty


class Settlement(BaseModel):
    returned_subtotal: Decimal
    new_subtotal: Decimal
    diff: Decimal
    vat_adjustment: Decimal
    # diff + vat_adjustment, signed.
    net: Decimal
    total_amount: Decimal
    direction: PaymentDirection


class OperationItem(BaseModel):
    sku: RecordId
    qty: int = Field(ge=1)
    type: OperationItemType
    reason: str = ""
    # Invoice line a RETURNED item came from; the same sku can sit on several lines.
    line_id: Optional[str] = None


class PaymentDescriptor(BaseModel):
    amount: Decimal = Field(ge=0)
    method: PaymentMethod = "cash"
    direction: PaymentDirection


class ReturnExchangeOperation(BaseModel):
    invoice_id: RecordId
    operation_type: OperationType
    items: List[OperationItem]
    total_amount: Decimal = Field(ge=0)
    vat_adjustment: Decimal
    payment: PaymentDescriptor
    created_by: str = ""
    client_operation_id: str = Field(min_length=1)

    @model_validator(mode="after")
    def _check_item_layout(self):
        kinds = [it.type for it in self.items]
        if "RETURNED" not in kinds:
            raise ValueError("at least one RETURNED item is required")
        first_new = kinds.index("NEW") if "NEW" in kinds else len(kinds)
        if "RETURNED" in kinds[first_new:]:
            raise ValueError("RETURNED items must precede NEW items")
        if self.operation_type == "RETURN" and first_new < len(kinds):
            raise ValueError("a RETURN operation cannot carry NEW items")
        if self.payment.amount != self.total_amount:
            raise ValueError("payment amount must equal total_amount")
        return self


class RecordedOperation(ReturnExchangeOperation):
    """A return/exchange as read back from the store. Records written before
    client ids existed carry neither `client_operation_id` nor line ids."""

    created_by: Optional[str] = None
    client_operation_id: Optional[str] = None


class ReceiptLine(BaseModel):
    sku: str
    name: str = ""
    qty: int
    unit_price: Decimal
    line_total: Decimal
    type: OperationItemType


class OperationReceipt(BaseModel):
    operation_id: str
    invoice_number: str = ""
    operation: ReturnExchangeOperation
    settlement: Settlement
    returned_lines: List[ReceiptLine] = Field(default_factory=list)
    replacement_lines: List[ReceiptLine] = Field(default_factory=list)
