from __future__ import annotations

from typing import Annotated, Literal

from pydantic import BeforeValidator, StringConstraints


def _to_upper_str(v):
    if v is None:
        return v
    return str(v).strip().upper()


def _to_lower_str(v):
    if v is None:
        return v
    return str(v).strip().lower()


# Codes mirror the values the record store writes into its sheets.
OperationType = Annotated[Literal["RETURN", "EXCHANGE"], BeforeValidator(_to_upper_str)]
OperationItemType = Annotated[Literal["RETURNED", "NEW"], BeforeValidator(_to_upper_str)]
PaymentDirection = Annotated[Literal["COLLECT", "REFUND"], BeforeValidator(_to_upper_str)]

DiscountType = Annotated[Literal["amount", "percent"], BeforeValidator(_to_lower_str)]
PaymentMethod = Annotated[Literal["cash", "card", "credit", "split"], BeforeValidator(_to_lower_str)]
InvoiceStatus = Annotated[Literal["completed", "pending", "cancelled"], BeforeValidator(_to_lower_str)]
CustomerType = Annotated[Literal["individual", "company"], BeforeValidator(_to_lower_str)]
StockFilter = Annotated[Literal["all", "low", "out"], BeforeValidator(_to_lower_str)]


# Local mobile numbers: 05xxxxxxxx or 9665xxxxxxxx.
PhoneNumber = Annotated[
    str,
    StringConstraints(strip_whitespace=True, pattern=r"^(05|9665)[0-9]{8}$"),
]

# Products and invoice lines are keyed by externally assigned ids; keep them stable strings.
RecordId = Annotated[
    str,
    BeforeValidator(lambda v: v if v is None else str(v).strip()),
    StringConstraints(min_length=1, max_length=128),
]
