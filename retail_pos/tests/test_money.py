from decimal import Decimal

import pytest

from retail_pos.app.errors import ValidationError
from retail_pos.app.money import (
    MAX_AMOUNT,
    parse_amount,
    parse_quantity,
    price_before_tax,
    q_money,
    tax_component,
    to_decimal,
)


@pytest.mark.parametrize("gross", ["0", "0.01", "1", "115", "207", "99.99", "123456.78"])
def test_price_before_tax_plus_tax_component_is_the_gross(gross):
    g = Decimal(gross)
    assert abs(price_before_tax(g) + tax_component(g) - g) <= Decimal("0.01")


def test_tax_component_of_115_is_15():
    assert q_money(tax_component(Decimal("115"))) == Decimal("15.00")
    assert q_money(price_before_tax(Decimal("115"))) == Decimal("100.00")


def test_q_money_rounds_half_up():
    assert q_money(Decimal("2.345")) == Decimal("2.35")
    assert q_money(None) == Decimal("0.00")


def test_to_decimal_is_lenient_for_store_rows():
    assert to_decimal(None) == 0
    assert to_decimal("") == 0
    assert to_decimal("abc") == 0
    assert to_decimal("NaN") == 0
    assert to_decimal(" 12.50 ") == Decimal("12.50")


def test_parse_amount_rejects_junk_and_negatives():
    assert parse_amount("10.5") == Decimal("10.5")
    for bad in ("abc", "", "-1", True, "Infinity"):
        with pytest.raises(ValidationError):
            parse_amount(bad, "discount value")


def test_parse_quantity_accepts_whole_numbers_only():
    assert parse_quantity(3) == 3
    assert parse_quantity("4") == 4
    assert parse_quantity("2.0") == 2
    assert parse_quantity(-1) == -1
    for bad in ("1.5", "x", True):
        with pytest.raises(ValidationError) as exc_info:
            parse_quantity(bad, "quantity")
        assert "quantity" in exc_info.value.message


def test_parse_amount_rejects_values_past_the_ceiling():
    assert parse_amount(MAX_AMOUNT) == MAX_AMOUNT
    for bad in ("1e999999", MAX_AMOUNT + 1):
        with pytest.raises(ValidationError) as exc_info:
            parse_amount(bad, "discount value")
        assert exc_info.value.message == "discount value is too large"
