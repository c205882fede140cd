"""
Unit Tests - Transaction Validation
"""
from datetime import date
from decimal import Decimal

import pytest

from salesdw.exceptions import TransactionValidationError
from salesdw.ingestion.transactions import calc_discount_price, parse_transaction


class TestDiscountPrice:
    """Tests for calc_discount_price"""

    @pytest.mark.parametrize(
        "unit_price, discount, expected",
        [
            ("100.00", "0.00", "100.00"),
            ("100.00", "0.15", "85.00"),
            ("19.99", "0.10", "17.99"),
            ("0.05", "0.50", "0.03"),
        ],
    )
    def test_rounds_half_up_to_cents(self, unit_price, discount, expected):
        assert calc_discount_price(Decimal(unit_price), Decimal(discount)) == Decimal(expected)

    def test_float_inputs_are_exact(self):
        assert calc_discount_price(0.1, 0.5) == Decimal("0.05")


class TestParseTransaction:
    """Tests for parse_transaction"""

    def test_consistent_sale_accepted(self, make_sale):
        transaction = parse_transaction(make_sale(1, 1, "200.00", 3, date(2024, 2, 1), discount="0.25"))

        assert transaction.amount == Decimal("150.00")
        assert transaction.invoice_date == date(2024, 2, 1)

    def test_mismatched_amount_rejected(self, make_sale):
        fields = make_sale(1, 1, "100.00", 1, date(2024, 2, 1), discount="0.10")
        fields["amount"] = Decimal("100.00")

        with pytest.raises(TransactionValidationError) as exc_info:
            parse_transaction(fields)

        assert exc_info.value.field == "amount"
        assert "90.00" in str(exc_info.value)

    def test_zero_quantity_rejected(self, make_sale):
        fields = make_sale(1, 1, "10.00", 0, date(2024, 2, 1))

        with pytest.raises(TransactionValidationError) as exc_info:
            parse_transaction(fields)

        assert exc_info.value.field == "quantity"

    def test_discount_above_one_rejected(self, make_sale):
        fields = make_sale(1, 1, "10.00", 1, date(2024, 2, 1))
        fields["discount"] = Decimal("1.50")

        with pytest.raises(TransactionValidationError):
            parse_transaction(fields)

    def test_invoice_date_defaults_to_today(self, make_sale):
        fields = make_sale(1, 1, "10.00", 1, date(2024, 2, 1))
        del fields["invoice_date"]

        assert parse_transaction(fields).invoice_date == date.today()
