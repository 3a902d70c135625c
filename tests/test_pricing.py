"""计价规则单元测试"""
from decimal import Decimal

import pytest

from app.models import PaymentMethod
from app.services.pricing import OrderLine, calculate_totals, to_minor_units


def lines(*prices_and_quantities):
    return [
        OrderLine(product_id=i, product_name=f"商品{i}", quantity=quantity, price=Decimal(price))
        for i, (price, quantity) in enumerate(prices_and_quantities, start=1)
    ]


class TestCalculateTotals:

    def test_online_below_threshold(self):
        totals = calculate_totals(lines(("200.00", 1)), PaymentMethod.ONLINE)

        assert totals.subtotal == Decimal("200.00")
        assert totals.shipping_fee == Decimal("50.00")
        assert totals.cod_fee == Decimal("0.00")
        assert totals.total_amount == Decimal("250.00")

    def test_cod_adds_surcharge(self):
        totals = calculate_totals(lines(("200.00", 1)), PaymentMethod.COD)
        assert totals.total_amount == Decimal("290.00")

    def test_threshold_is_exclusive(self):
        """小计恰好等于 500 仍收运费"""
        totals = calculate_totals(lines(("250.00", 2)), PaymentMethod.ONLINE)
        assert totals.shipping_fee == Decimal("50.00")
        assert totals.total_amount == Decimal("550.00")

    def test_free_shipping_above_threshold(self):
        totals = calculate_totals(lines(("250.00", 2), ("0.01", 1)), PaymentMethod.COD)

        assert totals.subtotal == Decimal("500.01")
        assert totals.shipping_fee == Decimal("0.00")
        assert totals.total_amount == Decimal("540.01")

    def test_custom_rules(self):
        totals = calculate_totals(
            lines(("80.00", 1)),
            PaymentMethod.COD,
            free_shipping_threshold=Decimal("50"),
            shipping_fee=Decimal("99"),
            cod_surcharge=Decimal("5"),
        )
        assert totals.total_amount == Decimal("85.00")


@pytest.mark.parametrize("amount, expected", [
    (Decimal("290.00"), 29000),
    (Decimal("0.01"), 1),
    (Decimal("10.005"), 1001),
])
def test_to_minor_units(amount, expected):
    assert to_minor_units(amount) == expected
