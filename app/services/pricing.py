"""订单计价规则"""

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable

from app.core.config import settings
from app.models.orders import PaymentMethod

CENT = Decimal("0.01")


@dataclass(frozen=True)
class OrderLine:
    """下单时从购物车固化出来的一行明细"""
    product_id: int
    product_name: str
    quantity: int
    price: Decimal

    @property
    def line_total(self) -> Decimal:
        return self.price * self.quantity


@dataclass(frozen=True)
class OrderTotals:
    subtotal: Decimal
    shipping_fee: Decimal
    cod_fee: Decimal
    total_amount: Decimal


def calculate_totals(
    lines: Iterable[OrderLine],
    payment_method: PaymentMethod,
    free_shipping_threshold: Decimal = None,
    shipping_fee: Decimal = None,
    cod_surcharge: Decimal = None,
) -> OrderTotals:
    """小计 + 运费（小计超过门槛免运费）+ 货到付款手续费"""
    if free_shipping_threshold is None:
        free_shipping_threshold = settings.FREE_SHIPPING_THRESHOLD
    if shipping_fee is None:
        shipping_fee = settings.SHIPPING_FEE
    if cod_surcharge is None:
        cod_surcharge = settings.COD_SURCHARGE

    subtotal = sum((line.line_total for line in lines), Decimal("0"))
    shipping = Decimal("0") if subtotal > free_shipping_threshold else Decimal(shipping_fee)
    cod_fee = Decimal(cod_surcharge) if payment_method == PaymentMethod.COD else Decimal("0")

    return OrderTotals(
        subtotal=subtotal.quantize(CENT),
        shipping_fee=shipping.quantize(CENT),
        cod_fee=cod_fee.quantize(CENT),
        total_amount=(subtotal + shipping + cod_fee).quantize(CENT),
    )


def to_minor_units(amount: Decimal) -> int:
    """金额转为最小货币单位（如分/派萨）"""
    return int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
