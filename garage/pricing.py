"""Cálculo de preços de itens, subtotal, imposto e total.

Funções puras, sem efeitos colaterais. Os valores são tratados com `Decimal`
e o imposto é arredondado para unidades inteiras de moeda (CLP não tem centavos),
com meio arredondado para longe de zero.
"""

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Protocol, Union

Number = Union[int, float, str, Decimal]

HUNDRED = Decimal(100)
UNIT = Decimal(1)


class PricedProduct(Protocol):
    sale_price: Number
    profit_margin: Number


class PricedLine(Protocol):
    quantity: int
    labor_price: Number
    discount: Number


def to_decimal(value: Number) -> Decimal:
    if isinstance(value, Decimal):
        return value
    # str() evita herdar a imprecisão binária de floats
    return Decimal(str(value))


def unit_price(product: PricedProduct) -> Decimal:
    """Preço unitário cobrado: preço de venda acrescido da margem de lucro."""
    return to_decimal(product.sale_price) * (1 + to_decimal(product.profit_margin) / HUNDRED)


def line_total(line: PricedLine, price: Number) -> Decimal:
    """Total do item: preço unitário * quantidade + mão de obra - desconto.

    Não é limitado a zero; o chamador valida descontos maiores que o item.
    """
    return to_decimal(price) * line.quantity + to_decimal(line.labor_price) - to_decimal(line.discount)


def subtotal(totals: Iterable[Number]) -> Decimal:
    return sum((to_decimal(t) for t in totals), Decimal(0))


def tax_amount(base: Number, rate_percent: Number) -> Decimal:
    return (to_decimal(base) * to_decimal(rate_percent) / HUNDRED).quantize(UNIT, rounding=ROUND_HALF_UP)


def total(base: Number, tax: Number) -> Decimal:
    return to_decimal(base) + to_decimal(tax)


@dataclass(frozen=True)
class PricingSummary:
    """Resumo de preços de uma ordem, com o snapshot da taxa usada."""
    subtotal: Decimal
    tax_rate: Decimal
    tax_amount: Decimal
    total_amount: Decimal

    def is_consistent(self) -> bool:
        return self.total_amount == self.subtotal + self.tax_amount


def summarize(totals: Iterable[Number], rate_percent: Number) -> PricingSummary:
    base = subtotal(totals)
    tax = tax_amount(base, rate_percent)
    return PricingSummary(
        subtotal=base,
        tax_rate=to_decimal(rate_percent),
        tax_amount=tax,
        total_amount=total(base, tax),
    )
