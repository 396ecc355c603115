"""
Pricing service - pure cart line pricing with wholesale discounts.

No I/O and no session access: safe to call from any request, any number of
times, in parallel.
"""
from dataclasses import dataclass, replace
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, List, Optional

from storefront.exceptions import ValidationError

CENTS = Decimal('0.01')


def to_money(value) -> Decimal:
    """Coerce to Decimal rounded to cents (half-up)."""
    if value is None:
        return Decimal('0.00')
    return Decimal(str(value)).quantize(CENTS, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class CartLine:
    """One product in the buyer's cart, with the catalog snapshot taken when it was added."""
    product_id: int
    name: str
    unit_price: Decimal
    quantity: int
    stock_snapshot: int = 0
    wholesale_min_amount: Optional[Decimal] = None
    wholesale_discount_percent: Optional[Decimal] = None
    weight: Decimal = Decimal('0.3')
    width: Decimal = Decimal('11')
    height: Decimal = Decimal('2')
    length: Decimal = Decimal('16')

    def __post_init__(self):
        if int(self.quantity) < 1:
            raise ValidationError('A quantidade deve ser maior que zero')
        if Decimal(str(self.unit_price)) < 0:
            raise ValidationError('Preço inválido')

    @classmethod
    def from_product(cls, product, quantity: int) -> 'CartLine':
        """Build a line from a catalog Product row."""
        return cls(
            product_id=product.id,
            name=product.name,
            unit_price=to_money(product.price),
            quantity=int(quantity),
            stock_snapshot=int(product.stock_qty or 0),
            wholesale_min_amount=(
                to_money(product.wholesale_min_amount)
                if product.wholesale_min_amount is not None else None
            ),
            wholesale_discount_percent=(
                Decimal(str(product.wholesale_discount_percent))
                if product.wholesale_discount_percent is not None else None
            ),
            weight=Decimal(str(product.weight)),
            width=Decimal(str(product.width)),
            height=Decimal(str(product.height)),
            length=Decimal(str(product.length)),
        )

    def with_quantity(self, quantity: int) -> 'CartLine':
        return replace(self, quantity=int(quantity))


@dataclass(frozen=True)
class PricedLine:
    """Derived pricing for a CartLine. Never persisted."""
    line: CartLine
    effective_unit_price: Decimal
    line_subtotal: Decimal
    discount_applied: bool

    @property
    def raw_subtotal(self) -> Decimal:
        return to_money(Decimal(str(self.line.unit_price)) * self.line.quantity)

    @property
    def discount_amount(self) -> Decimal:
        return self.raw_subtotal - self.line_subtotal

    def to_dict(self):
        return {
            'product_id': self.line.product_id,
            'name': self.line.name,
            'quantity': self.line.quantity,
            'unit_price': str(to_money(self.line.unit_price)),
            'effective_unit_price': str(self.effective_unit_price),
            'line_subtotal': str(self.line_subtotal),
            'discount_applied': self.discount_applied,
        }


def qualifies_for_wholesale(line: CartLine) -> bool:
    """
    Wholesale applies when the pre-discount line subtotal reaches the minimum.

    The threshold is inclusive and always tested against P x Q, never
    against the discounted value.
    """
    if line.wholesale_min_amount is None or line.wholesale_discount_percent is None:
        return False
    raw_subtotal = Decimal(str(line.unit_price)) * line.quantity
    return raw_subtotal >= Decimal(str(line.wholesale_min_amount))


def price_line(line: CartLine) -> PricedLine:
    """Compute effective unit price and subtotal for a single cart line."""
    unit_price = to_money(line.unit_price)
    discount_applied = qualifies_for_wholesale(line)

    if discount_applied:
        factor = Decimal('1') - Decimal(str(line.wholesale_discount_percent)) / Decimal('100')
        effective_unit_price = to_money(unit_price * factor)
    else:
        effective_unit_price = unit_price

    # unit price is rounded first so OrderItem.unit_price * quantity == line_total
    line_subtotal = to_money(effective_unit_price * line.quantity)
    return PricedLine(
        line=line,
        effective_unit_price=effective_unit_price,
        line_subtotal=line_subtotal,
        discount_applied=discount_applied,
    )


def price_cart(lines: Iterable[CartLine]) -> List[PricedLine]:
    """Price every line independently (no cross-product bundling)."""
    return [price_line(line) for line in lines]


def cart_subtotal(priced_lines: Iterable[PricedLine]) -> Decimal:
    return to_money(sum((p.line_subtotal for p in priced_lines), Decimal('0')))


def cart_item_count(lines: Iterable[CartLine]) -> int:
    return sum(line.quantity for line in lines)


def grand_total(subtotal, shipping_cost) -> Decimal:
    return to_money(to_money(subtotal) + to_money(shipping_cost))
