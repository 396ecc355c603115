"""
Unit tests for cart line pricing and wholesale discounts.
"""

import pytest
from decimal import Decimal

from storefront.exceptions import ValidationError
from storefront.services.pricing_service import (
    CartLine, price_line, price_cart, cart_subtotal, cart_item_count, grand_total,
    qualifies_for_wholesale, to_money,
)


def line(price='100.00', qty=1, min_amount=None, percent=None, product_id=1):
    return CartLine(
        product_id=product_id,
        name=f'Produto {product_id}',
        unit_price=Decimal(price),
        quantity=qty,
        wholesale_min_amount=Decimal(min_amount) if min_amount is not None else None,
        wholesale_discount_percent=Decimal(percent) if percent is not None else None,
    )


class TestWholesaleRule:
    """Wholesale threshold on the pre-discount line subtotal."""

    def test_fifteen_units_reach_wholesale(self):
        """100.00 x 15 = 1500 >= 1000, 10% off: 90.00 each, 1350.00 total."""
        priced = price_line(line('100.00', 15, '1000.00', '10'))

        assert priced.discount_applied is True
        assert priced.effective_unit_price == Decimal('90.00')
        assert priced.line_subtotal == Decimal('1350.00')
        assert priced.raw_subtotal == Decimal('1500.00')
        assert priced.discount_amount == Decimal('150.00')

    def test_threshold_is_inclusive(self):
        priced = price_line(line('100.00', 10, '1000.00', '10'))
        assert priced.discount_applied is True
        assert priced.line_subtotal == Decimal('900.00')

    def test_just_below_threshold(self):
        priced = price_line(line('99.99', 10, '1000.00', '10'))
        assert priced.discount_applied is False
        assert priced.effective_unit_price == Decimal('99.99')
        assert priced.line_subtotal == Decimal('999.90')

    def test_threshold_checked_before_discount(self):
        """1000 qualifies even though the discounted 900 would not."""
        assert qualifies_for_wholesale(line('250.00', 4, '1000.00', '10')) is True

    @pytest.mark.parametrize('min_amount,percent', [
        (None, '10'),
        ('1000.00', None),
    ])
    def test_incomplete_rule_never_discounts(self, min_amount, percent):
        priced = price_line(line('100.00', 50, min_amount, percent))
        assert priced.discount_applied is False
        assert priced.line_subtotal == Decimal('5000.00')

    def test_zero_percent_rule_applies_without_changing_price(self):
        priced = price_line(line('100.00', 10, '1000.00', '0'))
        assert priced.discount_applied is True
        assert priced.effective_unit_price == Decimal('100.00')
        assert priced.line_subtotal == Decimal('1000.00')


class TestRounding:
    """Money is rounded half-up to cents, unit price first."""

    def test_effective_unit_price_rounded_before_multiplying(self):
        # 33.33 * 0.85 = 28.3305 -> 28.33; 28.33 * 3 = 84.99
        priced = price_line(line('33.33', 3, '50.00', '15'))
        assert priced.effective_unit_price == Decimal('28.33')
        assert priced.line_subtotal == Decimal('84.99')
        assert priced.effective_unit_price * 3 == priced.line_subtotal

    def test_half_up(self):
        assert to_money('0.125') == Decimal('0.13')
        assert to_money('2.675') == Decimal('2.68')
        assert to_money(None) == Decimal('0.00')


class TestCartTotals:
    """Cart subtotal and grand total."""

    def test_subtotal_is_sum_of_line_subtotals(self):
        priced = price_cart([
            line('100.00', 15, '1000.00', '10', product_id=1),
            line('19.90', 3, product_id=2),
            line('0.99', 1, product_id=3),
        ])
        assert cart_subtotal(priced) == sum(p.line_subtotal for p in priced)
        assert cart_subtotal(priced) == Decimal('1410.69')

    def test_lines_priced_independently(self):
        """No cross-product bundling: two lines below threshold stay undiscounted."""
        priced = price_cart([
            line('100.00', 6, '1000.00', '10', product_id=1),
            line('100.00', 6, '1000.00', '10', product_id=2),
        ])
        assert not any(p.discount_applied for p in priced)
        assert cart_subtotal(priced) == Decimal('1200.00')

    def test_grand_total(self):
        assert grand_total(Decimal('1350.00'), Decimal('25.90')) == Decimal('1375.90')
        assert grand_total(Decimal('10'), 0) == Decimal('10.00')

    def test_empty_cart(self):
        assert cart_subtotal(price_cart([])) == Decimal('0.00')
        assert cart_item_count([]) == 0

    def test_item_count(self):
        assert cart_item_count([line(qty=2), line(qty=5, product_id=2)]) == 7


class TestCartLine:
    """CartLine validation."""

    def test_zero_quantity_rejected(self):
        with pytest.raises(ValidationError):
            line(qty=0)

    def test_negative_price_rejected(self):
        with pytest.raises(ValidationError):
            line(price='-1.00')

    def test_with_quantity_keeps_snapshot(self):
        original = line('100.00', 1, '1000.00', '10')
        changed = original.with_quantity(12)
        assert changed.quantity == 12
        assert changed.wholesale_min_amount == original.wholesale_min_amount
        assert original.quantity == 1
