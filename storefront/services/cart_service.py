"""Cart service - buyer cart kept in session state, passed explicitly to whoever needs it."""

from dataclasses import asdict
from decimal import Decimal
from typing import Dict, Any, List, MutableMapping, Optional

from storefront.models import Product
from storefront.exceptions import InsufficientStockError, NotFoundError, ValidationError
from storefront.services.pricing_service import (
    CartLine, PricedLine, price_cart, cart_subtotal, cart_item_count,
)

SESSION_KEY = 'cart'

_DECIMAL_FIELDS = ('unit_price', 'wholesale_min_amount', 'wholesale_discount_percent',
                   'weight', 'width', 'height', 'length')


def _line_to_dict(line: CartLine) -> Dict[str, Any]:
    data = asdict(line)
    for name in _DECIMAL_FIELDS:
        if data[name] is not None:
            data[name] = str(data[name])
    return data


def _line_from_dict(data: Dict[str, Any]) -> CartLine:
    data = dict(data)
    for name in _DECIMAL_FIELDS:
        if data.get(name) is not None:
            data[name] = Decimal(data[name])
    return CartLine(**data)


class Cart:
    """
    Buyer cart bound to a mutable store (the Flask session, or a plain dict in tests).

    Lines keep the catalog snapshot taken when the product was added; checkout
    re-prices against the current catalog anyway.
    """

    def __init__(self, store: Optional[MutableMapping] = None):
        self._store = store if store is not None else {}
        if SESSION_KEY not in self._store:
            self._store[SESSION_KEY] = {'items': {}}

    @property
    def _items(self) -> Dict[str, Dict[str, Any]]:
        return self._store[SESSION_KEY]['items']

    def _save(self, items: Dict[str, Dict[str, Any]]) -> None:
        # Reassign so Flask's session notices the change
        self._store[SESSION_KEY] = {'items': items}

    def lines(self) -> List[CartLine]:
        return [_line_from_dict(data) for data in self._items.values()]

    def get(self, product_id) -> Optional[CartLine]:
        data = self._items.get(str(product_id))
        return _line_from_dict(data) if data else None

    def is_empty(self) -> bool:
        return not self._items

    def add(self, product: Product, quantity: int = 1) -> CartLine:
        """Add units of a product (merging with an existing line)."""
        if product is None:
            raise NotFoundError('Produto não encontrado')
        if not product.active:
            raise ValidationError(f'O produto "{product.name}" não está disponível')

        quantity = int(quantity)
        if quantity < 1:
            raise ValidationError('A quantidade deve ser maior que zero')

        existing = self.get(product.id)
        new_qty = quantity + (existing.quantity if existing else 0)
        if new_qty > product.stock_qty:
            raise InsufficientStockError(product.name, new_qty, product.stock_qty)

        line = CartLine.from_product(product, new_qty)
        items = dict(self._items)
        items[str(product.id)] = _line_to_dict(line)
        self._save(items)
        return line

    def update(self, product_id, quantity: int, product: Optional[Product] = None) -> CartLine:
        """Set the quantity of a line; pass the product to refresh its catalog snapshot."""
        line = self.get(product_id)
        if line is None:
            raise NotFoundError('Produto não está no carrinho')

        quantity = int(quantity)
        if quantity < 1:
            raise ValidationError('A quantidade deve ser maior que zero')

        if product is not None:
            if quantity > product.stock_qty:
                raise InsufficientStockError(product.name, quantity, product.stock_qty)
            line = CartLine.from_product(product, quantity)
        else:
            line = line.with_quantity(quantity)

        items = dict(self._items)
        items[str(product_id)] = _line_to_dict(line)
        self._save(items)
        return line

    def remove(self, product_id) -> None:
        items = dict(self._items)
        if items.pop(str(product_id), None) is None:
            raise NotFoundError('Produto não está no carrinho')
        self._save(items)

    def clear(self) -> None:
        self._save({})

    def priced_lines(self) -> List[PricedLine]:
        return price_cart(self.lines())

    def summary(self) -> Dict[str, Any]:
        priced = self.priced_lines()
        return {
            'items': [p.to_dict() for p in priced],
            'subtotal': str(cart_subtotal(priced)),
            'item_count': cart_item_count(p.line for p in priced),
        }
