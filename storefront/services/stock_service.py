"""
Stock service - availability checks and atomic reservations.

ProductStock is shared by every concurrent buyer. Reservations are conditional
atomic decrements executed by the database ("decrement only if the result
stays >= 0"), never a read followed by a write in Python.
"""
import logging
from collections import OrderedDict
from typing import Dict, Iterable, List

from sqlalchemy import update

from storefront.models import Product, ProductStock
from storefront.exceptions import InsufficientStockError, ValidationError
from storefront.services.pricing_service import CartLine

logger = logging.getLogger(__name__)


def requested_quantities(lines: Iterable[CartLine]) -> "OrderedDict[int, int]":
    """Total requested quantity per product (a product may appear on several lines)."""
    totals: "OrderedDict[int, int]" = OrderedDict()
    for line in lines:
        totals[line.product_id] = totals.get(line.product_id, 0) + int(line.quantity)
    return totals


def get_stock_levels(session, product_ids: List[int]) -> Dict[int, int]:
    """Current on-hand quantity for the given products (missing rows are omitted)."""
    if not product_ids:
        return {}
    rows = session.query(ProductStock.product_id, ProductStock.quantity).filter(
        ProductStock.product_id.in_(product_ids)
    ).all()
    return {row[0]: int(row[1]) for row in rows}


def verify_stock(session, lines: List[CartLine]) -> None:
    """
    Check every cart line against current stock. Fails closed.

    Raises InsufficientStockError when a product no longer exists, is
    inactive, or has fewer units than requested. Does not reserve anything.
    """
    if not lines:
        raise ValidationError('O carrinho está vazio')

    totals = requested_quantities(lines)
    names = {line.product_id: line.name for line in lines}

    products = session.query(Product).filter(Product.id.in_(list(totals.keys()))).all()
    products_dict = {p.id: p for p in products}
    levels = get_stock_levels(session, list(totals.keys()))

    for product_id, qty in totals.items():
        product = products_dict.get(product_id)
        if product is None or not product.active:
            raise InsufficientStockError(names[product_id], qty, 0)

        available = levels.get(product_id, 0)
        if available < qty:
            logger.info(
                f"[STOCK] Insufficient stock for product {product_id}: requested {qty}, available {available}"
            )
            raise InsufficientStockError(product.name, qty, available)


def reserve_stock(session, product_id: int, qty: int, product_name: str = None) -> None:
    """
    Atomically decrement stock by qty, only if enough units remain.

    Must run inside the caller's transaction; the caller commits or rolls back.
    """
    qty = int(qty)
    if qty < 1:
        raise ValidationError('A quantidade deve ser maior que zero')

    result = session.execute(
        update(ProductStock)
        .where(ProductStock.product_id == product_id, ProductStock.quantity >= qty)
        .values(quantity=ProductStock.quantity - qty)
        .execution_options(synchronize_session=False)
    )

    if result.rowcount != 1:
        available = get_stock_levels(session, [product_id]).get(product_id, 0)
        if product_name is None:
            product = session.get(Product, product_id)
            product_name = product.name if product else f'#{product_id}'
        raise InsufficientStockError(product_name, qty, available)


def release_stock(session, product_id: int, qty: int) -> bool:
    """
    Atomically give qty units back to stock.

    Returns False when the product has no stock row anymore (nothing to credit).
    """
    result = session.execute(
        update(ProductStock)
        .where(ProductStock.product_id == product_id)
        .values(quantity=ProductStock.quantity + int(qty))
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        logger.warning(f"[STOCK] Cannot release {qty} units: no stock row for product {product_id}")
        return False
    return True
