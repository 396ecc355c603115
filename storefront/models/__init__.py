"""Models package - exports all SQLAlchemy models."""
from storefront.models.buyer import Buyer
from storefront.models.product import Product
from storefront.models.product_stock import ProductStock
from storefront.models.order import Order, OrderStatus, ALLOWED_TRANSITIONS, STATUS_LABELS
from storefront.models.order_item import OrderItem
from storefront.models.payment import Payment, PaymentStatus

__all__ = [
    'Buyer', 'Product', 'ProductStock',
    'Order', 'OrderStatus', 'ALLOWED_TRANSITIONS', 'STATUS_LABELS',
    'OrderItem', 'Payment', 'PaymentStatus',
]
