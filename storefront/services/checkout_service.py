"""
Checkout service with transactional logic.
Turns a cart into a persisted order with reserved stock, then hands off to payment.
"""
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from storefront.models import Order, OrderItem, OrderStatus, Payment, PaymentStatus, Product
from storefront.exceptions import (
    StoreError, NotFoundError, ValidationError, PaymentRequestFailed, PersistenceFailure,
)
from storefront.services.pricing_service import CartLine, price_cart, cart_subtotal, grand_total, to_money
from storefront.services.stock_service import verify_stock, reserve_stock, requested_quantities
from storefront.services.shipping_service import ShippingOption, normalize_cep, format_cep
from storefront.services import event_channel
from storefront.blueprints.metrics import orders_created_total, checkout_failures_total

logger = logging.getLogger(__name__)

ADDRESS_FIELDS = ('street', 'number', 'complement', 'neighborhood', 'city', 'state', 'zip_code')


@dataclass(frozen=True)
class CheckoutResult:
    order_id: str
    payment_redirect_url: str

    def to_dict(self):
        return {'order_id': self.order_id, 'checkout_url': self.payment_redirect_url}


def validate_address(address: Optional[Dict[str, Any]]) -> Dict[str, Optional[str]]:
    """
    Normalize the destination address.

    Street and house number are mandatory: delivery is not possible without them.
    """
    address = address or {}
    cleaned = {}
    for name in ADDRESS_FIELDS:
        value = address.get(name)
        value = str(value).strip() if value is not None else ''
        cleaned[name] = value or None

    if not cleaned['street']:
        raise ValidationError('Informe a rua do endereço de entrega')
    if not cleaned['number']:
        raise ValidationError('Informe o número do endereço de entrega')

    if cleaned['zip_code']:
        digits = normalize_cep(cleaned['zip_code'])
        if len(digits) != 8:
            raise ValidationError('CEP inválido')
        cleaned['zip_code'] = format_cep(digits)
    return cleaned


def _current_lines(session, lines: List[CartLine]) -> List[CartLine]:
    """Re-read price and wholesale rule from the catalog; the client snapshot is not trusted for money."""
    product_ids = list(requested_quantities(lines).keys())
    products = {p.id: p for p in session.query(Product).filter(Product.id.in_(product_ids)).all()}
    current = []
    for line in lines:
        product = products.get(line.product_id)
        if product is None:
            raise NotFoundError(f'Produto "{line.name}" não encontrado')
        current.append(CartLine.from_product(product, line.quantity))
    return current


def checkout(
    session,
    buyer_id: str,
    lines: List[CartLine],
    selected_shipping: ShippingOption,
    address: Dict[str, Any],
    gateway,
    payer: Optional[Dict[str, Any]] = None,
) -> CheckoutResult:
    """
    Create an order from the cart and request a payment handoff.

    Steps:
    1. Validate cart, buyer, shipping selection and destination address
    2. Verify stock (fail fast, product name + availability)
    3. Price every line against the current catalog
    4. Persist Order + OrderItems and reserve stock - one transaction
    5. Request the payment preference

    Raises:
        ValidationError, NotFoundError, InsufficientStockError: nothing persisted.
        PersistenceFailure: database error, transaction rolled back.
        PaymentRequestFailed: order persisted and stock reserved; retry with
            retry_payment_request(order_id) instead of checking out again.
    """
    if not lines:
        raise ValidationError('O carrinho está vazio')
    if not buyer_id:
        raise ValidationError('Comprador não identificado')
    if selected_shipping is None:
        raise ValidationError('Selecione uma opção de frete')
    shipping_address = validate_address(address)

    try:
        verify_stock(session, lines)

        priced = price_cart(_current_lines(session, lines))
        subtotal = cart_subtotal(priced)
        shipping_cost = to_money(selected_shipping.price)

        order = Order(
            buyer_id=str(buyer_id),
            status=OrderStatus.WAITING_PAYMENT.value,
            subtotal=subtotal,
            shipping_cost=shipping_cost,
            total=grand_total(subtotal, shipping_cost),
            shipping_method=selected_shipping.label,
            shipping_address=shipping_address,
            payment_method='mercado_pago',
        )
        session.add(order)
        session.flush()

        for p in priced:
            order.items.append(OrderItem(
                product_id=p.line.product_id,
                product_name=p.line.name,
                quantity=p.line.quantity,
                unit_price=p.effective_unit_price,
                line_total=p.line_subtotal,
            ))

        # Conditional decrement per product: a concurrent checkout that got
        # there first makes this raise InsufficientStockError and roll back.
        names = {line.product_id: line.name for line in lines}
        for product_id, qty in requested_quantities(lines).items():
            reserve_stock(session, product_id, qty, names.get(product_id))

        session.commit()
        order_id = order.id

    except StoreError as e:
        session.rollback()
        checkout_failures_total.labels(reason=type(e).__name__).inc()
        raise
    except SQLAlchemyError as e:
        session.rollback()
        logger.exception(f"[CHECKOUT] Database error creating order for buyer {buyer_id}")
        checkout_failures_total.labels(reason='PersistenceFailure').inc()
        raise PersistenceFailure() from e

    logger.info(f"[CHECKOUT] Order {order_id} created for buyer {buyer_id}: total {order.total}")
    orders_created_total.inc()
    event_channel.publish(event_channel.ORDER_CREATED, order_id, status=order.status, source='checkout')

    redirect_url = request_payment(session, order, gateway, payer)
    return CheckoutResult(order_id=order_id, payment_redirect_url=redirect_url)


def request_payment(session, order: Order, gateway, payer: Optional[Dict[str, Any]] = None) -> str:
    """Ask the payment collaborator for a hosted checkout and record the pending payment."""
    try:
        handoff = gateway.create_preference(order, payer)
    except PaymentRequestFailed:
        checkout_failures_total.labels(reason='PaymentRequestFailed').inc()
        raise
    except Exception as e:
        logger.exception(f"[CHECKOUT] Payment handoff failed for order {order.id}")
        checkout_failures_total.labels(reason='PaymentRequestFailed').inc()
        raise PaymentRequestFailed(order.id) from e

    try:
        session.add(Payment(
            order_id=order.id,
            preference_id=handoff.preference_id,
            checkout_url=handoff.redirect_url,
            status=PaymentStatus.PENDING.value,
            amount=order.total,
        ))
        session.commit()
    except SQLAlchemyError:
        # The preference exists on the provider side; the webhook will record the payment.
        session.rollback()
        logger.exception(f"[CHECKOUT] Could not record payment preference for order {order.id}")

    return handoff.redirect_url


def retry_payment_request(session, order_id: str, buyer_id: Optional[str], gateway,
                          payer: Optional[Dict[str, Any]] = None) -> CheckoutResult:
    """
    Request a new payment handoff for an existing unpaid order.

    Used after PaymentRequestFailed, so the buyer never re-submits the cart
    (which would reserve stock a second time).
    """
    order = session.query(Order).filter(Order.id == order_id).first()
    if not order or (buyer_id is not None and order.buyer_id != str(buyer_id)):
        raise NotFoundError('Pedido não encontrado')
    if order.status != OrderStatus.WAITING_PAYMENT.value or not order.holds_reservation:
        raise ValidationError('Este pedido não está aguardando pagamento')

    redirect_url = request_payment(session, order, gateway, payer)
    return CheckoutResult(order_id=order.id, payment_redirect_url=redirect_url)
