"""
Order service - status lifecycle, tracking codes and operator listings.

Two independent actors write order status: the payment webhook and the store
operator. Every write is a conditional UPDATE keyed on the status the caller
validated against, so a concurrent change makes the write miss instead of
silently overwriting it. Transitions only move forward (see
ALLOWED_TRANSITIONS); terminal orders are never resurrected.
"""
import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, List, Optional

from sqlalchemy import update, func, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import joinedload

from storefront.models import Order, OrderItem, OrderStatus, PaymentStatus, Buyer
from storefront.exceptions import (
    NotFoundError, ValidationError, InvalidTransitionError, PersistenceFailure,
)
from storefront.services.stock_service import release_stock
from storefront.services.pricing_service import to_money
from storefront.services import event_channel

logger = logging.getLogger(__name__)

PENDING_STATUSES = (
    OrderStatus.WAITING_PAYMENT.value,
    OrderStatus.PAID.value,
    OrderStatus.PICKING.value,
)


def _utcnow():
    return datetime.now(timezone.utc)


def get_order(session, order_id: str, buyer_id: Optional[str] = None) -> Order:
    """Load an order (optionally restricted to its buyer)."""
    query = session.query(Order).options(joinedload(Order.items)).filter(Order.id == order_id)
    if buyer_id is not None:
        query = query.filter(Order.buyer_id == str(buyer_id))
    order = query.first()
    if not order:
        raise NotFoundError(f'Pedido {order_id} não encontrado')
    return order


def list_buyer_orders(session, buyer_id: str) -> List[Order]:
    """Buyer's own orders, newest first."""
    return session.query(Order).options(joinedload(Order.items)).filter(
        Order.buyer_id == str(buyer_id)
    ).order_by(Order.created_at.desc()).all()


def list_orders(session, status: Optional[str] = None, search: Optional[str] = None,
                buyer_id: Optional[str] = None) -> List[Order]:
    """
    Operator listing with optional filters.

    Args:
        status: exact status string ('all' or None for every status).
        search: matches order id prefix, buyer name, email or phone.
        buyer_id: restrict to one buyer.
    """
    query = session.query(Order).options(joinedload(Order.items), joinedload(Order.buyer))

    if status and status != 'all':
        parsed = OrderStatus.parse(status)
        if parsed is None:
            raise ValidationError(f'Status desconhecido: {status}')
        query = query.filter(Order.status == parsed.value)

    if buyer_id:
        query = query.filter(Order.buyer_id == str(buyer_id))

    if search:
        term = f"%{search.strip()[:100].lower()}%"
        query = query.outerjoin(Buyer, Buyer.id == Order.buyer_id).filter(or_(
            func.lower(Order.id).like(term),
            func.lower(Buyer.name).like(term),
            func.lower(Buyer.email).like(term),
            Buyer.phone.like(term),
        ))

    return query.order_by(Order.created_at.desc()).all()


def order_stats(session, now: Optional[datetime] = None) -> Dict[str, object]:
    """Dashboard counters: total orders, orders in progress, revenue this month (cancelled excluded)."""
    now = now or _utcnow()
    start_of_month = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)

    total_orders = session.query(func.count(Order.id)).scalar() or 0
    pending_orders = session.query(func.count(Order.id)).filter(
        Order.status.in_(PENDING_STATUSES)
    ).scalar() or 0
    revenue = session.query(func.coalesce(func.sum(Order.total), 0)).filter(
        Order.created_at >= start_of_month,
        Order.status != OrderStatus.CANCELLED.value,
    ).scalar()

    return {
        'total_orders': int(total_orders),
        'pending_orders': int(pending_orders),
        'month_revenue': to_money(Decimal(str(revenue or 0))),
    }


def _conditional_status_write(session, order: Order, current: OrderStatus, target: OrderStatus,
                              release_reservation: bool = False) -> bool:
    """UPDATE ... WHERE status = current. Returns False when another writer got there first."""
    now = _utcnow()
    values = {'status': target.value, 'updated_at': now}
    criteria = [Order.id == order.id, Order.status == current.value]
    if release_reservation:
        values['stock_released_at'] = now
        criteria.append(Order.stock_released_at.is_(None))

    result = session.execute(
        update(Order).where(*criteria).values(**values).execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def _release_items(session, order: Order) -> None:
    for item in session.query(OrderItem).filter(OrderItem.order_id == order.id).all():
        if item.product_id is not None:
            release_stock(session, item.product_id, item.quantity)


def update_order_status(session, order_id: str, status: str, source: str = 'operator') -> Order:
    """
    Operator status change, validated against the transition table.

    Cancelling an order that still holds its reservation gives the stock back
    in the same transaction.

    Raises:
        ValidationError: unrecognized status string.
        NotFoundError: order does not exist.
        InvalidTransitionError: not allowed from the current status, or the
            order changed concurrently.
    """
    target = OrderStatus.parse(status)
    if target is None:
        raise ValidationError(f'Status desconhecido: {status}')

    order = session.query(Order).filter(Order.id == order_id).first()
    if not order:
        raise NotFoundError(f'Pedido {order_id} não encontrado')

    current = OrderStatus.parse(order.status)
    if current == target:
        return order
    if current is None or not current.can_transition_to(target):
        raise InvalidTransitionError(order.status, target.value)

    releases = (
        target == OrderStatus.CANCELLED
        and current == OrderStatus.WAITING_PAYMENT
        and order.holds_reservation
    )

    try:
        claimed = _conditional_status_write(session, order, current, target, release_reservation=releases)
        if claimed:
            if releases:
                _release_items(session, order)
            session.commit()
    except SQLAlchemyError as e:
        session.rollback()
        logger.exception(f"[ORDER] Database error updating order {order_id}")
        raise PersistenceFailure('Não foi possível atualizar o pedido') from e

    if not claimed:
        session.rollback()
        session.refresh(order)
        raise InvalidTransitionError(order.status, target.value)

    session.refresh(order)
    logger.info(f"[ORDER] {order_id}: {current.value} -> {target.value} ({source})")
    event_channel.publish(
        event_channel.ORDER_STATUS_CHANGED, order.id,
        status=target.value, previous_status=current.value, source=source,
    )
    return order


def apply_payment_event(session, order_id: str, payment_status: str) -> Optional[Order]:
    """
    Apply a payment notification to the order.

    Only 'approved' moves the order, and only from aguardando_pagamento to pago.
    Orders already past payment are never downgraded; rejected or pending
    payments leave the order as is (stock goes back only via reconciliation).

    Returns the order, or None when it does not exist.
    """
    order = session.query(Order).filter(Order.id == order_id).first()
    if not order:
        logger.warning(f"[PAYMENT] Notification for unknown order {order_id}")
        return None

    try:
        mapped = PaymentStatus(payment_status)
    except ValueError:
        mapped = PaymentStatus.PENDING

    if mapped != PaymentStatus.APPROVED:
        logger.info(f"[PAYMENT] Order {order_id}: payment {mapped.value}, status unchanged ({order.status})")
        return order

    if order.status != OrderStatus.WAITING_PAYMENT.value:
        if order.status == OrderStatus.CANCELLED.value:
            logger.warning(
                f"[PAYMENT] Approved payment for cancelled order {order_id} "
                f"(reservation released at {order.stock_released_at}); manual refund required"
            )
        else:
            logger.info(f"[PAYMENT] Order {order_id} already {order.status}; approval ignored")
        return order

    try:
        claimed = _conditional_status_write(session, order, OrderStatus.WAITING_PAYMENT, OrderStatus.PAID)
        if claimed:
            session.commit()
    except SQLAlchemyError as e:
        session.rollback()
        logger.exception(f"[PAYMENT] Database error marking order {order_id} paid")
        raise PersistenceFailure('Não foi possível registrar o pagamento do pedido') from e

    if not claimed:
        session.rollback()
        session.refresh(order)
        logger.warning(f"[PAYMENT] Order {order_id} changed concurrently to {order.status}; approval ignored")
        return order

    session.refresh(order)
    logger.info(f"[PAYMENT] Order {order_id} paid")
    event_channel.publish(
        event_channel.ORDER_STATUS_CHANGED, order.id,
        status=OrderStatus.PAID.value, previous_status=OrderStatus.WAITING_PAYMENT.value, source='payment',
    )
    return order


def update_tracking_code(session, order_id: str, tracking_code: Optional[str],
                         tracking_url: Optional[str] = None, source: str = 'operator') -> Order:
    """Attach (or clear, with a blank code) the carrier tracking code. Does not touch status."""
    order = session.query(Order).filter(Order.id == order_id).first()
    if not order:
        raise NotFoundError(f'Pedido {order_id} não encontrado')

    code = (tracking_code or '').strip() or None
    if code and len(code) > 64:
        raise ValidationError('Código de rastreio muito longo')

    order.tracking_code = code
    if tracking_url:
        order.tracking_url = tracking_url.strip()[:255]
    order.updated_at = _utcnow()
    try:
        session.commit()
    except SQLAlchemyError as e:
        session.rollback()
        logger.exception(f"[ORDER] Database error updating tracking code of order {order_id}")
        raise PersistenceFailure('Não foi possível atualizar o código de rastreio') from e

    logger.info(f"[ORDER] {order_id}: tracking code {'set' if code else 'cleared'}")
    event_channel.publish(event_channel.ORDER_TRACKING_UPDATED, order.id, tracking_code=code, source=source)
    return order


# Melhor Envio label events -> shipping_status stored on the order
SHIPMENT_EVENT_STATUSES = {
    'order.created': 'etiqueta_criada',
    'order.released': 'etiqueta_paga',
    'order.generated': 'etiqueta_gerada',
    'order.posted': 'postado',
    'order.delivered': 'entregue',
    'order.cancelled': 'cancelado',
    'order.undelivered': 'nao_entregue',
    'order.pending': 'aguardando_pagamento',
}


def link_shipment(session, order_id: str, me_order_id: Optional[str]) -> Order:
    """Associate the order with its Melhor Envio label so carrier events can find it."""
    order = session.query(Order).filter(Order.id == order_id).first()
    if not order:
        raise NotFoundError(f'Pedido {order_id} não encontrado')

    shipment = str(me_order_id).strip() if me_order_id is not None else None
    shipment = shipment or None
    if shipment and len(shipment) > 64:
        raise ValidationError('Identificador de envio muito longo')
    if shipment and session.query(Order.id).filter(Order.me_order_id == shipment, Order.id != order.id).first():
        raise ValidationError('Envio já vinculado a outro pedido')

    order.me_order_id = shipment
    order.updated_at = _utcnow()
    try:
        session.commit()
    except SQLAlchemyError as e:
        session.rollback()
        logger.exception(f"[ORDER] Database error linking shipment of order {order_id}")
        raise PersistenceFailure('Não foi possível vincular o envio ao pedido') from e

    logger.info(f"[ORDER] {order_id}: shipment {shipment or 'unlinked'}")
    return order


def apply_shipping_event(session, me_order_id: str, event: str, tracking_code: Optional[str] = None,
                         tracking_url: Optional[str] = None) -> Optional[Order]:
    """
    Record a carrier label event on the order it belongs to.

    Only shipping_status and the tracking fields change; the order status stays
    with the operator. Unknown events keep the current shipping_status.

    Returns the order, or None when no order carries this shipment.
    """
    order = session.query(Order).filter(Order.me_order_id == str(me_order_id)).first()
    if not order:
        logger.warning(f"[SHIPPING] Event {event} for unknown shipment {me_order_id}")
        return None

    shipping_status = SHIPMENT_EVENT_STATUSES.get(event)
    if shipping_status is None:
        logger.info(f"[SHIPPING] Order {order.id}: unmapped event {event} ignored")
    elif shipping_status != order.shipping_status:
        previous = order.shipping_status
        order.shipping_status = shipping_status
        order.updated_at = _utcnow()
        try:
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            logger.exception(f"[SHIPPING] Database error recording {event} on order {order.id}")
            raise PersistenceFailure('Não foi possível registrar o evento de envio') from e
        logger.info(f"[SHIPPING] Order {order.id}: shipment {shipping_status}")
        event_channel.publish(
            event_channel.ORDER_SHIPMENT_UPDATED, order.id,
            status=shipping_status, previous_status=previous, source='melhor_envio',
        )

    code = (tracking_code or '').strip()
    if code and (code != order.tracking_code or (tracking_url and tracking_url != order.tracking_url)):
        order = update_tracking_code(session, order.id, code, tracking_url=tracking_url, source='melhor_envio')
    return order
