"""
Stock reconciliation - give back stock reserved by orders that were never paid.

Each order is claimed with a conditional UPDATE (still aguardando_pagamento
and still holding its reservation) in the same transaction that credits its
items back. A payment approval racing with the claim either lands first (the
claim misses and the order is skipped) or lands after (the approval sees a
cancelled order and is ignored). Running the process twice never credits an
order twice.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError

from storefront.models import Order, OrderItem, OrderStatus
from storefront.exceptions import PersistenceFailure
from storefront.services.stock_service import release_stock
from storefront.services import event_channel
from storefront.blueprints.metrics import stock_reconciled_orders_total

logger = logging.getLogger(__name__)


def find_abandoned_orders(session, stale_after: Optional[timedelta] = None,
                          now: Optional[datetime] = None) -> List[str]:
    """Ids of unpaid orders still holding stock (older than stale_after, when given)."""
    query = session.query(Order.id).filter(
        Order.status == OrderStatus.WAITING_PAYMENT.value,
        Order.stock_released_at.is_(None),
    )
    if stale_after is not None:
        now = now or datetime.now(timezone.utc)
        query = query.filter(Order.created_at <= now - stale_after)
    return [row[0] for row in query.order_by(Order.created_at).all()]


def _claim(session, order_id: str, now: datetime) -> bool:
    result = session.execute(
        update(Order)
        .where(
            Order.id == order_id,
            Order.status == OrderStatus.WAITING_PAYMENT.value,
            Order.stock_released_at.is_(None),
        )
        .values(status=OrderStatus.CANCELLED.value, stock_released_at=now, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def restore_abandoned_stock(session, stale_after: Optional[timedelta] = None,
                            now: Optional[datetime] = None) -> int:
    """
    Restore stock for abandoned orders and cancel them.

    Args:
        session: SQLAlchemy session
        stale_after: only orders created at least this long ago; None = every unpaid order
        now: reference time (defaults to current UTC time)

    Returns:
        Number of orders whose stock was restored.
    """
    now = now or datetime.now(timezone.utc)
    candidates = find_abandoned_orders(session, stale_after, now)
    restored = []

    for order_id in candidates:
        try:
            if not _claim(session, order_id, now):
                # Paid or reconciled by someone else in the meantime
                session.rollback()
                continue

            items = session.query(OrderItem).filter(OrderItem.order_id == order_id).all()
            for item in items:
                if item.product_id is not None:
                    release_stock(session, item.product_id, item.quantity)

            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            logger.exception(f"[RECONCILE] Failed to restore stock for order {order_id}")
            raise PersistenceFailure('Falha ao restaurar estoque de pedidos não pagos') from e

        restored.append(order_id)
        logger.info(f"[RECONCILE] Order {order_id}: {len(items)} item(s) returned to stock, order cancelled")
        stock_reconciled_orders_total.inc()
        event_channel.publish(
            event_channel.STOCK_RESTORED, order_id,
            status=OrderStatus.CANCELLED.value, previous_status=OrderStatus.WAITING_PAYMENT.value,
            source='reconciler',
        )

    logger.info(f"[RECONCILE] {len(restored)} of {len(candidates)} candidate order(s) reconciled")
    return len(restored)
