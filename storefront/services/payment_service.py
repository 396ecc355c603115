"""Payment notification handling - records Mercado Pago payments and drives the order lifecycle."""
import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional

from storefront.models import Order, Payment
from storefront.services.mercadopago_service import map_payment_status
from storefront.services.order_service import apply_payment_event

logger = logging.getLogger(__name__)


def _parse_mp_datetime(value) -> Optional[datetime]:
    """MP sends ISO 8601 with offset, e.g. 2026-01-12T18:30:00.000-04:00."""
    if not value:
        return None
    try:
        return datetime.fromisoformat(str(value).replace('Z', '+00:00'))
    except ValueError:
        logger.warning(f"[PAYMENT] Unparseable date from MP: {value}")
        return None


def _upsert_payment(session, order_id: str, payment: Dict[str, Any], raw_webhook: Optional[Dict[str, Any]]) -> Payment:
    """One row per MP payment id; the first notification fills the row created at checkout."""
    external_id = str(payment.get('id'))

    record = session.query(Payment).filter(Payment.external_id == external_id).first()
    if record is None:
        record = session.query(Payment).filter(
            Payment.order_id == order_id,
            Payment.external_id.is_(None),
        ).order_by(Payment.id.desc()).first()
    if record is None:
        record = Payment(order_id=order_id)
        session.add(record)

    payer = payment.get('payer') or {}
    record.external_id = external_id
    record.status = map_payment_status(payment.get('status')).value
    record.status_detail = payment.get('status_detail')
    record.payment_type = payment.get('payment_type_id')
    amount = payment.get('transaction_amount')
    record.amount = Decimal(str(amount)) if amount is not None else None
    record.payer_email = payer.get('email')
    record.installments = payment.get('installments')
    record.paid_at = _parse_mp_datetime(payment.get('date_approved'))
    record.raw_webhook = raw_webhook
    return record


def handle_payment_notification(session, payment: Dict[str, Any],
                                raw_webhook: Optional[Dict[str, Any]] = None) -> Optional[Order]:
    """
    Record a payment fetched from Mercado Pago and apply it to its order.

    Args:
        payment: payment resource as returned by GET /v1/payments/{id}
        raw_webhook: notification body, stored for auditing

    Returns:
        The order, or None when the payment carries no usable reference.
    """
    order_id = payment.get('external_reference')
    if not payment.get('id') or not order_id:
        logger.info("[PAYMENT] Missing payment id or external_reference, skipping")
        return None

    if session.query(Order.id).filter(Order.id == order_id).first() is None:
        logger.warning(f"[PAYMENT] Payment {payment.get('id')} references unknown order {order_id}")
        return None

    try:
        _upsert_payment(session, order_id, payment, raw_webhook)
        session.commit()
    except Exception:
        session.rollback()
        raise

    status = map_payment_status(payment.get('status'))
    logger.info(f"[PAYMENT] Payment {payment.get('id')} for order {order_id}: {status.value}")
    return apply_payment_event(session, order_id, status.value)
