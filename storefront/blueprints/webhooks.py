"""
Webhooks Blueprint for Mercado Pago and Melhor Envio notifications.
Handles payment notifications and shipment label events for store orders.
"""

import base64
import logging
import hmac
import hashlib
from typing import Dict, Optional

from flask import Blueprint, request, jsonify, current_app
from storefront.database import get_session
from storefront.exceptions import PersistenceFailure, StoreError
from storefront.services.order_service import apply_shipping_event
from storefront.services.payment_service import handle_payment_notification

logger = logging.getLogger(__name__)

webhooks_bp = Blueprint('webhooks', __name__, url_prefix='/webhooks')


def parse_signature_header(header: str) -> Dict[str, str]:
    """Split 'ts=1704908010,v1=618c85...' into {'ts': ..., 'v1': ...}."""
    parts = {}
    for chunk in (header or '').split(','):
        key, sep, value = chunk.partition('=')
        if sep:
            parts[key.strip()] = value.strip()
    return parts


def build_signature_manifest(data_id: str, request_id: str, ts: str) -> str:
    return f"id:{data_id};request-id:{request_id};ts:{ts};"


def verify_mp_signature(data_id: Optional[str], signature: str, request_id: str) -> bool:
    """
    Verify Mercado Pago webhook signature.

    The v1 value is an HMAC-SHA256 (hex) of the manifest
    'id:<data.id>;request-id:<x-request-id>;ts:<ts>;' keyed by the webhook secret.
    Verification only runs when a secret is configured and the headers are present.
    """
    secret = current_app.config.get('MP_WEBHOOK_SECRET')

    if not secret:
        logger.info("Skipping MP webhook signature verification (no secret configured)")
        return True

    if not signature or not request_id:
        logger.info("MP webhook without x-signature/x-request-id headers, skipping verification")
        return True

    parts = parse_signature_header(signature)
    ts, received = parts.get('ts'), parts.get('v1')
    if not ts or not received:
        logger.warning("Malformed X-Signature header in MP webhook")
        return False

    # MP signs alphanumeric ids in lowercase
    manifest = build_signature_manifest(str(data_id or '').lower(), request_id, ts)
    expected_signature = hmac.new(
        secret.encode('utf-8'),
        manifest.encode('utf-8'),
        hashlib.sha256
    ).hexdigest()

    is_valid = hmac.compare_digest(received, expected_signature)
    if not is_valid:
        logger.warning(f"Invalid MP webhook signature for data.id={data_id}")
    return is_valid


def _notification_data_id(data: dict) -> Optional[str]:
    # Query string carries data.id too (?data.id=123&type=payment)
    payload = data.get('data')
    data_id = (payload.get('id') if isinstance(payload, dict) else None) or request.args.get('data.id')
    return str(data_id) if data_id else None


@webhooks_bp.route('/mercadopago', methods=['POST'])
def mercadopago_webhook():
    """
    Handle Mercado Pago webhook notifications.

    Only 'payment' notifications are processed; anything else is acknowledged
    with 200 so MP stops retrying.
    """
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        data = {}
    event_type = data.get('type') or request.args.get('type') or data.get('topic')
    data_id = _notification_data_id(data)

    signature = request.headers.get('X-Signature', '')
    request_id = request.headers.get('X-Request-Id', '')
    if not verify_mp_signature(data_id, signature, request_id):
        return jsonify({'error': 'Invalid signature'}), 401

    logger.info(f"Received MP webhook: type={event_type}, action={data.get('action')}, id={data_id}")

    if event_type != 'payment':
        return jsonify({'status': 'ignored', 'type': event_type}), 200

    if not data_id:
        logger.warning("Payment webhook without data.id")
        return jsonify({'status': 'ignored', 'message': 'Missing payment id'}), 200

    return handle_payment_event(data_id, data)


def handle_payment_event(payment_id: str, data: dict) -> tuple:
    """
    Fetch the payment from MP (never trust the notification body) and apply it.

    Returns:
        tuple: (response, status_code)
    """
    gateway = current_app.extensions['payment_gateway']
    try:
        payment = gateway.get_payment(payment_id)
    except Exception as e:
        # 500 makes MP retry the notification later
        logger.exception(f"Error fetching MP payment {payment_id}: {e}")
        return jsonify({'error': 'Could not fetch payment'}), 500

    order = handle_payment_notification(get_session(), payment, raw_webhook=data)
    if order is None:
        return jsonify({'status': 'ignored', 'payment_id': payment_id}), 200

    return jsonify({'status': 'processed', 'order_id': order.id, 'order_status': order.status}), 200


def verify_me_signature(raw_body: bytes, signature: str) -> bool:
    """
    Verify a Melhor Envio webhook.

    X-ME-Signature is base64(HMAC-SHA256(raw body)) keyed by the app secret.
    Without a configured secret every request is accepted.
    """
    secret = current_app.config.get('MELHOR_ENVIO_WEBHOOK_SECRET')
    if not secret:
        return True
    if not signature:
        logger.warning("Melhor Envio webhook without X-ME-Signature header")
        return False

    expected_signature = base64.b64encode(
        hmac.new(secret.encode('utf-8'), raw_body, hashlib.sha256).digest()
    ).decode('ascii')
    return hmac.compare_digest(signature.strip(), expected_signature)


@webhooks_bp.route('/melhorenvio', methods=['POST'])
def melhorenvio_webhook():
    """
    Handle Melhor Envio label events (order.posted, order.delivered, ...).

    Body: {"event": "order.posted", "data": {"id": ..., "tracking": ..., "tracking_url": ...}}.
    Anything that parses is acknowledged with 200 so Melhor Envio stops retrying.
    """
    raw_body = request.get_data()
    if not verify_me_signature(raw_body, request.headers.get('X-ME-Signature', '')):
        return jsonify({'error': 'Invalid signature'}), 401

    payload = request.get_json(force=True, silent=True)
    if payload is None:
        return jsonify({'error': 'Invalid JSON'}), 400
    if not isinstance(payload, dict) or not payload.get('event') or not isinstance(payload.get('data'), dict):
        return jsonify({'error': 'Missing event or data'}), 400

    event = payload['event']
    data = payload['data']
    me_order_id = data.get('id')
    logger.info(f"Received Melhor Envio webhook: event={event}, id={me_order_id}")
    if not me_order_id:
        return jsonify({'ok': True}), 200

    tracking = data.get('tracking') or data.get('self_tracking')
    tracking_url = data.get('tracking_url')
    try:
        order = apply_shipping_event(
            get_session(), str(me_order_id), str(event),
            tracking_code=str(tracking) if tracking else None,
            tracking_url=str(tracking_url) if tracking_url else None,
        )
    except PersistenceFailure:
        # 500 makes Melhor Envio redeliver
        return jsonify({'error': 'Could not record shipment event'}), 500
    except StoreError as e:
        logger.error(f"Could not apply Melhor Envio event {event} for {me_order_id}: {e}")
        return jsonify({'ok': True}), 200

    if order is None:
        return jsonify({'ok': True}), 200
    return jsonify({'ok': True, 'order_id': order.id, 'shipping_status': order.shipping_status}), 200
