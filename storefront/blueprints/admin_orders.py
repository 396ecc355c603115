"""Operator order management blueprint - listing, status workflow, tracking, export."""
import json
from datetime import datetime, timedelta, timezone

from flask import Blueprint, request, jsonify, Response, stream_with_context, current_app, g

from storefront.database import get_session
from storefront.exceptions import ValidationError
from storefront.middleware import require_login, require_operator
from storefront.services import order_service
from storefront.services.event_channel import order_events
from storefront.services.export_service import export_orders_csv
from storefront.services.reconciliation_service import restore_abandoned_stock

admin_orders_bp = Blueprint('admin_orders', __name__, url_prefix='/admin/orders')


def _order_summary(order):
    data = order.to_dict()
    buyer = order.buyer
    data['buyer_name'] = buyer.display_name if buyer else None
    data['buyer_phone'] = buyer.phone if buyer else None
    return data


@admin_orders_bp.route('', methods=['GET'])
@require_login
@require_operator
def list_orders():
    """List orders. Query: status (exact value or 'all'), q (id / buyer name, email, phone)."""
    orders = order_service.list_orders(
        get_session(),
        status=request.args.get('status') or None,
        search=request.args.get('q') or None,
    )
    return jsonify({'orders': [_order_summary(o) for o in orders]})


@admin_orders_bp.route('/stats', methods=['GET'])
@require_login
@require_operator
def stats():
    data = order_service.order_stats(get_session())
    data['month_revenue'] = str(data['month_revenue'])
    return jsonify(data)


@admin_orders_bp.route('/<order_id>', methods=['GET'])
@require_login
@require_operator
def order_detail(order_id):
    order = order_service.get_order(get_session(), order_id)
    data = _order_summary(order)
    data['payments'] = [
        {'status': p.status, 'external_id': p.external_id, 'amount': str(p.amount) if p.amount is not None else None}
        for p in order.payments
    ]
    return jsonify(data)


@admin_orders_bp.route('/<order_id>/status', methods=['PATCH'])
@require_login
@require_operator
def update_status(order_id):
    data = request.get_json(silent=True) or {}
    status = data.get('status')
    if not status:
        raise ValidationError('Informe o novo status')

    order = order_service.update_order_status(get_session(), order_id, status, source=f"operator:{g.user_id}")
    return jsonify(_order_summary(order))


@admin_orders_bp.route('/<order_id>/tracking', methods=['PATCH'])
@require_login
@require_operator
def update_tracking(order_id):
    data = request.get_json(silent=True) or {}
    order = order_service.update_tracking_code(get_session(), order_id, data.get('tracking_code'))
    return jsonify(_order_summary(order))


@admin_orders_bp.route('/<order_id>/shipment', methods=['PATCH'])
@require_login
@require_operator
def link_shipment(order_id):
    """Body: {"me_order_id": "..."} (blank unlinks). Carrier events then update the order."""
    data = request.get_json(silent=True) or {}
    order = order_service.link_shipment(get_session(), order_id, data.get('me_order_id'))
    return jsonify(_order_summary(order))


@admin_orders_bp.route('/restore-stock', methods=['POST'])
@require_login
@require_operator
def restore_stock():
    """Run the reconciler now. Body: {"stale_hours": 48} (defaults to ORDER_STALE_HOURS)."""
    data = request.get_json(silent=True) or {}
    stale_hours = data.get('stale_hours', current_app.config.get('ORDER_STALE_HOURS', 48))
    try:
        stale_hours = float(stale_hours)
    except (TypeError, ValueError):
        raise ValidationError('stale_hours deve ser um número')
    if stale_hours < 0:
        raise ValidationError('stale_hours não pode ser negativo')

    restored = restore_abandoned_stock(get_session(), stale_after=timedelta(hours=stale_hours))
    current_app.logger.info(f"[RECONCILE] Manual run by {g.user_id}: {restored} order(s) restored")
    return jsonify({'restored': restored})


@admin_orders_bp.route('/export.csv', methods=['GET'])
@require_login
@require_operator
def export_csv():
    orders = order_service.list_orders(
        get_session(),
        status=request.args.get('status') or None,
        search=request.args.get('q') or None,
    )
    filename = f"pedidos_{datetime.now(timezone.utc).strftime('%Y%m%d_%H%M')}.csv"
    return Response(
        export_orders_csv(orders),
        mimetype='text/csv; charset=utf-8',
        headers={'Content-Disposition': f'attachment; filename={filename}'},
    )


@admin_orders_bp.route('/events', methods=['GET'])
@require_login
@require_operator
def events():
    """Server-sent events: every order event published after the client connected."""
    subscription = order_events.subscribe()

    def stream():
        try:
            for event in subscription.listen(timeout=15.0):
                if event is None:
                    yield ': keep-alive\n\n'
                    continue
                yield f"event: {event.type}\ndata: {json.dumps(event.to_dict())}\n\n"
        finally:
            subscription.unsubscribe()

    return Response(
        stream_with_context(stream()),
        mimetype='text/event-stream',
        headers={'Cache-Control': 'no-cache', 'X-Accel-Buffering': 'no'},
    )
