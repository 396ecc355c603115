"""Buyer orders blueprint - a buyer's own order history."""
from flask import Blueprint, jsonify, g

from storefront.database import get_session
from storefront.middleware import require_login
from storefront.services.order_service import get_order, list_buyer_orders

orders_bp = Blueprint('orders', __name__, url_prefix='/orders')


@orders_bp.route('', methods=['GET'])
@require_login
def list_orders():
    orders = list_buyer_orders(get_session(), g.user_id)
    return jsonify({'orders': [o.to_dict() for o in orders]})


@orders_bp.route('/<order_id>', methods=['GET'])
@require_login
def order_detail(order_id):
    # Someone else's order answers 404, same as a missing one
    order = get_order(get_session(), order_id, buyer_id=g.user_id)
    return jsonify(order.to_dict())
