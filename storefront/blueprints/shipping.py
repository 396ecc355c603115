"""Shipping blueprint - carrier quotes for the current cart."""
from typing import List

from flask import Blueprint, request, jsonify, session, current_app

from storefront.services.cart_service import Cart
from storefront.services.cache_service import get_cache
from storefront.services.pricing_service import CartLine
from storefront.services.shipping_service import ShippingQuote, quote_shipping

shipping_bp = Blueprint('shipping', __name__, url_prefix='/shipping')


def quote_for(cep: str, lines: List[CartLine]) -> ShippingQuote:
    """Quote with the app's shipping client and cache."""
    return quote_shipping(
        cep,
        lines,
        client=current_app.extensions['shipping_client'],
        cache=get_cache(),
        cache_ttl=current_app.config.get('CACHE_SHIPPING_TTL', 600),
    )


@shipping_bp.route('/quote', methods=['POST'])
def quote():
    """
    Quote shipping for the cart in session.

    Body: {"cep": "01310-100"}
    Carrier failures degrade to store pickup with a warning; only a malformed
    CEP or an empty cart is an error.
    """
    data = request.get_json(silent=True) or {}
    result = quote_for(data.get('cep') or '', Cart(session).lines())
    return jsonify(result.to_dict())
