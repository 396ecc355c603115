"""Checkout blueprint - cart to order to payment handoff."""
from flask import Blueprint, request, jsonify, session, g, current_app

from storefront.database import get_session
from storefront.models import Buyer
from storefront.exceptions import ValidationError
from storefront.middleware import require_login
from storefront.services.cart_service import Cart
from storefront.services.checkout_service import checkout, retry_payment_request
from storefront.services.shipping_service import PICKUP_OPTION
from storefront.blueprints.shipping import quote_for

checkout_bp = Blueprint('checkout', __name__, url_prefix='/checkout')


def _payer_for(db_session, buyer_id):
    buyer = db_session.query(Buyer).filter(Buyer.id == str(buyer_id)).first()
    if not buyer or not buyer.email:
        return None
    payer = {'email': buyer.email}
    if buyer.name:
        payer['name'] = buyer.name
    return payer


def _resolve_shipping(option_id, address, lines):
    """
    Look the selected option up in a fresh (or cached) quote.

    The price always comes from the quote, never from the request body.
    """
    if not option_id:
        raise ValidationError('Selecione uma opção de frete')
    if option_id == PICKUP_OPTION.id:
        return PICKUP_OPTION

    cep = (address or {}).get('zip_code')
    if not cep:
        raise ValidationError('Informe o CEP do endereço de entrega')
    option = quote_for(str(cep), lines).find(option_id)
    if option is None:
        raise ValidationError('Opção de frete indisponível, calcule o frete novamente')
    return option


@checkout_bp.route('', methods=['POST'])
@require_login
def create_order():
    """
    Body: {"shipping_option": "me_1", "address": {"street", "number", "zip_code", ...}}

    201 {order_id, checkout_url}; the cart is emptied only when the payment
    link was obtained. 502 {order_id, partial: true} means the order exists
    and holds its stock: retry with POST /checkout/<order_id>/payment.
    """
    data = request.get_json(silent=True) or {}
    db_session = get_session()
    cart = Cart(session)
    lines = cart.lines()
    if not lines:
        raise ValidationError('O carrinho está vazio')

    address = data.get('address') or {}
    shipping = _resolve_shipping(data.get('shipping_option'), address, lines)

    result = checkout(
        db_session,
        buyer_id=g.user_id,
        lines=lines,
        selected_shipping=shipping,
        address=address,
        gateway=current_app.extensions['payment_gateway'],
        payer=_payer_for(db_session, g.user_id),
    )

    cart.clear()
    current_app.logger.info(f"[CHECKOUT] Buyer {g.user_id} redirected to payment for order {result.order_id}")
    return jsonify(result.to_dict()), 201


@checkout_bp.route('/<order_id>/payment', methods=['POST'])
@require_login
def retry_payment(order_id):
    db_session = get_session()
    result = retry_payment_request(
        db_session,
        order_id,
        g.user_id,
        gateway=current_app.extensions['payment_gateway'],
        payer=_payer_for(db_session, g.user_id),
    )
    return jsonify(result.to_dict())
