"""Cart blueprint - buyer cart kept in the Flask session."""
from flask import Blueprint, request, jsonify, session

from storefront.database import get_session
from storefront.models import Product
from storefront.exceptions import NotFoundError, ValidationError
from storefront.services.cart_service import Cart

cart_bp = Blueprint('cart', __name__, url_prefix='/cart')


def _parse_quantity(value, default=None) -> int:
    if value is None:
        if default is None:
            raise ValidationError('Informe a quantidade')
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError('Quantidade inválida')


def _get_product(db_session, product_id) -> Product:
    try:
        product_id = int(product_id)
    except (TypeError, ValueError):
        raise ValidationError('Produto inválido')
    product = db_session.query(Product).filter(Product.id == product_id).first()
    if not product:
        raise NotFoundError('Produto não encontrado')
    return product


@cart_bp.route('', methods=['GET'])
def view_cart():
    return jsonify(Cart(session).summary())


@cart_bp.route('/items', methods=['POST'])
def add_item():
    """Add a product to the cart (quantity defaults to 1)."""
    data = request.get_json(silent=True) or {}
    product = _get_product(get_session(), data.get('product_id'))
    quantity = _parse_quantity(data.get('quantity'), default=1)

    cart = Cart(session)
    cart.add(product, quantity)
    return jsonify(cart.summary()), 201


@cart_bp.route('/items/<int:product_id>', methods=['PATCH'])
def update_item(product_id):
    data = request.get_json(silent=True) or {}
    quantity = _parse_quantity(data.get('quantity'))

    cart = Cart(session)
    product = get_session().query(Product).filter(Product.id == product_id).first()
    cart.update(product_id, quantity, product)
    return jsonify(cart.summary())


@cart_bp.route('/items/<int:product_id>', methods=['DELETE'])
def remove_item(product_id):
    cart = Cart(session)
    cart.remove(product_id)
    return jsonify(cart.summary())


@cart_bp.route('', methods=['DELETE'])
def clear_cart():
    cart = Cart(session)
    cart.clear()
    return jsonify(cart.summary())
