"""Cart blueprint - the authenticated user's persistent cart."""
from flask import Blueprint, jsonify, g
from storefront.database import get_session
from storefront.exceptions import ValidationError
from storefront.middleware import require_login
from storefront.services import cart_service
from storefront.utils.request_body import get_json_body
from storefront.utils.serializers import cart_item_to_dict

cart_bp = Blueprint('cart', __name__, url_prefix='/api/cart')


@cart_bp.route('', methods=['GET'])
@require_login
def view_cart():
    return jsonify(cart_service.get_cart(get_session(), g.user.id)), 200


@cart_bp.route('', methods=['POST'])
@require_login
def add_item():
    data = get_json_body()
    product_id = data.get('product_id')
    if product_id is None:
        raise ValidationError(['product_id: is required'])
    try:
        product_id = int(product_id)
    except (TypeError, ValueError):
        raise ValidationError(['product_id: must be an integer'])
    
    line = cart_service.add_to_cart(get_session(), g.user.id, product_id, data.get('quantity', 1))
    return jsonify(cart_item_to_dict(line)), 201


@cart_bp.route('/<int:product_id>', methods=['PUT'])
@require_login
def update_item(product_id):
    data = get_json_body()
    if 'quantity' not in data:
        raise ValidationError(['quantity: is required'])
    line = cart_service.update_cart_item(get_session(), g.user.id, product_id, data['quantity'])
    return jsonify(cart_item_to_dict(line)), 200


@cart_bp.route('/<int:product_id>', methods=['DELETE'])
@require_login
def remove_item(product_id):
    cart_service.remove_from_cart(get_session(), g.user.id, product_id)
    return '', 204


@cart_bp.route('', methods=['DELETE'])
@require_login
def clear():
    cart_service.clear_cart(get_session(), g.user.id)
    return '', 204


@cart_bp.route('/count', methods=['GET'])
@require_login
def count():
    return jsonify({'count': cart_service.count_cart_items(get_session(), g.user.id)}), 200


@cart_bp.route('/validate', methods=['GET'])
@require_login
def validate():
    return jsonify(cart_service.validate_cart(get_session(), g.user.id)), 200
