"""Orders blueprint - checkout, order history and admin lifecycle endpoints."""
from flask import Blueprint, jsonify, request, g
from storefront.database import get_session
from storefront.middleware import require_login, require_role
from storefront.services import order_service
from storefront.utils.pagination import get_page_args
from storefront.utils.request_body import get_json_body
from storefront.utils.serializers import order_to_dict, page_to_dict, money

orders_bp = Blueprint('orders', __name__, url_prefix='/api/orders')


@orders_bp.route('', methods=['POST'])
@require_login
def create_order():
    """
    Place an order from the current cart.
    
    Body: {"shipping_address": {...}, "payment_method": "...",
           "payment_transaction_id": "...", "order_notes": "..."}
    """
    data = get_json_body()
    order = order_service.create_order(
        get_session(),
        g.user.id,
        data.get('shipping_address'),
        payment_method=data.get('payment_method'),
        payment_transaction_id=data.get('payment_transaction_id'),
        order_notes=data.get('order_notes'),
    )
    return jsonify(order_to_dict(order)), 201


@orders_bp.route('', methods=['GET'])
@require_login
def order_history():
    page, size = get_page_args()
    orders, total = order_service.get_order_history(get_session(), g.user.id, page, size)
    return jsonify(page_to_dict([order_to_dict(o) for o in orders], page, size, total)), 200


@orders_bp.route('/recent', methods=['GET'])
@require_login
def recent_orders():
    orders = order_service.get_recent_orders(get_session(), g.user.id)
    return jsonify([order_to_dict(o) for o in orders]), 200


@orders_bp.route('/statistics', methods=['GET'])
@require_login
def order_statistics():
    stats = order_service.get_user_order_statistics(get_session(), g.user.id)
    return jsonify({
        'total_orders': stats['total_orders'],
        'total_spent': money(stats['total_spent']),
        'average_order_value': money(stats['average_order_value']),
    }), 200


@orders_bp.route('/<int:order_id>', methods=['GET'])
@require_login
def order_detail(order_id):
    order = order_service.get_order(get_session(), g.user.id, order_id, is_admin=g.user.is_admin)
    return jsonify(order_to_dict(order)), 200


@orders_bp.route('/number/<order_number>', methods=['GET'])
@require_login
def order_by_number(order_number):
    order = order_service.get_order_by_number(
        get_session(), g.user.id, order_number, is_admin=g.user.is_admin
    )
    return jsonify(order_to_dict(order)), 200


@orders_bp.route('/<int:order_id>/cancel', methods=['POST'])
@require_login
def cancel_order(order_id):
    order = order_service.cancel_order(
        get_session(), g.user.id, order_id,
        reason=get_json_body().get('reason'),
        is_admin=g.user.is_admin
    )
    return jsonify(order_to_dict(order)), 200


# =====================================================
# ADMIN
# =====================================================

@orders_bp.route('/admin', methods=['GET'])
@require_login
@require_role('ADMIN')
def admin_list_orders():
    page, size = get_page_args()
    orders, total = order_service.list_orders(
        get_session(),
        status=request.args.get('status'),
        payment_status=request.args.get('payment_status'),
        page=page,
        size=size,
    )
    return jsonify(page_to_dict([order_to_dict(o) for o in orders], page, size, total)), 200


@orders_bp.route('/<int:order_id>/status', methods=['PUT'])
@require_login
@require_role('ADMIN')
def update_status(order_id):
    order = order_service.update_order_status(get_session(), order_id, get_json_body().get('status'))
    return jsonify(order_to_dict(order)), 200


@orders_bp.route('/<int:order_id>/payment-status', methods=['PUT'])
@require_login
@require_role('ADMIN')
def update_payment_status(order_id):
    order = order_service.update_payment_status(
        get_session(), order_id, get_json_body().get('payment_status')
    )
    return jsonify(order_to_dict(order)), 200


@orders_bp.route('/<int:order_id>/tracking', methods=['PUT'])
@require_login
@require_role('ADMIN')
def add_tracking(order_id):
    order = order_service.add_tracking_number(
        get_session(), order_id, get_json_body().get('tracking_number')
    )
    return jsonify(order_to_dict(order)), 200
