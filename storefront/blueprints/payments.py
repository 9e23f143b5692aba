"""Payments blueprint - payment attempts for the user's orders."""
from flask import Blueprint, jsonify, g
from storefront.database import get_session
from storefront.exceptions import ValidationError
from storefront.middleware import require_login, require_role
from storefront.models import PaymentStatus
from storefront.services import payment_service
from storefront.utils.pagination import get_page_args
from storefront.utils.request_body import get_json_body
from storefront.utils.serializers import payment_to_dict, page_to_dict

payments_bp = Blueprint('payments', __name__, url_prefix='/api/payments')


@payments_bp.route('', methods=['POST'])
@require_login
def create_payment():
    """
    Open a payment for one of the current user's orders.
    
    Body: {"order_id": 1, "payment_method": "CREDIT_CARD", "currency": "USD"}
    """
    data = get_json_body()
    order_id = data.get('order_id')
    if isinstance(order_id, bool) or not isinstance(order_id, int):
        raise ValidationError(['order_id: must be an integer'])
    
    payment = payment_service.create_payment(
        get_session(),
        g.user.id,
        order_id,
        payment_method=data.get('payment_method'),
        currency=data.get('currency'),
    )
    return jsonify(payment_to_dict(payment)), 201


@payments_bp.route('', methods=['GET'])
@require_login
def payment_history():
    page, size = get_page_args()
    payments, total = payment_service.get_payment_history(get_session(), g.user.id, page, size)
    return jsonify(page_to_dict([payment_to_dict(p) for p in payments], page, size, total)), 200


@payments_bp.route('/successful', methods=['GET'])
@require_login
def successful_payments():
    page, size = get_page_args()
    payments, total = payment_service.get_payment_history(
        get_session(), g.user.id, page, size, status=PaymentStatus.PAID
    )
    return jsonify(page_to_dict([payment_to_dict(p) for p in payments], page, size, total)), 200


@payments_bp.route('/<int:payment_id>', methods=['GET'])
@require_login
def payment_detail(payment_id):
    payment = payment_service.get_payment(get_session(), g.user.id, payment_id, is_admin=g.user.is_admin)
    return jsonify(payment_to_dict(payment)), 200


@payments_bp.route('/<int:payment_id>/confirm', methods=['POST'])
@require_login
def confirm_payment(payment_id):
    """Body: {"card_last4": "4242", "card_brand": "visa", "receipt_url": "..."}"""
    payment = payment_service.confirm_payment(
        get_session(), g.user.id, payment_id,
        details=get_json_body(),
        is_admin=g.user.is_admin
    )
    return jsonify(payment_to_dict(payment)), 200


@payments_bp.route('/<int:payment_id>/fail', methods=['POST'])
@require_login
def fail_payment(payment_id):
    payment = payment_service.fail_payment(
        get_session(), g.user.id, payment_id,
        failure_message=get_json_body().get('failure_message'),
        is_admin=g.user.is_admin
    )
    return jsonify(payment_to_dict(payment)), 200


@payments_bp.route('/<int:payment_id>/refund', methods=['POST'])
@require_login
@require_role('ADMIN')
def refund_payment(payment_id):
    payment = payment_service.refund_payment(get_session(), payment_id, get_json_body().get('amount'))
    return jsonify(payment_to_dict(payment)), 200
