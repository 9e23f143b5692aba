"""Catalog blueprint - product listing and admin maintenance."""
from flask import Blueprint, jsonify, request
from storefront.database import get_session
from storefront.middleware import require_login, require_role
from storefront.services import catalog_service
from storefront.utils.pagination import get_page_args
from storefront.utils.request_body import get_json_body
from storefront.utils.serializers import product_to_dict

catalog_bp = Blueprint('catalog', __name__, url_prefix='/api/products')


@catalog_bp.route('', methods=['GET'])
def list_products():
    """Active products, paged and optionally filtered by ?q=."""
    page, size = get_page_args()
    result = catalog_service.list_products(get_session(), page, size, request.args.get('q'))
    return jsonify(result), 200


@catalog_bp.route('/<int:product_id>', methods=['GET'])
def product_detail(product_id):
    product = catalog_service.get_product(get_session(), product_id)
    return jsonify(product_to_dict(product)), 200


@catalog_bp.route('/low-stock', methods=['GET'])
@require_login
@require_role('ADMIN')
def low_stock():
    products = catalog_service.list_low_stock_products(
        get_session(), request.args.get('threshold', type=int)
    )
    return jsonify([product_to_dict(p) for p in products]), 200


@catalog_bp.route('', methods=['POST'])
@require_login
@require_role('ADMIN')
def create_product():
    product = catalog_service.create_product(get_session(), get_json_body())
    return jsonify(product_to_dict(product)), 201


@catalog_bp.route('/<int:product_id>', methods=['PUT'])
@require_login
@require_role('ADMIN')
def update_product(product_id):
    product = catalog_service.update_product(get_session(), product_id, get_json_body())
    return jsonify(product_to_dict(product)), 200
