"""Authentication blueprint: session-cookie login for the JSON API."""
from flask import Blueprint, jsonify, session, g, current_app
from storefront.database import get_session
from storefront.middleware import require_login
from storefront.services import auth_service
from storefront.utils.request_body import get_json_body
from storefront.utils.serializers import user_to_dict

auth_bp = Blueprint('auth', __name__, url_prefix='/api/auth')


@auth_bp.route('/register', methods=['POST'])
def register():
    data = get_json_body()
    user = auth_service.register_user(get_session(), data)
    
    session.clear()
    session['user_id'] = user.id
    session.permanent = True
    return jsonify(user_to_dict(user)), 201


@auth_bp.route('/login', methods=['POST'])
def login():
    data = get_json_body()
    user = auth_service.authenticate(get_session(), data.get('email'), data.get('password'))
    
    session.clear()
    session['user_id'] = user.id
    session.permanent = True
    current_app.logger.info(f"User {user.id} logged in")
    return jsonify(user_to_dict(user)), 200


@auth_bp.route('/logout', methods=['POST'])
def logout():
    session.clear()
    return '', 204


@auth_bp.route('/me', methods=['GET'])
@require_login
def me():
    return jsonify(user_to_dict(g.user)), 200
