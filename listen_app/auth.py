import logging

from flask import Blueprint, request, jsonify, current_app, g
from flask_jwt_extended import create_access_token, set_access_cookies, unset_jwt_cookies

from . import session_store
from .errors import InvalidCredentialsError

logger = logging.getLogger(__name__)

auth_bp = Blueprint('auth', __name__, url_prefix='/auth')


def _credentials():
    data = request.get_json(silent=True) or request.form
    email = data.get('email')
    password = data.get('password')
    if not isinstance(email, str) or not isinstance(password, str) or not email.strip() or not password:
        return None, None
    return email, password


def _signed_in(user, status=200):
    access_token = create_access_token(identity=str(user.id), expires_delta=False)
    response = jsonify({'user': user.to_dict()})
    set_access_cookies(response, access_token)
    return response, status


@auth_bp.route('/register', methods=['POST'])
def register():
    email, password = _credentials()
    if email is None:
        return jsonify({'error': 'Email and password required'}), 400

    min_length = current_app.config.get('PASSWORD_MIN_LENGTH', 6)
    if len(password) < min_length:
        return jsonify({'error': f'Password must be at least {min_length} characters'}), 400

    user = session_store.create_user(email, password)
    return _signed_in(user, 201)


@auth_bp.route('/login', methods=['POST'])
def login():
    """Exchanges email and password for a JWT cookie."""
    email, password = _credentials()
    if email is None:
        return jsonify({'error': 'Email and password required'}), 400

    user = session_store.authenticate(email, password)
    if user is None:
        logger.info("Rejected login attempt")
        raise InvalidCredentialsError("Invalid email or password")
    return _signed_in(user)


@auth_bp.route('/me')
def me():
    return jsonify({'user': session_store.get_user(g.user_id).to_dict()})


@auth_bp.route('/logout', methods=['POST'])
def logout():
    current_app.extensions['listen_coordinators'].discard(g.user_id)
    response = jsonify({'success': True})
    unset_jwt_cookies(response)
    return response
