from functools import wraps

from flask import Blueprint, jsonify
from flask_login import login_user, logout_user, login_required, current_user
from werkzeug.security import check_password_hash, generate_password_hash

from models import User, db
from utils import log_audit, request_data

auth_bp = Blueprint('auth', __name__)

MIN_PASSWORD_LENGTH = 8


def role_required(*roles):
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not current_user.is_authenticated:
                return jsonify({'status': 'error', 'message': 'Authentication required'}), 401

            # Allow Admin to access everything
            if current_user.role == 'ADMIN':
                return f(*args, **kwargs)

            if current_user.role not in roles:
                return jsonify({'status': 'error', 'message': 'You do not have permission to access this resource.'}), 403
            return f(*args, **kwargs)
        return decorated_function
    return decorator


def validate_new_password(password, confirm_password=None):
    if not password or len(password) < MIN_PASSWORD_LENGTH:
        raise ValueError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    if confirm_password is not None and password != confirm_password:
        raise ValueError("Passwords don't match")


@auth_bp.route('/login', methods=['POST'])
def login():
    data = request_data()
    email = (data.get('email') or '').strip().lower()
    password = data.get('password') or ''

    if not email or not password:
        return jsonify({'status': 'error', 'message': 'Email and password are required'}), 400

    user = User.query.filter(db.func.lower(User.email) == email).first()

    if not user or not check_password_hash(user.password_hash, password):
        return jsonify({'status': 'error', 'message': 'Invalid email or password'}), 401
    if not user.is_active:
        return jsonify({'status': 'error', 'message': 'Account is deactivated'}), 403

    login_user(user)
    log_audit('LOGIN', 'USER', user.id, extra={'login_method': 'credentials'}, user=user)
    return jsonify({'status': 'success', 'user': user.to_dict()})


@auth_bp.route('/logout', methods=['POST'])
@login_required
def logout():
    log_audit('LOGOUT', 'USER', current_user.id)
    logout_user()
    return jsonify({'status': 'success', 'message': 'Logged out'})


@auth_bp.route('/me')
@login_required
def me():
    return jsonify({'status': 'success', 'user': current_user.to_dict()})


@auth_bp.route('/change_password', methods=['POST'])
@login_required
def change_password():
    data = request_data()
    current_password = data.get('current_password') or ''
    new_password = data.get('new_password') or ''
    confirm_password = data.get('confirm_password') or ''

    if not current_password:
        return jsonify({'status': 'error', 'message': 'Current password is required'}), 400
    try:
        validate_new_password(new_password, confirm_password)
    except ValueError as e:
        return jsonify({'status': 'error', 'message': str(e)}), 400

    if not check_password_hash(current_user.password_hash, current_password):
        return jsonify({'status': 'error', 'message': 'Current password is incorrect.'}), 400
    if check_password_hash(current_user.password_hash, new_password):
        return jsonify({'status': 'error', 'message': 'New password must be different from your current password.'}), 400

    current_user.password_hash = generate_password_hash(new_password)
    db.session.commit()
    log_audit('PASSWORD_CHANGE', 'USER', current_user.id)
    return jsonify({'status': 'success', 'message': 'Password changed successfully'})
