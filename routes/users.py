from flask import Blueprint, request, jsonify, current_app
from flask_login import login_required, current_user
from werkzeug.security import generate_password_hash

from models import db, User, Notification, PDC, TenantNotice, USER_ROLES
from routes.auth import role_required, validate_new_password
from utils import log_audit, request_data, require_text, page_args, pagination_block, diff_fields, parse_bool

users_bp = Blueprint('users', __name__)


def _validated_profile(data):
    profile = {
        'first_name': require_text(data, 'first_name', 'First name'),
        'last_name': require_text(data, 'last_name', 'Last name'),
        'email': require_text(data, 'email', 'Email').lower(),
        'contact_no': (data.get('contact_no') or '').strip() or None,
        'role': data.get('role'),
    }
    if '@' not in profile['email']:
        raise ValueError("Invalid email address")
    if profile['role'] not in USER_ROLES:
        raise ValueError(f"Role must be one of {', '.join(USER_ROLES)}")
    return profile


@users_bp.route('/')
@login_required
@role_required('ADMIN')
def list_users():
    page, limit = page_args(default_limit=10)
    query = User.query

    search = request.args.get('search')
    if search:
        term = f"%{search}%"
        query = query.filter(db.or_(
            User.first_name.ilike(term),
            User.last_name.ilike(term),
            User.email.ilike(term)
        ))

    role = request.args.get('role')
    if role:
        query = query.filter(User.role == role)

    total = query.count()
    users = query.order_by(User.created_at.desc(), User.id.desc()) \
        .offset((page - 1) * limit).limit(limit).all()

    return jsonify({
        'status': 'success',
        'users': [u.to_dict() for u in users],
        'pagination': pagination_block(page, limit, total)
    })


@users_bp.route('/', methods=['POST'])
@login_required
@role_required('ADMIN')
def create_user():
    data = request_data()
    try:
        profile = _validated_profile(data)
        validate_new_password(data.get('password'))
    except ValueError as e:
        return jsonify({'status': 'error', 'message': str(e)}), 400

    if User.query.filter_by(email=profile['email']).first():
        return jsonify({'status': 'error', 'message': 'A user with this email already exists'}), 400

    try:
        new_user = User(password_hash=generate_password_hash(data['password']), **profile)
        db.session.add(new_user)
        db.session.commit()
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Error creating user %s", profile['email'])
        return jsonify({'status': 'error', 'message': 'Failed to create user'}), 500

    log_audit('CREATE', 'USER', new_user.id, changes={'email': new_user.email, 'role': new_user.role})
    return jsonify({'status': 'success', 'user': new_user.to_dict()}), 201


@users_bp.route('/<int:id>')
@login_required
@role_required('ADMIN')
def get_user(id):
    user = User.query.get_or_404(id)
    return jsonify({'status': 'success', 'user': user.to_dict()})


@users_bp.route('/<int:id>', methods=['PUT', 'POST'])
@login_required
@role_required('ADMIN')
def update_user(id):
    user = User.query.get_or_404(id)
    try:
        profile = _validated_profile(request_data())
    except ValueError as e:
        return jsonify({'status': 'error', 'message': str(e)}), 400

    clash = User.query.filter(User.email == profile['email'], User.id != user.id).first()
    if clash:
        return jsonify({'status': 'error', 'message': 'Email is already in use by another user'}), 400

    changes = diff_fields(user, profile, ['first_name', 'last_name', 'email', 'contact_no', 'role'])
    db.session.commit()

    if 'role' in changes:
        log_audit('PERMISSION_CHANGE', 'USER', user.id, changes={'role': changes['role']})
    if changes:
        log_audit('UPDATE', 'USER', user.id, changes=changes)
    return jsonify({'status': 'success', 'user': user.to_dict()})


@users_bp.route('/<int:id>/password', methods=['POST'])
@login_required
@role_required('ADMIN')
def change_user_password(id):
    user = User.query.get_or_404(id)
    data = request_data()
    try:
        validate_new_password(data.get('new_password'), data.get('confirm_password'))
    except ValueError as e:
        return jsonify({'status': 'error', 'message': str(e)}), 400

    user.password_hash = generate_password_hash(data['new_password'])
    db.session.commit()
    log_audit('PASSWORD_CHANGE', 'USER', user.id, extra={'reset_by': current_user.id})
    return jsonify({'status': 'success', 'message': f'Password updated for {user.email}'})


@users_bp.route('/<int:id>/status', methods=['POST'])
@login_required
@role_required('ADMIN')
def toggle_user_status(id):
    user = User.query.get_or_404(id)
    data = request_data()
    if 'is_active' not in data:
        return jsonify({'status': 'error', 'message': 'is_active is required'}), 400
    is_active = parse_bool(data['is_active'])

    if user.id == current_user.id and not is_active:
        return jsonify({'status': 'error', 'message': 'You cannot deactivate your own account'}), 400

    changes = diff_fields(user, {'is_active': is_active}, ['is_active'])
    db.session.commit()
    if changes:
        log_audit('STATUS_CHANGE', 'USER', user.id, changes=changes)
    return jsonify({'status': 'success', 'user': user.to_dict()})


@users_bp.route('/<int:id>', methods=['DELETE'])
@login_required
@role_required('ADMIN')
def delete_user(id):
    user = User.query.get_or_404(id)
    if user.id == current_user.id:
        return jsonify({'status': 'error', 'message': 'You cannot delete your own account'}), 400

    email = user.email
    try:
        Notification.query.filter_by(user_id=user.id).delete()
        PDC.query.filter_by(updated_by_id=user.id).update({'updated_by_id': None})
        TenantNotice.query.filter_by(created_by_id=user.id).update({'created_by_id': None})
        db.session.delete(user)
        db.session.commit()
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Error deleting user %s", id)
        return jsonify({'status': 'error', 'message': 'Failed to delete user'}), 500

    log_audit('DELETE', 'USER', id, changes={'email': email})
    return jsonify({'status': 'success', 'message': f'User {email} deleted'})
