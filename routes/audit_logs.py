from datetime import datetime, timedelta, time

from flask import Blueprint, request, jsonify, current_app
from flask_login import login_required
from sqlalchemy import func

from models import db, AuditLog, User
from routes.auth import role_required
from utils import (parse_date, parse_int, page_args, pagination_block, format_changes,
                   build_workbook, send_workbook)

audit_logs_bp = Blueprint('audit_logs', __name__)

ENTITY_TYPES = [
    'USER', 'PROPERTY', 'PROPERTY_TITLE', 'PROPERTY_TAX', 'UNIT', 'LEASE', 'TENANT',
    'PDC', 'TENANT_NOTICE', 'REPORT'
]

AUDIT_ACTIONS = [
    'CREATE', 'UPDATE', 'DELETE', 'LOGIN', 'LOGOUT', 'PASSWORD_CHANGE',
    'EMAIL_CHANGE', 'PERMISSION_CHANGE', 'STATUS_CHANGE', 'ASSIGNMENT',
    'PAYMENT_PROCESSED', 'EXPORT'
]

SORT_COLUMNS = {
    'created_at': AuditLog.created_at,
    'action': AuditLog.action,
    'entity_type': AuditLog.entity_type,
    'user.first_name': User.first_name,
    'user.last_name': User.last_name,
}


def filtered_audit_query(args):
    """Applies the audit-log filters from a query-string mapping. Raises ValueError on bad input."""
    query = AuditLog.query.outerjoin(User, AuditLog.user_id == User.id)

    date_from = parse_date(args.get('date_from'), 'date_from', required=False)
    if date_from:
        query = query.filter(AuditLog.created_at >= datetime.combine(date_from, time.min))

    date_to = parse_date(args.get('date_to'), 'date_to', required=False)
    if date_to:
        # Whole day inclusive
        query = query.filter(AuditLog.created_at <= datetime.combine(date_to, time.max))

    user_id = parse_int(args.get('user_id'), 'user_id', required=False)
    if user_id:
        query = query.filter(AuditLog.user_id == user_id)

    if args.get('entity_type'):
        query = query.filter(AuditLog.entity_type == args['entity_type'])
    if args.get('action'):
        query = query.filter(AuditLog.action == args['action'])
    if args.get('ip_address'):
        query = query.filter(AuditLog.ip_address.ilike(f"%{args['ip_address']}%"))

    search = args.get('search')
    if search:
        term = f"%{search}%"
        query = query.filter(db.or_(
            AuditLog.entity_id.ilike(term),
            AuditLog.ip_address.ilike(term),
            User.first_name.ilike(term),
            User.last_name.ilike(term),
            User.email.ilike(term)
        ))
    return query


@audit_logs_bp.route('/')
@login_required
@role_required('ADMIN')
def list_audit_logs():
    try:
        query = filtered_audit_query(request.args)
    except ValueError as e:
        return jsonify({'status': 'error', 'message': str(e)}), 400

    page, limit = page_args()
    sort_col = SORT_COLUMNS.get(request.args.get('sort_by', 'created_at'), AuditLog.created_at)
    order = sort_col.asc() if request.args.get('sort_order') == 'asc' else sort_col.desc()

    total = query.count()
    logs = query.order_by(order, AuditLog.id.desc()).offset((page - 1) * limit).limit(limit).all()
    users = User.query.order_by(User.first_name).all()

    return jsonify({
        'status': 'success',
        'logs': [dict(log.to_dict(), changes_text=format_changes(log.changes)) for log in logs],
        'total': total,
        'total_pages': pagination_block(page, limit, total)['pages'],
        'current_page': page,
        'users': [{'id': u.id, 'first_name': u.first_name, 'last_name': u.last_name, 'email': u.email}
                  for u in users],
        'entity_types': ENTITY_TYPES,
        'actions': AUDIT_ACTIONS,
    })


@audit_logs_bp.route('/stats')
@login_required
@role_required('ADMIN')
def audit_log_stats():
    since = datetime.utcnow() - timedelta(hours=24)

    total_logs = AuditLog.query.count()
    last_24_hours = AuditLog.query.filter(AuditLog.created_at >= since).count()
    unique_users = db.session.query(func.count(func.distinct(AuditLog.user_id))).scalar() or 0
    top_actions = db.session.query(AuditLog.action, func.count(AuditLog.id).label('count')) \
        .group_by(AuditLog.action) \
        .order_by(func.count(AuditLog.id).desc(), AuditLog.action) \
        .limit(5).all()

    return jsonify({
        'status': 'success',
        'total_logs': total_logs,
        'last_24_hours': last_24_hours,
        'unique_users': unique_users,
        'top_actions': [{'action': action, 'count': count} for action, count in top_actions],
    })


@audit_logs_bp.route('/export')
@login_required
@role_required('ADMIN')
def export_audit_logs():
    try:
        query = filtered_audit_query(request.args)
    except ValueError as e:
        return jsonify({'status': 'error', 'message': str(e)}), 400

    cap = current_app.config['AUDIT_EXPORT_LIMIT']
    logs = query.order_by(AuditLog.created_at.desc(), AuditLog.id.desc()).limit(cap).all()

    headers = ['Timestamp', 'User', 'Email', 'Role', 'Entity Type', 'Entity ID',
               'Action', 'Changes', 'IP Address', 'User Agent']
    rows = [[
        log.created_at.strftime('%Y-%m-%d %H:%M:%S') if log.created_at else '',
        log.user.full_name if log.user else 'System',
        log.user.email if log.user else '',
        log.user.role if log.user else '',
        log.entity_type,
        log.entity_id or '',
        log.action,
        format_changes(log.changes),
        log.ip_address or '',
        log.user_agent or '',
    ] for log in logs]

    output = build_workbook([('Audit Logs', headers, rows)])
    filename = f"audit_logs_{datetime.utcnow().strftime('%Y%m%d_%H%M%S')}.xlsx"
    return send_workbook(output, filename)
