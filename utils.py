import io
from datetime import datetime

from flask import current_app, has_request_context, request, send_file
from flask_login import current_user
from openpyxl import Workbook
from openpyxl.styles import Font, Alignment, PatternFill

from models import db, AuditLog, Notification, User

XLSX_MIMETYPE = 'application/vnd.openxmlformats-officedocument.spreadsheetml.sheet'


def get_client_info():
    """
    Returns (ip_address, user_agent) for the current request.
    Proxy headers win over the socket address; first hop of X-Forwarded-For.
    """
    if not has_request_context():
        return 'unknown', 'unknown'

    headers = request.headers
    forwarded = headers.get('X-Forwarded-For')
    ip_address = (
        (forwarded.split(',')[0].strip() if forwarded else None)
        or headers.get('X-Real-IP')
        or headers.get('CF-Connecting-IP')
        or request.remote_addr
        or 'unknown'
    )
    user_agent = headers.get('User-Agent') or 'unknown'
    return ip_address, user_agent


def log_audit(action, entity_type, entity_id, changes=None, extra=None, user=None):
    """
    Creates an AuditLog entry.

    A failed audit write is logged and rolled back, never raised, so the
    caller's own work is not undone by it.
    """
    try:
        if user is None and has_request_context() and current_user and current_user.is_authenticated:
            user = current_user
        ip_address, user_agent = get_client_info()

        log = AuditLog(
            user_id=user.id if user is not None else None,
            action=action,
            entity_type=entity_type,
            entity_id=str(entity_id) if entity_id is not None else None,
            changes=changes,
            ip_address=ip_address,
            user_agent=user_agent[:300],
            extra=extra,
        )
        db.session.add(log)
        db.session.commit()
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Error logging audit %s %s %s", action, entity_type, entity_id)


def format_changes(changes):
    if not changes:
        return 'No changes recorded'
    if not isinstance(changes, dict):
        return str(changes)

    parts = []
    for key, value in changes.items():
        if isinstance(value, dict) and ('from' in value or 'to' in value):
            parts.append(f"{key}: {value.get('from')} → {value.get('to')}")
        else:
            parts.append(f"{key}: {value}")
    return ', '.join(parts)


def diff_fields(obj, data, fields):
    """Applies data[field] to obj and returns {field: {'from', 'to'}} for what changed."""
    changes = {}
    for field in fields:
        if field not in data:
            continue
        old = getattr(obj, field)
        new = data[field]
        if old != new:
            changes[field] = {'from': _jsonable(old), 'to': _jsonable(new)}
            setattr(obj, field, new)
    return changes


def _jsonable(value):
    if hasattr(value, 'isoformat'):
        return value.isoformat()
    return value


def json_safe(obj):
    """Recursively turns dates into ISO strings (jsonify would emit HTTP dates)."""
    if isinstance(obj, dict):
        return {k: json_safe(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [json_safe(v) for v in obj]
    return _jsonable(obj)


def create_notification(user_id, title, message, type=None, priority='NORMAL',
                        entity_type=None, entity_id=None, action_url=None):
    notification = Notification(
        user_id=user_id,
        title=title,
        message=message,
        type=type,
        priority=priority,
        entity_type=entity_type,
        entity_id=str(entity_id) if entity_id is not None else None,
        action_url=action_url,
    )
    db.session.add(notification)
    return notification


def notify_all_users(title, message, **kwargs):
    """Fan a notification out to every active user. Caller commits."""
    users = User.query.filter_by(is_active=True).all()
    for u in users:
        create_notification(u.id, title, message, **kwargs)
    return len(users)


def actor_name():
    if has_request_context() and current_user and current_user.is_authenticated:
        return current_user.full_name
    return 'Unknown user'


# Request parsing helpers

def request_data():
    """JSON body when present, else form fields."""
    if request.is_json:
        return request.get_json(silent=True) or {}
    return request.form.to_dict()


def parse_date(value, field='date', required=True):
    if value in (None, ''):
        if required:
            raise ValueError(f"{field} is required")
        return None
    if hasattr(value, 'year') and not isinstance(value, str):
        return value
    try:
        return datetime.strptime(str(value)[:10], '%Y-%m-%d').date()
    except ValueError:
        raise ValueError(f"Invalid {field}: expected YYYY-MM-DD")


def parse_float(value, field='amount', required=True, default=0.0):
    if value in (None, ''):
        if required:
            raise ValueError(f"{field} is required")
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ValueError(f"Invalid {field}: must be a number")


def parse_int(value, field='value', required=True, default=None):
    if value in (None, ''):
        if required:
            raise ValueError(f"{field} is required")
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValueError(f"Invalid {field}: must be an integer")


def parse_bool(value):
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ('true', '1', 'yes', 'on')


def require_text(data, field, label=None):
    value = data.get(field)
    if isinstance(value, str):
        value = value.strip()
    if not value:
        raise ValueError(f"{label or field} is required")
    return value


def page_args(default_limit=None):
    """Reads page/limit from the query string."""
    default_limit = default_limit or current_app.config.get('DEFAULT_PAGE_SIZE', 50)
    try:
        page = max(int(request.args.get('page', 1)), 1)
    except ValueError:
        page = 1
    try:
        limit = min(max(int(request.args.get('limit', default_limit)), 1), 500)
    except ValueError:
        limit = default_limit
    return page, limit


def pagination_block(page, limit, total):
    return {
        'page': page,
        'limit': limit,
        'total': total,
        'pages': (total + limit - 1) // limit if limit else 0,
    }


# Excel export

HEADER_FONT = Font(bold=True, color='FFFFFF')
HEADER_FILL = PatternFill('solid', fgColor='1F4E78')


def build_workbook(sheets):
    """
    sheets: list of (title, headers, rows). Returns a BytesIO positioned at 0.
    """
    wb = Workbook()
    wb.remove(wb.active)

    for title, headers, rows in sheets:
        ws = wb.create_sheet(title=_sheet_name(title))
        ws.append(headers)
        for cell in ws[1]:
            cell.font = HEADER_FONT
            cell.fill = HEADER_FILL
            cell.alignment = Alignment(horizontal='center')
        for row in rows:
            ws.append(list(row))
        for idx, header in enumerate(headers, start=1):
            width = max([len(str(header))] + [len(str(r[idx - 1])) for r in rows if idx - 1 < len(r)])
            ws.column_dimensions[ws.cell(row=1, column=idx).column_letter].width = min(width + 2, 60)

    output = io.BytesIO()
    wb.save(output)
    output.seek(0)
    return output


def _sheet_name(name):
    # Excel forbids []:*?/\ and caps names at 31 chars
    cleaned = ''.join('_' if ch in '[]:*?/\\' else ch for ch in name)
    return cleaned[:31] or 'Sheet'


def send_workbook(output, filename):
    return send_file(
        output,
        mimetype=XLSX_MIMETYPE,
        as_attachment=True,
        download_name=filename
    )
