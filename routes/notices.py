from datetime import date, datetime

from flask import Blueprint, request, jsonify
from flask_login import login_required, current_user

from models import db, Tenant, TenantNotice, TenantNoticeItem
from utils import log_audit, request_data, require_text, parse_float, parse_int, parse_bool

notices_bp = Blueprint('notices', __name__)

ITEM_STATUSES = ['PAST_DUE', 'OVERDUE', 'CRITICAL', 'PENDING', 'UNPAID']
NOTICE_TYPES = {1: 'FIRST_NOTICE', 2: 'SECOND_NOTICE', 3: 'FINAL_NOTICE'}
MAX_NOTICE_NUMBER = 3


def next_notice_number(tenant_id):
    last = TenantNotice.query.filter_by(tenant_id=tenant_id, is_settled=False) \
        .order_by(TenantNotice.notice_number.desc()).first()
    if not last:
        return 1
    return min(last.notice_number + 1, MAX_NOTICE_NUMBER)


def _notice_items(items):
    if not isinstance(items, list) or not items:
        raise ValueError("A notice needs at least one item")

    current_month = date.today().strftime('%B')
    rows = []
    for item in items:
        status = str(item.get('status') or '').strip()
        if not status:
            raise ValueError("Item status is required")
        is_custom = status not in ITEM_STATUSES
        rows.append({
            'description': require_text(item, 'description', 'Item description'),
            'status': 'CUSTOM' if is_custom else status,
            'custom_status': status if is_custom else None,
            'amount': parse_float(item.get('amount'), 'amount'),
            'months': (item.get('months') or '').strip() or current_month,
        })
    return rows


@notices_bp.route('/')
@login_required
def list_notices():
    query = TenantNotice.query

    tenant_id = request.args.get('tenant_id', type=int)
    if tenant_id:
        query = query.filter(TenantNotice.tenant_id == tenant_id)

    if request.args.get('is_settled') not in (None, ''):
        query = query.filter(TenantNotice.is_settled == parse_bool(request.args['is_settled']))

    notices = query.order_by(TenantNotice.is_settled.asc(), TenantNotice.date_issued.desc(),
                             TenantNotice.id.desc()).all()
    return jsonify({'status': 'success', 'notices': [n.to_dict() for n in notices]})


@notices_bp.route('/tenants')
@login_required
def notice_tenants():
    tenants = Tenant.query.filter_by(status='ACTIVE').order_by(Tenant.business_name, Tenant.company).all()
    return jsonify({'status': 'success', 'tenants': [t.to_dict() for t in tenants]})


@notices_bp.route('/count/<int:tenant_id>')
@login_required
def notice_count(tenant_id):
    Tenant.query.get_or_404(tenant_id)
    count = TenantNotice.query.filter_by(tenant_id=tenant_id, is_settled=False).count()
    return jsonify({'status': 'success', 'tenant_id': tenant_id, 'count': count})


@notices_bp.route('/<int:id>')
@login_required
def notice_details(id):
    notice = TenantNotice.query.get_or_404(id)
    return jsonify({'status': 'success', 'notice': notice.to_dict()})


@notices_bp.route('/', methods=['POST'])
@login_required
def create_notice():
    data = request_data()
    try:
        tenant_id = parse_int(data.get('tenant_id'), 'tenant_id')
        items = _notice_items(data.get('items'))
        for_year = parse_int(data.get('for_year'), 'for_year', required=False, default=date.today().year)
    except (ValueError, AttributeError) as e:
        return jsonify({'status': 'error', 'message': str(e)}), 400

    tenant = Tenant.query.get_or_404(tenant_id)
    number = next_notice_number(tenant.id)

    notice = TenantNotice(
        tenant_id=tenant.id,
        notice_type=NOTICE_TYPES[number],
        notice_number=number,
        total_amount=round(sum(i['amount'] for i in items), 2),
        for_month=items[0]['months'],
        for_year=for_year,
        primary_signatory=data.get('primary_signatory'),
        primary_title=data.get('primary_title'),
        primary_contact=data.get('primary_contact'),
        secondary_signatory=data.get('secondary_signatory'),
        secondary_title=data.get('secondary_title'),
        created_by_id=current_user.id,
    )
    notice.items = [TenantNoticeItem(**i) for i in items]
    db.session.add(notice)
    db.session.commit()

    log_audit('CREATE', 'TENANT_NOTICE', notice.id, changes={
        'tenant': tenant.bp_code,
        'notice_type': notice.notice_type,
        'total_amount': notice.total_amount,
    })
    return jsonify({'status': 'success', 'notice': notice.to_dict()}), 201


@notices_bp.route('/<int:id>/settle', methods=['POST'])
@login_required
def settle_notice(id):
    notice = TenantNotice.query.get_or_404(id)
    if notice.is_settled:
        return jsonify({'status': 'error', 'message': 'Notice is already settled'}), 400

    settled_by = (request_data().get('settled_by') or '').strip() or current_user.full_name
    notice.is_settled = True
    notice.settled_date = datetime.utcnow()
    notice.settled_by = settled_by

    # Settling resets the tenant's notice sequence
    others = TenantNotice.query.filter(
        TenantNotice.tenant_id == notice.tenant_id,
        TenantNotice.is_settled.is_(False),
        TenantNotice.id != notice.id
    ).all()
    removed_ids = [o.id for o in others]
    for other in others:
        db.session.delete(other)
    db.session.commit()

    log_audit('UPDATE', 'TENANT_NOTICE', notice.id,
              changes={'is_settled': True, 'settled_by': settled_by},
              extra={'removed_notices': removed_ids})
    return jsonify({'status': 'success', 'notice': notice.to_dict(), 'removed': len(removed_ids)})


@notices_bp.route('/<int:id>', methods=['DELETE'])
@login_required
def delete_notice(id):
    notice = TenantNotice.query.get_or_404(id)
    label = f"{notice.notice_type} for {notice.tenant.bp_code}"
    db.session.delete(notice)
    db.session.commit()

    log_audit('DELETE', 'TENANT_NOTICE', id, changes={'notice': label})
    return jsonify({'status': 'success', 'message': f'{label} deleted'})
