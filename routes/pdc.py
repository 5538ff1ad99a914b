from datetime import date

from flask import Blueprint, request, jsonify
from flask_login import login_required, current_user

from models import db, PDC, Tenant, PDC_STATUSES
from services.schedule import days_until, days_text, pdc_stats
from utils import log_audit, request_data, require_text, parse_date, parse_float, diff_fields

pdc_bp = Blueprint('pdc', __name__)

PDC_FIELDS = ['ref_no', 'bank_name', 'doc_date', 'due_date', 'check_no', 'amount', 'remarks']


def _pdc_fields(data):
    fields = {
        'ref_no': require_text(data, 'ref_no', 'Reference number'),
        'bank_name': require_text(data, 'bank_name', 'Bank name'),
        'doc_date': parse_date(data.get('doc_date'), 'doc_date', required=False) or date.today(),
        'due_date': parse_date(data.get('due_date'), 'due_date'),
        'check_no': require_text(data, 'check_no', 'Check number'),
        'amount': parse_float(data.get('amount'), 'amount'),
        'remarks': (data.get('remarks') or '').strip() or None,
    }
    if fields['amount'] <= 0:
        raise ValueError("Amount must be greater than 0")
    return fields


def pdc_to_dict(pdc, today=None):
    data = pdc.to_dict()
    days = days_until(pdc.due_date, today)
    data['days_until_due'] = days
    data['days_text'] = days_text(days)
    data['tenant_email'] = pdc.tenant.email if pdc.tenant else None
    return data


@pdc_bp.route('/')
@login_required
def list_pdcs():
    query = PDC.query

    status = request.args.get('status')
    if status and status != 'all':
        query = query.filter(PDC.status == status)

    bp_code = request.args.get('bp_code')
    if bp_code:
        query = query.filter(PDC.bp_code == bp_code)

    search = request.args.get('search')
    if search:
        term = f"%{search}%"
        query = query.filter(db.or_(
            PDC.ref_no.ilike(term),
            PDC.check_no.ilike(term),
            PDC.bank_name.ilike(term),
            PDC.bp_code.ilike(term),
            PDC.bp_name.ilike(term)
        ))

    pdcs = query.order_by(PDC.doc_date.desc(), PDC.id.desc()).all()
    return jsonify({
        'status': 'success',
        'pdcs': [pdc_to_dict(p) for p in pdcs],
        'stats': pdc_stats((p.amount, p.status, p.due_date) for p in pdcs),
        'statuses': PDC_STATUSES,
    })


@pdc_bp.route('/tenants')
@login_required
def tenant_choices():
    tenants = Tenant.query.order_by(Tenant.company, Tenant.business_name, Tenant.bp_code).all()
    return jsonify({'status': 'success', 'tenants': [{
        'bp_code': t.bp_code,
        'company': t.company,
        'business_name': t.business_name,
        'display_name': t.display_name,
        'email': t.email,
    } for t in tenants]})


@pdc_bp.route('/', methods=['POST'])
@login_required
def create_pdc():
    data = request_data()
    try:
        fields = _pdc_fields(data)
        bp_code = require_text(data, 'bp_code', 'BP code')
    except ValueError as e:
        return jsonify({'status': 'error', 'message': str(e)}), 400

    tenant = Tenant.query.filter_by(bp_code=bp_code).first()
    if not tenant:
        return jsonify({'status': 'error', 'message': 'Tenant not found'}), 404

    pdc = PDC(bp_code=tenant.bp_code, bp_name=tenant.display_name, status='Open',
              updated_by_id=current_user.id, **fields)
    db.session.add(pdc)
    db.session.commit()

    log_audit('CREATE', 'PDC', pdc.id, changes=pdc.to_dict())
    return jsonify({'status': 'success', 'pdc': pdc_to_dict(pdc)}), 201


@pdc_bp.route('/<int:id>', methods=['PUT', 'POST'])
@login_required
def update_pdc(id):
    pdc = PDC.query.get_or_404(id)
    try:
        fields = _pdc_fields(request_data())
    except ValueError as e:
        return jsonify({'status': 'error', 'message': str(e)}), 400

    changes = diff_fields(pdc, fields, PDC_FIELDS)
    pdc.updated_by_id = current_user.id
    db.session.commit()

    if changes:
        log_audit('UPDATE', 'PDC', pdc.id, changes=changes)
    return jsonify({'status': 'success', 'pdc': pdc_to_dict(pdc), 'message': 'PDC record updated successfully.'})


@pdc_bp.route('/<int:id>/status', methods=['POST'])
@login_required
def update_pdc_status(id):
    pdc = PDC.query.get_or_404(id)
    status = request_data().get('status')
    if status not in PDC_STATUSES:
        return jsonify({'status': 'error', 'message': f"Status must be one of {', '.join(PDC_STATUSES)}"}), 400

    changes = diff_fields(pdc, {'status': status}, ['status'])
    pdc.updated_by_id = current_user.id
    db.session.commit()

    if changes:
        log_audit('STATUS_CHANGE', 'PDC', pdc.id, changes=changes)
    return jsonify({'status': 'success', 'pdc': pdc_to_dict(pdc)})


@pdc_bp.route('/<int:id>', methods=['DELETE'])
@login_required
def delete_pdc(id):
    pdc = PDC.query.get_or_404(id)
    label = f"{pdc.check_no} ({pdc.bank_name})"
    db.session.delete(pdc)
    db.session.commit()

    log_audit('DELETE', 'PDC', id, changes={'check': label})
    return jsonify({'status': 'success', 'message': f'PDC {label} deleted'})
