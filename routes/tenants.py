from datetime import date

from flask import Blueprint, request, jsonify, current_app
from flask_login import login_required
from sqlalchemy.exc import IntegrityError

from models import db, Tenant, Lease, LeaseUnit, Unit, TENANT_STATUSES, LEASE_STATUSES
from utils import (log_audit, notify_all_users, actor_name, request_data, require_text,
                   parse_date, parse_float, parse_int, diff_fields)

tenants_bp = Blueprint('tenants', __name__)

TENANT_FIELDS = ['bp_code', 'first_name', 'last_name', 'company', 'business_name',
                 'email', 'phone', 'status']
LEASE_FIELDS = ['start_date', 'end_date', 'total_rent_amount', 'security_deposit', 'status']


def _tenant_fields(data):
    fields = {'bp_code': require_text(data, 'bp_code', 'BP code')}
    for field in ['first_name', 'last_name', 'company', 'business_name', 'email', 'phone']:
        fields[field] = (data.get(field) or '').strip() or None
    fields['status'] = (data.get('status') or 'ACTIVE').upper()

    if fields['status'] not in TENANT_STATUSES:
        raise ValueError(f"Status must be one of {', '.join(TENANT_STATUSES)}")
    if not (fields['company'] or fields['business_name'] or fields['first_name'] or fields['last_name']):
        raise ValueError("A tenant needs a company, business name or contact name")
    if fields['email'] and '@' not in fields['email']:
        raise ValueError("Invalid email address")
    return fields


def _unit_labels(lease):
    return ', '.join(f"{lu.unit.property.property_name} - {lu.unit.unit_number}" for lu in lease.lease_units)


def _held_by_other_lease(unit, lease=None):
    """True when an ACTIVE lease other than `lease` covers the unit."""
    lease_id = lease.id if lease is not None else None
    return any(lu.lease.status == 'ACTIVE' and lu.lease_id != lease_id for lu in unit.lease_units)


def _busy_units(units, lease=None):
    return [u.unit_number for u in units if _held_by_other_lease(u, lease)]


def _release_units(lease):
    """Frees the lease's units unless another ACTIVE lease still holds them."""
    for lu in lease.lease_units:
        if not _held_by_other_lease(lu.unit, lease):
            lu.unit.status = 'VACANT'


def _sync_unit_statuses(lease):
    if lease.status == 'ACTIVE':
        for lu in lease.lease_units:
            lu.unit.status = 'OCCUPIED'
    else:
        _release_units(lease)


# Tenants

@tenants_bp.route('/')
@login_required
def list_tenants():
    query = Tenant.query

    status = request.args.get('status')
    if status and status != 'all':
        query = query.filter(Tenant.status == status.upper())

    search = request.args.get('search')
    if search:
        term = f"%{search}%"
        query = query.filter(db.or_(
            Tenant.bp_code.ilike(term),
            Tenant.first_name.ilike(term),
            Tenant.last_name.ilike(term),
            Tenant.company.ilike(term),
            Tenant.business_name.ilike(term),
            Tenant.email.ilike(term)
        ))

    tenants = query.order_by(Tenant.company, Tenant.last_name, Tenant.bp_code).all()

    result = []
    for t in tenants:
        data = t.to_dict()
        data['active_leases'] = sum(1 for l in t.leases if l.status == 'ACTIVE')
        result.append(data)
    return jsonify({'status': 'success', 'tenants': result})


@tenants_bp.route('/', methods=['POST'])
@login_required
def create_tenant():
    try:
        fields = _tenant_fields(request_data())
    except ValueError as e:
        return jsonify({'status': 'error', 'message': str(e)}), 400

    if Tenant.query.filter_by(bp_code=fields['bp_code']).first():
        return jsonify({'status': 'error', 'message': 'BP code already exists'}), 400

    tenant = Tenant(**fields)
    db.session.add(tenant)
    db.session.commit()
    log_audit('CREATE', 'TENANT', tenant.id, changes=tenant.to_dict())
    return jsonify({'status': 'success', 'tenant': tenant.to_dict()}), 201


@tenants_bp.route('/<int:id>')
@login_required
def tenant_details(id):
    tenant = Tenant.query.get_or_404(id)
    data = tenant.to_dict()
    data['leases'] = [l.to_dict() for l in sorted(tenant.leases, key=lambda l: l.start_date, reverse=True)]
    return jsonify({'status': 'success', 'tenant': data})


@tenants_bp.route('/<int:id>', methods=['PUT', 'POST'])
@login_required
def update_tenant(id):
    tenant = Tenant.query.get_or_404(id)
    try:
        fields = _tenant_fields(request_data())
    except ValueError as e:
        return jsonify({'status': 'error', 'message': str(e)}), 400

    try:
        changes = diff_fields(tenant, fields, TENANT_FIELDS)
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        return jsonify({'status': 'error', 'message': 'BP code already exists'}), 400

    if changes:
        log_audit('UPDATE', 'TENANT', tenant.id, changes=changes)
    return jsonify({'status': 'success', 'tenant': tenant.to_dict()})


# Leases

@tenants_bp.route('/leases')
@login_required
def list_leases():
    query = Lease.query

    status = request.args.get('status')
    if status:
        query = query.filter(Lease.status == status.upper())

    tenant_id = request.args.get('tenant_id', type=int)
    if tenant_id:
        query = query.filter(Lease.tenant_id == tenant_id)

    leases = query.order_by(Lease.start_date.desc(), Lease.id.desc()).all()
    return jsonify({'status': 'success', 'leases': [l.to_dict() for l in leases]})


@tenants_bp.route('/leases/<int:lease_id>')
@login_required
def lease_details(lease_id):
    lease = Lease.query.get_or_404(lease_id)
    return jsonify({'status': 'success', 'lease': lease.to_dict()})


@tenants_bp.route('/leases', methods=['POST'])
@login_required
def create_lease():
    data = request_data()
    try:
        tenant_id = parse_int(data.get('tenant_id'), 'tenant_id')
        start_date = parse_date(data.get('start_date'), 'start_date')
        end_date = parse_date(data.get('end_date'), 'end_date')
        if end_date < start_date:
            raise ValueError("End date must be on or after the start date")
        status = (data.get('status') or 'PENDING').upper()
        if status not in LEASE_STATUSES:
            raise ValueError(f"Status must be one of {', '.join(LEASE_STATUSES)}")
        security_deposit = parse_float(data.get('security_deposit'), 'security_deposit', required=False)

        requested = data.get('units') or []
        if not isinstance(requested, list) or not requested:
            raise ValueError("Select at least one unit")
        unit_ids = [parse_int(u.get('unit_id'), 'unit_id') for u in requested]
        if len(set(unit_ids)) != len(unit_ids):
            raise ValueError("A unit can only be listed once")
    except (ValueError, AttributeError) as e:
        return jsonify({'status': 'error', 'message': str(e)}), 400

    tenant = Tenant.query.get_or_404(tenant_id)

    units = {u.id: u for u in Unit.query.filter(Unit.id.in_(unit_ids)).all()}
    missing = [uid for uid in unit_ids if uid not in units]
    if missing:
        return jsonify({'status': 'error', 'message': f"Unknown unit(s): {', '.join(map(str, missing))}"}), 400

    busy = _busy_units(units.values())
    if busy:
        return jsonify({'status': 'error',
                        'message': f"Already under an active lease: {', '.join(busy)}"}), 400

    try:
        lease_units = []
        for item, unit_id in zip(requested, unit_ids):
            rent = parse_float(item.get('rent_amount'), 'rent_amount', required=False,
                               default=units[unit_id].total_rent or 0.0)
            lease_units.append(LeaseUnit(unit_id=unit_id, rent_amount=rent))
        total = parse_float(data.get('total_rent_amount'), 'total_rent_amount', required=False,
                            default=round(sum(lu.rent_amount for lu in lease_units), 2))
    except ValueError as e:
        return jsonify({'status': 'error', 'message': str(e)}), 400

    try:
        lease = Lease(tenant_id=tenant.id, start_date=start_date, end_date=end_date,
                      total_rent_amount=total, security_deposit=security_deposit, status=status)
        lease.lease_units = lease_units
        db.session.add(lease)
        db.session.flush()

        if lease.status == 'ACTIVE':
            for unit in units.values():
                unit.status = 'OCCUPIED'

        notify_all_users(
            'New Multi-Unit Lease Created',
            f"Lease for {tenant.display_name} has been created for: {_unit_labels(lease)}",
            type='LEASE', entity_type='LEASE', entity_id=lease.id,
            action_url=f"/tenants/{tenant.id}"
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Error creating lease for tenant %s", tenant_id)
        return jsonify({'status': 'error', 'message': 'Failed to create lease. Please try again.'}), 500

    log_audit('CREATE', 'LEASE', lease.id, changes=lease.to_dict())
    return jsonify({'status': 'success', 'lease': lease.to_dict()}), 201


@tenants_bp.route('/leases/<int:lease_id>', methods=['PUT', 'POST'])
@login_required
def update_lease(lease_id):
    lease = Lease.query.get_or_404(lease_id)
    data = request_data()
    try:
        fields = {
            'start_date': parse_date(data.get('start_date', lease.start_date), 'start_date'),
            'end_date': parse_date(data.get('end_date', lease.end_date), 'end_date'),
            'total_rent_amount': parse_float(data.get('total_rent_amount', lease.total_rent_amount),
                                             'total_rent_amount'),
            'security_deposit': parse_float(data.get('security_deposit', lease.security_deposit),
                                            'security_deposit', required=False),
            'status': str(data.get('status') or lease.status).upper(),
        }
        if fields['end_date'] < fields['start_date']:
            raise ValueError("End date must be on or after the start date")
        if fields['status'] not in LEASE_STATUSES:
            raise ValueError(f"Status must be one of {', '.join(LEASE_STATUSES)}")
    except ValueError as e:
        return jsonify({'status': 'error', 'message': str(e)}), 400

    if fields['status'] == 'ACTIVE':
        busy = _busy_units([lu.unit for lu in lease.lease_units], lease)
        if busy:
            return jsonify({'status': 'error',
                            'message': f"Already under an active lease: {', '.join(busy)}"}), 400

    try:
        changes = diff_fields(lease, fields, LEASE_FIELDS)
        _sync_unit_statuses(lease)
        notify_all_users(
            'Lease Updated',
            f"Lease for {lease.tenant.display_name} ({_unit_labels(lease)}) has been updated by {actor_name()}",
            type='LEASE', entity_type='LEASE', entity_id=lease.id,
            action_url=f"/tenants/{lease.tenant_id}"
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Error updating lease %s", lease_id)
        return jsonify({'status': 'error', 'message': 'Failed to update lease. Please try again.'}), 500

    log_audit('UPDATE', 'LEASE', lease.id, changes=changes)
    return jsonify({'status': 'success', 'lease': lease.to_dict()})


@tenants_bp.route('/leases/<int:lease_id>/terminate', methods=['POST'])
@login_required
def terminate_lease(lease_id):
    lease = Lease.query.get_or_404(lease_id)
    if lease.status == 'TERMINATED':
        return jsonify({'status': 'error', 'message': 'Lease is already terminated'}), 400

    data = request_data()
    try:
        termination_date = parse_date(data.get('termination_date'), 'termination_date',
                                      required=False) or date.today()
        reason = require_text(data, 'termination_reason', 'Termination reason')
    except ValueError as e:
        return jsonify({'status': 'error', 'message': str(e)}), 400

    try:
        lease.status = 'TERMINATED'
        lease.termination_date = termination_date
        lease.termination_reason = reason
        _sync_unit_statuses(lease)
        notify_all_users(
            'Lease Terminated',
            f"Lease for {lease.tenant.display_name} ({_unit_labels(lease)}) has been terminated. Reason: {reason}",
            type='LEASE', priority='HIGH', entity_type='LEASE', entity_id=lease.id,
            action_url=f"/tenants/{lease.tenant_id}"
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Error terminating lease %s", lease_id)
        return jsonify({'status': 'error', 'message': 'Failed to terminate lease. Please try again.'}), 500

    log_audit('UPDATE', 'LEASE', lease.id, changes={
        'status': 'TERMINATED',
        'termination_date': termination_date.isoformat(),
        'termination_reason': reason,
    })
    return jsonify({'status': 'success', 'lease': lease.to_dict()})


@tenants_bp.route('/leases/<int:lease_id>', methods=['DELETE'])
@login_required
def delete_lease(lease_id):
    lease = Lease.query.get_or_404(lease_id)
    tenant_name = lease.tenant.display_name
    labels = _unit_labels(lease)

    try:
        _release_units(lease)
        db.session.delete(lease)
        notify_all_users(
            'Lease Deleted',
            f"Lease for {tenant_name} ({labels}) has been deleted by {actor_name()}",
            type='LEASE', priority='HIGH', entity_type='LEASE', entity_id=lease_id
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Error deleting lease %s", lease_id)
        return jsonify({'status': 'error', 'message': 'Failed to delete lease. Please try again.'}), 500

    log_audit('DELETE', 'LEASE', lease_id, changes={'tenant': tenant_name, 'units': labels})
    return jsonify({'status': 'success', 'message': f'Lease for {tenant_name} deleted'})
