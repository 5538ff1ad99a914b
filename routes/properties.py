from datetime import datetime

from flask import Blueprint, request, jsonify, current_app
from flask_login import login_required, current_user
from sqlalchemy.exc import IntegrityError

from models import db, Property, PropertyTitle, PropertyTax, Unit, UnitFloor, UNIT_STATUSES, FLOOR_TYPES
from services.schedule import bucket_taxes, days_until, days_text, tax_bucket
from utils import (log_audit, create_notification, notify_all_users, actor_name, request_data,
                   require_text, parse_date, parse_float, parse_int, parse_bool, diff_fields)

properties_bp = Blueprint('properties', __name__)

PROPERTY_FIELDS = ['property_code', 'property_name', 'address', 'property_type']
TAX_FIELDS = ['tax_year', 'tax_dec_no', 'tax_amount', 'due_date', 'is_annual',
              'is_quarterly', 'what_quarter', 'processed_by', 'remarks']


def _property_fields(data):
    return {
        'property_code': require_text(data, 'property_code', 'Property code'),
        'property_name': require_text(data, 'property_name', 'Property name'),
        'address': (data.get('address') or '').strip() or None,
        'property_type': (data.get('property_type') or '').strip() or None,
    }


def _tax_fields(data):
    fields = {
        'tax_year': parse_int(data.get('tax_year'), 'tax_year'),
        'tax_dec_no': require_text(data, 'tax_dec_no', 'Tax declaration number'),
        'tax_amount': parse_float(data.get('tax_amount'), 'tax_amount'),
        'due_date': parse_date(data.get('due_date'), 'due_date'),
        'is_annual': parse_bool(data.get('is_annual', False)),
        'is_quarterly': parse_bool(data.get('is_quarterly', False)),
        'what_quarter': (data.get('what_quarter') or '').strip() or None,
        'processed_by': (data.get('processed_by') or '').strip() or None,
        'remarks': (data.get('remarks') or '').strip() or None,
    }
    if fields['tax_year'] < 2000:
        raise ValueError("Invalid tax year")
    if fields['tax_amount'] <= 0:
        raise ValueError("Amount must be greater than 0")
    return fields


def tax_to_dict(tax, today=None):
    data = tax.to_dict()
    days = days_until(tax.due_date, today)
    data.update({
        'days_until_due': days,
        'days_text': days_text(days),
        'bucket': tax_bucket(tax.due_date, tax.is_paid, today),
    })
    return data


def _tax_label(tax):
    title = tax.property_title
    return f"{title.property.property_name} - Title {title.title_no} ({tax.tax_year})"


# Properties

@properties_bp.route('/')
@login_required
def list_properties():
    query = Property.query

    search = request.args.get('search')
    if search:
        term = f"%{search}%"
        query = query.filter(db.or_(
            Property.property_name.ilike(term),
            Property.property_code.ilike(term),
            Property.address.ilike(term)
        ))

    type_filter = request.args.get('type')
    if type_filter:
        query = query.filter(Property.property_type.ilike(type_filter))

    properties = query.order_by(Property.property_name).all()

    result = []
    for p in properties:
        data = p.to_dict()
        data['total_units'] = len(p.units)
        data['occupied_units'] = sum(1 for u in p.units if u.status == 'OCCUPIED')
        data['vacant_units'] = sum(1 for u in p.units if u.status == 'VACANT')
        data['titles'] = len(p.titles)
        result.append(data)

    return jsonify({'status': 'success', 'properties': result})


@properties_bp.route('/', methods=['POST'])
@login_required
def create_property():
    try:
        fields = _property_fields(request_data())
        new_property = Property(**fields)
        db.session.add(new_property)
        db.session.commit()
    except ValueError as e:
        return jsonify({'status': 'error', 'message': str(e)}), 400
    except IntegrityError:
        db.session.rollback()
        return jsonify({'status': 'error', 'message': 'Property code already exists'}), 400

    log_audit('CREATE', 'PROPERTY', new_property.id, changes=new_property.to_dict())
    return jsonify({'status': 'success', 'property': new_property.to_dict()}), 201


@properties_bp.route('/<int:id>')
@login_required
def property_details(id):
    prop = Property.query.get_or_404(id)

    titles = []
    all_taxes = []
    for title in prop.titles:
        data = title.to_dict()
        data['taxes'] = [tax_to_dict(t) for t in title.taxes]
        all_taxes.extend(title.taxes)
        titles.append(data)

    return jsonify({
        'status': 'success',
        'property': prop.to_dict(),
        'units': [u.to_dict() for u in sorted(prop.units, key=lambda u: u.unit_number)],
        'titles': titles,
        'tax_summary': bucket_taxes((t.due_date, t.is_paid, t.tax_amount) for t in all_taxes),
    })


@properties_bp.route('/<int:id>', methods=['PUT', 'POST'])
@login_required
def update_property(id):
    prop = Property.query.get_or_404(id)
    try:
        changes = diff_fields(prop, _property_fields(request_data()), PROPERTY_FIELDS)
        db.session.commit()
    except ValueError as e:
        return jsonify({'status': 'error', 'message': str(e)}), 400
    except IntegrityError:
        db.session.rollback()
        return jsonify({'status': 'error', 'message': 'Property code already exists'}), 400

    if changes:
        log_audit('UPDATE', 'PROPERTY', prop.id, changes=changes)
    return jsonify({'status': 'success', 'property': prop.to_dict()})


@properties_bp.route('/<int:id>', methods=['DELETE'])
@login_required
def delete_property(id):
    prop = Property.query.get_or_404(id)
    if prop.units or prop.titles:
        return jsonify({'status': 'error',
                        'message': 'Cannot delete a property that still has units or titles.'}), 400

    name = prop.property_name
    db.session.delete(prop)
    db.session.commit()
    log_audit('DELETE', 'PROPERTY', id, changes={'property_name': name})
    return jsonify({'status': 'success', 'message': f'Property {name} deleted'})


# Titles

@properties_bp.route('/<int:id>/titles')
@login_required
def list_titles(id):
    prop = Property.query.get_or_404(id)
    return jsonify({'status': 'success', 'titles': [t.to_dict() for t in prop.titles]})


@properties_bp.route('/<int:id>/titles', methods=['POST'])
@login_required
def create_title(id):
    prop = Property.query.get_or_404(id)
    data = request_data()
    try:
        fields = {
            'title_no': require_text(data, 'title_no', 'Title number'),
            'lot_no': require_text(data, 'lot_no', 'Lot number'),
            'lot_area': parse_float(data.get('lot_area'), 'lot_area'),
            'registered_owner': require_text(data, 'registered_owner', 'Registered owner'),
            'is_encumbered': parse_bool(data.get('is_encumbered', False)),
            'encumbrance_details': (data.get('encumbrance_details') or '').strip() or None,
        }
        if fields['lot_area'] <= 0:
            raise ValueError("Lot area must be greater than 0")
    except ValueError as e:
        return jsonify({'status': 'error', 'message': str(e)}), 400

    if PropertyTitle.query.filter_by(title_no=fields['title_no']).first():
        return jsonify({'status': 'error', 'message': 'Title number already exists'}), 400

    title = PropertyTitle(property_id=prop.id, **fields)
    db.session.add(title)
    db.session.commit()
    log_audit('CREATE', 'PROPERTY_TITLE', title.id, changes=title.to_dict())
    return jsonify({'status': 'success', 'title': title.to_dict()}), 201


@properties_bp.route('/titles/<int:title_id>', methods=['DELETE'])
@login_required
def delete_title(title_id):
    title = PropertyTitle.query.get_or_404(title_id)
    if title.taxes:
        return jsonify({'status': 'error', 'message': 'Delete the tax records of this title first.'}), 400

    Unit.query.filter_by(property_title_id=title.id).update({'property_title_id': None})
    title_no = title.title_no
    db.session.delete(title)
    db.session.commit()
    log_audit('DELETE', 'PROPERTY_TITLE', title_id, changes={'title_no': title_no})
    return jsonify({'status': 'success', 'message': f'Title {title_no} deleted'})


# Taxes

@properties_bp.route('/titles/<int:title_id>/taxes', methods=['POST'])
@login_required
def create_tax(title_id):
    title = PropertyTitle.query.get_or_404(title_id)
    data = request_data()
    try:
        fields = _tax_fields(data)
    except ValueError as e:
        return jsonify({'status': 'error', 'message': str(e)}), 400

    try:
        tax = PropertyTax(property_title_id=title.id,
                          marked_as_paid_by=(data.get('marked_as_paid_by') or '').strip() or None,
                          **fields)
        db.session.add(tax)
        db.session.flush()
        notify_all_users(
            'Property Tax Record Added',
            f"Property tax record for {_tax_label(tax)} has been added by {actor_name()}",
            type='TAX', entity_type='PROPERTY_TAX', entity_id=tax.id,
            action_url=f"/properties/{title.property_id}"
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Error creating property tax for title %s", title_id)
        return jsonify({'status': 'error', 'message': 'Failed to create property tax record. Please try again.'}), 500

    log_audit('CREATE', 'PROPERTY_TAX', tax.id, changes=tax.to_dict())
    return jsonify({'status': 'success', 'tax': tax_to_dict(tax)}), 201


@properties_bp.route('/taxes/<int:tax_id>', methods=['PUT', 'POST'])
@login_required
def update_tax(tax_id):
    tax = PropertyTax.query.get_or_404(tax_id)
    data = request_data()
    try:
        fields = _tax_fields(data)
    except ValueError as e:
        return jsonify({'status': 'error', 'message': str(e)}), 400

    if 'is_paid' in data:
        fields['is_paid'] = parse_bool(data['is_paid'])
        if fields['is_paid'] and not tax.is_paid:
            fields['paid_date'] = datetime.utcnow()
            fields['marked_as_paid_by'] = actor_name()
        elif not fields['is_paid']:
            fields['paid_date'] = None
            fields['marked_as_paid_by'] = None

    try:
        changes = diff_fields(tax, fields, TAX_FIELDS + ['is_paid', 'paid_date', 'marked_as_paid_by'])
        notify_all_users(
            'Property Tax Record Updated',
            f"Property tax record for {_tax_label(tax)} has been updated by {actor_name()}",
            type='TAX', entity_type='PROPERTY_TAX', entity_id=tax.id,
            action_url=f"/properties/{tax.property_title.property_id}"
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Error updating property tax %s", tax_id)
        return jsonify({'status': 'error', 'message': 'Failed to update property tax record. Please try again.'}), 500

    log_audit('UPDATE', 'PROPERTY_TAX', tax.id, changes=changes)
    return jsonify({'status': 'success', 'tax': tax_to_dict(tax)})


@properties_bp.route('/taxes/<int:tax_id>', methods=['DELETE'])
@login_required
def delete_tax(tax_id):
    tax = PropertyTax.query.get_or_404(tax_id)
    label = _tax_label(tax)
    property_id = tax.property_title.property_id

    try:
        db.session.delete(tax)
        notify_all_users(
            'Property Tax Record Deleted',
            f"Property tax record for {label} has been deleted by {actor_name()}",
            type='TAX', priority='HIGH', entity_type='PROPERTY_TAX', entity_id=tax_id,
            action_url=f"/properties/{property_id}"
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Error deleting property tax %s", tax_id)
        return jsonify({'status': 'error', 'message': 'Failed to delete property tax record. Please try again.'}), 500

    log_audit('DELETE', 'PROPERTY_TAX', tax_id, changes={'record': label})
    return jsonify({'status': 'success', 'message': f'Tax record {label} deleted'})


@properties_bp.route('/taxes/<int:tax_id>/status', methods=['POST'])
@login_required
def update_tax_status(tax_id):
    tax = PropertyTax.query.get_or_404(tax_id)
    data = request_data()
    if 'is_paid' not in data:
        return jsonify({'status': 'error', 'message': 'is_paid is required'}), 400

    is_paid = parse_bool(data['is_paid'])
    tax.is_paid = is_paid
    tax.paid_date = datetime.utcnow() if is_paid else None
    tax.marked_as_paid_by = current_user.full_name if is_paid else None
    db.session.commit()

    log_audit('UPDATE', 'PROPERTY_TAX', tax.id,
              changes={'is_paid': is_paid, 'paid_date': tax.paid_date.isoformat() if tax.paid_date else None})
    return jsonify({'status': 'success', 'tax': tax_to_dict(tax)})


# Units

def _floor_rows(floors):
    """Validates a floor breakdown. Returns (rows, total_area, total_rent)."""
    if not isinstance(floors, list):
        raise ValueError("floors must be a list")
    rows = []
    for floor in floors:
        if not isinstance(floor, dict):
            raise ValueError("Each floor must be an object")
        floor_type = floor.get('floor_type')
        if floor_type not in FLOOR_TYPES:
            raise ValueError(f"Floor type must be one of {', '.join(FLOOR_TYPES)}")
        area = parse_float(floor.get('area'), 'area')
        rate = parse_float(floor.get('rate'), 'rate', required=False)
        rent = parse_float(floor.get('rent'), 'rent', required=False, default=area * rate)
        if area <= 0:
            raise ValueError("Floor area must be greater than 0")
        if rate < 0 or rent < 0:
            raise ValueError("Rate and rent cannot be negative")
        rows.append({'floor_type': floor_type, 'area': area, 'rate': rate, 'rent': rent})
    total_area = round(sum(r['area'] for r in rows), 2)
    total_rent = round(sum(r['rent'] for r in rows), 2)
    return rows, total_area, total_rent


def _has_active_lease(unit):
    return any(lu.lease.status == 'ACTIVE' for lu in unit.lease_units)


def _notify_unit(title, message, unit_id):
    create_notification(current_user.id, title, message, type='UNIT',
                        entity_type='UNIT', entity_id=unit_id)


@properties_bp.route('/units')
@login_required
def list_units():
    query = Unit.query.join(Property)

    status = request.args.get('status')
    if status:
        query = query.filter(Unit.status == status.upper())

    property_id = request.args.get('property_id', type=int)
    if property_id:
        query = query.filter(Unit.property_id == property_id)

    search = request.args.get('search')
    if search:
        term = f"%{search}%"
        query = query.filter(db.or_(
            Unit.unit_number.ilike(term),
            Property.property_name.ilike(term)
        ))

    units = query.order_by(Property.property_name, Unit.unit_number).all()
    return jsonify({'status': 'success', 'units': [u.to_dict() for u in units]})


@properties_bp.route('/units/available')
@login_required
def available_units():
    units = Unit.query.join(Property).filter(Unit.status == 'VACANT') \
        .order_by(Property.property_name, Unit.unit_number).all()
    return jsonify({'status': 'success', 'units': [u.to_dict() for u in units]})


@properties_bp.route('/units', methods=['POST'])
@login_required
def create_unit():
    data = request_data()
    try:
        property_id = parse_int(data.get('property_id'), 'property_id')
        unit_number = require_text(data, 'unit_number', 'Unit number')
        title_id = parse_int(data.get('property_title_id'), 'property_title_id', required=False)
        status = (data.get('status') or 'VACANT').upper()
        if status not in UNIT_STATUSES:
            raise ValueError(f"Status must be one of {', '.join(UNIT_STATUSES)}")
        floors, total_area, total_rent = _floor_rows(data.get('floors') or [])
        if not floors:
            raise ValueError("At least one floor is required")
    except ValueError as e:
        return jsonify({'status': 'error', 'message': str(e)}), 400

    prop = Property.query.get_or_404(property_id)
    if title_id and not PropertyTitle.query.filter_by(id=title_id, property_id=prop.id).first():
        return jsonify({'status': 'error', 'message': 'Title does not belong to this property'}), 400

    try:
        unit = Unit(property_id=prop.id, property_title_id=title_id, unit_number=unit_number,
                    status=status, total_area=total_area, total_rent=total_rent)
        unit.floors = [UnitFloor(**f) for f in floors]
        db.session.add(unit)
        db.session.flush()
        _notify_unit('New Unit Added', f"Unit {unit.unit_number} has been added to {prop.property_name}.", unit.id)
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        return jsonify({'status': 'error',
                        'message': f'Unit {unit_number} already exists in {prop.property_name}'}), 400

    log_audit('CREATE', 'UNIT', unit.id, changes=unit.to_dict())
    return jsonify({'status': 'success', 'unit': unit.to_dict()}), 201


@properties_bp.route('/units/<int:unit_id>')
@login_required
def unit_details(unit_id):
    unit = Unit.query.get_or_404(unit_id)
    data = unit.to_dict()
    data['leases'] = [lu.lease.to_dict() for lu in
                      sorted(unit.lease_units, key=lambda lu: lu.lease.start_date, reverse=True)]
    return jsonify({'status': 'success', 'unit': data})


@properties_bp.route('/units/<int:unit_id>', methods=['PUT', 'POST'])
@login_required
def update_unit(unit_id):
    unit = Unit.query.get_or_404(unit_id)
    data = request_data()
    fields = {}
    try:
        if 'unit_number' in data:
            fields['unit_number'] = require_text(data, 'unit_number', 'Unit number')
        if 'status' in data:
            fields['status'] = str(data['status']).upper()
            if fields['status'] not in UNIT_STATUSES:
                raise ValueError(f"Status must be one of {', '.join(UNIT_STATUSES)}")
        if 'property_title_id' in data:
            fields['property_title_id'] = parse_int(data['property_title_id'], 'property_title_id',
                                                    required=False)
    except ValueError as e:
        return jsonify({'status': 'error', 'message': str(e)}), 400

    try:
        changes = diff_fields(unit, fields, ['unit_number', 'status', 'property_title_id'])
        if changes:
            _notify_unit('Unit Updated',
                         f"Unit {unit.unit_number} in {unit.property.property_name} has been updated.", unit.id)
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        return jsonify({'status': 'error', 'message': 'Unit number already exists in this property'}), 400

    if changes:
        log_audit('UPDATE', 'UNIT', unit.id, changes=changes)
    return jsonify({'status': 'success', 'unit': unit.to_dict()})


@properties_bp.route('/units/<int:unit_id>/floors', methods=['PUT', 'POST'])
@login_required
def replace_floors(unit_id):
    unit = Unit.query.get_or_404(unit_id)
    try:
        floors, total_area, total_rent = _floor_rows(request_data().get('floors') or [])
    except ValueError as e:
        return jsonify({'status': 'error', 'message': str(e)}), 400

    changes = {
        'total_area': {'from': unit.total_area, 'to': total_area},
        'total_rent': {'from': unit.total_rent, 'to': total_rent},
    }
    unit.floors = [UnitFloor(**f) for f in floors]
    unit.total_area = total_area
    unit.total_rent = total_rent
    _notify_unit('Unit Updated',
                 f"Unit {unit.unit_number} in {unit.property.property_name} has been updated.", unit.id)
    db.session.commit()

    log_audit('UPDATE', 'UNIT', unit.id, changes=changes, extra={'floors': len(floors)})
    return jsonify({'status': 'success', 'unit': unit.to_dict()})


def _delete_unit(unit):
    _notify_unit('Unit Deleted',
                 f"Unit {unit.unit_number} has been deleted from {unit.property.property_name}.", unit.id)
    for lu in list(unit.lease_units):
        db.session.delete(lu)
    db.session.delete(unit)


@properties_bp.route('/units/<int:unit_id>', methods=['DELETE'])
@login_required
def delete_unit(unit_id):
    unit = Unit.query.get_or_404(unit_id)
    if _has_active_lease(unit):
        return jsonify({'status': 'error', 'message': 'Cannot delete a unit with an active lease.'}), 400

    label = f"{unit.property.property_name} {unit.unit_number}"
    _delete_unit(unit)
    db.session.commit()
    log_audit('DELETE', 'UNIT', unit_id, changes={'unit': label})
    return jsonify({'status': 'success', 'message': f'Unit {label} deleted'})


@properties_bp.route('/units/bulk-delete', methods=['POST'])
@login_required
def bulk_delete_units():
    ids = request_data().get('ids') or []
    if not isinstance(ids, list) or not ids:
        return jsonify({'status': 'error', 'message': 'No units selected'}), 400

    deleted, skipped, labels = [], [], {}
    for unit in Unit.query.filter(Unit.id.in_(ids)).all():
        if _has_active_lease(unit):
            skipped.append(unit.id)
            continue
        deleted.append(unit.id)
        labels[unit.id] = f"{unit.property.property_name} {unit.unit_number}"
        _delete_unit(unit)
    db.session.commit()

    for unit_id in deleted:
        log_audit('DELETE', 'UNIT', unit_id, changes={'unit': labels[unit_id]}, extra={'bulk': True})
    return jsonify({
        'status': 'success',
        'message': f'Deleted {len(deleted)} units',
        'deleted': deleted,
        'skipped': skipped,
    })
