from datetime import date, datetime, time

from dateutil.relativedelta import relativedelta
from flask import Blueprint, request, jsonify
from flask_login import login_required

from models import Lease, Property, PropertyTax, Unit
from services import occupancy
from services.schedule import (days_until, days_text, urgency, years_between, next_anniversary,
                               within_months, bucket_taxes, URGENT_DAYS)
from utils import log_audit, json_safe, build_workbook, send_workbook

reports_bp = Blueprint('reports', __name__)

# Leases that never started do not count as occupancy
TIMELINE_LEASE_STATUSES = ['ACTIVE', 'EXPIRED', 'TERMINATED']
DEFAULT_LOOKAHEAD_MONTHS = 3


def unit_inputs(units, start=None, end=None):
    """Flattens Unit rows into the plain dicts the occupancy service works on."""
    rows = []
    for unit in units:
        leases = []
        for lu in unit.lease_units:
            lease = lu.lease
            if lease.status not in TIMELINE_LEASE_STATUSES:
                continue
            lease_end = lease.effective_end_date
            if start and end and not (lease.start_date <= end and lease_end >= start):
                continue
            leases.append((lease.start_date, lease_end, lease.tenant.display_name))
        rows.append({
            'id': unit.id,
            'unit_number': unit.unit_number,
            'property_name': unit.property.property_name,
            'total_area': unit.total_area or 0.0,
            'total_rent': unit.total_rent or 0.0,
            'status': unit.status,
            'created': unit.created_at.date() if unit.created_at else start,
            'leases': leases,
        })
    return rows


def _units_for_report(args, end=None):
    query = Unit.query.join(Property)
    property_id = args.get('property_id', type=int)
    if property_id:
        query = query.filter(Unit.property_id == property_id)
    if args.get('unit_status'):
        query = query.filter(Unit.status == args['unit_status'].upper())
    if end:
        query = query.filter(Unit.created_at <= datetime.combine(end, time.max))
    return query.order_by(Property.property_name, Unit.unit_number).all()


def _lookahead(args):
    months = args.get('months', DEFAULT_LOOKAHEAD_MONTHS, type=int)
    if months is None or months < 1:
        raise ValueError("months must be a positive integer")
    return months


def _lease_unit_row(lease, lu, today):
    tenant = lease.tenant
    return {
        'lease_id': lease.id,
        'tenant_name': tenant.contact_name or tenant.display_name,
        'company': tenant.company,
        'email': tenant.email,
        'phone': tenant.phone,
        'property_name': lu.unit.property.property_name,
        'unit_number': lu.unit.unit_number,
        'rent_amount': lu.rent_amount,
        'lease_start_date': lease.start_date.isoformat(),
        'lease_end_date': lease.end_date.isoformat(),
        'years_with_us': years_between(lease.start_date, today),
        'status': lease.status,
    }


def upcoming_renewals(months=DEFAULT_LOOKAHEAD_MONTHS, today=None):
    today = today or date.today()
    horizon = today + relativedelta(months=months)
    leases = Lease.query.filter(
        Lease.status == 'ACTIVE',
        Lease.end_date >= today,
        Lease.end_date <= horizon
    ).order_by(Lease.end_date.asc(), Lease.id.asc()).all()

    rows = []
    for lease in leases:
        days = days_until(lease.end_date, today)
        for lu in lease.lease_units:
            row = _lease_unit_row(lease, lu, today)
            row.update({
                'days_until_renewal': days,
                'days_text': days_text(days),
                'urgency': urgency(days),
            })
            rows.append(row)
    return rows


def upcoming_anniversaries(months=DEFAULT_LOOKAHEAD_MONTHS, today=None):
    today = today or date.today()

    rows = []
    for lease in Lease.query.filter(Lease.status == 'ACTIVE').all():
        anniversary = next_anniversary(lease.start_date, today)
        if not within_months(anniversary, months, today):
            continue
        days = days_until(anniversary, today)
        for lu in lease.lease_units:
            row = _lease_unit_row(lease, lu, today)
            row.update({
                'anniversary_date': anniversary.isoformat(),
                'days_until_anniversary': days,
                'days_text': days_text(days),
                'urgency': urgency(days),
            })
            rows.append(row)
    rows.sort(key=lambda r: (r['days_until_anniversary'], r['lease_id']))
    return rows


@reports_bp.route('/opportunity-loss')
@login_required
def opportunity_loss():
    try:
        start, end = occupancy.parse_date_range(request.args.get('date_range'))
        units = unit_inputs(_units_for_report(request.args, end), start, end)
        report = occupancy.build_report(units, start, end,
                                        vacancy_duration=request.args.get('vacancy_duration'))
    except ValueError as e:
        return jsonify({'status': 'error', 'message': str(e)}), 400

    return jsonify({'status': 'success', 'report': json_safe(report)})


@reports_bp.route('/opportunity-loss/simple')
@login_required
def opportunity_loss_simple():
    units = unit_inputs(_units_for_report(request.args))
    return jsonify({'status': 'success', 'report': occupancy.simple_loss(units)})


@reports_bp.route('/opportunity-loss/export')
@login_required
def export_opportunity_loss():
    try:
        start, end = occupancy.parse_date_range(request.args.get('date_range'))
        units = unit_inputs(_units_for_report(request.args, end), start, end)
        report = occupancy.build_report(units, start, end,
                                        vacancy_duration=request.args.get('vacancy_duration'))
    except ValueError as e:
        return jsonify({'status': 'error', 'message': str(e)}), 400

    summary = report['summary']
    summary_rows = [
        ['Analysis Period', f"{start.isoformat()} to {end.isoformat()}"],
        ['Total Vacant Units', summary['total_vacant_units']],
        ['Total Vacant Area (sqm)', summary['total_vacant_area']],
        ['Monthly Opportunity Loss', summary['total_monthly_loss']],
        ['Annual Opportunity Loss', summary['total_annual_loss']],
        ['Average Vacancy (days)', summary['avg_vacancy_duration']],
        ['Longest Vacancy (days)', summary['longest_vacancy']],
        ['Occupancy Rate (%)', summary['occupancy_rate']],
    ]
    vacant_rows = [[
        u['property_name'], u['unit_number'], u['unit_area'], u['rent_amount'],
        u['vacancy_start_date'].isoformat(), u['vacancy_duration'],
        occupancy.vacancy_bucket(u['vacancy_duration']), u['monthly_loss'], u['annual_loss'],
    ] for u in report['vacant_units']]
    history_rows = [[
        h['property_name'], h['unit_number'], h['rent_amount'],
        h['yearly_stats']['total_occupied_days'], h['yearly_stats']['total_vacant_days'],
        h['yearly_stats']['occupancy_rate'], h['yearly_stats']['lost_revenue'],
    ] for h in report['occupancy_history']]
    trend_rows = [[t['month'], t['vacant_units'], t['vacant_area'], t['loss']]
                  for t in report['monthly_trends']]

    output = build_workbook([
        ('Summary', ['Metric', 'Value'], summary_rows),
        ('Vacant Units', ['Property', 'Unit', 'Area', 'Monthly Rent', 'Vacant Since',
                          'Days Vacant', 'Range', 'Monthly Loss', 'Annual Loss'], vacant_rows),
        ('Occupancy History', ['Property', 'Unit', 'Monthly Rent', 'Occupied Days',
                               'Vacant Days', 'Occupancy Rate (%)', 'Lost Revenue'], history_rows),
        ('Monthly Trends', ['Month', 'Vacant Units', 'Vacant Area', 'Loss'], trend_rows),
    ])

    log_audit('EXPORT', 'REPORT', 'opportunity-loss',
              extra={'date_range': f"{start.isoformat()} to {end.isoformat()}"})
    filename = f"opportunity_loss_{datetime.utcnow().strftime('%Y%m%d_%H%M%S')}.xlsx"
    return send_workbook(output, filename)


@reports_bp.route('/renewals')
@login_required
def renewals():
    try:
        months = _lookahead(request.args)
    except ValueError as e:
        return jsonify({'status': 'error', 'message': str(e)}), 400
    return jsonify({'status': 'success', 'months': months, 'renewals': upcoming_renewals(months)})


@reports_bp.route('/anniversaries')
@login_required
def anniversaries():
    try:
        months = _lookahead(request.args)
    except ValueError as e:
        return jsonify({'status': 'error', 'message': str(e)}), 400
    return jsonify({'status': 'success', 'months': months, 'anniversaries': upcoming_anniversaries(months)})


@reports_bp.route('/summary')
@login_required
def reports_summary():
    renewal_rows = upcoming_renewals()
    anniversary_rows = upcoming_anniversaries()
    return jsonify({
        'status': 'success',
        'total_renewals': len(renewal_rows),
        'total_anniversaries': len(anniversary_rows),
        'urgent_renewals': sum(1 for r in renewal_rows if r['days_until_renewal'] <= URGENT_DAYS),
        'urgent_anniversaries': sum(1 for a in anniversary_rows if a['days_until_anniversary'] <= URGENT_DAYS),
        'next_renewal': renewal_rows[0] if renewal_rows else None,
        'next_anniversary': anniversary_rows[0] if anniversary_rows else None,
    })


@reports_bp.route('/taxes')
@login_required
def tax_report():
    taxes = PropertyTax.query.all()
    return jsonify({
        'status': 'success',
        'buckets': bucket_taxes((t.due_date, t.is_paid, t.tax_amount) for t in taxes),
        'total_records': len(taxes),
    })
