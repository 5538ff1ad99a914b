from datetime import date

from dateutil.relativedelta import relativedelta
from flask import Blueprint, request, jsonify
from flask_login import login_required, current_user
from sqlalchemy import func

from models import db, Property, Unit, Tenant, Lease, PDC, PropertyTax, Notification
from routes.reports import unit_inputs
from services import occupancy
from services.schedule import days_until
from utils import parse_bool

dashboard_bp = Blueprint('dashboard', __name__)

TREND_MONTHS = 6


def occupancy_trend(today=None, months=TREND_MONTHS):
    """Occupancy rate per calendar month for the last few months, current month included."""
    today = today or date.today()
    windows = occupancy.month_windows(today.replace(day=1) - relativedelta(months=months - 1), today)
    start, end = windows[0][1], windows[-1][2]

    units = unit_inputs(Unit.query.all(), start, end)
    trend = []
    for label, month_start, month_end in windows:
        existing = [u for u in units if u['created'] <= month_end]
        occupied = sum(
            1 for u in existing
            if any(s <= month_end and e >= month_start for s, e, _ in u['leases'])
        )
        rate = round(occupied / len(existing) * 100, 1) if existing else 0.0
        trend.append({'month': label, 'occupied_units': occupied, 'total_units': len(existing), 'rate': rate})
    return trend


def get_dashboard_metrics(today=None):
    today = today or date.today()

    total_units = Unit.query.count()
    occupied_units = Unit.query.filter_by(status='OCCUPIED').count()
    vacant_units = Unit.query.filter_by(status='VACANT').count()

    rent_roll = db.session.query(func.sum(Lease.total_rent_amount)) \
        .filter(Lease.status == 'ACTIVE').scalar() or 0.0

    open_pdcs = PDC.query.filter_by(status='Open').all()
    overdue_taxes = [t for t in PropertyTax.query.filter_by(is_paid=False).all()
                     if days_until(t.due_date, today) < 0]

    return {
        'totals': {
            'properties': Property.query.count(),
            'units': total_units,
            'occupied_units': occupied_units,
            'vacant_units': vacant_units,
            'occupancy_rate': round(occupied_units / total_units * 100, 1) if total_units else 0.0,
            'tenants': Tenant.query.count(),
            'active_tenants': Tenant.query.filter_by(status='ACTIVE').count(),
            'leases': Lease.query.count(),
            'active_leases': Lease.query.filter_by(status='ACTIVE').count(),
        },
        'monthly_rent_roll': round(float(rent_roll), 2),
        'open_pdcs': {
            'count': len(open_pdcs),
            'amount': round(sum(p.amount for p in open_pdcs), 2),
        },
        'overdue_taxes': {
            'count': len(overdue_taxes),
            'amount': round(sum(t.tax_amount for t in overdue_taxes), 2),
        },
        'occupancy_trend': occupancy_trend(today),
    }


@dashboard_bp.route('/dashboard')
@login_required
def index():
    return jsonify({'status': 'success', 'metrics': get_dashboard_metrics()})


@dashboard_bp.route('/notifications')
@login_required
def list_notifications():
    query = Notification.query.filter_by(user_id=current_user.id)
    if parse_bool(request.args.get('unread', False)):
        query = query.filter_by(is_read=False)

    notifications = query.order_by(Notification.created_at.desc(), Notification.id.desc()).limit(100).all()
    unread = Notification.query.filter_by(user_id=current_user.id, is_read=False).count()
    return jsonify({
        'status': 'success',
        'notifications': [n.to_dict() for n in notifications],
        'unread_count': unread,
    })


@dashboard_bp.route('/notifications/<int:id>/read', methods=['POST'])
@login_required
def mark_notification_read(id):
    notification = Notification.query.filter_by(id=id, user_id=current_user.id).first_or_404()
    notification.is_read = True
    db.session.commit()
    return jsonify({'status': 'success', 'notification': notification.to_dict()})


@dashboard_bp.route('/notifications/read-all', methods=['POST'])
@login_required
def mark_all_notifications_read():
    updated = Notification.query.filter_by(user_id=current_user.id, is_read=False) \
        .update({'is_read': True})
    db.session.commit()
    return jsonify({'status': 'success', 'updated': updated})
