"""
Opportunity-loss and occupancy analysis.

Pure functions over plain values so the report can be computed (and
tested) without a database. Each unit is described by a dict:

    {
        'id', 'unit_number', 'property_name',
        'total_area', 'total_rent', 'status',
        'created': date,
        'leases': [(start_date, end_date, tenant_name), ...],
    }

All periods are inclusive on both ends.
"""
from datetime import date, timedelta

import pandas as pd

# Average days in a month, used to turn a monthly rent into a daily rate
DAYS_PER_MONTH = 30.44

VACANCY_BUCKETS = [
    (0, 30, '0-30 days'),
    (31, 60, '31-60 days'),
    (61, 90, '61-90 days'),
    (91, 180, '91-180 days'),
    (181, None, '181+ days'),
]

ONE_DAY = timedelta(days=1)


def parse_date_range(value, today=None):
    """
    Parses "YYYY-MM-DD to YYYY-MM-DD". Empty means the current calendar year.
    """
    today = today or date.today()
    if not value:
        return date(today.year, 1, 1), date(today.year, 12, 31)

    parts = [p.strip() for p in value.split(' to ')]
    if len(parts) != 2:
        raise ValueError("date_range must look like 'YYYY-MM-DD to YYYY-MM-DD'")
    try:
        start = date.fromisoformat(parts[0])
        end = date.fromisoformat(parts[1])
    except ValueError:
        raise ValueError("date_range contains an invalid date")
    if end < start:
        raise ValueError("date_range end is before its start")
    return start, end


def parse_duration_range(value):
    """'31-60' -> (31, 60); '181+' -> (181, None)."""
    value = (value or '').strip()
    try:
        if value.endswith('+'):
            return int(value[:-1]), None
        low, high = value.split('-')
        low, high = int(low), int(high)
    except ValueError:
        raise ValueError(f"Invalid vacancy_duration: {value!r}")
    if high < low:
        raise ValueError(f"Invalid vacancy_duration: {value!r}")
    return low, high


def _as_date(value):
    if hasattr(value, 'date') and callable(value.date):
        return value.date()
    return value


def build_timeline(unit_created, leases, start, end):
    """
    Reconstructs occupancy and vacancy periods for one unit inside [start, end].

    Returns (occupancy_periods, vacancy_periods). Overlapping leases are
    counted once; time before the unit existed is neither occupied nor vacant.
    """
    cursor = max(_as_date(unit_created), start)
    occupancy = []
    vacancy = []

    for lease_start, lease_end, tenant_name in sorted(leases, key=lambda l: l[0]):
        if lease_start > end:
            break

        if lease_start > cursor:
            vacancy.append({
                'start_date': cursor,
                'end_date': lease_start - ONE_DAY,
                'duration': (lease_start - cursor).days,
            })

        effective_start = max(lease_start, cursor)
        effective_end = min(lease_end, end)
        if effective_end >= effective_start:
            occupancy.append({
                'start_date': effective_start,
                'end_date': effective_end,
                'duration': (effective_end - effective_start).days + 1,
                'tenant_name': tenant_name,
            })

        cursor = max(cursor, lease_end + ONE_DAY)

    if cursor <= end:
        vacancy.append({
            'start_date': cursor,
            'end_date': end,
            'duration': (end - cursor).days + 1,
        })

    return occupancy, vacancy


def unit_stats(occupancy, vacancy, start, end, monthly_rent):
    total_occupied = sum(p['duration'] for p in occupancy)
    total_vacant = sum(p['duration'] for p in vacancy)
    total_days = (end - start).days + 1
    rate = (total_occupied / total_days * 100) if total_days > 0 else 0.0
    daily_rent = (monthly_rent or 0.0) / DAYS_PER_MONTH

    return {
        'total_occupied_days': total_occupied,
        'total_vacant_days': total_vacant,
        'occupancy_rate': round(rate, 2),
        'lost_revenue': round(total_vacant * daily_rent, 2),
    }


def vacancy_bucket(days):
    for low, high, label in VACANCY_BUCKETS:
        if days >= low and (high is None or days <= high):
            return label
    # Negative durations only come from vacancies that start in the future
    return VACANCY_BUCKETS[0][2]


def vacancy_distribution(durations):
    counts = {label: 0 for _, _, label in VACANCY_BUCKETS}
    for days in durations:
        counts[vacancy_bucket(days)] += 1
    return [{'range': label, 'count': counts[label]} for _, _, label in VACANCY_BUCKETS]


def month_windows(start, end):
    """(label, month_start, month_end) for every calendar month touching [start, end]."""
    windows = []
    for ts in pd.date_range(start=start.replace(day=1), end=end, freq='MS'):
        month_end = (ts + pd.offsets.MonthEnd(0)).date()
        windows.append((ts.strftime('%b %Y'), ts.date(), month_end))
    return windows


def monthly_trends(analyses, start, end):
    """
    analyses: list of (unit, vacancy_periods). A unit counts toward a month
    when any of its vacancy periods overlaps that month.
    """
    trends = []
    for label, month_start, month_end in month_windows(start, end):
        loss = 0.0
        vacant_count = 0
        vacant_area = 0.0
        for unit, vacancy in analyses:
            if any(p['start_date'] <= month_end and p['end_date'] >= month_start for p in vacancy):
                loss += unit.get('total_rent') or 0.0
                vacant_count += 1
                vacant_area += unit.get('total_area') or 0.0
        trends.append({
            'month': label,
            'loss': round(loss, 2),
            'vacant_units': vacant_count,
            'vacant_area': round(vacant_area, 2),
        })
    return trends


def build_report(units, start, end, today=None, vacancy_duration=None):
    """Full opportunity-loss report for the analysis window [start, end]."""
    today = today or date.today()
    duration_range = parse_duration_range(vacancy_duration) if vacancy_duration else None

    analysed = []
    for unit in units:
        occupancy, vacancy = build_timeline(unit['created'], unit.get('leases', []), start, end)
        stats = unit_stats(occupancy, vacancy, start, end, unit.get('total_rent'))
        analysed.append((unit, occupancy, vacancy, stats))

    vacant_units = []
    for unit, occupancy, vacancy, stats in analysed:
        if unit.get('status') != 'VACANT':
            continue
        vacancy_start = vacancy[-1]['start_date'] if vacancy else _as_date(unit['created'])
        duration = (today - vacancy_start).days
        monthly_loss = unit.get('total_rent') or 0.0
        vacant_units.append({
            'id': unit['id'],
            'unit_number': unit['unit_number'],
            'property_name': unit.get('property_name'),
            'unit_area': unit.get('total_area') or 0.0,
            'rent_amount': monthly_loss,
            'vacancy_start_date': vacancy_start,
            'vacancy_duration': duration,
            'monthly_loss': monthly_loss,
            'annual_loss': monthly_loss * 12,
            'status': unit['status'],
        })

    if duration_range:
        low, high = duration_range
        vacant_units = [
            u for u in vacant_units
            if u['vacancy_duration'] >= low and (high is None or u['vacancy_duration'] <= high)
        ]

    total_vacant = len(vacant_units)
    total_monthly_loss = sum(u['monthly_loss'] for u in vacant_units)
    durations = [u['vacancy_duration'] for u in vacant_units]
    total_units = len(analysed)

    summary = {
        'total_monthly_loss': round(total_monthly_loss, 2),
        'total_annual_loss': round(total_monthly_loss * 12, 2),
        'total_vacant_units': total_vacant,
        'total_vacant_area': round(sum(u['unit_area'] for u in vacant_units), 2),
        'avg_vacancy_duration': round(sum(durations) / total_vacant) if total_vacant else 0,
        'longest_vacancy': max(durations + [0]),
        'occupancy_rate': round((total_units - total_vacant) / total_units * 100, 2) if total_units else 0.0,
    }

    occupancy_history = [{
        'id': unit['id'],
        'unit_number': unit['unit_number'],
        'property_name': unit.get('property_name'),
        'unit_area': unit.get('total_area') or 0.0,
        'rent_amount': unit.get('total_rent') or 0.0,
        'occupancy_periods': occupancy,
        'vacancy_periods': vacancy,
        'yearly_stats': stats,
    } for unit, occupancy, vacancy, stats in analysed]

    return {
        'analysis_start': start,
        'analysis_end': end,
        'summary': summary,
        'monthly_trends': monthly_trends([(u, v) for u, _, v, _ in analysed], start, end),
        'vacancy_distribution': vacancy_distribution(durations),
        'vacant_units': vacant_units,
        'occupancy_history': occupancy_history,
    }


def simple_loss(units):
    """Snapshot of what currently vacant units cost per month and per year."""
    vacant = [u for u in units if u.get('status') == 'VACANT']
    details = [{
        'id': u['id'],
        'unit_number': u['unit_number'],
        'property_name': u.get('property_name'),
        'unit_area': u.get('total_area') or 0.0,
        'rent_amount': u.get('total_rent') or 0.0,
        'monthly_loss': u.get('total_rent') or 0.0,
        'annual_loss': (u.get('total_rent') or 0.0) * 12,
    } for u in vacant]

    monthly = sum(d['monthly_loss'] for d in details)
    return {
        'summary': {
            'total_vacant_units': len(details),
            'total_vacant_area': round(sum(d['unit_area'] for d in details), 2),
            'total_monthly_loss': round(monthly, 2),
            'total_annual_loss': round(monthly * 12, 2),
        },
        'details': details,
    }
