"""
Days-until helpers shared by the tax, renewal, anniversary and PDC views.
"""
from datetime import date, datetime

from dateutil.relativedelta import relativedelta

TAX_BUCKETS = ['paid', 'overdue', 'due_30', 'due_60', 'due_90', 'later']
URGENT_DAYS = 30
PDC_STATUSES = ['Open', 'Deposited', 'Returned', 'Bounced', 'Cancelled']


def _to_date(value):
    if isinstance(value, datetime):
        return value.date()
    return value


def days_until(target, today=None):
    """Signed whole days from today to target (negative once passed)."""
    today = _to_date(today) or date.today()
    return (_to_date(target) - today).days


def days_text(days):
    if days < 0:
        n = abs(days)
        return f"Overdue by {n} day{'s' if n != 1 else ''}"
    if days == 0:
        return 'Today'
    if days == 1:
        return 'Tomorrow'
    return f"In {days} days"


def urgency(days):
    if days < 0:
        return 'overdue'
    if days <= 7:
        return 'critical'
    if days <= 30:
        return 'urgent'
    if days <= 60:
        return 'upcoming'
    return 'normal'


def years_between(start, today=None):
    today = _to_date(today) or date.today()
    return max(relativedelta(today, _to_date(start)).years, 0)


def _replace_year(d, year):
    try:
        return d.replace(year=year)
    except ValueError:
        # Feb 29 in a common year
        return d.replace(year=year, day=28)


def next_anniversary(start, today=None):
    """This year's anniversary of start, or next year's if it already passed."""
    today = _to_date(today) or date.today()
    start = _to_date(start)

    anniversary = _replace_year(start, today.year)
    if anniversary < today:
        anniversary = _replace_year(start, today.year + 1)
    while anniversary <= start:
        anniversary = _replace_year(start, anniversary.year + 1)
    return anniversary


def within_months(target, months, today=None):
    today = _to_date(today) or date.today()
    return today <= _to_date(target) <= today + relativedelta(months=months)


def tax_bucket(due_date, is_paid, today=None):
    if is_paid:
        return 'paid'
    days = days_until(due_date, today)
    if days < 0:
        return 'overdue'
    if days <= 30:
        return 'due_30'
    if days <= 60:
        return 'due_60'
    if days <= 90:
        return 'due_90'
    return 'later'


def bucket_taxes(taxes, today=None):
    """
    taxes: iterable of (due_date, is_paid, amount).
    Returns {bucket: {'count', 'amount'}} for every bucket.
    """
    buckets = {name: {'count': 0, 'amount': 0.0} for name in TAX_BUCKETS}
    for due_date, is_paid, amount in taxes:
        b = buckets[tax_bucket(due_date, is_paid, today)]
        b['count'] += 1
        b['amount'] = round(b['amount'] + (amount or 0.0), 2)
    return buckets


def pdc_stats(pdcs, today=None):
    """
    pdcs: iterable of (amount, status, due_date).
    Open checks due within the next 30 days are also counted as due soon.
    """
    stats = {
        'total': 0.0,
        'count': 0,
        'by_status': {s: {'count': 0, 'amount': 0.0} for s in PDC_STATUSES},
        'due_soon': {'count': 0, 'amount': 0.0},
    }
    for amount, status, due_date in pdcs:
        amount = amount or 0.0
        stats['total'] = round(stats['total'] + amount, 2)
        stats['count'] += 1
        bucket = stats['by_status'].setdefault(status, {'count': 0, 'amount': 0.0})
        bucket['count'] += 1
        bucket['amount'] = round(bucket['amount'] + amount, 2)

        if status == 'Open' and 0 <= days_until(due_date, today) <= URGENT_DAYS:
            stats['due_soon']['count'] += 1
            stats['due_soon']['amount'] = round(stats['due_soon']['amount'] + amount, 2)
    return stats
