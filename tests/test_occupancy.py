from datetime import date

import pytest

from services.occupancy import (
    build_report,
    build_timeline,
    month_windows,
    parse_date_range,
    parse_duration_range,
    simple_loss,
    unit_stats,
    vacancy_bucket,
    vacancy_distribution,
)

YEAR_START = date(2024, 1, 1)
YEAR_END = date(2024, 12, 31)


def _unit(**overrides):
    unit = {
        'id': 1,
        'unit_number': '101',
        'property_name': 'Tower One',
        'total_area': 50.0,
        'total_rent': 10000.0,
        'status': 'VACANT',
        'created': YEAR_START,
        'leases': [],
    }
    unit.update(overrides)
    return unit


# --- build_timeline ---

def test_unit_without_leases_is_vacant_for_whole_window():
    occupancy, vacancy = build_timeline(YEAR_START, [], YEAR_START, YEAR_END)

    assert occupancy == []
    assert len(vacancy) == 1
    assert vacancy[0]['start_date'] == YEAR_START
    assert vacancy[0]['end_date'] == YEAR_END
    assert vacancy[0]['duration'] == 366


def test_lease_in_middle_of_window_splits_vacancy():
    leases = [(date(2024, 3, 1), date(2024, 8, 31), 'Acme')]
    occupancy, vacancy = build_timeline(YEAR_START, leases, YEAR_START, YEAR_END)

    assert [(p['start_date'], p['end_date'], p['duration']) for p in vacancy] == [
        (date(2024, 1, 1), date(2024, 2, 29), 60),
        (date(2024, 9, 1), date(2024, 12, 31), 122),
    ]
    assert occupancy == [{
        'start_date': date(2024, 3, 1),
        'end_date': date(2024, 8, 31),
        'duration': 184,
        'tenant_name': 'Acme',
    }]


def test_overlapping_leases_are_counted_once():
    leases = [
        (date(2024, 3, 1), date(2024, 9, 30), 'Second'),
        (date(2024, 1, 1), date(2024, 6, 30), 'First'),
    ]
    occupancy, vacancy = build_timeline(YEAR_START, leases, YEAR_START, YEAR_END)

    assert [p['tenant_name'] for p in occupancy] == ['First', 'Second']
    assert occupancy[1]['start_date'] == date(2024, 7, 1)
    total = sum(p['duration'] for p in occupancy) + sum(p['duration'] for p in vacancy)
    assert total == 366
    assert vacancy == [{'start_date': date(2024, 10, 1), 'end_date': YEAR_END, 'duration': 92}]


def test_tracking_starts_when_unit_was_created():
    occupancy, vacancy = build_timeline(date(2024, 7, 1), [], YEAR_START, YEAR_END)

    assert occupancy == []
    assert vacancy[0]['start_date'] == date(2024, 7, 1)
    assert vacancy[0]['duration'] == 184


def test_single_day_lease_counts_one_day():
    leases = [(date(2024, 6, 1), date(2024, 6, 1), 'Pop-up')]
    occupancy, _ = build_timeline(YEAR_START, leases, YEAR_START, YEAR_END)

    assert occupancy[0]['duration'] == 1


def test_leases_outside_window_are_ignored():
    leases = [
        (date(2023, 1, 1), date(2023, 6, 30), 'Before'),
        (date(2025, 2, 1), date(2025, 12, 31), 'After'),
    ]
    occupancy, vacancy = build_timeline(YEAR_START, leases, YEAR_START, YEAR_END)

    assert occupancy == []
    assert vacancy[0]['duration'] == 366


def test_lease_running_past_window_is_clamped():
    leases = [(date(2024, 11, 1), date(2025, 10, 31), 'Long')]
    occupancy, vacancy = build_timeline(YEAR_START, leases, YEAR_START, YEAR_END)

    assert occupancy[0]['end_date'] == YEAR_END
    assert occupancy[0]['duration'] == 61
    assert len(vacancy) == 1


# --- stats and buckets ---

def test_unit_stats_lost_revenue_uses_average_month_length():
    occupancy = [{'duration': 184}]
    vacancy = [{'duration': 60}, {'duration': 122}]

    stats = unit_stats(occupancy, vacancy, YEAR_START, YEAR_END, 30440.0)

    assert stats['total_occupied_days'] == 184
    assert stats['total_vacant_days'] == 182
    assert stats['occupancy_rate'] == 50.27
    assert stats['lost_revenue'] == 182000.0


@pytest.mark.parametrize('days, label', [
    (0, '0-30 days'),
    (30, '0-30 days'),
    (31, '31-60 days'),
    (90, '61-90 days'),
    (180, '91-180 days'),
    (181, '181+ days'),
    (-5, '0-30 days'),
])
def test_vacancy_bucket(days, label):
    assert vacancy_bucket(days) == label


def test_vacancy_distribution_lists_every_bucket():
    dist = vacancy_distribution([5, 45, 400, 500])
    assert dist == [
        {'range': '0-30 days', 'count': 1},
        {'range': '31-60 days', 'count': 1},
        {'range': '61-90 days', 'count': 0},
        {'range': '91-180 days', 'count': 0},
        {'range': '181+ days', 'count': 2},
    ]


# --- parsing ---

def test_parse_date_range_defaults_to_current_year():
    assert parse_date_range('', today=date(2025, 5, 17)) == (date(2025, 1, 1), date(2025, 12, 31))


def test_parse_date_range():
    assert parse_date_range('2024-02-01 to 2024-04-30') == (date(2024, 2, 1), date(2024, 4, 30))


@pytest.mark.parametrize('value', ['2024-01-01', '2024-13-01 to 2024-12-01', '2024-05-01 to 2024-04-01'])
def test_parse_date_range_rejects_bad_input(value):
    with pytest.raises(ValueError):
        parse_date_range(value)


def test_parse_duration_range():
    assert parse_duration_range('31-60') == (31, 60)
    assert parse_duration_range('181+') == (181, None)
    with pytest.raises(ValueError):
        parse_duration_range('sixty')


def test_month_windows_cover_partial_months():
    windows = month_windows(date(2024, 1, 15), date(2024, 3, 10))

    assert [w[0] for w in windows] == ['Jan 2024', 'Feb 2024', 'Mar 2024']
    assert windows[1][1:] == (date(2024, 2, 1), date(2024, 2, 29))


# --- reports ---

def test_build_report_summary():
    units = [
        _unit(id=1, unit_number='101', status='VACANT'),
        _unit(id=2, unit_number='102', total_rent=20000.0, total_area=80.0, status='OCCUPIED',
              leases=[(YEAR_START, YEAR_END, 'Acme')]),
    ]

    report = build_report(units, YEAR_START, YEAR_END, today=YEAR_END)

    summary = report['summary']
    assert summary['total_vacant_units'] == 1
    assert summary['total_monthly_loss'] == 10000.0
    assert summary['total_annual_loss'] == 120000.0
    assert summary['total_vacant_area'] == 50.0
    assert summary['longest_vacancy'] == 365
    assert summary['avg_vacancy_duration'] == 365
    assert summary['occupancy_rate'] == 50.0

    vacant = report['vacant_units'][0]
    assert vacant['vacancy_start_date'] == YEAR_START
    assert vacant['annual_loss'] == 120000.0

    assert len(report['monthly_trends']) == 12
    assert all(t['vacant_units'] == 1 and t['loss'] == 10000.0 for t in report['monthly_trends'])
    assert report['vacancy_distribution'][-1] == {'range': '181+ days', 'count': 1}

    history = {h['unit_number']: h for h in report['occupancy_history']}
    assert history['102']['yearly_stats']['occupancy_rate'] == 100.0
    assert history['101']['yearly_stats']['total_vacant_days'] == 366


def test_vacancy_starts_at_last_vacancy_period():
    unit = _unit(leases=[(date(2024, 1, 1), date(2024, 5, 31), 'Former tenant')])

    report = build_report([unit], YEAR_START, YEAR_END, today=date(2024, 6, 30))

    assert report['vacant_units'][0]['vacancy_start_date'] == date(2024, 6, 1)
    assert report['vacant_units'][0]['vacancy_duration'] == 29


def test_build_report_filters_by_vacancy_duration():
    units = [_unit(id=1), _unit(id=2, unit_number='102', created=date(2024, 12, 1))]

    report = build_report(units, YEAR_START, YEAR_END, today=YEAR_END, vacancy_duration='0-30')

    assert [u['unit_number'] for u in report['vacant_units']] == ['102']
    assert report['summary']['total_monthly_loss'] == 10000.0


def test_simple_loss():
    units = [_unit(id=1), _unit(id=2, unit_number='102', status='OCCUPIED')]

    result = simple_loss(units)

    assert result['summary'] == {
        'total_vacant_units': 1,
        'total_vacant_area': 50.0,
        'total_monthly_loss': 10000.0,
        'total_annual_loss': 120000.0,
    }
    assert result['details'][0]['unit_number'] == '101'
