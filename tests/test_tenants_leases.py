from models import db, AuditLog, Lease, LeaseUnit, Notification, Unit


def _unit_status(app, unit_id):
    with app.app_context():
        return db.session.get(Unit, unit_id).status


def _lease_payload(portfolio, **overrides):
    payload = {
        'tenant_id': portfolio['tenant_id'],
        'start_date': '2024-01-01',
        'end_date': '2025-12-31',
        'security_deposit': 60000,
        'status': 'ACTIVE',
        'units': [{'unit_id': portfolio['unit_a']}, {'unit_id': portfolio['unit_b'], 'rent_amount': 18000}],
    }
    payload.update(overrides)
    return payload


# --- tenants ---

def test_create_and_search_tenants(admin_client, portfolio):
    resp = admin_client.post('/tenants/', json={
        'bp_code': 'BP002', 'business_name': 'Kape Haus', 'email': 'hello@kape.test'})
    assert resp.status_code == 201
    assert resp.get_json()['tenant']['display_name'] == 'Kape Haus'

    found = admin_client.get('/tenants/?search=kape').get_json()['tenants']
    assert [t['bp_code'] for t in found] == ['BP002']

    active = admin_client.get('/tenants/?status=ACTIVE').get_json()['tenants']
    assert {t['bp_code'] for t in active} == {'BP001', 'BP002'}


def test_tenant_validation(admin_client, portfolio):
    assert admin_client.post('/tenants/', json={'bp_code': 'BP001', 'company': 'Dup'}).status_code == 400
    assert admin_client.post('/tenants/', json={'bp_code': 'BP009'}).status_code == 400
    assert admin_client.post('/tenants/', json={'bp_code': 'BP009', 'company': 'X', 'status': 'GONE'}) \
        .status_code == 400


def test_update_tenant(admin_client, portfolio):
    tid = portfolio['tenant_id']
    resp = admin_client.put(f'/tenants/{tid}', json={'bp_code': 'BP001', 'company': 'Acme Holdings',
                                                      'status': 'INACTIVE'})
    tenant = resp.get_json()['tenant']
    assert tenant['display_name'] == 'Acme Holdings'
    assert tenant['status'] == 'INACTIVE'


# --- leases ---

def test_active_lease_occupies_units_and_notifies(app, admin_client, staff_user, portfolio):
    resp = admin_client.post('/tenants/leases', json=_lease_payload(portfolio))
    assert resp.status_code == 201
    lease = resp.get_json()['lease']

    assert lease['total_rent_amount'] == 28000.0
    assert sorted(u['rent_amount'] for u in lease['units']) == [10000.0, 18000.0]
    assert _unit_status(app, portfolio['unit_a']) == 'OCCUPIED'
    assert _unit_status(app, portfolio['unit_b']) == 'OCCUPIED'

    with app.app_context():
        notes = Notification.query.filter_by(type='LEASE').all()
        assert len(notes) == 2
        assert 'Tower One - 101' in notes[0].message
        assert AuditLog.query.filter_by(action='CREATE', entity_type='LEASE').count() == 1

    detail = admin_client.get(f"/tenants/{portfolio['tenant_id']}").get_json()['tenant']
    assert [l['id'] for l in detail['leases']] == [lease['id']]


def test_pending_lease_leaves_units_vacant(app, admin_client, portfolio):
    resp = admin_client.post('/tenants/leases', json=_lease_payload(
        portfolio, status='PENDING', total_rent_amount=25000))
    assert resp.get_json()['lease']['total_rent_amount'] == 25000.0
    assert _unit_status(app, portfolio['unit_a']) == 'VACANT'


def test_lease_validation(admin_client, portfolio):
    assert admin_client.post('/tenants/leases', json=_lease_payload(portfolio, units=[])).status_code == 400
    assert admin_client.post('/tenants/leases', json=_lease_payload(
        portfolio, start_date='2025-01-01', end_date='2024-01-01')).status_code == 400
    assert admin_client.post('/tenants/leases', json=_lease_payload(
        portfolio, units=[{'unit_id': 999}])).status_code == 400
    assert admin_client.post('/tenants/leases', json=_lease_payload(
        portfolio, units=[{'unit_id': portfolio['unit_a']}, {'unit_id': portfolio['unit_a']}])).status_code == 400
    assert admin_client.post('/tenants/leases', json=_lease_payload(portfolio, tenant_id=999)).status_code == 404


def test_unit_cannot_be_in_two_active_leases(admin_client, portfolio):
    admin_client.post('/tenants/leases', json=_lease_payload(portfolio, units=[{'unit_id': portfolio['unit_a']}]))

    resp = admin_client.post('/tenants/leases', json=_lease_payload(portfolio))
    assert resp.status_code == 400
    assert '101' in resp.get_json()['message']


def _pending_then_active(admin_client, portfolio):
    one_unit = [{'unit_id': portfolio['unit_a']}]
    pending = admin_client.post('/tenants/leases', json=_lease_payload(
        portfolio, status='PENDING', units=one_unit)).get_json()['lease']['id']
    active = admin_client.post('/tenants/leases', json=_lease_payload(
        portfolio, units=one_unit)).get_json()['lease']['id']
    return pending, active


def test_activating_lease_on_leased_unit_is_refused(app, admin_client, portfolio):
    pending, _ = _pending_then_active(admin_client, portfolio)

    resp = admin_client.put(f'/tenants/leases/{pending}', json={'status': 'ACTIVE'})
    assert resp.status_code == 400
    assert '101' in resp.get_json()['message']

    with app.app_context():
        active = Lease.query.join(LeaseUnit).filter(
            LeaseUnit.unit_id == portfolio['unit_a'], Lease.status == 'ACTIVE').count()
        assert active == 1
        assert db.session.get(Lease, pending).status == 'PENDING'


def test_reactivating_own_lease_is_allowed(admin_client, portfolio):
    lease_id = admin_client.post('/tenants/leases', json=_lease_payload(portfolio)).get_json()['lease']['id']

    resp = admin_client.put(f'/tenants/leases/{lease_id}', json={'status': 'ACTIVE', 'end_date': '2026-06-30'})
    assert resp.status_code == 200


def test_other_leases_do_not_free_an_occupied_unit(app, admin_client, portfolio):
    pending, active = _pending_then_active(admin_client, portfolio)

    admin_client.put(f'/tenants/leases/{pending}', json={'status': 'EXPIRED'})
    assert _unit_status(app, portfolio['unit_a']) == 'OCCUPIED'

    admin_client.post(f'/tenants/leases/{pending}/terminate', json={'termination_reason': 'Never signed'})
    assert _unit_status(app, portfolio['unit_a']) == 'OCCUPIED'

    assert admin_client.delete(f'/tenants/leases/{pending}').status_code == 200
    assert _unit_status(app, portfolio['unit_a']) == 'OCCUPIED'

    admin_client.delete(f'/tenants/leases/{active}')
    assert _unit_status(app, portfolio['unit_a']) == 'VACANT'


def test_update_lease_status_drives_unit_status(app, admin_client, portfolio):
    lease_id = admin_client.post('/tenants/leases', json=_lease_payload(portfolio)).get_json()['lease']['id']

    resp = admin_client.put(f'/tenants/leases/{lease_id}', json={'status': 'EXPIRED'})
    assert resp.get_json()['lease']['status'] == 'EXPIRED'
    assert _unit_status(app, portfolio['unit_a']) == 'VACANT'

    admin_client.put(f'/tenants/leases/{lease_id}', json={'status': 'ACTIVE', 'end_date': '2026-12-31'})
    assert _unit_status(app, portfolio['unit_b']) == 'OCCUPIED'

    assert admin_client.put(f'/tenants/leases/{lease_id}', json={'end_date': '2023-01-01'}).status_code == 400


def test_terminate_lease(app, admin_client, portfolio):
    lease_id = admin_client.post('/tenants/leases', json=_lease_payload(portfolio)).get_json()['lease']['id']

    assert admin_client.post(f'/tenants/leases/{lease_id}/terminate', json={}).status_code == 400

    resp = admin_client.post(f'/tenants/leases/{lease_id}/terminate', json={
        'termination_date': '2024-09-30', 'termination_reason': 'Business closed'})
    lease = resp.get_json()['lease']
    assert lease['status'] == 'TERMINATED'
    assert lease['termination_date'] == '2024-09-30'
    assert _unit_status(app, portfolio['unit_a']) == 'VACANT'
    assert _unit_status(app, portfolio['unit_b']) == 'VACANT'

    again = admin_client.post(f'/tenants/leases/{lease_id}/terminate', json={'termination_reason': 'x'})
    assert again.status_code == 400

    with app.app_context():
        assert Notification.query.filter_by(title='Lease Terminated', priority='HIGH').count() == 1


def test_delete_lease_frees_units(app, admin_client, portfolio):
    lease_id = admin_client.post('/tenants/leases', json=_lease_payload(portfolio)).get_json()['lease']['id']

    assert admin_client.delete(f'/tenants/leases/{lease_id}').status_code == 200
    assert admin_client.get(f'/tenants/leases/{lease_id}').status_code == 404
    assert _unit_status(app, portfolio['unit_a']) == 'VACANT'


def test_list_leases_filters_by_status(admin_client, portfolio):
    admin_client.post('/tenants/leases', json=_lease_payload(portfolio, units=[{'unit_id': portfolio['unit_a']}]))
    admin_client.post('/tenants/leases', json=_lease_payload(
        portfolio, status='PENDING', units=[{'unit_id': portfolio['unit_b']}]))

    pending = admin_client.get('/tenants/leases?status=pending').get_json()['leases']
    assert len(pending) == 1
    assert pending[0]['units'][0]['unit_number'] == '102'
