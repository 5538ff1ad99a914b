from datetime import date

from models import db, TenantNotice, TenantNoticeItem


def _notice_payload(portfolio, **overrides):
    payload = {
        'tenant_id': portfolio['tenant_id'],
        'for_year': 2024,
        'items': [
            {'description': 'Rent - May', 'status': 'PAST_DUE', 'amount': 10000, 'months': 'May'},
            {'description': 'CUSA', 'status': 'For legal review', 'amount': 2500.5},
        ],
        'primary_signatory': 'Maria Santos',
        'primary_title': 'Credit & Collection Head',
        'primary_contact': '0917-000-0000',
    }
    payload.update(overrides)
    return payload


def test_create_notice(app, admin_client, portfolio):
    resp = admin_client.post('/tenant-notices/', json=_notice_payload(portfolio))
    assert resp.status_code == 201
    notice = resp.get_json()['notice']

    assert notice['notice_number'] == 1
    assert notice['notice_type'] == 'FIRST_NOTICE'
    assert notice['total_amount'] == 12500.5
    assert notice['for_month'] == 'May'
    assert notice['created_by'] == 'System Administrator'
    assert [i['status'] for i in notice['items']] == ['PAST_DUE', 'For legal review']

    with app.app_context():
        custom = TenantNoticeItem.query.filter_by(description='CUSA').one()
        assert custom.status == 'CUSTOM'
        assert custom.custom_status == 'For legal review'
        assert custom.months == date.today().strftime('%B')


def test_notice_sequence_caps_at_final(admin_client, portfolio):
    types = [admin_client.post('/tenant-notices/', json=_notice_payload(portfolio)).get_json()['notice']
             for _ in range(4)]

    assert [n['notice_number'] for n in types] == [1, 2, 3, 3]
    assert [n['notice_type'] for n in types] == ['FIRST_NOTICE', 'SECOND_NOTICE', 'FINAL_NOTICE', 'FINAL_NOTICE']

    count = admin_client.get(f"/tenant-notices/count/{portfolio['tenant_id']}").get_json()
    assert count['count'] == 4


def test_settling_resets_sequence(app, admin_client, portfolio):
    first = admin_client.post('/tenant-notices/', json=_notice_payload(portfolio)).get_json()['notice']
    second = admin_client.post('/tenant-notices/', json=_notice_payload(portfolio)).get_json()['notice']

    resp = admin_client.post(f"/tenant-notices/{second['id']}/settle", json={'settled_by': 'Cashier'})
    data = resp.get_json()
    assert data['notice']['is_settled'] is True
    assert data['notice']['settled_by'] == 'Cashier'
    assert data['removed'] == 1

    with app.app_context():
        assert db.session.get(TenantNotice, first['id']) is None
        assert TenantNoticeItem.query.filter_by(notice_id=first['id']).count() == 0

    assert admin_client.get(f"/tenant-notices/count/{portfolio['tenant_id']}").get_json()['count'] == 0
    nxt = admin_client.post('/tenant-notices/', json=_notice_payload(portfolio)).get_json()['notice']
    assert nxt['notice_type'] == 'FIRST_NOTICE'

    assert admin_client.post(f"/tenant-notices/{second['id']}/settle").status_code == 400


def test_list_notices_unsettled_first(admin_client, portfolio):
    settled = admin_client.post('/tenant-notices/', json=_notice_payload(portfolio)).get_json()['notice']
    admin_client.post(f"/tenant-notices/{settled['id']}/settle")
    open_notice = admin_client.post('/tenant-notices/', json=_notice_payload(portfolio)).get_json()['notice']

    notices = admin_client.get('/tenant-notices/').get_json()['notices']
    assert [n['id'] for n in notices] == [open_notice['id'], settled['id']]

    only_settled = admin_client.get('/tenant-notices/?is_settled=true').get_json()['notices']
    assert [n['id'] for n in only_settled] == [settled['id']]


def test_notice_validation(admin_client, portfolio):
    assert admin_client.post('/tenant-notices/', json=_notice_payload(portfolio, items=[])).status_code == 400
    assert admin_client.post('/tenant-notices/', json=_notice_payload(
        portfolio, items=[{'description': 'Rent', 'status': 'UNPAID'}])).status_code == 400
    assert admin_client.post('/tenant-notices/', json=_notice_payload(portfolio, tenant_id=999)).status_code == 404


def test_notice_detail_and_delete(admin_client, portfolio):
    notice_id = admin_client.post('/tenant-notices/', json=_notice_payload(portfolio)).get_json()['notice']['id']

    detail = admin_client.get(f'/tenant-notices/{notice_id}').get_json()['notice']
    assert detail['tenant']['bp_code'] == 'BP001'

    assert admin_client.delete(f'/tenant-notices/{notice_id}').status_code == 200
    assert admin_client.get(f'/tenant-notices/{notice_id}').status_code == 404


def test_notice_tenant_picker_lists_active_tenants(admin_client, portfolio):
    tenants = admin_client.get('/tenant-notices/tenants').get_json()['tenants']
    assert [t['bp_code'] for t in tenants] == ['BP001']
