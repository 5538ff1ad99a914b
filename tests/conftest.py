from datetime import datetime

import pytest
from werkzeug.security import generate_password_hash

from app import create_app
from models import db, User, Property, PropertyTitle, Unit, UnitFloor, Tenant

ADMIN_EMAIL = 'admin@test.local'
ADMIN_PASSWORD = 'admin-pass-123'
STAFF_EMAIL = 'staff@test.local'
STAFF_PASSWORD = 'staff-pass-123'


@pytest.fixture
def app():
    app = create_app({
        'TESTING': True,
        'SECRET_KEY': 'test-secret',
        'SQLALCHEMY_DATABASE_URI': 'sqlite://',
        'SEED_ADMIN_EMAIL': ADMIN_EMAIL,
        'SEED_ADMIN_PASSWORD': ADMIN_PASSWORD,
    })
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


def login(client, email, password):
    resp = client.post('/login', json={'email': email, 'password': password})
    assert resp.status_code == 200, resp.get_json()
    return client


@pytest.fixture
def admin_client(app):
    return login(app.test_client(), ADMIN_EMAIL, ADMIN_PASSWORD)


@pytest.fixture
def staff_user(app):
    with app.app_context():
        user = User(email=STAFF_EMAIL, first_name='Sam', last_name='Staff',
                    password_hash=generate_password_hash(STAFF_PASSWORD), role='STAFF')
        db.session.add(user)
        db.session.commit()
        return user.id


@pytest.fixture
def staff_client(app, staff_user):
    return login(app.test_client(), STAFF_EMAIL, STAFF_PASSWORD)


@pytest.fixture
def portfolio(app):
    """One property with a title, two vacant units created 2024-01-01 and one tenant."""
    with app.app_context():
        prop = Property(property_code='TWR1', property_name='Tower One',
                        address='1 Main St', property_type='Commercial')
        db.session.add(prop)
        db.session.flush()

        title = PropertyTitle(property_id=prop.id, title_no='T-001', lot_no='L-1',
                              lot_area=500.0, registered_owner='Tower Holdings')
        db.session.add(title)
        db.session.flush()

        created = datetime(2024, 1, 1)
        unit_a = Unit(property_id=prop.id, property_title_id=title.id, unit_number='101',
                      total_area=50.0, total_rent=10000.0, created_at=created,
                      floors=[UnitFloor(floor_type='GROUND_FLOOR', area=50.0, rate=200.0, rent=10000.0)])
        unit_b = Unit(property_id=prop.id, property_title_id=title.id, unit_number='102',
                      total_area=80.0, total_rent=20000.0, created_at=created,
                      floors=[UnitFloor(floor_type='SECOND_FLOOR', area=80.0, rate=250.0, rent=20000.0)])
        tenant = Tenant(bp_code='BP001', first_name='Ana', last_name='Reyes',
                        company='Acme Corp', email='ana@acme.test')
        db.session.add_all([unit_a, unit_b, tenant])
        db.session.commit()

        return {
            'property_id': prop.id,
            'title_id': title.id,
            'unit_a': unit_a.id,
            'unit_b': unit_b.id,
            'tenant_id': tenant.id,
        }
