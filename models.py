from flask_sqlalchemy import SQLAlchemy
from flask_login import UserMixin
from datetime import datetime

from services.schedule import PDC_STATUSES

db = SQLAlchemy()

USER_ROLES = ['ADMIN', 'MANAGER', 'STAFF', 'ACCTG', 'TREASURY']
UNIT_STATUSES = ['VACANT', 'OCCUPIED', 'MAINTENANCE', 'RESERVED']
FLOOR_TYPES = ['GROUND_FLOOR', 'MEZZANINE', 'SECOND_FLOOR', 'THIRD_FLOOR', 'ROOF_TOP']
TENANT_STATUSES = ['ACTIVE', 'INACTIVE', 'PENDING']
LEASE_STATUSES = ['PENDING', 'ACTIVE', 'TERMINATED', 'EXPIRED']


def _iso(value):
    return value.isoformat() if value else None


class User(UserMixin, db.Model):
    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(120), unique=True, nullable=False)
    first_name = db.Column(db.String(80), nullable=False)
    last_name = db.Column(db.String(80), nullable=False)
    contact_no = db.Column(db.String(30))
    password_hash = db.Column(db.String(256), nullable=False)
    role = db.Column(db.String(20), nullable=False, default='STAFF')
    # Flask-Login reads is_active; inactive users cannot log in
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    @property
    def full_name(self):
        return f"{self.first_name} {self.last_name}".strip()

    def to_dict(self):
        return {
            'id': self.id,
            'email': self.email,
            'first_name': self.first_name,
            'last_name': self.last_name,
            'contact_no': self.contact_no,
            'role': self.role,
            'is_active': self.is_active,
            'created_at': _iso(self.created_at),
            'updated_at': _iso(self.updated_at),
        }


class AuditLog(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=True)
    entity_type = db.Column(db.String(50), nullable=False)  # e.g. 'PROPERTY_TAX', 'LEASE'
    entity_id = db.Column(db.String(50))
    action = db.Column(db.String(50), nullable=False)  # e.g. 'CREATE', 'LOGIN'
    changes = db.Column(db.JSON)
    ip_address = db.Column(db.String(64))
    user_agent = db.Column(db.String(300))
    extra = db.Column(db.JSON)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)

    user = db.relationship('User', backref=db.backref('audit_logs', lazy=True))

    def to_dict(self):
        return {
            'id': self.id,
            'entity_type': self.entity_type,
            'entity_id': self.entity_id,
            'action': self.action,
            'changes': self.changes,
            'ip_address': self.ip_address,
            'user_agent': self.user_agent,
            'extra': self.extra,
            'created_at': _iso(self.created_at),
            'user': {
                'id': self.user.id,
                'first_name': self.user.first_name,
                'last_name': self.user.last_name,
                'email': self.user.email,
                'role': self.user.role,
            } if self.user else None,
        }


class Notification(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    title = db.Column(db.String(200), nullable=False)
    message = db.Column(db.Text)
    type = db.Column(db.String(30))  # TAX, LEASE, UNIT, PDC
    priority = db.Column(db.String(10), default='NORMAL')
    entity_type = db.Column(db.String(50))
    entity_id = db.Column(db.String(50))
    action_url = db.Column(db.String(200))
    is_read = db.Column(db.Boolean, default=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'title': self.title,
            'message': self.message,
            'type': self.type,
            'priority': self.priority,
            'entity_type': self.entity_type,
            'entity_id': self.entity_id,
            'action_url': self.action_url,
            'is_read': self.is_read,
            'created_at': _iso(self.created_at),
        }


class Property(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    property_code = db.Column(db.String(50), unique=True, nullable=False)
    property_name = db.Column(db.String(150), nullable=False)
    address = db.Column(db.String(250))
    property_type = db.Column(db.String(50))  # Commercial, Residential, Mixed
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    units = db.relationship('Unit', backref='property', lazy=True)
    titles = db.relationship('PropertyTitle', backref='property', lazy=True,
                             order_by='PropertyTitle.title_no')

    def to_dict(self):
        return {
            'id': self.id,
            'property_code': self.property_code,
            'property_name': self.property_name,
            'address': self.address,
            'property_type': self.property_type,
            'created_at': _iso(self.created_at),
        }


class PropertyTitle(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    property_id = db.Column(db.Integer, db.ForeignKey('property.id'), nullable=False)
    title_no = db.Column(db.String(50), unique=True, nullable=False)
    lot_no = db.Column(db.String(50), nullable=False)
    lot_area = db.Column(db.Float, nullable=False)
    registered_owner = db.Column(db.String(150), nullable=False)
    is_encumbered = db.Column(db.Boolean, default=False)
    encumbrance_details = db.Column(db.Text)

    taxes = db.relationship('PropertyTax', backref='property_title', lazy=True,
                            order_by='PropertyTax.due_date')

    def to_dict(self):
        return {
            'id': self.id,
            'property_id': self.property_id,
            'title_no': self.title_no,
            'lot_no': self.lot_no,
            'lot_area': self.lot_area,
            'registered_owner': self.registered_owner,
            'is_encumbered': self.is_encumbered,
            'encumbrance_details': self.encumbrance_details,
        }


class PropertyTax(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    property_title_id = db.Column(db.Integer, db.ForeignKey('property_title.id'), nullable=False)
    tax_year = db.Column(db.Integer, nullable=False)
    tax_dec_no = db.Column(db.String(50), nullable=False)  # Tax Declaration No.
    tax_amount = db.Column(db.Float, nullable=False)
    due_date = db.Column(db.Date, nullable=False)
    is_annual = db.Column(db.Boolean, default=False)
    is_quarterly = db.Column(db.Boolean, default=False)
    what_quarter = db.Column(db.String(10))  # Q1..Q4
    processed_by = db.Column(db.String(100))
    remarks = db.Column(db.Text)
    is_paid = db.Column(db.Boolean, default=False)
    paid_date = db.Column(db.DateTime)
    marked_as_paid_by = db.Column(db.String(100))

    def to_dict(self):
        return {
            'id': self.id,
            'property_title_id': self.property_title_id,
            'tax_year': self.tax_year,
            'tax_dec_no': self.tax_dec_no,
            'tax_amount': self.tax_amount,
            'due_date': _iso(self.due_date),
            'is_annual': self.is_annual,
            'is_quarterly': self.is_quarterly,
            'what_quarter': self.what_quarter,
            'processed_by': self.processed_by,
            'remarks': self.remarks,
            'is_paid': self.is_paid,
            'paid_date': _iso(self.paid_date),
            'marked_as_paid_by': self.marked_as_paid_by,
        }


class Unit(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    property_id = db.Column(db.Integer, db.ForeignKey('property.id'), nullable=False)
    property_title_id = db.Column(db.Integer, db.ForeignKey('property_title.id'))
    unit_number = db.Column(db.String(50), nullable=False)
    status = db.Column(db.String(20), default='VACANT')
    # Sums of the floor breakdown
    total_area = db.Column(db.Float, default=0.0)
    total_rent = db.Column(db.Float, default=0.0)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    __table_args__ = (db.UniqueConstraint('property_id', 'unit_number', name='uq_unit_property_number'),)

    property_title = db.relationship('PropertyTitle')
    floors = db.relationship('UnitFloor', backref='unit', lazy=True, cascade="all, delete-orphan")
    lease_units = db.relationship('LeaseUnit', backref='unit', lazy=True)

    def to_dict(self):
        return {
            'id': self.id,
            'property_id': self.property_id,
            'property_name': self.property.property_name if self.property else None,
            'property_title_id': self.property_title_id,
            'unit_number': self.unit_number,
            'status': self.status,
            'total_area': self.total_area or 0.0,
            'total_rent': self.total_rent or 0.0,
            'floors': [f.to_dict() for f in self.floors],
            'created_at': _iso(self.created_at),
        }


class UnitFloor(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    unit_id = db.Column(db.Integer, db.ForeignKey('unit.id'), nullable=False)
    floor_type = db.Column(db.String(20), nullable=False)
    area = db.Column(db.Float, nullable=False)
    rate = db.Column(db.Float, default=0.0)
    rent = db.Column(db.Float, default=0.0)

    def to_dict(self):
        return {
            'id': self.id,
            'floor_type': self.floor_type,
            'area': self.area,
            'rate': self.rate,
            'rent': self.rent,
        }


class Tenant(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    bp_code = db.Column(db.String(50), unique=True, nullable=False)  # Business Partner code
    first_name = db.Column(db.String(80))
    last_name = db.Column(db.String(80))
    company = db.Column(db.String(150))
    business_name = db.Column(db.String(150))
    email = db.Column(db.String(120))
    phone = db.Column(db.String(30))
    status = db.Column(db.String(20), default='ACTIVE')
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    @property
    def display_name(self):
        if self.company:
            return self.company
        if self.business_name:
            return self.business_name
        return f"{self.first_name or ''} {self.last_name or ''}".strip()

    @property
    def contact_name(self):
        return f"{self.first_name or ''} {self.last_name or ''}".strip()

    def to_dict(self):
        return {
            'id': self.id,
            'bp_code': self.bp_code,
            'first_name': self.first_name,
            'last_name': self.last_name,
            'company': self.company,
            'business_name': self.business_name,
            'display_name': self.display_name,
            'email': self.email,
            'phone': self.phone,
            'status': self.status,
        }


class Lease(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey('tenant.id'), nullable=False)
    start_date = db.Column(db.Date, nullable=False)
    end_date = db.Column(db.Date, nullable=False)
    total_rent_amount = db.Column(db.Float, nullable=False, default=0.0)
    security_deposit = db.Column(db.Float, default=0.0)
    status = db.Column(db.String(20), default='PENDING')
    termination_date = db.Column(db.Date)
    termination_reason = db.Column(db.Text)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    tenant = db.relationship('Tenant', backref=db.backref('leases', lazy=True))
    lease_units = db.relationship('LeaseUnit', backref='lease', lazy=True, cascade="all, delete-orphan")

    @property
    def effective_end_date(self):
        """Termination date when the lease was cut short, else the contract end."""
        if self.termination_date and self.termination_date < self.end_date:
            return self.termination_date
        return self.end_date

    def to_dict(self):
        return {
            'id': self.id,
            'tenant_id': self.tenant_id,
            'tenant_name': self.tenant.display_name if self.tenant else None,
            'start_date': _iso(self.start_date),
            'end_date': _iso(self.end_date),
            'total_rent_amount': self.total_rent_amount,
            'security_deposit': self.security_deposit,
            'status': self.status,
            'termination_date': _iso(self.termination_date),
            'termination_reason': self.termination_reason,
            'units': [lu.to_dict() for lu in self.lease_units],
        }


class LeaseUnit(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    lease_id = db.Column(db.Integer, db.ForeignKey('lease.id'), nullable=False)
    unit_id = db.Column(db.Integer, db.ForeignKey('unit.id'), nullable=False)
    rent_amount = db.Column(db.Float, nullable=False)

    def to_dict(self):
        return {
            'id': self.id,
            'unit_id': self.unit_id,
            'unit_number': self.unit.unit_number if self.unit else None,
            'property_name': self.unit.property.property_name if self.unit else None,
            'rent_amount': self.rent_amount,
        }


class PDC(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    ref_no = db.Column(db.String(50), nullable=False)
    bank_name = db.Column(db.String(100), nullable=False)
    doc_date = db.Column(db.Date, default=lambda: datetime.utcnow().date())
    due_date = db.Column(db.Date, nullable=False)
    check_no = db.Column(db.String(50), nullable=False)
    amount = db.Column(db.Float, nullable=False)
    remarks = db.Column(db.Text)
    bp_code = db.Column(db.String(50), db.ForeignKey('tenant.bp_code'), nullable=False)
    bp_name = db.Column(db.String(150))
    status = db.Column(db.String(20), default='Open')
    updated_by_id = db.Column(db.Integer, db.ForeignKey('user.id'))
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    tenant = db.relationship('Tenant', backref=db.backref('pdcs', lazy=True))
    updated_by = db.relationship('User')

    def to_dict(self):
        return {
            'id': self.id,
            'ref_no': self.ref_no,
            'bank_name': self.bank_name,
            'doc_date': _iso(self.doc_date),
            'due_date': _iso(self.due_date),
            'check_no': self.check_no,
            'amount': self.amount,
            'remarks': self.remarks,
            'bp_code': self.bp_code,
            'bp_name': self.bp_name,
            'status': self.status,
            'updated_by': self.updated_by.full_name if self.updated_by else None,
            'updated_at': _iso(self.updated_at),
        }


class TenantNotice(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey('tenant.id'), nullable=False)
    notice_type = db.Column(db.String(30), nullable=False)  # FIRST_NOTICE, SECOND_NOTICE, FINAL_NOTICE
    notice_number = db.Column(db.Integer, nullable=False)
    total_amount = db.Column(db.Float, default=0.0)
    for_month = db.Column(db.String(50))
    for_year = db.Column(db.Integer)

    # Signatories printed on the letter
    primary_signatory = db.Column(db.String(100))
    primary_title = db.Column(db.String(100))
    primary_contact = db.Column(db.String(50))
    secondary_signatory = db.Column(db.String(100))
    secondary_title = db.Column(db.String(100))

    is_settled = db.Column(db.Boolean, default=False)
    settled_date = db.Column(db.DateTime)
    settled_by = db.Column(db.String(100))
    date_issued = db.Column(db.DateTime, default=datetime.utcnow)
    created_by_id = db.Column(db.Integer, db.ForeignKey('user.id'))

    tenant = db.relationship('Tenant', backref=db.backref('notices', lazy=True))
    created_by = db.relationship('User')
    items = db.relationship('TenantNoticeItem', backref='notice', lazy=True, cascade="all, delete-orphan")

    def to_dict(self):
        return {
            'id': self.id,
            'tenant_id': self.tenant_id,
            'tenant': {
                'bp_code': self.tenant.bp_code,
                'display_name': self.tenant.display_name,
            } if self.tenant else None,
            'notice_type': self.notice_type,
            'notice_number': self.notice_number,
            'total_amount': self.total_amount,
            'for_month': self.for_month,
            'for_year': self.for_year,
            'primary_signatory': self.primary_signatory,
            'primary_title': self.primary_title,
            'primary_contact': self.primary_contact,
            'secondary_signatory': self.secondary_signatory,
            'secondary_title': self.secondary_title,
            'is_settled': self.is_settled,
            'settled_date': _iso(self.settled_date),
            'settled_by': self.settled_by,
            'date_issued': _iso(self.date_issued),
            'created_by': self.created_by.full_name if self.created_by else None,
            'items': [i.to_dict() for i in self.items],
        }


class TenantNoticeItem(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    notice_id = db.Column(db.Integer, db.ForeignKey('tenant_notice.id'), nullable=False)
    description = db.Column(db.String(200), nullable=False)
    status = db.Column(db.String(20), nullable=False)  # PAST_DUE, OVERDUE, ... or CUSTOM
    custom_status = db.Column(db.String(100))
    amount = db.Column(db.Float, nullable=False)
    months = db.Column(db.String(100))

    def to_dict(self):
        return {
            'id': self.id,
            'description': self.description,
            'status': self.custom_status if self.status == 'CUSTOM' else self.status,
            'amount': self.amount,
            'months': self.months,
        }
