from flask_sqlalchemy import SQLAlchemy
from flask_login import UserMixin
from datetime import datetime, date
import json
from sqlalchemy.orm import validates
from decimal import Decimal, ROUND_HALF_UP, getcontext
from sqlalchemy.types import TypeDecorator, Numeric as SA_Numeric
import logging


db = SQLAlchemy()

getcontext().prec = 28

FLOCK_STATUSES = ('Active', 'Harvested', 'Quarantine', 'Planned')
BIRD_TYPES = ('Broiler', 'Layer', 'Breeder')
INVENTORY_CATEGORIES = ('Feed', 'Medicine', 'Equipment', 'Other')
CUSTOMER_TYPES = ('WHOLESALE', 'RETAIL', 'RESTAURANT')
ORDER_STATUSES = ('PENDING', 'PAID', 'DELIVERED', 'CANCELLED')
PAYMENT_METHODS = ('CASH', 'TRANSFER', 'CHECK', 'MOBILE_MONEY')
TRANSACTION_TYPES = ('INCOME', 'EXPENSE')
ACCOUNT_CATEGORIES = ('REVENUE', 'COGS', 'OPEX')
HEALTH_RECORD_TYPES = ('TREATMENT', 'VACCINATION', 'ISOLATION', 'CHECKUP')
EMPLOYEE_STATUSES = ('ACTIVE', 'INACTIVE')
TASK_PRIORITIES = ('LOW', 'MEDIUM', 'HIGH')
TASK_STATUSES = ('PENDING', 'IN_PROGRESS', 'COMPLETED')
PAYROLL_STATUSES = ('DRAFT', 'PAID')
USER_ROLES = ('Admin', 'Manager', 'Viewer')


class Money(TypeDecorator):
    """
    SQLAlchemy TypeDecorator to store Decimal values in a NUMERIC/DECIMAL column.
    - Python value: decimal.Decimal (quantized to 2 decimal places, ROUND_HALF_UP)
    - DB value: Decimal stored in NUMERIC(18,2)
    """
    impl = SA_Numeric(precision=18, scale=2)
    cache_ok = True
    places = Decimal('0.01')

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if not isinstance(value, Decimal):
            try:
                # Use str() to avoid binary-float surprises
                value = Decimal(str(value))
            except Exception:
                raise ValueError(f"Cannot convert {value!r} to Decimal")
        return value.quantize(self.places, rounding=ROUND_HALF_UP)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        try:
            if isinstance(value, Decimal):
                return value.quantize(self.places, rounding=ROUND_HALF_UP)
            return Decimal(str(value)).quantize(self.places, rounding=ROUND_HALF_UP)
        except Exception:
            logging.exception("%s.process_result_value: failed to parse DB value %r", type(self).__name__, value)
            return Decimal('0').quantize(self.places)

    @property
    def python_type(self):
        return Decimal


class Quantity(Money):
    """Stock quantities (kg, litres, bags, units) kept to 3 decimal places."""
    impl = SA_Numeric(precision=18, scale=3)
    cache_ok = True
    places = Decimal('0.001')


def _coerce_decimal(key, value, places, allow_negative=False):
    """Shared coercion for @validates hooks. Accepts '1,234.56' and '(1,234.56)'."""
    if value is None or (isinstance(value, str) and value.strip() == ''):
        return Decimal('0').quantize(places)
    if isinstance(value, bool):
        raise ValueError(f'{key} must be a numeric value (got {value!r})')
    try:
        if isinstance(value, Decimal):
            d = value
        elif isinstance(value, (int, float)):
            d = Decimal(str(value))
        else:
            s = str(value).strip().replace(',', '')
            if s.startswith('(') and s.endswith(')'):
                s = '-' + s[1:-1]
            d = Decimal(s)
    except Exception:
        raise ValueError(f'{key} must be a numeric value (got {value!r})')
    if not d.is_finite():
        raise ValueError(f'{key} must be a finite number')
    if d < 0 and not allow_negative:
        raise ValueError(f'{key} cannot be negative')
    return d.quantize(places, rounding=ROUND_HALF_UP)


def _coerce_count(key, value):
    if value is None or value == '':
        return 0
    try:
        v = int(value)
    except (TypeError, ValueError):
        raise ValueError(f'{key} must be an integer')
    if isinstance(value, float) and not value.is_integer():
        raise ValueError(f'{key} must be a whole number')
    if v < 0:
        raise ValueError(f'{key} cannot be negative')
    return v


def _coerce_choice(key, value, choices):
    if value not in choices:
        raise ValueError(f'{key} must be one of {", ".join(choices)} (got {value!r})')
    return value


def _fmt(value):
    return format(value, 'f') if value is not None else None


def _iso(value):
    return value.isoformat() if value is not None else None


class FarmProfile(db.Model):
    __tablename__ = 'settings'

    id = db.Column(db.String(32), primary_key=True, default='global')
    farm_name = db.Column(db.String(200), nullable=False, default='My Poultry Farm')
    address = db.Column(db.String(300), default='')
    city = db.Column(db.String(120), default='')
    phone = db.Column(db.String(50), default='')
    email = db.Column(db.String(200), default='')
    currency_symbol = db.Column(db.String(8), nullable=False, default='$')
    tax_rate_default = db.Column(db.Float, nullable=False, default=0.0)
    latitude = db.Column(db.Float, nullable=True)
    longitude = db.Column(db.Float, nullable=True)
    notifications_json = db.Column(db.Text)

    DEFAULT_NOTIFICATIONS = {
        'email_alerts': True,
        'low_stock': True,
        'mortality_threshold': True,
        'weekly_report': False,
    }

    def notifications(self):
        try:
            stored = json.loads(self.notifications_json or '{}')
        except (TypeError, ValueError):
            logging.warning("FarmProfile: unreadable notifications_json %r", self.notifications_json)
            stored = {}
        merged = dict(self.DEFAULT_NOTIFICATIONS)
        merged.update({k: bool(v) for k, v in stored.items() if k in merged})
        return merged

    def to_dict(self):
        return {
            'name': self.farm_name,
            'address': self.address or '',
            'city': self.city or '',
            'phone': self.phone or '',
            'email': self.email or '',
            'currency_symbol': self.currency_symbol or '$',
            'tax_rate_default': self.tax_rate_default or 0,
            'latitude': self.latitude,
            'longitude': self.longitude,
            'notifications': self.notifications(),
        }


class User(db.Model, UserMixin):
    __tablename__ = 'profiles'

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(200), unique=True, nullable=False)
    full_name = db.Column(db.String(200))
    password_hash = db.Column(db.String(200), nullable=False)
    role = db.Column(db.String(50), nullable=False, default='Viewer')
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    @validates('email')
    def validate_email(self, key, value):
        value = (value or '').strip().lower()
        if '@' not in value:
            raise ValueError('A valid email address is required')
        return value

    @validates('role')
    def validate_role(self, key, value):
        return _coerce_choice(key, value, USER_ROLES)

    def to_dict(self):
        return {
            'id': self.id,
            'email': self.email,
            'name': self.full_name or self.email.split('@')[0],
            'role': self.role,
        }


class Flock(db.Model):
    id = db.Column(db.String(64), primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    batch_id = db.Column(db.String(32), nullable=False)
    type = db.Column(db.String(20), nullable=False, default='Broiler')
    production_stage = db.Column(db.String(20))
    breed = db.Column(db.String(120), default='Unknown')
    house = db.Column(db.String(120), default='Main House')
    source = db.Column(db.String(200))
    start_date = db.Column(db.Date, nullable=False, default=date.today)
    initial_age_days = db.Column(db.Integer, default=1)
    initial_count = db.Column(db.Integer, nullable=False, default=0)
    initial_cost = db.Column(Money(), nullable=False, default=Decimal('0.00'))
    vat_rate = db.Column(db.Float, nullable=False, default=0.0)
    wht_rate = db.Column(db.Float, nullable=False, default=0.0)
    current_count = db.Column(db.Integer, nullable=False, default=0)
    total_sold = db.Column(db.Integer, nullable=False, default=0)
    status = db.Column(db.String(20), nullable=False, default='Active')
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    logs = db.relationship('FlockLog', back_populates='flock', cascade='all, delete-orphan',
                           order_by='FlockLog.date')
    health_records = db.relationship('HealthRecord', back_populates='flock', cascade='all, delete-orphan',
                                     order_by='HealthRecord.date')

    @validates('type')
    def validate_type(self, key, value):
        return _coerce_choice(key, value, BIRD_TYPES)

    @validates('status')
    def validate_status(self, key, value):
        return _coerce_choice(key, value, FLOCK_STATUSES)

    @validates('initial_count', 'current_count', 'total_sold', 'initial_age_days')
    def validate_counts(self, key, value):
        return _coerce_count(key, value)

    @validates('initial_cost')
    def validate_cost(self, key, value):
        return _coerce_decimal(key, value, Decimal('0.01'))

    def latest_log(self):
        return self.logs[-1] if self.logs else None

    def remove_birds(self, count):
        """Decrement current_count clamped at zero. Returns how many birds were removed."""
        removed = min(self.current_count or 0, max(int(count), 0))
        self.current_count = (self.current_count or 0) - removed
        return removed

    def return_birds(self, count):
        """Increment current_count, never above initial_count."""
        self.current_count = min((self.current_count or 0) + max(int(count), 0), self.initial_count or 0)

    def to_dict(self, include_logs=True):
        data = {
            'id': self.id,
            'name': self.name,
            'batch_id': self.batch_id,
            'type': self.type,
            'production_stage': self.production_stage,
            'breed': self.breed,
            'house': self.house,
            'source': self.source,
            'start_date': _iso(self.start_date),
            'initial_age_days': self.initial_age_days,
            'initial_count': self.initial_count,
            'initial_cost': _fmt(self.initial_cost),
            'vat_rate': self.vat_rate,
            'wht_rate': self.wht_rate,
            'current_count': self.current_count,
            'total_sold': self.total_sold,
            'status': self.status,
        }
        if include_logs:
            data['logs'] = [log.to_dict() for log in self.logs]
            data['health_records'] = [r.to_dict() for r in self.health_records]
        return data

    __table_args__ = (
        db.Index('idx_flock_status', 'status'),
    )


class FlockLog(db.Model):
    id = db.Column(db.String(64), primary_key=True)
    flock_id = db.Column(db.String(64), db.ForeignKey('flock.id'), nullable=False)
    flock = db.relationship('Flock', back_populates='logs')

    day = db.Column(db.Integer, nullable=False, default=1)
    date = db.Column(db.Date, nullable=False, default=date.today)
    mortality = db.Column(db.Integer, nullable=False, default=0)
    mortality_reason = db.Column(db.String(200))
    feed_consumed_kg = db.Column(Quantity(), nullable=False, default=Decimal('0.000'))
    water_consumed_l = db.Column(Quantity(), nullable=False, default=Decimal('0.000'))
    avg_weight_g = db.Column(Quantity(), nullable=False, default=Decimal('0.000'))
    egg_production = db.Column(db.Integer, nullable=False, default=0)
    egg_details_json = db.Column(db.Text)
    notes = db.Column(db.Text)

    @validates('mortality', 'egg_production', 'day')
    def validate_counts(self, key, value):
        return _coerce_count(key, value)

    @validates('feed_consumed_kg', 'water_consumed_l', 'avg_weight_g')
    def validate_measures(self, key, value):
        return _coerce_decimal(key, value, Decimal('0.001'))

    def egg_details(self):
        if not self.egg_details_json:
            return None
        try:
            return json.loads(self.egg_details_json)
        except (TypeError, ValueError):
            logging.warning("FlockLog %s: unreadable egg_details_json", self.id)
            return None

    def to_dict(self):
        return {
            'id': self.id,
            'day': self.day,
            'date': _iso(self.date),
            'mortality': self.mortality,
            'mortality_reason': self.mortality_reason,
            'feed_consumed_kg': _fmt(self.feed_consumed_kg),
            'water_consumed_l': _fmt(self.water_consumed_l),
            'avg_weight_g': _fmt(self.avg_weight_g),
            'egg_production': self.egg_production,
            'egg_details': self.egg_details(),
            'notes': self.notes,
        }

    __table_args__ = (
        db.Index('idx_flock_log_flock_date', 'flock_id', 'date'),
    )


class HealthRecord(db.Model):
    id = db.Column(db.String(64), primary_key=True)
    flock_id = db.Column(db.String(64), db.ForeignKey('flock.id'), nullable=False)
    flock = db.relationship('Flock', back_populates='health_records')

    date = db.Column(db.Date, nullable=False, default=date.today)
    type = db.Column(db.String(20), nullable=False)
    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text)
    status = db.Column(db.String(20), nullable=False, default='OPEN')
    outcome = db.Column(db.String(200))
    medication_name = db.Column(db.String(200))
    inventory_item_id = db.Column(db.String(64))
    quantity_used = db.Column(Quantity(), nullable=False, default=Decimal('0.000'))
    cost = db.Column(Money(), nullable=False, default=Decimal('0.00'))
    dosage = db.Column(db.String(120))
    birds_affected = db.Column(db.Integer, nullable=False, default=0)

    @validates('type')
    def validate_type(self, key, value):
        return _coerce_choice(key, value, HEALTH_RECORD_TYPES)

    @validates('status')
    def validate_status(self, key, value):
        return _coerce_choice(key, value, ('OPEN', 'RESOLVED'))

    @validates('quantity_used')
    def validate_quantity(self, key, value):
        return _coerce_decimal(key, value, Decimal('0.001'))

    @validates('birds_affected')
    def validate_birds(self, key, value):
        return _coerce_count(key, value)

    def to_dict(self):
        return {
            'id': self.id,
            'flock_id': self.flock_id,
            'date': _iso(self.date),
            'type': self.type,
            'title': self.title,
            'description': self.description,
            'status': self.status,
            'outcome': self.outcome,
            'medication_name': self.medication_name,
            'inventory_item_id': self.inventory_item_id,
            'quantity_used': _fmt(self.quantity_used),
            'cost': _fmt(self.cost),
            'dosage': self.dosage,
            'birds_affected': self.birds_affected,
        }


class InventoryItem(db.Model):
    __tablename__ = 'inventory'

    id = db.Column(db.String(64), primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    category = db.Column(db.String(20), nullable=False, default='Other')
    quantity = db.Column(Quantity(), nullable=False, default=Decimal('0.000'))
    unit = db.Column(db.String(20), nullable=False, default='units')
    min_level = db.Column(Quantity(), nullable=False, default=Decimal('0.000'))
    cost_per_unit = db.Column(Money(), nullable=False, default=Decimal('0.00'))
    last_updated = db.Column(db.Date, default=date.today, onupdate=date.today)
    location = db.Column(db.String(200))
    notes = db.Column(db.Text)
    target_bird_type = db.Column(db.String(20))
    vat_rate = db.Column(db.Float, nullable=False, default=0.0)
    wht_rate = db.Column(db.Float, nullable=False, default=0.0)

    serial_number = db.Column(db.String(120))
    model = db.Column(db.String(120))
    purchase_date = db.Column(db.Date)
    warranty_expiry = db.Column(db.Date)
    next_maintenance_date = db.Column(db.Date)
    maintenance_logs_json = db.Column(db.Text, nullable=False, default='[]')
    usage_logs_json = db.Column(db.Text, nullable=False, default='[]')

    @validates('category')
    def validate_category(self, key, value):
        return _coerce_choice(key, value, INVENTORY_CATEGORIES)

    @validates('quantity', 'min_level')
    def validate_quantity(self, key, value):
        return _coerce_decimal(key, value, Decimal('0.001'))

    @validates('cost_per_unit')
    def validate_cost(self, key, value):
        return _coerce_decimal(key, value, Decimal('0.01'))

    def is_low_stock(self):
        return (self.quantity or 0) <= (self.min_level or 0)

    def remove_stock(self, amount):
        """Decrement quantity clamped at zero. Returns the amount actually removed."""
        amount = max(Decimal(str(amount)), Decimal('0'))
        removed = min(self.quantity or Decimal('0'), amount)
        self.quantity = (self.quantity or Decimal('0')) - removed
        return removed

    def return_stock(self, amount):
        self.quantity = (self.quantity or Decimal('0')) + max(Decimal(str(amount)), Decimal('0'))

    def maintenance_logs(self):
        return json.loads(self.maintenance_logs_json or '[]')

    def usage_logs(self):
        return json.loads(self.usage_logs_json or '[]')

    def append_log(self, kind, entry):
        column = f'{kind}_logs_json'
        entries = json.loads(getattr(self, column) or '[]')
        entries.append(entry)
        setattr(self, column, json.dumps(entries))

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'category': self.category,
            'quantity': _fmt(self.quantity),
            'unit': self.unit,
            'min_level': _fmt(self.min_level),
            'cost_per_unit': _fmt(self.cost_per_unit),
            'last_updated': _iso(self.last_updated),
            'location': self.location,
            'notes': self.notes,
            'target_bird_type': self.target_bird_type,
            'vat_rate': self.vat_rate,
            'wht_rate': self.wht_rate,
            'serial_number': self.serial_number,
            'model': self.model,
            'purchase_date': _iso(self.purchase_date),
            'warranty_expiry': _iso(self.warranty_expiry),
            'next_maintenance_date': _iso(self.next_maintenance_date),
            'maintenance_logs': self.maintenance_logs(),
            'usage_logs': self.usage_logs(),
            'low': self.is_low_stock(),
        }

    __table_args__ = (
        db.Index('idx_inventory_category', 'category'),
    )


class Customer(db.Model):
    id = db.Column(db.String(64), primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    type = db.Column(db.String(20), nullable=False, default='RETAIL')
    email = db.Column(db.String(200))
    phone = db.Column(db.String(50), nullable=False, default='')
    address = db.Column(db.String(300))
    total_orders = db.Column(db.Integer, nullable=False, default=0)
    total_spent = db.Column(Money(), nullable=False, default=Decimal('0.00'))
    joined_date = db.Column(db.Date, nullable=False, default=date.today)

    @validates('type')
    def validate_type(self, key, value):
        return _coerce_choice(key, value, CUSTOMER_TYPES)

    def to_dict(self, segment=None):
        data = {
            'id': self.id,
            'name': self.name,
            'type': self.type,
            'email': self.email,
            'phone': self.phone,
            'address': self.address,
            'total_orders': self.total_orders,
            'total_spent': _fmt(self.total_spent),
            'joined_date': _iso(self.joined_date),
        }
        if segment is not None:
            data['segment'] = segment
        return data


class SalesOrder(db.Model):
    __tablename__ = 'sales_orders'

    id = db.Column(db.String(64), primary_key=True)
    customer_id = db.Column(db.String(64), nullable=False)
    customer_name = db.Column(db.String(200), nullable=False)
    date = db.Column(db.Date, nullable=False, default=date.today)
    status = db.Column(db.String(20), nullable=False, default='PENDING')
    payment_method = db.Column(db.String(20))
    notes = db.Column(db.Text)
    vat_rate = db.Column(db.Float, nullable=False, default=0.0)
    wht_rate = db.Column(db.Float, nullable=False, default=0.0)
    sub_total = db.Column(Money(), nullable=False, default=Decimal('0.00'))
    vat_amount = db.Column(Money(), nullable=False, default=Decimal('0.00'))
    wht_amount = db.Column(Money(), nullable=False, default=Decimal('0.00'))
    total_amount = db.Column(Money(), nullable=False, default=Decimal('0.00'))
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    items = db.relationship('SalesOrderItem', back_populates='order', cascade='all, delete-orphan',
                            order_by='SalesOrderItem.id')

    @validates('status')
    def validate_status(self, key, value):
        return _coerce_choice(key, value, ORDER_STATUSES)

    @validates('payment_method')
    def validate_payment_method(self, key, value):
        if value in (None, ''):
            return None
        return _coerce_choice(key, value, PAYMENT_METHODS)

    def to_dict(self):
        return {
            'id': self.id,
            'customer_id': self.customer_id,
            'customer_name': self.customer_name,
            'date': _iso(self.date),
            'items': [item.to_dict() for item in self.items],
            'status': self.status,
            'payment_method': self.payment_method,
            'notes': self.notes,
            'vat_rate': self.vat_rate,
            'wht_rate': self.wht_rate,
            'sub_total': _fmt(self.sub_total),
            'vat_amount': _fmt(self.vat_amount),
            'wht_amount': _fmt(self.wht_amount),
            'total_amount': _fmt(self.total_amount),
        }

    __table_args__ = (
        db.Index('idx_sales_order_customer', 'customer_id'),
        db.Index('idx_sales_order_status', 'status'),
    )


class SalesOrderItem(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.String(64), db.ForeignKey('sales_orders.id'), nullable=False)
    order = db.relationship('SalesOrder', back_populates='items')

    inventory_item_id = db.Column(db.String(64))
    flock_id = db.Column(db.String(64))
    description = db.Column(db.String(300), nullable=False)
    quantity = db.Column(Quantity(), nullable=False)
    unit = db.Column(db.String(20), nullable=False, default='units')
    unit_price = db.Column(Money(), nullable=False, default=Decimal('0.00'))
    total = db.Column(Money(), nullable=False, default=Decimal('0.00'))
    # amount actually taken from stock when the line was applied (clamped at zero)
    stock_deducted = db.Column(Quantity(), nullable=False, default=Decimal('0.000'))

    @validates('quantity')
    def validate_quantity(self, key, value):
        value = _coerce_decimal(key, value, Decimal('0.001'))
        if value <= 0:
            raise ValueError('Line quantity must be positive')
        return value

    @validates('unit_price')
    def validate_price(self, key, value):
        return _coerce_decimal(key, value, Decimal('0.01'))

    def to_dict(self):
        return {
            'inventory_item_id': self.inventory_item_id,
            'flock_id': self.flock_id,
            'description': self.description,
            'quantity': _fmt(self.quantity),
            'unit': self.unit,
            'unit_price': _fmt(self.unit_price),
            'total': _fmt(self.total),
            'stock_deducted': _fmt(self.stock_deducted),
        }


class Transaction(db.Model):
    __tablename__ = 'transactions'

    id = db.Column(db.String(64), primary_key=True)
    date = db.Column(db.Date, nullable=False, default=date.today)
    type = db.Column(db.String(10), nullable=False)
    category = db.Column(db.String(120), nullable=False, default='General')
    account_category = db.Column(db.String(10), nullable=False)
    amount = db.Column(Money(), nullable=False, default=Decimal('0.00'))
    sub_total = db.Column(Money(), nullable=True)
    vat_amount = db.Column(Money(), nullable=False, default=Decimal('0.00'))
    wht_amount = db.Column(Money(), nullable=False, default=Decimal('0.00'))
    pension_amount = db.Column(Money(), nullable=False, default=Decimal('0.00'))
    description = db.Column(db.String(500), nullable=False, default='')
    flock_id = db.Column(db.String(64))
    reference_id = db.Column(db.String(64))
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    @validates('type')
    def validate_type(self, key, value):
        return _coerce_choice(key, value, TRANSACTION_TYPES)

    @validates('account_category')
    def validate_account_category(self, key, value):
        return _coerce_choice(key, value, ACCOUNT_CATEGORIES)

    @validates('amount', 'vat_amount', 'wht_amount', 'pension_amount')
    def validate_amounts(self, key, value):
        return _coerce_decimal(key, value, Decimal('0.01'))

    def to_dict(self):
        return {
            'id': self.id,
            'date': _iso(self.date),
            'type': self.type,
            'category': self.category,
            'account_category': self.account_category,
            'amount': _fmt(self.amount),
            'sub_total': _fmt(self.sub_total),
            'vat_amount': _fmt(self.vat_amount),
            'wht_amount': _fmt(self.wht_amount),
            'pension_amount': _fmt(self.pension_amount),
            'description': self.description,
            'flock_id': self.flock_id,
            'reference_id': self.reference_id,
        }

    __table_args__ = (
        db.Index('idx_transaction_date', 'date'),
        db.Index('idx_transaction_reference', 'reference_id'),
        db.Index('idx_transaction_flock', 'flock_id'),
    )


class Employee(db.Model):
    id = db.Column(db.String(64), primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    role = db.Column(db.String(100), nullable=False)
    phone = db.Column(db.String(50), nullable=False, default='')
    email = db.Column(db.String(200))
    base_salary = db.Column(Money(), nullable=False, default=Decimal('0.00'))
    allowances = db.Column(Money(), nullable=False, default=Decimal('0.00'))
    deductions = db.Column(Money(), nullable=False, default=Decimal('0.00'))
    tax_rate = db.Column(db.Float, nullable=True, default=10.0)
    pension_rate = db.Column(db.Float, nullable=True, default=8.0)
    joined_date = db.Column(db.Date, nullable=False, default=date.today)
    status = db.Column(db.String(10), nullable=False, default='ACTIVE')

    @validates('base_salary', 'allowances', 'deductions')
    def validate_money(self, key, value):
        return _coerce_decimal(key, value, Decimal('0.01'))

    @validates('status')
    def validate_status(self, key, value):
        return _coerce_choice(key, value, EMPLOYEE_STATUSES)

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'role': self.role,
            'phone': self.phone,
            'email': self.email,
            'base_salary': _fmt(self.base_salary),
            'allowances': _fmt(self.allowances),
            'deductions': _fmt(self.deductions),
            'tax_rate': self.tax_rate,
            'pension_rate': self.pension_rate,
            'joined_date': _iso(self.joined_date),
            'status': self.status,
        }


class HrTask(db.Model):
    __tablename__ = 'tasks'

    id = db.Column(db.String(64), primary_key=True)
    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text)
    assigned_to_id = db.Column(db.String(64), nullable=False)
    assigned_to_name = db.Column(db.String(200), nullable=False)
    related_flock_id = db.Column(db.String(64))
    priority = db.Column(db.String(10), nullable=False, default='MEDIUM')
    due_date = db.Column(db.Date, nullable=False, default=date.today)
    status = db.Column(db.String(20), nullable=False, default='PENDING')

    @validates('priority')
    def validate_priority(self, key, value):
        return _coerce_choice(key, value, TASK_PRIORITIES)

    @validates('status')
    def validate_status(self, key, value):
        return _coerce_choice(key, value, TASK_STATUSES)

    def to_dict(self):
        return {
            'id': self.id,
            'title': self.title,
            'description': self.description,
            'assigned_to_id': self.assigned_to_id,
            'assigned_to_name': self.assigned_to_name,
            'related_flock_id': self.related_flock_id,
            'priority': self.priority,
            'due_date': _iso(self.due_date),
            'status': self.status,
        }


class PayrollRun(db.Model):
    __tablename__ = 'payroll_runs'

    id = db.Column(db.String(64), primary_key=True)
    date = db.Column(db.Date, nullable=False, default=date.today)
    period = db.Column(db.String(60), nullable=False)
    total_gross = db.Column(Money(), nullable=False, default=Decimal('0.00'))
    total_net = db.Column(Money(), nullable=False, default=Decimal('0.00'))
    total_tax = db.Column(Money(), nullable=False, default=Decimal('0.00'))
    total_pension = db.Column(Money(), nullable=False, default=Decimal('0.00'))
    status = db.Column(db.String(10), nullable=False, default='DRAFT')
    employee_count = db.Column(db.Integer, nullable=False, default=0)

    @validates('status')
    def validate_status(self, key, value):
        return _coerce_choice(key, value, PAYROLL_STATUSES)

    def to_dict(self):
        return {
            'id': self.id,
            'date': _iso(self.date),
            'period': self.period,
            'total_gross': _fmt(self.total_gross),
            'total_net': _fmt(self.total_net),
            'total_tax': _fmt(self.total_tax),
            'total_pension': _fmt(self.total_pension),
            'status': self.status,
            'employee_count': self.employee_count,
        }
