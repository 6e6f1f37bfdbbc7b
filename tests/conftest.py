from datetime import date
from decimal import Decimal

import pytest

from app import create_app
from config import Config
from models import db, Customer, Employee, Flock, InventoryItem


class FarmTestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'
    SQLALCHEMY_ENGINE_OPTIONS = {}
    SECRET_KEY = 'test-secret'
    CACHE_TYPE = 'NullCache'
    RATELIMIT_ENABLED = False
    SIGNUP_ROLE = 'Admin'
    CURRENCY_SYMBOL = '$'
    DEFAULT_TAX_RATE = 0.0


# =============================================================================
# APP / CLIENT FIXTURES
# =============================================================================

@pytest.fixture
def app():
    app = create_app(FarmTestConfig)
    with app.app_context():
        db.create_all()
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


def register(client, email, password='secret123', **extra):
    return client.post('/auth/register', json=dict(email=email, password=password, **extra))


@pytest.fixture
def auth_client(client):
    """Client signed in as the first (Admin) profile."""
    response = register(client, 'admin@farm.test', full_name='Farm Admin')
    assert response.status_code == 201
    return client


@pytest.fixture
def viewer_client(app, auth_client):
    """A second client signed in as a Viewer."""
    register(app.test_client(), 'viewer@farm.test')
    auth_client.put('/users/2', json={'role': 'Viewer'})
    viewer = app.test_client()
    response = viewer.post('/auth/login', json={'email': 'viewer@farm.test', 'password': 'secret123'})
    assert response.status_code == 200
    return viewer


# =============================================================================
# DATA FACTORIES
# =============================================================================

def make_flock(flock_id='flk-1', initial_count=100, current_count=None, status='Active', bird_type='Broiler',
               initial_cost='500.00', **extra):
    flock = Flock(
        id=flock_id,
        name=extra.pop('name', f'Flock {flock_id}'),
        batch_id=extra.pop('batch_id', 'B-2024-1000'),
        type=bird_type,
        start_date=extra.pop('start_date', date(2024, 1, 1)),
        initial_count=initial_count,
        current_count=initial_count if current_count is None else current_count,
        initial_cost=Decimal(initial_cost),
        total_sold=0,
        status=status,
        **extra,
    )
    db.session.add(flock)
    return flock


def make_item(item_id='inv-1', quantity='7', cost_per_unit='2.00', category='Feed', min_level='0', **extra):
    item = InventoryItem(
        id=item_id,
        name=extra.pop('name', f'Item {item_id}'),
        category=category,
        quantity=Decimal(quantity),
        min_level=Decimal(min_level),
        cost_per_unit=Decimal(cost_per_unit),
        unit=extra.pop('unit', 'bags'),
        **extra,
    )
    db.session.add(item)
    return item


def make_customer(customer_id='cust-1', name='Mama Put', **extra):
    customer = Customer(id=customer_id, name=name, type=extra.pop('type', 'RETAIL'), phone='0800',
                        total_orders=extra.pop('total_orders', 0),
                        total_spent=extra.pop('total_spent', Decimal('0.00')), **extra)
    db.session.add(customer)
    return customer


def make_employee(employee_id='emp-1', base_salary='1000', allowances='0', deductions='0',
                  tax_rate=10.0, pension_rate=8.0, status='ACTIVE', **extra):
    employee = Employee(
        id=employee_id,
        name=extra.pop('name', f'Worker {employee_id}'),
        role=extra.pop('role', 'Attendant'),
        base_salary=Decimal(base_salary),
        allowances=Decimal(allowances),
        deductions=Decimal(deductions),
        tax_rate=tax_rate,
        pension_rate=pension_rate,
        status=status,
        **extra,
    )
    db.session.add(employee)
    return employee
