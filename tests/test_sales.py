from decimal import Decimal

from conftest import make_item
from models import db, InventoryItem


def setup_customer(client, **extra):
    payload = {'name': 'Mama Put', 'type': 'RESTAURANT', 'phone': '0803'}
    payload.update(extra)
    return client.post('/sales/customers', json=payload).get_json()


def setup_stock(app):
    with app.app_context():
        make_item('egg-1', quantity='50', name='Egg crate', category='Other', unit='crates')
        db.session.commit()


def place_order(client, customer_id, quantity=10, **extra):
    payload = {'customer_id': customer_id, 'vat_rate': 7.5,
               'items': [{'inventory_item_id': 'egg-1', 'description': 'Eggs (crate)', 'quantity': quantity,
                          'unit_price': '4.00'}]}
    payload.update(extra)
    return client.post('/sales/orders', json=payload)


# =============================================================================
# CUSTOMERS
# =============================================================================

def test_customer_crud(auth_client):
    customer = setup_customer(auth_client, total_orders=99, total_spent='1000000')
    assert customer['total_orders'] == 0
    assert customer['total_spent'] == '0.00'
    assert customer['segment'] == 'New'

    updated = auth_client.put(f"/sales/customers/{customer['id']}", json={'phone': '0900', 'total_orders': 5})
    assert updated.get_json()['phone'] == '0900'
    assert updated.get_json()['total_orders'] == 0

    assert [c['name'] for c in auth_client.get('/sales/customers?search=mama').get_json()] == ['Mama Put']
    assert auth_client.delete(f"/sales/customers/{customer['id']}").status_code == 200


def test_customer_type_validated(auth_client):
    response = auth_client.post('/sales/customers', json={'name': 'X', 'type': 'FRIEND'})
    assert response.status_code == 400


# =============================================================================
# ORDERS
# =============================================================================

def test_order_lifecycle(app, auth_client):
    setup_stock(app)
    customer = setup_customer(auth_client)

    response = place_order(auth_client, customer['id'])
    assert response.status_code == 201
    order = response.get_json()
    assert order['sub_total'] == '40.00'
    assert order['vat_amount'] == '3.00'
    assert order['total_amount'] == '43.00'
    assert order['status'] == 'PENDING'

    with app.app_context():
        assert db.session.get(InventoryItem, 'egg-1').quantity == Decimal('40.000')

    detail = auth_client.get(f"/sales/customers/{customer['id']}").get_json()
    assert detail['total_orders'] == 1
    assert detail['total_spent'] == '43.00'
    assert [o['id'] for o in detail['orders']] == [order['id']]

    ledger = auth_client.get("/finance/transactions?type=INCOME").get_json()
    assert [t['id'] for t in ledger] == [f"tx-{order['id']}"]

    assert auth_client.post(f"/sales/orders/{order['id']}/advance").get_json()['status'] == 'PAID'
    assert auth_client.post(f"/sales/orders/{order['id']}/advance").get_json()['status'] == 'DELIVERED'
    assert auth_client.post(f"/sales/orders/{order['id']}/advance").status_code == 400

    cancelled = auth_client.patch(f"/sales/orders/{order['id']}", json={'status': 'CANCELLED'})
    assert cancelled.status_code == 200
    with app.app_context():
        assert db.session.get(InventoryItem, 'egg-1').quantity == Decimal('50.000')
    assert auth_client.get('/finance/transactions?type=INCOME').get_json() == []

    assert auth_client.delete(f"/sales/orders/{order['id']}").status_code == 200
    assert auth_client.get(f"/sales/orders/{order['id']}").status_code == 404


def test_order_needs_items(app, auth_client):
    customer = setup_customer(auth_client)
    response = auth_client.post('/sales/orders', json={'customer_id': customer['id'], 'items': []})
    assert response.status_code == 400


def test_order_for_unknown_customer(app, auth_client):
    setup_stock(app)
    assert place_order(auth_client, 'cust-missing').status_code == 404


def test_failed_order_leaves_stock_alone(app, auth_client):
    setup_stock(app)
    customer = setup_customer(auth_client)
    payload_items = [
        {'inventory_item_id': 'egg-1', 'description': 'Eggs', 'quantity': 5, 'unit_price': '4'},
        {'inventory_item_id': 'ghost', 'description': 'Ghost', 'quantity': 1, 'unit_price': '4'},
    ]
    response = auth_client.post('/sales/orders', json={'customer_id': customer['id'], 'items': payload_items})
    assert response.status_code == 404
    with app.app_context():
        assert db.session.get(InventoryItem, 'egg-1').quantity == Decimal('50.000')


def test_order_filters_and_analytics(app, auth_client):
    setup_stock(app)
    customer = setup_customer(auth_client)
    place_order(auth_client, customer['id'], quantity=2)
    place_order(auth_client, customer['id'], quantity=3, status='CANCELLED')

    assert len(auth_client.get('/sales/orders').get_json()) == 2
    assert len(auth_client.get('/sales/orders?status=CANCELLED').get_json()) == 1

    analytics = auth_client.get('/sales/analytics').get_json()
    assert analytics['order_count'] == 1
    assert analytics['total_revenue'] == '8.60'
    assert analytics['category_sales'] == {'Eggs': '8.00'}
    assert analytics['segments'] == {'New': 1}
    assert analytics['top_customers'][0]['name'] == 'Mama Put'


def test_duplicate_order_id_is_client_error(app, auth_client):
    setup_stock(app)
    customer = setup_customer(auth_client)
    assert place_order(auth_client, customer['id'], id='ord-dup').status_code == 201

    response = place_order(auth_client, customer['id'], quantity=5, id='ord-dup')
    assert response.status_code == 400
    assert 'already exists' in response.get_json()['error']
    with app.app_context():
        assert db.session.get(InventoryItem, 'egg-1').quantity == Decimal('40.000')
    assert auth_client.get(f"/sales/customers/{customer['id']}").get_json()['total_orders'] == 1
