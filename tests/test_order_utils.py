"""
Tests for the sales order workflow: stock holds, customer statistics and the mirrored
income transaction.
"""

from decimal import Decimal

import pytest

from conftest import make_customer, make_flock, make_item
from models import db, Customer, Flock, InventoryItem, SalesOrder, Transaction
from routes.order_utils import (advance_status, create_order, delete_order, find_order_transaction, price_order,
                                recompute_customer_totals, update_order)


def order_payload(quantity='10', unit_price='5.00', item_id='inv-1', **extra):
    payload = {
        'customer_id': 'cust-1',
        'items': [{'inventory_item_id': item_id, 'description': 'Layer mash', 'quantity': quantity,
                   'unit_price': unit_price}],
    }
    payload.update(extra)
    return payload


@pytest.fixture
def stocked(app):
    with app.app_context():
        make_customer()
        make_customer('cust-2', 'Hotel Royal', type='RESTAURANT')
        make_item(quantity='7')
        make_flock(initial_count=100)
        db.session.commit()
        yield app


def test_price_order():
    priced = price_order([{'quantity': '2', 'unit_price': '10.00'}, {'quantity': '1.5', 'unit_price': '4'}],
                         vat_rate=10, wht_rate=5)
    assert priced['sub_total'] == Decimal('26.00')
    assert priced['vat_amount'] == Decimal('2.60')
    assert priced['wht_amount'] == Decimal('1.30')
    assert priced['total_amount'] == Decimal('27.30')


def test_price_order_rejects_zero_quantity():
    with pytest.raises(ValueError):
        price_order([{'quantity': '0', 'unit_price': '1'}])


# =============================================================================
# CREATE
# =============================================================================

class TestCreateOrder:

    def test_stock_clamps_at_zero(self, stocked):
        order = create_order(order_payload(quantity='10'))
        db.session.commit()

        item = db.session.get(InventoryItem, 'inv-1')
        assert item.quantity == Decimal('0.000')
        assert order.items[0].stock_deducted == Decimal('7.000')

    def test_customer_and_transaction(self, stocked):
        order = create_order(order_payload(quantity='2', unit_price='25.00', vat_rate=10))
        db.session.commit()

        customer = db.session.get(Customer, 'cust-1')
        assert customer.total_orders == 1
        assert customer.total_spent == Decimal('55.00')

        tx = find_order_transaction(order.id)
        assert tx.id == f'tx-{order.id}'
        assert tx.type == 'INCOME'
        assert tx.account_category == 'REVENUE'
        assert tx.category == 'Sales - General'
        assert tx.amount == Decimal('55.00')
        assert tx.vat_amount == Decimal('5.00')
        assert tx.description.endswith(' - Mama Put')
        assert tx.description.startswith('Sales Order #')

    def test_bird_line_sells_from_flock(self, stocked):
        payload = {'customer_id': 'cust-1',
                   'items': [{'flock_id': 'flk-1', 'description': 'Live broilers', 'quantity': 30,
                              'unit_price': '8.00'}]}
        order = create_order(payload)
        db.session.commit()

        flock = db.session.get(Flock, 'flk-1')
        assert flock.current_count == 70
        assert flock.total_sold == 30
        assert find_order_transaction(order.id).flock_id == 'flk-1'

    def test_fractional_birds_rejected(self, stocked):
        payload = {'customer_id': 'cust-1',
                   'items': [{'flock_id': 'flk-1', 'description': 'Birds', 'quantity': '2.5', 'unit_price': '1'}]}
        with pytest.raises(ValueError):
            create_order(payload)
        db.session.rollback()

    def test_line_cannot_reference_item_and_flock(self, stocked):
        payload = order_payload()
        payload['items'][0]['flock_id'] = 'flk-1'
        with pytest.raises(ValueError):
            create_order(payload)
        db.session.rollback()

    def test_unknown_customer(self, stocked):
        with pytest.raises(LookupError):
            create_order(order_payload(customer_id='nobody'))
        db.session.rollback()

    def test_cancelled_order_holds_nothing(self, stocked):
        order = create_order(order_payload(quantity='3', status='CANCELLED'))
        db.session.commit()

        assert db.session.get(InventoryItem, 'inv-1').quantity == Decimal('7.000')
        assert db.session.get(Customer, 'cust-1').total_orders == 0
        assert find_order_transaction(order.id) is None

    def test_duplicate_id_rejected(self, stocked):
        create_order(order_payload(quantity='2', id='ord-fixed'))
        db.session.commit()

        with pytest.raises(ValueError):
            create_order(order_payload(quantity='3', id='ord-fixed'))
        db.session.rollback()

        assert db.session.get(InventoryItem, 'inv-1').quantity == Decimal('5.000')
        assert db.session.get(Customer, 'cust-1').total_orders == 1


# =============================================================================
# UPDATE / DELETE
# =============================================================================

class TestUpdateOrder:

    def test_edit_items_moves_stock_by_delta(self, stocked):
        order = create_order(order_payload(quantity='3'))
        db.session.commit()

        update_order(order, {'items': [{'inventory_item_id': 'inv-1', 'description': 'Layer mash',
                                        'quantity': '5', 'unit_price': '5.00'}]})
        db.session.commit()

        assert db.session.get(InventoryItem, 'inv-1').quantity == Decimal('2.000')
        customer = db.session.get(Customer, 'cust-1')
        assert customer.total_orders == 1
        assert customer.total_spent == Decimal('25.00')
        assert find_order_transaction(order.id).amount == Decimal('25.00')

    def test_edit_on_customer_with_prior_totals(self, stocked):
        make_customer('cust-3', 'Regular Joe', total_orders=4, total_spent=Decimal('300.00'))
        db.session.commit()
        order = create_order(order_payload(quantity='2', customer_id='cust-3'))
        db.session.commit()

        update_order(order, {'items': [{'inventory_item_id': 'inv-1', 'description': 'Layer mash',
                                        'quantity': '3', 'unit_price': '5.00'}]})
        db.session.commit()

        customer = db.session.get(Customer, 'cust-3')
        assert customer.total_orders == 5
        assert customer.total_spent == Decimal('315.00')

    def test_removing_bird_lines_clears_transaction_flock(self, stocked):
        order = create_order({'customer_id': 'cust-1',
                              'items': [{'flock_id': 'flk-1', 'description': 'Birds', 'quantity': 5,
                                         'unit_price': '8'}]})
        db.session.commit()
        assert find_order_transaction(order.id).flock_id == 'flk-1'

        update_order(order, {'items': [{'inventory_item_id': 'inv-1', 'description': 'Layer mash',
                                        'quantity': '1', 'unit_price': '5.00'}]})
        db.session.commit()

        assert find_order_transaction(order.id).flock_id is None
        assert db.session.get(Flock, 'flk-1').current_count == 100

    def test_cancel_then_reinstate(self, stocked):
        order = create_order(order_payload(quantity='4'))
        db.session.commit()

        update_order(order, {'status': 'CANCELLED'})
        db.session.commit()
        assert db.session.get(InventoryItem, 'inv-1').quantity == Decimal('7.000')
        assert db.session.get(Customer, 'cust-1').total_orders == 0
        assert db.session.get(Customer, 'cust-1').total_spent == Decimal('0.00')
        assert find_order_transaction(order.id) is None

        update_order(order, {'status': 'PENDING'})
        db.session.commit()
        assert db.session.get(InventoryItem, 'inv-1').quantity == Decimal('3.000')
        assert db.session.get(Customer, 'cust-1').total_orders == 1
        assert find_order_transaction(order.id) is not None

    def test_move_to_other_customer(self, stocked):
        order = create_order(order_payload(quantity='2'))
        db.session.commit()

        update_order(order, {'customer_id': 'cust-2'})
        db.session.commit()

        old = db.session.get(Customer, 'cust-1')
        new = db.session.get(Customer, 'cust-2')
        assert (old.total_orders, old.total_spent) == (0, Decimal('0.00'))
        assert (new.total_orders, new.total_spent) == (1, Decimal('10.00'))
        assert order.customer_name == 'Hotel Royal'
        # stock untouched by a customer change
        assert db.session.get(InventoryItem, 'inv-1').quantity == Decimal('5.000')

    def test_delete_restores_stock_and_removes_transaction(self, stocked):
        order = create_order(order_payload(quantity='10'))
        db.session.commit()
        order_id = order.id

        delete_order(order)
        db.session.commit()

        assert db.session.get(SalesOrder, order_id) is None
        assert db.session.get(Transaction, f'tx-{order_id}') is None
        # only the 7 actually deducted come back
        assert db.session.get(InventoryItem, 'inv-1').quantity == Decimal('7.000')
        assert db.session.get(Customer, 'cust-1').total_orders == 0

    def test_delete_one_of_several_orders(self, stocked):
        orders = [create_order(order_payload(quantity='1', unit_price=price))
                  for price in ('5.00', '12.50', '30.00')]
        db.session.commit()
        customer = db.session.get(Customer, 'cust-1')
        assert (customer.total_orders, customer.total_spent) == (3, Decimal('47.50'))

        delete_order(orders[1])
        db.session.commit()

        assert (customer.total_orders, customer.total_spent) == (2, Decimal('35.00'))
        assert db.session.get(InventoryItem, 'inv-1').quantity == Decimal('5.000')

    def test_delete_clamps_drifted_totals(self, stocked):
        order = create_order(order_payload(quantity='2', unit_price='50.00'))
        db.session.commit()
        customer = db.session.get(Customer, 'cust-1')
        customer.total_orders = 0
        customer.total_spent = Decimal('40.00')
        db.session.commit()

        delete_order(order)
        db.session.commit()

        assert customer.total_orders == 0
        assert customer.total_spent == Decimal('0.00')

    def test_delete_returns_birds(self, stocked):
        order = create_order({'customer_id': 'cust-1',
                              'items': [{'flock_id': 'flk-1', 'description': 'Birds', 'quantity': 40,
                                         'unit_price': '8'}]})
        db.session.commit()
        delete_order(order)
        db.session.commit()

        flock = db.session.get(Flock, 'flk-1')
        assert flock.current_count == 100
        assert flock.total_sold == 0


def test_advance_status(stocked):
    order = create_order(order_payload(quantity='1'))
    assert advance_status(order).status == 'PAID'
    assert advance_status(order).status == 'DELIVERED'
    with pytest.raises(ValueError):
        advance_status(order)
    db.session.rollback()


def test_recompute_customer_totals(stocked):
    create_order(order_payload(quantity='1', unit_price='100'))
    db.session.commit()
    customer = db.session.get(Customer, 'cust-1')
    customer.total_orders = 9
    customer.total_spent = Decimal('1.00')
    db.session.commit()

    assert recompute_customer_totals() == 1
    db.session.commit()
    assert customer.total_orders == 1
    assert customer.total_spent == Decimal('100.00')
