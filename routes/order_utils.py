"""
Sales order side effects: pricing, stock movements, customer statistics and the
derived income transaction.

None of these functions commit. The calling route wraps them in a single session
transaction and rolls everything back when any step raises.
"""
import logging
from datetime import date
from decimal import Decimal

from models import db, Customer, Flock, InventoryItem, SalesOrder, SalesOrderItem, Transaction
from routes.finance_utils import transaction_amounts, classify_transaction
from routes.utils import to_decimal, to_quantity, safe_float, parse_date, new_record_id, require_fields

logger = logging.getLogger(__name__)

ZERO = Decimal('0.00')
STATUS_FLOW = {'PENDING': 'PAID', 'PAID': 'DELIVERED'}
SALES_CATEGORY = 'Sales - General'


def price_order(items, vat_rate=0, wht_rate=0):
    """Line totals, sub total, VAT, WHT and the grand total for a list of line dicts."""
    lines = []
    sub_total = ZERO
    for raw in items:
        quantity = to_quantity(raw.get('quantity'))
        if quantity <= 0:
            raise ValueError('Line quantity must be positive')
        unit_price = to_decimal(raw.get('unit_price'))
        if unit_price < 0:
            raise ValueError('Unit price cannot be negative')
        total = to_decimal(quantity * unit_price)
        sub_total += total
        lines.append(dict(raw, quantity=quantity, unit_price=unit_price, total=total))

    amounts = transaction_amounts(sub_total, vat_rate, wht_rate)
    return {
        'items': lines,
        'sub_total': amounts['sub_total'],
        'vat_amount': amounts['vat_amount'],
        'wht_amount': amounts['wht_amount'],
        'total_amount': amounts['amount'],
    }


def order_contribution(order):
    """(orders, spent) an order adds to its customer's statistics."""
    if order.status == 'CANCELLED':
        return 0, ZERO
    return 1, order.total_amount or ZERO


def _adjust_customer(customer_id, orders_delta, spent_delta):
    if not orders_delta and not spent_delta:
        return
    customer = db.session.get(Customer, customer_id)
    if customer is None:
        # customer_id is a weak reference; the customer may have been removed
        logger.warning("Order references missing customer %s; statistics not updated", customer_id)
        return
    customer.total_orders = max(0, (customer.total_orders or 0) + orders_delta)
    customer.total_spent = max(ZERO, (customer.total_spent or ZERO) + spent_delta)


def _build_lines(priced_items):
    lines = []
    for raw in priced_items:
        if not (raw.get('description') or '').strip():
            raise ValueError('Each order line needs a description')
        inventory_item_id = raw.get('inventory_item_id') or None
        flock_id = raw.get('flock_id') or None
        if inventory_item_id and flock_id:
            raise ValueError('An order line may reference an inventory item or a flock, not both')
        if flock_id and raw['quantity'] != raw['quantity'].to_integral_value():
            raise ValueError('Live bird lines must use a whole number of birds')
        lines.append(SalesOrderItem(
            inventory_item_id=inventory_item_id,
            flock_id=flock_id,
            description=raw['description'].strip(),
            quantity=raw['quantity'],
            unit=raw.get('unit') or ('birds' if flock_id else 'units'),
            unit_price=raw['unit_price'],
            total=raw['total'],
            stock_deducted=Decimal('0.000'),
        ))
    return lines


def apply_line_stock(line):
    """Take a line's quantity out of stock, clamped at zero, remembering what was removed."""
    if line.inventory_item_id:
        item = db.session.get(InventoryItem, line.inventory_item_id)
        if item is None:
            raise LookupError(f'Inventory item {line.inventory_item_id} not found')
        line.stock_deducted = item.remove_stock(line.quantity)
        item.last_updated = date.today()
    elif line.flock_id:
        flock = db.session.get(Flock, line.flock_id)
        if flock is None:
            raise LookupError(f'Flock {line.flock_id} not found')
        birds = int(line.quantity)
        line.stock_deducted = Decimal(flock.remove_birds(birds))
        flock.total_sold = (flock.total_sold or 0) + birds


def release_line_stock(line):
    """Give back exactly what apply_line_stock removed."""
    deducted = line.stock_deducted or Decimal('0')
    if line.inventory_item_id:
        item = db.session.get(InventoryItem, line.inventory_item_id)
        if item is None:
            logger.warning("Cannot restore stock: inventory item %s no longer exists", line.inventory_item_id)
        else:
            item.return_stock(deducted)
            item.last_updated = date.today()
    elif line.flock_id:
        flock = db.session.get(Flock, line.flock_id)
        if flock is None:
            logger.warning("Cannot restore birds: flock %s no longer exists", line.flock_id)
        else:
            flock.return_birds(int(deducted))
            flock.total_sold = max(0, (flock.total_sold or 0) - int(line.quantity))
    line.stock_deducted = Decimal('0.000')


def find_order_transaction(order_id):
    tx = db.session.get(Transaction, f'tx-{order_id}')
    if tx is None:
        tx = Transaction.query.filter_by(reference_id=order_id, type='INCOME').first()
    return tx


def sync_order_transaction(order):
    """Create, update or remove the INCOME transaction mirroring an order."""
    tx = find_order_transaction(order.id)
    if order.status == 'CANCELLED':
        if tx is not None:
            db.session.delete(tx)
        return None

    if tx is None:
        tx = Transaction(id=f'tx-{order.id}', type='INCOME', category=SALES_CATEGORY)
        db.session.add(tx)
    first_flock = next((line.flock_id for line in order.items if line.flock_id), None)
    parts = order.id.split('-')
    tx.date = order.date
    tx.account_category = classify_transaction('INCOME', tx.category)
    tx.amount = order.total_amount
    tx.sub_total = order.sub_total
    tx.vat_amount = order.vat_amount
    tx.wht_amount = order.wht_amount
    tx.description = f'Sales Order #{parts[1] if len(parts) > 1 else order.id} - {order.customer_name}'
    tx.reference_id = order.id
    tx.flock_id = first_flock
    return tx


def _apply_pricing(order, priced):
    order.sub_total = priced['sub_total']
    order.vat_amount = priced['vat_amount']
    order.wht_amount = priced['wht_amount']
    order.total_amount = priced['total_amount']


def _lookup_customer(customer_id):
    customer = db.session.get(Customer, customer_id)
    if customer is None:
        raise LookupError(f'Customer {customer_id} not found')
    return customer


def create_order(payload):
    """
    Build and stage a new order with all its side effects.

    - Stock is decremented (clamped at zero) for every line unless the order starts CANCELLED.
    - The customer's statistics move by the order's contribution.
    - The derived INCOME transaction is created.
    """
    require_fields(payload, 'customer_id')
    items = payload.get('items') or []
    if not items:
        raise ValueError('An order needs at least one line item')
    customer = _lookup_customer(payload['customer_id'])
    order_id = payload.get('id') or new_record_id('ord')
    if db.session.get(SalesOrder, order_id) is not None:
        raise ValueError(f'Order {order_id} already exists')

    vat_rate = safe_float(payload.get('vat_rate'))
    wht_rate = safe_float(payload.get('wht_rate'))
    priced = price_order(items, vat_rate, wht_rate)

    order = SalesOrder(
        id=order_id,
        customer_id=customer.id,
        customer_name=customer.name,
        date=parse_date(payload.get('date'), date.today()),
        status=payload.get('status') or 'PENDING',
        payment_method=payload.get('payment_method'),
        notes=payload.get('notes'),
        vat_rate=vat_rate,
        wht_rate=wht_rate,
    )
    order.items = _build_lines(priced['items'])
    _apply_pricing(order, priced)

    if order.status != 'CANCELLED':
        for line in order.items:
            apply_line_stock(line)

    db.session.add(order)
    orders_delta, spent_delta = order_contribution(order)
    _adjust_customer(order.customer_id, orders_delta, spent_delta)
    sync_order_transaction(order)
    logger.info("Order %s staged for customer %s (total %s)", order.id, order.customer_id, order.total_amount)
    return order


def update_order(order, payload):
    """Apply an edit, keeping stock, customer statistics and the ledger in step."""
    old_customer_id = order.customer_id
    old_orders, old_spent = order_contribution(order)
    was_active = order.status != 'CANCELLED'
    new_status = payload.get('status') or order.status
    items_replaced = 'items' in payload

    if items_replaced and not payload['items']:
        raise ValueError('An order needs at least one line item')

    if was_active and (items_replaced or new_status == 'CANCELLED'):
        for line in order.items:
            release_line_stock(line)

    if payload.get('customer_id') and payload['customer_id'] != order.customer_id:
        customer = _lookup_customer(payload['customer_id'])
        order.customer_id = customer.id
        order.customer_name = customer.name
    if 'vat_rate' in payload:
        order.vat_rate = safe_float(payload.get('vat_rate'))
    if 'wht_rate' in payload:
        order.wht_rate = safe_float(payload.get('wht_rate'))
    if 'date' in payload:
        order.date = parse_date(payload.get('date'), order.date)
    if 'payment_method' in payload:
        order.payment_method = payload.get('payment_method')
    if 'notes' in payload:
        order.notes = payload.get('notes')
    order.status = new_status

    if items_replaced:
        priced = price_order(payload['items'], order.vat_rate, order.wht_rate)
        order.items = _build_lines(priced['items'])
    else:
        priced = price_order([line.to_dict() for line in order.items], order.vat_rate, order.wht_rate)
    _apply_pricing(order, priced)

    if order.status != 'CANCELLED' and (items_replaced or not was_active):
        for line in order.items:
            apply_line_stock(line)

    new_orders, new_spent = order_contribution(order)
    if order.customer_id == old_customer_id:
        _adjust_customer(order.customer_id, new_orders - old_orders, new_spent - old_spent)
    else:
        _adjust_customer(old_customer_id, -old_orders, -old_spent)
        _adjust_customer(order.customer_id, new_orders, new_spent)

    sync_order_transaction(order)
    return order


def delete_order(order):
    """Remove an order, its derived transaction, its stock hold and its customer contribution."""
    if order.status != 'CANCELLED':
        for line in order.items:
            release_line_stock(line)
    orders_delta, spent_delta = order_contribution(order)
    _adjust_customer(order.customer_id, -orders_delta, -spent_delta)

    tx = find_order_transaction(order.id)
    if tx is not None:
        db.session.delete(tx)
    db.session.delete(order)


def advance_status(order):
    """PENDING -> PAID -> DELIVERED."""
    next_status = STATUS_FLOW.get(order.status)
    if next_status is None:
        raise ValueError(f'Cannot advance an order that is {order.status}')
    order.status = next_status
    return order


def recompute_customer_totals():
    """Rebuild every customer's total_orders/total_spent from its non-cancelled orders."""
    changed = 0
    for customer in Customer.query.all():
        orders = SalesOrder.query.filter(SalesOrder.customer_id == customer.id,
                                         SalesOrder.status != 'CANCELLED').all()
        total_orders = len(orders)
        total_spent = sum((o.total_amount or ZERO for o in orders), ZERO)
        if customer.total_orders != total_orders or customer.total_spent != total_spent:
            customer.total_orders = total_orders
            customer.total_spent = total_spent
            changed += 1
    return changed
