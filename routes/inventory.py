from flask import Blueprint, request, jsonify
from flask_login import login_required
from datetime import date
import logging

from models import db, InventoryItem, Transaction
from routes.decorators import writer_required
from routes.errors import handle_route_error
from routes.finance_utils import transaction_amounts, classify_transaction
from routes.utils import (get_json_payload, require_fields, new_record_id, parse_date, safe_float,
                          to_decimal, to_quantity, list_response)

logger = logging.getLogger(__name__)

inventory_bp = Blueprint('inventory', __name__, url_prefix='/inventory')

MAINTENANCE_TYPES = ('Preventive', 'Repair', 'Inspection')
RESTOCK_CATEGORIES = {'Feed': 'Feed', 'Medicine': 'Medicine', 'Equipment': 'Equipment'}
TEXT_FIELDS = ('name', 'unit', 'location', 'notes', 'target_bird_type', 'serial_number', 'model')
DATE_FIELDS = ('purchase_date', 'warranty_expiry', 'next_maintenance_date')


def post_restock_expense(item, added_quantity, is_new):
    """Post an EXPENSE for stock bought. Does not commit."""
    if added_quantity <= 0:
        return None
    category = RESTOCK_CATEGORIES.get(item.category, 'Other')
    amounts = transaction_amounts(item.cost_per_unit * added_quantity, item.vat_rate, item.wht_rate)
    tx = Transaction(
        id=new_record_id('tx'),
        date=date.today(),
        type='EXPENSE',
        category=category,
        account_category=classify_transaction('EXPENSE', category),
        description=f'{"Initial Purchase" if is_new else "Restock"}: {item.name} '
                    f'(+{added_quantity.normalize():f} {item.unit})',
        reference_id=item.id,
        **amounts,
    )
    db.session.add(tx)
    return tx


def _apply_fields(item, payload):
    for field in TEXT_FIELDS:
        if field in payload:
            setattr(item, field, payload[field])
    for field in DATE_FIELDS:
        if field in payload:
            setattr(item, field, parse_date(payload[field]))
    if 'category' in payload:
        item.category = payload['category'] or 'Other'
    if 'quantity' in payload:
        item.quantity = to_quantity(payload['quantity'])
    if 'min_level' in payload:
        item.min_level = to_quantity(payload['min_level'])
    if 'cost_per_unit' in payload:
        item.cost_per_unit = to_decimal(payload['cost_per_unit'])
    for field in ('vat_rate', 'wht_rate'):
        if field in payload:
            setattr(item, field, safe_float(payload[field]))


@inventory_bp.route('', methods=['GET'])
@login_required
def list_items():
    query = InventoryItem.query
    category = request.args.get('category')
    if category:
        query = query.filter(InventoryItem.category == category)
    search = (request.args.get('search') or '').strip()
    if search:
        query = query.filter(InventoryItem.name.ilike(f'%{search}%'))
    items = list_response(query.order_by(InventoryItem.name))
    if request.args.get('low') in ('1', 'true', 'True') and isinstance(items, list):
        items = [i for i in items if i['low']]
    return jsonify(items)


@inventory_bp.route('/<item_id>', methods=['GET'])
@login_required
def get_item(item_id):
    return jsonify(db.get_or_404(InventoryItem, item_id).to_dict())


@inventory_bp.route('', methods=['POST'])
@login_required
@writer_required
def create_item():
    try:
        payload = get_json_payload()
        require_fields(payload, 'name')
        item = InventoryItem(id=payload.get('id') or new_record_id('inv'), category='Other',
                             quantity=0, min_level=0, cost_per_unit=0, unit='units',
                             vat_rate=0.0, wht_rate=0.0,
                             maintenance_logs_json='[]', usage_logs_json='[]', last_updated=date.today())
        _apply_fields(item, payload)
        db.session.add(item)
        if payload.get('record_expense'):
            post_restock_expense(item, item.quantity, is_new=True)
        db.session.commit()
        return jsonify(item.to_dict()), 201
    except Exception as e:
        return handle_route_error(e, 'create inventory item')


@inventory_bp.route('/<item_id>', methods=['PUT', 'PATCH'])
@login_required
@writer_required
def update_item(item_id):
    """Edit an item. With record_expense, a quantity increase is posted as a restock expense."""
    item = db.get_or_404(InventoryItem, item_id)
    try:
        payload = get_json_payload()
        old_quantity = item.quantity
        _apply_fields(item, payload)
        item.last_updated = date.today()
        if payload.get('record_expense'):
            post_restock_expense(item, item.quantity - old_quantity, is_new=False)
        db.session.commit()
        return jsonify(item.to_dict())
    except Exception as e:
        return handle_route_error(e, 'update inventory item')


@inventory_bp.route('/<item_id>', methods=['DELETE'])
@login_required
@writer_required
def delete_item(item_id):
    item = db.get_or_404(InventoryItem, item_id)
    try:
        db.session.delete(item)
        db.session.commit()
        return jsonify({'status': 'ok', 'id': item_id})
    except Exception as e:
        return handle_route_error(e, 'delete inventory item')


@inventory_bp.route('/<item_id>/maintenance', methods=['POST'])
@login_required
@writer_required
def add_maintenance(item_id):
    item = db.get_or_404(InventoryItem, item_id)
    try:
        payload = get_json_payload()
        maint_type = payload.get('type') or 'Preventive'
        if maint_type not in MAINTENANCE_TYPES:
            raise ValueError(f'type must be one of {", ".join(MAINTENANCE_TYPES)}')
        cost = to_decimal(payload.get('cost'))
        if cost < 0:
            raise ValueError('Maintenance cost cannot be negative')
        next_due = parse_date(payload.get('next_due_date'))
        entry = {
            'id': new_record_id('maint'),
            'date': parse_date(payload.get('date'), date.today()).isoformat(),
            'type': maint_type,
            'description': payload.get('description') or '',
            'cost': format(cost, 'f'),
            'performed_by': payload.get('performed_by') or '',
            'next_due_date': next_due.isoformat() if next_due else None,
        }
        item.append_log('maintenance', entry)
        if next_due:
            item.next_maintenance_date = next_due

        tx = None
        if cost > 0 and payload.get('record_expense', True):
            tx = Transaction(
                id=f'tx-maint-{entry["id"]}',
                date=parse_date(entry['date']),
                type='EXPENSE',
                category='Equipment Maintenance',
                account_category=classify_transaction('EXPENSE', 'Equipment Maintenance'),
                amount=cost,
                sub_total=cost,
                description=f'Maintenance: {item.name} - {maint_type}',
                reference_id=item.id,
            )
            db.session.add(tx)
        db.session.commit()
        return jsonify({'item': item.to_dict(), 'log': entry,
                        'transaction': tx.to_dict() if tx else None}), 201
    except Exception as e:
        return handle_route_error(e, 'record maintenance')


@inventory_bp.route('/<item_id>/usage', methods=['POST'])
@login_required
@writer_required
def add_usage(item_id):
    item = db.get_or_404(InventoryItem, item_id)
    try:
        payload = get_json_payload()
        hours = to_decimal(payload.get('duration_hours'))
        if hours < 0:
            raise ValueError('duration_hours cannot be negative')
        entry = {
            'id': new_record_id('use'),
            'date': parse_date(payload.get('date'), date.today()).isoformat(),
            'duration_hours': format(hours, 'f'),
            'used_by': payload.get('used_by') or '',
            'notes': payload.get('notes'),
        }
        item.append_log('usage', entry)
        db.session.commit()
        return jsonify({'item': item.to_dict(), 'log': entry}), 201
    except Exception as e:
        return handle_route_error(e, 'record usage')
