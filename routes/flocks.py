from flask import Blueprint, request, jsonify
from flask_login import login_required
from datetime import date
from decimal import Decimal
import json
import logging
import random

from models import db, Flock, FlockLog, HealthRecord, InventoryItem, Transaction
from routes.analytics_utils import egg_production_report, eggs_rejected
from routes.decorators import writer_required
from routes.errors import handle_route_error
from routes.finance_utils import transaction_amounts, classify_transaction
from routes.utils import (get_json_payload, require_fields, new_record_id, parse_date, safe_float,
                          to_decimal, to_quantity, list_response)

logger = logging.getLogger(__name__)

flocks_bp = Blueprint('flocks', __name__, url_prefix='/flocks')

EGG_GRADES = ('large', 'medium', 'small')
EGG_SESSIONS = ('morning', 'afternoon')
EGG_SESSION_FIELDS = ('good', 'damaged', 'recorded_at')
ACQUISITION_CATEGORY = 'Livestock Purchase'
FEED_BAG_KG = Decimal('50')
TABLE_EGGS = 'Table Eggs'


def generate_batch_id(today=None):
    today = today or date.today()
    return f'B-{today.year}-{random.randint(1000, 9999)}'


def default_stage(bird_type):
    return 'Starter' if bird_type == 'Broiler' else 'Chick'


def _egg_count(value, field):
    count = int(value or 0)
    if count < 0:
        raise ValueError(f'{field} cannot be negative')
    return count


def _clean_egg_session(name, raw):
    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ValueError(f'egg_details.{name} must be an object')
    unknown = sorted(set(raw) - set(EGG_SESSION_FIELDS))
    if unknown:
        raise ValueError(f'Unknown egg_details.{name} fields: {", ".join(unknown)}')
    good = raw.get('good') or {}
    if not isinstance(good, dict):
        raise ValueError(f'egg_details.{name}.good must be an object')
    unknown = sorted(set(good) - set(EGG_GRADES))
    if unknown:
        raise ValueError(f'Unknown egg grades in egg_details.{name}.good: {", ".join(unknown)}')
    session = {
        'good': {g: _egg_count(good.get(g), f'egg_details.{name}.good.{g}') for g in EGG_GRADES},
        'damaged': _egg_count(raw.get('damaged'), f'egg_details.{name}.damaged'),
    }
    if raw.get('recorded_at'):
        session['recorded_at'] = str(raw['recorded_at'])
    return session


def _clean_egg_details(raw):
    """
    Normalise `{morning: {good: {large, medium, small}, damaged}, afternoon: {...}}`.

    Unknown keys are rejected rather than dropped so a mis-shaped payload cannot
    be stored as zero eggs.
    """
    if not raw:
        return None
    if not isinstance(raw, dict):
        raise ValueError('egg_details must be an object')
    unknown = sorted(set(raw) - set(EGG_SESSIONS))
    if unknown:
        raise ValueError(f'Unknown egg_details fields: {", ".join(unknown)}')
    return {name: _clean_egg_session(name, raw.get(name)) for name in EGG_SESSIONS}


def _egg_total(details):
    """Eggs collected across both sessions, damaged included."""
    if not details:
        return 0
    return sum(sum(details[s]['good'].values()) + details[s]['damaged'] for s in EGG_SESSIONS)


def _damaged_only_details(damaged):
    details = {name: {'good': dict.fromkeys(EGG_GRADES, 0), 'damaged': 0} for name in EGG_SESSIONS}
    details['afternoon']['damaged'] = damaged
    return details


def deduct_feed(item_id, feed_kg):
    """
    Take a log's feed out of the chosen feed item. Does not commit.

    Items stocked in bags are drawn down at 50 kg per bag. Unlike order lines this
    is not clamped: a log that needs more feed than is on hand is rejected.
    """
    item = db.session.get(InventoryItem, item_id)
    if item is None:
        raise LookupError(f'Inventory item {item_id} not found')
    amount = feed_kg
    if 'bag' in (item.unit or '').lower():
        amount = feed_kg / FEED_BAG_KG
    amount = to_quantity(amount)
    if (item.quantity or 0) < amount:
        raise ValueError(f'Insufficient stock for {item.name}. Available: {item.quantity} {item.unit} '
                         f'(need {amount} {item.unit})')
    item.remove_stock(amount)
    item.last_updated = date.today()
    return amount


def find_egg_item():
    item = InventoryItem.query.filter_by(name=TABLE_EGGS).first()
    if item is None:
        item = InventoryItem.query.filter(InventoryItem.category == 'Other',
                                          InventoryItem.name.ilike('%egg%')).first()
    return item


def credit_eggs(saleable):
    """Add saleable eggs to the Table Eggs item, creating it on first use. Does not commit."""
    item = find_egg_item()
    if item is None:
        item = InventoryItem(id=new_record_id('inv-eggs'), name=TABLE_EGGS, category='Other',
                             quantity=0, unit='units', min_level=100, cost_per_unit=Decimal('0.15'),
                             vat_rate=0.0, wht_rate=0.0, maintenance_logs_json='[]', usage_logs_json='[]',
                             notes='Auto-created from daily production logs.')
        db.session.add(item)
        logger.info("Created %s inventory item %s", TABLE_EGGS, item.id)
    item.return_stock(saleable)
    item.last_updated = date.today()
    return item


def post_acquisition_expense(flock):
    """Record the purchase of the birds as a Livestock Purchase expense. Does not commit."""
    if not flock.initial_cost or flock.initial_cost <= 0:
        return None
    amounts = transaction_amounts(flock.initial_cost, flock.vat_rate, flock.wht_rate)
    tx = Transaction(
        id=f'tx-flock-init-{flock.id}',
        date=flock.start_date,
        type='EXPENSE',
        category=ACQUISITION_CATEGORY,
        account_category=classify_transaction('EXPENSE', ACQUISITION_CATEGORY),
        description=f'Initial Acquisition: {flock.name} ({flock.initial_count} birds)',
        flock_id=flock.id,
        reference_id=flock.batch_id,
        **amounts,
    )
    db.session.add(tx)
    return tx


@flocks_bp.route('', methods=['GET'])
@login_required
def list_flocks():
    query = Flock.query
    status = request.args.get('status')
    if status:
        query = query.filter(Flock.status == status)
    bird_type = request.args.get('type')
    if bird_type:
        query = query.filter(Flock.type == bird_type)
    include_logs = request.args.get('include_logs', '1') not in ('0', 'false', 'False')
    return jsonify(list_response(query.order_by(Flock.start_date.desc()),
                                 lambda f: f.to_dict(include_logs=include_logs)))


@flocks_bp.route('/<flock_id>', methods=['GET'])
@login_required
def get_flock(flock_id):
    return jsonify(db.get_or_404(Flock, flock_id).to_dict())


@flocks_bp.route('', methods=['POST'])
@login_required
@writer_required
def create_flock():
    try:
        payload = get_json_payload()
        require_fields(payload, 'name')
        bird_type = payload.get('type') or 'Broiler'
        start_date = parse_date(payload.get('start_date'), date.today())
        initial_count = payload.get('initial_count') or 0
        flock = Flock(
            id=payload.get('id') or new_record_id('flk'),
            name=payload['name'].strip(),
            batch_id=payload.get('batch_id') or generate_batch_id(start_date),
            type=bird_type,
            production_stage=payload.get('production_stage') or default_stage(bird_type),
            breed=payload.get('breed') or 'Unknown',
            house=payload.get('house') or 'Main House',
            source=payload.get('source'),
            start_date=start_date,
            initial_age_days=payload.get('initial_age_days') or 1,
            initial_count=initial_count,
            initial_cost=to_decimal(payload.get('initial_cost')),
            vat_rate=safe_float(payload.get('vat_rate')),
            wht_rate=safe_float(payload.get('wht_rate')),
            current_count=initial_count,
            total_sold=0,
            status=payload.get('status') or 'Active',
        )
        db.session.add(flock)
        post_acquisition_expense(flock)
        db.session.commit()
        logger.info("Created flock %s (%s birds)", flock.id, flock.initial_count)
        return jsonify(flock.to_dict()), 201
    except Exception as e:
        return handle_route_error(e, 'create flock')


@flocks_bp.route('/<flock_id>', methods=['PUT', 'PATCH'])
@login_required
@writer_required
def update_flock(flock_id):
    flock = db.get_or_404(Flock, flock_id)
    try:
        payload = get_json_payload()
        for field in ('name', 'breed', 'house', 'source', 'production_stage', 'type', 'status'):
            if field in payload and payload[field] is not None:
                setattr(flock, field, payload[field])
        if 'start_date' in payload:
            flock.start_date = parse_date(payload['start_date'], flock.start_date)
        if 'initial_age_days' in payload:
            flock.initial_age_days = payload['initial_age_days']
        if 'initial_count' in payload:
            flock.initial_count = payload['initial_count']
        if 'current_count' in payload:
            flock.current_count = payload['current_count']
        if 'initial_cost' in payload:
            flock.initial_cost = to_decimal(payload['initial_cost'])
        for field in ('vat_rate', 'wht_rate'):
            if field in payload:
                setattr(flock, field, safe_float(payload[field]))

        if flock.status == 'Harvested' and payload.get('clear_count'):
            flock.current_count = 0
        if flock.current_count > flock.initial_count:
            raise ValueError('current_count cannot exceed initial_count')

        db.session.commit()
        return jsonify(flock.to_dict())
    except Exception as e:
        return handle_route_error(e, 'update flock')


@flocks_bp.route('/<flock_id>', methods=['DELETE'])
@login_required
@writer_required
def delete_flock(flock_id):
    flock = db.get_or_404(Flock, flock_id)
    try:
        db.session.delete(flock)
        db.session.commit()
        logger.info("Deleted flock %s", flock_id)
        return jsonify({'status': 'ok', 'id': flock_id})
    except Exception as e:
        return handle_route_error(e, 'delete flock')


@flocks_bp.route('/<flock_id>/logs', methods=['POST'])
@login_required
@writer_required
def add_log(flock_id):
    """
    Record a daily log.

    - mortality comes off the live count (never below zero);
    - `selected_feed_id` draws feed_consumed_kg out of that feed item;
    - a Layer flock's saleable eggs (produced less damaged) are credited to Table Eggs.

    All of it lands in one commit.
    """
    flock = db.get_or_404(Flock, flock_id)
    try:
        payload = get_json_payload()
        details = _clean_egg_details(payload.get('egg_details'))
        eggs = payload.get('egg_production')
        if eggs in (None, '') and details:
            eggs = _egg_total(details)
        if details is None and payload.get('eggs_damaged'):
            details = _damaged_only_details(_egg_count(payload['eggs_damaged'], 'eggs_damaged'))
        log = FlockLog(
            id=payload.get('id') or new_record_id('log'),
            day=payload.get('day') or len(flock.logs) + 1,
            date=parse_date(payload.get('date'), date.today()),
            mortality=payload.get('mortality') or 0,
            mortality_reason=payload.get('mortality_reason'),
            feed_consumed_kg=to_quantity(payload.get('feed_consumed_kg')),
            water_consumed_l=to_quantity(payload.get('water_consumed_l')),
            avg_weight_g=to_quantity(payload.get('avg_weight_g')),
            egg_production=eggs or 0,
            egg_details_json=json.dumps(details) if details else None,
            notes=payload.get('notes'),
        )

        feed_id = payload.get('selected_feed_id')
        if feed_id and log.feed_consumed_kg > 0:
            deduct_feed(feed_id, log.feed_consumed_kg)

        egg_item = None
        if flock.type == 'Layer' and log.egg_production > 0:
            saleable = max(0, log.egg_production - eggs_rejected(details))
            if saleable > 0:
                egg_item = credit_eggs(saleable)

        flock.logs.append(log)
        flock.remove_birds(log.mortality)
        db.session.commit()
        body = {'log': log.to_dict(), 'flock': flock.to_dict(include_logs=False)}
        if egg_item is not None:
            body['egg_inventory'] = egg_item.to_dict()
        return jsonify(body), 201
    except Exception as e:
        return handle_route_error(e, 'add daily log')


@flocks_bp.route('/<flock_id>/logs', methods=['GET'])
@login_required
def list_logs(flock_id):
    flock = db.get_or_404(Flock, flock_id)
    return jsonify([log.to_dict() for log in flock.logs])


@flocks_bp.route('/<flock_id>/egg-production', methods=['GET'])
@login_required
def egg_production(flock_id):
    flock = db.get_or_404(Flock, flock_id)
    report = egg_production_report(flock)
    egg_item = find_egg_item()
    report['inventory_stock'] = egg_item.quantity if egg_item is not None else Decimal('0.000')
    return jsonify(report)


def _consume_treatment_stock(record):
    """Take the medication out of inventory (clamped) and price the record if it has no cost."""
    if not record.inventory_item_id or not record.quantity_used:
        return
    item = db.session.get(InventoryItem, record.inventory_item_id)
    if item is None:
        raise LookupError(f'Inventory item {record.inventory_item_id} not found')
    item.remove_stock(record.quantity_used)
    item.last_updated = date.today()
    if not record.cost:
        record.cost = to_decimal(item.cost_per_unit * record.quantity_used)
    if not record.medication_name:
        record.medication_name = item.name


@flocks_bp.route('/<flock_id>/health-records', methods=['GET'])
@login_required
def list_health_records(flock_id):
    flock = db.get_or_404(Flock, flock_id)
    return jsonify([r.to_dict() for r in flock.health_records])


@flocks_bp.route('/<flock_id>/health-records', methods=['POST'])
@login_required
@writer_required
def add_health_record(flock_id):
    flock = db.get_or_404(Flock, flock_id)
    try:
        payload = get_json_payload()
        require_fields(payload, 'type', 'title')
        record = HealthRecord(
            id=payload.get('id') or new_record_id('hr'),
            date=parse_date(payload.get('date'), date.today()),
            type=payload['type'],
            title=payload['title'],
            description=payload.get('description'),
            status=payload.get('status') or ('OPEN' if payload['type'] == 'VACCINATION' else 'RESOLVED'),
            outcome=payload.get('outcome'),
            medication_name=payload.get('medication_name'),
            inventory_item_id=payload.get('inventory_item_id') or None,
            quantity_used=to_quantity(payload.get('quantity_used')),
            cost=to_decimal(payload.get('cost')),
            dosage=payload.get('dosage'),
            birds_affected=payload.get('birds_affected') or 0,
        )
        flock.health_records.append(record)
        if record.status == 'RESOLVED':
            _consume_treatment_stock(record)
        db.session.commit()
        return jsonify(record.to_dict()), 201
    except Exception as e:
        return handle_route_error(e, 'add health record')


def _get_record(flock_id, record_id):
    record = db.get_or_404(HealthRecord, record_id)
    if record.flock_id != flock_id:
        raise LookupError(f'Health record {record_id} does not belong to flock {flock_id}')
    return record


@flocks_bp.route('/<flock_id>/health-records/<record_id>', methods=['PUT', 'PATCH'])
@login_required
@writer_required
def update_health_record(flock_id, record_id):
    try:
        record = _get_record(flock_id, record_id)
        payload = get_json_payload()
        was_resolved = record.status == 'RESOLVED'
        for field in ('type', 'title', 'description', 'status', 'outcome', 'medication_name', 'dosage',
                      'birds_affected'):
            if field in payload:
                setattr(record, field, payload[field])
        if 'date' in payload:
            record.date = parse_date(payload['date'], record.date)
        if 'inventory_item_id' in payload:
            record.inventory_item_id = payload['inventory_item_id'] or None
        if 'quantity_used' in payload:
            record.quantity_used = to_quantity(payload['quantity_used'])
        if 'cost' in payload:
            record.cost = to_decimal(payload['cost'])
        # stock is only consumed once, when the record is first resolved
        if record.status == 'RESOLVED' and not was_resolved:
            _consume_treatment_stock(record)
        db.session.commit()
        return jsonify(record.to_dict())
    except Exception as e:
        return handle_route_error(e, 'update health record')


@flocks_bp.route('/<flock_id>/health-records/<record_id>/resolve', methods=['POST'])
@login_required
@writer_required
def resolve_health_record(flock_id, record_id):
    try:
        record = _get_record(flock_id, record_id)
        if record.status == 'RESOLVED':
            raise ValueError('Health record is already resolved')
        payload = get_json_payload()
        record.status = 'RESOLVED'
        record.outcome = payload.get('outcome') or record.outcome
        record.date = parse_date(payload.get('date'), record.date)
        _consume_treatment_stock(record)
        db.session.commit()
        return jsonify(record.to_dict())
    except Exception as e:
        return handle_route_error(e, 'resolve health record')


@flocks_bp.route('/<flock_id>/health-records/<record_id>', methods=['DELETE'])
@login_required
@writer_required
def delete_health_record(flock_id, record_id):
    try:
        record = _get_record(flock_id, record_id)
        db.session.delete(record)
        db.session.commit()
        return jsonify({'status': 'ok', 'id': record_id})
    except Exception as e:
        return handle_route_error(e, 'delete health record')
