from flask import Blueprint, request, jsonify, Response
from flask_login import login_required
from datetime import date, datetime
import csv
import io
import logging

from models import db, Transaction, Flock
from routes.decorators import writer_required
from routes.errors import handle_route_error
from routes.finance_utils import classify_transaction, transaction_amounts
from routes.utils import (get_json_payload, require_fields, new_record_id, parse_date, safe_float,
                          to_decimal, list_response)

logger = logging.getLogger(__name__)

finance_bp = Blueprint('finance', __name__, url_prefix='/finance')

SORT_ORDERS = {
    'DATE_ASC': (Transaction.date.asc(), Transaction.created_at.asc()),
    'DATE_DESC': (Transaction.date.desc(), Transaction.created_at.desc()),
    'AMT_ASC': (Transaction.amount.asc(),),
    'AMT_DESC': (Transaction.amount.desc(),),
}


def filtered_transactions_query(args):
    """Transactions query honouring ?start_date, ?end_date, ?category, ?type, ?flock_id and ?sort."""
    query = Transaction.query
    start = parse_date(args.get('start_date'))
    end = parse_date(args.get('end_date'))
    if start:
        query = query.filter(Transaction.date >= start)
    if end:
        query = query.filter(Transaction.date <= end)
    category = args.get('category')
    if category and category != 'ALL':
        query = query.filter(Transaction.category == category)
    tx_type = args.get('type')
    if tx_type:
        query = query.filter(Transaction.type == tx_type)
    flock_id = args.get('flock_id')
    if flock_id:
        query = query.filter(Transaction.flock_id == flock_id)
    sort = args.get('sort') or 'DATE_DESC'
    if sort not in SORT_ORDERS:
        raise ValueError(f'sort must be one of {", ".join(SORT_ORDERS)}')
    return query.order_by(*SORT_ORDERS[sort])


def _apply_amounts(tx, payload):
    """Amounts come either from sub_total + rates or from an explicit amount."""
    if payload.get('sub_total') not in (None, ''):
        amounts = transaction_amounts(payload['sub_total'], safe_float(payload.get('vat_rate')),
                                      safe_float(payload.get('wht_rate')))
    elif payload.get('amount') not in (None, ''):
        amount = to_decimal(payload['amount'])
        amounts = {'sub_total': amount, 'vat_amount': to_decimal(payload.get('vat_amount')),
                   'wht_amount': to_decimal(payload.get('wht_amount')), 'amount': amount}
    else:
        return
    for field, value in amounts.items():
        setattr(tx, field, value)
    if tx.amount < 0:
        raise ValueError('Transaction amount cannot be negative')


@finance_bp.route('/transactions', methods=['GET'])
@login_required
def list_transactions():
    return jsonify(list_response(filtered_transactions_query(request.args)))


@finance_bp.route('/transactions/<tx_id>', methods=['GET'])
@login_required
def get_transaction(tx_id):
    return jsonify(db.get_or_404(Transaction, tx_id).to_dict())


@finance_bp.route('/transactions', methods=['POST'])
@login_required
@writer_required
def create_transaction():
    try:
        payload = get_json_payload()
        require_fields(payload, 'type')
        if payload.get('sub_total') in (None, '') and payload.get('amount') in (None, ''):
            raise ValueError('Either sub_total or amount is required')
        category = payload.get('category') or 'General'
        tx = Transaction(
            id=payload.get('id') or new_record_id('tx'),
            date=parse_date(payload.get('date'), date.today()),
            type=payload['type'],
            category=category,
            account_category=classify_transaction(payload['type'], category),
            pension_amount=to_decimal(payload.get('pension_amount')),
            description=payload.get('description') or '',
            flock_id=payload.get('flock_id') or None,
            reference_id=payload.get('reference_id') or None,
        )
        _apply_amounts(tx, payload)
        db.session.add(tx)
        db.session.commit()
        return jsonify(tx.to_dict()), 201
    except Exception as e:
        return handle_route_error(e, 'create transaction')


@finance_bp.route('/transactions/<tx_id>', methods=['PUT', 'PATCH'])
@login_required
@writer_required
def update_transaction(tx_id):
    tx = db.get_or_404(Transaction, tx_id)
    try:
        payload = get_json_payload()
        if 'type' in payload:
            tx.type = payload['type']
        if 'category' in payload:
            tx.category = payload['category'] or 'General'
        # the bucket is resolved whenever type or category may have changed
        tx.account_category = classify_transaction(tx.type, tx.category)
        if 'date' in payload:
            tx.date = parse_date(payload['date'], tx.date)
        for field in ('description', 'flock_id', 'reference_id'):
            if field in payload:
                setattr(tx, field, payload[field] or (None if field != 'description' else ''))
        if 'pension_amount' in payload:
            tx.pension_amount = to_decimal(payload['pension_amount'])
        _apply_amounts(tx, payload)
        db.session.commit()
        return jsonify(tx.to_dict())
    except Exception as e:
        return handle_route_error(e, 'update transaction')


@finance_bp.route('/transactions/<tx_id>', methods=['DELETE'])
@login_required
@writer_required
def delete_transaction(tx_id):
    tx = db.get_or_404(Transaction, tx_id)
    try:
        db.session.delete(tx)
        db.session.commit()
        return jsonify({'status': 'ok', 'id': tx_id})
    except Exception as e:
        return handle_route_error(e, 'delete transaction')


@finance_bp.route('/transactions/categories', methods=['GET'])
@login_required
def list_categories():
    rows = db.session.query(Transaction.category).distinct().order_by(Transaction.category).all()
    return jsonify([r[0] for r in rows])


@finance_bp.route('/transactions/export', methods=['GET'])
@login_required
def export_transactions():
    transactions = filtered_transactions_query(request.args).all()
    flock_names = {f.id: f.name for f in Flock.query.all()}

    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow(['Date', 'Type', 'Category', 'Subtotal', 'VAT', 'WHT', 'Net Total', 'Description', 'Flock',
                     'Order Ref'])
    for t in transactions:
        writer.writerow([
            t.date.isoformat(),
            t.type,
            t.category,
            f"{to_decimal(t.sub_total if t.sub_total is not None else t.amount):.2f}",
            f"{to_decimal(t.vat_amount):.2f}",
            f"{to_decimal(t.wht_amount):.2f}",
            f"{to_decimal(t.amount):.2f}",
            t.description,
            flock_names.get(t.flock_id, 'N/A') if t.flock_id else 'N/A',
            t.reference_id or '',
        ])

    output.seek(0)
    filename = f"transactions_{datetime.now().strftime('%Y%m%d_%H%M')}.csv"
    return Response(
        output.getvalue(),
        mimetype="text/csv",
        headers={"Content-Disposition": f"attachment;filename={filename}"}
    )
