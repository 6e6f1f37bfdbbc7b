from flask import Blueprint, request, jsonify, Response
from flask_login import login_required
from datetime import datetime
import csv
import io

from models import Transaction, InventoryItem, Flock, SalesOrder
from routes.finance_utils import (calculate_financials, filter_by_time_range, balance_sheet, flock_economics,
                                  expense_breakdown, tax_summary, TIME_RANGES)
from routes.utils import get_farm_settings, safe_int

reports_bp = Blueprint('reports', __name__, url_prefix='/reports')


def _time_range():
    value = (request.args.get('range') or 'MTD').upper()
    if value not in TIME_RANGES:
        raise ValueError(f'range must be one of {", ".join(TIME_RANGES)}')
    return value


def _ranged_transactions():
    time_range = _time_range()
    return time_range, filter_by_time_range(Transaction.query.all(), time_range)


@reports_bp.route('/pnl')
@login_required
def profit_and_loss():
    time_range, transactions = _ranged_transactions()
    data = calculate_financials(transactions)
    data['range'] = time_range
    data['currency_symbol'] = get_farm_settings()['currency_symbol']
    return jsonify(data)


@reports_bp.route('/balance-sheet')
@login_required
def balance_sheet_report():
    # the balance sheet is always all-time
    data = balance_sheet(Transaction.query.all(), InventoryItem.query.all(), Flock.query.all(),
                         SalesOrder.query.all())
    data['currency_symbol'] = get_farm_settings()['currency_symbol']
    return jsonify(data)


@reports_bp.route('/tax')
@login_required
def tax_report():
    time_range, transactions = _ranged_transactions()
    data = tax_summary(transactions)
    data['range'] = time_range
    return jsonify(data)


@reports_bp.route('/flock-economics')
@login_required
def flock_economics_report():
    return jsonify(flock_economics(Flock.query.all(), Transaction.query.all()))


@reports_bp.route('/expense-breakdown')
@login_required
def expense_breakdown_report():
    time_range, transactions = _ranged_transactions()
    limit = max(safe_int(request.args.get('limit'), 5), 1)
    return jsonify({'range': time_range, 'categories': expense_breakdown(transactions, limit)})


@reports_bp.route('/export/income-statement')
@login_required
def export_income_statement():
    time_range, transactions = _ranged_transactions()
    data = calculate_financials(transactions)

    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow(['Line', 'Amount'])
    for label, key in (('Revenue', 'revenue'), ('Cost of Goods Sold', 'cogs'), ('Gross Profit', 'gross_profit'),
                       ('Operating Expenses', 'opex'), ('Net Profit', 'net_profit')):
        writer.writerow([label, f"{data[key]:.2f}"])
    writer.writerow(['Net Margin %', f"{data['margin'] * 100:.2f}"])

    output.seek(0)
    filename = f"income_statement_{time_range}_{datetime.now().strftime('%Y%m%d_%H%M')}.csv"
    return Response(
        output.getvalue(),
        mimetype="text/csv",
        headers={"Content-Disposition": f"attachment;filename={filename}"}
    )
