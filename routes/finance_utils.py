"""
Financial aggregation over transaction records.

Everything here is a pure function over in-memory objects (ORM rows or anything with the
same attributes), so reports can be computed from a query result or from test fixtures
without touching the session. All arithmetic is Decimal.
"""
from collections import defaultdict
from datetime import date, timedelta
from decimal import Decimal, ROUND_HALF_UP

from routes.utils import to_decimal, rate_to_decimal

ZERO = Decimal('0.00')
MARGIN_PLACES = Decimal('0.0001')

COGS_KEYWORDS = ('Feed', 'Medicine', 'Livestock Purchase', 'Packaging')
TIME_RANGES = ('30D', 'MTD', 'YTD', 'ALL')
RECEIVABLE_STATUSES = ('PENDING', 'DELIVERED')


def classify_transaction(tx_type, category):
    """INCOME -> REVENUE; EXPENSE -> COGS when the category names a direct cost, else OPEX."""
    if tx_type == 'INCOME':
        return 'REVENUE'
    if tx_type != 'EXPENSE':
        raise ValueError(f'Unknown transaction type: {tx_type!r}')
    category = category or ''
    if any(keyword in category for keyword in COGS_KEYWORDS):
        return 'COGS'
    return 'OPEX'


def account_category_of(tx):
    # rows always carry the stored tag; unsaved objects fall back to classification
    return getattr(tx, 'account_category', None) or classify_transaction(tx.type, tx.category)


def _money(value):
    return value if isinstance(value, Decimal) else to_decimal(value)


def calculate_financials(transactions):
    """Bucket transactions into a P&L summary dict."""
    revenue = cogs = opex = ZERO
    vat_collected = vat_paid = wht_payable = pension_payable = ZERO

    for tx in transactions:
        amount = _money(tx.amount)
        bucket = account_category_of(tx)
        if tx.type == 'INCOME':
            revenue += amount
            vat_collected += _money(tx.vat_amount)
            continue
        vat_paid += _money(tx.vat_amount)
        wht_payable += _money(tx.wht_amount)
        pension_payable += _money(tx.pension_amount)
        if bucket == 'COGS':
            cogs += amount
        else:
            opex += amount

    gross_profit = revenue - cogs
    net_profit = gross_profit - opex
    if revenue > 0:
        margin = (net_profit / revenue).quantize(MARGIN_PLACES, rounding=ROUND_HALF_UP)
    else:
        margin = Decimal('0')

    return {
        'revenue': revenue,
        'cogs': cogs,
        'opex': opex,
        'vat_collected': vat_collected,
        'vat_paid': vat_paid,
        'wht_payable': wht_payable,
        'pension_payable': pension_payable,
        'gross_profit': gross_profit,
        'net_profit': net_profit,
        'margin': margin,
    }


def filter_by_time_range(transactions, time_range, today=None):
    """Keep transactions inside 30D (last thirty days), MTD, YTD or ALL."""
    today = today or date.today()
    if time_range not in TIME_RANGES:
        raise ValueError(f'time range must be one of {", ".join(TIME_RANGES)}')
    if time_range == 'ALL':
        return list(transactions)
    if time_range == '30D':
        cutoff = today - timedelta(days=30)
        return [tx for tx in transactions if tx.date >= cutoff]
    if time_range == 'MTD':
        return [tx for tx in transactions if tx.date.year == today.year and tx.date.month == today.month]
    return [tx for tx in transactions if tx.date.year == today.year]


def transaction_amounts(sub_total, vat_rate=0, wht_rate=0):
    """Split a pre-tax sub total into vat, wht and the net amount (sub + vat - wht)."""
    sub = to_decimal(sub_total)
    if sub < 0:
        raise ValueError('sub_total cannot be negative')
    vat = to_decimal(sub * rate_to_decimal(vat_rate) / 100)
    wht = to_decimal(sub * rate_to_decimal(wht_rate) / 100)
    return {
        'sub_total': sub,
        'vat_amount': vat,
        'wht_amount': wht,
        'amount': sub + vat - wht,
    }


def flock_unit_cost(flock):
    return _money(flock.initial_cost) / Decimal(flock.initial_count or 1)


def balance_sheet(transactions, inventory, flocks, orders):
    """
    Simplified cash-basis balance sheet.

    - cash is all-time revenue minus cogs and opex;
    - biological assets value active flocks at acquisition cost per bird;
    - receivables are PENDING and DELIVERED orders.
    """
    totals = calculate_financials(transactions)

    cash = totals['revenue'] - totals['cogs'] - totals['opex']
    inventory_value = sum(
        (to_decimal(_money(item.quantity) * _money(item.cost_per_unit)) for item in inventory), ZERO)
    biological = sum(
        (Decimal(f.current_count or 0) * flock_unit_cost(f) for f in flocks if f.status == 'Active'), ZERO)
    biological = to_decimal(biological)
    receivables = sum(
        (_money(o.total_amount) for o in orders if o.status in RECEIVABLE_STATUSES), ZERO)
    total_assets = cash + inventory_value + biological + receivables

    vat_liability = max(ZERO, totals['vat_collected'] - totals['vat_paid'])
    payroll_liability = totals['wht_payable'] + totals['pension_payable']
    total_liabilities = vat_liability + payroll_liability

    return {
        'assets': {
            'cash': cash,
            'inventory': inventory_value,
            'biological_assets': biological,
            'receivables': receivables,
            'total': total_assets,
        },
        'liabilities': {
            'vat': vat_liability,
            'payroll': payroll_liability,
            'total': total_liabilities,
        },
        'equity': total_assets - total_liabilities,
    }


def flock_economics(flocks, transactions):
    """Per-flock income, cost and profit for Active and Harvested flocks."""
    income = defaultdict(lambda: ZERO)
    expenses = defaultdict(lambda: ZERO)
    has_acquisition_tx = set()
    for tx in transactions:
        if not tx.flock_id:
            continue
        if tx.type == 'INCOME':
            income[tx.flock_id] += _money(tx.amount)
        else:
            expenses[tx.flock_id] += _money(tx.amount)
            if 'Livestock Purchase' in (tx.category or ''):
                has_acquisition_tx.add(tx.flock_id)

    rows = []
    for flock in flocks:
        if flock.status not in ('Active', 'Harvested'):
            continue
        cost = expenses[flock.id]
        # the acquisition expense is normally posted against the flock; only add it when it was not
        if flock.id not in has_acquisition_tx:
            cost += _money(flock.initial_cost)
        revenue = income[flock.id]
        rows.append({
            'flock_id': flock.id,
            'name': flock.name,
            'status': flock.status,
            'income': revenue,
            'expenses': cost,
            'profit': revenue - cost,
        })
    return rows


def expense_breakdown(transactions, limit=5):
    """Expense totals by category, largest first, with each category's share of all expenses."""
    totals = defaultdict(lambda: ZERO)
    for tx in transactions:
        if tx.type == 'EXPENSE':
            totals[tx.category] += _money(tx.amount)
    grand_total = sum(totals.values(), ZERO)

    ranked = sorted(totals.items(), key=lambda kv: (-kv[1], kv[0]))[:limit]
    return [
        {
            'category': category,
            'amount': amount,
            'share': (amount / grand_total).quantize(MARGIN_PLACES, rounding=ROUND_HALF_UP)
            if grand_total > 0 else Decimal('0'),
        }
        for category, amount in ranked
    ]


def tax_summary(transactions):
    totals = calculate_financials(transactions)
    return {
        'vat_collected': totals['vat_collected'],
        'vat_paid': totals['vat_paid'],
        'net_vat': totals['vat_collected'] - totals['vat_paid'],
        'wht_payable': totals['wht_payable'],
        'pension_payable': totals['pension_payable'],
    }
