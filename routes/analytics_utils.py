"""Dashboard and sales analytics computed from in-memory rows."""
from collections import defaultdict
from datetime import date, timedelta
from decimal import Decimal, ROUND_HALF_UP

ZERO = Decimal('0.00')
VIP_SPEND = Decimal('5000')
LOYAL_ORDERS = 5
NEW_CUSTOMER_DAYS = 30
CRITICAL_MORTALITY_PCT = Decimal('0.5')
WARNING_MORTALITY_PCT = Decimal('0.1')


def customer_segment(customer, today=None):
    today = today or date.today()
    if (customer.total_spent or ZERO) > VIP_SPEND:
        return 'VIP'
    if (customer.total_orders or 0) > LOYAL_ORDERS:
        return 'Loyal'
    if customer.joined_date and abs((today - customer.joined_date).days) < NEW_CUSTOMER_DAYS:
        return 'New'
    return 'Regular'


def sales_category(description):
    desc = (description or '').lower()
    if 'egg' in desc:
        return 'Eggs'
    if 'chicken' in desc or 'broiler' in desc or 'bird' in desc:
        return 'Live Birds'
    if 'manure' in desc:
        return 'Manure'
    return 'Other'


def month_start(day, months_back=0):
    """First day of the month `months_back` months before `day`'s month."""
    index = day.year * 12 + (day.month - 1) - months_back
    return date(index // 12, index % 12 + 1, 1)


def _same_month(d, anchor):
    return d.year == anchor.year and d.month == anchor.month


def sales_analytics(orders, today=None):
    today = today or date.today()
    live = [o for o in orders if o.status != 'CANCELLED']
    total_revenue = sum((o.total_amount or ZERO for o in live), ZERO)
    avg_order_value = (total_revenue / len(live)).quantize(Decimal('0.01'), rounding=ROUND_HALF_UP) if live else ZERO

    categories = defaultdict(lambda: ZERO)
    for order in live:
        for line in order.items:
            categories[sales_category(line.description)] += line.total or ZERO

    monthly = []
    for back in range(5, -1, -1):
        start = month_start(today, back)
        revenue = sum((o.total_amount or ZERO for o in live if _same_month(o.date, start)), ZERO)
        monthly.append({'month': start.strftime('%b'), 'period': start.strftime('%Y-%m'), 'revenue': revenue})

    return {
        'total_revenue': total_revenue,
        'order_count': len(live),
        'avg_order_value': avg_order_value,
        'category_sales': dict(categories),
        'monthly_revenue': monthly,
    }


def mortality_rate(flock, log):
    """Mortality of a log as a percentage of the flock's current count."""
    if not log or not flock.current_count:
        return Decimal('0')
    return Decimal(log.mortality or 0) / Decimal(flock.current_count) * 100


def flock_health_status(flock):
    log = flock.latest_log()
    if not log or not flock.current_count:
        return 'Unknown'
    rate = mortality_rate(flock, log)
    if rate > CRITICAL_MORTALITY_PCT:
        return 'Critical'
    if rate > WARNING_MORTALITY_PCT:
        return 'Warning'
    return 'Good'


def flock_fcr(flock):
    """Total feed over current biomass; None when there is no weight to divide by."""
    log = flock.latest_log()
    total_feed = sum((l.feed_consumed_kg or Decimal('0') for l in flock.logs), Decimal('0'))
    biomass_kg = Decimal(flock.current_count or 0) * (log.avg_weight_g if log else Decimal('0')) / 1000
    if biomass_kg <= 0:
        return None
    return (total_feed / biomass_kg).quantize(Decimal('0.01'), rounding=ROUND_HALF_UP)


def build_alerts(active_flocks, inventory, tasks, today):
    alerts = []
    for flock in active_flocks:
        if not any(l.date == today for l in flock.logs):
            alerts.append({'type': 'LOG', 'priority': 'MEDIUM', 'id': f'missing-log-{flock.id}',
                           'title': f'Missing Log: {flock.name}',
                           'detail': 'Daily performance log not recorded yet.'})
    for flock in active_flocks:
        log = flock.latest_log()
        rate = mortality_rate(flock, log)
        if log and rate > CRITICAL_MORTALITY_PCT:
            alerts.append({'type': 'MORTALITY', 'priority': 'HIGH', 'id': f'mort-{flock.id}',
                           'title': f'High Mortality: {flock.name}',
                           'detail': f'{log.mortality} birds lost ({rate:.1f}%)'})
    for flock in active_flocks:
        for record in flock.health_records:
            if record.type == 'VACCINATION' and record.status != 'RESOLVED' and record.date <= today:
                alerts.append({'type': 'VACCINE', 'priority': 'HIGH', 'id': f'vac-{record.id}',
                               'title': f'Vaccination Due: {flock.name}',
                               'detail': f'{record.title} - {"Today" if record.date == today else "Overdue"}'})
    for item in inventory:
        if item.is_low_stock():
            out = (item.quantity or 0) == 0
            alerts.append({'type': 'STOCK', 'priority': 'HIGH' if out else 'MEDIUM', 'id': f'stock-{item.id}',
                           'title': f'{"Out of Stock" if out else "Low Stock"}: {item.name}',
                           'detail': f'{item.quantity} {item.unit} remaining'})
    for task in tasks:
        if task.status != 'COMPLETED' and task.due_date <= today:
            alerts.append({'type': 'TASK', 'priority': 'HIGH' if task.priority == 'HIGH' else 'MEDIUM',
                           'id': task.id, 'title': task.title,
                           'detail': f'Assigned to {(task.assigned_to_name or "").split(" ")[0]}'})
    # stable sort keeps the grouping above within each priority
    return sorted(alerts, key=lambda a: 0 if a['priority'] == 'HIGH' else 1)


def critical_feed(inventory, limit=3):
    feed = [i for i in inventory if i.category == 'Feed']

    def scarcity(item):
        return (item.quantity or Decimal('0')) / (item.min_level or Decimal('1'))

    return sorted(feed, key=scarcity)[:limit]


def revenue_metrics(transactions, today):
    last_month = month_start(today, 1)
    income_mtd = expense_mtd = last_income = ZERO
    for tx in transactions:
        if tx.type == 'INCOME':
            if _same_month(tx.date, today):
                income_mtd += tx.amount
            elif _same_month(tx.date, last_month):
                last_income += tx.amount
        elif _same_month(tx.date, today):
            expense_mtd += tx.amount
    if last_income > 0:
        change = ((income_mtd - last_income) / last_income * 100).quantize(Decimal('0.1'), rounding=ROUND_HALF_UP)
    else:
        change = Decimal('0')
    return {
        'income_mtd': income_mtd,
        'expense_mtd': expense_mtd,
        'net_profit_mtd': income_mtd - expense_mtd,
        'percent_change': change,
    }


def financial_trend(transactions, today, months=6):
    rows = []
    for back in range(months - 1, -1, -1):
        start = month_start(today, back)
        income = expense = ZERO
        for tx in transactions:
            if _same_month(tx.date, start):
                if tx.type == 'INCOME':
                    income += tx.amount
                else:
                    expense += tx.amount
        rows.append({'label': start.strftime('%b'), 'period': start.strftime('%Y-%m'),
                     'income': income, 'expense': expense})
    return rows


def egg_trend(layer_flocks, today, days=7):
    rows = []
    for back in range(days - 1, -1, -1):
        day = today - timedelta(days=back)
        total = sum(l.egg_production or 0 for f in layer_flocks for l in f.logs if l.date == day)
        rows.append({'label': day.strftime('%a'), 'date': day.isoformat(), 'value': total})
    return rows


def dashboard_summary(flocks, inventory, tasks, transactions, today=None):
    today = today or date.today()
    active = [f for f in flocks if f.status == 'Active']
    layers = [f for f in active if f.type == 'Layer']

    metrics = {'eggs': 0, 'feed_kg': Decimal('0'), 'mortality': 0, 'water_l': Decimal('0')}
    for flock in active:
        log = flock.latest_log()
        if log:
            metrics['eggs'] += log.egg_production or 0
            metrics['feed_kg'] += log.feed_consumed_kg or 0
            metrics['mortality'] += log.mortality or 0
            metrics['water_l'] += log.water_consumed_l or 0

    alerts = build_alerts(active, inventory, tasks, today)
    return {
        'active_flocks': len(active),
        'total_birds': sum(f.current_count or 0 for f in active),
        'today': metrics,
        'revenue': revenue_metrics(transactions, today),
        'financial_trend': financial_trend(transactions, today),
        'egg_trend': egg_trend(layers, today),
        'flock_health': [
            {'flock_id': f.id, 'name': f.name, 'status': flock_health_status(f), 'fcr': flock_fcr(f),
             'current_count': f.current_count}
            for f in active
        ],
        'alerts': alerts,
        'critical_feed': [
            {'id': i.id, 'name': i.name, 'quantity': i.quantity, 'min_level': i.min_level, 'unit': i.unit}
            for i in critical_feed(inventory)
        ],
    }


def _pct(part, whole):
    if not whole:
        return Decimal('0.00')
    return (Decimal(part) / Decimal(whole) * 100).quantize(Decimal('0.01'), rounding=ROUND_HALF_UP)


def eggs_rejected(details):
    """Damaged eggs across both collection sessions of a log's egg details."""
    if not details:
        return 0
    return sum((details.get(s) or {}).get('damaged') or 0 for s in ('morning', 'afternoon'))


def egg_production_report(flock):
    """
    Per-log laying performance for a flock, newest log first.

    Birds alive on a day are the initial count less the mortality of every
    earlier log. Hen-day % divides the day's eggs by the birds alive, hen-housed %
    by the initial count. Averages only cover logs that produced eggs.
    """
    rows = []
    cumulative_mortality = 0
    for log in sorted(flock.logs, key=lambda l: l.day):
        birds_alive = (flock.initial_count or 0) - cumulative_mortality
        eggs = log.egg_production or 0
        rejected = eggs_rejected(log.egg_details())
        saleable = max(0, eggs - rejected)
        rows.append({
            'day': log.day,
            'date': log.date.isoformat() if log.date else None,
            'egg_production': eggs,
            'birds_alive': birds_alive,
            'hen_day_pct': _pct(eggs, birds_alive) if birds_alive > 0 else Decimal('0.00'),
            'hen_housed_pct': _pct(eggs, flock.initial_count),
            'rejected': rejected,
            'saleable': saleable,
            'quality_pct': _pct(saleable, eggs),
        })
        cumulative_mortality += log.mortality or 0

    producing = [r for r in rows if r['egg_production'] > 0]

    def average(key):
        if not producing:
            return Decimal('0.00')
        total = sum((r[key] for r in producing), Decimal('0'))
        return (total / len(producing)).quantize(Decimal('0.01'), rounding=ROUND_HALF_UP)

    return {
        'flock_id': flock.id,
        'total_production': sum(r['egg_production'] for r in rows),
        'total_saleable': sum(r['saleable'] for r in rows),
        'total_rejected': sum(r['rejected'] for r in rows),
        'avg_hen_day_pct': average('hen_day_pct'),
        'avg_hen_housed_pct': average('hen_housed_pct'),
        'peak_production': max((r['egg_production'] for r in producing), default=0),
        'logs': list(reversed(rows)),
    }
