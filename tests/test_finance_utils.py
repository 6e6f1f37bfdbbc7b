"""
Tests for the financial aggregation helpers.

These run over plain objects, no database needed.
"""

from datetime import date
from decimal import Decimal
from types import SimpleNamespace

import pytest

from routes.finance_utils import (balance_sheet, calculate_financials, classify_transaction, expense_breakdown,
                                  filter_by_time_range, flock_economics, tax_summary, transaction_amounts)


def tx(tx_type, category, amount, on=date(2024, 5, 10), vat='0', wht='0', pension='0', flock_id=None):
    return SimpleNamespace(
        type=tx_type,
        category=category,
        account_category=classify_transaction(tx_type, category),
        amount=Decimal(amount),
        vat_amount=Decimal(vat),
        wht_amount=Decimal(wht),
        pension_amount=Decimal(pension),
        date=on,
        flock_id=flock_id,
    )


# =============================================================================
# CLASSIFICATION
# =============================================================================

class TestClassification:

    def test_income_is_revenue(self):
        assert classify_transaction('INCOME', 'Sales - General') == 'REVENUE'

    @pytest.mark.parametrize('category', ['Feed', 'Medicine', 'Livestock Purchase', 'Packaging',
                                          'Feed - Starter'])
    def test_direct_costs_are_cogs(self, category):
        assert classify_transaction('EXPENSE', category) == 'COGS'

    @pytest.mark.parametrize('category', ['Labor', 'Utilities', 'Equipment Maintenance', ''])
    def test_other_expenses_are_opex(self, category):
        assert classify_transaction('EXPENSE', category) == 'OPEX'

    def test_unknown_type_rejected(self):
        with pytest.raises(ValueError):
            classify_transaction('TRANSFER', 'Feed')


# =============================================================================
# PROFIT AND LOSS
# =============================================================================

class TestCalculateFinancials:

    def test_buckets_and_margin(self):
        rows = [
            tx('INCOME', 'Sales - General', '1000.00', vat='75.00'),
            tx('EXPENSE', 'Feed', '300.00', vat='22.50'),
            tx('EXPENSE', 'Labor', '200.00', wht='20.00', pension='16.00'),
        ]
        result = calculate_financials(rows)

        assert result['revenue'] == Decimal('1000.00')
        assert result['cogs'] == Decimal('300.00')
        assert result['opex'] == Decimal('200.00')
        assert result['gross_profit'] == Decimal('700.00')
        assert result['net_profit'] == Decimal('500.00')
        assert result['margin'] == Decimal('0.5000')
        assert result['vat_collected'] == Decimal('75.00')
        assert result['vat_paid'] == Decimal('22.50')
        assert result['wht_payable'] == Decimal('20.00')
        assert result['pension_payable'] == Decimal('16.00')

    def test_no_revenue_means_zero_margin(self):
        result = calculate_financials([tx('EXPENSE', 'Utilities', '50.00')])
        assert result['margin'] == 0
        assert result['net_profit'] == Decimal('-50.00')

    def test_empty(self):
        result = calculate_financials([])
        assert result['revenue'] == 0
        assert result['margin'] == 0

    def test_tax_summary_nets_vat(self):
        rows = [tx('INCOME', 'Sales', '100.00', vat='7.50'), tx('EXPENSE', 'Feed', '40.00', vat='3.00')]
        summary = tax_summary(rows)
        assert summary['net_vat'] == Decimal('4.50')


# =============================================================================
# TIME RANGES
# =============================================================================

class TestTimeRange:
    today = date(2024, 5, 15)

    def rows(self):
        return [
            tx('INCOME', 'Sales', '1', on=date(2024, 5, 1)),
            tx('INCOME', 'Sales', '2', on=date(2024, 4, 20)),
            tx('INCOME', 'Sales', '3', on=date(2024, 1, 3)),
            tx('INCOME', 'Sales', '4', on=date(2023, 12, 31)),
        ]

    def amounts(self, time_range):
        return sorted(int(t.amount) for t in filter_by_time_range(self.rows(), time_range, self.today))

    def test_thirty_days(self):
        assert self.amounts('30D') == [1, 2]

    def test_month_to_date(self):
        assert self.amounts('MTD') == [1]

    def test_year_to_date(self):
        assert self.amounts('YTD') == [1, 2, 3]

    def test_all(self):
        assert self.amounts('ALL') == [1, 2, 3, 4]

    def test_unknown_range(self):
        with pytest.raises(ValueError):
            filter_by_time_range(self.rows(), 'QTD', self.today)


def test_transaction_amounts_split():
    amounts = transaction_amounts('1000', vat_rate=7.5, wht_rate=5)
    assert amounts == {
        'sub_total': Decimal('1000.00'),
        'vat_amount': Decimal('75.00'),
        'wht_amount': Decimal('50.00'),
        'amount': Decimal('1025.00'),
    }


def test_transaction_amounts_rejects_negative():
    with pytest.raises(ValueError):
        transaction_amounts('-1')


# =============================================================================
# BALANCE SHEET / FLOCK ECONOMICS / BREAKDOWN
# =============================================================================

def test_balance_sheet():
    transactions = [
        tx('INCOME', 'Sales', '1000.00', vat='100.00'),
        tx('EXPENSE', 'Feed', '400.00', vat='30.00'),
        tx('EXPENSE', 'Labor', '100.00', wht='10.00', pension='8.00'),
    ]
    inventory = [SimpleNamespace(quantity=Decimal('10.000'), cost_per_unit=Decimal('2.50'))]
    flocks = [
        SimpleNamespace(status='Active', current_count=90, initial_count=100, initial_cost=Decimal('500.00')),
        SimpleNamespace(status='Harvested', current_count=50, initial_count=100, initial_cost=Decimal('500.00')),
    ]
    orders = [
        SimpleNamespace(status='PENDING', total_amount=Decimal('30.00')),
        SimpleNamespace(status='DELIVERED', total_amount=Decimal('20.00')),
        SimpleNamespace(status='PAID', total_amount=Decimal('99.00')),
        SimpleNamespace(status='CANCELLED', total_amount=Decimal('99.00')),
    ]

    sheet = balance_sheet(transactions, inventory, flocks, orders)

    assert sheet['assets']['cash'] == Decimal('500.00')
    assert sheet['assets']['inventory'] == Decimal('25.00')
    assert sheet['assets']['biological_assets'] == Decimal('450.00')
    assert sheet['assets']['receivables'] == Decimal('50.00')
    assert sheet['assets']['total'] == Decimal('1025.00')
    assert sheet['liabilities']['vat'] == Decimal('70.00')
    assert sheet['liabilities']['payroll'] == Decimal('18.00')
    assert sheet['equity'] == Decimal('937.00')


def test_vat_liability_never_negative():
    sheet = balance_sheet([tx('EXPENSE', 'Feed', '100.00', vat='10.00')], [], [], [])
    assert sheet['liabilities']['vat'] == 0


def test_flock_economics_does_not_double_count_acquisition():
    flocks = [
        SimpleNamespace(id='f1', name='A', status='Active', initial_cost=Decimal('500.00')),
        SimpleNamespace(id='f2', name='B', status='Harvested', initial_cost=Decimal('300.00')),
        SimpleNamespace(id='f3', name='C', status='Planned', initial_cost=Decimal('100.00')),
    ]
    transactions = [
        tx('EXPENSE', 'Livestock Purchase', '500.00', flock_id='f1'),
        tx('EXPENSE', 'Feed', '50.00', flock_id='f1'),
        tx('INCOME', 'Sales', '900.00', flock_id='f1'),
        tx('INCOME', 'Sales', '200.00', flock_id='f2'),
    ]

    rows = {row['flock_id']: row for row in flock_economics(flocks, transactions)}

    assert set(rows) == {'f1', 'f2'}
    assert rows['f1']['expenses'] == Decimal('550.00')
    assert rows['f1']['profit'] == Decimal('350.00')
    # no acquisition expense posted for f2, so its initial cost counts
    assert rows['f2']['expenses'] == Decimal('300.00')
    assert rows['f2']['profit'] == Decimal('-100.00')


def test_expense_breakdown_ranks_and_shares():
    rows = [
        tx('EXPENSE', 'Feed', '600.00'),
        tx('EXPENSE', 'Labor', '300.00'),
        tx('EXPENSE', 'Feed', '0.00'),
        tx('EXPENSE', 'Utilities', '100.00'),
        tx('INCOME', 'Sales', '5000.00'),
    ]
    breakdown = expense_breakdown(rows, limit=2)
    assert [b['category'] for b in breakdown] == ['Feed', 'Labor']
    assert breakdown[0]['share'] == Decimal('0.6000')
    assert breakdown[1]['amount'] == Decimal('300.00')
