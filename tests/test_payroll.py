from datetime import date
from decimal import Decimal
from types import SimpleNamespace

import pytest

from conftest import make_employee
from models import db, Employee, PayrollRun, Transaction
from routes.payroll_utils import PayrollWizard, calculate_payroll, calculate_payslip


def employee(base='1000', allowances='0', deductions='0', tax_rate=10.0, pension_rate=8.0, status='ACTIVE',
             emp_id='e1'):
    return SimpleNamespace(id=emp_id, name=f'Worker {emp_id}', base_salary=Decimal(base),
                           allowances=Decimal(allowances), deductions=Decimal(deductions), tax_rate=tax_rate,
                           pension_rate=pension_rate, status=status)


# =============================================================================
# PAYSLIPS
# =============================================================================

def test_payslip_with_defaults():
    slip = calculate_payslip(employee(base='800', allowances='200', deductions='50'))
    assert slip['gross'] == Decimal('1000.00')
    assert slip['tax'] == Decimal('100.00')
    assert slip['pension'] == Decimal('80.00')
    assert slip['net'] == Decimal('770.00')


def test_missing_rates_fall_back_to_defaults():
    slip = calculate_payslip(employee(tax_rate=None, pension_rate=None))
    assert slip['tax'] == Decimal('100.00')
    assert slip['pension'] == Decimal('80.00')


def test_explicit_zero_rate_is_honoured():
    slip = calculate_payslip(employee(tax_rate=0, pension_rate=0))
    assert slip['tax'] == 0
    assert slip['net'] == Decimal('1000.00')


def test_payroll_totals_with_deductions():
    batch = [employee(base='800', allowances='200', deductions='50', emp_id=f'e{i}') for i in (1, 2)]
    summary = calculate_payroll(batch)
    assert summary['total_gross'] == Decimal('2000.00')
    assert summary['total_net'] == Decimal('1540.00')


def test_payroll_totals():
    summary = calculate_payroll([employee(emp_id='e1'), employee(emp_id='e2')], run_date=date(2024, 3, 31))
    assert summary['period'] == 'March 2024'
    assert summary['total_gross'] == Decimal('2000.00')
    assert summary['total_net'] == Decimal('1640.00')
    assert summary['total_tax'] == Decimal('200.00')
    assert summary['employee_count'] == 2


# =============================================================================
# WIZARD
# =============================================================================

class TestPayrollWizard:

    def test_calculate_moves_to_confirmation(self):
        wizard = PayrollWizard()
        draft = wizard.calculate([employee()], period='Week 12', run_date=date(2024, 3, 22))
        assert wizard.state == PayrollWizard.CONFIRMATION
        assert wizard.selected_ids == ['e1']
        assert draft['status'] == 'DRAFT'
        assert draft['period'] == 'Week 12'
        assert draft['total_gross'] == '1000.00'
        assert draft['id'].startswith('pay-')

    def test_empty_selection_rejected(self):
        with pytest.raises(ValueError):
            PayrollWizard().calculate([])

    def test_inactive_employee_rejected(self):
        with pytest.raises(ValueError):
            PayrollWizard().calculate([employee(status='INACTIVE')])

    def test_back_keeps_selection(self):
        wizard = PayrollWizard()
        wizard.calculate([employee()])
        wizard.back()
        assert wizard.state == PayrollWizard.SELECTION
        assert wizard.selected_ids == ['e1']

    def test_confirm_requires_review(self):
        with pytest.raises(ValueError):
            PayrollWizard().confirm()

    def test_session_round_trip(self):
        session = {}
        wizard = PayrollWizard()
        wizard.calculate([employee()])
        wizard.save(session)

        loaded = PayrollWizard.load(session)
        assert loaded.state == PayrollWizard.CONFIRMATION
        assert loaded.draft == wizard.draft

        PayrollWizard.reset(session)
        assert PayrollWizard.load(session).state == PayrollWizard.SELECTION

    def test_confirm_stages_run_and_labor_expense(self, app):
        with app.app_context():
            make_employee('emp-1')
            make_employee('emp-2', base_salary='500', allowances='500')
            db.session.commit()
            employees = Employee.query.order_by(Employee.id).all()

            wizard = PayrollWizard()
            wizard.calculate(employees, run_date=date(2024, 6, 30))
            run, tx = wizard.confirm()
            db.session.commit()

            assert wizard.state == PayrollWizard.SELECTION
            assert wizard.draft is None

            saved = db.session.get(PayrollRun, run.id)
            assert saved.status == 'PAID'
            assert saved.total_gross == Decimal('2000.00')
            assert saved.total_net == Decimal('1640.00')
            assert saved.employee_count == 2

            expense = db.session.get(Transaction, f'tx-pay-{run.id}')
            assert expense.type == 'EXPENSE'
            assert expense.category == 'Labor'
            assert expense.account_category == 'OPEX'
            assert expense.amount == Decimal('2000.00')
            assert expense.wht_amount == Decimal('200.00')
            assert expense.pension_amount == Decimal('160.00')
            assert expense.date == date(2024, 6, 30)
