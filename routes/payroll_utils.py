import logging
from datetime import date
from decimal import Decimal

from models import db, PayrollRun, Transaction
from routes.finance_utils import classify_transaction
from routes.utils import to_decimal, rate_to_decimal, parse_date, new_record_id

logger = logging.getLogger(__name__)

ZERO = Decimal('0.00')
DEFAULT_TAX_RATE = 10
DEFAULT_PENSION_RATE = 8
PAYROLL_CATEGORY = 'Labor'


def calculate_payslip(employee):
    """gross = base + allowances; net = gross - tax - pension - deductions.

    A missing (None) rate falls back to the defaults; an explicit 0 is honoured.
    """
    tax_rate = employee.tax_rate if employee.tax_rate is not None else DEFAULT_TAX_RATE
    pension_rate = employee.pension_rate if employee.pension_rate is not None else DEFAULT_PENSION_RATE

    gross = to_decimal(employee.base_salary) + to_decimal(employee.allowances)
    tax = to_decimal(gross * rate_to_decimal(tax_rate) / 100)
    pension = to_decimal(gross * rate_to_decimal(pension_rate) / 100)
    deductions = to_decimal(employee.deductions)
    return {
        'employee_id': employee.id,
        'name': employee.name,
        'gross': gross,
        'tax': tax,
        'pension': pension,
        'deductions': deductions,
        'net': gross - tax - pension - deductions,
    }


def calculate_payroll(employees, period=None, run_date=None):
    run_date = run_date or date.today()
    slips = [calculate_payslip(emp) for emp in employees]
    return {
        'date': run_date,
        'period': period or run_date.strftime('%B %Y'),
        'payslips': slips,
        'total_gross': sum((s['gross'] for s in slips), ZERO),
        'total_tax': sum((s['tax'] for s in slips), ZERO),
        'total_pension': sum((s['pension'] for s in slips), ZERO),
        'total_net': sum((s['net'] for s in slips), ZERO),
        'employee_count': len(slips),
    }


def _serialise(value):
    if isinstance(value, Decimal):
        return format(value, 'f')
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, list):
        return [_serialise(v) for v in value]
    if isinstance(value, dict):
        return {k: _serialise(v) for k, v in value.items()}
    return value


class PayrollWizard:
    """
    Two-step payroll run kept in the user's session.

    SELECTION --calculate--> CONFIRMATION --confirm--> (run persisted, back to SELECTION)
    CONFIRMATION --back--> SELECTION, keeping the draft so the user can adjust the selection.
    """

    SELECTION = 'SELECTION'
    CONFIRMATION = 'CONFIRMATION'
    SESSION_KEY = 'payroll_wizard'

    def __init__(self, state=SELECTION, selected_ids=None, draft=None):
        self.state = state
        self.selected_ids = list(selected_ids or [])
        self.draft = draft

    @classmethod
    def load(cls, session):
        data = session.get(cls.SESSION_KEY) or {}
        state = data.get('state', cls.SELECTION)
        if state not in (cls.SELECTION, cls.CONFIRMATION):
            state = cls.SELECTION
        return cls(state, data.get('selected_ids'), data.get('draft'))

    def save(self, session):
        session[self.SESSION_KEY] = self.to_dict()

    @classmethod
    def reset(cls, session):
        session.pop(cls.SESSION_KEY, None)

    def to_dict(self):
        return {'state': self.state, 'selected_ids': self.selected_ids, 'draft': self.draft}

    def calculate(self, employees, period=None, run_date=None):
        if not employees:
            raise ValueError('Select at least one employee to run payroll')
        inactive = [e.name for e in employees if e.status != 'ACTIVE']
        if inactive:
            raise ValueError(f'Inactive employees cannot be paid: {", ".join(inactive)}')
        summary = calculate_payroll(employees, period, run_date)
        self.selected_ids = [e.id for e in employees]
        self.draft = _serialise(dict(summary, id=new_record_id('pay'), status='DRAFT'))
        self.state = self.CONFIRMATION
        return self.draft

    def back(self):
        self.state = self.SELECTION
        return self

    def confirm(self):
        """Stage the PAID run and its Labor expense. Does not commit."""
        if self.state != self.CONFIRMATION or not self.draft:
            raise ValueError('Payroll must be calculated and reviewed before it can be confirmed')
        draft = self.draft
        run = PayrollRun(
            id=draft['id'],
            date=parse_date(draft['date'], date.today()),
            period=draft['period'],
            total_gross=to_decimal(draft['total_gross']),
            total_net=to_decimal(draft['total_net']),
            total_tax=to_decimal(draft['total_tax']),
            total_pension=to_decimal(draft['total_pension']),
            status='PAID',
            employee_count=draft['employee_count'],
        )
        tx = Transaction(
            id=f'tx-pay-{run.id}',
            date=run.date,
            type='EXPENSE',
            category=PAYROLL_CATEGORY,
            account_category=classify_transaction('EXPENSE', PAYROLL_CATEGORY),
            amount=run.total_gross,
            sub_total=run.total_gross,
            wht_amount=run.total_tax,
            pension_amount=run.total_pension,
            description=f'Payroll Run - {run.period} ({run.employee_count} employees)',
        )
        db.session.add(run)
        db.session.add(tx)
        logger.info("Payroll run %s staged: gross=%s employees=%s", run.id, run.total_gross, run.employee_count)
        self.state = self.SELECTION
        self.selected_ids = []
        self.draft = None
        return run, tx
