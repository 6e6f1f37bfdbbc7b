from flask import Blueprint, request, jsonify, session
from flask_login import login_required
from datetime import date
import logging

from models import db, Employee, HrTask, PayrollRun
from routes.decorators import writer_required
from routes.errors import handle_route_error
from routes.payroll_utils import PayrollWizard, calculate_payslip
from routes.utils import (get_json_payload, require_fields, new_record_id, parse_date, safe_float,
                          to_decimal, list_response)

logger = logging.getLogger(__name__)

hr_bp = Blueprint('hr', __name__, url_prefix='/hr')

EMPLOYEE_TEXT_FIELDS = ('name', 'role', 'phone', 'email', 'status')
EMPLOYEE_MONEY_FIELDS = ('base_salary', 'allowances', 'deductions')


def _payslip_payload(employee):
    slip = calculate_payslip(employee)
    return {k: format(v, 'f') if not isinstance(v, str) else v for k, v in slip.items()}


# --- Employees ---

@hr_bp.route('/employees', methods=['GET'])
@login_required
def list_employees():
    query = Employee.query
    status = request.args.get('status')
    if status:
        query = query.filter(Employee.status == status)
    return jsonify(list_response(query.order_by(Employee.name)))


@hr_bp.route('/employees/<employee_id>', methods=['GET'])
@login_required
def get_employee(employee_id):
    employee = db.get_or_404(Employee, employee_id)
    data = employee.to_dict()
    data['payslip'] = _payslip_payload(employee)
    return jsonify(data)


@hr_bp.route('/employees', methods=['POST'])
@login_required
@writer_required
def create_employee():
    try:
        payload = get_json_payload()
        require_fields(payload, 'name', 'role')
        employee = Employee(
            id=payload.get('id') or new_record_id('emp'),
            name=payload['name'].strip(),
            role=payload['role'],
            phone=payload.get('phone') or '',
            email=payload.get('email'),
            base_salary=to_decimal(payload.get('base_salary')),
            allowances=to_decimal(payload.get('allowances')),
            deductions=to_decimal(payload.get('deductions')),
            tax_rate=safe_float(payload.get('tax_rate'), None),
            pension_rate=safe_float(payload.get('pension_rate'), None),
            joined_date=parse_date(payload.get('joined_date'), date.today()),
            status=payload.get('status') or 'ACTIVE',
        )
        if employee.tax_rate is None:
            employee.tax_rate = 10.0
        if employee.pension_rate is None:
            employee.pension_rate = 8.0
        db.session.add(employee)
        db.session.commit()
        return jsonify(employee.to_dict()), 201
    except Exception as e:
        return handle_route_error(e, 'create employee')


@hr_bp.route('/employees/<employee_id>', methods=['PUT', 'PATCH'])
@login_required
@writer_required
def update_employee(employee_id):
    employee = db.get_or_404(Employee, employee_id)
    try:
        payload = get_json_payload()
        for field in EMPLOYEE_TEXT_FIELDS:
            if field in payload and payload[field] is not None:
                setattr(employee, field, payload[field])
        for field in EMPLOYEE_MONEY_FIELDS:
            if field in payload:
                setattr(employee, field, to_decimal(payload[field]))
        for field in ('tax_rate', 'pension_rate'):
            if field in payload:
                setattr(employee, field, safe_float(payload[field], None))
        if 'joined_date' in payload:
            employee.joined_date = parse_date(payload['joined_date'], employee.joined_date)
        db.session.commit()
        return jsonify(employee.to_dict())
    except Exception as e:
        return handle_route_error(e, 'update employee')


@hr_bp.route('/employees/<employee_id>', methods=['DELETE'])
@login_required
@writer_required
def delete_employee(employee_id):
    employee = db.get_or_404(Employee, employee_id)
    try:
        db.session.delete(employee)
        db.session.commit()
        return jsonify({'status': 'ok', 'id': employee_id})
    except Exception as e:
        return handle_route_error(e, 'delete employee')


# --- Tasks ---

@hr_bp.route('/tasks', methods=['GET'])
@login_required
def list_tasks():
    query = HrTask.query
    for arg, column in (('status', HrTask.status), ('assigned_to_id', HrTask.assigned_to_id),
                        ('priority', HrTask.priority)):
        value = request.args.get(arg)
        if value:
            query = query.filter(column == value)
    return jsonify(list_response(query.order_by(HrTask.due_date)))


def _assign(task, employee_id):
    employee = db.session.get(Employee, employee_id)
    if employee is None:
        raise LookupError(f'Employee {employee_id} not found')
    task.assigned_to_id = employee.id
    task.assigned_to_name = employee.name


@hr_bp.route('/tasks', methods=['POST'])
@login_required
@writer_required
def create_task():
    try:
        payload = get_json_payload()
        require_fields(payload, 'title', 'assigned_to_id')
        task = HrTask(
            id=payload.get('id') or new_record_id('task'),
            title=payload['title'],
            description=payload.get('description'),
            related_flock_id=payload.get('related_flock_id') or None,
            priority=payload.get('priority') or 'MEDIUM',
            due_date=parse_date(payload.get('due_date'), date.today()),
            status=payload.get('status') or 'PENDING',
        )
        _assign(task, payload['assigned_to_id'])
        db.session.add(task)
        db.session.commit()
        return jsonify(task.to_dict()), 201
    except Exception as e:
        return handle_route_error(e, 'create task')


@hr_bp.route('/tasks/<task_id>', methods=['PUT', 'PATCH'])
@login_required
@writer_required
def update_task(task_id):
    task = db.get_or_404(HrTask, task_id)
    try:
        payload = get_json_payload()
        for field in ('title', 'description', 'priority', 'status'):
            if field in payload and payload[field] is not None:
                setattr(task, field, payload[field])
        if 'related_flock_id' in payload:
            task.related_flock_id = payload['related_flock_id'] or None
        if 'due_date' in payload:
            task.due_date = parse_date(payload['due_date'], task.due_date)
        if payload.get('assigned_to_id') and payload['assigned_to_id'] != task.assigned_to_id:
            _assign(task, payload['assigned_to_id'])
        db.session.commit()
        return jsonify(task.to_dict())
    except Exception as e:
        return handle_route_error(e, 'update task')


@hr_bp.route('/tasks/<task_id>', methods=['DELETE'])
@login_required
@writer_required
def delete_task(task_id):
    task = db.get_or_404(HrTask, task_id)
    try:
        db.session.delete(task)
        db.session.commit()
        return jsonify({'status': 'ok', 'id': task_id})
    except Exception as e:
        return handle_route_error(e, 'delete task')


# --- Payroll ---

@hr_bp.route('/payroll/wizard', methods=['GET'])
@login_required
def payroll_wizard_state():
    return jsonify(PayrollWizard.load(session).to_dict())


@hr_bp.route('/payroll/calculate', methods=['POST'])
@login_required
@writer_required
def payroll_calculate():
    try:
        payload = get_json_payload()
        ids = payload.get('employee_ids') or []
        if not isinstance(ids, list):
            raise ValueError('employee_ids must be a list')
        employees = Employee.query.filter(Employee.id.in_(ids)).order_by(Employee.name).all() if ids else []
        missing = set(ids) - {e.id for e in employees}
        if missing:
            raise LookupError(f'Unknown employee(s): {", ".join(sorted(missing))}')

        wizard = PayrollWizard.load(session)
        wizard.calculate(employees, payload.get('period'), parse_date(payload.get('date'), date.today()))
        wizard.save(session)
        return jsonify(wizard.to_dict())
    except Exception as e:
        return handle_route_error(e, 'calculate payroll')


@hr_bp.route('/payroll/back', methods=['POST'])
@login_required
@writer_required
def payroll_back():
    wizard = PayrollWizard.load(session).back()
    wizard.save(session)
    return jsonify(wizard.to_dict())


@hr_bp.route('/payroll/cancel', methods=['POST'])
@login_required
@writer_required
def payroll_cancel():
    PayrollWizard.reset(session)
    return jsonify(PayrollWizard().to_dict())


@hr_bp.route('/payroll/confirm', methods=['POST'])
@login_required
@writer_required
def payroll_confirm():
    """Persist the reviewed run and its Labor expense in one commit."""
    wizard = PayrollWizard.load(session)
    try:
        run, tx = wizard.confirm()
        db.session.commit()
        PayrollWizard.reset(session)
        logger.info("Payroll run %s confirmed", run.id)
        return jsonify({'run': run.to_dict(), 'transaction': tx.to_dict()}), 201
    except Exception as e:
        return handle_route_error(e, 'confirm payroll')


@hr_bp.route('/payroll/runs', methods=['GET'])
@login_required
def payroll_history():
    return jsonify(list_response(PayrollRun.query.order_by(PayrollRun.date.desc())))
