from flask import Blueprint, jsonify, current_app, Response
from flask_login import login_user, logout_user, login_required, current_user
from passlib.hash import pbkdf2_sha256
from sqlalchemy import func
from datetime import datetime
import json
import logging

from models import (db, User, FarmProfile, Flock, InventoryItem, Customer, SalesOrder, Transaction, Employee,
                    HrTask, PayrollRun)
from extensions import limiter
from routes.analytics_utils import dashboard_summary
from routes.decorators import role_required
from routes.errors import handle_route_error
from routes.utils import get_json_payload, require_fields, get_farm_settings, clear_farm_settings_cache, safe_float

logger = logging.getLogger(__name__)

core_bp = Blueprint('core', __name__)

SETTINGS_TEXT_FIELDS = ('address', 'city', 'phone', 'email', 'currency_symbol')
MIN_PASSWORD_LENGTH = 6


@core_bp.route('/')
def index():
    return jsonify({'status': 'ok', 'farm': get_farm_settings()['name']})


# --- Auth ---

@core_bp.route('/auth/register', methods=['POST'])
@limiter.limit("5 per minute")
def register():
    """Create a profile and sign it in. New profiles get the configured sign-up role."""
    try:
        payload = get_json_payload()
        require_fields(payload, 'email', 'password')
        email = payload['email'].strip().lower()
        password = payload['password']
        if len(password) < MIN_PASSWORD_LENGTH:
            raise ValueError(f'Password must be at least {MIN_PASSWORD_LENGTH} characters.')
        if len(email) > 200 or len(password) > 200:
            raise ValueError('Email or password is too long.')
        if User.query.filter(func.lower(User.email) == email).first():
            return jsonify({'error': 'An account with that email already exists.'}), 409

        user = User(
            email=email,
            full_name=(payload.get('full_name') or '').strip() or None,
            password_hash=pbkdf2_sha256.hash(password),
            role=current_app.config.get('SIGNUP_ROLE', 'Admin'),
        )
        db.session.add(user)
        db.session.commit()
        login_user(user)
        logger.info("Registered profile %s with role %s", user.email, user.role)
        return jsonify(user.to_dict()), 201
    except Exception as e:
        return handle_route_error(e, 'register')


@core_bp.route('/auth/login', methods=['POST'])
@limiter.limit("10 per minute")
def login():
    payload = get_json_payload()
    email = (payload.get('email') or '').strip().lower()
    password = payload.get('password') or ''
    if not email or not password:
        return jsonify({'error': 'Email and password are required.'}), 400
    if len(email) > 200 or len(password) > 200:
        return jsonify({'error': 'Email or password is too long.'}), 400

    user = User.query.filter(func.lower(User.email) == email).first()
    if user and pbkdf2_sha256.verify(password, user.password_hash):
        login_user(user)
        logger.info("User %s logged in", user.email)
        return jsonify(user.to_dict())

    logger.warning("Failed login attempt for %s", email)
    return jsonify({'error': 'Invalid email or password.'}), 401


@core_bp.route('/auth/logout', methods=['POST'])
@login_required
def logout():
    email = current_user.email
    logout_user()
    logger.info("User %s logged out", email)
    return jsonify({'status': 'ok'})


@core_bp.route('/auth/me')
@login_required
def me():
    return jsonify(current_user.to_dict())


# --- Dashboard ---

@core_bp.route('/dashboard')
@login_required
def dashboard():
    summary = dashboard_summary(
        Flock.query.all(),
        InventoryItem.query.all(),
        HrTask.query.all(),
        Transaction.query.all(),
    )
    summary['currency_symbol'] = get_farm_settings()['currency_symbol']
    return jsonify(summary)


# --- Settings ---

@core_bp.route('/settings', methods=['GET'])
@login_required
def get_settings():
    return jsonify(get_farm_settings())


@core_bp.route('/settings', methods=['PUT', 'POST'])
@login_required
@role_required('Admin')
def update_settings():
    """Upsert the single 'global' settings row."""
    try:
        payload = get_json_payload()
        profile = db.session.get(FarmProfile, 'global')
        if profile is None:
            profile = FarmProfile(id='global', currency_symbol=current_app.config.get('CURRENCY_SYMBOL', '$'),
                                  tax_rate_default=current_app.config.get('DEFAULT_TAX_RATE', 0.0))
            db.session.add(profile)

        if 'name' in payload:
            name = (payload.get('name') or '').strip()
            if not name:
                raise ValueError('Farm name cannot be empty.')
            profile.farm_name = name
        for field in SETTINGS_TEXT_FIELDS:
            if field in payload:
                setattr(profile, field, payload[field] or '')
        if 'tax_rate_default' in payload:
            profile.tax_rate_default = safe_float(payload['tax_rate_default'])
        for field in ('latitude', 'longitude'):
            if field in payload:
                setattr(profile, field, safe_float(payload[field], None))
        if 'notifications' in payload:
            notifications = payload['notifications'] or {}
            if not isinstance(notifications, dict):
                raise ValueError('notifications must be an object')
            merged = profile.notifications()
            merged.update({k: bool(v) for k, v in notifications.items() if k in merged})
            profile.notifications_json = json.dumps(merged)

        db.session.commit()
        clear_farm_settings_cache()
        return jsonify(get_farm_settings())
    except Exception as e:
        return handle_route_error(e, 'update settings')


@core_bp.route('/settings/export')
@login_required
@role_required('Admin')
def export_backup():
    """JSON backup of every farm table."""
    backup = {
        'exported_at': datetime.utcnow().isoformat(timespec='seconds') + 'Z',
        'settings': get_farm_settings(),
        'flocks': [f.to_dict() for f in Flock.query.order_by(Flock.start_date)],
        'inventory': [i.to_dict() for i in InventoryItem.query.order_by(InventoryItem.name)],
        'customers': [c.to_dict() for c in Customer.query.order_by(Customer.name)],
        'orders': [o.to_dict() for o in SalesOrder.query.order_by(SalesOrder.date)],
        'transactions': [t.to_dict() for t in Transaction.query.order_by(Transaction.date)],
        'employees': [e.to_dict() for e in Employee.query.order_by(Employee.name)],
        'tasks': [t.to_dict() for t in HrTask.query.order_by(HrTask.due_date)],
        'payroll_runs': [r.to_dict() for r in PayrollRun.query.order_by(PayrollRun.date)],
    }
    filename = f"farm_backup_{datetime.now().strftime('%Y%m%d_%H%M')}.json"
    return Response(
        current_app.json.dumps(backup),
        mimetype='application/json',
        headers={"Content-Disposition": f"attachment;filename={filename}"}
    )
