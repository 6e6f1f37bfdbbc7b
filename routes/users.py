from flask import Blueprint, jsonify
from models import db, User, USER_ROLES
from passlib.hash import pbkdf2_sha256
from flask_login import login_required, current_user
from .decorators import role_required
from .errors import handle_route_error
from .utils import get_json_payload
from sqlalchemy import func
import logging

logger = logging.getLogger(__name__)

user_bp = Blueprint('users', __name__, url_prefix='/users')


def _admin_count():
    return User.query.filter(func.lower(User.role) == 'admin').count()


@user_bp.route('', methods=['GET'])
@login_required
@role_required('Admin')
def list_users():
    return jsonify([u.to_dict() for u in User.query.order_by(User.email)])


@user_bp.route('/<int:user_id>', methods=['PUT', 'PATCH'])
@login_required
@role_required('Admin')
def update_user(user_id):
    user = db.get_or_404(User, user_id)
    try:
        payload = get_json_payload()
        role = (payload.get('role') or '').strip()
        if role:
            if role not in USER_ROLES:
                raise ValueError(f'Role must be one of {", ".join(USER_ROLES)}')
            # Prevent demoting the last Admin account
            if user.role == 'Admin' and role != 'Admin' and _admin_count() <= 1:
                return jsonify({'error': 'Cannot change the role of the last admin account.'}), 400
            user.role = role

        new_password = payload.get('password')
        if new_password:
            if len(new_password) < 6:
                raise ValueError('Password must be at least 6 characters.')
            user.password_hash = pbkdf2_sha256.hash(new_password)
        if 'full_name' in payload:
            user.full_name = payload['full_name']

        db.session.commit()
        logger.info("Updated user %s (role %s)", user.email, user.role)
        return jsonify(user.to_dict())
    except Exception as e:
        return handle_route_error(e, 'update user')


@user_bp.route('/<int:user_id>', methods=['DELETE'])
@login_required
@role_required('Admin')
def delete_user(user_id):
    user = db.get_or_404(User, user_id)

    # Safety check: prevent a user from deleting themselves
    if user.id == current_user.id:
        return jsonify({'error': 'You cannot delete your own account.'}), 400

    # Prevent removing the last Admin account
    if user.role == 'Admin' and _admin_count() <= 1:
        return jsonify({'error': 'Cannot delete the last admin account.'}), 400

    try:
        db.session.delete(user)
        db.session.commit()
        logger.info("Deleted user %s", user.email)
        return jsonify({'status': 'ok', 'id': user_id})
    except Exception as e:
        return handle_route_error(e, 'delete user')
