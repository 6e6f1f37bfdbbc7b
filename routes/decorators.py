from functools import wraps
from flask_login import current_user
from flask import jsonify

WRITE_ROLES = ('Admin', 'Manager')


def role_required(*roles):
    """
    Custom decorator to restrict access to users with specific roles.
    Example: @role_required('Admin', 'Manager')
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not current_user.is_authenticated:
                # This should be handled by @login_required, but act as safe fallback
                return jsonify({'error': 'Authentication required'}), 401
            user_role = getattr(current_user, 'role', None)
            allowed = {r.lower() for r in roles}
            if user_role is None or user_role.lower() not in allowed:
                return jsonify({'error': 'You do not have permission to perform this action.'}), 403
            return f(*args, **kwargs)
        return decorated_function
    return decorator


def writer_required(f):
    """Shorthand for endpoints that mutate farm data."""
    return role_required(*WRITE_ROLES)(f)
