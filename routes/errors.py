import logging

from flask import jsonify
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.exceptions import HTTPException

from models import db

logger = logging.getLogger(__name__)

MISSING_RELATION = 'missing_relation'
PERMISSION_DENIED = 'permission_denied'

SETUP_HINTS = {
    MISSING_RELATION: 'Database tables are missing. Run "flask init-db" to create them.',
    PERMISSION_DENIED: 'The database user lacks permission on the farm tables. '
                       'Grant access to the configured user and run "flask init-db".',
}


def classify_db_error(exc):
    """Map a database exception to MISSING_RELATION, PERMISSION_DENIED or None.

    Looks at the PostgreSQL SQLSTATE first (psycopg2 exposes it as `pgcode`), then at MySQL
    error numbers (1146 no such table, 1142 command denied), then at the message text so
    SQLite's "no such table" is recognised too.
    """
    orig = getattr(exc, 'orig', None) or exc
    code = getattr(orig, 'pgcode', None) or getattr(orig, 'sqlstate', None)
    if code == '42P01':
        return MISSING_RELATION
    if code == '42501':
        return PERMISSION_DENIED
    args = getattr(orig, 'args', ())
    if args and isinstance(args[0], int):
        if args[0] == 1146:
            return MISSING_RELATION
        if args[0] in (1142, 1044, 1045):
            return PERMISSION_DENIED

    message = str(orig).lower()
    if 'no such table' in message or 'does not exist' in message:
        return MISSING_RELATION
    if 'permission denied' in message:
        return PERMISSION_DENIED
    return None


def db_error_response(exc):
    kind = classify_db_error(exc)
    if kind is not None:
        logger.error("Database not set up (%s): %s", kind, exc)
        return jsonify({'error': 'Database setup required', 'setup_required': True,
                        'reason': kind, 'hint': SETUP_HINTS[kind]}), 503
    logger.exception("Database error: %s", exc)
    return jsonify({'error': 'A database error occurred.'}), 500


def handle_route_error(exc, action):
    """Roll back the session and turn an exception raised inside a mutation into JSON."""
    db.session.rollback()
    if isinstance(exc, HTTPException):
        raise exc
    if isinstance(exc, ValueError):
        return jsonify({'error': str(exc)}), 400
    if isinstance(exc, LookupError) and not isinstance(exc, (KeyError, IndexError)):
        return jsonify({'error': str(exc)}), 404
    if isinstance(exc, SQLAlchemyError):
        return db_error_response(exc)
    logger.exception("Failed to %s", action)
    return jsonify({'error': f'Failed to {action}.'}), 500


def register_error_handlers(app):
    @app.errorhandler(SQLAlchemyError)
    def _sqlalchemy_error(exc):
        db.session.rollback()
        return db_error_response(exc)

    @app.errorhandler(HTTPException)
    def _http_error(exc):
        response = jsonify({'error': exc.description or exc.name, 'status': exc.code})
        return response, exc.code

    @app.errorhandler(ValueError)
    def _value_error(exc):
        db.session.rollback()
        return jsonify({'error': str(exc)}), 400
