from flask import request, current_app
from flask_caching import Cache
from datetime import datetime, date
from decimal import Decimal, ROUND_HALF_UP, getcontext
import logging
import secrets
import time

from models import db, FarmProfile

getcontext().prec = 28

cache = Cache()

TWO_PLACES = Decimal('0.01')
THREE_PLACES = Decimal('0.001')


def to_decimal(value, places=TWO_PLACES):
    """Coerce value (None, float, int, str, Decimal) -> Decimal quantized to `places`.

    - Accepts strings with commas "1,234.56", parentheses for negatives "(1,234.56)".
    - Strips whitespace.
    - Returns zero for empty input; raises ValueError for anything that is not a number,
      so request payloads with garbage are rejected instead of silently becoming 0.
    """
    if value is None or value == '':
        return Decimal('0').quantize(places)
    if isinstance(value, bool):
        raise ValueError(f'Invalid number: {value!r}')
    if isinstance(value, Decimal):
        return value.quantize(places, rounding=ROUND_HALF_UP)
    if isinstance(value, int):
        return Decimal(value).quantize(places, rounding=ROUND_HALF_UP)
    try:
        if isinstance(value, float):
            # Convert through str() to avoid binary float artifacts
            d = Decimal(str(value))
        else:
            s = str(value).strip().replace(',', '')
            if s.startswith('(') and s.endswith(')'):
                s = '-' + s[1:-1]
            d = Decimal(s)
    except Exception:
        raise ValueError(f'Invalid number: {value!r}')
    if not d.is_finite():
        raise ValueError(f'Invalid number: {value!r}')
    return d.quantize(places, rounding=ROUND_HALF_UP)


def to_quantity(value):
    return to_decimal(value, THREE_PLACES)


def rate_to_decimal(rate):
    """Percentage rates are stored as floats; go through str() so 7.5 stays 7.5."""
    if rate is None or rate == '':
        return Decimal('0')
    return Decimal(str(rate))


def safe_int(value, default=0):
    try:
        if value is None or (isinstance(value, str) and value.strip() == ''):
            return default
        return int(value)
    except (ValueError, TypeError):
        return default


def safe_float(value, default=0.0):
    if value is None or value == '':
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ValueError(f'Invalid rate: {value!r}')


def parse_date(value, default=None):
    """Parse YYYY-MM-DD (or a full ISO timestamp) into a date.

    Empty input returns `default`; malformed input raises ValueError.
    """
    if value is None or value == '':
        return default
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    s = str(value).strip()
    try:
        return datetime.strptime(s[:10], '%Y-%m-%d').date()
    except ValueError:
        raise ValueError(f'Invalid date {value!r}, expected YYYY-MM-DD')


def new_record_id(prefix):
    """Generate `<prefix>-<epoch millis>-<hex>` identifiers."""
    return f'{prefix}-{int(time.time() * 1000)}-{secrets.token_hex(3)}'


def get_json_payload():
    payload = request.get_json(silent=True)
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise ValueError('Request body must be a JSON object')
    return payload


def require_fields(payload, *fields):
    missing = [f for f in fields if payload.get(f) in (None, '')]
    if missing:
        raise ValueError(f'Missing required field(s): {", ".join(missing)}')


def paginate_query(query, per_page=50):
    """Paginate SQLAlchemy query based on ?page= and ?per_page= parameters.

    Returns a Flask-SQLAlchemy Pagination object.
    """
    try:
        page = int(request.args.get('page', 1))
        if page < 1:
            page = 1
    except (ValueError, TypeError):
        page = 1
    try:
        per_page = min(max(int(request.args.get('per_page', per_page)), 1), 500)
    except (ValueError, TypeError):
        pass

    if not hasattr(query, 'paginate'):
        raise RuntimeError("paginate_query: provided query object does not support paginate().")
    try:
        return query.paginate(page=page, per_page=per_page, error_out=False)
    except Exception as e:
        logging.exception("Error while paginating query: %s", e)
        raise


def list_response(query, serializer=None):
    """Full list by default; a Pagination envelope when ?page= is supplied."""
    serializer = serializer or (lambda obj: obj.to_dict())
    if 'page' not in request.args:
        return [serializer(obj) for obj in query.all()]
    pagination = paginate_query(query)
    return {
        'items': [serializer(obj) for obj in pagination.items],
        'page': pagination.page,
        'pages': pagination.pages,
        'total': pagination.total,
    }


@cache.memoize(timeout=3600)
def get_farm_settings():
    """
    Return the farm settings as a plain dict.

    - Reads the single 'global' row; falls back to defaults when it has not been saved yet.
    - Memoized with flask-caching; call clear_farm_settings_cache() after an update.
    """
    profile = db.session.get(FarmProfile, 'global')
    if profile is None:
        profile = FarmProfile(
            id='global',
            farm_name='My Poultry Farm',
            currency_symbol=current_app.config.get('CURRENCY_SYMBOL', '$'),
            tax_rate_default=current_app.config.get('DEFAULT_TAX_RATE', 0.0),
        )
    return profile.to_dict()


def clear_farm_settings_cache():
    try:
        cache.delete_memoized(get_farm_settings)
    except Exception:
        logging.exception("clear_farm_settings_cache: failed to clear flask cache")
