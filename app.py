import os
import sys
import logging
from datetime import date
from decimal import Decimal

import click
from flask import Flask, jsonify
from flask.json.provider import DefaultJSONProvider
from flask_login import LoginManager
from flask_migrate import Migrate

from models import db, User, FarmProfile
from config import Config
from extensions import limiter
from routes.utils import cache
from routes.errors import register_error_handlers

logger = logging.getLogger(__name__)


class FarmJSONProvider(DefaultJSONProvider):
    """Dates as ISO strings and Decimals as plain fixed-point strings."""

    @staticmethod
    def default(o):
        if isinstance(o, Decimal):
            return format(o, 'f')
        if isinstance(o, date):
            return o.isoformat()
        return DefaultJSONProvider.default(o)


def create_app(config_object=None):
    # Optional: keep working dir consistent when frozen
    if getattr(sys, 'frozen', False):
        try:
            os.chdir(str(Config.BASE_DIR))
        except OSError:
            logger.exception("Failed to chdir to BASE_DIR in frozen mode")

    app = Flask(__name__, instance_relative_config=True)
    app.json_provider_class = FarmJSONProvider
    app.json = FarmJSONProvider(app)
    app.config.from_object(config_object or Config)

    # Cache and rate limiter
    app.config.setdefault('CACHE_TYPE', 'SimpleCache')
    cache.init_app(app)
    limiter.init_app(app)

    from routes.core import core_bp
    from routes.flocks import flocks_bp
    from routes.inventory import inventory_bp
    from routes.sales import sales_bp
    from routes.finance import finance_bp
    from routes.reports import reports_bp
    from routes.hr import hr_bp
    from routes.users import user_bp

    for bp in (core_bp, flocks_bp, inventory_bp, sales_bp, finance_bp, reports_bp, hr_bp, user_bp):
        app.register_blueprint(bp)

    # DB and migrations
    db.init_app(app)
    Migrate(app, db)

    register_error_handlers(app)

    # --- Login Manager ---
    login_manager = LoginManager()
    login_manager.init_app(app)

    @login_manager.user_loader
    def load_user(user_id):
        try:
            uid = int(user_id)
        except (TypeError, ValueError):
            return None
        return db.session.get(User, uid)

    @login_manager.unauthorized_handler
    def unauthorized():
        return jsonify({'error': 'Authentication required'}), 401

    register_cli(app)
    return app


def register_cli(app):
    @app.cli.command('init-db')
    def init_db_command():
        """Create all tables and seed the settings row."""
        db.create_all()
        seed_essential_data(app)
        click.echo('Database initialised.')

    @app.cli.command('recompute-customer-totals')
    def recompute_customer_totals_command():
        """Rebuild customer order statistics from the orders table."""
        from routes.order_utils import recompute_customer_totals
        try:
            changed = recompute_customer_totals()
            db.session.commit()
        except Exception:
            db.session.rollback()
            logger.exception("recompute-customer-totals failed")
            raise
        click.echo(f'{changed} customer(s) updated.')

    @app.cli.command('create-admin')
    @click.argument('email')
    @click.password_option()
    def create_admin_command(email, password):
        """Create an Admin profile from the command line."""
        from passlib.hash import pbkdf2_sha256
        try:
            db.session.add(User(email=email, password_hash=pbkdf2_sha256.hash(password), role='Admin'))
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
        click.echo(f'Admin {email} created.')


def seed_essential_data(app):
    """Seeds the global settings row if the database has none."""
    with app.app_context():
        if db.session.get(FarmProfile, 'global') is None:
            logger.info("Seeding farm settings...")
            try:
                db.session.add(FarmProfile(
                    id='global',
                    farm_name='My Poultry Farm',
                    currency_symbol=app.config.get('CURRENCY_SYMBOL', '$'),
                    tax_rate_default=app.config.get('DEFAULT_TAX_RATE', 0.0),
                ))
                db.session.commit()
                logger.info("Farm settings seeded.")
            except Exception:
                db.session.rollback()
                logger.exception("Error seeding farm settings")
                raise
