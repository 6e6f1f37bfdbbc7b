import configparser
import sys
from pathlib import Path


def get_base_dir():
    if getattr(sys, 'frozen', False):
        return Path(sys.executable).parent
    return Path(__file__).parent


def write_config(path, database, app_settings):
    """Write farm_config.ini with [database] and [app] sections and return the path."""
    config = configparser.ConfigParser()
    config['database'] = {k: str(v) for k, v in database.items() if v not in (None, '')}
    config['app'] = {
        'secret_key': 'AUTO_GENERATED',
        'debug': 'False',
    }
    config['app'].update({k: str(v) for k, v in app_settings.items()})
    path = Path(path)
    with open(path, 'w') as f:
        config.write(f)
    return path


def run_setup(input_fn=input):
    print("=" * 60)
    print("Poultry Farm ERP - First Time Setup")
    print("=" * 60)

    # Database settings
    print("\n[DATABASE CONFIGURATION]")
    print("Leave the host empty to use the local SQLite database.")
    db_host = input_fn("Database Host []: ").strip()
    database = {}
    if db_host:
        engine = (input_fn("Database Engine (postgresql/mysql) [postgresql]: ").strip() or 'postgresql').lower()
        default_port = '3306' if engine == 'mysql' else '5432'
        database = {
            'engine': engine,
            'host': db_host,
            'port': input_fn(f"Database Port [{default_port}]: ").strip() or default_port,
            'username': input_fn("Database Username [farm_erp]: ").strip() or 'farm_erp',
            'password': input_fn("Database Password: ").strip(),
            'database': input_fn("Database Name [farm_erp]: ").strip() or 'farm_erp',
        }

    # App settings
    print("\n[APPLICATION SETTINGS]")
    app_settings = {
        'currency_symbol': input_fn("Currency Symbol [$]: ").strip() or '$',
        'default_tax_rate': input_fn("Default Tax Rate % [0]: ").strip() or '0',
        'signup_role': input_fn("Role for new sign-ups (Admin/Manager/Viewer) [Admin]: ").strip() or 'Admin',
    }

    config_file = write_config(get_base_dir() / 'farm_config.ini', database, app_settings)

    print(f"\nConfiguration saved to {config_file}")
    print("\nRun 'flask --app app:create_app init-db' and then 'python run.py'.")
    return config_file


if __name__ == '__main__':
    run_setup()
