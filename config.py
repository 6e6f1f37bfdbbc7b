import os
import configparser
from pathlib import Path
import sys

class Config:
    if getattr(sys, 'frozen', False):
        BASE_DIR = Path(sys.executable).parent
    else:
        BASE_DIR = Path(__file__).resolve().parent

    CONFIG_FILE = Path(os.environ.get('FARM_ERP_CONFIG', BASE_DIR / 'farm_config.ini'))

    @staticmethod
    def get_log_dir():
        """Get log directory with write permissions."""
        env_log = os.environ.get('FARM_ERP_LOG_DIR')
        if env_log:
            log_dir = Path(env_log)
            try:
                log_dir.mkdir(parents=True, exist_ok=True)
                return log_dir
            except OSError:
                pass

        try:
            if os.name == 'nt':
                base = Path(os.environ.get('APPDATA', Path.home() / 'AppData' / 'Roaming'))
                log_dir = base / 'FarmERP' / 'logs'
            else:
                log_dir = Path.home() / '.local' / 'share' / 'farm_erp' / 'logs'
            log_dir.mkdir(parents=True, exist_ok=True)
            return log_dir
        except OSError:
            pass

        try:
            log_dir = Config.BASE_DIR / 'logs'
            log_dir.mkdir(parents=True, exist_ok=True)
            return log_dir
        except OSError:
            import tempfile
            return Path(tempfile.gettempdir()) / 'farm_erp_logs'

    LOG_DIR = get_log_dir.__func__()
    LOG_FILE = LOG_DIR / 'farm_erp.log'

    @staticmethod
    def _user_secret_path():
        if os.name == 'nt':
            base = Path(os.environ.get('APPDATA', str(Path.home() / 'AppData' / 'Roaming')))
            return base / 'FarmERP' / '.secret_key'
        return Path.home() / '.farm_erp' / '.secret_key'

    SECRET_FILE = BASE_DIR / '.secret_key'
    USER_SECRET_FILE = _user_secret_path.__func__()

    config_parser = configparser.ConfigParser()
    if CONFIG_FILE.exists():
        config_parser.read(CONFIG_FILE)

    if config_parser.has_section('database') and (config_parser.has_option('database', 'url')
                                                  or config_parser.has_option('database', 'host')):
        SQLALCHEMY_DATABASE_URI = config_parser.get('database', 'url', fallback='')
        if not SQLALCHEMY_DATABASE_URI:
            db_engine = config_parser.get('database', 'engine', fallback='postgresql').lower()
            db_host = config_parser.get('database', 'host', fallback='localhost')
            db_user = config_parser.get('database', 'username', fallback='farm_erp')
            db_pass = config_parser.get('database', 'password', fallback='')
            db_name = config_parser.get('database', 'database', fallback='farm_erp')
            if db_engine == 'mysql':
                db_port = config_parser.get('database', 'port', fallback='3306')
                SQLALCHEMY_DATABASE_URI = f'mysql+pymysql://{db_user}:{db_pass}@{db_host}:{db_port}/{db_name}?charset=utf8mb4'
            else:
                db_port = config_parser.get('database', 'port', fallback='5432')
                SQLALCHEMY_DATABASE_URI = f'postgresql+psycopg2://{db_user}:{db_pass}@{db_host}:{db_port}/{db_name}'
    else:
        SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL', '')

    if config_parser.has_section('app'):
        DEBUG = config_parser.getboolean('app', 'debug', fallback=False)
        CURRENCY_SYMBOL = config_parser.get('app', 'currency_symbol', fallback='$')
        DEFAULT_TAX_RATE = float(config_parser.get('app', 'default_tax_rate', fallback='0'))
        SIGNUP_ROLE = config_parser.get('app', 'signup_role', fallback='Admin')
    else:
        DEBUG = os.environ.get('FLASK_DEBUG', 'False').lower() == 'true'
        CURRENCY_SYMBOL = os.environ.get('CURRENCY_SYMBOL', '$')
        DEFAULT_TAX_RATE = float(os.environ.get('DEFAULT_TAX_RATE', 0))
        SIGNUP_ROLE = os.environ.get('SIGNUP_ROLE', 'Admin')

    if not SQLALCHEMY_DATABASE_URI:
        print("WARNING: DATABASE_URL not configured.  Using SQLite fallback.")
        SQLALCHEMY_DATABASE_URI = f'sqlite:///{BASE_DIR / "farm.db"}'

    SECRET_KEY = None
    if config_parser.has_section('app'):
        SECRET_KEY = config_parser.get('app', 'secret_key', fallback=None)
        if SECRET_KEY == 'AUTO_GENERATED':
            SECRET_KEY = None

    if not SECRET_KEY:
        SECRET_KEY = os.environ.get('SECRET_KEY')

    if not SECRET_KEY:
        try:
            if SECRET_FILE.exists():
                SECRET_KEY = SECRET_FILE.read_text().strip()
            else:
                USER_SECRET_FILE.parent.mkdir(parents=True, exist_ok=True)
                if USER_SECRET_FILE.exists():
                    SECRET_KEY = USER_SECRET_FILE.read_text().strip()
                else:
                    SECRET_KEY = os.urandom(32).hex()
                    USER_SECRET_FILE.write_text(SECRET_KEY)
                    try:
                        os.chmod(USER_SECRET_FILE, 0o600)
                    except OSError:
                        pass
        except OSError:
            SECRET_KEY = os.urandom(32).hex()

    SQLALCHEMY_TRACK_MODIFICATIONS = False

    SQLALCHEMY_ENGINE_OPTIONS = {
        'pool_pre_ping': True,
        'pool_recycle': 280,
    }

    CACHE_TYPE = 'SimpleCache'
    CACHE_DEFAULT_TIMEOUT = 3600

    RATELIMIT_STORAGE_URI = 'memory://'

    SESSION_COOKIE_SECURE = False
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = 'Lax'
    PERMANENT_SESSION_LIFETIME = 3600
