import configparser
import importlib

import pytest

import config
from first_time_setup import run_setup, write_config


@pytest.fixture
def load_config(monkeypatch, tmp_path):
    """Re-evaluate the Config class against a given ini file."""
    monkeypatch.setenv('FARM_ERP_LOG_DIR', str(tmp_path / 'logs'))
    monkeypatch.setenv('SECRET_KEY', 'from-env')
    monkeypatch.delenv('DATABASE_URL', raising=False)

    def _load(path):
        monkeypatch.setenv('FARM_ERP_CONFIG', str(path))
        return importlib.reload(config).Config

    yield _load
    monkeypatch.delenv('FARM_ERP_CONFIG', raising=False)
    importlib.reload(config)


def test_write_config_sections(tmp_path):
    path = write_config(tmp_path / 'farm_config.ini', {'host': 'db.local', 'password': ''},
                        {'currency_symbol': 'N', 'signup_role': 'Viewer'})
    parser = configparser.ConfigParser()
    parser.read(path)
    assert dict(parser['database']) == {'host': 'db.local'}
    assert parser['app']['secret_key'] == 'AUTO_GENERATED'
    assert parser['app']['currency_symbol'] == 'N'


def test_postgres_url(load_config, tmp_path):
    path = write_config(tmp_path / 'farm.ini', {'host': 'db.local', 'port': '5433', 'username': 'farm',
                                                'password': 'pw', 'database': 'farmdb'}, {'signup_role': 'Viewer'})
    cfg = load_config(path)
    assert cfg.SQLALCHEMY_DATABASE_URI == 'postgresql+psycopg2://farm:pw@db.local:5433/farmdb'
    assert cfg.SIGNUP_ROLE == 'Viewer'
    assert cfg.SECRET_KEY == 'from-env'


def test_mysql_url(load_config, tmp_path):
    path = write_config(tmp_path / 'farm.ini', {'engine': 'mysql', 'host': 'db.local', 'username': 'farm',
                                                'password': 'pw', 'database': 'farmdb'}, {})
    cfg = load_config(path)
    assert cfg.SQLALCHEMY_DATABASE_URI == 'mysql+pymysql://farm:pw@db.local:3306/farmdb?charset=utf8mb4'


def test_empty_database_section_falls_back_to_sqlite(load_config, tmp_path):
    path = write_config(tmp_path / 'farm.ini', {}, {'currency_symbol': 'KES', 'default_tax_rate': '16'})
    cfg = load_config(path)
    assert cfg.SQLALCHEMY_DATABASE_URI.startswith('sqlite:///')
    assert cfg.CURRENCY_SYMBOL == 'KES'
    assert cfg.DEFAULT_TAX_RATE == 16.0


def test_run_setup_sqlite(monkeypatch, tmp_path):
    monkeypatch.setattr('first_time_setup.get_base_dir', lambda: tmp_path)
    answers = iter(['', '$', '0', 'Manager'])
    path = run_setup(input_fn=lambda prompt: next(answers))
    parser = configparser.ConfigParser()
    parser.read(path)
    assert dict(parser['database']) == {}
    assert parser['app']['signup_role'] == 'Manager'


def test_run_setup_mysql(monkeypatch, tmp_path):
    monkeypatch.setattr('first_time_setup.get_base_dir', lambda: tmp_path)
    answers = iter(['db.local', 'mysql', '', 'farm', 'pw', 'farmdb', '', '', ''])
    path = run_setup(input_fn=lambda prompt: next(answers))
    parser = configparser.ConfigParser()
    parser.read(path)
    assert parser['database']['engine'] == 'mysql'
    assert parser['database']['port'] == '3306'
