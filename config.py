"""Application configuration profiles."""
from __future__ import annotations

import os

BASE_DIR = os.path.dirname(os.path.abspath(__file__))
DEFAULT_DB_URI = os.environ.get('DATABASE_URL', f"sqlite:///{os.path.join(BASE_DIR, 'library.db')}")


class BaseConfig:
    SQLALCHEMY_DATABASE_URI = DEFAULT_DB_URI
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SECRET_KEY = os.environ.get('FLASK_SECRET', 'dev-secret-key')
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = 'Lax'

    # Lending rules
    BORROW_LIMITS = {'BOOK': 10, 'MAGAZINE': 5}
    LOAN_PERIOD_MONTHS = int(os.environ.get('LOAN_PERIOD_MONTHS', 1))
    DUE_SOON_DAYS = int(os.environ.get('DUE_SOON_DAYS', 5))
    BORROW_MAX_RETRIES = int(os.environ.get('BORROW_MAX_RETRIES', 3))


class DevelopmentConfig(BaseConfig):
    DEBUG = True


class TestingConfig(BaseConfig):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'
    # threads in the race tests queue on SQLite's write lock instead of failing
    SQLALCHEMY_ENGINE_OPTIONS = {'connect_args': {'timeout': 30}}


class ProductionConfig(BaseConfig):
    DEBUG = False
    SESSION_COOKIE_SECURE = True


config_by_name = {
    'development': DevelopmentConfig,
    'testing': TestingConfig,
    'production': ProductionConfig,
}
