"""
Application Configuration
Loads environment variables and provides configuration classes for different environments
"""

import os
from dotenv import load_dotenv

# Load environment variables from .env file
basedir = os.path.abspath(os.path.dirname(__file__))
load_dotenv(os.path.join(basedir, '.env'))


class Config:
    """Base configuration class"""

    # Flask
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'dev-secret-key-change-in-production'

    # Database
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL') or \
        'sqlite:///' + os.path.join(basedir, 'aqua_ledger.db')
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ECHO = False

    # Business Configuration
    BUSINESS_NAME = os.environ.get('BUSINESS_NAME', 'Smart Supply Water Delivery')
    CURRENCY = os.environ.get('CURRENCY', 'PKR')
    CURRENCY_SYMBOL = os.environ.get('CURRENCY_SYMBOL', 'Rs.')

    # Business calendar (Pakistan Standard Time, no DST)
    BUSINESS_UTC_OFFSET_HOURS = int(os.environ.get('BUSINESS_UTC_OFFSET_HOURS', 5))

    # Walk-in sentinel customer, looked up by name
    WALKIN_CUSTOMER_NAME = os.environ.get('WALKIN_CUSTOMER_NAME', 'Walk-in Customer')

    # Ledger transactions
    LEDGER_MAX_RETRIES = int(os.environ.get('LEDGER_MAX_RETRIES', 3))
    LEDGER_RETRY_BACKOFF_SECONDS = float(os.environ.get('LEDGER_RETRY_BACKOFF_SECONDS', 0.05))

    # Daily closing
    AUTO_DAILY_CLOSING = os.environ.get('AUTO_DAILY_CLOSING', 'False').lower() == 'true'
    DAILY_CLOSING_TIME = os.environ.get('DAILY_CLOSING_TIME', '23:30')

    # Logging
    LOG_FOLDER = os.path.join(basedir, 'logs')
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')

    # Sentry Error Tracking (optional)
    SENTRY_DSN = os.environ.get('SENTRY_DSN', '')


class DevelopmentConfig(Config):
    """Development configuration"""
    DEBUG = True
    SQLALCHEMY_ECHO = False  # Set to True to see SQL queries


class ProductionConfig(Config):
    """Production configuration"""
    DEBUG = False
    SQLALCHEMY_ECHO = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        'pool_pre_ping': True,
        'isolation_level': 'READ COMMITTED',
    }


class TestingConfig(Config):
    """Testing configuration"""
    TESTING = True
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'
    LEDGER_RETRY_BACKOFF_SECONDS = 0
    AUTO_DAILY_CLOSING = False


# Configuration dictionary
config = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'testing': TestingConfig,
    'default': DevelopmentConfig
}
