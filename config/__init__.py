"""
Environment-based configuration classes.

``FLASK_ENV`` picks one of ``development``, ``testing`` or ``production``;
every value can be overridden through environment variables (a local
``.env`` file is loaded first).
"""

import os
from pathlib import Path

from dotenv import load_dotenv

from config.security import SecurityConfig, _env_flag

load_dotenv()

BASE_DIR = Path(__file__).resolve().parent.parent


class BaseConfig(SecurityConfig):
    """Settings shared by every environment"""

    ENV_NAME = 'production'
    DEBUG = False
    TESTING = False
    VERSION = os.environ.get('APP_VERSION', '1.0.0')
    STORE_NAME = os.environ.get('STORE_NAME', 'Lagbe Kichu')
    SUPPORT_EMAIL = os.environ.get('SUPPORT_EMAIL', 'support@lagbe-kichu.xyz')

    # Database
    DATABASE_URL = os.environ.get('DATABASE_URL', f"sqlite:///{BASE_DIR / 'marketplace.db'}")
    DB_POOL_SIZE = int(os.environ.get('DB_POOL_SIZE', 20))
    DB_MAX_OVERFLOW = int(os.environ.get('DB_MAX_OVERFLOW', 30))
    SLOW_QUERY_THRESHOLD = float(os.environ.get('SLOW_QUERY_THRESHOLD', 1.0))
    SLOW_REQUEST_THRESHOLD = float(os.environ.get('SLOW_REQUEST_THRESHOLD', 1000))

    # Redis / Celery
    REDIS_URL = os.environ.get('REDIS_URL')
    CELERY_BROKER_URL = os.environ.get('CELERY_BROKER_URL') or REDIS_URL or 'redis://localhost:6379/2'
    CELERY_RESULT_BACKEND = os.environ.get('CELERY_RESULT_BACKEND') or CELERY_BROKER_URL
    CELERY_TASK_ALWAYS_EAGER = _env_flag('CELERY_TASK_ALWAYS_EAGER', False)
    RATELIMIT_STORAGE_URI = os.environ.get('RATELIMIT_STORAGE_URI') or REDIS_URL or 'memory://'

    # Clients
    CLIENT_URL = os.environ.get('CLIENT_URL', 'http://localhost:3000')
    CORS_ORIGINS = [
        origin.strip()
        for origin in os.environ.get(
            'CORS_ORIGINS', f"{CLIENT_URL},http://localhost:3000,http://localhost:3001"
        ).split(',')
        if origin.strip()
    ]

    # Real-time channel
    SOCKETIO_ASYNC_MODE = os.environ.get('SOCKETIO_ASYNC_MODE', 'threading')
    SOCKETIO_MESSAGE_QUEUE = os.environ.get('SOCKETIO_MESSAGE_QUEUE') or REDIS_URL

    # Logging
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')
    LOG_FILE = os.environ.get('LOG_FILE')

    # Outbound mail
    SMTP_HOST = os.environ.get('SMTP_HOST', 'localhost')
    SMTP_PORT = int(os.environ.get('SMTP_PORT', 587))
    SMTP_USERNAME = os.environ.get('SMTP_USER')
    SMTP_PASSWORD = os.environ.get('SMTP_PASS')
    SMTP_TIMEOUT = int(os.environ.get('SMTP_TIMEOUT', 60))
    MAIL_FROM_NAME = os.environ.get('FROM_NAME', 'Lagbe Kichu')
    MAIL_FROM_ADDRESS = os.environ.get('FROM_EMAIL', 'no-reply@lagbe-kichu.xyz')
    MAIL_SUPPRESS_SEND = _env_flag('MAIL_SUPPRESS_SEND', False)

    # bKash payment gateway
    BKASH_BASE_URL = os.environ.get(
        'BKASH_BASE_URL', 'https://tokenized.sandbox.bka.sh/v1.2.0-beta'
    )
    BKASH_APP_KEY = os.environ.get('BKASH_APP_KEY', '')
    BKASH_APP_SECRET = os.environ.get('BKASH_APP_SECRET', '')
    BKASH_USERNAME = os.environ.get('BKASH_USERNAME', '')
    BKASH_PASSWORD = os.environ.get('BKASH_PASSWORD', '')
    BKASH_CALLBACK_URL = os.environ.get(
        'BKASH_CALLBACK_URL', 'http://localhost:5000/api/payments/bkash/callback'
    )
    BKASH_TIMEOUT = int(os.environ.get('BKASH_TIMEOUT', 30))

    # Commerce
    SHIPPING_COST = os.environ.get('SHIPPING_COST', '100')
    UPLOAD_FOLDER = os.environ.get('UPLOAD_FOLDER', str(BASE_DIR / 'uploads'))


class DevelopmentConfig(BaseConfig):
    ENV_NAME = 'development'
    DEBUG = True
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'DEBUG')
    SESSION_COOKIE_SECURE = False
    JWT_COOKIE_SECURE = False
    MAIL_SUPPRESS_SEND = _env_flag('MAIL_SUPPRESS_SEND', True)


class TestingConfig(BaseConfig):
    ENV_NAME = 'testing'
    TESTING = True
    SECRET_KEY = 'testing-secret-key'
    JWT_SECRET_KEY = 'testing-jwt-secret-key-with-enough-length'
    DATABASE_URL = 'sqlite://'
    REDIS_URL = None
    SOCKETIO_MESSAGE_QUEUE = None
    CELERY_BROKER_URL = 'memory://'
    CELERY_RESULT_BACKEND = 'cache+memory://'
    CELERY_TASK_ALWAYS_EAGER = True
    RATELIMIT_ENABLED = False
    RATELIMIT_STORAGE_URI = 'memory://'
    SESSION_COOKIE_SECURE = False
    JWT_COOKIE_SECURE = False
    MAIL_SUPPRESS_SEND = True
    LOG_LEVEL = 'WARNING'
    LOG_FILE = None


class ProductionConfig(BaseConfig):
    ENV_NAME = 'production'


CONFIGS = {
    'development': DevelopmentConfig,
    'testing': TestingConfig,
    'production': ProductionConfig,
}


def get_config(config_name: str = None):
    """Resolve a configuration class from its name (defaults to ``FLASK_ENV``)"""
    config_name = config_name or os.environ.get('FLASK_ENV', 'production')
    return CONFIGS.get(config_name, ProductionConfig)
