"""Configuration module for Flask application."""
import os
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


class Config:
    """Base configuration class."""

    # Flask
    SECRET_KEY = os.getenv('SECRET_KEY', 'dev-secret-key-change-in-production')
    DEBUG = os.getenv('FLASK_DEBUG', '1') == '1'
    ENV = os.getenv('FLASK_ENV', 'development')
    TESTING = False
    LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')

    # Session Configuration (Production-safe defaults)
    SESSION_COOKIE_SECURE = os.getenv('SESSION_COOKIE_SECURE', 'false').lower() == 'true'
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = os.getenv('SESSION_COOKIE_SAMESITE', 'Lax')
    PERMANENT_SESSION_LIFETIME = 86400  # 24 hours

    # Database - Support multiple environment variable naming conventions
    # Priority: DATABASE_URL > DB_* > POSTGRES_*
    DATABASE_URL = os.getenv('DATABASE_URL')

    if not DATABASE_URL:
        DB_HOST = os.getenv('DB_HOST') or os.getenv('POSTGRES_HOST', 'localhost')
        DB_PORT = os.getenv('DB_PORT') or os.getenv('POSTGRES_PORT', '5432')
        DB_NAME = os.getenv('DB_NAME') or os.getenv('POSTGRES_DB', 'loja')
        DB_USER = os.getenv('DB_USER') or os.getenv('POSTGRES_USER', 'loja')
        DB_PASSWORD = os.getenv('DB_PASSWORD') or os.getenv('POSTGRES_PASSWORD', 'loja')

        DATABASE_URL = (
            f"postgresql+psycopg://{DB_USER}:{DB_PASSWORD}"
            f"@{DB_HOST}:{DB_PORT}/{DB_NAME}"
        )

    # SQLAlchemy
    SQLALCHEMY_DATABASE_URI = DATABASE_URL
    SQLALCHEMY_ECHO = os.getenv('SQLALCHEMY_ECHO', 'false').lower() == 'true'

    # Mercado Pago (payment handoff + webhook)
    MP_ACCESS_TOKEN = os.getenv('MP_ACCESS_TOKEN') or os.getenv('MERCADO_PAGO_ACCESS_TOKEN')
    MP_WEBHOOK_SECRET = os.getenv('MP_WEBHOOK_SECRET') or os.getenv('MERCADO_PAGO_WEBHOOK_SECRET')
    MP_SANDBOX = os.getenv('MP_SANDBOX', 'true').lower() == 'true'
    MP_STATEMENT_DESCRIPTOR = os.getenv('MP_STATEMENT_DESCRIPTOR', 'LOJA')
    PAYMENT_TIMEOUT_SECONDS = float(os.getenv('PAYMENT_TIMEOUT_SECONDS', '10'))
    BACK_URL_BASE = os.getenv('BACK_URL_BASE', 'http://localhost:5173')
    WEBHOOK_BASE_URL = os.getenv('WEBHOOK_BASE_URL', 'http://localhost:5000')

    # Melhor Envio (shipping quotes)
    MELHOR_ENVIO_TOKEN = os.getenv('MELHOR_ENVIO_TOKEN')
    MELHOR_ENVIO_PRODUCTION = os.getenv('MELHOR_ENVIO_PRODUCTION', 'false').lower() == 'true'
    MELHOR_ENVIO_USER_AGENT = os.getenv('MELHOR_ENVIO_USER_AGENT', 'Loja E-commerce (contato@loja.com.br)')
    MELHOR_ENVIO_WEBHOOK_SECRET = os.getenv('MELHOR_ENVIO_WEBHOOK_SECRET') or os.getenv('MELHOR_ENVIOS_WEBHOOK_SECRET')
    CEP_ORIGEM = os.getenv('CEP_ORIGEM', '01001000')
    SHIPPING_TIMEOUT_SECONDS = float(os.getenv('SHIPPING_TIMEOUT_SECONDS', '8'))

    # Stock reconciliation: unpaid orders older than this are released (0 = no window)
    ORDER_STALE_HOURS = int(os.getenv('ORDER_STALE_HOURS', '48'))

    # Redis Cache Configuration
    # Shipping quotes are cached per (CEP, cart volumes)
    REDIS_URL = os.getenv('REDIS_URL', 'redis://redis:6379/0')
    CACHE_ENABLED = os.getenv('CACHE_ENABLED', 'true').lower() == 'true'
    CACHE_DEFAULT_TTL = int(os.getenv('CACHE_DEFAULT_TTL', '60'))  # seconds
    CACHE_SHIPPING_TTL = int(os.getenv('CACHE_SHIPPING_TTL', '600'))
    CACHE_KEY_PREFIX = os.getenv('CACHE_KEY_PREFIX', 'loja')

    # Operator roles allowed into /admin
    OPERATOR_ROLES = ('admin', 'vendedor')


class TestingConfig(Config):
    """Configuration used by the test suite (SQLite, no cache, no CSRF)."""

    TESTING = True
    DEBUG = False
    ENV = 'testing'
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_ECHO = False
    WTF_CSRF_ENABLED = False
    CACHE_ENABLED = False
    MP_ACCESS_TOKEN = 'TEST-token'
    MP_WEBHOOK_SECRET = None
    MELHOR_ENVIO_WEBHOOK_SECRET = None
    MELHOR_ENVIO_TOKEN = 'test-melhor-envio-token'
    ORDER_STALE_HOURS = 0
