"""
Flask application configuration classes.
Provides configuration for development, production, and testing environments.
"""

import os


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


class Config:
    """Base configuration class with common settings."""

    # Database configuration
    DATABASE_PATH = os.environ.get('DATABASE_PATH') or 'instance/reservations.db'
    DATABASE_TIMEOUT = float(os.environ.get('DATABASE_TIMEOUT', 5.0))  # seconds waiting for write lock

    # Timezone of the venue; stored times are local to it
    TIMEZONE = os.environ.get('TIMEZONE', 'Asia/Bangkok')

    # Reservation rules
    MIN_RESERVATION_HOURS = 1
    MAX_RESERVATION_HOURS = 12
    SLOT_MINUTES = 60
    DEFAULT_OPEN_TIME = '18:00'
    DEFAULT_CLOSE_TIME = '02:00'
    SUGGESTION_HORIZON_HOURS = 24

    # Whether confirmed (but unpaid) reservations may expire too
    EXPIRE_FROM_CONFIRMED = _env_bool('EXPIRE_FROM_CONFIRMED', True)

    # Reconciler
    SWEEP_INTERVAL_SECONDS = int(os.environ.get('SWEEP_INTERVAL_SECONDS', 300))

    # Slot cache (Flask-Caching)
    CACHE_TYPE = 'SimpleCache'
    CACHE_DEFAULT_TIMEOUT = 30

    # Logging
    LOG_FILE = os.environ.get('LOG_FILE') or 'logs/reservations.log'

    # Application settings
    APP_NAME = 'Room Reservations'
    APP_VERSION = '1.0.0'


class DevelopmentConfig(Config):
    """Development environment configuration."""

    DEBUG = True
    TESTING = False


class ProductionConfig(Config):
    """Production environment configuration."""

    DEBUG = False
    TESTING = False

    DATABASE_PATH = os.environ.get('DATABASE_PATH') or Config.DATABASE_PATH

    @classmethod
    def validate(cls) -> None:
        """Validate that required production environment variables are set."""
        if not os.environ.get('DATABASE_PATH'):
            raise ValueError("DATABASE_PATH environment variable must be set in production")


class TestConfig(Config):
    """Testing environment configuration."""

    TESTING = True
    DEBUG = True
    DATABASE_PATH = os.environ.get('DATABASE_PATH', ':memory:')
    TIMEZONE = 'Asia/Bangkok'
    EXPIRE_FROM_CONFIRMED = True


# Configuration dictionary
config = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'test': TestConfig,
    'default': DevelopmentConfig
}
