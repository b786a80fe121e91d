"""Testing configuration."""
from datetime import timedelta

from .base import Config


class TestingConfig(Config):
    """Testing configuration class."""

    DEBUG = False
    TESTING = True
    SECRET_KEY = 'test-secret-key'

    # Database (in-memory SQLite for testing)
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'
    SQLALCHEMY_ECHO = False

    # JWT Configuration
    JWT_SECRET_KEY = 'test-jwt-secret-key-with-enough-length'
    JWT_ACCESS_TOKEN_EXPIRES = timedelta(minutes=5)

    # Rate Limiting (disabled for testing)
    RATELIMIT_ENABLED = False
    RATELIMIT_STORAGE_URI = 'memory://'

    QR_SIGNING_KEY = 'test-qr-signing-key-with-enough-length'
    QR_EXPIRY_MINUTES = 3
    EARLY_GRACE_MINUTES = 10
    LATE_GRACE_MINUTES = 5
    LATE_ACCEPTANCE_MINUTES = 15

    # Logging
    LOG_LEVEL = 'WARNING'
