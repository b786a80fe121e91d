"""Production configuration."""
import os
from datetime import timedelta

from .base import Config


class ProductionConfig(Config):
    """Production configuration class."""

    DEBUG = False
    TESTING = False
    SECRET_KEY = os.getenv('SECRET_KEY')  # Must be set in production

    # Database
    SQLALCHEMY_DATABASE_URI = os.getenv('DATABASE_URL')
    SQLALCHEMY_ENGINE_OPTIONS = {'pool_pre_ping': True}

    # JWT Configuration
    JWT_SECRET_KEY = os.getenv('JWT_SECRET_KEY')
    JWT_ACCESS_TOKEN_EXPIRES = timedelta(hours=1)

    # Rate Limiting (Redis required in production)
    REDIS_URL = os.getenv('REDIS_URL')
    RATELIMIT_STORAGE_URI = os.getenv('REDIS_URL')
    RATELIMIT_DEFAULT = "100 per day, 20 per hour"

    # Enhanced security
    SESSION_COOKIE_SECURE = True
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = 'Lax'

    # Logging
    LOG_LEVEL = 'INFO'
    LOG_FILE = os.getenv('LOG_FILE', '/app/logs/app.log')
