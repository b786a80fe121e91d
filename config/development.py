"""Development configuration."""
import os

from .base import Config


class DevelopmentConfig(Config):
    """Development configuration class."""

    DEBUG = True
    TESTING = False

    SQLALCHEMY_DATABASE_URI = os.getenv('DEV_DATABASE_URL', 'sqlite:///qr_attendance_dev.db')
    SQLALCHEMY_ECHO = True

    # Redis (optional in dev)
    REDIS_URL = os.getenv('REDIS_URL')

    # Relaxed windows make manual testing easier
    QR_EXPIRY_MINUTES = int(os.getenv('QR_EXPIRY_MINUTES', 5))
