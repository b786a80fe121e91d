"""Base configuration shared by every environment."""
import os
from datetime import timedelta


class Config:
    """Base configuration."""
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'dev-secret-key-change-in-production'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ECHO = False

    # JWT Configuration
    JWT_SECRET_KEY = os.environ.get('JWT_SECRET_KEY') or 'jwt-secret-key-change-in-production'
    JWT_ACCESS_TOKEN_EXPIRES = timedelta(hours=2)
    JWT_ALGORITHM = 'HS256'

    # CORS
    CORS_ORIGINS = ["http://localhost:*", "http://127.0.0.1:*"]

    # Rate Limiting
    RATELIMIT_STORAGE_URI = os.environ.get('REDIS_URL') or 'memory://'
    RATELIMIT_DEFAULT = "200 per day, 50 per hour"

    # QR sessions
    QR_SIGNING_KEY = os.environ.get('QR_SIGNING_KEY')
    QR_EXPIRY_MINUTES = int(os.environ.get('QR_EXPIRY_MINUTES', 3))
    QR_MAX_SESSION_MINUTES = int(os.environ.get('QR_MAX_SESSION_MINUTES', 180))
    QR_ELIGIBILITY_MINUTES = 30

    # Attendance windows (minutes)
    EARLY_GRACE_MINUTES = int(os.environ.get('EARLY_GRACE_MINUTES', 10))
    LATE_GRACE_MINUTES = int(os.environ.get('LATE_GRACE_MINUTES', 5))
    LATE_ACCEPTANCE_MINUTES = int(os.environ.get('LATE_ACCEPTANCE_MINUTES', 15))
    SCAN_DELAY_TOLERANCE_MINUTES = int(os.environ.get('SCAN_DELAY_TOLERANCE_MINUTES', 2))

    # Location (meters)
    DEFAULT_GEOFENCE_RADIUS = 100
    GEOFENCE_BUFFER_METERS = 5
    GPS_ACCURACY_THRESHOLD = 50

    # Feature switches
    LOCATION_VALIDATION_ENABLED = True
    DEVICE_FINGERPRINTING_ENABLED = True
    DUPLICATE_SCAN_PREVENTION = True
    LOW_ACCURACY_SOFT_ACCEPT = True

    # Logging
    LOG_FILE = 'logs/app.log'
