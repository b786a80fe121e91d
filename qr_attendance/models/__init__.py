"""Models package with all models."""
from .base import BaseModel
from .user import User, UserRole
from .period import Period, PeriodStatus
from .qr_session import QRSession
from .attendance import Attendance, AttendanceStatus
from .enrollment import StudentEnrollment
from .audit_log import AuditLog

__all__ = [
    'BaseModel', 'User', 'UserRole',
    'Period', 'PeriodStatus', 'QRSession',
    'Attendance', 'AttendanceStatus',
    'StudentEnrollment', 'AuditLog'
]
