"""Build request-scoped services from the running application."""
from datetime import datetime
from typing import Callable

from flask import current_app

from qr_attendance.policy import AttendancePolicy
from qr_attendance.services.cascade import CascadeService
from qr_attendance.services.ledger import AttendanceLedger
from qr_attendance.services.period_service import PeriodService
from qr_attendance.services.scan_validator import ScanValidator
from qr_attendance.services.session_manager import QRSessionManager
from qr_attendance.utils.helpers import CLOCK_EXTENSION, utcnow

POLICY_EXTENSION = 'attendance_policy'


def init_policy(app) -> AttendancePolicy:
    policy = AttendancePolicy.from_config(app.config)
    app.extensions[POLICY_EXTENSION] = policy
    app.extensions.setdefault(CLOCK_EXTENSION, utcnow)
    return policy


def get_policy() -> AttendancePolicy:
    return current_app.extensions[POLICY_EXTENSION]


def get_clock() -> Callable[[], datetime]:
    return current_app.extensions.get(CLOCK_EXTENSION, utcnow)


def session_manager() -> QRSessionManager:
    return QRSessionManager(get_policy(), current_app.config['QR_SIGNING_KEY'], clock=get_clock())


def attendance_ledger() -> AttendanceLedger:
    return AttendanceLedger(clock=get_clock())


def scan_validator() -> ScanValidator:
    return ScanValidator(get_policy(), session_manager(), attendance_ledger(), clock=get_clock())


def cascade_service() -> CascadeService:
    return CascadeService(attendance_ledger(), session_manager(), clock=get_clock())


def period_service() -> PeriodService:
    return PeriodService(session_manager(), default_geofence_radius=get_policy().default_geofence_radius,
                         clock=get_clock())
