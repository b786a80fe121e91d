"""Error taxonomy for the attendance core.

Scan rejections are expected, user-facing outcomes and travel as
``RejectionReason`` values inside a ``ScanResult``. Everything else that can
go wrong (session management, authorization, storage) is raised as an
``AttendanceError`` subclass carrying a stable code and an HTTP status.
"""
from enum import Enum


class RejectionReason(Enum):
    """Stable codes for scan pipeline rejections."""
    INVALID_QR_DATA = 'InvalidQrData'
    SESSION_EXPIRED_OR_INVALID = 'SessionExpiredOrInvalid'
    NOT_ENROLLED = 'NotEnrolled'
    ALREADY_MARKED = 'AlreadyMarked'
    OUTSIDE_TIME_WINDOW = 'OutsideTimeWindow'
    OUTSIDE_GEOFENCE = 'OutsideGeofence'
    VALIDATION_UNDER_CONFIDENCE = 'ValidationUnderConfidence'

    @property
    def status_code(self) -> int:
        return REJECTION_STATUS_CODES[self]


REJECTION_STATUS_CODES = {
    RejectionReason.INVALID_QR_DATA: 400,
    RejectionReason.SESSION_EXPIRED_OR_INVALID: 410,
    RejectionReason.NOT_ENROLLED: 403,
    RejectionReason.ALREADY_MARKED: 409,
    RejectionReason.OUTSIDE_TIME_WINDOW: 422,
    RejectionReason.OUTSIDE_GEOFENCE: 422,
    RejectionReason.VALIDATION_UNDER_CONFIDENCE: 422,
}


class AttendanceError(Exception):
    """Base error with a stable code."""

    code = 'AttendanceError'
    status_code = 400
    default_message = 'Attendance operation failed'

    def __init__(self, message: str = None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message

    def to_dict(self) -> dict:
        return {
            'error': True,
            'message': self.message,
            'code': self.code,
            'status_code': self.status_code
        }


class InvalidRequest(AttendanceError):
    code = 'InvalidRequest'
    default_message = 'Invalid request data'


class NotFound(AttendanceError):
    code = 'NotFound'
    status_code = 404
    default_message = 'Resource not found'


class NotAuthorized(AttendanceError):
    code = 'NotAuthorized'
    status_code = 403
    default_message = 'You are not allowed to perform this action'


class PeriodNotEligible(AttendanceError):
    code = 'PeriodNotEligible'
    status_code = 409
    default_message = 'QR generation is not allowed for this period at this time'


class SessionLifetimeExceeded(AttendanceError):
    code = 'SessionLifetimeExceeded'
    status_code = 409
    default_message = 'Session would exceed its maximum lifetime'


class InvalidExtension(AttendanceError):
    code = 'InvalidExtension'
    default_message = 'Invalid session extension'


class DuplicateAttendance(AttendanceError):
    """Raised by the ledger when the (student, period) unique index rejects an insert."""
    code = RejectionReason.ALREADY_MARKED.value
    status_code = 409
    default_message = 'Attendance already marked for this period'


class StorageUnavailable(AttendanceError):
    """Retryable infrastructure failure; never carries internal detail."""
    code = 'StorageUnavailable'
    status_code = 503
    default_message = 'Service temporarily unavailable, please retry'
