"""Scan admission pipeline.

Steps run in order and stop at the first failure:

1. token decode          -> InvalidQrData
2. session liveness      -> SessionExpiredOrInvalid (also for withdrawn periods)
3. enrollment            -> NotEnrolled
4. duplicate fast path   -> AlreadyMarked
5. time window           -> OutsideTimeWindow
6. geofence / accuracy   -> OutsideGeofence / ValidationUnderConfidence
7. classification        -> present / late / absent
8. commit                -> AlreadyMarked on unique violation

Every scan that reaches a live session is counted on it. Rejections are
returned, not raised; only infrastructure failures escape as
StorageUnavailable.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from qr_attendance import db
from qr_attendance.errors import DuplicateAttendance, RejectionReason
from qr_attendance.models.attendance import Attendance, AttendanceStatus
from qr_attendance.models.period import Period, PeriodStatus
from qr_attendance.models.qr_session import QRSession
from qr_attendance.policy import AttendancePolicy
from qr_attendance.services.collaborators import EnrollmentLookup
from qr_attendance.services.geo import is_within_geofence
from qr_attendance.services.ledger import AttendanceLedger
from qr_attendance.services.period_window import classify, in_allowed_window
from qr_attendance.services.qr_service import QRService
from qr_attendance.services.session_manager import QRSessionManager

logger = logging.getLogger(__name__)

LOW_ACCURACY = 'low_accuracy'
SHARED_DEVICE = 'shared_device'


@dataclass
class ScanRequest:
    """Everything a student's device submits, plus who is asking."""
    qr_data: str
    student_id: int
    latitude: float
    longitude: float
    accuracy: float
    device_fingerprint: Optional[str] = None
    ip_address: Optional[str] = None
    scan_time: Optional[datetime] = None


@dataclass
class ScanResult:
    """Outcome of one scan: an admitted record or a rejection reason."""
    accepted: bool
    reason: Optional[RejectionReason] = None
    message: Optional[str] = None
    attendance: Optional[Attendance] = None
    warnings: List[str] = field(default_factory=list)
    distance_meters: Optional[float] = None

    @property
    def status(self) -> Optional[AttendanceStatus]:
        return self.attendance.status if self.attendance else None

    @property
    def validation_passed(self) -> bool:
        return bool(self.attendance and self.attendance.validation_passed)

    @classmethod
    def reject(cls, reason: RejectionReason, message: str, **kwargs) -> 'ScanResult':
        return cls(accepted=False, reason=reason, message=message, **kwargs)

    def to_dict(self) -> dict:
        if not self.accepted:
            return {
                'accepted': False,
                'reason': self.reason.value,
                'message': self.message,
                'warnings': self.warnings
            }
        return {
            'accepted': True,
            'status': self.status.value,
            'attendance_id': self.attendance.id,
            'validation_passed': self.validation_passed,
            'warnings': self.warnings,
            'distance_meters': round(self.distance_meters, 2) if self.distance_meters is not None else None
        }


class ScanValidator:
    """Runs the admission pipeline for a single scan."""

    def __init__(
        self,
        policy: AttendancePolicy,
        session_manager: QRSessionManager,
        ledger: AttendanceLedger,
        enrollments: Optional[EnrollmentLookup] = None,
        clock: Optional[Callable[[], datetime]] = None
    ):
        self.policy = policy
        self.sessions = session_manager
        self.ledger = ledger
        self.enrollments = enrollments or EnrollmentLookup()
        self.clock = clock or session_manager.clock

    def validate(self, request: ScanRequest) -> ScanResult:
        now = self.clock()
        scan_time = request.scan_time or now

        # 1. Token decode
        ok, payload, error = QRService.decode_token(self.sessions.signing_key, request.qr_data)
        if not ok:
            return self._reject(request, RejectionReason.INVALID_QR_DATA, error)

        # 2. Session liveness
        period = db.session.get(Period, payload['pid'])
        session = self.sessions.get_for_period(payload['pid']) if period else None
        if (session is None or session.nonce != payload['nonce']
                or not self.sessions.is_live(session, now)):
            return self._reject(request, RejectionReason.SESSION_EXPIRED_OR_INVALID,
                                'No live attendance session for this QR code')
        if not period.is_active or period.status == PeriodStatus.CANCELLED:
            return self._reject(request, RejectionReason.SESSION_EXPIRED_OR_INVALID,
                                'This period has been cancelled or withdrawn')

        result = self._admit(request, period, session, now, scan_time)
        self.sessions.record_scan(session, admitted=result.accepted)
        return result

    def _admit(self, request: ScanRequest, period: Period, session: QRSession, now: datetime,
               scan_time: datetime) -> ScanResult:
        """Steps 3 to 8 against a live session."""
        # 3. Enrollment
        if not self.enrollments.is_enrolled(request.student_id, period.subject_id, period.semester_id):
            return self._reject(request, RejectionReason.NOT_ENROLLED,
                                'Student is not enrolled in this subject for the semester')

        # 4. Duplicate fast path; the unique index at commit is the real guard
        if self.policy.duplicate_scan_prevention and self.ledger.exists(request.student_id, period.id):
            return self._reject(request, RejectionReason.ALREADY_MARKED,
                                'Attendance already marked for this period')

        # 5. Time window
        if scan_time > now:
            return self._reject(request, RejectionReason.OUTSIDE_TIME_WINDOW,
                                'Scan time cannot be in the future')
        if now - scan_time > timedelta(minutes=self.policy.scan_delay_tolerance_minutes):
            return self._reject(request, RejectionReason.OUTSIDE_TIME_WINDOW,
                                'Scan time is too far behind the time the scan was received')
        if not in_allowed_window(period, scan_time, self.policy.early_grace_minutes,
                                 self.policy.late_acceptance_minutes):
            return self._reject(request, RejectionReason.OUTSIDE_TIME_WINDOW,
                                'Scan time is outside the allowed period window')

        # 6. Geofence and accuracy
        warnings: List[str] = []
        distance = None
        if self.policy.location_validation_enabled:
            inside, distance = is_within_geofence(
                request.latitude, request.longitude,
                session.latitude, session.longitude,
                session.geofence_radius, self.policy.geofence_buffer_meters
            )
            if not inside:
                return self._reject(
                    request, RejectionReason.OUTSIDE_GEOFENCE,
                    f'You are {distance:.0f}m from the classroom '
                    f'(allowed {session.geofence_radius + self.policy.geofence_buffer_meters:.0f}m)',
                    distance_meters=distance
                )
            if request.accuracy > self.policy.gps_accuracy_threshold:
                if not self.policy.low_accuracy_soft_accept:
                    return self._reject(
                        request, RejectionReason.VALIDATION_UNDER_CONFIDENCE,
                        f'Location accuracy {request.accuracy:.0f}m exceeds '
                        f'{self.policy.gps_accuracy_threshold:.0f}m',
                        distance_meters=distance
                    )
                warnings.append(LOW_ACCURACY)

        fingerprint = request.device_fingerprint if self.policy.device_fingerprinting_enabled else None
        if fingerprint and self.ledger.device_used_by_other(period.id, fingerprint, request.student_id):
            warnings.append(SHARED_DEVICE)

        # 7. Classification
        status = classify(period, scan_time, self.policy.late_grace_minutes)

        # 8. Commit
        attendance = Attendance(
            student_id=request.student_id,
            period_id=period.id,
            subject_id=period.subject_id,
            semester_id=period.semester_id,
            scan_time=scan_time,
            marked_at=now,
            status=status,
            latitude=request.latitude,
            longitude=request.longitude,
            location_accuracy=request.accuracy,
            distance_meters=distance,
            device_fingerprint=fingerprint,
            ip_address=request.ip_address,
            qr_data=request.qr_data,
            validation_passed=True
        )
        for warning in warnings:
            attendance.add_warning(warning)

        try:
            self.ledger.record(attendance)
        except DuplicateAttendance:
            return self._reject(request, RejectionReason.ALREADY_MARKED,
                                'Attendance already marked for this period')

        logger.info("Student %s marked %s for period %s%s", request.student_id, status.value,
                    period.id, f" (flags: {','.join(warnings)})" if warnings else '')
        return ScanResult(accepted=True, attendance=attendance, warnings=warnings,
                          distance_meters=distance)

    def _reject(self, request: ScanRequest, reason: RejectionReason, message: str,
                **kwargs) -> ScanResult:
        logger.info("Scan rejected for student %s: %s (%s)", request.student_id, reason.value, message)
        return ScanResult.reject(reason, message, **kwargs)
