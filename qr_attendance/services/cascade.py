"""Cascade procedures run when a parent entity goes away.

Each procedure is explicit, idempotent and commits once. Attendance is never
hard-deleted here; it is archived with a reason so history stays auditable.
Periods that are cancelled or deactivated have their QR session stopped.
"""
import logging
from datetime import datetime
from typing import Callable, Dict, Optional

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError

from qr_attendance import db
from qr_attendance.errors import NotAuthorized, StorageUnavailable
from qr_attendance.models.enrollment import StudentEnrollment
from qr_attendance.models.period import Period, PeriodStatus
from qr_attendance.models.user import UserRole
from qr_attendance.services.collaborators import AuditTrail, RoleLookup
from qr_attendance.services.ledger import AttendanceLedger
from qr_attendance.services.session_manager import QRSessionManager
from qr_attendance.utils.helpers import utcnow

logger = logging.getLogger(__name__)


class CascadeService:
    """Parent-removal use cases for periods, subjects, semesters, timetables and enrollments."""

    def __init__(self, ledger: AttendanceLedger, session_manager: QRSessionManager,
                 roles: Optional[RoleLookup] = None, audit: Optional[AuditTrail] = None,
                 clock: Optional[Callable[[], datetime]] = None):
        self.ledger = ledger
        self.sessions = session_manager
        self.roles = roles or RoleLookup()
        self.audit = audit or AuditTrail()
        self.clock = clock or utcnow

    def delete_period(self, period: Period, actor_id) -> Dict:
        """Archive the period's attendance, drop its QR session, delete the period."""
        self._authorize(actor_id)
        period_id = period.id
        archived = self.ledger.archive({'period_id': period_id}, 'Period deleted', commit=False)
        session_deleted = self.sessions.delete_for_period(period, commit=False)
        self.audit.append('DELETE', 'Period', period_id, user_id=int(actor_id),
                          reason='Period deleted',
                          details={'archived_attendance': archived, 'qr_session_deleted': session_deleted})
        db.session.delete(period)
        self._commit()
        logger.info("Period %s deleted (%s attendance archived)", period_id, archived)
        return {'period_id': period_id, 'archived_attendance': archived,
                'qr_session_deleted': session_deleted}

    def deactivate_subject(self, subject_id: int, actor_id) -> Dict:
        self._authorize(actor_id)
        now = self.clock()
        deactivated = self._deactivate_periods(Period.subject_id == subject_id, now)
        cancelled = self._cancel_future_periods(Period.subject_id == subject_id, now, 'Subject deleted')
        enrollments = self._deactivate_enrollments(StudentEnrollment.subject_id == subject_id)
        archived = self.ledger.archive({'subject_id': subject_id}, 'Subject deleted', commit=False)
        self._commit()
        logger.info("Subject %s removed: %s periods deactivated, %s cancelled",
                    subject_id, deactivated, cancelled)
        return {'periods_deactivated': deactivated, 'periods_cancelled': cancelled,
                'enrollments_deactivated': enrollments, 'archived_attendance': archived}

    def deactivate_semester(self, semester_id: int, actor_id) -> Dict:
        """Semester removal keeps attendance history live; only scheduling is switched off."""
        self._authorize(actor_id)
        now = self.clock()
        deactivated = self._deactivate_periods(Period.semester_id == semester_id, now)
        cancelled = self._cancel_future_periods(Period.semester_id == semester_id, now, 'Semester deleted')
        enrollments = self._deactivate_enrollments(StudentEnrollment.semester_id == semester_id)
        self._commit()
        logger.info("Semester %s removed: %s periods deactivated", semester_id, deactivated)
        return {'periods_deactivated': deactivated, 'periods_cancelled': cancelled,
                'enrollments_deactivated': enrollments}

    def cancel_timetable_periods(self, timetable_id: int, actor_id) -> Dict:
        self._authorize(actor_id)
        cancelled = self._cancel_future_periods(Period.timetable_id == timetable_id, self.clock(),
                                                'Timetable deleted')
        self._commit()
        return {'periods_cancelled': cancelled}

    def remove_enrollment(self, enrollment: StudentEnrollment, actor_id) -> Dict:
        self._authorize(actor_id)
        archived = self.ledger.archive({
            'student_id': enrollment.student_id,
            'subject_id': enrollment.subject_id,
            'semester_id': enrollment.semester_id
        }, 'Enrollment deleted', commit=False)
        enrollment.is_active = False
        self._commit()
        return {'archived_attendance': archived}

    # =================== INTERNALS ===================

    def _cancel_future_periods(self, condition, now: datetime, reason: str) -> int:
        pending = (condition, Period.start_time >= now, Period.status != PeriodStatus.CANCELLED)
        self.sessions.stop_for_periods(*pending, now=now)
        result = db.session.execute(
            update(Period)
            .where(*pending)
            .values(status=PeriodStatus.CANCELLED, is_active=False,
                    cancelled_at=now, cancel_reason=reason)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    def _deactivate_periods(self, condition, now: datetime) -> int:
        active = (condition, Period.is_active.is_(True))
        self.sessions.stop_for_periods(*active, now=now)
        result = db.session.execute(
            update(Period)
            .where(*active)
            .values(is_active=False)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    def _deactivate_enrollments(self, condition) -> int:
        result = db.session.execute(
            update(StudentEnrollment)
            .where(condition, StudentEnrollment.is_active.is_(True))
            .values(is_active=False)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    def _authorize(self, actor_id) -> None:
        if not self.roles.has_role(actor_id, UserRole.HOD, UserRole.ADMIN):
            raise NotAuthorized('Only HOD or admin can remove academic records')

    def _commit(self) -> None:
        try:
            db.session.commit()
        except SQLAlchemyError:
            db.session.rollback()
            logger.exception("Cascade commit failed")
            raise StorageUnavailable()
