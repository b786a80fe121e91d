"""Attendance ledger: the only writer of attendance rows."""
import logging
from datetime import date, datetime, time, timedelta
from typing import Callable, Dict, List, Optional

from sqlalchemy import case, func, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from qr_attendance import db
from qr_attendance.errors import (
    DuplicateAttendance, InvalidRequest, NotAuthorized, NotFound, StorageUnavailable
)
from qr_attendance.events import attendance_created, attendance_overridden
from qr_attendance.models.attendance import Attendance, AttendanceStatus, MANUAL_QR_DATA
from qr_attendance.models.period import Period
from qr_attendance.models.user import UserRole
from qr_attendance.services.collaborators import AuditTrail, RoleLookup
from qr_attendance.utils.helpers import utcnow

logger = logging.getLogger(__name__)

ARCHIVE_CRITERIA = ('student_id', 'period_id', 'subject_id', 'semester_id')
MAX_REASON_LENGTH = 500


class AttendanceLedger:
    """Append-mostly record store with audited overrides, archives and deletes."""

    def __init__(self, audit: Optional[AuditTrail] = None, roles: Optional[RoleLookup] = None,
                 clock: Optional[Callable[[], datetime]] = None):
        self.audit = audit or AuditTrail()
        self.roles = roles or RoleLookup()
        self.clock = clock or utcnow

    # =================== WRITES ===================

    def record(self, attendance: Attendance) -> Attendance:
        """
        Insert a record atomically.

        The partial unique index on (student_id, period_id) is what actually
        prevents duplicates; a violation surfaces as DuplicateAttendance.
        """
        if attendance.marked_at is None:
            attendance.marked_at = self.clock()
        db.session.add(attendance)
        try:
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            logger.info("Duplicate attendance rejected for student %s period %s",
                        attendance.student_id, attendance.period_id)
            raise DuplicateAttendance()
        except SQLAlchemyError:
            db.session.rollback()
            logger.exception("Attendance insert failed")
            raise StorageUnavailable()

        attendance_created.send(self, attendance=attendance)
        return attendance

    def find_live(self, student_id: int, period_id: int) -> Optional[Attendance]:
        return Attendance.query.filter_by(
            student_id=student_id, period_id=period_id, archived=False
        ).first()

    def exists(self, student_id: int, period_id: int) -> bool:
        return self.find_live(student_id, period_id) is not None

    def device_used_by_other(self, period_id: int, device_fingerprint: str, student_id: int) -> bool:
        """Has another student already been admitted from this device for the period?"""
        return db.session.query(
            Attendance.query.filter(
                Attendance.period_id == period_id,
                Attendance.device_fingerprint == device_fingerprint,
                Attendance.student_id != student_id,
                Attendance.archived.is_(False)
            ).exists()
        ).scalar()

    def override(self, student_id: int, period_id: int, new_status, reason: str,
                 actor_id: int) -> Attendance:
        """Privileged status change; creates a manual record when none exists."""
        reason = (reason or '').strip()
        if not reason:
            raise InvalidRequest('Override reason is required')
        if len(reason) > MAX_REASON_LENGTH:
            raise InvalidRequest(f'Override reason cannot exceed {MAX_REASON_LENGTH} characters')
        try:
            new_status = AttendanceStatus(new_status)
        except ValueError:
            raise InvalidRequest(f'Invalid attendance status: {new_status}')

        period = db.session.get(Period, period_id)
        if period is None:
            raise NotFound('Period not found')
        self._authorize_override(actor_id, period)

        now = self.clock()
        attendance = self.find_live(student_id, period_id)
        previous_status = attendance.status.value if attendance else None
        if attendance is None:
            attendance = Attendance(
                student_id=student_id,
                period_id=period.id,
                subject_id=period.subject_id,
                semester_id=period.semester_id,
                scan_time=now,
                marked_at=now,
                qr_data=MANUAL_QR_DATA,
                validation_passed=True
            )
            db.session.add(attendance)

        attendance.status = new_status
        attendance.override_reason = reason
        attendance.overridden_by = int(actor_id)
        attendance.overridden_at = now

        try:
            db.session.flush()
            self.audit.append(
                'OVERRIDE', 'Attendance', attendance.id, user_id=int(actor_id), reason=reason,
                details={
                    'student': student_id,
                    'period': period_id,
                    'previous_status': previous_status,
                    'new_status': new_status.value
                }
            )
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            raise DuplicateAttendance()
        except SQLAlchemyError:
            db.session.rollback()
            logger.exception("Attendance override failed")
            raise StorageUnavailable()

        logger.info("Attendance %s overridden to %s by %s", attendance.id, new_status.value, actor_id)
        attendance_overridden.send(self, attendance=attendance, previous_status=previous_status)
        return attendance

    def archive(self, criteria: Dict, reason: str, actor_id: Optional[int] = None,
                commit: bool = True) -> int:
        """
        Soft-delete every live record matching ``criteria``.

        Called with an actor from the API (HOD/admin only) and without one from
        cascade procedures that have already authorized the parent removal.
        """
        filters = {key: value for key, value in (criteria or {}).items()
                   if key in ARCHIVE_CRITERIA and value is not None}
        if not filters:
            raise InvalidRequest('Archive criteria must name a student, period, subject or semester')
        if not (reason or '').strip():
            raise InvalidRequest('Archive reason is required')
        if actor_id is not None and not self.roles.has_role(actor_id, UserRole.HOD, UserRole.ADMIN):
            raise NotAuthorized('Only HOD or admin can archive attendance')

        conditions = [getattr(Attendance, key) == value for key, value in filters.items()]
        result = db.session.execute(
            update(Attendance)
            .where(Attendance.archived.is_(False), *conditions)
            .values(archived=True, archived_at=self.clock(), archive_reason=reason)
            .execution_options(synchronize_session=False)
        )
        self.audit.append(
            'ARCHIVE', 'Attendance', None,
            user_id=int(actor_id) if actor_id is not None else None,
            reason=reason,
            details={'criteria': filters, 'count': result.rowcount}
        )
        if commit:
            self._commit()
        logger.info("Archived %s attendance records (%s)", result.rowcount, reason)
        return result.rowcount

    def delete(self, attendance_id: int, actor_id: int, reason: Optional[str] = None) -> None:
        """Hard delete; admin only, audited with the full prior state."""
        if not self.roles.has_role(actor_id, UserRole.ADMIN):
            raise NotAuthorized('Only admin can delete attendance records')
        attendance = db.session.get(Attendance, attendance_id)
        if attendance is None:
            raise NotFound('Attendance record not found')

        snapshot = attendance.to_dict()
        snapshot['archived'] = attendance.archived
        snapshot['archive_reason'] = attendance.archive_reason
        self.audit.append(
            'DELETE', 'Attendance', attendance.id, user_id=int(actor_id),
            reason=reason or 'Attendance record deleted', details=snapshot
        )
        db.session.delete(attendance)
        self._commit()
        logger.info("Attendance %s deleted by %s", attendance_id, actor_id)

    # =================== QUERIES ===================

    def _live(self):
        return Attendance.query.filter(Attendance.archived.is_(False))

    def for_student(self, student_id: int, semester_id: int = None,
                    subject_id: int = None) -> List[Attendance]:
        query = self._live().filter(Attendance.student_id == student_id)
        if semester_id is not None:
            query = query.filter(Attendance.semester_id == semester_id)
        if subject_id is not None:
            query = query.filter(Attendance.subject_id == subject_id)
        return query.order_by(Attendance.scan_time.desc()).all()

    def for_period(self, period_id: int) -> List[Attendance]:
        return self._live().filter(Attendance.period_id == period_id) \
            .order_by(Attendance.scan_time.asc()).all()

    def for_subject(self, subject_id: int, semester_id: int = None) -> List[Attendance]:
        query = self._live().filter(Attendance.subject_id == subject_id)
        if semester_id is not None:
            query = query.filter(Attendance.semester_id == semester_id)
        return query.order_by(Attendance.scan_time.desc()).all()

    def statistics(self, subject_id: int = None, semester_id: int = None,
                   student_id: int = None) -> Dict:
        """Counts per status and percentage = (present + late) / total."""
        rows = self._status_counts(subject_id, semester_id, student_id, group_by_student=False)
        counts = {status.value: 0 for status in AttendanceStatus}
        for status, count in rows:
            counts[status.value] = count
        return self._summarize(counts)

    def statistics_by_student(self, subject_id: int = None, semester_id: int = None) -> List[Dict]:
        rows = self._status_counts(subject_id, semester_id, None, group_by_student=True)
        per_student: Dict[int, Dict[str, int]] = {}
        for student_id, status, count in rows:
            counts = per_student.setdefault(student_id, {s.value: 0 for s in AttendanceStatus})
            counts[status.value] = count
        return [
            dict(student_id=student_id, **self._summarize(counts))
            for student_id, counts in sorted(per_student.items())
        ]

    def daily_report(self, day: date) -> List[Dict]:
        """Per-period status counts for scans on ``day``."""
        start = datetime.combine(day, time.min)
        end = start + timedelta(days=1)
        rows = db.session.query(
            Attendance.period_id,
            func.count(Attendance.id),
            func.sum(case((Attendance.status == AttendanceStatus.PRESENT, 1), else_=0)),
            func.sum(case((Attendance.status == AttendanceStatus.LATE, 1), else_=0)),
            func.sum(case((Attendance.status == AttendanceStatus.ABSENT, 1), else_=0)),
        ).filter(
            Attendance.archived.is_(False),
            Attendance.scan_time >= start,
            Attendance.scan_time < end
        ).group_by(Attendance.period_id).order_by(Attendance.period_id).all()

        report = []
        for period_id, total, present, late, absent in rows:
            summary = self._summarize({'present': present or 0, 'late': late or 0,
                                       'absent': absent or 0})
            summary['period_id'] = period_id
            report.append(summary)
        return report

    # =================== INTERNALS ===================

    def _status_counts(self, subject_id, semester_id, student_id, group_by_student: bool):
        columns = [Attendance.status, func.count(Attendance.id)]
        group = [Attendance.status]
        if group_by_student:
            columns.insert(0, Attendance.student_id)
            group.insert(0, Attendance.student_id)

        query = db.session.query(*columns).filter(Attendance.archived.is_(False))
        if subject_id is not None:
            query = query.filter(Attendance.subject_id == subject_id)
        if semester_id is not None:
            query = query.filter(Attendance.semester_id == semester_id)
        if student_id is not None:
            query = query.filter(Attendance.student_id == student_id)
        return query.group_by(*group).all()

    @staticmethod
    def _summarize(counts: Dict[str, int]) -> Dict:
        total = sum(counts.values())
        attended = counts.get('present', 0) + counts.get('late', 0)
        return {
            'total': total,
            'present': counts.get('present', 0),
            'late': counts.get('late', 0),
            'absent': counts.get('absent', 0),
            'percentage': round(attended / total * 100, 2) if total else 0.0
        }

    def _authorize_override(self, actor_id, period: Period) -> None:
        actor = self.roles.get_user(actor_id)
        if actor is None or not actor.can_override():
            raise NotAuthorized('Override must be done by an active teacher, HOD or admin')
        if actor.role == UserRole.TEACHER and period.teacher_id != actor.id:
            raise NotAuthorized('Teachers can only override attendance for their own periods')

    def _commit(self) -> None:
        try:
            db.session.commit()
        except SQLAlchemyError:
            db.session.rollback()
            logger.exception("Attendance ledger commit failed")
            raise StorageUnavailable()
