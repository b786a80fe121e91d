"""Period creation, cancellation and status upkeep."""
import logging
from datetime import datetime
from typing import Callable, Dict, Optional

from sqlalchemy.exc import SQLAlchemyError

from qr_attendance import db
from qr_attendance.errors import InvalidRequest, NotAuthorized, StorageUnavailable
from qr_attendance.models.period import Period, PeriodStatus
from qr_attendance.models.user import User, UserRole
from qr_attendance.services.geo import valid_coordinates
from qr_attendance.services.period_window import derive_status
from qr_attendance.services.session_manager import QRSessionManager
from qr_attendance.utils.helpers import utcnow

logger = logging.getLogger(__name__)

MIN_GEOFENCE_RADIUS = 10
MAX_GEOFENCE_RADIUS = 1000


class PeriodService:
    """Use cases around a single period."""

    def __init__(self, session_manager: QRSessionManager, default_geofence_radius: float = 100,
                 clock: Optional[Callable[[], datetime]] = None):
        self.sessions = session_manager
        self.default_geofence_radius = default_geofence_radius
        self.clock = clock or utcnow

    def create_period(self, data: Dict) -> Period:
        """Create a period directly (timetable expansion uses the same path)."""
        start_time = data.get('start_time')
        end_time = data.get('end_time')
        if not isinstance(start_time, datetime) or not isinstance(end_time, datetime):
            raise InvalidRequest('Start and end time are required')
        if end_time <= start_time:
            raise InvalidRequest('End time must be after start time')

        latitude = data.get('latitude')
        longitude = data.get('longitude')
        if latitude is None or longitude is None or not valid_coordinates(latitude, longitude):
            raise InvalidRequest('Valid geofence coordinates are required')

        radius = data.get('geofence_radius') or self.default_geofence_radius
        if not MIN_GEOFENCE_RADIUS <= radius <= MAX_GEOFENCE_RADIUS:
            raise InvalidRequest(
                f'Geofence radius must be between {MIN_GEOFENCE_RADIUS} and {MAX_GEOFENCE_RADIUS} meters'
            )

        teacher = db.session.get(User, data.get('teacher_id')) if data.get('teacher_id') else None
        if teacher is None or teacher.role not in (UserRole.TEACHER, UserRole.HOD, UserRole.ADMIN):
            raise InvalidRequest('A valid teacher is required')

        for key in ('subject_id', 'semester_id', 'room'):
            if not data.get(key):
                raise InvalidRequest(f'{key} is required')

        period = Period(
            subject_id=data['subject_id'],
            semester_id=data['semester_id'],
            timetable_id=data.get('timetable_id'),
            teacher_id=teacher.id,
            room=str(data['room'])[:50],
            start_time=start_time,
            end_time=end_time,
            latitude=latitude,
            longitude=longitude,
            geofence_radius=radius
        )
        period.status = derive_status(period, self.clock())
        db.session.add(period)
        self._commit()
        logger.info("Period %s created for subject %s in room %s", period.id, period.subject_id, period.room)
        return period

    def cancel_period(self, period: Period, reason: str, actor: User) -> Period:
        if actor is None or not actor.is_staff():
            raise NotAuthorized('Only staff can cancel periods')
        if actor.role == UserRole.TEACHER and period.teacher_id != actor.id:
            raise NotAuthorized('Teachers can only cancel their own periods')
        now = self.clock()
        self.sessions.stop_for_periods(Period.id == period.id, now=now)
        period.cancel(reason or 'Cancelled', now)
        self._commit()
        logger.info("Period %s cancelled: %s", period.id, period.cancel_reason)
        return period

    def refresh_statuses(self, now: Optional[datetime] = None) -> int:
        """Persist clock-derived statuses for every period that is not yet final."""
        now = now or self.clock()
        changed = 0
        pending = Period.query.filter(
            Period.status.in_([PeriodStatus.SCHEDULED, PeriodStatus.ONGOING])
        ).all()
        for period in pending:
            status = derive_status(period, now)
            if status != period.status:
                period.status = status
                changed += 1
        self._commit()
        return changed

    def _commit(self) -> None:
        try:
            db.session.commit()
        except SQLAlchemyError:
            db.session.rollback()
            logger.exception("Period commit failed")
            raise StorageUnavailable()
