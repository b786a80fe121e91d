"""Period model: one scheduled occurrence of a class."""
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import event, inspect

from qr_attendance import db
from qr_attendance.models.base import BaseModel
from qr_attendance.utils.helpers import app_now


class PeriodStatus(Enum):
    """Period lifecycle states."""
    SCHEDULED = 'scheduled'
    ONGOING = 'ongoing'
    COMPLETED = 'completed'
    CANCELLED = 'cancelled'


class Period(BaseModel):
    """Scheduled class occurrence with its geofence."""

    __tablename__ = 'periods'
    __table_args__ = (
        db.CheckConstraint('end_time > start_time', name='ck_period_end_after_start'),
        db.CheckConstraint('geofence_radius >= 10 AND geofence_radius <= 1000',
                           name='ck_period_geofence_radius'),
        db.Index('ix_period_teacher_start', 'teacher_id', 'start_time'),
        db.Index('ix_period_status_start', 'status', 'start_time'),
    )

    # References owned by the academic-structure service
    subject_id = db.Column(db.Integer, nullable=False, index=True)
    semester_id = db.Column(db.Integer, nullable=False, index=True)
    timetable_id = db.Column(db.Integer, nullable=True, index=True)
    teacher_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)

    room = db.Column(db.String(50), nullable=False)
    start_time = db.Column(db.DateTime, nullable=False)
    end_time = db.Column(db.DateTime, nullable=False)

    # Geofence
    latitude = db.Column(db.Float, nullable=False)
    longitude = db.Column(db.Float, nullable=False)
    geofence_radius = db.Column(db.Float, nullable=False, default=100)

    status = db.Column(db.Enum(PeriodStatus), nullable=False, default=PeriodStatus.SCHEDULED)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    cancelled_at = db.Column(db.DateTime, nullable=True)
    cancel_reason = db.Column(db.String(255), nullable=True)

    # QR observability
    qr_generated = db.Column(db.Boolean, default=False, nullable=False)
    qr_generated_at = db.Column(db.DateTime, nullable=True)
    qr_expires_at = db.Column(db.DateTime, nullable=True)

    teacher = db.relationship('User', backref=db.backref('periods', lazy='dynamic'))
    qr_session = db.relationship('QRSession', uselist=False, back_populates='period', cascade='all')

    @property
    def duration_minutes(self) -> int:
        return int((self.end_time - self.start_time).total_seconds() // 60)

    def is_current(self, now: Optional[datetime] = None) -> bool:
        now = now or app_now()
        return self.start_time <= now <= self.end_time

    def is_past(self, now: Optional[datetime] = None) -> bool:
        return self.end_time < (now or app_now())

    def is_future(self, now: Optional[datetime] = None) -> bool:
        return self.start_time > (now or app_now())

    def current_status(self, now: Optional[datetime] = None) -> PeriodStatus:
        """Status derived from the clock; the stored column may lag behind."""
        from qr_attendance.services.period_window import derive_status
        return derive_status(self, now or app_now())

    def refresh_status(self, now: Optional[datetime] = None) -> PeriodStatus:
        self.status = self.current_status(now)
        return self.status

    def cancel(self, reason: str, now: Optional[datetime] = None) -> None:
        """Cancelled is the only status ever set by hand."""
        self.status = PeriodStatus.CANCELLED
        self.cancelled_at = now or app_now()
        self.cancel_reason = reason

    def reset_qr_flags(self) -> None:
        self.qr_generated = False
        self.qr_generated_at = None
        self.qr_expires_at = None

    def to_dict(self, exclude: list = None) -> dict:
        data = super().to_dict(exclude=exclude)
        data['status'] = self.current_status().value
        data['duration_minutes'] = self.duration_minutes
        data['location'] = {
            'latitude': self.latitude,
            'longitude': self.longitude,
            'radius': self.geofence_radius
        }
        return data

    def __repr__(self):
        return f'<Period {self.id} {self.room} {self.start_time}>'


@event.listens_for(Period, 'before_insert')
def _derive_status_on_insert(mapper, connection, target):
    if target.status is None:
        target.refresh_status()


@event.listens_for(Period, 'before_update')
def _derive_status_on_update(mapper, connection, target):
    # A status assigned in this unit of work was derived by the caller from its own clock
    if not inspect(target).attrs.status.history.has_changes():
        target.refresh_status()
