"""QR session: the live admission ticket for one period."""
from datetime import datetime
from typing import Optional
from qr_attendance import db
from qr_attendance.models.base import BaseModel
from qr_attendance.utils.helpers import utcnow, isoformat


class QRSession(BaseModel):
    """At most one row per period; a terminal row is recycled by the next generate."""

    __tablename__ = 'qr_sessions'
    __table_args__ = (
        db.UniqueConstraint('period_id', name='uq_qr_session_period'),
        db.CheckConstraint('expires_at > generated_at', name='ck_qr_session_expiry'),
        db.Index('ix_qr_session_active_expiry', 'is_active', 'expires_at'),
    )

    period_id = db.Column(db.Integer, db.ForeignKey('periods.id'), nullable=False)
    nonce = db.Column(db.String(64), nullable=False)
    token = db.Column(db.String(1000), nullable=False)
    generated_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    expires_at = db.Column(db.DateTime, nullable=False)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    stopped_at = db.Column(db.DateTime, nullable=True)

    # Geofence snapshot taken from the period at creation
    latitude = db.Column(db.Float, nullable=False)
    longitude = db.Column(db.Float, nullable=False)
    geofence_radius = db.Column(db.Float, nullable=False)

    # Stats
    total_scans = db.Column(db.Integer, default=0, nullable=False)
    unique_students = db.Column(db.Integer, default=0, nullable=False)

    period = db.relationship('Period', back_populates='qr_session')

    def is_live(self, now: Optional[datetime] = None) -> bool:
        """Liveness is always computed against the clock, never cached."""
        return bool(self.is_active) and (now or utcnow()) < self.expires_at

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or utcnow()) >= self.expires_at

    def time_remaining_seconds(self, now: Optional[datetime] = None) -> int:
        remaining = (self.expires_at - (now or utcnow())).total_seconds()
        return max(0, int(remaining))

    def lifetime_minutes(self) -> float:
        return (self.expires_at - self.generated_at).total_seconds() / 60

    def state(self, now: Optional[datetime] = None) -> str:
        if self.stopped_at is not None:
            return 'stopped'
        return 'live' if self.is_live(now) else 'expired'

    def to_dict(self, now: Optional[datetime] = None):
        """Convert to dictionary."""
        return {
            'id': self.id,
            'period_id': self.period_id,
            'qr_token': self.token,
            'generated_at': isoformat(self.generated_at),
            'expires_at': isoformat(self.expires_at),
            'is_active': self.is_live(now),
            'state': self.state(now),
            'stopped_at': isoformat(self.stopped_at),
            'time_remaining_seconds': self.time_remaining_seconds(now),
            'geofence': {
                'latitude': self.latitude,
                'longitude': self.longitude,
                'radius': self.geofence_radius
            },
            'total_scans': self.total_scans,
            'unique_students': self.unique_students
        }
