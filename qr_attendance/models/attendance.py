"""Attendance model with verification details."""
from enum import Enum
from qr_attendance import db
from qr_attendance.models.base import BaseModel
from qr_attendance.utils.helpers import utcnow, isoformat


class AttendanceStatus(Enum):
    """Attendance outcome."""
    PRESENT = 'present'
    LATE = 'late'
    ABSENT = 'absent'


MANUAL_QR_DATA = 'manual-override'


class Attendance(BaseModel):
    """One admission record; at most one non-archived row per (student, period)."""

    __tablename__ = 'attendance'
    __table_args__ = (
        # The storage-level guard against concurrent duplicate scans
        db.Index(
            'uq_attendance_student_period_live', 'student_id', 'period_id',
            unique=True,
            sqlite_where=db.text('archived = 0'),
            postgresql_where=db.text('archived = false'),
        ),
        db.Index('ix_attendance_subject_semester', 'subject_id', 'semester_id'),
        db.Index('ix_attendance_student_semester', 'student_id', 'semester_id'),
        db.CheckConstraint('location_accuracy IS NULL OR '
                           '(location_accuracy >= 0 AND location_accuracy <= 1000)',
                           name='ck_attendance_accuracy'),
    )

    student_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    # Plain reference: archived rows outlive a deleted period
    period_id = db.Column(db.Integer, nullable=False, index=True)
    subject_id = db.Column(db.Integer, nullable=False, index=True)
    semester_id = db.Column(db.Integer, nullable=False, index=True)

    scan_time = db.Column(db.DateTime, nullable=False, index=True)
    marked_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    status = db.Column(db.Enum(AttendanceStatus), nullable=False, default=AttendanceStatus.PRESENT)

    # Claimed location (empty for manual records)
    latitude = db.Column(db.Float, nullable=True)
    longitude = db.Column(db.Float, nullable=True)
    location_accuracy = db.Column(db.Float, nullable=True)
    distance_meters = db.Column(db.Float, nullable=True)

    device_fingerprint = db.Column(db.String(255), nullable=True, index=True)
    ip_address = db.Column(db.String(45), nullable=True)
    qr_data = db.Column(db.String(1000), nullable=False)

    validation_passed = db.Column(db.Boolean, default=True, nullable=False)
    validation_warnings = db.Column(db.String(255), nullable=True)

    # Override metadata
    override_reason = db.Column(db.String(500), nullable=True)
    overridden_by = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True)
    overridden_at = db.Column(db.DateTime, nullable=True)

    # Soft delete
    archived = db.Column(db.Boolean, default=False, nullable=False)
    archived_at = db.Column(db.DateTime, nullable=True)
    archive_reason = db.Column(db.String(255), nullable=True)

    @property
    def warnings(self) -> list:
        return self.validation_warnings.split(',') if self.validation_warnings else []

    def add_warning(self, warning: str) -> None:
        self.validation_warnings = ','.join(self.warnings + [warning])
        self.validation_passed = False

    def to_dict(self, exclude: list = None) -> dict:
        return {
            'id': self.id,
            'student_id': self.student_id,
            'period_id': self.period_id,
            'subject_id': self.subject_id,
            'semester_id': self.semester_id,
            'scan_time': isoformat(self.scan_time),
            'marked_at': isoformat(self.marked_at),
            'status': self.status.value if self.status else None,
            'location': {
                'latitude': self.latitude,
                'longitude': self.longitude,
                'accuracy': self.location_accuracy,
                'distance': self.distance_meters
            },
            'device_fingerprint': self.device_fingerprint,
            'ip_address': self.ip_address,
            'validation_passed': self.validation_passed,
            'warnings': self.warnings,
            'override_reason': self.override_reason,
            'overridden_by': self.overridden_by,
            'overridden_at': isoformat(self.overridden_at)
        }

    def __repr__(self):
        return f'<Attendance {self.student_id}-{self.period_id}>'
