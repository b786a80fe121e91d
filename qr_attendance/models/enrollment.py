"""Student enrollment in a subject for a semester."""
from qr_attendance import db
from qr_attendance.models.base import BaseModel
from qr_attendance.utils.helpers import utcnow


class StudentEnrollment(BaseModel):
    """Mirror of the enrollment service's records; gates who may scan."""

    __tablename__ = 'student_enrollments'
    __table_args__ = (
        db.UniqueConstraint('student_id', 'subject_id', 'semester_id',
                            name='uq_enrollment_student_subject_semester'),
    )

    student_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    subject_id = db.Column(db.Integer, nullable=False, index=True)
    semester_id = db.Column(db.Integer, nullable=False, index=True)
    enrolled_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    is_active = db.Column(db.Boolean, default=True, nullable=False)

    def __repr__(self):
        return f'<StudentEnrollment {self.student_id}:{self.subject_id}/{self.semester_id}>'
