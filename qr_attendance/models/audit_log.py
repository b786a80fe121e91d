"""Audit trail for privileged attendance mutations."""
from qr_attendance import db
from qr_attendance.models.base import BaseModel
from qr_attendance.utils.helpers import utcnow


class AuditLog(BaseModel):
    """Append-only audit entry."""

    __tablename__ = 'audit_logs'

    action = db.Column(db.String(20), nullable=False, index=True)  # OVERRIDE, ARCHIVE, DELETE
    entity_type = db.Column(db.String(50), nullable=False)
    entity_id = db.Column(db.Integer, nullable=True, index=True)
    user_id = db.Column(db.Integer, nullable=True)
    reason = db.Column(db.String(500), nullable=True)
    details = db.Column(db.JSON, nullable=True)
    timestamp = db.Column(db.DateTime, default=utcnow, nullable=False)

    def __repr__(self):
        return f'<AuditLog {self.action} {self.entity_type}:{self.entity_id}>'
