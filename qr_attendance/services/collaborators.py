"""Lookups and sinks owned by neighbouring services.

The attendance core only needs three things from the outside world: whether a
student is enrolled, who a user is, and somewhere to append audit entries.
The default implementations read the local mirror tables.
"""
import logging
from typing import Any, Dict, Optional

from sqlalchemy.exc import SQLAlchemyError

from qr_attendance import db
from qr_attendance.models.audit_log import AuditLog
from qr_attendance.models.enrollment import StudentEnrollment
from qr_attendance.models.user import User, UserRole

logger = logging.getLogger(__name__)


class EnrollmentLookup:
    """(student, subject, semester) -> active enrollment?"""

    def is_enrolled(self, student_id: int, subject_id: int, semester_id: int) -> bool:
        return db.session.query(
            StudentEnrollment.query.filter_by(
                student_id=student_id,
                subject_id=subject_id,
                semester_id=semester_id,
                is_active=True
            ).exists()
        ).scalar()


class RoleLookup:
    """User and role resolution for authorization checks."""

    def get_user(self, user_id) -> Optional[User]:
        if user_id is None:
            return None
        return db.session.get(User, int(user_id))

    def has_role(self, user_id, *roles: UserRole) -> bool:
        user = self.get_user(user_id)
        return bool(user and user.is_active and user.role in roles)


class AuditTrail:
    """Fire-and-forget audit appends.

    Entries join the caller's transaction so an audit row commits with the
    change it describes. A failure to stage an entry is logged, not raised.
    """

    def append(
        self,
        action: str,
        entity_type: str,
        entity_id: Optional[int],
        user_id: Optional[int] = None,
        reason: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ) -> Optional[AuditLog]:
        entry = AuditLog(
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            user_id=user_id,
            reason=reason,
            details=details or {}
        )
        try:
            db.session.add(entry)
        except SQLAlchemyError:
            logger.warning("Failed to stage audit entry %s %s:%s", action, entity_type, entity_id,
                           exc_info=True)
            return None
        logger.info("Audit %s %s:%s by %s", action, entity_type, entity_id, user_id)
        return entry
