"""User model used for role lookups.

Credentials and login live in the identity service; this table only mirrors
what the attendance core needs to authorize requests.
"""
from enum import Enum
from qr_attendance import db
from qr_attendance.models.base import BaseModel


class UserRole(Enum):
    """User roles enumeration."""
    STUDENT = 'student'
    TEACHER = 'teacher'
    HOD = 'hod'
    ADMIN = 'admin'


STAFF_ROLES = (UserRole.TEACHER, UserRole.HOD, UserRole.ADMIN)


class User(BaseModel):
    """User model for all system users."""

    __tablename__ = 'users'

    email = db.Column(db.String(255), unique=True, nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)
    role = db.Column(db.Enum(UserRole), nullable=False, default=UserRole.STUDENT)
    is_active = db.Column(db.Boolean, default=True, nullable=False)

    def is_staff(self) -> bool:
        """Teachers, heads of department and admins."""
        return self.role in STAFF_ROLES

    def is_student(self) -> bool:
        return self.role == UserRole.STUDENT

    def can_override(self) -> bool:
        return self.is_active and self.is_staff()

    def to_dict(self, exclude: list = None) -> dict:
        result = super().to_dict(exclude=exclude)
        result['role'] = self.role.value if self.role else None
        return result

    def __repr__(self) -> str:
        return f'<User {self.email}>'
