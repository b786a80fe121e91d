"""Custom decorators for authorization."""
from functools import wraps
from flask import g
from flask_jwt_extended import get_jwt_identity
from qr_attendance.models.user import STAFF_ROLES, UserRole
from qr_attendance.services.collaborators import RoleLookup
from qr_attendance.utils.helpers import error_response


def _role_required(roles, message):
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            user = RoleLookup().get_user(get_jwt_identity())

            if not user:
                return error_response("User not found", 404)

            if not user.is_active:
                return error_response("User account is inactive", 403)

            if user.role not in roles:
                return error_response(message, 403)

            g.current_user = user
            return f(*args, **kwargs)
        return decorated_function
    return decorator


def student_required(f):
    """Decorator to require student role."""
    return _role_required((UserRole.STUDENT,), "Student access required")(f)


def teacher_required(f):
    """Decorator to require teacher role or higher."""
    return _role_required(STAFF_ROLES, "Teacher access required")(f)


staff_required = teacher_required


def hod_required(f):
    """Decorator to require head of department or admin."""
    return _role_required((UserRole.HOD, UserRole.ADMIN), "HOD access required")(f)


def admin_required(f):
    """Decorator to require admin role."""
    return _role_required((UserRole.ADMIN,), "Admin access required")(f)
