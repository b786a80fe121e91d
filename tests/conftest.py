"""Shared fixtures: app, database, users, periods and clock-controlled services."""
from datetime import datetime, timedelta

import pytest
from flask_jwt_extended import create_access_token

from qr_attendance import create_app, db
from qr_attendance.models import Period, PeriodStatus, StudentEnrollment, User, UserRole
from qr_attendance.policy import AttendancePolicy
from qr_attendance.services.ledger import AttendanceLedger
from qr_attendance.services.scan_validator import ScanRequest, ScanValidator
from qr_attendance.services.session_manager import QRSessionManager
from qr_attendance.utils.helpers import CLOCK_EXTENSION

SIGNING_KEY = 'test-qr-signing-key-with-enough-length'

# Scenario period: 2024-03-04 09:00-10:30 at (28.6139, 77.2090)
PERIOD_DAY = datetime(2024, 3, 4)
CENTER = (28.6139, 77.2090)


class FakeClock:
    """Callable clock the services accept in place of utcnow."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def set(self, hour, minute=0, second=0):
        self.now = PERIOD_DAY.replace(hour=hour, minute=minute, second=second)
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def app():
    """Create test app."""
    app = create_app('testing')
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture
def clock(app):
    """Fake clock, also installed as the application clock."""
    clock = FakeClock(PERIOD_DAY.replace(hour=8, minute=45))
    app.extensions[CLOCK_EXTENSION] = clock
    return clock


@pytest.fixture
def policy():
    # Long-lived sessions so a single generate covers the whole scenario period
    return AttendancePolicy(qr_expiry_minutes=150)


@pytest.fixture
def make_user(app):
    counter = {'n': 0}

    def _make_user(role=UserRole.STUDENT, name=None, is_active=True):
        counter['n'] += 1
        user = User(
            email=f"{role.value}{counter['n']}@example.edu",
            name=name or f"{role.value.title()} {counter['n']}",
            role=role,
            is_active=is_active
        )
        return user.save()
    return _make_user


@pytest.fixture
def teacher(make_user):
    return make_user(UserRole.TEACHER)


@pytest.fixture
def other_teacher(make_user):
    return make_user(UserRole.TEACHER)


@pytest.fixture
def hod(make_user):
    return make_user(UserRole.HOD)


@pytest.fixture
def admin(make_user):
    return make_user(UserRole.ADMIN)


@pytest.fixture
def student(make_user):
    return make_user(UserRole.STUDENT)


@pytest.fixture
def make_period(app, teacher):
    def _make_period(start=None, end=None, **overrides):
        start = start or PERIOD_DAY.replace(hour=9)
        end = end or start + timedelta(minutes=90)
        values = dict(
            subject_id=101,
            semester_id=1,
            timetable_id=7,
            teacher_id=teacher.id,
            room='B-204',
            start_time=start,
            end_time=end,
            latitude=CENTER[0],
            longitude=CENTER[1],
            geofence_radius=100,
            status=PeriodStatus.SCHEDULED
        )
        values.update(overrides)
        return Period(**values).save()
    return _make_period


@pytest.fixture
def period(make_period):
    return make_period()


@pytest.fixture
def enroll(app):
    def _enroll(student, period=None, subject_id=101, semester_id=1):
        enrollment = StudentEnrollment(
            student_id=student.id,
            subject_id=period.subject_id if period else subject_id,
            semester_id=period.semester_id if period else semester_id
        )
        return enrollment.save()
    return _enroll


@pytest.fixture
def enrolled_student(make_user, enroll, period):
    """Factory for fresh students enrolled in ``period``."""
    def _enrolled_student():
        user = make_user(UserRole.STUDENT)
        enroll(user, period)
        return user
    return _enrolled_student


@pytest.fixture
def manager(app, policy, clock):
    return QRSessionManager(policy, SIGNING_KEY, clock=clock)


@pytest.fixture
def ledger(app, clock):
    return AttendanceLedger(clock=clock)


@pytest.fixture
def validator(policy, manager, ledger, clock):
    return ScanValidator(policy, manager, ledger, clock=clock)


@pytest.fixture
def make_scan():
    def _make_scan(token, student, latitude=CENTER[0], longitude=CENTER[1], accuracy=10.0, **kwargs):
        return ScanRequest(
            qr_data=token,
            student_id=student.id,
            latitude=latitude,
            longitude=longitude,
            accuracy=accuracy,
            **kwargs
        )
    return _make_scan


@pytest.fixture
def auth_headers(app):
    def _auth_headers(user):
        token = create_access_token(identity=str(user.id))
        return {'Authorization': f'Bearer {token}'}
    return _auth_headers
