"""Test period use cases and the maintenance CLI commands."""
from datetime import timedelta

import pytest

from qr_attendance import db
from qr_attendance.errors import InvalidRequest, NotAuthorized, PeriodNotEligible
from qr_attendance.models import Period, PeriodStatus, QRSession, UserRole
from qr_attendance.services.period_service import PeriodService
from qr_attendance.utils.helpers import utcnow

from conftest import CENTER, PERIOD_DAY


@pytest.fixture
def service(manager, clock):
    return PeriodService(manager, clock=clock)


@pytest.fixture
def payload(teacher):
    return {
        'subject_id': 101,
        'semester_id': 1,
        'teacher_id': teacher.id,
        'room': 'C-12',
        'start_time': PERIOD_DAY.replace(hour=9),
        'end_time': PERIOD_DAY.replace(hour=10),
        'latitude': CENTER[0],
        'longitude': CENTER[1],
    }


class TestCreatePeriod:

    def test_defaults(self, service, payload):
        period = service.create_period(payload)
        assert period.id is not None
        assert period.geofence_radius == 100
        assert period.status == PeriodStatus.SCHEDULED
        assert period.is_active is True

    def test_status_reflects_clock(self, service, payload, clock):
        clock.set(9, 30)
        assert service.create_period(payload).status == PeriodStatus.ONGOING

    @pytest.mark.parametrize('changes', [
        {'end_time': PERIOD_DAY.replace(hour=8)},
        {'start_time': None},
        {'latitude': 95},
        {'geofence_radius': 2000},
        {'room': ''},
        {'teacher_id': None},
    ])
    def test_invalid(self, service, payload, changes):
        payload.update(changes)
        with pytest.raises(InvalidRequest):
            service.create_period(payload)

    def test_student_cannot_teach(self, service, payload, student):
        payload['teacher_id'] = student.id
        with pytest.raises(InvalidRequest):
            service.create_period(payload)


class TestCancelPeriod:

    def test_owner_cancels(self, service, period, teacher, clock):
        service.cancel_period(period, 'Public holiday', teacher)
        assert period.status == PeriodStatus.CANCELLED
        assert period.cancelled_at == clock()
        assert period.cancel_reason == 'Public holiday'
        # Cancelled stays cancelled whatever the clock says
        assert period.current_status(PERIOD_DAY.replace(hour=9, minute=30)) == PeriodStatus.CANCELLED

    def test_other_teacher_and_student_are_refused(self, service, period, other_teacher, student):
        with pytest.raises(NotAuthorized):
            service.cancel_period(period, 'No', other_teacher)
        with pytest.raises(NotAuthorized):
            service.cancel_period(period, 'No', student)

    def test_hod_cancels_any_period(self, service, period, hod):
        assert service.cancel_period(period, None, hod).cancel_reason == 'Cancelled'

    def test_live_session_is_stopped(self, service, manager, period, teacher, clock):
        session = manager.generate(period)
        clock.set(8, 55)
        service.cancel_period(period, 'Strike', teacher)

        assert session.stopped_at == clock()
        assert not manager.is_live(session)
        with pytest.raises(PeriodNotEligible):
            manager.extend(session, 30)


class TestStoredStatus:

    def test_save_after_start_persists_ongoing(self, period, clock):
        assert period.status == PeriodStatus.SCHEDULED
        clock.set(9, 10)
        period.room = 'C-7'
        db.session.commit()

        db.session.expire_all()
        assert db.session.get(Period, period.id).status == PeriodStatus.ONGOING

    def test_insert_without_status_derives_it(self, teacher, clock):
        clock.set(11)
        period = Period(subject_id=101, semester_id=1, teacher_id=teacher.id, room='C-7',
                        start_time=PERIOD_DAY.replace(hour=9), end_time=PERIOD_DAY.replace(hour=10),
                        latitude=CENTER[0], longitude=CENTER[1], geofence_radius=100).save()
        assert period.status == PeriodStatus.COMPLETED

    def test_cancelled_survives_later_saves(self, period, clock):
        period.cancel('Holiday', clock())
        db.session.commit()
        clock.set(9, 30)
        period.room = 'C-7'
        db.session.commit()
        assert period.status == PeriodStatus.CANCELLED


def test_refresh_statuses(service, make_period, clock):
    running = make_period(start=PERIOD_DAY.replace(hour=8), end=PERIOD_DAY.replace(hour=9))
    finished = make_period(start=PERIOD_DAY.replace(hour=6), end=PERIOD_DAY.replace(hour=7))
    upcoming = make_period(start=PERIOD_DAY.replace(hour=13))
    cancelled = make_period(start=PERIOD_DAY.replace(hour=6), end=PERIOD_DAY.replace(hour=7),
                            status=PeriodStatus.CANCELLED)

    assert service.refresh_statuses() == 2
    assert running.status == PeriodStatus.ONGOING
    assert finished.status == PeriodStatus.COMPLETED
    assert upcoming.status == PeriodStatus.SCHEDULED
    assert cancelled.status == PeriodStatus.CANCELLED
    assert service.refresh_statuses() == 0


class TestCommands:

    def test_init_db(self, app):
        result = app.test_cli_runner().invoke(args=['init-db'])
        assert 'Created all tables.' in result.output

    def test_create_user(self, app):
        runner = app.test_cli_runner()
        result = runner.invoke(args=['create-user', '--email', 'hod@example.edu', '--name', 'Head',
                                     '--role', 'hod'])
        assert 'Created hod hod@example.edu' in result.output
        from qr_attendance.models import User
        assert User.query.filter_by(email='hod@example.edu').one().role == UserRole.HOD

        result = runner.invoke(args=['create-user', '--email', 'hod@example.edu', '--name', 'Head'])
        assert 'already exists' in result.output

    def test_sweep_sessions(self, app, make_period, teacher):
        start = utcnow() + timedelta(minutes=10)
        period = make_period(start=start, end=start + timedelta(hours=1))
        QRSession(period_id=period.id, nonce='n', token='t', generated_at=utcnow() - timedelta(minutes=10),
                  expires_at=utcnow() - timedelta(minutes=1), latitude=CENTER[0], longitude=CENTER[1],
                  geofence_radius=100).save()

        result = app.test_cli_runner().invoke(args=['sweep-sessions'])
        assert 'Deactivated 1 expired QR sessions.' in result.output
        assert QRSession.query.one().is_active is False

    def test_refresh_periods(self, app, make_period):
        make_period(start=utcnow() - timedelta(hours=3), end=utcnow() - timedelta(hours=2))
        result = app.test_cli_runner().invoke(args=['refresh-periods'])
        assert 'Updated status of 1 periods.' in result.output
        assert Period.query.one().status == PeriodStatus.COMPLETED
