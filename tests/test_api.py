"""Test the HTTP surface end to end with the real clock."""
import json
from datetime import timedelta

import pytest

from qr_attendance import db
from qr_attendance.models import Attendance, Period, PeriodStatus, QRSession, UserRole
from qr_attendance.utils.helpers import utcnow

CENTER = (28.6139, 77.2090)


@pytest.fixture
def upcoming_period(make_period):
    """Starts in five minutes, so QR generation is allowed now."""
    start = utcnow().replace(microsecond=0) + timedelta(minutes=5)
    return make_period(start=start, end=start + timedelta(hours=1))


@pytest.fixture
def enrolled(make_user, enroll, upcoming_period):
    user = make_user(UserRole.STUDENT)
    enroll(user, upcoming_period)
    return user


def generate(client, auth_headers, user, period):
    return client.post(f'/api/qr/generate/{period.id}', headers=auth_headers(user))


def scan_payload(token, **overrides):
    payload = {'qr_data': token, 'latitude': CENTER[0], 'longitude': CENTER[1], 'accuracy': 12}
    payload.update(overrides)
    return payload


def test_health_check(client):
    response = client.get('/health')
    assert response.status_code == 200
    assert json.loads(response.data)['status'] == 'healthy'


def test_missing_token_is_unauthorized(client, upcoming_period):
    response = client.post(f'/api/qr/generate/{upcoming_period.id}')
    assert response.status_code == 401
    assert json.loads(response.data)['message'] == 'Authorization token required'


class TestQrEndpoints:

    def test_generate(self, client, auth_headers, teacher, upcoming_period):
        response = generate(client, auth_headers, teacher, upcoming_period)
        assert response.status_code == 200

        data = json.loads(response.data)['data']
        assert data['qr_image'].startswith('data:image/png;base64,')
        assert data['session']['state'] == 'live'
        assert data['qr_token'] == QRSession.query.one().token

    def test_other_teacher_is_forbidden(self, client, auth_headers, other_teacher, upcoming_period):
        response = generate(client, auth_headers, other_teacher, upcoming_period)
        assert response.status_code == 403
        assert json.loads(response.data)['code'] == 'NotAuthorized'

    def test_hod_may_generate_for_any_period(self, client, auth_headers, hod, upcoming_period):
        assert generate(client, auth_headers, hod, upcoming_period).status_code == 200

    def test_student_is_forbidden(self, client, auth_headers, student, upcoming_period):
        assert generate(client, auth_headers, student, upcoming_period).status_code == 403

    def test_period_not_eligible(self, client, auth_headers, teacher, make_period):
        start = utcnow() + timedelta(hours=3)
        period = make_period(start=start, end=start + timedelta(hours=1))
        response = generate(client, auth_headers, teacher, period)
        assert response.status_code == 409
        assert json.loads(response.data)['code'] == 'PeriodNotEligible'

    def test_unknown_period(self, client, auth_headers, teacher):
        assert client.post('/api/qr/generate/999', headers=auth_headers(teacher)).status_code == 404

    def test_extend_stop_and_status(self, client, auth_headers, teacher, upcoming_period):
        generate(client, auth_headers, teacher, upcoming_period)
        headers = auth_headers(teacher)

        response = client.post(f'/api/qr/extend/{upcoming_period.id}', json={'minutes': 5}, headers=headers)
        assert response.status_code == 200

        response = client.post(f'/api/qr/extend/{upcoming_period.id}', json={'minutes': 0}, headers=headers)
        assert response.status_code == 400
        assert json.loads(response.data)['code'] == 'InvalidExtension'

        response = client.post(f'/api/qr/extend/{upcoming_period.id}', json={'minutes': 500},
                               headers=headers)
        assert response.status_code == 409
        assert json.loads(response.data)['code'] == 'SessionLifetimeExceeded'

        response = client.post(f'/api/qr/stop/{upcoming_period.id}', headers=headers)
        assert response.status_code == 200
        assert json.loads(response.data)['data']['session']['state'] == 'stopped'

        response = client.get(f'/api/qr/status/{upcoming_period.id}', headers=headers)
        assert json.loads(response.data)['data']['stats']['state'] == 'stopped'

    def test_status_without_session(self, client, auth_headers, teacher, upcoming_period):
        response = client.get(f'/api/qr/status/{upcoming_period.id}', headers=auth_headers(teacher))
        assert response.status_code == 200
        assert json.loads(response.data)['data']['state'] == 'none'

    def test_extend_without_session(self, client, auth_headers, teacher, upcoming_period):
        response = client.post(f'/api/qr/extend/{upcoming_period.id}', json={'minutes': 5},
                               headers=auth_headers(teacher))
        assert response.status_code == 404


class TestScanEndpoint:

    def test_scan_accepted(self, client, auth_headers, teacher, enrolled, upcoming_period):
        token = json.loads(generate(client, auth_headers, teacher, upcoming_period).data)['data']['qr_token']

        response = client.post('/api/attendance/scan', json=scan_payload(token, device_fingerprint='d-1'),
                               headers={**auth_headers(enrolled), 'X-Forwarded-For': '203.0.113.9'})
        assert response.status_code == 201

        data = json.loads(response.data)['data']
        assert data['accepted'] is True
        assert data['status'] == 'present'
        assert data['validation_passed'] is True

        record = db.session.get(Attendance, data['attendance_id'])
        assert record.ip_address == '203.0.113.9'
        assert record.device_fingerprint == 'd-1'

    def test_second_scan_is_conflict(self, client, auth_headers, teacher, enrolled, upcoming_period):
        token = json.loads(generate(client, auth_headers, teacher, upcoming_period).data)['data']['qr_token']
        client.post('/api/attendance/scan', json=scan_payload(token), headers=auth_headers(enrolled))

        response = client.post('/api/attendance/scan', json=scan_payload(token), headers=auth_headers(enrolled))
        assert response.status_code == 409
        body = json.loads(response.data)
        assert body['code'] == 'AlreadyMarked'
        assert body['data']['reason'] == 'AlreadyMarked'

    def test_outside_geofence(self, client, auth_headers, teacher, enrolled, upcoming_period):
        token = json.loads(generate(client, auth_headers, teacher, upcoming_period).data)['data']['qr_token']
        response = client.post('/api/attendance/scan', json=scan_payload(token, latitude=CENTER[0] + 0.01),
                               headers=auth_headers(enrolled))
        assert response.status_code == 422
        assert json.loads(response.data)['code'] == 'OutsideGeofence'

    def test_not_enrolled(self, client, auth_headers, teacher, student, upcoming_period):
        token = json.loads(generate(client, auth_headers, teacher, upcoming_period).data)['data']['qr_token']
        response = client.post('/api/attendance/scan', json=scan_payload(token), headers=auth_headers(student))
        assert response.status_code == 403
        assert json.loads(response.data)['code'] == 'NotEnrolled'

    def test_invalid_qr(self, client, auth_headers, enrolled):
        response = client.post('/api/attendance/scan', json=scan_payload('not-a-token'),
                               headers=auth_headers(enrolled))
        assert response.status_code == 400
        assert json.loads(response.data)['code'] == 'InvalidQrData'

    def test_stopped_session_is_gone(self, client, auth_headers, teacher, enrolled, upcoming_period):
        token = json.loads(generate(client, auth_headers, teacher, upcoming_period).data)['data']['qr_token']
        client.post(f'/api/qr/stop/{upcoming_period.id}', headers=auth_headers(teacher))

        response = client.post('/api/attendance/scan', json=scan_payload(token), headers=auth_headers(enrolled))
        assert response.status_code == 410
        assert json.loads(response.data)['code'] == 'SessionExpiredOrInvalid'

    @pytest.mark.parametrize('payload', [
        {},
        {'qr_data': 'x', 'latitude': 91, 'longitude': 0, 'accuracy': 5},
        {'qr_data': 'x', 'latitude': 0, 'longitude': 0, 'accuracy': 2000},
        {'qr_data': 'x', 'latitude': '10', 'longitude': 0, 'accuracy': 5},
        {'qr_data': 'x', 'latitude': 0, 'longitude': 0, 'accuracy': 5, 'device_fingerprint': 'f' * 256},
        {'qr_data': 'x', 'latitude': 0, 'longitude': 0, 'accuracy': 5, 'scan_time': 'yesterday'},
    ])
    def test_malformed_payload(self, client, auth_headers, enrolled, payload):
        response = client.post('/api/attendance/scan', json=payload, headers=auth_headers(enrolled))
        assert response.status_code == 400
        assert json.loads(response.data)['code'] == 'InvalidRequest'

    def test_teacher_cannot_scan(self, client, auth_headers, teacher):
        response = client.post('/api/attendance/scan', json=scan_payload('x'), headers=auth_headers(teacher))
        assert response.status_code == 403


class TestLedgerEndpoints:

    def test_override_and_queries(self, client, auth_headers, teacher, enrolled, upcoming_period):
        response = client.put('/api/attendance/override', headers=auth_headers(teacher), json={
            'student_id': enrolled.id, 'period_id': upcoming_period.id,
            'status': 'late', 'reason': 'Arrived with note'
        })
        assert response.status_code == 200
        assert json.loads(response.data)['data']['status'] == 'late'

        response = client.get(f'/api/attendance/period/{upcoming_period.id}', headers=auth_headers(teacher))
        assert json.loads(response.data)['data']['summary'] == {'total': 1, 'present': 0, 'late': 1,
                                                                 'absent': 0}

        response = client.get(f'/api/attendance/student/{enrolled.id}', headers=auth_headers(enrolled))
        data = json.loads(response.data)['data']
        assert len(data['records']) == 1
        assert data['statistics']['percentage'] == 100.0

        response = client.get('/api/attendance/subject/101', headers=auth_headers(teacher))
        assert json.loads(response.data)['data']['statistics']['total'] == 1

        day = upcoming_period.start_time.date().isoformat()
        response = client.get(f'/api/attendance/stats?subject_id=101&date={day}',
                              headers=auth_headers(teacher))
        data = json.loads(response.data)['data']
        assert data['statistics']['late'] == 1

    def test_override_requires_reason(self, client, auth_headers, teacher, enrolled, upcoming_period):
        response = client.put('/api/attendance/override', headers=auth_headers(teacher), json={
            'student_id': enrolled.id, 'period_id': upcoming_period.id, 'status': 'late'
        })
        assert response.status_code == 400

    def test_student_cannot_read_other_students(self, client, auth_headers, enrolled, student):
        response = client.get(f'/api/attendance/student/{student.id}', headers=auth_headers(enrolled))
        assert response.status_code == 403

    def test_archive_and_delete_permissions(self, client, auth_headers, teacher, hod, admin, enrolled,
                                            upcoming_period):
        client.put('/api/attendance/override', headers=auth_headers(teacher), json={
            'student_id': enrolled.id, 'period_id': upcoming_period.id,
            'status': 'present', 'reason': 'Manual entry'
        })
        record_id = Attendance.query.one().id

        body = {'period_id': upcoming_period.id, 'reason': 'Duplicate import'}
        assert client.post('/api/attendance/archive', json=body, headers=auth_headers(teacher)).status_code == 403
        response = client.post('/api/attendance/archive', json=body, headers=auth_headers(hod))
        assert json.loads(response.data)['data']['archived'] == 1

        assert client.delete(f'/api/attendance/{record_id}', headers=auth_headers(hod)).status_code == 403
        assert client.delete(f'/api/attendance/{record_id}', headers=auth_headers(admin)).status_code == 200
        assert Attendance.query.count() == 0


class TestPeriodEndpoints:

    def test_create_and_get(self, client, auth_headers, teacher):
        start = utcnow().replace(microsecond=0) + timedelta(days=1)
        response = client.post('/api/periods', headers=auth_headers(teacher), json={
            'subject_id': 101, 'semester_id': 1, 'room': 'A-1',
            'start_time': start.isoformat() + 'Z',
            'end_time': (start + timedelta(hours=1)).isoformat() + 'Z',
            'latitude': CENTER[0], 'longitude': CENTER[1], 'geofence_radius': 50
        })
        assert response.status_code == 201
        data = json.loads(response.data)['data']
        assert data['teacher_id'] == teacher.id
        assert data['status'] == 'scheduled'
        assert data['location']['radius'] == 50

        response = client.get(f"/api/periods/{data['id']}", headers=auth_headers(teacher))
        assert json.loads(response.data)['data']['room'] == 'A-1'

    @pytest.mark.parametrize('overrides', [
        {'end_time': '2024-03-04T08:00:00'},
        {'geofence_radius': 5},
        {'latitude': 120},
        {'room': ''},
    ])
    def test_create_validation(self, client, auth_headers, teacher, overrides):
        payload = {
            'subject_id': 101, 'semester_id': 1, 'room': 'A-1',
            'start_time': '2024-03-04T09:00:00', 'end_time': '2024-03-04T10:00:00',
            'latitude': CENTER[0], 'longitude': CENTER[1]
        }
        payload.update(overrides)
        response = client.post('/api/periods', headers=auth_headers(teacher), json=payload)
        assert response.status_code == 400

    def test_cancel(self, client, auth_headers, teacher, other_teacher, upcoming_period):
        response = client.post(f'/api/periods/{upcoming_period.id}/cancel', json={'reason': 'Strike'},
                               headers=auth_headers(other_teacher))
        assert response.status_code == 403

        response = client.post(f'/api/periods/{upcoming_period.id}/cancel', json={'reason': 'Strike'},
                               headers=auth_headers(teacher))
        assert response.status_code == 200
        assert db.session.get(Period, upcoming_period.id).status == PeriodStatus.CANCELLED

        assert generate(client, auth_headers, teacher, upcoming_period).status_code == 409

    def test_delete(self, client, auth_headers, teacher, hod, upcoming_period):
        generate(client, auth_headers, teacher, upcoming_period)
        period_id = upcoming_period.id

        assert client.delete(f'/api/periods/{period_id}', headers=auth_headers(teacher)).status_code == 403
        response = client.delete(f'/api/periods/{period_id}', headers=auth_headers(hod))
        assert response.status_code == 200
        assert json.loads(response.data)['data']['qr_session_deleted'] is True
        assert db.session.get(Period, period_id) is None
