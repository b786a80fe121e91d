"""Attendance API endpoints: scan admission, overrides and queries."""
from collections import Counter
from datetime import date

from flask import Blueprint, g, request
from flask_jwt_extended import get_jwt_identity, jwt_required
from qr_attendance import limiter
from qr_attendance.models.user import UserRole
from qr_attendance.services.collaborators import RoleLookup
from qr_attendance.services.factory import attendance_ledger, scan_validator
from qr_attendance.services.scan_validator import ScanRequest
from qr_attendance.utils.decorators import (
    admin_required, hod_required, staff_required, student_required
)
from qr_attendance.utils.helpers import success_response, error_response
from qr_attendance.utils.validators import Validator

attendance_bp = Blueprint('attendance', __name__)


def _client_ip():
    forwarded = request.headers.get('X-Forwarded-For', '')
    candidate = forwarded.split(',')[0].strip() if forwarded else request.remote_addr
    return candidate if candidate and Validator.validate_ip_address(candidate) else None


def _records(records):
    return [record.to_dict() for record in records]


@attendance_bp.route('/scan', methods=['POST'])
@jwt_required()
@student_required
@limiter.limit("20 per minute")
def scan():
    """Submit a QR scan with the device's location."""
    data = request.get_json(silent=True) or {}
    validation = Validator.validate_scan_payload(data)
    if not validation["is_valid"]:
        return error_response("Invalid scan request", 400, code='InvalidRequest',
                              data={'errors': validation["errors"]})

    result = scan_validator().validate(ScanRequest(
        qr_data=data['qr_data'],
        student_id=g.current_user.id,
        latitude=float(data['latitude']),
        longitude=float(data['longitude']),
        accuracy=float(data['accuracy']),
        device_fingerprint=data.get('device_fingerprint'),
        ip_address=_client_ip(),
        scan_time=Validator.parse_datetime(data.get('scan_time'))
    ))

    if not result.accepted:
        return error_response(result.message, result.reason.status_code,
                              code=result.reason.value, data=result.to_dict())

    return success_response(
        data=result.to_dict(),
        message=f"Attendance marked as {result.status.value}",
        status_code=201
    )


@attendance_bp.route('/override', methods=['PUT'])
@jwt_required()
@staff_required
def override():
    """Change a student's status for a period, with a mandatory reason."""
    data = request.get_json(silent=True) or {}
    validation = Validator.validate_required_fields(data, ['student_id', 'period_id', 'status', 'reason'])
    if not validation["is_valid"]:
        return error_response("Invalid override request", 400, data={'errors': validation["errors"]})

    attendance = attendance_ledger().override(
        student_id=int(data['student_id']),
        period_id=int(data['period_id']),
        new_status=data['status'],
        reason=data['reason'],
        actor_id=g.current_user.id
    )
    return success_response(data=attendance.to_dict(), message="Attendance updated")


@attendance_bp.route('/archive', methods=['POST'])
@jwt_required()
@hod_required
def archive():
    """Soft-delete every live record matching the given criteria."""
    data = request.get_json(silent=True) or {}
    criteria = {key: data.get(key) for key in ('student_id', 'period_id', 'subject_id', 'semester_id')}
    count = attendance_ledger().archive(criteria, data.get('reason'), actor_id=g.current_user.id)
    return success_response(data={'archived': count}, message=f"Archived {count} attendance records")


@attendance_bp.route('/<int:attendance_id>', methods=['DELETE'])
@jwt_required()
@admin_required
def delete(attendance_id):
    data = request.get_json(silent=True) or {}
    attendance_ledger().delete(attendance_id, g.current_user.id, data.get('reason'))
    return success_response(message="Attendance record deleted")


@attendance_bp.route('/student/<int:student_id>', methods=['GET'])
@jwt_required()
def student_attendance(student_id):
    """A student's own history, or any student's for staff."""
    user = RoleLookup().get_user(get_jwt_identity())
    if user is None:
        return error_response("User not found", 404)
    if user.role == UserRole.STUDENT and user.id != student_id:
        return error_response("Students can only view their own attendance", 403)

    semester_id = request.args.get('semester_id', type=int)
    subject_id = request.args.get('subject_id', type=int)
    ledger = attendance_ledger()
    return success_response(data={
        'records': _records(ledger.for_student(student_id, semester_id, subject_id)),
        'statistics': ledger.statistics(subject_id=subject_id, semester_id=semester_id,
                                        student_id=student_id)
    })


@attendance_bp.route('/period/<int:period_id>', methods=['GET'])
@jwt_required()
@staff_required
def period_attendance(period_id):
    records = attendance_ledger().for_period(period_id)
    counts = Counter(record.status.value for record in records)
    return success_response(data={
        'records': _records(records),
        'summary': {
            'total': len(records),
            'present': counts['present'],
            'late': counts['late'],
            'absent': counts['absent']
        }
    })


@attendance_bp.route('/subject/<int:subject_id>', methods=['GET'])
@jwt_required()
@staff_required
def subject_attendance(subject_id):
    semester_id = request.args.get('semester_id', type=int)
    ledger = attendance_ledger()
    return success_response(data={
        'records': _records(ledger.for_subject(subject_id, semester_id)),
        'by_student': ledger.statistics_by_student(subject_id=subject_id, semester_id=semester_id),
        'statistics': ledger.statistics(subject_id=subject_id, semester_id=semester_id)
    })


@attendance_bp.route('/stats', methods=['GET'])
@jwt_required()
@staff_required
def stats():
    """Aggregate statistics, optionally filtered; ``date=YYYY-MM-DD`` adds a daily report."""
    ledger = attendance_ledger()
    data = {
        'statistics': ledger.statistics(
            subject_id=request.args.get('subject_id', type=int),
            semester_id=request.args.get('semester_id', type=int),
            student_id=request.args.get('student_id', type=int)
        )
    }

    day = request.args.get('date')
    if day:
        try:
            data['daily'] = ledger.daily_report(date.fromisoformat(day))
        except ValueError:
            return error_response("date must be YYYY-MM-DD", 400)

    return success_response(data=data)
