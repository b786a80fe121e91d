"""Period API endpoints."""
from flask import Blueprint, g, request
from flask_jwt_extended import jwt_required
from qr_attendance import db
from qr_attendance.errors import NotFound
from qr_attendance.models.period import Period
from qr_attendance.models.user import UserRole
from qr_attendance.services.factory import cascade_service, period_service
from qr_attendance.utils.decorators import hod_required, staff_required
from qr_attendance.utils.helpers import success_response, error_response
from qr_attendance.utils.validators import Validator

periods_bp = Blueprint('periods', __name__)


def _get_period(period_id: int) -> Period:
    period = db.session.get(Period, period_id)
    if period is None:
        raise NotFound('Period not found')
    return period


@periods_bp.route('', methods=['POST'])
@jwt_required()
@staff_required
def create_period():
    """Schedule a period with its geofence."""
    data = request.get_json(silent=True) or {}
    validation = Validator.validate_period_payload(data)
    if not validation["is_valid"]:
        return error_response("Invalid period data", 400, data={'errors': validation["errors"]})

    user = g.current_user
    teacher_id = user.id if user.role == UserRole.TEACHER else data.get('teacher_id', user.id)

    period = period_service().create_period({
        'subject_id': data['subject_id'],
        'semester_id': data['semester_id'],
        'timetable_id': data.get('timetable_id'),
        'teacher_id': teacher_id,
        'room': data['room'],
        'start_time': Validator.parse_datetime(data['start_time']),
        'end_time': Validator.parse_datetime(data['end_time']),
        'latitude': data['latitude'],
        'longitude': data['longitude'],
        'geofence_radius': data.get('geofence_radius')
    })
    return success_response(data=period.to_dict(), message="Period created", status_code=201)


@periods_bp.route('/<int:period_id>', methods=['GET'])
@jwt_required()
def get_period(period_id):
    return success_response(data=_get_period(period_id).to_dict())


@periods_bp.route('/<int:period_id>/cancel', methods=['POST'])
@jwt_required()
@staff_required
def cancel_period(period_id):
    data = request.get_json(silent=True) or {}
    period = period_service().cancel_period(_get_period(period_id), data.get('reason'), g.current_user)
    return success_response(data=period.to_dict(), message="Period cancelled")


@periods_bp.route('/<int:period_id>', methods=['DELETE'])
@jwt_required()
@hod_required
def delete_period(period_id):
    """Delete a period; its attendance is archived, its QR session removed."""
    result = cascade_service().delete_period(_get_period(period_id), g.current_user.id)
    return success_response(data=result, message="Period deleted")
