"""QR Code API endpoints."""
from flask import Blueprint, g, request
from flask_jwt_extended import jwt_required
from qr_attendance import db, limiter
from qr_attendance.errors import NotAuthorized, NotFound
from qr_attendance.models.period import Period
from qr_attendance.models.user import UserRole
from qr_attendance.services.factory import session_manager
from qr_attendance.services.qr_service import QRService
from qr_attendance.utils.helpers import isoformat, success_response, error_response
from qr_attendance.utils.decorators import teacher_required

qr_bp = Blueprint('qr', __name__)


def _owned_period(period_id: int) -> Period:
    """Load a period the current staff member may run QR sessions for."""
    period = db.session.get(Period, period_id)
    if period is None:
        raise NotFound('Period not found')
    user = g.current_user
    if user.role == UserRole.TEACHER and period.teacher_id != user.id:
        raise NotAuthorized('You can only manage QR sessions for your own periods')
    return period


def _live_session(manager, period_id: int):
    session = manager.get_for_period(period_id)
    if session is None:
        raise NotFound('No QR session for this period')
    return session


@qr_bp.route('/generate/<int:period_id>', methods=['POST'])
@jwt_required()
@teacher_required
@limiter.limit("30 per hour")
def generate_qr(period_id):
    """Generate (or refresh) the QR session for a period."""
    period = _owned_period(period_id)
    manager = session_manager()
    session = manager.generate(period)

    return success_response(
        data={
            'qr_token': session.token,
            'qr_image': QRService.render_image(session.token),
            'generated_at': isoformat(session.generated_at),
            'expires_at': isoformat(session.expires_at),
            'session': session.to_dict(manager.clock()),
            'period': {
                'id': period.id,
                'room': period.room,
                'start_time': isoformat(period.start_time),
                'end_time': isoformat(period.end_time)
            }
        },
        message="QR code generated successfully"
    )


@qr_bp.route('/extend/<int:period_id>', methods=['POST'])
@jwt_required()
@teacher_required
def extend_qr(period_id):
    """Extend the period's QR session by a number of minutes."""
    data = request.get_json(silent=True) or {}
    if 'minutes' not in data:
        return error_response("minutes is required", 400)

    _owned_period(period_id)
    manager = session_manager()
    session = manager.extend(_live_session(manager, period_id), data['minutes'])

    return success_response(
        data=session.to_dict(manager.clock()),
        message=f"QR session extended by {data['minutes']} minutes"
    )


@qr_bp.route('/stop/<int:period_id>', methods=['POST'])
@jwt_required()
@teacher_required
def stop_qr(period_id):
    """Close the period's QR session early."""
    _owned_period(period_id)
    manager = session_manager()
    session = manager.stop(_live_session(manager, period_id))

    return success_response(
        data={'session': session.to_dict(manager.clock()), 'stats': manager.session_stats(session)},
        message="QR session stopped"
    )


@qr_bp.route('/status/<int:period_id>', methods=['GET'])
@jwt_required()
@teacher_required
def qr_status(period_id):
    """Current QR session state and scan statistics."""
    period = _owned_period(period_id)
    manager = session_manager()
    session = manager.get_for_period(period_id)

    if session is None:
        return success_response(
            data={'period_id': period.id, 'state': 'none', 'qr_generated': period.qr_generated},
            message="No QR session for this period"
        )

    return success_response(
        data={'session': session.to_dict(manager.clock()), 'stats': manager.session_stats(session)}
    )
