"""QR session lifecycle: NONE -> LIVE -> {EXPIRED, STOPPED} -> NONE."""
import logging
from datetime import datetime, timedelta
from typing import Callable, Dict, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from qr_attendance import db
from qr_attendance.errors import (
    InvalidExtension, PeriodNotEligible, SessionLifetimeExceeded, StorageUnavailable
)
from qr_attendance.models.period import Period, PeriodStatus
from qr_attendance.models.qr_session import QRSession
from qr_attendance.policy import AttendancePolicy
from qr_attendance.services.period_window import is_qr_eligible
from qr_attendance.services.qr_service import QRService
from qr_attendance.utils.helpers import utcnow

logger = logging.getLogger(__name__)


class QRSessionManager:
    """Owns the single QR session row of each period."""

    def __init__(self, policy: AttendancePolicy, signing_key: str,
                 clock: Optional[Callable[[], datetime]] = None):
        self.policy = policy
        self.signing_key = signing_key
        self.clock = clock or utcnow

    # =================== QUERIES ===================

    def is_live(self, session: Optional[QRSession], now: Optional[datetime] = None) -> bool:
        """The one predicate the scan validator trusts."""
        return session is not None and session.is_live(now or self.clock())

    def get_for_period(self, period_id: int) -> Optional[QRSession]:
        """Load the period's session, deactivating it on read if it has expired."""
        session = QRSession.query.filter_by(period_id=period_id).first()
        if session is not None and session.is_active and session.is_expired(self.clock()):
            session.is_active = False
            self._commit()
            logger.debug("QR session %s for period %s expired on read", session.id, period_id)
        return session

    def session_stats(self, session: QRSession) -> Dict:
        now = self.clock()
        duration = max(session.lifetime_minutes(), 0)
        return {
            'session_id': session.id,
            'period_id': session.period_id,
            'total_scans': session.total_scans,
            'unique_students': session.unique_students,
            'session_duration_minutes': round(duration, 2),
            'scans_per_minute': round(session.total_scans / duration, 2) if duration else 0,
            'time_remaining_seconds': session.time_remaining_seconds(now),
            'state': session.state(now)
        }

    # =================== LIFECYCLE ===================

    def generate(self, period: Period) -> QRSession:
        """
        Create the period's live session, or extend it if one is already live.

        Extending a live session moves its expiry to now + TTL but never earlier
        than an expiry already granted by ``extend``; the nonce is kept, so
        tokens already on screen stay valid. Repeated calls never produce a
        second session: the period_id unique constraint turns a lost creation
        race into an extension.
        """
        now = self.clock()
        if not is_qr_eligible(period, now, self.policy.qr_eligibility_minutes):
            raise PeriodNotEligible()

        session = QRSession.query.filter_by(period_id=period.id).with_for_update().first()
        if session is None:
            session = self._create(period, now)
        else:
            self._refresh(session, period, now)

        period.qr_generated = True
        period.qr_generated_at = now
        period.qr_expires_at = session.expires_at
        period.refresh_status(now)
        self._commit()

        logger.info("QR session %s for period %s live until %s",
                    session.id, period.id, session.expires_at.isoformat())
        return session

    def extend(self, session: QRSession, minutes) -> QRSession:
        """Push expiry out by ``minutes``; re-activates a session that merely expired."""
        if isinstance(minutes, bool) or not isinstance(minutes, int) or minutes <= 0:
            raise InvalidExtension('Extension minutes must be a positive integer')
        period = session.period
        if period is not None and (not period.is_active or period.status == PeriodStatus.CANCELLED):
            raise PeriodNotEligible()
        if session.stopped_at is not None:
            raise InvalidExtension('A stopped session cannot be extended')

        new_expiry = session.expires_at + timedelta(minutes=minutes)
        self._check_lifetime(session.generated_at, new_expiry)

        session.expires_at = new_expiry
        session.is_active = True
        session.token = self._sign(session.period_id, session.nonce, self.clock(), new_expiry)
        if period is not None:
            period.qr_expires_at = new_expiry
        self._commit()

        logger.info("QR session %s extended by %s minutes", session.id, minutes)
        return session

    def stop(self, session: QRSession) -> QRSession:
        """Teacher-initiated early close, independent of expiry."""
        now = self.clock()
        session.is_active = False
        session.stopped_at = now
        if session.period is not None:
            session.period.qr_expires_at = min(session.expires_at, now)
        self._commit()

        logger.info("QR session %s stopped", session.id)
        return session

    def stop_for_periods(self, *conditions, now: Optional[datetime] = None) -> int:
        """Stop every unstopped session of the periods matching ``conditions``; the caller commits."""
        now = now or self.clock()
        result = db.session.execute(
            update(QRSession)
            .where(
                QRSession.period_id.in_(select(Period.id).where(*conditions)),
                QRSession.stopped_at.is_(None)
            )
            .values(is_active=False, stopped_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount:
            logger.info("Stopped %s QR sessions of withdrawn periods", result.rowcount)
        return result.rowcount

    def sweep_expired(self, now: Optional[datetime] = None) -> int:
        """Deactivate every active session whose expiry has passed."""
        now = now or self.clock()
        result = db.session.execute(
            update(QRSession)
            .where(QRSession.is_active.is_(True), QRSession.expires_at <= now)
            .values(is_active=False)
            .execution_options(synchronize_session=False)
        )
        self._commit()
        if result.rowcount:
            logger.info("Deactivated %s expired QR sessions", result.rowcount)
        return result.rowcount

    def delete_for_period(self, period: Period, commit: bool = True) -> bool:
        """Remove the period's session and clear its QR flags."""
        session = QRSession.query.filter_by(period_id=period.id).first()
        if session is not None:
            db.session.delete(session)
        period.reset_qr_flags()
        if commit:
            self._commit()
        return session is not None

    def record_scan(self, session: QRSession, admitted: bool) -> None:
        """
        Count a scan that reached the live session.

        Every such scan bumps ``total_scans``; only a committed admission bumps
        ``unique_students``, which the per-period unique index keeps distinct.
        """
        values = {'total_scans': QRSession.total_scans + 1}
        if admitted:
            values['unique_students'] = QRSession.unique_students + 1
        try:
            db.session.execute(
                update(QRSession)
                .where(QRSession.id == session.id)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            db.session.commit()
        except SQLAlchemyError:
            db.session.rollback()
            logger.warning("Could not update scan counters for QR session %s", session.id,
                           exc_info=True)

    # =================== INTERNALS ===================

    def _create(self, period: Period, now: datetime) -> QRSession:
        session = QRSession(period_id=period.id)
        self._start(session, period, now)
        db.session.add(session)
        try:
            db.session.flush()
        except IntegrityError:
            # Another request created the row first; fold into it.
            db.session.rollback()
            logger.info("Concurrent QR generation for period %s, extending existing session", period.id)
            session = QRSession.query.filter_by(period_id=period.id).one()
            self._refresh(session, period, now)
        return session

    def _refresh(self, session: QRSession, period: Period, now: datetime) -> None:
        ttl = timedelta(minutes=self.policy.qr_expiry_minutes)
        if session.is_live(now):
            new_expiry = max(session.expires_at, now + ttl)
            self._check_lifetime(session.generated_at, new_expiry)
            session.expires_at = new_expiry
            session.token = self._sign(period.id, session.nonce, now, new_expiry)
        else:
            self._start(session, period, now)

    def _start(self, session: QRSession, period: Period, now: datetime) -> None:
        """(Re)initialise a session row as a brand new LIVE session."""
        expires_at = now + timedelta(minutes=self.policy.qr_expiry_minutes)
        session.nonce = QRService.generate_nonce()
        session.generated_at = now
        session.expires_at = expires_at
        session.is_active = True
        session.stopped_at = None
        session.total_scans = 0
        session.unique_students = 0
        session.latitude = period.latitude
        session.longitude = period.longitude
        session.geofence_radius = period.geofence_radius
        session.token = self._sign(period.id, session.nonce, now, expires_at)

    def _check_lifetime(self, generated_at: datetime, expires_at: datetime) -> None:
        if expires_at - generated_at > timedelta(minutes=self.policy.qr_max_session_minutes):
            raise SessionLifetimeExceeded(
                f'Session lifetime cannot exceed {self.policy.qr_max_session_minutes} minutes'
            )

    def _sign(self, period_id: int, nonce: str, issued_at: datetime, expires_at: datetime) -> str:
        return QRService.issue_token(self.signing_key, period_id, nonce, issued_at, expires_at)

    def _commit(self) -> None:
        try:
            db.session.commit()
        except SQLAlchemyError:
            db.session.rollback()
            logger.exception("QR session commit failed")
            raise StorageUnavailable()
