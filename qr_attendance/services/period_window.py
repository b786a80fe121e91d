"""Time-window rules for periods.

Everything here is a pure function of a period and an explicit instant, so the
same rules serve request handling, batch jobs and tests.
"""
from datetime import datetime, timedelta
from typing import Tuple

from qr_attendance.models.attendance import AttendanceStatus
from qr_attendance.models.period import PeriodStatus


def derive_status(period, now: datetime) -> PeriodStatus:
    """scheduled -> ongoing -> completed by the clock; cancelled is sticky."""
    if period.status == PeriodStatus.CANCELLED:
        return PeriodStatus.CANCELLED
    if now < period.start_time:
        return PeriodStatus.SCHEDULED
    if now <= period.end_time:
        return PeriodStatus.ONGOING
    return PeriodStatus.COMPLETED


def qr_generation_window(period, eligibility_minutes: int = 30) -> Tuple[datetime, datetime]:
    margin = timedelta(minutes=eligibility_minutes)
    return period.start_time - margin, period.end_time + margin


def is_qr_eligible(period, now: datetime, eligibility_minutes: int = 30) -> bool:
    """True when a QR session may be created or extended by generation."""
    if not period.is_active:
        return False
    if derive_status(period, now) != PeriodStatus.SCHEDULED:
        return False
    opens, closes = qr_generation_window(period, eligibility_minutes)
    return opens <= now <= closes


def allowed_window(period, early_grace_minutes: int, late_acceptance_minutes: int) -> Tuple[datetime, datetime]:
    """[start - early grace, end + late acceptance]; scans outside it create no record."""
    return (
        period.start_time - timedelta(minutes=early_grace_minutes),
        period.end_time + timedelta(minutes=late_acceptance_minutes),
    )


def in_allowed_window(period, scan_time: datetime, early_grace_minutes: int,
                      late_acceptance_minutes: int) -> bool:
    opens, closes = allowed_window(period, early_grace_minutes, late_acceptance_minutes)
    return opens <= scan_time <= closes


def classify(period, scan_time: datetime, late_grace_minutes: int) -> AttendanceStatus:
    """present up to the start, late through start + grace (inclusive), absent after."""
    if scan_time <= period.start_time:
        return AttendanceStatus.PRESENT
    if scan_time <= period.start_time + timedelta(minutes=late_grace_minutes):
        return AttendanceStatus.LATE
    return AttendanceStatus.ABSENT
