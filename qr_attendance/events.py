"""Signals other parts of the system can subscribe to (notifications, reporting)."""
from blinker import Namespace

attendance_signals = Namespace()

# Sent with ``attendance=<Attendance>`` after a record is committed.
attendance_created = attendance_signals.signal('attendance-created')

# Sent with ``attendance=<Attendance>`` and ``previous_status=<str|None>`` after an override.
attendance_overridden = attendance_signals.signal('attendance-overridden')
