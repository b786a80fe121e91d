"""Attendance policy built once from the application config."""
from dataclasses import dataclass, fields
from typing import Any, Mapping


@dataclass(frozen=True)
class AttendancePolicy:
    """Every tunable the session manager and scan validator consult."""
    qr_expiry_minutes: int = 3
    qr_max_session_minutes: int = 180
    qr_eligibility_minutes: int = 30
    early_grace_minutes: int = 10
    late_grace_minutes: int = 5
    late_acceptance_minutes: int = 15
    scan_delay_tolerance_minutes: int = 2
    default_geofence_radius: float = 100
    geofence_buffer_meters: float = 5
    gps_accuracy_threshold: float = 50
    location_validation_enabled: bool = True
    device_fingerprinting_enabled: bool = True
    duplicate_scan_prevention: bool = True
    low_accuracy_soft_accept: bool = True

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> 'AttendancePolicy':
        """Read upper-case keys (``QR_EXPIRY_MINUTES`` ...) from a Flask config."""
        values = {}
        for field in fields(cls):
            key = field.name.upper()
            if key in config and config[key] is not None:
                values[field.name] = field.type(config[key]) if field.type in (int, float) else config[key]
        return cls(**values)
