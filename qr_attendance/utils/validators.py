"""Validation utilities for request payloads."""
import ipaddress
from datetime import datetime
from typing import Dict, List, Any

from qr_attendance.services.qr_service import MAX_TOKEN_LENGTH
from qr_attendance.utils.helpers import parse_timestamp

MAX_ACCURACY_METERS = 1000
MAX_FINGERPRINT_LENGTH = 255


def _is_number(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


class Validator:
    """Validation helper class."""

    @staticmethod
    def validate_required_fields(data: Dict, required_fields: List[str]) -> Dict[str, Any]:
        """Validate required fields in data."""
        errors = []

        for field in required_fields:
            if field not in data or data[field] is None or data[field] == '':
                errors.append(f"{field} is required")

        return {
            "is_valid": len(errors) == 0,
            "errors": errors
        }

    @staticmethod
    def validate_coordinates(latitude: Any, longitude: Any) -> Dict[str, Any]:
        """Latitude in [-90, 90], longitude in [-180, 180]."""
        errors = []

        if not _is_number(latitude) or not -90 <= latitude <= 90:
            errors.append("Latitude must be a number between -90 and 90")
        if not _is_number(longitude) or not -180 <= longitude <= 180:
            errors.append("Longitude must be a number between -180 and 180")

        return {
            "is_valid": len(errors) == 0,
            "errors": errors
        }

    @staticmethod
    def validate_ip_address(value: str) -> bool:
        try:
            ipaddress.ip_address(value)
        except ValueError:
            return False
        return True

    @staticmethod
    def validate_scan_payload(data: Dict) -> Dict[str, Any]:
        """Shape checks for a scan request; semantic checks belong to the pipeline."""
        result = Validator.validate_required_fields(
            data, ['qr_data', 'latitude', 'longitude', 'accuracy']
        )
        if not result["is_valid"]:
            return result

        errors = []
        if not isinstance(data['qr_data'], str) or len(data['qr_data']) > MAX_TOKEN_LENGTH:
            errors.append(f"qr_data must be a string of at most {MAX_TOKEN_LENGTH} characters")

        errors.extend(Validator.validate_coordinates(data['latitude'], data['longitude'])["errors"])

        accuracy = data['accuracy']
        if not _is_number(accuracy) or not 0 <= accuracy <= MAX_ACCURACY_METERS:
            errors.append(f"Accuracy must be a number between 0 and {MAX_ACCURACY_METERS}")

        fingerprint = data.get('device_fingerprint')
        if fingerprint is not None and (not isinstance(fingerprint, str)
                                        or len(fingerprint) > MAX_FINGERPRINT_LENGTH):
            errors.append(f"device_fingerprint must be at most {MAX_FINGERPRINT_LENGTH} characters")

        scan_time = data.get('scan_time')
        if scan_time is not None and Validator.parse_datetime(scan_time) is None:
            errors.append("scan_time must be an ISO-8601 timestamp")

        return {
            "is_valid": len(errors) == 0,
            "errors": errors
        }

    @staticmethod
    def parse_datetime(value: Any):
        """ISO-8601 string -> naive UTC datetime, or None when unparseable."""
        if not isinstance(value, str):
            return None
        try:
            return parse_timestamp(value)
        except ValueError:
            return None

    @staticmethod
    def validate_period_payload(data: Dict) -> Dict[str, Any]:
        result = Validator.validate_required_fields(
            data, ['subject_id', 'semester_id', 'room', 'start_time', 'end_time',
                   'latitude', 'longitude']
        )
        if not result["is_valid"]:
            return result

        errors = []
        start_time = Validator.parse_datetime(data['start_time'])
        end_time = Validator.parse_datetime(data['end_time'])
        if not isinstance(start_time, datetime) or not isinstance(end_time, datetime):
            errors.append("start_time and end_time must be ISO-8601 timestamps")
        elif end_time <= start_time:
            errors.append("End time must be after start time")

        errors.extend(Validator.validate_coordinates(data['latitude'], data['longitude'])["errors"])

        radius = data.get('geofence_radius')
        if radius is not None and (not _is_number(radius) or not 10 <= radius <= 1000):
            errors.append("Geofence radius must be between 10 and 1000 meters")

        return {
            "is_valid": len(errors) == 0,
            "errors": errors
        }
