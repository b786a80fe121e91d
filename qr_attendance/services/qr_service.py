"""QR token signing and QR image rendering."""
import base64
import io
import secrets
from datetime import datetime, timezone
from typing import Dict, Optional, Tuple

import jwt
import qrcode

MAX_TOKEN_LENGTH = 1000
TOKEN_ALGORITHM = 'HS256'
REQUIRED_CLAIMS = ('pid', 'nonce', 'iat', 'exa')


def _epoch(value: datetime) -> int:
    return int(value.replace(tzinfo=timezone.utc).timestamp())


class QRService:
    """Service for QR code operations."""

    @staticmethod
    def generate_nonce() -> str:
        """Unguessable per-session nonce."""
        return secrets.token_urlsafe(24)

    @staticmethod
    def issue_token(
        signing_key: str,
        period_id: int,
        nonce: str,
        issued_at: datetime,
        expires_at: datetime
    ) -> str:
        """
        Sign the QR payload.

        ``exa`` carries the session expiry for display only; liveness is always
        decided by the stored session, so an extended session keeps accepting
        tokens signed before the extension.
        """
        payload = {
            'pid': period_id,
            'nonce': nonce,
            'iat': _epoch(issued_at),
            'exa': _epoch(expires_at)
        }
        token = jwt.encode(payload, signing_key, algorithm=TOKEN_ALGORITHM)
        if len(token) > MAX_TOKEN_LENGTH:
            raise ValueError('QR token exceeds maximum length')
        return token

    @staticmethod
    def decode_token(signing_key: str, qr_data: str) -> Tuple[bool, Optional[Dict], Optional[str]]:
        """
        Verify and decode QR data.
        Returns: (is_valid, payload, error_message)
        """
        if not qr_data or not isinstance(qr_data, str):
            return False, None, 'QR data is required'
        if len(qr_data) > MAX_TOKEN_LENGTH:
            return False, None, 'QR data is too long'

        try:
            payload = jwt.decode(
                qr_data,
                signing_key,
                algorithms=[TOKEN_ALGORITHM],
                options={'verify_iat': False, 'require': list(REQUIRED_CLAIMS)}
            )
        except jwt.InvalidTokenError as e:
            return False, None, f'Invalid QR code: {e}'

        if not isinstance(payload.get('pid'), int) or not isinstance(payload.get('nonce'), str):
            return False, None, 'Invalid QR code format'

        return True, payload, None

    @staticmethod
    def render_image(qr_data: str) -> str:
        """Render QR data as a base64 PNG data URI."""
        qr = qrcode.QRCode(
            version=None,  # Auto-determine size
            error_correction=qrcode.constants.ERROR_CORRECT_H,
            box_size=10,
            border=4,
        )
        qr.add_data(qr_data)
        qr.make(fit=True)

        img = qr.make_image(fill_color="black", back_color="white")

        buffered = io.BytesIO()
        img.save(buffered, format="PNG")
        img_str = base64.b64encode(buffered.getvalue()).decode()

        return f"data:image/png;base64,{img_str}"
