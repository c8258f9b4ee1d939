"""
Pairing and Device Identity
Short-lived pairing codes bootstrap a screen; the long-lived API key issued
at claim time authenticates every later device call.
"""
import hmac
import logging
import secrets
from datetime import timedelta
from typing import Any, Dict, Optional

from flask import current_app

from models import db, Device, utcnow
from utils.errors import InvalidCode, InvalidCredentials, NotFound, PairingCodeExhausted
from utils.permissions import ensure_can_write, ensure_owns

logger = logging.getLogger(__name__)

# No I, O, 0 or 1: they are easily confused on a TV screen
PAIRING_ALPHABET = 'ABCDEFGHJKLMNPQRSTUVWXYZ23456789'

# device_info keys accepted at claim time -> Device column
DEVICE_INFO_FIELDS = {
    'platform': 'platform',
    'model': 'model',
    'brand': 'brand',
    'os_version': 'os_version',
    'app_version': 'app_version',
    'screen_width': 'screen_width',
    'screen_height': 'screen_height',
    'timezone': 'timezone',
    'locale': 'locale',
}


def normalize_code(code: Optional[str]) -> str:
    return (code or '').strip().upper()


def _random_code(length: int) -> str:
    return ''.join(secrets.choice(PAIRING_ALPHABET) for _ in range(length))


def _code_in_use(code: str, now) -> bool:
    return db.session.query(Device.id).filter(
        Device.otp_code == code,
        Device.otp_expires_at > now
    ).first() is not None


def generate_otp(caller, device_id: int, now=None) -> Dict[str, Any]:
    """
    Issue a fresh pairing code for a screen owned by the caller

    Returns:
        Dict with code and expires_at
    Raises:
        NotFound, Forbidden, PairingCodeExhausted
    """
    now = now or utcnow()
    config = current_app.config

    device = db.session.get(Device, device_id)
    if device is None or not device.is_active:
        raise NotFound('Screen not found')
    ensure_owns(caller, device.tenant_id, 'screen')
    ensure_can_write(caller)

    length = config.get('PAIRING_CODE_LENGTH', 6)
    attempts = config.get('PAIRING_CODE_MAX_ATTEMPTS', 10)

    code = None
    for _ in range(attempts):
        candidate = _random_code(length)
        if not _code_in_use(candidate, now):
            code = candidate
            break

    if code is None:
        logger.error(f'Could not allocate a pairing code for device {device_id} after {attempts} attempts')
        raise PairingCodeExhausted('Could not allocate a pairing code, try again later')

    device.otp_code = code
    device.otp_expires_at = now + timedelta(minutes=config.get('PAIRING_CODE_TTL_MINUTES', 15))
    db.session.commit()

    logger.info(f'Pairing code issued for device {device.id}')
    return {'code': code, 'expires_at': device.otp_expires_at.isoformat()}


def find_device_by_otp(code: str, now=None) -> Device:
    """Look up the screen holding an unexpired pairing code"""
    now = now or utcnow()
    normalized = normalize_code(code)
    if not normalized:
        raise InvalidCode('Invalid or expired pairing code')

    device = Device.query.filter(
        Device.otp_code == normalized,
        Device.otp_expires_at > now,
        Device.is_active.is_(True)
    ).first()
    if device is None:
        raise InvalidCode('Invalid or expired pairing code')
    return device


def claim_otp(code: str, device_info: Optional[Dict[str, Any]] = None, now=None) -> Dict[str, Any]:
    """
    Exchange a pairing code for device credentials

    Response:
    {
        "device_id": 1,
        "api_key": "64 hex chars",
        "tenant_id": 1,
        "device_name": "Lobby"
    }
    """
    now = now or utcnow()
    device = find_device_by_otp(code, now)
    info = device_info or {}

    device.api_key = secrets.token_hex(32)
    device.otp_code = None
    device.otp_expires_at = None
    device.is_paired = True
    device.paired_at = now
    device.is_online = True
    device.last_seen = now

    for key, column in DEVICE_INFO_FIELDS.items():
        value = info.get(key)
        if value is not None:
            setattr(device, column, value)

    db.session.commit()

    logger.info(f'Device {device.id} paired ({device.platform or "unknown platform"})')
    return {
        'device_id': device.id,
        'api_key': device.api_key,
        'tenant_id': device.tenant_id,
        'device_name': device.name,
    }


def _key_matches(device: Device, api_key: Optional[str]) -> bool:
    if not device.api_key or not api_key:
        return False
    return hmac.compare_digest(device.api_key.encode(), api_key.encode())


def validate_api_key(device_id, api_key) -> Dict[str, Any]:
    """Pure lookup: is this key valid for this paired device"""
    device = db.session.get(Device, device_id) if device_id is not None else None
    if device is None or not device.is_active or not device.is_paired or not _key_matches(device, api_key):
        return {'valid': False, 'tenant_id': None}
    return {'valid': True, 'tenant_id': device.tenant_id}


def authenticate_device(device_id, api_key) -> Device:
    """
    Resolve the calling device or raise

    Raises:
        NotFound: unknown or retired device
        InvalidCredentials: device not paired or key mismatch
    """
    device = db.session.get(Device, device_id) if device_id is not None else None
    if device is None or not device.is_active:
        raise NotFound('Device not found', action='re_pair')
    if not device.is_paired or not _key_matches(device, api_key):
        raise InvalidCredentials('Invalid API key')
    return device
