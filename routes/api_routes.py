"""
API Routes Blueprint
Device-facing endpoints: pairing, heartbeat, content, commands and telemetry
"""
import time
import logging
from functools import wraps
from flask import Blueprint, request, jsonify, current_app
from flask_limiter.util import get_remote_address

from extensions import limiter
from models import utcnow
from utils.command_queue import acknowledge, drain_pending
from utils.content_resolution import resolve_content, resolve_content_by_otp
from utils.device_registry import verify_kiosk_pin
from utils.errors import InvalidInput, SignageError
from utils.liveness import clear_refresh_flag, heartbeat, record_telemetry
from utils.pairing import authenticate_device, claim_otp

api_bp = Blueprint('api', __name__)

# Setup API logger
api_logger = logging.getLogger('api')


def device_rate_key():
    """Rate-limit per device when it identifies itself, else per address"""
    return request.headers.get('X-Device-ID') or get_remote_address()


def device_rate_limit():
    return current_app.config.get('DEVICE_RATE_LIMIT', '120 per minute')


def pairing_rate_limit():
    return current_app.config.get('PAIRING_RATE_LIMIT', '10 per minute')


def device_credentials():
    """(device_id, api_key) from X-Device-ID / X-Device-Key"""
    raw_id = request.headers.get('X-Device-ID')
    try:
        device_id = int(raw_id) if raw_id else None
    except ValueError:
        device_id = None
    return device_id, request.headers.get('X-Device-Key')


def log_api_request(device_id, endpoint, method, status_code, response_time=None):
    """Log device API request to the api log"""
    timing = f' {response_time:.1f}ms' if response_time is not None else ''
    api_logger.info(f'{method} {endpoint} - Device:{device_id} IP:{request.remote_addr} Status:{status_code}{timing}')


# ============================================================================
# AUTHENTICATION DECORATOR
# ============================================================================

def require_device(f):
    """Decorator to require device id + API key; sets request.device"""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        device_id, api_key = device_credentials()

        try:
            device = authenticate_device(device_id, api_key)
        except SignageError as e:
            current_app.logger.warning(f'Device auth failed for {device_id} from {request.remote_addr}: {e.message}')
            log_api_request(device_id, request.path, request.method, e.status_code)
            return jsonify(e.to_dict()), e.status_code

        # Store device in request context
        request.device = device  # type: ignore

        return f(*args, **kwargs)

    return decorated_function


def json_body():
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise InvalidInput('JSON body must be an object')
    return data


# ============================================================================
# PAIRING
# ============================================================================

@api_bp.route('/device/pair', methods=['POST'])
@limiter.limit(pairing_rate_limit)
def claim_pairing_code():
    """
    Exchange the code shown on screen for device credentials (no auth)

    Request JSON:
    {
        "code": "ABC234",
        "device_info": {
            "platform": "android_tv",
            "model": "Shield",
            "app_version": "2.1.0",
            "screen_width": 1920,
            "screen_height": 1080,
            "timezone": "Europe/Berlin",
            "locale": "de-DE"
        }
    }

    Response JSON:
    {
        "device_id": 1,
        "api_key": "64-hex-chars",
        "tenant_id": 1,
        "device_name": "Lobby"
    }
    """
    start_time = time.time()
    data = json_body()

    device_info = data.get('device_info') or {}
    if not isinstance(device_info, dict):
        raise InvalidInput('device_info must be an object')

    try:
        result = claim_otp(data.get('code'), device_info)
    except SignageError as e:
        log_api_request(None, '/api/device/pair', 'POST', e.status_code)
        raise

    response_time = (time.time() - start_time) * 1000
    log_api_request(result['device_id'], '/api/device/pair', 'POST', 200, response_time)
    return jsonify(result), 200


# ============================================================================
# HEARTBEAT
# ============================================================================

@api_bp.route('/device/heartbeat', methods=['POST'])
@limiter.limit(device_rate_limit, key_func=device_rate_key)
def device_heartbeat():
    """
    Device check-in; drains pending commands

    Request JSON:
    {
        "app_version": "2.1.0",
        "os_version": "12"
    }

    Response JSON:
    {
        "needs_refresh": true,
        "active_scene_id": 3,
        "last_refresh_at": null,
        "pending_commands": [{"id": 7, "type": "reload", "payload": null}],
        "online": true,
        "server_time": "2025-01-01T10:00:00"
    }
    """
    start_time = time.time()
    device_id, api_key = device_credentials()

    try:
        result = heartbeat(device_id, api_key, json_body())
    except SignageError as e:
        log_api_request(device_id, '/api/device/heartbeat', 'POST', e.status_code)
        raise

    result['server_time'] = utcnow().isoformat()
    response_time = (time.time() - start_time) * 1000
    log_api_request(device_id, '/api/device/heartbeat', 'POST', 200, response_time)
    return jsonify(result), 200


# ============================================================================
# CONTENT
# ============================================================================

@api_bp.route('/device/content', methods=['GET'])
@limiter.limit(device_rate_limit, key_func=device_rate_key)
@require_device
def get_device_content():
    """
    Resolve what the device should show now (also counts as a heartbeat)

    Response JSON:
    {
        "mode": "playlist",
        "source": "playlist",
        "device": {"id": 1, "name": "Lobby", ...},
        "playlist": {"id": 4, "name": "Menu", "default_duration": 10, ...},
        "items": [{"media_id": 9, "url": "...", "duration": 8, ...}]
    }
    """
    start_time = time.time()
    device = request.device  # type: ignore

    payload = resolve_content(device.id)

    response_time = (time.time() - start_time) * 1000
    log_api_request(device.id, '/api/device/content', 'GET', 200, response_time)
    return jsonify(payload), 200


@api_bp.route('/device/content/by-code/<code>', methods=['GET'])
@limiter.limit(pairing_rate_limit)
def get_content_by_code(code):
    """Preview content for a screen still displaying its pairing code"""
    try:
        payload = resolve_content_by_otp(code)
    except SignageError as e:
        log_api_request(None, '/api/device/content/by-code', 'GET', e.status_code)
        raise

    log_api_request(payload['screen_id'], '/api/device/content/by-code', 'GET', 200)
    return jsonify(payload), 200


@api_bp.route('/device/refresh-ack', methods=['POST'])
@require_device
def acknowledge_refresh():
    """
    Device reports it applied fresh content

    Request JSON:
    {
        "config_hash": "sha256-of-applied-config"
    }
    """
    device = request.device  # type: ignore
    data = json_body()

    clear_refresh_flag(device, data.get('config_hash'))

    log_api_request(device.id, '/api/device/refresh-ack', 'POST', 200)
    return jsonify({
        'needs_refresh': device.needs_refresh,
        'last_refresh_at': device.last_refresh_at.isoformat()
    }), 200


# ============================================================================
# REMOTE COMMANDS
# ============================================================================

@api_bp.route('/device/commands', methods=['GET'])
@limiter.limit(device_rate_limit, key_func=device_rate_key)
@require_device
def get_device_commands():
    """
    Drain pending commands for device (oldest first, at most COMMAND_DRAIN_LIMIT)

    Response JSON:
    {
        "commands": [
            {"id": 1, "type": "reboot", "payload": null}
        ]
    }
    """
    start_time = time.time()
    device = request.device  # type: ignore

    commands = drain_pending(device.id)

    response_time = (time.time() - start_time) * 1000
    log_api_request(device.id, '/api/device/commands', 'GET', 200, response_time)
    return jsonify({'commands': commands, 'count': len(commands)}), 200


@api_bp.route('/device/commands/<int:command_id>/ack', methods=['POST'])
@require_device
def acknowledge_command(command_id):
    """
    Report the outcome of a command

    Request JSON:
    {
        "success": true,
        "result": {"screenshot_url": "..."},
        "error": null
    }
    """
    device = request.device  # type: ignore
    data = json_body()

    if 'success' not in data or not isinstance(data['success'], bool):
        raise InvalidInput('success must be true or false')

    try:
        command = acknowledge(device.id, command_id, data['success'],
                              result=data.get('result'), error=data.get('error'))
    except SignageError as e:
        log_api_request(device.id, f'/api/device/commands/{command_id}/ack', 'POST', e.status_code)
        raise

    log_api_request(device.id, f'/api/device/commands/{command_id}/ack', 'POST', 200)
    return jsonify({'id': command.id, 'status': command.status}), 200


# ============================================================================
# TELEMETRY & KIOSK
# ============================================================================

@api_bp.route('/device/telemetry', methods=['POST'])
@limiter.limit(device_rate_limit, key_func=device_rate_key)
@require_device
def upload_telemetry():
    """
    Append a telemetry event

    Request JSON:
    {
        "event": "playback",
        "data": {"media_id": 9},
        "app_version": "2.1.0",
        "os_version": "12",
        "network_type": "wifi",
        "timestamp": "2025-01-01T10:00:00Z",
        "campaign_id": 3,
        "campaign_content_id": 5
    }
    """
    device = request.device  # type: ignore
    data = json_body()

    event = record_telemetry(
        device,
        data.get('event'),
        data=data.get('data'),
        app_version=data.get('app_version'),
        os_version=data.get('os_version'),
        network_type=data.get('network_type'),
        timestamp=data.get('timestamp'),
        campaign_id=data.get('campaign_id'),
        campaign_content_id=data.get('campaign_content_id')
    )

    log_api_request(device.id, '/api/device/telemetry', 'POST', 201)
    return jsonify({'id': event.id}), 201


@api_bp.route('/device/kiosk/verify-pin', methods=['POST'])
@limiter.limit(pairing_rate_limit, key_func=device_rate_key)
@require_device
def verify_kiosk_exit_pin():
    """
    Check a PIN entered to leave kiosk mode

    Request JSON:
    {
        "pin": "1234"
    }
    """
    device = request.device  # type: ignore
    data = json_body()

    valid = verify_kiosk_pin(device, data.get('pin'))
    if not valid:
        current_app.logger.warning(f'Wrong kiosk PIN on device {device.id}')

    log_api_request(device.id, '/api/device/kiosk/verify-pin', 'POST', 200)
    return jsonify({'valid': valid}), 200


# ============================================================================
# HEALTH CHECK
# ============================================================================

@api_bp.route('/health', methods=['GET'])
@limiter.exempt
def health_check():
    """
    Simple health check endpoint (no authentication required)

    Response JSON:
    {
        "status": "healthy",
        "timestamp": "2025-10-31T10:00:00"
    }
    """
    return jsonify({
        'status': 'healthy',
        'timestamp': utcnow().isoformat()
    }), 200
