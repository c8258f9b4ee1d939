"""
Admin Routes Blueprint
Operator endpoints for screens, pairing codes, commands, scenes and emergencies.
The caller identity is resolved upstream and forwarded as headers.
"""
from flask import Blueprint, request, jsonify, g

from routes.api_routes import json_body
from utils.command_queue import enqueue, history
from utils.content_service import (clear_emergency, delete_slide, save_brand_theme, save_slide,
                                   set_active_scene, set_group_scene, start_emergency, update_scene)
from utils.device_registry import (assign_content, assign_group_schedule, device_summary,
                                   get_device_for_caller, register_device, retire_device,
                                   set_kiosk_mode, set_master_pin, unpair_device)
from utils.errors import InvalidInput
from utils.pairing import generate_otp
from utils.permissions import require_caller
from utils.schedule_utils import create_schedule_entry

admin_bp = Blueprint('admin', __name__)


def _int_arg(name, default):
    value = request.args.get(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        raise InvalidInput(f'{name} must be an integer')


# ============================================================================
# DEVICE MANAGEMENT
# ============================================================================

@admin_bp.route('/devices', methods=['POST'])
@require_caller
def create_device():
    """
    Register an unpaired screen

    Request JSON:
    {
        "name": "Lobby",
        "location_id": 1,
        "group_id": 2,
        "timezone": "Europe/Berlin",
        "display_language": "de"
    }
    """
    data = json_body()
    device = register_device(
        g.caller,
        data.get('name'),
        location_id=data.get('location_id'),
        group_id=data.get('group_id'),
        timezone=data.get('timezone'),
        display_language=data.get('display_language')
    )
    return jsonify(device_summary(device)), 201


@admin_bp.route('/devices/<int:device_id>', methods=['GET'])
@require_caller
def get_device(device_id):
    device = get_device_for_caller(g.caller, device_id)
    return jsonify(device_summary(device)), 200


@admin_bp.route('/devices/<int:device_id>', methods=['DELETE'])
@require_caller
def delete_device(device_id):
    """Retire a screen; history is kept"""
    retire_device(g.caller, device_id)
    return jsonify({'success': True}), 200


@admin_bp.route('/devices/<int:device_id>/assignment', methods=['PUT'])
@require_caller
def update_assignment(device_id):
    """
    Change what a screen falls back to when no override applies

    Request JSON (any subset, null clears):
    {
        "schedule_id": 3,
        "layout_id": null,
        "playlist_id": 7,
        "group_id": 2,
        "display_language": "fr"
    }
    """
    device = assign_content(g.caller, device_id, **json_body())
    return jsonify(device_summary(device)), 200


@admin_bp.route('/devices/<int:device_id>/unpair', methods=['POST'])
@require_caller
def unpair(device_id):
    device = unpair_device(g.caller, device_id)
    return jsonify(device_summary(device)), 200


@admin_bp.route('/devices/<int:device_id>/pairing-code', methods=['POST'])
@require_caller
def create_pairing_code(device_id):
    """
    Issue a pairing code to show on the screen

    Response JSON:
    {
        "code": "ABC234",
        "expires_at": "2025-01-01T10:15:00"
    }
    """
    result = generate_otp(g.caller, device_id)
    return jsonify(result), 201


@admin_bp.route('/devices/<int:device_id>/active-scene', methods=['PUT'])
@require_caller
def update_active_scene(device_id):
    """Request JSON: {"scene_id": 4} (null clears)"""
    device = set_active_scene(g.caller, device_id, json_body().get('scene_id'))
    return jsonify(device_summary(device)), 200


@admin_bp.route('/devices/<int:device_id>/kiosk', methods=['PUT'])
@require_caller
def update_kiosk(device_id):
    """
    Request JSON:
    {
        "enabled": true,
        "pin": "1234"
    }
    """
    data = json_body()
    if 'enabled' not in data:
        raise InvalidInput('enabled is required')
    device = set_kiosk_mode(g.caller, device_id, data['enabled'], pin=data.get('pin'))
    return jsonify(device_summary(device)), 200


@admin_bp.route('/kiosk/master-pin', methods=['PUT'])
@require_caller
def update_master_pin():
    set_master_pin(g.caller, json_body().get('pin'))
    return jsonify({'success': True}), 200


@admin_bp.route('/groups/<int:group_id>/active-scene', methods=['PUT'])
@require_caller
def update_group_scene(group_id):
    group = set_group_scene(g.caller, group_id, json_body().get('scene_id'))
    return jsonify({'id': group.id, 'active_scene_id': group.active_scene_id}), 200


@admin_bp.route('/groups/<int:group_id>/schedule', methods=['PUT'])
@require_caller
def update_group_schedule(group_id):
    group = assign_group_schedule(g.caller, group_id, json_body().get('schedule_id'))
    return jsonify({'id': group.id, 'assigned_schedule_id': group.assigned_schedule_id}), 200


# ============================================================================
# REMOTE COMMANDS
# ============================================================================

@admin_bp.route('/devices/<int:device_id>/commands', methods=['POST'])
@require_caller
def send_command(device_id):
    """
    Queue a remote command

    Request JSON:
    {
        "command_type": "screenshot",
        "payload": {"quality": 80}
    }
    """
    data = json_body()
    command_id = enqueue(g.caller, device_id, data.get('command_type'), data.get('payload'))
    return jsonify({'id': command_id, 'status': 'pending'}), 201


@admin_bp.route('/devices/<int:device_id>/commands', methods=['GET'])
@require_caller
def command_history(device_id):
    """Newest first; filter with ?status=&command_type=&limit="""
    commands = history(
        g.caller,
        device_id,
        status=request.args.get('status'),
        command_type=request.args.get('command_type'),
        limit=_int_arg('limit', 50)
    )
    return jsonify({'commands': [c.to_dict() for c in commands]}), 200


# ============================================================================
# SCENES, SLIDES & THEMES
# ============================================================================

def _scene_dict(scene):
    return {
        'id': scene.id,
        'name': scene.name,
        'is_active': scene.is_active,
        'layout_id': scene.layout_id,
        'primary_playlist_id': scene.primary_playlist_id,
        'secondary_playlist_id': scene.secondary_playlist_id,
        'settings': scene.settings,
        'language_code': scene.language_code
    }


def _slide_dict(slide):
    return {
        'id': slide.id,
        'scene_id': slide.scene_id,
        'position': slide.position,
        'title': slide.title,
        'payload': slide.payload
    }


@admin_bp.route('/scenes/<int:scene_id>', methods=['PUT'])
@require_caller
def edit_scene(scene_id):
    scene = update_scene(g.caller, scene_id, json_body())
    return jsonify(_scene_dict(scene)), 200


@admin_bp.route('/scenes/<int:scene_id>/slides', methods=['POST'])
@require_caller
def add_slide(scene_id):
    """
    Request JSON:
    {
        "position": 0,
        "title": "Welcome",
        "payload": {"text": "Hello"}
    }
    """
    slide = save_slide(g.caller, scene_id, json_body())
    return jsonify(_slide_dict(slide)), 201


@admin_bp.route('/scenes/<int:scene_id>/slides/<int:slide_id>', methods=['PUT'])
@require_caller
def edit_slide(scene_id, slide_id):
    slide = save_slide(g.caller, scene_id, json_body(), slide_id=slide_id)
    return jsonify(_slide_dict(slide)), 200


@admin_bp.route('/slides/<int:slide_id>', methods=['DELETE'])
@require_caller
def remove_slide(slide_id):
    delete_slide(g.caller, slide_id)
    return jsonify({'success': True}), 200


def _theme_dict(theme):
    return {
        'id': theme.id,
        'name': theme.name,
        'primary_color': theme.primary_color,
        'secondary_color': theme.secondary_color,
        'logo_url': theme.logo_url,
        'font_family': theme.font_family,
        'is_active': theme.is_active
    }


@admin_bp.route('/themes', methods=['POST'])
@require_caller
def create_theme():
    theme = save_brand_theme(g.caller, json_body())
    return jsonify(_theme_dict(theme)), 201


@admin_bp.route('/themes/<int:theme_id>', methods=['PUT'])
@require_caller
def edit_theme(theme_id):
    theme = save_brand_theme(g.caller, json_body(), theme_id=theme_id)
    return jsonify(_theme_dict(theme)), 200


# ============================================================================
# EMERGENCY OVERRIDE
# ============================================================================

@admin_bp.route('/emergency', methods=['POST'])
@require_caller
def activate_emergency():
    """
    Put every screen of the tenant on emergency content

    Request JSON:
    {
        "content_type": "playlist",
        "content_id": 9,
        "duration_minutes": 30
    }
    """
    data = json_body()
    tenant = start_emergency(g.caller, data.get('content_type'), data.get('content_id'),
                             duration_minutes=data.get('duration_minutes'))
    expires_at = tenant.emergency_expires_at()
    return jsonify({
        'active': True,
        'content_type': tenant.emergency_content_type,
        'content_id': tenant.emergency_content_id,
        'started_at': tenant.emergency_started_at.isoformat(),
        'expires_at': expires_at.isoformat() if expires_at else None
    }), 200


@admin_bp.route('/emergency', methods=['DELETE'])
@require_caller
def deactivate_emergency():
    clear_emergency(g.caller)
    return jsonify({'active': False}), 200


# ============================================================================
# SCHEDULES
# ============================================================================

@admin_bp.route('/schedules/<int:schedule_id>/entries', methods=['POST'])
@require_caller
def add_schedule_entry(schedule_id):
    """
    Add a time window to a schedule; overlaps are rejected with 409

    Request JSON:
    {
        "target_type": "screen_group",
        "target_id": 2,
        "content_type": "playlist",
        "content_id": 7,
        "start_time": "08:00",
        "end_time": "12:00",
        "days_of_week": [0, 1, 2, 3, 4],
        "start_date": "2025-01-01",
        "end_date": null,
        "priority": 10
    }
    """
    entry = create_schedule_entry(g.caller, schedule_id, json_body())
    return jsonify({
        'id': entry.id,
        'schedule_id': entry.schedule_id,
        'target_type': entry.target_type,
        'target_id': entry.target_id,
        'content_type': entry.content_type,
        'content_id': entry.content_id,
        'start_time': entry.start_time.strftime('%H:%M'),
        'end_time': entry.end_time.strftime('%H:%M'),
        'days_of_week': entry.days_list,
        'start_date': entry.start_date.isoformat() if entry.start_date else None,
        'end_date': entry.end_date.isoformat() if entry.end_date else None,
        'priority': entry.priority
    }), 201
