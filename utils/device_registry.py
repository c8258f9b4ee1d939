"""
Device Registry
Screen creation, ownership checks, content assignment, unpairing and kiosk settings
"""
import logging

from models import db, Device, Layout, Location, Playlist, Schedule, ScreenGroup, Tenant, utcnow
from utils.command_queue import cancel_outstanding
from utils.errors import Forbidden, InvalidInput, NotFound
from utils.liveness import mark_device_for_refresh, mark_offline
from utils.permissions import ensure_can_write, ensure_owns

logger = logging.getLogger(__name__)


def get_device_for_caller(caller, device_id) -> Device:
    """Load a device the caller's tenant owns"""
    device = db.session.get(Device, device_id)
    if device is None:
        raise NotFound('Device not found')
    ensure_owns(caller, device.tenant_id, 'device')
    return device


def _owned(caller, model, object_id, label):
    """Resolve an optional foreign reference within the caller's tenant"""
    if object_id is None:
        return None
    obj = db.session.get(model, object_id)
    if obj is None:
        raise NotFound(f'{label} not found')
    ensure_owns(caller, obj.tenant_id, label.lower())
    return obj


def register_device(caller, name, location_id=None, group_id=None, timezone=None,
                    display_language=None) -> Device:
    """Create an unpaired screen in the caller's tenant"""
    ensure_can_write(caller)
    if not name or not str(name).strip():
        raise InvalidInput('Name is required')

    _owned(caller, Location, location_id, 'Location')
    _owned(caller, ScreenGroup, group_id, 'Group')

    device = Device(
        tenant_id=caller.tenant_id,
        name=str(name).strip(),
        location_id=location_id,
        group_id=group_id,
        timezone=timezone,
        display_language=display_language
    )
    db.session.add(device)
    db.session.commit()

    logger.info(f'Registered device {device.id} ({device.name}) for tenant {caller.tenant_id}')
    return device


ASSIGNMENT_FIELDS = {
    'schedule_id': ('assigned_schedule_id', Schedule, 'Schedule'),
    'layout_id': ('assigned_layout_id', Layout, 'Layout'),
    'playlist_id': ('assigned_playlist_id', Playlist, 'Playlist'),
}


def assign_content(caller, device_id, **changes) -> Device:
    """
    Update a device's assignment stack

    Keys: schedule_id, layout_id, playlist_id, group_id, display_language.
    A key present with None clears the assignment.
    """
    device = get_device_for_caller(caller, device_id)
    ensure_can_write(caller)

    unknown = set(changes) - set(ASSIGNMENT_FIELDS) - {'group_id', 'display_language'}
    if unknown:
        raise InvalidInput(f'Unknown assignment field(s): {", ".join(sorted(unknown))}')

    for key, (column, model, label) in ASSIGNMENT_FIELDS.items():
        if key in changes:
            _owned(caller, model, changes[key], label)
            setattr(device, column, changes[key])

    if 'group_id' in changes:
        _owned(caller, ScreenGroup, changes['group_id'], 'Group')
        device.group_id = changes['group_id']

    if 'display_language' in changes:
        device.display_language = changes['display_language'] or None

    mark_device_for_refresh(device)
    db.session.commit()
    return device


def assign_group_schedule(caller, group_id, schedule_id) -> ScreenGroup:
    """Schedule followed by group members that have no schedule of their own"""
    group = _owned(caller, ScreenGroup, group_id, 'Group')
    if group is None:
        raise NotFound('Group not found')
    ensure_can_write(caller)
    _owned(caller, Schedule, schedule_id, 'Schedule')

    group.assigned_schedule_id = schedule_id
    for device in group.devices:
        if device.assigned_schedule_id is None:
            mark_device_for_refresh(device)
    db.session.commit()
    return group


def unpair_device(caller, device_id, now=None) -> Device:
    """
    Soft-retire pairing: credentials revoked, device kept for history.
    The screen can be paired again with a new code.
    """
    now = now or utcnow()
    device = get_device_for_caller(caller, device_id)
    ensure_can_write(caller)

    device.api_key = None
    device.is_paired = False
    device.paired_at = None
    device.otp_code = None
    device.otp_expires_at = None
    mark_offline(device)
    cancelled = cancel_outstanding(device.id, now)
    db.session.commit()

    logger.info(f'Device {device.id} unpaired ({cancelled} outstanding command(s) expired)')
    return device


def retire_device(caller, device_id, now=None) -> Device:
    """Unpair and hide the device from every device-facing operation"""
    device = unpair_device(caller, device_id, now)
    device.is_active = False
    db.session.commit()
    return device


def set_kiosk_mode(caller, device_id, enabled, pin=None) -> Device:
    device = get_device_for_caller(caller, device_id)
    ensure_can_write(caller)

    device.kiosk_mode_enabled = bool(enabled)
    if pin is not None:
        if pin and (not str(pin).isdigit() or not 4 <= len(str(pin)) <= 8):
            raise InvalidInput('PIN must be 4 to 8 digits')
        device.set_kiosk_pin(str(pin) if pin else None)

    mark_device_for_refresh(device)
    db.session.commit()
    return device


def set_master_pin(caller, pin):
    """Set the tenant-wide kiosk master PIN (admins only)"""
    if not caller.is_admin:
        raise Forbidden('Administrator access required')
    if not pin or not str(pin).isdigit() or not 4 <= len(str(pin)) <= 8:
        raise InvalidInput('PIN must be 4 to 8 digits')

    tenant = db.session.get(Tenant, caller.tenant_id)
    if tenant is None:
        raise NotFound('Tenant not found')
    tenant.set_master_pin(str(pin))
    db.session.commit()


def verify_kiosk_pin(device: Device, pin) -> bool:
    """Kiosk exit: device PIN first, then the tenant master PIN"""
    if not pin:
        return False
    pin = str(pin)
    if device.check_kiosk_pin(pin):
        return True
    return device.tenant is not None and device.tenant.check_master_pin(pin)


def device_summary(device: Device):
    return {
        'id': device.id,
        'name': device.name,
        'tenant_id': device.tenant_id,
        'location_id': device.location_id,
        'group_id': device.group_id,
        'is_paired': device.is_paired,
        'is_online': device.is_online,
        'liveness': device.liveness_state,
        'last_seen': device.last_seen.isoformat() if device.last_seen else None,
        'app_version': device.app_version,
        'os_version': device.os_version,
        'platform': device.platform,
        'timezone': device.effective_timezone,
        'display_language': device.display_language,
        'active_scene_id': device.active_scene_id,
        'assigned_schedule_id': device.assigned_schedule_id,
        'assigned_layout_id': device.assigned_layout_id,
        'assigned_playlist_id': device.assigned_playlist_id,
        'needs_refresh': device.needs_refresh,
        'kiosk_mode_enabled': device.kiosk_mode_enabled,
    }
