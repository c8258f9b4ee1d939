"""
Heartbeat & Liveness Tracker
Owns every write to Device.is_online and Device.needs_refresh.

    unknown (last_seen NULL) -> online (heartbeat) -> offline (sweep)
    offline -> online only through a fresh heartbeat
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from flask import current_app
from sqlalchemy import or_, select, update

from models import db, Device, ScheduleEntry, Scene, ScreenGroup, TelemetryEvent, utcnow
from utils.command_queue import deliver_pending
from utils.content_events import content_changed
from utils.errors import InvalidInput
from utils.pairing import authenticate_device

logger = logging.getLogger(__name__)


def touch(device: Device, now=None) -> bool:
    """
    Record a sign of life for the device

    Returns:
        True when the device transitioned into the online state
    """
    now = now or utcnow()
    came_online = not device.is_online
    if device.last_seen is None or now > device.last_seen:
        device.last_seen = now
    device.is_online = True
    return came_online


def announce_online(device: Device):
    from socketio_events import broadcast_device_online
    broadcast_device_online(device.tenant_id, device.id, device.name)


def heartbeat(device_id, api_key, device_info: Optional[Dict[str, Any]] = None, now=None) -> Dict[str, Any]:
    """
    Device check-in: authenticate, mark online, drain commands

    Response:
    {
        "needs_refresh": false,
        "active_scene_id": 3,
        "last_refresh_at": "2025-01-01T10:00:00",
        "pending_commands": [{"id": 1, "type": "reload", "payload": null}],
        "online": true
    }
    """
    now = now or utcnow()
    device = authenticate_device(device_id, api_key)
    info = device_info or {}

    came_online = touch(device, now)
    if info.get('app_version'):
        device.app_version = info['app_version']
    if info.get('os_version'):
        device.os_version = info['os_version']

    commands = deliver_pending(device.id, now=now)
    db.session.commit()

    if came_online:
        logger.info(f'Device {device.id} ({device.name}) is online')
        announce_online(device)

    return {
        'needs_refresh': device.needs_refresh,
        'active_scene_id': device.active_scene_id,
        'last_refresh_at': device.last_refresh_at.isoformat() if device.last_refresh_at else None,
        'pending_commands': commands,
        'online': device.is_online,
    }


def mark_offline_sweep(window_minutes=None, now=None) -> int:
    """
    Flip is_online to False for devices silent longer than the window

    A single conditional UPDATE; safe to run concurrently with itself and
    with heartbeats.
    """
    now = now or utcnow()
    if window_minutes is None:
        window_minutes = current_app.config.get('DEVICE_TIMEOUT_MINUTES', 5)
    cutoff = now - timedelta(minutes=window_minutes)

    stmt = (
        update(Device)
        .where(
            Device.is_online.is_(True),
            or_(Device.last_seen.is_(None), Device.last_seen < cutoff)
        )
        .values(is_online=False)
        .returning(Device.id, Device.tenant_id, Device.name)
        .execution_options(synchronize_session='fetch')
    )
    rows = db.session.execute(stmt).all()
    db.session.commit()

    if rows:
        from socketio_events import broadcast_device_offline
        for row in rows:
            broadcast_device_offline(row.tenant_id, row.id, row.name)
        logger.info(f'Marked {len(rows)} device(s) offline (window {window_minutes} min)')

    return len(rows)


def _language_siblings(scene_id):
    """Scene ids sharing a language group with scene_id, including itself"""
    scene = db.session.get(Scene, scene_id)
    if scene is None or scene.language_group_id is None:
        return [scene_id]
    return [row.id for row in Scene.query.with_entities(Scene.id).filter_by(
        language_group_id=scene.language_group_id)]


def notify_devices_changed(scene_id=None, tenant_id=None) -> int:
    """
    Flag devices whose displayed content depends on the changed scope

    scene_id: devices showing the scene (directly, through their group or
        through a schedule entry), including any of its language variants
    tenant_id: every device of the tenant that has an active scene

    Runs inside the writer's transaction; the writer commits.
    """
    if scene_id is None and tenant_id is None:
        raise InvalidInput('notify_devices_changed needs scene_id or tenant_id')

    if scene_id is not None:
        scene_ids = _language_siblings(scene_id)
        groups = select(ScreenGroup.id).where(ScreenGroup.active_scene_id.in_(scene_ids))
        scheduled = select(ScheduleEntry.schedule_id).where(
            ScheduleEntry.content_type == 'scene',
            ScheduleEntry.content_id.in_(scene_ids)
        )
        schedule_groups = select(ScreenGroup.id).where(ScreenGroup.assigned_schedule_id.in_(scheduled))
        condition = or_(
            Device.active_scene_id.in_(scene_ids),
            Device.group_id.in_(groups),
            Device.assigned_schedule_id.in_(scheduled),
            Device.group_id.in_(schedule_groups)
        )
    else:
        groups = select(ScreenGroup.id).where(
            ScreenGroup.tenant_id == tenant_id,
            ScreenGroup.active_scene_id.isnot(None)
        )
        condition = (Device.tenant_id == tenant_id) & or_(
            Device.active_scene_id.isnot(None), Device.group_id.in_(groups)
        )

    stmt = (
        update(Device)
        .where(condition, Device.is_active.is_(True))
        .values(needs_refresh=True)
        .execution_options(synchronize_session='fetch')
    )
    count = db.session.execute(stmt).rowcount
    logger.debug(f'needs_refresh set on {count} device(s) (scene={scene_id}, tenant={tenant_id})')
    return count


def flag_tenant_devices(tenant_id) -> int:
    """Flag every active device of a tenant, e.g. when an emergency starts or ends"""
    stmt = (
        update(Device)
        .where(Device.tenant_id == tenant_id, Device.is_active.is_(True))
        .values(needs_refresh=True)
        .execution_options(synchronize_session='fetch')
    )
    return db.session.execute(stmt).rowcount


def flag_schedule_devices(schedule_id) -> int:
    """Flag devices following a schedule, directly or through their group; writer commits"""
    groups = select(ScreenGroup.id).where(ScreenGroup.assigned_schedule_id == schedule_id)
    condition = or_(
        Device.assigned_schedule_id == schedule_id,
        Device.assigned_schedule_id.is_(None) & Device.group_id.in_(groups)
    )
    stmt = (
        update(Device)
        .where(condition, Device.is_active.is_(True))
        .values(needs_refresh=True)
        .execution_options(synchronize_session='fetch')
    )
    return db.session.execute(stmt).rowcount


def mark_offline(device: Device):
    """Take an unpaired device out of the online set; writer commits"""
    device.is_online = False


def mark_device_for_refresh(device: Device):
    """Flag a single device after its own assignment changed; writer commits"""
    device.needs_refresh = True


def _on_content_changed(sender, scene_id=None, tenant_id=None, **extra):
    return notify_devices_changed(scene_id=scene_id, tenant_id=tenant_id)


content_changed.connect(_on_content_changed)


def clear_refresh_flag(device: Device, config_hash=None, now=None) -> Device:
    """Device confirms it re-fetched content"""
    now = now or utcnow()
    device.needs_refresh = False
    device.last_refresh_at = now
    if config_hash:
        device.last_config_hash = config_hash
    db.session.commit()
    return device


def parse_device_timestamp(value) -> Optional[datetime]:
    """Parse an ISO-8601 device timestamp into naive UTC"""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(str(value).replace('Z', '+00:00'))
    except ValueError:
        raise InvalidInput(f'Invalid timestamp: {value}')
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def record_telemetry(device: Device, event_type, data=None, app_version=None, os_version=None,
                     network_type=None, timestamp=None, campaign_id=None, campaign_content_id=None,
                     now=None) -> TelemetryEvent:
    """Append a telemetry event; events are never updated afterwards"""
    if not event_type:
        raise InvalidInput('event is required')
    if data is not None and not isinstance(data, dict):
        raise InvalidInput('data must be an object')

    now = now or utcnow()
    event = TelemetryEvent(
        device_id=device.id,
        event_type=event_type,
        data=data,
        app_version=app_version,
        os_version=os_version,
        network_type=network_type,
        recorded_at=parse_device_timestamp(timestamp) or now,
        received_at=now,
        campaign_id=campaign_id,
        campaign_content_id=campaign_content_id
    )
    db.session.add(event)
    db.session.commit()
    return event
