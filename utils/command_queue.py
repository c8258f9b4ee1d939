"""
Remote Command Queue
At-least-once, FIFO-per-device delivery of remote operations.

    pending -> delivered -> acknowledged | failed
    pending/delivered -> expired   (cleanup sweep only)

A delivered command is handed out again on every drain until the device
acknowledges it; terminal commands are never handed out again.
"""
import logging
from datetime import timedelta
from typing import Any, Dict, List, Optional

from flask import current_app
from sqlalchemy import select, update

from models import db, Device, DeviceCommand, COMMAND_TYPES, TERMINAL_COMMAND_STATUSES, utcnow
from utils.errors import InvalidCommandType, InvalidInput, NotFound
from utils.permissions import ensure_can_write, ensure_owns

logger = logging.getLogger(__name__)

DELIVERABLE_STATUSES = ('pending', 'delivered')


def _get_owned_device(caller, device_id) -> Device:
    device = db.session.get(Device, device_id)
    if device is None or not device.is_active:
        raise NotFound('Device not found')
    ensure_owns(caller, device.tenant_id, 'device')
    return device


def enqueue(caller, device_id, command_type, payload=None, now=None, ttl_minutes=None) -> int:
    """
    Queue a command for a device

    Returns:
        New command id
    Raises:
        NotFound, Forbidden, InvalidCommandType
    """
    if command_type not in COMMAND_TYPES:
        raise InvalidCommandType(f'Invalid command type: {command_type}')
    if payload is not None and not isinstance(payload, dict):
        raise InvalidInput('Command payload must be an object')

    device = _get_owned_device(caller, device_id)
    ensure_can_write(caller)

    now = now or utcnow()
    if ttl_minutes is None:
        ttl_minutes = current_app.config.get('COMMAND_TTL_MINUTES', 60)

    command = DeviceCommand(
        device_id=device.id,
        command_type=command_type,
        payload=payload,
        status='pending',
        created_at=now,
        expires_at=now + timedelta(minutes=ttl_minutes),
        created_by=str(caller.user_id) if caller.user_id is not None else None
    )
    db.session.add(command)
    db.session.commit()

    logger.info(f'Queued {command_type} command {command.id} for device {device.id}')
    return command.id


def deliver_pending(device_id, limit=None, now=None) -> List[Dict[str, Any]]:
    """
    Mark the oldest deliverable commands as delivered and return them.

    Selection and state change happen in one UPDATE ... RETURNING statement,
    so concurrent drains for the same device cannot lose a command. The
    caller owns the transaction.
    """
    now = now or utcnow()
    if limit is None:
        limit = current_app.config.get('COMMAND_DRAIN_LIMIT', 10)

    oldest = (
        select(DeviceCommand.id)
        .where(
            DeviceCommand.device_id == device_id,
            DeviceCommand.status.in_(DELIVERABLE_STATUSES),
            DeviceCommand.expires_at > now
        )
        .order_by(DeviceCommand.created_at, DeviceCommand.id)
        .limit(limit)
    )

    stmt = (
        update(DeviceCommand)
        .where(DeviceCommand.id.in_(oldest))
        .values(
            status='delivered',
            delivered_at=now,
            delivery_count=DeviceCommand.delivery_count + 1
        )
        .returning(DeviceCommand.id, DeviceCommand.command_type,
                   DeviceCommand.payload, DeviceCommand.created_at)
        .execution_options(synchronize_session='fetch')
    )
    rows = db.session.execute(stmt).all()

    # RETURNING order is not guaranteed
    rows.sort(key=lambda row: (row.created_at, row.id))
    return [{'id': row.id, 'type': row.command_type, 'payload': row.payload} for row in rows]


def drain_pending(device_id, limit=None, now=None) -> List[Dict[str, Any]]:
    """Deliver pending commands in their own transaction"""
    commands = deliver_pending(device_id, limit=limit, now=now)
    db.session.commit()
    if commands:
        logger.info(f'Delivered {len(commands)} command(s) to device {device_id}')
    return commands


def acknowledge(device_id, command_id, success, result=None, error=None, now=None) -> DeviceCommand:
    """
    Record the outcome of a delivered command

    Terminal, expired, unknown or foreign commands raise NotFound; an
    acknowledged or failed command is never resurrected.
    """
    now = now or utcnow()
    status = 'acknowledged' if success else 'failed'

    stmt = (
        update(DeviceCommand)
        .where(
            DeviceCommand.id == command_id,
            DeviceCommand.device_id == device_id,
            DeviceCommand.status.in_(DELIVERABLE_STATUSES)
        )
        .values(
            status=status,
            acknowledged_at=now,
            result=result,
            error_message=None if success else (error or 'Command failed')
        )
        .execution_options(synchronize_session='fetch')
    )
    updated = db.session.execute(stmt).rowcount
    if not updated:
        raise NotFound('Command not found')

    db.session.commit()
    command = db.session.get(DeviceCommand, command_id)
    logger.info(f'Command {command_id} for device {device_id} {status}')

    from socketio_events import broadcast_command_completed
    broadcast_command_completed(command.device.tenant_id, device_id, command.id, command.command_type, status)

    return command


def history(caller, device_id, status=None, command_type=None, limit=50) -> List[DeviceCommand]:
    """Commands for a device, newest first"""
    device = _get_owned_device(caller, device_id)

    query = DeviceCommand.query.filter_by(device_id=device.id)
    if status:
        query = query.filter(DeviceCommand.status == status)
    if command_type:
        query = query.filter(DeviceCommand.command_type == command_type)

    return query.order_by(DeviceCommand.created_at.desc(), DeviceCommand.id.desc()).limit(limit).all()


def expire_stale_commands(now=None) -> int:
    """Mark every non-terminal command past its expires_at as expired"""
    now = now or utcnow()
    stmt = (
        update(DeviceCommand)
        .where(
            DeviceCommand.status.in_(DELIVERABLE_STATUSES),
            DeviceCommand.expires_at <= now
        )
        .values(status='expired')
        .execution_options(synchronize_session='fetch')
    )
    count = db.session.execute(stmt).rowcount
    db.session.commit()
    if count:
        logger.info(f'Expired {count} stale command(s)')
    return count


def cancel_outstanding(device_id, now=None) -> int:
    """Expire everything still waiting for a device; used on unpair. Caller commits."""
    now = now or utcnow()
    stmt = (
        update(DeviceCommand)
        .where(
            DeviceCommand.device_id == device_id,
            DeviceCommand.status.in_(DELIVERABLE_STATUSES)
        )
        .values(status='expired', expires_at=now)
        .execution_options(synchronize_session='fetch')
    )
    return db.session.execute(stmt).rowcount


def purge_old_commands(days=None, now=None) -> int:
    """Delete terminal commands older than the retention period"""
    now = now or utcnow()
    if days is None:
        days = current_app.config.get('COMMAND_RETENTION_DAYS', 30)
    cutoff = now - timedelta(days=days)

    deleted = DeviceCommand.query.filter(
        DeviceCommand.status.in_(TERMINAL_COMMAND_STATUSES),
        DeviceCommand.created_at < cutoff
    ).delete(synchronize_session=False)
    db.session.commit()
    if deleted:
        logger.info(f'Purged {deleted} command(s) older than {days} days')
    return deleted
