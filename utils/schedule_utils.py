"""
Schedule Utilities
Conflict detection at entry creation and device-local schedule resolution
"""
import logging
from datetime import datetime, date, time, timezone
from typing import List, Dict, Optional, Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy import and_, or_

from models import db, SCHEDULE_CONTENT_TYPES, Device, Schedule, ScheduleEntry, utcnow
from utils.errors import Conflict, InvalidInput, NotFound
from utils.liveness import flag_schedule_devices
from utils.permissions import ensure_can_write, ensure_owns

logger = logging.getLogger(__name__)

ENTRY_TARGET_TYPES = ('screen', 'screen_group', 'all')


class ScheduleConflict:
    """Represents an overlap between two entries of the same schedule"""

    def __init__(self, entry: ScheduleEntry, other: ScheduleEntry, conflict_type: str, details: str):
        self.entry = entry
        self.other = other
        self.conflict_type = conflict_type  # 'time_overlap', 'priority_conflict'
        self.details = details

    def to_dict(self) -> Dict[str, Any]:
        return {
            'entry_id': self.entry.id,
            'conflicting_entry_id': self.other.id,
            'conflict_type': self.conflict_type,
            'details': self.details
        }


def time_to_minutes(t: time) -> int:
    return t.hour * 60 + t.minute


def check_time_overlap(start1: time, end1: time, start2: time, end2: time) -> bool:
    """
    Check if two daily windows overlap
    Handles overnight windows (e.g., 22:00 - 02:00); start == end means all day
    """
    def spans(start: time, end: time):
        s, e = time_to_minutes(start), time_to_minutes(end)
        if s == e:
            return [(0, 24 * 60)]
        if e < s:  # Crosses midnight
            return [(s, 24 * 60), (0, e)]
        return [(s, e)]

    return any(
        a_start < b_end and b_start < a_end
        for a_start, a_end in spans(start1, end1)
        for b_start, b_end in spans(start2, end2)
    )


def time_in_window(t: time, start: time, end: time) -> bool:
    """Half-open [start, end) membership, overnight aware"""
    if start == end:
        return True
    if start < end:
        return start <= t < end
    return t >= start or t < end


def date_ranges_overlap(start1: Optional[date], end1: Optional[date],
                        start2: Optional[date], end2: Optional[date]) -> bool:
    """Open-ended bounds are treated as infinite"""
    if end1 is not None and start2 is not None and end1 < start2:
        return False
    if end2 is not None and start1 is not None and end2 < start1:
        return False
    return True


def targets_overlap(entry: ScheduleEntry, other: ScheduleEntry) -> bool:
    """Whether two entries can apply to the same screen"""
    if entry.target_type == 'all' or other.target_type == 'all':
        return True
    if entry.target_type == other.target_type:
        return entry.target_id == other.target_id

    # One targets a screen, the other a group: overlap if the screen is in the group
    screen_entry, group_entry = (entry, other) if entry.target_type == 'screen' else (other, entry)
    device = db.session.get(Device, screen_entry.target_id)
    return device is not None and device.group_id == group_entry.target_id


def find_entry_conflicts(entry: ScheduleEntry) -> List[ScheduleConflict]:
    """
    Find active entries in the same schedule that overlap the given entry
    in target scope, days of week, date range and time window
    """
    query = ScheduleEntry.query.filter(
        ScheduleEntry.schedule_id == entry.schedule_id,
        ScheduleEntry.is_active.is_(True)
    )
    if entry.id is not None:
        query = query.filter(ScheduleEntry.id != entry.id)

    conflicts = []
    for other in query.all():
        if not targets_overlap(entry, other):
            continue
        if not set(entry.days_list).intersection(other.days_list):
            continue
        if not date_ranges_overlap(entry.start_date, entry.end_date, other.start_date, other.end_date):
            continue
        if not check_time_overlap(entry.start_time, entry.end_time, other.start_time, other.end_time):
            continue

        conflict_type = 'time_overlap'
        details = (f"Time ranges overlap: {entry.start_time:%H:%M}-{entry.end_time:%H:%M} "
                   f"vs {other.start_time:%H:%M}-{other.end_time:%H:%M}")
        if entry.priority == other.priority:
            conflict_type = 'priority_conflict'
            details += f" (same priority: {entry.priority})"
        conflicts.append(ScheduleConflict(entry, other, conflict_type, details))

    return conflicts


# ============================================================================
# ENTRY CREATION
# ============================================================================

def _parse_time(value, field) -> time:
    if isinstance(value, time):
        return value
    try:
        return datetime.strptime(str(value), '%H:%M').time()
    except ValueError:
        raise InvalidInput(f'{field} must be HH:MM')


def _parse_date(value, field) -> Optional[date]:
    if value is None or isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except ValueError:
        raise InvalidInput(f'{field} must be YYYY-MM-DD')


def _parse_days(value) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, str):
        value = [d for d in value.split(',') if d.strip()]
    try:
        days = sorted({int(d) for d in value})
    except (TypeError, ValueError):
        raise InvalidInput('days_of_week must be a list of integers 0-6')
    if not days or any(d < 0 or d > 6 for d in days):
        raise InvalidInput('days_of_week must be a list of integers 0-6')
    return ','.join(str(d) for d in days)


def create_schedule_entry(caller, schedule_id, data: Dict[str, Any], now=None) -> ScheduleEntry:
    """
    Validate and add an entry, refusing overlaps within the schedule

    Raises:
        NotFound, Forbidden, InvalidInput, Conflict (with conflict details)
    """
    schedule = db.session.get(Schedule, schedule_id)
    if schedule is None:
        raise NotFound('Schedule not found')
    ensure_owns(caller, schedule.tenant_id, 'schedule')
    ensure_can_write(caller)

    target_type = data.get('target_type', 'all')
    if target_type not in ENTRY_TARGET_TYPES:
        raise InvalidInput(f'Invalid target_type: {target_type}')
    target_id = data.get('target_id')
    if target_type != 'all' and target_id is None:
        raise InvalidInput('target_id is required for screen and screen_group targets')

    content_type = data.get('content_type')
    if content_type not in SCHEDULE_CONTENT_TYPES:
        raise InvalidInput(f'Invalid content_type: {content_type}')
    if data.get('content_id') is None:
        raise InvalidInput('content_id is required')

    entry = ScheduleEntry(
        schedule_id=schedule.id,
        target_type=target_type,
        target_id=None if target_type == 'all' else target_id,
        content_type=content_type,
        content_id=data['content_id'],
        start_time=_parse_time(data.get('start_time'), 'start_time'),
        end_time=_parse_time(data.get('end_time'), 'end_time'),
        days_of_week=_parse_days(data.get('days_of_week')),
        start_date=_parse_date(data.get('start_date'), 'start_date'),
        end_date=_parse_date(data.get('end_date'), 'end_date'),
        priority=int(data.get('priority', 0)),
        created_at=now or utcnow()
    )
    if entry.start_date and entry.end_date and entry.end_date < entry.start_date:
        raise InvalidInput('end_date must not be before start_date')

    conflicts = find_entry_conflicts(entry)
    if conflicts:
        raise Conflict('Schedule entry overlaps existing entries', [c.to_dict() for c in conflicts])

    db.session.add(entry)
    flag_schedule_devices(schedule.id)
    db.session.commit()

    logger.info(f'Added entry {entry.id} to schedule {schedule.id}')
    return entry


# ============================================================================
# RESOLUTION
# ============================================================================

def device_local_now(device: Device, now: Optional[datetime] = None,
                     fallback_timezone: Optional[str] = None) -> datetime:
    """Current wall-clock time in the device's timezone"""
    now = now or utcnow()
    tz_name = device.local_timezone or fallback_timezone or 'UTC'
    try:
        tz = ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning(f'Unknown timezone {tz_name!r} for device {device.id}, using UTC')
        tz = ZoneInfo('UTC')
    return now.replace(tzinfo=timezone.utc).astimezone(tz)


def resolve_schedule_entry(device: Device, now: Optional[datetime] = None) -> Optional[ScheduleEntry]:
    """
    Determine which entry of the device's schedule applies now

    The device's own schedule wins over its group's. Entries target the
    device, its group or all screens; the day of week and time window are
    evaluated in device-local time, or in the schedule's timezone when the
    device has none. Highest priority wins, then the newest entry.
    """
    schedule_id = device.assigned_schedule_id
    if schedule_id is None and device.group is not None:
        schedule_id = device.group.assigned_schedule_id
    if schedule_id is None:
        return None

    schedule = db.session.get(Schedule, schedule_id)
    if schedule is None or not schedule.is_active:
        return None

    local = device_local_now(device, now, schedule.timezone)
    check_date = local.date()
    check_time = local.time()
    weekday = local.weekday()

    target_filters = [
        ScheduleEntry.target_type == 'all',
        and_(ScheduleEntry.target_type == 'screen', ScheduleEntry.target_id == device.id),
    ]
    if device.group_id is not None:
        target_filters.append(
            and_(ScheduleEntry.target_type == 'screen_group', ScheduleEntry.target_id == device.group_id)
        )

    entries = ScheduleEntry.query.filter(
        ScheduleEntry.schedule_id == schedule.id,
        ScheduleEntry.is_active.is_(True),
        or_(*target_filters),
        or_(ScheduleEntry.start_date.is_(None), ScheduleEntry.start_date <= check_date),
        or_(ScheduleEntry.end_date.is_(None), ScheduleEntry.end_date >= check_date)
    ).all()

    matching = [
        entry for entry in entries
        if weekday in entry.days_list and time_in_window(check_time, entry.start_time, entry.end_time)
    ]
    if not matching:
        return None

    matching.sort(key=lambda e: (-e.priority, -e.created_at.timestamp(), -e.id))
    return matching[0]
