"""
Schedule window maths, conflict detection and device-local resolution
"""
from datetime import date, datetime, time

import pytest

from models import db, Location, SceneLanguageGroup, ScheduleEntry
from utils.content_resolution import resolve_for_device
from utils.errors import Conflict, Forbidden, InvalidInput
from utils.schedule_utils import (check_time_overlap, create_schedule_entry, date_ranges_overlap,
                                  device_local_now, resolve_schedule_entry, time_in_window)

# Monday 12:00 UTC
NOW = datetime(2025, 1, 6, 12, 0, 0)


def test_time_overlap():
    assert check_time_overlap(time(8), time(12), time(11), time(14))
    assert not check_time_overlap(time(8), time(12), time(12), time(14))
    assert check_time_overlap(time(22), time(2), time(1), time(3))
    assert not check_time_overlap(time(22), time(2), time(3), time(21))
    assert check_time_overlap(time(0), time(0), time(5), time(6))


def test_time_in_window():
    assert time_in_window(time(9), time(9), time(17))
    assert not time_in_window(time(17), time(9), time(17))
    assert time_in_window(time(23, 30), time(22), time(2))
    assert time_in_window(time(1, 59), time(22), time(2))
    assert not time_in_window(time(2), time(22), time(2))
    assert time_in_window(time(4), time(6), time(6))


def test_date_ranges_overlap():
    assert date_ranges_overlap(None, None, date(2025, 1, 1), None)
    assert not date_ranges_overlap(date(2025, 1, 1), date(2025, 1, 31), date(2025, 2, 1), None)
    assert date_ranges_overlap(date(2025, 1, 1), date(2025, 1, 31), date(2025, 1, 31), date(2025, 2, 5))


def _entry_data(**overrides):
    data = {
        'target_type': 'all',
        'content_type': 'playlist',
        'content_id': 1,
        'start_time': '08:00',
        'end_time': '12:00',
    }
    data.update(overrides)
    return data


def test_create_entry_and_flag_devices(operator, make_schedule, make_device):
    schedule = make_schedule()
    device = make_device(assigned_schedule_id=schedule.id)

    entry = create_schedule_entry(operator, schedule.id, _entry_data(days_of_week=[4, 0, 2]), now=NOW)

    assert entry.days_of_week == '0,2,4'
    assert entry.start_time == time(8, 0)
    db.session.refresh(device)
    assert device.needs_refresh is True


def test_overlapping_entry_is_rejected_with_details(operator, make_schedule):
    schedule = make_schedule()
    first = create_schedule_entry(operator, schedule.id, _entry_data(priority=5), now=NOW)

    with pytest.raises(Conflict) as exc:
        create_schedule_entry(operator, schedule.id, _entry_data(start_time='11:00', end_time='13:00', priority=5),
                              now=NOW)

    payload = exc.value.to_dict()
    assert payload['code'] == 'conflict'
    assert payload['conflicts'][0]['conflicting_entry_id'] == first.id
    assert payload['conflicts'][0]['conflict_type'] == 'priority_conflict'
    assert ScheduleEntry.query.count() == 1


def test_non_overlapping_scopes_are_accepted(operator, make_schedule, make_device):
    schedule = make_schedule()
    one = make_device(name='One')
    two = make_device(name='Two')

    weekdays = [0, 1, 2, 3, 4]

    create_schedule_entry(operator, schedule.id,
                          _entry_data(target_type='screen', target_id=one.id, days_of_week=weekdays), now=NOW)
    create_schedule_entry(operator, schedule.id,
                          _entry_data(target_type='screen', target_id=two.id, days_of_week=weekdays), now=NOW)
    create_schedule_entry(operator, schedule.id, _entry_data(start_time='12:00', end_time='18:00'), now=NOW)
    create_schedule_entry(operator, schedule.id, _entry_data(days_of_week=[5, 6], start_time='09:00'), now=NOW)

    assert ScheduleEntry.query.count() == 4


def test_entry_validation(operator, viewer, make_schedule):
    schedule = make_schedule()
    with pytest.raises(InvalidInput):
        create_schedule_entry(operator, schedule.id, _entry_data(start_time='8am'), now=NOW)
    with pytest.raises(InvalidInput):
        create_schedule_entry(operator, schedule.id, _entry_data(days_of_week=[7]), now=NOW)
    with pytest.raises(InvalidInput):
        create_schedule_entry(operator, schedule.id, _entry_data(content_type='video'), now=NOW)
    with pytest.raises(InvalidInput):
        create_schedule_entry(operator, schedule.id, _entry_data(target_type='screen'), now=NOW)
    with pytest.raises(InvalidInput):
        create_schedule_entry(operator, schedule.id,
                              _entry_data(start_date='2025-02-01', end_date='2025-01-01'), now=NOW)
    with pytest.raises(Forbidden):
        create_schedule_entry(viewer, schedule.id, _entry_data(), now=NOW)


def test_device_local_time_uses_location_timezone(tenant, make_device):
    location = Location(tenant_id=tenant.id, name='Tokyo office', timezone='Asia/Tokyo')
    db.session.add(location)
    db.session.commit()
    device = make_device(location_id=location.id)

    local = device_local_now(device, NOW)
    assert (local.hour, local.minute) == (21, 0)

    device.timezone = 'America/New_York'
    assert device_local_now(device, NOW).hour == 7

    device.timezone = 'Mars/Olympus'
    assert device_local_now(device, NOW).hour == 12


def test_resolution_in_device_local_time(operator, make_schedule, make_device):
    schedule = make_schedule()
    morning = create_schedule_entry(operator, schedule.id, _entry_data(start_time='06:00', end_time='10:00'),
                                    now=NOW)
    noon = create_schedule_entry(operator, schedule.id, _entry_data(start_time='10:00', end_time='14:00'),
                                 now=NOW)

    utc_device = make_device(name='London', assigned_schedule_id=schedule.id, timezone='UTC')
    ny_device = make_device(name='New York', assigned_schedule_id=schedule.id, timezone='America/New_York')

    assert resolve_schedule_entry(utc_device, NOW) == noon
    assert resolve_schedule_entry(ny_device, NOW) == morning


def test_day_of_week_is_local(operator, make_schedule, make_device):
    schedule = make_schedule()
    # Tuesday only
    create_schedule_entry(operator, schedule.id, _entry_data(start_time='00:00', end_time='00:00',
                                                              days_of_week=[1]), now=NOW)

    # Monday 20:00 UTC is already Tuesday in Tokyo
    evening = datetime(2025, 1, 6, 20, 0)
    tokyo = make_device(name='Tokyo', assigned_schedule_id=schedule.id, timezone='Asia/Tokyo')
    utc = make_device(name='UTC', assigned_schedule_id=schedule.id)

    assert resolve_schedule_entry(tokyo, evening) is not None
    assert resolve_schedule_entry(utc, evening) is None


def test_higher_priority_then_newest_entry_wins(tenant, make_schedule, make_device):
    schedule = make_schedule()
    device = make_device(assigned_schedule_id=schedule.id)

    def add(priority, created_at):
        entry = ScheduleEntry(schedule_id=schedule.id, content_type='playlist', content_id=1,
                              start_time=time(0), end_time=time(0), priority=priority, created_at=created_at)
        db.session.add(entry)
        db.session.commit()
        return entry

    add(1, datetime(2025, 1, 1))
    old_high = add(5, datetime(2025, 1, 1))
    new_high = add(5, datetime(2025, 1, 2))

    assert resolve_schedule_entry(device, NOW) == new_high
    new_high.is_active = False
    db.session.commit()
    assert resolve_schedule_entry(device, NOW) == old_high


def test_unassigned_or_inactive_schedule(make_schedule, make_device):
    schedule = make_schedule()
    assert resolve_schedule_entry(make_device(name='None'), NOW) is None

    device = make_device(name='Assigned', assigned_schedule_id=schedule.id)
    schedule.is_active = False
    db.session.commit()
    assert resolve_schedule_entry(device, NOW) is None


def test_group_schedule_applies_when_device_has_none(operator, make_schedule, make_group, make_device):
    group_schedule = make_schedule('Group')
    own_schedule = make_schedule('Own')
    group = make_group(assigned_schedule_id=group_schedule.id)
    group_entry = create_schedule_entry(operator, group_schedule.id,
                                        _entry_data(start_time='00:00', end_time='00:00'), now=NOW)
    own_entry = create_schedule_entry(operator, own_schedule.id,
                                      _entry_data(start_time='00:00', end_time='00:00'), now=NOW)

    follower = make_device(name='Follower', group_id=group.id)
    independent = make_device(name='Independent', group_id=group.id, assigned_schedule_id=own_schedule.id)

    assert resolve_schedule_entry(follower, NOW) == group_entry
    assert resolve_schedule_entry(independent, NOW) == own_entry


def test_new_entry_flags_group_followers(operator, make_schedule, make_group, make_device):
    schedule = make_schedule()
    other = make_schedule('Other')
    group = make_group(assigned_schedule_id=schedule.id)
    follower = make_device(name='Follower', group_id=group.id)
    independent = make_device(name='Independent', group_id=group.id, assigned_schedule_id=other.id)

    create_schedule_entry(operator, schedule.id, _entry_data(), now=NOW)

    db.session.refresh(follower)
    db.session.refresh(independent)
    assert follower.needs_refresh is True
    assert independent.needs_refresh is False


def test_schedule_timezone_used_when_device_has_none(operator, make_schedule, make_device):
    schedule = make_schedule(timezone='Asia/Tokyo')
    # 21:00 in Tokyo
    evening = create_schedule_entry(operator, schedule.id, _entry_data(start_time='20:00', end_time='22:00'),
                                    now=NOW)

    plain = make_device(name='Plain', assigned_schedule_id=schedule.id)
    london = make_device(name='London', assigned_schedule_id=schedule.id, timezone='Europe/London')

    assert resolve_schedule_entry(plain, NOW) == evening
    assert resolve_schedule_entry(london, NOW) is None


def test_scheduled_scene_uses_language_variant(operator, tenant, make_schedule, make_device,
                                               make_media, make_playlist, make_scene):
    media = make_media()
    group = SceneLanguageGroup(tenant_id=tenant.id, name='Menu', default_language='en')
    db.session.add(group)
    db.session.commit()
    english = make_scene('Menu', playlist=make_playlist('EN', [(media, None)]),
                         language_group=group, language_code='en')
    german = make_scene('Speisekarte', playlist=make_playlist('DE', [(media, None)]),
                        language_group=group, language_code='de')

    schedule = make_schedule()
    entry = create_schedule_entry(operator, schedule.id,
                                  _entry_data(content_type='scene', content_id=english.id,
                                              start_time='00:00', end_time='00:00'), now=NOW)
    assert entry.content_type == 'scene'

    device = make_device(assigned_schedule_id=schedule.id, display_language='de')
    result = resolve_for_device(device, NOW)

    assert result.source == 'schedule'
    assert result.playlist['name'] == 'DE'
    assert result.extra['scene']['id'] == german.id
    assert result.extra['scene']['requested_scene_id'] == english.id
    assert result.extra['schedule']['entry_id'] == entry.id
