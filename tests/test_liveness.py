"""
Heartbeat, offline sweep, refresh flags and telemetry
"""
from datetime import datetime, timedelta

import pytest

from models import db, SceneLanguageGroup, TelemetryEvent
from utils.command_queue import enqueue
from utils.content_events import publish_scene_changed, publish_tenant_changed
from utils.errors import InvalidCredentials, InvalidInput
from utils.liveness import (clear_refresh_flag, heartbeat, mark_offline_sweep, notify_devices_changed,
                            parse_device_timestamp, record_telemetry)

NOW = datetime(2025, 1, 6, 12, 0, 0)


def test_heartbeat_marks_online_and_drains(operator, make_device):
    device = make_device(paired=True, api_key='k' * 64)
    command_id = enqueue(operator, device.id, 'reload', now=NOW)

    result = heartbeat(device.id, 'k' * 64, {'app_version': '2.0.1'}, now=NOW + timedelta(seconds=30))

    assert result['online'] is True
    assert result['pending_commands'] == [{'id': command_id, 'type': 'reload', 'payload': None}]
    assert device.last_seen == NOW + timedelta(seconds=30)
    assert device.app_version == '2.0.1'


def test_heartbeat_rejects_bad_key(make_device):
    device = make_device(paired=True, api_key='k' * 64)
    with pytest.raises(InvalidCredentials):
        heartbeat(device.id, 'nope', now=NOW)
    assert device.last_seen is None


def test_sweep_flips_only_stale_devices(make_device):
    stale = make_device(name='Stale', is_online=True, last_seen=NOW - timedelta(minutes=6))
    fresh = make_device(name='Fresh', is_online=True, last_seen=NOW - timedelta(minutes=4))

    assert mark_offline_sweep(5, now=NOW) == 1

    db.session.refresh(stale)
    db.session.refresh(fresh)
    assert stale.is_online is False
    assert fresh.is_online is True
    assert stale.liveness_state == 'offline'


def test_sweep_is_idempotent(make_device):
    make_device(is_online=True, last_seen=NOW - timedelta(minutes=10))
    assert mark_offline_sweep(5, now=NOW) == 1
    assert mark_offline_sweep(5, now=NOW) == 0


def test_offline_device_returns_through_heartbeat(make_device):
    device = make_device(paired=True, api_key='k' * 64, is_online=False,
                         last_seen=NOW - timedelta(hours=1))

    heartbeat(device.id, 'k' * 64, now=NOW)

    assert device.is_online is True
    assert device.liveness_state == 'online'


def test_scene_change_flags_direct_group_and_variant_devices(tenant, make_device, make_group, make_scene):
    language_group = SceneLanguageGroup(tenant_id=tenant.id, name='Welcome')
    db.session.add(language_group)
    db.session.commit()
    scene = make_scene('EN', language_group=language_group, language_code='en')
    variant = make_scene('DE', language_group=language_group, language_code='de')
    unrelated = make_scene('Other')
    screen_group = make_group(active_scene_id=scene.id)

    direct = make_device(name='Direct', active_scene_id=scene.id)
    via_group = make_device(name='Group', group_id=screen_group.id)
    via_variant = make_device(name='Variant', active_scene_id=variant.id)
    untouched = make_device(name='Untouched', active_scene_id=unrelated.id)

    publish_scene_changed('test', scene.id)
    db.session.commit()

    for device in (direct, via_group, via_variant, untouched):
        db.session.refresh(device)
    assert direct.needs_refresh and via_group.needs_refresh and via_variant.needs_refresh
    assert untouched.needs_refresh is False


def test_tenant_change_flags_only_scene_devices(tenant, other_tenant, make_device, make_scene):
    scene = make_scene()
    with_scene = make_device(name='Scene', active_scene_id=scene.id)
    without_scene = make_device(name='Bare')
    foreign = make_device(name='Foreign', tenant_id=other_tenant.id)

    publish_tenant_changed('test', tenant.id)
    db.session.commit()

    for device in (with_scene, without_scene, foreign):
        db.session.refresh(device)
    assert with_scene.needs_refresh is True
    assert without_scene.needs_refresh is False
    assert foreign.needs_refresh is False


def test_notify_needs_a_scope(app):
    with pytest.raises(InvalidInput):
        notify_devices_changed()


def test_clear_refresh_flag(make_device):
    device = make_device(needs_refresh=True)

    clear_refresh_flag(device, 'abc123', now=NOW)

    assert device.needs_refresh is False
    assert device.last_refresh_at == NOW
    assert device.last_config_hash == 'abc123'


def test_record_telemetry_uses_device_clock(make_device):
    device = make_device(paired=True)

    event = record_telemetry(device, 'playback', {'media_id': 3}, network_type='wifi',
                             timestamp='2025-01-06T10:00:00+01:00', now=NOW)

    stored = db.session.get(TelemetryEvent, event.id)
    assert stored.recorded_at == datetime(2025, 1, 6, 9, 0, 0)
    assert stored.received_at == NOW
    assert stored.data == {'media_id': 3}


def test_record_telemetry_validation(make_device):
    device = make_device()
    with pytest.raises(InvalidInput):
        record_telemetry(device, None, now=NOW)
    with pytest.raises(InvalidInput):
        record_telemetry(device, 'error', data=['not', 'a', 'dict'], now=NOW)
    with pytest.raises(InvalidInput):
        parse_device_timestamp('yesterday')
