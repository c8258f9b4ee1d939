"""
Device-facing HTTP endpoints
"""
from datetime import timedelta

from models import db, DeviceCommand, TelemetryEvent, utcnow
from utils.command_queue import enqueue
from utils.pairing import generate_otp

API_KEY = 'f' * 64


def _headers(device, api_key=API_KEY):
    return {'X-Device-ID': str(device.id), 'X-Device-Key': api_key}


def test_health(client):
    response = client.get('/api/health')
    assert response.status_code == 200
    assert response.get_json()['status'] == 'healthy'


def test_pair_flow(client, operator, make_device):
    device = make_device()
    code = generate_otp(operator, device.id)['code']

    response = client.post('/api/device/pair', json={
        'code': code,
        'device_info': {'platform': 'android_tv', 'screen_width': 3840, 'timezone': 'Europe/Paris'}
    })

    assert response.status_code == 200
    data = response.get_json()
    assert data['device_id'] == device.id
    assert len(data['api_key']) == 64
    assert device.timezone == 'Europe/Paris'

    reused = client.post('/api/device/pair', json={'code': code})
    assert reused.status_code == 400
    assert reused.get_json()['code'] == 'invalid_code'


def test_pair_rejects_non_object_device_info(client):
    response = client.post('/api/device/pair', json={'code': 'ABCDEF', 'device_info': 'tv'})
    assert response.status_code == 400


def test_unknown_device_is_told_to_re_pair(client):
    response = client.get('/api/device/content', headers={'X-Device-ID': '999', 'X-Device-Key': API_KEY})

    assert response.status_code == 404
    assert response.get_json()['action'] == 're_pair'


def test_bad_key_is_rejected(client, make_device):
    device = make_device(paired=True, api_key=API_KEY)

    response = client.get('/api/device/commands', headers=_headers(device, 'bad'))

    assert response.status_code == 401
    assert response.get_json() == {'error': 'Invalid API key', 'code': 'invalid_credentials',
                                   'action': 're_pair'}


def test_non_numeric_device_id(client):
    response = client.get('/api/device/content', headers={'X-Device-ID': 'abc', 'X-Device-Key': API_KEY})
    assert response.status_code == 404


def test_heartbeat(client, operator, make_device):
    device = make_device(paired=True, api_key=API_KEY)
    command_id = enqueue(operator, device.id, 'reboot')

    response = client.post('/api/device/heartbeat', headers=_headers(device), json={'app_version': '3.0'})

    assert response.status_code == 200
    data = response.get_json()
    assert data['online'] is True
    assert data['pending_commands'][0]['id'] == command_id
    assert 'server_time' in data
    assert device.app_version == '3.0'


def test_heartbeat_with_bad_key(client, make_device):
    device = make_device(paired=True, api_key=API_KEY)
    response = client.post('/api/device/heartbeat', headers=_headers(device, 'nope'))
    assert response.status_code == 401
    assert response.get_json()['action'] == 're_pair'


def test_content_endpoint(client, make_device, make_media, make_playlist):
    playlist = make_playlist('Menu', [(make_media('a.png', duration=8), None)])
    device = make_device(paired=True, api_key=API_KEY, assigned_playlist_id=playlist.id)

    response = client.get('/api/device/content', headers=_headers(device))

    assert response.status_code == 200
    data = response.get_json()
    assert data['mode'] == 'playlist'
    assert data['playlist']['name'] == 'Menu'
    assert data['items'][0]['duration'] == 8
    assert device.is_online is True


def test_empty_content_is_not_an_error(client, make_device):
    device = make_device(paired=True, api_key=API_KEY)

    response = client.get('/api/device/content', headers=_headers(device))

    assert response.status_code == 200
    assert response.get_json()['mode'] == 'empty'
    assert response.get_json()['items'] == []


def test_content_by_code(client, operator, make_device):
    device = make_device()
    code = generate_otp(operator, device.id)['code']

    response = client.get(f'/api/device/content/by-code/{code}')
    assert response.status_code == 200
    assert response.get_json()['screen_id'] == device.id

    assert client.get('/api/device/content/by-code/NOPE42').status_code == 400


def test_command_drain_and_ack(client, operator, make_device):
    device = make_device(paired=True, api_key=API_KEY)
    command_id = enqueue(operator, device.id, 'screenshot', {'quality': 80})

    drained = client.get('/api/device/commands', headers=_headers(device)).get_json()
    assert drained['commands'] == [{'id': command_id, 'type': 'screenshot', 'payload': {'quality': 80}}]

    response = client.post(f'/api/device/commands/{command_id}/ack', headers=_headers(device),
                           json={'success': True, 'result': {'url': 'https://cdn.example.com/s.png'}})
    assert response.status_code == 200
    assert response.get_json() == {'id': command_id, 'status': 'acknowledged'}

    again = client.post(f'/api/device/commands/{command_id}/ack', headers=_headers(device), json={'success': True})
    assert again.status_code == 404
    assert client.get('/api/device/commands', headers=_headers(device)).get_json()['commands'] == []


def test_ack_requires_boolean_success(client, operator, make_device):
    device = make_device(paired=True, api_key=API_KEY)
    command_id = enqueue(operator, device.id, 'reload')

    response = client.post(f'/api/device/commands/{command_id}/ack', headers=_headers(device),
                           json={'success': 'yes'})

    assert response.status_code == 400
    assert db.session.get(DeviceCommand, command_id).status == 'pending'


def test_refresh_ack(client, make_device):
    device = make_device(paired=True, api_key=API_KEY, needs_refresh=True)

    response = client.post('/api/device/refresh-ack', headers=_headers(device), json={'config_hash': 'abc'})

    assert response.status_code == 200
    assert response.get_json()['needs_refresh'] is False
    assert device.last_config_hash == 'abc'


def test_telemetry_upload(client, make_device):
    device = make_device(paired=True, api_key=API_KEY)
    recorded = (utcnow() - timedelta(minutes=1)).isoformat()

    response = client.post('/api/device/telemetry', headers=_headers(device), json={
        'event': 'error',
        'data': {'message': 'decoder crashed'},
        'network_type': 'ethernet',
        'timestamp': recorded
    })

    assert response.status_code == 201
    event = db.session.get(TelemetryEvent, response.get_json()['id'])
    assert event.event_type == 'error'
    assert event.network_type == 'ethernet'

    missing = client.post('/api/device/telemetry', headers=_headers(device), json={'data': {}})
    assert missing.status_code == 400


def test_kiosk_verify_pin(client, operator, make_device):
    from utils.device_registry import set_kiosk_mode

    device = make_device(paired=True, api_key=API_KEY)
    set_kiosk_mode(operator, device.id, True, pin='2468')

    ok = client.post('/api/device/kiosk/verify-pin', headers=_headers(device), json={'pin': '2468'})
    wrong = client.post('/api/device/kiosk/verify-pin', headers=_headers(device), json={'pin': '1111'})

    assert ok.get_json() == {'valid': True}
    assert wrong.get_json() == {'valid': False}
